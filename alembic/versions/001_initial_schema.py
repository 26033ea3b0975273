"""001 – Initial schema: directory, leave, attendance, notifications, audit.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000+05:30
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("access_level", ["admin", "hr", "manager", "accountant", "employee"]),
    ("leave_status", ["open", "approved", "rejected", "cancelled"]),
    (
        "attendance_status",
        [
            "present",
            "absent",
            "half_day",
            "on_leave",
            "work_from_home",
            "on_duty",
            "holiday",
            "weekend",
        ],
    ),
    ("attendance_source", ["system", "manual", "leave"]),
    ("notification_type", ["info", "action_required", "approval", "alert"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. departments ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE departments (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(100) NOT NULL UNIQUE,
            code        VARCHAR(20)  NOT NULL UNIQUE,
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. roles ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE roles (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name          VARCHAR(100) NOT NULL UNIQUE,
            level         INTEGER NOT NULL,
            access_level  access_level NOT NULL DEFAULT 'employee',
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_roles_level ON roles(level)")

    # ── 3. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_code  VARCHAR(20)  NOT NULL UNIQUE,
            first_name     VARCHAR(100) NOT NULL,
            last_name      VARCHAR(100) NOT NULL,
            email          VARCHAR(255) NOT NULL UNIQUE,
            department_id  UUID REFERENCES departments(id),
            role_id        UUID REFERENCES roles(id),
            manager_id     UUID REFERENCES employees(id),
            is_active      BOOLEAN DEFAULT TRUE,
            created_at     TIMESTAMPTZ DEFAULT NOW(),
            updated_at     TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_employees_department ON employees(department_id)")
    op.execute("CREATE INDEX idx_employees_manager    ON employees(manager_id)")

    # ── 4. holidays ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE holidays (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(200) NOT NULL,
            from_date   DATE NOT NULL,
            to_date     DATE NOT NULL,
            total_days  INTEGER NOT NULL DEFAULT 1,
            created_at  TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_holiday_range CHECK (from_date <= to_date)
        )
    """)
    op.execute("CREATE INDEX idx_holidays_dates ON holidays(from_date, to_date)")

    # ── 5. leave_types ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id                    UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            code                  VARCHAR(10)  NOT NULL UNIQUE,
            name                  VARCHAR(100) NOT NULL,
            description           TEXT,
            max_consecutive_days  INTEGER,
            is_carry_forward      BOOLEAN DEFAULT FALSE,
            is_active             BOOLEAN DEFAULT TRUE,
            created_at            TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 6. leave_ledgers ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_ledgers (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id    UUID NOT NULL REFERENCES employees(id),
            leave_type_id  UUID NOT NULL REFERENCES leave_types(id),
            year           INTEGER NOT NULL,
            total_leaves   NUMERIC(5,1) NOT NULL DEFAULT 0,
            used_leaves    NUMERIC(5,1) NOT NULL DEFAULT 0,
            updated_at     TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_ledger UNIQUE (employee_id, leave_type_id, year)
        )
    """)

    # ── 7. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id                 UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id        UUID NOT NULL REFERENCES employees(id),
            leave_type_id      UUID NOT NULL REFERENCES leave_types(id),
            from_date          DATE NOT NULL,
            to_date            DATE NOT NULL,
            half_day           BOOLEAN NOT NULL DEFAULT FALSE,
            reason             TEXT,
            status             leave_status NOT NULL DEFAULT 'open',
            approver_id        UUID REFERENCES employees(id),
            approver_comments  TEXT,
            approved_at        TIMESTAMPTZ,
            reviewed_by        UUID REFERENCES employees(id),
            reviewed_at        TIMESTAMPTZ,
            cancelled_at       TIMESTAMPTZ,
            charged_days       NUMERIC(5,1),
            created_at         TIMESTAMPTZ DEFAULT NOW(),
            updated_at         TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_request_range CHECK (from_date <= to_date)
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_requests_employee_dates
            ON leave_requests(employee_id, from_date, to_date)
    """)
    op.execute("""
        CREATE INDEX ix_leave_requests_approver_status
            ON leave_requests(approver_id, status)
    """)

    # ── 8. attendance_records ─────────────────────────────────────────────
    op.execute("""
        CREATE TABLE attendance_records (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id       UUID NOT NULL REFERENCES employees(id),
            date              DATE NOT NULL,
            status            attendance_status NOT NULL DEFAULT 'present',
            leave_type_id     UUID REFERENCES leave_types(id),
            leave_request_id  UUID REFERENCES leave_requests(id),
            check_in          TIMESTAMPTZ,
            check_out         TIMESTAMPTZ,
            total_duration    NUMERIC(5,2),
            source            attendance_source NOT NULL DEFAULT 'system',
            remarks           TEXT,
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_at        TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_attendance_emp_date UNIQUE (employee_id, date)
        )
    """)
    op.execute("""
        CREATE INDEX idx_attendance_status
            ON attendance_records(employee_id, status, date)
    """)

    # ── 9. notifications ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            recipient_id  UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            type          notification_type DEFAULT 'info',
            title         VARCHAR(200) NOT NULL,
            message       TEXT NOT NULL,
            entity_type   VARCHAR(50),
            entity_id     UUID,
            is_read       BOOLEAN DEFAULT FALSE,
            read_at       TIMESTAMPTZ,
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX idx_notifications_unread
            ON notifications(recipient_id, is_read)
            WHERE is_read = FALSE
    """)

    # ── 10. audit_trail ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id     UUID REFERENCES employees(id),
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity   ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_action   ON audit_trail(action)")

    # ── Seed data ─────────────────────────────────────────────────────────

    # Leave types
    op.execute("""
        INSERT INTO leave_types
            (code, name, description, max_consecutive_days, is_carry_forward)
        VALUES
            ('CL',  'Casual Leave',      'For personal/urgent work', 3,    FALSE),
            ('SL',  'Sick Leave',        'Medical leave',            NULL, FALSE),
            ('EL',  'Earned Leave',      'Earned/privilege leave',   NULL, TRUE),
            ('LWP', 'Leave Without Pay', 'Unpaid leave',             NULL, FALSE)
    """)


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "notifications",
        "attendance_records",
        "leave_requests",
        "leave_ledgers",
        "leave_types",
        "holidays",
        "employees",
        "roles",
        "departments",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

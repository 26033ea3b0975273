"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from leave_engine.auth.schemas import Actor
from leave_engine.common.constants import AccessLevel
from leave_engine.config import settings
from leave_engine.database import Base, get_db
from leave_engine.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import leave_engine.common.audit  # noqa: F401
import leave_engine.core_hr.models  # noqa: F401
import leave_engine.leave.models  # noqa: F401
import leave_engine.attendance.models  # noqa: F401
import leave_engine.notifications.models  # noqa: F401

from leave_engine.attendance.models import AttendanceRecord, Holiday
from leave_engine.core_hr.models import Department, Employee, Role
from leave_engine.leave.models import LeaveLedger, LeaveType

# ── SQLite compat: compile PG-specific types to TEXT/CHAR ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and uuid_generate_v4() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "uuid_generate_v4", 0, lambda: str(uuid.uuid4()),
    )


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from leave_engine.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

async def _seed_department(
    db: AsyncSession,
    *,
    name: str = "Engineering",
    code: str = "ENG",
) -> Department:
    dept = Department(
        id=uuid.uuid4(),
        name=name,
        code=code,
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )
    db.add(dept)
    await db.flush()
    return dept


async def _seed_role(
    db: AsyncSession,
    *,
    name: Optional[str] = None,
    level: int = 3,
    access_level: AccessLevel = AccessLevel.employee,
) -> Role:
    role = Role(
        id=uuid.uuid4(),
        name=name or f"Role-{uuid.uuid4().hex[:6]}",
        level=level,
        access_level=access_level,
        created_at=datetime.now(timezone.utc),
    )
    db.add(role)
    await db.flush()
    return role


async def _seed_employee(
    db: AsyncSession,
    *,
    first_name: str = "Test",
    last_name: str = "Employee",
    department_id: Optional[uuid.UUID] = None,
    role_id: Optional[uuid.UUID] = None,
    manager_id: Optional[uuid.UUID] = None,
    is_active: bool = True,
    employee_id: Optional[uuid.UUID] = None,
) -> Employee:
    code = uuid.uuid4().hex[:6].upper()
    emp = Employee(
        id=employee_id or uuid.uuid4(),
        employee_code=f"LE-{code}",
        first_name=first_name,
        last_name=last_name,
        email=f"{first_name.lower()}.{code.lower()}@example.com",
        department_id=department_id,
        role_id=role_id,
        manager_id=manager_id,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )
    db.add(emp)
    await db.flush()
    return emp


async def _seed_leave_type(
    db: AsyncSession,
    *,
    code: str = "CL",
    name: str = "Casual Leave",
    max_consecutive_days: Optional[int] = None,
    is_active: bool = True,
) -> LeaveType:
    lt = LeaveType(
        id=uuid.uuid4(),
        code=code,
        name=name,
        max_consecutive_days=max_consecutive_days,
        is_carry_forward=False,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
    )
    db.add(lt)
    await db.flush()
    return lt


async def _seed_ledger(
    db: AsyncSession,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    *,
    year: int = 2025,
    total: Decimal = Decimal("12"),
    used: Decimal = Decimal("0"),
) -> LeaveLedger:
    ledger = LeaveLedger(
        id=uuid.uuid4(),
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        year=year,
        total_leaves=total,
        used_leaves=used,
    )
    db.add(ledger)
    await db.flush()
    return ledger


async def _seed_holiday(
    db: AsyncSession,
    name: str,
    from_date: date,
    to_date: Optional[date] = None,
) -> Holiday:
    to_date = to_date or from_date
    holiday = Holiday(
        id=uuid.uuid4(),
        name=name,
        from_date=from_date,
        to_date=to_date,
        total_days=(to_date - from_date).days + 1,
    )
    db.add(holiday)
    await db.flush()
    return holiday


async def _seed_attendance(
    db: AsyncSession,
    employee_id: uuid.UUID,
    day: date,
    status,
    **extra,
) -> AttendanceRecord:
    from leave_engine.common.constants import AttendanceSource

    record = AttendanceRecord(
        id=uuid.uuid4(),
        employee_id=employee_id,
        date=day,
        status=status,
        source=extra.pop("source", AttendanceSource.manual),
        **extra,
    )
    db.add(record)
    await db.flush()
    return record


class Org:
    """A small directory: one department with an admin, a manager and staff."""

    def __init__(self, dept, admin, manager, employee, leave_type):
        self.dept = dept
        self.admin = admin
        self.manager = manager
        self.employee = employee
        self.leave_type = leave_type

    def actor(self, emp: Employee) -> Actor:
        return as_actor(emp, self.access_of(emp))

    def access_of(self, emp: Employee) -> AccessLevel:
        if emp.id == self.admin.id:
            return AccessLevel.admin
        if emp.id == self.manager.id:
            return AccessLevel.manager
        return AccessLevel.employee


async def _seed_org(db: AsyncSession) -> Org:
    dept = await _seed_department(db)
    admin_role = await _seed_role(db, name="Director", level=1, access_level=AccessLevel.admin)
    mgr_role = await _seed_role(db, name="Team Lead", level=2, access_level=AccessLevel.manager)
    emp_role = await _seed_role(db, name="Engineer", level=3, access_level=AccessLevel.employee)
    admin = await _seed_employee(db, first_name="Ada", role_id=admin_role.id)
    manager = await _seed_employee(
        db, first_name="Manu", department_id=dept.id, role_id=mgr_role.id,
    )
    employee = await _seed_employee(
        db, first_name="Emil", department_id=dept.id, role_id=emp_role.id,
        manager_id=manager.id,
    )
    leave_type = await _seed_leave_type(db)
    return Org(dept, admin, manager, employee, leave_type)


@pytest.fixture
async def org(db) -> Org:
    return await _seed_org(db)


# ── Auth helpers ────────────────────────────────────────────────────

def as_actor(emp: Employee, access_level: AccessLevel = AccessLevel.employee) -> Actor:
    return Actor(id=emp.id, access_level=access_level, department_id=emp.department_id)


def create_access_token(
    employee_id: uuid.UUID,
    access_level: AccessLevel = AccessLevel.employee,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS)
    payload = {
        "sub": str(employee_id),
        "access_level": access_level.value,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(
    employee_id: uuid.UUID,
    access_level: AccessLevel = AccessLevel.employee,
) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(employee_id, access_level)}"}

"""Leave state machine tests — submit, approve, reject/reversal, cancel, generic
update, transaction atomicity and notification side effects.

Tests run against SQLite via the shared conftest.py fixtures.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.dialects import postgresql

from leave_engine.attendance.schemas import AttendanceUpdate
from leave_engine.attendance.service import AttendanceService
from leave_engine.common.audit import AuditTrail
from leave_engine.common.constants import (
    AccessLevel,
    AttendanceSource,
    AttendanceStatus,
    LeaveStatus,
)
from leave_engine.common.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    StateException,
    ValidationException,
)
from leave_engine.common.pagination import PaginationParams
from leave_engine.leave.ledger import QuotaLedger
from leave_engine.leave.schemas import LeaveRequestCreate, LeaveRequestUpdate
from leave_engine.leave.service import LeaveService
from leave_engine.notifications.models import Notification
from tests.conftest import (
    _seed_attendance,
    _seed_employee,
    _seed_holiday,
    _seed_leave_type,
    _seed_ledger,
    _seed_org,
    as_actor,
)


# ═════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════


def _create(org, from_date, to_date, *, half_day=False, leave_type_id=None):
    return LeaveRequestCreate(
        leave_type_id=leave_type_id or org.leave_type.id,
        from_date=from_date,
        to_date=to_date,
        half_day=half_day,
        reason="Family trip",
    )


async def _submit(db, org, from_date, to_date, **kw):
    return await LeaveService.submit(db, org.employee.id, _create(org, from_date, to_date, **kw))


async def _used(db, org, year=2025) -> Decimal:
    entry = await QuotaLedger.get_entry(db, org.employee.id, org.leave_type.id, year)
    return entry.used_leaves


async def _rows(db, org, from_date, to_date):
    return await AttendanceService.get_range(db, org.employee.id, from_date, to_date)


async def _notifications_for(db, employee_id) -> list[Notification]:
    result = await db.execute(
        select(Notification).where(Notification.recipient_id == employee_id)
    )
    return list(result.scalars().all())


# ═════════════════════════════════════════════════════════════════════
# 1. Submit
# ═════════════════════════════════════════════════════════════════════


class TestSubmit:

    async def test_scenario_a_submit_opens_request(self, db):
        """10 total / 2 used, 3 days requested → open, nothing charged yet."""
        org = await _seed_org(db)
        await _seed_ledger(
            db, org.employee.id, org.leave_type.id,
            total=Decimal("10"), used=Decimal("2"),
        )

        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 12))

        assert lr.status == LeaveStatus.open
        assert lr.approver_id == org.manager.id
        assert await _used(db, org) == Decimal("2")
        assert await _rows(db, org, date(2025, 3, 10), date(2025, 3, 12)) == []

    async def test_scenario_b_present_day_blocks_submission(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        await _seed_attendance(db, org.employee.id, date(2025, 3, 11), AttendanceStatus.present)

        with pytest.raises(ConflictException) as exc_info:
            await _submit(db, org, date(2025, 3, 10), date(2025, 3, 12))

        assert "2025-03-11" in exc_info.value.detail
        assert (await LeaveService.list_requests(
            db, org.actor(org.admin), PaginationParams(page=1, page_size=50),
        ))[1].total == 0

    async def test_scenario_c_holiday_blocks_submission(self, db):
        org = await _seed_org(db)
        await _seed_holiday(db, "Republic Day", date(2025, 1, 26))

        with pytest.raises(ConflictException) as exc_info:
            await _submit(db, org, date(2025, 1, 26), date(2025, 1, 26))

        assert "Republic Day" in exc_info.value.detail

    async def test_scenario_e_no_remaining_balance(self, db):
        org = await _seed_org(db)
        await _seed_ledger(
            db, org.employee.id, org.leave_type.id,
            total=Decimal("5"), used=Decimal("5"),
        )

        with pytest.raises(ConflictException) as exc_info:
            await _submit(db, org, date(2025, 5, 5), date(2025, 5, 5), half_day=True)

        assert exc_info.value.errors["balance"] == {"available": "0", "requested": "0.5"}

    async def test_overlapping_open_request_blocks_submission(self, db):
        org = await _seed_org(db)
        first = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 12))

        with pytest.raises(ConflictException) as exc_info:
            await _submit(db, org, date(2025, 3, 12), date(2025, 3, 13))

        assert exc_info.value.errors == {"overlapping": [str(first.id)]}
        assert "2025-03-10..2025-03-12 (open)" in exc_info.value.detail

    async def test_overlapping_approved_request_blocks_submission(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        first = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 12))
        await LeaveService.approve(db, first.id, org.actor(org.manager))

        with pytest.raises(ConflictException):
            await _submit(db, org, date(2025, 3, 12), date(2025, 3, 13))

        assert await _used(db, org) == Decimal("3")

    async def test_rejected_or_cancelled_requests_do_not_overlap(self, db):
        org = await _seed_org(db)
        rejected = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 12))
        await LeaveService.reject(db, rejected.id, org.actor(org.manager), "No")
        cancelled = await _submit(db, org, date(2025, 3, 11), date(2025, 3, 12))
        await LeaveService.cancel(db, cancelled.id, org.actor(org.employee))

        lr = await _submit(db, org, date(2025, 3, 12), date(2025, 3, 13))

        assert lr.status == LeaveStatus.open

    async def test_manager_request_routed_to_admin(self, db):
        org = await _seed_org(db)
        lr = await LeaveService.submit(
            db, org.manager.id, _create(org, date(2025, 6, 2), date(2025, 6, 3)),
        )
        assert lr.approver_id == org.admin.id

    async def test_no_approver_still_files(self, db):
        org = await _seed_org(db)
        loner = await _seed_employee(db, first_name="Solo")

        lr = await LeaveService.submit(
            db, loner.id, _create(org, date(2025, 6, 2), date(2025, 6, 2)),
        )

        assert lr.approver_id is None
        assert lr.status == LeaveStatus.open

    async def test_approver_is_notified(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 6, 2), date(2025, 6, 3))

        notes = await _notifications_for(db, org.manager.id)
        assert len(notes) == 1
        assert notes[0].entity_id == lr.id
        assert notes[0].title == "New Leave Request"

    async def test_max_consecutive_days_enforced(self, db):
        org = await _seed_org(db)
        capped = await _seed_leave_type(db, code="SL", name="Sick Leave", max_consecutive_days=2)

        with pytest.raises(ValidationException):
            await _submit(
                db, org, date(2025, 6, 2), date(2025, 6, 4), leave_type_id=capped.id,
            )

    async def test_inactive_leave_type_rejected(self, db):
        org = await _seed_org(db)
        retired = await _seed_leave_type(db, code="XL", name="Retired", is_active=False)

        with pytest.raises(NotFoundException):
            await _submit(
                db, org, date(2025, 6, 2), date(2025, 6, 2), leave_type_id=retired.id,
            )

    def test_reversed_range_rejected_by_schema(self):
        with pytest.raises(ValidationError):
            LeaveRequestCreate(
                leave_type_id="00000000-0000-0000-0000-000000000001",
                from_date=date(2025, 3, 12),
                to_date=date(2025, 3, 10),
            )

    async def test_submission_audited(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 6, 2), date(2025, 6, 3))

        entries = (await db.execute(
            select(AuditTrail).where(AuditTrail.entity_id == lr.id)
        )).scalars().all()
        assert [e.action for e in entries] == ["submit"]


# ═════════════════════════════════════════════════════════════════════
# 2. Approve
# ═════════════════════════════════════════════════════════════════════


class TestApprove:

    async def test_scenario_a_approval_debits_and_marks_on_leave(self, db):
        org = await _seed_org(db)
        await _seed_ledger(
            db, org.employee.id, org.leave_type.id,
            total=Decimal("10"), used=Decimal("2"),
        )
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 12))

        await LeaveService.approve(db, lr.id, org.actor(org.manager), comments="Enjoy")

        assert lr.status == LeaveStatus.approved
        assert lr.reviewed_by == org.manager.id
        assert lr.approver_comments == "Enjoy"
        assert lr.approved_at is not None
        assert await _used(db, org) == Decimal("5")
        rows = await _rows(db, org, date(2025, 3, 10), date(2025, 3, 12))
        assert [r.date for r in rows] == [
            date(2025, 3, 10), date(2025, 3, 11), date(2025, 3, 12),
        ]
        assert all(r.status == AttendanceStatus.on_leave for r in rows)
        assert all(r.leave_request_id == lr.id for r in rows)

    async def test_single_day_counts_one(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 10))

        await LeaveService.approve(db, lr.id, org.actor(org.manager))

        assert await _used(db, org) == Decimal("1")

    async def test_half_day_counts_half_with_four_hours(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 10), half_day=True)

        await LeaveService.approve(db, lr.id, org.actor(org.manager))

        assert await _used(db, org) == Decimal("0.5")
        row = await AttendanceService.get_day(db, org.employee.id, date(2025, 3, 10))
        assert row.total_duration == Decimal("4")

    async def test_approve_twice_is_state_error_without_second_debit(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 11))
        await LeaveService.approve(db, lr.id, org.actor(org.manager))

        with pytest.raises(StateException) as exc_info:
            await LeaveService.approve(db, lr.id, org.actor(org.manager))

        assert exc_info.value.current_status == "approved"
        assert await _used(db, org) == Decimal("2")

    async def test_present_marked_after_submission_blocks_approval(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 12))
        await _seed_attendance(db, org.employee.id, date(2025, 3, 11), AttendanceStatus.present)

        with pytest.raises(ConflictException) as exc_info:
            await LeaveService.approve(db, lr.id, org.actor(org.manager))

        assert exc_info.value.detail.startswith("Cannot approve leave.")
        assert await _used(db, org) == Decimal("0")
        lr = await LeaveService._get_request(db, lr.id)
        assert lr.status == LeaveStatus.open

    async def test_approval_overwrites_stale_marks(self, db):
        """Absent / WFH rows inside the range become On-Leave."""
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 11))
        await _seed_attendance(db, org.employee.id, date(2025, 3, 10), AttendanceStatus.absent)

        await LeaveService.approve(db, lr.id, org.actor(org.manager))

        row = await AttendanceService.get_day(db, org.employee.id, date(2025, 3, 10))
        assert row.status == AttendanceStatus.on_leave
        assert row.source == AttendanceSource.leave

    async def test_only_assigned_approver_or_admin(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 10))
        bystander = await _seed_employee(db, first_name="Bea", department_id=org.dept.id)

        with pytest.raises(ForbiddenException):
            await LeaveService.approve(db, lr.id, as_actor(bystander, AccessLevel.manager))

        with pytest.raises(ForbiddenException):
            await LeaveService.approve(db, lr.id, as_actor(org.employee))

    async def test_admin_bypasses_assignment(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 10))

        await LeaveService.approve(db, lr.id, org.actor(org.admin))

        assert lr.status == LeaveStatus.approved
        assert lr.reviewed_by == org.admin.id
        assert lr.approver_id == org.manager.id

    async def test_unknown_request(self, db):
        org = await _seed_org(db)
        with pytest.raises(NotFoundException):
            await LeaveService.approve(db, uuid.uuid4(), org.actor(org.admin))

    async def test_applicant_notified(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 10))

        await LeaveService.approve(db, lr.id, org.actor(org.manager))

        notes = await _notifications_for(db, org.employee.id)
        assert [n.title for n in notes] == ["Leave Request Approved"]

    async def test_overdraw_on_approval_logged(self, db, caplog):
        """Balance spent elsewhere between submit and approve → logged, not blocked."""
        org = await _seed_org(db)
        ledger = await _seed_ledger(
            db, org.employee.id, org.leave_type.id, total=Decimal("2"),
        )
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 11))
        ledger.used_leaves = Decimal("1")
        await db.flush()

        with caplog.at_level(logging.ERROR, logger="leave_engine.leave.ledger"):
            await LeaveService.approve(db, lr.id, org.actor(org.manager))

        assert await _used(db, org) == Decimal("3")
        assert any("overdrawn" in r.message for r in caplog.records)


# ═════════════════════════════════════════════════════════════════════
# 3. Reject and reversal
# ═════════════════════════════════════════════════════════════════════


class TestReject:

    async def test_reject_open_has_no_side_effects(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id, used=Decimal("1"))
        lr = await _submit(db, org, date(2025, 4, 1), date(2025, 4, 2))

        await LeaveService.reject(db, lr.id, org.actor(org.manager), "Team offsite")

        assert lr.status == LeaveStatus.rejected
        assert lr.approver_comments == "Team offsite"
        assert await _used(db, org) == Decimal("1")

    async def test_scenario_d_rejecting_approved_reverses(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id, used=Decimal("1"))
        lr = await _submit(db, org, date(2025, 4, 1), date(2025, 4, 2))
        await LeaveService.approve(db, lr.id, org.actor(org.manager))
        assert await _used(db, org) == Decimal("3")

        assert lr.charged_days == Decimal("2")

        await LeaveService.reject(db, lr.id, org.actor(org.manager), "schedule changed")

        assert lr.status == LeaveStatus.rejected
        assert lr.charged_days is None
        assert await _used(db, org) == Decimal("1")
        assert await _rows(db, org, date(2025, 4, 1), date(2025, 4, 2)) == []

    async def test_quota_assigned_after_uncharged_approval(self, db):
        """No ledger row at approval → nothing charged, so nothing to credit back."""
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 4, 1), date(2025, 4, 2))
        await LeaveService.approve(db, lr.id, org.actor(org.manager))
        assert lr.charged_days is None
        await QuotaLedger.assign(db, org.employee.id, org.leave_type.id, 2025, Decimal("10"))

        await LeaveService.reject(db, lr.id, org.actor(org.manager), "schedule changed")

        assert lr.status == LeaveStatus.rejected
        assert await _used(db, org) == Decimal("0")
        assert await _rows(db, org, date(2025, 4, 1), date(2025, 4, 2)) == []

    async def test_reapproval_over_another_approved_request_refused(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        first = await _submit(db, org, date(2025, 4, 1), date(2025, 4, 3))
        await LeaveService.reject(db, first.id, org.actor(org.manager), "Not now")
        second = await _submit(db, org, date(2025, 4, 3), date(2025, 4, 4))
        await LeaveService.approve(db, second.id, org.actor(org.manager))

        with pytest.raises(ConflictException) as exc_info:
            await LeaveService.approve(db, first.id, org.actor(org.manager))

        assert exc_info.value.errors == {"overlapping": [str(second.id)]}
        assert await _used(db, org) == Decimal("2")
        rows = await _rows(db, org, date(2025, 4, 1), date(2025, 4, 4))
        assert [r.leave_request_id for r in rows] == [second.id, second.id]

    async def test_reversal_keeps_rows_changed_by_people(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        lr = await _submit(db, org, date(2025, 4, 1), date(2025, 4, 3))
        await LeaveService.approve(db, lr.id, org.actor(org.manager))
        row = await AttendanceService.get_day(db, org.employee.id, date(2025, 4, 2))
        await AttendanceService.update_record(
            db, row.id, AttendanceUpdate(status=AttendanceStatus.on_duty),
        )

        await LeaveService.reject(db, lr.id, org.actor(org.manager), "schedule changed")

        rows = await _rows(db, org, date(2025, 4, 1), date(2025, 4, 3))
        assert [(r.date, r.status) for r in rows] == [
            (date(2025, 4, 2), AttendanceStatus.on_duty),
        ]
        assert await _used(db, org) == Decimal("0")

    @pytest.mark.parametrize("comments", [None, "", "   "])
    async def test_comments_required(self, db, comments):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 4, 1), date(2025, 4, 1))

        with pytest.raises(StateException) as exc_info:
            await LeaveService.reject(db, lr.id, org.actor(org.manager), comments)

        assert exc_info.value.current_status == "open"

    async def test_reject_twice_is_state_error(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        lr = await _submit(db, org, date(2025, 4, 1), date(2025, 4, 2))
        await LeaveService.approve(db, lr.id, org.actor(org.manager))
        await LeaveService.reject(db, lr.id, org.actor(org.manager), "schedule changed")

        with pytest.raises(StateException):
            await LeaveService.reject(db, lr.id, org.actor(org.manager), "again")

        assert await _used(db, org) == Decimal("0")

    async def test_rejected_can_be_approved_later(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        lr = await _submit(db, org, date(2025, 4, 1), date(2025, 4, 2))
        await LeaveService.reject(db, lr.id, org.actor(org.manager), "Not now")

        await LeaveService.approve(db, lr.id, org.actor(org.manager))

        assert lr.status == LeaveStatus.approved
        assert await _used(db, org) == Decimal("2")

    async def test_round_trip_restores_ledger_exactly(self, db):
        org = await _seed_org(db)
        await _seed_ledger(
            db, org.employee.id, org.leave_type.id,
            total=Decimal("12"), used=Decimal("3.5"),
        )
        await _seed_attendance(db, org.employee.id, date(2025, 2, 28), AttendanceStatus.present)
        lr = await _submit(db, org, date(2025, 3, 1), date(2025, 3, 4))

        await LeaveService.approve(db, lr.id, org.actor(org.admin))
        await LeaveService.reject(db, lr.id, org.actor(org.admin), "Rolled back")

        assert await _used(db, org) == Decimal("3.5")
        rows = await _rows(db, org, date(2025, 2, 28), date(2025, 3, 4))
        assert [(r.date, r.status) for r in rows] == [
            (date(2025, 2, 28), AttendanceStatus.present),
        ]

    async def test_applicant_notified_with_comments(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 4, 1), date(2025, 4, 1))

        await LeaveService.reject(db, lr.id, org.actor(org.manager), "Release week")

        notes = await _notifications_for(db, org.employee.id)
        assert len(notes) == 1
        assert "Release week" in notes[0].message


# ═════════════════════════════════════════════════════════════════════
# 4. Cancel
# ═════════════════════════════════════════════════════════════════════


class TestCancel:

    async def test_cancel_open(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 4, 1), date(2025, 4, 1))

        await LeaveService.cancel(db, lr.id, org.actor(org.employee), reason="Plans changed")

        assert lr.status == LeaveStatus.cancelled
        assert lr.cancelled_at is not None
        notes = await _notifications_for(db, org.manager.id)
        assert notes[-1].title == "Leave Request Cancelled"

    async def test_cancel_approved_reverses(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        lr = await _submit(db, org, date(2025, 4, 1), date(2025, 4, 2))
        await LeaveService.approve(db, lr.id, org.actor(org.manager))

        await LeaveService.cancel(db, lr.id, org.actor(org.employee))

        assert await _used(db, org) == Decimal("0")
        assert await _rows(db, org, date(2025, 4, 1), date(2025, 4, 2)) == []

    async def test_cancel_uncharged_approval_after_quota_assigned(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 4, 1), date(2025, 4, 2))
        await LeaveService.approve(db, lr.id, org.actor(org.manager))
        await QuotaLedger.assign(db, org.employee.id, org.leave_type.id, 2025, Decimal("10"))

        await LeaveService.cancel(db, lr.id, org.actor(org.employee))

        assert lr.status == LeaveStatus.cancelled
        assert await _used(db, org) == Decimal("0")

    async def test_only_applicant_can_cancel(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 4, 1), date(2025, 4, 1))

        with pytest.raises(ForbiddenException):
            await LeaveService.cancel(db, lr.id, org.actor(org.admin))

    async def test_cancelled_is_final(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 4, 1), date(2025, 4, 1))
        await LeaveService.cancel(db, lr.id, org.actor(org.employee))

        with pytest.raises(StateException):
            await LeaveService.approve(db, lr.id, org.actor(org.admin))
        with pytest.raises(StateException):
            await LeaveService.reject(db, lr.id, org.actor(org.admin), "No")
        with pytest.raises(StateException):
            await LeaveService.cancel(db, lr.id, org.actor(org.employee))

    async def test_rejected_cannot_be_cancelled(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 4, 1), date(2025, 4, 1))
        await LeaveService.reject(db, lr.id, org.actor(org.manager), "No")

        with pytest.raises(StateException):
            await LeaveService.cancel(db, lr.id, org.actor(org.employee))


# ═════════════════════════════════════════════════════════════════════
# 5. Generic update
# ═════════════════════════════════════════════════════════════════════


class TestGenericUpdate:

    async def test_status_approved_runs_approval_side_effects(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        lr = await _submit(db, org, date(2025, 5, 5), date(2025, 5, 7))

        await LeaveService.update(
            db, lr.id, org.actor(org.manager),
            LeaveRequestUpdate(status=LeaveStatus.approved, approver_comments="ok"),
        )

        assert lr.status == LeaveStatus.approved
        assert await _used(db, org) == Decimal("3")
        assert len(await _rows(db, org, date(2025, 5, 5), date(2025, 5, 7))) == 3

    async def test_status_rejected_after_approval_reverses(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        lr = await _submit(db, org, date(2025, 5, 5), date(2025, 5, 7))
        await LeaveService.approve(db, lr.id, org.actor(org.manager))

        await LeaveService.update(
            db, lr.id, org.actor(org.manager),
            LeaveRequestUpdate(status=LeaveStatus.rejected, approver_comments="Cover fell through"),
        )

        assert lr.status == LeaveStatus.rejected
        assert await _used(db, org) == Decimal("0")
        assert await _rows(db, org, date(2025, 5, 5), date(2025, 5, 7)) == []

    async def test_same_status_update_is_noop(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        lr = await _submit(db, org, date(2025, 5, 5), date(2025, 5, 5))
        await LeaveService.approve(db, lr.id, org.actor(org.manager))

        # Same status: nothing to do, no second debit.
        await LeaveService.update(
            db, lr.id, org.actor(org.manager), LeaveRequestUpdate(status=LeaveStatus.approved),
        )

        assert await _used(db, org) == Decimal("1")

    async def test_back_to_open_refused(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 5, 5), date(2025, 5, 5))
        await LeaveService.reject(db, lr.id, org.actor(org.manager), "No")

        with pytest.raises(StateException):
            await LeaveService.update(
                db, lr.id, org.actor(org.manager), LeaveRequestUpdate(status=LeaveStatus.open),
            )

    async def test_status_change_needs_reviewer(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 5, 5), date(2025, 5, 5))

        with pytest.raises(ForbiddenException):
            await LeaveService.update(
                db, lr.id, org.actor(org.employee),
                LeaveRequestUpdate(status=LeaveStatus.approved),
            )

    def test_cancelled_not_accepted(self):
        with pytest.raises(ValidationError):
            LeaveRequestUpdate(status=LeaveStatus.cancelled)

    async def test_date_edit_while_open_revalidated(self, db):
        org = await _seed_org(db)
        await _seed_holiday(db, "Labour Day", date(2025, 5, 1))
        lr = await _submit(db, org, date(2025, 5, 5), date(2025, 5, 6))

        with pytest.raises(ConflictException):
            await LeaveService.update(
                db, lr.id, org.actor(org.employee),
                LeaveRequestUpdate(from_date=date(2025, 5, 1)),
            )

        await LeaveService.update(
            db, lr.id, org.actor(org.employee),
            LeaveRequestUpdate(from_date=date(2025, 5, 2), half_day=True),
        )
        assert lr.from_date == date(2025, 5, 2)
        assert lr.half_day is True

    async def test_edited_range_is_what_gets_charged(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        lr = await _submit(db, org, date(2025, 5, 5), date(2025, 5, 6))
        await LeaveService.update(
            db, lr.id, org.actor(org.employee), LeaveRequestUpdate(to_date=date(2025, 5, 9)),
        )

        await LeaveService.approve(db, lr.id, org.actor(org.manager))

        assert await _used(db, org) == Decimal("5")

    @pytest.mark.parametrize("field, value", [
        ("to_date", date(2026, 6, 1)),
        ("from_date", date(2024, 4, 1)),
    ])
    async def test_single_date_edit_respects_max_span(self, db, field, value):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 5, 5), date(2025, 5, 6))

        with pytest.raises(ValidationException) as exc_info:
            await LeaveService.update(
                db, lr.id, org.actor(org.employee), LeaveRequestUpdate(**{field: value}),
            )

        assert "cannot span more than 365 days" in exc_info.value.errors["from_date"][0]
        lr = await LeaveService._get_request(db, lr.id)
        assert (lr.from_date, lr.to_date) == (date(2025, 5, 5), date(2025, 5, 6))

    async def test_single_date_edit_past_other_end_refused(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 5, 5), date(2025, 5, 6))

        with pytest.raises(ValidationException):
            await LeaveService.update(
                db, lr.id, org.actor(org.employee),
                LeaveRequestUpdate(from_date=date(2025, 5, 8)),
            )

    async def test_range_edit_into_another_request_refused(self, db):
        org = await _seed_org(db)
        other = await _submit(db, org, date(2025, 5, 12), date(2025, 5, 13))
        lr = await _submit(db, org, date(2025, 5, 5), date(2025, 5, 6))

        with pytest.raises(ConflictException) as exc_info:
            await LeaveService.update(
                db, lr.id, org.actor(org.employee),
                LeaveRequestUpdate(to_date=date(2025, 5, 12)),
            )

        assert exc_info.value.errors == {"overlapping": [str(other.id)]}

    async def test_date_edit_after_approval_refused(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 5, 5), date(2025, 5, 6))
        await LeaveService.approve(db, lr.id, org.actor(org.manager))

        with pytest.raises(StateException):
            await LeaveService.update(
                db, lr.id, org.actor(org.employee),
                LeaveRequestUpdate(to_date=date(2025, 5, 9)),
            )

    async def test_others_cannot_edit_fields(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 5, 5), date(2025, 5, 6))

        with pytest.raises(ForbiddenException):
            await LeaveService.update(
                db, lr.id, org.actor(org.manager), LeaveRequestUpdate(reason="edited"),
            )


# ═════════════════════════════════════════════════════════════════════
# 6. Atomicity and best-effort notifications
# ═════════════════════════════════════════════════════════════════════


class TestAtomicity:

    async def test_attendance_failure_rolls_back_debit(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id, used=Decimal("2"))
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 12))

        with patch.object(
            AttendanceService, "upsert_on_leave",
            new=AsyncMock(side_effect=RuntimeError("disk full")),
        ):
            with pytest.raises(RuntimeError):
                await LeaveService.approve(db, lr.id, org.actor(org.manager))

        assert await _used(db, org) == Decimal("2")
        lr = await LeaveService._get_request(db, lr.id)
        assert lr.status == LeaveStatus.open
        assert await _rows(db, org, date(2025, 3, 10), date(2025, 3, 12)) == []

    async def test_reversal_failure_keeps_approval_intact(self, db):
        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 11))
        await LeaveService.approve(db, lr.id, org.actor(org.manager))

        with patch.object(
            AttendanceService, "delete_on_leave",
            new=AsyncMock(side_effect=RuntimeError("lock timeout")),
        ):
            with pytest.raises(RuntimeError):
                await LeaveService.reject(db, lr.id, org.actor(org.manager), "No")

        assert await _used(db, org) == Decimal("2")
        lr = await LeaveService._get_request(db, lr.id)
        assert lr.status == LeaveStatus.approved
        assert len(await _rows(db, org, date(2025, 3, 10), date(2025, 3, 11))) == 2

    async def test_notification_failure_does_not_undo_approval(self, db, caplog):
        from leave_engine.notifications.service import NotificationService

        org = await _seed_org(db)
        await _seed_ledger(db, org.employee.id, org.leave_type.id)
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 10))

        with patch.object(
            NotificationService, "create_notification",
            new=AsyncMock(side_effect=RuntimeError("smtp down")),
        ):
            with caplog.at_level(logging.ERROR, logger="leave_engine.notifications.service"):
                await LeaveService.approve(db, lr.id, org.actor(org.manager))

        assert lr.status == LeaveStatus.approved
        assert await _used(db, org) == Decimal("1")
        assert any("could not be delivered" in r.message for r in caplog.records)

    def test_transition_read_locks_the_row(self):
        query = LeaveService._request_query(uuid.uuid4(), lock=True)
        assert "FOR UPDATE" in str(query.compile(dialect=postgresql.dialect()))

    def test_plain_read_does_not_lock(self):
        query = LeaveService._request_query(uuid.uuid4())
        assert "FOR UPDATE" not in str(query.compile(dialect=postgresql.dialect()))

    @pytest.mark.parametrize("action", ["approve", "reject", "cancel", "update"])
    async def test_every_transition_locks_the_request(self, db, action):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 10))
        calls = {
            "approve": lambda: LeaveService.approve(db, lr.id, org.actor(org.manager)),
            "reject": lambda: LeaveService.reject(db, lr.id, org.actor(org.manager), "No"),
            "cancel": lambda: LeaveService.cancel(db, lr.id, org.actor(org.employee)),
            "update": lambda: LeaveService.update(
                db, lr.id, org.actor(org.employee), LeaveRequestUpdate(reason="edited"),
            ),
        }

        original = LeaveService._request_query
        with patch.object(LeaveService, "_request_query", side_effect=original) as query:
            await calls[action]()

        assert query.call_args.kwargs == {"lock": True}

    async def test_transitions_audited(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 10))
        await LeaveService.approve(db, lr.id, org.actor(org.manager))
        await LeaveService.reject(db, lr.id, org.actor(org.manager), "No")

        entries = (await db.execute(
            select(AuditTrail)
            .where(AuditTrail.entity_id == lr.id)
            .order_by(AuditTrail.created_at)
        )).scalars().all()
        assert sorted(e.action for e in entries) == ["approve", "reject", "submit"]


# ═════════════════════════════════════════════════════════════════════
# 7. Queries and visibility
# ═════════════════════════════════════════════════════════════════════


class TestQueries:

    async def test_employee_sees_only_own(self, db):
        org = await _seed_org(db)
        await _submit(db, org, date(2025, 3, 10), date(2025, 3, 10))
        await LeaveService.submit(
            db, org.manager.id, _create(org, date(2025, 3, 11), date(2025, 3, 11)),
        )

        rows, meta = await LeaveService.list_requests(
            db, org.actor(org.employee), PaginationParams(page=1, page_size=50),
        )

        assert meta.total == 1
        assert rows[0].employee_id == org.employee.id

    async def test_admin_sees_all_filtered_by_status(self, db):
        org = await _seed_org(db)
        first = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 10))
        await _submit(db, org, date(2025, 3, 11), date(2025, 3, 11))
        await LeaveService.reject(db, first.id, org.actor(org.manager), "No")

        rows, meta = await LeaveService.list_requests(
            db, org.actor(org.admin), PaginationParams(page=1, page_size=50),
            status=LeaveStatus.open,
        )

        assert meta.total == 1
        assert rows[0].from_date == date(2025, 3, 11)

    async def test_pending_approvals_for_manager(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 10))
        await LeaveService.submit(
            db, org.manager.id, _create(org, date(2025, 3, 11), date(2025, 3, 11)),
        )

        pending = await LeaveService.get_pending_approvals(db, org.actor(org.manager))

        assert [p.id for p in pending] == [lr.id]

    async def test_pending_approvals_only_what_manager_may_review(self, db):
        """A department peer's request routed to the admin stays out of the queue."""
        org = await _seed_org(db)
        peer = await _seed_employee(
            db, first_name="Pia", department_id=org.dept.id, role_id=org.manager.role_id,
        )
        routed = await LeaveService.submit(
            db, peer.id, _create(org, date(2025, 3, 10), date(2025, 3, 10)),
        )
        assert routed.approver_id == org.admin.id

        pending = await LeaveService.get_pending_approvals(db, org.actor(org.manager))

        assert routed.id not in [p.id for p in pending]
        with pytest.raises(ForbiddenException):
            await LeaveService.approve(db, routed.id, org.actor(org.manager))
        admin_queue = await LeaveService.get_pending_approvals(db, org.actor(org.admin))
        assert routed.id in [p.id for p in admin_queue]

    async def test_pending_approvals_for_admin_include_unassigned(self, db):
        org = await _seed_org(db)
        loner = await _seed_employee(db, first_name="Solo")
        lr = await LeaveService.submit(
            db, loner.id, _create(org, date(2025, 3, 10), date(2025, 3, 10)),
        )

        pending = await LeaveService.get_pending_approvals(db, org.actor(org.admin))

        assert lr.id in [p.id for p in pending]

    async def test_get_request_visibility(self, db):
        org = await _seed_org(db)
        lr = await _submit(db, org, date(2025, 3, 10), date(2025, 3, 10))
        outsider = await _seed_employee(db, first_name="Otto")

        assert (await LeaveService.get_request(db, lr.id, org.actor(org.manager))).id == lr.id
        assert (await LeaveService.get_request(db, lr.id, as_actor(outsider, AccessLevel.hr))).id == lr.id
        with pytest.raises(ForbiddenException):
            await LeaveService.get_request(db, lr.id, as_actor(outsider))

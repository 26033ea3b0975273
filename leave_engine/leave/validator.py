"""Conflict checks for a proposed leave range.

Checks run in a fixed order and stop at the first failure:

1. Another open or approved request of the employee sharing a day.
2. Present attendance already recorded inside the range.
3. Company holidays inside the range.
4. Remaining quota for the leave year.

A failure raises ConflictException carrying the offending dates or
amounts; the caller fixes its input and retries.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.attendance.service import AttendanceService, HolidayCalendar
from leave_engine.common.constants import AttendanceStatus, LeaveStatus
from leave_engine.common.dates import requested_days
from leave_engine.common.exceptions import ConflictException
from leave_engine.leave.ledger import QuotaLedger
from leave_engine.leave.models import LeaveRequest


def _fmt_days(value: Decimal) -> str:
    return f"{value.normalize():f}"


class ConflictValidator:

    @staticmethod
    async def present_dates(
        db: AsyncSession,
        employee_id: uuid.UUID,
        from_date: date,
        to_date: date,
    ) -> list[date]:
        records = await AttendanceService.get_range(
            db, employee_id, from_date, to_date, status=AttendanceStatus.present,
        )
        return [r.date for r in records]

    @staticmethod
    async def check_present(
        db: AsyncSession,
        employee_id: uuid.UUID,
        from_date: date,
        to_date: date,
        *,
        action: str = "apply for",
    ) -> None:
        dates = await ConflictValidator.present_dates(db, employee_id, from_date, to_date)
        if dates:
            listed = ", ".join(d.isoformat() for d in dates)
            raise ConflictException(
                detail=(
                    f"Cannot {action} leave. Attendance is already marked as Present "
                    f"for the following dates: {listed}. "
                    "Please remove those attendance records first."
                ),
                errors={"dates": [d.isoformat() for d in dates]},
            )

    @staticmethod
    async def overlapping_requests(
        db: AsyncSession,
        employee_id: uuid.UUID,
        from_date: date,
        to_date: date,
        *,
        exclude_request_id: Optional[uuid.UUID] = None,
    ) -> list[LeaveRequest]:
        """Open or approved requests of the employee sharing a day with the range."""
        query = (
            select(LeaveRequest)
            .where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status.in_([LeaveStatus.open, LeaveStatus.approved]),
                LeaveRequest.from_date <= to_date,
                LeaveRequest.to_date >= from_date,
            )
            .order_by(LeaveRequest.from_date)
        )
        if exclude_request_id is not None:
            query = query.where(LeaveRequest.id != exclude_request_id)
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def check_overlap(
        db: AsyncSession,
        employee_id: uuid.UUID,
        from_date: date,
        to_date: date,
        *,
        exclude_request_id: Optional[uuid.UUID] = None,
        action: str = "apply for",
    ) -> None:
        others = await ConflictValidator.overlapping_requests(
            db, employee_id, from_date, to_date, exclude_request_id=exclude_request_id,
        )
        if others:
            listed = ", ".join(
                f"{r.from_date.isoformat()}..{r.to_date.isoformat()} ({r.status.value})"
                for r in others
            )
            raise ConflictException(
                detail=(
                    f"Cannot {action} leave. You already have a pending or approved "
                    f"leave request overlapping with these dates: {listed}."
                ),
                errors={"overlapping": [str(r.id) for r in others]},
            )

    @staticmethod
    async def check_holidays(
        db: AsyncSession,
        from_date: date,
        to_date: date,
    ) -> None:
        hits = await HolidayCalendar.dates_in_range(db, from_date, to_date)
        if hits:
            listed = ", ".join(f"{d.isoformat()} ({name})" for d, name in hits)
            raise ConflictException(
                detail=(
                    "Cannot apply for leave on holidays. "
                    f"The following dates are holidays: {listed}. "
                    "Please select different dates."
                ),
                errors={
                    "dates": [d.isoformat() for d, _ in hits],
                    "holidays": [f"{d.isoformat()} ({name})" for d, name in hits],
                },
            )

    @staticmethod
    async def check_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        requested: Decimal,
    ) -> None:
        available = await QuotaLedger.available(db, employee_id, leave_type_id, year)
        if available is None:
            return
        if requested > available:
            raise ConflictException(
                detail=(
                    f"Insufficient leave balance. You have {_fmt_days(available)} "
                    f"days available but requested {_fmt_days(requested)} days."
                ),
                errors={
                    "balance": {
                        "available": _fmt_days(available),
                        "requested": _fmt_days(requested),
                    },
                },
            )

    @staticmethod
    async def validate(
        db: AsyncSession,
        *,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        from_date: date,
        to_date: date,
        half_day: bool,
        exclude_request_id: Optional[uuid.UUID] = None,
    ) -> Decimal:
        """Run every check. Returns the requested day count on success.

        *exclude_request_id* is the request being edited, so it does not
        overlap with itself.
        """
        await ConflictValidator.check_overlap(
            db, employee_id, from_date, to_date, exclude_request_id=exclude_request_id,
        )
        await ConflictValidator.check_present(db, employee_id, from_date, to_date)
        await ConflictValidator.check_holidays(db, from_date, to_date)
        requested = requested_days(from_date, to_date, half_day)
        await ConflictValidator.check_balance(
            db, employee_id, leave_type_id, from_date.year, requested,
        )
        return requested

"""Attendance calendar and holiday lookups.

AttendanceService owns the one-row-per-employee-per-day calendar: human
check-in/out and manual entry, plus the two helpers the leave state machine
drives on approval (upsert On-Leave rows) and on reversal (delete exact
On-Leave rows). HolidayCalendar is a read-only range lookup.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.attendance.models import AttendanceRecord, Holiday
from leave_engine.attendance.schemas import (
    AttendanceManualCreate,
    AttendanceUpdate,
    OnLeaveSync,
)
from leave_engine.auth.schemas import Actor
from leave_engine.common.constants import (
    AccessLevel,
    AttendanceSource,
    AttendanceStatus,
    LeaveStatus,
)
from leave_engine.common.dates import iter_dates
from leave_engine.common.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from leave_engine.config import settings
from leave_engine.database import dialect_insert
from leave_engine.leave.models import LeaveRequest

logger = logging.getLogger(__name__)

# Rows per INSERT ... ON CONFLICT statement; keeps bound parameters well
# under SQLite's per-statement limit.
_UPSERT_BATCH = 50


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _duration_hours(check_in: datetime, check_out: datetime) -> Decimal:
    seconds = (_as_utc(check_out) - _as_utc(check_in)).total_seconds()
    return (Decimal(seconds) / Decimal(3600)).quantize(Decimal("0.01"))


# ═════════════════════════════════════════════════════════════════════
# Holiday calendar (read-only)
# ═════════════════════════════════════════════════════════════════════


class HolidayCalendar:

    @staticmethod
    async def find_overlapping(
        db: AsyncSession,
        from_date: date,
        to_date: date,
    ) -> list[Holiday]:
        """Holidays whose range intersects [from_date, to_date]."""
        result = await db.execute(
            select(Holiday)
            .where(Holiday.from_date <= to_date, Holiday.to_date >= from_date)
            .order_by(Holiday.from_date, Holiday.name)
        )
        return list(result.scalars().all())

    @staticmethod
    async def dates_in_range(
        db: AsyncSession,
        from_date: date,
        to_date: date,
    ) -> list[tuple[date, str]]:
        """Each date in the range that is a holiday, with the holiday's name."""
        holidays = await HolidayCalendar.find_overlapping(db, from_date, to_date)
        hits: list[tuple[date, str]] = []
        for day in iter_dates(from_date, to_date):
            for holiday in holidays:
                if holiday.from_date <= day <= holiday.to_date:
                    hits.append((day, holiday.name))
                    break
        return hits

    @staticmethod
    async def list_holidays(db: AsyncSession, year: Optional[int] = None) -> list[Holiday]:
        query = select(Holiday).order_by(Holiday.from_date)
        if year is not None:
            query = query.where(
                Holiday.from_date <= date(year, 12, 31),
                Holiday.to_date >= date(year, 1, 1),
            )
        return list((await db.execute(query)).scalars().all())


# ═════════════════════════════════════════════════════════════════════
# Attendance calendar
# ═════════════════════════════════════════════════════════════════════


class AttendanceService:
    """Async attendance calendar operations."""

    # ── Lookups ─────────────────────────────────────────────────────

    @staticmethod
    async def get_day(
        db: AsyncSession,
        employee_id: uuid.UUID,
        day: date,
    ) -> Optional[AttendanceRecord]:
        result = await db.execute(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.date == day,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_range(
        db: AsyncSession,
        employee_id: uuid.UUID,
        from_date: date,
        to_date: date,
        *,
        status: Optional[AttendanceStatus] = None,
    ) -> list[AttendanceRecord]:
        if from_date > to_date:
            raise ValidationException({"from_date": ["from_date must be <= to_date."]})
        query = (
            select(AttendanceRecord)
            .where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.date >= from_date,
                AttendanceRecord.date <= to_date,
            )
            .order_by(AttendanceRecord.date)
            .execution_options(populate_existing=True)
        )
        if status is not None:
            query = query.where(AttendanceRecord.status == status)
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def approved_leave_on(
        db: AsyncSession,
        employee_id: uuid.UUID,
        day: date,
    ) -> Optional[LeaveRequest]:
        """The approved leave covering *day*, if any."""
        result = await db.execute(
            select(LeaveRequest).where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status == LeaveStatus.approved,
                LeaveRequest.from_date <= day,
                LeaveRequest.to_date >= day,
            )
        )
        return result.scalars().first()

    # ── Human entry ─────────────────────────────────────────────────

    @staticmethod
    async def check_in(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        now: Optional[datetime] = None,
    ) -> AttendanceRecord:
        now = now or datetime.now(timezone.utc)
        today = now.date()

        if await AttendanceService.approved_leave_on(db, employee_id, today):
            raise ConflictException(
                detail="Cannot check in. You have an approved leave for today.",
                errors={"dates": [today.isoformat()]},
            )
        if await AttendanceService.get_day(db, employee_id, today):
            raise ConflictException(
                detail="Attendance already marked for today.",
                errors={"dates": [today.isoformat()]},
            )

        record = AttendanceRecord(
            employee_id=employee_id,
            date=today,
            status=AttendanceStatus.present,
            check_in=now,
            source=AttendanceSource.system,
        )
        db.add(record)
        await db.flush()
        logger.info("Employee %s checked in on %s", employee_id, today)
        return record

    @staticmethod
    async def check_out(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        now: Optional[datetime] = None,
    ) -> AttendanceRecord:
        now = now or datetime.now(timezone.utc)
        record = await AttendanceService.get_day(db, employee_id, now.date())
        if record is None or record.check_in is None:
            raise ValidationException({"check_out": ["You have not checked in today."]})
        if record.check_out is not None:
            raise ValidationException({"check_out": ["You have already checked out today."]})

        record.check_out = now
        record.total_duration = _duration_hours(record.check_in, now)
        await db.flush()
        return record

    @staticmethod
    async def create_manual(
        db: AsyncSession,
        actor: Actor,
        data: AttendanceManualCreate,
    ) -> AttendanceRecord:
        employee_id = data.employee_id or actor.id
        if employee_id != actor.id and actor.access_level not in (
            AccessLevel.admin, AccessLevel.hr,
        ):
            raise ForbiddenException("Only HR or Admin can mark attendance for others.")

        if await AttendanceService.get_day(db, employee_id, data.date):
            raise ConflictException(
                detail=f"Attendance for {data.date.isoformat()} already exists.",
                errors={"dates": [data.date.isoformat()]},
            )
        if data.status != AttendanceStatus.on_leave and await AttendanceService.approved_leave_on(
            db, employee_id, data.date,
        ):
            raise ConflictException(
                detail=(
                    f"Cannot mark attendance on {data.date.isoformat()}: "
                    "an approved leave covers this date."
                ),
                errors={"dates": [data.date.isoformat()]},
            )

        record = AttendanceRecord(
            employee_id=employee_id,
            date=data.date,
            status=data.status,
            check_in=data.check_in,
            check_out=data.check_out,
            total_duration=(
                _duration_hours(data.check_in, data.check_out)
                if data.check_in and data.check_out else None
            ),
            source=AttendanceSource.manual,
            remarks=data.remarks,
        )
        db.add(record)
        await db.flush()
        return record

    @staticmethod
    async def update_record(
        db: AsyncSession,
        record_id: uuid.UUID,
        data: AttendanceUpdate,
    ) -> AttendanceRecord:
        record = await db.get(AttendanceRecord, record_id)
        if record is None:
            raise NotFoundException("AttendanceRecord", record_id)

        changes = data.model_dump(exclude_unset=True)
        for field, value in changes.items():
            setattr(record, field, value)
        if "status" in changes and record.source == AttendanceSource.leave:
            # No longer the engine's row; a later reversal must leave it alone.
            record.source = AttendanceSource.manual
        if record.check_in and record.check_out:
            record.total_duration = _duration_hours(record.check_in, record.check_out)
        await db.flush()
        return record

    # ── Leave sync ──────────────────────────────────────────────────

    @staticmethod
    async def upsert_on_leave(
        db: AsyncSession,
        *,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        leave_request_id: uuid.UUID,
        from_date: date,
        to_date: date,
        half_day: bool,
    ) -> OnLeaveSync:
        """Mark every day in the range On-Leave.

        Missing days are inserted; existing days with any other status
        (Present included) are overwritten; days already On-Leave are kept.
        Each batch is one atomic INSERT ... ON CONFLICT DO UPDATE.
        """
        hours = Decimal(str(
            settings.LEAVE_HALF_DAY_HOURS if half_day else settings.LEAVE_FULL_DAY_HOURS
        ))
        before = {
            r.date: r.status
            for r in await AttendanceService.get_range(db, employee_id, from_date, to_date)
        }

        now = datetime.now(timezone.utc)
        insert = dialect_insert(db)
        days = list(iter_dates(from_date, to_date))
        for start in range(0, len(days), _UPSERT_BATCH):
            stmt = insert(AttendanceRecord).values([
                {
                    "id": uuid.uuid4(),
                    "employee_id": employee_id,
                    "date": day,
                    "status": AttendanceStatus.on_leave,
                    "leave_type_id": leave_type_id,
                    "leave_request_id": leave_request_id,
                    "total_duration": hours,
                    "source": AttendanceSource.leave,
                    "created_at": now,
                    "updated_at": now,
                }
                for day in days[start:start + _UPSERT_BATCH]
            ])
            stmt = stmt.on_conflict_do_update(
                index_elements=["employee_id", "date"],
                set_={
                    "status": stmt.excluded.status,
                    "leave_type_id": stmt.excluded.leave_type_id,
                    "leave_request_id": stmt.excluded.leave_request_id,
                    "total_duration": stmt.excluded.total_duration,
                    "source": stmt.excluded.source,
                    "updated_at": now,
                },
                where=AttendanceRecord.status != AttendanceStatus.on_leave,
            )
            await db.execute(stmt)

        sync = OnLeaveSync(
            created=[d for d in days if d not in before],
            overwritten={
                d: s for d, s in before.items() if s != AttendanceStatus.on_leave
            },
            already_on_leave=[
                d for d, s in before.items() if s == AttendanceStatus.on_leave
            ],
        )
        if sync.overwritten:
            logger.info(
                "Leave %s overwrote attendance for employee %s: %s",
                leave_request_id, employee_id,
                {d.isoformat(): s.value for d, s in sync.overwritten.items()},
            )
        return sync

    @staticmethod
    async def delete_on_leave(
        db: AsyncSession,
        *,
        employee_id: uuid.UUID,
        leave_request_id: uuid.UUID,
        from_date: date,
        to_date: date,
    ) -> list[date]:
        """Delete the On-Leave records in the range written for *leave_request_id*.

        Rows a person changed to anything else stay, and so do On-Leave rows
        belonging to another request. Returns deleted dates.
        """
        on_leave = [
            r for r in await AttendanceService.get_range(
                db, employee_id, from_date, to_date, status=AttendanceStatus.on_leave,
            )
            if r.leave_request_id == leave_request_id
        ]
        if not on_leave:
            return []
        await db.execute(
            delete(AttendanceRecord)
            .where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.date >= from_date,
                AttendanceRecord.date <= to_date,
                AttendanceRecord.status == AttendanceStatus.on_leave,
                AttendanceRecord.leave_request_id == leave_request_id,
            )
            .execution_options(synchronize_session="fetch")
        )
        return [r.date for r in on_leave]

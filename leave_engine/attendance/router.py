"""Attendance router — check in/out, manual entries, calendar view, HR corrections.

All endpoints require authentication. Correcting an existing record is
HR/Admin only.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.attendance.schemas import (
    AttendanceListResponse,
    AttendanceManualCreate,
    AttendanceRecordOut,
    AttendanceUpdate,
)
from leave_engine.attendance.service import AttendanceService
from leave_engine.auth.dependencies import get_current_actor, require_access
from leave_engine.auth.schemas import Actor
from leave_engine.common.constants import AccessLevel, AttendanceStatus
from leave_engine.common.exceptions import ForbiddenException
from leave_engine.database import get_db

router = APIRouter(prefix="", tags=["attendance"])


# ── GET / — calendar range ──────────────────────────────────────────

@router.get("", response_model=AttendanceListResponse)
async def list_attendance(
    from_date: date = Query(...),
    to_date: date = Query(...),
    status: Optional[AttendanceStatus] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Attendance records for a date range, one per day at most."""
    target = employee_id or actor.id
    if target != actor.id and actor.access_level not in (
        AccessLevel.admin, AccessLevel.hr, AccessLevel.manager,
    ):
        raise ForbiddenException("You can only view your own attendance.")
    records = await AttendanceService.get_range(db, target, from_date, to_date, status=status)
    return AttendanceListResponse(
        data=[AttendanceRecordOut.model_validate(r) for r in records],
    )


# ── GET /today ──────────────────────────────────────────────────────

@router.get("/today", response_model=Optional[AttendanceRecordOut])
async def today(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await AttendanceService.get_day(db, actor.id, date.today())


# ── POST /check-in ──────────────────────────────────────────────────

@router.post("/check-in", response_model=AttendanceRecordOut, status_code=201)
async def check_in(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Mark the caller Present for today. Refused on an approved leave day."""
    return await AttendanceService.check_in(db, actor.id)


# ── POST /check-out ─────────────────────────────────────────────────

@router.post("/check-out", response_model=AttendanceRecordOut)
async def check_out(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await AttendanceService.check_out(db, actor.id)


# ── POST /manual ────────────────────────────────────────────────────

@router.post("/manual", response_model=AttendanceRecordOut, status_code=201)
async def create_manual(
    body: AttendanceManualCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Manual entry for a past or present day. HR/Admin may file for others."""
    return await AttendanceService.create_manual(db, actor, body)


# ── PATCH /{id} ─────────────────────────────────────────────────────

@router.patch("/{record_id}", response_model=AttendanceRecordOut)
async def correct_record(
    record_id: uuid.UUID,
    body: AttendanceUpdate,
    actor: Actor = Depends(require_access(AccessLevel.hr)),
    db: AsyncSession = Depends(get_db),
):
    """HR correction. Changing the status of a leave-owned day hands it over to HR."""
    return await AttendanceService.update_record(db, record_id, body)

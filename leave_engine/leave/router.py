"""Leave router — apply, review, cancel, balances, quota assignment, holidays.

All endpoints require authentication. Quota assignment is HR/Admin only;
reviewer checks for approve/reject live in the service, because they
depend on the request's assigned approver.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.attendance.schemas import HolidayOut
from leave_engine.attendance.service import HolidayCalendar
from leave_engine.auth.dependencies import get_current_actor, require_access
from leave_engine.auth.schemas import Actor
from leave_engine.common.constants import AccessLevel, LeaveStatus
from leave_engine.common.exceptions import ForbiddenException
from leave_engine.common.pagination import PaginationParams
from leave_engine.common.rate_limit import TRANSITION_LIMIT, limiter
from leave_engine.database import get_db
from leave_engine.leave.ledger import QuotaLedger
from leave_engine.leave.schemas import (
    LeaveApproveRequest,
    LeaveCancelRequest,
    LeaveLedgerOut,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestListResponse,
    LeaveRequestOut,
    LeaveRequestUpdate,
    LeaveTypeOut,
    QuotaAssign,
    QuotaAssignAll,
)
from leave_engine.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])


# ── POST /apply ─────────────────────────────────────────────────────

@router.post("/apply", response_model=LeaveRequestOut, status_code=201)
@limiter.limit(TRANSITION_LIMIT)
async def apply_leave(
    request: Request,
    body: LeaveRequestCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Apply for leave. Checks Present attendance, holidays and balance."""
    return await LeaveService.submit(db, actor.id, body)


# ── GET /requests ───────────────────────────────────────────────────

@router.get("/requests", response_model=LeaveRequestListResponse)
async def list_requests(
    status: Optional[LeaveStatus] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Leave requests visible to the caller, newest first."""
    rows, meta = await LeaveService.list_requests(
        db, actor, pagination, status=status, employee_id=employee_id,
    )
    return LeaveRequestListResponse(
        data=[LeaveRequestOut.model_validate(r) for r in rows],
        meta=meta,
    )


# ── GET /approvals ──────────────────────────────────────────────────

@router.get("/approvals", response_model=list[LeaveRequestOut])
async def pending_approvals(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Open requests waiting on the caller."""
    return await LeaveService.get_pending_approvals(db, actor)


# ── GET/PUT /requests/{id} ──────────────────────────────────────────

@router.get("/requests/{request_id}", response_model=LeaveRequestOut)
async def get_request(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_request(db, request_id, actor)


@router.put("/requests/{request_id}", response_model=LeaveRequestOut)
@limiter.limit(TRANSITION_LIMIT)
async def update_request(
    request: Request,
    request_id: uuid.UUID,
    body: LeaveRequestUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Generic edit. A status change runs the approve/reject side effects."""
    return await LeaveService.update(db, request_id, actor, body)


# ── PUT /requests/{id}/approve ──────────────────────────────────────

@router.put("/requests/{request_id}/approve", response_model=LeaveRequestOut)
@limiter.limit(TRANSITION_LIMIT)
async def approve_leave(
    request: Request,
    request_id: uuid.UUID,
    body: LeaveApproveRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Approve a request. Debits the ledger and marks the range On-Leave."""
    return await LeaveService.approve(db, request_id, actor, comments=body.comments)


# ── PUT /requests/{id}/reject ───────────────────────────────────────

@router.put("/requests/{request_id}/reject", response_model=LeaveRequestOut)
@limiter.limit(TRANSITION_LIMIT)
async def reject_leave(
    request: Request,
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Reject a request. Rejecting an approved request reverses it."""
    return await LeaveService.reject(db, request_id, actor, body.comments)


# ── PUT /requests/{id}/cancel ───────────────────────────────────────

@router.put("/requests/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave(
    request_id: uuid.UUID,
    body: LeaveCancelRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.cancel(db, request_id, actor, reason=body.reason)


# ── GET /balances ───────────────────────────────────────────────────

@router.get("/balances", response_model=list[LeaveLedgerOut])
async def get_balances(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    employee_id: Optional[uuid.UUID] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Ledger rows for a year (defaults to the current year).

    HR/Admin may pass ``employee_id`` to look at someone else's balance.
    """
    target = actor.id
    if employee_id is not None and employee_id != actor.id:
        if actor.access_level not in (AccessLevel.admin, AccessLevel.hr):
            raise ForbiddenException("Only HR or Admin can view another employee's balance.")
        target = employee_id
    return await QuotaLedger.get_balances(db, target, year or date.today().year)


# ── GET /types ──────────────────────────────────────────────────────

@router.get("/types", response_model=list[LeaveTypeOut])
async def list_leave_types(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_leave_types(db)


# ── POST /quota/assign-all ──────────────────────────────────────────

@router.post("/quota/assign-all")
async def assign_quota_all(
    body: QuotaAssignAll,
    actor: Actor = Depends(require_access(AccessLevel.hr)),
    db: AsyncSession = Depends(get_db),
):
    """Set one leave type's yearly total for every active employee."""
    count = await QuotaLedger.assign_all(
        db, body.leave_type_id, body.year, body.total_leaves, actor_id=actor.id,
    )
    return {"message": "Leave quota assigned", "data": {"employees": count}}


# ── POST /quota/assign ──────────────────────────────────────────────

@router.post("/quota/assign", response_model=LeaveLedgerOut)
async def assign_quota(
    body: QuotaAssign,
    actor: Actor = Depends(require_access(AccessLevel.hr)),
    db: AsyncSession = Depends(get_db),
):
    return await QuotaLedger.assign(
        db, body.employee_id, body.leave_type_id, body.year, body.total_leaves,
        actor_id=actor.id,
    )


# ── GET /holidays ───────────────────────────────────────────────────

@router.get("/holidays", response_model=list[HolidayOut])
async def list_holidays(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await HolidayCalendar.list_holidays(db, year)

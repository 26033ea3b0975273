"""Leave service — the leave request state machine.

    open ──approve──▶ approved ──reject / cancel──▶ rejected / cancelled
      │                  ▲
      ├──reject──▶ rejected ──approve──┘
      └──cancel──▶ cancelled

Approval debits the quota ledger and marks the range On-Leave in the
attendance calendar, recording the amount charged on the request; leaving
``approved`` (reject or cancel) credits exactly that amount back and removes
the On-Leave rows that request wrote and nobody has changed since.
Each transition's side effects run inside one SAVEPOINT, so either all of
ledger, attendance and status change or none of them do.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Select, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.attendance.service import AttendanceService
from leave_engine.auth.schemas import Actor
from leave_engine.common.audit import create_audit_entry
from leave_engine.common.constants import AccessLevel, LeaveStatus
from leave_engine.common.dates import requested_days
from leave_engine.common.exceptions import (
    ForbiddenException,
    NotFoundException,
    StateException,
    ValidationException,
)
from leave_engine.common.pagination import PaginationMeta, PaginationParams, paginate
from leave_engine.core_hr.models import Employee
from leave_engine.core_hr.service import DirectoryService
from leave_engine.leave.approver import resolve_approver
from leave_engine.leave.ledger import LedgerMovement, QuotaLedger
from leave_engine.leave.models import LeaveRequest, LeaveType
from leave_engine.leave.schemas import LeaveRequestCreate, LeaveRequestUpdate, check_range
from leave_engine.leave.validator import ConflictValidator
from leave_engine.notifications.service import (
    notify_leave_approved,
    notify_leave_cancelled,
    notify_leave_rejected,
    notify_leave_request,
)

logger = logging.getLogger(__name__)

_FINAL = (LeaveStatus.cancelled,)


class LeaveService:
    """Async leave request operations."""

    # ═══════════════════════════════════════════════════════════════
    # Helpers
    # ═══════════════════════════════════════════════════════════════

    @staticmethod
    def _request_query(request_id: uuid.UUID, *, lock: bool = False) -> Select:
        query = (
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            # Serialises concurrent transitions on the same request.
            query = query.with_for_update()
        return query

    @staticmethod
    async def _get_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        lock: bool = False,
    ) -> LeaveRequest:
        result = await db.execute(LeaveService._request_query(request_id, lock=lock))
        leave_req = result.scalars().first()
        if leave_req is None:
            raise NotFoundException("LeaveRequest", request_id)
        return leave_req


    @staticmethod
    async def _get_leave_type(db: AsyncSession, leave_type_id: uuid.UUID) -> LeaveType:
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None or not leave_type.is_active:
            raise NotFoundException("LeaveType", leave_type_id)
        return leave_type

    @staticmethod
    def _require_reviewer(actor: Actor, leave_req: LeaveRequest) -> None:
        """Only the assigned approver or an admin may approve or reject."""
        if actor.is_admin or actor.id == leave_req.approver_id:
            return
        raise ForbiddenException(
            "Only the assigned approver or an administrator can review this leave request."
        )

    @staticmethod
    def _check_max_consecutive(leave_type: LeaveType, from_date: date, to_date: date) -> None:
        if leave_type.max_consecutive_days is None:
            return
        span = (to_date - from_date).days + 1
        if span > leave_type.max_consecutive_days:
            raise ValidationException({
                "to_date": [
                    f"{leave_type.name} allows at most "
                    f"{leave_type.max_consecutive_days} consecutive days."
                ],
            })

    @staticmethod
    def _snapshot(leave_req: LeaveRequest) -> dict[str, Any]:
        return {
            "status": leave_req.status,
            "leave_type_id": leave_req.leave_type_id,
            "from_date": leave_req.from_date,
            "to_date": leave_req.to_date,
            "half_day": leave_req.half_day,
            "approver_id": leave_req.approver_id,
        }

    @staticmethod
    def _days(leave_req: LeaveRequest) -> Decimal:
        return requested_days(leave_req.from_date, leave_req.to_date, leave_req.half_day)

    # ═══════════════════════════════════════════════════════════════
    # Submit
    # ═══════════════════════════════════════════════════════════════

    @staticmethod
    async def submit(
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: LeaveRequestCreate,
    ) -> LeaveRequest:
        """Validate and file a new leave request in ``open`` status.

        Nothing is written when the conflict checks fail.
        """
        await DirectoryService.get_employee(db, employee_id)
        leave_type = await LeaveService._get_leave_type(db, data.leave_type_id)
        LeaveService._check_max_consecutive(leave_type, data.from_date, data.to_date)

        directory = await DirectoryService.load_snapshot(db)
        approver_id = resolve_approver(employee_id, directory)

        days = await ConflictValidator.validate(
            db,
            employee_id=employee_id,
            leave_type_id=data.leave_type_id,
            from_date=data.from_date,
            to_date=data.to_date,
            half_day=data.half_day,
        )

        leave_req = LeaveRequest(
            employee_id=employee_id,
            leave_type_id=data.leave_type_id,
            from_date=data.from_date,
            to_date=data.to_date,
            half_day=data.half_day,
            reason=data.reason,
            status=LeaveStatus.open,
            approver_id=approver_id,
        )
        db.add(leave_req)
        await db.flush()

        await create_audit_entry(
            db,
            action="submit",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=employee_id,
            new_values={**LeaveService._snapshot(leave_req), "days": days},
        )
        logger.info(
            "Leave %s submitted by %s: %s..%s (%s days), approver=%s",
            leave_req.id, employee_id, data.from_date, data.to_date, days, approver_id,
        )

        if approver_id is not None:
            await notify_leave_request(db, leave_req, approver_id)
        else:
            logger.warning("Leave %s has no resolvable approver; waiting for an admin", leave_req.id)
        return leave_req

    # ═══════════════════════════════════════════════════════════════
    # Approve
    # ═══════════════════════════════════════════════════════════════

    @staticmethod
    async def approve(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Actor,
        comments: Optional[str] = None,
    ) -> LeaveRequest:
        leave_req = await LeaveService._get_request(db, request_id, lock=True)
        LeaveService._check_can_approve(leave_req)
        LeaveService._require_reviewer(actor, leave_req)

        await LeaveService._apply_approval(db, leave_req, actor, comments, action="approve")
        await notify_leave_approved(db, leave_req)
        return leave_req

    @staticmethod
    def _check_can_approve(leave_req: LeaveRequest) -> None:
        if leave_req.status == LeaveStatus.approved:
            raise StateException("Leave is already approved.", leave_req.status.value)
        if leave_req.status in _FINAL:
            raise StateException(
                f"A {leave_req.status.value} leave request cannot be approved.",
                leave_req.status.value,
            )

    @staticmethod
    async def _apply_approval(
        db: AsyncSession,
        leave_req: LeaveRequest,
        actor: Actor,
        comments: Optional[str],
        *,
        action: str,
    ) -> None:
        # Another request may have been approved over a rejected one.
        await ConflictValidator.check_overlap(
            db, leave_req.employee_id, leave_req.from_date, leave_req.to_date,
            exclude_request_id=leave_req.id, action="approve",
        )
        # Present may have been marked since submission.
        await ConflictValidator.check_present(
            db, leave_req.employee_id, leave_req.from_date, leave_req.to_date,
            action="approve",
        )

        prior = leave_req.status
        days = LeaveService._days(leave_req)
        async with db.begin_nested():
            movement = await QuotaLedger.debit(
                db, leave_req.employee_id, leave_req.leave_type_id,
                leave_req.leave_year, days,
            )
            sync = await AttendanceService.upsert_on_leave(
                db,
                employee_id=leave_req.employee_id,
                leave_type_id=leave_req.leave_type_id,
                leave_request_id=leave_req.id,
                from_date=leave_req.from_date,
                to_date=leave_req.to_date,
                half_day=leave_req.half_day,
            )

            now = datetime.now(timezone.utc)
            leave_req.status = LeaveStatus.approved
            leave_req.approved_at = now
            leave_req.charged_days = movement.delta if movement else None
            leave_req.reviewed_by = actor.id
            leave_req.reviewed_at = now
            if comments is not None:
                leave_req.approver_comments = comments
            await db.flush()

            await create_audit_entry(
                db,
                action=action,
                entity_type="leave_request",
                entity_id=leave_req.id,
                actor_id=actor.id,
                old_values={"status": prior},
                new_values={
                    "status": LeaveStatus.approved,
                    "days": days,
                    "ledger": movement.model_dump() if movement else None,
                    "attendance_created": sync.created,
                    "attendance_overwritten": {
                        d.isoformat(): s for d, s in sync.overwritten.items()
                    },
                },
            )

        logger.info(
            "Leave %s approved by %s (%s -> approved, %s days)",
            leave_req.id, actor.id, prior.value, days,
        )

    # ═══════════════════════════════════════════════════════════════
    # Reject / cancel
    # ═══════════════════════════════════════════════════════════════

    @staticmethod
    async def reject(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Actor,
        comments: Optional[str],
    ) -> LeaveRequest:
        """Reject an open request, or reverse an approved one."""
        leave_req = await LeaveService._get_request(db, request_id, lock=True)
        comments = LeaveService._require_comments(leave_req, comments)
        if leave_req.status == LeaveStatus.rejected or leave_req.status in _FINAL:
            raise StateException(
                f"Leave is already {leave_req.status.value}.", leave_req.status.value,
            )
        LeaveService._require_reviewer(actor, leave_req)

        await LeaveService._apply_rejection(db, leave_req, actor, comments, action="reject")
        await notify_leave_rejected(db, leave_req)
        return leave_req

    @staticmethod
    def _require_comments(leave_req: LeaveRequest, comments: Optional[str]) -> str:
        if comments is None or not comments.strip():
            raise StateException(
                "Comments are required to reject a leave request.",
                leave_req.status.value,
            )
        return comments.strip()

    @staticmethod
    async def _reverse_approval(
        db: AsyncSession,
        leave_req: LeaveRequest,
    ) -> tuple[Optional[LedgerMovement], list[date]]:
        """Credit back what the approval charged and drop its untouched On-Leave rows.

        Only ``charged_days`` is credited: nothing when the approval found no
        ledger row, even if a quota was assigned since. Must run inside the
        caller's SAVEPOINT.
        """
        movement = None
        if leave_req.charged_days is not None:
            movement = await QuotaLedger.credit(
                db, leave_req.employee_id, leave_req.leave_type_id,
                leave_req.leave_year, leave_req.charged_days,
            )
        else:
            logger.info(
                "Leave %s was approved without a ledger charge; nothing to credit",
                leave_req.id,
            )
        leave_req.charged_days = None
        removed = await AttendanceService.delete_on_leave(
            db,
            employee_id=leave_req.employee_id,
            leave_request_id=leave_req.id,
            from_date=leave_req.from_date,
            to_date=leave_req.to_date,
        )
        return movement, removed


    @staticmethod
    async def _apply_rejection(
        db: AsyncSession,
        leave_req: LeaveRequest,
        actor: Actor,
        comments: str,
        *,
        action: str,
    ) -> None:
        prior = leave_req.status
        async with db.begin_nested():
            movement, removed = None, []
            if prior == LeaveStatus.approved:
                movement, removed = await LeaveService._reverse_approval(db, leave_req)

            now = datetime.now(timezone.utc)
            leave_req.status = LeaveStatus.rejected
            leave_req.approver_comments = comments
            leave_req.reviewed_by = actor.id
            leave_req.reviewed_at = now
            await db.flush()

            await create_audit_entry(
                db,
                action=action,
                entity_type="leave_request",
                entity_id=leave_req.id,
                actor_id=actor.id,
                old_values={"status": prior},
                new_values={
                    "status": LeaveStatus.rejected,
                    "comments": comments,
                    "ledger": movement.model_dump() if movement else None,
                    "attendance_removed": removed,
                },
            )

        logger.info(
            "Leave %s rejected by %s (%s -> rejected%s)",
            leave_req.id, actor.id, prior.value,
            ", reversed" if prior == LeaveStatus.approved else "",
        )

    @staticmethod
    async def cancel(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> LeaveRequest:
        """Applicant withdraws an open or approved request."""
        leave_req = await LeaveService._get_request(db, request_id, lock=True)
        if leave_req.employee_id != actor.id:
            raise ForbiddenException("Only the applicant can cancel a leave request.")
        if leave_req.status not in (LeaveStatus.open, LeaveStatus.approved):
            raise StateException(
                f"A {leave_req.status.value} leave request cannot be cancelled.",
                leave_req.status.value,
            )

        prior = leave_req.status
        async with db.begin_nested():
            movement, removed = None, []
            if prior == LeaveStatus.approved:
                movement, removed = await LeaveService._reverse_approval(db, leave_req)

            leave_req.status = LeaveStatus.cancelled
            leave_req.cancelled_at = datetime.now(timezone.utc)
            await db.flush()

            await create_audit_entry(
                db,
                action="cancel",
                entity_type="leave_request",
                entity_id=leave_req.id,
                actor_id=actor.id,
                old_values={"status": prior},
                new_values={
                    "status": LeaveStatus.cancelled,
                    "reason": reason,
                    "ledger": movement.model_dump() if movement else None,
                    "attendance_removed": removed,
                },
            )

        logger.info("Leave %s cancelled by applicant (%s -> cancelled)", leave_req.id, prior.value)
        if leave_req.approver_id is not None:
            await notify_leave_cancelled(db, leave_req, leave_req.approver_id)
        return leave_req

    # ═══════════════════════════════════════════════════════════════
    # Generic update
    # ═══════════════════════════════════════════════════════════════

    @staticmethod
    async def update(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Actor,
        data: LeaveRequestUpdate,
    ) -> LeaveRequest:
        """Edit fields and/or status directly.

        A status change here goes through the same approval / reversal
        paths as the dedicated actions, so the ledger cannot drift. Date,
        type and half-day edits are only allowed while the request is open
        and are re-validated.
        """
        leave_req = await LeaveService._get_request(db, request_id, lock=True)
        prior = leave_req.status
        changes = data.model_dump(exclude_unset=True)
        new_status: Optional[LeaveStatus] = changes.pop("status", None)
        comments: Optional[str] = changes.pop("approver_comments", None)

        if changes:
            await LeaveService._apply_field_edits(db, leave_req, actor, data, changes)

        if new_status is not None and new_status != prior:
            LeaveService._require_reviewer(actor, leave_req)
            if new_status == LeaveStatus.approved:
                LeaveService._check_can_approve(leave_req)
                await LeaveService._apply_approval(db, leave_req, actor, comments, action="update")
                await notify_leave_approved(db, leave_req)
            elif new_status == LeaveStatus.rejected:
                comments = LeaveService._require_comments(leave_req, comments)
                if prior in _FINAL:
                    raise StateException(
                        f"A {prior.value} leave request cannot be rejected.", prior.value,
                    )
                await LeaveService._apply_rejection(db, leave_req, actor, comments, action="update")
                await notify_leave_rejected(db, leave_req)
            else:
                raise StateException(
                    f"Cannot move a {prior.value} leave request to {new_status.value}.",
                    prior.value,
                )
        elif comments is not None:
            LeaveService._require_reviewer(actor, leave_req)
            leave_req.approver_comments = comments
            await db.flush()

        return leave_req

    @staticmethod
    async def _apply_field_edits(
        db: AsyncSession,
        leave_req: LeaveRequest,
        actor: Actor,
        data: LeaveRequestUpdate,
        changes: dict[str, Any],
    ) -> None:
        if actor.id != leave_req.employee_id and not actor.is_admin:
            raise ForbiddenException("Only the applicant or an administrator can edit this request.")
        if leave_req.status != LeaveStatus.open:
            raise StateException(
                "Only open leave requests can be edited.", leave_req.status.value,
            )

        before = LeaveService._snapshot(leave_req)
        if data.touches_range:
            from_date = changes.get("from_date", leave_req.from_date)
            to_date = changes.get("to_date", leave_req.to_date)
            half_day = changes.get("half_day", leave_req.half_day)
            leave_type_id = changes.get("leave_type_id", leave_req.leave_type_id)
            try:
                check_range(from_date, to_date)
            except ValueError as exc:
                raise ValidationException({"from_date": [str(exc)]}) from exc
            leave_type = await LeaveService._get_leave_type(db, leave_type_id)
            LeaveService._check_max_consecutive(leave_type, from_date, to_date)
            await ConflictValidator.validate(
                db,
                employee_id=leave_req.employee_id,
                leave_type_id=leave_type_id,
                from_date=from_date,
                to_date=to_date,
                half_day=half_day,
                exclude_request_id=leave_req.id,
            )

        for field, value in changes.items():
            setattr(leave_req, field, value)
        await db.flush()

        await create_audit_entry(
            db,
            action="update",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=actor.id,
            old_values=before,
            new_values=LeaveService._snapshot(leave_req),
        )

    # ═══════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════

    @staticmethod
    async def get_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Actor,
    ) -> LeaveRequest:
        leave_req = await LeaveService._get_request(db, request_id)
        if actor.access_level in (AccessLevel.admin, AccessLevel.hr):
            return leave_req
        if actor.id in (leave_req.employee_id, leave_req.approver_id):
            return leave_req
        if actor.access_level == AccessLevel.manager and actor.department_id is not None:
            applicant = await db.get(Employee, leave_req.employee_id)
            if applicant is not None and applicant.department_id == actor.department_id:
                return leave_req
        raise ForbiddenException("You cannot view this leave request.")

    @staticmethod
    def _department_members(department_id: uuid.UUID):
        return select(Employee.id).where(Employee.department_id == department_id)

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        actor: Actor,
        pagination: PaginationParams,
        *,
        status: Optional[LeaveStatus] = None,
        employee_id: Optional[uuid.UUID] = None,
    ) -> tuple[list[LeaveRequest], PaginationMeta]:
        """Requests visible to *actor*, newest first."""
        query = select(LeaveRequest).order_by(
            LeaveRequest.created_at.desc(), LeaveRequest.id,
        )

        if actor.access_level in (AccessLevel.admin, AccessLevel.hr):
            pass
        elif actor.access_level == AccessLevel.manager:
            scope = [
                LeaveRequest.employee_id == actor.id,
                LeaveRequest.approver_id == actor.id,
            ]
            if actor.department_id is not None:
                scope.append(
                    LeaveRequest.employee_id.in_(
                        LeaveService._department_members(actor.department_id)
                    )
                )
            query = query.where(or_(*scope))
        else:
            query = query.where(LeaveRequest.employee_id == actor.id)

        if status is not None:
            query = query.where(LeaveRequest.status == status)
        if employee_id is not None:
            query = query.where(LeaveRequest.employee_id == employee_id)

        rows, meta = await paginate(db, query, pagination)
        return list(rows), meta

    @staticmethod
    async def get_pending_approvals(
        db: AsyncSession,
        actor: Actor,
    ) -> list[LeaveRequest]:
        """Open requests the actor may act on, excluding their own.

        Same rule as approve and reject: the assigned approver, or any admin.
        """
        query = (
            select(LeaveRequest)
            .where(
                LeaveRequest.status == LeaveStatus.open,
                LeaveRequest.employee_id != actor.id,
            )
            .order_by(LeaveRequest.from_date, LeaveRequest.id)
        )
        if not actor.is_admin:
            query = query.where(LeaveRequest.approver_id == actor.id)

        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def get_leave_types(db: AsyncSession) -> list[LeaveType]:
        result = await db.execute(
            select(LeaveType).where(LeaveType.is_active.is_(True)).order_by(LeaveType.name)
        )
        return list(result.scalars().all())

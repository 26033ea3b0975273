"""Notification service — in-app inbox plus the leave-event dispatchers.

Dispatchers are best-effort: each runs in its own SAVEPOINT and a failure
is logged and dropped, so a notification problem never undoes or blocks
the leave transition that triggered it.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import NotificationType
from leave_engine.common.exceptions import ForbiddenException, NotFoundException
from leave_engine.common.pagination import PaginationParams, paginate
from leave_engine.notifications.models import Notification
from leave_engine.notifications.schemas import (
    NotificationListMeta,
    NotificationListResponse,
    NotificationResponse,
)

logger = logging.getLogger(__name__)


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        recipient_id: uuid.UUID,
        type: NotificationType = NotificationType.info,
        title: str,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        notification = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def get_notifications(
        db: AsyncSession,
        employee_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        is_read: Optional[bool] = None,
    ) -> NotificationListResponse:
        """Return paginated notifications for an employee, newest first."""
        query = (
            select(Notification)
            .where(Notification.recipient_id == employee_id)
            .order_by(Notification.created_at.desc())
        )
        if is_read is not None:
            query = query.where(Notification.is_read == is_read)

        rows, meta = await paginate(db, query, pagination)
        unread = await NotificationService.get_unread_count(db, employee_id)
        return NotificationListResponse(
            data=[NotificationResponse.model_validate(n) for n in rows],
            meta=NotificationListMeta(**meta.model_dump(), unread=unread),
        )

    @staticmethod
    async def mark_read(
        db: AsyncSession,
        notification_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> Notification:
        """Mark a single notification as read. Verifies ownership."""
        notification = await db.get(Notification, notification_id)
        if notification is None:
            raise NotFoundException("Notification", notification_id)
        if notification.recipient_id != employee_id:
            raise ForbiddenException("You can only mark your own notifications as read.")

        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.flush()
        return notification

    @staticmethod
    async def mark_all_read(db: AsyncSession, employee_id: uuid.UUID) -> int:
        result = await db.execute(
            update(Notification)
            .where(
                Notification.recipient_id == employee_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount  # type: ignore[return-value]

    @staticmethod
    async def get_unread_count(db: AsyncSession, employee_id: uuid.UUID) -> int:
        result = await db.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.recipient_id == employee_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()


# ── Best-effort dispatch ────────────────────────────────────────────


async def _best_effort(
    db: AsyncSession,
    event: str,
    send: Callable[[], Awaitable[Notification]],
) -> Optional[Notification]:
    try:
        async with db.begin_nested():
            return await send()
    except Exception:
        logger.exception("Notification for %s could not be delivered", event)
        return None


def _period(leave_request) -> str:
    if leave_request.from_date == leave_request.to_date:
        span = f"on {leave_request.from_date.isoformat()}"
    else:
        span = (
            f"from {leave_request.from_date.isoformat()} "
            f"to {leave_request.to_date.isoformat()}"
        )
    return f"{span} (half day)" if leave_request.half_day else span


# ── Leave-event dispatchers ─────────────────────────────────────────
# They take the LeaveRequest ORM object directly to avoid schema coupling.


async def notify_leave_request(
    db: AsyncSession,
    leave_request,  # leave_engine.leave.models.LeaveRequest
    approver_id: uuid.UUID,
) -> Optional[Notification]:
    """Tell the approver a new request is waiting."""
    return await _best_effort(
        db,
        f"leave request {leave_request.id} submitted",
        lambda: NotificationService.create_notification(
            db,
            recipient_id=approver_id,
            type=NotificationType.action_required,
            title="New Leave Request",
            message=f"A leave request {_period(leave_request)} requires your approval.",
            entity_type="leave_request",
            entity_id=leave_request.id,
        ),
    )


async def notify_leave_approved(
    db: AsyncSession,
    leave_request,
) -> Optional[Notification]:
    return await _best_effort(
        db,
        f"leave request {leave_request.id} approved",
        lambda: NotificationService.create_notification(
            db,
            recipient_id=leave_request.employee_id,
            type=NotificationType.approval,
            title="Leave Request Approved",
            message=f"Your leave request {_period(leave_request)} has been approved.",
            entity_type="leave_request",
            entity_id=leave_request.id,
        ),
    )


async def notify_leave_rejected(
    db: AsyncSession,
    leave_request,
) -> Optional[Notification]:
    return await _best_effort(
        db,
        f"leave request {leave_request.id} rejected",
        lambda: NotificationService.create_notification(
            db,
            recipient_id=leave_request.employee_id,
            type=NotificationType.alert,
            title="Leave Request Rejected",
            message=(
                f"Your leave request {_period(leave_request)} has been rejected. "
                f"Comments: {leave_request.approver_comments}"
            ),
            entity_type="leave_request",
            entity_id=leave_request.id,
        ),
    )


async def notify_leave_cancelled(
    db: AsyncSession,
    leave_request,
    approver_id: uuid.UUID,
) -> Optional[Notification]:
    return await _best_effort(
        db,
        f"leave request {leave_request.id} cancelled",
        lambda: NotificationService.create_notification(
            db,
            recipient_id=approver_id,
            type=NotificationType.info,
            title="Leave Request Cancelled",
            message=f"A leave request {_period(leave_request)} was cancelled by the applicant.",
            entity_type="leave_request",
            entity_id=leave_request.id,
        ),
    )

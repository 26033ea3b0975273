"""Notification endpoints — list, mark read."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.auth.dependencies import get_current_actor
from leave_engine.auth.schemas import Actor
from leave_engine.common.pagination import PaginationParams
from leave_engine.database import get_db
from leave_engine.notifications.schemas import (
    NotificationListResponse,
    NotificationResponse,
)
from leave_engine.notifications.service import NotificationService

router = APIRouter(prefix="", tags=["notifications"])


# ── GET / — list current user's notifications ───────────────────────

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    is_read: Optional[bool] = Query(default=None, description="Filter by read status"),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await NotificationService.get_notifications(
        db, actor.id, pagination, is_read=is_read,
    )


# ── PUT /read-all ───────────────────────────────────────────────────
# Registered before /{notification_id}/read so "read-all" is not parsed as a UUID.

@router.put("/read-all")
async def mark_all_read(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    count = await NotificationService.mark_all_read(db, actor.id)
    return {"message": "All notifications marked as read", "data": {"count": count}}


# ── PUT /{notification_id}/read ─────────────────────────────────────

@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    notification = await NotificationService.mark_read(db, notification_id, actor.id)
    return {
        "message": "Notification marked as read",
        "data": NotificationResponse.model_validate(notification),
    }

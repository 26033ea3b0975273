"""Leave Pydantic schemas for request / response validation."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from leave_engine.common.constants import LeaveStatus
from leave_engine.common.pagination import PaginationMeta
from leave_engine.config import settings


def check_range(from_date: date, to_date: date) -> None:
    """Ordering and maximum span of a leave range. Raises ValueError."""
    if from_date > to_date:
        raise ValueError("from_date must be on or before to_date.")
    if (to_date - from_date).days >= settings.LEAVE_MAX_SPAN_DAYS:
        raise ValueError(
            f"Leave request cannot span more than {settings.LEAVE_MAX_SPAN_DAYS} days."
        )


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    name: str
    description: Optional[str] = None
    max_consecutive_days: Optional[int] = None
    is_carry_forward: bool = False
    is_active: bool = True


# ═════════════════════════════════════════════════════════════════════
# Ledger / quota
# ═════════════════════════════════════════════════════════════════════


class LeaveLedgerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    year: int
    total_leaves: Decimal
    used_leaves: Decimal
    remaining: Decimal


class QuotaAssignAll(BaseModel):
    leave_type_id: uuid.UUID
    year: int = Field(..., ge=2000, le=2100)
    total_leaves: Decimal = Field(..., ge=0, le=365)


class QuotaAssign(QuotaAssignAll):
    employee_id: uuid.UUID


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Create / Update
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for applying a leave request."""

    leave_type_id: uuid.UUID
    from_date: date = Field(..., description="Leave start date (inclusive)")
    to_date: date = Field(..., description="Leave end date (inclusive)")
    half_day: bool = Field(False, description="Counts as 0.5 day whatever the range")
    reason: Optional[str] = Field(None, max_length=1000, description="Reason for leave")

    @model_validator(mode="after")
    def validate_dates(self) -> "LeaveRequestCreate":
        check_range(self.from_date, self.to_date)
        return self


class LeaveRequestUpdate(BaseModel):
    """Generic edit. Status changes run the same side effects as approve/reject."""

    status: Optional[LeaveStatus] = None
    approver_comments: Optional[str] = Field(None, max_length=1000)
    reason: Optional[str] = Field(None, max_length=1000)
    leave_type_id: Optional[uuid.UUID] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None
    half_day: Optional[bool] = None

    @model_validator(mode="after")
    def validate_fields(self) -> "LeaveRequestUpdate":
        if self.status == LeaveStatus.cancelled:
            raise ValueError("Use the cancel action to cancel a leave request.")
        if self.from_date and self.to_date:
            check_range(self.from_date, self.to_date)
        return self

    @property
    def touches_range(self) -> bool:
        fields = self.model_fields_set
        return bool(fields & {"leave_type_id", "from_date", "to_date", "half_day"})


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Response
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    """Full leave request response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    from_date: date
    to_date: date
    half_day: bool
    reason: Optional[str] = None
    status: LeaveStatus
    approver_id: Optional[uuid.UUID] = None
    approver_comments: Optional[str] = None
    approved_at: Optional[datetime] = None
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    charged_days: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LeaveRequestListResponse(BaseModel):
    data: list[LeaveRequestOut]
    meta: PaginationMeta


# ═════════════════════════════════════════════════════════════════════
# Leave Approve / Reject / Cancel
# ═════════════════════════════════════════════════════════════════════


class LeaveApproveRequest(BaseModel):
    comments: Optional[str] = Field(None, max_length=1000)


class LeaveRejectRequest(BaseModel):
    # Emptiness is a state-machine rule, checked by the service.
    comments: Optional[str] = Field(None, max_length=1000)


class LeaveCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)

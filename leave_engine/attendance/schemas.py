"""Attendance Pydantic schemas for request / response validation."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from leave_engine.common.constants import AttendanceSource, AttendanceStatus


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class AttendanceManualCreate(BaseModel):
    """Manual attendance entry. HR/Admin may file it for another employee."""

    employee_id: Optional[uuid.UUID] = None
    date: date
    status: AttendanceStatus
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None
    remarks: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def _check_times(self) -> "AttendanceManualCreate":
        if self.check_in and self.check_out and self.check_out < self.check_in:
            raise ValueError("check_out must not be earlier than check_in")
        return self


class AttendanceUpdate(BaseModel):
    status: Optional[AttendanceStatus] = None
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None
    remarks: Optional[str] = Field(None, max_length=1000)


# ═════════════════════════════════════════════════════════════════════
# Responses
# ═════════════════════════════════════════════════════════════════════


class AttendanceRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    date: date
    status: AttendanceStatus
    leave_type_id: Optional[uuid.UUID] = None
    leave_request_id: Optional[uuid.UUID] = None
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None
    total_duration: Optional[Decimal] = None
    source: AttendanceSource
    remarks: Optional[str] = None


class AttendanceListResponse(BaseModel):
    data: list[AttendanceRecordOut]


class HolidayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    from_date: date
    to_date: date
    total_days: int


# ═════════════════════════════════════════════════════════════════════
# Leave sync report
# ═════════════════════════════════════════════════════════════════════


class OnLeaveSync(BaseModel):
    """What an approval did to the attendance calendar, day by day."""

    created: list[date] = []
    overwritten: dict[date, AttendanceStatus] = {}
    already_on_leave: list[date] = []

"""Common module — shared utilities for the leave engine."""

from leave_engine.common.audit import AuditTrail, create_audit_entry
from leave_engine.common.constants import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    AccessLevel,
    AttendanceSource,
    AttendanceStatus,
    LeaveStatus,
    NotificationType,
)
from leave_engine.common.dates import iter_dates, requested_days
from leave_engine.common.exceptions import (
    AppException,
    ConflictException,
    ConsistencyException,
    ForbiddenException,
    NotFoundException,
    StateException,
    ValidationException,
    register_exception_handlers,
)
from leave_engine.common.pagination import PaginationMeta, PaginationParams, paginate

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "AccessLevel",
    "AttendanceSource",
    "AttendanceStatus",
    "LeaveStatus",
    "NotificationType",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Dates
    "iter_dates",
    "requested_days",
    # Exceptions
    "AppException",
    "ConflictException",
    "ConsistencyException",
    "ForbiddenException",
    "NotFoundException",
    "StateException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]

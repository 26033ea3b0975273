"""Enums and constants for the leave engine — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Roles / access ──────────────────────────────────────────────────

class AccessLevel(str, enum.Enum):
    """Closed set of access labels a role can carry."""

    admin = "admin"
    hr = "hr"
    manager = "manager"
    accountant = "accountant"
    employee = "employee"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    open = "open"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


# ── Attendance ──────────────────────────────────────────────────────

class AttendanceStatus(str, enum.Enum):
    present = "present"
    absent = "absent"
    half_day = "half_day"
    on_leave = "on_leave"
    work_from_home = "work_from_home"
    on_duty = "on_duty"
    holiday = "holiday"
    weekend = "weekend"


class AttendanceSource(str, enum.Enum):
    system = "system"
    manual = "manual"
    leave = "leave"


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    info = "info"
    action_required = "action_required"
    approval = "approval"
    alert = "alert"


# ── Misc constants ──────────────────────────────────────────────────

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50

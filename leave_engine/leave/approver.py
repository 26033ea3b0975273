"""Approver resolution — who must approve an applicant's leave.

A pure function over a DirectorySnapshot: no I/O, no cached state. The
snapshot orders employees by ascending id, so scans pick the same
candidate every time.
"""

from __future__ import annotations

import uuid
from typing import Optional

from leave_engine.common.constants import AccessLevel
from leave_engine.config import settings
from leave_engine.core_hr.schemas import DirectorySnapshot, EmployeeView


def _is_manager_grade(emp: EmployeeView) -> bool:
    if emp.role is None:
        return False
    return (
        emp.role.level == settings.LEAVE_SECOND_ROLE_LEVEL
        or emp.role.access_level == AccessLevel.manager
    )


def _is_top_admin(emp: EmployeeView) -> bool:
    return (
        emp.role is not None
        and emp.role.level == settings.LEAVE_TOP_ROLE_LEVEL
        and emp.role.access_level == AccessLevel.admin
    )


def _candidates(directory: DirectorySnapshot, applicant_id: uuid.UUID):
    return (e for e in directory.employees if e.is_active and e.id != applicant_id)


def resolve_approver(
    applicant_id: uuid.UUID,
    directory: DirectorySnapshot,
) -> Optional[uuid.UUID]:
    """Return the id of the employee who approves *applicant_id*'s leave.

    1. Manager-grade applicants go to the first top-level admin.
    2. Anyone else goes to the first manager in their department.
    3. Failing that, the applicant's recorded direct manager.
    4. Otherwise None; the request waits for an admin.
    """
    applicant = directory.get(applicant_id)
    if applicant is None:
        return None

    if _is_manager_grade(applicant):
        # Never routed to a department peer, even when no admin exists.
        for emp in _candidates(directory, applicant_id):
            if _is_top_admin(emp):
                return emp.id
    elif applicant.department_id is not None:
        for emp in _candidates(directory, applicant_id):
            if (
                emp.department_id == applicant.department_id
                and emp.role is not None
                and emp.role.access_level == AccessLevel.manager
            ):
                return emp.id

    if applicant.manager_id is not None and applicant.manager_id != applicant_id:
        return applicant.manager_id
    return None

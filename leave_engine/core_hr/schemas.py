"""Read-only directory views consumed by approver resolution and listing scopes."""

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict

from leave_engine.common.constants import AccessLevel


class RoleView(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    level: int
    access_level: AccessLevel


class EmployeeView(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    department_id: Optional[uuid.UUID] = None
    manager_id: Optional[uuid.UUID] = None
    is_active: bool = True
    role: Optional[RoleView] = None


class DirectorySnapshot(BaseModel):
    """Employees with their roles, ordered by ascending id.

    The fixed ordering makes every scan over the snapshot reproducible.
    """

    model_config = ConfigDict(frozen=True)

    employees: tuple[EmployeeView, ...] = ()

    def get(self, employee_id: uuid.UUID) -> Optional[EmployeeView]:
        for emp in self.employees:
            if emp.id == employee_id:
                return emp
        return None

    @classmethod
    def of(cls, employees) -> "DirectorySnapshot":
        """Build a snapshot from any iterable of EmployeeView-compatible objects."""
        views = [EmployeeView.model_validate(e) for e in employees]
        return cls(employees=tuple(sorted(views, key=lambda e: e.id)))

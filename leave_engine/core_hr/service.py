"""Directory lookups — the boundary where employee/role rows become typed views."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leave_engine.common.exceptions import NotFoundException
from leave_engine.core_hr.models import Employee
from leave_engine.core_hr.schemas import DirectorySnapshot


class DirectoryService:
    """Async read access to the employee and role directories."""

    @staticmethod
    async def load_snapshot(db: AsyncSession) -> DirectorySnapshot:
        """Load every employee with its role, ordered by id."""
        result = await db.execute(
            select(Employee)
            .options(selectinload(Employee.role))
            .order_by(Employee.id)
        )
        return DirectorySnapshot.of(result.scalars().all())

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        active_only: bool = True,
    ) -> Employee:
        query = select(Employee).where(Employee.id == employee_id)
        if active_only:
            query = query.where(Employee.is_active.is_(True))
        employee = (await db.execute(query)).scalars().first()
        if employee is None:
            raise NotFoundException("Employee", employee_id)
        return employee

    @staticmethod
    async def active_employee_ids(db: AsyncSession) -> list[uuid.UUID]:
        result = await db.execute(
            select(Employee.id)
            .where(Employee.is_active.is_(True))
            .order_by(Employee.id)
        )
        return list(result.scalars().all())

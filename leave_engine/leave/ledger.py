"""Quota ledger — per employee / leave type / year balance.

Debits and credits are a single ``used_leaves = used_leaves + :delta``
statement executed by the database, so two approvals racing on the same
ledger row both land. Callers run them inside the transition's
transaction; a ConsistencyException raised here relies on that
transaction being rolled back.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.audit import create_audit_entry
from leave_engine.common.exceptions import (
    ConflictException,
    ConsistencyException,
    NotFoundException,
    ValidationException,
)
from leave_engine.config import settings
from leave_engine.core_hr.service import DirectoryService
from leave_engine.database import dialect_insert
from leave_engine.leave.models import LeaveLedger, LeaveType

logger = logging.getLogger(__name__)


class LedgerMovement(BaseModel):
    """Before/after picture of one debit or credit."""

    ledger_id: uuid.UUID
    total_leaves: Decimal
    used_before: Decimal
    used_after: Decimal
    delta: Decimal

    @property
    def remaining_after(self) -> Decimal:
        return self.total_leaves - self.used_after


class QuotaLedger:
    """Async quota ledger operations."""

    # ── Lookups ─────────────────────────────────────────────────────

    @staticmethod
    async def get_entry(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
    ) -> Optional[LeaveLedger]:
        result = await db.execute(
            select(LeaveLedger)
            .where(
                LeaveLedger.employee_id == employee_id,
                LeaveLedger.leave_type_id == leave_type_id,
                LeaveLedger.year == year,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def available(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
    ) -> Optional[Decimal]:
        """Remaining days, or None when the balance is not limited.

        A missing ledger row is resolved by LEAVE_MISSING_LEDGER_POLICY.
        """
        entry = await QuotaLedger.get_entry(db, employee_id, leave_type_id, year)
        if entry is None:
            if settings.LEAVE_MISSING_LEDGER_POLICY == "unlimited":
                return None
            return Decimal("0")
        return entry.remaining

    @staticmethod
    async def get_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
    ) -> list[LeaveLedger]:
        result = await db.execute(
            select(LeaveLedger)
            .where(LeaveLedger.employee_id == employee_id, LeaveLedger.year == year)
            .order_by(LeaveLedger.leave_type_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ── Debit / credit ──────────────────────────────────────────────

    @staticmethod
    async def debit(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        days: Decimal,
    ) -> Optional[LedgerMovement]:
        """Charge *days* against the ledger. Returns None when no row applies."""
        return await QuotaLedger._apply_delta(
            db, employee_id, leave_type_id, year, Decimal(days),
        )

    @staticmethod
    async def credit(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        days: Decimal,
    ) -> Optional[LedgerMovement]:
        """Give *days* back to the ledger. Returns None when no row applies."""
        return await QuotaLedger._apply_delta(
            db, employee_id, leave_type_id, year, -Decimal(days),
        )

    @staticmethod
    async def _apply_delta(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        delta: Decimal,
    ) -> Optional[LedgerMovement]:
        operation = "debit" if delta >= 0 else "credit"
        before = await QuotaLedger.get_entry(db, employee_id, leave_type_id, year)

        if before is None:
            if settings.LEAVE_MISSING_LEDGER_POLICY == "unlimited":
                logger.info(
                    "No ledger for employee=%s type=%s year=%s; %s of %s skipped",
                    employee_id, leave_type_id, year, operation, abs(delta),
                )
                return None
            if operation == "debit":
                raise ConflictException(
                    detail=(
                        f"Insufficient leave balance. You have 0 days available "
                        f"but requested {abs(delta)} days."
                    ),
                    errors={"balance": {"available": "0", "requested": str(abs(delta))}},
                )
            logger.critical(
                "Credit of %s with no ledger row: employee=%s type=%s year=%s",
                abs(delta), employee_id, leave_type_id, year,
            )
            raise ConsistencyException("credit without ledger row")

        used_before = Decimal(before.used_leaves)
        await db.execute(
            update(LeaveLedger)
            .where(LeaveLedger.id == before.id)
            .values(
                used_leaves=LeaveLedger.used_leaves + delta,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        after = await QuotaLedger.get_entry(db, employee_id, leave_type_id, year)

        movement = LedgerMovement(
            ledger_id=after.id,
            total_leaves=Decimal(after.total_leaves),
            used_before=used_before,
            used_after=Decimal(after.used_leaves),
            delta=delta,
        )

        if movement.used_after < 0:
            logger.critical(
                "Ledger %s: credit would drive used_leaves negative "
                "(total=%s used_before=%s used_after=%s delta=%s)",
                movement.ledger_id, movement.total_leaves,
                movement.used_before, movement.used_after, delta,
            )
            raise ConsistencyException(
                f"ledger {movement.ledger_id} credited below zero"
            )
        if movement.remaining_after < 0:
            logger.error(
                "Ledger %s overdrawn by %s "
                "(total=%s used_before=%s used_after=%s delta=%s)",
                movement.ledger_id, -movement.remaining_after, movement.total_leaves,
                movement.used_before, movement.used_after, delta,
            )

        logger.info(
            "Ledger %s %s %s: used %s -> %s (total %s)",
            movement.ledger_id, operation, abs(delta),
            movement.used_before, movement.used_after, movement.total_leaves,
        )
        return movement

    # ── Quota assignment ────────────────────────────────────────────

    @staticmethod
    async def assign(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        total: Decimal,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveLedger:
        """Set the yearly total for one employee; usage is left untouched."""
        await DirectoryService.get_employee(db, employee_id, active_only=False)
        await QuotaLedger._require_leave_type(db, leave_type_id)
        QuotaLedger._check_total(total)

        await QuotaLedger._upsert_total(db, [employee_id], leave_type_id, year, total)
        entry = await QuotaLedger.get_entry(db, employee_id, leave_type_id, year)
        await create_audit_entry(
            db,
            action="assign_quota",
            entity_type="leave_ledger",
            entity_id=entry.id,
            actor_id=actor_id,
            new_values={"total_leaves": entry.total_leaves, "year": year},
        )
        return entry

    @staticmethod
    async def assign_all(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        year: int,
        total: Decimal,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> int:
        """Set the yearly total for every active employee. Returns the count."""
        await QuotaLedger._require_leave_type(db, leave_type_id)
        QuotaLedger._check_total(total)

        employee_ids = await DirectoryService.active_employee_ids(db)
        if not employee_ids:
            return 0
        await QuotaLedger._upsert_total(db, employee_ids, leave_type_id, year, total)
        await create_audit_entry(
            db,
            action="assign_quota_all",
            entity_type="leave_type",
            entity_id=leave_type_id,
            actor_id=actor_id,
            new_values={
                "total_leaves": total,
                "year": year,
                "employees": len(employee_ids),
            },
        )
        logger.info(
            "Assigned %s days of leave type %s for %s to %d employees",
            total, leave_type_id, year, len(employee_ids),
        )
        return len(employee_ids)

    @staticmethod
    async def _upsert_total(
        db: AsyncSession,
        employee_ids: list[uuid.UUID],
        leave_type_id: uuid.UUID,
        year: int,
        total: Decimal,
    ) -> None:
        now = datetime.now(timezone.utc)
        insert = dialect_insert(db)
        stmt = insert(LeaveLedger).values([
            {
                "id": uuid.uuid4(),
                "employee_id": emp_id,
                "leave_type_id": leave_type_id,
                "year": year,
                "total_leaves": total,
                "used_leaves": Decimal("0"),
                "updated_at": now,
            }
            for emp_id in employee_ids
        ])
        stmt = stmt.on_conflict_do_update(
            index_elements=["employee_id", "leave_type_id", "year"],
            set_={"total_leaves": stmt.excluded.total_leaves, "updated_at": now},
        )
        await db.execute(stmt)

    @staticmethod
    async def _require_leave_type(db: AsyncSession, leave_type_id: uuid.UUID) -> LeaveType:
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", leave_type_id)
        return leave_type

    @staticmethod
    def _check_total(total: Decimal) -> None:
        if Decimal(total) < 0:
            raise ValidationException({"total_leaves": ["Total leaves cannot be negative."]})

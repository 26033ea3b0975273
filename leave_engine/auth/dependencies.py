"""Auth dependencies — JWT validation and access-level enforcement.

Tokens are issued by the external identity service. The engine trusts the
``sub`` and ``access_level`` claims once the signature checks out.
"""

from __future__ import annotations

import uuid
from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.auth.schemas import Actor
from leave_engine.common.constants import AccessLevel
from leave_engine.common.exceptions import ForbiddenException
from leave_engine.config import settings
from leave_engine.core_hr.models import Employee
from leave_engine.database import get_db

# Access hierarchy — each level implicitly includes the ones it lists
_ACCESS_HIERARCHY: dict[AccessLevel, set[AccessLevel]] = {
    AccessLevel.admin: set(AccessLevel),
    AccessLevel.hr: {AccessLevel.hr, AccessLevel.employee},
    AccessLevel.manager: {AccessLevel.manager, AccessLevel.employee},
    AccessLevel.accountant: {AccessLevel.accountant, AccessLevel.employee},
    AccessLevel.employee: {AccessLevel.employee},
}


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_actor(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """Validate the JWT and return the calling employee as an Actor."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type.")

    try:
        employee_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject.")

    row = (
        await db.execute(
            select(Employee.id, Employee.department_id).where(
                Employee.id == employee_id, Employee.is_active.is_(True),
            )
        )
    ).first()
    if row is None:
        raise HTTPException(status_code=401, detail="User account is inactive or not found.")

    try:
        access_level = AccessLevel(payload.get("access_level", AccessLevel.employee.value))
    except ValueError:
        access_level = AccessLevel.employee

    return Actor(id=row.id, access_level=access_level, department_id=row.department_id)


# ── Access-level dependency ─────────────────────────────────────────

def require_access(*allowed: AccessLevel) -> Callable:
    """Return a FastAPI dependency that enforces access-level membership.

    Respects hierarchy — e.g. admin can reach manager endpoints.
    """

    async def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        effective = _ACCESS_HIERARCHY.get(actor.access_level, {actor.access_level})
        if not effective.intersection(allowed):
            raise ForbiddenException(
                detail=(
                    f"Access level '{actor.access_level.value}' is not permitted. "
                    f"Required: {[a.value for a in allowed]}."
                ),
            )
        return actor

    return _check

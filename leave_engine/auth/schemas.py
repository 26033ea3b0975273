"""Auth Pydantic schemas."""

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict

from leave_engine.common.constants import AccessLevel


class Actor(BaseModel):
    """The authenticated caller, as asserted by the identity provider's token."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    access_level: AccessLevel = AccessLevel.employee
    department_id: Optional[uuid.UUID] = None

    @property
    def is_admin(self) -> bool:
        return self.access_level == AccessLevel.admin

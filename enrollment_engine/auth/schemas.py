from typing import Dict
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Lightweight representation of the authenticated caller for RBAC checks.
    school_id and role are resolved by the identity provider and carried in the access token.
    """

    id: UUID
    school_id: UUID
    role: str
    permissions: Dict[str, Dict[str, bool]] = {}

from typing import Dict
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Lightweight representation of the authenticated user for RBAC checks.
    school_id scopes every ledger and payment the user can see or write.
    """

    id: UUID
    school_id: UUID
    role: str
    permissions: Dict[str, Dict[str, bool]]

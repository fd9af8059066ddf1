from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Authenticated caller as carried in the access token. Identity and roles are managed elsewhere."""

    id: UUID
    role: str
    name: Optional[str] = None

    @property
    def actor(self) -> str:
        """Value written to created_by / performed_by columns."""
        return self.name or str(self.id)

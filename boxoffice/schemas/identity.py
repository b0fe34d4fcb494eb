from pydantic import BaseModel
from typing import Optional


class CurrentUser(BaseModel):
    """Authenticated identity handed to the core by the auth collaborator."""

    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: str = "buyer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

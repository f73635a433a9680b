from typing import Optional
from pydantic import BaseModel, Field


class CurrentUser(BaseModel):
    """Identity resolved from a verified access token."""

    id: str = Field(..., min_length=1, max_length=64)
    role: str = "customer"
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

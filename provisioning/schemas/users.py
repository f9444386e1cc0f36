"""User provisioning request and response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class CreateUserRequest(BaseModel):
    """Create a user and attach it to an organization."""
    login: str
    email: str = ""
    name: str = ""
    org_id: Optional[int] = None
    org_name: str = ""
    password: str = ""
    is_admin: bool = False
    default_org_role: Optional[str] = None


class AdminResetRequest(BaseModel):
    """Re-establish credentials for the well-known administrator."""
    model_config = ConfigDict(frozen=True)

    login: str = Field(min_length=1)
    email: str = Field(min_length=1)
    password: str = ""


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class UserResponse(BaseModel):
    """Public view of a user row."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    login: str
    email: str
    name: str = ""
    is_admin: bool
    org_id: int
    created: datetime
    updated: datetime
    last_seen_at: datetime

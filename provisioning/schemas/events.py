"""Domain events published after a successful commit."""

from __future__ import annotations

from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, ConfigDict


class DomainEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: ClassVar[str] = "event"

    timestamp: datetime


class OrgCreated(DomainEvent):
    event_type: ClassVar[str] = "org.created"

    id: int
    name: str


class UserCreated(DomainEvent):
    event_type: ClassVar[str] = "user.created"

    id: int
    name: str = ""
    login: str
    email: str

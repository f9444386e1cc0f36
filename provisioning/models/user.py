"""User model."""

from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IntIDMixin, TimestampMixin


class User(IntIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    login: str = Field(nullable=False, unique=True, index=True)
    email: str = Field(nullable=False, unique=True, index=True)
    name: str = Field(default="", nullable=False)
    is_admin: bool = Field(default=False, nullable=False)
    is_service_account: bool = Field(default=False, nullable=False)
    org_id: int = Field(foreign_key="organizations.id", nullable=False)
    salt: str = Field(default="", nullable=False)
    rands: str = Field(default="", nullable=False)
    password: str = Field(default="", nullable=False)  # bcrypt-pbkdf hex, empty when unset
    last_seen_at: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))

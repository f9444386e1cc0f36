"""Base mixins for SQLModel tables."""

from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin(SQLModel):
    created: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
    updated: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )


class IntIDMixin(SQLModel):
    id: Optional[int] = Field(
        default=None,
        primary_key=True,
        sa_type=sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
    )

"""Organization model."""

from sqlmodel import Field, SQLModel

from .base import IntIDMixin, TimestampMixin


class Organization(IntIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "organizations"

    name: str = Field(nullable=False, unique=True, index=True)

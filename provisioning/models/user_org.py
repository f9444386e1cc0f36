"""User-Organization membership (join table)."""

from sqlmodel import Field, SQLModel

from .base import TimestampMixin


class UserOrg(TimestampMixin, SQLModel, table=True):
    __tablename__ = "users_orgs"

    org_id: int = Field(foreign_key="organizations.id", primary_key=True)
    user_id: int = Field(foreign_key="users.id", primary_key=True)
    role: str = Field(nullable=False)  # Admin | Editor | Viewer | custom

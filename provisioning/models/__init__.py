# SQLModel definitions, imported here so the metadata is complete before create_all.
from .base import IntIDMixin, TimestampMixin  # noqa: F401
from .organization import Organization  # noqa: F401
from .user import User  # noqa: F401
from .user_org import UserOrg  # noqa: F401

"""
Application configuration loaded from environment variables.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from provisioning.schemas.common import Role


class Settings(BaseSettings):
    """Provisioning configuration."""

    model_config = SettingsConfigDict(env_prefix="PROV_", env_file=".env", extra="ignore")

    # Database
    database_url: str = "sqlite+aiosqlite:///./provisioning.db"
    debug: bool = False

    # Organization auto-assignment
    auto_assign_org: bool = True
    auto_assign_org_id: int = Field(default=1, ge=1)
    auto_assign_org_role: str = Role.VIEWER.value

    # Identity matching
    case_insensitive_login: bool = True

    # Bootstrap administrator
    admin_user: str = "admin"
    admin_email: str = "admin@localhost"
    admin_password: str = "admin"
    disable_initial_admin_creation: bool = False

    # Credentials
    password_kdf_rounds: int = Field(default=50, ge=1)

    # Event transport
    redis_url: Optional[str] = None
    events_channel: str = "prov:events"

    # Logging
    log_level: str = "info"
    log_format: Literal["json", "text"] = "json"

    @field_validator("auto_assign_org_role")
    @classmethod
    def _known_role(cls, v: str) -> str:
        return Role(v).value


@lru_cache
def get_settings() -> Settings:
    return Settings()

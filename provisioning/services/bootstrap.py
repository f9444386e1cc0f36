"""Startup provisioning of the initial administrator."""

from __future__ import annotations

from typing import Optional

import structlog

from provisioning.core.config import Settings
from provisioning.core.database import UnitOfWork
from provisioning.models.user import User
from provisioning.schemas.users import CreateUserRequest
from provisioning.services.users import create_user

log = structlog.get_logger()


async def ensure_admin_user(uow: UnitOfWork, settings: Settings) -> Optional[User]:
    """Create the configured administrator on an empty install."""
    if settings.disable_initial_admin_creation:
        log.info("bootstrap.admin_creation_disabled")
        return None

    if await uow.count(User):
        log.info("bootstrap.admin_exists")
        return None

    user = await create_user(
        uow,
        CreateUserRequest(
            login=settings.admin_user,
            email=settings.admin_email,
            password=settings.admin_password,
            is_admin=True,
        ),
        settings,
    )
    log.info("bootstrap.admin_created", user_id=user.id, login=user.login)
    return user

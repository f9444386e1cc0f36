"""
User provisioning service: account creation and administrator reset.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
import structlog
from sqlalchemy import func, or_

from provisioning.core.config import Settings
from provisioning.core.database import UnitOfWork
from provisioning.core.dialect import Dialect
from provisioning.core.exceptions import UserAlreadyExists, UserNotFound
from provisioning.core.security import issue_credentials
from provisioning.models.user import User
from provisioning.models.user_org import UserOrg
from provisioning.schemas.common import Role
from provisioning.schemas.events import UserCreated
from provisioning.schemas.users import AdminResetRequest, CreateUserRequest
from provisioning.services.organizations import get_org_id_for_new_user

log = structlog.get_logger()

DEFAULT_ADMIN_USER_ID = 1
NEVER_SEEN_YEARS = 10


def _years_ago(now: datetime, years: int) -> datetime:
    try:
        return now.replace(year=now.year - years)
    except ValueError:  # Feb 29
        return now.replace(year=now.year - years, day=28)


def not_service_account_filter(dialect: Dialect) -> sa.TextClause:
    return sa.text(
        f"{dialect.quote(User.__tablename__)}.is_service_account = {dialect.boolean_str(False)}"
    )


async def create_user(uow: UnitOfWork, req: CreateUserRequest, settings: Settings) -> User:
    """
    Create a user, its organization if needed, and the membership row.

    With auto-assignment on, ``req.org_id`` names an existing org to join;
    otherwise a new org called ``req.org_name`` (or the email, or the login)
    is created and a name clash is a StorageError. Rollback on failure is
    the caller's job.
    """
    org_id = await get_org_id_for_new_user(uow, req, settings)

    login = req.login
    email = req.email or req.login

    if settings.case_insensitive_login:
        login = login.lower()
        email = email.lower()
        duplicate = or_(func.lower(User.email) == email, func.lower(User.login) == login)
    else:
        duplicate = or_(User.email == email, User.login == login)

    if await uow.get(User, duplicate) is not None:
        raise UserAlreadyExists(f"user with login {login!r} or email {email!r} already exists")

    now = datetime.now(timezone.utc)
    creds = issue_credentials(req.password, settings.password_kdf_rounds)

    user = User(
        login=login,
        email=email,
        name=req.name,
        is_admin=req.is_admin,
        org_id=org_id,
        salt=creds.salt,
        rands=creds.rands,
        password=creds.password or "",
        created=now,
        updated=now,
        last_seen_at=_years_ago(now, NEVER_SEEN_YEARS),
    )
    await uow.insert(user)

    uow.publish_after_commit(
        UserCreated(
            timestamp=user.created,
            id=user.id,
            name=user.name,
            login=user.login,
            email=user.email,
        )
    )

    role = Role.ADMIN.value
    if settings.auto_assign_org and not user.is_admin:
        role = req.default_org_role or settings.auto_assign_org_role

    await uow.insert(
        UserOrg(org_id=org_id, user_id=user.id, role=role, created=now, updated=now)
    )

    log.info("user.created", user_id=user.id, org_id=org_id, role=role, is_admin=user.is_admin)
    return user


@dataclass(frozen=True)
class AdminPatch:
    """Fields rewritten on the administrator row by a reset."""
    login: str
    email: str
    is_admin: bool
    updated: datetime
    salt: str
    rands: str
    password: Optional[str] = None

    def values(self) -> dict:
        values = asdict(self)
        if self.password is None:
            del values["password"]
        return values


async def reset_admin_user(
    uow: UnitOfWork, req: AdminResetRequest, settings: Settings
) -> User:
    """
    Re-issue credentials for the administrator at DEFAULT_ADMIN_USER_ID.

    Salt and rands always change. An empty password keeps the stored
    encoding, which no longer matches the new salt.
    """
    account_filter = not_service_account_filter(uow.dialect)
    criteria = (User.id == DEFAULT_ADMIN_USER_ID, account_filter)

    user = await uow.get(User, *criteria)
    if user is None:
        raise UserNotFound(f"unable to find admin user with id {DEFAULT_ADMIN_USER_ID}")

    creds = issue_credentials(req.password, settings.password_kdf_rounds)
    patch = AdminPatch(
        login=req.login,
        email=req.email,
        is_admin=True,
        updated=datetime.now(timezone.utc),
        salt=creds.salt,
        rands=creds.rands,
        password=creds.password,
    )

    if not await uow.update(User, patch.values(), *criteria):
        raise UserNotFound(f"admin user with id {DEFAULT_ADMIN_USER_ID} changed during reset")
    await uow.refresh(user)

    log.info("admin.reset", user_id=user.id, password_changed=patch.password is not None)
    return user

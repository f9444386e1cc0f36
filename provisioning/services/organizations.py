"""
Organization resolution for new users.

Either places the user in an existing organization, bootstraps the
well-known main organization, or creates a fresh organization per user,
depending on the auto-assignment policy.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from provisioning.core.config import Settings
from provisioning.core.database import UnitOfWork
from provisioning.core.exceptions import AutoAssignOrgNotFound, OrgNotFound, StorageError
from provisioning.models.organization import Organization
from provisioning.schemas.events import OrgCreated
from provisioning.schemas.users import CreateUserRequest

log = structlog.get_logger()

MAIN_ORG_NAME = "Main Org."
MAIN_ORG_ID = 1


async def verify_existing_org(uow: UnitOfWork, org_id: int) -> None:
    """Raise OrgNotFound unless the organization exists."""
    org = await uow.get(Organization, Organization.id == org_id)
    if org is None:
        raise OrgNotFound(f"failed to verify existing org {org_id}")


async def get_or_create_org(
    uow: UnitOfWork,
    org_name: str,
    *,
    auto_assign_enabled: bool,
    auto_assign_org_id: int,
) -> int:
    """
    Return the auto-assign org id, bootstrapping it if needed, or create
    a new org called ``org_name`` when auto-assignment is off.
    """
    now = datetime.now(timezone.utc)

    if auto_assign_enabled:
        existing = await uow.get(Organization, Organization.id == auto_assign_org_id)
        if existing is not None:
            return existing.id
        log.debug("org.auto_assign_missing", org_id=auto_assign_org_id)

        if auto_assign_org_id != MAIN_ORG_ID:
            log.error(
                "org.auto_assign_not_bootstrappable",
                org_id=auto_assign_org_id,
            )
            raise AutoAssignOrgNotFound(auto_assign_org_id)

        org = Organization(id=auto_assign_org_id, name=MAIN_ORG_NAME, created=now, updated=now)
        try:
            await uow.insert_with_explicit_id(org)
        except StorageError as exc:
            if not uow.is_unique_constraint_violation(exc):
                raise
            # Only a row at the well-known id means a peer bootstrapped it first;
            # a clash on the name alone is a real conflict.
            winner = await uow.get(Organization, Organization.id == auto_assign_org_id)
            if winner is None:
                raise
            log.info("org.auto_assign_race", org_id=auto_assign_org_id)
            return winner.id
    else:
        org = await uow.insert(Organization(name=org_name, created=now, updated=now))

    uow.publish_after_commit(OrgCreated(timestamp=org.created, id=org.id, name=org.name))
    log.info("org.created", org_id=org.id, name=org.name)
    return org.id


async def resolve_or_create_org(
    uow: UnitOfWork,
    *,
    requested_org_id: int | None,
    requested_org_name: str,
    auto_assign_enabled: bool,
    auto_assign_org_id: int,
    fallback_org_name: str,
) -> int:
    """Organization id a new user should join."""
    if auto_assign_enabled and requested_org_id:
        await verify_existing_org(uow, requested_org_id)
        return requested_org_id

    return await get_or_create_org(
        uow,
        requested_org_name or fallback_org_name,
        auto_assign_enabled=auto_assign_enabled,
        auto_assign_org_id=auto_assign_org_id,
    )


async def get_org_id_for_new_user(
    uow: UnitOfWork, req: CreateUserRequest, settings: Settings
) -> int:
    return await resolve_or_create_org(
        uow,
        requested_org_id=req.org_id,
        requested_org_name=req.org_name,
        auto_assign_enabled=settings.auto_assign_org,
        auto_assign_org_id=settings.auto_assign_org_id,
        fallback_org_name=req.email or req.login,
    )

"""
Tests for organization resolution of new users.

Tests cover:
- Explicit org verification under auto-assignment
- Main org bootstrap at the well-known id, and its idempotence
- Recovery from the well-known id insert race
- Misconfigured auto-assign ids
- Per-user org creation when auto-assignment is off
"""

from __future__ import annotations

import pytest
from structlog.testing import capture_logs

from provisioning.core.exceptions import (
    AutoAssignOrgNotFound,
    ConfigurationError,
    OrgNotFound,
    StorageError,
)
from provisioning.models.organization import Organization
from provisioning.schemas.events import OrgCreated
from provisioning.schemas.users import CreateUserRequest
from provisioning.services.organizations import (
    MAIN_ORG_ID,
    MAIN_ORG_NAME,
    get_or_create_org,
    get_org_id_for_new_user,
    resolve_or_create_org,
    verify_existing_org,
)
from provisioning.services.users import create_user


def _stale_org_reads(uow, monkeypatch):
    """Make the uow miss its first organization lookup, like a read that lost a race."""
    real_get = uow.get
    missed = []

    async def stale_get(model, *criteria):
        if model is Organization and not missed:
            missed.append(model)
            return None
        return await real_get(model, *criteria)

    monkeypatch.setattr(uow, "get", stale_get)


async def _resolve_auto(uow, org_id=MAIN_ORG_ID):
    return await resolve_or_create_org(
        uow,
        requested_org_id=None,
        requested_org_name="",
        auto_assign_enabled=True,
        auto_assign_org_id=org_id,
        fallback_org_name="someone@example.com",
    )


# ---------------------------------------------------------------------------
# Explicit org id
# ---------------------------------------------------------------------------

class TestExplicitOrg:

    async def test_existing_org_is_returned_unchanged(self, uow_factory):
        async with uow_factory() as uow:
            org = await uow.insert(Organization(name="Acme"))

        async with uow_factory() as uow:
            org_id = await resolve_or_create_org(
                uow,
                requested_org_id=org.id,
                requested_org_name="ignored",
                auto_assign_enabled=True,
                auto_assign_org_id=MAIN_ORG_ID,
                fallback_org_name="x",
            )
        assert org_id == org.id

    async def test_missing_org_fails_and_creates_nothing(self, uow_factory, fetch_all, published):
        with pytest.raises(OrgNotFound):
            async with uow_factory() as uow:
                await resolve_or_create_org(
                    uow,
                    requested_org_id=42,
                    requested_org_name="",
                    auto_assign_enabled=True,
                    auto_assign_org_id=MAIN_ORG_ID,
                    fallback_org_name="x",
                )
        assert await fetch_all(Organization) == []
        assert published == []

    async def test_verify_existing_org(self, uow_factory):
        async with uow_factory() as uow:
            org = await uow.insert(Organization(name="Acme"))
            await verify_existing_org(uow, org.id)
            with pytest.raises(OrgNotFound, match="999"):
                await verify_existing_org(uow, 999)


# ---------------------------------------------------------------------------
# Auto-assignment to the well-known org
# ---------------------------------------------------------------------------

class TestAutoAssign:

    async def test_bootstraps_main_org(self, uow_factory, fetch_all, published):
        async with uow_factory() as uow:
            org_id = await _resolve_auto(uow)
            assert published == []  # nothing before commit

        assert org_id == MAIN_ORG_ID
        orgs = await fetch_all(Organization)
        assert [(o.id, o.name) for o in orgs] == [(MAIN_ORG_ID, MAIN_ORG_NAME)]

        assert len(published) == 1
        evt = published[0]
        assert isinstance(evt, OrgCreated)
        assert evt.id == MAIN_ORG_ID
        assert evt.name == MAIN_ORG_NAME

    async def test_repeated_resolution_is_idempotent(self, uow_factory, fetch_all, published):
        for _ in range(5):
            async with uow_factory() as uow:
                assert await _resolve_auto(uow) == MAIN_ORG_ID

        assert len(await fetch_all(Organization)) == 1
        assert len(published) == 1

    async def test_insert_race_is_treated_as_success(self, uow_factory, fetch_all, published, monkeypatch):
        async with uow_factory() as uow:
            await _resolve_auto(uow)
        published.clear()

        with capture_logs() as logs:
            async with uow_factory() as uow:
                _stale_org_reads(uow, monkeypatch)
                org_id = await _resolve_auto(uow)
                # The savepoint kept the outer transaction usable.
                assert await uow.count(Organization) == 1

        assert org_id == MAIN_ORG_ID
        assert published == []
        races = [e for e in logs if e["event"] == "org.auto_assign_race"]
        assert len(races) == 1
        assert races[0]["log_level"] == "info"

    async def test_sequential_stale_reads_yield_one_org(self, uow_factory, fetch_all, published, monkeypatch):
        results = []
        for _ in range(4):
            async with uow_factory() as uow:
                _stale_org_reads(uow, monkeypatch)
                results.append(await _resolve_auto(uow))

        assert results == [MAIN_ORG_ID] * 4
        orgs = await fetch_all(Organization)
        assert [(o.id, o.name) for o in orgs] == [(MAIN_ORG_ID, MAIN_ORG_NAME)]
        assert [type(e) for e in published] == [OrgCreated]

    async def test_name_clash_is_not_a_race(self, uow_factory, settings, fetch_all, published):
        async with uow_factory() as uow:
            await uow.insert_with_explicit_id(Organization(id=2, name=MAIN_ORG_NAME))
        published.clear()

        with capture_logs() as logs:
            with pytest.raises(StorageError) as exc_info:
                async with uow_factory() as uow:
                    await create_user(uow, CreateUserRequest(login="zoe"), settings)

        assert uow.is_unique_constraint_violation(exc_info.value)
        assert "organizations" in str(exc_info.value)
        assert not any(e["event"] == "org.auto_assign_race" for e in logs)
        assert [(o.id, o.name) for o in await fetch_all(Organization)] == [(2, MAIN_ORG_NAME)]
        assert published == []

    async def test_other_insert_failures_propagate(self, uow_factory, monkeypatch):
        with pytest.raises(StorageError):
            async with uow_factory() as uow:
                async def broken_insert(row):
                    raise StorageError("disk full")

                monkeypatch.setattr(uow, "insert_with_explicit_id", broken_insert)
                await _resolve_auto(uow)

    async def test_non_bootstrappable_id_is_a_configuration_error(self, uow_factory, fetch_all):
        with capture_logs() as logs:
            with pytest.raises(AutoAssignOrgNotFound) as exc_info:
                async with uow_factory() as uow:
                    await _resolve_auto(uow, org_id=7)

        assert isinstance(exc_info.value, OrgNotFound)
        assert isinstance(exc_info.value, ConfigurationError)
        assert "7" in str(exc_info.value)
        assert await fetch_all(Organization) == []
        assert any(e["event"] == "org.auto_assign_not_bootstrappable" for e in logs)

    async def test_existing_non_default_id_is_used(self, uow_factory):
        async with uow_factory() as uow:
            await uow.insert_with_explicit_id(Organization(id=7, name="Seven"))

        async with uow_factory() as uow:
            assert await _resolve_auto(uow, org_id=7) == 7


# ---------------------------------------------------------------------------
# Auto-assignment disabled
# ---------------------------------------------------------------------------

class TestPerUserOrg:

    @pytest.mark.parametrize(
        "req, expected",
        [
            (CreateUserRequest(login="alice", email="alice@example.com", org_name="Team A"), "Team A"),
            (CreateUserRequest(login="alice", email="alice@example.com"), "alice@example.com"),
            (CreateUserRequest(login="alice"), "alice"),
        ],
    )
    async def test_org_name_precedence(self, uow_factory, fetch_all, make_settings, req, expected):
        settings = make_settings(auto_assign_org=False)
        async with uow_factory() as uow:
            await get_org_id_for_new_user(uow, req, settings)

        orgs = await fetch_all(Organization)
        assert [o.name for o in orgs] == [expected]

    async def test_explicit_org_id_ignored_without_auto_assign(self, uow_factory, fetch_all, make_settings):
        settings = make_settings(auto_assign_org=False)
        async with uow_factory() as uow:
            org_id = await get_org_id_for_new_user(
                uow, CreateUserRequest(login="bob", org_id=123), settings
            )
        assert org_id != 123
        assert [o.name for o in await fetch_all(Organization)] == ["bob"]

    async def test_name_collision_surfaces(self, uow_factory, fetch_all, published):
        async with uow_factory() as uow:
            await get_or_create_org(uow, "Acme", auto_assign_enabled=False, auto_assign_org_id=1)
        published.clear()

        with pytest.raises(StorageError) as exc_info:
            async with uow_factory() as uow:
                await get_or_create_org(uow, "Acme", auto_assign_enabled=False, auto_assign_org_id=1)
        assert uow.is_unique_constraint_violation(exc_info.value)
        assert len(await fetch_all(Organization)) == 1
        assert published == []

    async def test_created_event_carries_org_fields(self, uow_factory, published):
        async with uow_factory() as uow:
            org_id = await get_or_create_org(uow, "Acme", auto_assign_enabled=False, auto_assign_org_id=1)

        (evt,) = published
        assert (evt.id, evt.name) == (org_id, "Acme")
        assert evt.timestamp is not None

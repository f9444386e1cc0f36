"""
Shared fixtures: a throwaway SQLite database per test, an event bus that
records deliveries, and settings that ignore the environment file.
"""

from __future__ import annotations

import pytest
import structlog
from sqlmodel import select

from provisioning.core.config import Settings
from provisioning.core.database import (
    build_engine,
    build_session_factory,
    init_db,
    unit_of_work,
)
from provisioning.core.events import EventBus


def _make_settings(**overrides) -> Settings:
    values = {
        "_env_file": None,
        "password_kdf_rounds": 1,
        "auto_assign_org": True,
        "auto_assign_org_id": 1,
        "auto_assign_org_role": "Viewer",
        "case_insensitive_login": True,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def make_settings():
    return _make_settings


@pytest.fixture
def settings(tmp_path):
    return _make_settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")


@pytest.fixture
async def engine(settings):
    eng = build_engine(settings.database_url)
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def published():
    return []


@pytest.fixture
def bus(published):
    b = EventBus()
    b.subscribe_all(published.append)
    return b


@pytest.fixture
def uow_factory(session_factory, bus):
    return lambda: unit_of_work(session_factory, bus)


@pytest.fixture
def fetch_all(session_factory):
    """Read committed rows through a fresh session."""
    async def _fetch(model):
        async with session_factory() as session:
            result = await session.execute(select(model))
            return list(result.scalars().all())
    return _fetch


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()

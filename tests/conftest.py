"""
FastVerify Booth - Test Configuration

Pytest fixtures and configuration.
"""

from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from fastverify.config import Settings
from fastverify.schemas.session import BoothConfig
from fastverify.services.container import BoothServices
from fastverify.services.store import LocalStore
from tests.fixtures.authority_mock import MockAuthorityServer
from tests.fixtures.booth import BOOTH_ID, FrozenClock


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 1, 8, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file and the mock authority."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'booth.db'}",
        api_base_url=MockAuthorityServer.API_BASE_URL,
        sync_interval_seconds=60,
    )


@pytest_asyncio.fixture
async def store(settings: Settings, clock: FrozenClock) -> AsyncGenerator[LocalStore, None]:
    store = LocalStore(settings, clock)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def authority(clock: FrozenClock):
    """Mock remote authority, active for the whole test."""
    server = MockAuthorityServer(clock)
    with server.activate():
        yield server


@pytest_asyncio.fixture
async def services(
    settings: Settings,
    clock: FrozenClock,
    authority: MockAuthorityServer,
) -> AsyncGenerator[BoothServices, None]:
    services = BoothServices.build(settings, clock)
    await services.start(run_scheduler=False)
    yield services
    await services.close()


@pytest_asyncio.fixture
async def ready_booth(services: BoothServices) -> BoothServices:
    """Logged-in booth with a booth configuration."""
    await services.session.login("operator", "secret")
    await services.session.save_booth_config(BoothConfig(booth_id=BOOTH_ID, booth_name="Main Hall"))
    return services

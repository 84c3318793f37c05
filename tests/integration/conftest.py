"""
Integration Test Fixtures.

Fixtures for integration tests - real EventStore on the test database,
real services wired by build_event_services. Only the Redis broker is
replaced, by a recording fake.

These fixtures build on the root conftest.py database fixtures.
"""

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.eventcore.events.handlers import HandlerRegistry
from modules.eventcore.services.event_store import EventStore
from modules.eventcore.services.factory import EventServices, build_event_services


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def event_store(db_session_factory: async_sessionmaker[AsyncSession]) -> EventStore:
    return EventStore(db_session_factory)


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def fake_broker() -> MagicMock:
    """
    Stand-in for the FastStream RedisBroker.

    `publish` records every message so tests can read back what was
    enqueued: fake_broker.publish.await_args_list.
    """
    broker = MagicMock()
    broker.publish = AsyncMock(return_value=None)
    broker.connect = AsyncMock(return_value=None)
    broker.close = AsyncMock(return_value=None)
    return broker


@pytest.fixture
def handler_registry() -> HandlerRegistry:
    """Empty registry; tests register the handlers they need."""
    return HandlerRegistry()


@pytest.fixture
async def services(
    fake_broker: MagicMock,
    db_session_factory: async_sessionmaker[AsyncSession],
    events_config,
    features,
    handler_registry: HandlerRegistry,
) -> AsyncGenerator[EventServices, None]:
    services = build_event_services(
        broker=fake_broker,
        session_factory=db_session_factory,
        events_config=events_config,
        features=features,
        registry=handler_registry,
    )
    yield services
    services.retry_scheduler.cancel_pending()


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
async def client(services: EventServices) -> AsyncGenerator[AsyncClient, None]:
    """
    API client whose endpoints run against the real services.

    ASGITransport does not run the lifespan, so services are attached to
    app.state directly.

    Usage:
        async def test_stats(client: AsyncClient):
            response = await client.get("/api/v1/events/stats")
            assert response.status_code == 200
    """
    from modules.eventcore.main import create_app

    app = create_app()
    app.state.event_services = services

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as test_client:
        yield test_client

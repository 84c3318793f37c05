"""
Unit Test Fixtures.

Fixtures for unit tests - all external dependencies are mocked.
Unit tests should be fast and isolated, never touching Redis or PostgreSQL.
"""

from datetime import datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from modules.eventcore.events.schemas import DeliveryMetadata
from modules.eventcore.models.event_record import EventRecord, EventStatus


# =============================================================================
# Clock Fixtures
# =============================================================================


class FakeClock:
    """Settable clock for services that take a `clock` callable."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Event Record Fixtures
# =============================================================================


def make_record(
    id: int = 1,
    event_type: str = "CAMPAIGN_PUBLISH_CONTENT",
    payload: str = '{"campaign_id": 7}',
    status: str = EventStatus.PENDING,
    created_at: datetime | None = None,
    updated_at: datetime | None = None,
    **metadata: Any,
) -> EventRecord:
    """Build a detached EventRecord the way the store would return it."""
    created_at = created_at or datetime(2026, 1, 1, 11, 0, 0)
    return EventRecord(
        id=id,
        event_type=event_type,
        payload=payload,
        delivery_metadata=DeliveryMetadata(**metadata).to_record(),
        status=str(status),
        next_retry_at=None,
        created_at=created_at,
        updated_at=updated_at or created_at,
    )


@pytest.fixture
def record_factory():
    """Provide make_record to tests."""
    return make_record


# =============================================================================
# Store / Publisher Mock Fixtures
# =============================================================================


@pytest.fixture
def mock_store() -> AsyncMock:
    """
    Mock EventStore.

    Every method is an AsyncMock; tests set return values as needed.
    """
    store = AsyncMock()
    store.find = AsyncMock(return_value=None)
    store.update = AsyncMock(return_value=MagicMock())
    store.delete = AsyncMock(return_value=True)
    store.count = AsyncMock(return_value=0)
    store.group_by = AsyncMock(return_value=[])
    store.find_many = AsyncMock(return_value=[])
    store.claim_retry = AsyncMock(return_value=True)
    store.release_claim = AsyncMock(return_value=True)
    store.purge = AsyncMock(return_value=0)
    return store


@pytest.fixture
def mock_publisher() -> MagicMock:
    """Mock EventPublisher with async publish/enqueue."""
    publisher = MagicMock()
    publisher.publish = AsyncMock(return_value=100)
    publisher.enqueue = AsyncMock()
    publisher.queue_name = "event-queue"
    return publisher


# =============================================================================
# Logging Mock Fixtures
# =============================================================================


@pytest.fixture
def mock_logger() -> MagicMock:
    """
    Mock logger for testing logging calls.

    Usage:
        def test_logging(mock_logger):
            with patch("module.logger", mock_logger):
                # Test code that logs
                mock_logger.info.assert_called_once()
    """
    logger = MagicMock()
    logger.debug = MagicMock()
    logger.info = MagicMock()
    logger.warning = MagicMock()
    logger.error = MagicMock()
    logger.exception = MagicMock()
    return logger

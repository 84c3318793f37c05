"""Unit tests for BrokerClient (no Redis: the FastStream broker is mocked)."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from modules.eventcore.core.exceptions import QueueError
from modules.eventcore.core.resilience import create_circuit_breaker
from modules.eventcore.events.broker import BrokerClient
from modules.eventcore.events.schemas import QueueMessage


@pytest.fixture
def broker() -> MagicMock:
    broker = MagicMock()
    broker.publish = AsyncMock()
    # aiobreaker bypasses the breaker when func._ignore_on_call is truthy;
    # a mock would auto-create that attribute, so pin it like a real method.
    broker.publish._ignore_on_call = False
    broker.connect = AsyncMock()
    broker.close = AsyncMock()
    return broker


def _message() -> QueueMessage:
    return QueueMessage(event_type="CAMPAIGN_PUBLISH_CONTENT", payload={"id": 1}, event_id=5)


class TestBrokerClient:
    @pytest.mark.asyncio
    async def test_publishes_wire_body_to_list(self, broker):
        client = BrokerClient(broker)

        await client.publish("event-queue", _message())

        broker.publish.assert_awaited_once_with(_message().to_wire(), list="event-queue")

    @pytest.mark.asyncio
    async def test_broker_failure_becomes_queue_error(self, broker):
        broker.publish.side_effect = ConnectionError("refused")
        client = BrokerClient(broker, create_circuit_breaker("test", fail_max=10))

        with pytest.raises(QueueError, match="refused"):
            await client.publish("event-queue", _message())

    @pytest.mark.asyncio
    async def test_open_breaker_becomes_queue_error(self, broker):
        broker.publish.side_effect = ConnectionError("refused")
        client = BrokerClient(broker, create_circuit_breaker("test", fail_max=1, timeout_duration=60))

        with pytest.raises(QueueError):
            await client.publish("event-queue", _message())
        broker.publish.reset_mock()

        with pytest.raises(QueueError, match="circuit open"):
            await client.publish("event-queue", _message())
        broker.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_connect_and_close(self, broker):
        client = BrokerClient(broker)
        await client.connect()
        await client.close()
        broker.connect.assert_awaited_once()
        broker.close.assert_awaited_once()

"""
Integration tests for the delivery pipeline.

Services are wired by build_event_services on the test database; the
broker is a recording fake, so every enqueue is visible in
fake_broker.publish.await_args_list.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from modules.eventcore.core.exceptions import NonRetryableError
from modules.eventcore.core.utils import load_json, utc_now
from modules.eventcore.events.schemas import DeliveryMetadata
from modules.eventcore.models.event_record import EventStatus
from modules.eventcore.services.coordinator import ProcessingOutcome

EVENT_TYPE = "CAMPAIGN_PUBLISH_CONTENT"


def enqueued(fake_broker) -> list[dict]:
    return [call.args[0] for call in fake_broker.publish.await_args_list]


class TestPublish:
    @pytest.mark.asyncio
    async def test_stores_then_enqueues(self, services, fake_broker):
        event_id = await services.publisher.publish(EVENT_TYPE, {"campaign_id": 7})

        record = await services.store.find(event_id)
        assert record.status == EventStatus.PENDING
        assert DeliveryMetadata.from_record(record.delivery_metadata).max_retries == 3

        fake_broker.publish.assert_awaited_once()
        assert fake_broker.publish.await_args.kwargs["list"] == "event-queue"
        assert enqueued(fake_broker)[0] == {
            "eventType": EVENT_TYPE,
            "payload": {"campaign_id": 7},
            "eventId": event_id,
            "priority": "normal",
            "retryAttempt": 0,
        }

    @pytest.mark.asyncio
    async def test_broker_failure_leaves_record_pending(self, services, fake_broker):
        fake_broker.publish.side_effect = ConnectionError("redis down")

        result = await services.publisher.publish(EVENT_TYPE, {"campaign_id": 7})

        assert result is None
        assert await services.store.count() == 1
        stats = await services.recovery.pending_stats()
        assert stats["total_pending"] == 1


class TestProcessing:
    @pytest.mark.asyncio
    async def test_success_deletes_record(self, services, handler_registry):
        handler = AsyncMock()
        handler_registry.register(EVENT_TYPE, handler)
        event_id = await services.publisher.publish(EVENT_TYPE, {"campaign_id": 7})

        outcome = await services.coordinator.process(event_id, EVENT_TYPE, {"campaign_id": 7}, handler_registry.dispatch)

        assert outcome == ProcessingOutcome.COMPLETED
        handler.assert_awaited_once_with(EVENT_TYPE, {"campaign_id": 7})
        assert await services.store.find(event_id) is None

    @pytest.mark.asyncio
    async def test_consumer_processes_dequeued_message(self, services, fake_broker, handler_registry):
        handler = AsyncMock()
        handler_registry.register(EVENT_TYPE, handler)
        event_id = await services.publisher.publish(EVENT_TYPE, {"campaign_id": 7})

        started = await services.consumer.on_message(enqueued(fake_broker)[0])
        remaining = await services.consumer.supervisor.drain(2.0)

        assert started is True
        assert remaining == 0
        assert await services.store.find(event_id) is None

    @pytest.mark.asyncio
    async def test_failure_schedules_retry_and_sweep_enqueues_it(self, services, fake_broker, handler_registry):
        handler_registry.register(EVENT_TYPE, AsyncMock(side_effect=RuntimeError("upstream timeout")))
        event_id = await services.publisher.publish(EVENT_TYPE, {"campaign_id": 7})

        outcome = await services.coordinator.process(event_id, EVENT_TYPE, {"campaign_id": 7}, handler_registry.dispatch)
        # Leave the retry to the sweep instead of the in-process timer
        services.retry_scheduler.cancel_pending()

        assert outcome == ProcessingOutcome.RETRY_SCHEDULED
        record = await services.store.find(event_id)
        metadata = DeliveryMetadata.from_record(record.delivery_metadata)
        assert record.status == EventStatus.RETRY_SCHEDULED
        assert record.next_retry_at is not None
        assert metadata.retry_count == 1
        assert metadata.last_error == "upstream timeout"

        await asyncio.sleep(0.05)
        assert await services.retry_scheduler.sweep_due() == 1
        assert await services.retry_scheduler.sweep_due() == 0

        assert (await services.store.find(event_id)).status == EventStatus.PENDING
        retry = enqueued(fake_broker)[-1]
        assert retry["retryAttempt"] == 1
        assert retry["priority"] == "low"

    @pytest.mark.asyncio
    async def test_retry_timer_enqueues_once(self, services, fake_broker, handler_registry):
        handler_registry.register(EVENT_TYPE, AsyncMock(side_effect=RuntimeError("upstream timeout")))
        event_id = await services.publisher.publish(EVENT_TYPE, {})

        await services.coordinator.process(event_id, EVENT_TYPE, {}, handler_registry.dispatch)
        # base_delay_ms is 10 in the test config
        await asyncio.sleep(0.1)

        assert services.retry_scheduler.pending_timers == 0
        assert len(enqueued(fake_broker)) == 2
        assert (await services.store.find(event_id)).status == EventStatus.PENDING

    @pytest.mark.asyncio
    async def test_non_retryable_failure_dead_letters(self, services, handler_registry):
        handler_registry.register(EVENT_TYPE, AsyncMock(side_effect=NonRetryableError("campaign deleted")))
        event_id = await services.publisher.publish(EVENT_TYPE, {"campaign_id": 7})

        outcome = await services.coordinator.process(event_id, EVENT_TYPE, {"campaign_id": 7}, handler_registry.dispatch)

        assert outcome == ProcessingOutcome.DEAD_LETTERED
        record = await services.store.find(event_id)
        assert record.status == EventStatus.DEAD_LETTER
        assert record.event_type == f"DEAD_LETTER_{EVENT_TYPE}"
        body = load_json(record.payload)
        assert body["originalEventType"] == EVENT_TYPE
        assert body["originalPayload"] == {"campaign_id": 7}
        assert body["error"] == "campaign deleted"
        assert body["retryCount"] == 0

    @pytest.mark.asyncio
    async def test_exhausted_budget_dead_letters(self, services, handler_registry):
        handler_registry.register(EVENT_TYPE, AsyncMock(side_effect=RuntimeError("upstream timeout")))
        event_id = await services.publisher.publish(EVENT_TYPE, {}, max_retries=0)

        outcome = await services.coordinator.process(event_id, EVENT_TYPE, {}, handler_registry.dispatch)

        assert outcome == ProcessingOutcome.DEAD_LETTERED
        assert (await services.store.find(event_id)).status == EventStatus.DEAD_LETTER


class TestRetryScenarios:
    """Full attempt cycles with the default budget of three retries."""

    async def _attempt(self, services, event_id, handler_registry) -> ProcessingOutcome:
        outcome = await services.coordinator.process(event_id, EVENT_TYPE, {"campaign_id": 7}, handler_registry.dispatch)
        services.retry_scheduler.cancel_pending()
        if outcome == ProcessingOutcome.RETRY_SCHEDULED:
            # max_delay_ms is 80 in the test config
            await asyncio.sleep(0.1)
            assert await services.retry_scheduler.sweep_due() == 1
        return outcome

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self, services, fake_broker, handler_registry):
        handler = AsyncMock(side_effect=[RuntimeError("upstream timeout"), RuntimeError("upstream timeout"), None])
        handler_registry.register(EVENT_TYPE, handler)
        event_id = await services.publisher.publish(EVENT_TYPE, {"campaign_id": 7})

        outcomes = [await self._attempt(services, event_id, handler_registry) for _ in range(3)]

        assert outcomes == [
            ProcessingOutcome.RETRY_SCHEDULED,
            ProcessingOutcome.RETRY_SCHEDULED,
            ProcessingOutcome.COMPLETED,
        ]
        assert handler.await_count == 3
        assert [message["retryAttempt"] for message in enqueued(fake_broker)] == [0, 1, 2]
        assert await services.store.find(event_id) is None
        assert await services.dead_letters.count() == 0
        assert await services.store.count() == 0

    @pytest.mark.asyncio
    async def test_fourth_failure_dead_letters(self, services, fake_broker, handler_registry):
        handler = AsyncMock(side_effect=RuntimeError("upstream timeout"))
        handler_registry.register(EVENT_TYPE, handler)
        event_id = await services.publisher.publish(EVENT_TYPE, {"campaign_id": 7})

        outcomes = [await self._attempt(services, event_id, handler_registry) for _ in range(4)]

        assert outcomes == [ProcessingOutcome.RETRY_SCHEDULED] * 3 + [ProcessingOutcome.DEAD_LETTERED]
        assert handler.await_count == 4
        assert [message["retryAttempt"] for message in enqueued(fake_broker)] == [0, 1, 2, 3]

        record = await services.store.find(event_id)
        assert record.status == EventStatus.DEAD_LETTER
        body = load_json(record.payload)
        assert body["retryCount"] == 3
        assert body["error"] == "upstream timeout"
        assert body["originalPayload"] == {"campaign_id": 7}
        assert await services.dead_letters.count() == 1


class TestDeadLetterReprocess:
    @pytest.mark.asyncio
    async def test_republishes_with_reduced_budget(self, services, fake_broker, handler_registry):
        handler_registry.register(EVENT_TYPE, AsyncMock(side_effect=NonRetryableError("bad request")))
        event_id = await services.publisher.publish(EVENT_TYPE, {"campaign_id": 7})
        await services.coordinator.process(event_id, EVENT_TYPE, {"campaign_id": 7}, handler_registry.dispatch)

        reprocessed = await services.dead_letters.reprocess(10)

        assert reprocessed == 1
        assert await services.store.find(event_id) is None
        (new_record,) = await services.store.find_many()
        assert new_record.id != event_id
        assert new_record.event_type == EVENT_TYPE
        assert load_json(new_record.payload) == {"campaign_id": 7}
        assert DeliveryMetadata.from_record(new_record.delivery_metadata).max_retries == 1
        assert enqueued(fake_broker)[-1]["eventId"] == new_record.id

    @pytest.mark.asyncio
    async def test_failed_republish_keeps_dead_letter(self, services, fake_broker, handler_registry):
        handler_registry.register(EVENT_TYPE, AsyncMock(side_effect=NonRetryableError("bad request")))
        event_id = await services.publisher.publish(EVENT_TYPE, {})
        await services.coordinator.process(event_id, EVENT_TYPE, {}, handler_registry.dispatch)
        services.publisher.publish_enabled = False

        assert await services.dead_letters.reprocess(10) == 0
        assert (await services.store.find(event_id)).status == EventStatus.DEAD_LETTER


class TestRecovery:
    async def _orphan(self, services, age=timedelta(minutes=10), **metadata) -> int:
        record = await services.store.create(EVENT_TYPE, {"campaign_id": 7}, DeliveryMetadata(**metadata).to_record())
        await self._age(services, record.id, age)
        return record.id

    async def _age(self, services, event_id, age=timedelta(minutes=10)) -> None:
        old = utc_now() - age
        await services.store.update(event_id, created_at=old, updated_at=old)

    @pytest.mark.asyncio
    async def test_recovers_orphaned_pending_record(self, services, fake_broker):
        event_id = await services.publisher.publish(EVENT_TYPE, {"campaign_id": 7})
        await self._age(services, event_id)

        report = await services.recovery.recover_pending()

        assert report.to_dict() == {"total": 1, "recovered": 1, "failed": 0, "skipped": 0, "dead_lettered": 0}
        assert len(enqueued(fake_broker)) == 2
        record = await services.store.find(event_id)
        assert DeliveryMetadata.from_record(record.delivery_metadata).recovery_count == 1

    @pytest.mark.asyncio
    async def test_recent_records_are_left_alone(self, services, fake_broker):
        await services.publisher.publish(EVENT_TYPE, {})

        report = await services.recovery.recover_pending()

        assert report.total == 0
        assert len(enqueued(fake_broker)) == 1

    @pytest.mark.asyncio
    async def test_orphan_on_final_retry_is_recovered(self, services, fake_broker, handler_registry):
        event_id = await self._orphan(services, retry_count=3, max_retries=3)

        report = await services.recovery.recover_pending()

        assert report.recovered == 1
        assert enqueued(fake_broker)[-1]["retryAttempt"] == 3

        handler_registry.register(EVENT_TYPE, AsyncMock(side_effect=RuntimeError("upstream timeout")))
        outcome = await services.coordinator.process(event_id, EVENT_TYPE, {"campaign_id": 7}, handler_registry.dispatch)

        assert outcome == ProcessingOutcome.DEAD_LETTERED
        assert load_json((await services.store.find(event_id)).payload)["retryCount"] == 3

    @pytest.mark.asyncio
    async def test_stranded_records_do_not_crowd_out_orphans(self, services, fake_broker):
        stranded = [
            await self._orphan(services, age=timedelta(hours=2), recovery_count=3)
            for _ in range(100)
        ]
        orphan_id = await self._orphan(services)

        report = await services.recovery.recover_pending()

        assert report.recovered == 1
        assert report.dead_lettered == 100
        assert [message["eventId"] for message in enqueued(fake_broker)] == [orphan_id]
        assert await services.dead_letters.count() == 100
        assert (await services.store.find(stranded[0])).status == EventStatus.DEAD_LETTER
        assert (await services.store.find(orphan_id)).status == EventStatus.PENDING

    @pytest.mark.asyncio
    async def test_recovery_limit_across_restarts(self, services, fake_broker):
        event_id = await self._orphan(services)

        reports = []
        for _ in range(6):
            reports.append(await services.recovery.recover_pending())
            if (await services.store.find(event_id)).status == EventStatus.PENDING:
                # The next worker starts after the recovered message was lost again
                await self._age(services, event_id)

        assert [report.recovered for report in reports] == [1, 1, 1, 0, 0, 0]
        assert [report.dead_lettered for report in reports] == [0, 0, 0, 1, 0, 0]
        assert len(enqueued(fake_broker)) == 3

        record = await services.store.find(event_id)
        assert record.status == EventStatus.DEAD_LETTER
        body = load_json(record.payload)
        assert body["originalEventType"] == EVENT_TYPE
        assert body["error"] == "Recovery limit exceeded after 3 recoveries"
        assert DeliveryMetadata.from_record(record.delivery_metadata).recovery_count == 3

    @pytest.mark.asyncio
    async def test_stranded_record_ages_out_through_dead_letter(self, services):
        event_id = await self._orphan(services, recovery_count=3)
        assert await services.recovery.purge_expired() == 0

        await services.recovery.recover_pending()
        await services.store.update(event_id, updated_at=utc_now() - timedelta(days=31))

        assert await services.recovery.purge_expired() == 1
        assert await services.store.count() == 0

    @pytest.mark.asyncio
    async def test_purge_expired_dead_letters(self, services):
        record = await services.store.create(EVENT_TYPE, {}, DeliveryMetadata().to_record())
        await services.store.update(
            record.id,
            status=EventStatus.DEAD_LETTER,
            updated_at=utc_now() - timedelta(days=31),
        )

        assert await services.recovery.purge_expired() == 1
        assert await services.store.count() == 0

    @pytest.mark.asyncio
    async def test_live_records_never_purged(self, services):
        event_id = await self._orphan(services, age=timedelta(days=90))
        retrying = await self._orphan(services, age=timedelta(days=90))
        await services.store.update(retrying, status=EventStatus.RETRY_SCHEDULED, updated_at=utc_now() - timedelta(days=90))

        assert await services.recovery.purge_expired() == 0
        assert await services.recovery.purge_expired(0) == 0
        assert await services.store.find(event_id) is not None
        assert await services.store.find(retrying) is not None

"""
Unit tests for the scheduled event maintenance tasks.

Task functions are called directly with mocked services, bypassing the
broker registration which requires Redis.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from modules.eventcore.schemas.events import EventStats
from modules.eventcore.tasks.scheduled import (
    SCHEDULED_TASKS,
    purge_expired_events,
    register_scheduled_tasks,
    report_event_stats,
    sweep_due_retries,
)


@pytest.fixture
def services() -> MagicMock:
    services = MagicMock()
    services.retry_scheduler.sweep_due = AsyncMock(return_value=3)
    services.recovery.purge_expired = AsyncMock(return_value=4)
    services.monitor.stats = AsyncMock(
        return_value=EventStats(pending=5, retry_scheduled=1, dead_letter=0)
    )
    return services


class TestSweepDueRetries:
    @pytest.mark.asyncio
    async def test_returns_dispatched_count(self, services):
        result = await sweep_due_retries(services=services)

        assert result["dispatched"] == 3
        assert "swept_at" in result
        services.retry_scheduler.sweep_due.assert_awaited_once_with(None)

    @pytest.mark.asyncio
    async def test_passes_limit(self, services):
        await sweep_due_retries(limit=10, services=services)
        services.retry_scheduler.sweep_due.assert_awaited_once_with(10)


class TestPurgeExpiredEvents:
    @pytest.mark.asyncio
    async def test_returns_deleted_count(self, services):
        result = await purge_expired_events(retention_days=14, services=services)

        assert result["deleted"] == 4
        services.recovery.purge_expired.assert_awaited_once_with(14)


class TestReportEventStats:
    @pytest.mark.asyncio
    async def test_no_warning_without_dead_letters(self, services):
        with patch("modules.eventcore.tasks.scheduled.logger") as mock_logger:
            result = await report_event_stats(services=services)

        assert result["pending"] == 5
        assert "by_type" not in result
        mock_logger.warning.assert_not_called()

    @pytest.mark.asyncio
    async def test_warns_on_dead_letters(self, services):
        services.monitor.stats.return_value = EventStats(pending=0, retry_scheduled=0, dead_letter=2)

        with patch("modules.eventcore.tasks.scheduled.logger") as mock_logger:
            await report_event_stats(services=services)

        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args.kwargs["dead_letter"] == 2


class TestSchedule:
    def test_all_tasks_have_cron(self):
        assert set(SCHEDULED_TASKS) == {"sweep_due_retries", "purge_expired_events", "report_event_stats"}
        for config in SCHEDULED_TASKS.values():
            assert "cron" in config["schedule"][0]
            assert callable(config["function"])

    def test_sweep_runs_every_minute(self):
        assert SCHEDULED_TASKS["sweep_due_retries"]["schedule"] == [{"cron": "* * * * *"}]

    def test_register_with_broker(self):
        broker = MagicMock()
        broker.task.return_value = lambda fn: fn

        registered = register_scheduled_tasks(broker)

        assert set(registered) == set(SCHEDULED_TASKS)
        kwargs = [c.kwargs for c in broker.task.call_args_list]
        purge = next(k for k in kwargs if k["task_name"] == "purge_expired_events")
        assert purge["max_retries"] == 2
        assert purge["schedule"] == [{"cron": "0 */6 * * *"}]

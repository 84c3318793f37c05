"""Unit tests for ShutdownState and TaskSupervisor."""

import asyncio
from unittest.mock import patch

import pytest

from modules.eventcore.core.concurrency import ShutdownState, TaskSupervisor


class TestShutdownState:
    def test_initially_running(self):
        assert ShutdownState().is_shutting_down is False

    def test_begin_sets_flag_once(self):
        state = ShutdownState()
        assert state.begin("SIGTERM") is True
        assert state.is_shutting_down is True
        assert state.reason == "SIGTERM"

        assert state.begin("second") is False
        assert state.reason == "SIGTERM"

    @pytest.mark.asyncio
    async def test_wait_returns_after_begin(self):
        state = ShutdownState()
        waiter = asyncio.create_task(state.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        state.begin("test")
        await asyncio.wait_for(waiter, timeout=1)


class TestTaskSupervisor:
    @pytest.mark.asyncio
    async def test_tracks_and_forgets_finished_tasks(self):
        supervisor = TaskSupervisor("test")
        release = asyncio.Event()

        async def work():
            await release.wait()

        supervisor.spawn(work(), name="work")
        assert supervisor.in_flight == 1

        release.set()
        await supervisor.drain(timeout=1)
        assert supervisor.in_flight == 0

    @pytest.mark.asyncio
    async def test_drain_reports_stragglers(self):
        supervisor = TaskSupervisor("test")
        supervisor.spawn(asyncio.sleep(10), name="slow")

        pending = await supervisor.drain(timeout=0.01)

        assert pending == 1
        assert supervisor.cancel_all() == 1

    @pytest.mark.asyncio
    async def test_drain_with_nothing_in_flight(self):
        assert await TaskSupervisor("test").drain(timeout=0.01) == 0

    @pytest.mark.asyncio
    async def test_failed_task_is_logged(self, mock_logger):
        supervisor = TaskSupervisor("test")

        async def boom():
            raise RuntimeError("boom")

        with patch("modules.eventcore.core.concurrency.logger", mock_logger):
            task = supervisor.spawn(boom(), name="boom")
            await asyncio.wait({task})
            await asyncio.sleep(0)

        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args[1]["extra"]["error"] == "boom"
        assert supervisor.in_flight == 0

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        supervisor = TaskSupervisor("test")
        tasks = [supervisor.spawn(asyncio.sleep(10)) for _ in range(3)]

        assert supervisor.cancel_all() == 3
        await asyncio.gather(*tasks, return_exceptions=True)
        assert all(task.cancelled() for task in tasks)
        assert supervisor.in_flight == 0

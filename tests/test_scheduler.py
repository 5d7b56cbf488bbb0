"""Tests for the background poll scheduler."""

import asyncio

import pytest

from nphies_poll.db.models.enums import TriggerType
from nphies_poll.db.unit_of_work import UnitOfWork
from nphies_poll.exchange.clients.mock_client import MockExchangeClient
from nphies_poll.polling.orchestrator import PollOrchestrator
from nphies_poll.polling.scheduler import PollScheduler


@pytest.fixture
def orchestrator(session_factory, poller_config):
    return PollOrchestrator(
        client=MockExchangeClient(poller_config),
        config=poller_config,
        session_factory=session_factory,
    )


async def scheduled_runs(session_factory):
    async with UnitOfWork(session_factory) as uow:
        return await uow.poll_logs.filter(trigger_type=TriggerType.SCHEDULED.value)


class TestPollScheduler:
    @pytest.mark.asyncio
    async def test_tick_runs_scheduled_poll(self, session_factory, orchestrator):
        scheduler = PollScheduler(orchestrator)

        await scheduler.tick()

        runs = await scheduled_runs(session_factory)
        assert len(runs) == 1
        assert runs[0].status == "no_messages"

    @pytest.mark.asyncio
    async def test_tick_skips_while_a_run_is_in_flight(self, session_factory, orchestrator):
        """A busy orchestrator means the tick is skipped, not queued."""
        scheduler = PollScheduler(orchestrator)
        await orchestrator._run_lock.acquire()
        try:
            await scheduler.tick()
        finally:
            orchestrator._run_lock.release()

        assert await scheduled_runs(session_factory) == []

    @pytest.mark.asyncio
    async def test_start_polls_after_initial_delay_and_stops(self, session_factory, orchestrator):
        scheduler = PollScheduler(orchestrator)

        await scheduler.start()
        assert scheduler.is_running
        for _ in range(100):
            runs = await scheduled_runs(session_factory)
            if runs and runs[0].status != "in_progress":
                break
            await asyncio.sleep(0.02)

        status = scheduler.get_status()
        assert status.running
        assert status.interval_minutes == 1
        assert status.next_run_at is not None

        await scheduler.stop()
        assert not scheduler.is_running
        assert not scheduler.get_status().running
        assert len(await scheduled_runs(session_factory)) == 1

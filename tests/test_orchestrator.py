"""
Tests for the poll orchestrator.

Covers the run state machine (success / no_messages / error), transport
failures, malformed bundles, single-flight, cancellation, counters and
idempotence across runs.
"""

import asyncio

import pytest

from nphies_poll.db.models.enums import MatchStrategy, PollStatus, ProcessingStatus, TriggerType
from nphies_poll.db.unit_of_work import UnitOfWork
from nphies_poll.errors import ErrorCode, PollAlreadyRunningError, TransportAuthError
from nphies_poll.exchange.clients.mock_client import MockExchangeClient, empty_poll_response
from nphies_poll.db.repositories.poll_message_repository import PollMessageRepository
from nphies_poll.polling import orchestrator as orchestrator_module
from nphies_poll.polling.orchestrator import PollOrchestrator
from tests.fixtures.clients import GatedClient
from tests.fixtures.fhir_messages import (
    advanced_authorization,
    claim_response,
    message_bundle,
    payment_notice,
    poll_response,
)


def make_orchestrator(session_factory, config, *responses, client=None):
    client = client or MockExchangeClient(config, responses=list(responses))
    return PollOrchestrator(client=client, config=config, session_factory=session_factory)


async def load_log(session_factory, poll_log_id):
    async with UnitOfWork(session_factory) as uow:
        return await uow.poll_logs.get_with_messages(poll_log_id)


class RecordingLogger:
    """Stands in for the module logger and keeps every event."""

    def __init__(self):
        self.events = []

    def _record(self, event, **fields):
        self.events.append((event, fields))

    debug = info = warning = error = _record


async def wait_until_idle(orchestrator):
    while orchestrator.is_running:
        await asyncio.sleep(0.01)


def three_entry_response():
    return poll_response(
        message_bundle(claim_response(None), response_identifier="hdr-out-PA"),
        message_bundle(payment_notice("1098765432", "PR-FHIR", "2026-10-15"), event_code="payment-notice"),
        message_bundle(claim_response("NOT-ON-FILE")),
    )


class TestRunOutcomes:
    """Tests for how a run ends."""

    @pytest.mark.asyncio
    async def test_three_entry_scenario(self, session_factory, poller_config, seed):
        """Correlated, heuristic and unmatched messages in one bundle."""
        pa = await seed.prior_authorization(outbound_message_header_id="hdr-out-PA")
        claim = await seed.paid_claim()
        orchestrator = make_orchestrator(session_factory, poller_config, three_entry_response())

        result = await orchestrator.trigger()

        assert result.success
        assert result.status == PollStatus.SUCCESS
        assert result.trigger_type == TriggerType.MANUAL
        assert (result.stats.received, result.stats.matched, result.stats.unmatched) == (3, 2, 1)
        assert result.stats.errored == 0
        assert result.errors == []

        strategies = [m.match_strategy for m in result.messages]
        assert strategies == [MatchStrategy.DIRECT_CORRELATION, MatchStrategy.HEURISTIC, None]
        assert result.messages[0].matched_record_id == pa.id
        assert result.messages[1].matched_record_id == claim.id

        log = await load_log(session_factory, result.poll_log_id)
        assert log.status == "success"
        assert log.messages_received == 3
        assert log.messages_matched == 2
        assert log.messages_unmatched == 1
        assert log.completed_at is not None
        assert log.duration_ms is not None
        assert len(log.messages) == 3
        assert log.processing_summary == {
            "ClaimResponse": {"matched": 1, "newRecords": 0, "unmatched": 1, "errors": 0},
            "PaymentNotice": {"matched": 1, "newRecords": 0, "unmatched": 0, "errors": 0},
        }

    @pytest.mark.asyncio
    async def test_request_bundle_is_sent_and_stored(self, session_factory, poller_config):
        client = MockExchangeClient(poller_config)
        orchestrator = make_orchestrator(session_factory, poller_config, client=client)

        result = await orchestrator.trigger()

        log = await load_log(session_factory, result.poll_log_id)
        assert client.requests == [log.request_bundle]
        assert result.poll_bundle == log.request_bundle
        assert log.provider_nphies_id == "1010613708"

    @pytest.mark.asyncio
    async def test_empty_bundle(self, session_factory, poller_config):
        orchestrator = make_orchestrator(session_factory, poller_config, empty_poll_response())

        result = await orchestrator.trigger()

        assert result.success
        assert result.status == PollStatus.NO_MESSAGES
        assert result.stats.received == 0
        assert result.message == "No messages in queue"

    @pytest.mark.asyncio
    async def test_transport_timeout(self, session_factory, poller_config):
        config = poller_config.model_copy(update={"timeout_seconds": 0.05})
        client = MockExchangeClient(config, latency_ms=1000)
        orchestrator = make_orchestrator(session_factory, config, client=client)

        result = await orchestrator.trigger()

        assert not result.success
        assert result.status == PollStatus.ERROR
        assert result.stats.received == 0
        assert result.errors[0].code == ErrorCode.TRANSPORT_TIMEOUT

        log = await load_log(session_factory, result.poll_log_id)
        assert log.status == "error"
        assert log.messages_received == 0
        assert log.messages == []
        assert log.errors[0]["code"] == "TransportTimeout"

    @pytest.mark.asyncio
    async def test_transport_auth_error(self, session_factory, poller_config):
        failure = TransportAuthError("exchange rejected credentials (401)", status_code=401, body={"issue": []})
        orchestrator = make_orchestrator(session_factory, poller_config, failure)

        result = await orchestrator.trigger()

        assert result.status == PollStatus.ERROR
        assert result.errors[0].code == ErrorCode.TRANSPORT_AUTH
        log = await load_log(session_factory, result.poll_log_id)
        assert log.response_code == "401"
        assert log.response_bundle == {"issue": []}

    @pytest.mark.asyncio
    async def test_malformed_bundle_keeps_raw_payload(self, session_factory, poller_config):
        orchestrator = make_orchestrator(session_factory, poller_config, "<html>gateway error</html>")

        result = await orchestrator.trigger()

        assert result.status == PollStatus.ERROR
        assert result.errors[0].code == ErrorCode.MALFORMED_BUNDLE
        log = await load_log(session_factory, result.poll_log_id)
        assert log.response_bundle == "<html>gateway error</html>"
        assert log.messages == []

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_internal_error(self, session_factory, poller_config):
        orchestrator = make_orchestrator(session_factory, poller_config, RuntimeError("boom"))

        result = await orchestrator.trigger()

        assert result.status == PollStatus.ERROR
        assert result.errors[0].code == ErrorCode.INTERNAL_ERROR
        assert not orchestrator.is_running

    @pytest.mark.asyncio
    async def test_message_errors_do_not_fail_the_run(self, session_factory, poller_config, seed):
        """Counters always add up, and per-message failures are listed."""
        await seed.prior_authorization(request_number="PA-CLOSED", status="cancelled")
        await seed.prior_authorization(request_number="PA-OPEN")
        response = poll_response(
            message_bundle(claim_response("PA-OPEN")),
            message_bundle(claim_response("PA-CLOSED")),
            message_bundle(claim_response("PA-MISSING")),
            message_bundle(advanced_authorization("AA-9")),
        )
        orchestrator = make_orchestrator(session_factory, poller_config, response)

        result = await orchestrator.trigger()

        stats = result.stats
        assert result.status == PollStatus.SUCCESS
        assert stats.received == stats.matched + stats.unmatched + stats.errored
        assert (stats.matched, stats.unmatched, stats.errored) == (2, 1, 1)
        assert [e.code for e in result.errors] == [ErrorCode.MESSAGE_PROCESSING]
        errored = next(m for m in result.messages if m.processing_status == ProcessingStatus.ERROR)
        assert result.errors[0].poll_message_id == errored.id

        log = await load_log(session_factory, result.poll_log_id)
        assert log.processing_summary["ClaimResponse"] == {
            "matched": 1, "newRecords": 1, "unmatched": 1, "errors": 1
        }
        assert log.errors[0]["pollMessageId"] == errored.id


class TestSingleFlight:
    """Only one run may be in progress."""

    @pytest.mark.asyncio
    async def test_concurrent_trigger_is_rejected(self, session_factory, poller_config):
        client = GatedClient(poller_config)
        orchestrator = make_orchestrator(session_factory, poller_config, client=client)

        first = asyncio.create_task(orchestrator.trigger())
        await client.started.wait()
        assert orchestrator.is_running
        running_id = orchestrator.current_poll_log_id

        with pytest.raises(PollAlreadyRunningError) as exc_info:
            await orchestrator.trigger(TriggerType.SCHEDULED)
        assert exc_info.value.poll_log_id == running_id

        client.release.set()
        result = await first
        assert result.status == PollStatus.NO_MESSAGES
        assert not orchestrator.is_running

        async with UnitOfWork(session_factory) as uow:
            assert await uow.poll_logs.count() == 1

    @pytest.mark.asyncio
    async def test_runs_after_previous_finishes(self, session_factory, poller_config):
        orchestrator = make_orchestrator(session_factory, poller_config)

        first = await orchestrator.trigger()
        second = await orchestrator.trigger(TriggerType.SCHEDULED)

        assert first.poll_log_id != second.poll_log_id
        assert second.trigger_type == TriggerType.SCHEDULED


class TestCancel:
    """Cancelling the in-flight run."""

    @pytest.mark.asyncio
    async def test_cancel_finalizes_as_error(self, session_factory, poller_config):
        client = GatedClient(poller_config)
        orchestrator = make_orchestrator(session_factory, poller_config, client=client)

        run = asyncio.create_task(orchestrator.trigger())
        await client.started.wait()
        poll_log_id = await orchestrator.cancel()
        result = await run

        assert poll_log_id == result.poll_log_id
        assert result.status == PollStatus.ERROR
        assert result.errors[0].code == ErrorCode.CANCELLED
        assert not orchestrator.is_running

        log = await load_log(session_factory, poll_log_id)
        assert log.status == "error"
        assert log.errors[0]["code"] == "Cancelled"

        # The orchestrator is usable again.
        client.release.set()
        again = await orchestrator.trigger()
        assert again.status == PollStatus.NO_MESSAGES

    @pytest.mark.asyncio
    async def test_cancel_when_idle(self, session_factory, poller_config):
        orchestrator = make_orchestrator(session_factory, poller_config)
        assert await orchestrator.cancel() is None

    @pytest.mark.asyncio
    async def test_cancel_after_terminal_write_keeps_outcome(self, session_factory, poller_config, monkeypatch):
        """A cancel landing after the log is committed returns the committed run."""
        reading = asyncio.Event()
        list_for_log = PollMessageRepository.list_for_log

        async def slow_list_for_log(repository, poll_log_id):
            reading.set()
            await asyncio.sleep(0.2)
            return await list_for_log(repository, poll_log_id)

        monkeypatch.setattr(PollMessageRepository, "list_for_log", slow_list_for_log)
        orchestrator = make_orchestrator(session_factory, poller_config)

        run = asyncio.create_task(orchestrator.trigger())
        await reading.wait()
        poll_log_id = await orchestrator.cancel()
        result = await run

        assert poll_log_id == result.poll_log_id
        assert result.status == PollStatus.NO_MESSAGES
        assert result.errors == []
        assert not orchestrator.is_running

        log = await load_log(session_factory, poll_log_id)
        assert log.status == "no_messages"
        assert log.errors is None

    @pytest.mark.asyncio
    async def test_failure_after_caller_left_is_logged(self, session_factory, poller_config, monkeypatch):
        """A run that fails with nobody awaiting it still reports the failure."""
        recorder = RecordingLogger()
        monkeypatch.setattr(orchestrator_module, "logger", recorder)
        client = GatedClient(poller_config)
        orchestrator = make_orchestrator(session_factory, poller_config, client=client)

        async def failing_finalize(*args, **kwargs):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(orchestrator, "_finalize", failing_finalize)

        caller = asyncio.create_task(orchestrator.trigger())
        await client.started.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        assert orchestrator.is_running
        client.release.set()
        await asyncio.wait_for(wait_until_idle(orchestrator), timeout=5)

        failures = [fields for event, fields in recorder.events if event == "poll.run_failed"]
        assert len(failures) == 1
        assert failures[0]["error"] == "database unavailable"
        assert failures[0]["error_type"] == "RuntimeError"


class TestIdempotence:
    """The same bundle delivered twice is applied once."""

    @pytest.mark.asyncio
    async def test_redelivered_bundle_is_replayed(self, session_factory, poller_config, seed):
        await seed.prior_authorization(request_number="PA-1001")
        response = poll_response(
            message_bundle(claim_response("PA-1001")),
            message_bundle(advanced_authorization("AA-1")),
        )
        orchestrator = make_orchestrator(session_factory, poller_config, response, response)

        first = await orchestrator.trigger()
        second = await orchestrator.trigger()

        assert [m.replayed for m in first.messages] == [False, False]
        assert [m.replayed for m in second.messages] == [True, True]
        assert [m.processing_status for m in second.messages] == [
            m.processing_status for m in first.messages
        ]
        assert second.stats.matched == first.stats.matched == 2

        async with UnitOfWork(session_factory) as uow:
            assert await uow.receipts.count() == 2
            assert await uow.advanced_authorizations.count() == 1


class TestLifecycle:
    """Finalization and start-up recovery."""

    @pytest.mark.asyncio
    async def test_log_is_finalized_once(self, session_factory):
        async with UnitOfWork(session_factory) as uow:
            log = await uow.poll_logs.create_run("manual")
            assert await uow.poll_logs.finalize(log.id, status="success")
            assert not await uow.poll_logs.finalize(log.id, status="error")

        async with UnitOfWork(session_factory) as uow:
            assert (await uow.poll_logs.get_by_id(log.id)).status == "success"

    @pytest.mark.asyncio
    async def test_recover_orphaned_runs(self, session_factory, poller_config):
        async with UnitOfWork(session_factory) as uow:
            orphan = await uow.poll_logs.create_run("scheduled")
        orchestrator = make_orchestrator(session_factory, poller_config)

        assert await orchestrator.recover_orphaned_runs() == [orphan.id]
        assert await orchestrator.recover_orphaned_runs() == []

        log = await load_log(session_factory, orphan.id)
        assert log.status == "error"
        assert log.errors[0]["code"] == "InternalError"
        assert log.completed_at is not None

"""Tests for reconciliation: appliers, idempotence and per-message failures."""

import asyncio
from decimal import Decimal

import pytest
import pytest_asyncio

from nphies_poll.classification.classifier import classify
from nphies_poll.db.models.enums import MatchStrategy, ProcessingStatus, RecordTable
from nphies_poll.db.unit_of_work import UnitOfWork
from nphies_poll.exchange.extractor import RawMessage
from nphies_poll.matching import MatchOutcome, Matcher
from nphies_poll.reconciliation import Reconciler
from nphies_poll.reconciliation.appliers import derive_authorization_status, derive_claim_status
from tests.fixtures.fhir_messages import (
    advanced_authorization,
    claim_response,
    communication_request,
    payment_notice,
)


def message(payload, response_identifier=None):
    return classify(
        RawMessage(
            resource_type=payload["resourceType"],
            payload=payload,
            response_identifier=response_identifier,
        )
    )


@pytest_asyncio.fixture
async def poll_log_id(session_factory):
    async with UnitOfWork(session_factory) as uow:
        log = await uow.poll_logs.create_run("manual")
        return log.id


@pytest.fixture
def reconciler(session_factory):
    return Reconciler(session_factory)


async def match_and_reconcile(session_factory, reconciler, poll_log_id, msg):
    async with UnitOfWork(session_factory) as uow:
        outcome = await Matcher().match(uow, msg)
    return await reconciler.reconcile(poll_log_id, msg, outcome)


async def get_record(session_factory, table, record_id):
    async with UnitOfWork(session_factory) as uow:
        return await uow.records(table).get_by_id(record_id)


class TestStatusDerivation:
    def test_authorization_status(self):
        assert derive_authorization_status(claim_response(outcome="complete")) == ("approved", "approved")
        assert derive_authorization_status(
            claim_response(outcome="complete", disposition="Denied", adjudication=None)
        ) == ("denied", "rejected")
        assert derive_authorization_status(claim_response(outcome="partial", adjudication=None)) == (
            "partial",
            "partial",
        )
        assert derive_authorization_status(claim_response(outcome="queued", adjudication=None))[0] == "queued"

    def test_claim_status(self):
        assert derive_claim_status(claim_response(outcome="complete", adjudication="rejected"))[0] == "denied"
        assert derive_claim_status(claim_response(outcome="complete", adjudication=None))[0] == "approved"
        assert derive_claim_status(claim_response(outcome="error"))[0] == "error"


class TestApply:
    """Tests for resource-specific updates."""

    @pytest.mark.asyncio
    async def test_claim_response_updates_prior_authorization(
        self, session_factory, seed, reconciler, poll_log_id
    ):
        pa = await seed.prior_authorization(request_number="PA-1001")
        payload = claim_response(
            "PA-1001", preAuthRef="REF-9", preAuthPeriod={"start": "2026-10-01", "end": "2026-11-01"}
        )

        result = await match_and_reconcile(session_factory, reconciler, poll_log_id, message(payload))

        assert result.processing_status == ProcessingStatus.PROCESSED
        assert result.matched
        assert result.matched_table == RecordTable.PRIOR_AUTHORIZATIONS
        assert result.matched_record_id == pa.id
        assert result.match_strategy == MatchStrategy.BUSINESS_IDENTIFIER
        assert result.poll_message_id is not None

        record = await get_record(session_factory, RecordTable.PRIOR_AUTHORIZATIONS, pa.id)
        assert record.status == "approved"
        assert record.adjudication_outcome == "approved"
        assert record.pre_auth_ref == "REF-9"
        assert record.pre_auth_period_end == "2026-11-01"
        assert record.approved_amount == Decimal("1500")
        assert record.response_date is not None

    @pytest.mark.asyncio
    async def test_payment_notice_records_payment(self, session_factory, seed, reconciler, poll_log_id):
        claim = await seed.paid_claim()

        result = await match_and_reconcile(
            session_factory, reconciler, poll_log_id,
            message(payment_notice("1098765432", "PR-FHIR", "2026-10-15", amount=900.0)),
        )

        assert result.match_strategy == MatchStrategy.HEURISTIC
        record = await get_record(session_factory, RecordTable.CLAIM_SUBMISSIONS, claim.id)
        assert record.paid_amount == Decimal("900")
        assert record.payment_status == "paid"
        assert record.payment_reference == "PAY-1"
        assert record.payment_date == "2026-10-15"

    @pytest.mark.asyncio
    async def test_communication_request_is_stored_against_parent(
        self, session_factory, seed, reconciler, poll_log_id
    ):
        claim = await seed.claim_submission(claim_number="CLM-55")
        payload = communication_request("CLM-55", text="Send the discharge summary")

        result = await match_and_reconcile(session_factory, reconciler, poll_log_id, message(payload))

        assert result.processing_status == ProcessingStatus.PROCESSED
        assert result.matched_record_id == claim.id
        async with UnitOfWork(session_factory) as uow:
            stored = await uow.communications.get_by_communication_id(payload["id"])
        assert stored.parent_table == "claim_submissions"
        assert stored.parent_record_id == claim.id
        assert stored.payload_text == "Send the discharge summary"
        assert stored.about_identifier == "CLM-55"

    @pytest.mark.asyncio
    async def test_completed_cancel_task_closes_request(self, session_factory, seed, reconciler, poll_log_id):
        pa = await seed.prior_authorization(request_number="PA-1001")
        task = {
            "resourceType": "Task",
            "id": "task-1",
            "status": "completed",
            "code": {"coding": [{"code": "cancel"}]},
            "focus": {"identifier": {"value": "PA-1001"}},
        }

        result = await match_and_reconcile(session_factory, reconciler, poll_log_id, message(task))

        assert result.processing_status == ProcessingStatus.PROCESSED
        record = await get_record(session_factory, RecordTable.PRIOR_AUTHORIZATIONS, pa.id)
        assert record.status == "cancelled"

    @pytest.mark.asyncio
    async def test_payer_initiated_authorization_is_created(self, session_factory, reconciler, poll_log_id):
        result = await match_and_reconcile(
            session_factory, reconciler, poll_log_id, message(advanced_authorization("AA-1"))
        )

        assert result.processing_status == ProcessingStatus.NEW_RECORD
        assert result.matched
        assert result.match_strategy == MatchStrategy.PAYER_INITIATED
        record = await get_record(session_factory, RecordTable.ADVANCED_AUTHORIZATIONS, result.matched_record_id)
        assert record.identifier_value == "AA-1"
        assert record.pre_auth_ref == "REF-AA-1"
        assert record.patient_identifier == "2234567890"
        assert record.status == "approved"

    @pytest.mark.asyncio
    async def test_unmatched_message_is_recorded(self, session_factory, reconciler, poll_log_id):
        result = await match_and_reconcile(
            session_factory, reconciler, poll_log_id, message(claim_response("PA-404"))
        )

        assert result.processing_status == ProcessingStatus.UNMATCHED
        assert not result.matched
        assert result.matched_table is None
        async with UnitOfWork(session_factory) as uow:
            [row] = await uow.poll_messages.list_for_log(poll_log_id)
        assert row.matched is False
        assert row.processing_status == "unmatched"


class TestIdempotence:
    """Reprocessing a message never applies its side effects twice."""

    @pytest.mark.asyncio
    async def test_second_delivery_is_replayed(self, session_factory, seed, reconciler, poll_log_id):
        pa = await seed.prior_authorization(request_number="PA-1001")
        msg = message(claim_response("PA-1001"))

        first = await match_and_reconcile(session_factory, reconciler, poll_log_id, msg)
        assert await reconciler.replay(poll_log_id, message(claim_response("PA-other"))) is None
        second = await reconciler.replay(poll_log_id, msg)

        assert not first.replayed
        assert second.replayed
        assert second.processing_status == first.processing_status
        assert second.matched_record_id == pa.id
        assert second.poll_message_id != first.poll_message_id

        async with UnitOfWork(session_factory) as uow:
            assert await uow.receipts.count() == 1
            assert await uow.poll_messages.count(poll_log_id=poll_log_id) == 2

    @pytest.mark.asyncio
    async def test_created_record_is_not_duplicated(self, session_factory, reconciler, poll_log_id):
        msg = message(advanced_authorization("AA-1"))

        first = await match_and_reconcile(session_factory, reconciler, poll_log_id, msg)
        second = await match_and_reconcile(session_factory, reconciler, poll_log_id, msg)

        assert first.processing_status == ProcessingStatus.NEW_RECORD
        assert second.replayed
        assert second.matched_record_id == first.matched_record_id
        async with UnitOfWork(session_factory) as uow:
            assert await uow.advanced_authorizations.count() == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_apply_once(self, session_factory, seed, reconciler, poll_log_id):
        pa = await seed.prior_authorization(request_number="PA-1001")
        msg = message(claim_response("PA-1001"))
        outcome = MatchOutcome(
            matched=True,
            table=RecordTable.PRIOR_AUTHORIZATIONS,
            record_id=pa.id,
            strategy=MatchStrategy.BUSINESS_IDENTIFIER,
        )

        results = await asyncio.gather(
            reconciler.reconcile(poll_log_id, msg, outcome),
            reconciler.reconcile(poll_log_id, msg, outcome),
        )

        assert sorted(r.replayed for r in results) == [False, True]
        assert all(r.processing_status == ProcessingStatus.PROCESSED for r in results)
        async with UnitOfWork(session_factory) as uow:
            assert await uow.receipts.count() == 1
        assert reconciler._locks == {}

    @pytest.mark.asyncio
    async def test_record_locks_are_released_after_use(self, session_factory, seed, reconciler, poll_log_id):
        """The lock table only holds records that are being written."""
        for number in range(5):
            await seed.prior_authorization(request_number=f"PA-{number}")

        for number in range(5):
            result = await match_and_reconcile(
                session_factory, reconciler, poll_log_id, message(claim_response(f"PA-{number}"))
            )
            assert result.processing_status == ProcessingStatus.PROCESSED
        await match_and_reconcile(session_factory, reconciler, poll_log_id, message(advanced_authorization("AA-7")))

        assert reconciler._locks == {}
        assert reconciler._lock_users == {}


class TestFailures:
    """A failing message is recorded as an error and changes nothing."""

    @pytest.mark.asyncio
    async def test_cancelled_record_rejects_update(self, session_factory, seed, reconciler, poll_log_id):
        pa = await seed.prior_authorization(request_number="PA-1001", status="cancelled")

        result = await match_and_reconcile(
            session_factory, reconciler, poll_log_id, message(claim_response("PA-1001"))
        )

        assert result.processing_status == ProcessingStatus.ERROR
        assert not result.matched
        assert "cancelled" in result.processing_error
        record = await get_record(session_factory, RecordTable.PRIOR_AUTHORIZATIONS, pa.id)
        assert record.status == "cancelled"
        async with UnitOfWork(session_factory) as uow:
            assert await uow.receipts.count() == 0

    @pytest.mark.asyncio
    async def test_unsupported_pair(self, session_factory, reconciler, poll_log_id):
        outcome = MatchOutcome(
            matched=True,
            table=RecordTable.ADVANCED_AUTHORIZATIONS,
            record_id=1,
            strategy=MatchStrategy.BUSINESS_IDENTIFIER,
        )

        result = await reconciler.reconcile(
            poll_log_id, message(payment_notice("P", "PR", "2026-10-01")), outcome
        )

        assert result.processing_status == ProcessingStatus.ERROR
        assert "UnsupportedReconciliationError" in result.processing_error
        assert result.poll_message_id is not None

    @pytest.mark.asyncio
    async def test_failed_message_can_succeed_later(self, session_factory, seed, reconciler, poll_log_id):
        """Errors leave no receipt, so a later delivery is applied normally."""
        pa = await seed.prior_authorization(request_number="PA-1001", status="cancelled")
        msg = message(claim_response("PA-1001"))
        await match_and_reconcile(session_factory, reconciler, poll_log_id, msg)

        async with UnitOfWork(session_factory) as uow:
            await uow.prior_authorizations.update(pa.id, status="pending")

        result = await match_and_reconcile(session_factory, reconciler, poll_log_id, msg)
        assert result.processing_status == ProcessingStatus.PROCESSED
        assert not result.replayed

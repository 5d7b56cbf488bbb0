"""Tests for the HTTP surface."""

import asyncio

import httpx
import pytest
import pytest_asyncio

from nphies_poll.errors import TransportAuthError
from nphies_poll.exchange.clients.mock_client import MockExchangeClient
from nphies_poll.main import app
from nphies_poll.polling.orchestrator import PollOrchestrator
from nphies_poll.polling.router import get_poll_orchestrator, get_poll_scheduler
from nphies_poll.polling.scheduler import PollScheduler
from tests.fixtures.clients import GatedClient
from tests.fixtures.fhir_messages import claim_response, message_bundle, poll_response


@pytest.fixture
def mock_client(poller_config):
    return MockExchangeClient(poller_config)


@pytest.fixture
def orchestrator(session_factory, poller_config, mock_client):
    return PollOrchestrator(client=mock_client, config=poller_config, session_factory=session_factory)


@pytest_asyncio.fixture
async def client(orchestrator):
    app.dependency_overrides[get_poll_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_poll_scheduler] = lambda: PollScheduler(orchestrator)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


class TestHealth:
    @pytest.mark.asyncio
    async def test_root_and_healthz(self, client):
        assert (await client.get("/")).json() == {"status": "ok"}
        response = await client.get("/healthz")
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client):
        response = await client.get("/", headers={"x-request-id": "req-42"})
        assert response.headers["x-request-id"] == "req-42"


class TestTrigger:
    @pytest.mark.asyncio
    async def test_successful_poll(self, client, mock_client, seed):
        await seed.prior_authorization(request_number="PA-1001")
        mock_client.queue(poll_response(message_bundle(claim_response("PA-1001"))))

        response = await client.post("/system-poll/trigger")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["status"] == "success"
        assert body["triggerType"] == "manual"
        assert body["stats"] == {"received": 1, "matched": 1, "unmatched": 0, "errored": 0}
        assert body["messages"][0]["matchStrategy"] == "business_identifier"
        assert body["messages"][0]["matchedTable"] == "prior_authorizations"
        assert body["pollBundle"]["resourceType"] == "Bundle"

    @pytest.mark.asyncio
    async def test_failed_poll_is_bad_gateway(self, client, mock_client):
        mock_client.queue(TransportAuthError("exchange rejected credentials (401)", status_code=401))

        response = await client.post("/system-poll/trigger")

        assert response.status_code == 502
        body = response.json()
        assert body["status"] == "error"
        assert body["errors"][0]["code"] == "TransportAuthError"
        assert body["pollLogId"] is not None

    @pytest.mark.asyncio
    async def test_concurrent_trigger_conflicts(self, session_factory, poller_config):
        gated = GatedClient(poller_config)
        orchestrator = PollOrchestrator(client=gated, config=poller_config, session_factory=session_factory)
        app.dependency_overrides[get_poll_orchestrator] = lambda: orchestrator
        transport = httpx.ASGITransport(app=app)
        try:
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
                running = asyncio.create_task(orchestrator.trigger())
                await gated.started.wait()

                response = await http.post("/system-poll/trigger")
                assert response.status_code == 409
                assert response.json()["detail"] == "poll already running"

                cancel = await http.post("/system-poll/cancel")
                assert cancel.json()["cancelled"] is True
                assert cancel.json()["pollLogId"] == (await running).poll_log_id
        finally:
            app.dependency_overrides.clear()

    @pytest.mark.asyncio
    async def test_cancel_when_idle(self, client):
        response = await client.post("/system-poll/cancel")
        assert response.json() == {"cancelled": False, "pollLogId": None}


class TestHistory:
    @pytest.mark.asyncio
    async def test_stats(self, client):
        await client.post("/system-poll/trigger")

        body = (await client.get("/system-poll/stats")).json()

        assert body["totalPolls"] == 1
        assert body["pollsToday"] == 1
        assert body["matchRatePercent"] == 0.0
        assert body["lastPollAt"] is not None

    @pytest.mark.asyncio
    async def test_logs_and_detail(self, client, mock_client):
        mock_client.queue(poll_response(message_bundle(claim_response("PA-404"))))
        poll_log_id = (await client.post("/system-poll/trigger")).json()["pollLogId"]

        page = (await client.get("/system-poll/logs", params={"limit": 500})).json()
        assert page["pagination"]["limit"] == 100
        assert page["data"][0]["id"] == poll_log_id
        assert page["data"][0]["messagesUnmatched"] == 1

        detail = (await client.get(f"/system-poll/logs/{poll_log_id}")).json()
        assert detail["messages"][0]["processingStatus"] == "unmatched"
        assert detail["processingSummary"]["ClaimResponse"]["unmatched"] == 1
        assert detail["requestBundle"]["type"] == "message"

    @pytest.mark.asyncio
    async def test_log_status_filter(self, client):
        await client.post("/system-poll/trigger")

        assert (await client.get("/system-poll/logs", params={"status": "error"})).json()["data"] == []
        assert len((await client.get("/system-poll/logs", params={"status": "no_messages"})).json()["data"]) == 1
        assert (await client.get("/system-poll/logs", params={"status": "bogus"})).status_code == 422

    @pytest.mark.asyncio
    async def test_missing_log(self, client):
        assert (await client.get("/system-poll/logs/9999")).status_code == 404

    @pytest.mark.asyncio
    async def test_record_messages(self, client, mock_client, seed):
        pa = await seed.prior_authorization(request_number="PA-1001")
        mock_client.queue(poll_response(message_bundle(claim_response("PA-1001"))))
        await client.post("/system-poll/trigger")

        response = await client.get(f"/system-poll/messages/prior_authorizations/{pa.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["pagination"]["total"] == 1
        assert body["data"][0]["matchedRecordId"] == pa.id
        assert body["data"][0]["resourceData"]["type"] == "message"

    @pytest.mark.asyncio
    async def test_invalid_record_table(self, client):
        response = await client.get("/system-poll/messages/eligibility_requests/1")
        assert response.status_code == 400
        assert "Allowed" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_scheduler_status(self, client):
        body = (await client.get("/system-poll/scheduler")).json()
        assert body["running"] is False
        assert body["pollInProgress"] is False
        assert body["intervalMinutes"] == 1

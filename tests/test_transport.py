"""Tests for the exchange transport clients."""

import json

import httpx
import pytest

from nphies_poll.errors import ErrorCode
from nphies_poll.exchange.bundles import build_poll_request_bundle
from nphies_poll.exchange.clients import (
    HttpExchangeClient,
    MockExchangeClient,
    create_exchange_client,
)
from tests.fixtures.fhir_messages import claim_response, message_bundle, poll_response


def http_client(config, handler):
    return HttpExchangeClient(config, transport=httpx.MockTransport(handler))


class TestHttpExchangeClient:
    """Tests for HttpExchangeClient against a mocked transport."""

    @pytest.mark.asyncio
    async def test_posts_bundle_and_returns_response(self, poller_config):
        config = poller_config.model_copy(update={"access_token": "secret-token"})
        response_body = poll_response(message_bundle(claim_response("PA-1")))
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=response_body)

        client = http_client(config, handler)
        request_bundle = build_poll_request_bundle(config)
        response = await client.poll(request_bundle)
        await client.aclose()

        assert response.ok
        assert response.status_code == 200
        assert response.bundle == response_body
        assert seen["method"] == "POST"
        assert seen["path"].endswith("$process-message")
        assert seen["headers"]["content-type"] == "application/fhir+json"
        assert seen["headers"]["authorization"] == "Bearer secret-token"
        assert seen["body"] == request_bundle

    @pytest.mark.asyncio
    async def test_no_authorization_header_without_token(self, poller_config):
        def handler(request):
            assert "authorization" not in request.headers
            return httpx.Response(200, json={"resourceType": "Bundle"})

        client = http_client(poller_config, handler)
        assert (await client.poll({})).ok

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_rejected_credentials(self, poller_config, status_code):
        client = http_client(
            poller_config, lambda request: httpx.Response(status_code, json={"resourceType": "OperationOutcome"})
        )

        response = await client.poll({})

        assert not response.ok
        assert response.error.code == ErrorCode.TRANSPORT_AUTH
        assert response.status_code == status_code
        assert response.bundle == {"resourceType": "OperationOutcome"}

    @pytest.mark.asyncio
    async def test_server_error_keeps_body(self, poller_config):
        client = http_client(poller_config, lambda request: httpx.Response(503, text="upstream unavailable"))

        response = await client.poll({})

        assert response.error.code == ErrorCode.TRANSPORT_ERROR
        assert response.error.status_code == 503
        assert response.bundle == "upstream unavailable"

    @pytest.mark.asyncio
    async def test_timeout(self, poller_config):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        response = await http_client(poller_config, handler).poll({})

        assert response.error.code == ErrorCode.TRANSPORT_TIMEOUT
        assert response.bundle is None

    @pytest.mark.asyncio
    async def test_connection_error(self, poller_config):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        response = await http_client(poller_config, handler).poll({})

        assert response.error.code == ErrorCode.TRANSPORT_ERROR
        assert "connection refused" in response.error.detail

    @pytest.mark.asyncio
    async def test_non_json_body_is_returned_as_text(self, poller_config):
        client = http_client(poller_config, lambda request: httpx.Response(200, text="<html></html>"))

        response = await client.poll({})

        assert response.ok
        assert response.bundle == "<html></html>"


class TestMockExchangeClient:
    """Tests for the scripted mock client."""

    @pytest.mark.asyncio
    async def test_replays_script_then_empty_bundle(self, poller_config):
        scripted = poll_response(message_bundle(claim_response("PA-1")))
        client = MockExchangeClient(poller_config, responses=[scripted])

        first = await client.poll({"id": "req-1"})
        second = await client.poll({"id": "req-2"})

        assert first.bundle == scripted
        assert second.bundle["entry"] == []
        assert [r["id"] for r in client.requests] == ["req-1", "req-2"]

    @pytest.mark.asyncio
    async def test_simulated_failures(self, poller_config):
        client = MockExchangeClient(poller_config, failure_rate=1.0)

        response = await client.poll({})

        assert response.error.code == ErrorCode.TRANSPORT_ERROR


class TestClientFactory:
    def test_selects_by_client_type(self, poller_config):
        assert isinstance(create_exchange_client(poller_config), MockExchangeClient)
        http_config = poller_config.model_copy(update={"client_type": "http"})
        assert isinstance(create_exchange_client(http_config), HttpExchangeClient)

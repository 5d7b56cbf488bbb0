"""HTTP transport for the exchange `$process-message` endpoint."""

import json
from typing import Any, Dict, Optional, Tuple

import httpx
import structlog

from nphies_poll.errors import TransportAuthError, TransportError, TransportTimeout
from nphies_poll.exchange.clients.base import BaseExchangeClient
from nphies_poll.exchange.config import PollerConfig

logger = structlog.get_logger(__name__)

FHIR_JSON = "application/fhir+json"


class HttpExchangeClient(BaseExchangeClient):
    """Posts poll bundles to the exchange over HTTP using httpx."""

    def __init__(
        self,
        config: PollerConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the HTTP client.

        Args:
            config: Endpoint, credentials and timeout
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        super().__init__(config)
        headers = {"Content-Type": FHIR_JSON, "Accept": FHIR_JSON}
        if config.access_token:
            headers["Authorization"] = f"Bearer {config.access_token}"
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    def get_source_name(self) -> str:
        return "http"

    async def _send(self, request_bundle: Dict[str, Any]) -> Tuple[int, Any]:
        url = self.config.process_message_url
        try:
            response = await self._client.post(url, content=json.dumps(request_bundle))
        except httpx.TimeoutException as exc:
            raise TransportTimeout(f"poll request to {url} timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"poll request to {url} failed: {exc}") from exc

        body = self._decode(response)
        logger.info("exchange.response", status=response.status_code, url=url)

        if response.status_code in (401, 403):
            raise TransportAuthError(
                f"exchange rejected credentials ({response.status_code})",
                status_code=response.status_code,
                body=body,
            )
        if response.status_code >= 400:
            raise TransportError(
                f"exchange returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
            )
        return response.status_code, body

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    async def aclose(self) -> None:
        await self._client.aclose()

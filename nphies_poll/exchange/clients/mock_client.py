"""
Mock exchange client for testing and development.

Replays scripted poll responses without network access, with optional
latency and random failures.
"""

import asyncio
import random
import uuid
from collections import deque
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from nphies_poll.errors import TransportError
from nphies_poll.exchange.clients.base import BaseExchangeClient
from nphies_poll.exchange.config import PollerConfig

ScriptedResponse = Union[Dict[str, Any], str, Exception]


def empty_poll_response() -> Dict[str, Any]:
    """A poll response with nothing queued."""
    return {"resourceType": "Bundle", "id": str(uuid.uuid4()), "type": "message", "entry": []}


class MockExchangeClient(BaseExchangeClient):
    """
    Mock client returning scripted responses in order.

    Each scripted item is either a response body (dict or raw text) or an
    exception to raise from the transport. When the script runs out the
    client answers with an empty bundle.
    """

    def __init__(
        self,
        config: PollerConfig,
        responses: Optional[Iterable[ScriptedResponse]] = None,
        latency_ms: int = 0,
        failure_rate: float = 0.0,
    ):
        """
        Initialize mock client.

        Args:
            config: Poller configuration (only the timeout is used)
            responses: Scripted responses, consumed one per poll
            latency_ms: Simulated network latency in milliseconds
            failure_rate: Probability of a simulated transport failure (0.0 to 1.0)
        """
        super().__init__(config)
        self._responses: deque = deque(responses or [])
        self.latency_ms = latency_ms
        self.failure_rate = failure_rate
        self.requests: List[Dict[str, Any]] = []

    def get_source_name(self) -> str:
        return "mock"

    def queue(self, response: ScriptedResponse) -> None:
        """Append a response to the script."""
        self._responses.append(response)

    async def _send(self, request_bundle: Dict[str, Any]) -> Tuple[int, Any]:
        self.requests.append(request_bundle)
        await self._simulate_latency()

        if self.failure_rate and random.random() < self.failure_rate:
            raise TransportError("Simulated exchange connection failure")

        response = self._responses.popleft() if self._responses else empty_poll_response()
        if isinstance(response, Exception):
            raise response
        return 200, response

    async def _simulate_latency(self):
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000.0)

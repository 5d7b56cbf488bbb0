"""
Base exchange client interface.

Defines the contract every transport implementation follows. Transport
failures never escape `poll()`: they are returned inside the
`PollResponse` so the orchestrator can record them on the poll log.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel

from nphies_poll.errors import ErrorCode, TransportError, TransportTimeout
from nphies_poll.exchange.config import PollerConfig


class TransportFailure(BaseModel):
    """Why a poll call did not produce a response bundle."""

    code: ErrorCode
    detail: str
    status_code: Optional[int] = None


class PollResponse(BaseModel):
    """Outcome of one poll call: a response bundle or a transport failure."""

    bundle: Any = None
    status_code: Optional[int] = None
    error: Optional[TransportFailure] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BaseExchangeClient(ABC):
    """
    Abstract base class for exchange transport clients.

    Subclasses implement `_send`; `poll` adds the time bound and turns
    transport exceptions into a `PollResponse`.
    """

    def __init__(self, config: PollerConfig):
        """
        Initialize the client.

        Args:
            config: Endpoint, credentials and timeout for the exchange
        """
        self.config = config

    async def poll(self, request_bundle: Dict[str, Any]) -> PollResponse:
        """
        Send a poll request and wait at most `timeout_seconds` for the answer.

        Args:
            request_bundle: Poll request bundle

        Returns:
            PollResponse with either `bundle` or `error` set
        """
        try:
            status_code, body = await asyncio.wait_for(
                self._send(request_bundle), timeout=self.config.timeout_seconds
            )
        except asyncio.TimeoutError:
            exc: TransportError = TransportTimeout(
                f"poll timed out after {self.config.timeout_seconds}s"
            )
            return self._failure(exc)
        except TransportError as exc:
            return self._failure(exc)

        return PollResponse(bundle=body, status_code=status_code)

    @staticmethod
    def _failure(exc: TransportError) -> PollResponse:
        return PollResponse(
            bundle=exc.body,
            status_code=exc.status_code,
            error=TransportFailure(code=exc.code, detail=str(exc), status_code=exc.status_code),
        )

    @abstractmethod
    async def _send(self, request_bundle: Dict[str, Any]) -> Tuple[int, Any]:
        """
        Perform the network call.

        Returns:
            Tuple of (HTTP status code, decoded response body)

        Raises:
            TransportError: On network, authentication or server failures
        """

    @abstractmethod
    def get_source_name(self) -> str:
        """Client identifier (e.g. 'http', 'mock')."""

    async def aclose(self) -> None:
        """Release network resources held by the client."""

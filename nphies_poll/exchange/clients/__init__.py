"""Exchange transport clients."""

from typing import Optional

from nphies_poll.exchange.clients.base import (
    BaseExchangeClient,
    PollResponse,
    TransportFailure,
)
from nphies_poll.exchange.clients.http_client import HttpExchangeClient
from nphies_poll.exchange.clients.mock_client import MockExchangeClient
from nphies_poll.exchange.config import PollerConfig, get_poller_config


def create_exchange_client(config: Optional[PollerConfig] = None) -> BaseExchangeClient:
    """Build the client selected by `config.client_type`."""
    config = config or get_poller_config()
    if config.client_type == "mock":
        return MockExchangeClient(config)
    return HttpExchangeClient(config)


__all__ = [
    "BaseExchangeClient",
    "HttpExchangeClient",
    "MockExchangeClient",
    "PollResponse",
    "TransportFailure",
    "create_exchange_client",
]

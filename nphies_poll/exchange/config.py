"""
Exchange poller configuration.

Holds the endpoint, credentials and schedule for polling the exchange.
Built from application Settings and handed to the transport client at
construction time.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from nphies_poll.core.config import Settings, get_settings

DEFAULT_MESSAGE_TYPES = [
    "priorauth-response",
    "claim-response",
    "communication-request",
    "communication",
    "payment-notice",
    "payment-reconciliation",
]


class PollerConfig(BaseModel):
    """Main exchange poller configuration."""

    # Endpoint and credentials
    base_url: str = Field(description="Exchange base URL")
    access_token: Optional[str] = Field(
        default=None, description="Bearer token for the exchange endpoint"
    )
    provider_id: str = Field(description="Provider license identifier")
    provider_endpoint: str = Field(
        default="http://provider.com", description="Source endpoint in the poll MessageHeader"
    )
    client_type: Literal["http", "mock"] = Field(
        default="http", description="Transport client implementation"
    )
    timeout_seconds: float = Field(
        default=60.0, gt=0, description="Upper bound for one poll call"
    )

    # Poll request
    message_types: List[str] = Field(
        default_factory=lambda: list(DEFAULT_MESSAGE_TYPES),
        description="Message types requested in the poll Parameters",
    )
    message_count: int = Field(
        default=50, ge=1, le=500, description="Maximum queued messages per poll"
    )

    # Schedule
    scheduled_enabled: bool = Field(default=False, description="Run the background scheduler")
    poll_interval_minutes: int = Field(
        default=5, ge=1, description="Minutes between scheduled polls"
    )
    initial_delay_seconds: float = Field(
        default=10.0, ge=0, description="Delay before the first scheduled poll"
    )

    def get_poll_interval_seconds(self) -> int:
        """Get poll interval in seconds."""
        return self.poll_interval_minutes * 60

    @property
    def process_message_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/$process-message"


def get_poller_config(settings: Optional[Settings] = None) -> PollerConfig:
    """Build the poller configuration from application settings."""
    settings = settings or get_settings()
    return PollerConfig(
        base_url=settings.NPHIES_BASE_URL,
        access_token=settings.NPHIES_ACCESS_TOKEN,
        provider_id=settings.NPHIES_PROVIDER_ID,
        provider_endpoint=settings.NPHIES_PROVIDER_ENDPOINT,
        client_type=settings.NPHIES_CLIENT_TYPE,
        timeout_seconds=settings.NPHIES_TIMEOUT_SECONDS,
        message_count=settings.POLL_MESSAGE_COUNT,
        scheduled_enabled=settings.ENABLE_SCHEDULED_POLLING,
        poll_interval_minutes=settings.POLL_INTERVAL_MINUTES,
        initial_delay_seconds=settings.POLL_INITIAL_DELAY_SECONDS,
    )

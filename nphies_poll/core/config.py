from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    This uses pydantic-settings so that we get type validation and defaults.
    Settings are loaded from environment variables with optional .env file override.
    """

    # App basics
    ENV: Literal["development", "staging", "production"] = "development"
    """Environment mode: affects logging format and the default exchange client."""

    DEBUG: bool = True
    """Enable debug mode: verbose logging and development features."""

    # DB
    DATABASE_URL: Optional[str] = None
    """Database connection URL. If None, uses SQLite for development."""

    # NPHIES exchange
    NPHIES_BASE_URL: str = "http://176.105.150.83"
    """Base URL of the exchange; polls are posted to `{base}/$process-message`."""

    NPHIES_ACCESS_TOKEN: Optional[str] = None
    """Bearer token sent with each poll request, if the endpoint requires one."""

    NPHIES_PROVIDER_ID: str = "1010613708"
    """Provider license identifier placed in the poll MessageHeader sender."""

    NPHIES_PROVIDER_ENDPOINT: str = "http://provider.com"
    """Source endpoint advertised in the poll MessageHeader."""

    NPHIES_TIMEOUT_SECONDS: float = 60.0
    """Upper bound for a single poll call."""

    NPHIES_CLIENT_TYPE: Literal["http", "mock"] = "http"
    """Which exchange client to build (`mock` never touches the network)."""

    # Polling
    ENABLE_SCHEDULED_POLLING: bool = False
    """Start the background poll scheduler on application start-up."""

    POLL_INTERVAL_MINUTES: int = 5
    """Minutes between scheduled polls."""

    POLL_INITIAL_DELAY_SECONDS: float = 10.0
    """Delay before the first scheduled poll after start-up."""

    POLL_MESSAGE_COUNT: int = 50
    """Maximum number of queued messages requested per poll."""

    # Model config
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid re-parsing .env repeatedly."""
    return Settings()

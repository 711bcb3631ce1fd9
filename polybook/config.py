"""
PolyBook configuration.

Values come from POLYBOOK_* environment variables or a local .env file;
CLI flags override individual fields.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="POLYBOOK_", env_file=".env", extra="ignore")

    # Venue endpoints
    clob_url: str = Field(default="https://clob.polymarket.com", description="CLOB REST base URL")
    gamma_url: str = Field(default="https://gamma-api.polymarket.com", description="Event catalog base URL")
    market_ws_url: str = Field(
        default="wss://ws-subscriptions-clob.polymarket.com/ws/market",
        description="Public market data WebSocket",
    )
    user_ws_url: str = Field(
        default="wss://ws-subscriptions-clob.polymarket.com/ws/user",
        description="Authenticated user WebSocket (fills)",
    )

    # Feed
    ping_interval: float = Field(default=30.0, gt=0, description="Seconds between keep-alive pings")
    reconnect_delay: float = Field(default=5.0, gt=0, description="Fixed delay before a reconnect attempt")
    request_timeout: float = Field(default=10.0, gt=0, description="REST request timeout in seconds")

    # Catalog
    events_page_size: int = Field(default=500, gt=0, description="Events per catalog page")
    catalog_cache_ttl: float = Field(default=600.0, ge=0, description="Seconds to keep the event list cached")

    # Display
    book_levels: int = Field(default=15, gt=0, description="Levels shown per book side")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_file: str | None = Field(default=None, description="Optional log file path")

    # User channel credentials (optional, enables the fill monitor)
    api_key: str = Field(default="", description="CLOB API key")
    api_secret: str = Field(default="", description="CLOB API secret")
    api_passphrase: str = Field(default="", description="CLOB API passphrase")

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret and self.api_passphrase)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings()

"""
Configuration Management

All runtime settings for the harvesters, the relay connection and the
overlay feed live here. Values load from environment variables (and a
.env file) through Pydantic Settings, so "3" becomes 3.0 for float fields
and "false" disables a platform flag.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application Settings

    Variable names match field names (case-insensitive), e.g.
    RELAY_URL=ws://localhost:1350/chat.ws or PLATFORM_TWITCH=false.
    """

    log_level: str = "INFO"
    log_categories: Optional[str] = None  # Comma-separated categories (platform,relay,delivery,tap,system). If None, show all logs.
    debug: bool = False  # Verbose per-event logging in adapters

    # Relay connection
    relay_url: str = "ws://127.0.0.2:1350/chat.ws"
    relay_reconnect_delay: float = 3.0  # Fixed retry interval for harvesters, seconds
    overlay_reconnect_delay: float = 1.0  # Fixed retry interval for the overlay feed, seconds
    outbound_queue_limit: int = 1000  # Max updates buffered while disconnected
    outbound_queue_policy: str = "drop_oldest"  # drop_oldest or reject_new

    # Delivery pacing
    pacer_max_wait_ms: int = 1000
    pacer_min_interval_ms: int = 50
    message_store_capacity: int = 150  # Messages kept by the overlay before eviction

    # Adapter housekeeping
    emitted_id_ledger_size: int = 5000  # Ids remembered per adapter for dedup and removals
    recorder_max_events: int = 10000
    http_timeout_seconds: float = 30.0

    # Platform enable flags
    platform_kick: bool = True
    platform_odysee: bool = True
    platform_rumble: bool = True
    platform_twitch: bool = True
    platform_youtube: bool = True
    platform_vk: bool = True
    platform_x: bool = True
    platform_xmrchat: bool = True

    # XMRChat
    xmr_price_url: str = "https://nest.xmrchat.com/prices/xmr"
    xmr_fallback_price: float = 200.0

    # Tap ingestion service
    host: str = "127.0.0.1"
    port: int = 8000

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Allow extra env vars without validation errors

    def is_platform_enabled(self, platform: str) -> bool:
        """Look up the enable flag for a platform name such as 'Kick' or 'XMRChat'."""
        return getattr(self, f"platform_{platform.lower()}", False)


# Loaded once when the module is imported
settings = Settings()

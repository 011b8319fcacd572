"""Configuration for synclayer."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Library settings, read from SYNCLAYER_* environment variables."""

    # Cache
    cache_default_ttl: float = 300.0  # seconds
    cache_max_memory_entries: int = 1000
    cache_maintenance_interval: float = 300.0  # seconds between clear_expired sweeps

    # Retry
    retry_max_retries: int = 3
    retry_base_delay: float = 1.0  # seconds
    retry_max_delay: float = 10.0  # cache/query paths
    retry_long_running_max_delay: float = 30.0  # queue replay and other long paths

    # Rate limiting (per operation class)
    rate_limit_window_seconds: float = 60.0
    rate_limit_read: int = 500
    rate_limit_write: int = 100
    rate_limit_auth: int = 50

    # Offline queue
    queue_storage_key: str = "offline_queue"
    queue_max_attempts: int = 3

    # Connectivity
    connectivity_poll_interval: float = 5.0

    # Telemetry
    telemetry_enabled: bool = True
    telemetry_buffer_size: int = 100

    # Persistence
    storage_dir: Optional[str] = None  # FileStore directory; in-memory store when unset

    class Config:
        env_prefix = "SYNCLAYER_"
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()

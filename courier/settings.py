import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()

ENV_PREFIX = "COURIER_"


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Request defaults
    default_timeout_seconds: float = Field(
        default=30.0, alias="COURIER_DEFAULT_TIMEOUT"
    )
    debug: bool = Field(default=False, alias="COURIER_DEBUG")

    # Deduplication
    enable_dedup: bool = Field(default=True, alias="COURIER_ENABLE_DEDUP")
    dedup_window_seconds: float = Field(default=5.0, alias="COURIER_DEDUP_WINDOW")

    # Offline queue
    enable_queue: bool = Field(default=True, alias="COURIER_ENABLE_QUEUE")
    queue_storage: str = Field(default="memory", alias="COURIER_QUEUE_STORAGE")
    max_queue_size: int = Field(default=100, alias="COURIER_MAX_QUEUE_SIZE")
    max_queue_age_hours: float = Field(
        default=24 * 7, alias="COURIER_MAX_QUEUE_AGE_HOURS"
    )
    auto_replay_on_reconnect: bool = Field(
        default=False, alias="COURIER_AUTO_REPLAY"
    )
    max_replay_attempts: int = Field(default=5, alias="COURIER_MAX_REPLAY_ATTEMPTS")

    # Connectivity
    connectivity_interval_seconds: float = Field(
        default=10.0, alias="COURIER_CONNECTIVITY_INTERVAL"
    )

    # Cache
    cache_sweep_interval_seconds: float = Field(
        default=600.0, alias="COURIER_CACHE_SWEEP_INTERVAL"
    )

    # Durable storage
    database_url: str = Field(
        default="sqlite+aiosqlite:///./courier.db", alias="COURIER_DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="COURIER_DATABASE_ECHO")


def load_settings() -> Settings:
    """Build settings from ``COURIER_*`` environment variables (and .env)."""
    values = {k: v for k, v in os.environ.items() if k.startswith(ENV_PREFIX)}
    return Settings.model_validate(values)


global_settings = load_settings()

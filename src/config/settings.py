"""Configuration settings for Job Tracker Sync."""

from enum import Enum
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreBackend(str, Enum):
    """Backend used for the durable local key-value store."""

    MEMORY = "memory"
    JSON = "json"
    SQLITE = "sqlite"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings have sensible defaults and can be overridden via
    environment variables or a .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Remote API
    api_base_url: str = Field(
        default="http://localhost:3001",
        description="Origin of the tracker backend; '/api' is appended to every path",
    )
    user_id: str | None = Field(
        default=None,
        description="Value sent in the x-user-id header (a guest id is generated if unset)",
    )

    # Request policy
    request_timeout: Annotated[float, Field(gt=0)] = Field(
        default=15.0,
        description="Timeout in seconds for a single request attempt",
    )
    retry_attempts: Annotated[int, Field(gt=0)] = Field(
        default=3,
        description="Attempts per request before it counts as a network failure",
    )
    retry_delay: Annotated[float, Field(ge=0)] = Field(
        default=1.0,
        description="Base delay in seconds; attempt N waits N * retry_delay",
    )

    # Replay
    replay_interval: Annotated[float, Field(gt=0)] = Field(
        default=300.0,
        description="Seconds between periodic replays of the pending queue",
    )

    # Local store
    store_backend: StoreBackend = Field(
        default=StoreBackend.JSON,
        description="Local store backend: 'memory', 'json' or 'sqlite'",
    )
    store_path: Path = Field(
        default=Path("./data/local_store.json"),
        description="File backing the json or sqlite local store",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR",
    )

    @field_validator("api_base_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Drop trailing slashes so paths join cleanly."""
        if not isinstance(v, str) or not v.strip():
            raise ValueError("api_base_url must be a non-empty string")
        return v.strip().rstrip("/")

    @field_validator("store_backend", mode="before")
    @classmethod
    def validate_store_backend(cls, v: str | StoreBackend) -> StoreBackend:
        """Convert string backend names to StoreBackend."""
        if isinstance(v, StoreBackend):
            return v
        if isinstance(v, str):
            try:
                return StoreBackend(v.lower().strip())
            except ValueError:
                raise ValueError(
                    f"Invalid store backend: {v}. Must be 'memory', 'json' or 'sqlite'"
                ) from None
        raise ValueError(f"Invalid store backend type: {type(v)}")

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a known level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


# Singleton instance for easy import
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the application settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset the settings singleton (useful for testing)."""
    global _settings
    _settings = None

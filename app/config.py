"""
Lumen — Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  A cached ``get_settings()`` helper is provided so that
FastAPI dependency-injection, the background generation queue, and the
operator scripts always receive the same validated instance without
re-parsing the environment on every call.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Lumen recommendation backend."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Gemini LLM (compatibility oracle)
    # ------------------------------------------------------------------ #
    GEMINI_API_KEY: str
    GEMINI_MODEL_PRIMARY: str = "gemini-2.5-flash-lite"
    GEMINI_MODEL_FALLBACK: str = "gemini-2.5-flash"

    # ------------------------------------------------------------------ #
    # Database – Cloud SQL via Unix socket, or a plain URL locally
    # ------------------------------------------------------------------ #
    DATABASE_URL: str
    DB_USER: str = "lumen_user"
    DB_PASSWORD: str = ""
    DB_NAME: str = "lumen"
    CLOUD_SQL_INSTANCE_CONNECTION: str = ""
    CLOUD_SQL_USE_UNIX_SOCKET: bool = False

    # ------------------------------------------------------------------ #
    # Redis – optional, enables the cross-process run lock
    # ------------------------------------------------------------------ #
    REDIS_URL: str = ""

    # ------------------------------------------------------------------ #
    # Match generation
    # ------------------------------------------------------------------ #
    MATCH_CANDIDATE_LIMIT: int = 10
    MATCH_WORKER_CONCURRENCY: int = 3
    MATCH_MIN_LOOKING_FOR_LENGTH: int = 1
    MATCH_DEFAULT_AGE_MIN: int = 18
    MATCH_DEFAULT_AGE_MAX: int = 100
    MATCH_RUN_LOCK_TTL_SECONDS: int = 900

    # ------------------------------------------------------------------ #
    # Compatibility oracle limits
    # ------------------------------------------------------------------ #
    ORACLE_TIMEOUT_SECONDS: float = 30.0
    ORACLE_MAX_IMAGE_BYTES: int = 4 * 1024 * 1024

    # ------------------------------------------------------------------ #
    # Geocoding (Nominatim-compatible search endpoint)
    # ------------------------------------------------------------------ #
    GEOCODER_URL: str = "https://nominatim.openstreetmap.org/search"
    GEOCODER_USER_AGENT: str = "lumen-match/1.0"
    GEOCODER_TIMEOUT_SECONDS: float = 10.0

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    REQUEST_TIMEOUT_SECONDS: float = 30.0
    SHUTDOWN_DRAIN_SECONDS: float = 15.0

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @field_validator(
        "MATCH_CANDIDATE_LIMIT",
        "MATCH_WORKER_CONCURRENCY",
        "MATCH_RUN_LOCK_TTL_SECONDS",
        "ORACLE_MAX_IMAGE_BYTES",
    )
    @classmethod
    def _must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Value must be a positive integer, got {v}")
        return v

    @field_validator(
        "ORACLE_TIMEOUT_SECONDS",
        "GEOCODER_TIMEOUT_SECONDS",
        "REQUEST_TIMEOUT_SECONDS",
        "SHUTDOWN_DRAIN_SECONDS",
    )
    @classmethod
    def _timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Timeout must be greater than 0, got {v}")
        return v

    @model_validator(mode="after")
    def _default_age_range_ordered(self) -> "Settings":
        if self.MATCH_DEFAULT_AGE_MIN > self.MATCH_DEFAULT_AGE_MAX:
            raise ValueError(
                "MATCH_DEFAULT_AGE_MIN must not exceed MATCH_DEFAULT_AGE_MAX"
            )
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime.  Import this function anywhere you
    need access to configuration::

        from app.config import get_settings
        settings = get_settings()
    """
    return Settings()  # type: ignore[call-arg]

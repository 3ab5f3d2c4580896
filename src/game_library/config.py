"""
Application configuration using Pydantic Settings.

Loads configuration from environment variables with validation,
type coercion, and sensible defaults.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CatalogAPIConfig(BaseSettings):
    """IGDB catalog API configuration."""

    model_config = SettingsConfigDict(env_prefix="IGDB_")

    client_id: str = Field(
        default=...,
        description="Twitch application client id used for IGDB access",
    )
    client_secret: SecretStr = Field(
        default=...,
        description="Twitch application client secret",
    )
    base_url: str = Field(
        default="https://api.igdb.com/v4",
        description="Base URL for the IGDB API",
    )
    oauth_url: str = Field(
        default="https://id.twitch.tv/oauth2/token",
        description="Twitch OAuth2 token endpoint",
    )
    timeout_seconds: int = Field(
        default=30,
        ge=5,
        le=120,
        description="HTTP request timeout in seconds",
    )
    page_size: int = Field(
        default=500,
        ge=1,
        le=500,
        description="Records per page when crawling an entity family",
    )
    platforms: list[int] = Field(
        default_factory=lambda: [6, 13, 14],
        description="IGDB platform ids considered PC games (PC, DOS, Mac)",
    )
    live_search: bool = Field(
        default=True,
        description="Query IGDB when the local index has no candidates",
    )

    @field_validator("base_url", "oauth_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize URLs so endpoint joins stay predictable."""
        return v.rstrip("/")


class RateLimitConfig(BaseSettings):
    """Admission gate configuration, sized to the catalog API quota."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_")

    requests_per_second: float = Field(
        default=4.0,
        gt=0,
        le=100,
        description="Sustained request rate allowed by the catalog API",
    )
    burst_size: int = Field(
        default=4,
        ge=1,
        le=100,
        description="Tokens a caller class may accumulate while idle",
    )
    max_concurrent: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Maximum open requests against the catalog API",
    )
    interactive_share: float = Field(default=0.5, gt=0, lt=1)
    webhook_share: float = Field(default=0.25, gt=0, lt=1)
    bulk_share: float = Field(default=0.25, gt=0, lt=1)
    max_wait_seconds: float = Field(
        default=10.0,
        gt=0,
        le=300,
        description="Longest a request may wait for admission before failing",
    )

    @model_validator(mode="after")
    def validate_shares(self) -> "RateLimitConfig":
        """Caller class shares must split the whole budget."""
        total = self.interactive_share + self.webhook_share + self.bulk_share
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Caller class shares must sum to 1.0, got {total:.3f}")
        return self


class MatchingConfig(BaseSettings):
    """Scoring weights and decision thresholds for title matching."""

    model_config = SettingsConfigDict(env_prefix="MATCH_")

    accept_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    margin: float = Field(default=0.05, ge=0.0, le=1.0)
    floor: float = Field(default=0.4, ge=0.0, le=1.0)

    title_weight: float = Field(default=0.85, gt=0.0, le=1.0)
    year_weight: float = Field(default=0.10, ge=0.0, le=1.0)
    company_weight: float = Field(default=0.03, ge=0.0, le=1.0)
    collection_weight: float = Field(default=0.02, ge=0.0, le=1.0)

    year_full_window: int = Field(
        default=1,
        ge=0,
        description="Year difference that still earns the full year bonus",
    )
    year_zero_beyond: int = Field(
        default=3,
        ge=0,
        description="Year difference past which the year bonus is zero",
    )

    max_candidates: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Upper bound on candidates scored per resolution",
    )
    max_ambiguous_candidates: int = Field(
        default=5,
        ge=1,
        description="Candidates kept on an ambiguous entry for approval",
    )

    @model_validator(mode="after")
    def validate_thresholds(self) -> "MatchingConfig":
        """Floor must not exceed the accept threshold."""
        if self.floor > self.accept_threshold:
            raise ValueError("floor must be lower than or equal to accept_threshold")
        if self.year_zero_beyond < self.year_full_window:
            raise ValueError("year_zero_beyond must be >= year_full_window")
        return self


class IndexConfig(BaseSettings):
    """Reference index sanity thresholds."""

    model_config = SettingsConfigDict(env_prefix="INDEX_")

    min_catalog_entries: int = Field(
        default=1000,
        ge=1,
        description="Smallest games snapshot a rebuild may publish",
    )
    min_family_records: int = Field(
        default=1,
        ge=1,
        description="Smallest snapshot accepted for auxiliary entity families",
    )


class RefreshConfig(BaseSettings):
    """Refresh coordinator configuration."""

    model_config = SettingsConfigDict(env_prefix="REFRESH_")

    interval_hours: float = Field(default=24.0, gt=0, le=24 * 30)
    bulk_concurrency: int = Field(default=4, ge=1, le=64)
    webhook_workers: int = Field(default=2, ge=1, le=64)
    resolve_timeout_seconds: float = Field(default=30.0, gt=0, le=600)
    storage_retry_attempts: int = Field(default=3, ge=1, le=10)


class StorageConfig(BaseSettings):
    """Local storage configuration."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    data_dir: Path = Field(
        default=Path("data/library"),
        description="Directory for library entries and mapping documents",
    )
    snapshot_dir: Path = Field(
        default=Path("data/snapshots"),
        description="Directory for catalog crawl snapshots",
    )


class RetryConfig(BaseSettings):
    """Retry behavior configuration."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum number of retry attempts",
    )
    base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=30.0,
        description="Base delay between retries (exponential backoff)",
    )
    max_delay_seconds: float = Field(
        default=60.0,
        ge=0.0,
        le=300.0,
        description="Maximum delay between retries",
    )
    exponential_base: float = Field(
        default=2.0,
        ge=1.5,
        le=4.0,
        description="Base for exponential backoff calculation",
    )


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    format: Literal["json", "console"] = Field(
        default="json",
        description="Log output format",
    )
    include_timestamp: bool = Field(
        default=True,
        description="Include timestamp in log entries",
    )


class Settings(BaseSettings):
    """
    Main application settings.

    Aggregates all configuration sections and provides
    a single entry point for configuration access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )

    catalog: CatalogAPIConfig = Field(default_factory=CatalogAPIConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application configuration instance
    """
    return Settings()

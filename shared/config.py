"""
Shared configuration management for the client cache layer.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DAY = 24 * 60 * 60


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CLIENT_CACHE_",
        case_sensitive=False,
        extra="ignore"
    )

    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Native substrate
    redis_url: Optional[str] = Field(default=None)


class CacheSettings(BaseConfig):
    """Storage keys, TTLs and policy knobs for every cache."""

    # Identity-bound snapshots
    profile_key: str = Field(default="profile_cache")
    profile_display_key: str = Field(default="profile_display_cache")

    # Reference ("static") and volatile ("dynamic") snapshots, TTLs in seconds
    static_key: str = Field(default="static_data_cache")
    static_ttl: int = Field(default=30 * DAY)
    dynamic_key: str = Field(default="dynamic_data_cache")
    dynamic_ttl: int = Field(default=10 * 60)

    # Context-keyed namespaces
    subjects_prefix: str = Field(default="subjects_")
    resources_prefix: str = Field(default="resources_")
    resources_ttl: int = Field(default=3 * DAY)
    context_separator: str = Field(default="|")
    context_sentinel: str = Field(default="_")

    # Quota eviction rounds, as fractions of the namespace
    eviction_first_fraction: float = Field(default=0.25, gt=0, le=1)
    eviction_second_fraction: float = Field(default=0.33, gt=0, le=1)

    # Keyed session resources
    session_resource_prefix: str = Field(default="session_cache_v1")

    # Cross-tab
    tab_id_key: str = Field(default="tab_id")
    broadcast_channel: str = Field(default="client_cache_bulk_sync")
    broadcast_relay_key: str = Field(default="broadcast:client_cache_bulk_sync")

    # Foreground fetch backoff
    fetch_retry_attempts: int = Field(default=3, ge=1)
    fetch_retry_base_delay: float = Field(default=0.5, ge=0)


@lru_cache(maxsize=1)
def get_settings() -> CacheSettings:
    """Get the process-wide cache settings."""
    return CacheSettings()

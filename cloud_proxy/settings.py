from __future__ import annotations

from datetime import timedelta

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MiB = 1024 * 1024


class CopySettings(BaseSettings):
    """Configuration for object copies between stores."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    large_object_threshold: int = Field(
        default=50 * MiB,
        validation_alias="CLOUD_PROXY_LARGE_OBJECT_THRESHOLD",
    )
    base_chunk_size: int = Field(
        default=5 * MiB,
        validation_alias="CLOUD_PROXY_BASE_CHUNK_SIZE",
    )
    concurrency: int = Field(
        default=5,
        validation_alias="CLOUD_PROXY_COPY_CONCURRENCY",
    )
    same_provider_concurrency: int = Field(
        default=15,
        validation_alias="CLOUD_PROXY_SAME_PROVIDER_CONCURRENCY",
    )


class SecretCacheSettings(BaseSettings):
    """Configuration for the per-proxy secret cache."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    max_entries: int = Field(
        default=10,
        validation_alias="CLOUD_PROXY_SECRET_CACHE_MAX_ENTRIES",
    )
    ttl: timedelta = Field(
        default=timedelta(hours=1),
        validation_alias="CLOUD_PROXY_SECRET_CACHE_TTL",
    )


def load_copy_settings_from_env() -> CopySettings:
    """Load copy settings from environment variables.

    Returns:
        CopySettings instance populated from environment variables.
    """
    return CopySettings()


def load_secret_cache_settings_from_env() -> SecretCacheSettings:
    """Load secret cache settings from environment variables.

    Returns:
        SecretCacheSettings instance populated from environment variables.
    """
    return SecretCacheSettings()

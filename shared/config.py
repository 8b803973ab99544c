"""
Shared configuration management for the access enforcer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_MAX_HIERARCHY_LEVEL = 10


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ENFORCER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Passed to configure_logging by the embedding application
    log_level: str = Field(default="info")


class EnforcerSettings(BaseConfig):
    """Enforcer behaviour switches, overridable through ENFORCER_* variables."""

    enabled: bool = Field(default=True, description="When false every request is allowed")

    # Role hierarchy
    max_hierarchy_level: int = Field(default=DEFAULT_MAX_HIERARCHY_LEVEL, ge=0)
    auto_build_role_links: bool = Field(default=True)

    # Decision cache
    cache_enabled: bool = Field(default=False)
    cache_max_size: Optional[int] = Field(default=None, ge=1, description="None keeps the cache unbounded")

    # Persistence and propagation
    auto_save: bool = Field(default=True)
    auto_notify_watcher: bool = Field(default=True)

    # Policy store
    unique_policies: bool = Field(default=True)


def get_settings(**overrides) -> EnforcerSettings:
    """Get enforcer settings from the environment, with explicit overrides."""
    return EnforcerSettings(**overrides)

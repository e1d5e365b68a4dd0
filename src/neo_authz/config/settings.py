"""Runtime settings for the permission resolution engine.

Values are read from ``NEO_AUTHZ_*`` environment variables (or a ``.env``
file). Every component also accepts explicit arguments, so the cached
settings instance is a convenience for wiring, not a dependency.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import CacheTTL, HierarchyLimits, SystemRoles


class AuthzSettings(BaseSettings):
    """Permission engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="NEO_AUTHZ_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Cache
    cache_ttl_seconds: int = Field(default=CacheTTL.DECISION, description="Default decision TTL")
    cache_max_entries: int = Field(default=100_000, description="Memory cache capacity")
    cache_sweep_interval_seconds: int = Field(default=60, description="Background expiry sweep period")
    cache_key_prefix: str = Field(default="neo:authz", description="Redis key prefix")
    l1_cache_ttl_seconds: int = Field(default=CacheTTL.L1_DECISION, description="L1 TTL for the two-level cache")

    # Resolution
    max_hierarchy_depth: int = Field(default=HierarchyLimits.DEFAULT_MAX_DEPTH, description="Hierarchy walk bound")
    super_admin_role: str = Field(default=SystemRoles.SUPER_ADMIN, description="Distinguished role name")
    resolution_timeout_seconds: Optional[float] = Field(default=None, description="Default resolution deadline")
    fail_open: bool = Field(default=False, description="Guard policy for indeterminate results")
    audit_enabled: bool = Field(default=True, description="Emit audit events")

    # Infrastructure
    database_url: Optional[str] = Field(default=None, description="asyncpg DSN")
    redis_url: Optional[str] = Field(default=None, description="Redis URL")
    invalidation_channel: str = Field(default="neo:authz:invalidation", description="Redis pub/sub channel")

    @field_validator(
        "cache_ttl_seconds",
        "cache_max_entries",
        "cache_sweep_interval_seconds",
        "l1_cache_ttl_seconds",
        "max_hierarchy_depth",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Reject zero and negative limits."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("resolution_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        """Timeout must be positive when set."""
        if v is not None and v <= 0:
            raise ValueError("resolution timeout must be positive")
        return v

    @field_validator("super_admin_role", "cache_key_prefix")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("value must not be blank")
        return v


@lru_cache()
def get_settings() -> AuthzSettings:
    """Get cached settings instance."""
    return AuthzSettings()

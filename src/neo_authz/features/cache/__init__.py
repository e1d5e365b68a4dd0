"""Decision cache feature: key construction and backends."""

from .adapters import MemoryPermissionCache, RedisPermissionCache, TieredPermissionCache
from .keys import PermissionCacheKey, build_cache_key

__all__ = [
    "MemoryPermissionCache",
    "RedisPermissionCache",
    "TieredPermissionCache",
    "PermissionCacheKey",
    "build_cache_key",
]

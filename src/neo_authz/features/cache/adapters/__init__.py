"""Decision cache backends."""

from .memory_adapter import MemoryCacheEntry, MemoryPermissionCache
from .redis_adapter import RedisPermissionCache, escape_glob
from .tiered_adapter import TieredPermissionCache

__all__ = [
    "MemoryCacheEntry",
    "MemoryPermissionCache",
    "RedisPermissionCache",
    "TieredPermissionCache",
    "escape_glob",
]

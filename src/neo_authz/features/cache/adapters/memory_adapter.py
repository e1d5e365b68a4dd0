"""In-process decision cache with TTL, pattern invalidation and background sweep."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set, Tuple

from ....config.constants import CacheTTL
from ....config.settings import AuthzSettings, get_settings
from ....core.exceptions import CacheError
from ..keys import PermissionCacheKey

logger = logging.getLogger(__name__)


@dataclass
class MemoryCacheEntry:
    """Memory cache entry holding one verdict."""
    value: bool
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class MemoryPermissionCache:
    """Memory decision cache shared by all in-flight resolutions.

    Entries are indexed by principal and by tenant so that invalidating
    either touches only the matching keys. Every invalidation also bumps a
    counter (per principal, per tenant, or global for ``clear``); a ``set``
    carrying an older snapshot of those counters is dropped. Capacity is
    bounded; when full, expired entries are swept first and then the oldest
    insertion is evicted.
    """

    def __init__(
        self,
        default_ttl: int = CacheTTL.DECISION,
        max_entries: int = 100_000,
        sweep_interval: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        if default_ttl <= 0:
            raise CacheError(f"default_ttl must be positive, got {default_ttl}")
        if max_entries <= 0:
            raise CacheError(f"max_entries must be positive, got {max_entries}")

        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._sweep_interval = sweep_interval
        self._clock = clock

        self._store: Dict[PermissionCacheKey, MemoryCacheEntry] = {}
        self._by_principal: Dict[str, Set[PermissionCacheKey]] = {}
        self._by_tenant: Dict[str, Set[PermissionCacheKey]] = {}
        self._epoch = 0
        self._principal_generations: Dict[str, int] = {}
        self._tenant_generations: Dict[str, int] = {}
        self._lock = asyncio.Lock()

        self._sweep_task: Optional[asyncio.Task] = None
        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "evictions": 0,
            "expirations": 0,
            "invalidations": 0,
            "stale_writes": 0,
        }

    @classmethod
    def from_settings(cls, settings: Optional[AuthzSettings] = None) -> "MemoryPermissionCache":
        settings = settings or get_settings()
        return cls(
            default_ttl=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
            sweep_interval=settings.cache_sweep_interval_seconds,
        )

    async def connect(self) -> None:
        """Start the background expiry sweep."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._background_sweep())
            logger.info(
                f"Memory permission cache started (max_entries={self.max_entries}, "
                f"ttl={self.default_ttl}s, sweep={self._sweep_interval}s)"
            )

    async def disconnect(self) -> None:
        """Stop the sweep and drop all entries."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        await self.clear()

    async def get(self, key: PermissionCacheKey) -> Optional[bool]:
        """Get a verdict; expired entries are never served."""
        async with self._lock:
            entry = self._store.get(key)

            if entry is None:
                self._stats["misses"] += 1
                return None

            if entry.is_expired(self._clock()):
                self._remove(key)
                self._stats["misses"] += 1
                self._stats["expirations"] += 1
                return None

            self._stats["hits"] += 1
            return entry.value

    async def generation(self, key: PermissionCacheKey) -> Tuple[int, int, int]:
        """Global, principal and tenant invalidation counters covering ``key``."""
        async with self._lock:
            return self._generation_locked(key)

    async def set(
        self,
        key: PermissionCacheKey,
        value: bool,
        ttl: Optional[int] = None,
        expected_generation: Optional[Tuple[int, int, int]] = None,
    ) -> bool:
        """Store a verdict for ``ttl`` seconds unless an invalidation intervened."""
        effective_ttl = ttl if ttl is not None else self.default_ttl
        if effective_ttl <= 0:
            raise CacheError(f"TTL must be positive, got {effective_ttl}")

        async with self._lock:
            if expected_generation is not None and expected_generation != self._generation_locked(key):
                self._stats["stale_writes"] += 1
                logger.debug(f"Dropped cache write for {key.principal_id}: invalidated while resolving")
                return False

            if key in self._store:
                self._remove(key)
            elif len(self._store) >= self.max_entries:
                self._make_room()

            self._store[key] = MemoryCacheEntry(
                value=bool(value),
                expires_at=self._clock() + effective_ttl,
            )
            self._by_principal.setdefault(key.principal_id, set()).add(key)
            self._by_tenant.setdefault(key.tenant_segment, set()).add(key)
            self._stats["sets"] += 1
            return True

    async def invalidate_by_principal(self, principal_id: str) -> int:
        """Evict every entry whose key carries the principal."""
        async with self._lock:
            self._principal_generations[principal_id] = self._principal_generations.get(principal_id, 0) + 1
            keys = self._by_principal.pop(principal_id, set())
            for key in keys:
                self._remove(key)
            self._stats["invalidations"] += len(keys)

        if keys:
            logger.debug(f"Invalidated {len(keys)} cached decisions for principal {principal_id}")
        return len(keys)

    async def invalidate_by_tenant(self, tenant_id: str) -> int:
        """Evict every entry whose key carries the tenant."""
        async with self._lock:
            self._tenant_generations[tenant_id] = self._tenant_generations.get(tenant_id, 0) + 1
            keys = self._by_tenant.pop(tenant_id, set())
            for key in keys:
                self._remove(key)
            self._stats["invalidations"] += len(keys)

        if keys:
            logger.debug(f"Invalidated {len(keys)} cached decisions for tenant {tenant_id}")
        return len(keys)

    async def clear(self) -> None:
        """Clear all cache entries."""
        async with self._lock:
            # a new epoch outdates every snapshot, so the finer counters can restart
            self._epoch += 1
            self._principal_generations.clear()
            self._tenant_generations.clear()
            self._store.clear()
            self._by_principal.clear()
            self._by_tenant.clear()

    async def sweep_expired(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        async with self._lock:
            return self._sweep_locked()

    async def size(self) -> int:
        async with self._lock:
            return len(self._store)

    def stats(self) -> Dict[str, float]:
        """Hit/miss counters and hit rate."""
        total = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "entries": len(self._store),
            "hit_rate": (self._stats["hits"] / total) if total else 0.0,
        }

    def _generation_locked(self, key: PermissionCacheKey) -> Tuple[int, int, int]:
        return (
            self._epoch,
            self._principal_generations.get(key.principal_id, 0),
            self._tenant_generations.get(key.tenant_segment, 0),
        )

    def _remove(self, key: PermissionCacheKey) -> None:
        """Remove entry and its index references. Caller holds the lock."""
        self._store.pop(key, None)

        principal_keys = self._by_principal.get(key.principal_id)
        if principal_keys is not None:
            principal_keys.discard(key)
            if not principal_keys:
                del self._by_principal[key.principal_id]

        tenant_keys = self._by_tenant.get(key.tenant_segment)
        if tenant_keys is not None:
            tenant_keys.discard(key)
            if not tenant_keys:
                del self._by_tenant[key.tenant_segment]

    def _sweep_locked(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._store.items() if entry.is_expired(now)]
        for key in expired:
            self._remove(key)
        self._stats["expirations"] += len(expired)
        return len(expired)

    def _make_room(self) -> None:
        if self._sweep_locked():
            return
        # dicts keep insertion order, so the first key is the oldest write
        oldest = next(iter(self._store))
        self._remove(oldest)
        self._stats["evictions"] += 1

    async def _background_sweep(self) -> None:
        """Background task to evict expired entries."""
        while True:
            try:
                await asyncio.sleep(self._sweep_interval)
                removed = await self.sweep_expired()
                if removed:
                    logger.debug(f"Swept {removed} expired cached decisions")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in permission cache sweep: {e}")

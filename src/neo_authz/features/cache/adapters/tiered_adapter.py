"""Two-level decision cache: in-process L1 in front of a shared L2."""

import logging
from typing import Hashable, Optional, Tuple

from ....config.constants import CacheTTL
from ....config.settings import AuthzSettings, get_settings
from ...permissions.entities.protocols import PermissionCache
from ..keys import PermissionCacheKey
from .memory_adapter import MemoryPermissionCache

logger = logging.getLogger(__name__)


class TieredPermissionCache:
    """L1 memory cache backed by an L2 cache (usually Redis).

    L1 entries live at most ``l1_ttl`` seconds so a node that misses an
    invalidation message converges quickly. Reads that hit L2 back-fill L1.
    """

    def __init__(
        self,
        l1: MemoryPermissionCache,
        l2: PermissionCache,
        l1_ttl: int = CacheTTL.L1_DECISION,
    ):
        self.l1 = l1
        self.l2 = l2
        self.l1_ttl = l1_ttl

    @classmethod
    def from_settings(cls, l2: PermissionCache, settings: Optional[AuthzSettings] = None) -> "TieredPermissionCache":
        settings = settings or get_settings()
        return cls(MemoryPermissionCache.from_settings(settings), l2, l1_ttl=settings.l1_cache_ttl_seconds)

    async def connect(self) -> None:
        await self.l1.connect()
        await self.l2.connect()

    async def disconnect(self) -> None:
        await self.l1.disconnect()
        await self.l2.disconnect()

    async def get(self, key: PermissionCacheKey) -> Optional[bool]:
        value = await self.l1.get(key)
        if value is not None:
            return value

        value = await self.l2.get(key)
        if value is not None:
            await self.l1.set(key, value, ttl=self.l1_ttl)
        return value

    async def generation(self, key: PermissionCacheKey) -> Tuple[Hashable, Hashable]:
        """Counters of both tiers; L1 has its own for node-local evictions."""
        return (await self.l1.generation(key), await self.l2.generation(key))

    async def set(
        self,
        key: PermissionCacheKey,
        value: bool,
        ttl: Optional[int] = None,
        expected_generation: Optional[Tuple[Hashable, Hashable]] = None,
    ) -> bool:
        """Write L2 first; L1 is only filled when the shared write went through."""
        l1_expected, l2_expected = expected_generation if expected_generation is not None else (None, None)

        if not await self.l2.set(key, value, ttl=ttl, expected_generation=l2_expected):
            return False

        l1_ttl = min(ttl, self.l1_ttl) if ttl is not None else self.l1_ttl
        return await self.l1.set(key, value, ttl=l1_ttl, expected_generation=l1_expected)

    async def invalidate_by_principal(self, principal_id: str) -> int:
        local = await self.l1.invalidate_by_principal(principal_id)
        shared = await self.l2.invalidate_by_principal(principal_id)
        return local + shared

    async def invalidate_by_tenant(self, tenant_id: str) -> int:
        local = await self.l1.invalidate_by_tenant(tenant_id)
        shared = await self.l2.invalidate_by_tenant(tenant_id)
        return local + shared

    async def invalidate_local_principal(self, principal_id: str) -> int:
        """Evict L1 only; used when another node already cleared L2."""
        return await self.l1.invalidate_by_principal(principal_id)

    async def invalidate_local_tenant(self, tenant_id: str) -> int:
        return await self.l1.invalidate_by_tenant(tenant_id)

    async def clear_local(self) -> None:
        await self.l1.clear()

    async def clear(self) -> None:
        await self.l1.clear()
        await self.l2.clear()

"""Redis decision cache adapter for neo-authz."""

import logging
import re
from typing import Any, Callable, List, Optional, Tuple

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ....config.constants import CacheKeys, CacheTTL
from ....config.settings import AuthzSettings, get_settings
from ....core.exceptions import CacheConnectionError, CacheError, CacheKeyError
from ..keys import PermissionCacheKey

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")

_TRUE = b"1"
_FALSE = b"0"

_COMPARE_AND_SET = """
for i = 1, 3 do
    local current = redis.call("get", KEYS[i]) or "0"
    if current ~= ARGV[i] then
        return 0
    end
end
redis.call("set", KEYS[4], ARGV[4], "EX", ARGV[5])
return 1
"""


def _counter(value: Any) -> str:
    if value is None:
        return "0"
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


def escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters in a literal key component."""
    return _GLOB_SPECIAL.sub(r"\\\1", value)


class RedisPermissionCache:
    """Redis-backed decision cache shared across service instances.

    Verdicts are stored as ``b"1"``/``b"0"`` with a native Redis expiry.
    Pattern invalidation scans with ``SCAN MATCH`` and then re-checks each
    key's parsed components, so a wildcard can never evict a neighbour.
    Invalidations also ``INCR`` a counter key; guarded writes compare those
    counters and store the verdict atomically in Lua.
    """

    def __init__(
        self,
        redis_client: Optional[Redis] = None,
        redis_url: Optional[str] = None,
        prefix: str = CacheKeys.DEFAULT_PREFIX,
        default_ttl: int = CacheTTL.DECISION,
        scan_count: int = 500,
    ):
        if redis_client is None and not redis_url:
            raise CacheConnectionError("Either redis_client or redis_url is required")
        if default_ttl <= 0:
            raise CacheError(f"default_ttl must be positive, got {default_ttl}")

        self.redis_client = redis_client
        self.redis_url = redis_url
        self.prefix = prefix
        self.default_ttl = default_ttl
        self.scan_count = scan_count
        self._owns_client = redis_client is None

    @classmethod
    def from_settings(
        cls,
        redis_client: Optional[Redis] = None,
        settings: Optional[AuthzSettings] = None,
    ) -> "RedisPermissionCache":
        """Build an adapter from settings; an injected client takes precedence over the URL."""
        settings = settings or get_settings()
        return cls(
            redis_client=redis_client,
            redis_url=settings.redis_url,
            prefix=settings.cache_key_prefix,
            default_ttl=settings.cache_ttl_seconds,
        )

    async def connect(self) -> None:
        """Connect to Redis."""
        try:
            if self.redis_client is None:
                self.redis_client = redis.from_url(self.redis_url)
            await self.redis_client.ping()
            logger.info("Redis permission cache connected")
        except RedisError as e:
            raise CacheConnectionError(f"Failed to connect to Redis: {e}")

    async def disconnect(self) -> None:
        """Disconnect from Redis when this adapter created the client."""
        if self.redis_client is not None and self._owns_client:
            try:
                await self.redis_client.aclose()
            except RedisError as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                self.redis_client = None

    async def get(self, key: PermissionCacheKey) -> Optional[bool]:
        """Get a verdict; Redis expiry guarantees nothing stale is served."""
        raw_key = self._key(key)
        try:
            result = await self._client().get(raw_key)
        except RedisError as e:
            raise CacheError(f"Redis get error for key {key}: {e}")

        if result is None:
            return None
        if isinstance(result, str):
            result = result.encode()
        return result == _TRUE

    async def generation(self, key: PermissionCacheKey) -> Tuple[str, str, str]:
        """Global, principal and tenant invalidation counters covering ``key``."""
        try:
            values = await self._client().mget(self._generation_keys(key))
        except RedisError as e:
            raise CacheError(f"Redis generation read error for key {key}: {e}")
        return tuple(_counter(value) for value in values)

    async def set(
        self,
        key: PermissionCacheKey,
        value: bool,
        ttl: Optional[int] = None,
        expected_generation: Optional[Tuple[str, str, str]] = None,
    ) -> bool:
        """Store a verdict with a Redis-side expiry.

        With ``expected_generation`` the counters are compared and the entry
        written in one Lua call, so an invalidation landing between the
        snapshot and the write always wins.
        """
        effective_ttl = ttl if ttl is not None else self.default_ttl
        if effective_ttl <= 0:
            raise CacheError(f"TTL must be positive, got {effective_ttl}")

        verdict = _TRUE if value else _FALSE
        try:
            if expected_generation is None:
                await self._client().set(self._key(key), verdict, ex=effective_ttl)
                return True

            written = await self._client().eval(
                _COMPARE_AND_SET,
                4,
                *self._generation_keys(key),
                self._key(key),
                *expected_generation,
                verdict,
                effective_ttl,
            )
        except RedisError as e:
            raise CacheError(f"Redis set error for key {key}: {e}")

        if not written:
            logger.debug(f"Dropped cache write for {key.principal_id}: invalidated while resolving")
        return bool(written)

    async def invalidate_by_principal(self, principal_id: str) -> int:
        """Delete every key whose principal component equals ``principal_id``."""
        await self._bump(self._generation_key("p", principal_id))
        pattern = self._join(escape_glob(principal_id), "*")
        return await self._delete_matching(pattern, lambda k: k.principal_id == principal_id)

    async def invalidate_by_tenant(self, tenant_id: str) -> int:
        """Delete every key whose tenant component equals ``tenant_id``."""
        await self._bump(self._generation_key("t", tenant_id))
        pattern = self._join("*", escape_glob(tenant_id), "*")
        return await self._delete_matching(pattern, lambda k: k.tenant_segment == tenant_id)

    async def clear(self) -> None:
        """Delete every key under this adapter's prefix."""
        await self._bump(self._generation_key("epoch"))
        await self._delete_matching(self._join("*"), lambda k: True)

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            return bool(await self._client().ping())
        except (RedisError, CacheError) as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    def _client(self) -> Redis:
        if self.redis_client is None:
            raise CacheConnectionError("Redis permission cache is not connected")
        return self.redis_client

    def _key(self, key: PermissionCacheKey) -> str:
        return key.to_string(self.prefix)

    def _join(self, *parts: str) -> str:
        return CacheKeys.DELIMITER.join((escape_glob(self.prefix),) + parts)

    def _generation_key(self, *parts: str) -> str:
        # outside the entry prefix; pattern deletes never match these keys
        return CacheKeys.DELIMITER.join((f"{self.prefix}:gen",) + parts)

    def _generation_keys(self, key: PermissionCacheKey) -> List[str]:
        return [
            self._generation_key("epoch"),
            self._generation_key("p", key.principal_id),
            self._generation_key("t", key.tenant_segment),
        ]

    async def _bump(self, counter_key: str) -> None:
        try:
            await self._client().incr(counter_key)
        except RedisError as e:
            raise CacheError(f"Redis invalidation counter error for {counter_key!r}: {e}")

    async def _delete_matching(
        self,
        pattern: str,
        predicate: Callable[[PermissionCacheKey], bool]
    ) -> int:
        client = self._client()
        batch: List[str] = []
        deleted = 0

        try:
            async for raw in client.scan_iter(match=pattern, count=self.scan_count):
                raw_key = raw.decode() if isinstance(raw, bytes) else raw
                try:
                    parsed = PermissionCacheKey.from_string(raw_key, self.prefix)
                except CacheKeyError:
                    logger.warning(f"Skipping foreign key under permission cache prefix: {raw_key!r}")
                    continue

                if predicate(parsed):
                    batch.append(raw_key)
                if len(batch) >= self.scan_count:
                    deleted += await client.delete(*batch)
                    batch.clear()

            if batch:
                deleted += await client.delete(*batch)
        except RedisError as e:
            raise CacheError(f"Redis invalidation error for pattern {pattern!r}: {e}")

        return deleted

"""Cache invalidation on role, tenant and permission mutations.

Mutation events evict the affected decision cache entries locally and,
when a Redis client is configured, are broadcast on a pub/sub channel so
every node running a resolver evicts as well.
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ....config.constants import InvalidationEventType
from ....config.settings import AuthzSettings, get_settings
from ....core.exceptions import CacheError, InvalidInputError
from ..entities.protocols import PermissionCache

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "neo:authz:invalidation"

_LOCAL_METHODS = ("invalidate_local_principal", "invalidate_local_tenant", "clear_local")


class InvalidationCoordinator:
    """Evicts cached decisions in response to mutation events."""

    def __init__(
        self,
        cache: PermissionCache,
        redis_client: Optional[Redis] = None,
        channel: str = DEFAULT_CHANNEL,
        node_id: Optional[str] = None,
    ):
        self.cache = cache
        self.redis_client = redis_client
        self.channel = channel
        self.node_id = node_id or str(uuid.uuid4())
        self._listener: Optional[asyncio.Task] = None

        self._handlers: Dict[InvalidationEventType, Callable[[Dict[str, Any]], Awaitable[int]]] = {
            InvalidationEventType.ROLE_ASSIGNMENT_CHANGED: self._role_assignment_changed,
            InvalidationEventType.TENANT_PERMISSIONS_CHANGED: self._tenant_permissions_changed,
            InvalidationEventType.PERMISSION_DEFINITION_CHANGED: self._permission_definition_changed,
        }

    @classmethod
    def from_settings(
        cls,
        cache: PermissionCache,
        redis_client: Optional[Redis] = None,
        settings: Optional[AuthzSettings] = None,
    ) -> "InvalidationCoordinator":
        settings = settings or get_settings()
        return cls(cache, redis_client, channel=settings.invalidation_channel)

    async def on_role_assignment_changed(self, principal_id: str) -> int:
        """Evict every cached decision for the principal, across all tenants."""
        if not principal_id:
            raise InvalidInputError("principal_id is required")
        evicted = await self.cache.invalidate_by_principal(principal_id)
        logger.info(f"Role assignment changed for {principal_id}: evicted {evicted} cached decisions")
        return evicted

    async def on_tenant_permissions_changed(self, tenant_id: str) -> int:
        """Evict every cached decision made inside the tenant."""
        if not tenant_id:
            raise InvalidInputError("tenant_id is required")
        evicted = await self.cache.invalidate_by_tenant(tenant_id)
        logger.info(f"Tenant permissions changed for {tenant_id}: evicted {evicted} cached decisions")
        return evicted

    async def on_permission_definition_changed(self) -> None:
        """Drop the whole decision cache."""
        await self.cache.clear()
        logger.info("Permission definitions changed: decision cache cleared")

    async def handle_event(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> int:
        """
        Dispatch a mutation event by type.

        Args:
            event_type: One of the InvalidationEventType values
            payload: Event data; ``principal_id`` or ``tenant_id`` as required

        Returns:
            Number of entries evicted (0 for a full clear)

        Raises:
            InvalidInputError: If the type is unknown or the payload lacks its id
        """
        try:
            kind = InvalidationEventType(event_type)
        except ValueError:
            raise InvalidInputError(f"Unknown invalidation event type: {event_type!r}")
        return await self._handlers[kind](payload or {})

    async def publish(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> int:
        """Apply an event locally, then broadcast it to the other nodes.

        A failed broadcast is logged; the local eviction already happened and
        other nodes converge within the cache TTL.
        """
        evicted = await self.handle_event(event_type, payload)

        if self.redis_client is None:
            return evicted

        message = json.dumps({
            "event_id": str(uuid.uuid4()),
            "event_type": InvalidationEventType(event_type).value,
            "source_node": self.node_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": payload or {},
        })
        try:
            await self.redis_client.publish(self.channel, message)
        except RedisError as e:
            logger.error(f"Failed to broadcast invalidation {event_type}: {e}")
        return evicted

    async def handle_remote_event(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> int:
        """Apply an event another node already applied to the shared tier.

        Caches with a node-local tier (``invalidate_local_principal``,
        ``invalidate_local_tenant``, ``clear_local``) only evict that tier;
        any other cache takes the full ``handle_event`` path.
        """
        if not all(callable(getattr(self.cache, name, None)) for name in _LOCAL_METHODS):
            return await self.handle_event(event_type, payload)

        try:
            kind = InvalidationEventType(event_type)
        except ValueError:
            raise InvalidInputError(f"Unknown invalidation event type: {event_type!r}")

        data = payload or {}
        if kind is InvalidationEventType.ROLE_ASSIGNMENT_CHANGED:
            principal_id = data.get("principal_id")
            if not principal_id:
                raise InvalidInputError("principal_id is required")
            evicted = await self.cache.invalidate_local_principal(principal_id)
        elif kind is InvalidationEventType.TENANT_PERMISSIONS_CHANGED:
            tenant_id = data.get("tenant_id")
            if not tenant_id:
                raise InvalidInputError("tenant_id is required")
            evicted = await self.cache.invalidate_local_tenant(tenant_id)
        else:
            await self.cache.clear_local()
            evicted = 0

        logger.debug(f"Applied remote invalidation {kind.value} to local tier: evicted {evicted}")
        return evicted

    async def handle_message(self, raw: Any) -> None:
        """Apply an invalidation received from another node."""
        if isinstance(raw, bytes):
            raw = raw.decode()
        try:
            message = json.loads(raw)
            event_type = message["event_type"]
            data = message.get("data") or {}
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed invalidation message: {e}")
            return

        if message.get("source_node") == self.node_id:
            return

        try:
            await self.handle_remote_event(event_type, data)
        except (InvalidInputError, CacheError) as e:
            logger.warning(f"Failed to apply invalidation {event_type} from {message.get('source_node')}: {e}")

    async def start(self) -> None:
        """Start listening for broadcast invalidations."""
        if self.redis_client is None:
            raise InvalidInputError("A Redis client is required to listen for invalidations")
        if self._listener is None or self._listener.done():
            self._listener = asyncio.create_task(self.listen())
            logger.info(f"Invalidation listener started on {self.channel} (node {self.node_id})")

    async def stop(self) -> None:
        """Stop the listener task."""
        if self._listener:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None

    async def listen(self) -> None:
        """Consume the invalidation channel until cancelled."""
        pubsub = self.redis_client.pubsub()
        await pubsub.subscribe(self.channel)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    await self.handle_message(message.get("data"))
                except Exception as e:
                    logger.error(f"Error applying invalidation message: {e}")
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def _role_assignment_changed(self, data: Dict[str, Any]) -> int:
        return await self.on_role_assignment_changed(data.get("principal_id"))

    async def _tenant_permissions_changed(self, data: Dict[str, Any]) -> int:
        return await self.on_tenant_permissions_changed(data.get("tenant_id"))

    async def _permission_definition_changed(self, data: Dict[str, Any]) -> int:
        await self.on_permission_definition_changed()
        return 0

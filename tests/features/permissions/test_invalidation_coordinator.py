"""Tests for cache invalidation on mutation events."""

import asyncio
import json

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from neo_authz.config.constants import InvalidationEventType
from neo_authz.core.exceptions import InvalidInputError
from neo_authz.features.cache.adapters.memory_adapter import MemoryPermissionCache
from neo_authz.features.cache.adapters.tiered_adapter import TieredPermissionCache
from neo_authz.features.cache.keys import build_cache_key
from neo_authz.features.permissions.services.invalidation_coordinator import InvalidationCoordinator


@pytest_asyncio.fixture
async def seeded_cache(memory_cache):
    await memory_cache.set(build_cache_key("u1", "t1", "documents", "view"), True)
    await memory_cache.set(build_cache_key("u1", None, "users", "view"), True)
    await memory_cache.set(build_cache_key("u2", "t1", "documents", "view"), False)
    await memory_cache.set(build_cache_key("u2", "t2", "documents", "view"), True)
    return memory_cache


class TestInvalidationCoordinator:
    """Test local eviction for each event type."""

    @pytest.mark.asyncio
    async def test_role_assignment_changed(self, seeded_cache):
        """Every entry for the principal goes, in every tenant."""
        coordinator = InvalidationCoordinator(seeded_cache)

        evicted = await coordinator.on_role_assignment_changed("u1")

        assert evicted == 2
        assert await seeded_cache.size() == 2

    @pytest.mark.asyncio
    async def test_tenant_permissions_changed(self, seeded_cache):
        """Every entry made inside the tenant goes, for every principal."""
        coordinator = InvalidationCoordinator(seeded_cache)

        evicted = await coordinator.on_tenant_permissions_changed("t1")

        assert evicted == 2
        assert await seeded_cache.get(build_cache_key("u2", "t2", "documents", "view")) is True
        assert await seeded_cache.get(build_cache_key("u1", None, "users", "view")) is True

    @pytest.mark.asyncio
    async def test_permission_definition_changed(self, seeded_cache):
        coordinator = InvalidationCoordinator(seeded_cache)

        await coordinator.on_permission_definition_changed()

        assert await seeded_cache.size() == 0

    @pytest.mark.asyncio
    async def test_resolver_requeries_after_event(self, resolver, fake_store, memory_cache):
        """A role change is visible on the very next resolution."""
        coordinator = InvalidationCoordinator(memory_cache)
        assert await resolver.resolve("u1", "update", "documents", tenant_id="t1") is False

        fake_store.grant("u1", "documents:update", tenant_id="t1")
        await coordinator.on_role_assignment_changed("u1")

        assert await resolver.resolve("u1", "update", "documents", tenant_id="t1") is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_type,payload,remaining", [
        ("role_assignment.changed", {"principal_id": "u2"}, 2),
        ("tenant_permissions.changed", {"tenant_id": "t2"}, 3),
        ("permission_definition.changed", None, 0),
    ])
    async def test_handle_event_dispatch(self, seeded_cache, event_type, payload, remaining):
        coordinator = InvalidationCoordinator(seeded_cache)

        await coordinator.handle_event(event_type, payload)

        assert await seeded_cache.size() == remaining

    @pytest.mark.asyncio
    async def test_handle_event_unknown_type(self, memory_cache):
        with pytest.raises(InvalidInputError):
            await InvalidationCoordinator(memory_cache).handle_event("user.deleted", {})

    @pytest.mark.asyncio
    async def test_handle_event_missing_id(self, memory_cache):
        with pytest.raises(InvalidInputError):
            await InvalidationCoordinator(memory_cache).handle_event("role_assignment.changed", {})


class TestInvalidationBroadcast:
    """Test pub/sub distribution of invalidations."""

    @pytest.mark.asyncio
    async def test_publish_applies_locally_and_broadcasts(self, seeded_cache, mock_redis):
        coordinator = InvalidationCoordinator(seeded_cache, mock_redis, channel="inv", node_id="node-a")

        evicted = await coordinator.publish("role_assignment.changed", {"principal_id": "u1"})

        assert evicted == 2
        channel, raw = mock_redis.publish.await_args.args
        message = json.loads(raw)
        assert channel == "inv"
        assert message["event_type"] == "role_assignment.changed"
        assert message["source_node"] == "node-a"
        assert message["data"] == {"principal_id": "u1"}

    @pytest.mark.asyncio
    async def test_publish_survives_broadcast_failure(self, seeded_cache, mock_redis):
        """The local eviction stands even when Redis is unreachable."""
        mock_redis.publish.side_effect = RedisConnectionError("down")
        coordinator = InvalidationCoordinator(seeded_cache, mock_redis)

        evicted = await coordinator.publish(InvalidationEventType.TENANT_PERMISSIONS_CHANGED.value, {"tenant_id": "t1"})

        assert evicted == 2

    @pytest.mark.asyncio
    async def test_handle_message_from_other_node(self, seeded_cache):
        coordinator = InvalidationCoordinator(seeded_cache, node_id="node-b")
        raw = json.dumps({
            "event_type": "role_assignment.changed",
            "source_node": "node-a",
            "data": {"principal_id": "u1"},
        }).encode()

        await coordinator.handle_message(raw)

        assert await seeded_cache.size() == 2

    @pytest.mark.asyncio
    async def test_handle_message_ignores_own(self, seeded_cache):
        coordinator = InvalidationCoordinator(seeded_cache, node_id="node-a")

        await coordinator.handle_message(json.dumps({
            "event_type": "permission_definition.changed",
            "source_node": "node-a",
            "data": {},
        }))

        assert await seeded_cache.size() == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [
        "not json",
        json.dumps({"data": {}}),
        json.dumps({"event_type": "bogus", "source_node": "x"}),
        json.dumps({"event_type": "role_assignment.changed", "source_node": "x", "data": {}}),
    ])
    async def test_handle_message_tolerates_bad_input(self, seeded_cache, raw):
        coordinator = InvalidationCoordinator(seeded_cache, node_id="node-b")

        await coordinator.handle_message(raw)

        assert await seeded_cache.size() == 4

    @pytest.mark.asyncio
    async def test_listen_applies_messages(self, seeded_cache):
        """The listener applies every message from the channel."""
        messages = [
            {"type": "subscribe", "data": 1},
            {"type": "message", "data": json.dumps({
                "event_type": "tenant_permissions.changed",
                "source_node": "node-a",
                "data": {"tenant_id": "t1"},
            }).encode()},
        ]

        async def listen():
            for message in messages:
                yield message

        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        pubsub.listen = listen
        redis_client = MagicMock()
        redis_client.pubsub.return_value = pubsub

        coordinator = InvalidationCoordinator(seeded_cache, redis_client, channel="inv", node_id="node-b")
        await coordinator.listen()

        pubsub.subscribe.assert_awaited_once_with("inv")
        pubsub.unsubscribe.assert_awaited_once_with("inv")
        assert await seeded_cache.size() == 2

    @pytest.mark.asyncio
    async def test_start_and_stop(self, memory_cache):
        """The listener runs as a task until stopped."""
        async def listen():
            await asyncio.sleep(10)
            yield {}

        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        pubsub.listen = listen
        redis_client = MagicMock()
        redis_client.pubsub.return_value = pubsub

        coordinator = InvalidationCoordinator(memory_cache, redis_client)
        await coordinator.start()
        await asyncio.sleep(0)
        await coordinator.stop()

        pubsub.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_requires_redis(self, memory_cache):
        with pytest.raises(InvalidInputError):
            await InvalidationCoordinator(memory_cache).start()

    @pytest.mark.asyncio
    async def test_listen_survives_failing_message(self, memory_cache):
        """An unexpected error on one message does not stop the listener."""
        messages = [
            {"type": "message", "data": b"first"},
            {"type": "message", "data": b"second"},
        ]

        async def listen():
            for message in messages:
                yield message

        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        pubsub.listen = listen
        redis_client = MagicMock()
        redis_client.pubsub.return_value = pubsub

        coordinator = InvalidationCoordinator(memory_cache, redis_client, node_id="node-b")
        coordinator.handle_message = AsyncMock(side_effect=[RuntimeError("boom"), None])
        await coordinator.listen()

        assert coordinator.handle_message.await_count == 2
        coordinator.handle_message.assert_awaited_with(b"second")
        pubsub.aclose.assert_awaited_once()


class TestTieredRemoteEvents:
    """Events from other nodes only touch the node-local tier."""

    @pytest_asyncio.fixture
    async def tiered(self):
        l1 = MemoryPermissionCache(default_ttl=300, max_entries=1000)
        l2 = AsyncMock()
        l2.invalidate_by_principal.return_value = 0
        l2.invalidate_by_tenant.return_value = 0
        cache = TieredPermissionCache(l1, l2, l1_ttl=30)
        await l1.set(build_cache_key("u1", "t1", "documents", "view"), True)
        await l1.set(build_cache_key("u2", "t2", "documents", "view"), True)
        return cache

    @staticmethod
    def _message(event_type, data):
        return json.dumps({"event_type": event_type, "source_node": "node-a", "data": data})

    @pytest.mark.asyncio
    async def test_remote_principal_event_skips_l2(self, tiered):
        coordinator = InvalidationCoordinator(tiered, node_id="node-b")

        await coordinator.handle_message(self._message("role_assignment.changed", {"principal_id": "u1"}))

        assert await tiered.l1.size() == 1
        tiered.l2.invalidate_by_principal.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remote_tenant_event_skips_l2(self, tiered):
        coordinator = InvalidationCoordinator(tiered, node_id="node-b")

        await coordinator.handle_message(self._message("tenant_permissions.changed", {"tenant_id": "t2"}))

        assert await tiered.l1.size() == 1
        tiered.l2.invalidate_by_tenant.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remote_definition_event_skips_l2(self, tiered):
        coordinator = InvalidationCoordinator(tiered, node_id="node-b")

        await coordinator.handle_message(self._message("permission_definition.changed", {}))

        assert await tiered.l1.size() == 0
        tiered.l2.clear.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_local_event_clears_both_tiers(self, tiered):
        """The originating node still evicts the shared tier."""
        coordinator = InvalidationCoordinator(tiered)

        await coordinator.on_role_assignment_changed("u1")

        assert await tiered.l1.size() == 1
        tiered.l2.invalidate_by_principal.assert_awaited_once_with("u1")

    @pytest.mark.asyncio
    async def test_remote_event_missing_id_rejected(self, tiered):
        with pytest.raises(InvalidInputError):
            await InvalidationCoordinator(tiered).handle_remote_event("tenant_permissions.changed", {})

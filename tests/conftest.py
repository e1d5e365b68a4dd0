"""Pytest configuration and fixtures for neo-authz tests."""

import asyncio
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

import pytest
from unittest.mock import AsyncMock

from neo_authz.core.exceptions import ResourceNotFoundError
from neo_authz.features.cache.adapters.memory_adapter import MemoryPermissionCache
from neo_authz.features.permissions.entities import (
    AuditEvent,
    Delegation,
    Permission,
    PermissionRecord,
    ResourceRef,
    TimeWindow,
)
from neo_authz.features.permissions.services.permission_resolver import PermissionResolver

# Wednesday, ISO weekday 3
WEDNESDAY_10AM = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


class FixedClock:
    """Settable clock handed to the resolver."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


class FakeStore:
    """In-memory StoreClient that counts every call.

    Grants are keyed by (principal, tenant); tenant None means a global
    role assignment. ``fail_on`` maps a method name to the exception it
    raises; ``delay`` maps a method name to a sleep in seconds.
    """

    def __init__(self):
        self.super_admins: Set[str] = set()
        self.default_tenants: Dict[str, str] = {}
        self.grants: Dict[Tuple[str, Optional[str]], List[PermissionRecord]] = {}
        self.resource_grants: Set[Tuple[str, Optional[str], str, str, str]] = set()
        self.parents: Dict[Tuple[str, str], ResourceRef] = {}
        self.hierarchical_types: Set[str] = set()
        self.ownable_types: Set[str] = set()
        self.owners: Dict[Tuple[str, str], str] = {}
        self.owner_actions: Dict[str, Set[str]] = {}
        self.delegations: List[Delegation] = []
        self.known_types: Optional[Set[str]] = None

        self.fail_on: Dict[str, Exception] = {}
        self.delay: Dict[str, float] = {}
        self.calls: Counter = Counter()

    # Seeding helpers

    def grant(
        self,
        principal_id: str,
        code: str,
        tenant_id: Optional[str] = None,
        source: str = "member",
        time_window: Optional[TimeWindow] = None,
    ) -> None:
        self.grants.setdefault((principal_id, tenant_id), []).append(
            PermissionRecord(Permission.from_code(code), time_window=time_window, source=source)
        )

    def grant_resource(
        self,
        principal_id: str,
        resource_type: str,
        action: str,
        resource_id: str,
        tenant_id: Optional[str] = None,
    ) -> None:
        self.resource_grants.add((principal_id, tenant_id, resource_type, action, resource_id))

    def link(self, child: ResourceRef, parent: ResourceRef) -> None:
        self.parents[(child.resource_type, child.resource_id)] = parent

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def reset_calls(self) -> None:
        self.calls.clear()

    async def _enter(self, name: str) -> None:
        self.calls[name] += 1
        if name in self.delay:
            await asyncio.sleep(self.delay[name])
        if name in self.fail_on:
            raise self.fail_on[name]

    def _check_type(self, resource_type: str) -> None:
        if self.known_types is not None and resource_type not in self.known_types:
            raise ResourceNotFoundError(f"Unknown resource type: {resource_type}")

    # StoreClient

    async def is_super_admin(self, principal_id):
        await self._enter("is_super_admin")
        return principal_id in self.super_admins

    async def resolve_default_tenant(self, principal_id):
        await self._enter("resolve_default_tenant")
        return self.default_tenants.get(principal_id)

    async def get_union_permissions(self, principal_id, tenant_id):
        await self._enter("get_union_permissions")
        records = list(self.grants.get((principal_id, None), []))
        if tenant_id is not None:
            records.extend(self.grants.get((principal_id, tenant_id), []))
        return records

    async def get_resource_specific_grant(self, principal_id, tenant_id, resource_type, action, resource_id):
        await self._enter("get_resource_specific_grant")
        scopes = {None, tenant_id}
        return any(
            (principal_id, scope, resource_type, action, resource_id) in self.resource_grants
            for scope in scopes
        )

    async def get_parent_resource(self, resource_type, resource_id):
        await self._enter("get_parent_resource")
        return self.parents.get((resource_type, resource_id))

    async def supports_hierarchy(self, resource_type):
        await self._enter("supports_hierarchy")
        self._check_type(resource_type)
        return resource_type in self.hierarchical_types

    async def is_owner(self, principal_id, resource_type, resource_id):
        await self._enter("is_owner")
        return self.owners.get((resource_type, resource_id)) == principal_id

    async def supports_ownership(self, resource_type):
        await self._enter("supports_ownership")
        self._check_type(resource_type)
        return resource_type in self.ownable_types

    async def get_owner_actions(self, resource_type):
        await self._enter("get_owner_actions")
        return set(self.owner_actions.get(resource_type, set()))

    async def get_active_delegations(self, principal_id, now):
        await self._enter("get_active_delegations")
        return [d for d in self.delegations if d.delegate_id == principal_id and d.is_active(now)]

    async def get_next_delegation_start(self, principal_id, now):
        await self._enter("get_next_delegation_start")
        starts = [d.starts_at for d in self.delegations if d.delegate_id == principal_id and d.starts_at > now]
        return min(starts, default=None)

    async def check_time_window(self, record, now):
        await self._enter("check_time_window")
        return record.is_active_at(now)


class RecordingAuditSink:
    """Audit sink that keeps every event."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[AuditEvent]:
        return [e for e in self.events if e.event_type == event_type]


@pytest.fixture
def clock():
    """Clock fixed at Wednesday 10:00 UTC."""
    return FixedClock(WEDNESDAY_10AM)


@pytest.fixture
def fake_store():
    """Empty recording store."""
    return FakeStore()


@pytest.fixture
def memory_cache():
    """Memory decision cache without a running sweep task."""
    return MemoryPermissionCache(default_ttl=300, max_entries=1000)


@pytest.fixture
def audit_sink():
    """Audit sink that records events for assertions."""
    return RecordingAuditSink()


@pytest.fixture
def resolver(fake_store, memory_cache, audit_sink, clock):
    """Resolver wired to the fake store, memory cache and recording sink."""
    return PermissionResolver(fake_store, memory_cache, audit_sink, clock=clock)


@pytest.fixture
def mock_redis():
    """Mock redis.asyncio client."""
    client = AsyncMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=0)
    client.ping = AsyncMock(return_value=True)
    client.publish = AsyncMock(return_value=1)
    return client


@pytest.fixture
def mock_database():
    """Mock DatabaseManager for store tests."""
    db = AsyncMock()
    db.fetch = AsyncMock(return_value=[])
    db.fetchrow = AsyncMock(return_value=None)
    db.fetchval = AsyncMock(return_value=None)
    return db

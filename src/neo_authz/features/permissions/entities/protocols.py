"""Protocol interfaces for the permissions feature.

Defines the narrow contracts the resolver depends on: the read-only store
client, the audit sink and the decision cache. Concrete implementations
live in ``repositories`` and ``features.cache.adapters``.
"""

from abc import abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Hashable, List, Optional, Protocol, Set, runtime_checkable

from .decision import AuditEvent
from .delegation import Delegation
from .permission import PermissionRecord, ResourceRef

if TYPE_CHECKING:
    from ...cache.keys import PermissionCacheKey


@runtime_checkable
class StoreClient(Protocol):
    """Read-only queries against principal/role/tenant/ownership data.

    Implementations raise StoreUnavailableError when the backing store
    cannot answer, and may raise ResourceNotFoundError for an unknown
    resource type or tenant.
    """

    @abstractmethod
    async def is_super_admin(self, principal_id: str) -> bool:
        """Check for a global SuperAdmin role assignment."""
        ...

    @abstractmethod
    async def resolve_default_tenant(self, principal_id: str) -> Optional[str]:
        """Get the principal's default/current tenant, if any."""
        ...

    @abstractmethod
    async def get_union_permissions(
        self,
        principal_id: str,
        tenant_id: Optional[str]
    ) -> List[PermissionRecord]:
        """Get permissions reachable via global plus tenant role assignments."""
        ...

    @abstractmethod
    async def get_resource_specific_grant(
        self,
        principal_id: str,
        tenant_id: Optional[str],
        resource_type: str,
        action: str,
        resource_id: str
    ) -> bool:
        """Check for an instance-level grant through any of the principal's roles."""
        ...

    @abstractmethod
    async def get_parent_resource(self, resource_type: str, resource_id: str) -> Optional[ResourceRef]:
        """Get the single parent edge of a resource instance."""
        ...

    @abstractmethod
    async def supports_hierarchy(self, resource_type: str) -> bool:
        """Check whether the resource type inherits permissions from ancestors."""
        ...

    @abstractmethod
    async def is_owner(self, principal_id: str, resource_type: str, resource_id: str) -> bool:
        """Check whether the principal owns the resource instance."""
        ...

    @abstractmethod
    async def supports_ownership(self, resource_type: str) -> bool:
        """Check whether the resource type has owners."""
        ...

    @abstractmethod
    async def get_owner_actions(self, resource_type: str) -> Set[str]:
        """Get actions implicitly permitted to an instance's owner."""
        ...

    @abstractmethod
    async def get_active_delegations(self, principal_id: str, now: datetime) -> List[Delegation]:
        """Get delegations to the principal that are active at ``now``."""
        ...

    @abstractmethod
    async def get_next_delegation_start(self, principal_id: str, now: datetime) -> Optional[datetime]:
        """Earliest start after ``now`` of a delegation to the principal, if any."""
        ...

    @abstractmethod
    async def check_time_window(self, record: PermissionRecord, now: datetime) -> bool:
        """Check whether a permission record's validity window holds at ``now``."""
        ...


@runtime_checkable
class AuditSink(Protocol):
    """Fire-and-forget destination for audit events."""

    @abstractmethod
    async def record(self, event: AuditEvent) -> None:
        """Record an audit event. Failures must not affect the caller."""
        ...


@runtime_checkable
class PermissionCache(Protocol):
    """Decision cache keyed by PermissionCacheKey."""

    @abstractmethod
    async def get(self, key: "PermissionCacheKey") -> Optional[bool]:
        """Get a cached verdict, or None on miss or expiry."""
        ...

    @abstractmethod
    async def generation(self, key: "PermissionCacheKey") -> Hashable:
        """Snapshot of the invalidation counters covering ``key``.

        Taken before a verdict is computed and handed back to ``set`` so that
        a write racing an invalidation is dropped.
        """
        ...

    @abstractmethod
    async def set(
        self,
        key: "PermissionCacheKey",
        value: bool,
        ttl: Optional[int] = None,
        expected_generation: Optional[Hashable] = None,
    ) -> bool:
        """Cache a verdict for ``ttl`` seconds (backend default when None).

        When ``expected_generation`` is given and any covering counter has
        moved since, nothing is written. Returns whether the entry was written.
        """
        ...

    @abstractmethod
    async def invalidate_by_principal(self, principal_id: str) -> int:
        """Evict every entry for the principal and bump its counter. Returns the number evicted."""
        ...

    @abstractmethod
    async def invalidate_by_tenant(self, tenant_id: str) -> int:
        """Evict every entry for the tenant and bump its counter. Returns the number evicted."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Evict everything and bump the global counter."""
        ...

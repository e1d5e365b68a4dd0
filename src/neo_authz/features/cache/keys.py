"""Decision cache keys.

``build_cache_key`` is the only place a decision key is assembled. Writes,
reads and invalidations all go through PermissionCacheKey, so the key layout
cannot drift between them. Tenant is always part of the key, which keeps an
entry written under one tenant from ever answering for another.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from ...config.constants import CacheKeys
from ...core.exceptions import CacheKeyError


@dataclass(frozen=True)
class PermissionCacheKey:
    """Composite key: principal, effective tenant, resource type, action[, resource id]."""

    principal_id: str
    tenant_id: Optional[str]
    resource_type: str
    action: str
    resource_id: Optional[str] = None

    @property
    def tenant_segment(self) -> str:
        return self.tenant_id if self.tenant_id is not None else CacheKeys.GLOBAL_TENANT

    def parts(self) -> Tuple[str, ...]:
        parts = (self.principal_id, self.tenant_segment, self.resource_type, self.action)
        if self.resource_id is not None:
            parts += (self.resource_id,)
        return parts

    def to_string(self, prefix: Optional[str] = None) -> str:
        """Serialize, optionally under a backend prefix."""
        body = CacheKeys.DELIMITER.join(self.parts())
        if prefix:
            return f"{prefix}{CacheKeys.DELIMITER}{body}"
        return body

    @classmethod
    def from_string(cls, raw: str, prefix: Optional[str] = None) -> "PermissionCacheKey":
        """Parse a key produced by ``to_string`` with the same prefix."""
        if prefix:
            head = f"{prefix}{CacheKeys.DELIMITER}"
            if not raw.startswith(head):
                raise CacheKeyError(f"Cache key does not carry prefix {prefix!r}")
            raw = raw[len(head):]

        parts = raw.split(CacheKeys.DELIMITER)
        if len(parts) not in (4, 5):
            raise CacheKeyError(f"Malformed cache key with {len(parts)} components")

        principal_id, tenant, resource_type, action = parts[:4]
        return cls(
            principal_id=principal_id,
            tenant_id=None if tenant == CacheKeys.GLOBAL_TENANT else tenant,
            resource_type=resource_type,
            action=action,
            resource_id=parts[4] if len(parts) == 5 else None,
        )

    def __str__(self) -> str:
        return self.to_string()


def build_cache_key(
    principal_id: str,
    tenant_id: Optional[str],
    resource_type: str,
    action: str,
    resource_id: Optional[str] = None
) -> PermissionCacheKey:
    """Build the decision cache key for a resolution.

    Raises:
        CacheKeyError: If a component is empty or contains the key delimiter.
    """
    for name, value in (
        ("principal_id", principal_id),
        ("tenant_id", tenant_id),
        ("resource_type", resource_type),
        ("action", action),
        ("resource_id", resource_id),
    ):
        if value is None and name in ("tenant_id", "resource_id"):
            continue
        if not value:
            raise CacheKeyError(f"Cache key component {name} must not be empty")
        if CacheKeys.DELIMITER in value:
            raise CacheKeyError(f"Cache key component {name} contains the key delimiter")

    # "global" is reserved for the tenant-less context
    if tenant_id == CacheKeys.GLOBAL_TENANT:
        raise CacheKeyError(f"Tenant id {tenant_id!r} is reserved")

    return PermissionCacheKey(
        principal_id=principal_id,
        tenant_id=tenant_id,
        resource_type=resource_type,
        action=action,
        resource_id=resource_id,
    )

"""Constants and enums for neo-authz.

These values are shared by the resolver, the cache layer and the
Postgres store, and correspond to the values stored in the ``authz`` schema.
"""

from enum import Enum
from typing import Final


class PerformanceTargets:
    """Latency targets for a single resolution."""

    CACHE_HIT_MAX_MS: Final[int] = 5
    CACHE_MISS_MAX_MS: Final[int] = 50


class CacheTTL:
    """Cache TTL values in seconds."""

    DECISION: Final[int] = 300      # 5 minutes
    L1_DECISION: Final[int] = 30    # in-process tier of the two-level cache


class CacheKeys:
    """Cache key layout."""

    # ASCII unit separator; never part of a legal identifier
    DELIMITER: Final[str] = "\x1f"
    GLOBAL_TENANT: Final[str] = "global"
    DEFAULT_PREFIX: Final[str] = "neo:authz"


class HierarchyLimits:
    """Hierarchy traversal bounds."""

    DEFAULT_MAX_DEPTH: Final[int] = 10


class SystemRoles:
    """Distinguished role names."""

    SUPER_ADMIN: Final[str] = "SuperAdmin"


class Wildcards:
    """Wildcard grant tokens."""

    TOKEN: Final[str] = "*"
    SEPARATOR: Final[str] = ":"
    GLOBAL: Final[str] = "*:*"


class AuthzSchema:
    """Postgres schema holding the authorization tables."""

    NAME: Final[str] = "authz"


class ResolutionPath(str, Enum):
    """Which step of the resolution pipeline produced the verdict."""

    SUPER_ADMIN = "super_admin"
    CACHE = "cache"
    ROLE = "role"
    RESOURCE_SPECIFIC = "resource_specific"
    HIERARCHY = "hierarchy"
    OWNER = "owner"
    WILDCARD = "wildcard"
    DELEGATION = "delegation"
    DEFAULT_DENY = "default_deny"
    TENANT_UNRESOLVED = "tenant_unresolved"
    NOT_FOUND = "not_found"
    ERROR = "error"


class AuditOutcome(str, Enum):
    """Outcome recorded in audit events."""

    GRANTED = "granted"
    DENIED = "denied"
    ERROR = "error"


class InvalidationEventType(str, Enum):
    """Mutation events consumed by the invalidation coordinator."""

    ROLE_ASSIGNMENT_CHANGED = "role_assignment.changed"
    TENANT_PERMISSIONS_CHANGED = "tenant_permissions.changed"
    PERMISSION_DEFINITION_CHANGED = "permission_definition.changed"

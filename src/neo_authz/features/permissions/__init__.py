"""Permissions feature for neo-authz.

Resolves (principal, action, resource[, instance], tenant) checks through
roles, instance grants, hierarchy, ownership, wildcards and delegations.
"""

from .entities import (
    AuditEvent,
    AuditSink,
    Decision,
    Delegation,
    EffectivePermission,
    GrantKind,
    GrantPattern,
    Permission,
    PermissionCache,
    PermissionCheck,
    PermissionRecord,
    ResourceRef,
    StoreClient,
    TimeWindow,
)
from .repositories import AsyncPGStoreClient
from .services import (
    HierarchyWalker,
    InvalidationCoordinator,
    LoggingAuditSink,
    NullAuditSink,
    PermissionGuard,
    PermissionResolver,
    WildcardMatcher,
)

__all__ = [
    "AuditEvent",
    "AuditSink",
    "Decision",
    "Delegation",
    "EffectivePermission",
    "GrantKind",
    "GrantPattern",
    "Permission",
    "PermissionCache",
    "PermissionCheck",
    "PermissionRecord",
    "ResourceRef",
    "StoreClient",
    "TimeWindow",
    "AsyncPGStoreClient",
    "HierarchyWalker",
    "InvalidationCoordinator",
    "LoggingAuditSink",
    "NullAuditSink",
    "PermissionGuard",
    "PermissionResolver",
    "WildcardMatcher",
]

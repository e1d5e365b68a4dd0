"""Permission services: resolution, matching, traversal, invalidation and auditing."""

from .audit import LoggingAuditSink, NullAuditSink
from .hierarchy_walker import HierarchyWalker
from .invalidation_coordinator import InvalidationCoordinator
from .permission_guard import PermissionGuard
from .permission_resolver import PermissionResolver
from .wildcard_matcher import WildcardMatcher

__all__ = [
    "HierarchyWalker",
    "InvalidationCoordinator",
    "LoggingAuditSink",
    "NullAuditSink",
    "PermissionGuard",
    "PermissionResolver",
    "WildcardMatcher",
]

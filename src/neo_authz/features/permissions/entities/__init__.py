"""Permission entities package.

Domain entities and protocols for permission resolution.
"""

from .decision import AuditEvent, Decision, PermissionCheck
from .delegation import Delegation
from .grant import GrantKind, GrantPattern
from .permission import EffectivePermission, Permission, PermissionRecord, ResourceRef
from .protocols import AuditSink, PermissionCache, StoreClient
from .time_window import TimeWindow

__all__ = [
    # Domain entities
    "AuditEvent",
    "Decision",
    "Delegation",
    "EffectivePermission",
    "GrantKind",
    "GrantPattern",
    "Permission",
    "PermissionCheck",
    "PermissionRecord",
    "ResourceRef",
    "TimeWindow",

    # Protocols
    "AuditSink",
    "PermissionCache",
    "StoreClient",
]

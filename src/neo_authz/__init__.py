"""Neo-Authz - multi-tenant permission resolution engine for the NeoMultiTenant platform.

Decides whether a principal may perform an action on a resource type (and
optionally a single instance of it) within an optional tenant context.
"""

# Initialize logging configuration on import
from .config.logging_config import setup_logging
setup_logging()

from .__version__ import __version__

from .config import (
    AuthzSettings,
    InvalidationEventType,
    ResolutionPath,
    get_settings,
)

from .core.exceptions import (
    # Base Exception
    NeoAuthzError,

    # Resolution Exceptions
    InvalidInputError,
    InvalidGrantError,
    StoreUnavailableError,
    ResourceNotFoundError,
    ResolutionCancelledError,
    ResolutionTimeoutError,
    PermissionDeniedError,

    # Infrastructure Exceptions
    CacheError,

    # Utility Functions
    create_error_response,
)

from .features.cache import (
    MemoryPermissionCache,
    PermissionCacheKey,
    RedisPermissionCache,
    TieredPermissionCache,
    build_cache_key,
)

from .features.permissions import (
    AsyncPGStoreClient,
    AuditEvent,
    AuditSink,
    Decision,
    Delegation,
    HierarchyWalker,
    InvalidationCoordinator,
    LoggingAuditSink,
    NullAuditSink,
    Permission,
    PermissionCache,
    PermissionCheck,
    PermissionGuard,
    PermissionRecord,
    PermissionResolver,
    ResourceRef,
    StoreClient,
    TimeWindow,
    WildcardMatcher,
)

from .database import DatabaseManager

__all__ = [
    "__version__",
    "setup_logging",

    # Configuration
    "AuthzSettings",
    "InvalidationEventType",
    "ResolutionPath",
    "get_settings",

    # Exceptions
    "NeoAuthzError",
    "InvalidInputError",
    "InvalidGrantError",
    "StoreUnavailableError",
    "ResourceNotFoundError",
    "ResolutionCancelledError",
    "ResolutionTimeoutError",
    "PermissionDeniedError",
    "CacheError",
    "create_error_response",

    # Cache
    "MemoryPermissionCache",
    "PermissionCacheKey",
    "RedisPermissionCache",
    "TieredPermissionCache",
    "build_cache_key",

    # Permissions
    "AsyncPGStoreClient",
    "AuditEvent",
    "AuditSink",
    "Decision",
    "Delegation",
    "HierarchyWalker",
    "InvalidationCoordinator",
    "LoggingAuditSink",
    "NullAuditSink",
    "Permission",
    "PermissionCache",
    "PermissionCheck",
    "PermissionGuard",
    "PermissionRecord",
    "PermissionResolver",
    "ResourceRef",
    "StoreClient",
    "TimeWindow",
    "WildcardMatcher",

    # Database
    "DatabaseManager",
]

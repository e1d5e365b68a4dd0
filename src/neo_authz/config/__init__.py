"""Configuration for neo-authz: constants, settings and logging."""

from .constants import (
    AuditOutcome,
    AuthzSchema,
    CacheKeys,
    CacheTTL,
    HierarchyLimits,
    InvalidationEventType,
    PerformanceTargets,
    ResolutionPath,
    SystemRoles,
    Wildcards,
)
from .logging_config import (
    AUDIT_LOGGER_NAME,
    LogFormat,
    LoggingConfig,
    LogLevel,
    LogVerbosity,
    get_logger,
    setup_logging,
)
from .settings import AuthzSettings, get_settings

__all__ = [
    "AuditOutcome",
    "AuthzSchema",
    "CacheKeys",
    "CacheTTL",
    "HierarchyLimits",
    "InvalidationEventType",
    "PerformanceTargets",
    "ResolutionPath",
    "SystemRoles",
    "Wildcards",
    "AUDIT_LOGGER_NAME",
    "LogFormat",
    "LoggingConfig",
    "LogLevel",
    "LogVerbosity",
    "get_logger",
    "setup_logging",
    "AuthzSettings",
    "get_settings",
]

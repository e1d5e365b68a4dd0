"""Exception hierarchy for neo-authz."""

from .base import NeoAuthzError, create_error_response
from .infrastructure import CacheConnectionError, CacheError, CacheKeyError
from .resolution import (
    InvalidGrantError,
    InvalidInputError,
    PermissionDeniedError,
    ResolutionCancelledError,
    ResolutionTimeoutError,
    ResourceNotFoundError,
    StoreUnavailableError,
)

__all__ = [
    "NeoAuthzError",
    "create_error_response",
    "CacheError",
    "CacheConnectionError",
    "CacheKeyError",
    "InvalidGrantError",
    "InvalidInputError",
    "PermissionDeniedError",
    "ResolutionCancelledError",
    "ResolutionTimeoutError",
    "ResourceNotFoundError",
    "StoreUnavailableError",
]

"""Infrastructure exceptions for neo-authz cache backends."""

from .base import NeoAuthzError


class CacheError(NeoAuthzError):
    """Base class for cache-related errors."""
    pass


class CacheConnectionError(CacheError):
    """Raised when the cache backend cannot be reached."""
    pass


class CacheKeyError(CacheError):
    """Raised when a cache key cannot be built or parsed."""
    pass

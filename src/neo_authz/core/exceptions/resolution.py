"""Exceptions raised while resolving a permission.

A resolution either returns a definitive verdict or raises one of these.
Indeterminate outcomes (store failure, deadline) are never coerced to a deny
inside the engine; that policy belongs to the integration guard.
"""

from .base import NeoAuthzError


class InvalidInputError(NeoAuthzError):
    """Raised when a required resolution argument is empty or ill-formed."""
    pass


class InvalidGrantError(InvalidInputError):
    """Raised when a grant string is not in 'resource:action' form."""
    pass


class StoreUnavailableError(NeoAuthzError):
    """Raised when the principal/role/tenant store cannot be reached."""
    pass


class ResourceNotFoundError(NeoAuthzError):
    """Raised by a store for an unknown resource type or tenant."""
    pass


class ResolutionCancelledError(NeoAuthzError):
    """Raised when a resolution is abandoned before completion."""
    pass


class ResolutionTimeoutError(ResolutionCancelledError):
    """Raised when a resolution exceeds its deadline."""
    pass


class PermissionDeniedError(NeoAuthzError):
    """Raised by the permission guard when access is not granted."""
    pass

"""Integration-boundary policy around the permission resolver.

The resolver reports store failures and deadlines as errors. Callers that
need a plain yes/no use this guard, which applies one policy to every
indeterminate result: deny by default, allow only when configured to fail open.
"""

import logging
from typing import Optional

from ....core.exceptions import (
    PermissionDeniedError,
    ResolutionCancelledError,
    StoreUnavailableError,
)
from ....config.settings import AuthzSettings, get_settings
from .permission_resolver import PermissionResolver

logger = logging.getLogger(__name__)


class PermissionGuard:
    """Yes/no permission checks with a fail-closed (or fail-open) policy."""

    def __init__(self, resolver: PermissionResolver, fail_open: bool = False):
        self.resolver = resolver
        self.fail_open = fail_open

    @classmethod
    def from_settings(
        cls,
        resolver: PermissionResolver,
        settings: Optional[AuthzSettings] = None,
    ) -> "PermissionGuard":
        settings = settings or get_settings()
        return cls(resolver, fail_open=settings.fail_open)

    async def is_allowed(
        self,
        principal_id: str,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        *,
        require_tenant: bool = False,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Resolve a check, turning indeterminate outcomes into the configured policy.

        InvalidInputError is not indeterminate and is raised to the caller.
        """
        try:
            return await self.resolver.resolve(
                principal_id,
                action,
                resource_type,
                resource_id,
                tenant_id,
                require_tenant=require_tenant,
                timeout=timeout,
            )
        except (StoreUnavailableError, ResolutionCancelledError) as e:
            logger.error(
                f"Permission check {action} on {resource_type} for {principal_id} "
                f"was indeterminate ({e.__class__.__name__}); "
                f"{'allowing' if self.fail_open else 'denying'}: {e.message}"
            )
            return self.fail_open

    async def require(
        self,
        principal_id: str,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        *,
        require_tenant: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        """Raise PermissionDeniedError unless the check passes."""
        allowed = await self.is_allowed(
            principal_id,
            action,
            resource_type,
            resource_id,
            tenant_id,
            require_tenant=require_tenant,
            timeout=timeout,
        )
        if not allowed:
            # one message for every denial, so existence of the resource is not revealed
            raise PermissionDeniedError(
                "Permission denied",
                details={"action": action, "resource_type": resource_type},
            )

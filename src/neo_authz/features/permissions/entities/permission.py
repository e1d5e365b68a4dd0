"""Permission domain entities for the neo-authz permissions feature.

A permission is the immutable (resource type, action) pair. The store hands
permissions to the resolver as PermissionRecord values, which add the
optional validity window and the role the grant was reached through.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ....config.constants import Wildcards
from ....core.exceptions import InvalidGrantError
from .time_window import TimeWindow


@dataclass(frozen=True)
class Permission:
    """Immutable (resource type, action) pair."""

    resource_type: str
    action: str

    def __post_init__(self):
        """Validate both components are present."""
        if not self.resource_type or not self.action:
            raise InvalidGrantError(
                f"Both resource type and action must be non-empty, got: "
                f"{self.resource_type!r}:{self.action!r}"
            )

    @classmethod
    def from_code(cls, code: str) -> "Permission":
        """Build a permission from its 'resource:action' code."""
        if not code or code.count(Wildcards.SEPARATOR) != 1:
            raise InvalidGrantError(f"Permission code must be in format 'resource:action', got: {code!r}")
        resource_type, action = code.split(Wildcards.SEPARATOR)
        return cls(resource_type=resource_type, action=action)

    @property
    def code(self) -> str:
        """Permission in 'resource:action' form."""
        return f"{self.resource_type}{Wildcards.SEPARATOR}{self.action}"

    @property
    def is_wildcard(self) -> bool:
        return Wildcards.TOKEN in (self.resource_type, self.action)

    def __str__(self) -> str:
        return self.code


@dataclass(frozen=True)
class PermissionRecord:
    """A permission as reached through one role assignment.

    ``time_window`` is None for unconstrained grants. ``source`` names the
    role (or ``direct``) the permission came from and is informational only.
    """

    permission: Permission
    time_window: Optional[TimeWindow] = None
    source: Optional[str] = None
    record_id: Optional[str] = None

    @property
    def resource_type(self) -> str:
        return self.permission.resource_type

    @property
    def action(self) -> str:
        return self.permission.action

    @property
    def code(self) -> str:
        return self.permission.code

    @property
    def is_time_constrained(self) -> bool:
        return self.time_window is not None and not self.time_window.is_unconstrained

    def is_active_at(self, now: datetime) -> bool:
        """Check the record's validity window against ``now``."""
        if self.time_window is None:
            return True
        return self.time_window.is_satisfied(now)


@dataclass(frozen=True)
class ResourceRef:
    """A concrete resource instance: (resource type, resource id)."""

    resource_type: str
    resource_id: str

    def __str__(self) -> str:
        return f"{self.resource_type}/{self.resource_id}"


@dataclass(frozen=True)
class EffectivePermission:
    """Permission currently held by a principal, with the role it came from."""

    resource_type: str
    action: str
    source: str

    @property
    def code(self) -> str:
        return f"{self.resource_type}{Wildcards.SEPARATOR}{self.action}"

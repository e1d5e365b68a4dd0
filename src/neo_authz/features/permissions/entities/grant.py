"""Parsed grant patterns.

Grant strings ("users:view", "users:*", "*:view", "*:*") are parsed once
into a GrantPattern whose kind is fixed at parse time, so matching never
re-splits strings.
"""

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

from ....config.constants import Wildcards
from ....core.exceptions import InvalidGrantError


class GrantKind(str, Enum):
    """Shape of a grant pattern."""

    EXACT = "exact"
    RESOURCE_WILDCARD = "resource_wildcard"  # *:action
    ACTION_WILDCARD = "action_wildcard"      # resource:*
    GLOBAL_WILDCARD = "global_wildcard"      # *:*


@dataclass(frozen=True)
class GrantPattern:
    """A grant string parsed into its resource, action and kind."""

    resource_type: str
    action: str
    kind: GrantKind

    @classmethod
    def parse(cls, code: str) -> "GrantPattern":
        """Parse a 'resource:action' grant string.

        Raises:
            InvalidGrantError: If the string is not exactly two non-empty parts.
        """
        return _parse_grant(code)

    @property
    def code(self) -> str:
        return f"{self.resource_type}{Wildcards.SEPARATOR}{self.action}"

    def matches(self, resource_type: str, action: str) -> bool:
        """Check whether this grant covers the concrete (resource, action)."""
        if self.kind is GrantKind.EXACT:
            return self.resource_type == resource_type and self.action == action
        if self.kind is GrantKind.RESOURCE_WILDCARD:
            return self.action == action
        if self.kind is GrantKind.ACTION_WILDCARD:
            return self.resource_type == resource_type
        return True

    def __str__(self) -> str:
        return self.code


@lru_cache(maxsize=4096)
def _parse_grant(code: str) -> GrantPattern:
    if not isinstance(code, str) or code.count(Wildcards.SEPARATOR) != 1:
        raise InvalidGrantError(f"Grant must be in format 'resource:action', got: {code!r}")

    resource_type, action = code.split(Wildcards.SEPARATOR)
    if not resource_type or not action:
        raise InvalidGrantError(f"Both resource and action must be non-empty, got: {code!r}")

    resource_wild = resource_type == Wildcards.TOKEN
    action_wild = action == Wildcards.TOKEN

    if resource_wild and action_wild:
        kind = GrantKind.GLOBAL_WILDCARD
    elif resource_wild:
        kind = GrantKind.RESOURCE_WILDCARD
    elif action_wild:
        kind = GrantKind.ACTION_WILDCARD
    else:
        kind = GrantKind.EXACT

    return GrantPattern(resource_type=resource_type, action=action, kind=kind)

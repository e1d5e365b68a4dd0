"""Delegation entity.

A delegation hands a subset of the delegator's permissions to a delegate
for a bounded period. It never widens access: a delegated permission only
counts while the delegator still holds it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, Optional, Tuple

from ....core.exceptions import InvalidInputError
from .grant import GrantPattern
from .time_window import ensure_aware


@dataclass(frozen=True)
class Delegation:
    """Time-bounded transfer of permissions from one principal to another."""

    id: str
    delegator_id: str
    delegate_id: str
    permissions: FrozenSet[str]
    starts_at: datetime
    ends_at: datetime
    tenant_id: Optional[str] = None
    _patterns: Tuple[GrantPattern, ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.delegator_id == self.delegate_id:
            raise InvalidInputError("A principal cannot delegate to itself")
        if ensure_aware(self.starts_at) >= ensure_aware(self.ends_at):
            raise InvalidInputError("Delegation must start before it ends")

        codes = frozenset(self.permissions)
        object.__setattr__(self, "permissions", codes)
        object.__setattr__(
            self, "_patterns", tuple(GrantPattern.parse(code) for code in sorted(codes))
        )

    @property
    def patterns(self) -> Tuple[GrantPattern, ...]:
        """Delegated permissions, parsed once at construction."""
        return self._patterns

    def is_active(self, now: datetime) -> bool:
        """Delegations are valid on the half-open range [starts_at, ends_at)."""
        now = ensure_aware(now)
        return ensure_aware(self.starts_at) <= now < ensure_aware(self.ends_at)

    def applies_to_tenant(self, tenant_id: Optional[str]) -> bool:
        """Tenant-bound delegations only apply inside their tenant."""
        return self.tenant_id is None or self.tenant_id == tenant_id

    def covers(self, resource_type: str, action: str) -> bool:
        return any(pattern.matches(resource_type, action) for pattern in self._patterns)

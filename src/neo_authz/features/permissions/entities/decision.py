"""Resolution requests, verdicts and audit events."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ....config.constants import AuditOutcome, ResolutionPath


@dataclass(frozen=True)
class PermissionCheck:
    """One (action, resource type[, resource id]) check in a batch."""

    action: str
    resource_type: str
    resource_id: Optional[str] = None

    @property
    def label(self) -> str:
        """Stable key used for batch results: ``action:resource[:id]``."""
        if self.resource_id:
            return f"{self.action}:{self.resource_type}:{self.resource_id}"
        return f"{self.action}:{self.resource_type}"


@dataclass(frozen=True)
class Decision:
    """Verdict of a single resolution and how it was reached."""

    granted: bool
    path: ResolutionPath
    tenant_id: Optional[str] = None
    cached: bool = False
    delegation_id: Optional[str] = None

    def __bool__(self) -> bool:
        return self.granted


@dataclass(frozen=True)
class AuditEvent:
    """Audit record emitted for every resolution and every delegation use."""

    principal_id: str
    action: str
    resource_type: str
    outcome: AuditOutcome
    path_taken: ResolutionPath
    resource_id: Optional[str] = None
    tenant_id: Optional[str] = None
    delegation_id: Optional[str] = None
    event_type: str = "permission.resolved"
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "principal_id": self.principal_id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "tenant_id": self.tenant_id,
            "outcome": self.outcome.value,
            "path_taken": self.path_taken.value,
            "delegation_id": self.delegation_id,
            "occurred_at": self.occurred_at.isoformat(),
        }

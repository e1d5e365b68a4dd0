"""Audit sinks for resolution events."""

import logging

from ....config.constants import AuditOutcome
from ....config.logging_config import AUDIT_LOGGER_NAME
from ..entities.decision import AuditEvent

audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)

_OUTCOME_LEVELS = {
    AuditOutcome.GRANTED: logging.INFO,
    AuditOutcome.DENIED: logging.INFO,
    AuditOutcome.ERROR: logging.WARNING,
}


class LoggingAuditSink:
    """Writes audit events to the ``neo_authz.audit`` logger.

    Each event is emitted as one record with the event dict attached under
    ``extra["audit"]`` so JSON formatters can serialize it as-is.
    """

    def __init__(self, logger: logging.Logger = audit_logger):
        self.logger = logger

    async def record(self, event: AuditEvent) -> None:
        level = _OUTCOME_LEVELS.get(event.outcome, logging.INFO)
        resource = event.resource_type
        if event.resource_id:
            resource = f"{resource}/{event.resource_id}"

        self.logger.log(
            level,
            f"{event.event_type}: principal={event.principal_id} action={event.action} "
            f"resource={resource} tenant={event.tenant_id or '-'} "
            f"outcome={event.outcome.value} path={event.path_taken.value}",
            extra={"audit": event.to_dict()},
        )


class NullAuditSink:
    """Discards every event."""

    async def record(self, event: AuditEvent) -> None:
        return None

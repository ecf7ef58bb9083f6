"""
Audit Logger

Every significant action of the sync core goes through here:
loads and retries, optimistic applies and rollbacks, change-stream
merges, extraction results.

The audit logger:
- Writes structured JSON lines through structlog
- Never raises (a broken log must not break a rollback)
- Keeps a short in-memory history the UI can show
- Supports correlation IDs to trace related events
"""

import logging
from collections import deque
from typing import Optional
from uuid import UUID, uuid4

import structlog

from budgetsync.models.audit import AuditEvent, AuditSeverity


structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route stdlib logging (and so structlog) to stderr at the given level."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper()))


class AuditLogger:
    """
    Central audit logging service.

    Events are logged at the level matching their severity and kept in a
    bounded history, newest last.
    """

    def __init__(self, history_size: int = 200):
        self._logger = structlog.get_logger("budgetsync.audit")
        self._history: deque[AuditEvent] = deque(maxlen=history_size)

    @property
    def history(self) -> list[AuditEvent]:
        return list(self._history)

    def events_for(self, correlation_id: UUID) -> list[AuditEvent]:
        """All remembered events of one user action, oldest first."""
        return [e for e in self._history if e.correlation_id == correlation_id]

    def log(self, event: AuditEvent) -> None:
        """Log an audit event."""
        self._history.append(event)
        log_dict = event.to_log_dict()

        try:
            if event.severity == AuditSeverity.ERROR:
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # Logging must never interrupt the sync flow
            logging.getLogger(__name__).warning("audit log write failed: %s", e)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a user action (add expense, delete budget, ...)
    and pass it through every call the action makes.
    """
    return uuid4()


_default_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Process-wide logger used when a component is not given one."""
    global _default_logger
    if _default_logger is None:
        _default_logger = AuditLogger()
    return _default_logger

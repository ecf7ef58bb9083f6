"""
Audit Models for Budget Sync

Every step of the sync core that changes local state or talks to the
remote store is recorded as an AuditEvent. Reading the events for one
correlation id tells the whole story of a user action: the optimistic
apply, the remote call, and the confirmation or rollback.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Groups
    GROUPS_LOADED = "groups_loaded"
    GROUP_PROVISIONED = "group_provisioned"

    # Fetching
    BUDGETS_LOADED = "budgets_loaded"
    FETCH_RETRY_SCHEDULED = "fetch_retry_scheduled"
    LOAD_FAILED = "load_failed"

    # Budget mutations
    BUDGET_CREATED = "budget_created"
    BUDGET_UPDATED = "budget_updated"
    BUDGET_UPDATE_SKIPPED = "budget_update_skipped"
    BUDGET_DELETED = "budget_deleted"
    BUDGET_DIVERGED = "budget_diverged"

    # Expense mutations
    EXPENSE_OPTIMISTIC_APPLIED = "expense_optimistic_applied"
    EXPENSE_CONFIRMED = "expense_confirmed"
    EXPENSE_ROLLED_BACK = "expense_rolled_back"

    # Change stream
    SUBSCRIPTION_CHANGED = "subscription_changed"
    STREAM_EVENT_MERGED = "stream_event_merged"
    STREAM_EVENT_DISCARDED = "stream_event_discarded"

    # Extraction
    EXTRACTION_COMPLETED = "extraction_completed"
    EXTRACTION_REJECTED = "extraction_rejected"

    # Failures
    MUTATION_FAILED = "mutation_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """A single audit event."""

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # What entity is this about? Remote ids are opaque strings.
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'budget', 'expense', 'group')"
    )
    entity_id: Optional[str] = None

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="Ties together all events of one user action"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.budgets_loaded(count=3, attempt=1)
        event = AuditEventBuilder.expense_rolled_back(expense_id, budget_id, "update", error)
    """

    @staticmethod
    def groups_loaded(
        user_id: str,
        group_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUPS_LOADED,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Resolved {len(group_ids)} group(s)",
            details={"group_ids": group_ids},
        )

    @staticmethod
    def group_provisioned(
        user_id: str,
        group_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_PROVISIONED,
            entity_type="group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description="Created default group with owner membership",
            details={"owner_id": user_id},
        )

    @staticmethod
    def budgets_loaded(
        count: int,
        attempt: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGETS_LOADED,
            entity_type="budget",
            correlation_id=correlation_id,
            description=f"Loaded {count} budget(s) on attempt {attempt}",
            details={"count": count, "attempt": attempt},
        )

    @staticmethod
    def fetch_retry_scheduled(
        resource: str,
        attempt: int,
        delay_seconds: float,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FETCH_RETRY_SCHEDULED,
            severity=AuditSeverity.WARNING,
            entity_type=resource,
            correlation_id=correlation_id,
            description=f"Fetching {resource} failed on attempt {attempt}, retrying in {delay_seconds:g}s",
            details={"attempt": attempt, "delay_seconds": delay_seconds},
            error_message=error_message,
        )

    @staticmethod
    def load_failed(
        resource: str,
        attempts: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAD_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=resource,
            correlation_id=correlation_id,
            description=f"Gave up loading {resource} after {attempts} attempt(s)",
            details={"attempts": attempts},
            error_message=error_message,
        )

    @staticmethod
    def budget_created(
        budget_id: str,
        group_id: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_CREATED,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Budget created: {name}",
            details={"group_id": group_id},
        )

    @staticmethod
    def budget_updated(
        budget_id: str,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        if not fields:
            return AuditEvent(
                event_type=AuditEventType.BUDGET_UPDATE_SKIPPED,
                severity=AuditSeverity.DEBUG,
                entity_type="budget",
                entity_id=budget_id,
                correlation_id=correlation_id,
                description="Budget update skipped: nothing changed",
            )
        return AuditEvent(
            event_type=AuditEventType.BUDGET_UPDATED,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Budget updated: {', '.join(fields)}",
            details={"fields": fields},
        )

    @staticmethod
    def budget_deleted(
        budget_id: str,
        expense_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_DELETED,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Budget deleted with {expense_count} expense(s)",
            details={"expense_count": expense_count},
        )

    @staticmethod
    def budget_diverged(
        budget_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_DIVERGED,
            severity=AuditSeverity.WARNING,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description="Budget expenses were deleted remotely but the budget was not",
            error_message=error_message,
        )

    @staticmethod
    def expense_optimistic_applied(
        expense_id: str,
        budget_id: str,
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_OPTIMISTIC_APPLIED,
            severity=AuditSeverity.DEBUG,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Optimistic {operation} applied locally",
            details={"budget_id": budget_id, "operation": operation},
        )

    @staticmethod
    def expense_confirmed(
        expense_id: str,
        budget_id: str,
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_CONFIRMED,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense {operation} confirmed by remote store",
            details={"budget_id": budget_id, "operation": operation},
        )

    @staticmethod
    def expense_rolled_back(
        expense_id: str,
        budget_id: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_ROLLED_BACK,
            severity=AuditSeverity.WARNING,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense {operation} rolled back",
            details={"budget_id": budget_id, "operation": operation},
            error_message=error_message,
        )

    @staticmethod
    def subscription_changed(
        budget_id: Optional[str],
        state: str,
        error_message: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_CHANGED,
            severity=AuditSeverity.ERROR if error_message else AuditSeverity.DEBUG,
            entity_type="budget",
            entity_id=budget_id,
            description=f"Expense channel is {state}",
            details={"state": state},
            error_message=error_message,
        )

    @staticmethod
    def stream_event(
        expense_id: Optional[str],
        budget_id: Optional[str],
        merged: bool,
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.STREAM_EVENT_MERGED
                if merged
                else AuditEventType.STREAM_EVENT_DISCARDED
            ),
            severity=AuditSeverity.DEBUG,
            entity_type="expense",
            entity_id=expense_id,
            description=f"Change event {'merged' if merged else 'discarded'}: {reason}",
            details={"budget_id": budget_id, "reason": reason},
        )

    @staticmethod
    def extraction_completed(
        extraction_id: UUID,
        transaction_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_COMPLETED,
            entity_type="extraction",
            entity_id=str(extraction_id),
            correlation_id=correlation_id,
            description=f"Extraction found {transaction_count} transaction(s)",
            details={"transaction_count": transaction_count},
        )

    @staticmethod
    def extraction_rejected(
        issues: list[dict],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="extraction",
            correlation_id=correlation_id,
            description=f"Extraction rejected with {len(issues)} issue(s)",
            details={"issues": issues},
            error_message=error_message,
        )

    @staticmethod
    def mutation_failed(
        entity_type: str,
        entity_id: Optional[str],
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} {operation} failed",
            details={"operation": operation},
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

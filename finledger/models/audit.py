"""
Audit Models for the Ledger Engine

Every mutation of a user's ledger is logged for audit purposes.
This provides:
1. Traceability of how a budget total came to be
2. Debugging information when an operation fails
3. A history the user can inspect

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"

    # Budgets
    BUDGET_CREATED = "budget_created"
    BUDGET_UPDATED = "budget_updated"
    BUDGET_DELETED = "budget_deleted"

    # Savings goals
    SAVINGS_GOAL_CREATED = "savings_goal_created"
    SAVINGS_GOAL_UPDATED = "savings_goal_updated"
    SAVINGS_GOAL_DELETED = "savings_goal_deleted"

    # Loans
    LOAN_CREATED = "loan_created"
    LOAN_UPDATED = "loan_updated"
    LOAN_DELETED = "loan_deleted"
    LOAN_PROJECTED = "loan_projected"

    # Reads worth tracing
    SUMMARY_COMPUTED = "summary_computed"

    # Failures
    VALIDATION_FAILED = "validation_failed"
    OPERATION_FAILED = "operation_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every ledger mutation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Who and what
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the affected ledger"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'budget', 'loan')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate events raised by one request"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


_ENTITY_EVENTS = {
    ("transaction", "created"): AuditEventType.TRANSACTION_CREATED,
    ("transaction", "updated"): AuditEventType.TRANSACTION_UPDATED,
    ("transaction", "deleted"): AuditEventType.TRANSACTION_DELETED,
    ("budget", "created"): AuditEventType.BUDGET_CREATED,
    ("budget", "updated"): AuditEventType.BUDGET_UPDATED,
    ("budget", "deleted"): AuditEventType.BUDGET_DELETED,
    ("savings_goal", "created"): AuditEventType.SAVINGS_GOAL_CREATED,
    ("savings_goal", "updated"): AuditEventType.SAVINGS_GOAL_UPDATED,
    ("savings_goal", "deleted"): AuditEventType.SAVINGS_GOAL_DELETED,
    ("loan", "created"): AuditEventType.LOAN_CREATED,
    ("loan", "updated"): AuditEventType.LOAN_UPDATED,
    ("loan", "deleted"): AuditEventType.LOAN_DELETED,
}


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.entity_changed("budget", "created", ...)
        event = AuditEventBuilder.operation_failed("create_loan", exc, ...)
    """

    @staticmethod
    def entity_changed(
        entity_type: str,
        action: str,
        user_id: str,
        entity_id: UUID,
        correlation_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        event_type = _ENTITY_EVENTS[(entity_type, action)]
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.replace('_', ' ').capitalize()} {action}",
            details=details or {},
        )

    @staticmethod
    def loan_projected(
        user_id: str,
        loan_id: UUID,
        remaining_months: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAN_PROJECTED,
            severity=AuditSeverity.DEBUG,
            user_id=user_id,
            entity_type="loan",
            entity_id=loan_id,
            correlation_id=correlation_id,
            description=f"Loan payoff projected: {remaining_months} months remaining",
            details={"remaining_months": remaining_months},
        )

    @staticmethod
    def summary_computed(
        user_id: str,
        net_worth: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUMMARY_COMPUTED,
            severity=AuditSeverity.DEBUG,
            user_id=user_id,
            entity_type="summary",
            correlation_id=correlation_id,
            description="Financial summary computed",
            details={"net_worth": net_worth},
        )

    @staticmethod
    def validation_failed(
        operation: str,
        user_id: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Validation failed for {operation} with {len(issues)} issues",
            details={
                "operation": operation,
                "issues": issues,
            },
        )

    @staticmethod
    def operation_failed(
        operation: str,
        user_id: str,
        error: Exception,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Operation failed: {operation}",
            error_code=type(error).__name__,
            error_message=str(error),
            details={"operation": operation},
        )

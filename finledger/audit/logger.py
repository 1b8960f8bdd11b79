"""
Audit Logger

DESIGN DECISION: Every ledger mutation and every failed operation is logged.
This provides:
1. Traceability of how a budget's spent total came to be
2. Debugging capability
3. A per-user history of changes

The audit logger:
- Is async to match the storage interface
- Gracefully handles failures (a broken audit store never fails a ledger write)
- Supports correlation IDs to trace the events raised by one request
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from finledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from finledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
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


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit store, when one is configured (the SQL backend provides one)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finledger.audit")

    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_entity_changed(
        self,
        entity_type: str,
        action: str,
        user_id: str,
        entity_id: UUID,
        correlation_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Log a create/update/delete of a transaction, budget, goal or loan."""
        event = AuditEventBuilder.entity_changed(
            entity_type=entity_type,
            action=action,
            user_id=user_id,
            entity_id=entity_id,
            correlation_id=correlation_id,
            details=details,
        )
        await self.log(event)

    async def log_loan_projected(
        self,
        user_id: str,
        loan_id: UUID,
        remaining_months: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.loan_projected(
            user_id=user_id,
            loan_id=loan_id,
            remaining_months=remaining_months,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_summary_computed(
        self,
        user_id: str,
        net_worth: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.summary_computed(
            user_id=user_id,
            net_worth=net_worth,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_validation_failed(
        self,
        operation: str,
        user_id: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log rejected input."""
        event = AuditEventBuilder.validation_failed(
            operation=operation,
            user_id=user_id,
            issues=issues,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_operation_failed(
        self,
        operation: str,
        user_id: str,
        error: Exception,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an operation that raised."""
        event = AuditEventBuilder.operation_failed(
            operation=operation,
            user_id=user_id,
            error=error,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a request and pass it to every ledger call
    made on its behalf.
    """
    return uuid4()

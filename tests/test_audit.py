"""
Tests for the audit logger and the SQL audit store.
"""

from uuid import uuid4

import anyio
import pytest

from finledger.audit import AuditLogger, create_correlation_id
from finledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from finledger.services.storage import SqlAuditStorage


class BrokenAuditStorage:
    """Audit store whose writes always blow up."""

    async def append_event(self, event):
        raise RuntimeError("audit table is gone")


class TestAuditLogger:

    def test_log_without_storage(self):
        event = AuditEvent(event_type=AuditEventType.BUDGET_CREATED, description="Budget created")
        assert anyio.run(AuditLogger().log, event) is True

    def test_storage_failure_does_not_raise(self):
        """A broken audit store never fails the caller."""
        logger = AuditLogger(BrokenAuditStorage())
        event = AuditEvent(
            event_type=AuditEventType.OPERATION_FAILED,
            severity=AuditSeverity.ERROR,
            description="Operation failed: create_loan",
        )
        assert anyio.run(logger.log, event) is False

    def test_correlation_ids_are_unique(self):
        assert create_correlation_id() != create_correlation_id()


class TestSqlAuditStorage:
    """Append-only audit table."""

    def test_append_and_read_back(self, sql_client):
        store = SqlAuditStorage(sql_client)
        budget_id = uuid4()
        correlation_id = uuid4()

        async def scenario():
            created = AuditEventBuilder.entity_changed(
                "budget", "created", "alice", budget_id,
                correlation_id=correlation_id,
                details={"amount": "300.00"},
            )
            updated = AuditEventBuilder.entity_changed("budget", "updated", "alice", budget_id)
            other = AuditEventBuilder.entity_changed("loan", "created", "mallory", uuid4())
            for event in (created, updated, other):
                assert await store.append_event(event)
            return (
                await store.get_events_by_entity("budget", budget_id),
                await store.get_recent_events(user_id="alice"),
                await store.get_recent_events(limit=1),
            )

        by_entity, recent, latest = anyio.run(scenario)

        assert [e.event_type for e in by_entity] == [
            AuditEventType.BUDGET_CREATED,
            AuditEventType.BUDGET_UPDATED,
        ]
        assert by_entity[0].correlation_id == correlation_id
        assert by_entity[0].details == {"amount": "300.00"}
        assert [e.event_type for e in recent] == [
            AuditEventType.BUDGET_UPDATED,
            AuditEventType.BUDGET_CREATED,
        ]
        assert len(latest) == 1
        assert latest[0].user_id == "mallory"

    def test_failure_event_round_trip(self, sql_client):
        store = SqlAuditStorage(sql_client)
        event = AuditEventBuilder.validation_failed(
            operation="create_transaction",
            user_id="alice",
            issues=[{"field": "amount", "message": "must be positive", "type": "greater_than"}],
        )

        async def scenario():
            await store.append_event(event)
            return await store.get_recent_events(user_id="alice")

        stored = anyio.run(scenario)[0]
        assert stored.event_id == event.event_id
        assert stored.severity == AuditSeverity.WARNING
        assert stored.entity_id is None
        assert stored.details["issues"][0]["field"] == "amount"

    def test_logger_persists_through_store(self, sql_client):
        store = SqlAuditStorage(sql_client)
        loan_id = uuid4()

        async def scenario():
            await AuditLogger(store).log_loan_projected("alice", loan_id, remaining_months=7)
            return await store.get_events_by_entity("loan", loan_id)

        events = anyio.run(scenario)
        assert events[0].event_type == AuditEventType.LOAN_PROJECTED
        assert events[0].details == {"remaining_months": 7}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""
Tests for the LedgerService entry point: input handling, error propagation,
auditing and component wiring.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import anyio
import pytest

from finledger.amortization import InvalidLoanTerms, NonAmortizingLoan
from finledger.audit import AuditLogger
from finledger.config import StorageMode, get_settings
from finledger.models.audit import AuditEvent, AuditEventType
from finledger.orchestrator import LedgerService, create_app_components, create_storage
from finledger.services.storage import (
    AuditStorageInterface,
    LocalLedgerStorage,
    NotFoundError,
    SqlAuditStorage,
    SqlLedgerStorage,
    ValidationError,
)

from factories import USER


class RecordingAuditStorage(AuditStorageInterface):
    """Keeps appended events in a list."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_entity(self, entity_type: str, entity_id: UUID) -> list[AuditEvent]:
        return [e for e in self.events if e.entity_type == entity_type and e.entity_id == entity_id]

    async def get_recent_events(self, user_id: Optional[str] = None, limit: int = 100) -> list[AuditEvent]:
        events = [e for e in reversed(self.events) if user_id is None or e.user_id == user_id]
        return events[:limit]

    def of_type(self, event_type: AuditEventType) -> list[AuditEvent]:
        return [e for e in self.events if e.event_type == event_type]


@pytest.fixture
def audit_store():
    return RecordingAuditStorage()


@pytest.fixture
def service(audit_store):
    return LedgerService(LocalLedgerStorage(local_user_id=USER), AuditLogger(audit_store))


EXPENSE = {
    "amount": "50.00",
    "description": "Groceries",
    "category": "food",
    "type": "expense",
    "date": "2024-01-10",
}

FOOD_BUDGET = {
    "category": "food",
    "amount": "300",
    "start_date": "2024-01-01",
    "end_date": "2024-01-31",
}


class TestPayloads:
    """Dict input is validated into payload models."""

    def test_dict_payloads(self, service):
        async def scenario():
            budget = await service.create_budget(USER, FOOD_BUDGET)
            tx = await service.create_transaction(USER, EXPENSE)
            return tx, await service.get_budget(USER, str(budget.id))

        tx, budget = anyio.run(scenario)
        assert tx.amount == Decimal("50.00")
        assert tx.date == date(2024, 1, 10)
        assert budget.spent == Decimal("50.00")

    def test_dict_update_and_filter(self, service):
        async def scenario():
            tx = await service.create_transaction(USER, EXPENSE)
            await service.create_transaction(USER, {**EXPENSE, "category": "rent"})
            await service.update_transaction(USER, str(tx.id), {"amount": "42.10"})
            return await service.list_transactions(USER, {"category": "food"})

        listed = anyio.run(scenario)
        assert [t.amount for t in listed] == [Decimal("42.10")]

    def test_missing_field(self, service, audit_store):
        payload = {k: v for k, v in EXPENSE.items() if k != "category"}
        with pytest.raises(ValidationError) as exc_info:
            anyio.run(service.create_transaction, USER, payload)

        assert [e["field"] for e in exc_info.value.errors] == ["category"]
        failures = audit_store.of_type(AuditEventType.VALIDATION_FAILED)
        assert len(failures) == 1
        assert failures[0].details["operation"] == "create_transaction"

    def test_engine_fields_are_rejected(self, service):
        with pytest.raises(ValidationError):
            anyio.run(service.create_budget, USER, {**FOOD_BUDGET, "spent": "10"})
        with pytest.raises(ValidationError):
            anyio.run(
                service.create_loan,
                USER,
                {"name": "Car", "principal": "1000", "interest_rate": "5", "term_months": 12, "monthly_payment": "1"},
            )

    def test_non_positive_amount(self, service):
        with pytest.raises(ValidationError):
            anyio.run(service.create_transaction, USER, {**EXPENSE, "amount": "0"})

    def test_bad_id_string(self, service, audit_store):
        with pytest.raises(ValidationError) as exc_info:
            anyio.run(service.get_transaction, USER, "not-a-uuid")

        assert exc_info.value.errors[0]["field"] == "transaction_id"
        assert audit_store.of_type(AuditEventType.VALIDATION_FAILED)

    def test_empty_user_id(self, service):
        with pytest.raises(ValidationError) as exc_info:
            anyio.run(service.list_budgets, "  ")
        assert exc_info.value.errors[0]["field"] == "user_id"

    def test_validation_error_is_a_storage_error(self):
        from finledger.services.storage import StorageError
        assert issubclass(ValidationError, StorageError)


class TestErrors:
    """Ledger errors propagate unchanged and are audited."""

    def test_not_found_is_audited(self, service, audit_store):
        missing = uuid4()
        with pytest.raises(NotFoundError):
            anyio.run(service.delete_budget, USER, missing)

        failures = audit_store.of_type(AuditEventType.OPERATION_FAILED)
        assert len(failures) == 1
        assert failures[0].error_code == "NotFoundError"
        assert failures[0].details == {"operation": "delete_budget"}

    def test_invalid_loan_terms(self, service, audit_store):
        terms = {"name": "Car", "principal": "0", "interest_rate": "5", "term_months": 12}
        with pytest.raises(InvalidLoanTerms):
            anyio.run(service.create_loan, USER, terms)

        assert audit_store.of_type(AuditEventType.OPERATION_FAILED)[0].error_code == "InvalidLoanTerms"
        assert anyio.run(service.list_loans, USER) == []

    def test_non_amortizing_projection(self, service, audit_store):
        async def scenario():
            loan = await service.create_loan(
                USER, {"name": "Card", "principal": "1000", "interest_rate": "12", "term_months": 12}
            )
            await service.update_loan(USER, loan.id, {"current_balance": "100000"})
            await service.project_loan_payoff(USER, loan.id, today=date(2024, 1, 1))

        with pytest.raises(NonAmortizingLoan):
            anyio.run(scenario)
        assert audit_store.of_type(AuditEventType.OPERATION_FAILED)[0].error_code == "NonAmortizingLoan"


class TestLoans:

    def test_projection_schedule_and_progress(self, service, audit_store):
        async def scenario():
            loan = await service.create_loan(
                USER, {"name": "Laptop", "principal": "1200", "interest_rate": "0", "term_months": 12}
            )
            projection = await service.project_loan_payoff(USER, loan.id, today=date(2024, 1, 1))
            schedule = await service.get_amortization_schedule(
                USER, loan.id, first_payment_date=date(2024, 2, 1)
            )

            for month in ("02", "03"):
                await service.create_transaction(USER, {
                    "amount": "100",
                    "description": "Laptop instalment",
                    "category": "loans",
                    "type": "loan_payment",
                    "date": f"2024-{month}-01",
                    "loan_id": str(loan.id),
                })
            await service.update_loan(USER, loan.id, {"current_balance": "1000"})
            progress = await service.get_loan_progress(USER, str(loan.id))
            return loan, projection, schedule, progress

        loan, projection, schedule, progress = anyio.run(scenario)
        assert loan.monthly_payment == Decimal("100.00")
        assert projection.remaining_months == 12
        assert projection.payoff_date == date(2025, 1, 1)
        assert len(schedule) == 12
        assert schedule[-1].payment_date == date(2025, 1, 1)
        assert schedule[-1].balance == Decimal("0")
        assert progress.total_paid == Decimal("200")
        assert progress.principal_paid == Decimal("200")
        assert progress.interest_paid == Decimal("0")
        assert progress.principal_progress == Decimal("16.67")

        projected = audit_store.of_type(AuditEventType.LOAN_PROJECTED)
        assert projected[0].details == {"remaining_months": 12}


class TestAuditTrail:

    def test_mutations_share_correlation_id(self, service, audit_store):
        correlation_id = uuid4()

        async def scenario():
            budget = await service.create_budget(USER, FOOD_BUDGET, correlation_id)
            tx = await service.create_transaction(USER, EXPENSE, correlation_id)
            await service.delete_transaction(USER, tx.id, correlation_id)
            return budget, tx

        budget, tx = anyio.run(scenario)
        assert [e.event_type for e in audit_store.events] == [
            AuditEventType.BUDGET_CREATED,
            AuditEventType.TRANSACTION_CREATED,
            AuditEventType.TRANSACTION_DELETED,
        ]
        assert {e.correlation_id for e in audit_store.events} == {correlation_id}
        assert audit_store.events[1].entity_id == tx.id
        assert audit_store.events[1].details["amount"] == "50.00"

    def test_summary_is_audited(self, service, audit_store):
        async def scenario():
            await service.create_transaction(USER, {**EXPENSE, "type": "income", "amount": "900"})
            return await service.get_financial_summary(USER, date(2024, 1, 20))

        summary = anyio.run(scenario)
        assert summary.monthly_income == Decimal("900")
        computed = audit_store.of_type(AuditEventType.SUMMARY_COMPUTED)
        assert computed[0].details == {"net_worth": "0.00"}

    def test_without_audit_logger(self):
        service = LedgerService(LocalLedgerStorage(local_user_id=USER))
        tx = anyio.run(service.create_transaction, USER, EXPENSE)
        assert anyio.run(service.get_transaction, USER, tx.id) == tx


class TestLoanUpdates:

    def test_clearing_rate_is_a_validation_error(self, service, audit_store):
        async def scenario():
            loan = await service.create_loan(
                USER, {"name": "Car", "principal": "1200", "interest_rate": "0", "term_months": 12}
            )
            with pytest.raises(ValidationError) as exc_info:
                await service.update_loan(USER, loan.id, {"interest_rate": None})
            return loan, exc_info.value, await service.get_loan(USER, loan.id)

        loan, error, stored = anyio.run(scenario)
        assert [e["field"] for e in error.errors] == ["interest_rate"]
        assert stored == loan
        assert audit_store.of_type(AuditEventType.VALIDATION_FAILED)[0].details["operation"] == "update_loan"

    def test_schedule_for_balance_whose_interest_eats_the_payment(self, service, audit_store):
        """Rounded interest equal to the payment never repays anything."""
        async def scenario():
            loan = await service.create_loan(
                USER, {"name": "Card", "principal": "24", "interest_rate": "12", "term_months": 12}
            )
            balance = (loan.monthly_payment * 100 - Decimal("0.40")).quantize(Decimal("0.01"))
            await service.update_loan(USER, loan.id, {"current_balance": str(balance)})
            await service.get_amortization_schedule(USER, loan.id, first_payment_date=date(2024, 1, 1))

        with pytest.raises(NonAmortizingLoan):
            anyio.run(scenario)
        assert audit_store.of_type(AuditEventType.OPERATION_FAILED)[0].details == {
            "operation": "get_amortization_schedule"
        }


class TestReports:

    def test_reports(self, service):
        async def scenario():
            await service.create_budget(USER, FOOD_BUDGET)
            await service.create_transaction(USER, EXPENSE)
            await service.create_transaction(USER, {**EXPENSE, "category": "rent", "amount": "700"})
            await service.create_transaction(USER, {**EXPENSE, "type": "income", "category": "salary", "amount": "2000"})
            return (
                await service.get_spending_by_category(USER, limit=1),
                await service.get_monthly_trends(USER, date(2024, 1, 31)),
                await service.list_categories(USER),
            )

        spending, trends, categories = anyio.run(scenario)
        assert [(s.category, s.total) for s in spending] == [("rent", Decimal("700.00"))]
        assert len(trends) == 6
        assert trends[0].month == date(2023, 8, 1)
        assert trends[-1].income == Decimal("2000.00")
        assert trends[-1].expenses == Decimal("750.00")
        assert categories == ["food", "rent", "salary"]

    def test_bad_trend_window_is_audited(self, service, audit_store):
        with pytest.raises(ValidationError) as exc_info:
            anyio.run(service.get_monthly_trends, USER, date(2024, 1, 31), 0)

        assert exc_info.value.errors[0]["field"] == "months"
        failures = audit_store.of_type(AuditEventType.VALIDATION_FAILED)
        assert failures[0].details["operation"] == "get_monthly_trends"


class TestWiring:
    """create_storage and create_app_components."""

    def test_server_components_persist_audit_events(self, sql_client):
        service = create_app_components(storage=SqlLedgerStorage(sql_client))
        assert isinstance(service.audit_logger.storage, SqlAuditStorage)

        async def scenario():
            budget = await service.create_budget(USER, FOOD_BUDGET)
            await service.update_budget(USER, budget.id, {"amount": "450"})
            events = await service.audit_logger.storage.get_events_by_entity("budget", budget.id)
            recent = await service.audit_logger.storage.get_recent_events(user_id=USER, limit=1)
            return events, recent

        events, recent = anyio.run(scenario)
        assert [e.event_type for e in events] == [AuditEventType.BUDGET_CREATED, AuditEventType.BUDGET_UPDATED]
        assert events[1].details["fields"] == ["amount"]
        assert recent[0].event_type == AuditEventType.BUDGET_UPDATED

    def test_local_components_only_log(self):
        service = create_app_components(storage=LocalLedgerStorage())
        assert service.audit_logger.storage is None

    def test_local_mode_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LEDGER_LOCAL_DATA_PATH", str(tmp_path / "mine.json"))
        monkeypatch.setenv("LEDGER_LOCAL_USER_ID", USER)
        get_settings.cache_clear()

        storage = create_storage(StorageMode.LOCAL)
        assert isinstance(storage, LocalLedgerStorage)
        assert storage.local_user_id == USER

        anyio.run(LedgerService(storage).create_transaction, USER, EXPENSE)
        assert (tmp_path / "mine.json").exists()

    def test_default_mode_from_environment(self, tmp_path, monkeypatch):
        url = f"sqlite:///{tmp_path / 'configured.db'}"
        monkeypatch.setenv("STORAGE_MODE", "server")
        monkeypatch.setenv("LEDGER_DATABASE_URL", url)
        get_settings.cache_clear()

        storage = create_storage()
        assert isinstance(storage, SqlLedgerStorage)
        assert storage.client.url == url
        storage.client.dispose()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

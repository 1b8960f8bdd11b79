"""
Ledger Service

This module ties together storage, the pure ledger computations and the
audit trail, and is the one entry point callers use.

DESIGN DECISION: The service enforces the boundaries:
- Input is validated before it reaches a backend
- Engine-controlled figures (budget spent, loan payment) are never accepted
  from the caller
- Every mutation is audited, and every failure is logged and audited before
  it propagates unchanged

Both backends sit behind the same LedgerStorageInterface, so nothing here
knows or cares which one is in use.
"""

from datetime import date, datetime
from typing import Any, Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from finledger.amortization import (
    AmortizationError,
    build_amortization_schedule,
    calculate_loan_progress,
    project_loan_payoff,
)
from finledger.audit import AuditLogger, create_correlation_id
from finledger.config import Settings, StorageMode, get_settings
from finledger.models.ledger import (
    AmortizationRow,
    Budget,
    BudgetCreate,
    BudgetUpdate,
    CategorySpending,
    FinancialSummary,
    Loan,
    LoanCreate,
    LoanPayoffProjection,
    LoanProgress,
    LoanUpdate,
    MonthlyTrend,
    SavingsGoal,
    SavingsGoalCreate,
    SavingsGoalUpdate,
    Transaction,
    TransactionCreate,
    TransactionFilter,
    TransactionUpdate,
)
from finledger.services.storage import (
    LedgerStorageInterface,
    LocalLedgerStorage,
    SqlAuditStorage,
    SqlClient,
    SqlLedgerStorage,
    StorageError,
    ValidationError,
)
from finledger.summary import DEFAULT_TOP_CATEGORIES, DEFAULT_TREND_MONTHS


logger = structlog.get_logger(__name__)

Payload = Union[BaseModel, dict[str, Any]]


class LedgerService:
    """
    External interface of the ledger engine.

    Accepts either payload models or plain dicts. Every method takes the
    owning ``user_id`` first and an optional ``correlation_id`` last.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger

    @property
    def storage(self) -> LedgerStorageInterface:
        return self._storage

    @property
    def audit_logger(self) -> Optional[AuditLogger]:
        return self._audit_logger

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _parse(
        self,
        model_cls: type[BaseModel],
        data: Payload,
        operation: str,
        user_id: str,
        correlation_id: UUID,
    ):
        """Turn caller input into a payload model or raise ValidationError."""
        if isinstance(data, model_cls):
            return data
        try:
            return model_cls.model_validate(data)
        except PydanticValidationError as e:
            error = ValidationError.from_pydantic(e, model_cls.__name__)
            await self._failed(operation, user_id, error, correlation_id)
            raise error from e

    async def _check_identity(
        self,
        operation: str,
        user_id: str,
        correlation_id: UUID,
        **ids: Union[UUID, str],
    ) -> dict[str, UUID]:
        """Reject an empty user id and coerce id arguments to UUIDs."""
        issues = []
        if not isinstance(user_id, str) or not user_id.strip():
            issues.append({"field": "user_id", "message": "User id is required", "type": "missing"})

        parsed = {}
        for name, value in ids.items():
            try:
                parsed[name] = value if isinstance(value, UUID) else UUID(str(value))
            except ValueError:
                issues.append({"field": name, "message": f"Not a valid id: {value}", "type": "uuid_parsing"})

        if issues:
            error = ValidationError(f"Invalid arguments for {operation}", issues)
            owner = user_id if isinstance(user_id, str) else None
            await self._failed(operation, owner, error, correlation_id)
            raise error
        return parsed

    async def _failed(
        self,
        operation: str,
        user_id: str,
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        """Log and audit a failure. The caller re-raises."""
        if isinstance(error, ValidationError):
            logger.warning("validation_failed", operation=operation, user_id=user_id, errors=error.errors)
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    operation=operation,
                    user_id=user_id,
                    issues=error.errors,
                    correlation_id=correlation_id,
                )
            return

        logger.warning(
            "operation_failed",
            operation=operation,
            user_id=user_id,
            error_type=type(error).__name__,
            error=str(error),
        )
        if self._audit_logger:
            await self._audit_logger.log_operation_failed(
                operation=operation,
                user_id=user_id,
                error=error,
                correlation_id=correlation_id,
            )

    async def _guarded(self, operation: str, user_id: str, correlation_id: UUID, pending):
        """Await a storage call, auditing any ledger error before re-raising it."""
        try:
            return await pending
        except (StorageError, AmortizationError) as e:
            await self._failed(operation, user_id, e, correlation_id)
            raise

    async def _changed(
        self,
        entity_type: str,
        action: str,
        user_id: str,
        entity_id: UUID,
        correlation_id: UUID,
        details: Optional[dict] = None,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_entity_changed(
                entity_type=entity_type,
                action=action,
                user_id=user_id,
                entity_id=entity_id,
                correlation_id=correlation_id,
                details=details,
            )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def create_transaction(
        self,
        user_id: str,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a transaction. Matching budgets are updated in the same write.

        Raises:
            ValidationError: If the payload is malformed
            NotFoundError: If a referenced goal or loan is not the user's
        """
        operation = "create_transaction"
        correlation_id = correlation_id or create_correlation_id()
        await self._check_identity(operation, user_id, correlation_id)
        payload = await self._parse(TransactionCreate, data, operation, user_id, correlation_id)

        tx = await self._guarded(
            operation, user_id, correlation_id,
            self._storage.create_transaction(user_id, payload),
        )
        await self._changed(
            "transaction", "created", user_id, tx.id, correlation_id,
            details={"amount": str(tx.amount), "category": tx.category, "type": tx.type.value},
        )
        return tx

    async def get_transaction(
        self,
        user_id: str,
        transaction_id: Union[UUID, str],
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        operation = "get_transaction"
        correlation_id = correlation_id or create_correlation_id()
        ids = await self._check_identity(operation, user_id, correlation_id, transaction_id=transaction_id)
        return await self._guarded(
            operation, user_id, correlation_id,
            self._storage.get_transaction(user_id, ids["transaction_id"]),
        )

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: Union[UUID, str],
        changes: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Apply a partial update. The old budget contribution is reversed and
        the new one applied atomically.
        """
        operation = "update_transaction"
        correlation_id = correlation_id or create_correlation_id()
        ids = await self._check_identity(operation, user_id, correlation_id, transaction_id=transaction_id)
        payload = await self._parse(TransactionUpdate, changes, operation, user_id, correlation_id)

        tx = await self._guarded(
            operation, user_id, correlation_id,
            self._storage.update_transaction(user_id, ids["transaction_id"], payload),
        )
        await self._changed(
            "transaction", "updated", user_id, tx.id, correlation_id,
            details={"fields": sorted(payload.model_fields_set)},
        )
        return tx

    async def delete_transaction(
        self,
        user_id: str,
        transaction_id: Union[UUID, str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        operation = "delete_transaction"
        correlation_id = correlation_id or create_correlation_id()
        ids = await self._check_identity(operation, user_id, correlation_id, transaction_id=transaction_id)
        await self._guarded(
            operation, user_id, correlation_id,
            self._storage.delete_transaction(user_id, ids["transaction_id"]),
        )
        await self._changed("transaction", "deleted", user_id, ids["transaction_id"], correlation_id)

    async def list_transactions(
        self,
        user_id: str,
        filters: Optional[Payload] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """List the user's transactions newest first, optionally filtered and paged."""
        operation = "list_transactions"
        correlation_id = correlation_id or create_correlation_id()
        await self._check_identity(operation, user_id, correlation_id)
        parsed = None
        if filters is not None:
            parsed = await self._parse(TransactionFilter, filters, operation, user_id, correlation_id)
        return await self._guarded(
            operation, user_id, correlation_id,
            self._storage.list_transactions(user_id, parsed),
        )

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    async def create_budget(
        self,
        user_id: str,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """Create a budget; ``spent`` starts at the sum of matching transactions."""
        operation = "create_budget"
        correlation_id = correlation_id or create_correlation_id()
        await self._check_identity(operation, user_id, correlation_id)
        payload = await self._parse(BudgetCreate, data, operation, user_id, correlation_id)

        budget = await self._guarded(
            operation, user_id, correlation_id,
            self._storage.create_budget(user_id, payload),
        )
        await self._changed(
            "budget", "created", user_id, budget.id, correlation_id,
            details={"category": budget.category, "amount": str(budget.amount), "spent": str(budget.spent)},
        )
        return budget

    async def get_budget(
        self,
        user_id: str,
        budget_id: Union[UUID, str],
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        operation = "get_budget"
        correlation_id = correlation_id or create_correlation_id()
        ids = await self._check_identity(operation, user_id, correlation_id, budget_id=budget_id)
        return await self._guarded(
            operation, user_id, correlation_id,
            self._storage.get_budget(user_id, ids["budget_id"]),
        )

    async def update_budget(
        self,
        user_id: str,
        budget_id: Union[UUID, str],
        changes: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        operation = "update_budget"
        correlation_id = correlation_id or create_correlation_id()
        ids = await self._check_identity(operation, user_id, correlation_id, budget_id=budget_id)
        payload = await self._parse(BudgetUpdate, changes, operation, user_id, correlation_id)

        budget = await self._guarded(
            operation, user_id, correlation_id,
            self._storage.update_budget(user_id, ids["budget_id"], payload),
        )
        await self._changed(
            "budget", "updated", user_id, budget.id, correlation_id,
            details={"fields": sorted(payload.model_fields_set), "spent": str(budget.spent)},
        )
        return budget

    async def delete_budget(
        self,
        user_id: str,
        budget_id: Union[UUID, str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        operation = "delete_budget"
        correlation_id = correlation_id or create_correlation_id()
        ids = await self._check_identity(operation, user_id, correlation_id, budget_id=budget_id)
        await self._guarded(
            operation, user_id, correlation_id,
            self._storage.delete_budget(user_id, ids["budget_id"]),
        )
        await self._changed("budget", "deleted", user_id, ids["budget_id"], correlation_id)

    async def list_budgets(
        self,
        user_id: str,
        category: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[Budget]:
        operation = "list_budgets"
        correlation_id = correlation_id or create_correlation_id()
        await self._check_identity(operation, user_id, correlation_id)
        return await self._guarded(
            operation, user_id, correlation_id,
            self._storage.list_budgets(user_id, category),
        )

    # ------------------------------------------------------------------
    # Savings goals
    # ------------------------------------------------------------------

    async def create_savings_goal(
        self,
        user_id: str,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> SavingsGoal:
        operation = "create_savings_goal"
        correlation_id = correlation_id or create_correlation_id()
        await self._check_identity(operation, user_id, correlation_id)
        payload = await self._parse(SavingsGoalCreate, data, operation, user_id, correlation_id)

        goal = await self._guarded(
            operation, user_id, correlation_id,
            self._storage.create_savings_goal(user_id, payload),
        )
        await self._changed(
            "savings_goal", "created", user_id, goal.id, correlation_id,
            details={"name": goal.name, "target_amount": str(goal.target_amount)},
        )
        return goal

    async def get_savings_goal(
        self,
        user_id: str,
        goal_id: Union[UUID, str],
        correlation_id: Optional[UUID] = None,
    ) -> SavingsGoal:
        operation = "get_savings_goal"
        correlation_id = correlation_id or create_correlation_id()
        ids = await self._check_identity(operation, user_id, correlation_id, goal_id=goal_id)
        return await self._guarded(
            operation, user_id, correlation_id,
            self._storage.get_savings_goal(user_id, ids["goal_id"]),
        )

    async def update_savings_goal(
        self,
        user_id: str,
        goal_id: Union[UUID, str],
        changes: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> SavingsGoal:
        operation = "update_savings_goal"
        correlation_id = correlation_id or create_correlation_id()
        ids = await self._check_identity(operation, user_id, correlation_id, goal_id=goal_id)
        payload = await self._parse(SavingsGoalUpdate, changes, operation, user_id, correlation_id)

        goal = await self._guarded(
            operation, user_id, correlation_id,
            self._storage.update_savings_goal(user_id, ids["goal_id"], payload),
        )
        await self._changed(
            "savings_goal", "updated", user_id, goal.id, correlation_id,
            details={"fields": sorted(payload.model_fields_set)},
        )
        return goal

    async def delete_savings_goal(
        self,
        user_id: str,
        goal_id: Union[UUID, str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Delete a goal. Transactions that referenced it keep existing, unlinked."""
        operation = "delete_savings_goal"
        correlation_id = correlation_id or create_correlation_id()
        ids = await self._check_identity(operation, user_id, correlation_id, goal_id=goal_id)
        await self._guarded(
            operation, user_id, correlation_id,
            self._storage.delete_savings_goal(user_id, ids["goal_id"]),
        )
        await self._changed("savings_goal", "deleted", user_id, ids["goal_id"], correlation_id)

    async def list_savings_goals(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[SavingsGoal]:
        operation = "list_savings_goals"
        correlation_id = correlation_id or create_correlation_id()
        await self._check_identity(operation, user_id, correlation_id)
        return await self._guarded(
            operation, user_id, correlation_id,
            self._storage.list_savings_goals(user_id),
        )

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------

    async def create_loan(
        self,
        user_id: str,
        terms: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Loan:
        """
        Create a loan; the monthly payment is computed from its terms.

        Raises:
            InvalidLoanTerms: If principal or term is not positive
            ValidationError: If the payload is malformed
        """
        operation = "create_loan"
        correlation_id = correlation_id or create_correlation_id()
        await self._check_identity(operation, user_id, correlation_id)
        payload = await self._parse(LoanCreate, terms, operation, user_id, correlation_id)

        loan = await self._guarded(
            operation, user_id, correlation_id,
            self._storage.create_loan(user_id, payload),
        )
        await self._changed(
            "loan", "created", user_id, loan.id, correlation_id,
            details={"principal": str(loan.principal), "monthly_payment": str(loan.monthly_payment)},
        )
        return loan

    async def get_loan(
        self,
        user_id: str,
        loan_id: Union[UUID, str],
        correlation_id: Optional[UUID] = None,
    ) -> Loan:
        operation = "get_loan"
        correlation_id = correlation_id or create_correlation_id()
        ids = await self._check_identity(operation, user_id, correlation_id, loan_id=loan_id)
        return await self._guarded(
            operation, user_id, correlation_id,
            self._storage.get_loan(user_id, ids["loan_id"]),
        )

    async def update_loan(
        self,
        user_id: str,
        loan_id: Union[UUID, str],
        changes: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Loan:
        """Update a loan; the payment is recomputed when principal, rate or term change."""
        operation = "update_loan"
        correlation_id = correlation_id or create_correlation_id()
        ids = await self._check_identity(operation, user_id, correlation_id, loan_id=loan_id)
        payload = await self._parse(LoanUpdate, changes, operation, user_id, correlation_id)

        loan = await self._guarded(
            operation, user_id, correlation_id,
            self._storage.update_loan(user_id, ids["loan_id"], payload),
        )
        await self._changed(
            "loan", "updated", user_id, loan.id, correlation_id,
            details={"fields": sorted(payload.model_fields_set), "monthly_payment": str(loan.monthly_payment)},
        )
        return loan

    async def delete_loan(
        self,
        user_id: str,
        loan_id: Union[UUID, str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        operation = "delete_loan"
        correlation_id = correlation_id or create_correlation_id()
        ids = await self._check_identity(operation, user_id, correlation_id, loan_id=loan_id)
        await self._guarded(
            operation, user_id, correlation_id,
            self._storage.delete_loan(user_id, ids["loan_id"]),
        )
        await self._changed("loan", "deleted", user_id, ids["loan_id"], correlation_id)

    async def list_loans(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[Loan]:
        operation = "list_loans"
        correlation_id = correlation_id or create_correlation_id()
        await self._check_identity(operation, user_id, correlation_id)
        return await self._guarded(
            operation, user_id, correlation_id,
            self._storage.list_loans(user_id),
        )

    async def project_loan_payoff(
        self,
        user_id: str,
        loan_id: Union[UUID, str],
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LoanPayoffProjection:
        """
        Project when a stored loan is paid off at its current payment.

        Raises:
            NonAmortizingLoan: If the payment does not cover the monthly interest
        """
        operation = "project_loan_payoff"
        correlation_id = correlation_id or create_correlation_id()
        loan = await self.get_loan(user_id, loan_id, correlation_id)
        try:
            projection = project_loan_payoff(loan, today)
        except AmortizationError as e:
            await self._failed(operation, user_id, e, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_loan_projected(
                user_id=user_id,
                loan_id=loan.id,
                remaining_months=projection.remaining_months,
                correlation_id=correlation_id,
            )
        return projection

    async def get_amortization_schedule(
        self,
        user_id: str,
        loan_id: Union[UUID, str],
        first_payment_date: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[AmortizationRow]:
        """Month-by-month schedule from the loan's current balance."""
        operation = "get_amortization_schedule"
        correlation_id = correlation_id or create_correlation_id()
        loan = await self.get_loan(user_id, loan_id, correlation_id)
        start = first_payment_date or loan.next_payment_date or date.today()
        try:
            return build_amortization_schedule(
                balance=loan.current_balance,
                monthly_payment=loan.monthly_payment,
                rate_per_month=loan.monthly_rate,
                first_payment_date=start,
            )
        except AmortizationError as e:
            await self._failed(operation, user_id, e, correlation_id)
            raise

    async def get_loan_progress(
        self,
        user_id: str,
        loan_id: Union[UUID, str],
        correlation_id: Optional[UUID] = None,
    ) -> LoanProgress:
        """Repayment progress from the stored balance and the loan's payment history."""
        correlation_id = correlation_id or create_correlation_id()
        loan = await self.get_loan(user_id, loan_id, correlation_id)
        payments = await self.list_transactions(
            user_id,
            TransactionFilter(loan_id=loan.id),
            correlation_id,
        )
        return calculate_loan_progress(loan, payments)

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    async def get_financial_summary(
        self,
        user_id: str,
        now: Union[date, datetime],
        correlation_id: Optional[UUID] = None,
    ) -> FinancialSummary:
        """
        Net worth, this month's income and expenses, savings and debt.

        ``now`` selects the calendar month; the system clock is never read.
        """
        operation = "get_financial_summary"
        correlation_id = correlation_id or create_correlation_id()
        await self._check_identity(operation, user_id, correlation_id)
        summary = await self._guarded(
            operation, user_id, correlation_id,
            self._storage.get_financial_summary(user_id, now),
        )
        if self._audit_logger:
            await self._audit_logger.log_summary_computed(
                user_id=user_id,
                net_worth=str(summary.net_worth),
                correlation_id=correlation_id,
            )
        return summary

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def get_spending_by_category(
        self,
        user_id: str,
        limit: Optional[int] = DEFAULT_TOP_CATEGORIES,
        correlation_id: Optional[UUID] = None,
    ) -> list[CategorySpending]:
        """Top expense categories by total spent. ``limit=None`` returns all of them."""
        operation = "get_spending_by_category"
        correlation_id = correlation_id or create_correlation_id()
        await self._check_identity(operation, user_id, correlation_id)
        return await self._guarded(
            operation, user_id, correlation_id,
            self._storage.get_spending_by_category(user_id, limit),
        )

    async def get_monthly_trends(
        self,
        user_id: str,
        now: Union[date, datetime],
        months: int = DEFAULT_TREND_MONTHS,
        correlation_id: Optional[UUID] = None,
    ) -> list[MonthlyTrend]:
        """Income and expenses for each of the last ``months`` calendar months, oldest first."""
        operation = "get_monthly_trends"
        correlation_id = correlation_id or create_correlation_id()
        await self._check_identity(operation, user_id, correlation_id)
        return await self._guarded(
            operation, user_id, correlation_id,
            self._storage.get_monthly_trends(user_id, now, months),
        )

    async def list_categories(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[str]:
        operation = "list_categories"
        correlation_id = correlation_id or create_correlation_id()
        await self._check_identity(operation, user_id, correlation_id)
        return await self._guarded(
            operation, user_id, correlation_id,
            self._storage.list_categories(user_id),
        )


def create_storage(
    mode: Optional[StorageMode] = None,
    settings: Optional[Settings] = None,
) -> LedgerStorageInterface:
    """
    Build the ledger backend for the given mode.

    Args:
        mode: Backend to use. Defaults to the configured storage mode.
        settings: Settings to read from. Defaults to get_settings().
    """
    settings = settings or get_settings()
    mode = StorageMode(mode or settings.app.storage_mode)

    if mode == StorageMode.LOCAL:
        local = settings.local_store
        return LocalLedgerStorage(data_path=local.data_path, local_user_id=local.user_id)

    return SqlLedgerStorage(SqlClient(settings.database))


def create_app_components(
    mode: Optional[StorageMode] = None,
    storage: Optional[LedgerStorageInterface] = None,
) -> LedgerService:
    """
    Factory function to create the ledger service.

    The server backend persists audit events next to the ledger; the local
    backend only logs them.

    Args:
        mode: Backend to use when ``storage`` is not given.
        storage: An already-built backend (useful for tests).
    """
    storage = storage or create_storage(mode)

    if isinstance(storage, SqlLedgerStorage):
        audit_logger = AuditLogger(SqlAuditStorage(storage.client))
    else:
        audit_logger = AuditLogger()  # Local-only logging

    logger.info("ledger_service_created", backend=type(storage).__name__)
    return LedgerService(storage=storage, audit_logger=audit_logger)

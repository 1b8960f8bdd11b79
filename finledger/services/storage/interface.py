"""
Abstract Ledger Storage Interface

DESIGN DECISION: We define one abstract interface for every ledger operation.
It is implemented twice:
1. A server-side relational store (SQLAlchemy), keyed by authenticated user id
2. A local-only store (JSON file or memory), keyed by an implicit local user

Both implementations must give identical results for identical calls. The
parts that could drift apart - budget accumulation, loan payment computation,
summary aggregation - live outside the backends as pure functions and are
called from here or from both implementations.

Every method takes the owning ``user_id`` first. A record owned by another
user is indistinguishable from a missing one: both raise NotFoundError.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from finledger.models.audit import AuditEvent
from finledger.models.ledger import (
    Budget,
    BudgetCreate,
    BudgetUpdate,
    CategorySpending,
    FinancialSummary,
    Loan,
    LoanCreate,
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
from finledger.summary import (
    DEFAULT_TOP_CATEGORIES,
    DEFAULT_TREND_MONTHS,
    FinancialSummaryAggregator,
    ReportAggregator,
)


class LedgerSnapshot(BaseModel):
    """Everything one user owns, read at a single point in time."""

    user_id: str
    transactions: list[Transaction] = Field(default_factory=list)
    budgets: list[Budget] = Field(default_factory=list)
    savings_goals: list[SavingsGoal] = Field(default_factory=list)
    loans: list[Loan] = Field(default_factory=list)


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    Any storage implementation must implement these methods. Transaction
    writes must run budget accumulation in the same atomic unit.
    """

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_transaction(self, user_id: str, data: TransactionCreate) -> Transaction:
        """
        Record a transaction and accumulate it into matching budgets.

        Raises:
            NotFoundError: If a referenced savings goal or loan is not the user's
            StorageError: If the write fails (nothing is persisted)
        """
        pass

    @abstractmethod
    async def get_transaction(self, user_id: str, transaction_id: UUID) -> Transaction:
        """
        Raises:
            NotFoundError: If absent or owned by another user
        """
        pass

    @abstractmethod
    async def update_transaction(
        self,
        user_id: str,
        transaction_id: UUID,
        changes: TransactionUpdate,
    ) -> Transaction:
        """
        Merge the set fields into the transaction.

        When amount, category, type or date change, the old budget
        contribution is reversed and the new one applied atomically.

        Raises:
            NotFoundError: If absent or owned by another user
            ValidationError: If the merged record is invalid
        """
        pass

    @abstractmethod
    async def delete_transaction(self, user_id: str, transaction_id: UUID) -> None:
        """
        Reverse the budget contribution (floored at zero) and remove the record.

        Raises:
            NotFoundError: If absent or owned by another user
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: str,
        filters: Optional[TransactionFilter] = None,
    ) -> list[Transaction]:
        """
        List the user's transactions, newest first.

        Args:
            user_id: Owner
            filters: Optional category/type/date/goal/loan filters and paging

        Returns:
            Matching transactions ordered by date, time and creation, descending
        """
        pass

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_budget(self, user_id: str, data: BudgetCreate) -> Budget:
        """Create a budget with ``spent`` seeded from existing matching transactions."""
        pass

    @abstractmethod
    async def get_budget(self, user_id: str, budget_id: UUID) -> Budget:
        pass

    @abstractmethod
    async def update_budget(self, user_id: str, budget_id: UUID, changes: BudgetUpdate) -> Budget:
        """Update a budget. A category or window change recalculates ``spent``."""
        pass

    @abstractmethod
    async def delete_budget(self, user_id: str, budget_id: UUID) -> None:
        pass

    @abstractmethod
    async def list_budgets(self, user_id: str, category: Optional[str] = None) -> list[Budget]:
        """List budgets, most recent window first, then by category."""
        pass

    # ------------------------------------------------------------------
    # Savings goals
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_savings_goal(self, user_id: str, data: SavingsGoalCreate) -> SavingsGoal:
        pass

    @abstractmethod
    async def get_savings_goal(self, user_id: str, goal_id: UUID) -> SavingsGoal:
        pass

    @abstractmethod
    async def update_savings_goal(
        self,
        user_id: str,
        goal_id: UUID,
        changes: SavingsGoalUpdate,
    ) -> SavingsGoal:
        pass

    @abstractmethod
    async def delete_savings_goal(self, user_id: str, goal_id: UUID) -> None:
        """Delete a goal and clear it from the user's transactions."""
        pass

    @abstractmethod
    async def list_savings_goals(self, user_id: str) -> list[SavingsGoal]:
        """List goals ordered by name."""
        pass

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_loan(self, user_id: str, data: LoanCreate) -> Loan:
        """
        Create a loan with its monthly payment computed from the terms.

        Raises:
            InvalidLoanTerms: If principal or term is not positive
        """
        pass

    @abstractmethod
    async def get_loan(self, user_id: str, loan_id: UUID) -> Loan:
        pass

    @abstractmethod
    async def update_loan(self, user_id: str, loan_id: UUID, changes: LoanUpdate) -> Loan:
        """Update a loan, recomputing the monthly payment if the terms changed."""
        pass

    @abstractmethod
    async def delete_loan(self, user_id: str, loan_id: UUID) -> None:
        """Delete a loan and clear it from the user's transactions."""
        pass

    @abstractmethod
    async def list_loans(self, user_id: str) -> list[Loan]:
        """List loans ordered by name."""
        pass

    # ------------------------------------------------------------------
    # Reads across entities
    # ------------------------------------------------------------------

    @abstractmethod
    async def load_snapshot(self, user_id: str) -> LedgerSnapshot:
        """Read all of the user's records consistently (one lock / one DB transaction)."""
        pass

    async def get_financial_summary(
        self,
        user_id: str,
        now: Union[date, datetime],
    ) -> FinancialSummary:
        """
        Compute the user's financial summary from current state.

        Shared by every backend so the figures cannot differ between them.
        """
        snapshot = await self.load_snapshot(user_id)
        return FinancialSummaryAggregator().summarize(
            user_id=user_id,
            transactions=snapshot.transactions,
            goals=snapshot.savings_goals,
            loans=snapshot.loans,
            now=now,
        )

    async def get_spending_by_category(
        self,
        user_id: str,
        limit: Optional[int] = DEFAULT_TOP_CATEGORIES,
    ) -> list[CategorySpending]:
        """Expense totals per category, largest first (all time)."""
        if limit is not None and limit < 1:
            raise ValidationError(
                "Invalid report limit",
                [{"field": "limit", "message": "Must be at least 1", "type": "greater_than_equal"}],
            )
        snapshot = await self.load_snapshot(user_id)
        return ReportAggregator().spending_by_category(user_id, snapshot.transactions, limit)

    async def get_monthly_trends(
        self,
        user_id: str,
        now: Union[date, datetime],
        months: int = DEFAULT_TREND_MONTHS,
    ) -> list[MonthlyTrend]:
        """Income and expenses for the last ``months`` calendar months, oldest first."""
        if months < 1:
            raise ValidationError(
                "Invalid trend window",
                [{"field": "months", "message": "Must be at least 1", "type": "greater_than_equal"}],
            )
        snapshot = await self.load_snapshot(user_id)
        return ReportAggregator().monthly_trends(user_id, snapshot.transactions, now, months)

    async def list_categories(self, user_id: str) -> list[str]:
        """Every category the user's transactions and budgets use."""
        snapshot = await self.load_snapshot(user_id)
        return ReportAggregator().categories(user_id, snapshot.transactions, snapshot.budgets)


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity, in chronological order.
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first), optionally for one user.
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage, or not owned by the caller."""

    def __init__(self, entity_type: str, entity_id: object):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.replace('_', ' ').capitalize()} not found: {entity_id}")


class ValidationError(StorageError):
    """
    Malformed or out-of-range input.

    ``errors`` holds one dict per problem: field, message, type.
    """

    def __init__(self, message: str, errors: Optional[list[dict]] = None):
        self.errors = errors or []
        super().__init__(message)

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError, model_name: Optional[str] = None) -> "ValidationError":
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or "__root__",
                "message": err["msg"],
                "type": err["type"],
            }
            for err in exc.errors()
        ]
        name = model_name or exc.title
        summary = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        return cls(f"Invalid {name}: {summary}", errors)


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass

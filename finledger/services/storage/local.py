"""
Local-Only Storage Implementation

DESIGN DECISION: The local store keeps one user's ledger in a single JSON
file on the device (or only in memory when no path is configured):
1. Works offline with no database
2. The file is human-readable and trivially backed up
3. Records still carry ``user_id`` and are filtered exactly as on the server

The store belongs to one implicit local user. Any other user id owns nothing
here: reads find nothing and writes raise NotFoundError.

CONCURRENCY: a single re-entrant lock guards the state. Each mutation works on
a copy, persists it with an atomic file replace, and only then swaps it in.
A failure at any step leaves the previous state in memory and on disk.
"""

import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from finledger.accumulation import (
    BudgetAdjustment,
    affected_budget_ids,
    apply_plan,
    budget_window_changed,
    plan_create,
    plan_delete,
    plan_update,
    recalculate_spent,
)
from finledger.models.ledger import (
    Budget,
    BudgetCreate,
    BudgetUpdate,
    Loan,
    LoanCreate,
    LoanUpdate,
    SavingsGoal,
    SavingsGoalCreate,
    SavingsGoalUpdate,
    Transaction,
    TransactionCreate,
    TransactionFilter,
    TransactionUpdate,
)
from finledger.services.storage.interface import (
    LedgerSnapshot,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)
from finledger.services.storage.records import (
    build_budget,
    build_loan,
    build_savings_goal,
    build_transaction,
    merge,
    merge_loan,
    order_budgets,
    order_by_name,
    order_transactions,
)


logger = structlog.get_logger(__name__)

LOCAL_FILE_VERSION = 1


class LocalLedgerFile(BaseModel):
    """On-disk layout of the local ledger."""

    version: int = LOCAL_FILE_VERSION
    user_id: str
    transactions: list[Transaction] = Field(default_factory=list)
    budgets: list[Budget] = Field(default_factory=list)
    savings_goals: list[SavingsGoal] = Field(default_factory=list)
    loans: list[Loan] = Field(default_factory=list)


class _LocalState:
    """
    In-memory tables keyed by id.

    Records are immutable models; a change always stores a new object, so a
    shallow copy of the dicts is enough to isolate a working copy.
    """

    def __init__(
        self,
        transactions: Optional[dict] = None,
        budgets: Optional[dict] = None,
        savings_goals: Optional[dict] = None,
        loans: Optional[dict] = None,
    ):
        self.transactions: dict[UUID, Transaction] = transactions or {}
        self.budgets: dict[UUID, Budget] = budgets or {}
        self.savings_goals: dict[UUID, SavingsGoal] = savings_goals or {}
        self.loans: dict[UUID, Loan] = loans or {}

    def copy(self) -> "_LocalState":
        return _LocalState(
            dict(self.transactions),
            dict(self.budgets),
            dict(self.savings_goals),
            dict(self.loans),
        )

    @classmethod
    def from_file(cls, data: LocalLedgerFile) -> "_LocalState":
        return cls(
            {tx.id: tx for tx in data.transactions},
            {b.id: b for b in data.budgets},
            {g.id: g for g in data.savings_goals},
            {loan.id: loan for loan in data.loans},
        )

    def to_file(self, user_id: str) -> LocalLedgerFile:
        return LocalLedgerFile(
            user_id=user_id,
            transactions=list(self.transactions.values()),
            budgets=list(self.budgets.values()),
            savings_goals=list(self.savings_goals.values()),
            loans=list(self.loans.values()),
        )


class LocalLedgerStorage(LedgerStorageInterface):
    """
    Single-user ledger kept in memory and, optionally, in a JSON file.

    Args:
        data_path: JSON file to load from and persist to. Memory only if None.
        local_user_id: The implicit owner of every record in this store.
    """

    def __init__(self, data_path: Optional[Path] = None, local_user_id: str = "local_user"):
        self.data_path = Path(data_path) if data_path is not None else None
        self.local_user_id = local_user_id
        self._lock = threading.RLock()
        self._state = self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> _LocalState:
        if self.data_path is None or not self.data_path.exists():
            return _LocalState()

        try:
            data = LocalLedgerFile.model_validate_json(self.data_path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StorageError(f"Failed to read local ledger {self.data_path}: {e}") from e
        except PydanticValidationError as e:
            raise StorageError(f"Local ledger {self.data_path} is corrupt: {e}") from e

        if data.user_id != self.local_user_id:
            raise StorageError(
                f"Local ledger {self.data_path} belongs to {data.user_id!r}, not {self.local_user_id!r}"
            )

        logger.info("local_ledger_loaded", path=str(self.data_path), transactions=len(data.transactions))
        return _LocalState.from_file(data)

    def _persist(self, state: _LocalState) -> None:
        """Write the whole state atomically (temp file + rename)."""
        if self.data_path is None:
            return

        payload = state.to_file(self.local_user_id).model_dump_json(indent=2)
        tmp_name = None
        try:
            self.data_path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.data_path.parent,
                prefix=f".{self.data_path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.data_path)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(f"Failed to write local ledger {self.data_path}: {e}") from e

    @contextmanager
    def _mutation(self, user_id: str) -> Iterator[_LocalState]:
        """
        Copy-on-write unit of work.

        The yielded working copy only replaces the live state once it has
        been persisted.
        """
        self._require_owner(user_id)
        with self._lock:
            working = self._state.copy()
            yield working
            self._persist(working)
            self._state = working

    def _require_owner(self, user_id: str) -> None:
        if user_id != self.local_user_id:
            raise NotFoundError("user", user_id)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @staticmethod
    def _owned(table: dict, user_id: str, entity_id: UUID, entity_type: str):
        record = table.get(entity_id)
        if record is None or record.user_id != user_id:
            raise NotFoundError(entity_type, entity_id)
        return record

    def _check_references(self, state: _LocalState, tx: Transaction) -> None:
        if tx.savings_goal_id is not None:
            self._owned(state.savings_goals, tx.user_id, tx.savings_goal_id, "savings_goal")
        if tx.loan_id is not None:
            self._owned(state.loans, tx.user_id, tx.loan_id, "loan")

    @staticmethod
    def _user_records(table: dict, user_id: str) -> list:
        return [record for record in table.values() if record.user_id == user_id]

    @staticmethod
    def _apply_plan(state: _LocalState, plan: list[BudgetAdjustment]) -> None:
        now = datetime.utcnow()
        for budget_id in affected_budget_ids(plan):
            budget = state.budgets[budget_id]
            state.budgets[budget_id] = budget.model_copy(update={
                "spent": apply_plan(budget, plan),
                "updated_at": now,
            })
            logger.debug("budget_adjusted", budget_id=str(budget_id), spent=str(state.budgets[budget_id].spent))

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def create_transaction(self, user_id: str, data: TransactionCreate) -> Transaction:
        tx = build_transaction(user_id, data)
        with self._mutation(user_id) as state:
            self._check_references(state, tx)
            plan = plan_create(self._user_records(state.budgets, user_id), tx)
            state.transactions[tx.id] = tx
            self._apply_plan(state, plan)

        logger.info("transaction_created", user_id=user_id, transaction_id=str(tx.id), budgets=len(plan))
        return tx

    async def get_transaction(self, user_id: str, transaction_id: UUID) -> Transaction:
        with self._lock:
            return self._owned(self._state.transactions, user_id, transaction_id, "transaction")

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: UUID,
        changes: TransactionUpdate,
    ) -> Transaction:
        with self._mutation(user_id) as state:
            before = self._owned(state.transactions, user_id, transaction_id, "transaction")
            after = merge(before, changes)
            self._check_references(state, after)
            plan = plan_update(self._user_records(state.budgets, user_id), before, after)
            state.transactions[after.id] = after
            self._apply_plan(state, plan)

        logger.info("transaction_updated", user_id=user_id, transaction_id=str(transaction_id), budgets=len(plan))
        return after

    async def delete_transaction(self, user_id: str, transaction_id: UUID) -> None:
        with self._mutation(user_id) as state:
            tx = self._owned(state.transactions, user_id, transaction_id, "transaction")
            plan = plan_delete(self._user_records(state.budgets, user_id), tx)
            del state.transactions[tx.id]
            self._apply_plan(state, plan)

        logger.info("transaction_deleted", user_id=user_id, transaction_id=str(transaction_id), budgets=len(plan))

    async def list_transactions(
        self,
        user_id: str,
        filters: Optional[TransactionFilter] = None,
    ) -> list[Transaction]:
        filters = filters or TransactionFilter()
        with self._lock:
            transactions = [
                tx for tx in self._user_records(self._state.transactions, user_id)
                if filters.matches(tx)
            ]
        return filters.paginate(order_transactions(transactions))

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    async def create_budget(self, user_id: str, data: BudgetCreate) -> Budget:
        budget = build_budget(user_id, data)
        with self._mutation(user_id) as state:
            spent = recalculate_spent(budget, self._user_records(state.transactions, user_id))
            budget = budget.model_copy(update={"spent": spent})
            state.budgets[budget.id] = budget

        logger.info("budget_created", user_id=user_id, budget_id=str(budget.id), spent=str(budget.spent))
        return budget

    async def get_budget(self, user_id: str, budget_id: UUID) -> Budget:
        with self._lock:
            return self._owned(self._state.budgets, user_id, budget_id, "budget")

    async def update_budget(self, user_id: str, budget_id: UUID, changes: BudgetUpdate) -> Budget:
        with self._mutation(user_id) as state:
            before = self._owned(state.budgets, user_id, budget_id, "budget")
            after = merge(before, changes)
            recalculate = budget_window_changed(before, after)
            if recalculate:
                spent = recalculate_spent(after, self._user_records(state.transactions, user_id))
                after = after.model_copy(update={"spent": spent})
            state.budgets[after.id] = after

        logger.info("budget_updated", user_id=user_id, budget_id=str(budget_id), recalculated=recalculate)
        return after

    async def delete_budget(self, user_id: str, budget_id: UUID) -> None:
        with self._mutation(user_id) as state:
            budget = self._owned(state.budgets, user_id, budget_id, "budget")
            del state.budgets[budget.id]

        logger.info("budget_deleted", user_id=user_id, budget_id=str(budget_id))

    async def list_budgets(self, user_id: str, category: Optional[str] = None) -> list[Budget]:
        with self._lock:
            budgets = self._user_records(self._state.budgets, user_id)
        if category is not None:
            budgets = [b for b in budgets if b.category == category]
        return order_budgets(budgets)

    # ------------------------------------------------------------------
    # Savings goals
    # ------------------------------------------------------------------

    async def create_savings_goal(self, user_id: str, data: SavingsGoalCreate) -> SavingsGoal:
        goal = build_savings_goal(user_id, data)
        with self._mutation(user_id) as state:
            state.savings_goals[goal.id] = goal

        logger.info("savings_goal_created", user_id=user_id, goal_id=str(goal.id))
        return goal

    async def get_savings_goal(self, user_id: str, goal_id: UUID) -> SavingsGoal:
        with self._lock:
            return self._owned(self._state.savings_goals, user_id, goal_id, "savings_goal")

    async def update_savings_goal(
        self,
        user_id: str,
        goal_id: UUID,
        changes: SavingsGoalUpdate,
    ) -> SavingsGoal:
        with self._mutation(user_id) as state:
            goal = merge(self._owned(state.savings_goals, user_id, goal_id, "savings_goal"), changes)
            state.savings_goals[goal.id] = goal

        logger.info("savings_goal_updated", user_id=user_id, goal_id=str(goal_id))
        return goal

    async def delete_savings_goal(self, user_id: str, goal_id: UUID) -> None:
        with self._mutation(user_id) as state:
            goal = self._owned(state.savings_goals, user_id, goal_id, "savings_goal")
            for tx in self._user_records(state.transactions, user_id):
                if tx.savings_goal_id == goal.id:
                    state.transactions[tx.id] = tx.model_copy(update={"savings_goal_id": None})
            del state.savings_goals[goal.id]

        logger.info("savings_goal_deleted", user_id=user_id, goal_id=str(goal_id))

    async def list_savings_goals(self, user_id: str) -> list[SavingsGoal]:
        with self._lock:
            return order_by_name(self._user_records(self._state.savings_goals, user_id))

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------

    async def create_loan(self, user_id: str, data: LoanCreate) -> Loan:
        loan = build_loan(user_id, data)
        with self._mutation(user_id) as state:
            state.loans[loan.id] = loan

        logger.info("loan_created", user_id=user_id, loan_id=str(loan.id), monthly_payment=str(loan.monthly_payment))
        return loan

    async def get_loan(self, user_id: str, loan_id: UUID) -> Loan:
        with self._lock:
            return self._owned(self._state.loans, user_id, loan_id, "loan")

    async def update_loan(self, user_id: str, loan_id: UUID, changes: LoanUpdate) -> Loan:
        with self._mutation(user_id) as state:
            loan = merge_loan(self._owned(state.loans, user_id, loan_id, "loan"), changes)
            state.loans[loan.id] = loan

        logger.info("loan_updated", user_id=user_id, loan_id=str(loan_id), monthly_payment=str(loan.monthly_payment))
        return loan

    async def delete_loan(self, user_id: str, loan_id: UUID) -> None:
        with self._mutation(user_id) as state:
            loan = self._owned(state.loans, user_id, loan_id, "loan")
            for tx in self._user_records(state.transactions, user_id):
                if tx.loan_id == loan.id:
                    state.transactions[tx.id] = tx.model_copy(update={"loan_id": None})
            del state.loans[loan.id]

        logger.info("loan_deleted", user_id=user_id, loan_id=str(loan_id))

    async def list_loans(self, user_id: str) -> list[Loan]:
        with self._lock:
            return order_by_name(self._user_records(self._state.loans, user_id))

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    async def load_snapshot(self, user_id: str) -> LedgerSnapshot:
        with self._lock:
            state = self._state
            return LedgerSnapshot(
                user_id=user_id,
                transactions=order_transactions(self._user_records(state.transactions, user_id)),
                budgets=order_budgets(self._user_records(state.budgets, user_id)),
                savings_goals=order_by_name(self._user_records(state.savings_goals, user_id)),
                loans=order_by_name(self._user_records(state.loans, user_id)),
            )

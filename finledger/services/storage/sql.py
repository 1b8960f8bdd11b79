"""
SQLAlchemy Storage Implementation

DESIGN DECISION: The server-side store is a relational database reached
through SQLAlchemy, SQLite by default:
1. Real transactions - a transaction write and its budget adjustments commit
   together or not at all
2. Any SQLAlchemy URL works (PostgreSQL in production, SQLite locally)
3. Per-user rows, so one user can never read another user's records

Money is stored as integer cents and interest rates as decimal text, so no
value ever passes through a float on its way in or out.

CONCURRENCY: every mutation runs in one ``session.begin()`` block that first
locks the user's row in ``ledger_owners`` FOR UPDATE, so one user's writes
run one at a time across processes. ``spent`` is moved with a single atomic
``UPDATE ... SET spent_cents = CASE ...`` statement. SQLite ignores FOR
UPDATE, so mutations are also serialised per user in-process.
"""

import json
import threading
from contextlib import contextmanager
from datetime import date, datetime, time
from decimal import Decimal
from typing import Iterable, Iterator, Optional
from uuid import UUID

import structlog
from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    case,
    create_engine,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import retry, stop_after_attempt, wait_exponential

from finledger.accumulation import (
    BUDGET_AFFECTING_TYPES,
    BudgetAdjustment,
    budget_window_changed,
    plan_create,
    plan_delete,
    plan_update,
    recalculate_spent,
)
from finledger.config import DatabaseSettings, get_settings
from finledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
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
    AuditStorageInterface,
    ConnectionError,
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


# =============================================================================
# SCHEMA
# =============================================================================

class Base(DeclarativeBase):
    pass


class SavingsGoalRow(Base):
    __tablename__ = "savings_goals"

    __table_args__ = (
        Index("idx_savings_goals_user", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    target_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    current_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    deadline: Mapped[Optional[date]] = mapped_column(Date)
    icon: Mapped[str] = mapped_column(String(50), nullable=False)
    color: Mapped[str] = mapped_column(String(20), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class LoanRow(Base):
    __tablename__ = "loans"

    __table_args__ = (
        Index("idx_loans_user", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    principal_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    interest_rate: Mapped[str] = mapped_column(String(16), nullable=False)
    interest_type: Mapped[str] = mapped_column(String(16), nullable=False)
    term_months: Mapped[int] = mapped_column(Integer, nullable=False)
    monthly_payment_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    current_balance_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    next_payment_date: Mapped[Optional[date]] = mapped_column(Date)
    icon: Mapped[str] = mapped_column(String(50), nullable=False)
    color: Mapped[str] = mapped_column(String(20), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class TransactionRow(Base):
    __tablename__ = "transactions"

    __table_args__ = (
        Index("idx_transactions_user_date", "user_id", "date"),
        Index("idx_transactions_user_category", "user_id", "category"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    tx_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    tx_time: Mapped[Optional[time]] = mapped_column("time", Time)
    savings_goal_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("savings_goals.id", ondelete="SET NULL")
    )
    loan_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("loans.id", ondelete="SET NULL")
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class BudgetRow(Base):
    __tablename__ = "budgets"

    __table_args__ = (
        Index("idx_budgets_user_category", "user_id", "category"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    spent_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    period: Mapped[str] = mapped_column(String(16), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    icon: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500))

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class LedgerOwnerRow(Base):
    """One row per user. Every write locks it, so a user's writes are serialised across processes."""
    __tablename__ = "ledger_owners"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class AuditEventRow(Base):
    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_events_entity", "entity_type", "entity_id"),
        Index("idx_audit_events_user", "user_id"),
    )

    event_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(255))
    entity_type: Mapped[Optional[str]] = mapped_column(String(50))
    entity_id: Mapped[Optional[str]] = mapped_column(String(36))
    correlation_id: Mapped[Optional[str]] = mapped_column(String(36))
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    details_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    error_code: Mapped[Optional[str]] = mapped_column(String(100))
    error_message: Mapped[Optional[str]] = mapped_column(Text)


# =============================================================================
# CONVERSION HELPERS
# =============================================================================

def _to_cents(amount: Decimal) -> int:
    return int(amount.scaleb(2))


def _from_cents(cents: int) -> Decimal:
    return Decimal(cents).scaleb(-2)


def _optional_uuid(value: Optional[str]) -> Optional[UUID]:
    return UUID(value) if value else None


def _optional_str(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value else None


def _transaction_values(tx: Transaction) -> dict:
    return {
        "user_id": tx.user_id,
        "amount_cents": _to_cents(tx.amount),
        "description": tx.description,
        "category": tx.category,
        "type": tx.type.value,
        "tx_date": tx.date,
        "tx_time": tx.time,
        "savings_goal_id": _optional_str(tx.savings_goal_id),
        "loan_id": _optional_str(tx.loan_id),
        "created_at": tx.created_at,
        "updated_at": tx.updated_at,
    }


def _row_to_transaction(row: TransactionRow) -> Transaction:
    return Transaction(
        id=UUID(row.id),
        user_id=row.user_id,
        amount=_from_cents(row.amount_cents),
        description=row.description,
        category=row.category,
        type=row.type,
        date=row.tx_date,
        time=row.tx_time,
        savings_goal_id=_optional_uuid(row.savings_goal_id),
        loan_id=_optional_uuid(row.loan_id),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _budget_values(budget: Budget, include_spent: bool = True) -> dict:
    values = {
        "user_id": budget.user_id,
        "category": budget.category,
        "amount_cents": _to_cents(budget.amount),
        "period": budget.period.value,
        "start_date": budget.start_date,
        "end_date": budget.end_date,
        "icon": budget.icon,
        "description": budget.description,
        "created_at": budget.created_at,
        "updated_at": budget.updated_at,
    }
    if include_spent:
        values["spent_cents"] = _to_cents(budget.spent)
    return values


def _row_to_budget(row: BudgetRow) -> Budget:
    return Budget(
        id=UUID(row.id),
        user_id=row.user_id,
        category=row.category,
        amount=_from_cents(row.amount_cents),
        spent=_from_cents(row.spent_cents),
        period=row.period,
        start_date=row.start_date,
        end_date=row.end_date,
        icon=row.icon,
        description=row.description,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _goal_values(goal: SavingsGoal) -> dict:
    return {
        "user_id": goal.user_id,
        "name": goal.name,
        "target_cents": _to_cents(goal.target_amount),
        "current_cents": _to_cents(goal.current_amount),
        "deadline": goal.deadline,
        "icon": goal.icon,
        "color": goal.color,
        "created_at": goal.created_at,
        "updated_at": goal.updated_at,
    }


def _row_to_goal(row: SavingsGoalRow) -> SavingsGoal:
    return SavingsGoal(
        id=UUID(row.id),
        user_id=row.user_id,
        name=row.name,
        target_amount=_from_cents(row.target_cents),
        current_amount=_from_cents(row.current_cents),
        deadline=row.deadline,
        icon=row.icon,
        color=row.color,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _loan_values(loan: Loan) -> dict:
    return {
        "user_id": loan.user_id,
        "name": loan.name,
        "principal_cents": _to_cents(loan.principal),
        "interest_rate": str(loan.interest_rate),
        "interest_type": loan.interest_type.value,
        "term_months": loan.term_months,
        "monthly_payment_cents": _to_cents(loan.monthly_payment),
        "current_balance_cents": _to_cents(loan.current_balance),
        "next_payment_date": loan.next_payment_date,
        "icon": loan.icon,
        "color": loan.color,
        "created_at": loan.created_at,
        "updated_at": loan.updated_at,
    }


def _row_to_loan(row: LoanRow) -> Loan:
    return Loan(
        id=UUID(row.id),
        user_id=row.user_id,
        name=row.name,
        principal=_from_cents(row.principal_cents),
        interest_rate=Decimal(row.interest_rate),
        interest_type=row.interest_type,
        term_months=row.term_months,
        monthly_payment=_from_cents(row.monthly_payment_cents),
        current_balance=_from_cents(row.current_balance_cents),
        next_payment_date=row.next_payment_date,
        icon=row.icon,
        color=row.color,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _assign(row: Base, values: dict) -> None:
    for key, value in values.items():
        setattr(row, key, value)


# =============================================================================
# CLIENT
# =============================================================================

class SqlClient:
    """
    Low-level database client wrapper.

    Owns the engine and session factory and creates the schema on connect.
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        self._settings = settings or get_settings().database
        self._engine: Optional[Engine] = None
        self._sessions: Optional[sessionmaker] = None

    @property
    def url(self) -> str:
        return self._settings.url

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> Engine:
        """
        Create the engine, check the database answers, and create the schema.

        Raises:
            ConnectionError: If the database cannot be reached
        """
        if self._engine is None:
            try:
                engine = create_engine(self.url, echo=self._settings.echo, **self._engine_options())
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                Base.metadata.create_all(engine)
            except SQLAlchemyError as e:
                raise ConnectionError(f"Failed to connect to database: {e}")
            self._engine = engine
            logger.info("database_connected", dialect=engine.dialect.name)

        return self._engine

    def sessions(self) -> sessionmaker:
        """Session factory bound to the connected engine."""
        if self._sessions is None:
            self._sessions = sessionmaker(bind=self.connect(), expire_on_commit=False)
        return self._sessions

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._sessions = None

    def _engine_options(self) -> dict:
        if not self.url.startswith("sqlite"):
            return {}
        options: dict = {"connect_args": {"check_same_thread": False}}
        if self.url in ("sqlite://", "sqlite:///:memory:"):
            # Every session must see the same in-memory database.
            options["poolclass"] = StaticPool
        return options


def owner_lock_statement(user_id: str):
    """SELECT of the user's owner row FOR UPDATE."""
    return select(LedgerOwnerRow).where(LedgerOwnerRow.user_id == user_id).with_for_update()


class _UserLocks:
    """One re-entrant lock per user id, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict = {}

    def get(self, user_id: str):
        with self._guard:
            if user_id not in self._locks:
                self._locks[user_id] = threading.RLock()
            return self._locks[user_id]


# =============================================================================
# LEDGER STORAGE
# =============================================================================

class SqlLedgerStorage(LedgerStorageInterface):
    """
    Relational implementation of ledger storage.

    Every query is scoped by ``user_id``; a row owned by someone else is
    treated exactly like a missing row.
    """

    def __init__(self, client: Optional[SqlClient] = None):
        self._client = client or SqlClient()
        self._locks = _UserLocks()
        self._known_owners: set = set()

    @property
    def client(self) -> SqlClient:
        return self._client

    @contextmanager
    def _write(self, user_id: str, operation: str) -> Iterator[Session]:
        """
        One locked, atomic unit of work. Rolled back on any exception.

        The user's owner row is held FOR UPDATE until commit, so writes from
        other processes wait; the in-process lock covers SQLite, which
        ignores FOR UPDATE.
        """
        try:
            with self._locks.get(user_id):
                self._ensure_owner(user_id)
                with self._client.sessions().begin() as session:
                    session.execute(owner_lock_statement(user_id)).scalar_one()
                    yield session
        except SQLAlchemyError as e:
            logger.error("storage_write_failed", operation=operation, user_id=user_id, error=str(e))
            raise StorageError(f"Failed to {operation}: {e}") from e

    def _ensure_owner(self, user_id: str) -> None:
        """Create the user's owner row in its own short transaction."""
        if user_id in self._known_owners:
            return
        try:
            with self._client.sessions().begin() as session:
                exists = session.get(LedgerOwnerRow, user_id) is not None
                if not exists:
                    session.add(LedgerOwnerRow(user_id=user_id, created_at=datetime.utcnow()))
        except IntegrityError:
            # Another process inserted it first; the row is there either way.
            logger.debug("ledger_owner_exists", user_id=user_id)
        self._known_owners.add(user_id)

    @contextmanager
    def _read(self, user_id: str, operation: str) -> Iterator[Session]:
        try:
            with self._client.sessions().begin() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("storage_read_failed", operation=operation, user_id=user_id, error=str(e))
            raise StorageError(f"Failed to {operation}: {e}") from e

    @staticmethod
    def _owned(session: Session, model, user_id: str, entity_id: UUID, entity_type: str, for_update: bool = False):
        stmt = select(model).where(model.id == str(entity_id), model.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = session.execute(stmt).scalar_one_or_none()
        if row is None:
            raise NotFoundError(entity_type, entity_id)
        return row

    def _check_references(self, session: Session, tx: Transaction) -> None:
        """A transaction may only point at the same user's goal and loan."""
        if tx.savings_goal_id is not None:
            self._owned(session, SavingsGoalRow, tx.user_id, tx.savings_goal_id, "savings_goal")
        if tx.loan_id is not None:
            self._owned(session, LoanRow, tx.user_id, tx.loan_id, "loan")

    @staticmethod
    def _lock_budgets(session: Session, user_id: str, categories: Iterable[str]) -> list[Budget]:
        stmt = (
            select(BudgetRow)
            .where(BudgetRow.user_id == user_id, BudgetRow.category.in_(set(categories)))
            .with_for_update()
        )
        return [_row_to_budget(row) for row in session.execute(stmt).scalars()]

    @staticmethod
    def _apply_plan(session: Session, plan: list[BudgetAdjustment]) -> None:
        """Apply each step with one atomic, zero-floored UPDATE."""
        now = datetime.utcnow()
        for step in plan:
            new_spent = BudgetRow.spent_cents + _to_cents(step.delta)
            session.execute(
                update(BudgetRow)
                .where(BudgetRow.id == str(step.budget_id))
                .values(
                    spent_cents=case((new_spent < 0, 0), else_=new_spent),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            logger.debug("budget_adjusted", budget_id=str(step.budget_id), delta=str(step.delta))

    @staticmethod
    def _matching_transactions(session: Session, budget: Budget) -> list[Transaction]:
        stmt = select(TransactionRow).where(
            TransactionRow.user_id == budget.user_id,
            TransactionRow.category == budget.category,
            TransactionRow.type.in_([t.value for t in BUDGET_AFFECTING_TYPES]),
            TransactionRow.tx_date >= budget.start_date,
            TransactionRow.tx_date <= budget.end_date,
        )
        return [_row_to_transaction(row) for row in session.execute(stmt).scalars()]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def create_transaction(self, user_id: str, data: TransactionCreate) -> Transaction:
        tx = build_transaction(user_id, data)
        with self._write(user_id, "create transaction") as session:
            self._check_references(session, tx)
            plan = plan_create(self._lock_budgets(session, user_id, [tx.category]), tx)
            session.add(TransactionRow(id=str(tx.id), **_transaction_values(tx)))
            session.flush()
            self._apply_plan(session, plan)

        logger.info("transaction_created", user_id=user_id, transaction_id=str(tx.id), budgets=len(plan))
        return tx

    async def get_transaction(self, user_id: str, transaction_id: UUID) -> Transaction:
        with self._read(user_id, "get transaction") as session:
            row = self._owned(session, TransactionRow, user_id, transaction_id, "transaction")
            return _row_to_transaction(row)

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: UUID,
        changes: TransactionUpdate,
    ) -> Transaction:
        with self._write(user_id, "update transaction") as session:
            row = self._owned(session, TransactionRow, user_id, transaction_id, "transaction", for_update=True)
            before = _row_to_transaction(row)
            after = merge(before, changes)
            self._check_references(session, after)

            budgets = self._lock_budgets(session, user_id, {before.category, after.category})
            plan = plan_update(budgets, before, after)
            _assign(row, _transaction_values(after))
            session.flush()
            self._apply_plan(session, plan)

        logger.info("transaction_updated", user_id=user_id, transaction_id=str(transaction_id), budgets=len(plan))
        return after

    async def delete_transaction(self, user_id: str, transaction_id: UUID) -> None:
        with self._write(user_id, "delete transaction") as session:
            row = self._owned(session, TransactionRow, user_id, transaction_id, "transaction", for_update=True)
            tx = _row_to_transaction(row)
            plan = plan_delete(self._lock_budgets(session, user_id, [tx.category]), tx)
            session.delete(row)
            session.flush()
            self._apply_plan(session, plan)

        logger.info("transaction_deleted", user_id=user_id, transaction_id=str(transaction_id), budgets=len(plan))

    async def list_transactions(
        self,
        user_id: str,
        filters: Optional[TransactionFilter] = None,
    ) -> list[Transaction]:
        filters = filters or TransactionFilter()
        stmt = select(TransactionRow).where(TransactionRow.user_id == user_id)
        if filters.category is not None:
            stmt = stmt.where(TransactionRow.category == filters.category)
        if filters.type is not None:
            stmt = stmt.where(TransactionRow.type == filters.type.value)
        if filters.date_from is not None:
            stmt = stmt.where(TransactionRow.tx_date >= filters.date_from)
        if filters.date_to is not None:
            stmt = stmt.where(TransactionRow.tx_date <= filters.date_to)
        if filters.savings_goal_id is not None:
            stmt = stmt.where(TransactionRow.savings_goal_id == str(filters.savings_goal_id))
        if filters.loan_id is not None:
            stmt = stmt.where(TransactionRow.loan_id == str(filters.loan_id))

        with self._read(user_id, "list transactions") as session:
            transactions = [_row_to_transaction(row) for row in session.execute(stmt).scalars()]

        # Ordered in Python so both backends agree on NULL times.
        return filters.paginate(order_transactions(transactions))

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    async def create_budget(self, user_id: str, data: BudgetCreate) -> Budget:
        budget = build_budget(user_id, data)
        with self._write(user_id, "create budget") as session:
            spent = recalculate_spent(budget, self._matching_transactions(session, budget))
            budget = budget.model_copy(update={"spent": spent})
            session.add(BudgetRow(id=str(budget.id), **_budget_values(budget)))

        logger.info("budget_created", user_id=user_id, budget_id=str(budget.id), spent=str(budget.spent))
        return budget

    async def get_budget(self, user_id: str, budget_id: UUID) -> Budget:
        with self._read(user_id, "get budget") as session:
            return _row_to_budget(self._owned(session, BudgetRow, user_id, budget_id, "budget"))

    async def update_budget(self, user_id: str, budget_id: UUID, changes: BudgetUpdate) -> Budget:
        with self._write(user_id, "update budget") as session:
            row = self._owned(session, BudgetRow, user_id, budget_id, "budget", for_update=True)
            before = _row_to_budget(row)
            after = merge(before, changes)
            recalculate = budget_window_changed(before, after)
            if recalculate:
                spent = recalculate_spent(after, self._matching_transactions(session, after))
                after = after.model_copy(update={"spent": spent})
            _assign(row, _budget_values(after, include_spent=recalculate))

        logger.info("budget_updated", user_id=user_id, budget_id=str(budget_id), recalculated=recalculate)
        return after

    async def delete_budget(self, user_id: str, budget_id: UUID) -> None:
        with self._write(user_id, "delete budget") as session:
            session.delete(self._owned(session, BudgetRow, user_id, budget_id, "budget"))

        logger.info("budget_deleted", user_id=user_id, budget_id=str(budget_id))

    async def list_budgets(self, user_id: str, category: Optional[str] = None) -> list[Budget]:
        stmt = select(BudgetRow).where(BudgetRow.user_id == user_id)
        if category is not None:
            stmt = stmt.where(BudgetRow.category == category)
        with self._read(user_id, "list budgets") as session:
            return order_budgets(_row_to_budget(row) for row in session.execute(stmt).scalars())

    # ------------------------------------------------------------------
    # Savings goals
    # ------------------------------------------------------------------

    async def create_savings_goal(self, user_id: str, data: SavingsGoalCreate) -> SavingsGoal:
        goal = build_savings_goal(user_id, data)
        with self._write(user_id, "create savings goal") as session:
            session.add(SavingsGoalRow(id=str(goal.id), **_goal_values(goal)))

        logger.info("savings_goal_created", user_id=user_id, goal_id=str(goal.id))
        return goal

    async def get_savings_goal(self, user_id: str, goal_id: UUID) -> SavingsGoal:
        with self._read(user_id, "get savings goal") as session:
            return _row_to_goal(self._owned(session, SavingsGoalRow, user_id, goal_id, "savings_goal"))

    async def update_savings_goal(
        self,
        user_id: str,
        goal_id: UUID,
        changes: SavingsGoalUpdate,
    ) -> SavingsGoal:
        with self._write(user_id, "update savings goal") as session:
            row = self._owned(session, SavingsGoalRow, user_id, goal_id, "savings_goal", for_update=True)
            goal = merge(_row_to_goal(row), changes)
            _assign(row, _goal_values(goal))

        logger.info("savings_goal_updated", user_id=user_id, goal_id=str(goal_id))
        return goal

    async def delete_savings_goal(self, user_id: str, goal_id: UUID) -> None:
        with self._write(user_id, "delete savings goal") as session:
            row = self._owned(session, SavingsGoalRow, user_id, goal_id, "savings_goal")
            session.execute(
                update(TransactionRow)
                .where(TransactionRow.user_id == user_id, TransactionRow.savings_goal_id == row.id)
                .values(savings_goal_id=None)
                .execution_options(synchronize_session=False)
            )
            session.delete(row)

        logger.info("savings_goal_deleted", user_id=user_id, goal_id=str(goal_id))

    async def list_savings_goals(self, user_id: str) -> list[SavingsGoal]:
        stmt = select(SavingsGoalRow).where(SavingsGoalRow.user_id == user_id)
        with self._read(user_id, "list savings goals") as session:
            return order_by_name(_row_to_goal(row) for row in session.execute(stmt).scalars())

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------

    async def create_loan(self, user_id: str, data: LoanCreate) -> Loan:
        loan = build_loan(user_id, data)
        with self._write(user_id, "create loan") as session:
            session.add(LoanRow(id=str(loan.id), **_loan_values(loan)))

        logger.info("loan_created", user_id=user_id, loan_id=str(loan.id), monthly_payment=str(loan.monthly_payment))
        return loan

    async def get_loan(self, user_id: str, loan_id: UUID) -> Loan:
        with self._read(user_id, "get loan") as session:
            return _row_to_loan(self._owned(session, LoanRow, user_id, loan_id, "loan"))

    async def update_loan(self, user_id: str, loan_id: UUID, changes: LoanUpdate) -> Loan:
        with self._write(user_id, "update loan") as session:
            row = self._owned(session, LoanRow, user_id, loan_id, "loan", for_update=True)
            loan = merge_loan(_row_to_loan(row), changes)
            _assign(row, _loan_values(loan))

        logger.info("loan_updated", user_id=user_id, loan_id=str(loan_id), monthly_payment=str(loan.monthly_payment))
        return loan

    async def delete_loan(self, user_id: str, loan_id: UUID) -> None:
        with self._write(user_id, "delete loan") as session:
            row = self._owned(session, LoanRow, user_id, loan_id, "loan")
            session.execute(
                update(TransactionRow)
                .where(TransactionRow.user_id == user_id, TransactionRow.loan_id == row.id)
                .values(loan_id=None)
                .execution_options(synchronize_session=False)
            )
            session.delete(row)

        logger.info("loan_deleted", user_id=user_id, loan_id=str(loan_id))

    async def list_loans(self, user_id: str) -> list[Loan]:
        stmt = select(LoanRow).where(LoanRow.user_id == user_id)
        with self._read(user_id, "list loans") as session:
            return order_by_name(_row_to_loan(row) for row in session.execute(stmt).scalars())

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    async def load_snapshot(self, user_id: str) -> LedgerSnapshot:
        with self._read(user_id, "load snapshot") as session:
            def owned(model):
                return session.execute(select(model).where(model.user_id == user_id)).scalars()

            return LedgerSnapshot(
                user_id=user_id,
                transactions=order_transactions(_row_to_transaction(r) for r in owned(TransactionRow)),
                budgets=order_budgets(_row_to_budget(r) for r in owned(BudgetRow)),
                savings_goals=order_by_name(_row_to_goal(r) for r in owned(SavingsGoalRow)),
                loans=order_by_name(_row_to_loan(r) for r in owned(LoanRow)),
            )


# =============================================================================
# AUDIT STORAGE
# =============================================================================

class SqlAuditStorage(AuditStorageInterface):
    """
    Audit log stored in the ``audit_events`` table.

    Append-only: rows are inserted and read, never updated or deleted.
    """

    def __init__(self, client: Optional[SqlClient] = None):
        self._client = client or SqlClient()

    async def append_event(self, event: AuditEvent) -> bool:
        row = AuditEventRow(
            event_id=str(event.event_id),
            timestamp=event.timestamp,
            event_type=event.event_type.value,
            severity=event.severity.value,
            user_id=event.user_id,
            entity_type=event.entity_type,
            entity_id=_optional_str(event.entity_id),
            correlation_id=_optional_str(event.correlation_id),
            description=event.description,
            details_json=json.dumps(event.details, default=str),
            error_code=event.error_code,
            error_message=event.error_message,
        )
        try:
            with self._client.sessions().begin() as session:
                session.add(row)
            return True
        except SQLAlchemyError as e:
            # Don't fail the main operation if audit logging fails
            logger.warning("audit_append_failed", event_id=str(event.event_id), error=str(e))
            return False

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        stmt = (
            select(AuditEventRow)
            .where(AuditEventRow.entity_type == entity_type, AuditEventRow.entity_id == str(entity_id))
            .order_by(AuditEventRow.timestamp)
        )
        try:
            with self._client.sessions().begin() as session:
                return [self._row_to_event(row) for row in session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get audit events: {e}") from e

    async def get_recent_events(
        self,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        stmt = select(AuditEventRow).order_by(AuditEventRow.timestamp.desc()).limit(limit)
        if user_id is not None:
            stmt = stmt.where(AuditEventRow.user_id == user_id)
        try:
            with self._client.sessions().begin() as session:
                return [self._row_to_event(row) for row in session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get recent audit events: {e}") from e

    @staticmethod
    def _row_to_event(row: AuditEventRow) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row.event_id),
            timestamp=row.timestamp,
            event_type=AuditEventType(row.event_type),
            severity=AuditSeverity(row.severity),
            user_id=row.user_id,
            entity_type=row.entity_type,
            entity_id=_optional_uuid(row.entity_id),
            correlation_id=_optional_uuid(row.correlation_id),
            description=row.description,
            details=json.loads(row.details_json or "{}"),
            error_code=row.error_code,
            error_message=row.error_message,
        )

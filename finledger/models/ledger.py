"""
Core Data Models for the Ledger Engine

These models define the strict schemas for every record the engine stores:
transactions, budgets, savings goals and loans, plus the derived read models
(payoff projection, loan progress, financial summary).

DESIGN DECISION: Money is always Decimal with at most 2 fractional digits.
Floats are never accepted silently - a value like 0.1 (float) has more than
two decimal places once converted and is rejected by validation.

Payload models (``*Create`` / ``*Update``) forbid unknown fields so that
engine-controlled values (``spent``, ``monthly_payment``, ``user_id``) can
never be written by a caller.
"""

from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Money = Annotated[Decimal, Field(max_digits=14, decimal_places=2)]
PositiveMoney = Annotated[Decimal, Field(gt=0, max_digits=14, decimal_places=2)]
NonNegativeMoney = Annotated[Decimal, Field(ge=0, max_digits=14, decimal_places=2)]
# Engine-computed totals (sums, balances) are only bounded by the cents scale.
Total = Annotated[Decimal, Field(decimal_places=2)]
NonNegativeTotal = Annotated[Decimal, Field(ge=0, decimal_places=2)]

# Transaction models have fields named "date" and "time".
CalendarDate = date
TimeOfDay = time


# =============================================================================
# ENUMS
# =============================================================================

class TransactionType(str, Enum):
    """Direction of a money movement."""
    INCOME = "income"
    EXPENSE = "expense"
    SAVINGS_DEPOSIT = "savings_deposit"
    SAVINGS_WITHDRAWAL = "savings_withdrawal"
    LOAN_RECEIVED = "loan_received"
    LOAN_PAYMENT = "loan_payment"


class BudgetPeriod(str, Enum):
    """Budget period label. Informational only - the window is start/end date."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class InterestType(str, Enum):
    """
    Loan interest type.

    Informational: the amortization formula always compounds monthly.
    """
    SIMPLE = "simple"
    COMPOUND = "compound"


def _utcnow() -> datetime:
    return datetime.utcnow()


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionCreate(BaseModel):
    """Payload for recording a new transaction."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    amount: PositiveMoney
    description: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Free-text description"
    )
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="User-defined category, matched against budget categories"
    )
    type: TransactionType
    date: CalendarDate
    time: Optional[TimeOfDay] = Field(
        default=None,
        description="Optional time of day"
    )
    savings_goal_id: Optional[UUID] = None
    loan_id: Optional[UUID] = None


class TransactionUpdate(BaseModel):
    """Partial update for a transaction. Only fields explicitly set are applied."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    amount: Optional[PositiveMoney] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[TransactionType] = None
    date: Optional[CalendarDate] = None
    time: Optional[TimeOfDay] = None
    savings_goal_id: Optional[UUID] = None
    loan_id: Optional[UUID] = None


class Transaction(BaseModel):
    """A recorded transaction owned by one user."""
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)

    amount: PositiveMoney
    description: str = Field(..., min_length=1, max_length=500)
    category: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    date: CalendarDate
    time: Optional[TimeOfDay] = None
    savings_goal_id: Optional[UUID] = None
    loan_id: Optional[UUID] = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class TransactionFilter(BaseModel):
    """Filters for listing transactions. Results are newest-first."""

    category: Optional[str] = None
    type: Optional[TransactionType] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    savings_goal_id: Optional[UUID] = None
    loan_id: Optional[UUID] = None
    limit: Optional[int] = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)

    def matches(self, tx: Transaction) -> bool:
        """Check whether a transaction passes every filter that is set."""
        if self.category is not None and tx.category != self.category:
            return False
        if self.type is not None and tx.type != self.type:
            return False
        if self.date_from is not None and tx.date < self.date_from:
            return False
        if self.date_to is not None and tx.date > self.date_to:
            return False
        if self.savings_goal_id is not None and tx.savings_goal_id != self.savings_goal_id:
            return False
        if self.loan_id is not None and tx.loan_id != self.loan_id:
            return False
        return True

    def paginate(self, items: list) -> list:
        if self.limit is None:
            return items[self.offset:]
        return items[self.offset:self.offset + self.limit]


def transaction_sort_key(tx: Transaction) -> tuple:
    """Sort key for newest-first ordering (use with ``reverse=True``)."""
    return (tx.date, tx.time or time.min, tx.created_at)


# =============================================================================
# BUDGETS
# =============================================================================

class BudgetCreate(BaseModel):
    """Payload for a new budget. ``spent`` is engine-controlled and not accepted."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    category: str = Field(..., min_length=1, max_length=100)
    amount: PositiveMoney
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    start_date: date
    end_date: date
    icon: str = Field(default="📝", max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode='after')
    def validate_window(self) -> 'BudgetCreate':
        if self.end_date < self.start_date:
            raise ValueError("Budget end date cannot be before start date")
        return self


class BudgetUpdate(BaseModel):
    """Partial update for a budget. ``spent`` cannot be set."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[PositiveMoney] = None
    period: Optional[BudgetPeriod] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    icon: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)


class Budget(BaseModel):
    """
    A spending budget for one category over a date window.

    ``spent`` is derived: it always equals the sum of the user's expense and
    loan_payment transactions in this category whose date falls inside
    [start_date, end_date].
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)

    category: str = Field(..., min_length=1, max_length=100)
    amount: PositiveMoney
    spent: NonNegativeTotal = ZERO
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    start_date: date
    end_date: date
    icon: str = Field(default="📝", max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode='after')
    def validate_window(self) -> 'Budget':
        if self.end_date < self.start_date:
            raise ValueError("Budget end date cannot be before start date")
        return self

    def covers(self, day: date) -> bool:
        """Is the given date inside the accumulation window (inclusive)?"""
        return self.start_date <= day <= self.end_date

    @property
    def remaining(self) -> Decimal:
        """Amount left to spend. Negative when over budget."""
        return self.amount - self.spent

    @property
    def percent_used(self) -> Decimal:
        return (self.spent / self.amount * 100).quantize(CENT)

    @property
    def is_over_budget(self) -> bool:
        return self.spent > self.amount


# =============================================================================
# SAVINGS GOALS
# =============================================================================

class SavingsGoalCreate(BaseModel):
    """Payload for a new savings goal."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=200)
    target_amount: PositiveMoney
    current_amount: NonNegativeMoney = ZERO
    deadline: Optional[date] = None
    icon: str = Field(default="🎯", max_length=50)
    color: str = Field(default="#3B82F6", max_length=20)


class SavingsGoalUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    target_amount: Optional[PositiveMoney] = None
    current_amount: Optional[NonNegativeMoney] = None
    deadline: Optional[date] = None
    icon: Optional[str] = Field(default=None, max_length=50)
    color: Optional[str] = Field(default=None, max_length=20)


class SavingsGoal(BaseModel):
    """
    A savings goal.

    DESIGN DECISION: ``current_amount`` is the authoritative stored value.
    It is NOT recomputed from transactions (name matching is unreliable
    and breaks on rename).
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)

    name: str = Field(..., min_length=1, max_length=200)
    target_amount: PositiveMoney
    current_amount: NonNegativeMoney = ZERO
    deadline: Optional[date] = None
    icon: str = Field(default="🎯", max_length=50)
    color: str = Field(default="#3B82F6", max_length=20)

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def progress_percent(self) -> Decimal:
        return (self.current_amount / self.target_amount * 100).quantize(CENT)

    @property
    def is_completed(self) -> bool:
        return self.current_amount >= self.target_amount


# =============================================================================
# LOANS
# =============================================================================

class LoanCreate(BaseModel):
    """
    Loan terms supplied by the user.

    Principal and term are range-checked by the amortization calculator
    (InvalidLoanTerms), not here.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=200)
    principal: Money
    interest_rate: Decimal = Field(
        ...,
        max_digits=7,
        decimal_places=4,
        description="Annual interest rate in percent"
    )
    interest_type: InterestType = InterestType.COMPOUND
    term_months: int
    current_balance: Optional[NonNegativeMoney] = Field(
        default=None,
        description="Defaults to the principal"
    )
    next_payment_date: Optional[date] = None
    icon: str = Field(default="🏦", max_length=50)
    color: str = Field(default="#EF4444", max_length=20)


class LoanUpdate(BaseModel):
    """Partial loan update. ``monthly_payment`` is engine-controlled."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    principal: Optional[Money] = None
    interest_rate: Optional[Decimal] = Field(default=None, max_digits=7, decimal_places=4)
    interest_type: Optional[InterestType] = None
    term_months: Optional[int] = None
    current_balance: Optional[NonNegativeMoney] = None
    next_payment_date: Optional[date] = None
    icon: Optional[str] = Field(default=None, max_length=50)
    color: Optional[str] = Field(default=None, max_length=20)

    def changes_terms(self) -> bool:
        """Does this update touch any field the monthly payment depends on?"""
        return bool(
            {"principal", "interest_rate", "term_months"} & self.model_fields_set
        )


class Loan(BaseModel):
    """A loan with its engine-computed monthly payment."""
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)

    name: str = Field(..., min_length=1, max_length=200)
    principal: PositiveMoney
    interest_rate: Decimal = Field(..., ge=0, max_digits=7, decimal_places=4)
    interest_type: InterestType = InterestType.COMPOUND
    term_months: int = Field(..., gt=0)
    monthly_payment: NonNegativeMoney
    current_balance: NonNegativeMoney
    next_payment_date: Optional[date] = None
    icon: str = Field(default="🏦", max_length=50)
    color: str = Field(default="#EF4444", max_length=20)

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def monthly_rate(self) -> Decimal:
        """Monthly interest rate as a fraction (annual percent / 100 / 12)."""
        return self.interest_rate / Decimal(100) / Decimal(12)


# =============================================================================
# DERIVED READ MODELS
# =============================================================================

class LoanPayoffProjection(BaseModel):
    """Forward projection of how a loan gets paid off at its current payment."""

    loan_id: Optional[UUID] = None
    remaining_balance: Total
    monthly_payment: Total
    remaining_months: int = Field(ge=0)
    total_interest: Total
    payoff_date: date


class AmortizationRow(BaseModel):
    """One month of an amortization schedule."""

    period: int = Field(..., ge=1)
    payment_date: date
    payment: Total
    interest: Total
    principal: Total
    balance: Total


class LoanProgress(BaseModel):
    """How much of a loan has been repaid so far."""

    loan_id: UUID
    total_paid: Total
    principal_paid: Total
    interest_paid: Total
    principal_progress: Decimal = Field(
        ...,
        ge=0,
        le=100,
        description="Percent of the principal repaid (0-100)"
    )


class FinancialSummary(BaseModel):
    """
    Aggregate view over one user's ledger.

    Computed fresh on every request, never stored.
    """

    user_id: str
    as_of: date
    net_worth: Total
    monthly_income: Total
    monthly_expenses: Total
    total_savings: Total
    total_debt: Total


class CategorySpending(BaseModel):
    """Total expense spending in one category."""

    category: str
    total: Total
    transaction_count: int = Field(..., ge=0)


class MonthlyTrend(BaseModel):
    """Income and expenses for one calendar month."""

    month: date = Field(..., description="First day of the month")
    income: Total
    expenses: Total

    @property
    def net(self) -> Decimal:
        return self.income - self.expenses

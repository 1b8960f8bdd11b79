"""Payload builders shared by the test modules."""

from datetime import date
from decimal import Decimal

from finledger.models.ledger import (
    BudgetCreate,
    LoanCreate,
    SavingsGoalCreate,
    TransactionCreate,
    TransactionType,
)


USER = "alice"
INTRUDER = "mallory"


def expense(amount: str, day: date, category: str = "food", **extra) -> TransactionCreate:
    return TransactionCreate(
        amount=Decimal(amount),
        description=f"{category} purchase",
        category=category,
        type=TransactionType.EXPENSE,
        date=day,
        **extra,
    )


def transaction(kind: TransactionType, amount: str, day: date, category: str = "general", **extra) -> TransactionCreate:
    return TransactionCreate(
        amount=Decimal(amount),
        description=f"{kind.value} entry",
        category=category,
        type=kind,
        date=day,
        **extra,
    )


def food_budget(amount: str = "300", start: date = date(2024, 1, 1), end: date = date(2024, 1, 31)) -> BudgetCreate:
    return BudgetCreate(category="food", amount=Decimal(amount), start_date=start, end_date=end)


def savings_goal(name: str = "Emergency fund", current: str = "0") -> SavingsGoalCreate:
    return SavingsGoalCreate(name=name, target_amount=Decimal("5000"), current_amount=Decimal(current))


def car_loan(**overrides) -> LoanCreate:
    terms = {
        "name": "Car",
        "principal": Decimal("120000"),
        "interest_rate": Decimal("12"),
        "term_months": 12,
    }
    terms.update(overrides)
    return LoanCreate(**terms)

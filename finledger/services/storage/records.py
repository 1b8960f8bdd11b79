"""
Record construction shared by every storage backend.

Backends never build or merge ledger records themselves; they call these
helpers so that defaults, partial-update merging and the loan payment
computation are identical everywhere.
"""

from datetime import datetime
from typing import Iterable, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from finledger.amortization import calculate_monthly_payment
from finledger.models.ledger import (
    ZERO,
    Budget,
    BudgetCreate,
    Loan,
    LoanCreate,
    LoanUpdate,
    SavingsGoal,
    SavingsGoalCreate,
    Transaction,
    TransactionCreate,
    transaction_sort_key,
)
from finledger.services.storage.interface import ValidationError


RecordT = TypeVar("RecordT", bound=BaseModel)
NamedT = TypeVar("NamedT", bound=Union[SavingsGoal, Loan])

_LOAN_TERMS = ("principal", "interest_rate", "term_months")


def validated(model_cls: type[RecordT], data: dict) -> RecordT:
    """Build a model, reporting problems as our ValidationError."""
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, model_cls.__name__) from e


def build_transaction(user_id: str, data: TransactionCreate) -> Transaction:
    return validated(Transaction, {**data.model_dump(), "user_id": user_id})


def build_budget(user_id: str, data: BudgetCreate) -> Budget:
    """New budget with nothing spent yet; the backend seeds ``spent``."""
    return validated(Budget, {**data.model_dump(), "user_id": user_id, "spent": ZERO})


def build_savings_goal(user_id: str, data: SavingsGoalCreate) -> SavingsGoal:
    return validated(SavingsGoal, {**data.model_dump(), "user_id": user_id})


def build_loan(user_id: str, data: LoanCreate) -> Loan:
    """
    New loan with its monthly payment computed from the terms.

    Raises:
        InvalidLoanTerms: Before any other validation, if principal or term
        is not positive
    """
    payment = calculate_monthly_payment(data.principal, data.interest_rate, data.term_months)
    fields = data.model_dump()
    if fields["current_balance"] is None:
        fields["current_balance"] = data.principal
    return validated(Loan, {**fields, "user_id": user_id, "monthly_payment": payment})


def merge(record: RecordT, changes: BaseModel) -> RecordT:
    """
    Apply the fields explicitly set on ``changes`` and re-validate.

    Fields left unset keep their stored value; a field explicitly set to
    None is cleared (and fails validation if it is required).
    """
    updates = changes.model_dump(exclude_unset=True)
    data = {**record.model_dump(), **updates, "updated_at": datetime.utcnow()}
    return validated(type(record), data)


def merge_loan(loan: Loan, changes: LoanUpdate) -> Loan:
    """Merge a loan update, recomputing the payment when the terms change."""
    updates = changes.model_dump(exclude_unset=True)
    data = {**loan.model_dump(), **updates, "updated_at": datetime.utcnow()}
    if changes.changes_terms():
        if any(data[field] is None for field in _LOAN_TERMS):
            # Cleared terms are reported by Loan validation.
            validated(Loan, data)
        data["monthly_payment"] = calculate_monthly_payment(
            data["principal"],
            data["interest_rate"],
            data["term_months"],
        )
    return validated(Loan, data)


def order_transactions(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Newest first: by date, then time of day, then creation time."""
    return sorted(transactions, key=transaction_sort_key, reverse=True)


def order_budgets(budgets: Iterable[Budget]) -> list[Budget]:
    """Most recent window first, then alphabetically by category."""
    by_category = sorted(budgets, key=lambda b: (b.category, b.created_at))
    return sorted(by_category, key=lambda b: b.start_date, reverse=True)


def order_by_name(records: Iterable[NamedT]) -> list[NamedT]:
    """Goals and loans are listed by name."""
    return sorted(records, key=lambda r: (r.name, r.created_at))

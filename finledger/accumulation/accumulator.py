"""
Budget Accumulator

Pure update rules that keep ``Budget.spent`` equal to the sum of the matching
expense and loan_payment transactions.

DESIGN DECISION: The accumulator never touches storage. It takes the user's
budgets and the transaction snapshot(s) and returns an ordered list of
adjustments. Each backend applies those adjustments inside the same atomic
unit as the transaction write. Because both backends call these functions,
their accumulation behaviour cannot diverge.

Ordering matters: on update the reversal of the old contribution is always
planned before the new contribution, and every decrease is floored at zero
when applied.
"""

from decimal import Decimal
from typing import Iterable
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from finledger.models.ledger import ZERO, Budget, Transaction, TransactionType


BUDGET_AFFECTING_TYPES = frozenset({
    TransactionType.EXPENSE,
    TransactionType.LOAN_PAYMENT,
})

# Fields whose change can move a transaction's contribution between budgets.
ACCUMULATION_FIELDS = frozenset({"amount", "category", "type", "date"})


class BudgetAdjustment(BaseModel):
    """One step to apply to a budget's spent total."""
    model_config = ConfigDict(frozen=True)

    budget_id: UUID
    delta: Decimal


def affects_budgets(tx: Transaction) -> bool:
    """Only expenses and loan payments consume a budget."""
    return tx.type in BUDGET_AFFECTING_TYPES


def budget_matches(budget: Budget, tx: Transaction) -> bool:
    """Does this transaction count towards this budget?"""
    return (
        affects_budgets(tx)
        and budget.user_id == tx.user_id
        and budget.category == tx.category
        and budget.covers(tx.date)
    )


def _steps(budgets: Iterable[Budget], tx: Transaction, sign: int) -> list[BudgetAdjustment]:
    return [
        BudgetAdjustment(budget_id=budget.id, delta=tx.amount * sign)
        for budget in budgets
        if budget_matches(budget, tx)
    ]


def plan_create(budgets: Iterable[Budget], tx: Transaction) -> list[BudgetAdjustment]:
    """Adjustments for a newly recorded transaction."""
    return _steps(budgets, tx, +1)


def plan_delete(budgets: Iterable[Budget], tx: Transaction) -> list[BudgetAdjustment]:
    """Adjustments that reverse a transaction being removed."""
    return _steps(budgets, tx, -1)


def plan_update(
    budgets: Iterable[Budget],
    before: Transaction,
    after: Transaction,
) -> list[BudgetAdjustment]:
    """
    Reverse the old contribution, then apply the new one.

    Returns no steps when none of the accumulation fields changed.
    """
    if not needs_reaccumulation(before, after):
        return []
    budgets = list(budgets)
    return _steps(budgets, before, -1) + _steps(budgets, after, +1)


def needs_reaccumulation(before: Transaction, after: Transaction) -> bool:
    return any(getattr(before, f) != getattr(after, f) for f in ACCUMULATION_FIELDS)


def apply_adjustment(spent: Decimal, delta: Decimal) -> Decimal:
    """New spent total after one step; never below zero."""
    return max(ZERO, spent + delta)


def apply_plan(budget: Budget, plan: Iterable[BudgetAdjustment]) -> Decimal:
    """Apply every step addressed to ``budget`` in order and return the new total."""
    spent = budget.spent
    for step in plan:
        if step.budget_id == budget.id:
            spent = apply_adjustment(spent, step.delta)
    return spent


def affected_budget_ids(plan: Iterable[BudgetAdjustment]) -> set[UUID]:
    return {step.budget_id for step in plan}


def recalculate_spent(budget: Budget, transactions: Iterable[Transaction]) -> Decimal:
    """
    Full recomputation of a budget's spent total.

    Used when a budget is created or its category/window changes, where there
    is no single transaction event to accumulate.
    """
    return sum(
        (tx.amount for tx in transactions if budget_matches(budget, tx)),
        ZERO,
    )


def budget_window_changed(before: Budget, after: Budget) -> bool:
    """Did the category or window move, so that spent must be recalculated?"""
    return (
        before.category != after.category
        or before.start_date != after.start_date
        or before.end_date != after.end_date
    )

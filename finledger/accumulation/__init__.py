"""Budget accumulation package."""

from finledger.accumulation.accumulator import (
    ACCUMULATION_FIELDS,
    BUDGET_AFFECTING_TYPES,
    BudgetAdjustment,
    affected_budget_ids,
    affects_budgets,
    apply_adjustment,
    apply_plan,
    budget_matches,
    budget_window_changed,
    needs_reaccumulation,
    plan_create,
    plan_delete,
    plan_update,
    recalculate_spent,
)

__all__ = [
    "ACCUMULATION_FIELDS",
    "BUDGET_AFFECTING_TYPES",
    "BudgetAdjustment",
    "affected_budget_ids",
    "affects_budgets",
    "apply_adjustment",
    "apply_plan",
    "budget_matches",
    "budget_window_changed",
    "needs_reaccumulation",
    "plan_create",
    "plan_delete",
    "plan_update",
    "recalculate_spent",
]

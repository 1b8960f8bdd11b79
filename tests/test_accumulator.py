"""
Tests for the budget accumulator (pure planning functions).
"""

import pytest
from datetime import date
from decimal import Decimal

from finledger.accumulation import (
    affected_budget_ids,
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
from finledger.models.ledger import Budget, Transaction, TransactionType


def _budget(category="food", start=date(2024, 1, 1), end=date(2024, 1, 31), spent="0", user_id="alice") -> Budget:
    return Budget(
        user_id=user_id,
        category=category,
        amount=Decimal("300"),
        spent=Decimal(spent),
        start_date=start,
        end_date=end,
    )


def _tx(amount="50", category="food", day=date(2024, 1, 10), kind=TransactionType.EXPENSE, user_id="alice") -> Transaction:
    return Transaction(
        user_id=user_id,
        amount=Decimal(amount),
        description="entry",
        category=category,
        type=kind,
        date=day,
    )


class TestBudgetMatching:
    """Which transactions count towards which budgets."""

    def test_expense_in_window_matches(self):
        assert budget_matches(_budget(), _tx())

    def test_loan_payment_matches(self):
        assert budget_matches(_budget(), _tx(kind=TransactionType.LOAN_PAYMENT))

    @pytest.mark.parametrize(
        "kind",
        [
            TransactionType.INCOME,
            TransactionType.SAVINGS_DEPOSIT,
            TransactionType.SAVINGS_WITHDRAWAL,
            TransactionType.LOAN_RECEIVED,
        ],
    )
    def test_other_types_never_match(self, kind):
        assert not budget_matches(_budget(), _tx(kind=kind))

    def test_window_bounds_are_inclusive(self):
        budget = _budget()
        assert budget_matches(budget, _tx(day=date(2024, 1, 1)))
        assert budget_matches(budget, _tx(day=date(2024, 1, 31)))
        assert not budget_matches(budget, _tx(day=date(2023, 12, 31)))
        assert not budget_matches(budget, _tx(day=date(2024, 2, 1)))

    def test_category_must_match(self):
        assert not budget_matches(_budget(), _tx(category="rent"))

    def test_other_users_never_match(self):
        assert not budget_matches(_budget(), _tx(user_id="mallory"))


class TestPlans:
    """Adjustment plans for create, delete and update."""

    def test_create_adds_to_every_matching_budget(self):
        monthly = _budget()
        yearly = _budget(start=date(2024, 1, 1), end=date(2024, 12, 31))
        other = _budget(category="rent")

        plan = plan_create([monthly, yearly, other], _tx(amount="50"))

        assert affected_budget_ids(plan) == {monthly.id, yearly.id}
        assert all(step.delta == Decimal("50") for step in plan)

    def test_delete_subtracts(self):
        budget = _budget(spent="50")
        plan = plan_delete([budget], _tx(amount="50"))
        assert [step.delta for step in plan] == [Decimal("-50")]
        assert apply_plan(budget, plan) == Decimal("0")

    def test_update_reverses_then_applies(self):
        budget = _budget(spent="50")
        before = _tx(amount="50")
        after = before.model_copy(update={"amount": Decimal("40")})

        plan = plan_update([budget], before, after)

        assert [step.delta for step in plan] == [Decimal("-50"), Decimal("40")]
        assert apply_plan(budget, plan) == Decimal("40")

    def test_update_moving_between_budgets(self):
        food = _budget(spent="50")
        rent = _budget(category="rent")
        before = _tx(amount="50")
        after = before.model_copy(update={"category": "rent"})

        plan = plan_update([food, rent], before, after)

        assert apply_plan(food, plan) == Decimal("0")
        assert apply_plan(rent, plan) == Decimal("50")

    def test_update_out_of_window(self):
        budget = _budget(spent="50")
        before = _tx(amount="50")
        after = before.model_copy(update={"date": date(2024, 2, 5)})
        assert apply_plan(budget, plan_update([budget], before, after)) == Decimal("0")

    def test_update_to_income_stops_counting(self):
        budget = _budget(spent="50")
        before = _tx(amount="50")
        after = before.model_copy(update={"type": TransactionType.INCOME})
        assert apply_plan(budget, plan_update([budget], before, after)) == Decimal("0")

    def test_description_change_needs_no_adjustment(self):
        before = _tx()
        after = before.model_copy(update={"description": "renamed"})
        assert not needs_reaccumulation(before, after)
        assert plan_update([_budget(spent="50")], before, after) == []

    def test_reversal_is_floored_at_zero(self):
        """A budget created after the transaction never goes negative."""
        budget = _budget(spent="10")
        plan = plan_delete([budget], _tx(amount="50"))
        assert apply_plan(budget, plan) == Decimal("0")

    def test_apply_plan_ignores_other_budgets(self):
        budget = _budget(spent="20")
        other_plan = plan_create([_budget()], _tx())
        assert apply_plan(budget, other_plan) == Decimal("20")


class TestRecalculation:

    def test_apply_adjustment_floor(self):
        assert apply_adjustment(Decimal("5"), Decimal("-7.50")) == Decimal("0")
        assert apply_adjustment(Decimal("5"), Decimal("2.50")) == Decimal("7.50")

    def test_recalculate_spent(self):
        budget = _budget()
        transactions = [
            _tx(amount="50"),
            _tx(amount="30", kind=TransactionType.LOAN_PAYMENT),
            _tx(amount="1000", kind=TransactionType.INCOME),
            _tx(amount="7", day=date(2024, 3, 1)),
            _tx(amount="9", category="rent"),
            _tx(amount="11", user_id="mallory"),
        ]
        assert recalculate_spent(budget, transactions) == Decimal("80")

    def test_recalculate_empty(self):
        assert recalculate_spent(_budget(), []) == Decimal("0")

    def test_budget_window_changed(self):
        before = _budget()
        assert budget_window_changed(before, before.model_copy(update={"category": "rent"}))
        assert budget_window_changed(before, before.model_copy(update={"end_date": date(2024, 2, 29)}))
        assert not budget_window_changed(before, before.model_copy(update={"amount": Decimal("500")}))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

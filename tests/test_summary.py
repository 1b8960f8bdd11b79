"""
Tests for the financial summary and report aggregators.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from finledger.models.ledger import Budget, Loan, SavingsGoal, Transaction, TransactionType
from finledger.summary import FinancialSummaryAggregator, ReportAggregator, month_bounds


NOW = datetime(2024, 3, 15, 12, 30)


def _tx(
    kind: TransactionType,
    amount: str,
    day: date,
    user_id: str = "alice",
    category: str = "general",
) -> Transaction:
    return Transaction(
        user_id=user_id,
        amount=Decimal(amount),
        description=kind.value,
        category=category,
        type=kind,
        date=day,
    )


def _goal(current: str, user_id: str = "alice") -> SavingsGoal:
    return SavingsGoal(
        user_id=user_id,
        name="Goal",
        target_amount=Decimal("10000"),
        current_amount=Decimal(current),
    )


def _loan(balance: str, user_id: str = "alice") -> Loan:
    return Loan(
        user_id=user_id,
        name="Loan",
        principal=Decimal("5000"),
        interest_rate=Decimal("6"),
        term_months=24,
        monthly_payment=Decimal("221.60"),
        current_balance=Decimal(balance),
    )


class TestMonthBounds:

    def test_month_bounds(self):
        assert month_bounds(date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))
        assert month_bounds(datetime(2023, 12, 31, 23, 59)) == (date(2023, 12, 1), date(2023, 12, 31))


class TestFinancialSummary:
    """Aggregation over one user's snapshot."""

    def test_month_window(self):
        """Last month's expense is excluded."""
        transactions = [
            _tx(TransactionType.INCOME, "1000", date(2024, 3, 1)),
            _tx(TransactionType.EXPENSE, "200", date(2024, 3, 10)),
            _tx(TransactionType.EXPENSE, "50", date(2024, 2, 28)),
        ]
        summary = FinancialSummaryAggregator().summarize("alice", transactions, [], [], NOW)
        assert summary.monthly_income == Decimal("1000.00")
        assert summary.monthly_expenses == Decimal("200.00")
        assert summary.as_of == date(2024, 3, 15)

    def test_type_groups(self):
        transactions = [
            _tx(TransactionType.INCOME, "100", date(2024, 3, 2)),
            _tx(TransactionType.SAVINGS_WITHDRAWAL, "20", date(2024, 3, 2)),
            _tx(TransactionType.LOAN_RECEIVED, "300", date(2024, 3, 2)),
            _tx(TransactionType.EXPENSE, "10", date(2024, 3, 2)),
            _tx(TransactionType.SAVINGS_DEPOSIT, "40", date(2024, 3, 2)),
            _tx(TransactionType.LOAN_PAYMENT, "70", date(2024, 3, 31)),
        ]
        summary = FinancialSummaryAggregator().summarize("alice", transactions, [], [], NOW)
        assert summary.monthly_income == Decimal("420.00")
        assert summary.monthly_expenses == Decimal("120.00")

    def test_net_worth(self):
        goals = [_goal("1500.25"), _goal("500")]
        loans = [_loan("3000.10"), _loan("1000")]
        summary = FinancialSummaryAggregator().summarize("alice", [], goals, loans, NOW)
        assert summary.total_savings == Decimal("2000.25")
        assert summary.total_debt == Decimal("4000.10")
        assert summary.net_worth == Decimal("-1999.85")

    def test_other_users_are_ignored(self):
        summary = FinancialSummaryAggregator().summarize(
            "alice",
            [_tx(TransactionType.INCOME, "999", date(2024, 3, 2), user_id="mallory")],
            [_goal("999", user_id="mallory")],
            [_loan("999", user_id="mallory")],
            NOW,
        )
        assert summary.monthly_income == Decimal("0")
        assert summary.total_savings == Decimal("0")
        assert summary.total_debt == Decimal("0")

    def test_exact_decimal_sums(self):
        """Ten 0.10 payments are exactly 1.00."""
        transactions = [_tx(TransactionType.EXPENSE, "0.10", date(2024, 3, 5)) for _ in range(10)]
        summary = FinancialSummaryAggregator().summarize("alice", transactions, [], [], date(2024, 3, 5))
        assert summary.monthly_expenses == Decimal("1.00")

    def test_empty_ledger(self):
        summary = FinancialSummaryAggregator().summarize("alice", [], [], [], NOW)
        assert summary.net_worth == Decimal("0.00")
        assert summary.monthly_income == Decimal("0.00")


class TestSpendingByCategory:

    def test_largest_first_and_expenses_only(self):
        transactions = [
            _tx(TransactionType.EXPENSE, "40", date(2024, 1, 3), category="food"),
            _tx(TransactionType.EXPENSE, "25.50", date(2024, 3, 3), category="food"),
            _tx(TransactionType.EXPENSE, "120", date(2024, 2, 1), category="rent"),
            _tx(TransactionType.EXPENSE, "5", date(2024, 2, 1), category="coffee"),
            _tx(TransactionType.LOAN_PAYMENT, "500", date(2024, 2, 1), category="loans"),
            _tx(TransactionType.INCOME, "900", date(2024, 2, 1), category="salary"),
        ]
        spending = ReportAggregator().spending_by_category("alice", transactions)
        assert [(s.category, s.total, s.transaction_count) for s in spending] == [
            ("rent", Decimal("120.00"), 1),
            ("food", Decimal("65.50"), 2),
            ("coffee", Decimal("5.00"), 1),
        ]

    def test_limit_and_ties(self):
        transactions = [
            _tx(TransactionType.EXPENSE, "10", date(2024, 3, 1), category=name)
            for name in ("travel", "books", "games", "art", "food", "rent")
        ]
        top = ReportAggregator().spending_by_category("alice", transactions)
        assert [s.category for s in top] == ["art", "books", "food", "games", "rent"]
        everything = ReportAggregator().spending_by_category("alice", transactions, limit=None)
        assert len(everything) == 6

    def test_other_users_are_ignored(self):
        transactions = [_tx(TransactionType.EXPENSE, "10", date(2024, 3, 1), user_id="mallory")]
        assert ReportAggregator().spending_by_category("alice", transactions) == []

    def test_bad_limit(self):
        with pytest.raises(ValueError):
            ReportAggregator().spending_by_category("alice", [], limit=0)


class TestMonthlyTrends:

    def test_window_ends_with_current_month(self):
        transactions = [
            _tx(TransactionType.INCOME, "1000", date(2024, 3, 1)),
            _tx(TransactionType.EXPENSE, "200", date(2024, 3, 10)),
            _tx(TransactionType.LOAN_PAYMENT, "50", date(2024, 1, 31)),
            _tx(TransactionType.SAVINGS_WITHDRAWAL, "75", date(2023, 10, 2)),
            _tx(TransactionType.INCOME, "999", date(2023, 9, 30)),
            _tx(TransactionType.INCOME, "999", date(2024, 4, 1)),
        ]
        trends = ReportAggregator().monthly_trends("alice", transactions, NOW)

        assert [t.month for t in trends] == [
            date(2023, 10, 1),
            date(2023, 11, 1),
            date(2023, 12, 1),
            date(2024, 1, 1),
            date(2024, 2, 1),
            date(2024, 3, 1),
        ]
        assert trends[0].income == Decimal("75.00")
        assert trends[1].income == Decimal("0.00")
        assert trends[3].expenses == Decimal("50.00")
        assert trends[-1].net == Decimal("800.00")

    def test_current_month_agrees_with_summary(self):
        transactions = [
            _tx(TransactionType.INCOME, "100", date(2024, 3, 2)),
            _tx(TransactionType.LOAN_RECEIVED, "300", date(2024, 3, 2)),
            _tx(TransactionType.SAVINGS_DEPOSIT, "40", date(2024, 3, 2)),
            _tx(TransactionType.EXPENSE, "10", date(2024, 3, 31)),
        ]
        summary = FinancialSummaryAggregator().summarize("alice", transactions, [], [], NOW)
        current = ReportAggregator().monthly_trends("alice", transactions, NOW, months=1)[0]
        assert current.income == summary.monthly_income
        assert current.expenses == summary.monthly_expenses

    def test_bad_window(self):
        with pytest.raises(ValueError):
            ReportAggregator().monthly_trends("alice", [], NOW, months=0)


class TestCategories:

    def test_union_of_transactions_and_budgets(self):
        transactions = [
            _tx(TransactionType.EXPENSE, "10", date(2024, 3, 1), category="food"),
            _tx(TransactionType.INCOME, "10", date(2024, 3, 1), category="salary"),
            _tx(TransactionType.EXPENSE, "10", date(2024, 3, 1), category="secret", user_id="mallory"),
        ]
        budgets = [
            Budget(
                user_id="alice",
                category="travel",
                amount=Decimal("100"),
                start_date=date(2024, 3, 1),
                end_date=date(2024, 3, 31),
            ),
            Budget(
                user_id="alice",
                category="food",
                amount=Decimal("100"),
                start_date=date(2024, 3, 1),
                end_date=date(2024, 3, 31),
            ),
        ]
        assert ReportAggregator().categories("alice", transactions, budgets) == ["food", "salary", "travel"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""
Report Aggregations

Spending by category, month-by-month income/expense trends and the set of
categories a user has used. Like the financial summary, these are pure
functions of a ledger snapshot: the month window comes from ``now`` and
nothing is cached.

DESIGN DECISION: A month's income and expenses use the same transaction
type groups as the financial summary, so the newest trend row always
agrees with the summary for the same ``now``.
"""

from datetime import date, datetime
from typing import Iterable, Optional, Union

from finledger.amortization import add_months, round_money
from finledger.models.ledger import (
    ZERO,
    Budget,
    CategorySpending,
    MonthlyTrend,
    Transaction,
    TransactionType,
)
from finledger.summary.aggregator import MONTHLY_EXPENSE_TYPES, MONTHLY_INCOME_TYPES, month_bounds


DEFAULT_TOP_CATEGORIES = 5
DEFAULT_TREND_MONTHS = 6


class ReportAggregator:
    """
    Read-only report computations over one user's records.

    GUARANTEES:
    - Only records owned by ``user_id`` are counted
    - Results are ordered deterministically
    """

    def spending_by_category(
        self,
        user_id: str,
        transactions: Iterable[Transaction],
        limit: Optional[int] = DEFAULT_TOP_CATEGORIES,
    ) -> list[CategorySpending]:
        """
        Expense totals per category, largest first.

        Ties are broken by category name. ``limit=None`` returns every category.
        """
        if limit is not None and limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")

        totals = {}
        counts = {}
        for tx in transactions:
            if tx.user_id != user_id or tx.type != TransactionType.EXPENSE:
                continue
            totals[tx.category] = totals.get(tx.category, ZERO) + tx.amount
            counts[tx.category] = counts.get(tx.category, 0) + 1

        ranked = sorted(totals, key=lambda category: (-totals[category], category))
        if limit is not None:
            ranked = ranked[:limit]
        return [
            CategorySpending(
                category=category,
                total=round_money(totals[category]),
                transaction_count=counts[category],
            )
            for category in ranked
        ]

    def monthly_trends(
        self,
        user_id: str,
        transactions: Iterable[Transaction],
        now: Union[date, datetime],
        months: int = DEFAULT_TREND_MONTHS,
    ) -> list[MonthlyTrend]:
        """
        Income and expenses for the ``months`` calendar months ending with
        the month of ``now``, oldest first.

        Months without transactions are reported as zero. Transactions after
        the current month are ignored.
        """
        if months < 1:
            raise ValueError(f"months must be at least 1, got {months}")

        current_start, current_end = month_bounds(now)
        first_month = add_months(current_start, -(months - 1))
        buckets = {
            add_months(first_month, offset): [ZERO, ZERO]
            for offset in range(months)
        }

        for tx in transactions:
            if tx.user_id != user_id or not (first_month <= tx.date <= current_end):
                continue
            bucket = buckets[tx.date.replace(day=1)]
            if tx.type in MONTHLY_INCOME_TYPES:
                bucket[0] += tx.amount
            elif tx.type in MONTHLY_EXPENSE_TYPES:
                bucket[1] += tx.amount

        return [
            MonthlyTrend(month=month, income=round_money(income), expenses=round_money(expenses))
            for month, (income, expenses) in sorted(buckets.items())
        ]

    def categories(
        self,
        user_id: str,
        transactions: Iterable[Transaction],
        budgets: Iterable[Budget],
    ) -> list[str]:
        """Distinct categories used by the user's transactions and budgets, sorted."""
        used = {tx.category for tx in transactions if tx.user_id == user_id}
        used.update(budget.category for budget in budgets if budget.user_id == user_id)
        return sorted(used)

"""
Financial Summary Aggregator

DESIGN DECISION: The summary is computed fresh on every request from the
store's current contents. Nothing here reads a clock - the caller passes
``now`` - and nothing is cached.

All sums are exact Decimal arithmetic. Only the final figures are rounded.
"""

import calendar
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Union

from finledger.amortization import round_money
from finledger.models.ledger import (
    ZERO,
    FinancialSummary,
    Loan,
    SavingsGoal,
    Transaction,
    TransactionType,
)


MONTHLY_INCOME_TYPES = frozenset({
    TransactionType.INCOME,
    TransactionType.SAVINGS_WITHDRAWAL,
    TransactionType.LOAN_RECEIVED,
})

MONTHLY_EXPENSE_TYPES = frozenset({
    TransactionType.EXPENSE,
    TransactionType.SAVINGS_DEPOSIT,
    TransactionType.LOAN_PAYMENT,
})


def month_bounds(now: Union[date, datetime]) -> tuple[date, date]:
    """First and last day of the calendar month containing ``now``."""
    day = now.date() if isinstance(now, datetime) else now
    last_day = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last_day)


class FinancialSummaryAggregator:
    """
    Read-only cross-entity computation over one user's ledger snapshot.

    GUARANTEES:
    - Only the given records are considered
    - The month window comes from ``now``, never from the system clock
    """

    def summarize(
        self,
        user_id: str,
        transactions: Iterable[Transaction],
        goals: Iterable[SavingsGoal],
        loans: Iterable[Loan],
        now: Union[date, datetime],
    ) -> FinancialSummary:
        month_start, month_end = month_bounds(now)

        monthly_income = ZERO
        monthly_expenses = ZERO
        for tx in transactions:
            if tx.user_id != user_id or not (month_start <= tx.date <= month_end):
                continue
            if tx.type in MONTHLY_INCOME_TYPES:
                monthly_income += tx.amount
            elif tx.type in MONTHLY_EXPENSE_TYPES:
                monthly_expenses += tx.amount

        total_savings = self._total(g.current_amount for g in goals if g.user_id == user_id)
        total_debt = self._total(loan.current_balance for loan in loans if loan.user_id == user_id)

        return FinancialSummary(
            user_id=user_id,
            as_of=now.date() if isinstance(now, datetime) else now,
            net_worth=round_money(total_savings - total_debt),
            monthly_income=round_money(monthly_income),
            monthly_expenses=round_money(monthly_expenses),
            total_savings=round_money(total_savings),
            total_debt=round_money(total_debt),
        )

    @staticmethod
    def _total(amounts: Iterable[Decimal]) -> Decimal:
        return sum(amounts, ZERO)

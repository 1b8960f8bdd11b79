"""Financial summary and report aggregations."""

from finledger.summary.aggregator import (
    MONTHLY_EXPENSE_TYPES,
    MONTHLY_INCOME_TYPES,
    FinancialSummaryAggregator,
    month_bounds,
)
from finledger.summary.reports import (
    DEFAULT_TOP_CATEGORIES,
    DEFAULT_TREND_MONTHS,
    ReportAggregator,
)

__all__ = [
    "DEFAULT_TOP_CATEGORIES",
    "DEFAULT_TREND_MONTHS",
    "MONTHLY_EXPENSE_TYPES",
    "MONTHLY_INCOME_TYPES",
    "FinancialSummaryAggregator",
    "ReportAggregator",
    "month_bounds",
]

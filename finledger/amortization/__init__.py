"""Loan amortization package."""

from finledger.amortization.calculator import (
    AmortizationError,
    InvalidLoanTerms,
    NonAmortizingLoan,
    add_months,
    build_amortization_schedule,
    calculate_loan_progress,
    calculate_monthly_payment,
    monthly_rate,
    project_loan_payoff,
    project_payoff,
    round_money,
)

__all__ = [
    "AmortizationError",
    "InvalidLoanTerms",
    "NonAmortizingLoan",
    "add_months",
    "build_amortization_schedule",
    "calculate_loan_progress",
    "calculate_monthly_payment",
    "monthly_rate",
    "project_loan_payoff",
    "project_payoff",
    "round_money",
]

"""
Amortization Calculator

Pure functions that turn loan terms into a fixed monthly payment and project
how a loan is paid off. No state, no storage access.

DESIGN DECISION: All arithmetic is done in Decimal with a 34-digit context,
including the logarithms of the payoff formula. Final money figures are
rounded to cents with ROUND_HALF_UP, and nothing is rounded mid-computation.
"""

import calendar
from datetime import date
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal, localcontext
from typing import Iterable, Optional, Union

from finledger.models.ledger import (
    CENT,
    ZERO,
    AmortizationRow,
    Loan,
    LoanPayoffProjection,
    LoanProgress,
    Transaction,
    TransactionType,
)


Number = Union[Decimal, int, str]

_PRECISION = 34
# Absorbs representation noise from ln() before taking the ceiling.
_MONTHS_QUANTUM = Decimal("1e-12")


class AmortizationError(Exception):
    """Base exception for amortization calculations."""
    pass


class InvalidLoanTerms(AmortizationError):
    """Principal or term is not positive, or the rate is negative."""
    pass


class NonAmortizingLoan(AmortizationError):
    """
    The payment does not cover the interest accruing each month.

    The balance would never reach zero, so there is no payoff date.
    """

    def __init__(self, balance: Decimal, monthly_payment: Decimal, monthly_interest: Decimal):
        self.balance = balance
        self.monthly_payment = monthly_payment
        self.monthly_interest = monthly_interest
        super().__init__(
            f"Payment of {monthly_payment} does not cover monthly interest of "
            f"{monthly_interest.quantize(CENT, rounding=ROUND_HALF_UP)} on a balance of {balance}"
        )


def round_money(value: Decimal) -> Decimal:
    """Round a final money figure to cents (ROUND_HALF_UP)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def monthly_rate(annual_rate: Number) -> Decimal:
    """Annual percentage rate -> monthly rate as a fraction."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(str(annual_rate)) / Decimal(100) / Decimal(12)


def add_months(start: date, months: int) -> date:
    """
    Add whole months keeping the day of month, clamped to the month's end.

    add_months(date(2024, 1, 31), 1) -> date(2024, 2, 29)
    """
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(start.day, last_day))


def calculate_monthly_payment(
    principal: Number,
    annual_rate: Number,
    term_months: int,
) -> Decimal:
    """
    Fixed monthly payment that fully amortizes ``principal`` in ``term_months``.

    Args:
        principal: Amount borrowed (> 0)
        annual_rate: Annual interest rate in percent (>= 0)
        term_months: Number of monthly payments (> 0)

    Returns:
        The payment rounded to cents (ROUND_HALF_UP)

    Raises:
        InvalidLoanTerms: If principal or term is not positive or rate is negative
    """
    principal = Decimal(str(principal))
    rate = Decimal(str(annual_rate))

    if principal <= 0:
        raise InvalidLoanTerms(f"Principal must be positive, got {principal}")
    if isinstance(term_months, bool) or not isinstance(term_months, int) or term_months <= 0:
        raise InvalidLoanTerms(f"Term must be a positive number of months, got {term_months}")
    if rate < 0:
        raise InvalidLoanTerms(f"Interest rate cannot be negative, got {rate}")

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        r = monthly_rate(rate)
        if r == 0:
            payment = principal / term_months
        else:
            growth = (1 + r) ** term_months
            payment = principal * r * growth / (growth - 1)

    return round_money(payment)


def project_payoff(
    balance: Number,
    monthly_payment: Number,
    rate_per_month: Number,
    today: date,
    loan_id=None,
) -> LoanPayoffProjection:
    """
    Project remaining months, total remaining interest and payoff date.

    Raises:
        NonAmortizingLoan: If the payment does not exceed the monthly interest
        InvalidLoanTerms: If the monthly rate is negative
    """
    balance = Decimal(str(balance))
    payment = Decimal(str(monthly_payment))
    r = Decimal(str(rate_per_month))

    if r < 0:
        raise InvalidLoanTerms(f"Interest rate cannot be negative, got {r}")

    if balance <= 0:
        return LoanPayoffProjection(
            loan_id=loan_id,
            remaining_balance=ZERO,
            monthly_payment=round_money(payment),
            remaining_months=0,
            total_interest=ZERO,
            payoff_date=today,
        )

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        monthly_interest = balance * r
        if payment <= 0 or payment <= monthly_interest:
            raise NonAmortizingLoan(balance, payment, monthly_interest)

        if r == 0:
            exact_months = balance / payment
        else:
            exact_months = -(1 - monthly_interest / payment).ln() / (1 + r).ln()

        months = int(
            exact_months.quantize(_MONTHS_QUANTUM).to_integral_value(rounding=ROUND_CEILING)
        )
        total_interest = max(ZERO, payment * months - balance)

    return LoanPayoffProjection(
        loan_id=loan_id,
        remaining_balance=round_money(balance),
        monthly_payment=round_money(payment),
        remaining_months=months,
        total_interest=round_money(total_interest),
        payoff_date=add_months(today, months),
    )


def project_loan_payoff(loan: Loan, today: Optional[date] = None) -> LoanPayoffProjection:
    """Payoff projection for a stored loan at its engine-computed payment."""
    return project_payoff(
        balance=loan.current_balance,
        monthly_payment=loan.monthly_payment,
        rate_per_month=loan.monthly_rate,
        today=today or date.today(),
        loan_id=loan.id,
    )


def build_amortization_schedule(
    balance: Number,
    monthly_payment: Number,
    rate_per_month: Number,
    first_payment_date: date,
) -> list[AmortizationRow]:
    """
    Month-by-month amortization table.

    Interest is charged on the running balance and rounded to cents each
    month, the way a lender's statement shows it. The last payment only
    covers what is left.
    """
    balance = Decimal(str(balance))
    payment = Decimal(str(monthly_payment))
    r = Decimal(str(rate_per_month))

    if balance > 0 and (payment <= 0 or payment <= round_money(balance * r)):
        raise NonAmortizingLoan(balance, payment, balance * r)

    rows = []
    period = 0
    while balance > 0:
        period += 1
        interest = round_money(balance * r)
        amount = min(payment, balance + interest)
        principal_part = amount - interest
        if principal_part <= 0:
            raise NonAmortizingLoan(balance, payment, balance * r)
        balance = balance - principal_part
        rows.append(AmortizationRow(
            period=period,
            payment_date=add_months(first_payment_date, period - 1),
            payment=amount,
            interest=interest,
            principal=principal_part,
            balance=balance,
        ))
    return rows


def calculate_loan_progress(loan: Loan, transactions: Iterable[Transaction]) -> LoanProgress:
    """
    How much of a loan has been repaid.

    Principal repaid comes from the stored balance; total paid comes from
    loan_payment transactions linked to the loan. Whatever was paid beyond
    the principal reduction is counted as interest.
    """
    total_paid = sum(
        (
            tx.amount for tx in transactions
            if tx.loan_id == loan.id and tx.type == TransactionType.LOAN_PAYMENT
        ),
        ZERO,
    )
    principal_paid = max(ZERO, loan.principal - loan.current_balance)
    interest_paid = max(ZERO, total_paid - principal_paid)
    progress = min(Decimal(100), principal_paid / loan.principal * 100)

    return LoanProgress(
        loan_id=loan.id,
        total_paid=total_paid,
        principal_paid=principal_paid,
        interest_paid=interest_paid,
        principal_progress=round_money(progress),
    )

"""
Data Models Package

This package contains all Pydantic models used by the ledger engine.
All data flowing through the system must conform to these schemas.
"""

from finledger.models.ledger import (
    CENT,
    ZERO,
    AmortizationRow,
    Budget,
    BudgetCreate,
    BudgetPeriod,
    BudgetUpdate,
    FinancialSummary,
    InterestType,
    Loan,
    LoanCreate,
    LoanPayoffProjection,
    LoanProgress,
    LoanUpdate,
    SavingsGoal,
    SavingsGoalCreate,
    SavingsGoalUpdate,
    Transaction,
    TransactionCreate,
    TransactionFilter,
    TransactionType,
    TransactionUpdate,
    transaction_sort_key,
)
from finledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "CENT",
    "ZERO",
    "AmortizationRow",
    "Budget",
    "BudgetCreate",
    "BudgetPeriod",
    "BudgetUpdate",
    "FinancialSummary",
    "InterestType",
    "Loan",
    "LoanCreate",
    "LoanPayoffProjection",
    "LoanProgress",
    "LoanUpdate",
    "SavingsGoal",
    "SavingsGoalCreate",
    "SavingsGoalUpdate",
    "Transaction",
    "TransactionCreate",
    "TransactionFilter",
    "TransactionType",
    "TransactionUpdate",
    "transaction_sort_key",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]

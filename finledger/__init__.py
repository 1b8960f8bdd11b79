"""
Finledger - Ledger & Aggregation Engine

Personal-finance core: transactions, budgets that accumulate spending,
savings goals, amortized loans and a financial summary, served from either
a relational database or a local-only store.

DESIGN PRINCIPLES:
1. Derived figures (budget spent, loan payment) are engine-controlled
2. Money is exact Decimal, rounded only at the edges
3. Users never see each other's data
4. Every mutation is auditable
5. Storage backend is swappable
"""

__version__ = "1.0.0"
__author__ = "Finledger Team"

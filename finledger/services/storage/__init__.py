"""
Storage Services Package

Provides the abstract ledger interface and its two implementations:
a SQLAlchemy relational store (server) and a JSON-file store (local only).
"""

from finledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    LedgerSnapshot,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    ValidationError,
)
from finledger.services.storage.local import LocalLedgerStorage
from finledger.services.storage.sql import (
    SqlAuditStorage,
    SqlClient,
    SqlLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerSnapshot",
    "LedgerStorageInterface",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
    # Local implementation
    "LocalLedgerStorage",
    # SQL implementation
    "SqlAuditStorage",
    "SqlClient",
    "SqlLedgerStorage",
]

"""Services package."""

from finledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    LedgerSnapshot,
    LedgerStorageInterface,
    LocalLedgerStorage,
    NotFoundError,
    SqlAuditStorage,
    SqlClient,
    SqlLedgerStorage,
    StorageError,
    ValidationError,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "LedgerSnapshot",
    "LedgerStorageInterface",
    "LocalLedgerStorage",
    "NotFoundError",
    "SqlAuditStorage",
    "SqlClient",
    "SqlLedgerStorage",
    "StorageError",
    "ValidationError",
]

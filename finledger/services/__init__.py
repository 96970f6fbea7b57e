"""Services package."""

from finledger.services.storage import (
    AuditStorageInterface,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStorageInterface,
    NotFoundError,
    ReferenceInUseError,
    StorageError,
    StoreUnavailableError,
)

__all__ = [
    "AuditStorageInterface",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "LedgerStorageInterface",
    "NotFoundError",
    "ReferenceInUseError",
    "StorageError",
    "StoreUnavailableError",
]

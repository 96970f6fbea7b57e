"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
An in-memory backend serves tests and local use; Google Sheets is the
persistent backend. Both honour the same atomicity contract.
"""

from finledger.services.storage.interface import (
    REFERENCE_FIELDS,
    AccountStorageInterface,
    AuditStorageInterface,
    CategoryStorageInterface,
    CreditCardStorageInterface,
    DuplicateError,
    Entry,
    EntryStorageInterface,
    LedgerStorageInterface,
    NotFoundError,
    PaymentUnitOfWork,
    ReferenceInUseError,
    StorageError,
    StoreUnavailableError,
    apply_changes,
)
from finledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
)
from finledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
)

__all__ = [
    # Interfaces
    "AccountStorageInterface",
    "AuditStorageInterface",
    "CategoryStorageInterface",
    "CreditCardStorageInterface",
    "EntryStorageInterface",
    "LedgerStorageInterface",
    "PaymentUnitOfWork",
    "Entry",
    "REFERENCE_FIELDS",
    "apply_changes",
    # Exceptions
    "DuplicateError",
    "NotFoundError",
    "ReferenceInUseError",
    "StorageError",
    "StoreUnavailableError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
]

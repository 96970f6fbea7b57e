"""
Data Models Package

This package contains all Pydantic models used by the ledger.
All data flowing through the system must conform to these schemas.
"""

from finledger.models.entry import (
    Account,
    AccountType,
    BatchResult,
    Category,
    CreditCard,
    EntryKind,
    ExpenseEntry,
    GeneratedBatch,
    GenerationMode,
    IncomeEntry,
    LedgerEntry,
    PaymentResult,
    Recurrence,
    TransactionIntent,
    ValidationIssue,
    ValidationResult,
    parse_entry,
    utc_now,
)
from finledger.models.report import (
    MonthlyTotals,
    ReportEntryType,
    ReportFilter,
    ReportResult,
)
from finledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountType",
    "BatchResult",
    "Category",
    "CreditCard",
    "EntryKind",
    "ExpenseEntry",
    "GeneratedBatch",
    "GenerationMode",
    "IncomeEntry",
    "LedgerEntry",
    "PaymentResult",
    "Recurrence",
    "TransactionIntent",
    "ValidationIssue",
    "ValidationResult",
    "parse_entry",
    "utc_now",
    # Report models
    "MonthlyTotals",
    "ReportEntryType",
    "ReportFilter",
    "ReportResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]

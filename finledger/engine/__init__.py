"""Ledger engine: entry generation, scheduling and payment reconciliation."""

from finledger.engine.generator import LedgerEntryGenerator, batch_message
from finledger.engine.reconciliation import (
    PaymentReconciler,
    ReconciliationError,
    UnlinkedAccountError,
)
from finledger.engine.schedule import due_dates, installment_due_dates, step_for

__all__ = [
    "LedgerEntryGenerator",
    "PaymentReconciler",
    "ReconciliationError",
    "UnlinkedAccountError",
    "batch_message",
    "due_dates",
    "installment_due_dates",
    "step_for",
]

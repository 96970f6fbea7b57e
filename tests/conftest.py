"""
Shared fixtures.

Everything runs against the in-memory backend. No network, no credentials.
"""

from datetime import date
from decimal import Decimal

import pytest

from finledger.audit import AuditLogger
from finledger.config import get_settings
from finledger.models.entry import Account, EntryKind, TransactionIntent
from finledger.orchestrator import LedgerService
from finledger.services.storage import InMemoryAuditStorage, InMemoryLedgerStore


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Isolate every test from LEDGER_* variables and the settings cache."""
    for name in (
        "LEDGER_MAX_RECURRENCE_OCCURRENCES",
        "LEDGER_MAX_INSTALLMENTS",
        "LEDGER_LARGE_AMOUNT_WARNING",
        "LEDGER_CURRENCY",
        "STORAGE_BACKEND",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def ledger(store, audit_storage):
    return LedgerService(store, audit_logger=AuditLogger(audit_storage))


@pytest.fixture
def make_intent():
    """Build a valid unique expense intent, overridable per test."""
    def _make(**overrides):
        data = {
            "kind": EntryKind.EXPENSE,
            "description": "Groceries",
            "amount": Decimal("100.00"),
            "start_date": date(2024, 3, 10),
        }
        data.update(overrides)
        return TransactionIntent(**data)
    return _make


@pytest.fixture
def checking_account():
    return Account(
        name="Main",
        bank_name="Banco do Brasil",
        balance=Decimal("500.00"),
    )

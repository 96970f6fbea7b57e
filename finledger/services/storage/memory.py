"""
In-Memory Storage Implementation

Keeps everything in dictionaries. Used by the test-suite and as the default
backend when no remote storage is configured.

Multi-row operations take a lock and validate everything before writing
anything, so a failing batch or payment leaves the store untouched.
Records are copied on the way in and on the way out; callers never hold a
reference to stored state.
"""

import asyncio
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from finledger.models.audit import AuditEvent
from finledger.models.entry import (
    Account,
    Category,
    CreditCard,
    EntryKind,
    ExpenseEntry,
    utc_now,
)
from finledger.services.storage.interface import (
    REFERENCE_FIELDS,
    AuditStorageInterface,
    DuplicateError,
    Entry,
    LedgerStorageInterface,
    NotFoundError,
    apply_changes,
)


class InMemoryLedgerStore(LedgerStorageInterface):
    """Dictionary-backed implementation of every ledger storage interface."""

    def __init__(self):
        self._entries: dict[UUID, Entry] = {}
        self._accounts: dict[UUID, Account] = {}
        self._categories: dict[UUID, Category] = {}
        self._credit_cards: dict[UUID, CreditCard] = {}
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Generic helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _copy(record):
        return record.model_copy(deep=True)

    def _insert(self, table: dict, record, label: str):
        if record.id in table:
            raise DuplicateError(f"{label} already exists: {record.id}")
        table[record.id] = self._copy(record)
        return self._copy(record)

    def _update(self, table: dict, record_id: UUID, changes: dict[str, Any], label: str):
        current = table.get(record_id)
        if current is None:
            raise NotFoundError(f"{label} not found: {record_id}")
        updated = apply_changes(current, changes)
        table[record_id] = updated
        return self._copy(updated)

    def _remove(self, table: dict, record_id: UUID, label: str) -> None:
        if record_id not in table:
            raise NotFoundError(f"{label} not found: {record_id}")
        del table[record_id]

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    async def get_all(self, kind: Optional[EntryKind] = None) -> list[Entry]:
        entries = [
            self._copy(e) for e in self._entries.values()
            if kind is None or e.kind == kind.value
        ]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries

    async def get_by_id(self, entry_id: UUID) -> Optional[Entry]:
        entry = self._entries.get(entry_id)
        return self._copy(entry) if entry else None

    async def create(self, entry: Entry) -> Entry:
        async with self._lock:
            return self._insert(self._entries, entry, "Entry")

    async def create_many(self, entries: list[Entry]) -> list[UUID]:
        async with self._lock:
            ids = [e.id for e in entries]
            if len(set(ids)) != len(ids):
                raise DuplicateError("Batch contains repeated entry ids")
            clashes = [i for i in ids if i in self._entries]
            if clashes:
                raise DuplicateError(f"Entries already exist: {clashes}")
            for entry in entries:
                self._entries[entry.id] = self._copy(entry)
            return ids

    async def update(self, entry_id: UUID, changes: dict[str, Any]) -> Entry:
        async with self._lock:
            return self._update(self._entries, entry_id, changes, "Entry")

    async def delete(self, entry_id: UUID) -> None:
        async with self._lock:
            self._remove(self._entries, entry_id, "Entry")

    async def count_references(self, field: str, ref_id: UUID) -> int:
        if field not in REFERENCE_FIELDS:
            raise ValueError(f"Not a reference field: {field}")
        return sum(
            1 for e in self._entries.values()
            if getattr(e, field, None) == ref_id
        )

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def get_all_accounts(self) -> list[Account]:
        return sorted(
            (self._copy(a) for a in self._accounts.values()),
            key=lambda a: a.created_at,
            reverse=True,
        )

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        account = self._accounts.get(account_id)
        return self._copy(account) if account else None

    async def create_account(self, account: Account) -> Account:
        async with self._lock:
            return self._insert(self._accounts, account, "Account")

    async def update_account(self, account_id: UUID, changes: dict[str, Any]) -> Account:
        async with self._lock:
            return self._update(self._accounts, account_id, changes, "Account")

    async def delete_account(self, account_id: UUID) -> None:
        async with self._lock:
            self._remove(self._accounts, account_id, "Account")

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def get_all_categories(self) -> list[Category]:
        return sorted(
            (self._copy(c) for c in self._categories.values()),
            key=lambda c: c.name.lower(),
        )

    async def get_category(self, category_id: UUID) -> Optional[Category]:
        category = self._categories.get(category_id)
        return self._copy(category) if category else None

    async def create_category(self, category: Category) -> Category:
        async with self._lock:
            return self._insert(self._categories, category, "Category")

    async def update_category(self, category_id: UUID, changes: dict[str, Any]) -> Category:
        async with self._lock:
            return self._update(self._categories, category_id, changes, "Category")

    async def delete_category(self, category_id: UUID) -> None:
        async with self._lock:
            self._remove(self._categories, category_id, "Category")

    # -------------------------------------------------------------------------
    # Credit cards
    # -------------------------------------------------------------------------

    async def get_all_credit_cards(self) -> list[CreditCard]:
        return sorted(
            (self._copy(c) for c in self._credit_cards.values()),
            key=lambda c: c.created_at,
            reverse=True,
        )

    async def get_credit_card(self, card_id: UUID) -> Optional[CreditCard]:
        card = self._credit_cards.get(card_id)
        return self._copy(card) if card else None

    async def create_credit_card(self, card: CreditCard) -> CreditCard:
        async with self._lock:
            return self._insert(self._credit_cards, card, "Credit card")

    async def update_credit_card(self, card_id: UUID, changes: dict[str, Any]) -> CreditCard:
        async with self._lock:
            return self._update(self._credit_cards, card_id, changes, "Credit card")

    async def delete_credit_card(self, card_id: UUID) -> None:
        async with self._lock:
            self._remove(self._credit_cards, card_id, "Credit card")

    # -------------------------------------------------------------------------
    # Payment unit of work
    # -------------------------------------------------------------------------

    async def commit_payment(
        self,
        entry: ExpenseEntry,
        account_id: UUID,
        balance_delta: Decimal,
    ) -> Optional[Account]:
        async with self._lock:
            stored = self._entries.get(entry.id)
            if stored is None:
                raise NotFoundError(f"Entry not found: {entry.id}")
            account = self._accounts.get(account_id)
            if account is None:
                raise NotFoundError(f"Account not found: {account_id}")

            if stored.is_paid == entry.is_paid:
                return None

            # Both new versions are built before either is written
            new_account = account.model_copy(update={
                "balance": account.balance + balance_delta,
                "updated_at": utc_now(),
            })
            new_entry = self._copy(entry)

            self._accounts[account_id] = new_account
            self._entries[entry.id] = new_entry
            return self._copy(new_account)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event.model_copy(deep=True))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]

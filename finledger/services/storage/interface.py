"""
Abstract Storage Interface

The ledger talks to storage only through these interfaces, so the backend
can be swapped (Google Sheets, in-memory for tests, a database later)
without touching business logic.

Every implementation must honour two all-or-nothing operations:
- `create_many`: a batch of generated entries is stored completely or not
  at all.
- `commit_payment`: an expense's paid flag and its account balance change
  together or not at all.

Nothing else in the system may change an account balance.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID

from finledger.models.audit import AuditEvent
from finledger.models.entry import (
    Account,
    Category,
    CreditCard,
    EntryKind,
    ExpenseEntry,
    IncomeEntry,
    utc_now,
)

Entry = Union[IncomeEntry, ExpenseEntry]

# Entry fields that point at other records
REFERENCE_FIELDS = ("account_id", "category_id", "credit_card_id")


class EntryStorageInterface(ABC):
    """Storage for income and expense rows."""

    @abstractmethod
    async def get_all(self, kind: Optional[EntryKind] = None) -> list[Entry]:
        """
        List entries, newest first (by creation time).

        Args:
            kind: Restrict to incomes or expenses

        Raises:
            StoreUnavailableError: If the backend cannot be reached
        """

    @abstractmethod
    async def get_by_id(self, entry_id: UUID) -> Optional[Entry]:
        """Return the entry, or None if it does not exist."""

    @abstractmethod
    async def create(self, entry: Entry) -> Entry:
        """
        Store a single entry.

        Raises:
            DuplicateError: If an entry with the same id exists
        """

    @abstractmethod
    async def create_many(self, entries: list[Entry]) -> list[UUID]:
        """
        Store a batch of entries atomically.

        Returns:
            The ids in the order given

        Raises:
            DuplicateError: If any id already exists (nothing is stored)
        """

    @abstractmethod
    async def update(self, entry_id: UUID, changes: dict[str, Any]) -> Entry:
        """
        Apply a partial update to one entry and return the new version.

        The merged entry is re-validated. `id` and `kind` cannot change.

        Raises:
            NotFoundError: If the entry doesn't exist
            ValueError: If the changes produce an invalid entry
        """

    @abstractmethod
    async def delete(self, entry_id: UUID) -> None:
        """
        Delete one entry. Siblings of an installment series are untouched.

        Raises:
            NotFoundError: If the entry doesn't exist
        """

    @abstractmethod
    async def count_references(self, field: str, ref_id: UUID) -> int:
        """Count entries whose `field` (one of REFERENCE_FIELDS) equals ref_id."""


class AccountStorageInterface(ABC):
    """Storage for bank accounts."""

    @abstractmethod
    async def get_all_accounts(self) -> list[Account]:
        pass

    @abstractmethod
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        pass

    @abstractmethod
    async def create_account(self, account: Account) -> Account:
        pass

    @abstractmethod
    async def update_account(self, account_id: UUID, changes: dict[str, Any]) -> Account:
        """
        Update account metadata.

        Callers must not pass `balance`; see PaymentUnitOfWork.
        """

    @abstractmethod
    async def delete_account(self, account_id: UUID) -> None:
        pass


class CategoryStorageInterface(ABC):
    """Storage for categories."""

    @abstractmethod
    async def get_all_categories(self) -> list[Category]:
        pass

    @abstractmethod
    async def get_category(self, category_id: UUID) -> Optional[Category]:
        pass

    @abstractmethod
    async def create_category(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def update_category(self, category_id: UUID, changes: dict[str, Any]) -> Category:
        pass

    @abstractmethod
    async def delete_category(self, category_id: UUID) -> None:
        pass


class CreditCardStorageInterface(ABC):
    """Storage for credit cards."""

    @abstractmethod
    async def get_all_credit_cards(self) -> list[CreditCard]:
        pass

    @abstractmethod
    async def get_credit_card(self, card_id: UUID) -> Optional[CreditCard]:
        pass

    @abstractmethod
    async def create_credit_card(self, card: CreditCard) -> CreditCard:
        pass

    @abstractmethod
    async def update_credit_card(self, card_id: UUID, changes: dict[str, Any]) -> CreditCard:
        pass

    @abstractmethod
    async def delete_credit_card(self, card_id: UUID) -> None:
        pass


class PaymentUnitOfWork(ABC):
    """The single path through which account balances change."""

    @abstractmethod
    async def commit_payment(
        self,
        entry: ExpenseEntry,
        account_id: UUID,
        balance_delta: Decimal,
    ) -> Optional[Account]:
        """
        Store the new state of `entry` and add `balance_delta` to the
        account balance, atomically.

        The transition is checked against the STORED entry: if its
        `is_paid` already equals `entry.is_paid`, nothing is written and
        None is returned. This keeps double payments from double-debiting.

        Returns:
            The updated account, or None if the transition was already applied

        Raises:
            NotFoundError: If the entry or the account doesn't exist
        """


class LedgerStorageInterface(
    EntryStorageInterface,
    AccountStorageInterface,
    CategoryStorageInterface,
    CreditCardStorageInterface,
    PaymentUnitOfWork,
):
    """Everything the ledger needs from one backend."""


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events of one user action, in chronological order."""

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """All events for one entity, in chronological order."""

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """The most recent events, newest first."""


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ReferenceInUseError(StorageError):
    """Attempted to delete a record that entries still reference."""

    def __init__(self, entity_type: str, entity_id: UUID, reference_count: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reference_count = reference_count
        super().__init__(
            f"{entity_type.replace('_', ' ').capitalize()} {entity_id} is used by "
            f"{reference_count} entries and cannot be deleted"
        )


class StoreUnavailableError(StorageError):
    """Could not reach the storage backend."""
    pass


IMMUTABLE_FIELDS = ("id", "kind", "created_at")


def apply_changes(record, changes: dict[str, Any]):
    """
    Merge a partial update into a stored record and re-validate it.

    Shared by every backend so updates behave the same everywhere.

    Raises:
        ValueError: On unknown or immutable fields, or if the merged
            record fails validation
    """
    model_cls = type(record)
    unknown = set(changes) - set(model_cls.model_fields)
    if unknown:
        raise ValueError(f"Unknown fields for {model_cls.__name__}: {sorted(unknown)}")

    for key in IMMUTABLE_FIELDS:
        if key in changes and changes[key] != getattr(record, key, None):
            raise ValueError(f"Field '{key}' cannot be changed")

    data = record.model_dump()
    data.update(changes)
    data["updated_at"] = utc_now()
    return model_cls.model_validate(data)

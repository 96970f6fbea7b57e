"""
Payment Reconciliation

Marking an expense as paid debits its bank account. The paid flag and the
balance move together through the store's `commit_payment` unit of work,
and this module is the only caller of it.

Transitions are idempotent: paying a paid expense (or un-paying an unpaid
one) returns `applied=False` and leaves the balance alone.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from finledger.models.entry import ExpenseEntry, PaymentResult, utc_now
from finledger.services.storage import LedgerStorageInterface, NotFoundError

logger = structlog.get_logger(__name__)


class ReconciliationError(Exception):
    """Base exception for payment reconciliation."""
    pass


class UnlinkedAccountError(ReconciliationError):
    """The expense has no bank account to debit."""

    def __init__(self, entry_id: UUID):
        self.entry_id = entry_id
        super().__init__(
            f"Expense {entry_id} has no linked bank account and cannot be marked as paid"
        )


class PaymentReconciler:
    """Applies pay / unpay transitions to expenses and their accounts."""

    def __init__(self, store: LedgerStorageInterface):
        self._store = store

    async def _load_expense(self, entry_id: UUID) -> ExpenseEntry:
        entry = await self._store.get_by_id(entry_id)
        if entry is None:
            raise NotFoundError(f"Entry not found: {entry_id}")
        if not isinstance(entry, ExpenseEntry):
            raise ReconciliationError(f"Entry {entry_id} is an income; only expenses can be paid")
        return entry

    async def pay(
        self,
        entry_id: UUID,
        paid_at: Optional[datetime] = None,
    ) -> PaymentResult:
        """
        Mark an expense as paid and debit its account by the entry amount.

        Raises:
            NotFoundError: If the entry or its account doesn't exist
            ReconciliationError: If the entry is not an expense
            UnlinkedAccountError: If the expense has no bank account
        """
        entry = await self._load_expense(entry_id)

        if entry.is_paid:
            return PaymentResult(entry=entry, applied=False)

        if entry.account_id is None:
            raise UnlinkedAccountError(entry_id)

        paid = entry.model_copy(update={
            "is_paid": True,
            "paid_at": paid_at or utc_now(),
            "updated_at": utc_now(),
        })
        return await self._commit(paid, entry.account_id, -entry.amount)

    async def unpay(self, entry_id: UUID) -> PaymentResult:
        """
        Mark a paid expense as unpaid and re-credit its account.

        Raises:
            NotFoundError: If the entry or its account doesn't exist
            ReconciliationError: If the entry is not an expense
            UnlinkedAccountError: If a paid expense lost its account link
        """
        entry = await self._load_expense(entry_id)

        if not entry.is_paid:
            return PaymentResult(entry=entry, applied=False)

        if entry.account_id is None:
            raise UnlinkedAccountError(entry_id)

        unpaid = entry.model_copy(update={
            "is_paid": False,
            "paid_at": None,
            "updated_at": utc_now(),
        })
        return await self._commit(unpaid, entry.account_id, entry.amount)

    async def _commit(self, entry: ExpenseEntry, account_id: UUID, delta) -> PaymentResult:
        account = await self._store.commit_payment(entry, account_id, delta)

        if account is None:
            # Someone else applied the same transition first
            current = await self._load_expense(entry.id)
            return PaymentResult(entry=current, applied=False)

        logger.info(
            "payment_reconciled",
            entry_id=str(entry.id),
            account_id=str(account_id),
            is_paid=entry.is_paid,
            balance_delta=str(delta),
            new_balance=str(account.balance),
        )
        return PaymentResult(
            entry=entry,
            account=account,
            applied=True,
            balance_delta=delta,
        )

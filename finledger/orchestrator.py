"""
Main Orchestrator for the Ledger

This module ties together all the components and defines the end-to-end
flows for:
1. Entry creation (intent → validate → expand → persist → pay if asked)
2. Entry maintenance (update, delete, postpone overdue expenses)
3. Payments (pay / unpay through the reconciler)
4. Accounts, categories and credit cards
5. Reports

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is persisted before the whole intent is validated and expanded
- Account balances change only through PaymentReconciler
- Records still referenced by entries cannot be deleted
- Every step is audited, and the report is refreshed after every mutation
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from finledger.audit import AuditLogger, create_correlation_id
from finledger.config import get_settings
from finledger.engine import (
    LedgerEntryGenerator,
    PaymentReconciler,
    ReconciliationError,
    UnlinkedAccountError,
    batch_message,
)
from finledger.models.audit import AuditEventType
from finledger.models.entry import (
    Account,
    BatchResult,
    Category,
    CreditCard,
    EntryKind,
    ExpenseEntry,
    GenerationMode,
    PaymentResult,
    TransactionIntent,
    ValidationIssue,
    utc_now,
)
from finledger.models.report import ReportFilter, ReportResult
from finledger.reports import ReportService
from finledger.services.storage import (
    DuplicateError,
    Entry,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStorageInterface,
    NotFoundError,
    ReferenceInUseError,
    StorageError,
    apply_changes,
)
from finledger.validation import IntentValidator, InvalidIntentError

logger = structlog.get_logger(__name__)

# Fields of a paid expense that would desynchronise the account balance
PAYMENT_LOCKED_FIELDS = ("amount", "account_id")


def _rejection(field: str, message: str, issue_type: str = "invalid_value") -> InvalidIntentError:
    issue = ValidationIssue(
        field=field,
        issue_type=issue_type,
        message=message,
        severity="error",
    )
    return InvalidIntentError(message, issues=[issue])


class LedgerService:
    """
    Entry point for every ledger operation.

    Flow for a new entry:
    1. Validate → Two-stage validation, including stored references
    2. Expand → Generator builds every row in memory
    3. Persist → One row, or one atomic batch
    4. Pay → Only for unique expenses created as already paid
    5. Refresh → Recompute the active report
    """

    def __init__(
        self,
        store: LedgerStorageInterface,
        validator: Optional[IntentValidator] = None,
        generator: Optional[LedgerEntryGenerator] = None,
        reconciler: Optional[PaymentReconciler] = None,
        audit_logger: Optional[AuditLogger] = None,
        report_service: Optional[ReportService] = None,
    ):
        self._store = store
        self._validator = validator or IntentValidator(store)
        self._generator = generator or LedgerEntryGenerator(self._validator)
        self._reconciler = reconciler or PaymentReconciler(store)
        self._audit = audit_logger or AuditLogger()
        self._reports = report_service or ReportService(store)

    @property
    def reports(self) -> ReportService:
        return self._reports

    # =========================================================================
    # Internal helpers
    # =========================================================================

    @asynccontextmanager
    async def _storage_errors(self, operation: str, correlation_id: UUID):
        """Audit backend failures, then let them propagate."""
        try:
            yield
        except (NotFoundError, DuplicateError, ReferenceInUseError):
            raise
        except StorageError as e:
            await self._audit.log_storage_error(
                operation=operation,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise

    async def _after_mutation(self) -> None:
        await self._reports.refresh()

    async def _get_entry(self, entry_id: UUID) -> Entry:
        entry = await self._store.get_by_id(entry_id)
        if entry is None:
            raise NotFoundError(f"Entry not found: {entry_id}")
        return entry

    async def _check_references(self, changes: dict[str, Any], kind: EntryKind) -> None:
        lookups = (
            ("account_id", self._store.get_account, "Account"),
            ("credit_card_id", self._store.get_credit_card, "Credit card"),
            ("category_id", self._store.get_category, "Category"),
        )
        for field, getter, label in lookups:
            ref_id = changes.get(field)
            if ref_id is None:
                continue
            record = await getter(ref_id)
            if record is None:
                raise _rejection(field, f"{label} {ref_id} does not exist", "not_found")
            if isinstance(record, Category) and record.type != kind:
                raise _rejection(
                    field,
                    f"Category '{record.name}' is for {record.type.value}s, not {kind.value}s",
                    "conflict",
                )

    # =========================================================================
    # Entries
    # =========================================================================

    async def create_entry(
        self,
        intent: TransactionIntent,
        correlation_id: Optional[UUID] = None,
    ) -> Union[Entry, BatchResult]:
        """
        Validate, expand and persist a transaction intent.

        Returns:
            The stored entry for a unique intent, or a BatchResult with the
            ids and a summary message when the intent expanded into a series.

        Raises:
            InvalidIntentError: If the intent fails validation (nothing stored)
            StorageError: If persisting fails (nothing stored)
        """
        correlation_id = correlation_id or create_correlation_id()

        result = await self._validator.validate(intent)
        if not result.is_valid:
            await self._audit.log_intent_rejected(
                intent_id=intent.intent_id,
                issues=[issue.model_dump() for issue in result.errors],
                correlation_id=correlation_id,
            )
            raise InvalidIntentError.from_result(result)

        for warning in result.warnings:
            logger.warning("intent_warning", intent_id=str(intent.intent_id), warning=warning)

        batch = self._generator.generate(intent)

        if batch.mode == GenerationMode.UNIQUE:
            async with self._storage_errors("create entry", correlation_id):
                entry = await self._store.create(batch.entries[0])
            await self._audit.log_entry_created(
                entry_id=entry.id,
                kind=entry.kind,
                amount=entry.amount,
                correlation_id=correlation_id,
            )
            if intent.is_paid:
                payment = await self.pay_expense(entry.id, correlation_id=correlation_id)
                return payment.entry
            await self._after_mutation()
            return entry

        async with self._storage_errors("create entry batch", correlation_id):
            ids = await self._store.create_many(batch.entries)

        await self._audit.log_batch_created(
            intent_id=intent.intent_id,
            mode=batch.mode.value,
            entry_ids=ids,
            total_amount=batch.total_amount,
            correlation_id=correlation_id,
        )
        await self._after_mutation()

        return BatchResult(
            ids=ids,
            message=batch_message(batch),
            mode=batch.mode,
            total_amount=batch.total_amount,
        )

    async def list_entries(self, kind: Optional[EntryKind] = None) -> list[Entry]:
        """All entries, newest first."""
        return await self._store.get_all(kind)

    async def get_entry(self, entry_id: UUID) -> Entry:
        """
        Raises:
            NotFoundError: If the entry doesn't exist
        """
        return await self._get_entry(entry_id)

    async def update_entry(
        self,
        entry_id: UUID,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Entry:
        """
        Update a single entry. Sibling installments are not touched.

        `is_paid` changes are routed through the reconciler so the account
        balance follows. `paid_at` cannot be set directly, and a paid
        expense must be unpaid before its amount or account changes.
        Nothing is written unless every check passes.

        Raises:
            NotFoundError: If the entry doesn't exist
            InvalidIntentError: If the change is not allowed or invalid
            UnlinkedAccountError: If asked to pay an expense without account
        """
        correlation_id = correlation_id or create_correlation_id()
        entry = await self._get_entry(entry_id)
        changes = dict(changes)

        if "paid_at" in changes:
            raise _rejection("paid_at", "paid_at is set by paying the expense")

        wants_paid = changes.pop("is_paid", None)
        if wants_paid is not None and not isinstance(entry, ExpenseEntry):
            raise _rejection("is_paid", "Only expenses can be marked as paid")

        is_paid = isinstance(entry, ExpenseEntry) and entry.is_paid
        stays_paid = is_paid and wants_paid is not False
        if stays_paid:
            locked = [
                field for field in PAYMENT_LOCKED_FIELDS
                if field in changes and changes[field] != getattr(entry, field)
            ]
            if locked:
                raise _rejection(
                    locked[0],
                    f"Cannot change {', '.join(locked)} of a paid expense; mark it unpaid first",
                    "conflict",
                )

        # Validate the final record before the first write
        preview_changes = dict(changes)
        if wants_paid is False and is_paid:
            preview_changes.update(is_paid=False, paid_at=None)
        elif wants_paid is True and not is_paid:
            preview_changes.update(is_paid=True, paid_at=utc_now())
        try:
            preview = apply_changes(entry, preview_changes)
        except ValueError as e:
            raise _rejection("entry", f"Invalid update: {e}")

        await self._check_references(changes, EntryKind(entry.kind))

        if wants_paid is True and not is_paid and preview.account_id is None:
            error = UnlinkedAccountError(entry_id)
            await self._audit.log_payment_rejected(
                entry_id=entry_id,
                reason=str(error),
                correlation_id=correlation_id,
            )
            raise error

        if wants_paid is False and is_paid:
            await self.unpay_expense(entry_id, correlation_id=correlation_id)

        if changes:
            try:
                async with self._storage_errors("update entry", correlation_id):
                    entry = await self._store.update(entry_id, changes)
            except StorageError:
                raise
            except ValueError as e:
                raise _rejection("entry", f"Invalid update: {e}")
            await self._audit.log_entry_updated(
                entry_id=entry_id,
                changed_fields=sorted(changes),
                correlation_id=correlation_id,
            )

        if wants_paid is True and not is_paid:
            payment = await self.pay_expense(entry_id, correlation_id=correlation_id)
            entry = payment.entry
        elif wants_paid is not None:
            entry = await self._get_entry(entry_id)

        await self._after_mutation()
        return entry

    async def delete_entry(
        self,
        entry_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete a single entry. Sibling installments are not touched, and
        the balance effect of a paid expense stays in place.

        Raises:
            NotFoundError: If the entry doesn't exist
        """
        correlation_id = correlation_id or create_correlation_id()
        async with self._storage_errors("delete entry", correlation_id):
            await self._store.delete(entry_id)
        await self._audit.log_entry_deleted(entry_id=entry_id, correlation_id=correlation_id)
        await self._after_mutation()

    async def postpone_unpaid_expenses(
        self,
        as_of: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Move every unpaid expense due before `as_of` to `as_of`.

        The first original due date is kept when an expense is postponed
        more than once.

        Returns:
            Number of expenses moved
        """
        correlation_id = correlation_id or create_correlation_id()
        as_of = as_of or date.today()

        expenses = await self._store.get_all(EntryKind.EXPENSE)
        overdue = [e for e in expenses if not e.is_paid and e.due_date < as_of]

        moved = []
        async with self._storage_errors("postpone expenses", correlation_id):
            for expense in overdue:
                await self._store.update(expense.id, {
                    "due_date": as_of,
                    "is_postponed": True,
                    "original_due_date": expense.original_due_date or expense.due_date,
                })
                moved.append(expense.id)

        if moved:
            await self._audit.log_postponed(
                entry_ids=moved,
                new_due_date=as_of.isoformat(),
                correlation_id=correlation_id,
            )
            await self._after_mutation()

        return len(moved)

    # =========================================================================
    # Payments
    # =========================================================================

    async def pay_expense(
        self,
        entry_id: UUID,
        paid_at: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> PaymentResult:
        """
        Mark an expense as paid and debit its account.

        Raises:
            NotFoundError: If the entry or its account doesn't exist
            UnlinkedAccountError: If the expense has no bank account
            ReconciliationError: If the entry is not an expense
        """
        correlation_id = correlation_id or create_correlation_id()
        try:
            async with self._storage_errors("pay expense", correlation_id):
                result = await self._reconciler.pay(entry_id, paid_at)
        except ReconciliationError as e:
            await self._audit.log_payment_rejected(
                entry_id=entry_id,
                reason=str(e),
                correlation_id=correlation_id,
            )
            raise

        if result.applied:
            await self._audit.log_expense_paid(
                entry_id=entry_id,
                account_id=result.account.id,
                amount=result.entry.amount,
                new_balance=result.account.balance,
                correlation_id=correlation_id,
            )
            await self._after_mutation()
        return result

    async def unpay_expense(
        self,
        entry_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> PaymentResult:
        """
        Mark a paid expense as unpaid and re-credit its account.

        Raises:
            NotFoundError: If the entry or its account doesn't exist
            ReconciliationError: If the entry is not an expense
        """
        correlation_id = correlation_id or create_correlation_id()
        try:
            async with self._storage_errors("unpay expense", correlation_id):
                result = await self._reconciler.unpay(entry_id)
        except ReconciliationError as e:
            await self._audit.log_payment_rejected(
                entry_id=entry_id,
                reason=str(e),
                correlation_id=correlation_id,
            )
            raise

        if result.applied:
            await self._audit.log_expense_unpaid(
                entry_id=entry_id,
                account_id=result.account.id,
                amount=result.entry.amount,
                new_balance=result.account.balance,
                correlation_id=correlation_id,
            )
            await self._after_mutation()
        return result

    # =========================================================================
    # Accounts, categories, credit cards
    # =========================================================================

    async def _ensure_unreferenced(self, entity_type: str, field: str, ref_id: UUID) -> None:
        count = await self._store.count_references(field, ref_id)
        if count:
            raise ReferenceInUseError(entity_type, ref_id, count)

    async def create_account(
        self,
        account: Account,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """Store a new account. Its balance is the opening balance."""
        correlation_id = correlation_id or create_correlation_id()
        async with self._storage_errors("create account", correlation_id):
            created = await self._store.create_account(account)
        await self._audit.log_reference_changed(
            AuditEventType.ACCOUNT_CREATED, "account", created.id, created.name, correlation_id
        )
        return created

    async def list_accounts(self) -> list[Account]:
        return await self._store.get_all_accounts()

    async def get_account(self, account_id: UUID) -> Account:
        account = await self._store.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return account

    async def update_account(
        self,
        account_id: UUID,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """
        Update account metadata.

        Raises:
            InvalidIntentError: If `balance` is among the changes
            NotFoundError: If the account doesn't exist
        """
        correlation_id = correlation_id or create_correlation_id()
        if "balance" in changes:
            raise _rejection(
                "balance",
                "Account balance changes only through expense payments",
                "conflict",
            )
        try:
            async with self._storage_errors("update account", correlation_id):
                updated = await self._store.update_account(account_id, changes)
        except StorageError:
            raise
        except ValueError as e:
            raise _rejection("account", f"Invalid update: {e}")
        await self._audit.log_reference_changed(
            AuditEventType.ACCOUNT_UPDATED, "account", account_id, updated.name, correlation_id
        )
        return updated

    async def delete_account(
        self,
        account_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Raises:
            ReferenceInUseError: If entries still use the account
            NotFoundError: If the account doesn't exist
        """
        correlation_id = correlation_id or create_correlation_id()
        account = await self.get_account(account_id)
        await self._ensure_unreferenced("account", "account_id", account_id)
        async with self._storage_errors("delete account", correlation_id):
            await self._store.delete_account(account_id)
        await self._audit.log_reference_changed(
            AuditEventType.ACCOUNT_DELETED, "account", account_id, account.name, correlation_id
        )

    async def create_category(
        self,
        category: Category,
        correlation_id: Optional[UUID] = None,
    ) -> Category:
        correlation_id = correlation_id or create_correlation_id()
        async with self._storage_errors("create category", correlation_id):
            created = await self._store.create_category(category)
        await self._audit.log_reference_changed(
            AuditEventType.CATEGORY_CREATED, "category", created.id, created.name, correlation_id
        )
        return created

    async def list_categories(self, kind: Optional[EntryKind] = None) -> list[Category]:
        """Categories sorted by name, optionally only those of one type."""
        categories = await self._store.get_all_categories()
        if kind is not None:
            categories = [c for c in categories if c.type == kind]
        return categories

    async def update_category(
        self,
        category_id: UUID,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Category:
        correlation_id = correlation_id or create_correlation_id()
        try:
            async with self._storage_errors("update category", correlation_id):
                updated = await self._store.update_category(category_id, changes)
        except StorageError:
            raise
        except ValueError as e:
            raise _rejection("category", f"Invalid update: {e}")
        await self._audit.log_reference_changed(
            AuditEventType.CATEGORY_UPDATED, "category", category_id, updated.name, correlation_id
        )
        return updated

    async def delete_category(
        self,
        category_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Raises:
            ReferenceInUseError: If entries still use the category
            NotFoundError: If the category doesn't exist
        """
        correlation_id = correlation_id or create_correlation_id()
        category = await self._store.get_category(category_id)
        if category is None:
            raise NotFoundError(f"Category not found: {category_id}")
        await self._ensure_unreferenced("category", "category_id", category_id)
        async with self._storage_errors("delete category", correlation_id):
            await self._store.delete_category(category_id)
        await self._audit.log_reference_changed(
            AuditEventType.CATEGORY_DELETED, "category", category_id, category.name, correlation_id
        )

    async def create_credit_card(
        self,
        card: CreditCard,
        correlation_id: Optional[UUID] = None,
    ) -> CreditCard:
        correlation_id = correlation_id or create_correlation_id()
        async with self._storage_errors("create credit card", correlation_id):
            created = await self._store.create_credit_card(card)
        await self._audit.log_reference_changed(
            AuditEventType.CREDIT_CARD_CREATED, "credit_card", created.id, created.name, correlation_id
        )
        return created

    async def list_credit_cards(self) -> list[CreditCard]:
        return await self._store.get_all_credit_cards()

    async def update_credit_card(
        self,
        card_id: UUID,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> CreditCard:
        correlation_id = correlation_id or create_correlation_id()
        try:
            async with self._storage_errors("update credit card", correlation_id):
                updated = await self._store.update_credit_card(card_id, changes)
        except StorageError:
            raise
        except ValueError as e:
            raise _rejection("credit_card", f"Invalid update: {e}")
        await self._audit.log_reference_changed(
            AuditEventType.CREDIT_CARD_UPDATED, "credit_card", card_id, updated.name, correlation_id
        )
        return updated

    async def delete_credit_card(
        self,
        card_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Raises:
            ReferenceInUseError: If expenses still use the card
            NotFoundError: If the card doesn't exist
        """
        correlation_id = correlation_id or create_correlation_id()
        card = await self._store.get_credit_card(card_id)
        if card is None:
            raise NotFoundError(f"Credit card not found: {card_id}")
        await self._ensure_unreferenced("credit_card", "credit_card_id", card_id)
        async with self._storage_errors("delete credit card", correlation_id):
            await self._store.delete_credit_card(card_id)
        await self._audit.log_reference_changed(
            AuditEventType.CREDIT_CARD_DELETED, "credit_card", card_id, card.name, correlation_id
        )

    # =========================================================================
    # Reports
    # =========================================================================

    async def report(
        self,
        report_filter: Optional[ReportFilter] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ReportResult:
        """
        Make `report_filter` the active filter (if given) and return the
        recomputed report.
        """
        correlation_id = correlation_id or create_correlation_id()
        async with self._storage_errors("generate report", correlation_id):
            if report_filter is not None:
                result = await self._reports.set_filter(report_filter)
            else:
                result = await self._reports.refresh()
        await self._audit.log_report_generated(
            result_count=result.result_count,
            filter_description=result.description,
            correlation_id=correlation_id,
        )
        return result


def create_app_components(
    use_storage: bool = True,
) -> tuple[LedgerService, ReportService, LedgerStorageInterface]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to use the configured storage backend.
                    When False (or when the backend cannot be set up),
                    everything runs in memory.

    Returns:
        (ledger_service, report_service, store)
    """
    settings = get_settings()
    # structlog renders through the stdlib logger
    logging.basicConfig(level=settings.app.log_level, format="%(message)s")

    store: Optional[LedgerStorageInterface] = None
    audit_storage = None

    if use_storage and settings.app.storage_backend == "google_sheets":
        try:
            sheets_client = GoogleSheetsClient()
            store = GoogleSheetsLedgerStore(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", backend="google_sheets", error=str(e))
            store = None

    if store is None:
        store = InMemoryLedgerStore()
        audit_storage = InMemoryAuditStorage()

    audit_logger = AuditLogger(audit_storage)
    report_service = ReportService(store)
    ledger_service = LedgerService(
        store=store,
        audit_logger=audit_logger,
        report_service=report_service,
    )

    return ledger_service, report_service, store

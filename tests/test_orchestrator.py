"""Flow tests for LedgerService against the in-memory store."""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from finledger.engine import UnlinkedAccountError
from finledger.models.audit import AuditEventType
from finledger.models.entry import (
    Account,
    BatchResult,
    Category,
    CreditCard,
    EntryKind,
    ExpenseEntry,
    GenerationMode,
    Recurrence,
)
from finledger.models.report import ReportFilter
from finledger.orchestrator import LedgerService, create_app_components
from finledger.services.storage import (
    InMemoryLedgerStore,
    NotFoundError,
    ReferenceInUseError,
    StoreUnavailableError,
)
from finledger.validation import InvalidIntentError


async def _event_types(audit_storage):
    return [e.event_type for e in await audit_storage.get_recent_events()]


class TestCreateEntry:
    """Tests for LedgerService.create_entry."""

    @pytest.mark.asyncio
    async def test_unique_returns_entry(self, ledger, store, make_intent, audit_storage):
        """Test a unique intent returns the stored entry itself."""
        entry = await ledger.create_entry(make_intent())
        assert isinstance(entry, ExpenseEntry)
        assert await store.get_by_id(entry.id) == entry
        assert AuditEventType.ENTRY_CREATED in await _event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_installments_return_batch_result(self, ledger, store, make_intent):
        """Test an installment intent returns ids and a message."""
        result = await ledger.create_entry(make_intent(installment_count=3))
        assert isinstance(result, BatchResult)
        assert result.mode == GenerationMode.INSTALLMENT
        assert result.message == "3 installments created"
        assert result.total_amount == Decimal("300.00")
        assert len(result.ids) == 3
        assert len(await store.get_all()) == 3

    @pytest.mark.asyncio
    async def test_recurrence_batch(self, ledger, make_intent):
        """Test a recurring intent stores twelve occurrences."""
        result = await ledger.create_entry(make_intent(recurrence=Recurrence.MONTHLY))
        assert len(result.ids) == 12
        assert result.message == "12 monthly occurrences created"

    @pytest.mark.asyncio
    async def test_invalid_intent_stores_nothing(self, ledger, store, make_intent, audit_storage):
        """Test a rejected intent is audited and nothing is persisted."""
        with pytest.raises(InvalidIntentError) as exc_info:
            await ledger.create_entry(make_intent(amount=Decimal("0"), installment_count=5))
        assert exc_info.value.issues
        assert await store.get_all() == []
        assert AuditEventType.INTENT_REJECTED in await _event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_unknown_reference_rejected(self, ledger, make_intent):
        """Test references are checked against storage before creating."""
        with pytest.raises(InvalidIntentError):
            await ledger.create_entry(make_intent(account_id=uuid4()))

    @pytest.mark.asyncio
    async def test_created_paid(self, ledger, store, make_intent, checking_account):
        """Test a unique expense created as paid debits the account."""
        account = await ledger.create_account(checking_account)
        entry = await ledger.create_entry(make_intent(is_paid=True, account_id=account.id))
        assert entry.is_paid is True
        assert (await store.get_account(account.id)).balance == Decimal("400.00")

    @pytest.mark.asyncio
    async def test_report_refreshed_after_create(self, ledger, make_intent):
        """Test the active report follows mutations."""
        await ledger.report(ReportFilter(month=3, year=2024))
        await ledger.create_entry(make_intent(amount=Decimal("10.50")))
        await ledger.create_entry(make_intent(amount=Decimal("20.25")))
        assert ledger.reports.latest.expense_total == Decimal("30.75")


class TestPayments:
    """Tests for the payment flows."""

    @pytest.mark.asyncio
    async def test_pay_and_repeat(self, ledger, store, make_intent, checking_account, audit_storage):
        """Test 500 - 100 = 400, and paying again keeps 400."""
        account = await ledger.create_account(checking_account)
        entry = await ledger.create_entry(make_intent(account_id=account.id))

        first = await ledger.pay_expense(entry.id)
        second = await ledger.pay_expense(entry.id)

        assert first.applied and not second.applied
        assert (await store.get_account(account.id)).balance == Decimal("400.00")
        assert (await _event_types(audit_storage)).count(AuditEventType.EXPENSE_PAID) == 1

    @pytest.mark.asyncio
    async def test_unlinked_payment_audited(self, ledger, store, make_intent, audit_storage):
        """Test an unlinked payment fails, is audited and leaves the entry unpaid."""
        entry = await ledger.create_entry(make_intent())
        with pytest.raises(UnlinkedAccountError):
            await ledger.pay_expense(entry.id)
        assert (await store.get_by_id(entry.id)).is_paid is False
        assert AuditEventType.PAYMENT_REJECTED in await _event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_unpay(self, ledger, store, make_intent, checking_account):
        """Test un-paying restores the balance."""
        account = await ledger.create_account(checking_account)
        entry = await ledger.create_entry(make_intent(account_id=account.id))
        await ledger.pay_expense(entry.id)
        await ledger.unpay_expense(entry.id)
        assert (await store.get_account(account.id)).balance == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_report_paid_totals_refresh(self, ledger, make_intent, checking_account):
        """Test paying moves the amount from pending to paid in the report."""
        account = await ledger.create_account(checking_account)
        entry = await ledger.create_entry(make_intent(account_id=account.id))
        await ledger.report()
        assert ledger.reports.latest.pending_expense_total == Decimal("100.00")
        await ledger.pay_expense(entry.id)
        assert ledger.reports.latest.paid_expense_total == Decimal("100.00")
        assert ledger.reports.latest.pending_expense_total == Decimal("0.00")


class TestUpdateEntry:
    """Tests for LedgerService.update_entry."""

    @pytest.mark.asyncio
    async def test_plain_update(self, ledger, make_intent):
        """Test ordinary fields can change."""
        entry = await ledger.create_entry(make_intent())
        updated = await ledger.update_entry(entry.id, {"description": "Market", "amount": Decimal("80")})
        assert updated.description == "Market"
        assert updated.amount == Decimal("80")

    @pytest.mark.asyncio
    async def test_is_paid_routed_to_reconciler(self, ledger, store, make_intent, checking_account):
        """Test setting is_paid through update moves the balance."""
        account = await ledger.create_account(checking_account)
        entry = await ledger.create_entry(make_intent(account_id=account.id))

        paid = await ledger.update_entry(entry.id, {"is_paid": True})
        assert paid.is_paid is True
        assert (await store.get_account(account.id)).balance == Decimal("400.00")

        unpaid = await ledger.update_entry(entry.id, {"is_paid": False})
        assert unpaid.is_paid is False
        assert (await store.get_account(account.id)).balance == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_link_account_and_pay_in_one_update(self, ledger, store, make_intent, checking_account):
        """Test the account change is applied before paying."""
        account = await ledger.create_account(checking_account)
        entry = await ledger.create_entry(make_intent())
        paid = await ledger.update_entry(entry.id, {"account_id": account.id, "is_paid": True})
        assert paid.is_paid is True
        assert paid.account_id == account.id
        assert (await store.get_account(account.id)).balance == Decimal("400.00")

    @pytest.mark.asyncio
    async def test_paid_amount_is_locked(self, ledger, make_intent, checking_account):
        """Test a paid expense's amount cannot change."""
        account = await ledger.create_account(checking_account)
        entry = await ledger.create_entry(make_intent(account_id=account.id))
        await ledger.pay_expense(entry.id)
        with pytest.raises(InvalidIntentError, match="unpaid first"):
            await ledger.update_entry(entry.id, {"amount": Decimal("150")})

    @pytest.mark.asyncio
    async def test_unpay_then_change_amount(self, ledger, store, make_intent, checking_account):
        """Test un-paying and changing the amount together is allowed."""
        account = await ledger.create_account(checking_account)
        entry = await ledger.create_entry(make_intent(account_id=account.id))
        await ledger.pay_expense(entry.id)
        updated = await ledger.update_entry(entry.id, {"is_paid": False, "amount": Decimal("150")})
        assert updated.amount == Decimal("150")
        assert updated.is_paid is False
        assert (await store.get_account(account.id)).balance == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_paid_at_not_settable(self, ledger, make_intent):
        """Test the payment timestamp cannot be written directly."""
        entry = await ledger.create_entry(make_intent())
        with pytest.raises(InvalidIntentError):
            await ledger.update_entry(entry.id, {"paid_at": None})

    @pytest.mark.asyncio
    async def test_income_cannot_be_paid(self, ledger, make_intent):
        """Test is_paid on an income is rejected."""
        entry = await ledger.create_entry(make_intent(kind=EntryKind.INCOME))
        with pytest.raises(InvalidIntentError):
            await ledger.update_entry(entry.id, {"is_paid": True})

    @pytest.mark.asyncio
    async def test_invalid_values_rejected(self, ledger, make_intent):
        """Test model rules are enforced on update."""
        entry = await ledger.create_entry(make_intent())
        with pytest.raises(InvalidIntentError):
            await ledger.update_entry(entry.id, {"amount": Decimal("-1")})

    @pytest.mark.asyncio
    async def test_unknown_reference_rejected(self, ledger, make_intent):
        """Test updates cannot point at missing records."""
        entry = await ledger.create_entry(make_intent())
        with pytest.raises(InvalidIntentError):
            await ledger.update_entry(entry.id, {"category_id": uuid4()})

    @pytest.mark.asyncio
    async def test_category_kind_must_match(self, ledger, store, make_intent):
        """Test an expense cannot be moved into an income category."""
        salary = await ledger.create_category(Category(name="Salary", type=EntryKind.INCOME))
        food = await ledger.create_category(Category(name="Food", type=EntryKind.EXPENSE))
        entry = await ledger.create_entry(make_intent(category_id=food.id))

        with pytest.raises(InvalidIntentError, match="Salary"):
            await ledger.update_entry(entry.id, {"category_id": salary.id})
        assert (await store.get_by_id(entry.id)).category_id == food.id

    @pytest.mark.asyncio
    async def test_pay_unlinked_leaves_entry_untouched(self, ledger, store, make_intent, audit_storage):
        """Test a rejected pay-and-edit update writes nothing."""
        entry = await ledger.create_entry(make_intent())

        with pytest.raises(UnlinkedAccountError):
            await ledger.update_entry(entry.id, {"amount": Decimal("50"), "is_paid": True})

        stored = await store.get_by_id(entry.id)
        assert stored.amount == Decimal("100.00")
        assert stored.is_paid is False
        event_types = await _event_types(audit_storage)
        assert AuditEventType.PAYMENT_REJECTED in event_types
        assert AuditEventType.ENTRY_UPDATED not in event_types

    @pytest.mark.asyncio
    async def test_rejected_unpay_keeps_payment(self, ledger, store, make_intent, checking_account):
        """Test an invalid edit bundled with un-paying leaves the payment in place."""
        account = await ledger.create_account(checking_account)
        entry = await ledger.create_entry(make_intent(account_id=account.id))
        await ledger.pay_expense(entry.id)

        with pytest.raises(InvalidIntentError):
            await ledger.update_entry(entry.id, {"is_paid": False, "amount": Decimal("-5")})

        stored = await store.get_by_id(entry.id)
        assert stored.is_paid is True
        assert stored.amount == Decimal("100.00")
        assert (await store.get_account(account.id)).balance == Decimal("400.00")

    @pytest.mark.asyncio
    async def test_rejected_reference_keeps_payment(self, ledger, store, make_intent, checking_account):
        """Test an unknown reference bundled with un-paying leaves the payment in place."""
        account = await ledger.create_account(checking_account)
        entry = await ledger.create_entry(make_intent(account_id=account.id))
        await ledger.pay_expense(entry.id)

        with pytest.raises(InvalidIntentError):
            await ledger.update_entry(entry.id, {"is_paid": False, "category_id": uuid4()})

        assert (await store.get_by_id(entry.id)).is_paid is True
        assert (await store.get_account(account.id)).balance == Decimal("400.00")

    @pytest.mark.asyncio
    async def test_update_missing_entry(self, ledger):
        """Test updating an unknown entry raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await ledger.update_entry(uuid4(), {"description": "x"})

    @pytest.mark.asyncio
    async def test_update_does_not_cascade(self, ledger, store, make_intent):
        """Test editing one installment leaves its siblings alone."""
        result = await ledger.create_entry(make_intent(installment_count=3))
        await ledger.update_entry(result.ids[0], {"description": "Changed"})
        descriptions = sorted(e.description for e in await store.get_all())
        assert descriptions == ["Changed", "Groceries", "Groceries"]


class TestDeleteAndPostpone:
    """Tests for deleting and postponing entries."""

    @pytest.mark.asyncio
    async def test_delete_entry(self, ledger, store, make_intent, audit_storage):
        """Test delete removes one row and is audited."""
        result = await ledger.create_entry(make_intent(installment_count=2))
        await ledger.delete_entry(result.ids[0])
        assert len(await store.get_all()) == 1
        assert AuditEventType.ENTRY_DELETED in await _event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_delete_missing(self, ledger):
        """Test deleting an unknown entry raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await ledger.delete_entry(uuid4())

    @pytest.mark.asyncio
    async def test_postpone_overdue(self, ledger, store, make_intent, checking_account):
        """Test only unpaid overdue expenses move, keeping their first due date."""
        account = await ledger.create_account(checking_account)
        overdue = await ledger.create_entry(make_intent(start_date=date(2024, 3, 1)))
        paid = await ledger.create_entry(
            make_intent(start_date=date(2024, 3, 2), account_id=account.id, is_paid=True)
        )
        future = await ledger.create_entry(make_intent(start_date=date(2024, 4, 1)))
        income = await ledger.create_entry(
            make_intent(kind=EntryKind.INCOME, start_date=date(2024, 3, 1))
        )

        moved = await ledger.postpone_unpaid_expenses(date(2024, 3, 15))
        assert moved == 1

        stored = await store.get_by_id(overdue.id)
        assert stored.due_date == date(2024, 3, 15)
        assert stored.is_postponed is True
        assert stored.original_due_date == date(2024, 3, 1)
        assert (await store.get_by_id(paid.id)).due_date == date(2024, 3, 2)
        assert (await store.get_by_id(future.id)).due_date == date(2024, 4, 1)
        assert (await store.get_by_id(income.id)).due_date == date(2024, 3, 1)

        # Postponing again keeps the first original due date
        assert await ledger.postpone_unpaid_expenses(date(2024, 3, 20)) == 1
        stored = await store.get_by_id(overdue.id)
        assert stored.due_date == date(2024, 3, 20)
        assert stored.original_due_date == date(2024, 3, 1)


class TestReferenceRecords:
    """Tests for accounts, categories and credit cards."""

    @pytest.mark.asyncio
    async def test_account_balance_not_updatable(self, ledger, checking_account):
        """Test balances only change through payments."""
        account = await ledger.create_account(checking_account)
        with pytest.raises(InvalidIntentError):
            await ledger.update_account(account.id, {"balance": Decimal("1000")})
        renamed = await ledger.update_account(account.id, {"name": "Primary"})
        assert renamed.name == "Primary"
        assert renamed.balance == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_referenced_account_not_deletable(self, ledger, make_intent, checking_account):
        """Test an account used by entries cannot be deleted."""
        account = await ledger.create_account(checking_account)
        await ledger.create_entry(make_intent(account_id=account.id))
        with pytest.raises(ReferenceInUseError) as exc_info:
            await ledger.delete_account(account.id)
        assert exc_info.value.reference_count == 1

    @pytest.mark.asyncio
    async def test_category_lifecycle(self, ledger, make_intent, audit_storage):
        """Test a category can be deleted once no entry uses it."""
        category = await ledger.create_category(Category(name="Food", type=EntryKind.EXPENSE))
        entry = await ledger.create_entry(make_intent(category_id=category.id))

        with pytest.raises(ReferenceInUseError):
            await ledger.delete_category(category.id)

        await ledger.delete_entry(entry.id)
        await ledger.delete_category(category.id)
        assert await ledger.list_categories() == []
        assert AuditEventType.CATEGORY_DELETED in await _event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_list_categories_by_kind(self, ledger):
        """Test categories can be listed per type."""
        await ledger.create_category(Category(name="Food", type=EntryKind.EXPENSE))
        await ledger.create_category(Category(name="Salary", type=EntryKind.INCOME))
        names = [c.name for c in await ledger.list_categories(EntryKind.INCOME)]
        assert names == ["Salary"]

    @pytest.mark.asyncio
    async def test_credit_card_lifecycle(self, ledger, make_intent):
        """Test card expenses block card deletion."""
        card = await ledger.create_credit_card(
            CreditCard(name="Gold", bank_name="Nubank", limit_amount=Decimal("2000"), due_day=10)
        )
        updated = await ledger.update_credit_card(card.id, {"due_day": 15})
        assert updated.due_day == 15

        await ledger.create_entry(make_intent(credit_card_id=card.id, installment_count=2))
        with pytest.raises(ReferenceInUseError):
            await ledger.delete_credit_card(card.id)

    @pytest.mark.asyncio
    async def test_delete_missing_records(self, ledger):
        """Test deleting unknown records raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await ledger.delete_account(uuid4())
        with pytest.raises(NotFoundError):
            await ledger.delete_category(uuid4())
        with pytest.raises(NotFoundError):
            await ledger.delete_credit_card(uuid4())


class _UnavailableStore(InMemoryLedgerStore):
    async def create_many(self, entries):
        raise StoreUnavailableError("backend down")


class TestStorageFailures:
    """Tests for backend failures."""

    @pytest.mark.asyncio
    async def test_unavailable_store_is_audited_and_raised(self, audit_storage, make_intent):
        """Test backend failures propagate after being audited."""
        from finledger.audit import AuditLogger

        ledger = LedgerService(_UnavailableStore(), audit_logger=AuditLogger(audit_storage))
        with pytest.raises(StoreUnavailableError):
            await ledger.create_entry(make_intent(installment_count=2))
        events = await audit_storage.get_recent_events()
        assert events[0].event_type == AuditEventType.STORAGE_ERROR
        assert events[0].details["operation"] == "create entry batch"


class TestAppComponents:
    """Tests for the component factory."""

    def test_defaults_to_memory(self):
        """Test the default backend is in memory."""
        ledger, reports, store = create_app_components()
        assert isinstance(ledger, LedgerService)
        assert isinstance(store, InMemoryLedgerStore)
        assert ledger.reports is reports

    def test_falls_back_when_sheets_unconfigured(self, monkeypatch):
        """Test a broken Google Sheets setup falls back to memory."""
        monkeypatch.setenv("STORAGE_BACKEND", "google_sheets")
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)
        _, _, store = create_app_components()
        assert isinstance(store, InMemoryLedgerStore)

    def test_without_storage(self):
        """Test use_storage=False always runs in memory."""
        _, _, store = create_app_components(use_storage=False)
        assert isinstance(store, InMemoryLedgerStore)

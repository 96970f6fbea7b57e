"""
Google Sheets Storage Implementation

Each table (entries, accounts, categories, credit cards, audit log) lives in
its own worksheet, one record per row, with a header row on top. Users can
open the spreadsheet and read their ledger directly.

TRADEOFFS:
- No transactions. Batches are written with a single `append_rows` call,
  and a payment writes the account row first and restores it if the entry
  write fails.
- Limited query capabilities. We read the sheet and filter in Python.

The implementation follows the abstract interface, so it can be swapped
for a database without changing business logic.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from finledger.config import GoogleSheetsSettings, get_settings
from finledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finledger.models.entry import (
    Account,
    AccountType,
    Category,
    CreditCard,
    EntryKind,
    ExpenseEntry,
    Recurrence,
    parse_entry,
    utc_now,
)
from finledger.services.storage.interface import (
    REFERENCE_FIELDS,
    AuditStorageInterface,
    DuplicateError,
    Entry,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    StoreUnavailableError,
    apply_changes,
)

logger = structlog.get_logger(__name__)


ENTRY_COLUMNS = [
    "id",
    "kind",
    "created_at",
    "updated_at",
    "description",
    "amount",
    "due_date",
    "account_id",
    "credit_card_id",
    "category_id",
    "recurrence",
    "installment_index",
    "installment_count",
    "is_paid",
    "paid_at",
    "is_postponed",
    "original_due_date",
    "notes",
]

ACCOUNT_COLUMNS = [
    "id",
    "created_at",
    "updated_at",
    "name",
    "bank_name",
    "account_type",
    "balance",
]

CATEGORY_COLUMNS = [
    "id",
    "created_at",
    "updated_at",
    "name",
    "type",
    "color",
]

CREDIT_CARD_COLUMNS = [
    "id",
    "created_at",
    "updated_at",
    "name",
    "bank_name",
    "limit_amount",
    "due_day",
    "current_balance",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

TABLE_COLUMNS = {
    "entries": ENTRY_COLUMNS,
    "accounts": ACCOUNT_COLUMNS,
    "categories": CATEGORY_COLUMNS,
    "credit_cards": CREDIT_CARD_COLUMNS,
    "audit": AUDIT_COLUMNS,
}

_write_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(StoreUnavailableError),
    reraise=True,
)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and hands out worksheets by logical table name,
    creating missing worksheets with their header row.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets
        self._sheets: dict[str, gspread.Worksheet] = {}

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise StoreUnavailableError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StoreUnavailableError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise StoreUnavailableError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_table(self, table: str) -> gspread.Worksheet:
        """Get or create the worksheet backing a logical table."""
        if table in self._sheets:
            return self._sheets[table]

        columns = TABLE_COLUMNS[table]
        title = self._settings.sheet_name_for(table)
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=5000 if table == "audit" else 1000,
                cols=len(columns),
            )
            sheet.append_row(columns)

        self._sheets[table] = sheet
        return sheet


# =============================================================================
# Row conversion
# =============================================================================

def _iso(value: Optional[Any]) -> str:
    return value.isoformat() if value else ""


def _opt(value: Optional[Any]) -> str:
    return str(value) if value is not None else ""


def _cell(row: list, index: int) -> str:
    """Read a cell, treating missing trailing cells as empty."""
    try:
        return row[index] or ""
    except IndexError:
        return ""


def _opt_uuid(value: str) -> Optional[UUID]:
    return UUID(value) if value else None


def _opt_date(value: str) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _opt_datetime(value: str) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def entry_to_row(entry: Entry) -> list:
    """Convert an entry to a spreadsheet row (ENTRY_COLUMNS order)."""
    is_expense = isinstance(entry, ExpenseEntry)
    return [
        str(entry.id),
        entry.kind,
        entry.created_at.isoformat(),
        entry.updated_at.isoformat(),
        entry.description,
        str(entry.amount),
        entry.due_date.isoformat(),
        _opt(entry.account_id),
        _opt(entry.credit_card_id) if is_expense else "",
        _opt(entry.category_id),
        entry.recurrence.value,
        str(entry.installment_index),
        str(entry.installment_count),
        str(entry.is_paid) if is_expense else "",
        _iso(entry.paid_at) if is_expense else "",
        str(entry.is_postponed) if is_expense else "",
        _iso(entry.original_due_date) if is_expense else "",
        entry.notes or "",
    ]


def row_to_entry(row: list) -> Entry:
    """Convert a spreadsheet row to an IncomeEntry or ExpenseEntry."""
    kind = _cell(row, 1)
    data = {
        "id": UUID(_cell(row, 0)),
        "kind": kind,
        "created_at": datetime.fromisoformat(_cell(row, 2)),
        "updated_at": datetime.fromisoformat(_cell(row, 3)),
        "description": _cell(row, 4),
        "amount": Decimal(_cell(row, 5)),
        "due_date": date.fromisoformat(_cell(row, 6)),
        "account_id": _opt_uuid(_cell(row, 7)),
        "category_id": _opt_uuid(_cell(row, 9)),
        "recurrence": Recurrence(_cell(row, 10) or Recurrence.UNIQUE.value),
        "installment_index": int(_cell(row, 11) or 1),
        "installment_count": int(_cell(row, 12) or 1),
        "notes": _cell(row, 17) or None,
    }
    if kind == EntryKind.EXPENSE.value:
        data.update({
            "credit_card_id": _opt_uuid(_cell(row, 8)),
            "is_paid": _cell(row, 13).lower() == "true",
            "paid_at": _opt_datetime(_cell(row, 14)),
            "is_postponed": _cell(row, 15).lower() == "true",
            "original_due_date": _opt_date(_cell(row, 16)),
        })
    return parse_entry(data)


def account_to_row(account: Account) -> list:
    return [
        str(account.id),
        account.created_at.isoformat(),
        account.updated_at.isoformat(),
        account.name,
        account.bank_name,
        account.account_type.value,
        str(account.balance),
    ]


def row_to_account(row: list) -> Account:
    return Account(
        id=UUID(_cell(row, 0)),
        created_at=datetime.fromisoformat(_cell(row, 1)),
        updated_at=datetime.fromisoformat(_cell(row, 2)),
        name=_cell(row, 3),
        bank_name=_cell(row, 4),
        account_type=AccountType(_cell(row, 5) or AccountType.CHECKING.value),
        balance=Decimal(_cell(row, 6) or "0"),
    )


def category_to_row(category: Category) -> list:
    return [
        str(category.id),
        category.created_at.isoformat(),
        category.updated_at.isoformat(),
        category.name,
        category.type.value,
        category.color or "",
    ]


def row_to_category(row: list) -> Category:
    return Category(
        id=UUID(_cell(row, 0)),
        created_at=datetime.fromisoformat(_cell(row, 1)),
        updated_at=datetime.fromisoformat(_cell(row, 2)),
        name=_cell(row, 3),
        type=EntryKind(_cell(row, 4)),
        color=_cell(row, 5) or None,
    )


def credit_card_to_row(card: CreditCard) -> list:
    return [
        str(card.id),
        card.created_at.isoformat(),
        card.updated_at.isoformat(),
        card.name,
        card.bank_name,
        str(card.limit_amount),
        str(card.due_day),
        str(card.current_balance),
    ]


def row_to_credit_card(row: list) -> CreditCard:
    return CreditCard(
        id=UUID(_cell(row, 0)),
        created_at=datetime.fromisoformat(_cell(row, 1)),
        updated_at=datetime.fromisoformat(_cell(row, 2)),
        name=_cell(row, 3),
        bank_name=_cell(row, 4),
        limit_amount=Decimal(_cell(row, 5)),
        due_day=int(_cell(row, 6)),
        current_balance=Decimal(_cell(row, 7) or "0"),
    )


# =============================================================================
# Ledger storage
# =============================================================================

class _SheetTable:
    """Row-level operations on one worksheet keyed by the id in column A."""

    def __init__(
        self,
        client: GoogleSheetsClient,
        table: str,
        to_row: Callable[[Any], list],
        from_row: Callable[[list], Any],
        label: str,
    ):
        self._client = client
        self._table = table
        self._to_row = to_row
        self._from_row = from_row
        self.label = label

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_table(self._table)

    def _data_rows(self) -> list[list]:
        # Row 1 is the header
        return self._sheet().get_all_values()[1:]

    def find(self, record_id: UUID) -> tuple[Optional[int], Optional[list]]:
        """Return (sheet row number, row values) for an id, or (None, None)."""
        key = str(record_id)
        for idx, row in enumerate(self._data_rows(), start=2):
            if row and row[0] == key:
                return idx, row
        return None, None

    def all(self) -> list:
        records = []
        for row in self._data_rows():
            if not row or not row[0]:
                continue
            try:
                records.append(self._from_row(row))
            except (ValueError, KeyError) as e:
                logger.warning(
                    "sheet_row_skipped",
                    table=self._table,
                    row_id=row[0],
                    error=str(e),
                )
        return records

    def get(self, record_id: UUID):
        _, row = self.find(record_id)
        return self._from_row(row) if row else None

    def insert(self, record):
        idx, _ = self.find(record.id)
        if idx is not None:
            raise DuplicateError(f"{self.label} already exists: {record.id}")
        self._sheet().append_row(self._to_row(record), value_input_option="RAW")
        return record

    def insert_many(self, records: list) -> None:
        existing = {row[0] for row in self._data_rows() if row}
        clashes = [str(r.id) for r in records if str(r.id) in existing]
        if clashes:
            raise DuplicateError(f"{self.label}s already exist: {clashes}")
        self._sheet().append_rows(
            [self._to_row(r) for r in records],
            value_input_option="RAW",
        )

    def write(self, idx: int, record) -> None:
        self._sheet().update(values=[self._to_row(record)], range_name=f"A{idx}")

    def update(self, record_id: UUID, changes: dict[str, Any]):
        idx, row = self.find(record_id)
        if idx is None:
            raise NotFoundError(f"{self.label} not found: {record_id}")
        updated = apply_changes(self._from_row(row), changes)
        self.write(idx, updated)
        return updated

    def delete(self, record_id: UUID) -> None:
        idx, _ = self.find(record_id)
        if idx is None:
            raise NotFoundError(f"{self.label} not found: {record_id}")
        self._sheet().delete_rows(idx)


def _wrap_errors(operation: str):
    """
    Translate backend failures into storage exceptions.

    Storage exceptions and validation errors pass through unchanged.
    gspread API errors become StoreUnavailableError (retried on writes).
    """
    def decorator(func):
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except (StorageError, ValueError):
                raise
            except gspread.exceptions.APIError as e:
                raise StoreUnavailableError(f"Google Sheets API error during {operation}: {e}")
            except Exception as e:
                raise StorageError(f"Failed to {operation}: {e}")
        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        return wrapper
    return decorator


class GoogleSheetsLedgerStore(LedgerStorageInterface):
    """
    Google Sheets implementation of the ledger storage.

    One worksheet per table. Decimal amounts are stored as strings to keep
    them exact.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._entries = _SheetTable(self._client, "entries", entry_to_row, row_to_entry, "Entry")
        self._accounts = _SheetTable(self._client, "accounts", account_to_row, row_to_account, "Account")
        self._categories = _SheetTable(
            self._client, "categories", category_to_row, row_to_category, "Category"
        )
        self._credit_cards = _SheetTable(
            self._client, "credit_cards", credit_card_to_row, row_to_credit_card, "Credit card"
        )

    # Entries

    @_wrap_errors("list entries")
    async def get_all(self, kind: Optional[EntryKind] = None) -> list[Entry]:
        entries = [
            e for e in self._entries.all()
            if kind is None or e.kind == kind.value
        ]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries

    @_wrap_errors("get entry")
    async def get_by_id(self, entry_id: UUID) -> Optional[Entry]:
        return self._entries.get(entry_id)

    @_write_retry
    @_wrap_errors("save entry")
    async def create(self, entry: Entry) -> Entry:
        return self._entries.insert(entry)

    @_write_retry
    @_wrap_errors("save entry batch")
    async def create_many(self, entries: list[Entry]) -> list[UUID]:
        self._entries.insert_many(entries)
        return [e.id for e in entries]

    @_wrap_errors("update entry")
    async def update(self, entry_id: UUID, changes: dict[str, Any]) -> Entry:
        return self._entries.update(entry_id, changes)

    @_wrap_errors("delete entry")
    async def delete(self, entry_id: UUID) -> None:
        self._entries.delete(entry_id)

    @_wrap_errors("count references")
    async def count_references(self, field: str, ref_id: UUID) -> int:
        if field not in REFERENCE_FIELDS:
            raise ValueError(f"Not a reference field: {field}")
        return sum(
            1 for e in self._entries.all()
            if getattr(e, field, None) == ref_id
        )

    # Accounts

    @_wrap_errors("list accounts")
    async def get_all_accounts(self) -> list[Account]:
        return sorted(self._accounts.all(), key=lambda a: a.created_at, reverse=True)

    @_wrap_errors("get account")
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        return self._accounts.get(account_id)

    @_write_retry
    @_wrap_errors("save account")
    async def create_account(self, account: Account) -> Account:
        return self._accounts.insert(account)

    @_wrap_errors("update account")
    async def update_account(self, account_id: UUID, changes: dict[str, Any]) -> Account:
        return self._accounts.update(account_id, changes)

    @_wrap_errors("delete account")
    async def delete_account(self, account_id: UUID) -> None:
        self._accounts.delete(account_id)

    # Categories

    @_wrap_errors("list categories")
    async def get_all_categories(self) -> list[Category]:
        return sorted(self._categories.all(), key=lambda c: c.name.lower())

    @_wrap_errors("get category")
    async def get_category(self, category_id: UUID) -> Optional[Category]:
        return self._categories.get(category_id)

    @_write_retry
    @_wrap_errors("save category")
    async def create_category(self, category: Category) -> Category:
        return self._categories.insert(category)

    @_wrap_errors("update category")
    async def update_category(self, category_id: UUID, changes: dict[str, Any]) -> Category:
        return self._categories.update(category_id, changes)

    @_wrap_errors("delete category")
    async def delete_category(self, category_id: UUID) -> None:
        self._categories.delete(category_id)

    # Credit cards

    @_wrap_errors("list credit cards")
    async def get_all_credit_cards(self) -> list[CreditCard]:
        return sorted(self._credit_cards.all(), key=lambda c: c.created_at, reverse=True)

    @_wrap_errors("get credit card")
    async def get_credit_card(self, card_id: UUID) -> Optional[CreditCard]:
        return self._credit_cards.get(card_id)

    @_write_retry
    @_wrap_errors("save credit card")
    async def create_credit_card(self, card: CreditCard) -> CreditCard:
        return self._credit_cards.insert(card)

    @_wrap_errors("update credit card")
    async def update_credit_card(self, card_id: UUID, changes: dict[str, Any]) -> CreditCard:
        return self._credit_cards.update(card_id, changes)

    @_wrap_errors("delete credit card")
    async def delete_credit_card(self, card_id: UUID) -> None:
        self._credit_cards.delete(card_id)

    # Payment unit of work

    @_wrap_errors("commit payment")
    async def commit_payment(
        self,
        entry: ExpenseEntry,
        account_id: UUID,
        balance_delta: Decimal,
    ) -> Optional[Account]:
        entry_idx, entry_row = self._entries.find(entry.id)
        if entry_idx is None:
            raise NotFoundError(f"Entry not found: {entry.id}")
        account_idx, account_row = self._accounts.find(account_id)
        if account_idx is None:
            raise NotFoundError(f"Account not found: {account_id}")

        stored = row_to_entry(entry_row)
        if stored.is_paid == entry.is_paid:
            return None

        account = row_to_account(account_row)
        new_account = account.model_copy(update={
            "balance": account.balance + balance_delta,
            "updated_at": utc_now(),
        })

        self._accounts.write(account_idx, new_account)
        try:
            self._entries.write(entry_idx, entry)
        except Exception as e:
            # Put the balance back so flag and balance stay consistent
            self._accounts.write(account_idx, account)
            logger.error(
                "payment_rolled_back",
                entry_id=str(entry.id),
                account_id=str(account_id),
                error=str(e),
            )
            raise StorageError(f"Failed to store payment of entry {entry.id}: {e}")

        return new_account


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        details = _cell(row, 8)
        return AuditEvent(
            event_id=UUID(_cell(row, 0)),
            timestamp=datetime.fromisoformat(_cell(row, 1)),
            event_type=AuditEventType(_cell(row, 2)),
            severity=AuditSeverity(_cell(row, 3)),
            entity_type=_cell(row, 4) or None,
            entity_id=_opt_uuid(_cell(row, 5)),
            correlation_id=_opt_uuid(_cell(row, 6)),
            description=_cell(row, 7),
            details=json.loads(details) if details else {},
            error_message=_cell(row, 9) or None,
            is_user_action=_cell(row, 10).lower() == "true",
        )

    def _all_events(self) -> list[AuditEvent]:
        events = []
        for row in self._client.get_table("audit").get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError:
                continue
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event. Failures are reported, never raised."""
        try:
            sheet = self._client.get_table("audit")
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging must not break the main flow
            logger.warning("audit_append_failed", error=str(e), event_id=str(event.event_id))
            return False

    @_wrap_errors("read audit events")
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._all_events() if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    @_wrap_errors("read audit events")
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._all_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    @_wrap_errors("read audit events")
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._all_events(), key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

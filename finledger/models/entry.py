"""
Core Data Models for the Ledger

These models define the strict schemas for everything the ledger stores:
incomes, expenses, bank accounts, categories and credit cards.

Two families of models live here:
1. STORED models (IncomeEntry, ExpenseEntry, Account, ...) are strict.
   Anything that reaches storage has already passed these schemas.
2. INTENT models (TransactionIntent) are lenient on purpose. They carry
   whatever the user typed so the validator can report every problem at
   once instead of failing on the first one.

Ledger entries are a tagged union on `kind`. Use `parse_entry()` to turn a
raw dict (e.g. a storage row) into the right variant.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    model_validator,
)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EntryKind(str, Enum):
    """Income or expense. Also used as the type of a category."""
    INCOME = "income"
    EXPENSE = "expense"


class Recurrence(str, Enum):
    """
    How often an entry repeats.

    UNIQUE means the entry happens once. Every other value makes the
    generator emit a series of full-value entries on a fixed schedule.
    """
    UNIQUE = "unique"
    WEEKLY = "weekly"        # +7 days
    BIWEEKLY = "biweekly"    # +15 days
    MONTHLY = "monthly"
    BIMONTHLY = "bimonthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class GenerationMode(str, Enum):
    """Which expansion mechanism produced a batch."""
    UNIQUE = "unique"
    INSTALLMENT = "installment"
    RECURRENCE = "recurrence"


class AccountType(str, Enum):
    """Kind of bank account."""
    CHECKING = "checking"
    SAVINGS = "savings"
    INVESTMENT = "investment"
    WALLET = "wallet"


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

class LedgerEntryBase(BaseModel):
    """
    Fields shared by incomes and expenses.

    `amount` is always the value of THIS row. For an installment purchase
    it is one installment, never the total.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique entry ID (immutable)"
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    description: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="What the entry is about"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Value of this row"
    )
    due_date: date = Field(
        ...,
        description="Drives period filtering and sorting"
    )

    account_id: Optional[UUID] = None
    category_id: Optional[UUID] = None

    recurrence: Recurrence = Recurrence.UNIQUE
    installment_index: int = Field(default=1, ge=1)
    installment_count: int = Field(default=1, ge=1)

    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode='after')
    def validate_installment_range(self):
        if self.installment_index > self.installment_count:
            raise ValueError(
                f"Installment index {self.installment_index} exceeds "
                f"installment count {self.installment_count}"
            )
        return self

    @property
    def is_installment(self) -> bool:
        return self.installment_count > 1


class IncomeEntry(LedgerEntryBase):
    """Money coming in. Incomes are never 'paid'; they just happen."""
    kind: Literal["income"] = "income"


class ExpenseEntry(LedgerEntryBase):
    """
    Money going out.

    An expense may be tied to a bank account OR a credit card, never both.
    Only expenses with a bank account can be paid (see PaymentReconciler).
    """
    kind: Literal["expense"] = "expense"

    credit_card_id: Optional[UUID] = None

    is_paid: bool = False
    paid_at: Optional[datetime] = None

    # Set when an overdue unpaid expense is pushed forward
    is_postponed: bool = False
    original_due_date: Optional[date] = None

    @model_validator(mode='after')
    def validate_links_and_payment(self) -> 'ExpenseEntry':
        if self.account_id and self.credit_card_id:
            raise ValueError(
                "An expense cannot be linked to both an account and a credit card"
            )
        if self.is_paid and self.paid_at is None:
            raise ValueError("A paid expense must have paid_at set")
        if not self.is_paid and self.paid_at is not None:
            raise ValueError("An unpaid expense cannot have paid_at set")
        return self


LedgerEntry = Annotated[
    Union[IncomeEntry, ExpenseEntry],
    Field(discriminator="kind"),
]

_entry_adapter: TypeAdapter = TypeAdapter(LedgerEntry)


def parse_entry(data: dict) -> Union[IncomeEntry, ExpenseEntry]:
    """Build the right entry variant from a dict with a `kind` key."""
    return _entry_adapter.validate_python(data)


# =============================================================================
# INTENTS AND BATCHES
# =============================================================================

class TransactionIntent(BaseModel):
    """
    What the user asked for, before expansion.

    CRITICAL: This is UNVERIFIED input. Every field is optional or loosely
    typed so that IntentValidator can report all problems together.
    Nothing here is persisted directly.

    `amount` is the per-installment value in installment mode and the full
    value of each occurrence in recurrence mode.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    intent_id: UUID = Field(default_factory=uuid4)
    kind: EntryKind = EntryKind.EXPENSE

    description: str = ""
    amount: Optional[Decimal] = None
    start_date: Optional[date] = None

    recurrence: Recurrence = Recurrence.UNIQUE
    installment_count: int = 1
    max_occurrences: Optional[int] = Field(
        default=None,
        description="Override for the number of recurrences to generate"
    )

    account_id: Optional[UUID] = None
    credit_card_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    notes: Optional[str] = None

    # Only honoured for unique expenses with a linked account
    is_paid: bool = False

    @property
    def is_installment(self) -> bool:
        return self.installment_count > 1

    @property
    def is_recurring(self) -> bool:
        return self.recurrence != Recurrence.UNIQUE

    @property
    def mode(self) -> GenerationMode:
        if self.is_installment:
            return GenerationMode.INSTALLMENT
        if self.is_recurring:
            return GenerationMode.RECURRENCE
        return GenerationMode.UNIQUE


class GeneratedBatch(BaseModel):
    """
    Output of the generator: the rows to persist, in order.

    `total_amount` is display metadata (installment value x count). It is
    never stored as a ledger row.
    """
    intent_id: UUID
    mode: GenerationMode
    entries: list[LedgerEntry]
    total_amount: Decimal

    @property
    def count(self) -> int:
        return len(self.entries)


class BatchResult(BaseModel):
    """
    Returned by LedgerService.create_entry when an intent expanded into
    several rows. A unique intent returns the entry itself instead, so
    callers must branch on the type.
    """
    ids: list[UUID]
    message: str
    mode: GenerationMode
    total_amount: Decimal


# =============================================================================
# ACCOUNTS, CATEGORIES, CREDIT CARDS
# =============================================================================

class Account(BaseModel):
    """
    A bank account with a running balance.

    CRITICAL: `balance` is changed only by PaymentReconciler. Regular
    account updates are not allowed to touch it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    name: str = Field(..., min_length=1, max_length=100)
    bank_name: str = Field(..., min_length=1, max_length=100)
    account_type: AccountType = AccountType.CHECKING
    balance: Decimal = Field(
        default=Decimal("0.00"),
        decimal_places=2,
        description="Current balance (may go negative)"
    )


class Category(BaseModel):
    """Classification for entries. Deletable only while unreferenced."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    name: str = Field(..., min_length=1, max_length=100)
    type: EntryKind
    color: Optional[str] = Field(
        default=None,
        pattern=r"^#[0-9A-Fa-f]{6}$",
        description="Display colour as #RRGGBB"
    )


class CreditCard(BaseModel):
    """A credit card expenses can be charged to."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    name: str = Field(..., min_length=1, max_length=100)
    bank_name: str = Field(..., min_length=1, max_length=100)
    limit_amount: Decimal = Field(..., ge=0, decimal_places=2)
    due_day: int = Field(..., ge=1, le=31, description="Day of month the bill is due")
    current_balance: Decimal = Field(default=Decimal("0.00"), decimal_places=2)


class PaymentResult(BaseModel):
    """Outcome of a pay/unpay reconciliation."""
    entry: ExpenseEntry
    account: Optional[Account] = None
    applied: bool = Field(
        ...,
        description="False when the entry was already in the requested state"
    )
    balance_delta: Decimal = Decimal("0")


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'conflict')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """
    Result of the two-stage intent validation.

    Stage 1: Schema validation (presence, ranges, conflicting options)
    Stage 2: Semantic validation (limits, references to stored data)
    """

    intent_id: UUID
    validated_at: datetime = Field(default_factory=utc_now)

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool

    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]

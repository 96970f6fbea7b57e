"""
Report Models

A ReportFilter describes which entries to look at. A ReportResult holds the
filtered entries plus exact Decimal aggregates. Formatting for display
(currency symbols, rounding) happens outside this package.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from finledger.models.entry import LedgerEntry, utc_now


class ReportEntryType(str, Enum):
    """Which side of the ledger to include."""
    ALL = "all"
    INCOMES = "incomes"
    EXPENSES = "expenses"


class ReportFilter(BaseModel):
    """
    Period and attribute filters for a report.

    Omitted filters (None, or month="all") do not restrict anything.
    Amount and date bounds are inclusive.
    """

    name: Optional[str] = Field(
        default=None,
        description="Case-insensitive substring of the description"
    )
    min_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_amount: Optional[Decimal] = Field(default=None, ge=0)

    month: Union[int, Literal["all"], None] = None
    year: Optional[int] = Field(default=None, ge=1900, le=9999)

    start_date: Optional[date] = None
    end_date: Optional[date] = None

    entry_type: ReportEntryType = ReportEntryType.ALL
    category_id: Optional[UUID] = None

    @field_validator('month', mode='before')
    @classmethod
    def coerce_month(cls, v):
        """Accept month numbers given as strings (e.g. from a select box)."""
        if isinstance(v, str) and v != "all":
            v = v.strip()
            if not v:
                return None
            return int(v)
        return v

    @field_validator('month')
    @classmethod
    def validate_month_range(cls, v):
        if isinstance(v, int) and not 1 <= v <= 12:
            raise ValueError(f"Month must be between 1 and 12, got {v}")
        return v

    @model_validator(mode='after')
    def validate_bounds(self) -> 'ReportFilter':
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.max_amount < self.min_amount
        ):
            raise ValueError("max_amount cannot be lower than min_amount")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self

    @property
    def month_number(self) -> Optional[int]:
        """The month to filter on, or None when every month is included."""
        return self.month if isinstance(self.month, int) else None


class MonthlyTotals(BaseModel):
    """Income/expense totals of one calendar month."""
    month: str = Field(..., description="YYYY-MM")
    income_total: Decimal = Decimal("0")
    expense_total: Decimal = Decimal("0")

    @property
    def net_balance(self) -> Decimal:
        return self.income_total - self.expense_total


class ReportResult(BaseModel):
    """
    Filtered entries and their aggregates.

    All sums are exact Decimals. No rounding happens here.
    """

    report_filter: ReportFilter
    generated_at: datetime = Field(default_factory=utc_now)

    entries: list[LedgerEntry] = Field(default_factory=list)

    income_total: Decimal = Decimal("0")
    expense_total: Decimal = Decimal("0")
    net_balance: Decimal = Decimal("0")
    paid_expense_total: Decimal = Decimal("0")
    pending_expense_total: Decimal = Decimal("0")

    income_count: int = Field(default=0, ge=0)
    expense_count: int = Field(default=0, ge=0)

    # Expense totals keyed by category id ("uncategorized" when missing)
    expenses_by_category: dict[str, Decimal] = Field(default_factory=dict)
    by_month: list[MonthlyTotals] = Field(default_factory=list)

    description: str = Field(
        default="",
        description="Human-readable description of what was filtered"
    )

    @property
    def result_count(self) -> int:
        return len(self.entries)

    @property
    def data_found(self) -> bool:
        return bool(self.entries)

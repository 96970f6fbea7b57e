"""
Report Builder

DESIGN DECISION: Reporting is DETERMINISTIC and works on stored data only.
The builder receives the full entry list, applies the filter and sums
amounts as Decimals. Nothing is estimated, converted to float or rounded.

Month/year filters partition by the calendar month of `due_date`.
"""

import calendar
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from finledger.models.entry import ExpenseEntry, IncomeEntry
from finledger.models.report import (
    MonthlyTotals,
    ReportEntryType,
    ReportFilter,
    ReportResult,
)
from finledger.services.storage import Entry

ZERO = Decimal("0")
UNCATEGORIZED = "uncategorized"


class ReportBuilder:
    """
    Filters entries and computes report aggregates.

    GUARANTEES:
    - Only returns entries that were given to it
    - Sums are exact
    - Clear "no entries" description if nothing matches
    """

    def matches(self, entry: Entry, report_filter: ReportFilter) -> bool:
        """Check one entry against every active predicate."""
        f = report_filter

        if f.entry_type == ReportEntryType.INCOMES and not isinstance(entry, IncomeEntry):
            return False
        if f.entry_type == ReportEntryType.EXPENSES and not isinstance(entry, ExpenseEntry):
            return False

        if f.name and f.name.strip().lower() not in entry.description.lower():
            return False

        if f.min_amount is not None and entry.amount < f.min_amount:
            return False
        if f.max_amount is not None and entry.amount > f.max_amount:
            return False

        if f.month_number is not None and entry.due_date.month != f.month_number:
            return False
        if f.year is not None and entry.due_date.year != f.year:
            return False

        if f.start_date and entry.due_date < f.start_date:
            return False
        if f.end_date and entry.due_date > f.end_date:
            return False

        if f.category_id and entry.category_id != f.category_id:
            return False

        return True

    def filter(self, entries: Iterable[Entry], report_filter: ReportFilter) -> list[Entry]:
        """Matching entries sorted by due date, then description."""
        selected = [e for e in entries if self.matches(e, report_filter)]
        selected.sort(key=lambda e: (e.due_date, e.description.lower(), e.installment_index))
        return selected

    def build(self, entries: Iterable[Entry], report_filter: ReportFilter) -> ReportResult:
        """Filter entries and aggregate the selection."""
        selected = self.filter(entries, report_filter)

        income_total = ZERO
        expense_total = ZERO
        paid_total = ZERO
        income_count = 0
        expense_count = 0
        by_category: dict[str, Decimal] = defaultdict(lambda: ZERO)
        by_month: dict[str, dict[str, Decimal]] = defaultdict(
            lambda: {"income": ZERO, "expense": ZERO}
        )

        for entry in selected:
            month_key = entry.due_date.strftime("%Y-%m")
            if isinstance(entry, IncomeEntry):
                income_total += entry.amount
                income_count += 1
                by_month[month_key]["income"] += entry.amount
            else:
                expense_total += entry.amount
                expense_count += 1
                by_month[month_key]["expense"] += entry.amount
                if entry.is_paid:
                    paid_total += entry.amount
                key = str(entry.category_id) if entry.category_id else UNCATEGORIZED
                by_category[key] += entry.amount

        return ReportResult(
            report_filter=report_filter,
            entries=selected,
            income_total=income_total,
            expense_total=expense_total,
            net_balance=income_total - expense_total,
            paid_expense_total=paid_total,
            pending_expense_total=expense_total - paid_total,
            income_count=income_count,
            expense_count=expense_count,
            expenses_by_category=dict(by_category),
            by_month=[
                MonthlyTotals(
                    month=key,
                    income_total=totals["income"],
                    expense_total=totals["expense"],
                )
                for key, totals in sorted(by_month.items())
            ],
            description=self.describe(report_filter, len(selected)),
        )

    def describe(self, report_filter: ReportFilter, count: int) -> str:
        """Build a human-readable description of the filter."""
        f = report_filter
        if f.entry_type == ReportEntryType.INCOMES:
            desc_parts = ["Incomes"]
        elif f.entry_type == ReportEntryType.EXPENSES:
            desc_parts = ["Expenses"]
        else:
            desc_parts = ["Entries"]

        if f.name:
            desc_parts.append(f"matching '{f.name}'")
        if f.month_number is not None and f.year is not None:
            desc_parts.append(f"in {calendar.month_name[f.month_number]} {f.year}")
        elif f.month_number is not None:
            desc_parts.append(f"in {calendar.month_name[f.month_number]} of any year")
        elif f.year is not None:
            desc_parts.append(f"in {f.year}")
        if f.start_date or f.end_date:
            desc_parts.append(self._date_range_str(f.start_date, f.end_date))
        if f.min_amount is not None or f.max_amount is not None:
            desc_parts.append(self._amount_range_str(f.min_amount, f.max_amount))
        if f.category_id:
            desc_parts.append(f"category: {f.category_id}")

        if count == 0:
            desc_parts.append("(no entries)")

        return " ".join(desc_parts)

    def _amount_range_str(self, low: Optional[Decimal], high: Optional[Decimal]) -> str:
        if low is not None and high is not None:
            return f"between {low} and {high}"
        if low is not None:
            return f"of at least {low}"
        return f"of at most {high}"

    def _date_range_str(
        self,
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> str:
        """Format date range for description."""
        if date_from and date_to:
            if date_from == date_to:
                return f"on {date_from.strftime('%d %b %Y')}"
            elif date_from.month == date_to.month and date_from.year == date_to.year:
                return f"from {date_from.strftime('%d')} to {date_to.strftime('%d %b %Y')}"
            elif date_from.year == date_to.year:
                return f"from {date_from.strftime('%d %b')} to {date_to.strftime('%d %b %Y')}"
            else:
                return f"from {date_from.strftime('%d %b %Y')} to {date_to.strftime('%d %b %Y')}"
        elif date_from:
            return f"from {date_from.strftime('%d %b %Y')}"
        elif date_to:
            return f"until {date_to.strftime('%d %b %Y')}"
        return ""

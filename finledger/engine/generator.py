"""
Ledger Entry Generator

Expands one transaction intent into the ledger rows to persist:

- installment: N rows of the installment value, one calendar month apart
- recurrence: a fixed number of full-value rows on the recurrence schedule
- unique: a single row

The generator is pure. It validates the intent, builds the rows and
returns them; persisting them is the caller's job (see LedgerService).
A rejected intent raises before any row is built.
"""

from datetime import date
from typing import Optional, Union

import structlog

from finledger.config import get_settings
from finledger.engine.schedule import due_dates, installment_due_dates, step_for
from finledger.models.entry import (
    EntryKind,
    ExpenseEntry,
    GeneratedBatch,
    GenerationMode,
    IncomeEntry,
    Recurrence,
    TransactionIntent,
)
from finledger.validation import IntentValidator

logger = structlog.get_logger(__name__)


class LedgerEntryGenerator:
    """Turns validated transaction intents into ordered entry batches."""

    def __init__(self, validator: Optional[IntentValidator] = None):
        self._validator = validator or IntentValidator()
        self._settings = get_settings().ledger

    def generate(self, intent: TransactionIntent) -> GeneratedBatch:
        """
        Expand an intent into its entries, ordered by due date.

        Raises:
            InvalidIntentError: If the intent fails validation
        """
        self._validator.ensure_valid(self._validator.check(intent))

        mode = intent.mode
        if mode == GenerationMode.INSTALLMENT:
            dates = installment_due_dates(intent.start_date, intent.installment_count)
            entries = [
                self._build(intent, due, index=i, count=len(dates))
                for i, due in enumerate(dates, start=1)
            ]
        elif mode == GenerationMode.RECURRENCE:
            occurrences = intent.max_occurrences or self._settings.max_recurrence_occurrences
            dates = due_dates(intent.start_date, step_for(intent.recurrence), occurrences)
            entries = [self._build(intent, due) for due in dates]
        else:
            entries = [self._build(intent, intent.start_date)]

        total = intent.amount * len(entries)

        logger.debug(
            "intent_expanded",
            intent_id=str(intent.intent_id),
            mode=mode.value,
            count=len(entries),
            total_amount=str(total),
        )

        return GeneratedBatch(
            intent_id=intent.intent_id,
            mode=mode,
            entries=entries,
            total_amount=total,
        )

    def _build(
        self,
        intent: TransactionIntent,
        due: date,
        index: int = 1,
        count: int = 1,
    ) -> Union[IncomeEntry, ExpenseEntry]:
        fields = dict(
            description=intent.description,
            amount=intent.amount,
            due_date=due,
            account_id=intent.account_id,
            category_id=intent.category_id,
            recurrence=intent.recurrence if count == 1 else Recurrence.UNIQUE,
            installment_index=index,
            installment_count=count,
            notes=intent.notes,
        )
        if intent.kind == EntryKind.INCOME:
            return IncomeEntry(**fields)
        # Always created unpaid; payment goes through PaymentReconciler
        return ExpenseEntry(credit_card_id=intent.credit_card_id, **fields)


def batch_message(batch: GeneratedBatch) -> str:
    """User-facing summary of a generated batch."""
    if batch.mode == GenerationMode.INSTALLMENT:
        return f"{batch.count} installments created"
    if batch.mode == GenerationMode.RECURRENCE:
        recurrence = batch.entries[0].recurrence.value
        return f"{batch.count} {recurrence} occurrences created"
    return "1 entry created"

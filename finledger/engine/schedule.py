"""
Due-date stepping for installments and recurrences.

Every date in a series is computed from the anchor (`start + step * i`),
never from the previous date. relativedelta clamps to the end of the month,
so a series started on the 31st goes Jan 31, Feb 29, Mar 31 instead of
sticking to the 29th after February.
"""

from datetime import date

from dateutil.relativedelta import relativedelta

from finledger.models.entry import Recurrence

RECURRENCE_STEPS: dict[Recurrence, relativedelta] = {
    Recurrence.WEEKLY: relativedelta(days=7),
    Recurrence.BIWEEKLY: relativedelta(days=15),
    Recurrence.MONTHLY: relativedelta(months=1),
    Recurrence.BIMONTHLY: relativedelta(months=2),
    Recurrence.QUARTERLY: relativedelta(months=3),
    Recurrence.ANNUAL: relativedelta(years=1),
}

INSTALLMENT_STEP = relativedelta(months=1)


def step_for(recurrence: Recurrence) -> relativedelta:
    """Return the step between two occurrences of a recurrence."""
    try:
        return RECURRENCE_STEPS[recurrence]
    except KeyError:
        raise ValueError(f"Recurrence '{recurrence.value}' has no schedule")


def due_dates(start: date, step: relativedelta, count: int) -> list[date]:
    """The first `count` dates of a series anchored on `start`."""
    if count < 1:
        raise ValueError("A schedule needs at least one date")
    return [start + step * i for i in range(count)]


def installment_due_dates(start: date, count: int) -> list[date]:
    """One due date per calendar month, starting at `start`."""
    return due_dates(start, INSTALLMENT_STEP, count)

"""Installment schedule generation. Pure: no I/O, no clock."""

import calendar
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import List, NamedTuple

from app.core.exceptions import InvalidScheduleError

CENT = Decimal("0.01")


class ScheduledInstallment(NamedTuple):
    number: int
    amount: Decimal
    due_date: date


def add_months(start: date, months: int) -> date:
    """Calendar-month step; the day is clamped to the last day of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def schedule(total, count: int, first_due_date: date) -> List[ScheduledInstallment]:
    """
    Split total into count installments that sum to total exactly.

    Installments 1..count-1 get round(total / count, 2); the last one absorbs the remainder.
    Installment i is due first_due_date + (i - 1) calendar months.
    """
    if count is None or count < 1:
        raise InvalidScheduleError("Number of installments must be at least 1")
    total = Decimal(str(total))
    if total <= 0:
        raise InvalidScheduleError("Total amount must be greater than zero")
    if total != total.quantize(CENT):
        raise InvalidScheduleError("Total amount cannot have more than 2 decimal places")

    share = (total / count).quantize(CENT, rounding=ROUND_HALF_UP)
    last = total - share * (count - 1)
    if share <= 0 or last <= 0:
        raise InvalidScheduleError(
            f"Total amount {total} is too small to split into {count} installments"
        )

    out: List[ScheduledInstallment] = []
    for i in range(1, count + 1):
        amount = last if i == count else share
        out.append(ScheduledInstallment(i, amount, add_months(first_due_date, i - 1)))
    return out

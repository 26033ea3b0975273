"""Calendar-date helpers shared by the validator, ledger and attendance sync."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Iterator

HALF_DAY = Decimal("0.5")


def iter_dates(from_date: date, to_date: date) -> Iterator[date]:
    """Yield every calendar date in [from_date, to_date], inclusive."""
    current = from_date
    while current <= to_date:
        yield current
        current += timedelta(days=1)


def requested_days(from_date: date, to_date: date, half_day: bool) -> Decimal:
    """Days a request consumes from the ledger.

    A half-day request always counts 0.5, whatever its range. Otherwise the
    inclusive calendar span; weekends and month/year boundaries are not
    special.
    """
    if half_day:
        return HALF_DAY
    return Decimal((to_date - from_date).days + 1)


"""Rate inference rule for merging one canonical row into an accumulator.

Business Rules:
- A row overwrites the rate of its own pay type (last write wins).
- The complementary rate is inferred with the overtime premium only while it
  is still unset: overtime = regular x 1.5, regular = overtime / 1.5.
- Inference never replaces a rate that a real row supplied.
- A row whose rate was missing in the source does not replace a known rate
  and never drives inference.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from timesheet_invoicer.models import (
    ActivityAccumulator,
    CanonicalTimesheetRow,
    PayType,
    RateSource,
    round2,
)

# Standard overtime premium (time and a half)
OVERTIME_MULTIPLIER = Decimal("1.5")


def _can_fill(source: Optional[RateSource]) -> bool:
    return source is None or source is RateSource.DEFAULTED


def _own_rate(
    current: Optional[Decimal],
    current_source: Optional[RateSource],
    row: CanonicalTimesheetRow,
) -> tuple[Optional[Decimal], Optional[RateSource]]:
    if row.rate_supplied:
        return row.burdened_rate, RateSource.EXPLICIT
    if _can_fill(current_source):
        return row.burdened_rate, RateSource.DEFAULTED
    return current, current_source


def apply_row(
    acc: ActivityAccumulator,
    row: CanonicalTimesheetRow,
    multiplier: Decimal = OVERTIME_MULTIPLIER,
) -> ActivityAccumulator:
    """Merge a row's hours and rate into ``acc`` (mutates and returns it)."""
    if row.pay_type is PayType.REGULAR:
        acc.regular_hours = round2(acc.regular_hours + row.hours)
        acc.regular_rate, acc.regular_rate_source = _own_rate(
            acc.regular_rate, acc.regular_rate_source, row,
        )
        if row.rate_supplied and _can_fill(acc.overtime_rate_source):
            acc.overtime_rate = round2(row.burdened_rate * multiplier)
            acc.overtime_rate_source = RateSource.INFERRED
    elif row.pay_type is PayType.OVERTIME:
        acc.overtime_hours = round2(acc.overtime_hours + row.hours)
        acc.overtime_rate, acc.overtime_rate_source = _own_rate(
            acc.overtime_rate, acc.overtime_rate_source, row,
        )
        if row.rate_supplied and _can_fill(acc.regular_rate_source):
            acc.regular_rate = round2(row.burdened_rate / multiplier)
            acc.regular_rate_source = RateSource.INFERRED

    acc.recompute()
    return acc

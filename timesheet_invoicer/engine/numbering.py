"""Invoice numbering.

Batch numbering: each distinct job in a batch gets the next number from a
seed, in order of first appearance. Revision numbering: a resaved invoice is
renumbered ``{base}-Rev{N}`` with N one past the highest existing revision.
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Iterable

from timesheet_invoicer.models import CanonicalTimesheetRow, NumberingState

_REVISION_RE = re.compile(r"^(?P<base>.*?)-Rev(?P<rev>\d+)$")


def assign_invoice_numbers(
    rows: Iterable[CanonicalTimesheetRow],
    state: NumberingState,
) -> tuple[list[CanonicalTimesheetRow], NumberingState]:
    """Populate ``invoice_number`` on rows that lack one.

    Numbers already present on rows are honoured: their job keeps that
    number and the counter skips over it. The input state is left
    untouched; the returned state carries the advanced counter and every
    job assignment made so far.
    """
    rows = list(rows)
    next_value = state.next_value
    assigned = dict(state.assigned)
    for row in rows:
        if row.invoice_number:
            assigned.setdefault(row.job_key, row.invoice_number)
    in_use = set(assigned.values()) | {row.invoice_number for row in rows if row.invoice_number}
    numbered: list[CanonicalTimesheetRow] = []

    for row in rows:
        if row.invoice_number:
            numbered.append(row)
            continue

        job_key = row.job_key
        if job_key not in assigned:
            while str(next_value) in in_use:
                next_value += 1
            assigned[job_key] = str(next_value)
            in_use.add(assigned[job_key])
            next_value += 1

        numbered.append(replace(row, invoice_number=assigned[job_key]))

    return numbered, NumberingState(next_value=next_value, assigned=assigned)


def split_revision(invoice_number: str) -> tuple[str, int]:
    """``"500-Rev2"`` -> ``("500", 2)``; unrevised numbers give revision 0."""
    match = _REVISION_RE.match(invoice_number.strip())
    if match:
        return match.group("base"), int(match.group("rev"))
    return invoice_number.strip(), 0


def next_revision_number(
    invoice_number: str,
    existing_numbers: Iterable[str],
) -> str:
    """Next free ``-RevN`` number for the invoice's base number."""
    base, highest = split_revision(invoice_number)

    for number in existing_numbers:
        other_base, rev = split_revision(number)
        if other_base == base and rev > highest:
            highest = rev

    return f"{base}-Rev{highest + 1}"

"""Batch pipeline: raw timesheet rows -> numbered, aggregated invoices.

normalize -> assign invoice numbers -> aggregate -> inference review.
Business problems (bad rows, assumed rates) come back on the BatchResult;
only structurally invalid input raises.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from timesheet_invoicer.config import DEFAULT_START_INVOICE_NUMBER
from timesheet_invoicer.engine.aggregator import aggregate_rows
from timesheet_invoicer.engine.numbering import assign_invoice_numbers
from timesheet_invoicer.engine.rate_inference import OVERTIME_MULTIPLIER
from timesheet_invoicer.models import (
    BatchResult,
    CanonicalTimesheetRow,
    ClientInfo,
    JobRef,
    NormalizedRows,
    NumberingState,
    SkippedRow,
)
from timesheet_invoicer.parsers.row_normalizer import (
    normalize_grid,
    normalize_manual_entries,
    normalize_records,
)
from timesheet_invoicer.parsers.spreadsheet_reader import read_grid


def build_invoices(
    rows: Iterable[CanonicalTimesheetRow],
    start_invoice_number: Union[int, str] = DEFAULT_START_INVOICE_NUMBER,
    client: Optional[ClientInfo] = None,
    multiplier: Decimal = OVERTIME_MULTIPLIER,
    skipped: Optional[list[SkippedRow]] = None,
) -> BatchResult:
    """Number and aggregate already-normalized rows.

    ``skipped`` carries normalizer diagnostics into the result, ahead of any
    rows the aggregator rejects.
    """
    state = NumberingState.start(start_invoice_number)
    numbered, state = assign_invoice_numbers(rows, state)

    result = aggregate_rows(numbered, client=client, multiplier=multiplier)
    result.rows = numbered
    result.numbering = state
    if skipped:
        result.skipped = list(skipped) + result.skipped
    return result


def _build(normalized: NormalizedRows, **kwargs: Any) -> BatchResult:
    return build_invoices(normalized.rows, skipped=normalized.skipped, **kwargs)


def process_records(
    records: Sequence[Mapping[str, Any]],
    column_mapping: Optional[Mapping[str, str]] = None,
    start_invoice_number: Union[int, str] = DEFAULT_START_INVOICE_NUMBER,
    client: Optional[ClientInfo] = None,
    multiplier: Decimal = OVERTIME_MULTIPLIER,
    week_ending: Optional[date] = None,
) -> BatchResult:
    normalized = normalize_records(records, column_mapping, week_ending=week_ending)
    return _build(
        normalized,
        start_invoice_number=start_invoice_number,
        client=client,
        multiplier=multiplier,
    )


def process_grid(
    grid: Sequence[Sequence[Any]],
    column_mapping: Optional[Mapping[str, str]] = None,
    start_invoice_number: Union[int, str] = DEFAULT_START_INVOICE_NUMBER,
    client: Optional[ClientInfo] = None,
    multiplier: Decimal = OVERTIME_MULTIPLIER,
    has_header: Optional[bool] = None,
    week_ending: Optional[date] = None,
) -> BatchResult:
    normalized = normalize_grid(grid, column_mapping, has_header=has_header, week_ending=week_ending)
    return _build(
        normalized,
        start_invoice_number=start_invoice_number,
        client=client,
        multiplier=multiplier,
    )


def process_manual_entries(
    entries: Sequence[Mapping[str, Any]],
    jobs: Optional[Mapping[str, JobRef]] = None,
    start_invoice_number: Union[int, str] = DEFAULT_START_INVOICE_NUMBER,
    client: Optional[ClientInfo] = None,
    multiplier: Decimal = OVERTIME_MULTIPLIER,
    week_ending: Optional[date] = None,
) -> BatchResult:
    normalized = normalize_manual_entries(entries, jobs, week_ending=week_ending)
    return _build(
        normalized,
        start_invoice_number=start_invoice_number,
        client=client,
        multiplier=multiplier,
    )


def process_workbook(
    path: Union[str, Path, bytes],
    column_mapping: Optional[Mapping[str, str]] = None,
    start_invoice_number: Union[int, str] = DEFAULT_START_INVOICE_NUMBER,
    client: Optional[ClientInfo] = None,
    multiplier: Decimal = OVERTIME_MULTIPLIER,
    week_ending: Optional[date] = None,
) -> BatchResult:
    """Read the first worksheet of an .xlsx timesheet and process it."""
    return process_grid(
        read_grid(path),
        column_mapping,
        start_invoice_number=start_invoice_number,
        client=client,
        multiplier=multiplier,
        week_ending=week_ending,
    )

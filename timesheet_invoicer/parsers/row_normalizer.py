"""Layer 1: Row Normalizer.

Turns raw timesheet rows into CanonicalTimesheetRow records. Three input
shapes are supported:

  Records: header-keyed mappings (parsed spreadsheet rows, JSON payloads).
    Columns are looked up through a column mapping (field -> header name).

  Grid: 2D array of cells with the header row at index 0.
    Mapped columns may be header names or column letters (A, B, ..., AA).
    When the mapping uses letters that are not headers, every row is data.

  Manual entries: form rows keyed by field name, with job name/number
    reconciled against the persisted jobs.

Rows that cannot be billed (unknown pay type, no employee, no job, negative
numbers) are returned as SkippedRow diagnostics instead of being dropped.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from openpyxl.utils import column_index_from_string

from timesheet_invoicer.engine.validator import validate_grid, validate_records
from timesheet_invoicer.models import (
    ZERO,
    CanonicalTimesheetRow,
    JobRef,
    MalformedRowError,
    NormalizedRows,
    PayType,
    SkippedRow,
)

logger = logging.getLogger(__name__)

FIELDS = (
    "invoice_number",
    "first_name",
    "last_name",
    "employee_name",
    "job_name",
    "job_number",
    "activity_code",
    "activity_description",
    "pay_type",
    "hours",
    "burdened_rate",
    "total",
    "week_ending",
)

# Headers written by the timesheet summary export; re-importable as-is
DEFAULT_COLUMN_MAPPING: dict[str, str] = {
    "invoice_number": "INV #",
    "employee_name": "EMPLOYEE",
    "job_name": "JOB NAME",
    "job_number": "JOB NUMBER",
    "activity_code": "Activity Code",
    "activity_description": "Activity Description",
    "pay_type": "PAY TYPE",
    "hours": "HOURS",
    "burdened_rate": "BURDENED RATE",
    "total": "TOTAL",
    "week_ending": "WEEK ENDING",
}

# Saved mappings from the web form use camelCase keys
_FIELD_ALIASES = {
    "invoiceNumber": "invoice_number",
    "firstName": "first_name",
    "lastName": "last_name",
    "employeeName": "employee_name",
    "jobName": "job_name",
    "jobNumber": "job_number",
    "activityCode": "activity_code",
    "activityDescription": "activity_description",
    "payType": "pay_type",
    "burdened": "burdened_rate",
    "burdenedRate": "burdened_rate",
    "weekEnding": "week_ending",
}

_COLUMN_LETTERS_RE = re.compile(r"^[A-Z]{1,3}$")
_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")

_DATE_FORMATS = [
    "%Y-%m-%d",      # 2025-03-16
    "%m/%d/%Y",      # 03/16/2025
    "%m-%d-%Y",      # 03-16-2025
    "%m/%d/%y",      # 3/16/25
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
]


def normalize_column_mapping(mapping: Optional[Mapping[str, str]]) -> dict[str, str]:
    """Resolve aliases and drop empty entries; ``None`` gives the default mapping."""
    if mapping is None:
        return dict(DEFAULT_COLUMN_MAPPING)

    resolved: dict[str, str] = {}
    for key, column in mapping.items():
        field = _FIELD_ALIASES.get(key, key)
        if field not in FIELDS:
            raise ValueError(f"Unknown column mapping field: '{key}'")
        if column is not None and str(column).strip():
            resolved[field] = str(column)
    return resolved


def parse_amount(value: Any) -> Optional[Decimal]:
    """Permissive numeric parse; ``None`` when missing or unparseable.

    Currency symbols and thousands separators are stripped first, so
    ``"$1,234.50"`` parses as ``1234.50``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            return None
        return result if result.is_finite() else None

    cleaned = _NON_NUMERIC_RE.sub("", str(value))
    if not cleaned or cleaned in ("-", ".", "-."):
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def parse_week_ending(value: Any) -> Optional[date]:
    """Parse dates in the formats the timesheet exports use."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    logger.debug("Cannot parse week ending date: '%s'", text)
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # Job numbers read from numeric cells come back as 1001.0
        value = int(value)
    text = str(value).strip()
    return "" if text.lower() in ("undefined", "null", "none", "nan") else text


def _is_blank(values: Mapping[str, Any]) -> bool:
    return all(_text(v) == "" for v in values.values())


def _build_row(
    fields: Mapping[str, Any],
    source_row: int,
    week_ending: Optional[date] = None,
    require_hours_and_rate: bool = False,
) -> CanonicalTimesheetRow:
    """Canonicalize one row's mapped fields or raise MalformedRowError."""
    employee_name = _text(fields.get("employee_name"))
    if not employee_name:
        first = _text(fields.get("first_name"))
        last = _text(fields.get("last_name"))
        employee_name = f"{first} {last}".strip()
    if not employee_name:
        raise MalformedRowError("missing employee name", source_row)

    job_id = _text(fields.get("job_id"))
    job_name = _text(fields.get("job_name"))
    job_number = _text(fields.get("job_number"))
    if not (job_id or job_name or job_number):
        raise MalformedRowError("missing job", source_row)

    raw_pay_type = fields.get("pay_type")
    pay_type = PayType.parse(raw_pay_type)
    if pay_type is None:
        raise MalformedRowError(f"unrecognised pay type {_text(raw_pay_type)!r}", source_row)

    hours = parse_amount(fields.get("hours"))
    rate = parse_amount(fields.get("burdened_rate"))
    if require_hours_and_rate:
        if hours is None:
            raise MalformedRowError("missing hours", source_row)
        if rate is None:
            raise MalformedRowError("missing burdened rate", source_row)

    hours = hours if hours is not None else ZERO
    if hours < 0:
        raise MalformedRowError(f"negative hours {hours}", source_row)
    if rate is not None and rate < 0:
        raise MalformedRowError(f"negative burdened rate {rate}", source_row)

    return CanonicalTimesheetRow(
        invoice_number=_text(fields.get("invoice_number")),
        employee_name=employee_name,
        job_id=job_id,
        job_name=job_name,
        job_number=job_number,
        activity_code=_text(fields.get("activity_code")),
        activity_description=_text(fields.get("activity_description")),
        pay_type=pay_type,
        hours=hours,
        burdened_rate=rate if rate is not None else ZERO,
        rate_supplied=rate is not None,
        total=parse_amount(fields.get("total")),
        week_ending=parse_week_ending(fields.get("week_ending")) or week_ending,
        source_row=source_row,
    )


def _collect(
    items: list[tuple[int, Any, Mapping[str, Any]]],
    week_ending: Optional[date],
    require_hours_and_rate: bool = False,
) -> NormalizedRows:
    rows: list[CanonicalTimesheetRow] = []
    skipped: list[SkippedRow] = []

    for source_row, raw, fields in items:
        if _is_blank(fields):
            continue
        try:
            rows.append(_build_row(fields, source_row, week_ending, require_hours_and_rate))
        except MalformedRowError as e:
            logger.debug("Skipping row %d: %s", source_row, e.reason)
            skipped.append(SkippedRow(row=raw, reason=e.reason, source_row=source_row))

    return NormalizedRows(rows=rows, skipped=skipped)


def normalize_records(
    records: Sequence[Mapping[str, Any]],
    column_mapping: Optional[Mapping[str, str]] = None,
    week_ending: Optional[date] = None,
) -> NormalizedRows:
    """Normalize header-keyed records through a column mapping.

    Mapped columns missing from a record read as empty/zero.
    ``week_ending`` fills rows whose own week ending is blank.
    """
    records = validate_records(records)
    mapping = normalize_column_mapping(column_mapping)

    items = []
    for i, record in enumerate(records, start=1):
        fields = {field: record.get(column) for field, column in mapping.items()}
        items.append((i, record, fields))

    return _collect(items, week_ending)


def _detect_header(mapping: Mapping[str, str], header: Sequence[Any]) -> bool:
    """Row 0 is a header unless the mapping only finds columns there by letter."""
    header_names = {_text(h) for h in header}
    if any(column in header_names for column in mapping.values()):
        return True
    return not any(_COLUMN_LETTERS_RE.match(column) for column in mapping.values())


def _resolve_column(column: str, header: Sequence[Any], has_header: bool) -> Optional[int]:
    # a header name wins over the column letter it happens to spell
    if has_header:
        for i, name in enumerate(header):
            if _text(name) == column:
                return i
    if _COLUMN_LETTERS_RE.match(column):
        return column_index_from_string(column) - 1
    return None


def normalize_grid(
    grid: Sequence[Sequence[Any]],
    column_mapping: Optional[Mapping[str, str]] = None,
    has_header: Optional[bool] = None,
    week_ending: Optional[date] = None,
) -> NormalizedRows:
    """Normalize a 2D array of cells.

    ``has_header=None`` auto-detects: row 0 is a header when any mapped
    column name appears in it, or when the mapping uses no column letters.
    Each mapped column resolves to a header name first, then to a letter.
    """
    grid = validate_grid(grid)
    mapping = normalize_column_mapping(column_mapping)
    if not grid:
        return NormalizedRows(rows=[], skipped=[])

    header = list(grid[0] or [])
    if has_header is None:
        has_header = _detect_header(mapping, header)

    columns = {field: _resolve_column(column, header, has_header) for field, column in mapping.items()}
    missing = [mapping[f] for f, idx in columns.items() if idx is None]
    if missing:
        logger.debug("Mapped columns not found in sheet: %s", ", ".join(missing))

    start = 1 if has_header else 0
    items = []
    for i in range(start, len(grid)):
        cells = list(grid[i] or [])
        fields = {
            field: cells[idx] if idx is not None and idx < len(cells) else None
            for field, idx in columns.items()
        }
        # 1-based spreadsheet row number
        items.append((i + 1, cells, fields))

    return _collect(items, week_ending)


def normalize_manual_entries(
    entries: Sequence[Mapping[str, Any]],
    jobs: Optional[Mapping[str, JobRef]] = None,
    week_ending: Optional[date] = None,
) -> NormalizedRows:
    """Normalize rows typed into the manual timesheet form.

    Every entry needs employee, job, hours and burdened rate. Job name and
    number come from ``jobs`` (keyed by job id) when the job is known.
    """
    entries = validate_records(entries)
    jobs = jobs or {}

    items = []
    for i, entry in enumerate(entries, start=1):
        fields = {field: entry.get(field) for field in FIELDS}
        job_id = _text(entry.get("job_id"))
        fields["job_id"] = job_id
        job = jobs.get(job_id) if job_id else None
        if job is not None:
            fields["job_name"] = job.job_name
            fields["job_number"] = job.job_number
        items.append((i, entry, fields))

    return _collect(items, week_ending, require_hours_and_rate=True)

"""Spreadsheet adapter.

Reads the first worksheet of an .xlsx timesheet with openpyxl. Cell values
are returned as-is (dates as datetime, numbers as int/float); all
interpretation happens in the row normalizer.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any, BinaryIO, Union

import openpyxl
from openpyxl.utils import get_column_letter

from timesheet_invoicer.models import StrictValidationError

logger = logging.getLogger(__name__)

WorkbookSource = Union[str, Path, bytes, BinaryIO]


def _open(source: WorkbookSource):
    if isinstance(source, bytes):
        source = io.BytesIO(source)
    try:
        return openpyxl.load_workbook(source, read_only=True, data_only=True)
    except FileNotFoundError:
        raise
    except Exception as e:
        raise StrictValidationError([f"Cannot read workbook: {e}"]) from e


def read_grid(source: WorkbookSource) -> list[list[Any]]:
    """First worksheet as a 2D array; trailing empty rows are dropped."""
    wb = _open(source)
    try:
        ws = wb.worksheets[0]
        grid = [list(row) for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()

    while grid and all(v is None or str(v).strip() == "" for v in grid[-1]):
        grid.pop()

    logger.debug("Read %d row(s) from workbook", len(grid))
    return grid


def read_records(source: WorkbookSource) -> list[dict[str, Any]]:
    """Rows below the header, keyed by header text. Unnamed columns are dropped."""
    grid = read_grid(source)
    if not grid:
        return []

    header = [str(h).strip() if h is not None else "" for h in grid[0]]
    records = []
    for row in grid[1:]:
        record = {
            name: row[i] if i < len(row) else None
            for i, name in enumerate(header)
            if name
        }
        records.append(record)
    return records


def read_headers(source: WorkbookSource) -> list[dict[str, Any]]:
    """Column names with an example value each, for building a column mapping.

    A sheet with a single row has no data to sample, so columns are offered
    by letter with that row's values as examples.
    """
    grid = read_grid(source)
    if not grid:
        return []

    first = grid[0]
    if len(grid) == 1:
        return [
            {"name": get_column_letter(i + 1), "example": value}
            for i, value in enumerate(first)
        ]

    second = grid[1]
    headers = []
    for i, name in enumerate(first):
        if name is None or str(name).strip() == "":
            continue
        headers.append({
            "name": str(name).strip(),
            "example": second[i] if i < len(second) else None,
        })
    return headers

"""Timesheet input layer: spreadsheets, records and manual entry."""
from timesheet_invoicer.parsers.row_normalizer import (
    normalize_grid,
    normalize_manual_entries,
    normalize_records,
)
from timesheet_invoicer.parsers.spreadsheet_reader import read_grid, read_headers, read_records

__all__ = [
    "normalize_grid",
    "normalize_manual_entries",
    "normalize_records",
    "read_grid",
    "read_headers",
    "read_records",
]

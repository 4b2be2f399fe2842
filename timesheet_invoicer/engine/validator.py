"""Layer 3: Input validation and inference review checks.

Structural problems (input that is not a list of records or rows) stop
processing. Business conditions such as zero hours or zero rates never do.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Iterable

from timesheet_invoicer.models import (
    ActivityBreakdown,
    InferenceWarning,
    InvoiceAggregate,
    RateSource,
    StrictValidationError,
)


def _is_row_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def validate_records(records: Any) -> list[Mapping]:
    """Require a sequence of header-keyed mappings."""
    if not _is_row_sequence(records):
        raise StrictValidationError(
            [f"Expected a list of records, got {type(records).__name__}"]
        )

    errors: list[str] = []
    for i, record in enumerate(records, start=1):
        if not isinstance(record, Mapping):
            errors.append(f"Row {i}: expected a record, got {type(record).__name__}")

    if errors:
        raise StrictValidationError(errors)

    return list(records)


def validate_grid(grid: Any) -> list[Sequence]:
    """Require a 2D array of cells."""
    if not _is_row_sequence(grid):
        raise StrictValidationError(
            [f"Expected a 2D array of cells, got {type(grid).__name__}"]
        )

    errors: list[str] = []
    for i, row in enumerate(grid):
        if row is not None and not _is_row_sequence(row):
            errors.append(f"Row {i}: expected a list of cells, got {type(row).__name__}")

    if errors:
        raise StrictValidationError(errors)

    return list(grid)


def find_inference_warnings(invoices: Iterable[InvoiceAggregate]) -> list[InferenceWarning]:
    """Flag billed activities whose rates were never supplied by a real row."""
    warnings: list[InferenceWarning] = []

    for invoice in invoices:
        for employee_name, line in invoice.employees.items():
            if not isinstance(line, ActivityBreakdown):
                continue
            for key, acc in line.activities.items():
                if acc.regular_hours == 0 and acc.overtime_hours == 0:
                    continue

                sources = (acc.regular_rate_source, acc.overtime_rate_source)
                if RateSource.EXPLICIT not in sources:
                    warnings.append(InferenceWarning(
                        invoice_number=invoice.invoice_number,
                        employee_name=employee_name,
                        activity_key=key,
                        message=(
                            f"{employee_name} / {key or '(no activity)'}: no rate supplied "
                            f"for regular or overtime; totals rest on assumed rates"
                        ),
                    ))
                    continue

                if acc.overtime_hours > 0 and acc.overtime_rate_source is RateSource.INFERRED:
                    warnings.append(InferenceWarning(
                        invoice_number=invoice.invoice_number,
                        employee_name=employee_name,
                        activity_key=key,
                        message=(
                            f"{employee_name} / {key or '(no activity)'}: overtime hours "
                            f"billed at inferred rate {acc.overtime_rate}"
                        ),
                    ))
                elif acc.regular_hours > 0 and acc.regular_rate_source is RateSource.INFERRED:
                    warnings.append(InferenceWarning(
                        invoice_number=invoice.invoice_number,
                        employee_name=employee_name,
                        activity_key=key,
                        message=(
                            f"{employee_name} / {key or '(no activity)'}: regular hours "
                            f"billed at inferred rate {acc.regular_rate}"
                        ),
                    ))

    return warnings

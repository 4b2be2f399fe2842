"""Layer 4: Aggregation Engine.

Folds canonical rows into invoice -> employee -> activity accumulators.
Rows are processed strictly in input order; rate inference depends on it.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, Optional

from timesheet_invoicer.engine.rate_inference import OVERTIME_MULTIPLIER, apply_row
from timesheet_invoicer.engine.validator import find_inference_warnings
from timesheet_invoicer.models import (
    ActivityAccumulator,
    ActivityBreakdown,
    BatchResult,
    CanonicalTimesheetRow,
    ClientInfo,
    InvoiceAggregate,
    MalformedRowError,
    SkippedRow,
)

logger = logging.getLogger(__name__)


def _check_correlation_keys(row: CanonicalTimesheetRow) -> None:
    if not row.invoice_number.strip():
        raise MalformedRowError("missing invoice number", row.source_row)
    if not row.employee_name.strip():
        raise MalformedRowError("missing employee name", row.source_row)


def _breakdown_for(invoice: InvoiceAggregate, employee_name: str) -> ActivityBreakdown:
    line = invoice.employees.get(employee_name)
    if line is None:
        line = ActivityBreakdown()
        invoice.employees[employee_name] = line
    return line  # type: ignore[return-value]


def aggregate_rows(
    rows: Iterable[CanonicalTimesheetRow],
    client: Optional[ClientInfo] = None,
    multiplier: Decimal = OVERTIME_MULTIPLIER,
) -> BatchResult:
    """Build one InvoiceAggregate per distinct invoice number."""
    client = client or ClientInfo()
    result = BatchResult()
    row_count = 0

    for row in rows:
        row_count += 1
        try:
            _check_correlation_keys(row)
        except MalformedRowError as e:
            logger.debug("Skipping row %s: %s", e.source_row, e.reason)
            result.skipped.append(SkippedRow(row=row, reason=e.reason, source_row=e.source_row))
            continue

        invoice = result.invoices.get(row.invoice_number)
        if invoice is None:
            invoice = InvoiceAggregate(
                invoice_number=row.invoice_number,
                job_name=row.job_name,
                job_number=row.job_number,
                week_ending=row.week_ending,
                client=client,
            )
            result.invoices[row.invoice_number] = invoice

        breakdown = _breakdown_for(invoice, row.employee_name)

        key = row.activity_key
        acc = breakdown.activities.get(key)
        if acc is None:
            acc = ActivityAccumulator(
                activity_code=row.activity_code,
                activity_description=row.activity_description,
            )
            breakdown.activities[key] = acc

        apply_row(acc, row, multiplier)

    result.warnings.extend(find_inference_warnings(result.invoices.values()))
    for warning in result.warnings:
        logger.warning("Invoice %s: %s", warning.invoice_number, warning.message)

    logger.info(
        "Aggregated %d row(s) into %d invoice(s), %d skipped",
        row_count, len(result.invoices), len(result.skipped),
    )
    return result

"""Layer 4: Invoice Totals Calculator.

Every running sum is rounded to cents after each addition, matching the
spreadsheet the invoices were originally reconciled against.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Mapping, Union

from timesheet_invoicer.models import (
    ZERO,
    ActivityAccumulator,
    ActivityBreakdown,
    ActivityTotal,
    CombinedInvoice,
    CombinedInvoiceLine,
    DirectHours,
    EmployeeLine,
    ExpenseOnly,
    InvoiceAggregate,
    InvoiceTotals,
    round2,
)


def _sum_rounded(values: Iterable[Decimal]) -> Decimal:
    total = ZERO
    for value in values:
        total = round2(total + value)
    return total


def expenses_total(line: EmployeeLine) -> Decimal:
    if isinstance(line, (DirectHours, ExpenseOnly)):
        return _sum_rounded(line.expenses.values())
    return round2(ZERO)


def employee_total(line: EmployeeLine) -> Decimal:
    """Billable amount for one employee line, whatever its shape."""
    if isinstance(line, ActivityBreakdown):
        return _sum_rounded(
            acc.regular_total + acc.overtime_total for acc in line.activities.values()
        )
    if isinstance(line, DirectHours):
        return round2(line.labor_total + expenses_total(line))
    if isinstance(line, ExpenseOnly):
        return expenses_total(line)
    raise TypeError(f"Unknown employee line type: {type(line).__name__}")


def sorted_activities(line: ActivityBreakdown) -> list[tuple[str, ActivityAccumulator]]:
    """Display order: most regular hours first, ties keep insertion order."""
    return sorted(line.activities.items(), key=lambda item: item[1].regular_hours, reverse=True)


def calculate_totals(invoice: InvoiceAggregate) -> InvoiceTotals:
    total_regular = ZERO
    total_overtime = ZERO
    total_expenses = ZERO
    total_amount = ZERO
    per_employee: dict[str, Decimal] = {}
    by_activity: dict[str, list[Decimal]] = {}

    for name, line in invoice.employees.items():
        if isinstance(line, ActivityBreakdown):
            for key, acc in line.activities.items():
                amount = acc.regular_total + acc.overtime_total
                total_regular = round2(total_regular + acc.regular_hours)
                total_overtime = round2(total_overtime + acc.overtime_hours)
                total_amount = round2(total_amount + amount)

                bucket = by_activity.setdefault(key, [ZERO, ZERO, ZERO])
                bucket[0] = round2(bucket[0] + acc.regular_hours)
                bucket[1] = round2(bucket[1] + acc.overtime_hours)
                bucket[2] = round2(bucket[2] + amount)

        elif isinstance(line, DirectHours):
            expenses = expenses_total(line)
            total_regular = round2(total_regular + line.regular_hours)
            total_overtime = round2(total_overtime + line.overtime_hours)
            total_expenses = round2(total_expenses + expenses)
            total_amount = round2(total_amount + line.labor_total + expenses)

        elif isinstance(line, ExpenseOnly):
            expenses = expenses_total(line)
            total_expenses = round2(total_expenses + expenses)
            total_amount = round2(total_amount + expenses)

        per_employee[name] = employee_total(line)

    per_activity = sorted(
        (
            ActivityTotal(activity_key=key, regular_hours=b[0], overtime_hours=b[1], total=b[2])
            for key, b in by_activity.items()
        ),
        key=lambda t: t.total,
        reverse=True,
    )

    return InvoiceTotals(
        total_regular_hours=round2(total_regular),
        total_overtime_hours=round2(total_overtime),
        total_expenses=round2(total_expenses),
        total_amount=round2(total_amount),
        per_activity_totals=per_activity,
        per_employee_totals=per_employee,
    )


def combine_invoices(
    invoices: Union[Mapping[str, InvoiceAggregate], Iterable[InvoiceAggregate]],
) -> CombinedInvoice:
    """Summarize a batch of invoices into one combined view."""
    if isinstance(invoices, Mapping):
        invoices = invoices.values()

    lines: list[CombinedInvoiceLine] = []
    total_regular = ZERO
    total_overtime = ZERO
    total_amount = ZERO

    for invoice in invoices:
        totals = calculate_totals(invoice)
        lines.append(CombinedInvoiceLine(
            invoice_number=invoice.invoice_number,
            job_name=invoice.job_name,
            job_number=invoice.job_number,
            regular_hours=totals.total_regular_hours,
            overtime_hours=totals.total_overtime_hours,
            total=totals.total_amount,
            week_ending=invoice.week_ending,
        ))
        total_regular = round2(total_regular + totals.total_regular_hours)
        total_overtime = round2(total_overtime + totals.total_overtime_hours)
        total_amount = round2(total_amount + totals.total_amount)

    return CombinedInvoice(
        lines=lines,
        total_regular_hours=round2(total_regular),
        total_overtime_hours=round2(total_overtime),
        total_amount=round2(total_amount),
    )

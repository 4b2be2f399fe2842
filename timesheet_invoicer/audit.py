"""Layer 6: Audit Engine.

JSON trail of one batch: every invoice with its totals and rate sources,
the rows that were left out, and the inference warnings.
"""

from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path

from timesheet_invoicer.engine.totals import (
    calculate_totals,
    combine_invoices,
    employee_total,
    sorted_activities,
)
from timesheet_invoicer.models import (
    ActivityBreakdown,
    BatchResult,
    CanonicalTimesheetRow,
    DirectHours,
    EmployeeLine,
    ExpenseOnly,
)


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and date values."""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, date):
            return obj.isoformat()
        return super().default(obj)


def _rate(value):
    return float(value) if value is not None else None


def _employee_dict(name: str, line: EmployeeLine) -> dict:
    data = {"name": name, "total": float(employee_total(line))}

    if isinstance(line, ActivityBreakdown):
        data["kind"] = "activities"
        data["activities"] = [
            {
                "activity": key,
                "regular_hours": float(acc.regular_hours),
                "overtime_hours": float(acc.overtime_hours),
                "regular_rate": _rate(acc.regular_rate),
                "overtime_rate": _rate(acc.overtime_rate),
                "regular_rate_source": acc.regular_rate_source.value if acc.regular_rate_source else None,
                "overtime_rate_source": acc.overtime_rate_source.value if acc.overtime_rate_source else None,
                "regular_total": float(acc.regular_total),
                "overtime_total": float(acc.overtime_total),
            }
            for key, acc in sorted_activities(line)
        ]
    elif isinstance(line, DirectHours):
        data["kind"] = "hours"
        data["regular_hours"] = float(line.regular_hours)
        data["overtime_hours"] = float(line.overtime_hours)
        data["regular_rate"] = float(line.regular_rate)
        data["overtime_rate"] = float(line.overtime_rate)
        data["expenses"] = {k: float(v) for k, v in line.expenses.items()}
    elif isinstance(line, ExpenseOnly):
        data["kind"] = "expenses"
        data["expenses"] = {k: float(v) for k, v in line.expenses.items()}

    return data


def _skipped_row(row) -> dict | list:
    if isinstance(row, CanonicalTimesheetRow):
        data = asdict(row)
        data["pay_type"] = row.pay_type.value
        return data
    if is_dataclass(row):
        return asdict(row)
    if isinstance(row, (list, tuple)):
        return list(row)
    return dict(row)


def generate_audit_dict(result: BatchResult) -> dict:
    """Build audit dictionary from a batch result (no file I/O)."""
    invoices = []
    for invoice in result.invoices.values():
        totals = calculate_totals(invoice)
        invoices.append({
            "invoice_number": invoice.invoice_number,
            "job_name": invoice.job_name,
            "job_number": invoice.job_number,
            "week_ending": invoice.week_ending.isoformat() if invoice.week_ending else None,
            "client": invoice.client.name,
            "employees": [_employee_dict(n, line) for n, line in invoice.employees.items()],
            "activity_totals": [
                {
                    "activity": t.activity_key,
                    "regular_hours": float(t.regular_hours),
                    "overtime_hours": float(t.overtime_hours),
                    "total": float(t.total),
                }
                for t in totals.per_activity_totals
            ],
            "totals": {
                "regular_hours": float(totals.total_regular_hours),
                "overtime_hours": float(totals.total_overtime_hours),
                "expenses": float(totals.total_expenses),
                "amount": float(totals.total_amount),
            },
        })

    combined = combine_invoices(result.invoices)

    return {
        "invoices": invoices,
        "summary": {
            "total_invoices": len(result.invoices),
            "total_regular_hours": float(combined.total_regular_hours),
            "total_overtime_hours": float(combined.total_overtime_hours),
            "grand_total_usd": float(combined.total_amount),
        },
        "numbering": {
            "next_invoice_number": result.numbering.next_value,
            "assigned": dict(result.numbering.assigned),
        } if result.numbering else None,
        "skipped_rows": [
            {
                "source_row": s.source_row,
                "reason": s.reason,
                "row": _skipped_row(s.row),
            }
            for s in result.skipped
        ],
        "warnings": [
            {
                "invoice_number": w.invoice_number,
                "employee": w.employee_name,
                "activity": w.activity_key,
                "message": w.message,
            }
            for w in result.warnings
        ],
    }


def generate_audit(result: BatchResult, output_path: str | Path) -> Path:
    """Generate audit JSON file from a batch result."""
    output_path = Path(output_path)
    audit = generate_audit_dict(result)
    output_path.write_text(json.dumps(audit, indent=2, cls=DecimalEncoder), encoding='utf-8')
    return output_path

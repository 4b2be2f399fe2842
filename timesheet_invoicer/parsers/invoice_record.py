"""Stored and hand-built invoice records.

Saved invoices and company (expense) invoices arrive as nested dicts whose
employee entries come in three shapes:

  {"activities": {...}}                      -> ActivityBreakdown
  {"hours"/"regularHours", "rate", ...}      -> DirectHours
  {"perDiem", "mileage", "safetyEquipment"}  -> ExpenseOnly

The shape is resolved once here so nothing downstream inspects dict keys.
Both camelCase and snake_case keys are accepted.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import fields
from decimal import Decimal
from typing import Any, Optional

from timesheet_invoicer.models import (
    ZERO,
    ActivityAccumulator,
    ActivityBreakdown,
    ClientInfo,
    DirectHours,
    EmployeeLine,
    ExpenseOnly,
    InvoiceAggregate,
    MalformedRowError,
    RateSource,
    round2,
)
from timesheet_invoicer.parsers.row_normalizer import parse_amount, parse_week_ending

# expense label -> accepted keys
EXPENSE_KEYS = {
    "per_diem": ("per_diem", "perDiem"),
    "mileage": ("mileage",),
    "safety_equipment": ("safety_equipment", "safetyEquipment"),
}

_HOURS_KEYS = ("regular_hours", "regularHours", "hours", "overtime_hours", "overtimeHours")
_RATE_KEYS = ("regular_rate", "regularRate", "rate", "overtime_rate", "overtimeRate")


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] not in (None, ""):
            return data[key]
    return None


def _amount(data: Mapping[str, Any], *keys: str) -> Optional[Decimal]:
    return parse_amount(_pick(data, *keys))


def _expenses(data: Mapping[str, Any]) -> dict[str, Decimal]:
    expenses = {}
    for label, keys in EXPENSE_KEYS.items():
        value = _amount(data, *keys)
        if value:
            expenses[label] = round2(value)
    return expenses


def _accumulator(data: Mapping[str, Any]) -> ActivityAccumulator:
    regular_rate = _amount(data, "regular_rate", "regularRate")
    overtime_rate = _amount(data, "overtime_rate", "overtimeRate")
    acc = ActivityAccumulator(
        activity_code=str(_pick(data, "activity_code", "activityCode", "code") or ""),
        activity_description=str(
            _pick(data, "activity_description", "activityDescription", "description") or ""
        ),
        regular_hours=round2(_amount(data, "regular_hours", "regularHours") or ZERO),
        overtime_hours=round2(_amount(data, "overtime_hours", "overtimeHours") or ZERO),
        regular_rate=regular_rate,
        overtime_rate=overtime_rate,
        regular_rate_source=RateSource.EXPLICIT if regular_rate is not None else None,
        overtime_rate_source=RateSource.EXPLICIT if overtime_rate is not None else None,
    )
    acc.recompute()
    return acc


def resolve_employee_line(data: Mapping[str, Any]) -> EmployeeLine:
    """Pick the EmployeeLine variant for one employee entry."""
    if not isinstance(data, Mapping):
        raise MalformedRowError(f"employee entry must be an object, got {type(data).__name__}")

    activities = data.get("activities")
    if activities is not None:
        if isinstance(activities, Mapping):
            items = list(activities.values())
        else:
            items = list(activities)
        breakdown = ActivityBreakdown()
        for item in items:
            acc = _accumulator(item)
            breakdown.activities[acc.key] = acc
        return breakdown

    if any(k in data for k in _HOURS_KEYS + _RATE_KEYS):
        return DirectHours(
            regular_hours=round2(_amount(data, "regular_hours", "regularHours", "hours") or ZERO),
            overtime_hours=round2(_amount(data, "overtime_hours", "overtimeHours") or ZERO),
            regular_rate=_amount(data, "regular_rate", "regularRate", "rate") or ZERO,
            overtime_rate=_amount(data, "overtime_rate", "overtimeRate") or ZERO,
            expenses=_expenses(data),
        )

    if any(k in data for keys in EXPENSE_KEYS.values() for k in keys):
        return ExpenseOnly(expenses=_expenses(data))

    raise MalformedRowError(
        "employee entry has no activities, hours or expenses: keys "
        + ", ".join(sorted(map(str, data.keys())))
    )


def _client(data: Any) -> ClientInfo:
    if data is None:
        return ClientInfo()
    if not isinstance(data, Mapping):
        raise MalformedRowError(f"client must be an object, got {type(data).__name__}")
    known = {f.name for f in fields(ClientInfo)}
    unknown = set(data) - known
    if unknown:
        raise MalformedRowError("unknown client field(s): " + ", ".join(sorted(map(str, unknown))))
    return ClientInfo(**{k: str(v) for k, v in data.items()})


def resolve_invoice(
data: Mapping[str, Any]) -> InvoiceAggregate:
    """Build an InvoiceAggregate from a saved or hand-built invoice dict.

    ``employees`` may be a mapping of name -> entry, or a list of entries
    each carrying a ``name``.
    """
    number = _pick(data, "invoice_number", "invoiceNumber")
    if number is None:
        raise MalformedRowError("invoice has no invoice number")

    client = _client(data.get("client"))

    invoice = InvoiceAggregate(
        invoice_number=str(number),
        job_name=str(_pick(data, "job_name", "jobName") or ""),
        job_number=str(_pick(data, "job_number", "jobNumber") or ""),
        week_ending=parse_week_ending(_pick(data, "week_ending", "weekEnding")),
        client=client,
    )

    employees = data.get("employees") or {}
    if isinstance(employees, Mapping):
        entries = list(employees.items())
    else:
        entries = [(_pick(e, "name", "employee_name", "employeeName"), e) for e in employees]

    for name, entry in entries:
        if not name:
            raise MalformedRowError("employee entry has no name")
        invoice.employees[str(name)] = resolve_employee_line(entry)

    return invoice


def invoice_from_lines(
    invoice_number: str,
    job_name: str,
    job_number: str,
    lines: list[Mapping[str, Any]],
    week_ending=None,
) -> InvoiceAggregate:
    """Rebuild an invoice from flat stored line records."""
    invoice = InvoiceAggregate(
        invoice_number=invoice_number,
        job_name=job_name,
        job_number=job_number,
        week_ending=week_ending,
    )
    for line in lines:
        breakdown = invoice.employees.setdefault(line["employee_name"], ActivityBreakdown())
        acc = _accumulator(line)
        breakdown.activities[acc.key] = acc
    return invoice

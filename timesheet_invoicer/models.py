"""Layer 2: Canonical data model for timesheet invoicing."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Mapping, Optional, Union

CENT = Decimal("0.01")
ZERO = Decimal("0")


def round2(value: Decimal) -> Decimal:
    """Round to 2 places, half away from zero (spreadsheet display rounding)."""
    return value.quantize(CENT, ROUND_HALF_UP)


def activity_key(code: str, description: str) -> str:
    code = _blank_undefined(code)
    description = _blank_undefined(description)
    if not code and not description:
        return ""
    return f"{code} - {description}"


def _blank_undefined(value: Optional[str]) -> str:
    if value is None:
        return ""
    value = str(value).strip()
    return "" if value.lower() in ("undefined", "null", "none") else value


class PayType(Enum):
    REGULAR = "Regular"
    OVERTIME = "Overtime"

    @classmethod
    def parse(cls, value: Any) -> Optional["PayType"]:
        """Case-insensitive lookup; anything unrecognised returns None."""
        if value is None:
            return None
        text = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        return None


class RateSource(Enum):
    EXPLICIT = "explicit"
    INFERRED = "inferred"
    DEFAULTED = "defaulted"


@dataclass(frozen=True)
class ClientInfo:
    """Bill-to block printed on every invoice."""
    name: str = "CEC Facilities Group"
    address: str = "1275 Valley View Lane"
    city: str = "Irving"
    state: str = "TX"
    zip: str = "75061"


@dataclass(frozen=True)
class BusinessInfo:
    """Issuer block printed on every invoice."""
    name: str = "Twenty4 Services LLC"
    address: str = "200 Greenlea St"
    city: str = "Pulaski"
    state: str = "VA"
    zip: str = "24301"
    phone: str = "(972) 333-0913"
    email: str = "kim@twenty4services.com"
    payment_terms: str = "Net 30"


@dataclass(frozen=True)
class JobRef:
    """Persisted job as seen by the manual-entry normalizer."""
    job_name: str
    job_number: str


@dataclass(frozen=True)
class CanonicalTimesheetRow:
    """Single line item of labor (canonical form)."""
    employee_name: str
    job_name: str
    job_number: str
    pay_type: PayType
    hours: Decimal
    burdened_rate: Decimal
    invoice_number: str = ""
    job_id: str = ""
    activity_code: str = ""
    activity_description: str = ""
    rate_supplied: bool = True
    total: Optional[Decimal] = None
    week_ending: Optional[date] = None
    source_row: int = 0

    def __post_init__(self) -> None:
        for name, val in [("hours", self.hours), ("burdened_rate", self.burdened_rate)]:
            if val < 0:
                raise ValueError(f"'{name}' must be non-negative, got {val}")

    @property
    def job_key(self) -> str:
        return self.job_id or self.job_number or self.job_name

    @property
    def activity_key(self) -> str:
        return activity_key(self.activity_code, self.activity_description)


@dataclass
class ActivityAccumulator:
    """Running totals for one (employee, activity) pair within one invoice.

    Rates are ``None`` until a row (or inference) sets them; ``0`` is a real
    rate. Totals are always recomputed from hours and rate.
    """
    activity_code: str = ""
    activity_description: str = ""
    regular_hours: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    regular_rate: Optional[Decimal] = None
    overtime_rate: Optional[Decimal] = None
    regular_total: Decimal = ZERO
    overtime_total: Decimal = ZERO
    regular_rate_source: Optional[RateSource] = None
    overtime_rate_source: Optional[RateSource] = None

    @property
    def key(self) -> str:
        return activity_key(self.activity_code, self.activity_description)

    @property
    def total(self) -> Decimal:
        return round2(self.regular_total + self.overtime_total)

    def recompute(self) -> None:
        self.regular_total = round2(self.regular_hours * (self.regular_rate or ZERO))
        self.overtime_total = round2(self.overtime_hours * (self.overtime_rate or ZERO))


@dataclass
class ActivityBreakdown:
    """Employee billed per activity."""
    activities: dict[str, ActivityAccumulator] = field(default_factory=dict)


@dataclass
class DirectHours:
    """Employee billed on plain hours, no activity breakdown."""
    regular_hours: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    regular_rate: Decimal = ZERO
    overtime_rate: Decimal = ZERO
    expenses: dict[str, Decimal] = field(default_factory=dict)

    @property
    def labor_total(self) -> Decimal:
        return round2(
            round2(self.regular_hours * self.regular_rate)
            + round2(self.overtime_hours * self.overtime_rate)
        )


@dataclass
class ExpenseOnly:
    """Employee billed only for itemized expenses (per diem, mileage, ...)."""
    expenses: dict[str, Decimal] = field(default_factory=dict)


EmployeeLine = Union[ActivityBreakdown, DirectHours, ExpenseOnly]


@dataclass
class InvoiceAggregate:
    """One generated invoice, keyed by invoice number."""
    invoice_number: str
    job_name: str
    job_number: str
    week_ending: Optional[date] = None
    client: ClientInfo = field(default_factory=ClientInfo)
    employees: dict[str, EmployeeLine] = field(default_factory=dict)

    @property
    def file_stem(self) -> str:
        return f"INV#{self.invoice_number} {self.job_number} {self.job_name}".strip()


@dataclass(frozen=True)
class ActivityTotal:
    activity_key: str
    regular_hours: Decimal
    overtime_hours: Decimal
    total: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    """Presentation-ready totals for one invoice."""
    total_regular_hours: Decimal
    total_overtime_hours: Decimal
    total_expenses: Decimal
    total_amount: Decimal
    per_activity_totals: list[ActivityTotal]
    per_employee_totals: dict[str, Decimal]

    @property
    def total_hours(self) -> Decimal:
        return round2(self.total_regular_hours + self.total_overtime_hours)


@dataclass(frozen=True)
class CombinedInvoiceLine:
    invoice_number: str
    job_name: str
    job_number: str
    regular_hours: Decimal
    overtime_hours: Decimal
    total: Decimal
    week_ending: Optional[date] = None


@dataclass(frozen=True)
class CombinedInvoice:
    """Multi-invoice summary for one batch."""
    lines: list[CombinedInvoiceLine]
    total_regular_hours: Decimal
    total_overtime_hours: Decimal
    total_amount: Decimal

    @property
    def week_ending(self) -> Optional[date]:
        return self.lines[0].week_ending if self.lines else None


@dataclass(frozen=True)
class SkippedRow:
    """A source row left out of accumulation, with the reason why."""
    row: Union[Mapping[str, Any], CanonicalTimesheetRow, list, tuple]
    reason: str
    source_row: int = 0


@dataclass(frozen=True)
class InferenceWarning:
    """Totals that rest entirely on assumed rates; flag for review."""
    invoice_number: str
    employee_name: str
    activity_key: str
    message: str


@dataclass
class NumberingState:
    """Invoice counter plus job -> invoice number assignments."""
    next_value: int
    assigned: dict[str, str] = field(default_factory=dict)

    @classmethod
    def start(cls, seed: Union[int, str]) -> "NumberingState":
        try:
            return cls(next_value=int(str(seed).strip()))
        except ValueError:
            raise StrictValidationError([f"Start invoice number must be an integer, got {seed!r}"]) from None


@dataclass
class BatchResult:
    """Outcome of one batch run: invoices, the numbered rows and diagnostics."""
    invoices: dict[str, InvoiceAggregate] = field(default_factory=dict)
    skipped: list[SkippedRow] = field(default_factory=list)
    warnings: list[InferenceWarning] = field(default_factory=list)
    rows: list[CanonicalTimesheetRow] = field(default_factory=list)
    numbering: Optional[NumberingState] = None

    @property
    def ok(self) -> bool:
        return not self.skipped


@dataclass(frozen=True)
class NormalizedRows:
    rows: list[CanonicalTimesheetRow]
    skipped: list[SkippedRow]


class StrictValidationError(Exception):
    """Raised when input is structurally invalid."""
    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Strict validation failed with {len(errors)} error(s):\n" +
                         "\n".join(f"  - {e}" for e in errors))


class MalformedRowError(Exception):
    """A single row cannot be used; recoverable, row-scoped."""
    def __init__(self, reason: str, source_row: int = 0):
        self.reason = reason
        self.source_row = source_row
        super().__init__(reason)


class PersistenceError(Exception):
    """Raised when the invoice store fails."""


class DuplicateInvoiceError(PersistenceError):
    """Raised when an invoice number is already taken in the store."""

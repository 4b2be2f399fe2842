"""Pydantic request/response models for the Invoicer API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ActivityLine(BaseModel):
    activity: str
    regular_hours: float
    overtime_hours: float
    regular_rate: float | None = None
    overtime_rate: float | None = None
    total: float


class EmployeeSummary(BaseModel):
    name: str
    total: float
    activities: list[ActivityLine] = Field(default_factory=list)
    expenses: dict[str, float] = Field(default_factory=dict)


class ActivityTotalSummary(BaseModel):
    activity: str
    regular_hours: float
    overtime_hours: float
    total: float


class InvoiceSummary(BaseModel):
    invoice_number: str
    job_name: str
    job_number: str
    week_ending: str | None = None
    file_name: str
    total_regular_hours: float
    total_overtime_hours: float
    total_expenses: float
    total_amount: float
    employees: list[EmployeeSummary]
    activity_totals: list[ActivityTotalSummary]


class CombinedLine(BaseModel):
    invoice_number: str
    job_name: str
    job_number: str
    regular_hours: float
    overtime_hours: float
    total: float


class CombinedSummary(BaseModel):
    lines: list[CombinedLine]
    total_regular_hours: float
    total_overtime_hours: float
    total_amount: float


class SkippedRowOut(BaseModel):
    source_row: int
    reason: str


class WarningOut(BaseModel):
    invoice_number: str
    employee: str
    activity: str
    message: str


class RowsRequest(BaseModel):
    """JSON rows: header-keyed records, or manual form entries."""
    records: list[dict[str, Any]]
    column_mapping: dict[str, str] | None = None
    manual: bool = False
    start_invoice_number: int | None = None
    week_ending: str | None = None
    include_excel: bool = False
    save: bool = False


class GenerateResponse(BaseModel):
    success: bool
    invoices: list[InvoiceSummary] | None = None
    combined: CombinedSummary | None = None
    skipped: list[SkippedRowOut] | None = None
    warnings: list[WarningOut] | None = None
    next_invoice_number: int | None = None
    excel_base64: str | None = None
    audit: dict | None = None
    error_type: str | None = None
    errors: list[str] | None = None


class JobIn(BaseModel):
    job_name: str
    job_number: str
    job_description: str | None = None
    client_name: str | None = None

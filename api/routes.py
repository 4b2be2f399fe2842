"""API routes for the Timesheet Invoicer."""

from __future__ import annotations

import base64
import json
import tempfile
from datetime import date
from functools import lru_cache
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, UploadFile

from timesheet_invoicer.audit import DecimalEncoder, generate_audit_dict
from timesheet_invoicer.config import get_settings
from timesheet_invoicer.engine.totals import (
    calculate_totals,
    combine_invoices,
    employee_total,
    sorted_activities,
)
from timesheet_invoicer.excel import generate_invoice_workbook
from timesheet_invoicer.excel.generator import invoice_file_name
from timesheet_invoicer.models import (
    ActivityBreakdown,
    BatchResult,
    DirectHours,
    DuplicateInvoiceError,
    ExpenseOnly,
    InvoiceAggregate,
    MalformedRowError,
    PersistenceError,
    StrictValidationError,
)
from timesheet_invoicer.parsers.invoice_record import resolve_invoice
from timesheet_invoicer.parsers.row_normalizer import parse_week_ending
from timesheet_invoicer.pipeline import process_manual_entries, process_records, process_workbook
from timesheet_invoicer.store import InvoiceStore

from api.schemas import (
    ActivityLine,
    ActivityTotalSummary,
    CombinedLine,
    CombinedSummary,
    EmployeeSummary,
    GenerateResponse,
    InvoiceSummary,
    JobIn,
    RowsRequest,
    SkippedRowOut,
    WarningOut,
)

router = APIRouter(prefix="/api/v1")


@lru_cache(maxsize=1)
def get_store() -> InvoiceStore:
    return InvoiceStore(get_settings().database_url)


def _rate(value):
    return float(value) if value is not None else None


def _employee_summary(name: str, line) -> EmployeeSummary:
    summary = EmployeeSummary(name=name, total=float(employee_total(line)))
    if isinstance(line, ActivityBreakdown):
        summary.activities = [
            ActivityLine(
                activity=key,
                regular_hours=float(acc.regular_hours),
                overtime_hours=float(acc.overtime_hours),
                regular_rate=_rate(acc.regular_rate),
                overtime_rate=_rate(acc.overtime_rate),
                total=float(acc.total),
            )
            for key, acc in sorted_activities(line)
        ]
    elif isinstance(line, DirectHours):
        summary.activities = [ActivityLine(
            activity="",
            regular_hours=float(line.regular_hours),
            overtime_hours=float(line.overtime_hours),
            regular_rate=float(line.regular_rate),
            overtime_rate=float(line.overtime_rate),
            total=float(line.labor_total),
        )]
    if isinstance(line, (DirectHours, ExpenseOnly)):
        summary.expenses = {k: float(v) for k, v in line.expenses.items()}
    return summary


def _invoice_summary(invoice: InvoiceAggregate) -> InvoiceSummary:
    totals = calculate_totals(invoice)
    return InvoiceSummary(
        invoice_number=invoice.invoice_number,
        job_name=invoice.job_name,
        job_number=invoice.job_number,
        week_ending=invoice.week_ending.isoformat() if invoice.week_ending else None,
        file_name=invoice_file_name(invoice),
        total_regular_hours=float(totals.total_regular_hours),
        total_overtime_hours=float(totals.total_overtime_hours),
        total_expenses=float(totals.total_expenses),
        total_amount=float(totals.total_amount),
        employees=[_employee_summary(n, line) for n, line in invoice.employees.items()],
        activity_totals=[
            ActivityTotalSummary(
                activity=t.activity_key,
                regular_hours=float(t.regular_hours),
                overtime_hours=float(t.overtime_hours),
                total=float(t.total),
            )
            for t in totals.per_activity_totals
        ],
    )


def _batch_response(result: BatchResult, include_excel: bool) -> GenerateResponse:
    combined = combine_invoices(result.invoices)

    excel_b64 = None
    if include_excel and result.invoices:
        with tempfile.TemporaryDirectory() as tmpdir:
            out_excel = Path(tmpdir) / "Invoices.xlsx"
            generate_invoice_workbook(result, out_excel)
            excel_b64 = base64.b64encode(out_excel.read_bytes()).decode("ascii")

    return GenerateResponse(
        success=True,
        invoices=[_invoice_summary(inv) for inv in result.invoices.values()],
        combined=CombinedSummary(
            lines=[
                CombinedLine(
                    invoice_number=line.invoice_number,
                    job_name=line.job_name,
                    job_number=line.job_number,
                    regular_hours=float(line.regular_hours),
                    overtime_hours=float(line.overtime_hours),
                    total=float(line.total),
                )
                for line in combined.lines
            ],
            total_regular_hours=float(combined.total_regular_hours),
            total_overtime_hours=float(combined.total_overtime_hours),
            total_amount=float(combined.total_amount),
        ),
        skipped=[SkippedRowOut(source_row=s.source_row, reason=s.reason) for s in result.skipped],
        warnings=[
            WarningOut(
                invoice_number=w.invoice_number,
                employee=w.employee_name,
                activity=w.activity_key,
                message=w.message,
            )
            for w in result.warnings
        ],
        next_invoice_number=result.numbering.next_value if result.numbering else None,
        excel_base64=excel_b64,
        audit=json.loads(json.dumps(generate_audit_dict(result), cls=DecimalEncoder)),
    )


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


@router.post("/invoices/upload", response_model=GenerateResponse)
async def upload_timesheet(
    timesheet: UploadFile = File(..., description="Timesheet workbook (.xlsx)"),
    column_mapping: str = Form("", description="JSON column mapping (field -> column header or letter)"),
    start_invoice_number: int | None = Form(None, description="First invoice number of the batch"),
    week_ending: str = Form("", description="Week ending for rows that have none"),
    include_excel: bool = Form(True, description="Return the invoice workbook as base64"),
    save: bool = Form(False, description="Save invoices to the invoice database"),
    store: InvoiceStore = Depends(get_store),
):
    """Generate invoices from an uploaded timesheet workbook.

    Returns JSON with per-invoice totals, the combined view, skipped rows,
    inference warnings, base64-encoded Excel invoices, and audit data.
    """
    try:
        mapping = json.loads(column_mapping) if column_mapping.strip() else None
    except json.JSONDecodeError as e:
        return GenerateResponse(
            success=False,
            error_type="config_error",
            errors=[f"Invalid column mapping: {e}"],
        )

    start = start_invoice_number if start_invoice_number is not None else get_settings().start_invoice_number

    try:
        result = process_workbook(
            await timesheet.read(),
            mapping,
            start_invoice_number=start,
            week_ending=parse_week_ending(week_ending),
        )
        if save:
            store.save_batch(result.invoices.values())
        return _batch_response(result, include_excel)

    except StrictValidationError as e:
        return GenerateResponse(success=False, error_type="validation_error", errors=e.errors)
    except ValueError as e:
        return GenerateResponse(success=False, error_type="config_error", errors=[str(e)])
    except PersistenceError as e:
        return GenerateResponse(success=False, error_type="processing_error", errors=[str(e)])


@router.post("/invoices/rows", response_model=GenerateResponse)
async def generate_from_rows(request: RowsRequest, store: InvoiceStore = Depends(get_store)):
    """Generate invoices from JSON rows (parsed records or manual entries)."""
    start = (
        request.start_invoice_number
        if request.start_invoice_number is not None
        else get_settings().start_invoice_number
    )
    week_ending = parse_week_ending(request.week_ending)

    try:
        if request.manual:
            result = process_manual_entries(
                request.records,
                jobs=store.job_lookup(),
                start_invoice_number=start,
                week_ending=week_ending,
            )
        else:
            result = process_records(
                request.records,
                request.column_mapping,
                start_invoice_number=start,
                week_ending=week_ending,
            )
        if request.save:
            store.save_batch(result.invoices.values())
        return _batch_response(result, include_excel=request.include_excel)

    except StrictValidationError as e:
        return GenerateResponse(success=False, error_type="validation_error", errors=e.errors)
    except ValueError as e:
        return GenerateResponse(success=False, error_type="config_error", errors=[str(e)])
    except PersistenceError as e:
        return GenerateResponse(success=False, error_type="processing_error", errors=[str(e)])


@router.post("/invoices/totals", response_model=InvoiceSummary)
async def invoice_totals(invoice: dict[str, Any] = Body(...)):
    """Totals for a hand-built invoice (activities, hours or expenses per employee)."""
    try:
        return _invoice_summary(resolve_invoice(invoice))
    except MalformedRowError as e:
        raise HTTPException(status_code=422, detail=e.reason)


@router.get("/invoices")
def list_invoices(
    start: date | None = None,
    end: date | None = None,
    store: InvoiceStore = Depends(get_store),
):
    """Saved invoices, optionally filtered by week ending."""
    try:
        return store.list_invoices(start, end)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/invoices/{invoice_number}")
def get_invoice(invoice_number: str, store: InvoiceStore = Depends(get_store)):
    try:
        invoice = store.get_invoice(invoice_number)
        if invoice is None:
            raise HTTPException(status_code=404, detail=f"Invoice not found: {invoice_number}")
        return {"invoice": invoice, "lines": store.get_lines(invoice_number)}
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/invoices/{invoice_number}/revisions", status_code=201)
def create_revision(
    invoice_number: str,
    changes: dict[str, Any] | None = Body(None),
    store: InvoiceStore = Depends(get_store),
):
    """Save the invoice again under its next -RevN number."""
    if store.get_invoice(invoice_number) is None:
        raise HTTPException(status_code=404, detail=f"Invoice not found: {invoice_number}")

    changes = dict(changes or {})
    try:
        for key in ("invoice_date", "due_date"):
            if changes.get(key):
                changes[key] = date.fromisoformat(changes[key])
        if "week_ending" in changes:
            changes["week_ending"] = parse_week_ending(changes["week_ending"])
        return store.create_revision(invoice_number, **changes)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/invoices/{invoice_number}", status_code=204)
def delete_invoice(invoice_number: str, store: InvoiceStore = Depends(get_store)):
    if not store.delete_invoice(invoice_number):
        raise HTTPException(status_code=404, detail=f"Invoice not found: {invoice_number}")


@router.get("/jobs")
def list_jobs(store: InvoiceStore = Depends(get_store)):
    """Jobs that manual entries can refer to by ``job_id``."""
    try:
        return store.list_jobs()
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/jobs", status_code=201)
def create_job(job: JobIn, store: InvoiceStore = Depends(get_store)):
    try:
        return store.add_job(**job.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except DuplicateInvoiceError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))

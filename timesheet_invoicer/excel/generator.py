"""Layer 5: Excel Invoice Generator.

Writes invoice workbooks: one sheet per invoice plus a combined summary,
and the flat timesheet summary that the row normalizer can re-import.
Excel formulas are NOT relied upon; all values are pre-computed in Python.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping, Optional, Union

import openpyxl
from openpyxl.styles import Alignment, Border, Font, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from timesheet_invoicer.engine.totals import (
    calculate_totals,
    combine_invoices,
    sorted_activities,
)
from timesheet_invoicer.models import (
    ActivityBreakdown,
    BatchResult,
    BusinessInfo,
    CanonicalTimesheetRow,
    DirectHours,
    ExpenseOnly,
    InvoiceAggregate,
    InvoiceTotals,
    round2,
)

EXPORT_HEADERS = [
    'INV #', 'EMPLOYEE', 'JOB NAME', 'Activity Code', 'Activity Description',
    'JOB NUMBER', 'WEEK ENDING', 'PAY TYPE', 'HOURS', 'BURDENED RATE', 'TOTAL',
]

LINE_HEADERS = [
    'Employee', 'Activity', 'Regular Hours', 'Regular Rate',
    'Overtime Hours', 'Overtime Rate', 'Total',
]

COMBINED_HEADERS = [
    'Invoice #', 'Job Name', 'Job Number', 'Regular Hours', 'Overtime Hours', 'Total',
]

EXPENSE_LABELS = {
    "per_diem": "Per Diem",
    "mileage": "Mileage",
    "safety_equipment": "Safety Equipment",
}

# Formatting constants
THIN_BORDER = Border(
    left=Side(style='thin'),
    right=Side(style='thin'),
    top=Side(style='thin'),
    bottom=Side(style='thin'),
)

HEADER_FONT = Font(name='Calibri', size=11, bold=True)
DATA_FONT = Font(name='Calibri', size=11)
TITLE_FONT = Font(name='Calibri', size=14, bold=True)
CENTER_ALIGN = Alignment(horizontal='center', vertical='center')
DOLLAR_FORMAT = '_("$"* #,##0.00_);_("$"* \\(#,##0.00\\);_("$"* "-"??_);_(@_)'
NUMBER_FORMAT = '0.00'
DATE_FORMAT = 'mm/dd/yyyy'

_SHEET_TITLE_RE = re.compile(r'[\[\]:*?/\\]')
_FILE_NAME_RE = re.compile(r'[<>:"/\\|?*]')


def _sheet_title(text: str) -> str:
    return _SHEET_TITLE_RE.sub('-', text)[:31] or 'Invoice'


def _money(value: Optional[Decimal]) -> Optional[float]:
    # Currency is rounded before it reaches the cell
    return float(round2(value)) if value is not None else None


def _write_header_row(ws: Worksheet, row: int, labels: list[str]) -> None:
    for col, label in enumerate(labels, start=1):
        c = ws.cell(row=row, column=col)
        c.value = label
        c.font = HEADER_FONT
        c.alignment = CENTER_ALIGN
        c.border = THIN_BORDER


def _write_line(ws: Worksheet, row: int, values: list, formats: list[Optional[str]]) -> None:
    for col, (value, fmt) in enumerate(zip(values, formats), start=1):
        c = ws.cell(row=row, column=col)
        c.value = value
        c.font = DATA_FONT
        c.border = THIN_BORDER
        if fmt:
            c.number_format = fmt


_LINE_FORMATS = [None, None, NUMBER_FORMAT, DOLLAR_FORMAT, NUMBER_FORMAT, DOLLAR_FORMAT, DOLLAR_FORMAT]


def _write_employee_lines(ws: Worksheet, row: int, invoice: InvoiceAggregate) -> int:
    """Write one row per employee activity (or expense); returns the next free row."""
    for name, line in invoice.employees.items():
        if isinstance(line, ActivityBreakdown):
            for key, acc in sorted_activities(line):
                _write_line(ws, row, [
                    name,
                    key,
                    float(acc.regular_hours),
                    _money(acc.regular_rate),
                    float(acc.overtime_hours),
                    _money(acc.overtime_rate),
                    _money(acc.total),
                ], _LINE_FORMATS)
                row += 1

        elif isinstance(line, DirectHours):
            _write_line(ws, row, [
                name,
                '',
                float(line.regular_hours),
                _money(line.regular_rate),
                float(line.overtime_hours),
                _money(line.overtime_rate),
                _money(line.labor_total),
            ], _LINE_FORMATS)
            row += 1

        if isinstance(line, (DirectHours, ExpenseOnly)):
            for label, amount in line.expenses.items():
                _write_line(ws, row, [
                    name, EXPENSE_LABELS.get(label, label), None, None, None, None, _money(amount),
                ], _LINE_FORMATS)
                row += 1

    return row


def write_invoice_sheet(
    ws: Worksheet,
    invoice: InvoiceAggregate,
    totals: Optional[InvoiceTotals] = None,
    business: Optional[BusinessInfo] = None,
    invoice_date: Optional[date] = None,
    due_date: Optional[date] = None,
) -> None:
    """Render one invoice onto ``ws``."""
    totals = totals or calculate_totals(invoice)
    business = business or BusinessInfo()
    invoice_date = invoice_date or date.today()
    due_date = due_date or invoice_date + timedelta(days=30)
    last_col = len(LINE_HEADERS)

    # --- Issuer block ---
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=last_col)
    title = ws.cell(row=1, column=1)
    title.value = business.name
    title.font = TITLE_FONT
    title.alignment = CENTER_ALIGN
    ws.cell(row=2, column=1).value = business.address
    ws.cell(row=3, column=1).value = f"{business.city}, {business.state} {business.zip}"
    ws.cell(row=4, column=1).value = f"{business.phone}  {business.email}"

    # --- Invoice details (right side) ---
    details = [
        ('Invoice #', invoice.invoice_number),
        ('Invoice Date', invoice_date),
        ('Due Date', due_date),
        ('Terms', business.payment_terms),
    ]
    for i, (label, value) in enumerate(details):
        ws.cell(row=2 + i, column=6).value = label
        ws.cell(row=2 + i, column=6).font = HEADER_FONT
        c = ws.cell(row=2 + i, column=7)
        c.value = value
        if isinstance(value, date):
            c.number_format = DATE_FORMAT

    # --- Bill To / Job ---
    client = invoice.client
    ws.cell(row=7, column=1).value = 'Bill To'
    ws.cell(row=7, column=1).font = HEADER_FONT
    ws.cell(row=8, column=1).value = client.name
    ws.cell(row=9, column=1).value = client.address
    ws.cell(row=10, column=1).value = f"{client.city}, {client.state} {client.zip}"

    job_info = [
        ('Job Name', invoice.job_name),
        ('Job Number', invoice.job_number),
        ('Week Ending', invoice.week_ending),
    ]
    for i, (label, value) in enumerate(job_info):
        ws.cell(row=7 + i, column=6).value = label
        ws.cell(row=7 + i, column=6).font = HEADER_FONT
        c = ws.cell(row=7 + i, column=7)
        c.value = value
        if isinstance(value, date):
            c.number_format = DATE_FORMAT

    # --- Employee lines ---
    row = 12
    _write_header_row(ws, row, LINE_HEADERS)
    row = _write_employee_lines(ws, row + 1, invoice)

    # --- Activity totals ---
    if totals.per_activity_totals:
        row += 1
        ws.cell(row=row, column=1).value = 'Activity Totals'
        ws.cell(row=row, column=1).font = HEADER_FONT
        row += 1
        _write_header_row(ws, row, ['Activity', 'Regular Hours', 'Overtime Hours', 'Total'])
        row += 1
        for t in totals.per_activity_totals:
            _write_line(
                ws, row,
                [t.activity_key, float(t.regular_hours), float(t.overtime_hours), _money(t.total)],
                [None, NUMBER_FORMAT, NUMBER_FORMAT, DOLLAR_FORMAT],
            )
            row += 1

    # --- Invoice total ---
    row += 1
    summary = [
        ('Total Regular Hours', float(totals.total_regular_hours), NUMBER_FORMAT),
        ('Total Overtime Hours', float(totals.total_overtime_hours), NUMBER_FORMAT),
    ]
    if totals.total_expenses:
        summary.append(('Total Expenses', _money(totals.total_expenses), DOLLAR_FORMAT))
    summary.append(('Invoice Total', _money(totals.total_amount), DOLLAR_FORMAT))

    for label, value, fmt in summary:
        ws.cell(row=row, column=last_col - 1).value = label
        ws.cell(row=row, column=last_col - 1).font = HEADER_FONT
        c = ws.cell(row=row, column=last_col)
        c.value = value
        c.font = HEADER_FONT
        c.number_format = fmt
        row += 1

    # --- Column widths ---
    ws.column_dimensions['A'].width = 28
    ws.column_dimensions['B'].width = 36
    for col in range(3, last_col + 1):
        ws.column_dimensions[get_column_letter(col)].width = 16


def write_combined_sheet(ws: Worksheet, invoices: Iterable[InvoiceAggregate]) -> None:
    """Render the multi-invoice summary onto ``ws``."""
    combined = combine_invoices(invoices)

    ws.cell(row=1, column=1).value = 'Combined Invoice Summary'
    ws.cell(row=1, column=1).font = TITLE_FONT
    if combined.week_ending:
        ws.cell(row=2, column=1).value = 'Week Ending'
        ws.cell(row=2, column=1).font = HEADER_FONT
        ws.cell(row=2, column=2).value = combined.week_ending
        ws.cell(row=2, column=2).number_format = DATE_FORMAT

    row = 4
    _write_header_row(ws, row, COMBINED_HEADERS)
    row += 1
    formats = [None, None, None, NUMBER_FORMAT, NUMBER_FORMAT, DOLLAR_FORMAT]
    for line in combined.lines:
        _write_line(ws, row, [
            line.invoice_number,
            line.job_name,
            line.job_number,
            float(line.regular_hours),
            float(line.overtime_hours),
            _money(line.total),
        ], formats)
        row += 1

    _write_line(ws, row, [
        'Total', None, None,
        float(combined.total_regular_hours),
        float(combined.total_overtime_hours),
        _money(combined.total_amount),
    ], formats)
    for col in range(1, len(COMBINED_HEADERS) + 1):
        ws.cell(row=row, column=col).font = HEADER_FONT

    ws.column_dimensions['A'].width = 14
    ws.column_dimensions['B'].width = 32
    for col in range(3, len(COMBINED_HEADERS) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 16


def _invoices_of(source: Union[BatchResult, Mapping[str, InvoiceAggregate], Iterable[InvoiceAggregate]]):
    if isinstance(source, BatchResult):
        return list(source.invoices.values())
    if isinstance(source, Mapping):
        return list(source.values())
    return list(source)


def generate_invoice_workbook(
    source: Union[BatchResult, Mapping[str, InvoiceAggregate], Iterable[InvoiceAggregate]],
    output_path: str | Path,
    business: Optional[BusinessInfo] = None,
    invoice_date: Optional[date] = None,
    payment_terms_days: int = 30,
) -> Path:
    """Write every invoice to its own sheet, followed by a "Combined" sheet."""
    output_path = Path(output_path)
    invoices = _invoices_of(source)
    invoice_date = invoice_date or date.today()
    due_date = invoice_date + timedelta(days=payment_terms_days)

    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for invoice in invoices:
        ws = wb.create_sheet(_sheet_title(f"INV#{invoice.invoice_number}"))
        write_invoice_sheet(ws, invoice, business=business, invoice_date=invoice_date, due_date=due_date)

    write_combined_sheet(wb.create_sheet('Combined'), invoices)

    wb.save(str(output_path))
    return output_path


def invoice_file_name(invoice: InvoiceAggregate) -> str:
    """``INV#{number} {job_number} {job_name}.xlsx`` with unsafe characters replaced."""
    return _FILE_NAME_RE.sub('-', invoice.file_stem) + '.xlsx'


def generate_invoice_files(
    source: Union[BatchResult, Mapping[str, InvoiceAggregate], Iterable[InvoiceAggregate]],
    output_dir: str | Path,
    business: Optional[BusinessInfo] = None,
    invoice_date: Optional[date] = None,
    payment_terms_days: int = 30,
) -> list[Path]:
    """Write one workbook per invoice into ``output_dir``."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    invoice_date = invoice_date or date.today()
    due_date = invoice_date + timedelta(days=payment_terms_days)

    paths = []
    for invoice in _invoices_of(source):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = _sheet_title(f"INV#{invoice.invoice_number}")
        write_invoice_sheet(ws, invoice, business=business, invoice_date=invoice_date, due_date=due_date)
        path = output_dir / invoice_file_name(invoice)
        wb.save(str(path))
        paths.append(path)
    return paths


def export_timesheet_summary(rows: Iterable[CanonicalTimesheetRow], output_path: str | Path) -> Path:
    """Flat timesheet export; re-imports with the default column mapping."""
    output_path = Path(output_path)
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = 'Timesheet Summary'

    _write_header_row(ws, 1, EXPORT_HEADERS)
    for i, r in enumerate(rows, start=2):
        total = r.total if r.total is not None else r.hours * r.burdened_rate
        week_ending = (
            datetime(r.week_ending.year, r.week_ending.month, r.week_ending.day)
            if r.week_ending else None
        )
        _write_line(ws, i, [
            r.invoice_number,
            r.employee_name,
            r.job_name,
            r.activity_code,
            r.activity_description,
            r.job_number,
            week_ending,
            r.pay_type.value,
            float(r.hours),
            _money(r.burdened_rate),
            _money(total),
        ], [None, None, None, None, None, None, DATE_FORMAT, None, NUMBER_FORMAT, NUMBER_FORMAT, NUMBER_FORMAT])

    for col in range(1, len(EXPORT_HEADERS) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 16

    wb.save(str(output_path))
    return output_path

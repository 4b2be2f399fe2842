"""End-to-end tests for the batch pipeline."""

import io
from datetime import date
from decimal import Decimal

import openpyxl
import pytest

from timesheet_invoicer.engine.totals import calculate_totals
from timesheet_invoicer.models import JobRef, StrictValidationError
from timesheet_invoicer.pipeline import (
    build_invoices,
    process_grid,
    process_manual_entries,
    process_records,
    process_workbook,
)

HEADERS = ["EMPLOYEE", "JOB NAME", "JOB NUMBER", "PAY TYPE", "HOURS", "BURDENED RATE"]


def _record(employee="Jane Doe", job="Main St", job_number="1001", pay_type="Regular", hours="10", rate="20"):
    return dict(zip(HEADERS, [employee, job, job_number, pay_type, hours, rate]))


def _workbook_bytes(rows) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.append(HEADERS)
    for row in rows:
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class TestProcessRecords:
    def test_numbers_jobs_in_first_seen_order(self):
        records = [
            _record(),
            _record(job="Elm", job_number="1002"),
            _record(pay_type="Overtime", hours="2", rate="30"),
        ]
        result = process_records(records, start_invoice_number=100)
        assert list(result.invoices) == ["100", "101"]
        assert result.numbering.next_value == 102
        assert result.numbering.assigned == {"1001": "100", "1002": "101"}
        assert calculate_totals(result.invoices["100"]).total_amount == Decimal("260.00")

    def test_skipped_rows_reported(self):
        records = [_record(), _record(pay_type="Holiday")]
        result = process_records(records)
        assert not result.ok
        assert len(result.invoices) == 1
        assert result.skipped[0].source_row == 2

    def test_inferred_rate_warning(self):
        records = [_record(rate="20"), _record(pay_type="Overtime", hours="2", rate="")]
        result = process_records(records)
        acc = result.invoices["2277"].employees["Jane Doe"].activities[""]
        assert acc.overtime_rate == Decimal("30.00")
        assert len(result.warnings) == 1

    def test_week_ending_default(self):
        result = process_records([_record()], week_ending=date(2025, 3, 16))
        assert result.invoices["2277"].week_ending == date(2025, 3, 16)

    def test_bad_start_number(self):
        with pytest.raises(StrictValidationError):
            process_records([_record()], start_invoice_number="abc")


class TestProcessGrid:
    def test_grid_with_header(self):
        grid = [HEADERS, ["Jane Doe", "Main St", "1001", "Regular", 8, 25]]
        result = process_grid(grid)
        assert calculate_totals(result.invoices["2277"]).total_amount == Decimal("200.00")


class TestProcessManualEntries:
    def test_jobs_by_id(self):
        entries = [
            {"employee_name": "Jane Doe", "job_id": "7", "pay_type": "Regular", "hours": 8, "burdened_rate": 25},
            {"employee_name": "John Roe", "job_id": "7", "pay_type": "Regular", "hours": 4, "burdened_rate": 25},
        ]
        result = process_manual_entries(entries, jobs={"7": JobRef("Main St", "1001")}, start_invoice_number=500)
        invoice = result.invoices["500"]
        assert invoice.job_number == "1001"
        assert sorted(invoice.employees) == ["Jane Doe", "John Roe"]
        assert calculate_totals(invoice).total_amount == Decimal("300.00")


class TestProcessWorkbook:
    def test_from_bytes(self):
        data = _workbook_bytes([
            ["Jane Doe", "Main St", 1001, "Regular", 10, 20],
            ["Jane Doe", "Main St", 1001, "Overtime", 2, 30],
        ])
        result = process_workbook(data)
        assert list(result.invoices) == ["2277"]
        assert result.invoices["2277"].job_number == "1001"
        assert calculate_totals(result.invoices["2277"]).total_amount == Decimal("260.00")

    def test_from_path(self, tmp_path):
        path = tmp_path / "timesheet.xlsx"
        path.write_bytes(_workbook_bytes([["Jane Doe", "Main St", 1001, "Regular", 10, 20]]))
        result = process_workbook(path, start_invoice_number=9)
        assert list(result.invoices) == ["9"]


class TestBuildInvoices:
    def test_empty(self):
        result = build_invoices([])
        assert result.invoices == {}
        assert result.numbering.next_value == 2277

    def test_rows_carry_assigned_numbers(self):
        result = process_records([_record(), _record(job="Elm", job_number="1002")], start_invoice_number=40)
        assert [r.invoice_number for r in result.rows] == ["40", "41"]

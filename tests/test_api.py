"""Tests for the HTTP API."""

import base64
import io

import openpyxl
import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.routes import get_store
from timesheet_invoicer.store import InvoiceStore

HEADERS = ["EMPLOYEE", "JOB NAME", "JOB NUMBER", "PAY TYPE", "HOURS", "BURDENED RATE"]


def _records():
    return [
        dict(zip(HEADERS, ["Jane Doe", "Main St", "1001", "Regular", "10", "20"])),
        dict(zip(HEADERS, ["Jane Doe", "Main St", "1001", "Overtime", "2", "30"])),
        dict(zip(HEADERS, ["John Roe", "Elm", "1002", "Regular", "10", "20"])),
    ]


def _workbook_bytes() -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.append(HEADERS)
    for record in _records():
        ws.append([record[h] for h in HEADERS])
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def store(tmp_path):
    return InvoiceStore(f"sqlite:///{tmp_path / 'api.db'}")


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    def test_health(self, client):
        assert client.get("/api/v1/health").json() == {"status": "ok"}

    def test_root(self, client):
        assert client.get("/").json()["health"] == "/api/v1/health"


class TestGenerateFromRows:
    def test_records(self, client):
        response = client.post("/api/v1/invoices/rows", json={
            "records": _records(),
            "start_invoice_number": 100,
        })
        data = response.json()
        assert data["success"] is True
        assert [i["invoice_number"] for i in data["invoices"]] == ["100", "101"]
        assert data["invoices"][0]["total_amount"] == 260.0
        assert data["combined"]["total_amount"] == 460.0
        assert data["next_invoice_number"] == 102
        assert data["excel_base64"] is None
        assert data["audit"]["summary"]["grand_total_usd"] == 460.0

    def test_column_mapping(self, client):
        records = [{"Worker": "Jane Doe", "Site": "Main St", "Type": "Regular", "Hrs": 8, "Rate": 25}]
        response = client.post("/api/v1/invoices/rows", json={
            "records": records,
            "column_mapping": {"employeeName": "Worker", "jobName": "Site", "payType": "Type",
                               "hours": "Hrs", "burdenedRate": "Rate"},
            "start_invoice_number": 1,
        })
        assert response.json()["invoices"][0]["total_amount"] == 200.0

    def test_unknown_mapping_field(self, client):
        response = client.post("/api/v1/invoices/rows", json={
            "records": _records(),
            "column_mapping": {"salary": "A"},
        })
        data = response.json()
        assert data["success"] is False
        assert data["error_type"] == "config_error"

    def test_skipped_and_warnings(self, client):
        records = _records()
        records[1]["BURDENED RATE"] = ""
        records[2]["PAY TYPE"] = "Holiday"
        data = client.post("/api/v1/invoices/rows", json={
            "records": records, "start_invoice_number": 1,
        }).json()
        assert data["skipped"] == [{"source_row": 3, "reason": "unrecognised pay type 'Holiday'"}]
        assert len(data["warnings"]) == 1
        assert data["invoices"][0]["employees"][0]["activities"][0]["overtime_rate"] == 30.0

    def test_manual_entries_saved(self, client, store):
        entries = [
            {"employee_name": "Jane Doe", "job_name": "Main St", "job_number": "1001",
             "pay_type": "Regular", "hours": 8, "burdened_rate": 25},
        ]
        data = client.post("/api/v1/invoices/rows", json={
            "records": entries, "manual": True, "start_invoice_number": 700, "save": True,
        }).json()
        assert data["success"] is True
        assert store.get_invoice("700")["job_number"] == "1001"


class TestUpload:
    def test_upload_workbook(self, client):
        response = client.post(
            "/api/v1/invoices/upload",
            files={"timesheet": ("week.xlsx", _workbook_bytes(),
                                 "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")},
            data={"start_invoice_number": "2277"},
        )
        data = response.json()
        assert data["success"] is True
        assert [i["file_name"] for i in data["invoices"]] == [
            "INV#2277 1001 Main St.xlsx",
            "INV#2278 1002 Elm.xlsx",
        ]
        wb = openpyxl.load_workbook(io.BytesIO(base64.b64decode(data["excel_base64"])))
        assert wb.sheetnames == ["INV#2277", "INV#2278", "Combined"]

    def test_upload_not_a_workbook(self, client):
        response = client.post(
            "/api/v1/invoices/upload",
            files={"timesheet": ("week.xlsx", b"not a workbook", "application/octet-stream")},
            data={"start_invoice_number": "1"},
        )
        data = response.json()
        assert data["success"] is False
        assert data["error_type"] == "validation_error"

    def test_bad_mapping_json(self, client):
        response = client.post(
            "/api/v1/invoices/upload",
            files={"timesheet": ("week.xlsx", _workbook_bytes(), "application/octet-stream")},
            data={"column_mapping": "{not json"},
        )
        assert response.json()["error_type"] == "config_error"


class TestInvoiceTotals:
    def test_mixed_employee_shapes(self, client):
        invoice = {
            "invoiceNumber": "900",
            "jobName": "Atlanta",
            "employees": {
                "Miguel Martinez": {"regularHours": 24, "regularRate": 58.37, "mileage": 1014},
                "Ron Gil": {"perDiem": 250},
                "Jane Doe": {"activities": [
                    {"activityCode": "100", "activityDescription": "Install", "regularHours": 10, "regularRate": 20},
                ]},
            },
        }
        data = client.post("/api/v1/invoices/totals", json=invoice).json()
        assert data["total_expenses"] == 1264.0
        assert data["total_amount"] == 2864.88
        assert [t["activity"] for t in data["activity_totals"]] == ["100 - Install"]

    def test_malformed_employee(self, client):
        invoice = {"invoiceNumber": "900", "employees": {"Jane Doe": {"note": "x"}}}
        response = client.post("/api/v1/invoices/totals", json=invoice)
        assert response.status_code == 422


class TestSavedInvoices:
    def _save(self, client):
        client.post("/api/v1/invoices/rows", json={
            "records": _records()[:2], "start_invoice_number": 500, "save": True,
            "week_ending": "2025-03-16",
        })

    def test_get_and_list(self, client):
        self._save(client)
        data = client.get("/api/v1/invoices/500").json()
        assert data["invoice"]["total_amount"] == 260.0
        assert len(data["lines"]) == 1

        listed = client.get("/api/v1/invoices", params={"start": "2025-03-10", "end": "2025-03-16"}).json()
        assert [i["invoice_number"] for i in listed] == ["500"]
        assert client.get("/api/v1/invoices", params={"start": "2025-03-17"}).json() == []

    def test_missing(self, client):
        assert client.get("/api/v1/invoices/404").status_code == 404

    def test_revision(self, client):
        self._save(client)
        response = client.post("/api/v1/invoices/500/revisions", json={"invoice_date": "2025-04-01"})
        assert response.status_code == 201
        assert response.json()["invoice_number"] == "500-Rev1"
        assert response.json()["invoice_date"] == "2025-04-01"

        response = client.post("/api/v1/invoices/500/revisions")
        assert response.json()["invoice_number"] == "500-Rev2"

    def test_revision_bad_field(self, client):
        self._save(client)
        response = client.post("/api/v1/invoices/500/revisions", json={"total_amount": 1})
        assert response.status_code == 422

    def test_revision_missing(self, client):
        assert client.post("/api/v1/invoices/404/revisions").status_code == 404

    def test_delete(self, client):
        self._save(client)
        assert client.delete("/api/v1/invoices/500").status_code == 204
        assert client.delete("/api/v1/invoices/500").status_code == 404


class TestBatchSave:
    def test_failed_save_keeps_nothing(self, client, store):
        client.post("/api/v1/invoices/rows", json={
            "records": _records()[2:], "start_invoice_number": 101, "save": True,
        })
        data = client.post("/api/v1/invoices/rows", json={
            "records": _records(), "start_invoice_number": 100, "save": True,
        }).json()
        assert data["success"] is False
        assert data["error_type"] == "processing_error"
        assert [i["invoice_number"] for i in store.list_invoices()] == ["101"]


class TestJobs:
    def test_create_and_list(self, client):
        response = client.post("/api/v1/jobs", json={"job_name": "Main St", "job_number": "1001"})
        assert response.status_code == 201
        assert [j["job_number"] for j in client.get("/api/v1/jobs").json()] == ["1001"]

    def test_duplicate_job_number(self, client):
        client.post("/api/v1/jobs", json={"job_name": "Main St", "job_number": "1001"})
        response = client.post("/api/v1/jobs", json={"job_name": "Other", "job_number": "1001"})
        assert response.status_code == 409

    def test_manual_entry_by_job_id(self, client):
        job = client.post("/api/v1/jobs", json={"job_name": "Main St", "job_number": "1001"}).json()
        entries = [{
            "employee_name": "Jane Doe", "job_id": job["id"],
            "pay_type": "Regular", "hours": 8, "burdened_rate": 25,
        }]
        data = client.post("/api/v1/invoices/rows", json={
            "records": entries, "manual": True, "start_invoice_number": 1,
        }).json()
        invoice = data["invoices"][0]
        assert invoice["job_name"] == "Main St"
        assert invoice["job_number"] == "1001"


class TestTotalsClientBlock:
    def test_unknown_client_field(self, client):
        invoice = {"invoiceNumber": "1", "client": {"name": "Acme", "vat": "X"}}
        assert client.post("/api/v1/invoices/totals", json=invoice).status_code == 422


class TestRevisionLines:
    def test_unknown_line_field(self, client, store):
        client.post("/api/v1/invoices/rows", json={
            "records": _records()[:2], "start_invoice_number": 500, "save": True,
        })
        lines = [dict(line, bonus=1) for line in client.get("/api/v1/invoices/500").json()["lines"]]
        response = client.post("/api/v1/invoices/500/revisions", json={"lines": lines})
        assert response.status_code == 422

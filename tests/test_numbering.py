"""Tests for invoice and revision numbering."""

from decimal import Decimal

from timesheet_invoicer.engine.numbering import (
    assign_invoice_numbers,
    next_revision_number,
    split_revision,
)
from timesheet_invoicer.models import CanonicalTimesheetRow, NumberingState, PayType


def _row(job: str, invoice_number: str = "") -> CanonicalTimesheetRow:
    return CanonicalTimesheetRow(
        invoice_number=invoice_number,
        employee_name="Jane Doe",
        job_name=f"Job {job}",
        job_number=job,
        pay_type=PayType.REGULAR,
        hours=Decimal("8"),
        burdened_rate=Decimal("25"),
    )


class TestAssignInvoiceNumbers:
    def test_first_seen_order(self):
        rows, state = assign_invoice_numbers(
            [_row("A"), _row("B"), _row("A"), _row("C")],
            NumberingState.start(100),
        )
        assert [r.invoice_number for r in rows] == ["100", "101", "100", "102"]
        assert state.assigned == {"A": "100", "B": "101", "C": "102"}
        assert state.next_value == 103

    def test_input_state_untouched(self):
        start = NumberingState.start(100)
        assign_invoice_numbers([_row("A")], start)
        assert start.next_value == 100
        assert start.assigned == {}

    def test_existing_numbers_kept(self):
        rows, state = assign_invoice_numbers(
            [_row("A", invoice_number="9000"), _row("B")],
            NumberingState.start(100),
        )
        assert [r.invoice_number for r in rows] == ["9000", "100"]
        assert state.next_value == 101

    def test_state_carries_across_batches(self):
        _, state = assign_invoice_numbers([_row("A")], NumberingState.start(100))
        rows, state = assign_invoice_numbers([_row("A"), _row("B")], state)
        assert [r.invoice_number for r in rows] == ["100", "101"]

    def test_deterministic(self):
        rows = [_row("A"), _row("B"), _row("A")]
        first, _ = assign_invoice_numbers(rows, NumberingState.start(2277))
        second, _ = assign_invoice_numbers(rows, NumberingState.start(2277))
        assert first == second


class TestRevisionNumbers:
    def test_split(self):
        assert split_revision("500") == ("500", 0)
        assert split_revision("500-Rev2") == ("500", 2)

    def test_first_revision(self):
        assert next_revision_number("500", []) == "500-Rev1"
        assert next_revision_number("500", ["500"]) == "500-Rev1"

    def test_next_after_existing(self):
        assert next_revision_number("500", ["500", "500-Rev1", "500-Rev2"]) == "500-Rev3"

    def test_revising_a_revision(self):
        assert next_revision_number("500-Rev1", ["500", "500-Rev1", "500-Rev2"]) == "500-Rev3"

    def test_other_bases_ignored(self):
        assert next_revision_number("500", ["5000-Rev7", "501-Rev4"]) == "500-Rev1"


class TestPreNumberedRows:
    def test_existing_number_not_reused(self):
        rows, state = assign_invoice_numbers(
            [_row("A", invoice_number="100"), _row("B"), _row("A", invoice_number="100")],
            NumberingState.start(100),
        )
        assert [r.invoice_number for r in rows] == ["100", "101", "100"]
        assert state.assigned == {"A": "100", "B": "101"}
        assert state.next_value == 102

    def test_unnumbered_rows_join_their_job(self):
        rows, _ = assign_invoice_numbers(
            [_row("B"), _row("A", invoice_number="7"), _row("A")],
            NumberingState.start(100),
        )
        assert [r.invoice_number for r in rows] == ["100", "7", "7"]

"""Tests for structural validation and inference review."""

import pytest
from decimal import Decimal

from timesheet_invoicer.engine.validator import (
    find_inference_warnings,
    validate_grid,
    validate_records,
)
from timesheet_invoicer.models import (
    ActivityAccumulator,
    ActivityBreakdown,
    ExpenseOnly,
    InvoiceAggregate,
    RateSource,
    StrictValidationError,
)


def _make_invoice(acc: ActivityAccumulator) -> InvoiceAggregate:
    return InvoiceAggregate(
        invoice_number="2277",
        job_name="Main St",
        job_number="1001",
        employees={
            "Jane Doe": ActivityBreakdown(activities={acc.key: acc}),
            "Ron Gil": ExpenseOnly(expenses={"per_diem": Decimal("250")}),
        },
    )


def _make_acc(**kwargs) -> ActivityAccumulator:
    defaults = dict(
        activity_code="100",
        activity_description="Install",
        regular_hours=Decimal("8"),
        regular_rate=Decimal("25"),
        regular_rate_source=RateSource.EXPLICIT,
        overtime_rate=Decimal("37.50"),
        overtime_rate_source=RateSource.INFERRED,
    )
    defaults.update(kwargs)
    return ActivityAccumulator(**defaults)


class TestValidateRecords:
    def test_valid(self):
        assert validate_records(({"a": 1},)) == [{"a": 1}]

    def test_empty_is_valid(self):
        assert validate_records([]) == []

    def test_dict_is_not_a_list(self):
        with pytest.raises(StrictValidationError, match="got dict"):
            validate_records({"a": 1})

    def test_collects_all_errors(self):
        with pytest.raises(StrictValidationError) as exc_info:
            validate_records([1, {"a": 1}, "row"])
        assert len(exc_info.value.errors) == 2


class TestValidateGrid:
    def test_valid(self):
        assert validate_grid([["a", "b"], (1, 2), None]) == [["a", "b"], (1, 2), None]

    def test_string_rows_rejected(self):
        with pytest.raises(StrictValidationError, match="Row 1"):
            validate_grid([["a"], "b"])

    def test_bytes_rejected(self):
        with pytest.raises(StrictValidationError):
            validate_grid(b"PK")


class TestInferenceWarnings:
    def test_explicit_rates_no_warning(self):
        assert find_inference_warnings([_make_invoice(_make_acc())]) == []

    def test_inferred_overtime_billed(self):
        acc = _make_acc(overtime_hours=Decimal("2"))
        warnings = find_inference_warnings([_make_invoice(acc)])
        assert len(warnings) == 1
        assert warnings[0].activity_key == "100 - Install"
        assert "overtime hours billed at inferred rate 37.50" in warnings[0].message

    def test_inferred_regular_billed(self):
        acc = _make_acc(
            regular_rate=Decimal("20.00"),
            regular_rate_source=RateSource.INFERRED,
            overtime_hours=Decimal("2"),
            overtime_rate=Decimal("30"),
            overtime_rate_source=RateSource.EXPLICIT,
        )
        warnings = find_inference_warnings([_make_invoice(acc)])
        assert len(warnings) == 1
        assert "regular hours" in warnings[0].message

    def test_no_explicit_rate(self):
        acc = _make_acc(
            regular_rate=Decimal("0"),
            regular_rate_source=RateSource.DEFAULTED,
            overtime_rate=None,
            overtime_rate_source=None,
        )
        warnings = find_inference_warnings([_make_invoice(acc)])
        assert len(warnings) == 1
        assert "no rate supplied" in warnings[0].message

    def test_no_hours_no_warning(self):
        acc = _make_acc(
            regular_hours=Decimal("0"),
            regular_rate_source=RateSource.DEFAULTED,
            overtime_rate_source=None,
        )
        assert find_inference_warnings([_make_invoice(acc)]) == []

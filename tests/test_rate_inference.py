"""Tests for the overtime/regular rate inference rule."""

from decimal import Decimal

from timesheet_invoicer.engine.rate_inference import OVERTIME_MULTIPLIER, apply_row
from timesheet_invoicer.models import (
    ActivityAccumulator,
    CanonicalTimesheetRow,
    PayType,
    RateSource,
)


def _row(pay_type: PayType, hours: str, rate: str, **kwargs) -> CanonicalTimesheetRow:
    return CanonicalTimesheetRow(
        employee_name="Jane Doe",
        job_name="J1",
        job_number="1",
        pay_type=pay_type,
        hours=Decimal(hours),
        burdened_rate=Decimal(rate),
        **kwargs,
    )


def _apply(*rows) -> ActivityAccumulator:
    acc = ActivityAccumulator()
    for row in rows:
        apply_row(acc, row)
    return acc


class TestRegularRow:
    def test_infers_overtime_rate(self):
        acc = _apply(_row(PayType.REGULAR, "8", "40"))
        assert acc.regular_rate == Decimal("40")
        assert acc.regular_rate_source is RateSource.EXPLICIT
        assert acc.overtime_rate == Decimal("60.00")
        assert acc.overtime_rate_source is RateSource.INFERRED
        assert acc.overtime_total == Decimal("0.00")
        assert acc.regular_total == Decimal("320.00")

    def test_hours_accumulate(self):
        acc = _apply(_row(PayType.REGULAR, "4", "20"), _row(PayType.REGULAR, "4.5", "20"))
        assert acc.regular_hours == Decimal("8.50")
        assert acc.regular_total == Decimal("170.00")

    def test_last_regular_rate_wins(self):
        acc = _apply(_row(PayType.REGULAR, "8", "20"), _row(PayType.REGULAR, "8", "30"))
        assert acc.regular_rate == Decimal("30")
        # total is recomputed from all hours at the latest rate
        assert acc.regular_total == Decimal("480.00")

    def test_rounding(self):
        acc = _apply(_row(PayType.REGULAR, "3", "33.333"))
        assert acc.regular_total == Decimal("100.00")


class TestOvertimeRow:
    def test_infers_regular_rate(self):
        acc = _apply(_row(PayType.OVERTIME, "2", "30"))
        assert acc.regular_rate == Decimal("20.00")
        assert acc.regular_rate_source is RateSource.INFERRED
        assert acc.overtime_total == Decimal("60.00")

    def test_explicit_overtime_overrides_inferred(self):
        acc = _apply(_row(PayType.REGULAR, "8", "40"), _row(PayType.OVERTIME, "2", "70"))
        assert acc.overtime_rate == Decimal("70")
        assert acc.overtime_rate_source is RateSource.EXPLICIT
        assert acc.regular_rate == Decimal("40")
        assert acc.overtime_total == Decimal("140.00")


class TestOrderSensitivity:
    def test_explicit_rates_both_orders(self):
        forward = _apply(_row(PayType.REGULAR, "8", "40"), _row(PayType.OVERTIME, "2", "60"))
        backward = _apply(_row(PayType.OVERTIME, "2", "60"), _row(PayType.REGULAR, "8", "40"))
        for acc in (forward, backward):
            assert acc.regular_rate == Decimal("40")
            assert acc.overtime_rate == Decimal("60")

    def test_inferred_rate_depends_on_first_row(self):
        first = _apply(_row(PayType.REGULAR, "8", "20"), _row(PayType.REGULAR, "8", "30"))
        second = _apply(_row(PayType.REGULAR, "8", "30"), _row(PayType.REGULAR, "8", "20"))
        assert first.overtime_rate == Decimal("30.00")
        assert second.overtime_rate == Decimal("45.00")


class TestMissingAndZeroRates:
    def test_explicit_zero_suppresses_inference(self):
        acc = _apply(_row(PayType.OVERTIME, "0", "0"), _row(PayType.REGULAR, "8", "40"))
        assert acc.overtime_rate == Decimal("0")
        assert acc.overtime_rate_source is RateSource.EXPLICIT

    def test_defaulted_rate_can_be_inferred(self):
        acc = _apply(
            _row(PayType.OVERTIME, "2", "0", rate_supplied=False),
            _row(PayType.REGULAR, "8", "40"),
        )
        assert acc.overtime_rate == Decimal("60.00")
        assert acc.overtime_rate_source is RateSource.INFERRED
        assert acc.overtime_total == Decimal("120.00")

    def test_missing_rate_keeps_known_rate(self):
        acc = _apply(
            _row(PayType.REGULAR, "8", "40"),
            _row(PayType.REGULAR, "2", "0", rate_supplied=False),
        )
        assert acc.regular_rate == Decimal("40")
        assert acc.regular_total == Decimal("400.00")

    def test_missing_rate_does_not_drive_inference(self):
        acc = _apply(_row(PayType.REGULAR, "8", "0", rate_supplied=False))
        assert acc.regular_rate_source is RateSource.DEFAULTED
        assert acc.overtime_rate is None


class TestMultiplier:
    def test_default_multiplier(self):
        assert OVERTIME_MULTIPLIER == Decimal("1.5")

    def test_custom_multiplier(self):
        acc = ActivityAccumulator()
        apply_row(acc, _row(PayType.REGULAR, "8", "40"), multiplier=Decimal("2"))
        assert acc.overtime_rate == Decimal("80.00")

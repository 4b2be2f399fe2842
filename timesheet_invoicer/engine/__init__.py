"""Aggregation, totals and numbering engines."""
from timesheet_invoicer.engine.aggregator import aggregate_rows
from timesheet_invoicer.engine.numbering import assign_invoice_numbers, next_revision_number
from timesheet_invoicer.engine.rate_inference import OVERTIME_MULTIPLIER, apply_row
from timesheet_invoicer.engine.totals import calculate_totals, combine_invoices

__all__ = [
    "aggregate_rows",
    "apply_row",
    "assign_invoice_numbers",
    "calculate_totals",
    "combine_invoices",
    "next_revision_number",
    "OVERTIME_MULTIPLIER",
]

"""Excel output layer."""
from timesheet_invoicer.excel.generator import (
    export_timesheet_summary,
    generate_invoice_files,
    generate_invoice_workbook,
)

__all__ = ["export_timesheet_summary", "generate_invoice_files", "generate_invoice_workbook"]

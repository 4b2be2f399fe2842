"""Timesheet Invoicer: weekly invoices from employee timesheet rows."""
__version__ = "1.0.0"

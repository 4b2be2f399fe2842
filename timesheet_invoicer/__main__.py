"""CLI entry point.

Usage:
    python -m timesheet_invoicer generate \
        --timesheet "Week 12.xlsx" \
        --config "invoicing.json" \
        --out "Invoices.xlsx" \
        --audit-out "Audit.json" \
        --strict

    python -m timesheet_invoicer headers "Week 12.xlsx"
    python -m timesheet_invoicer revise 2277
"""

from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import Optional

import typer

from timesheet_invoicer.models import PersistenceError, StrictValidationError

app = typer.Typer(help="Generate weekly invoices from employee timesheets.")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def generate(
    timesheet: str = typer.Option(..., "--timesheet", help="Path to timesheet workbook (.xlsx)"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Invoicing config JSON file"),
    mapping_file: Optional[str] = typer.Option(None, "--mapping", help="Column mapping JSON file (overrides config)"),
    start_invoice_number: Optional[int] = typer.Option(None, "--start-invoice-number", help="First invoice number of the batch"),
    week_ending: Optional[str] = typer.Option(None, "--week-ending", help="Week ending for rows that have none"),
    out: str = typer.Option("Invoices.xlsx", "--out", help="Output Excel file path"),
    out_dir: Optional[str] = typer.Option(None, "--out-dir", help="Also write one workbook per invoice here"),
    audit_out: str = typer.Option("Audit.json", "--audit-out", help="Output audit JSON file path"),
    summary_out: Optional[str] = typer.Option(None, "--summary-out", help="Write the flat timesheet summary here"),
    save: bool = typer.Option(False, "--save/--no-save", help="Save invoices to the invoice database"),
    strict: bool = typer.Option(False, "--strict/--no-strict", help="Fail when any row is skipped"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Generate invoices from a timesheet workbook."""
    from timesheet_invoicer.audit import generate_audit
    from timesheet_invoicer.config import get_settings, load_config
    from timesheet_invoicer.engine.totals import calculate_totals, combine_invoices
    from timesheet_invoicer.excel import (
        export_timesheet_summary,
        generate_invoice_files,
        generate_invoice_workbook,
    )
    from timesheet_invoicer.parsers.row_normalizer import normalize_grid, parse_week_ending
    from timesheet_invoicer.parsers.spreadsheet_reader import read_grid
    from timesheet_invoicer.pipeline import build_invoices

    _configure_logging(verbose)

    timesheet_path = Path(timesheet)
    if not timesheet_path.exists():
        typer.echo(f"ERROR: Timesheet not found: {timesheet_path}", err=True)
        raise typer.Exit(1)

    try:
        config = load_config(config_file)
        column_mapping = config.column_mapping
        if mapping_file:
            column_mapping = json.loads(Path(mapping_file).read_text(encoding='utf-8'))
        start = start_invoice_number if start_invoice_number is not None else config.start_invoice_number

        typer.echo(f"Timesheet: {timesheet_path}")
        typer.echo(f"Start invoice #: {start}")
        typer.echo(f"Strict mode: {strict}")
        typer.echo("")

        # Step 1: Read and normalize
        typer.echo("Reading timesheet...")
        normalized = normalize_grid(
            read_grid(timesheet_path),
            column_mapping,
            week_ending=parse_week_ending(week_ending),
        )
        typer.echo(f"  {len(normalized.rows)} rows, {len(normalized.skipped)} skipped")

        # Step 2: Number and aggregate
        result = build_invoices(
            normalized.rows,
            start_invoice_number=start,
            client=config.client_info(),
            multiplier=config.overtime_multiplier,
            skipped=normalized.skipped,
        )

        for skipped in result.skipped:
            typer.echo(f"  SKIPPED row {skipped.source_row}: {skipped.reason}", err=True)
        for warning in result.warnings:
            typer.echo(f"  WARNING invoice {warning.invoice_number}: {warning.message}", err=True)

        if strict and result.skipped:
            typer.echo(f"\n{len(result.skipped)} row(s) skipped; invoices NOT generated (strict mode).", err=True)
            raise typer.Exit(1)

        # Step 3: Totals
        typer.echo("\nInvoices:")
        for invoice in result.invoices.values():
            totals = calculate_totals(invoice)
            typer.echo(
                f"  INV#{invoice.invoice_number} {invoice.job_number} {invoice.job_name}: "
                f"{totals.total_regular_hours}h reg, {totals.total_overtime_hours}h OT, "
                f"${totals.total_amount}"
            )
        typer.echo(f"\n  GRAND TOTAL: ${combine_invoices(result.invoices).total_amount}")

        # Step 4: Excel
        business = config.business_info()
        typer.echo(f"\nGenerating Excel invoices: {out}...")
        generate_invoice_workbook(result, out, business=business, payment_terms_days=config.payment_terms_days)
        if out_dir:
            paths = generate_invoice_files(result, out_dir, business=business, payment_terms_days=config.payment_terms_days)
            typer.echo(f"  {len(paths)} invoice file(s) written to: {out_dir}")
        if summary_out:
            export_timesheet_summary(result.rows, summary_out)
            typer.echo(f"  Timesheet summary saved to: {summary_out}")

        # Step 5: Audit
        typer.echo(f"\nGenerating audit file: {audit_out}...")
        generate_audit(result, audit_out)

        # Step 6: Persist
        if save:
            from timesheet_invoicer.store import InvoiceStore

            store = InvoiceStore(get_settings().database_url)
            saved = store.save_batch(result.invoices.values(), payment_terms_days=config.payment_terms_days)
            typer.echo(f"  {len(saved)} invoice(s) saved")

        typer.echo("\nSUCCESS: Invoices generated.")

    except StrictValidationError as e:
        typer.echo("\nSTRICT VALIDATION FAILED:", err=True)
        for error in e.errors:
            typer.echo(f"  ERROR: {error}", err=True)
        raise typer.Exit(1)

    except PersistenceError as e:
        typer.echo(f"\nDATABASE ERROR: {e}", err=True)
        raise typer.Exit(1)

    except ValueError as e:
        # bad config file, mapping JSON or start number
        typer.echo(f"\nCONFIG ERROR: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def headers(
    timesheet: str = typer.Argument(..., help="Path to timesheet workbook (.xlsx)"),
) -> None:
    """List the workbook's columns with an example value, for building a mapping."""
    from timesheet_invoicer.parsers.spreadsheet_reader import read_headers

    try:
        columns = read_headers(timesheet)
    except StrictValidationError as e:
        for error in e.errors:
            typer.echo(f"ERROR: {error}", err=True)
        raise typer.Exit(1)

    for column in columns:
        typer.echo(f"{column['name']}: {column['example']}")


@app.command()
def revise(
    invoice_number: str = typer.Argument(..., help="Invoice number to revise"),
    invoice_date: Optional[str] = typer.Option(None, "--invoice-date", help="New invoice date (YYYY-MM-DD)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Save a copy of a stored invoice under its next -RevN number."""
    from timesheet_invoicer.config import get_settings
    from timesheet_invoicer.store import InvoiceStore

    _configure_logging(verbose)
    changes = {}
    if invoice_date:
        changes["invoice_date"] = date.fromisoformat(invoice_date)

    try:
        store = InvoiceStore(get_settings().database_url)
        revision = store.create_revision(invoice_number, **changes)
    except PersistenceError as e:
        typer.echo(f"DATABASE ERROR: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Created revision {revision['invoice_number']} (${revision['total_amount']})")


if __name__ == "__main__":
    app()

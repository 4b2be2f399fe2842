"""Invoice persistence (SQLAlchemy).

Three tables: ``invoices`` (one row per saved invoice, UNIQUE invoice_number),
``invoice_lines`` (flat employee/activity records) and ``jobs`` (the jobs
manual entries refer to by id). The store only persists results; it never
recomputes an invoice.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, Iterator, Mapping, Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    create_engine,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    relationship,
    sessionmaker,
)

from timesheet_invoicer.engine.numbering import next_revision_number, split_revision
from timesheet_invoicer.engine.totals import calculate_totals, employee_total, sorted_activities
from timesheet_invoicer.models import (
    ZERO,
    ActivityBreakdown,
    DirectHours,
    DuplicateInvoiceError,
    ExpenseOnly,
    InvoiceAggregate,
    InvoiceTotals,
    JobRef,
    PersistenceError,
    round2,
)
from timesheet_invoicer.parsers.invoice_record import invoice_from_lines

logger = logging.getLogger(__name__)

MAX_REVISION_ATTEMPTS = 5

_REVISABLE_FIELDS = {"job_name", "job_number", "week_ending", "invoice_date", "due_date", "lines"}


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary."""
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


class InvoiceRecord(Base):
    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    job_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    job_number: Mapped[str] = mapped_column(String, nullable=False, default="")
    week_ending: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        nullable=False,
    )

    lines: Mapped[list[InvoiceLineRecord]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineRecord.id",
    )


class InvoiceLineRecord(Base):
    __tablename__ = "invoice_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_id: Mapped[int] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_name: Mapped[str] = mapped_column(String, nullable=False)
    activity_code: Mapped[str] = mapped_column(String, nullable=False, default="")
    activity_description: Mapped[str] = mapped_column(String, nullable=False, default="")
    regular_hours: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=ZERO)
    overtime_hours: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=ZERO)
    regular_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    overtime_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)

    invoice: Mapped[InvoiceRecord] = relationship(back_populates="lines")

    def to_flat(self) -> dict[str, Any]:
        data = self.to_dict()
        del data["id"]
        del data["invoice_id"]
        return data


class JobRecord(Base):
    """Known jobs, so manual entries can refer to a job by id."""

    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    job_name: Mapped[str] = mapped_column(String, nullable=False)
    job_description: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    client_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        nullable=False,
    )


def flatten_invoice(
invoice: InvoiceAggregate) -> list[dict[str, Any]]:
    """Flat line records for an invoice, one per employee activity.

    Employees billed without activities become a single line with blank
    activity; expenses are folded into that line's total.
    """
    lines: list[dict[str, Any]] = []
    for name, line in invoice.employees.items():
        if isinstance(line, ActivityBreakdown):
            for _, acc in sorted_activities(line):
                lines.append({
                    "employee_name": name,
                    "activity_code": acc.activity_code,
                    "activity_description": acc.activity_description,
                    "regular_hours": acc.regular_hours,
                    "overtime_hours": acc.overtime_hours,
                    "regular_rate": acc.regular_rate,
                    "overtime_rate": acc.overtime_rate,
                    "total_amount": acc.total,
                })
        elif isinstance(line, DirectHours):
            lines.append({
                "employee_name": name,
                "activity_code": "",
                "activity_description": "",
                "regular_hours": line.regular_hours,
                "overtime_hours": line.overtime_hours,
                "regular_rate": line.regular_rate,
                "overtime_rate": line.overtime_rate,
                "total_amount": employee_total(line),
            })
        elif isinstance(line, ExpenseOnly):
            lines.append({
                "employee_name": name,
                "activity_code": "",
                "activity_description": "",
                "regular_hours": ZERO,
                "overtime_hours": ZERO,
                "regular_rate": None,
                "overtime_rate": None,
                "total_amount": employee_total(line),
            })
    return lines


def _lines_total(lines: list[dict[str, Any]]) -> Decimal:
    total = ZERO
    for line in lines:
        total = round2(total + Decimal(str(line.get("total_amount") or 0)))
    return total


_LINE_FIELDS = {
    "employee_name",
    "activity_code",
    "activity_description",
    "regular_hours",
    "overtime_hours",
    "regular_rate",
    "overtime_rate",
    "total_amount",
}


def _line_record(line: Mapping[str, Any]) -> InvoiceLineRecord:
    """ORM line from a flat line record; unknown keys are rejected."""
    if not isinstance(line, Mapping):
        raise ValueError(f"Invoice line must be an object, got {type(line).__name__}")
    unknown = set(line) - _LINE_FIELDS
    if unknown:
        raise ValueError(f"Unknown invoice line field(s): {', '.join(sorted(map(str, unknown)))}")
    if not line.get("employee_name"):
        raise ValueError("Invoice line has no employee_name")
    return InvoiceLineRecord(**line)


def _invoice_record(
    invoice: InvoiceAggregate,
    totals: InvoiceTotals,
    invoice_date: Optional[date],
    due_date: Optional[date],
    payment_terms_days: int,
) -> InvoiceRecord:
    invoice_date = invoice_date or date.today()
    if due_date is None:
        due_date = invoice_date + timedelta(days=payment_terms_days)
    record = InvoiceRecord(
        invoice_number=invoice.invoice_number,
        job_name=invoice.job_name,
        job_number=invoice.job_number,
        week_ending=invoice.week_ending,
        total_amount=totals.total_amount,
        invoice_date=invoice_date,
        due_date=due_date,
    )
    record.lines = [_line_record(line) for line in flatten_invoice(invoice)]
    return record


class InvoiceStore:
    """Saved invoices and their line records."""

    def __init__(self, url: str, echo: bool = False):
        self.engine = create_engine(url, echo=echo)
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot initialise invoice store: {e}") from e

    @contextmanager
    def _session(self, unique_field: str = "Invoice number") -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise DuplicateInvoiceError(f"{unique_field} already exists: {e.orig}") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Invoice store failure: {e}") from e
        finally:
            session.close()

    def _find(self, session: Session, invoice_number: str) -> Optional[InvoiceRecord]:
        return session.scalars(
            select(InvoiceRecord).where(InvoiceRecord.invoice_number == invoice_number)
        ).first()

    def save_invoice(
        self,
        invoice: InvoiceAggregate,
        totals: Optional[InvoiceTotals] = None,
        invoice_date: Optional[date] = None,
        due_date: Optional[date] = None,
        payment_terms_days: int = 30,
    ) -> dict[str, Any]:
        """Persist an invoice and its flat lines.

        ``due_date`` defaults to ``invoice_date`` plus the payment terms.
        """
        totals = totals or calculate_totals(invoice)
        with self._session() as session:
            record = _invoice_record(invoice, totals, invoice_date, due_date, payment_terms_days)
            session.add(record)
            session.flush()
            saved = record.to_dict()

        logger.info("Saved invoice %s (%s)", invoice.invoice_number, totals.total_amount)
        return saved

    def save_batch(
        self,
        invoices: Iterable[InvoiceAggregate],
        invoice_date: Optional[date] = None,
        payment_terms_days: int = 30,
    ) -> list[dict[str, Any]]:
        """Persist several invoices in one transaction; none are kept if any fails."""
        saved = []
        with self._session() as session:
            for invoice in invoices:
                record = _invoice_record(
                    invoice, calculate_totals(invoice), invoice_date, None, payment_terms_days,
                )
                session.add(record)
                session.flush()
                saved.append(record.to_dict())

        logger.info("Saved %d invoice(s)", len(saved))
        return saved

    def get_invoice(self, invoice_number: str) -> Optional[dict[str, Any]]:
        with self._session() as session:
            record = self._find(session, invoice_number)
            return record.to_dict() if record else None

    def get_lines(self, invoice_number: str) -> list[dict[str, Any]]:
        with self._session() as session:
            record = self._find(session, invoice_number)
            if record is None:
                return []
            return [line.to_flat() for line in record.lines]

    def load_invoice(self, invoice_number: str) -> Optional[InvoiceAggregate]:
        """Rebuild a saved invoice as an activity breakdown per employee."""
        with self._session() as session:
            record = self._find(session, invoice_number)
            if record is None:
                return None
            return invoice_from_lines(
                record.invoice_number,
                record.job_name,
                record.job_number,
                [line.to_flat() for line in record.lines],
                week_ending=record.week_ending,
            )

    def list_invoices(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[dict[str, Any]]:
        """Saved invoices, optionally limited to a week-ending range (inclusive)."""
        stmt = select(InvoiceRecord)
        if start is not None:
            stmt = stmt.where(InvoiceRecord.week_ending >= start)
        if end is not None:
            stmt = stmt.where(InvoiceRecord.week_ending <= end)
        stmt = stmt.order_by(InvoiceRecord.week_ending, InvoiceRecord.id)

        with self._session() as session:
            return [record.to_dict() for record in session.scalars(stmt)]

    def delete_invoice(self, invoice_number: str) -> bool:
        with self._session() as session:
            record = self._find(session, invoice_number)
            if record is None:
                return False
            session.delete(record)
        logger.info("Deleted invoice %s", invoice_number)
        return True

    def add_job(
        self,
        job_name: str,
        job_number: str,
        job_description: Optional[str] = None,
        client_name: Optional[str] = None,
    ) -> dict[str, Any]:
        if not job_name or not job_number:
            raise ValueError("A job needs both a name and a number")
        with self._session("Job number") as session:
            record = JobRecord(
                job_name=job_name,
                job_number=job_number,
                job_description=job_description,
                client_name=client_name,
            )
            session.add(record)
            session.flush()
            saved = record.to_dict()
        logger.info("Added job %s (%s)", job_number, job_name)
        return saved

    def list_jobs(self) -> list[dict[str, Any]]:
        with self._session() as session:
            return [r.to_dict() for r in session.scalars(select(JobRecord).order_by(JobRecord.id))]

    def job_lookup(self) -> dict[str, JobRef]:
        """Known jobs keyed by id (as text), for reconciling manual entries."""
        return {
            str(job["id"]): JobRef(job_name=job["job_name"], job_number=job["job_number"])
            for job in self.list_jobs()
        }

    def _numbers_with_base(
self, session: Session, base: str) -> list[str]:
        return list(session.scalars(
            select(InvoiceRecord.invoice_number).where(
                InvoiceRecord.invoice_number.like(f"{base}%")
            )
        ))

    def create_revision(
        self,
        invoice_number: str,
        max_attempts: int = MAX_REVISION_ATTEMPTS,
        **changes: Any,
    ) -> dict[str, Any]:
        """Save a copy of an invoice under the next ``-RevN`` number.

        ``changes`` may replace job_name, job_number, week_ending,
        invoice_date, due_date or lines (flat line records). If another
        writer takes the chosen number first, the number is recomputed and
        the insert retried.
        """
        unknown = set(changes) - _REVISABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot revise field(s): {', '.join(sorted(unknown))}")

        base, _ = split_revision(invoice_number)

        for attempt in range(1, max_attempts + 1):
            try:
                with self._session() as session:
                    source = self._find(session, invoice_number)
                    if source is None:
                        raise PersistenceError(f"Invoice not found: {invoice_number}")

                    new_number = next_revision_number(
                        invoice_number, self._numbers_with_base(session, base)
                    )
                    lines = changes.get("lines")
                    if lines is None:
                        lines = [line.to_flat() for line in source.lines]

                    revision = InvoiceRecord(
                        invoice_number=new_number,
                        job_name=changes.get("job_name", source.job_name),
                        job_number=changes.get("job_number", source.job_number),
                        week_ending=changes.get("week_ending", source.week_ending),
                        total_amount=_lines_total(lines),
                        invoice_date=changes.get("invoice_date", source.invoice_date),
                        due_date=changes.get("due_date", source.due_date),
                    )
                    revision.lines = [_line_record(line) for line in lines]
                    session.add(revision)
                    session.flush()
                    saved = revision.to_dict()
            except DuplicateInvoiceError:
                logger.warning(
                    "Revision number for %s taken (attempt %d of %d), retrying",
                    invoice_number, attempt, max_attempts,
                )
                continue

            logger.info("Created revision %s of %s", saved["invoice_number"], invoice_number)
            return saved

        raise PersistenceError(
            f"Could not allocate a revision number for {invoice_number} "
            f"after {max_attempts} attempts"
        )

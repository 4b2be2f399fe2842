"""Configuration for the invoicer.

Settings: deployment values from the environment (.env supported).
InvoicingConfig: per-customer invoicing options from a JSON file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from timesheet_invoicer.engine.rate_inference import OVERTIME_MULTIPLIER
from timesheet_invoicer.models import BusinessInfo, ClientInfo
from timesheet_invoicer.parsers.row_normalizer import normalize_column_mapping

DEFAULT_START_INVOICE_NUMBER = 2277


def _parse_origins(value: str) -> list[str]:
    return [o.strip() for o in value.split(",") if o.strip()]


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment."""

    database_url: str
    start_invoice_number: int
    allowed_origins: tuple[str, ...]

    @property
    def allow_all_origins(self) -> bool:
        return "*" in self.allowed_origins

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment variables."""
        load_dotenv()

        return cls(
            database_url=os.getenv("INVOICER_DATABASE_URL", "sqlite:///invoices.db"),
            start_invoice_number=int(
                os.getenv("INVOICER_START_INVOICE_NUMBER", str(DEFAULT_START_INVOICE_NUMBER))
            ),
            allowed_origins=tuple(_parse_origins(os.getenv("ALLOWED_ORIGINS", ""))),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()


class ClientConfig(BaseModel):
    name: str = ClientInfo.name
    address: str = ClientInfo.address
    city: str = ClientInfo.city
    state: str = ClientInfo.state
    zip: str = ClientInfo.zip


class BusinessConfig(BaseModel):
    name: str = BusinessInfo.name
    address: str = BusinessInfo.address
    city: str = BusinessInfo.city
    state: str = BusinessInfo.state
    zip: str = BusinessInfo.zip
    phone: str = BusinessInfo.phone
    email: str = BusinessInfo.email


class InvoicingConfig(BaseModel):
    """Invoicing options; every field has a working default."""

    start_invoice_number: int = DEFAULT_START_INVOICE_NUMBER
    column_mapping: dict[str, str] | None = None
    overtime_multiplier: Decimal = Field(default=OVERTIME_MULTIPLIER, gt=0)
    client: ClientConfig = Field(default_factory=ClientConfig)
    business: BusinessConfig = Field(default_factory=BusinessConfig)
    payment_terms_days: int = Field(default=30, ge=0)

    @field_validator("column_mapping")
    @classmethod
    def _known_fields(cls, value: dict[str, str] | None) -> dict[str, str] | None:
        if value is None:
            return None
        return normalize_column_mapping(value)

    def client_info(self) -> ClientInfo:
        return ClientInfo(**self.client.model_dump())

    def business_info(self) -> BusinessInfo:
        return BusinessInfo(
            **self.business.model_dump(),
            payment_terms=f"Net {self.payment_terms_days}",
        )


def load_config(path: str | Path | None = None) -> InvoicingConfig:
    """Read an InvoicingConfig JSON file; no path gives the defaults."""
    if path is None:
        return InvoicingConfig()
    return InvoicingConfig.model_validate_json(Path(path).read_text(encoding="utf-8"))

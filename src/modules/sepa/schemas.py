"""Schemas for SEPA batch exports."""

from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

from src.modules.invoices.models import InvoiceStatus


class SepaFormat(StrEnum):
    TXT = "txt"
    XML = "xml"
    XLSX = "xlsx"


class SepaBatchType(StrEnum):
    ENROLLMENT = "enrollment"
    EMPLOYEE = "employee"


EXPORTABLE_STATUSES = (InvoiceStatus.PAID, InvoiceStatus.INPROCESS, InvoiceStatus.UNPAID)


class SepaBatchRequest(BaseModel):
    """Which month and which invoices to export, and in what format."""

    year: int = Field(..., ge=1970, le=2100)
    month: int = Field(..., ge=1, le=12)
    format: SepaFormat = SepaFormat.TXT
    statuses: list[InvoiceStatus] | None = None

    @field_validator("statuses")
    @classmethod
    def check_statuses(cls, v: list[InvoiceStatus] | None) -> list[InvoiceStatus] | None:
        if not v:
            return None
        invalid = [s for s in v if s not in EXPORTABLE_STATUSES]
        if invalid:
            raise ValueError(f"Statuses not exportable: {', '.join(invalid)}")
        return list(dict.fromkeys(v))

    @property
    def effective_statuses(self) -> list[str]:
        return [s.value for s in (self.statuses or EXPORTABLE_STATUSES)]

"""Schemas for Invoices module."""

from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.modules.invoices.models import InvoiceCategory, InvoiceStatus, InvoiceType, RegisteredBy
from src.shared.schemas.base import DocumentSchema


class InvoiceAmountLine(BaseModel):
    """One normalized amount line."""

    concept: str
    amount: float
    description: str | None = None


class InvoiceCreate(BaseModel):
    """
    Schema for creating an invoice.

    ``amounts`` may be a list of ``{concept, amount, description?}`` or a
    ``{concept: amount}`` map; invalid lines are dropped by normalization.
    Relations accept an id, a document id, ``{"id"}``, ``{"documentId"}`` or
    ``{"connect": [...]}``. ``iva`` and ``total`` are always computed.
    """

    category: InvoiceCategory
    invoice_type: InvoiceType = InvoiceType.CHARGE
    status: InvoiceStatus = InvoiceStatus.UNPAID
    title: str | None = Field(None, max_length=255)
    notes: str | None = None
    amounts: list[dict[str, Any]] | dict[str, Any] | None = None
    emission_date: date | None = None
    expiration_date: date | None = None
    enrollment: Any = None
    employee: Any = None
    guardian: Any = None
    issued_by: str | None = Field(None, max_length=100)
    registered_by: RegisteredBy = RegisteredBy.ADMINISTRATION


class InvoiceUpdate(BaseModel):
    """Only status and notes are editable after creation."""

    model_config = ConfigDict(extra="forbid")

    status: InvoiceStatus | None = None
    notes: str | None = None


class InvoiceFilters(BaseModel):
    """Filters for listing invoices."""

    category: InvoiceCategory | None = None
    status: InvoiceStatus | None = None
    simulation: bool | None = None
    simulation_tag: str | None = None
    enrollment_document_id: str | None = None
    employee_document_id: str | None = None
    emission_from: date | None = None
    emission_to: date | None = None
    search: str | None = None
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=500)


class InvoiceResponse(DocumentSchema):
    """Schema for invoice response."""

    title: str | None = None
    category: str
    invoice_type: str
    status: str
    amounts: list[InvoiceAmountLine] = []
    iva: float
    total: float
    emission_date: date | None = None
    expiration_date: date | None = None
    enrollment_id: int | None = None
    employee_id: int | None = None
    guardian_id: int | None = None
    party_type: str | None = None
    party_document_id: str | None = None
    enrollment_document_id: str | None = None
    employee_document_id: str | None = None
    guardian_document_id: str | None = None
    party_snapshot: dict[str, Any] | None = None
    simulation: bool = False
    simulation_tag: str | None = None
    notes: str | None = None
    issued_by: str | None = None
    registered_by: str


class SnapshotBackfillRequest(BaseModel):
    batch_size: int = Field(500, ge=1, le=5000)
    dry_run: bool = False


class SnapshotBackfillResult(BaseModel):
    """Outcome of filling snapshots for invoices that have none."""

    scanned: int = 0
    updated: int = 0
    failed: int = 0
    dry_run: bool = False
    errors: list[str] = []

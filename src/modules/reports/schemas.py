"""Schemas for fiscal and invoice reports."""

from datetime import date
from decimal import Decimal
from enum import StrEnum

from src.shared.schemas.base import BaseSchema, PaginatedResponse


class Quarter(StrEnum):
    Q1 = "Q1"
    Q2 = "Q2"
    Q3 = "Q3"
    Q4 = "Q4"


class Modelo233Concept(StrEnum):
    """Which rows a Modelo 233 declaration keeps."""

    MATRICULA = "matricula"
    COMEDOR = "comedor"
    ALL = "all"


class ExportFormat(StrEnum):
    CSV = "csv"
    XLSX = "xlsx"


class Modelo233Amounts(BaseSchema):
    """Invoice totals (IVA included) split by what was paid for."""

    matricula: Decimal
    comedor: Decimal
    subsidized: Decimal
    total: Decimal


class Modelo233Row(BaseSchema):
    """One enrollment in the Modelo 233 declaration."""

    enrollment_id: int
    enrollment_document_id: str
    student_document_id: str | None = None
    student_dni: str | None = None
    student_name: str | None = None
    student_lastname: str | None = None
    student_birthdate: date | None = None
    primary_nif: str | None = None
    secondary_nif: str | None = None
    first_guardian_name: str | None = None
    first_guardian_lastname: str | None = None
    service_start: date | None = None
    service_end: date | None = None
    # Month abbreviations with at least one invoice ("ENE", "FEB", ...)
    months: list[str] | None = None
    amounts: Modelo233Amounts
    declarant_nif: str


class Modelo233Report(BaseSchema):
    """Modelo 233 preview: header, totals of every matching row, one page of rows."""

    year: int
    quarter: Quarter | None = None
    concept: Modelo233Concept
    center_code: str | None = None
    declarant_nif: str
    totals: Modelo233Amounts
    rows: PaginatedResponse[Modelo233Row]

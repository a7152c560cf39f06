"""Schemas for company identity."""

from pydantic import BaseModel, field_validator

from src.shared.schemas.base import DocumentSchema


class CompanyUpdate(BaseModel):
    """Update company identity (all optional)."""

    name: str | None = None
    code: str | None = None
    nif: str | None = None
    iban: str | None = None
    bic: str | None = None
    address: str | None = None
    creditor_id: str | None = None

    @field_validator("iban", "bic", "nif")
    @classmethod
    def compact_upper(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return "".join(v.split()).upper()


class CompanyResponse(DocumentSchema):
    """Company identity for API response."""

    name: str = ""
    code: str | None = None
    nif: str | None = None
    iban: str | None = None
    bic: str | None = None
    address: str | None = None
    creditor_id: str | None = None

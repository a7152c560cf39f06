"""Company (declarant) model: one row, required for fiscal exports."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import BaseModel


class Company(BaseModel):
    """Single row: legal name, tax id (NIF), bank account and address of the school."""

    __tablename__ = "company"

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    nif: Mapped[str | None] = mapped_column(String(20), nullable=True)
    iban: Mapped[str | None] = mapped_column(String(34), nullable=True)
    bic: Mapped[str | None] = mapped_column(String(11), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    # SEPA creditor identifier (falls back to NIF when empty)
    creditor_id: Mapped[str | None] = mapped_column(String(35), nullable=True)

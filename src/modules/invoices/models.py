"""Invoice model."""

from datetime import date
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    ForeignKey,
    Index,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import BaseModel


class InvoiceCategory(StrEnum):
    """Who or what the invoice is about."""

    ENROLLMENT = "enrollment"
    EMPLOYEE = "employee"
    SERVICE = "service"
    GENERAL = "general"
    SUPPLIER = "supplier"


class InvoiceType(StrEnum):
    """Direction of the money."""

    CHARGE = "charge"
    PAYMENT = "payment"
    INCOME = "income"
    EXPENSE = "expense"


class InvoiceStatus(StrEnum):
    """Invoice status enumeration."""

    UNPAID = "unpaid"
    INPROCESS = "inprocess"
    PAID = "paid"
    CANCELED = "canceled"


class RegisteredBy(StrEnum):
    """Origin of the invoice."""

    SYSTEM = "system"
    ADMINISTRATION = "administration"


SNAPSHOT_VERSION = "v1"


class Invoice(BaseModel):
    """
    Financial record for an enrollment, employee, service, supplier or general concept.

    ``amounts``, ``iva``, ``total`` and ``party_snapshot`` are frozen at creation;
    afterwards only ``status`` and ``notes`` change.
    """

    __tablename__ = "invoices"
    __table_args__ = (
        Index("ix_invoices_category_emission", "category", "emission_date"),
        Index("ix_invoices_category_expiration", "category", "expiration_date"),
    )

    title: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Classification
    category: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    invoice_type: Mapped[str] = mapped_column(String(20), nullable=False, default=InvoiceType.CHARGE.value)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.UNPAID.value, index=True
    )

    # Money: [{"concept": "comedor", "amount": 120.0, "description": "..."}]
    amounts: Mapped[list | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    iva: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))
    total: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))

    # Dates
    emission_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)

    # Relations (historical invoices survive deletion of the party)
    enrollment_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("enrollments.id", ondelete="SET NULL"), nullable=True, index=True
    )
    employee_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("employees.id", ondelete="SET NULL"), nullable=True, index=True
    )
    guardian_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("guardians.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Frozen party data and lookup columns copied out of it
    party_snapshot: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    party_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    party_document_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    enrollment_document_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    employee_document_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    guardian_document_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    snapshot_version: Mapped[str | None] = mapped_column(String(10), nullable=True)

    # Synthetic invoices (never count for real billing)
    simulation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    simulation_tag: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    # Metadata
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    issued_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    registered_by: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RegisteredBy.ADMINISTRATION.value
    )

    # Relationships
    enrollment: Mapped["Enrollment | None"] = relationship("Enrollment")
    employee: Mapped["Employee | None"] = relationship("Employee")
    guardian: Mapped["Guardian | None"] = relationship("Guardian")

    @property
    def subtotal(self) -> Decimal:
        return (self.total or Decimal("0.00")) - (self.iva or Decimal("0.00"))


from src.modules.employees.models import Employee  # noqa: E402
from src.modules.enrollments.models import Enrollment, Guardian  # noqa: E402

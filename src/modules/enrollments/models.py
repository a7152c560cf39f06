"""Enrollment, student, guardian, classroom, school period and service models."""

from datetime import date
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Table,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import Base, BaseModel, BigIntPK


class GuardianType(StrEnum):
    """Guardian relationship to the student."""

    BIOLOGICAL_PARENT = "biological_parent"
    ADOPTIVE_PARENT = "adoptive_parent"
    LEGAL_GUARDIAN = "legal_guardian"
    OTHER = "other"


class ServiceStatus(StrEnum):
    """Catalog service status. Only active services are billed."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELED = "canceled"


enrollment_services = Table(
    "enrollment_services",
    Base.metadata,
    Column("enrollment_id", BigInteger, ForeignKey("enrollments.id", ondelete="CASCADE"), primary_key=True),
    Column("service_id", BigInteger, ForeignKey("services.id", ondelete="CASCADE"), primary_key=True),
)

enrollment_employees = Table(
    "enrollment_employees",
    Base.metadata,
    Column("enrollment_id", BigInteger, ForeignKey("enrollments.id", ondelete="CASCADE"), primary_key=True),
    Column("employee_id", BigInteger, ForeignKey("employees.id", ondelete="CASCADE"), primary_key=True),
)


class Student(BaseModel):
    """Student identity."""

    __tablename__ = "students"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    lastname: Mapped[str | None] = mapped_column(String(200), nullable=True)
    dni: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    birthdate: Mapped[date | None] = mapped_column(Date, nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.name or ''} {self.lastname or ''}".strip()


class Guardian(BaseModel):
    """Parent or guardian; the debtor of enrollment direct debits."""

    __tablename__ = "guardians"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    lastname: Mapped[str | None] = mapped_column(String(200), nullable=True)
    dni: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    nif: Mapped[str | None] = mapped_column(String(20), nullable=True)
    guardian_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    postcode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # SEPA direct debit
    iban: Mapped[str | None] = mapped_column(String(34), nullable=True)
    bic: Mapped[str | None] = mapped_column(String(11), nullable=True)
    mandate_id: Mapped[str | None] = mapped_column(String(35), nullable=True)
    mandate_signed_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.name or ''} {self.lastname or ''}".strip()


class Classroom(BaseModel):
    """Classroom / group."""

    __tablename__ = "classrooms"

    name: Mapped[str] = mapped_column(String(100), nullable=False)


class SchoolPeriod(BaseModel):
    """School year made of one or more (possibly disjoint) date segments."""

    __tablename__ = "school_periods"

    title: Mapped[str] = mapped_column(String(200), nullable=False)

    segments: Mapped[list["SchoolPeriodSegment"]] = relationship(
        "SchoolPeriodSegment",
        back_populates="school_period",
        cascade="all, delete-orphan",
        order_by="[SchoolPeriodSegment.position, SchoolPeriodSegment.id]",
    )


class SchoolPeriodSegment(Base):
    """One inclusive {start, end} range of a school period."""

    __tablename__ = "school_period_segments"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    school_period_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("school_periods.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start: Mapped[date | None] = mapped_column(Date, nullable=True)
    end: Mapped[date | None] = mapped_column(Date, nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)

    school_period: Mapped["SchoolPeriod"] = relationship("SchoolPeriod", back_populates="segments")


class Service(BaseModel):
    """Billable catalog item (dining, transport, materials, registration...)."""

    __tablename__ = "services"

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))
    service_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ServiceStatus.ACTIVE.value, index=True
    )
    service_type: Mapped[str | None] = mapped_column(String(50), nullable=True)


class EnrollmentGuardian(Base):
    """Ordered link between an enrollment and its guardians."""

    __tablename__ = "enrollment_guardians"

    enrollment_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("enrollments.id", ondelete="CASCADE"), primary_key=True
    )
    guardian_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("guardians.id", ondelete="CASCADE"), primary_key=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    guardian: Mapped["Guardian"] = relationship("Guardian")


class Enrollment(BaseModel):
    """A student's registration for a school period; the unit of enrollment billing."""

    __tablename__ = "enrollments"

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)

    student_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("students.id", ondelete="SET NULL"), nullable=True, index=True
    )
    school_period_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("school_periods.id", ondelete="SET NULL"), nullable=True, index=True
    )
    classroom_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("classrooms.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # {"Material extra": 15}
    additional_amount: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # {"2024-03": {"invoice_document_id": "...", "billed_at": "..."}}
    billing_control: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    student: Mapped["Student | None"] = relationship("Student")
    school_period: Mapped["SchoolPeriod | None"] = relationship("SchoolPeriod")
    classroom: Mapped["Classroom | None"] = relationship("Classroom")
    guardian_links: Mapped[list["EnrollmentGuardian"]] = relationship(
        "EnrollmentGuardian",
        cascade="all, delete-orphan",
        order_by="[EnrollmentGuardian.position, EnrollmentGuardian.guardian_id]",
    )
    services: Mapped[list["Service"]] = relationship("Service", secondary=enrollment_services)
    employees: Mapped[list["Employee"]] = relationship("Employee", secondary=enrollment_employees)

    @property
    def guardians(self) -> list["Guardian"]:
        """Guardians in enrollment order."""
        return [link.guardian for link in self.guardian_links if link.guardian is not None]


from src.modules.employees.models import Employee  # noqa: E402

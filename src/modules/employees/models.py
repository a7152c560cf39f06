"""Employee and contract term models."""

from datetime import date
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import BigInteger, Boolean, Date, ForeignKey, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import Base, BaseModel, BigIntPK


class PaymentPeriod(StrEnum):
    """How often an employee is paid."""

    MONTHLY = "monthly"
    BIWEEKLY = "biweekly"
    WEEKLY = "weekly"
    DAILY = "daily"
    ANNUAL = "annual"


class Employee(BaseModel):
    """Staff member; the beneficiary of payroll credit transfers."""

    __tablename__ = "employees"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    lastname: Mapped[str | None] = mapped_column(String(200), nullable=True)
    dni: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    nif: Mapped[str | None] = mapped_column(String(20), nullable=True)
    role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    profession: Mapped[str | None] = mapped_column(String(100), nullable=True)

    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    postcode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)

    iban: Mapped[str | None] = mapped_column(String(34), nullable=True)
    bic: Mapped[str | None] = mapped_column(String(11), nullable=True)
    swift: Mapped[str | None] = mapped_column(String(11), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    # {"Bonus": 50}
    additional_amount: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    billing_control: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    terms: Mapped[list["ContractTerm"]] = relationship(
        "ContractTerm",
        back_populates="employee",
        cascade="all, delete-orphan",
        order_by="[ContractTerm.position, ContractTerm.id]",
    )

    @property
    def full_name(self) -> str:
        return f"{self.name or ''} {self.lastname or ''}".strip()

    @property
    def latest_term(self) -> "ContractTerm | None":
        """The last term is the one that governs current billing."""
        return self.terms[-1] if self.terms else None


class ContractTerm(Base):
    """One contract period of an employee."""

    __tablename__ = "contract_terms"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    start: Mapped[date | None] = mapped_column(Date, nullable=True)
    end: Mapped[date | None] = mapped_column(Date, nullable=True)
    hourly_rate: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    worked_hours: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    payment_period: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentPeriod.MONTHLY.value
    )
    contract_duration: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    employee: Mapped["Employee"] = relationship("Employee", back_populates="terms")

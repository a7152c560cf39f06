"""Itemized amounts for enrollment charges and employee payroll."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from src.modules.billing.views import EmployeeView, EnrollmentView, ServiceView, TermView
from src.modules.employees.models import PaymentPeriod
from src.modules.enrollments.models import ServiceStatus
from src.modules.invoices.amounts import normalize_invoice_amounts, subtotal_from_amounts
from src.shared.utils.money import round_money, to_decimal

DEFAULT_MONTHLY_HOURS = Decimal("160")
WORKING_DAYS_PER_MONTH = Decimal("22")
BASE_SALARY_CONCEPT = "Salario base"

# Fiscal reporting buckets, checked in order
_CONCEPT_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("matricula", ("matricula", "matrícula", "inscription")),
    ("comedor", ("comedor", "lunch", "almuerzo")),
    ("transporte", ("transporte", "transport", "bus")),
    ("material", ("material", "libro", "supplies")),
)

_PERIOD_DIVISORS: dict[str, Decimal] = {
    PaymentPeriod.MONTHLY.value: Decimal("1"),
    PaymentPeriod.BIWEEKLY.value: Decimal("2"),
    PaymentPeriod.WEEKLY.value: Decimal("4"),
    PaymentPeriod.DAILY.value: WORKING_DAYS_PER_MONTH,
    # Annual reuses the monthly figure (see DESIGN.md, open question)
    PaymentPeriod.ANNUAL.value: Decimal("1"),
}


@dataclass(frozen=True)
class AmountBreakdown:
    amounts: list[dict[str, Any]]
    subtotal: Decimal


def map_service_to_concept(service: ServiceView | Any) -> str:
    """Bucket a service into matricula/comedor/transporte/material, else its own title."""
    raw_title = (getattr(service, "title", None) or "").strip()
    title = raw_title.lower()
    for concept, keywords in _CONCEPT_KEYWORDS:
        if any(word in title for word in keywords):
            return concept
    if getattr(service, "service_type", None) == "student_service":
        return "matricula"
    return raw_title or "servicio"


def calculate_salary_amount(
    payment_period: str | None,
    hourly_rate: Any,
    worked_hours: Any = None,
) -> Decimal:
    """
    Amount to pay for one occurrence of ``payment_period``.

    ``worked_hours`` are hours per month; unset or non-positive means 160.
    """
    rate = to_decimal(hourly_rate) or Decimal("0")
    hours = to_decimal(worked_hours)
    if hours is None or hours <= 0:
        hours = DEFAULT_MONTHLY_HOURS
    monthly = rate * hours
    divisor = _PERIOD_DIVISORS.get(payment_period or "", Decimal("1"))
    return monthly / divisor


def _add(raw: dict[str, Decimal], concept: str, value: Any) -> None:
    amount = to_decimal(value)
    if amount is None or amount <= 0:
        return
    # Keys are merged case-insensitively later by the normalizer
    raw[concept] = raw.get(concept, Decimal("0")) + amount


def _finish(raw: dict[str, Decimal]) -> AmountBreakdown | None:
    amounts = normalize_invoice_amounts(raw)
    if not amounts:
        return None
    subtotal = subtotal_from_amounts(amounts)
    if not subtotal.is_finite() or subtotal <= 0:
        return None
    return AmountBreakdown(amounts=amounts, subtotal=subtotal)


def calculate_enrollment_amounts(view: EnrollmentView) -> AmountBreakdown | None:
    """Active services bucketed by concept plus ad-hoc additions. None when nothing to bill."""
    raw: dict[str, Decimal] = {}
    for service in view.services:
        if service.service_status != ServiceStatus.ACTIVE:
            continue
        _add(raw, map_service_to_concept(service), service.amount)
    for concept, value in (view.additional_amount or {}).items():
        _add(raw, str(concept), value)
    return _finish(raw)


def calculate_employee_amounts(
    view: EmployeeView, term: TermView | None = None
) -> AmountBreakdown | None:
    """Base salary from the latest term plus each bonus. None when nothing to pay."""
    term = term or view.latest_term
    if term is None:
        return None
    raw: dict[str, Decimal] = {}
    base = calculate_salary_amount(term.payment_period, term.hourly_rate, term.worked_hours)
    _add(raw, BASE_SALARY_CONCEPT, round_money(base))
    for concept, value in (view.additional_amount or {}).items():
        _add(raw, str(concept), value)
    return _finish(raw)

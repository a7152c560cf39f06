"""
Plain read-only copies of the entities a billing run works on.

The run commits or rolls back after each entity; working from these copies
keeps eligibility and amount calculation independent of ORM session state.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from src.modules.employees.models import Employee, PaymentPeriod
from src.modules.enrollments.guardians import primary_guardian
from src.modules.enrollments.models import Enrollment


@dataclass(frozen=True)
class ServiceView:
    title: str
    amount: Decimal | None
    service_status: str
    service_type: str | None = None


@dataclass(frozen=True)
class SegmentView:
    start: date | None
    end: date | None


@dataclass(frozen=True)
class TermView:
    start: date | None
    end: date | None
    hourly_rate: Decimal | None
    worked_hours: Decimal | None
    payment_period: str = PaymentPeriod.MONTHLY.value


@dataclass(frozen=True)
class EnrollmentView:
    id: int
    document_id: str
    is_active: bool
    has_school_period: bool
    segments: tuple[SegmentView, ...] = ()
    services: tuple[ServiceView, ...] = ()
    additional_amount: dict[str, Any] | None = None
    billing_control: dict[str, Any] = field(default_factory=dict)
    student_name: str | None = None
    primary_guardian_id: int | None = None


@dataclass(frozen=True)
class EmployeeView:
    id: int
    document_id: str
    is_active: bool
    name: str
    latest_term: TermView | None = None
    additional_amount: dict[str, Any] | None = None
    billing_control: dict[str, Any] = field(default_factory=dict)


def enrollment_view(enrollment: Enrollment) -> EnrollmentView:
    """Copy an enrollment loaded with student, guardians, services and school period segments."""
    period = enrollment.school_period
    guardian = primary_guardian(enrollment.guardians)
    return EnrollmentView(
        id=enrollment.id,
        document_id=enrollment.document_id,
        is_active=bool(enrollment.is_active),
        has_school_period=period is not None,
        segments=tuple(SegmentView(s.start, s.end) for s in (period.segments if period else [])),
        services=tuple(
            ServiceView(s.title, s.amount, s.service_status, s.service_type) for s in enrollment.services
        ),
        additional_amount=dict(enrollment.additional_amount or {}) or None,
        billing_control=dict(enrollment.billing_control or {}),
        student_name=enrollment.student.name if enrollment.student else None,
        primary_guardian_id=guardian.id if guardian else None,
    )


def employee_view(employee: Employee) -> EmployeeView:
    """Copy an employee loaded with terms."""
    term = employee.latest_term
    return EmployeeView(
        id=employee.id,
        document_id=employee.document_id,
        is_active=bool(employee.is_active),
        name=employee.name,
        latest_term=(
            TermView(
                start=term.start,
                end=term.end,
                hourly_rate=term.hourly_rate,
                worked_hours=term.worked_hours,
                payment_period=term.payment_period or PaymentPeriod.MONTHLY.value,
            )
            if term
            else None
        ),
        additional_amount=dict(employee.additional_amount or {}) or None,
        billing_control=dict(employee.billing_control or {}),
    )

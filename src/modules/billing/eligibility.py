"""
Period and eligibility checks for recurring billing.

Evaluated fresh on every run; the only persisted state is each entity's
``billing_control`` ledger (``{"YYYY-MM": {...}}``).
"""

import calendar
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.modules.billing.views import EmployeeView, EnrollmentView
from src.modules.employees.models import PaymentPeriod
from src.modules.invoices.models import Invoice, InvoiceCategory


class EligibilityState(StrEnum):
    INELIGIBLE_INACTIVE = "ineligible-inactive"
    INELIGIBLE_OUT_OF_WINDOW = "ineligible-out-of-window"
    ALREADY_BILLED = "already-billed-this-period"
    # Payment frequency does not fire today (employees only)
    NOT_DUE = "not-due"
    ELIGIBLE = "eligible"


@dataclass(frozen=True)
class EligibilityResult:
    state: EligibilityState
    reason: str = ""

    @property
    def eligible(self) -> bool:
        return self.state == EligibilityState.ELIGIBLE


def month_key(on: date) -> str:
    """Ledger key of the calendar month: ``YYYY-MM``."""
    return f"{on.year:04d}-{on.month:02d}"


def last_day_of_month(on: date) -> date:
    return date(on.year, on.month, calendar.monthrange(on.year, on.month)[1])


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last day (inclusive) of a calendar month."""
    first = date(year, month, 1)
    return first, last_day_of_month(first)


def is_date_within_range(start: date | None, end: date | None, on: date) -> bool:
    """Inclusive range check; a missing bound leaves that side open."""
    if start is not None and on < start:
        return False
    if end is not None and on > end:
        return False
    return True


def is_date_within_school_period(segments: Iterable[Any], on: date) -> bool:
    """
    True when ``on`` falls inside at least one segment (inclusive, date-only).

    Segments missing either bound are ignored; no segments means out of window.
    """
    for segment in segments or ():
        start = getattr(segment, "start", None)
        end = getattr(segment, "end", None)
        if start is None or end is None:
            continue
        if start <= on <= end:
            return True
    return False


def should_bill_employee(payment_period: str | None, on: date, billing_day: int | None = None) -> bool:
    """Whether a payment frequency fires on ``on``."""
    day = on.day
    if payment_period == PaymentPeriod.MONTHLY:
        return day == billing_day if billing_day is not None else True
    if payment_period == PaymentPeriod.BIWEEKLY:
        return day in (1, 2, 15, 16)
    if payment_period == PaymentPeriod.WEEKLY:
        return on.weekday() == 0
    if payment_period == PaymentPeriod.ANNUAL:
        return on.month == 1 and day in (1, 2)
    # daily and unknown frequencies always fire
    return True


def is_billed_in_ledger(billing_control: dict | None, key: str) -> bool:
    """True when the ledger already records an invoice for ``key``."""
    return bool(billing_control) and bool(billing_control.get(key))


def evaluate_enrollment(view: EnrollmentView, on: date) -> EligibilityResult:
    """Pure eligibility of an enrollment on ``on`` (ledger included, database not)."""
    if not view.is_active:
        return EligibilityResult(EligibilityState.INELIGIBLE_INACTIVE, "enrollment is inactive")
    if not view.has_school_period:
        return EligibilityResult(EligibilityState.INELIGIBLE_OUT_OF_WINDOW, "no school period assigned")
    if not is_date_within_school_period(view.segments, on):
        return EligibilityResult(
            EligibilityState.INELIGIBLE_OUT_OF_WINDOW, f"{on.isoformat()} is outside the school period"
        )
    key = month_key(on)
    if is_billed_in_ledger(view.billing_control, key):
        return EligibilityResult(EligibilityState.ALREADY_BILLED, f"ledger already has {key}")
    return EligibilityResult(EligibilityState.ELIGIBLE)


def evaluate_employee(
    view: EmployeeView,
    on: date,
    billing_day: int | None = None,
    check_frequency: bool = True,
) -> EligibilityResult:
    """Pure eligibility of an employee on ``on``, governed by the latest contract term."""
    if not view.is_active:
        return EligibilityResult(EligibilityState.INELIGIBLE_INACTIVE, "employee is inactive")
    term = view.latest_term
    if term is None:
        return EligibilityResult(EligibilityState.INELIGIBLE_OUT_OF_WINDOW, "no contract terms")
    if not is_date_within_range(term.start, term.end, on):
        return EligibilityResult(
            EligibilityState.INELIGIBLE_OUT_OF_WINDOW, f"{on.isoformat()} is outside the contract term"
        )
    if check_frequency and not should_bill_employee(term.payment_period, on, billing_day):
        return EligibilityResult(
            EligibilityState.NOT_DUE, f"{term.payment_period} payment does not fire on {on.isoformat()}"
        )
    key = month_key(on)
    if is_billed_in_ledger(view.billing_control, key):
        return EligibilityResult(EligibilityState.ALREADY_BILLED, f"ledger already has {key}")
    return EligibilityResult(EligibilityState.ELIGIBLE)


async def has_real_invoice(
    db: AsyncSession,
    category: str | InvoiceCategory,
    entity_id: int,
    year: int,
    month: int,
) -> bool:
    """
    Whether a non-simulation invoice of ``category`` already exists for the
    entity with emission date inside the month. Best effort: runs are
    serialized, this is not a lock.
    """
    first, last = month_bounds(year, month)
    column = Invoice.employee_id if str(category) == InvoiceCategory.EMPLOYEE else Invoice.enrollment_id
    result = await db.execute(
        select(Invoice.id)
        .where(
            Invoice.category == str(category),
            column == entity_id,
            Invoice.simulation.is_(False),
            Invoice.emission_date >= first,
            Invoice.emission_date <= last,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None

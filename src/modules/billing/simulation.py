"""Synthetic invoices for what-if forecasting."""

import logging
import random
import time
from datetime import date

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.models import ExecutionLog
from src.core.audit.service import ExecutionEvent, ExecutionLevel, log_execution, new_trace_id
from src.core.exceptions import AppException
from src.modules.billing.calculator import calculate_employee_amounts, calculate_enrollment_amounts
from src.modules.billing.eligibility import (
    evaluate_employee,
    has_real_invoice,
    is_billed_in_ledger,
    is_date_within_school_period,
    last_day_of_month,
    month_bounds,
    month_key,
)
from src.modules.billing.schemas import (
    SimulationCleanupResult,
    SimulationGenerateRequest,
    SimulationGenerateResult,
    SimulationMonthResult,
    SimulationStatusResult,
    StatusDistribution,
)
from src.modules.billing.service import PAYMENT_PERIOD_LABELS, fetch_active_page, month_label
from src.modules.billing.views import EmployeeView, EnrollmentView, employee_view, enrollment_view
from src.modules.employees.models import Employee
from src.modules.enrollments.models import Enrollment
from src.modules.invoices.models import Invoice, InvoiceCategory, InvoiceStatus, InvoiceType, RegisteredBy
from src.modules.invoices.service import InvoiceService

logger = logging.getLogger(__name__)

SIMULATION_ISSUER = "Simulación"
SIMULATION_MODULE = "simulation"


def pick_status(distribution: StatusDistribution | None, rng: random.Random) -> str:
    """Weighted draw over paid/unpaid/canceled; no (or all-zero) weights means unpaid."""
    if distribution is None:
        return InvoiceStatus.UNPAID.value
    weights = [
        (InvoiceStatus.PAID.value, distribution.paid),
        (InvoiceStatus.UNPAID.value, distribution.unpaid),
        (InvoiceStatus.CANCELED.value, distribution.canceled),
    ]
    total = sum(w for _, w in weights)
    if total <= 0:
        return InvoiceStatus.UNPAID.value
    point = rng.random() * total
    for value, weight in weights:
        if point < weight:
            return value
        point -= weight
    return InvoiceStatus.UNPAID.value


class SimulationService:
    """
    Generates, counts and deletes simulation invoices.

    Simulation invoices are flagged ``simulation=True`` so they never count as
    real billing; generating them does not touch any billing ledger.
    """

    def __init__(self, db: AsyncSession, rng: random.Random | None = None, batch_size: int = 500):
        self.db = db
        self.rng = rng or random.Random()
        self.batch_size = batch_size

    def _scope(self, year: int | None = None, month: int | None = None, tag: str | None = None) -> list:
        conditions = [Invoice.simulation.is_(True)]
        if year is not None:
            if month is not None:
                first, last = month_bounds(year, month)
            else:
                first, last = date(year, 1, 1), date(year, 12, 31)
            conditions += [Invoice.emission_date >= first, Invoice.emission_date <= last]
        if tag:
            conditions.append(Invoice.simulation_tag == tag)
        return conditions

    async def _delete(self, year: int | None, month: int | None, tag: str | None) -> int:
        result = await self.db.execute(delete(Invoice).where(*self._scope(year, month, tag)))
        return result.rowcount or 0

    async def generate_year(self, request: SimulationGenerateRequest) -> SimulationGenerateResult:
        """Generate simulation invoices for every requested month of ``request.year``."""
        result = SimulationGenerateResult()
        if request.year < 1970:
            return result

        trace_id = new_trace_id("sim")
        started = time.monotonic()
        months = request.months or list(range(1, 13))
        await log_execution(
            self.db,
            title="Simulation generation",
            message=f"Generating simulations for {request.year} months={months} tag={request.tag}",
            event_type=ExecutionEvent.SIMULATION_GENERATE,
            level=ExecutionLevel.DEBUG,
            module=SIMULATION_MODULE,
            trace_id=trace_id,
            payload=request.model_dump(mode="json"),
        )
        await self.db.commit()

        for month in months:
            deleted = 0
            if request.delete_existing:
                deleted = await self._delete(request.year, month, request.tag)
                await self.db.commit()
            count = await self._generate_month(request, date(request.year, month, 1))
            result.created.append(
                SimulationMonthResult(period=month_key(date(request.year, month, 1)), count=count, deleted=deleted)
            )
            result.total += count

        await log_execution(
            self.db,
            title="Simulation generation finished",
            message=f"{result.total} simulation invoices created for {request.year}",
            event_type=ExecutionEvent.SIMULATION_GENERATE,
            level=ExecutionLevel.INFO if result.total else ExecutionLevel.DEBUG,
            module=SIMULATION_MODULE,
            trace_id=trace_id,
            duration_ms=int((time.monotonic() - started) * 1000),
            payload=result.model_dump(mode="json"),
        )
        await self.db.commit()
        return result

    async def _generate_month(self, request: SimulationGenerateRequest, on: date) -> int:
        count = 0
        if request.include_enrollments:
            count += await self._generate_for(Enrollment, enrollment_view, on, request)
        if request.include_employees:
            count += await self._generate_for(Employee, employee_view, on, request)
        return count

    async def _generate_for(self, model, to_view, on: date, request: SimulationGenerateRequest) -> int:
        count = 0
        after_id = 0
        while True:
            rows = await fetch_active_page(self.db, model, after_id, self.batch_size)
            if not rows:
                break
            views = [to_view(row) for row in rows]
            after_id = views[-1].id
            for view in views:
                if model is Enrollment:
                    payload = await self._enrollment_payload(view, on)
                else:
                    payload = await self._employee_payload(view, on)
                if payload is None:
                    continue
                payload.update(
                    status=pick_status(request.status_distribution, self.rng),
                    simulation=True,
                    simulation_tag=request.tag,
                    emission_date=on,
                    expiration_date=last_day_of_month(on),
                    issued_by=SIMULATION_ISSUER,
                    registered_by=RegisteredBy.SYSTEM.value,
                )
                try:
                    await InvoiceService(self.db).create_invoice(payload)
                    await self.db.commit()
                except (AppException, SQLAlchemyError):
                    await self.db.rollback()
                    logger.warning("Simulation skipped %s %s for %s", model.__tablename__, view.id, on, exc_info=True)
                    continue
                count += 1
            if len(rows) < self.batch_size:
                break
        return count

    async def _enrollment_payload(self, view: EnrollmentView, on: date) -> dict | None:
        if not is_date_within_school_period(view.segments, on):
            return None
        if is_billed_in_ledger(view.billing_control, month_key(on)):
            return None
        if await has_real_invoice(self.db, InvoiceCategory.ENROLLMENT, view.id, on.year, on.month):
            return None
        breakdown = calculate_enrollment_amounts(view)
        if breakdown is None:
            return None
        return {
            "category": InvoiceCategory.ENROLLMENT.value,
            "invoice_type": InvoiceType.CHARGE.value,
            "enrollment": view.id,
            "guardian": view.primary_guardian_id,
            "amounts": breakdown.amounts,
            "title": f"Recibo simulado - {month_label(on)} - {view.student_name or 'Estudiante'}",
        }

    async def _employee_payload(self, view: EmployeeView, on: date) -> dict | None:
        # Frequency is not checked: simulations produce one invoice per month
        if not evaluate_employee(view, on, check_frequency=False).eligible:
            return None
        if await has_real_invoice(self.db, InvoiceCategory.EMPLOYEE, view.id, on.year, on.month):
            return None
        breakdown = calculate_employee_amounts(view)
        if breakdown is None:
            return None
        label = PAYMENT_PERIOD_LABELS.get(view.latest_term.payment_period, "Mensual")
        return {
            "category": InvoiceCategory.EMPLOYEE.value,
            "invoice_type": InvoiceType.EXPENSE.value,
            "employee": view.id,
            "amounts": breakdown.amounts,
            "title": f"Nómina {label} {month_key(on)} - {view.name}",
        }

    async def cleanup(self, year: int | None = None, tag: str | None = None) -> SimulationCleanupResult:
        """Delete simulation invoices (optionally by year and tag) and their execution entries."""
        deleted = await self._delete(year, None, tag)
        await self.db.execute(
            delete(ExecutionLog).where(
                ExecutionLog.module == SIMULATION_MODULE,
                ExecutionLog.event_type == ExecutionEvent.SIMULATION_GENERATE.value,
            )
        )
        await log_execution(
            self.db,
            title="Simulation cleanup",
            message=f"{deleted} simulation invoices deleted (year={year}, tag={tag})",
            event_type=ExecutionEvent.SIMULATION_CLEANUP,
            module=SIMULATION_MODULE,
            payload={"year": year, "tag": tag, "deleted": deleted},
        )
        await self.db.commit()
        logger.info("Deleted %d simulation invoices (year=%s, tag=%s)", deleted, year, tag)
        return SimulationCleanupResult(deleted=deleted)

    async def status(
        self, year: int | None = None, month: int | None = None, tag: str | None = None
    ) -> SimulationStatusResult:
        """Whether simulation invoices exist for the given scope, and how many."""
        count = (
            await self.db.execute(select(func.count(Invoice.id)).where(*self._scope(year, month, tag)))
        ).scalar_one()
        return SimulationStatusResult(exists=count > 0, count=count)

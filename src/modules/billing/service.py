"""Recurring billing run: enrollment charges and employee payroll."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.audit.service import ExecutionEvent, ExecutionLevel, log_execution, new_trace_id
from src.core.config import settings
from src.core.exceptions import ConflictError
from src.modules.billing.calculator import calculate_employee_amounts, calculate_enrollment_amounts
from src.modules.billing.config import BillingConfig
from src.modules.billing.eligibility import (
    EligibilityState,
    evaluate_employee,
    evaluate_enrollment,
    has_real_invoice,
    last_day_of_month,
    month_key,
)
from src.modules.billing.models import BillingRunLock
from src.modules.billing.schemas import BillingMode, BillingRunResult, EntityError, ModeResult
from src.modules.billing.views import EmployeeView, EnrollmentView, employee_view, enrollment_view
from src.modules.employees.models import Employee, PaymentPeriod
from src.modules.enrollments.models import Enrollment, EnrollmentGuardian, SchoolPeriod
from src.modules.invoices.models import InvoiceCategory, InvoiceStatus, InvoiceType, RegisteredBy
from src.modules.invoices.service import InvoiceService
from src.modules.invoices.tax import calculate_tax

logger = logging.getLogger(__name__)

LOCK_NAME = "recurring-billing"
NO_AMOUNT = "no-amount"
SYSTEM_ISSUER = "Sistema"

MONTH_NAMES_ES = (
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
)

PAYMENT_PERIOD_LABELS = {
    PaymentPeriod.MONTHLY.value: "Mensual",
    PaymentPeriod.BIWEEKLY.value: "Quincenal",
    PaymentPeriod.WEEKLY.value: "Semanal",
    PaymentPeriod.DAILY.value: "Diaria",
    PaymentPeriod.ANNUAL.value: "Anual",
}


def month_label(on: date) -> str:
    """``marzo de 2024``"""
    return f"{MONTH_NAMES_ES[on.month - 1]} de {on.year}"


def short_date(on: date) -> str:
    """``25/03/2024``"""
    return on.strftime("%d/%m/%Y")


@dataclass(frozen=True)
class _RunContext:
    trace_id: str
    now: datetime
    on: date
    config: BillingConfig
    catch_up: bool


async def fetch_active_page(
    db: AsyncSession,
    model: Any,
    after_id: int,
    limit: int,
) -> list:
    """
    One page of active enrollments or employees with everything billing needs,
    ordered by id (keyset paging, stable across inserts).
    """
    if model is Enrollment:
        options = (
            selectinload(Enrollment.student),
            selectinload(Enrollment.services),
            selectinload(Enrollment.school_period).selectinload(SchoolPeriod.segments),
            selectinload(Enrollment.guardian_links).selectinload(EnrollmentGuardian.guardian),
        )
    else:
        options = (selectinload(Employee.terms),)
    result = await db.execute(
        select(model)
        .where(model.is_active.is_(True), model.id > after_id)
        .order_by(model.id)
        .limit(limit)
        .options(*options)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


class BillingService:
    """
    Drives one billing run.

    Entities are processed strictly one after another; each one is committed
    (invoice plus ledger entry) or rolled back on its own, so a failure only
    skips that entity. Failing to fetch a page aborts the run.
    """

    def __init__(
        self,
        db: AsyncSession,
        batch_size: int | None = None,
        use_lock: bool | None = None,
    ):
        self.db = db
        self.batch_size = batch_size or settings.billing_batch_size
        self.use_lock = settings.billing_run_lock_enabled if use_lock is None else use_lock

    # --- Run lock ---

    async def _acquire_lock(self, holder: str) -> None:
        now_utc = datetime.now(timezone.utc)
        await self.db.execute(
            delete(BillingRunLock).where(
                BillingRunLock.name == LOCK_NAME,
                BillingRunLock.expires_at < now_utc,
            )
        )
        try:
            await self.db.execute(
                insert(BillingRunLock).values(
                    name=LOCK_NAME,
                    holder=holder,
                    acquired_at=now_utc,
                    expires_at=now_utc + timedelta(seconds=settings.billing_run_lock_ttl_seconds),
                )
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            row = (
                await self.db.execute(
                    select(BillingRunLock.holder, BillingRunLock.expires_at).where(BillingRunLock.name == LOCK_NAME)
                )
            ).first()
            details = {"holder": row[0], "expires_at": str(row[1])} if row else {}
            raise ConflictError("Another billing run is in progress", details=details)

    async def _release_lock(self, holder: str) -> None:
        try:
            await self.db.execute(
                delete(BillingRunLock).where(BillingRunLock.name == LOCK_NAME, BillingRunLock.holder == holder)
            )
            await self.db.commit()
        except SQLAlchemyError:
            logger.exception("Could not release billing run lock %s (expires on its own)", holder)
            await self.db.rollback()

    # --- Entry points ---

    async def run_scheduled(
        self,
        now: datetime | None = None,
        mode: BillingMode = BillingMode.ALL,
        config: BillingConfig | None = None,
    ) -> BillingRunResult:
        """Run only if the schedule says so; a late run still bills monthly payroll."""
        config = config or BillingConfig.from_settings()
        local_now = config.localize(now)
        if not config.is_due(local_now):
            reason = "billing is disabled" if not config.is_active else "not due yet"
            logger.info("Scheduled billing skipped: %s", reason)
            return BillingRunResult(
                trace_id=new_trace_id(),
                ran=False,
                reason=reason,
                mode=mode,
                billing_date=local_now.date().isoformat(),
                last_execution=config.last_execution,
                next_execution=config.next_execution() if config.last_execution else None,
            )
        return await self.run(now=local_now, mode=mode, config=config, catch_up=True)

    async def run(
        self,
        now: datetime | None = None,
        mode: BillingMode = BillingMode.ALL,
        config: BillingConfig | None = None,
        catch_up: bool = False,
    ) -> BillingRunResult:
        """
        Bill every eligible enrollment and/or employee for the month of ``now``.

        ``catch_up`` makes monthly payroll fire regardless of the configured
        billing day (used when the schedule already decided the run is due).
        Returns counts, per-entity errors and the new last/next execution
        times; persisting those is up to the caller.
        """
        config = config or BillingConfig.from_settings()
        local_now = config.localize(now)
        ctx = _RunContext(
            trace_id=new_trace_id(),
            now=local_now,
            on=local_now.date(),
            config=config,
            catch_up=catch_up,
        )
        started = time.monotonic()
        result = BillingRunResult(trace_id=ctx.trace_id, mode=mode, billing_date=ctx.on.isoformat())

        if self.use_lock:
            await self._acquire_lock(ctx.trace_id)
        try:
            await log_execution(
                self.db,
                title="Recurring billing",
                message=f"Run started for {month_key(ctx.on)} (mode={mode})",
                event_type=ExecutionEvent.BILLING_RUN,
                level=ExecutionLevel.DEBUG,
                trace_id=ctx.trace_id,
                payload={"now": local_now.isoformat(), "mode": str(mode), "test_mode": config.test_mode},
            )
            await self.db.commit()

            try:
                if mode in (BillingMode.ALL, BillingMode.ENROLLMENTS):
                    result.enrollments = await self._run_mode(
                        ctx, Enrollment, enrollment_view, self._bill_enrollment
                    )
                if mode in (BillingMode.ALL, BillingMode.EMPLOYEES):
                    result.employees = await self._run_mode(ctx, Employee, employee_view, self._bill_employee)
            except SQLAlchemyError as e:
                await self.db.rollback()
                await log_execution(
                    self.db,
                    title="Recurring billing failed",
                    message=f"Could not load billable entities: {e}",
                    event_type=ExecutionEvent.BILLING_RUN,
                    level=ExecutionLevel.ERROR,
                    trace_id=ctx.trace_id,
                    status_code=500,
                    duration_ms=int((time.monotonic() - started) * 1000),
                )
                await self.db.commit()
                raise

            result.last_execution = local_now
            result.next_execution = config.next_execution(local_now)
            result.duration_ms = int((time.monotonic() - started) * 1000)
            await log_execution(
                self.db,
                title="Recurring billing summary",
                message=f"created={result.created} skipped={result.skipped} errors={len(result.errors)}",
                event_type=ExecutionEvent.BILLING_RUN_SUMMARY,
                level=ExecutionLevel.WARN if result.errors else ExecutionLevel.INFO,
                trace_id=ctx.trace_id,
                status_code=200,
                duration_ms=result.duration_ms,
                payload={
                    "billing_date": result.billing_date,
                    "enrollments": result.enrollments.model_dump() if result.enrollments else None,
                    "employees": result.employees.model_dump() if result.employees else None,
                    "last_execution": result.last_execution.isoformat(),
                    "next_execution": result.next_execution.isoformat(),
                },
            )
            await self.db.commit()
        finally:
            if self.use_lock:
                await self._release_lock(ctx.trace_id)
        return result

    # --- Per mode ---

    async def _run_mode(
        self,
        ctx: _RunContext,
        model: Any,
        to_view: Callable[[Any], Any],
        bill: Callable[..., Any],
    ) -> ModeResult:
        outcome = ModeResult()
        entity = model.__tablename__[:-1]
        after_id = 0
        while True:
            rows = await fetch_active_page(self.db, model, after_id, self.batch_size)
            if not rows:
                break
            views = [to_view(row) for row in rows]
            after_id = views[-1].id
            for view in views:
                try:
                    await bill(ctx, view, outcome)
                except Exception as e:
                    await self.db.rollback()
                    logger.exception("Billing failed for %s %s", entity, view.id)
                    outcome.errors.append(
                        EntityError(entity=entity, entity_id=view.id, document_id=view.document_id, message=str(e))
                    )
                    await log_execution(
                        self.db,
                        title=f"Billing failed for {entity} {view.id}",
                        message=str(e),
                        event_type=ExecutionEvent.INVOICE_FAILED,
                        level=ExecutionLevel.ERROR,
                        trace_id=ctx.trace_id,
                        status_code=500,
                        payload={"entity": entity, "entity_id": view.id, "document_id": view.document_id},
                    )
                    await self.db.commit()
            if len(rows) < self.batch_size:
                break
        logger.info(
            "Billing %ss: %d created, %d skipped, %d errors",
            entity, outcome.created, outcome.skipped, len(outcome.errors),
        )
        return outcome

    @staticmethod
    def _skip(outcome: ModeResult, reason: str) -> None:
        outcome.skipped += 1
        outcome.skipped_by_reason[reason] = outcome.skipped_by_reason.get(reason, 0) + 1

    async def _mark_billed(
        self, model: Any, entity_id: int, ledger: dict, ctx: _RunContext, invoice_document_id: str
    ) -> None:
        """Record the month in the entity's billing ledger (a new dict, so the JSON change is persisted)."""
        new_ledger = dict(ledger or {})
        new_ledger[month_key(ctx.on)] = {
            "invoice_document_id": invoice_document_id,
            "billed_at": ctx.now.isoformat(),
            "trace_id": ctx.trace_id,
        }
        await self.db.execute(update(model).where(model.id == entity_id).values(billing_control=new_ledger))

    async def _create_and_record(
        self,
        ctx: _RunContext,
        outcome: ModeResult,
        model: Any,
        view: EnrollmentView | EmployeeView,
        payload: dict[str, Any],
    ) -> None:
        invoice = await InvoiceService(self.db).create_invoice(payload)
        invoice_document_id = invoice.document_id
        total = invoice.total
        await self._mark_billed(model, view.id, view.billing_control, ctx, invoice_document_id)
        await self.db.commit()

        outcome.created += 1
        outcome.invoice_document_ids.append(invoice_document_id)
        await log_execution(
            self.db,
            title=payload["title"],
            message=f"Invoice {invoice_document_id} created, total {total}",
            event_type=ExecutionEvent.INVOICE_CREATED,
            level=ExecutionLevel.INFO,
            trace_id=ctx.trace_id,
            status_code=201,
            payload={
                "category": payload["category"],
                "entity_id": view.id,
                "entity_document_id": view.document_id,
                "invoice_document_id": invoice_document_id,
                "total": str(total),
                "month": month_key(ctx.on),
            },
        )
        await self.db.commit()

    async def _bill_enrollment(self, ctx: _RunContext, view: EnrollmentView, outcome: ModeResult) -> None:
        evaluation = evaluate_enrollment(view, ctx.on)
        if not evaluation.eligible:
            logger.debug("Enrollment %s skipped: %s", view.id, evaluation.reason)
            self._skip(outcome, evaluation.state)
            return
        if await has_real_invoice(self.db, InvoiceCategory.ENROLLMENT, view.id, ctx.on.year, ctx.on.month):
            self._skip(outcome, EligibilityState.ALREADY_BILLED)
            return
        breakdown = calculate_enrollment_amounts(view)
        if breakdown is None:
            self._skip(outcome, NO_AMOUNT)
            return

        month = month_label(ctx.on)
        today = short_date(ctx.on)
        student = view.student_name or "Estudiante"
        await self._create_and_record(
            ctx,
            outcome,
            Enrollment,
            view,
            {
                "category": InvoiceCategory.ENROLLMENT.value,
                "invoice_type": InvoiceType.CHARGE.value,
                "status": InvoiceStatus.UNPAID.value,
                "enrollment": view.id,
                "guardian": view.primary_guardian_id,
                "amounts": breakdown.amounts,
                "emission_date": ctx.on,
                "expiration_date": last_day_of_month(ctx.on),
                "issued_by": SYSTEM_ISSUER,
                "registered_by": RegisteredBy.SYSTEM.value,
                "title": f"Recibo mensual - {month} - {student} - {today}",
                "notes": (
                    f"Recibo generado automáticamente por el sistema el {today} "
                    f"para los servicios del mes de {month}."
                ),
            },
        )

    async def _bill_employee(self, ctx: _RunContext, view: EmployeeView, outcome: ModeResult) -> None:
        billing_day = None if ctx.catch_up else ctx.config.effective_billing_day(ctx.on)
        evaluation = evaluate_employee(view, ctx.on, billing_day=billing_day)
        if not evaluation.eligible:
            logger.debug("Employee %s skipped: %s", view.id, evaluation.reason)
            self._skip(outcome, evaluation.state)
            return
        if await has_real_invoice(self.db, InvoiceCategory.EMPLOYEE, view.id, ctx.on.year, ctx.on.month):
            self._skip(outcome, EligibilityState.ALREADY_BILLED)
            return
        breakdown = calculate_employee_amounts(view)
        if breakdown is None:
            self._skip(outcome, NO_AMOUNT)
            return

        period = view.latest_term.payment_period
        label = PAYMENT_PERIOD_LABELS.get(period, "Mensual")
        today = short_date(ctx.on)
        salary = calculate_tax(breakdown.subtotal).total
        await self._create_and_record(
            ctx,
            outcome,
            Employee,
            view,
            {
                "category": InvoiceCategory.EMPLOYEE.value,
                "invoice_type": InvoiceType.EXPENSE.value,
                "status": InvoiceStatus.UNPAID.value,
                "employee": view.id,
                "amounts": breakdown.amounts,
                "emission_date": ctx.on,
                "expiration_date": last_day_of_month(ctx.on),
                "issued_by": SYSTEM_ISSUER,
                "registered_by": RegisteredBy.SYSTEM.value,
                "title": f"Nómina {label} - {view.name} - {today}",
                "notes": (
                    f"Nómina {label.lower()} generada automáticamente por el sistema el {today}. "
                    f"Tipo de contrato: {period}. Salario calculado: €{salary}."
                ),
            },
        )

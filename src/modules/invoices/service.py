"""Service for Invoices module."""

import logging
from collections.abc import Mapping
from datetime import date
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.service import ExecutionEvent, ExecutionLevel, log_execution
from src.core.exceptions import NotFoundError, ValidationError
from src.modules.employees.models import Employee
from src.modules.enrollments.models import Enrollment, Guardian
from src.modules.invoices.amounts import normalize_invoice_amounts, subtotal_from_amounts
from src.modules.invoices.models import Invoice, InvoiceCategory, InvoiceStatus, InvoiceType, RegisteredBy
from src.modules.invoices.schemas import (
    InvoiceCreate,
    InvoiceFilters,
    InvoiceUpdate,
    SnapshotBackfillResult,
)
from src.modules.invoices.snapshot import apply_snapshot, build_party_snapshot
from src.modules.invoices.tax import calculate_tax
from src.shared.utils.relations import parse_relation, resolve_relation_id

logger = logging.getLogger(__name__)

_RELATION_MODELS: dict[str, Any] = {
    "enrollment": Enrollment,
    "employee": Employee,
    "guardian": Guardian,
}


class InvoiceService:
    """Service for creating and reading invoices."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _resolve_required(self, name: str, value: Any) -> int | None:
        """Resolve a relation input; a reference that matches nothing is a validation error."""
        ref = parse_relation(value)
        if ref is None:
            return None
        resolved = await resolve_relation_id(self.db, _RELATION_MODELS[name], ref)
        if resolved is None:
            raise ValidationError(f"{name.capitalize()} not found", field=name)
        return resolved

    async def create_invoice(self, payload: Mapping[str, Any] | InvoiceCreate) -> Invoice:
        """
        Create an invoice from a raw payload.

        Amounts are normalized, tax and total computed once, and the party
        snapshot frozen. The caller commits.
        """
        if isinstance(payload, InvoiceCreate):
            payload = payload.model_dump()
        category = str(payload.get("category") or "")
        if category not in {c.value for c in InvoiceCategory}:
            raise ValidationError(f"Invalid invoice category: {category!r}", field="category")

        amounts = normalize_invoice_amounts(payload.get("amounts"))
        if not amounts:
            raise ValidationError("At least one valid amount line is required", field="amounts")
        tax = calculate_tax(subtotal_from_amounts(amounts))

        enrollment_id = await self._resolve_required("enrollment", payload.get("enrollment"))
        employee_id = await self._resolve_required("employee", payload.get("employee"))
        guardian_id = await self._resolve_required("guardian", payload.get("guardian"))
        if category == InvoiceCategory.ENROLLMENT and enrollment_id is None:
            raise ValidationError("Enrollment invoices require an enrollment", field="enrollment")
        if category == InvoiceCategory.EMPLOYEE and employee_id is None:
            raise ValidationError("Employee invoices require an employee", field="employee")

        emission_date = payload.get("emission_date") or date.today()
        expiration_date = payload.get("expiration_date")
        if expiration_date is not None and expiration_date < emission_date:
            raise ValidationError("Expiration date must not be before emission date", field="expiration_date")

        snapshot = await build_party_snapshot(
            self.db,
            {
                "category": category,
                "enrollment": enrollment_id,
                "employee": employee_id,
                "guardian": guardian_id,
                "amounts": amounts,
                "iva": tax.tax,
                "total": tax.total,
            },
        )

        invoice = Invoice(
            title=payload.get("title"),
            category=category,
            invoice_type=str(payload.get("invoice_type") or InvoiceType.CHARGE.value),
            status=str(payload.get("status") or InvoiceStatus.UNPAID.value),
            amounts=amounts,
            iva=tax.tax,
            total=tax.total,
            emission_date=emission_date,
            expiration_date=expiration_date,
            enrollment_id=enrollment_id,
            employee_id=employee_id,
            guardian_id=guardian_id,
            simulation=bool(payload.get("simulation", False)),
            simulation_tag=payload.get("simulation_tag"),
            notes=payload.get("notes"),
            issued_by=payload.get("issued_by"),
            registered_by=str(payload.get("registered_by") or RegisteredBy.ADMINISTRATION.value),
        )
        if payload.get("document_id"):
            invoice.document_id = str(payload["document_id"])
        apply_snapshot(invoice, snapshot)
        self.db.add(invoice)
        await self.db.flush()
        return invoice

    async def get_invoice(self, document_id: str) -> Invoice:
        result = await self.db.execute(select(Invoice).where(Invoice.document_id == document_id))
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", document_id)
        return invoice

    async def list_invoices(self, filters: InvoiceFilters) -> tuple[list[Invoice], int]:
        """List invoices with filters and pagination, newest emission first."""
        conditions = []
        if filters.category:
            conditions.append(Invoice.category == filters.category.value)
        if filters.status:
            conditions.append(Invoice.status == filters.status.value)
        if filters.simulation is not None:
            conditions.append(Invoice.simulation.is_(filters.simulation))
        if filters.simulation_tag:
            conditions.append(Invoice.simulation_tag == filters.simulation_tag)
        if filters.enrollment_document_id:
            conditions.append(Invoice.enrollment_document_id == filters.enrollment_document_id)
        if filters.employee_document_id:
            conditions.append(Invoice.employee_document_id == filters.employee_document_id)
        if filters.emission_from:
            conditions.append(Invoice.emission_date >= filters.emission_from)
        if filters.emission_to:
            conditions.append(Invoice.emission_date <= filters.emission_to)
        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(or_(Invoice.title.ilike(pattern), Invoice.document_id.ilike(pattern)))

        query = select(Invoice).where(*conditions)
        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        query = (
            query.order_by(Invoice.emission_date.desc(), Invoice.id.desc())
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def update_invoice(self, document_id: str, data: InvoiceUpdate) -> Invoice:
        """Edit status and notes. Amounts, totals and snapshot stay frozen."""
        invoice = await self.get_invoice(document_id)
        for key, value in data.model_dump(exclude_unset=True).items():
            if key == "status" and value is None:
                continue
            setattr(invoice, key, str(value) if key == "status" else value)
        await self.db.flush()
        await self.db.refresh(invoice)
        return invoice

    async def delete_invoice(self, document_id: str) -> None:
        """Explicit admin deletion."""
        invoice = await self.get_invoice(document_id)
        await self.db.execute(delete(Invoice).where(Invoice.id == invoice.id))
        await self.db.flush()
        logger.info("Invoice %s deleted", document_id)

    async def backfill_snapshots(self, batch_size: int = 500, dry_run: bool = False) -> SnapshotBackfillResult:
        """
        Fill ``party_snapshot`` on invoices that have none.

        Idempotent: invoices that already have a snapshot are never touched,
        so running it again only picks up what is still missing. Party data
        comes from the invoice's current relations. Commits per invoice.
        """
        result = SnapshotBackfillResult(dry_run=dry_run)
        last_id = 0
        while True:
            page = await self.db.execute(
                select(Invoice)
                .where(Invoice.party_snapshot.is_(None), Invoice.id > last_id)
                .order_by(Invoice.id)
                .limit(batch_size)
            )
            invoices = list(page.scalars().all())
            if not invoices:
                break
            # Copy before any rollback can expire the ORM rows
            rows = [
                (inv.id, inv.document_id, inv.category, inv.enrollment_id, inv.employee_id,
                 inv.guardian_id, inv.amounts, inv.iva, inv.total)
                for inv in invoices
            ]
            last_id = rows[-1][0]
            for invoice_id, document_id, category, enrollment_id, employee_id, guardian_id, amounts, iva, total in rows:
                result.scanned += 1
                if dry_run:
                    continue
                try:
                    snapshot = await build_party_snapshot(
                        self.db,
                        {
                            "category": category,
                            "enrollment": enrollment_id,
                            "employee": employee_id,
                            "guardian": guardian_id,
                            "amounts": amounts,
                            "iva": iva,
                            "total": total,
                        },
                    )
                    invoice = await self.db.get(Invoice, invoice_id)
                    apply_snapshot(invoice, snapshot)
                    await self.db.commit()
                    result.updated += 1
                except SQLAlchemyError as e:
                    await self.db.rollback()
                    result.failed += 1
                    result.errors.append(f"{document_id}: {e}")
                    logger.error("Snapshot backfill failed for invoice %s: %s", document_id, e)
            if len(rows) < batch_size:
                break

        await log_execution(
            self.db,
            title="Invoice snapshot backfill",
            message=f"scanned={result.scanned} updated={result.updated} failed={result.failed}",
            event_type=ExecutionEvent.SNAPSHOT_BACKFILL,
            module="invoices",
            level=ExecutionLevel.ERROR if result.failed else ExecutionLevel.INFO,
            payload=result.model_dump(),
        )
        await self.db.commit()
        return result

"""Fiscal declaration (Modelo 233) and invoice history reports."""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.company.service import require_declarant
from src.core.exceptions import NotFoundError
from src.modules.billing.eligibility import month_bounds
from src.modules.employees.models import Employee
from src.modules.enrollments.guardians import order_guardians
from src.modules.enrollments.models import Enrollment, EnrollmentGuardian, SchoolPeriod, Student
from src.modules.invoices.amounts import normalize_invoice_amounts
from src.modules.invoices.models import Invoice, InvoiceCategory, InvoiceStatus
from src.modules.reports.schemas import (
    Modelo233Amounts,
    Modelo233Concept,
    Modelo233Report,
    Modelo233Row,
    Quarter,
)
from src.shared.schemas.base import PaginatedResponse
from src.shared.utils.money import ZERO, round_money, to_decimal

logger = logging.getLogger(__name__)

MONTH_ABBREVIATIONS = ["ENE", "FEB", "MAR", "ABR", "MAY", "JUN", "JUL", "AGO", "SEP", "OCT", "NOV", "DIC"]

QUARTER_MONTHS: dict[Quarter, tuple[int, int]] = {
    Quarter.Q1: (1, 3),
    Quarter.Q2: (4, 6),
    Quarter.Q3: (7, 9),
    Quarter.Q4: (10, 12),
}

# Checked in order; the first bucket whose keyword appears in the concept wins
_BUCKET_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("matricula", ("matri",)),
    ("comedor", ("comedor", "menu", "menú", "catering")),
    ("subsidized", ("subv", "beca", "ayuda")),
)
TOTAL_ONLY = "total_only"

# Invoice history exports stop here
HISTORY_LIMIT = 1000

HISTORY_SORT_FIELDS = {
    "emission_date": Invoice.emission_date,
    "expiration_date": Invoice.expiration_date,
    "total": Invoice.total,
    "created_at": Invoice.created_at,
}

GUARDIAN_TYPE_LABELS = {
    "biological_parent": "Padre/Madre",
    "adoptive_parent": "Padre/Madre adoptivo",
    "legal_guardian": "Tutor legal",
    "other": "Otro",
}


def declaration_bucket(concept: str) -> str:
    """``matricula``, ``comedor``, ``subsidized`` or ``total_only`` for an amount concept."""
    key = (concept or "").lower()
    for bucket, keywords in _BUCKET_KEYWORDS:
        if any(word in key for word in keywords):
            return bucket
    return TOTAL_ONLY


def split_invoice_total(total: Any, amounts: Any) -> dict[str, Decimal]:
    """
    Spread the invoice total (IVA included) over the declaration buckets in
    proportion to its amount lines.

    Without lines, or when they add up to zero, the whole total is
    ``total_only``: it counts towards the declared total but no bucket.
    """
    invoice_total = to_decimal(total) or ZERO
    sums = {bucket: Decimal("0") for bucket, _ in _BUCKET_KEYWORDS}
    sums[TOTAL_ONLY] = Decimal("0")
    lines = normalize_invoice_amounts(amounts) or []
    subtotal = sum((Decimal(str(line["amount"])) for line in lines), Decimal("0"))
    if subtotal <= 0:
        sums[TOTAL_ONLY] += invoice_total
        return sums
    for line in lines:
        sums[declaration_bucket(line["concept"])] += invoice_total * Decimal(str(line["amount"])) / subtotal
    return sums


def declaration_period(year: int, quarter: Quarter | None) -> tuple[date, date]:
    """Inclusive emission date range of a year or one of its quarters."""
    first_month, last_month = QUARTER_MONTHS[quarter] if quarter else (1, 12)
    return month_bounds(year, first_month)[0], month_bounds(year, last_month)[1]


def _amounts(sums: dict[str, Decimal]) -> Modelo233Amounts:
    return Modelo233Amounts(
        matricula=round_money(sums["matricula"]),
        comedor=round_money(sums["comedor"]),
        subsidized=round_money(sums["subsidized"]),
        total=round_money(sum(sums.values(), Decimal("0"))),
    )


def _keeps(row: Modelo233Row, concept: Modelo233Concept) -> bool:
    if concept == Modelo233Concept.MATRICULA:
        return row.amounts.matricula > 0
    if concept == Modelo233Concept.COMEDOR:
        return row.amounts.comedor > 0
    return True


def _tax_id(guardian: Any) -> str | None:
    if guardian is None:
        return None
    return guardian.nif or guardian.dni or None


@dataclass
class InvoiceHistory:
    """Invoices of one party or category plus the lines that describe them."""

    info_rows: list[list[str]]
    invoices: list[Invoice]
    file_name: str


class ReportsService:
    """Build fiscal declarations and invoice history exports."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def modelo_233_rows(
        self,
        year: int,
        quarter: Quarter | None = None,
        concept: Modelo233Concept = Modelo233Concept.ALL,
        student: str | None = None,
        include_months: bool = False,
    ) -> tuple[list[Modelo233Row], str, str | None]:
        """
        Every declaration row for the period: ``(rows, declarant NIF, center code)``.

        One row per enrollment. Only real (non simulated, non canceled)
        enrollment invoices emitted inside the period count. ``student`` is a
        student document id.
        """
        company = await require_declarant(self.db)
        declarant_nif = company.nif.strip()
        first, last = declaration_period(year, quarter)

        query = (
            select(Enrollment)
            .options(
                selectinload(Enrollment.student),
                selectinload(Enrollment.school_period).selectinload(SchoolPeriod.segments),
                selectinload(Enrollment.guardian_links).selectinload(EnrollmentGuardian.guardian),
            )
            .order_by(Enrollment.id)
        )
        if student:
            query = query.join(Student, Enrollment.student_id == Student.id).where(Student.document_id == student)
        enrollments = list((await self.db.execute(query)).scalars().all())

        invoices_by_enrollment: dict[int, list[Invoice]] = {}
        if enrollments:
            result = await self.db.execute(
                select(Invoice)
                .where(
                    Invoice.enrollment_id.in_([e.id for e in enrollments]),
                    Invoice.category == InvoiceCategory.ENROLLMENT.value,
                    Invoice.simulation.is_(False),
                    Invoice.status != InvoiceStatus.CANCELED.value,
                    Invoice.emission_date >= first,
                    Invoice.emission_date <= last,
                )
                .order_by(Invoice.emission_date, Invoice.id)
            )
            for invoice in result.scalars().all():
                invoices_by_enrollment.setdefault(invoice.enrollment_id, []).append(invoice)

        rows: list[Modelo233Row] = []
        for enrollment in enrollments:
            row = self._modelo_233_row(
                enrollment, invoices_by_enrollment.get(enrollment.id, []), declarant_nif, include_months
            )
            if _keeps(row, concept):
                rows.append(row)
        logger.info(
            "Modelo 233 %s%s (%s): %d of %d enrollments",
            year,
            f" {quarter.value}" if quarter else "",
            concept.value,
            len(rows),
            len(enrollments),
        )
        return rows, declarant_nif, company.code or company.nif

    @staticmethod
    def _modelo_233_row(
        enrollment: Enrollment,
        invoices: list[Invoice],
        declarant_nif: str,
        include_months: bool,
    ) -> Modelo233Row:
        sums: dict[str, Decimal] = {bucket: Decimal("0") for bucket, _ in _BUCKET_KEYWORDS}
        sums[TOTAL_ONLY] = Decimal("0")
        months: set[int] = set()
        for invoice in invoices:
            months.add(invoice.emission_date.month)
            for bucket, amount in split_invoice_total(invoice.total, invoice.amounts).items():
                sums[bucket] += amount

        student = enrollment.student
        guardians = order_guardians(enrollment.guardians)
        first_guardian = guardians[0] if guardians else None
        segments = enrollment.school_period.segments if enrollment.school_period else []
        return Modelo233Row(
            enrollment_id=enrollment.id,
            enrollment_document_id=enrollment.document_id,
            student_document_id=student.document_id if student else None,
            student_dni=student.dni if student else None,
            student_name=student.name if student else None,
            student_lastname=student.lastname if student else None,
            student_birthdate=student.birthdate if student else None,
            primary_nif=_tax_id(first_guardian),
            secondary_nif=_tax_id(guardians[1]) if len(guardians) > 1 else None,
            first_guardian_name=first_guardian.name if first_guardian else None,
            first_guardian_lastname=first_guardian.lastname if first_guardian else None,
            service_start=segments[0].start if segments else None,
            service_end=segments[0].end if segments else None,
            months=[MONTH_ABBREVIATIONS[m - 1] for m in sorted(months)] if include_months else None,
            amounts=_amounts(sums),
            declarant_nif=declarant_nif,
        )

    async def modelo_233(
        self,
        year: int,
        quarter: Quarter | None = None,
        concept: Modelo233Concept = Modelo233Concept.ALL,
        student: str | None = None,
        include_months: bool = False,
        page: int = 1,
        limit: int = 25,
    ) -> Modelo233Report:
        """Preview: totals over every matching row, ``page`` of them listed."""
        rows, declarant_nif, center_code = await self.modelo_233_rows(
            year, quarter=quarter, concept=concept, student=student, include_months=include_months
        )
        totals = Modelo233Amounts(
            matricula=sum((r.amounts.matricula for r in rows), ZERO),
            comedor=sum((r.amounts.comedor for r in rows), ZERO),
            subsidized=sum((r.amounts.subsidized for r in rows), ZERO),
            total=sum((r.amounts.total for r in rows), ZERO),
        )
        offset = (page - 1) * limit
        return Modelo233Report(
            year=year,
            quarter=quarter,
            concept=concept,
            center_code=center_code,
            declarant_nif=declarant_nif,
            totals=totals,
            rows=PaginatedResponse[Modelo233Row].create(
                items=rows[offset : offset + limit], total=len(rows), page=page, limit=limit
            ),
        )

    async def _history_invoices(
        self,
        category: InvoiceCategory,
        party: Any = None,
        start_date: date | None = None,
        end_date: date | None = None,
        status: str | None = None,
        invoice_type: str | None = None,
        registered_by: str | None = None,
        sort_by: str = "emission_date",
        sort_order: str = "desc",
    ) -> list[Invoice]:
        query = select(Invoice).where(Invoice.category == category.value, Invoice.simulation.is_(False))
        if party is not None:
            query = query.where(party)
        if start_date:
            query = query.where(Invoice.emission_date >= start_date)
        if end_date:
            query = query.where(Invoice.emission_date <= end_date)
        if status:
            query = query.where(Invoice.status == status)
        if invoice_type:
            query = query.where(Invoice.invoice_type == invoice_type)
        if registered_by:
            query = query.where(Invoice.registered_by == registered_by)
        column = HISTORY_SORT_FIELDS.get(sort_by, Invoice.emission_date)
        ordering = column.asc() if sort_order == "asc" else column.desc()
        result = await self.db.execute(query.order_by(ordering, Invoice.id).limit(HISTORY_LIMIT))
        return list(result.scalars().all())

    async def enrollment_history(
        self,
        document_id: str,
        start_date: date | None = None,
        end_date: date | None = None,
        status: str | None = None,
    ) -> InvoiceHistory:
        """
        Invoices of one enrollment, matched by relation or by the snapshot
        document id so deleted enrollments can still be exported.
        """
        result = await self.db.execute(
            select(Enrollment)
            .where(Enrollment.document_id == document_id)
            .options(
                selectinload(Enrollment.student),
                selectinload(Enrollment.classroom),
                selectinload(Enrollment.school_period),
                selectinload(Enrollment.guardian_links).selectinload(EnrollmentGuardian.guardian),
            )
        )
        enrollment = result.scalar_one_or_none()
        party = Invoice.enrollment_document_id == document_id
        if enrollment is not None:
            party = or_(Invoice.enrollment_id == enrollment.id, party)
        invoices = await self._history_invoices(
            InvoiceCategory.ENROLLMENT, party, start_date=start_date, end_date=end_date, status=status
        )
        if enrollment is None and not invoices:
            raise NotFoundError("Enrollment", document_id)

        snapshot = (invoices[0].party_snapshot or {}) if invoices else {}
        if enrollment is not None:
            student = _as_dict(enrollment.student)
            classroom = _as_dict(enrollment.classroom)
            period = _as_dict(enrollment.school_period)
            guardians = [_as_dict(g) for g in order_guardians(enrollment.guardians)]
        else:
            student = snapshot.get("student") or {}
            classroom = snapshot.get("classroom") or {}
            period = snapshot.get("school_period") or {}
            guardians = [snapshot["guardian"]] if snapshot.get("guardian") else []

        info: list[list[str]] = [
            [f"Matrícula ID: {document_id}"],
            [f"Estudiante: {_full_name(student) or 'N/A'}"],
            [f"DNI Alumno: {student.get('dni') or 'N/A'}"],
            [f"Aula: {classroom.get('name') or 'N/A'}"],
            ["Padres/Tutores:"],
        ]
        for guardian in guardians:
            kind = GUARDIAN_TYPE_LABELS.get(guardian.get("guardian_type") or "", "N/A")
            address = ", ".join(p for p in (guardian.get("address"), guardian.get("city"), guardian.get("postcode")) if p)
            info.extend(
                [
                    [f"- {_full_name(guardian) or 'N/A'} ({kind})"],
                    [f"  DNI: {guardian.get('dni') or 'N/A'} | NIF: {guardian.get('nif') or 'N/A'}"],
                    [f"  Teléfono: {guardian.get('phone') or 'N/A'} | Email: {guardian.get('email') or 'N/A'}"],
                    [f"  Dirección: {address or 'N/A'}"],
                ]
            )
        info.append([f"Periodo escolar: {period.get('title') or 'N/A'}"])
        return InvoiceHistory(
            info_rows=info,
            invoices=invoices,
            file_name=f"historial_matriculas_{document_id}_{date.today().isoformat()}.xlsx",
        )

    async def employee_history(
        self,
        document_id: str,
        start_date: date | None = None,
        end_date: date | None = None,
        status: str | None = None,
    ) -> InvoiceHistory:
        """Payroll invoices of one employee (live or deleted)."""
        result = await self.db.execute(select(Employee).where(Employee.document_id == document_id))
        employee = result.scalar_one_or_none()
        party = Invoice.employee_document_id == document_id
        if employee is not None:
            party = or_(Invoice.employee_id == employee.id, party)
        invoices = await self._history_invoices(
            InvoiceCategory.EMPLOYEE, party, start_date=start_date, end_date=end_date, status=status
        )
        if employee is None and not invoices:
            raise NotFoundError("Employee", document_id)

        if employee is not None:
            person = _as_dict(employee)
        else:
            person = (invoices[0].party_snapshot or {}).get("employee") or {}
        name = _full_name(person)
        info = [
            [f"Empleado: {name or 'N/A'}"],
            [f"DNI: {person.get('dni') or 'N/A'}", f"NIF: {person.get('nif') or 'N/A'}"],
            [f"BIC: {person.get('bic') or 'N/A'}", f"SWIFT: {person.get('swift') or 'N/A'}"],
            ["Categoría: Nómina empleado"],
        ]
        stem = "_".join((name or document_id).split())
        return InvoiceHistory(
            info_rows=info,
            invoices=invoices,
            file_name=f"historial_facturas_{stem}_{date.today().isoformat()}.xlsx",
        )

    async def category_history(
        self,
        category: InvoiceCategory,
        start_date: date | None = None,
        end_date: date | None = None,
        status: str | None = None,
        invoice_type: str | None = None,
        registered_by: str | None = None,
        sort_by: str = "emission_date",
        sort_order: str = "desc",
    ) -> InvoiceHistory:
        """Every ``general`` or ``service`` invoice matching the filters."""
        title = "Facturas de Servicios" if category == InvoiceCategory.SERVICE else "Facturas Generales"
        invoices = await self._history_invoices(
            category,
            start_date=start_date,
            end_date=end_date,
            status=status,
            invoice_type=invoice_type,
            registered_by=registered_by,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return InvoiceHistory(
            info_rows=[[title]],
            invoices=invoices,
            file_name=f"{'_'.join(title.lower().split())}_{date.today().isoformat()}.xlsx",
        )


def _as_dict(row: Any) -> dict[str, Any]:
    """Column values of an ORM row, so live records and snapshots read the same way."""
    if row is None:
        return {}
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


def _full_name(person: dict[str, Any]) -> str:
    return " ".join(p for p in (person.get("name"), person.get("lastname")) if p)

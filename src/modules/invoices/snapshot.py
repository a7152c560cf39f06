"""
Party snapshot: the denormalized copy of who an invoice is about, frozen at creation.

Historical invoices must keep showing the student, guardian, employee and
company data as they were when the invoice was issued, even if those records
are edited or deleted later. The snapshot is written once; nothing in the
normal lifecycle regenerates it.
"""

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.company.models import Company
from src.modules.employees.models import Employee
from src.modules.enrollments.guardians import primary_guardian
from src.modules.enrollments.models import Enrollment, EnrollmentGuardian, Guardian, SchoolPeriod
from src.modules.invoices.amounts import normalize_invoice_amounts
from src.modules.invoices.models import SNAPSHOT_VERSION, Invoice, InvoiceCategory
from src.shared.utils.money import to_decimal
from src.shared.utils.relations import parse_relation, resolve_relation_id

logger = logging.getLogger(__name__)


def _money(value: Any) -> float:
    parsed = to_decimal(value)
    return float(parsed) if parsed is not None else 0.0


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


def _student_data(student) -> dict[str, Any] | None:
    if student is None:
        return None
    return {
        "document_id": student.document_id,
        "name": student.name,
        "lastname": student.lastname,
        "dni": student.dni,
    }


def _guardian_data(guardian: Guardian | None) -> dict[str, Any] | None:
    if guardian is None:
        return None
    return {
        "document_id": guardian.document_id,
        "name": guardian.name,
        "lastname": guardian.lastname,
        "dni": guardian.dni,
        "nif": guardian.nif,
        "guardian_type": guardian.guardian_type,
        "phone": guardian.phone,
        "email": guardian.email,
        "address": guardian.address,
        "postcode": guardian.postcode,
        "city": guardian.city,
        "iban": guardian.iban,
        "bic": guardian.bic,
        "mandate_id": guardian.mandate_id,
    }


def _employee_data(employee: Employee | None) -> dict[str, Any] | None:
    if employee is None:
        return None
    return {
        "document_id": employee.document_id,
        "name": employee.name,
        "lastname": employee.lastname,
        "dni": employee.dni,
        "nif": employee.nif,
        "role": employee.role,
        "profession": employee.profession,
        "phone": employee.phone,
        "email": employee.email,
        "address": employee.address,
        "postcode": employee.postcode,
        "city": employee.city,
        "iban": employee.iban,
        "bic": employee.bic,
        "swift": employee.swift,
    }


def _school_period_data(period: SchoolPeriod | None) -> dict[str, Any] | None:
    if period is None:
        return None
    starts = [s.start for s in period.segments if s.start is not None]
    ends = [s.end for s in period.segments if s.end is not None]
    return {
        "document_id": period.document_id,
        "title": period.title,
        "start": _iso(min(starts)) if starts else None,
        "end": _iso(max(ends)) if ends else None,
    }


def _company_data(company: Company | None) -> dict[str, Any] | None:
    if company is None:
        return None
    return {
        "name": company.name,
        "code": company.code,
        "nif": company.nif,
        "iban": company.iban,
        "bic": company.bic,
        "address": company.address,
    }


async def _load_company(db: AsyncSession) -> Company | None:
    result = await db.execute(select(Company).order_by(Company.id).limit(1))
    return result.scalar_one_or_none()


async def _load_enrollment(db: AsyncSession, enrollment_id: int) -> Enrollment | None:
    result = await db.execute(
        select(Enrollment)
        .where(Enrollment.id == enrollment_id)
        .options(
            selectinload(Enrollment.student),
            selectinload(Enrollment.classroom),
            selectinload(Enrollment.school_period).selectinload(SchoolPeriod.segments),
            selectinload(Enrollment.guardian_links).selectinload(EnrollmentGuardian.guardian),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _resolve(db: AsyncSession, model: Any, value: Any) -> int | None:
    try:
        return await resolve_relation_id(db, model, parse_relation(value))
    except SQLAlchemyError:
        logger.warning("Snapshot: could not resolve %s reference %r", model.__name__, value, exc_info=True)
        return None


async def build_party_snapshot(db: AsyncSession, payload: Mapping[str, Any]) -> dict[str, Any]:
    """
    Build the snapshot for an invoice about to be created from ``payload``
    (``category``, relation inputs ``enrollment``/``employee``/``guardian`` in
    any accepted shape, ``amounts``, ``iva``, ``total``).

    Missing relations leave their sub-objects as None; lookup failures are
    logged. Never raises.
    """
    category = str(payload.get("category") or InvoiceCategory.GENERAL.value)
    amounts = normalize_invoice_amounts(payload.get("amounts")) or []
    snapshot: dict[str, Any] = {
        "party_type": category,
        "party_document_id": None,
        "enrollment_document_id": None,
        "employee_document_id": None,
        "guardian_document_id": None,
        "student": None,
        "guardian": None,
        "employee": None,
        "classroom": None,
        "school_period": None,
        "company": None,
        "billing": {
            "amounts": amounts,
            "iva": _money(payload.get("iva")),
            "total": _money(payload.get("total")),
        },
        "snapshot_version": SNAPSHOT_VERSION,
    }

    try:
        snapshot["company"] = _company_data(await _load_company(db))
    except SQLAlchemyError:
        logger.warning("Snapshot: company lookup failed", exc_info=True)

    if category == InvoiceCategory.ENROLLMENT:
        await _fill_enrollment(db, payload, snapshot)
    elif category == InvoiceCategory.EMPLOYEE:
        await _fill_employee(db, payload, snapshot)
    return snapshot


async def _fill_enrollment(db: AsyncSession, payload: Mapping[str, Any], snapshot: dict[str, Any]) -> None:
    enrollment = None
    enrollment_id = await _resolve(db, Enrollment, payload.get("enrollment"))
    if enrollment_id is not None:
        try:
            enrollment = await _load_enrollment(db, enrollment_id)
        except SQLAlchemyError:
            logger.warning("Snapshot: enrollment %s lookup failed", enrollment_id, exc_info=True)

    guardian = None
    guardian_id = await _resolve(db, Guardian, payload.get("guardian"))
    if guardian_id is not None:
        try:
            guardian = await db.get(Guardian, guardian_id)
        except SQLAlchemyError:
            logger.warning("Snapshot: guardian %s lookup failed", guardian_id, exc_info=True)
    if guardian is None and enrollment is not None:
        guardian = primary_guardian(enrollment.guardians)

    if enrollment is not None:
        snapshot["enrollment_document_id"] = enrollment.document_id
        snapshot["party_document_id"] = enrollment.document_id
        snapshot["student"] = _student_data(enrollment.student)
        if enrollment.classroom is not None:
            snapshot["classroom"] = {
                "document_id": enrollment.classroom.document_id,
                "name": enrollment.classroom.name,
            }
        snapshot["school_period"] = _school_period_data(enrollment.school_period)
        snapshot["billing"]["additional_amount"] = normalize_invoice_amounts(enrollment.additional_amount)
    if guardian is not None:
        snapshot["guardian"] = _guardian_data(guardian)
        snapshot["guardian_document_id"] = guardian.document_id


async def _fill_employee(db: AsyncSession, payload: Mapping[str, Any], snapshot: dict[str, Any]) -> None:
    employee_id = await _resolve(db, Employee, payload.get("employee"))
    if employee_id is None:
        return
    try:
        employee = await db.get(Employee, employee_id)
    except SQLAlchemyError:
        logger.warning("Snapshot: employee %s lookup failed", employee_id, exc_info=True)
        return
    if employee is None:
        return
    snapshot["employee"] = _employee_data(employee)
    snapshot["employee_document_id"] = employee.document_id
    snapshot["party_document_id"] = employee.document_id


def apply_snapshot(invoice: Invoice, snapshot: dict[str, Any]) -> None:
    """Write the snapshot and its lookup columns onto an invoice."""
    invoice.party_snapshot = snapshot
    invoice.party_type = snapshot.get("party_type")
    invoice.party_document_id = snapshot.get("party_document_id")
    invoice.enrollment_document_id = snapshot.get("enrollment_document_id")
    invoice.employee_document_id = snapshot.get("employee_document_id")
    invoice.guardian_document_id = snapshot.get("guardian_document_id")
    invoice.snapshot_version = snapshot.get("snapshot_version")

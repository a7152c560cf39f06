"""Monthly SEPA batch export: one record per invoice, packaged in a zip."""

import logging
import zipfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from io import BytesIO
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.audit.service import ExecutionEvent, ExecutionLevel, log_execution, new_trace_id
from src.core.company.models import Company
from src.core.company.service import require_declarant
from src.modules.billing.eligibility import month_bounds
from src.modules.enrollments.guardians import primary_guardian
from src.modules.enrollments.models import Enrollment, EnrollmentGuardian
from src.modules.invoices.models import Invoice, InvoiceCategory
from src.modules.sepa.formats import (
    CREDIT_TRANSFER_34_14,
    DIRECT_DEBIT_19_14,
    ascii_text,
    render_cuaderno,
    yyyymmdd,
)
from src.modules.sepa.renderers import (
    CREDIT_TRANSFER_TEMPLATE,
    DIRECT_DEBIT_TEMPLATE,
    EMPLOYEE_HEADERS,
    ENROLLMENT_HEADERS,
    build_xlsx,
    render_payment_xml,
)
from src.modules.sepa.schemas import SepaBatchRequest, SepaBatchType, SepaFormat
from src.shared.utils.money import format_amount, to_cents

logger = logging.getLogger(__name__)

MANDATE_ID_LENGTH = 35


@dataclass(frozen=True)
class Counterpart:
    """Who pays (guardian) or gets paid (employee), from a live record or the invoice snapshot."""

    name: str = ""
    lastname: str = ""
    dni: str | None = None
    nif: str | None = None
    address: str | None = None
    postcode: str | None = None
    city: str | None = None
    iban: str | None = None
    bic: str | None = None
    swift: str | None = None
    mandate_id: str | None = None
    mandate_signed_on: date | None = None
    document_id: str | None = None
    source: str = "record"

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.lastname}".strip()

    @property
    def compact_iban(self) -> str | None:
        compact = (self.iban or "").replace(" ", "").upper()
        return compact or None


def _counterpart(party: Any, source: str = "record") -> Counterpart | None:
    """Build from an ORM row or a snapshot dict."""
    if party is None:
        return None

    def get(name: str) -> Any:
        if isinstance(party, Mapping):
            return party.get(name)
        return getattr(party, name, None)

    signed_on = get("mandate_signed_on")
    if isinstance(signed_on, str):
        try:
            signed_on = date.fromisoformat(signed_on)
        except ValueError:
            signed_on = None
    return Counterpart(
        name=get("name") or "",
        lastname=get("lastname") or "",
        dni=get("dni"),
        nif=get("nif"),
        address=get("address"),
        postcode=get("postcode"),
        city=get("city"),
        iban=get("iban"),
        bic=get("bic"),
        swift=get("swift"),
        mandate_id=get("mandate_id"),
        mandate_signed_on=signed_on,
        document_id=get("document_id"),
        source=source,
    )


def resolve_counterpart(invoice: Invoice, batch_type: SepaBatchType) -> Counterpart | None:
    """
    Enrollments: invoice guardian, then the enrollment's primary guardian,
    then the snapshot guardian. Employees: invoice employee, then snapshot.
    """
    snapshot = invoice.party_snapshot or {}
    if batch_type == SepaBatchType.EMPLOYEE:
        return _counterpart(invoice.employee) or _counterpart(snapshot.get("employee"), source="snapshot")
    if invoice.guardian is not None:
        return _counterpart(invoice.guardian)
    if invoice.enrollment is not None:
        guardian = primary_guardian(invoice.enrollment.guardians)
        if guardian is not None:
            return _counterpart(guardian)
    return _counterpart(snapshot.get("guardian"), source="snapshot")


def fallback_mandate_id(prefix: str, document_id: str) -> str:
    """Mandate id for parties without one on file, cut to the 35-character field."""
    return f"{prefix}-{document_id[: MANDATE_ID_LENGTH - len(prefix) - 1]}"


def _student_name(invoice: Invoice) -> str:
    enrollment = invoice.enrollment
    if enrollment is not None and enrollment.student is not None:
        return enrollment.student.full_name
    student = (invoice.party_snapshot or {}).get("student") or {}
    return f"{student.get('name') or ''} {student.get('lastname') or ''}".strip()


@dataclass
class SepaBatchResult:
    content: bytes
    file_name: str
    count: int
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class SepaBatchService:
    """Builds the monthly SEPA archive for enrollment charges or payroll."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load_invoices(self, batch_type: SepaBatchType, request: SepaBatchRequest) -> list[Invoice]:
        first, last = month_bounds(request.year, request.month)
        category = InvoiceCategory.ENROLLMENT if batch_type == SepaBatchType.ENROLLMENT else InvoiceCategory.EMPLOYEE
        result = await self.db.execute(
            select(Invoice)
            .where(
                Invoice.category == category.value,
                Invoice.simulation.is_(False),
                Invoice.status.in_(request.effective_statuses),
                Invoice.expiration_date >= first,
                Invoice.expiration_date <= last,
            )
            .options(
                selectinload(Invoice.guardian),
                selectinload(Invoice.employee),
                selectinload(Invoice.enrollment).selectinload(Enrollment.student),
                selectinload(Invoice.enrollment)
                .selectinload(Enrollment.guardian_links)
                .selectinload(EnrollmentGuardian.guardian),
            )
            .order_by(Invoice.emission_date, Invoice.id)
        )
        return list(result.scalars().all())

    @staticmethod
    def _company_data(company: Company) -> dict[str, Any]:
        nif = (company.nif or "").strip()
        return {
            "id": nif,
            "name": company.name or "",
            "nif": nif,
            "iban": (company.iban or "").replace(" ", "").upper(),
            "bic": company.bic or "",
            "address": company.address or "",
            "creditor_id": company.creditor_id or nif,
        }

    def _transaction(
        self,
        invoice: Invoice,
        batch_type: SepaBatchType,
        counterpart: Counterpart,
        warnings: list[str],
    ) -> dict[str, Any]:
        """Field values shared by the txt 03 record, the XML transaction and the xlsx row."""
        reference = invoice.document_id
        iban = counterpart.compact_iban
        if iban is None:
            warnings.append(f"{reference}: {counterpart.full_name or 'counterpart'} has no IBAN; account left blank")
        on = invoice.expiration_date or invoice.emission_date
        town = " ".join(p for p in (counterpart.postcode, counterpart.city) if p)
        if batch_type == SepaBatchType.ENROLLMENT:
            mandate_id = counterpart.mandate_id
            if not mandate_id:
                mandate_id = fallback_mandate_id("MANDATO", counterpart.document_id or reference)
                warnings.append(f"{reference}: no mandate on file; using {mandate_id}")
            bic = counterpart.bic
            party_id = counterpart.dni or counterpart.nif
            emission = yyyymmdd(invoice.emission_date)
            remittance = f"Recibo: {invoice.title or reference} - {emission}"
        else:
            mandate_id = fallback_mandate_id("EMP", counterpart.document_id or reference)
            bic = counterpart.bic or counterpart.swift
            party_id = counterpart.nif or counterpart.dni
            remittance = f"Nomina {counterpart.full_name} - {on.isoformat() if on else ''}"
        return {
            "reference": reference,
            "mandate_id": mandate_id,
            "mandate_signed_on": (counterpart.mandate_signed_on or invoice.emission_date or on).isoformat(),
            "amount_cents": to_cents(invoice.total),
            "amount": format_amount(invoice.total),
            "date": yyyymmdd(on),
            "bic": bic or "",
            "name": counterpart.full_name,
            "address": counterpart.address or "",
            "postcode": counterpart.postcode or "",
            "city": counterpart.city or "",
            "town": town,
            "country": iban[:2] if iban else "",
            "party_id": party_id or "",
            "iban": iban,
            "remittance": ascii_text(remittance)[:140],
        }

    def _render_file(
        self,
        batch_type: SepaBatchType,
        fmt: SepaFormat,
        company: dict[str, Any],
        tx: dict[str, Any],
        on: date,
        now: datetime,
    ) -> tuple[str, str]:
        """One invoice's file: ``(file name, content)``. ``on`` is the charge date."""
        debit = batch_type == SepaBatchType.ENROLLMENT
        stem = f"adeudo-1914-{tx['reference']}" if debit else f"transferencia-3414-{tx['reference']}"
        if fmt == SepaFormat.XML:
            content = render_payment_xml(
                DIRECT_DEBIT_TEMPLATE if debit else CREDIT_TRANSFER_TEMPLATE,
                msg_id=f"MSG-{tx['reference']}",
                company=company,
                transactions=[tx],
                execution_date=on.isoformat(),
                created_at=now,
            )
            return f"{stem}.xml", content
        layout = DIRECT_DEBIT_19_14 if debit else CREDIT_TRANSFER_34_14
        return f"{stem}.txt", render_cuaderno(layout, company, [tx], now.date())

    @staticmethod
    def _xlsx_row(batch_type: SepaBatchType, invoice: Invoice, counterpart: Counterpart, tx: dict) -> list[Any]:
        if batch_type == SepaBatchType.ENROLLMENT:
            return [
                tx["name"], tx["iban"] or "", tx["bic"], tx["mandate_id"], invoice.total,
                invoice.expiration_date, invoice.document_id, _student_name(invoice), invoice.notes or "",
            ]
        return [
            tx["name"], tx["iban"] or "", counterpart.bic or "", counterpart.swift or "", counterpart.nif or "",
            invoice.total, invoice.expiration_date, invoice.document_id, invoice.notes or "",
        ]

    async def generate(self, batch_type: SepaBatchType, request: SepaBatchRequest) -> SepaBatchResult:
        """
        Build the archive for ``batch_type`` invoices expiring in the month.

        A missing company NIF or a failing invoice query aborts; anything that
        goes wrong with a single invoice is written to ``notes.txt`` instead.
        """
        company_row = await require_declarant(self.db)
        company = self._company_data(company_row)
        invoices = await self._load_invoices(batch_type, request)
        now = datetime.now(timezone.utc)
        period = f"{request.year}_{request.month:02d}"
        file_name = f"sepa_batch_{batch_type.value}_{period}.zip"

        warnings: list[str] = []
        errors: list[str] = []
        files: list[tuple[str, str | bytes]] = []
        rows: list[list[Any]] = []
        for invoice in invoices:
            try:
                counterpart = resolve_counterpart(invoice, batch_type)
                if counterpart is None:
                    raise ValueError("no counterpart (guardian/employee) found")
                if counterpart.source == "snapshot":
                    warnings.append(f"{invoice.document_id}: counterpart taken from the invoice snapshot")
                tx = self._transaction(invoice, batch_type, counterpart, warnings)
                if request.format == SepaFormat.XLSX:
                    rows.append(self._xlsx_row(batch_type, invoice, counterpart, tx))
                else:
                    on = invoice.expiration_date or invoice.emission_date or now.date()
                    files.append(self._render_file(batch_type, request.format, company, tx, on, now))
            except Exception as e:
                logger.exception("SEPA export skipped invoice %s", invoice.document_id)
                errors.append(f"{invoice.document_id}: {e}")

        count = len(rows) if request.format == SepaFormat.XLSX else len(files)
        if request.format == SepaFormat.XLSX:
            headers = ENROLLMENT_HEADERS if batch_type == SepaBatchType.ENROLLMENT else EMPLOYEE_HEADERS
            files.append((f"sepa_batch_{batch_type.value}_{period}.xlsx", build_xlsx(f"SEPA {period}", headers, rows)))

        readme = "\n".join(
            [
                f"SEPA batch: {batch_type.value}",
                f"Period: {request.year}-{request.month:02d}",
                f"Format: {request.format.value}",
                f"Statuses: {', '.join(request.effective_statuses)}",
                f"Company: {company['name']} ({company['nif']})",
                f"Invoices exported: {count} of {len(invoices)}",
                f"Generated at: {now.isoformat()}",
                "",
            ]
        )
        notes = "\n".join(["Warnings:", *(warnings or ["none"]), "", "Errors:", *(errors or ["none"]), ""])

        buf = BytesIO()
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for name, content in files:
                archive.writestr(name, content)
            archive.writestr("README.txt", readme)
            archive.writestr("notes.txt", notes)

        await log_execution(
            self.db,
            title=f"SEPA batch {batch_type.value} {request.year}-{request.month:02d}",
            message=f"{count} invoices exported, {len(warnings)} warnings, {len(errors)} errors",
            event_type=ExecutionEvent.SEPA_BATCH,
            level=ExecutionLevel.WARN if errors else ExecutionLevel.INFO,
            module="sepa",
            trace_id=new_trace_id("sepa"),
            payload={"file_name": file_name, "format": request.format.value, "count": count, "errors": errors},
        )
        return SepaBatchResult(content=buf.getvalue(), file_name=file_name, count=count, warnings=warnings, errors=errors)

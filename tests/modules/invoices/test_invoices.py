from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.company.models import Company
from src.core.exceptions import NotFoundError, ValidationError
from src.modules.employees.models import Employee
from src.modules.enrollments.models import (
    Classroom,
    Enrollment,
    EnrollmentGuardian,
    Guardian,
    GuardianType,
    SchoolPeriod,
    SchoolPeriodSegment,
    Student,
)
from src.modules.invoices.models import Invoice, InvoiceCategory, InvoiceStatus
from src.modules.invoices.schemas import InvoiceCreate, InvoiceFilters, InvoiceUpdate
from src.modules.invoices.service import InvoiceService


async def _setup_enrollment(db_session: AsyncSession) -> dict:
    """Company, student, two guardians and an enrollment in a classroom."""
    company = Company(name="Colegio Sol", nif="B12345678", iban="ES9121000418450200051332")
    student = Student(name="Lucía", lastname="García")
    classroom = Classroom(name="3º A")
    period = SchoolPeriod(
        title="Curso 2023/24",
        segments=[SchoolPeriodSegment(position=0, start=date(2024, 1, 15), end=date(2024, 6, 30))],
    )
    other = Guardian(name="Pedro", lastname="García", guardian_type=GuardianType.OTHER.value)
    mother = Guardian(
        name="Ana",
        lastname="López",
        guardian_type=GuardianType.BIOLOGICAL_PARENT.value,
        iban="ES7620770024003102575766",
        mandate_id="MANDATO-ANA",
    )
    db_session.add_all([company, student, classroom, period, other, mother])
    await db_session.flush()

    enrollment = Enrollment(
        student_id=student.id,
        classroom_id=classroom.id,
        school_period_id=period.id,
        additional_amount={"Material extra": 15},
        guardian_links=[
            EnrollmentGuardian(guardian_id=other.id, position=0),
            EnrollmentGuardian(guardian_id=mother.id, position=1),
        ],
    )
    db_session.add(enrollment)
    await db_session.flush()
    return {"company": company, "student": student, "mother": mother, "other": other, "enrollment": enrollment}


class TestInvoiceService:
    """Tests for InvoiceService."""

    async def test_create_invoice_computes_totals(self, db_session: AsyncSession):
        data = await _setup_enrollment(db_session)
        service = InvoiceService(db_session)

        invoice = await service.create_invoice(
            {
                "category": "enrollment",
                "enrollment": data["enrollment"].id,
                "amounts": [
                    {"concept": "comedor", "amount": 120},
                    {"concept": "Comedor", "amount": "3.456"},
                ],
                "emission_date": date(2024, 3, 25),
                "expiration_date": date(2024, 3, 31),
            }
        )
        await db_session.commit()

        assert invoice.amounts == [{"concept": "comedor", "amount": 123.456}]
        assert invoice.iva == Decimal("0.00")
        assert invoice.total == Decimal("123.46")
        assert invoice.status == InvoiceStatus.UNPAID
        assert invoice.simulation is False

    async def test_snapshot_uses_primary_guardian(self, db_session: AsyncSession):
        data = await _setup_enrollment(db_session)
        invoice = await InvoiceService(db_session).create_invoice(
            {
                "category": "enrollment",
                "enrollment": {"documentId": data["enrollment"].document_id},
                "amounts": {"comedor": 120},
            }
        )

        snapshot = invoice.party_snapshot
        assert snapshot["party_type"] == "enrollment"
        assert snapshot["party_document_id"] == data["enrollment"].document_id
        assert snapshot["student"]["name"] == "Lucía"
        # Biological parent wins over the first-listed "other" guardian
        assert snapshot["guardian"]["name"] == "Ana"
        assert snapshot["guardian"]["iban"] == "ES7620770024003102575766"
        assert snapshot["classroom"]["name"] == "3º A"
        assert snapshot["school_period"] == {
            "document_id": snapshot["school_period"]["document_id"],
            "title": "Curso 2023/24",
            "start": "2024-01-15",
            "end": "2024-06-30",
        }
        assert snapshot["company"]["nif"] == "B12345678"
        assert snapshot["billing"]["total"] == 120.0
        assert snapshot["billing"]["additional_amount"] == [{"concept": "Material extra", "amount": 15.0}]
        assert snapshot["snapshot_version"] == "v1"
        assert invoice.guardian_document_id == data["mother"].document_id

    async def test_snapshot_is_frozen(self, db_session: AsyncSession):
        data = await _setup_enrollment(db_session)
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(
            {"category": "enrollment", "enrollment": data["enrollment"].id, "amounts": {"comedor": 120}}
        )
        await db_session.commit()

        data["student"].name = "Lucia Renamed"
        data["mother"].iban = "ES0000000000000000000000"
        await db_session.commit()
        await service.update_invoice(invoice.document_id, InvoiceUpdate(status=InvoiceStatus.PAID, notes="cobrado"))
        await db_session.commit()

        reloaded = await service.get_invoice(invoice.document_id)
        assert reloaded.status == "paid"
        assert reloaded.notes == "cobrado"
        assert reloaded.party_snapshot["student"]["name"] == "Lucía"
        assert reloaded.party_snapshot["guardian"]["iban"] == "ES7620770024003102575766"

    async def test_employee_invoice(self, db_session: AsyncSession):
        employee = Employee(name="Marta", lastname="Ruiz", nif="12345678Z", iban="ES7921000813610123456789")
        db_session.add(employee)
        await db_session.flush()

        invoice = await InvoiceService(db_session).create_invoice(
            InvoiceCreate(
                category=InvoiceCategory.EMPLOYEE,
                employee=employee.document_id,
                amounts=[{"concept": "Salario base", "amount": 1600}, {"concept": "Bonus", "amount": 50}],
            )
        )
        assert invoice.total == Decimal("1650.00")
        assert invoice.employee_id == employee.id
        assert invoice.party_snapshot["employee"]["nif"] == "12345678Z"
        assert invoice.employee_document_id == employee.document_id

    async def test_validation_errors(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        with pytest.raises(ValidationError):
            await service.create_invoice({"category": "unknown", "amounts": {"x": 1}})
        with pytest.raises(ValidationError):
            await service.create_invoice({"category": "general", "amounts": [{"concept": "", "amount": 1}]})
        with pytest.raises(ValidationError):
            await service.create_invoice({"category": "enrollment", "amounts": {"x": 1}})
        with pytest.raises(ValidationError):
            await service.create_invoice({"category": "employee", "employee": 999, "amounts": {"x": 1}})
        with pytest.raises(ValidationError):
            await service.create_invoice(
                {
                    "category": "general",
                    "amounts": {"x": 1},
                    "emission_date": date(2024, 3, 10),
                    "expiration_date": date(2024, 3, 1),
                }
            )

    async def test_get_missing_invoice(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await InvoiceService(db_session).get_invoice("doesnotexist")

    async def test_list_filters(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        await service.create_invoice({"category": "general", "title": "Luz marzo", "amounts": {"luz": 80}})
        await service.create_invoice(
            {"category": "general", "title": "Simulada", "amounts": {"x": 1}, "simulation": True, "simulation_tag": "a"}
        )
        await db_session.commit()

        items, total = await service.list_invoices(InvoiceFilters(simulation=False))
        assert total == 1
        assert items[0].title == "Luz marzo"

        items, total = await service.list_invoices(InvoiceFilters(simulation_tag="a"))
        assert total == 1

        items, total = await service.list_invoices(InvoiceFilters(search="luz"))
        assert total == 1

    async def test_backfill_snapshots(self, db_session: AsyncSession):
        data = await _setup_enrollment(db_session)
        db_session.add(
            Invoice(
                category="enrollment",
                enrollment_id=data["enrollment"].id,
                amounts=[{"concept": "comedor", "amount": 120.0}],
                total=Decimal("120.00"),
                emission_date=date(2023, 11, 25),
            )
        )
        await db_session.commit()
        service = InvoiceService(db_session)

        dry = await service.backfill_snapshots(dry_run=True)
        assert dry.scanned == 1
        assert dry.updated == 0

        result = await service.backfill_snapshots(batch_size=10)
        assert result.updated == 1
        assert result.failed == 0

        invoice = (await db_session.execute(select(Invoice))).scalar_one()
        assert invoice.party_snapshot["student"]["name"] == "Lucía"
        assert invoice.enrollment_document_id == data["enrollment"].document_id

        again = await service.backfill_snapshots()
        assert again.scanned == 0


class TestInvoicesApi:
    """Invoice endpoints."""

    async def test_create_get_patch_delete(self, client: AsyncClient):
        res = await client.post(
            "/api/v1/invoices",
            json={
                "category": "general",
                "invoice_type": "expense",
                "title": "Luz marzo",
                "amounts": {"luz": 80.555},
                "emission_date": "2024-03-05",
            },
        )
        assert res.status_code == 201, res.text
        created = res.json()["data"]
        assert created["total"] == 80.56
        assert created["amounts"] == [{"concept": "luz", "amount": 80.555, "description": None}]
        document_id = created["document_id"]

        res = await client.get(f"/api/v1/invoices/{document_id}")
        assert res.status_code == 200
        assert res.json()["data"]["title"] == "Luz marzo"

        res = await client.patch(f"/api/v1/invoices/{document_id}", json={"status": "paid"})
        assert res.status_code == 200
        assert res.json()["data"]["status"] == "paid"

        res = await client.patch(f"/api/v1/invoices/{document_id}", json={"total": 1})
        assert res.status_code == 422

        res = await client.get("/api/v1/invoices", params={"category": "general"})
        assert res.status_code == 200
        assert res.json()["data"]["total"] == 1

        res = await client.delete(f"/api/v1/invoices/{document_id}")
        assert res.status_code == 200
        res = await client.get(f"/api/v1/invoices/{document_id}")
        assert res.status_code == 404
        assert res.json()["success"] is False

    async def test_invalid_amounts_rejected(self, client: AsyncClient):
        res = await client.post("/api/v1/invoices", json={"category": "general", "amounts": {"x": -1}})
        assert res.status_code == 422
        assert res.json()["errors"][0]["field"] == "amounts"

import random
from datetime import date, datetime
from decimal import Decimal

from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.modules.billing.config import BillingConfig
from src.modules.billing.schemas import BillingMode, SimulationGenerateRequest, StatusDistribution
from src.modules.billing.service import BillingService
from src.modules.billing.simulation import SimulationService, pick_status
from src.modules.employees.models import ContractTerm, Employee
from src.modules.enrollments.models import Enrollment, SchoolPeriod, SchoolPeriodSegment, Service, Student
from src.modules.invoices.models import Invoice


async def _setup(db_session: AsyncSession) -> dict:
    """One enrollment (Jan 15 - Jun 30 2024) and one biweekly employee."""
    student = Student(name="Lucía")
    period = SchoolPeriod(
        title="Curso 2023/24",
        segments=[SchoolPeriodSegment(position=0, start=date(2024, 1, 15), end=date(2024, 6, 30))],
    )
    comedor = Service(title="Comedor", amount=Decimal("120.00"))
    db_session.add_all([student, period, comedor])
    await db_session.flush()
    enrollment = Enrollment(student_id=student.id, school_period_id=period.id, services=[comedor])
    employee = Employee(
        name="Marta",
        terms=[ContractTerm(start=date(2023, 9, 1), hourly_rate=Decimal("10"), payment_period="biweekly")],
    )
    db_session.add_all([enrollment, employee])
    await db_session.commit()
    return {"enrollment_id": enrollment.id, "employee_id": employee.id}


async def _simulations(db_session: AsyncSession) -> list[Invoice]:
    result = await db_session.execute(
        select(Invoice).where(Invoice.simulation.is_(True)).order_by(Invoice.emission_date, Invoice.id)
    )
    return list(result.scalars().all())


class TestPickStatus:
    """Weighted status draw."""

    def test_defaults_to_unpaid(self):
        rng = random.Random(1)
        assert pick_status(None, rng) == "unpaid"
        assert pick_status(StatusDistribution(), rng) == "unpaid"

    def test_single_weight(self):
        rng = random.Random(1)
        distribution = StatusDistribution(paid=1)
        assert {pick_status(distribution, rng) for _ in range(20)} == {"paid"}

    def test_mixed_weights_are_reproducible(self):
        distribution = StatusDistribution(paid=1, unpaid=1, canceled=1)
        first = [pick_status(distribution, random.Random(7)) for _ in range(5)]
        second = [pick_status(distribution, random.Random(7)) for _ in range(5)]
        assert first == second
        assert set(first) <= {"paid", "unpaid", "canceled"}


class TestSimulationService:
    """Simulation generation, status and cleanup."""

    async def test_generate_year(self, db_session: AsyncSession):
        ids = await _setup(db_session)
        service = SimulationService(db_session, rng=random.Random(3))

        result = await service.generate_year(
            SimulationGenerateRequest(year=2024, include_employees=True, tag="forecast")
        )

        # Enrollment: Feb-Jun (Jan 1 is before the window); employee: all 12 months
        assert result.total == 5 + 12
        assert [m.period for m in result.created][:2] == ["2024-01", "2024-02"]
        assert result.created[0].count == 1

        invoices = await _simulations(db_session)
        assert len(invoices) == 17
        assert all(i.simulation_tag == "forecast" for i in invoices)
        assert all(i.emission_date.day == 1 for i in invoices)
        assert all(i.issued_by == "Simulación" for i in invoices)
        enrollment_march = next(
            i for i in invoices if i.category == "enrollment" and i.emission_date == date(2024, 3, 1)
        )
        assert enrollment_march.title == "Recibo simulado - marzo de 2024 - Lucía"
        assert enrollment_march.expiration_date == date(2024, 3, 31)
        payroll_march = next(i for i in invoices if i.category == "employee" and i.emission_date == date(2024, 3, 1))
        assert payroll_march.title == "Nómina Quincenal 2024-03 - Marta"
        assert payroll_march.total == Decimal("800.00")

        enrollment = await db_session.get(Enrollment, ids["enrollment_id"], populate_existing=True)
        assert not enrollment.billing_control

    async def test_months_and_ledger_are_respected(self, db_session: AsyncSession):
        ids = await _setup(db_session)
        enrollment = await db_session.get(Enrollment, ids["enrollment_id"])
        enrollment.billing_control = {"2024-03": {"invoice_document_id": "real"}}
        await db_session.commit()

        result = await SimulationService(db_session).generate_year(
            SimulationGenerateRequest(year=2024, months=[3, 4, 7])
        )
        assert [(m.period, m.count) for m in result.created] == [("2024-03", 0), ("2024-04", 1), ("2024-07", 0)]

    async def test_simulations_do_not_affect_real_billing(self, db_session: AsyncSession):
        await _setup(db_session)
        await SimulationService(db_session).generate_year(SimulationGenerateRequest(year=2024, months=[3]))

        result = await BillingService(db_session, use_lock=False).run(
            now=datetime(2024, 3, 25, 5, 0), mode=BillingMode.ENROLLMENTS, config=BillingConfig(day=25)
        )
        assert result.enrollments.created == 1

    async def test_real_invoice_suppresses_simulation(self, db_session: AsyncSession):
        await _setup(db_session)
        await BillingService(db_session, use_lock=False).run(
            now=datetime(2024, 3, 25, 5, 0), mode=BillingMode.ENROLLMENTS, config=BillingConfig(day=25)
        )
        result = await SimulationService(db_session).generate_year(SimulationGenerateRequest(year=2024, months=[3]))
        assert result.total == 0

    async def test_delete_existing_replaces(self, db_session: AsyncSession):
        await _setup(db_session)
        service = SimulationService(db_session)
        request = SimulationGenerateRequest(year=2024, months=[3], tag="a")
        await service.generate_year(request)

        again = await service.generate_year(request.model_copy(update={"delete_existing": True}))
        assert again.created[0].deleted == 1
        assert again.created[0].count == 1
        assert (await service.status(year=2024, month=3, tag="a")).count == 1

    async def test_status_and_cleanup(self, db_session: AsyncSession):
        await _setup(db_session)
        service = SimulationService(db_session)
        await service.generate_year(SimulationGenerateRequest(year=2024, months=[2, 3], tag="a"))
        await service.generate_year(SimulationGenerateRequest(year=2024, months=[4], tag="b"))

        assert (await service.status(year=2024)).count == 3
        assert (await service.status(year=2024, month=3)).count == 1
        assert (await service.status(tag="b")).exists
        assert not (await service.status(year=2023)).exists

        cleaned = await service.cleanup(year=2024, tag="a")
        assert cleaned.deleted == 2
        assert (await service.status()).count == 1

    async def test_early_year_is_noop(self, db_session: AsyncSession):
        await _setup(db_session)
        request = SimulationGenerateRequest.model_construct(
            year=1969, months=None, include_enrollments=True, include_employees=False,
            delete_existing=False, tag=None, status_distribution=None,
        )
        result = await SimulationService(db_session).generate_year(request)
        assert result.total == 0
        assert result.created == []


class TestSimulationApi:
    """Simulation endpoints."""

    async def test_generate_status_cleanup(self, client: AsyncClient, db_session: AsyncSession):
        await _setup(db_session)

        res = await client.post(
            "/api/v1/billing/simulations",
            json={"year": 2024, "months": [5, 3, 3], "tag": "api", "status_distribution": {"paid": 1}},
        )
        assert res.status_code == 200, res.text
        assert res.json()["data"]["total"] == 2

        res = await client.get("/api/v1/billing/simulations/status", params={"year": 2024, "tag": "api"})
        assert res.json()["data"] == {"exists": True, "count": 2}

        res = await client.delete("/api/v1/billing/simulations", params={"tag": "api"})
        assert res.json()["data"]["deleted"] == 2

        res = await client.post("/api/v1/billing/simulations", json={"year": 2024, "months": [13]})
        assert res.status_code == 422

from decimal import Decimal

from src.modules.billing.calculator import (
    calculate_employee_amounts,
    calculate_enrollment_amounts,
    calculate_salary_amount,
    map_service_to_concept,
)
from src.modules.billing.views import EmployeeView, EnrollmentView, ServiceView, TermView


def _enrollment(services=(), additional=None) -> EnrollmentView:
    return EnrollmentView(
        id=1,
        document_id="enr1",
        is_active=True,
        has_school_period=True,
        services=tuple(services),
        additional_amount=additional,
    )


def _employee(rate, hours=None, period="monthly", additional=None) -> EmployeeView:
    return EmployeeView(
        id=1,
        document_id="emp1",
        is_active=True,
        name="Marta",
        latest_term=TermView(start=None, end=None, hourly_rate=rate, worked_hours=hours, payment_period=period),
        additional_amount=additional,
    )


class TestServiceConcepts:
    """Service bucketing for fiscal reporting."""

    def test_keywords(self):
        assert map_service_to_concept(ServiceView("Comedor escolar", Decimal("120"), "active")) == "comedor"
        assert map_service_to_concept(ServiceView("Matrícula 2024", Decimal("50"), "active")) == "matricula"
        assert map_service_to_concept(ServiceView("Bus ruta norte", Decimal("40"), "active")) == "transporte"
        assert map_service_to_concept(ServiceView("Libros de texto", Decimal("30"), "active")) == "material"

    def test_fallbacks(self):
        assert map_service_to_concept(ServiceView("Cuota", Decimal("10"), "active", "student_service")) == "matricula"
        assert map_service_to_concept(ServiceView(" Natación ", Decimal("10"), "active")) == "Natación"
        assert map_service_to_concept(ServiceView("", Decimal("10"), "active")) == "servicio"


class TestEnrollmentAmounts:
    """Enrollment charge lines."""

    def test_services_plus_additional(self):
        breakdown = calculate_enrollment_amounts(
            _enrollment([ServiceView("Comedor", Decimal("120"), "active")], {"Material extra": 15})
        )
        assert breakdown.amounts == [
            {"concept": "comedor", "amount": 120.0},
            {"concept": "Material extra", "amount": 15.0},
        ]
        assert breakdown.subtotal == Decimal("135")

    def test_inactive_services_and_bad_values_skipped(self):
        breakdown = calculate_enrollment_amounts(
            _enrollment(
                [
                    ServiceView("Comedor", Decimal("120"), "active"),
                    ServiceView("Transporte", Decimal("40"), "inactive"),
                    ServiceView("Piscina", None, "active"),
                ],
                {"Descuento": -10, "Texto": "abc", "comedor": "5"},
            )
        )
        assert breakdown.amounts == [{"concept": "comedor", "amount": 125.0}]

    def test_nothing_to_bill(self):
        assert calculate_enrollment_amounts(_enrollment()) is None
        assert calculate_enrollment_amounts(_enrollment([ServiceView("Comedor", Decimal("0"), "active")])) is None


class TestSalary:
    """Payroll amounts."""

    def test_period_divisors(self):
        assert calculate_salary_amount("monthly", 10, 160) == Decimal("1600")
        assert calculate_salary_amount("biweekly", 10, 160) == Decimal("800")
        assert calculate_salary_amount("weekly", 10, 160) == Decimal("400")
        assert calculate_salary_amount("daily", 11, 160) == Decimal("80")

    def test_default_hours(self):
        assert calculate_salary_amount("monthly", 10, None) == Decimal("1600")
        assert calculate_salary_amount("monthly", 10, 0) == Decimal("1600")
        assert calculate_salary_amount("monthly", None, 100) == Decimal("0")

    def test_employee_with_bonus(self):
        breakdown = calculate_employee_amounts(_employee(Decimal("10"), Decimal("160"), additional={"Bonus": 50}))
        assert breakdown.amounts == [
            {"concept": "Salario base", "amount": 1600.0},
            {"concept": "Bonus", "amount": 50.0},
        ]
        assert breakdown.subtotal == Decimal("1650")

    def test_no_rate_no_bonus(self):
        assert calculate_employee_amounts(_employee(None)) is None
        assert calculate_employee_amounts(
            EmployeeView(id=1, document_id="emp1", is_active=True, name="Marta")
        ) is None

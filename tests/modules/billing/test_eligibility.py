from datetime import date

from src.modules.billing.eligibility import (
    EligibilityState,
    evaluate_employee,
    evaluate_enrollment,
    is_date_within_range,
    is_date_within_school_period,
    last_day_of_month,
    month_bounds,
    month_key,
    should_bill_employee,
)
from src.modules.billing.views import EmployeeView, EnrollmentView, SegmentView, TermView

WINDOW = (SegmentView(date(2024, 1, 15), date(2024, 6, 30)),)


def _enrollment(**overrides) -> EnrollmentView:
    values = dict(id=1, document_id="enr1", is_active=True, has_school_period=True, segments=WINDOW)
    values.update(overrides)
    return EnrollmentView(**values)


def _employee(payment_period: str = "monthly", **overrides) -> EmployeeView:
    values = dict(
        id=1,
        document_id="emp1",
        is_active=True,
        name="Marta",
        latest_term=TermView(
            start=date(2023, 9, 1),
            end=None,
            hourly_rate=None,
            worked_hours=None,
            payment_period=payment_period,
        ),
    )
    values.update(overrides)
    return EmployeeView(**values)


class TestDates:
    """Month helpers and inclusive windows."""

    def test_month_helpers(self):
        assert month_key(date(2024, 3, 25)) == "2024-03"
        assert last_day_of_month(date(2024, 2, 10)) == date(2024, 2, 29)
        assert month_bounds(2023, 12) == (date(2023, 12, 1), date(2023, 12, 31))

    def test_school_period_window_is_inclusive(self):
        assert is_date_within_school_period(WINDOW, date(2024, 1, 15))
        assert is_date_within_school_period(WINDOW, date(2024, 6, 30))
        assert not is_date_within_school_period(WINDOW, date(2024, 1, 14))
        assert not is_date_within_school_period(WINDOW, date(2024, 7, 1))

    def test_disjoint_and_incomplete_segments(self):
        segments = (
            SegmentView(date(2024, 1, 8), date(2024, 3, 22)),
            SegmentView(None, date(2024, 12, 31)),
            SegmentView(date(2024, 4, 2), date(2024, 6, 21)),
        )
        assert is_date_within_school_period(segments, date(2024, 3, 1))
        assert not is_date_within_school_period(segments, date(2024, 3, 28))
        assert is_date_within_school_period(segments, date(2024, 4, 2))
        assert not is_date_within_school_period((), date(2024, 3, 1))
        assert not is_date_within_school_period(None, date(2024, 3, 1))

    def test_open_ranges(self):
        assert is_date_within_range(None, None, date(2024, 3, 1))
        assert is_date_within_range(date(2024, 1, 1), None, date(2030, 1, 1))
        assert not is_date_within_range(None, date(2024, 1, 1), date(2024, 1, 2))


class TestShouldBillEmployee:
    """Payment frequency rules."""

    def test_monthly(self):
        assert should_bill_employee("monthly", date(2024, 3, 25), billing_day=25)
        assert not should_bill_employee("monthly", date(2024, 3, 24), billing_day=25)
        assert should_bill_employee("monthly", date(2024, 3, 24), billing_day=None)

    def test_biweekly(self):
        assert not should_bill_employee("biweekly", date(2024, 3, 10))
        for day in (1, 2, 15, 16):
            assert should_bill_employee("biweekly", date(2024, 3, day))

    def test_weekly_daily_annual(self):
        assert should_bill_employee("weekly", date(2024, 3, 25))  # Monday
        assert not should_bill_employee("weekly", date(2024, 3, 26))
        assert should_bill_employee("daily", date(2024, 3, 26))
        assert should_bill_employee("annual", date(2024, 1, 2))
        assert not should_bill_employee("annual", date(2024, 2, 1))


class TestEvaluateEnrollment:
    """Enrollment eligibility."""

    def test_eligible_inside_window(self):
        assert evaluate_enrollment(_enrollment(), date(2024, 3, 25)).eligible

    def test_window_edges(self):
        assert evaluate_enrollment(_enrollment(), date(2024, 1, 15)).eligible
        assert evaluate_enrollment(_enrollment(), date(2024, 6, 30)).eligible
        result = evaluate_enrollment(_enrollment(), date(2024, 7, 1))
        assert result.state == EligibilityState.INELIGIBLE_OUT_OF_WINDOW

    def test_inactive_and_missing_period(self):
        assert evaluate_enrollment(_enrollment(is_active=False), date(2024, 3, 25)).state == (
            EligibilityState.INELIGIBLE_INACTIVE
        )
        result = evaluate_enrollment(_enrollment(has_school_period=False, segments=()), date(2024, 3, 25))
        assert result.state == EligibilityState.INELIGIBLE_OUT_OF_WINDOW

    def test_already_billed(self):
        view = _enrollment(billing_control={"2024-03": {"invoice_document_id": "abc"}})
        assert evaluate_enrollment(view, date(2024, 3, 25)).state == EligibilityState.ALREADY_BILLED
        assert evaluate_enrollment(view, date(2024, 4, 25)).eligible


class TestEvaluateEmployee:
    """Employee eligibility."""

    def test_biweekly_not_due_on_day_10(self):
        result = evaluate_employee(_employee("biweekly"), date(2024, 3, 10))
        assert result.state == EligibilityState.NOT_DUE
        assert not result.eligible

    def test_frequency_check_can_be_skipped(self):
        assert evaluate_employee(_employee("biweekly"), date(2024, 3, 10), check_frequency=False).eligible

    def test_contract_window(self):
        view = _employee(
            latest_term=TermView(
                start=date(2024, 1, 1),
                end=date(2024, 2, 29),
                hourly_rate=None,
                worked_hours=None,
            )
        )
        assert evaluate_employee(view, date(2024, 2, 29), billing_day=29).eligible
        assert evaluate_employee(view, date(2024, 3, 25), billing_day=25).state == (
            EligibilityState.INELIGIBLE_OUT_OF_WINDOW
        )

    def test_no_terms_or_inactive(self):
        assert evaluate_employee(_employee(latest_term=None), date(2024, 3, 25)).state == (
            EligibilityState.INELIGIBLE_OUT_OF_WINDOW
        )
        assert evaluate_employee(_employee(is_active=False), date(2024, 3, 25)).state == (
            EligibilityState.INELIGIBLE_INACTIVE
        )

    def test_ledger(self):
        view = _employee(billing_control={"2024-03": {"invoice_document_id": "x"}})
        assert evaluate_employee(view, date(2024, 3, 25), billing_day=25).state == EligibilityState.ALREADY_BILLED

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from src.modules.billing.config import BillingConfig

MADRID = ZoneInfo("Europe/Madrid")


def _at(*args) -> datetime:
    return datetime(*args, tzinfo=MADRID)


class TestBillingDay:
    """Configured day clamped to the month."""

    def test_clamped_to_month_length(self):
        config = BillingConfig(day=31)
        assert config.billing_day_for(date(2024, 4, 10)) == 30
        assert config.billing_day_for(date(2024, 2, 10)) == 29
        assert config.billing_day_for(date(2024, 3, 10)) == 31

    def test_test_mode_uses_today(self):
        assert BillingConfig(day=25, test_mode=True).effective_billing_day(date(2024, 3, 7)) == 7
        assert BillingConfig(day=25).effective_billing_day(date(2024, 3, 7)) == 25


class TestSchedule:
    """Due times and next execution."""

    def test_next_execution_monthly(self):
        config = BillingConfig(day=25, hour=5, minute=0)
        assert config.next_execution(_at(2024, 3, 25, 5, 0)) == _at(2024, 4, 25, 5, 0)
        assert config.next_execution(_at(2024, 12, 25, 5, 0)) == _at(2025, 1, 25, 5, 0)

    def test_next_execution_test_mode(self):
        config = BillingConfig(test_mode=True, test_interval_minutes=5)
        last = _at(2024, 3, 25, 5, 0)
        assert config.next_execution(last) == last + timedelta(minutes=5)

    def test_naive_times_are_local(self):
        config = BillingConfig()
        assert config.localize(datetime(2024, 3, 25, 5, 0)) == _at(2024, 3, 25, 5, 0)

    def test_first_run_waits_for_slot(self):
        config = BillingConfig(day=25, hour=5)
        assert not config.is_due(_at(2024, 3, 25, 4, 59))
        assert config.is_due(_at(2024, 3, 25, 5, 0))
        assert config.is_due(_at(2024, 3, 28, 12, 0))

    def test_runs_once_per_month(self):
        config = BillingConfig(day=25, hour=5, last_execution=_at(2024, 3, 25, 5, 1))
        assert not config.is_due(_at(2024, 3, 30, 5, 0))
        assert not config.is_due(_at(2024, 4, 24, 23, 0))
        assert config.is_due(_at(2024, 4, 25, 5, 0))

    def test_test_mode_interval(self):
        last = _at(2024, 3, 25, 5, 0)
        config = BillingConfig(test_mode=True, test_interval_minutes=5, last_execution=last)
        assert not config.is_due(last + timedelta(minutes=3))
        assert config.is_due(last + timedelta(minutes=5))
        assert BillingConfig(test_mode=True).is_due(last)

    def test_inactive_is_never_due(self):
        assert not BillingConfig(is_active=False).is_due(_at(2024, 3, 25, 6, 0))

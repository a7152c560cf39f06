"""Billing schedule passed explicitly into every run."""

import calendar
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from src.core.config import settings


@dataclass(frozen=True)
class BillingConfig:
    """
    When recurring billing runs.

    In normal mode the run is due once a month on ``day`` at ``hour:minute``
    (in ``timezone``). In test mode it is due every ``test_interval_minutes``
    and employee monthly payroll fires on whatever day the run happens.
    ``last_execution`` is an input; the run returns the new last/next values
    and the caller decides where to persist them.
    """

    day: int = 25
    hour: int = 5
    minute: int = 0
    test_mode: bool = False
    test_interval_minutes: int = 5
    timezone: str = "Europe/Madrid"
    is_active: bool = True
    last_execution: datetime | None = None

    @classmethod
    def from_settings(cls, last_execution: datetime | None = None) -> "BillingConfig":
        return cls(
            day=settings.billing_day,
            hour=settings.billing_hour,
            minute=settings.billing_minute,
            test_mode=settings.billing_test_mode,
            test_interval_minutes=settings.billing_test_interval_minutes,
            timezone=settings.billing_timezone,
            is_active=settings.billing_is_active,
            last_execution=last_execution,
        )

    def with_last_execution(self, last_execution: datetime | None) -> "BillingConfig":
        return replace(self, last_execution=last_execution)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def localize(self, now: datetime | None = None) -> datetime:
        """``now`` as an aware datetime in the billing timezone (naive input is taken as local)."""
        if now is None:
            return datetime.now(self.tz)
        if now.tzinfo is None:
            return now.replace(tzinfo=self.tz)
        return now.astimezone(self.tz)

    def billing_day_for(self, on: date) -> int:
        """Configured day clamped to the month length (day 31 in April is the 30th)."""
        return min(self.day, calendar.monthrange(on.year, on.month)[1])

    def effective_billing_day(self, on: date) -> int:
        """Day of month monthly payroll fires on; in test mode it is always today."""
        return on.day if self.test_mode else self.billing_day_for(on)

    def scheduled_for(self, year: int, month: int) -> datetime:
        day = min(self.day, calendar.monthrange(year, month)[1])
        return datetime(year, month, day, self.hour, self.minute, tzinfo=self.tz)

    def next_execution(self, last: datetime | None = None) -> datetime:
        """Next due time after ``last`` (defaults to ``last_execution``, then now)."""
        last = self.localize(last or self.last_execution)
        if self.test_mode:
            return last + timedelta(minutes=self.test_interval_minutes)
        year, month = (last.year + 1, 1) if last.month == 12 else (last.year, last.month + 1)
        return self.scheduled_for(year, month)

    def is_due(self, now: datetime | None = None) -> bool:
        """Whether a scheduled run should bill at ``now``."""
        if not self.is_active:
            return False
        now = self.localize(now)
        if self.last_execution is None:
            if self.test_mode:
                return True
            return now >= self.scheduled_for(now.year, now.month)
        if self.test_mode:
            return now >= self.next_execution()
        # Monthly: due once this month's slot has passed and was not run yet
        slot = self.scheduled_for(now.year, now.month)
        return now >= slot and self.localize(self.last_execution) < slot

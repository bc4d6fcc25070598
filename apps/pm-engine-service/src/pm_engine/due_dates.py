"""Next-due date computation for PM triggers."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Final

from dateutil.relativedelta import relativedelta

from .store import TimeBasedConfig, TriggerConfig, UsageBasedConfig


class _Unchanged:
    """Marker returned when a trigger has no rule for advancing its due date."""

    _instance: _Unchanged | None = None

    def __new__(cls) -> _Unchanged:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNCHANGED"

    def __bool__(self) -> bool:
        return False


UNCHANGED: Final = _Unchanged()


def _days_until_weekday(now: datetime, day_of_week: int) -> int:
    # 0 = Sunday ... 6 = Saturday.
    today = (now.weekday() + 1) % 7
    days_ahead = (day_of_week - today + 7) % 7
    return days_ahead or 7


def compute_next_due(config: TriggerConfig, now: datetime) -> datetime | None | _Unchanged:
    """Return the next due date after a firing at `now`.

    Time-based fields are consulted in precedence order: days, weeks, months,
    weekday, month day. Usage triggers with a threshold have no calendar due
    date and return ``None``. Everything else returns ``UNCHANGED`` and the
    caller keeps the current value.
    """

    if isinstance(config, TimeBasedConfig):
        if config.interval_days:
            return now + timedelta(days=config.interval_days)
        if config.interval_weeks:
            return now + timedelta(days=7 * config.interval_weeks)
        if config.interval_months:
            return now + relativedelta(months=config.interval_months)
        if config.day_of_week is not None:
            return now + timedelta(days=_days_until_weekday(now, config.day_of_week))
        if config.day_of_month:
            # relativedelta clamps day 31 to the last day of shorter months.
            return now + relativedelta(months=1, day=config.day_of_month)
        return UNCHANGED

    if isinstance(config, UsageBasedConfig) and config.threshold_value is not None:
        return None

    return UNCHANGED


def initial_next_due(config: TriggerConfig, now: datetime) -> datetime | None:
    """Due date assigned when a trigger is created or reactivated."""

    if not isinstance(config, TimeBasedConfig):
        return None
    next_due = compute_next_due(config, now)
    if next_due is UNCHANGED:
        return None
    return next_due

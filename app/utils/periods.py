"""
Dashboard period presets.

A period identifier is one of a small closed set (``7d``, ``30d``,
``this_month``, ``last_month``) and always resolves to whole days in the
configured timezone. ``last_month`` moves both bounds into the previous
calendar month together.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

import pytz

from app.config import get_settings

PERIOD_IDENTIFIERS = ("7d", "30d", "this_month", "last_month")
DEFAULT_PERIOD = "7d"


class PeriodError(ValueError):
    """Raised for a period identifier outside the supported presets."""


@dataclass(frozen=True)
class PeriodSpec:
    identifier: str
    label: str
    start: datetime
    end: datetime

    @property
    def start_date(self) -> str:
        return self.start.date().isoformat()

    @property
    def end_date(self) -> str:
        return self.end.date().isoformat()

    @property
    def cache_fragment(self) -> str:
        """Date-based key fragment so cache entries roll over at midnight."""
        return f"{self.start_date}_{self.end_date}"

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "start_date": self.start_date,
            "end_date": self.end_date,
        }


def _timezone():
    return pytz.timezone(get_settings().timezone)


def _start_of_day(tz, day: date) -> datetime:
    # localize picks the UTC offset in force on that day, not on "now"
    return tz.localize(datetime.combine(day, time.min))


def _end_of_day(tz, day: date) -> datetime:
    return tz.localize(datetime.combine(day, time.max))


def _now() -> datetime:
    return datetime.now(_timezone())


def resolve_period(identifier: str, now: Optional[datetime] = None) -> PeriodSpec:
    """
    Resolve a period identifier to concrete start/end datetimes.

    Args:
        identifier: One of PERIOD_IDENTIFIERS
        now: Reference time (defaults to now). Converted to the configured
            timezone; a naive value is taken as already local.

    Returns:
        PeriodSpec with end >= start, both aware in the configured timezone

    Raises:
        PeriodError: if the identifier is not a known preset
    """
    if identifier not in PERIOD_IDENTIFIERS:
        raise PeriodError(
            f"Invalid period '{identifier}'. Expected one of: {', '.join(PERIOD_IDENTIFIERS)}"
        )

    tz = _timezone()
    now = now or _now()
    now = now.astimezone(tz) if now.tzinfo else tz.localize(now)
    today = now.date()
    last_day = today

    if identifier == "30d":
        first_day = today - timedelta(days=29)
        label = "last_30_days"
    elif identifier == "this_month":
        first_day = today.replace(day=1)
        label = "this_month"
    elif identifier == "last_month":
        # Last day of the previous month, then its first day (no day overflow)
        last_day = today.replace(day=1) - timedelta(days=1)
        first_day = last_day.replace(day=1)
        label = "last_month"
    else:
        first_day = today - timedelta(days=6)
        label = "last_7_days"

    return PeriodSpec(
        identifier=identifier,
        label=label,
        start=_start_of_day(tz, first_day),
        end=_end_of_day(tz, last_day),
    )

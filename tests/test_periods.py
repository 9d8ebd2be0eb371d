"""
Period preset resolution.

Pure date math, no database.
"""
from datetime import datetime

import pytest
import pytz

from app.config import get_settings
from app.utils.periods import PERIOD_IDENTIFIERS, PeriodError, resolve_period

UTC = pytz.utc


def _at(year, month, day, hour=15, minute=30):
    return UTC.localize(datetime(year, month, day, hour, minute))


class TestPresets:

    def test_seven_days_includes_today(self):
        resolved = resolve_period("7d", now=_at(2025, 4, 20))
        assert resolved.label == "last_7_days"
        assert resolved.start_date == "2025-04-14"
        assert resolved.end_date == "2025-04-20"
        assert resolved.start.hour == 0 and resolved.start.minute == 0
        assert resolved.end.hour == 23 and resolved.end.second == 59

    def test_thirty_days(self):
        resolved = resolve_period("30d", now=_at(2025, 4, 20))
        assert resolved.label == "last_30_days"
        assert resolved.start_date == "2025-03-22"
        assert resolved.end_date == "2025-04-20"

    def test_this_month_starts_on_the_first(self):
        resolved = resolve_period("this_month", now=_at(2025, 4, 20))
        assert resolved.label == "this_month"
        assert resolved.start_date == "2025-04-01"
        assert resolved.end_date == "2025-04-20"

    def test_last_month_moves_both_bounds(self):
        resolved = resolve_period("last_month", now=_at(2025, 4, 20))
        assert resolved.label == "last_month"
        assert resolved.start_date == "2025-03-01"
        assert resolved.end_date == "2025-03-31"

    def test_last_month_does_not_overflow_from_day_31(self):
        # March 31 minus one month must land in February, not March 3
        resolved = resolve_period("last_month", now=_at(2025, 3, 31))
        assert resolved.start_date == "2025-02-01"
        assert resolved.end_date == "2025-02-28"

    def test_last_month_across_year_boundary(self):
        resolved = resolve_period("last_month", now=_at(2026, 1, 5))
        assert resolved.start_date == "2025-12-01"
        assert resolved.end_date == "2025-12-31"

    def test_this_month_on_the_first_day(self):
        resolved = resolve_period("this_month", now=_at(2025, 6, 1, hour=0, minute=0))
        assert resolved.start_date == resolved.end_date == "2025-06-01"

    @pytest.mark.parametrize("identifier", PERIOD_IDENTIFIERS)
    def test_end_never_before_start(self, identifier):
        for now in (_at(2024, 2, 29), _at(2025, 1, 1), _at(2025, 12, 31, 23, 59)):
            resolved = resolve_period(identifier, now=now)
            assert resolved.end >= resolved.start


class TestInvalidPeriod:

    @pytest.mark.parametrize("identifier", ["", "14d", "7D", "yesterday"])
    def test_unknown_identifier_rejected(self, identifier):
        with pytest.raises(PeriodError):
            resolve_period(identifier, now=_at(2025, 4, 20))

    def test_period_error_is_a_value_error(self):
        assert issubclass(PeriodError, ValueError)


def test_to_dict_and_cache_fragment():
    resolved = resolve_period("7d", now=_at(2025, 4, 20))
    assert resolved.to_dict() == {
        "label": "last_7_days",
        "start_date": "2025-04-14",
        "end_date": "2025-04-20",
    }
    assert resolved.cache_fragment == "2025-04-14_2025-04-20"


# ────────────────────────────────────────────
# LOCAL TIMEZONE
# ────────────────────────────────────────────


@pytest.fixture
def madrid(monkeypatch):
    monkeypatch.setattr(get_settings(), "timezone", "Europe/Madrid")
    return pytz.timezone("Europe/Madrid")


class TestLocalTimezone:
    """Day bounds carry the UTC offset of their own day, across DST changes."""

    def test_seven_days_spanning_end_of_summer_time(self, madrid):
        # Summer time ended on 2026-10-25
        resolved = resolve_period("7d", now=madrid.localize(datetime(2026, 10, 30, 10, 0)))

        assert resolved.start.isoformat() == "2026-10-24T00:00:00+02:00"
        assert resolved.end.isoformat() == "2026-10-30T23:59:59.999999+01:00"

    def test_thirty_days_spanning_start_of_summer_time(self, madrid):
        # Summer time started on 2026-03-29
        resolved = resolve_period("30d", now=madrid.localize(datetime(2026, 4, 10, 9, 0)))

        assert resolved.start.isoformat() == "2026-03-12T00:00:00+01:00"
        assert resolved.end.isoformat() == "2026-04-10T23:59:59.999999+02:00"

    def test_utc_reference_is_converted_to_local_day(self, madrid):
        # 23:30 UTC on the 31st is already the 1st in Madrid
        resolved = resolve_period("this_month", now=UTC.localize(datetime(2026, 7, 31, 23, 30)))

        assert resolved.start_date == resolved.end_date == "2026-08-01"
        assert resolved.start.isoformat() == "2026-08-01T00:00:00+02:00"

    def test_naive_reference_is_taken_as_local(self, madrid):
        resolved = resolve_period("last_month", now=datetime(2026, 11, 2, 8, 0))

        assert resolved.start.isoformat() == "2026-10-01T00:00:00+02:00"
        assert resolved.end.isoformat() == "2026-10-31T23:59:59.999999+01:00"

"""Tests for frequency parsing and dose time expansion."""

from __future__ import annotations

from datetime import UTC, date, datetime, time

import pytest

from medsafe.core.errors import ValidationError
from medsafe.core.settings import EngineConfig
from medsafe.services.frequency import Cadence, expand_dose_times, parse_frequency

UTC_CONFIG = EngineConfig(timezone="UTC")
HORIZON = datetime(2031, 1, 1, tzinfo=UTC)


def _expand(frequency: str, start: date, end: date | None, config: EngineConfig = UTC_CONFIG, **kwargs):
    return expand_dose_times(
        frequency,
        start_date=start,
        end_date=end,
        config=config,
        horizon_end=kwargs.pop("horizon_end", HORIZON),
        **kwargs,
    )


def test_once_daily_over_ten_days() -> None:
    times = _expand("OD", date(2030, 1, 1), date(2030, 1, 11))
    assert len(times) == 10
    assert times[0] == datetime(2030, 1, 1, 8, 0, tzinfo=UTC)
    assert times[-1] == datetime(2030, 1, 10, 8, 0, tzinfo=UTC)


def test_twice_daily_over_three_days() -> None:
    times = _expand("bd", date(2030, 1, 1), date(2030, 1, 4))
    assert len(times) == 6
    assert {t.time() for t in times} == {time(8, 0), time(20, 0)}


@pytest.mark.parametrize(
    ("code", "per_day"),
    [("TDS", 3), ("QDS", 4), ("QID", 4), ("ON", 1)],
)
def test_daily_codes(code: str, per_day: int) -> None:
    assert len(_expand(code, date(2030, 1, 1), date(2030, 1, 3))) == per_day * 2


def test_nightly_is_at_ten_pm() -> None:
    (slot,) = _expand("ON", date(2030, 1, 1), date(2030, 1, 2))
    assert slot == datetime(2030, 1, 1, 22, 0, tzinfo=UTC)


def test_weekly_steps_seven_days() -> None:
    times = _expand("WEEKLY", date(2030, 1, 1), date(2030, 1, 22))
    assert [t.date() for t in times] == [
        date(2030, 1, 1),
        date(2030, 1, 8),
        date(2030, 1, 15),
    ]


def test_monthly_clamps_to_month_end() -> None:
    times = _expand("MONTHLY", date(2030, 1, 31), date(2030, 4, 1))
    assert [t.date() for t in times] == [
        date(2030, 1, 31),
        date(2030, 2, 28),
        date(2030, 3, 31),
    ]


def test_local_times_convert_to_utc() -> None:
    london = EngineConfig(timezone="Europe/London")
    (summer,) = _expand("OD", date(2030, 7, 1), date(2030, 7, 2), config=london)
    (winter,) = _expand("OD", date(2030, 1, 2), date(2030, 1, 3), config=london)
    assert summer == datetime(2030, 7, 1, 7, 0, tzinfo=UTC)
    assert winter == datetime(2030, 1, 2, 8, 0, tzinfo=UTC)


def test_open_ended_stops_at_horizon() -> None:
    times = _expand(
        "OD",
        date(2030, 1, 1),
        None,
        horizon_end=datetime(2030, 1, 8, 12, 0, tzinfo=UTC),
    )
    assert len(times) == 7


def test_not_before_drops_earlier_times() -> None:
    times = _expand(
        "BD",
        date(2030, 1, 1),
        date(2030, 1, 3),
        not_before=datetime(2030, 1, 1, 12, 0, tzinfo=UTC),
    )
    assert len(times) == 3
    assert times[0] == datetime(2030, 1, 1, 20, 0, tzinfo=UTC)


def test_stat_and_prn_do_not_expand() -> None:
    assert _expand("STAT", date(2030, 1, 1), date(2030, 1, 5)) == []
    assert _expand("PRN", date(2030, 1, 1), date(2030, 1, 5)) == []
    assert parse_frequency("stat", UTC_CONFIG) is Cadence.STAT
    assert parse_frequency(" prn ", UTC_CONFIG) is Cadence.PRN


def test_unknown_frequency_is_rejected() -> None:
    with pytest.raises(ValidationError):
        parse_frequency("HOURLY", UTC_CONFIG)


def test_configured_code_without_times_is_rejected() -> None:
    config = EngineConfig(timezone="UTC", dose_times={"OD": ()})
    with pytest.raises(ValidationError):
        parse_frequency("OD", config)

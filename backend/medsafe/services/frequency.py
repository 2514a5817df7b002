"""Frequency codes and their expansion into concrete dose times."""

from __future__ import annotations

import calendar
import enum
from collections.abc import Iterator
from datetime import UTC, date, datetime, time, timedelta

from medsafe.core.errors import ValidationError
from medsafe.core.settings import EngineConfig


class Cadence(str, enum.Enum):
    """How often a frequency code repeats its dose times."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    STAT = "stat"
    PRN = "prn"


FREQUENCY_CADENCE: dict[str, Cadence] = {
    "OD": Cadence.DAILY,
    "BD": Cadence.DAILY,
    "TDS": Cadence.DAILY,
    "QDS": Cadence.DAILY,
    "QID": Cadence.DAILY,
    "ON": Cadence.DAILY,
    "WEEKLY": Cadence.WEEKLY,
    "MONTHLY": Cadence.MONTHLY,
    "STAT": Cadence.STAT,
    "PRN": Cadence.PRN,
}


def normalise_frequency(code: str | None) -> str:
    return (code or "").strip().upper()


def parse_frequency(code: str | None, config: EngineConfig) -> Cadence:
    """Return the cadence for ``code`` or raise ValidationError."""
    normalised = normalise_frequency(code)
    cadence = FREQUENCY_CADENCE.get(normalised)
    if cadence is None:
        raise ValidationError(f"Unknown frequency code: {code!r}", frequency=code)
    if cadence in {Cadence.DAILY, Cadence.WEEKLY, Cadence.MONTHLY}:
        if not config.dose_times.get(normalised):
            raise ValidationError(
                f"No dose times configured for frequency {normalised}",
                frequency=normalised,
            )
    return cadence


def is_prn(code: str | None) -> bool:
    return normalise_frequency(code) == "PRN"


def is_stat(code: str | None) -> bool:
    return normalise_frequency(code) == "STAT"


def _monthly_day(anchor: date, year: int, month: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(anchor.day, last_day))


def _dose_days(cadence: Cadence, start: date, stop: date) -> Iterator[date]:
    """Yield the calendar days in [start, stop) on which doses fall."""
    if cadence is Cadence.MONTHLY:
        year, month = start.year, start.month
        while True:
            day = _monthly_day(start, year, month)
            if day >= stop:
                return
            if day >= start:
                yield day
            month += 1
            if month > 12:
                year, month = year + 1, 1
    step = timedelta(days=7 if cadence is Cadence.WEEKLY else 1)
    day = start
    while day < stop:
        yield day
        day += step


def expand_dose_times(
    frequency: str,
    *,
    start_date: date,
    end_date: date | None,
    config: EngineConfig,
    horizon_end: datetime,
    not_before: datetime | None = None,
) -> list[datetime]:
    """Expand a scheduled frequency into UTC timestamps.

    Days run from ``start_date`` up to but excluding ``end_date``. Open-ended
    prescriptions stop at the local date of ``horizon_end``. Times strictly
    before ``not_before`` are dropped. STAT and PRN never expand here.
    """
    cadence = parse_frequency(frequency, config)
    if cadence in {Cadence.STAT, Cadence.PRN}:
        return []
    tz = config.tz
    stop = horizon_end.astimezone(tz).date() if end_date is None else end_date
    times: tuple[time, ...] = config.dose_times[normalise_frequency(frequency)]
    results: list[datetime] = []
    for day in _dose_days(cadence, start_date, stop):
        for dose_time in sorted(times):
            local = datetime.combine(day, dose_time, tzinfo=tz)
            at = local.astimezone(UTC)
            if not_before is not None and at < not_before:
                continue
            results.append(at)
    return results


__all__ = [
    "Cadence",
    "FREQUENCY_CADENCE",
    "expand_dose_times",
    "is_prn",
    "is_stat",
    "normalise_frequency",
    "parse_frequency",
]

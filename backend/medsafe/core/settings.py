"""Engine configuration passed explicitly into scheduling and safety services."""

from __future__ import annotations

from datetime import time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field

from medsafe.core.config import get_settings

DEFAULT_DOSE_TIMES: dict[str, tuple[time, ...]] = {
    "OD": (time(8, 0),),
    "BD": (time(8, 0), time(20, 0)),
    "TDS": (time(8, 0), time(14, 0), time(20, 0)),
    "QDS": (time(8, 0), time(12, 0), time(16, 0), time(20, 0)),
    "QID": (time(8, 0), time(12, 0), time(16, 0), time(20, 0)),
    "ON": (time(22, 0),),
    "WEEKLY": (time(8, 0),),
    "MONTHLY": (time(8, 0),),
}


class EngineConfig(BaseModel):
    """Immutable view of the settings the medication engine depends on."""

    model_config = ConfigDict(frozen=True)

    timezone: str = "Europe/London"
    dose_times: dict[str, tuple[time, ...]] = Field(
        default_factory=lambda: dict(DEFAULT_DOSE_TIMES)
    )
    missed_grace: timedelta = timedelta(minutes=60)
    early_window: timedelta = timedelta(minutes=60)
    open_ended_horizon: timedelta = timedelta(days=28)
    high_refire_interval: timedelta = timedelta(minutes=15)
    critical_refire_interval: timedelta = timedelta(minutes=5)
    witness_window: timedelta = timedelta(minutes=30)
    prn_min_interval: timedelta = timedelta(hours=4)

    @property
    def tz(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except ZoneInfoNotFoundError:  # pragma: no cover - depends on system tz database
            return ZoneInfo("UTC")


def get_engine_config() -> EngineConfig:
    """Build the engine configuration from application settings."""

    settings = get_settings()
    return EngineConfig(
        timezone=settings.care_home_timezone,
        missed_grace=timedelta(minutes=settings.missed_dose_grace_minutes),
        early_window=timedelta(minutes=settings.early_administration_minutes),
        open_ended_horizon=timedelta(days=settings.open_ended_horizon_days),
        high_refire_interval=timedelta(minutes=settings.high_alert_refire_minutes),
        critical_refire_interval=timedelta(
            minutes=settings.critical_alert_refire_minutes
        ),
        witness_window=timedelta(minutes=settings.witness_attestation_minutes),
        prn_min_interval=timedelta(hours=settings.prn_min_interval_hours),
    )

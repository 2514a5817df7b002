"""Application configuration via pydantic settings."""

from functools import lru_cache
from pathlib import Path

from typing import Any

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed application configuration."""

    app_env: str = Field("local", alias="APP_ENV")
    app_name: str = "Care Home Medication Safety API"
    api_v1_prefix: str = "/api/v1"

    database_url: str = Field(
        "sqlite+aiosqlite:///./medsafe.db", alias="DATABASE_URL"
    )
    sync_database_url: str | None = Field(default=None, alias="SYNC_DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    care_home_timezone: str = Field("Europe/London", alias="CARE_HOME_TIMEZONE")
    missed_dose_grace_minutes: int = Field(60, alias="MISSED_DOSE_GRACE_MINUTES")
    early_administration_minutes: int = Field(
        60, alias="EARLY_ADMINISTRATION_MINUTES"
    )
    open_ended_horizon_days: int = Field(28, alias="OPEN_ENDED_HORIZON_DAYS")
    high_alert_refire_minutes: int = Field(15, alias="HIGH_ALERT_REFIRE_MINUTES")
    critical_alert_refire_minutes: int = Field(
        5, alias="CRITICAL_ALERT_REFIRE_MINUTES"
    )
    witness_attestation_minutes: int = Field(
        30, alias="WITNESS_ATTESTATION_MINUTES"
    )
    prn_min_interval_hours: int = Field(4, alias="PRN_MIN_INTERVAL_HOURS")

    sweeps_enabled: bool = Field(default=False, alias="SWEEPS_ENABLED")
    sweep_interval_seconds: int = Field(60, alias="SWEEP_INTERVAL_SECONDS")
    reconcile_interval_seconds: int = Field(3600, alias="RECONCILE_INTERVAL_SECONDS")

    smtp_host: str | None = Field(default=None, alias="SMTP_HOST")
    smtp_port: int | None = Field(default=None, alias="SMTP_PORT")
    smtp_username: str | None = Field(default=None, alias="SMTP_USER")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_from: str | None = Field(default=None, alias="SMTP_FROM")
    alert_email_recipients: list[str] = Field(
        default_factory=list, alias="ALERT_EMAIL_RECIPIENTS"
    )

    cors_allowlist: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"], alias="CORS_ALLOWLIST"
    )
    cors_allow_credentials: bool = Field(default=False, alias="CORS_ALLOW_CREDENTIALS")

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[3] / ".env",
        case_sensitive=False,
    )

    @field_validator("cors_allowlist", "alert_email_recipients", mode="before")
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()  # type: ignore[call-arg]

"""Runtime configuration for the preventive-maintenance engine."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings loaded from environment variables."""

    service_name: str = "pm-engine-service"
    service_version: str = "0.1.0"
    log_level: str = "INFO"
    metrics_enabled: bool = True

    storage_backend: Literal["memory", "sqlalchemy"] = "memory"
    database_url: str = "sqlite:///./pm_engine.db"
    sql_echo: bool = False

    failure_window_days: int = 30
    stale_open_days: int = 7
    stale_on_hold_days: int = 3
    overdue_reschedule_days: int = 3
    critical_overdue_hours: int = 48
    upcoming_window_days: int = 30

    scheduler_enabled: bool = True
    generation_interval_seconds: int = 3600
    reschedule_interval_seconds: int = 14400
    escalation_interval_seconds: int = 43200

    notification_backend: Literal["memory", "http"] = "memory"
    notification_base_url: str = "http://127.0.0.1:8201"
    notification_timeout_seconds: float = 8.0
    notification_channel: str = "email"
    command_requested_by: str = "apps/pm-engine-service"

    model_config = SettingsConfigDict(env_prefix="PM_ENGINE_", extra="ignore")


def get_settings() -> Settings:
    """Return settings object."""

    return Settings()

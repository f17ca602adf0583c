"""Runtime configuration read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import ValidationError


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from None


def _time_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    hours, _, minutes = value.partition(":")
    if not (hours.isdigit() and minutes.isdigit() and int(hours) < 24 and int(minutes) < 60):
        raise ValidationError(f"{name} must look like HH:MM, got {value!r}")
    return f"{int(hours):02d}:{int(minutes):02d}"


@dataclass
class EngineConfig:
    """Settings for the worker, the scheduler and the PostgreSQL store"""

    db_config: Dict[str, Any] = field(default_factory=dict)
    batch_timeout_seconds: int = 300
    recurring_run_at: str = "00:00"
    rollover_run_at: str = "00:00"
    alerts_run_at: str = "20:00"
    debt_reminders_run_at: str = "09:00"
    debt_reminder_lead_days: int = 3
    reminders_run_at: str = "08:00"
    reminder_window_days: int = 7
    alert_webhook_url: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_environment(cls) -> "EngineConfig":
        timeout = _int_env("BATCH_TIMEOUT_SECONDS", 300)
        if timeout <= 0:
            raise ValidationError("BATCH_TIMEOUT_SECONDS must be positive")

        return cls(
            db_config={
                "host": os.getenv("DB_HOST", "localhost"),
                "port": _int_env("DB_PORT", 5432),
                "database": os.getenv("DB_NAME", "ledger"),
                "user": os.getenv("DB_USER", "ledger_user"),
                "password": os.getenv("DB_PASSWORD", ""),
            },
            batch_timeout_seconds=timeout,
            recurring_run_at=_time_env("RECURRING_RUN_AT", "00:00"),
            rollover_run_at=_time_env("ROLLOVER_RUN_AT", "00:00"),
            alerts_run_at=_time_env("ALERTS_RUN_AT", "20:00"),
            debt_reminders_run_at=_time_env("DEBT_REMINDERS_RUN_AT", "09:00"),
            debt_reminder_lead_days=_int_env("DEBT_REMINDER_LEAD_DAYS", 3),
            reminders_run_at=_time_env("REMINDERS_RUN_AT", "08:00"),
            reminder_window_days=_int_env("REMINDER_WINDOW_DAYS", 7),
            alert_webhook_url=os.getenv("ALERT_WEBHOOK_URL") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

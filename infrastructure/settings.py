"""Centralized application settings.

Runtime configuration is read once from the environment (``.env`` files are
honoured through ``python-dotenv``) into an immutable :class:`AppSettings`
snapshot. Components receive the snapshot through their constructors instead
of reading ``os.environ`` themselves.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

from . import constants


def _to_bool(value: Optional[str], default: bool = False) -> bool:
    """Normalize environment strings such as "true"/"1" into booleans."""

    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: Optional[str], default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _to_float(value: Optional[str], default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class AppSettings:
    """Immutable snapshot of high-level configuration values."""

    production_mode: bool
    timezone: str
    store_backend: str
    queue_file: str
    stations_file: str
    telegram_bot_token: str
    reservation_minutes: int
    stalled_grace_minutes: int
    reservation_warning_minutes: int
    progress_reminder_max_position: int
    default_max_queue_length: int
    default_average_session_minutes: int
    task_max_retries: int
    task_backoff_base_seconds: float
    anomaly_rate_ratio: float
    max_session_minutes: int
    external_call_timeout_seconds: float
    shutdown_grace_seconds: float
    analytics_cache_ttl_seconds: int
    cleanup_interval: float
    optimization_interval: float
    notifications_interval: float
    analytics_interval: float
    sessions_interval: float
    availability_alerts_interval: float
    performance_interval: float

    def process_intervals(self) -> Dict[str, float]:
        """Return the cadence of every default scheduler process keyed by name."""

        return {
            constants.PROCESS_CLEANUP: self.cleanup_interval,
            constants.PROCESS_OPTIMIZATION: self.optimization_interval,
            constants.PROCESS_NOTIFICATIONS: self.notifications_interval,
            constants.PROCESS_ANALYTICS: self.analytics_interval,
            constants.PROCESS_SESSIONS: self.sessions_interval,
            constants.PROCESS_AVAILABILITY_ALERTS: self.availability_alerts_interval,
            constants.PROCESS_PERFORMANCE: self.performance_interval,
        }


def load_settings(env: Optional[Mapping[str, str]] = None) -> AppSettings:
    """Load configuration from the environment and fall back to defaults."""

    if env is None:
        load_dotenv(override=False)
        env = os.environ

    return AppSettings(
        production_mode=_to_bool(env.get("PRODUCTION_MODE"), default=False),
        timezone=env.get("QUEUE_TIMEZONE", "Asia/Kolkata"),
        store_backend=env.get("QUEUE_STORE_BACKEND", "json").strip().lower(),
        queue_file=env.get("QUEUE_FILE", "data/queue.json"),
        stations_file=env.get("STATIONS_FILE", "data/stations.json"),
        telegram_bot_token=env.get("TELEGRAM_BOT_TOKEN", ""),
        reservation_minutes=_to_int(
            env.get("RESERVATION_MINUTES"), constants.DEFAULT_RESERVATION_MINUTES
        ),
        stalled_grace_minutes=_to_int(
            env.get("STALLED_RESERVATION_GRACE_MINUTES"),
            constants.STALLED_RESERVATION_GRACE_MINUTES,
        ),
        reservation_warning_minutes=_to_int(
            env.get("RESERVATION_WARNING_MINUTES"), constants.RESERVATION_WARNING_MINUTES
        ),
        progress_reminder_max_position=_to_int(
            env.get("PROGRESS_REMINDER_MAX_POSITION"),
            constants.PROGRESS_REMINDER_MAX_POSITION,
        ),
        default_max_queue_length=_to_int(
            env.get("DEFAULT_MAX_QUEUE_LENGTH"), constants.DEFAULT_MAX_QUEUE_LENGTH
        ),
        default_average_session_minutes=_to_int(
            env.get("DEFAULT_AVERAGE_SESSION_MINUTES"),
            constants.DEFAULT_AVERAGE_SESSION_MINUTES,
        ),
        task_max_retries=_to_int(
            env.get("TASK_MAX_RETRIES"), constants.DEFAULT_TASK_MAX_RETRIES
        ),
        task_backoff_base_seconds=_to_float(
            env.get("TASK_BACKOFF_BASE_SECONDS"), constants.TASK_BACKOFF_BASE_SECONDS
        ),
        anomaly_rate_ratio=_to_float(
            env.get("ANOMALY_RATE_RATIO"), constants.ANOMALY_RATE_RATIO
        ),
        max_session_minutes=_to_int(
            env.get("MAX_SESSION_MINUTES"), constants.MAX_SESSION_MINUTES
        ),
        external_call_timeout_seconds=_to_float(
            env.get("EXTERNAL_CALL_TIMEOUT_SECONDS"),
            constants.EXTERNAL_CALL_TIMEOUT_SECONDS,
        ),
        shutdown_grace_seconds=_to_float(
            env.get("SHUTDOWN_GRACE_SECONDS"), constants.SHUTDOWN_GRACE_SECONDS
        ),
        analytics_cache_ttl_seconds=_to_int(
            env.get("ANALYTICS_CACHE_TTL_SECONDS"), constants.ANALYTICS_CACHE_TTL_SECONDS
        ),
        cleanup_interval=_to_float(
            env.get("CLEANUP_INTERVAL_SECONDS"), constants.CLEANUP_INTERVAL_SECONDS
        ),
        optimization_interval=_to_float(
            env.get("OPTIMIZATION_INTERVAL_SECONDS"),
            constants.OPTIMIZATION_INTERVAL_SECONDS,
        ),
        notifications_interval=_to_float(
            env.get("NOTIFICATIONS_INTERVAL_SECONDS"),
            constants.NOTIFICATIONS_INTERVAL_SECONDS,
        ),
        analytics_interval=_to_float(
            env.get("ANALYTICS_INTERVAL_SECONDS"), constants.ANALYTICS_INTERVAL_SECONDS
        ),
        sessions_interval=_to_float(
            env.get("SESSIONS_INTERVAL_SECONDS"), constants.SESSIONS_INTERVAL_SECONDS
        ),
        availability_alerts_interval=_to_float(
            env.get("AVAILABILITY_ALERTS_INTERVAL_SECONDS"),
            constants.AVAILABILITY_ALERTS_INTERVAL_SECONDS,
        ),
        performance_interval=_to_float(
            env.get("PERFORMANCE_INTERVAL_SECONDS"),
            constants.PERFORMANCE_INTERVAL_SECONDS,
        ),
    )


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Return a cached :class:`AppSettings` instance."""

    return load_settings()

"""Records exchanged with the external charging-session interface."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class ChargingSession:
    """An active charging session as reported by the session service."""

    id: str
    user_id: str
    station_id: int
    target_battery_level: float = 80.0
    expected_charging_rate: float = 0.0
    started_at: Optional[datetime] = None


@dataclass(frozen=True)
class SessionStatus:
    """Live telemetry for a single session."""

    current_battery_level: float
    charging_rate: float
    status_message: str = ''

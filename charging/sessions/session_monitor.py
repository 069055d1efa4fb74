"""
Session Monitor

Polls every active charging session, stops the ones that reached their target
battery level or ran past the maximum session length, and raises a single
anomaly notice for sessions charging well below their expected rate.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Set

from charging.clock import Clock, utc_now
from charging.models import ChargingSession, SessionStatus
from charging.notifications import NotificationGateway
from infrastructure import constants


@dataclass
class SessionSweepResult:
    checked: int = 0
    completed: int = 0
    anomalies: int = 0
    failed: int = 0


class SessionMonitor:
    """
    Periodic health check of live charging sessions.

    Attributes:
        gateway: External session interface
        notifier (NotificationGateway): Anomaly notices go through here
        anomaly_ratio (float): Live rate below ``expected * ratio`` is an anomaly
        max_session (timedelta): Sessions older than this are stopped
    """

    def __init__(
        self,
        gateway,
        notifier: NotificationGateway,
        *,
        clock: Clock = utc_now,
        anomaly_ratio: float = constants.ANOMALY_RATE_RATIO,
        max_session_minutes: int = constants.MAX_SESSION_MINUTES,
        timeout_seconds: float = constants.EXTERNAL_CALL_TIMEOUT_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.gateway = gateway
        self.notifier = notifier
        self.clock = clock
        self.anomaly_ratio = anomaly_ratio
        self.max_session = timedelta(minutes=max_session_minutes)
        self.timeout_seconds = timeout_seconds
        self.logger = logger or logging.getLogger('SessionMonitor')
        self._flagged: Set[str] = set()
        self.active_session_count = 0

    async def run(self) -> SessionSweepResult:
        sessions = await asyncio.wait_for(
            self.gateway.get_active_sessions(), timeout=self.timeout_seconds
        )
        self.active_session_count = len(sessions)

        active_ids = {session.id for session in sessions}
        self._flagged &= active_ids

        result = SessionSweepResult()
        for session in sessions:
            result.checked += 1
            try:
                await self._check_session(session, result)
            except asyncio.TimeoutError:
                result.failed += 1
                self.logger.warning(
                    "Session %s did not answer within %ss", session.id, self.timeout_seconds
                )
            except Exception as exc:
                result.failed += 1
                self.logger.error("Error monitoring session %s: %s", session.id, exc)

        if result.completed or result.anomalies or result.failed:
            self.logger.info(
                "Session sweep: %s checked, %s completed, %s anomalies, %s failed",
                result.checked, result.completed, result.anomalies, result.failed,
            )
        return result

    async def _check_session(self, session: ChargingSession, result: SessionSweepResult) -> None:
        status: Optional[SessionStatus] = await asyncio.wait_for(
            self.gateway.get_session_status(session.id), timeout=self.timeout_seconds
        )
        if status is None:
            self.logger.warning("No status reported for session %s; skipping", session.id)
            return

        if status.current_battery_level >= session.target_battery_level:
            if await self._complete(session, f"target {session.target_battery_level}% reached"):
                result.completed += 1
            return

        if session.started_at is not None and self.clock() - session.started_at > self.max_session:
            if await self._complete(session, f"exceeded {self.max_session} maximum duration"):
                result.completed += 1
            return

        expected = session.expected_charging_rate
        if expected > 0 and status.charging_rate < expected * self.anomaly_ratio:
            if session.id in self._flagged:
                return
            self._flagged.add(session.id)
            result.anomalies += 1
            self.logger.warning(f"""CHARGING ANOMALY DETECTED
            Session: {session.id}
            User ID: {session.user_id}
            Station: {session.station_id}
            Live rate: {status.charging_rate:.2f}
            Expected rate: {expected:.2f}
            Battery: {status.current_battery_level:.1f}%
            """)
            self.notifier.notify_anomaly(session.user_id, session, status)

    async def _complete(self, session: ChargingSession, reason: str) -> bool:
        stopped = await asyncio.wait_for(
            self.gateway.complete_session(session.user_id, session.station_id),
            timeout=self.timeout_seconds,
        )
        if not stopped:
            self.logger.warning(
                "Session %s for user %s was not stopped (%s)", session.id, session.user_id, reason
            )
            return False
        self._flagged.discard(session.id)
        self.logger.info("Auto-stopped session %s for user %s: %s", session.id, session.user_id, reason)
        return True

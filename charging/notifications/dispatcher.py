"""Notification dispatcher interface and the fire-and-forget gateway around it."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Set

from charging.models import ChargingSession, SessionStatus
from infrastructure import constants


class NotificationDispatcher(ABC):
    """Delivery channel for queue and session notifications."""

    @abstractmethod
    async def notify_progress(self, user_id: str, station_id: int, position: int, wait_minutes: int) -> None:
        """Tell a waiting user their current position and estimated wait."""

    @abstractmethod
    async def notify_promotion(self, user_id: str, station_id: int, new_position: int) -> None:
        """Tell a user they were promoted and now hold a reservation."""

    @abstractmethod
    async def notify_reservation_warning(self, user_id: str, station_id: int, minutes_left: int) -> None:
        """Warn a user that their reservation is about to lapse."""

    @abstractmethod
    async def notify_reservation_expired(self, user_id: str, station_id: int) -> None:
        """Tell a user their reservation lapsed and the slot moved on."""

    @abstractmethod
    async def notify_anomaly(self, user_id: str, session: ChargingSession, status: SessionStatus) -> None:
        """Report a charging anomaly without stopping the session."""


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Dispatcher that only writes log lines; used when no chat channel is configured."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger('NotificationDispatcher')

    async def notify_progress(self, user_id, station_id, position, wait_minutes):
        self.logger.info(
            "Progress for user %s at station %s: position %s, ~%s min",
            user_id, station_id, position, wait_minutes,
        )

    async def notify_promotion(self, user_id, station_id, new_position):
        self.logger.info(
            "Promotion for user %s at station %s: position %s",
            user_id, station_id, new_position,
        )

    async def notify_reservation_warning(self, user_id, station_id, minutes_left):
        self.logger.info(
            "Reservation warning for user %s at station %s: %s min left",
            user_id, station_id, minutes_left,
        )

    async def notify_reservation_expired(self, user_id, station_id):
        self.logger.info("Reservation expired for user %s at station %s", user_id, station_id)

    async def notify_anomaly(self, user_id, session, status):
        self.logger.warning(
            "Charging anomaly for user %s session %s: rate %.2f (expected %.2f)",
            user_id, session.id, status.charging_rate, session.expected_charging_rate,
        )


class NotificationGateway:
    """
    Fire-and-forget front for a :class:`NotificationDispatcher`.

    Every ``notify_*`` call returns immediately; delivery runs as a background
    task bounded by ``timeout_seconds``. Failures and timeouts are logged and
    never reach the caller.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        *,
        timeout_seconds: float = constants.EXTERNAL_CALL_TIMEOUT_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.timeout_seconds = timeout_seconds
        self.logger = logger or logging.getLogger('NotificationGateway')
        self._pending: Set[asyncio.Task] = set()
        self.sent = 0
        self.failed = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def notify_progress(self, user_id: str, station_id: int, position: int, wait_minutes: int) -> None:
        self._fire('notify_progress', user_id, station_id, position, wait_minutes)

    def notify_promotion(self, user_id: str, station_id: int, new_position: int) -> None:
        self._fire('notify_promotion', user_id, station_id, new_position)

    def notify_reservation_warning(self, user_id: str, station_id: int, minutes_left: int) -> None:
        self._fire('notify_reservation_warning', user_id, station_id, minutes_left)

    def notify_reservation_expired(self, user_id: str, station_id: int) -> None:
        self._fire('notify_reservation_expired', user_id, station_id)

    def notify_anomaly(self, user_id: str, session: ChargingSession, status: SessionStatus) -> None:
        self._fire('notify_anomaly', user_id, session, status)

    async def drain(self) -> None:
        """Wait for every in-flight delivery to finish."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _fire(self, method: str, *args: Any) -> None:
        task = asyncio.create_task(self._deliver(method, *args), name=f"notify-{method}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, method: str, *args: Any) -> None:
        try:
            await asyncio.wait_for(
                getattr(self.dispatcher, method)(*args),
                timeout=self.timeout_seconds,
            )
            self.sent += 1
        except asyncio.TimeoutError:
            self.failed += 1
            self.logger.warning(
                "Notification %s for %s timed out after %ss",
                method, args[0] if args else '?', self.timeout_seconds,
            )
        except Exception as exc:
            self.failed += 1
            self.logger.warning(
                "Notification %s for %s failed: %s",
                method, args[0] if args else '?', exc,
            )

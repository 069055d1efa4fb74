"""Telegram delivery channel for queue notifications."""

from __future__ import annotations

import logging
from typing import Optional

from telegram import Bot
from telegram.error import TelegramError

from charging.models import ChargingSession, SessionStatus
from charging.notifications.dispatcher import NotificationDispatcher


class TelegramNotificationDispatcher(NotificationDispatcher):
    """Send plain-text notifications to users whose ``user_id`` is a Telegram chat id."""

    def __init__(self, bot: Bot, *, logger: Optional[logging.Logger] = None) -> None:
        self.bot = bot
        self.logger = logger or logging.getLogger('TelegramNotificationDispatcher')

    @classmethod
    def from_token(cls, token: str) -> "TelegramNotificationDispatcher":
        return cls(Bot(token=token))

    async def notify_progress(self, user_id, station_id, position, wait_minutes):
        await self._send(
            user_id,
            f"Station {station_id}: you are now #{position} in line (about {wait_minutes} min).",
        )

    async def notify_promotion(self, user_id, station_id, new_position):
        await self._send(
            user_id,
            f"Station {station_id}: a slot is reserved for you (position {new_position}). "
            "Start charging before the reservation lapses.",
        )

    async def notify_reservation_warning(self, user_id, station_id, minutes_left):
        await self._send(
            user_id,
            f"Station {station_id}: your reservation expires in {minutes_left} min.",
        )

    async def notify_reservation_expired(self, user_id, station_id):
        await self._send(
            user_id,
            f"Station {station_id}: your reservation expired and the slot was released.",
        )

    async def notify_anomaly(self, user_id, session: ChargingSession, status: SessionStatus):
        await self._send(
            user_id,
            f"Session {session.id}: charging at {status.charging_rate:.1f} kW, "
            f"expected {session.expected_charging_rate:.1f} kW. Please check the connector.",
        )

    async def _send(self, user_id: str, text: str) -> None:
        try:
            await self.bot.send_message(chat_id=user_id, text=text)
        except TelegramError as exc:
            self.logger.error("Telegram delivery to %s failed: %s", user_id, exc)
            raise
        self.logger.debug("Telegram message delivered to %s", user_id)

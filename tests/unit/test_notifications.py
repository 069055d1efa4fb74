import asyncio

import pytest
from telegram.error import TelegramError

from charging.models import ChargingSession, SessionStatus
from charging.notifications import LoggingNotificationDispatcher, NotificationGateway
from charging.notifications.telegram_dispatcher import TelegramNotificationDispatcher
from tests.helpers import DummyLogger, RecordingDispatcher


class FakeBot:
    def __init__(self, fail=False):
        self.messages = []
        self.fail = fail

    async def send_message(self, chat_id, text):
        if self.fail:
            raise TelegramError("chat not found")
        self.messages.append((chat_id, text))


class SlowDispatcher(RecordingDispatcher):
    async def notify_progress(self, user_id, station_id, position, wait_minutes):
        await asyncio.sleep(5)


@pytest.mark.asyncio
async def test_gateway_delivers_in_background():
    dispatcher = RecordingDispatcher()
    gateway = NotificationGateway(dispatcher, timeout_seconds=1.0, logger=DummyLogger())

    gateway.notify_promotion("A", 1, 1)
    gateway.notify_reservation_expired("B", 1)
    assert gateway.pending_count == 2

    await gateway.drain()

    assert sorted(dispatcher.sent) == [("expired", "B", 1), ("promotion", "A", 1, 1)]
    assert gateway.sent == 2
    assert gateway.pending_count == 0


@pytest.mark.asyncio
async def test_gateway_swallows_dispatch_failures():
    logger = DummyLogger()
    gateway = NotificationGateway(RecordingDispatcher(fail=True), timeout_seconds=1.0, logger=logger)

    gateway.notify_progress("A", 1, 2, 50)
    await gateway.drain()

    assert gateway.failed == 1
    assert logger.levels() == ["warning"]


@pytest.mark.asyncio
async def test_gateway_bounds_slow_dispatch_with_timeout():
    gateway = NotificationGateway(SlowDispatcher(), timeout_seconds=0.05, logger=DummyLogger())

    gateway.notify_progress("A", 1, 2, 50)
    await gateway.drain()

    assert gateway.failed == 1
    assert gateway.sent == 0


@pytest.mark.asyncio
async def test_telegram_dispatcher_sends_to_chat_id():
    bot = FakeBot()
    dispatcher = TelegramNotificationDispatcher(bot, logger=DummyLogger())

    await dispatcher.notify_progress("12345", 2, 3, 95)
    await dispatcher.notify_reservation_warning("12345", 2, 4)
    await dispatcher.notify_anomaly(
        "12345",
        ChargingSession(id="s1", user_id="12345", station_id=2, expected_charging_rate=22.0),
        SessionStatus(current_battery_level=30.0, charging_rate=7.5),
    )

    assert [chat_id for chat_id, _ in bot.messages] == ["12345"] * 3
    assert "#3" in bot.messages[0][1]
    assert "4 min" in bot.messages[1][1]
    assert "7.5" in bot.messages[2][1]


@pytest.mark.asyncio
async def test_telegram_failure_surfaces_through_gateway_counters():
    logger = DummyLogger()
    dispatcher = TelegramNotificationDispatcher(FakeBot(fail=True), logger=logger)
    gateway = NotificationGateway(dispatcher, timeout_seconds=1.0, logger=DummyLogger())

    with pytest.raises(TelegramError):
        await dispatcher.notify_promotion("1", 1, 1)

    gateway.notify_promotion("1", 1, 1)
    await gateway.drain()
    assert gateway.failed == 1
    assert "error" in logger.levels()


@pytest.mark.asyncio
async def test_logging_dispatcher_only_logs():
    logger = DummyLogger()
    dispatcher = LoggingNotificationDispatcher(logger)

    await dispatcher.notify_promotion("A", 1, 1)
    await dispatcher.notify_reservation_expired("A", 1)

    assert logger.messages == [
        ("info", "Promotion for user A at station 1: position 1"),
        ("info", "Reservation expired for user A at station 1"),
    ]

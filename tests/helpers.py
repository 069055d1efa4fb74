"""Shared fakes and utilities for unit tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

import pytz

from charging.models import ChargingSession, SessionStatus, Station
from charging.notifications import NotificationDispatcher, NotificationGateway
from charging.queue import InMemoryQueueStore, PositionRebalancer, QueueService


class DummyLogger:
    """Lightweight stand-in for ``logging.Logger`` that records calls."""

    def __init__(self) -> None:
        self.records: List[Tuple[str, Tuple[Any, ...], Dict[str, Any]]] = []

    def _record(self, level: str, *args: Any, **kwargs: Any) -> None:
        self.records.append((level, args, kwargs))

    def debug(self, *args: Any, **kwargs: Any) -> None:
        self._record("debug", *args, **kwargs)

    def info(self, *args: Any, **kwargs: Any) -> None:
        self._record("info", *args, **kwargs)

    def warning(self, *args: Any, **kwargs: Any) -> None:
        self._record("warning", *args, **kwargs)

    def error(self, *args: Any, **kwargs: Any) -> None:
        self._record("error", *args, **kwargs)

    def critical(self, *args: Any, **kwargs: Any) -> None:
        self._record("critical", *args, **kwargs)

    def exception(self, *args: Any, **kwargs: Any) -> None:
        self._record("exception", *args, **kwargs)

    @property
    def messages(self) -> List[Tuple[str, Any]]:
        """Return formatted messages for quick assertions."""

        formatted: List[Tuple[str, Any]] = []
        for level, args, kwargs in self.records:
            message: Any = kwargs.get("msg")
            if args:
                template = args[0]
                if isinstance(template, str) and len(args) > 1:
                    try:
                        message = template % args[1:]
                    except (TypeError, ValueError):
                        message = template
                else:
                    message = template
            formatted.append((level, message))
        return formatted

    def levels(self) -> List[str]:
        return [level for level, _, _ in self.records]

    def clear(self) -> None:
        self.records.clear()


class FakeClock:
    """Manually advanced clock returning timezone-aware UTC datetimes."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2025, 3, 10, 9, 0, tzinfo=pytz.UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingDispatcher(NotificationDispatcher):
    """Dispatcher that records every notification as ``(kind, user_id, *details)``."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: List[Tuple[Any, ...]] = []
        self.fail = fail

    async def _record(self, *event: Any) -> None:
        if self.fail:
            raise RuntimeError("delivery failed")
        self.sent.append(event)

    async def notify_progress(self, user_id, station_id, position, wait_minutes):
        await self._record("progress", user_id, station_id, position, wait_minutes)

    async def notify_promotion(self, user_id, station_id, new_position):
        await self._record("promotion", user_id, station_id, new_position)

    async def notify_reservation_warning(self, user_id, station_id, minutes_left):
        await self._record("warning", user_id, station_id, minutes_left)

    async def notify_reservation_expired(self, user_id, station_id):
        await self._record("expired", user_id, station_id)

    async def notify_anomaly(self, user_id, session: ChargingSession, status: SessionStatus):
        await self._record("anomaly", user_id, session.id)

    def kinds(self, kind: str) -> List[Tuple[Any, ...]]:
        return [event for event in self.sent if event[0] == kind]


class RecordingSleep:
    """Async ``sleep`` replacement that records requested delays and returns immediately."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_station(station_id: int = 1, **overrides: Any) -> Station:
    return Station(id=station_id, name=f"Station {station_id}", **overrides)


def build_engine(stations=None, *, clock: Optional[FakeClock] = None, dispatcher=None):
    """Wire a store, notifier, rebalancer and queue service around fakes."""

    clock = clock or FakeClock()
    dispatcher = dispatcher or RecordingDispatcher()
    store = InMemoryQueueStore(stations if stations is not None else [make_station(1)], logger=DummyLogger())
    notifier = NotificationGateway(dispatcher, timeout_seconds=1.0, logger=DummyLogger())
    rebalancer = PositionRebalancer(store, notifier, clock=clock, logger=DummyLogger())
    service = QueueService(
        store,
        notifier,
        rebalancer=rebalancer,
        clock=clock,
        logger=DummyLogger(),
    )
    return SimpleNamespace(
        store=store,
        notifier=notifier,
        rebalancer=rebalancer,
        service=service,
        clock=clock,
        dispatcher=dispatcher,
    )

"""Dependency wiring for the charging queue runtime."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from charging.clock import Clock, utc_now
from charging.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    NotificationGateway,
)
from charging.queue import (
    ExpiryMonitor,
    InMemoryQueueStore,
    JsonQueueStore,
    PositionRebalancer,
    QueueService,
)
from charging.scheduler import QueueMaintenance, QueueScheduler
from charging.sessions import InMemorySessionGateway, SessionMonitor
from infrastructure.errors import ValidationError
from infrastructure.settings import AppSettings


@dataclass(frozen=True)
class ChargingDependencies:
    """Concrete dependency snapshot for the charging queue runtime."""

    settings: AppSettings
    store: Any
    notifier: NotificationGateway
    rebalancer: PositionRebalancer
    queue_service: QueueService
    expiry_monitor: ExpiryMonitor
    session_gateway: Any
    session_monitor: SessionMonitor
    maintenance: QueueMaintenance
    scheduler: QueueScheduler

    def as_dict(self) -> Dict[str, Any]:
        """Return dependencies as a mapping keyed by attribute name."""

        return {
            'settings': self.settings,
            'store': self.store,
            'notifier': self.notifier,
            'rebalancer': self.rebalancer,
            'queue_service': self.queue_service,
            'expiry_monitor': self.expiry_monitor,
            'session_gateway': self.session_gateway,
            'session_monitor': self.session_monitor,
            'maintenance': self.maintenance,
            'scheduler': self.scheduler,
        }


def build_store(settings: AppSettings):
    backend = settings.store_backend
    if backend == 'memory':
        return InMemoryQueueStore()
    if backend == 'json':
        return JsonQueueStore(settings.queue_file, settings.stations_file)
    raise ValidationError(f"Unknown queue store backend {backend!r}; expected 'json' or 'memory'")


def build_dispatcher(settings: AppSettings) -> NotificationDispatcher:
    logger = logging.getLogger('NotificationDispatcher')
    if not settings.telegram_bot_token:
        logger.info("TELEGRAM_BOT_TOKEN not set; notifications will only be logged")
        return LoggingNotificationDispatcher(logger)

    from charging.notifications.telegram_dispatcher import TelegramNotificationDispatcher

    return TelegramNotificationDispatcher.from_token(settings.telegram_bot_token)


def build_dependencies(
    settings: AppSettings,
    *,
    store: Optional[Any] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    session_gateway: Optional[Any] = None,
    clock: Clock = utc_now,
) -> ChargingDependencies:
    """Build the component graph, honouring explicit overrides."""

    store = store if store is not None else build_store(settings)
    notifier = NotificationGateway(
        dispatcher if dispatcher is not None else build_dispatcher(settings),
        timeout_seconds=settings.external_call_timeout_seconds,
    )
    rebalancer = PositionRebalancer(
        store,
        notifier,
        clock=clock,
        grace_minutes=settings.stalled_grace_minutes,
        reservation_minutes=settings.reservation_minutes,
    )
    queue_service = QueueService(
        store,
        notifier,
        rebalancer=rebalancer,
        clock=clock,
        reservation_minutes=settings.reservation_minutes,
        display_timezone=settings.timezone,
    )
    expiry_monitor = ExpiryMonitor(store, queue_service, clock=clock)
    session_gateway = session_gateway if session_gateway is not None else InMemorySessionGateway()
    session_monitor = SessionMonitor(
        session_gateway,
        notifier,
        clock=clock,
        anomaly_ratio=settings.anomaly_rate_ratio,
        max_session_minutes=settings.max_session_minutes,
        timeout_seconds=settings.external_call_timeout_seconds,
    )
    maintenance = QueueMaintenance(
        store,
        queue_service,
        notifier,
        clock=clock,
        progress_reminder_max_position=settings.progress_reminder_max_position,
        reservation_warning_minutes=settings.reservation_warning_minutes,
        analytics_cache_ttl_seconds=settings.analytics_cache_ttl_seconds,
    )
    scheduler = QueueScheduler(
        store=store,
        expiry_monitor=expiry_monitor,
        rebalancer=rebalancer,
        session_monitor=session_monitor,
        maintenance=maintenance,
        intervals=settings.process_intervals(),
        clock=clock,
        task_backoff_base_seconds=settings.task_backoff_base_seconds,
        shutdown_grace_seconds=settings.shutdown_grace_seconds,
    )

    return ChargingDependencies(
        settings=settings,
        store=store,
        notifier=notifier,
        rebalancer=rebalancer,
        queue_service=queue_service,
        expiry_monitor=expiry_monitor,
        session_gateway=session_gateway,
        session_monitor=session_monitor,
        maintenance=maintenance,
        scheduler=scheduler,
    )

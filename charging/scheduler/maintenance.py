"""
Queue maintenance sweeps run by the scheduler: reminder notifications,
analytics refresh, availability promotion and the performance snapshot.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional, Tuple

import psutil

from charging.clock import Clock, utc_now
from charging.models import QueueEntry, QueueStatus
from charging.notifications import NotificationGateway
from infrastructure import constants
from infrastructure.errors import ConflictError, NotFoundError

IN_QUEUE_STATUSES = frozenset({QueueStatus.WAITING, QueueStatus.RESERVED})


class QueueMaintenance:
    """
    Periodic sweeps that keep users informed and derived station data fresh.

    Attributes:
        analytics_cache: station id -> (computed_at, QueueStats)
    """

    def __init__(
        self,
        store,
        queue_service,
        notifier: NotificationGateway,
        *,
        clock: Clock = utc_now,
        progress_reminder_max_position: int = constants.PROGRESS_REMINDER_MAX_POSITION,
        reservation_warning_minutes: int = constants.RESERVATION_WARNING_MINUTES,
        analytics_cache_ttl_seconds: int = constants.ANALYTICS_CACHE_TTL_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.queue_service = queue_service
        self.notifier = notifier
        self.clock = clock
        self.progress_reminder_max_position = progress_reminder_max_position
        self.reservation_warning = timedelta(minutes=reservation_warning_minutes)
        self.analytics_cache_ttl = timedelta(seconds=analytics_cache_ttl_seconds)
        self.logger = logger or logging.getLogger('QueueMaintenance')
        self.analytics_cache: Dict[int, Tuple[datetime, Any]] = {}
        self._process = psutil.Process()

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def send_notifications(self) -> int:
        """Send one progress reminder near the front and one warning before a hold lapses."""

        sent = 0
        for station in await self.store.list_stations(active_only=True):
            entries = await self.store.get_queue_entries(station.id, IN_QUEUE_STATUSES)
            for entry in entries:
                if entry.reminder_sent:
                    continue
                try:
                    if await self._remind(entry):
                        sent += 1
                except (ConflictError, NotFoundError) as exc:
                    self.logger.debug("Reminder for %s skipped: %s", entry.id, exc)
                except Exception as exc:
                    self.logger.error("Error sending reminder for entry %s: %s", entry.id, exc)

        if sent:
            self.logger.info("Sent %s queue reminders", sent)
        return sent

    async def _remind(self, entry: QueueEntry) -> bool:
        now = self.clock()

        if entry.status is QueueStatus.WAITING:
            if entry.position > self.progress_reminder_max_position:
                return False
            await self._mark_reminded(entry, now)
            self.notifier.notify_progress(
                entry.user_id,
                entry.station_id,
                entry.position,
                entry.estimated_wait_minutes or 0,
            )
            return True

        remaining = entry.reservation_expiry - now
        if remaining <= timedelta(0) or remaining > self.reservation_warning:
            return False
        await self._mark_reminded(entry, now)
        self.notifier.notify_reservation_warning(
            entry.user_id,
            entry.station_id,
            math.ceil(remaining.total_seconds() / 60),
        )
        return True

    async def _mark_reminded(self, entry: QueueEntry, now: datetime) -> None:
        await self.store.update_entry(
            entry.id,
            entry.status,
            {'reminder_sent': True, 'updated_at': now},
            expected_updated_at=entry.updated_at,
        )

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    async def refresh_analytics(self) -> int:
        """Refresh each active station's queue length and cache its statistics."""

        refreshed = 0
        for station in await self.store.list_stations(active_only=True):
            try:
                in_queue = await self.store.get_queue_entries(station.id, IN_QUEUE_STATUSES)
                await self.store.update_station_derived(
                    station.id, {'current_queue_length': len(in_queue)}
                )
                stats = await self.queue_service.get_queue_stats(station.id)
                if stats is not None:
                    self.analytics_cache[station.id] = (self.clock(), stats)
                refreshed += 1
            except Exception as exc:
                self.logger.error("Error generating analytics for station %s: %s", station.id, exc)

        self.logger.debug("Refreshed analytics for %s stations", refreshed)
        return refreshed

    def evict_stale_analytics(self) -> int:
        cutoff = self.clock() - self.analytics_cache_ttl
        stale = [
            station_id
            for station_id, (computed_at, _) in self.analytics_cache.items()
            if computed_at < cutoff
        ]
        for station_id in stale:
            del self.analytics_cache[station_id]
        return len(stale)

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def promote_available(self) -> int:
        """Hand free slots to waiting heads that have not been promoted yet."""

        promoted = 0
        for station in await self.store.list_stations(active_only=True):
            if not station.has_free_slot:
                continue
            try:
                waiting = await self.store.get_queue_entries(station.id, {QueueStatus.WAITING})
                if not waiting or waiting[0].position != 1:
                    continue
                if await self.queue_service.promote_next(station.id):
                    promoted += 1
            except Exception as exc:
                self.logger.error("Error checking availability at station %s: %s", station.id, exc)

        if promoted:
            self.logger.info("Promoted waiting users at %s stations with free slots", promoted)
        return promoted

    # ------------------------------------------------------------------
    # Performance
    # ------------------------------------------------------------------

    async def report_performance(self, extra: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Log a metrics snapshot and drop stale analytics entries."""

        active_queues = 0
        for station in await self.store.list_stations(active_only=True):
            if await self.store.get_queue_entries(station.id, IN_QUEUE_STATUSES):
                active_queues += 1

        memory = self._process.memory_info()
        metrics: Dict[str, Any] = {
            'active_queues': active_queues,
            'rss_mb': round(memory.rss / (1024 * 1024), 2),
            'cpu_percent': self._process.cpu_percent(interval=None),
            'analytics_cached': len(self.analytics_cache),
        }
        metrics.update(extra or {})
        evicted = self.evict_stale_analytics()
        metrics['analytics_evicted'] = evicted

        self.logger.info(
            "PERFORMANCE SNAPSHOT\n%s",
            "\n".join(f"        {key}: {value}" for key, value in metrics.items()),
        )
        return metrics

"""
Position Rebalancer

Restores the contiguous ``1..N`` ordering of a station's active entries and
recovers reservations that stalled at the head of the line. Safe to run any
number of times and concurrently with every other queue operation: each row
is rewritten through a conditional update against the snapshot it was read
from, and a lost race simply leaves the row for the next pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from charging.clock import Clock, utc_now
from charging.models import ACTIVE_STATUSES, QueueEntry, QueueStatus, Station
from charging.notifications import NotificationGateway
from charging.queue.estimates import estimate_wait_minutes
from charging.queue.queue_transitions import cancel_fields, reserve_fields, transition_fields
from infrastructure import constants
from infrastructure.errors import ConflictError, NotFoundError


@dataclass
class RebalanceResult:
    """What a single rebalance pass changed at one station."""

    station_id: int
    position_updates: int = 0
    demoted: int = 0
    expired_user: Optional[str] = None
    promoted_user: Optional[str] = None
    moved: List[QueueEntry] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(
            self.position_updates or self.demoted or self.expired_user or self.promoted_user
        )


class PositionRebalancer:
    """Recompute queue positions and recover stalled head-of-line reservations."""

    def __init__(
        self,
        store,
        notifier: NotificationGateway,
        *,
        clock: Clock = utc_now,
        grace_minutes: int = constants.STALLED_RESERVATION_GRACE_MINUTES,
        reservation_minutes: int = constants.DEFAULT_RESERVATION_MINUTES,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.grace = timedelta(minutes=grace_minutes)
        self.reservation_minutes = reservation_minutes
        self.logger = logger or logging.getLogger('PositionRebalancer')

    async def rebalance(self, station_id: int) -> RebalanceResult:
        """Run stall recovery, position compaction and stall promotion for one station."""

        result = RebalanceResult(station_id=station_id)
        station = await self.store.get_station(station_id)

        await self._recover_stalled_head(station_id, result)
        await self._compact_positions(station_id, station, result)
        if result.expired_user is not None:
            await self._promote_head(station_id, station, result)

        if result.changed:
            self.logger.info(
                "Rebalanced station %s: %s position updates, %s demoted, expired=%s, promoted=%s",
                station_id,
                result.position_updates,
                result.demoted,
                result.expired_user,
                result.promoted_user,
            )
        return result

    async def rebalance_all(self) -> List[RebalanceResult]:
        """Rebalance every active station, isolating failures per station."""

        results = []
        stations = await self.store.list_stations(active_only=True)
        for station in stations:
            try:
                results.append(await self.rebalance(station.id))
            except Exception as exc:
                self.logger.error("Rebalance failed for station %s: %s", station.id, exc, exc_info=True)

        changed = sum(1 for result in results if result.changed)
        if changed:
            self.logger.info("Optimized %s/%s station queues", changed, len(stations))
        return results

    async def _recover_stalled_head(self, station_id: int, result: RebalanceResult) -> None:
        active = await self.store.get_queue_entries(station_id, ACTIVE_STATUSES)
        if not active:
            return

        head = active[0]
        if head.status is not QueueStatus.RESERVED or head.reservation_expiry is None:
            return

        now = self.clock()
        if now - head.reservation_expiry <= self.grace:
            return

        try:
            await self.store.update_entry(
                head.id,
                QueueStatus.RESERVED,
                cancel_fields(head, now, constants.REASON_EXPIRED),
                expected_updated_at=head.updated_at,
            )
        except (ConflictError, NotFoundError) as exc:
            self.logger.debug("Stalled head %s changed underneath recovery: %s", head.id, exc)
            return

        result.expired_user = head.user_id
        self.logger.warning(f"""STALLED RESERVATION RECOVERED
        Station: {station_id}
        User ID: {head.user_id}
        Entry ID: {head.id}
        Expired at: {head.reservation_expiry.isoformat()}
        Overdue by: {now - head.reservation_expiry}
        """)
        self.notifier.notify_reservation_expired(head.user_id, station_id)

    async def _compact_positions(
        self,
        station_id: int,
        station: Optional[Station],
        result: RebalanceResult,
    ) -> None:
        active = await self.store.get_queue_entries(station_id, ACTIVE_STATUSES)
        average_minutes = (
            station.average_session_minutes
            if station is not None
            else constants.DEFAULT_AVERAGE_SESSION_MINUTES
        )

        for index, entry in enumerate(active):
            target = index + 1
            if entry.position == target:
                continue
            now = self.clock()
            try:
                updated = await self.store.update_entry(
                    entry.id,
                    entry.status,
                    {
                        'position': target,
                        'estimated_wait_minutes': estimate_wait_minutes(target, average_minutes),
                        'updated_at': now,
                    },
                    expected_updated_at=entry.updated_at,
                )
            except (ConflictError, NotFoundError) as exc:
                self.logger.debug("Skipping position rewrite for %s: %s", entry.id, exc)
                continue
            except Exception as exc:
                self.logger.error("Position rewrite failed for %s: %s", entry.id, exc)
                continue

            result.position_updates += 1
            result.moved.append(updated)
            if updated.status is QueueStatus.WAITING:
                self.notifier.notify_progress(
                    updated.user_id,
                    station_id,
                    target,
                    updated.estimated_wait_minutes,
                )

        await self._demote_misplaced_reservations(station_id, result)

    async def _demote_misplaced_reservations(self, station_id: int, result: RebalanceResult) -> None:
        """A live reservation may only sit at position 1; anything else goes back to waiting."""

        reserved = await self.store.get_queue_entries(station_id, {QueueStatus.RESERVED})
        for entry in reserved:
            if entry.position == 1:
                continue
            try:
                await self.store.update_entry(
                    entry.id,
                    QueueStatus.RESERVED,
                    transition_fields(entry, QueueStatus.WAITING, self.clock()),
                    expected_updated_at=entry.updated_at,
                )
            except (ConflictError, NotFoundError) as exc:
                self.logger.debug("Skipping demotion of %s: %s", entry.id, exc)
                continue
            result.demoted += 1
            self.logger.warning(
                "Reservation %s for user %s sat at position %s; returned to waiting",
                entry.id,
                entry.user_id,
                entry.position,
            )

    async def _promote_head(
        self,
        station_id: int,
        station: Optional[Station],
        result: RebalanceResult,
    ) -> None:
        if station is None or not station.has_free_slot:
            return

        active = await self.store.get_queue_entries(station_id, ACTIVE_STATUSES)
        head = active[0] if active else None
        if head is None or head.status is not QueueStatus.WAITING or head.position != 1:
            return

        try:
            await self.store.update_entry(
                head.id,
                QueueStatus.WAITING,
                reserve_fields(head, self.clock(), self.reservation_minutes),
                expected_updated_at=head.updated_at,
            )
        except (ConflictError, NotFoundError) as exc:
            self.logger.debug("Promotion of %s lost a race: %s", head.id, exc)
            return

        result.promoted_user = head.user_id
        self.logger.info("Auto-promoted user %s at station %s", head.user_id, station_id)
        self.notifier.notify_promotion(head.user_id, station_id, 1)

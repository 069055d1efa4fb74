"""
Queue Service Module

This module provides the QueueService class, the state machine behind a
station's waiting line: joining, reserving the head-of-line slot, promoting,
leaving, and the charging start/complete transitions.

Every public operation resolves to a plain return value (bool, ``None`` or a
result object) and logs the failure instead of raising, so callers decide how
to present a rejection.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional

import pytz

from charging.clock import Clock, utc_now
from charging.models import ACTIVE_STATUSES, QueueEntry, QueueStatus
from charging.notifications import NotificationGateway
from charging.queue.estimates import estimate_wait_minutes
from charging.queue.queue_transitions import cancel_fields, reserve_fields, transition_fields
from charging.queue.queue_validation import (
    ensure_single_active_entry,
    validate_identifiers,
    validate_leave_reason,
)
from charging.queue.rebalancer import PositionRebalancer
from infrastructure import constants
from infrastructure.errors import ConflictError, NotFoundError, QueueError, ValidationError


@dataclass(frozen=True)
class JoinResult:
    """Outcome of :meth:`QueueService.join`; ``error`` is set when the join was rejected."""

    position: Optional[int] = None
    estimated_wait_minutes: Optional[int] = None
    entry: Optional[QueueEntry] = None
    error: Optional[QueueError] = None

    @property
    def accepted(self) -> bool:
        return self.error is None and self.entry is not None

    def __bool__(self) -> bool:
        return self.accepted


@dataclass(frozen=True)
class QueueStats:
    """Aggregated queue figures for a single station."""

    station_id: int
    total_in_queue: int
    average_wait_minutes: float
    peak_hours: List[str]


class QueueService:
    """
    Manages queue entries for every station.

    Attributes:
        store: Queue store shared with the scheduler processes
        notifier (NotificationGateway): Fire-and-forget notification front
        rebalancer (PositionRebalancer): Run synchronously after removals
        logger (logging.Logger): Logger instance for this class
    """

    def __init__(
        self,
        store,
        notifier: NotificationGateway,
        *,
        rebalancer: Optional[PositionRebalancer] = None,
        clock: Clock = utc_now,
        reservation_minutes: int = constants.DEFAULT_RESERVATION_MINUTES,
        display_timezone: str = 'UTC',
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.reservation_minutes = reservation_minutes
        self.display_timezone = pytz.timezone(display_timezone)
        self.logger = logger or logging.getLogger('QueueService')
        self.rebalancer = rebalancer or PositionRebalancer(
            store,
            notifier,
            clock=clock,
            reservation_minutes=reservation_minutes,
        )

    # ------------------------------------------------------------------
    # Joining
    # ------------------------------------------------------------------

    async def join(self, user_id, station_id) -> JoinResult:
        """
        Append a user to a station's waiting line.

        Args:
            user_id: Caller identifier (chat id)
            station_id: Target station

        Returns:
            JoinResult: position and wait estimate, or the rejection error
        """
        try:
            user_id, station_id = validate_identifiers(user_id, station_id)

            station = await self.store.get_station(station_id)
            if station is None:
                raise NotFoundError(f"Station {station_id} not found")
            if not station.accepts_queue:
                raise ConflictError(
                    f"Station {station_id} is not accepting queue entries "
                    f"(active={station.is_active}, open={station.is_open})"
                )

            existing = await self.store.find_entries(user_id=user_id, statuses=ACTIVE_STATUSES)
            ensure_single_active_entry(
                existing,
                user_id=user_id,
                station_id=station_id,
                logger=self.logger,
            )

            entry = None
            for attempt in range(1, constants.JOIN_POSITION_ATTEMPTS + 1):
                active = await self.store.get_queue_entries(station_id, ACTIVE_STATUSES)
                if len(active) >= station.max_queue_length:
                    raise ConflictError(
                        f"Queue at station {station_id} is full ({len(active)}/{station.max_queue_length})"
                    )

                position = max((item.position for item in active), default=0) + 1
                now = self.clock()
                candidate = QueueEntry(
                    user_id=user_id,
                    station_id=station_id,
                    position=position,
                    created_at=now,
                    updated_at=now,
                    estimated_wait_minutes=estimate_wait_minutes(
                        position, station.average_session_minutes
                    ),
                )
                try:
                    entry = await self.store.insert_entry(candidate)
                    break
                except ConflictError:
                    # A same-user conflict is final; a position collision gets a fresh read.
                    raced = await self.store.find_entries(user_id=user_id, statuses=ACTIVE_STATUSES)
                    ensure_single_active_entry(
                        raced,
                        user_id=user_id,
                        station_id=station_id,
                        logger=self.logger,
                    )
                    if attempt == constants.JOIN_POSITION_ATTEMPTS:
                        raise
                    self.logger.debug(
                        "Position %s at station %s taken concurrently; retrying join",
                        position,
                        station_id,
                    )

        except QueueError as exc:
            self.logger.warning("Join rejected for user %s at station %s: %s", user_id, station_id, exc)
            return JoinResult(error=exc)
        except Exception as exc:
            self.logger.error(
                "Failed to join queue for user %s at station %s: %s",
                user_id, station_id, exc, exc_info=True,
            )
            return JoinResult(error=QueueError(str(exc)))

        self.logger.info(f"""USER JOINED QUEUE
        User ID: {entry.user_id}
        Station: {entry.station_id}
        Entry ID: {entry.id}
        Position: {entry.position}
        Estimated wait: {entry.estimated_wait_minutes} min
        """)
        self.notifier.notify_progress(
            entry.user_id, entry.station_id, entry.position, entry.estimated_wait_minutes
        )
        return JoinResult(
            position=entry.position,
            estimated_wait_minutes=entry.estimated_wait_minutes,
            entry=entry,
        )

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    async def reserve_slot(self, user_id, station_id, duration_minutes: Optional[int] = None) -> bool:
        """
        Give the head of the line a time-boxed hold on a free slot.

        Only a waiting entry at position 1 at a station with a free slot
        qualifies.

        Returns:
            bool: True if the reservation was placed
        """
        try:
            user_id, station_id = validate_identifiers(user_id, station_id)
            duration = self.reservation_minutes if duration_minutes is None else duration_minutes
            if duration <= 0:
                raise ValidationError(f"Reservation duration must be positive, got {duration}")
            entry = await self._find_active_entry(user_id, station_id)
            if entry is None:
                self.logger.warning("No queue entry to reserve for user %s at station %s", user_id, station_id)
                return False
            if entry.status is not QueueStatus.WAITING or entry.position != 1:
                self.logger.warning(
                    "User %s not eligible for reservation at station %s (status=%s, position=%s)",
                    user_id, station_id, entry.status.value, entry.position,
                )
                return False

            station = await self.store.get_station(station_id)
            if station is None or not station.has_free_slot:
                self.logger.info("No free slot at station %s for user %s", station_id, user_id)
                return False

            updated = await self.store.update_entry(
                entry.id,
                QueueStatus.WAITING,
                reserve_fields(entry, self.clock(), duration),
                expected_updated_at=entry.updated_at,
            )
        except QueueError as exc:
            self.logger.warning("Reservation failed for user %s at station %s: %s", user_id, station_id, exc)
            return False
        except Exception as exc:
            self.logger.error(
                "Failed to reserve slot for user %s at station %s: %s",
                user_id, station_id, exc, exc_info=True,
            )
            return False

        self.logger.info(f"""SLOT RESERVED
        User ID: {updated.user_id}
        Station: {updated.station_id}
        Entry ID: {updated.id}
        Expires at: {updated.reservation_expiry.isoformat()}
        """)
        return True

    async def promote_next(self, station_id, duration_minutes: Optional[int] = None) -> bool:
        """Reserve the slot for the lowest-position waiting entry and tell them."""

        try:
            _, station_id = validate_identifiers('system', station_id)
            waiting = await self.store.get_queue_entries(station_id, {QueueStatus.WAITING})
        except Exception as exc:
            self.logger.error("Failed to load waiting entries for station %s: %s", station_id, exc)
            return False

        if not waiting:
            return False

        candidate = waiting[0]
        promoted = await self.reserve_slot(candidate.user_id, station_id, duration_minutes)
        if promoted:
            self.logger.info("Promoted user %s at station %s", candidate.user_id, station_id)
            self.notifier.notify_promotion(candidate.user_id, station_id, candidate.position)
        return promoted

    # ------------------------------------------------------------------
    # Leaving
    # ------------------------------------------------------------------

    async def leave_queue(self, user_id, station_id, reason: str = constants.REASON_USER_CANCELLED) -> bool:
        """
        Cancel a user's active entry and compact the line before returning.

        Args:
            reason: ``user_cancelled``, ``expired`` or ``admin``

        Returns:
            bool: True if an entry was cancelled by this call
        """
        try:
            user_id, station_id = validate_identifiers(user_id, station_id)
            validate_leave_reason(reason)
            entry = await self._find_active_entry(user_id, station_id)
            if entry is None:
                self.logger.warning("No active queue entry found to cancel for user %s at station %s", user_id, station_id)
                return False
            if entry.status is QueueStatus.CHARGING:
                self.logger.warning(
                    "User %s is charging at station %s; only a forced stop can end the session",
                    user_id, station_id,
                )
                return False

            await self.store.update_entry(
                entry.id,
                entry.status,
                cancel_fields(entry, self.clock(), reason),
                expected_updated_at=entry.updated_at,
            )
        except QueueError as exc:
            self.logger.warning("Leave failed for user %s at station %s: %s", user_id, station_id, exc)
            return False
        except Exception as exc:
            self.logger.error(
                "Failed to leave queue for user %s at station %s: %s",
                user_id, station_id, exc, exc_info=True,
            )
            return False

        self.logger.info(f"""USER LEFT QUEUE
        User ID: {user_id}
        Station: {station_id}
        Entry ID: {entry.id}
        Reason: {reason}
        Previous status: {entry.status.value}
        Previous position: {entry.position}
        """)
        if reason == constants.REASON_EXPIRED:
            self.notifier.notify_reservation_expired(user_id, station_id)

        await self._rebalance(station_id)
        return True

    async def force_stop(self, user_id, station_id) -> bool:
        """Cancel an entry that is mid-charge (administrative stop)."""

        try:
            user_id, station_id = validate_identifiers(user_id, station_id)
            entry = await self._find_active_entry(user_id, station_id)
            if entry is None or entry.status is not QueueStatus.CHARGING:
                self.logger.warning("No charging entry to stop for user %s at station %s", user_id, station_id)
                return False
            await self.store.update_entry(
                entry.id,
                QueueStatus.CHARGING,
                cancel_fields(entry, self.clock(), constants.REASON_ADMIN),
                expected_updated_at=entry.updated_at,
            )
        except QueueError as exc:
            self.logger.warning("Force stop failed for user %s at station %s: %s", user_id, station_id, exc)
            return False
        except Exception as exc:
            self.logger.error(
                "Failed to force stop user %s at station %s: %s",
                user_id, station_id, exc, exc_info=True,
            )
            return False

        self.logger.warning("Charging force-stopped for user %s at station %s", user_id, station_id)
        await self._rebalance(station_id)
        return True

    # ------------------------------------------------------------------
    # Charging
    # ------------------------------------------------------------------

    async def start_charging(self, user_id, station_id) -> bool:
        """Move a reserved (or waiting) entry into charging."""

        try:
            user_id, station_id = validate_identifiers(user_id, station_id)
            entry = await self._find_active_entry(user_id, station_id)
            if entry is None or entry.status not in (QueueStatus.RESERVED, QueueStatus.WAITING):
                self.logger.warning("No valid reservation found to start charging for user %s at station %s", user_id, station_id)
                return False

            await self.store.update_entry(
                entry.id,
                entry.status,
                transition_fields(entry, QueueStatus.CHARGING, self.clock()),
                expected_updated_at=entry.updated_at,
            )
        except QueueError as exc:
            self.logger.warning("Start charging failed for user %s at station %s: %s", user_id, station_id, exc)
            return False
        except Exception as exc:
            self.logger.error(
                "Failed to start charging for user %s at station %s: %s",
                user_id, station_id, exc, exc_info=True,
            )
            return False

        self.logger.info("Charging session started for user %s at station %s", user_id, station_id)
        return True

    async def complete_charging(self, user_id, station_id) -> bool:
        """Finish a charging entry, compact the line and hand the slot to the next user."""

        try:
            user_id, station_id = validate_identifiers(user_id, station_id)
            entry = await self._find_active_entry(user_id, station_id)
            if entry is None or entry.status is not QueueStatus.CHARGING:
                self.logger.warning("No active charging session found for user %s at station %s", user_id, station_id)
                return False

            await self.store.update_entry(
                entry.id,
                QueueStatus.CHARGING,
                transition_fields(entry, QueueStatus.COMPLETED, self.clock()),
                expected_updated_at=entry.updated_at,
            )
        except QueueError as exc:
            self.logger.warning("Complete charging failed for user %s at station %s: %s", user_id, station_id, exc)
            return False
        except Exception as exc:
            self.logger.error(
                "Failed to complete charging for user %s at station %s: %s",
                user_id, station_id, exc, exc_info=True,
            )
            return False

        self.logger.info("Charging session completed for user %s at station %s", user_id, station_id)
        await self._rebalance(station_id)
        await self.promote_next(station_id)
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_user_queue_status(self, user_id) -> List[QueueEntry]:
        """Return the user's active entries, newest first."""

        try:
            entries = await self.store.find_entries(user_id=str(user_id), statuses=ACTIVE_STATUSES)
        except Exception as exc:
            self.logger.error("Failed to get queue status for user %s: %s", user_id, exc)
            return []
        return sorted(entries, key=lambda entry: entry.created_at, reverse=True)

    async def get_queue_stats(self, station_id) -> Optional[QueueStats]:
        """Queue length, average estimated wait of completed entries, and top-3 join hours."""

        try:
            _, station_id = validate_identifiers('system', station_id)
            entries = await self.store.get_queue_entries(station_id)
        except Exception as exc:
            self.logger.error("Failed to get queue stats for station %s: %s", station_id, exc)
            return None

        in_queue = [
            entry for entry in entries
            if entry.status in (QueueStatus.WAITING, QueueStatus.RESERVED)
        ]
        completed_waits = [
            entry.estimated_wait_minutes for entry in entries
            if entry.status is QueueStatus.COMPLETED and entry.estimated_wait_minutes is not None
        ]
        average_wait = (
            sum(completed_waits) / len(completed_waits)
            if completed_waits
            else float(constants.DEFAULT_AVERAGE_SESSION_MINUTES)
        )

        hours = Counter(
            entry.created_at.astimezone(self.display_timezone).hour for entry in entries
        )
        peak_hours = [
            f"{hour}:00-{hour + 1}:00"
            for hour, _ in sorted(hours.items(), key=lambda item: (-item[1], item[0]))[:3]
        ]

        return QueueStats(
            station_id=station_id,
            total_in_queue=len(in_queue),
            average_wait_minutes=average_wait,
            peak_hours=peak_hours,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _find_active_entry(self, user_id: str, station_id: int) -> Optional[QueueEntry]:
        entries = await self.store.find_entries(
            user_id=user_id,
            station_id=station_id,
            statuses=ACTIVE_STATUSES,
        )
        return entries[0] if entries else None

    async def _rebalance(self, station_id: int) -> None:
        try:
            await self.rebalancer.rebalance(station_id)
        except Exception as exc:
            self.logger.error("Rebalance after removal failed for station %s: %s", station_id, exc, exc_info=True)

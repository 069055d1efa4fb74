"""
Queue Store

Holds queue entries and station slot counts. Every mutating method performs
its check and its write without suspending the event loop, so a single call
behaves like a single-row conditional UPDATE in a relational store: two
coroutines racing on the same entry can never both win.
"""

from __future__ import annotations

import logging
import os
from collections import Counter
from datetime import datetime
from typing import Any, Collection, Dict, Iterable, List, Mapping, Optional

from charging.models import QueueEntry, QueueStatus, Station
from charging.queue.queue_repository import JsonRecordRepository
from infrastructure.errors import ConflictError, NotFoundError, ValidationError

STATION_DERIVED_FIELDS = frozenset({'current_queue_length', 'available_slots', 'is_open'})


def _sort_key(entry: QueueEntry):
    return (entry.position, entry.created_at, entry.id)


class InMemoryQueueStore:
    """
    Transactional-enough store for queue entries and stations.

    Attributes:
        write_count (int): Number of successful entry/station writes, used to
            verify that convergence passes do not rewrite settled rows.
    """

    def __init__(
        self,
        stations: Iterable[Station] = (),
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger('QueueStore')
        self._entries: Dict[str, QueueEntry] = {}
        self._stations: Dict[int, Station] = {station.id: station for station in stations}
        self.write_count = 0

    async def ping(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # Queue entries
    # ------------------------------------------------------------------

    async def get_entry(self, entry_id: str) -> Optional[QueueEntry]:
        return self._entries.get(entry_id)

    async def get_queue_entries(
        self,
        station_id: int,
        statuses: Optional[Collection[QueueStatus]] = None,
    ) -> List[QueueEntry]:
        """Return a station's entries ordered by position then join time."""

        return await self.find_entries(station_id=station_id, statuses=statuses)

    async def find_entries(
        self,
        *,
        user_id: Optional[str] = None,
        station_id: Optional[int] = None,
        statuses: Optional[Collection[QueueStatus]] = None,
        reservation_expired_before: Optional[datetime] = None,
    ) -> List[QueueEntry]:
        matches = []
        for entry in self._entries.values():
            if user_id is not None and entry.user_id != user_id:
                continue
            if station_id is not None and entry.station_id != station_id:
                continue
            if statuses is not None and entry.status not in statuses:
                continue
            if reservation_expired_before is not None and (
                entry.reservation_expiry is None
                or entry.reservation_expiry >= reservation_expired_before
            ):
                continue
            matches.append(entry)
        matches.sort(key=lambda entry: (entry.station_id,) + _sort_key(entry))
        return matches

    async def insert_entry(self, entry: QueueEntry) -> QueueEntry:
        """Insert a new entry.

        Raises:
            ConflictError: the user already holds an active entry, or another
                active entry already occupies the requested position.
        """

        if entry.id in self._entries:
            raise ConflictError(f"Queue entry {entry.id} already exists")

        if entry.is_active:
            for existing in self._entries.values():
                if not existing.is_active:
                    continue
                if existing.user_id == entry.user_id:
                    raise ConflictError(
                        f"User {entry.user_id} already holds active entry {existing.id} "
                        f"at station {existing.station_id}"
                    )
                if existing.station_id == entry.station_id and existing.position == entry.position:
                    raise ConflictError(
                        f"Position {entry.position} at station {entry.station_id} is taken"
                    )

        self._put_entry(entry)
        return entry

    async def update_entry(
        self,
        entry_id: str,
        expected_status: QueueStatus,
        fields: Mapping[str, Any],
        *,
        expected_updated_at: Optional[datetime] = None,
    ) -> QueueEntry:
        """Apply ``fields`` only if the entry still has ``expected_status``.

        Raises:
            NotFoundError: no entry with ``entry_id``.
            ConflictError: the stored status (or ``updated_at`` when given) no
                longer matches the caller's snapshot.
            ValidationError: the resulting record violates an invariant.
        """

        current = self._entries.get(entry_id)
        if current is None:
            raise NotFoundError(f"Queue entry {entry_id} not found")
        if current.status is not expected_status:
            raise ConflictError(
                f"Queue entry {entry_id} is {current.status.value}, "
                f"expected {expected_status.value}"
            )
        if expected_updated_at is not None and current.updated_at != expected_updated_at:
            raise ConflictError(f"Queue entry {entry_id} was modified concurrently")
        if 'id' in fields:
            raise ValidationError("Queue entry identifiers are immutable")

        updated = current.evolve(**fields)
        self._put_entry(updated)
        return updated

    # ------------------------------------------------------------------
    # Stations
    # ------------------------------------------------------------------

    async def get_station(self, station_id: int) -> Optional[Station]:
        return self._stations.get(station_id)

    async def list_stations(self, *, active_only: bool = True) -> List[Station]:
        stations = sorted(self._stations.values(), key=lambda station: station.id)
        if active_only:
            return [station for station in stations if station.is_active]
        return stations

    async def upsert_station(self, station: Station) -> Station:
        self._put_station(station)
        return station

    async def update_station_derived(self, station_id: int, fields: Mapping[str, Any]) -> Station:
        """Refresh cached/derived station columns.

        Raises:
            NotFoundError: unknown station.
            ValidationError: ``fields`` names a non-derived column.
        """

        current = self._stations.get(station_id)
        if current is None:
            raise NotFoundError(f"Station {station_id} not found")
        unknown = set(fields) - STATION_DERIVED_FIELDS
        if unknown:
            raise ValidationError(f"Station fields {sorted(unknown)} are not derived columns")

        updated = current.evolve(**fields)
        if updated != current:
            self._put_station(updated)
        return updated

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def status_counts(self) -> Dict[str, int]:
        return dict(Counter(entry.status.value for entry in self._entries.values()))

    def _put_entry(self, entry: QueueEntry) -> None:
        self._entries[entry.id] = entry
        self.write_count += 1

    def _put_station(self, station: Station) -> None:
        self._stations[station.id] = station
        self.write_count += 1


class JsonQueueStore(InMemoryQueueStore):
    """In-memory store that snapshots its state to JSON files on every write.

    The snapshot is written before the in-memory state changes, so a failed
    write (``TransientError``) leaves both views unchanged.
    """

    def __init__(
        self,
        queue_file: str = 'data/queue.json',
        stations_file: str = 'data/stations.json',
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        logger = logger or logging.getLogger('QueueStore')
        self._entry_repository = JsonRecordRepository(queue_file, logger=logger)
        self._station_repository = JsonRecordRepository(stations_file, logger=logger)

        stations = []
        for payload in self._station_repository.load():
            try:
                stations.append(Station.from_payload(payload))
            except (ValidationError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed station record %s: %s", payload, exc)
        super().__init__(stations, logger=logger)

        for payload in self._entry_repository.load():
            try:
                entry = QueueEntry.from_payload(payload)
            except (ValidationError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed queue record %s: %s", payload.get('id'), exc)
                continue
            self._entries[entry.id] = entry

        self.logger.info(f"""QUEUE STORE INITIALIZED
        Queue file: {queue_file}
        Stations file: {stations_file}
        Stations: {len(self._stations)}
        Entries: {len(self._entries)}
        Status breakdown: {self.status_counts()}
        """)

    async def ping(self) -> bool:
        """Report whether the snapshot directory (or its nearest ancestor) is writable."""

        directory = self._entry_repository.path.resolve().parent
        while not directory.exists() and directory != directory.parent:
            directory = directory.parent
        return os.access(directory, os.W_OK)

    def _put_entry(self, entry: QueueEntry) -> None:
        snapshot = dict(self._entries)
        snapshot[entry.id] = entry
        self._entry_repository.save(
            candidate.to_payload()
            for candidate in sorted(snapshot.values(), key=lambda item: item.created_at)
        )
        super()._put_entry(entry)

    def _put_station(self, station: Station) -> None:
        snapshot = dict(self._stations)
        snapshot[station.id] = station
        self._station_repository.save(
            candidate.to_payload()
            for candidate in sorted(snapshot.values(), key=lambda item: item.id)
        )
        super()._put_station(station)

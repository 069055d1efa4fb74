"""Validation helpers for queue operations."""

from __future__ import annotations

from typing import Any, Iterable, Tuple

from charging.models import QueueEntry
from infrastructure import constants
from infrastructure.errors import ConflictError, ValidationError


def validate_identifiers(user_id: Any, station_id: Any) -> Tuple[str, int]:
    """Normalise caller identifiers, raising ``ValidationError`` when malformed."""

    if user_id is None or isinstance(user_id, bool):
        raise ValidationError(f"Invalid user identifier: {user_id!r}")
    normalised_user = str(user_id).strip()
    if not normalised_user:
        raise ValidationError(f"Invalid user identifier: {user_id!r}")

    if isinstance(station_id, bool):
        raise ValidationError(f"Invalid station identifier: {station_id!r}")
    try:
        normalised_station = int(station_id)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid station identifier: {station_id!r}") from exc
    if normalised_station <= 0 or str(normalised_station) != str(station_id).strip():
        raise ValidationError(f"Invalid station identifier: {station_id!r}")

    return normalised_user, normalised_station


def validate_leave_reason(reason: str) -> str:
    if reason not in constants.LEAVE_REASONS:
        raise ValidationError(
            f"Unknown leave reason {reason!r}; expected one of {', '.join(constants.LEAVE_REASONS)}"
        )
    return reason


def ensure_single_active_entry(
    entries: Iterable[QueueEntry],
    *,
    user_id: str,
    station_id: int,
    logger: Any,
) -> None:
    """Raise ``ConflictError`` if the user already holds an active entry anywhere.

    A user may wait in exactly one line at a time, so an active entry at a
    different station blocks the join just like one at the same station.
    """

    for existing in entries:
        if existing.user_id != user_id or not existing.is_active:
            continue

        same_station = existing.station_id == station_id
        logger.warning(
            """DUPLICATE QUEUE JOIN REJECTED
            User %s already holds a %s entry at station %s (position %s)
            Requested station: %s
            Existing entry ID: %s
            """,
            user_id,
            existing.status.value,
            existing.station_id,
            existing.position,
            station_id,
            existing.id,
        )
        if same_station:
            raise ConflictError(f"User {user_id} is already in the queue at station {station_id}")
        raise ConflictError(
            f"User {user_id} already has an active booking at station {existing.station_id}"
        )

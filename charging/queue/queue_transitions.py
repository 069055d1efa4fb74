"""State transition helpers for queue entries."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict

from charging.models import QueueEntry, QueueStatus
from infrastructure.errors import ConflictError

ALLOWED_TRANSITIONS = {
    QueueStatus.WAITING: frozenset({QueueStatus.RESERVED, QueueStatus.CHARGING, QueueStatus.CANCELLED}),
    QueueStatus.RESERVED: frozenset({QueueStatus.CHARGING, QueueStatus.CANCELLED, QueueStatus.WAITING}),
    QueueStatus.CHARGING: frozenset({QueueStatus.COMPLETED, QueueStatus.CANCELLED}),
    QueueStatus.COMPLETED: frozenset(),
    QueueStatus.CANCELLED: frozenset(),
}


def transition_fields(
    entry: QueueEntry,
    new_status: QueueStatus,
    now: datetime,
    **updates: Any,
) -> Dict[str, Any]:
    """Build the field set that moves ``entry`` to ``new_status``.

    ``reservation_expiry`` is cleared on every transition that does not land
    in ``reserved``.

    Raises:
        ConflictError: the state machine has no such edge.
    """

    if new_status not in ALLOWED_TRANSITIONS[entry.status]:
        raise ConflictError(
            f"Queue entry {entry.id} cannot move from {entry.status.value} to {new_status.value}"
        )

    fields: Dict[str, Any] = {'status': new_status, 'updated_at': now}
    if new_status is not QueueStatus.RESERVED:
        fields['reservation_expiry'] = None
    fields.update(updates)
    return fields


def reserve_fields(entry: QueueEntry, now: datetime, duration_minutes: int) -> Dict[str, Any]:
    """Fields for waiting -> reserved; the reminder flag restarts for the expiry warning."""

    return transition_fields(
        entry,
        QueueStatus.RESERVED,
        now,
        reservation_expiry=now + timedelta(minutes=duration_minutes),
        reminder_sent=False,
    )


def cancel_fields(entry: QueueEntry, now: datetime, reason: str) -> Dict[str, Any]:
    """Fields for any active status -> cancelled with the analytics reason."""

    return transition_fields(entry, QueueStatus.CANCELLED, now, cancel_reason=reason)

"""Queue entry record and status definitions."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from infrastructure import constants
from infrastructure.errors import ValidationError


class QueueStatus(Enum):
    """Lifecycle states of a queue entry"""
    WAITING = constants.STATUS_WAITING      # Holding a position in line
    RESERVED = constants.STATUS_RESERVED    # Head of line with a live reservation
    CHARGING = constants.STATUS_CHARGING    # Consuming the slot
    COMPLETED = constants.STATUS_COMPLETED  # Finished charging
    CANCELLED = constants.STATUS_CANCELLED  # Left, expired, or force-stopped

    @property
    def is_terminal(self) -> bool:
        return self.value in constants.TERMINAL_STATUSES


ACTIVE_STATUSES = frozenset(
    status for status in QueueStatus if not status.is_terminal
)
TERMINAL_STATUSES = frozenset(
    status for status in QueueStatus if status.is_terminal
)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid timestamp: {value!r}") from exc


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class QueueEntry:
    """A user's claim on a position in a station's waiting line.

    Instances are immutable; every transition produces a new record through
    :meth:`evolve`, which re-runs the invariant checks.
    """

    user_id: str
    station_id: int
    position: int
    created_at: datetime
    updated_at: datetime
    status: QueueStatus = QueueStatus.WAITING
    reservation_expiry: Optional[datetime] = None
    reminder_sent: bool = False
    cancel_reason: Optional[str] = None
    estimated_wait_minutes: Optional[int] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        if not isinstance(self.user_id, str) or not self.user_id.strip():
            raise ValidationError(f"Invalid user identifier: {self.user_id!r}")
        if isinstance(self.station_id, bool) or not isinstance(self.station_id, int) or self.station_id <= 0:
            raise ValidationError(f"Invalid station identifier: {self.station_id!r}")
        if isinstance(self.position, bool) or not isinstance(self.position, int) or self.position < 1:
            raise ValidationError(f"Queue position must be >= 1, got {self.position!r}")
        if not isinstance(self.status, QueueStatus):
            raise ValidationError(f"Unknown queue status: {self.status!r}")
        if (self.status is QueueStatus.RESERVED) != (self.reservation_expiry is not None):
            raise ValidationError(
                "reservation_expiry must be set if and only if the entry is reserved "
                f"(status={self.status.value}, expiry={self.reservation_expiry})"
            )
        if self.cancel_reason is not None and self.cancel_reason not in constants.LEAVE_REASONS:
            raise ValidationError(f"Unknown cancel reason: {self.cancel_reason!r}")

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal

    def evolve(self, **changes: Any) -> "QueueEntry":
        """Return a copy with ``changes`` applied and invariants re-checked."""

        return replace(self, **changes)

    def to_payload(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'station_id': self.station_id,
            'position': self.position,
            'status': self.status.value,
            'reservation_expiry': _format_timestamp(self.reservation_expiry),
            'reminder_sent': self.reminder_sent,
            'cancel_reason': self.cancel_reason,
            'estimated_wait_minutes': self.estimated_wait_minutes,
            'created_at': _format_timestamp(self.created_at),
            'updated_at': _format_timestamp(self.updated_at),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "QueueEntry":
        try:
            status = QueueStatus(payload.get('status', constants.STATUS_WAITING))
        except ValueError as exc:
            raise ValidationError(f"Unknown queue status: {payload.get('status')!r}") from exc

        created_at = _parse_timestamp(payload.get('created_at'))
        updated_at = _parse_timestamp(payload.get('updated_at')) or created_at
        if created_at is None:
            raise ValidationError(f"Queue entry {payload.get('id')!r} is missing created_at")

        return cls(
            id=str(payload.get('id') or uuid.uuid4().hex),
            user_id=str(payload.get('user_id', '')),
            station_id=int(payload.get('station_id', 0)),
            position=int(payload.get('position', 0)),
            status=status,
            reservation_expiry=_parse_timestamp(payload.get('reservation_expiry')),
            reminder_sent=bool(payload.get('reminder_sent', False)),
            cancel_reason=payload.get('cancel_reason'),
            estimated_wait_minutes=payload.get('estimated_wait_minutes'),
            created_at=created_at,
            updated_at=updated_at,
        )

"""Station record (the subset the queue engine relies on)."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping

from infrastructure import constants
from infrastructure.errors import ValidationError


@dataclass(frozen=True)
class Station:
    """Charging station slot counts and queue limits."""

    id: int
    name: str = ''
    is_active: bool = True
    is_open: bool = True
    total_slots: int = 1
    available_slots: int = 1
    current_queue_length: int = 0
    max_queue_length: int = constants.DEFAULT_MAX_QUEUE_LENGTH
    average_session_minutes: int = constants.DEFAULT_AVERAGE_SESSION_MINUTES

    def __post_init__(self) -> None:
        if isinstance(self.id, bool) or not isinstance(self.id, int) or self.id <= 0:
            raise ValidationError(f"Invalid station identifier: {self.id!r}")
        if self.total_slots < 0 or self.available_slots < 0:
            raise ValidationError(f"Station {self.id} has negative slot counts")
        if self.available_slots > self.total_slots:
            raise ValidationError(
                f"Station {self.id} reports {self.available_slots} free slots "
                f"out of {self.total_slots}"
            )

    @property
    def accepts_queue(self) -> bool:
        return self.is_active and self.is_open

    @property
    def has_free_slot(self) -> bool:
        return self.available_slots > 0

    def evolve(self, **changes: Any) -> "Station":
        return replace(self, **changes)

    def to_payload(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'is_active': self.is_active,
            'is_open': self.is_open,
            'total_slots': self.total_slots,
            'available_slots': self.available_slots,
            'current_queue_length': self.current_queue_length,
            'max_queue_length': self.max_queue_length,
            'average_session_minutes': self.average_session_minutes,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Station":
        return cls(
            id=int(payload.get('id', 0)),
            name=str(payload.get('name') or ''),
            is_active=bool(payload.get('is_active', True)),
            is_open=bool(payload.get('is_open', True)),
            total_slots=int(payload.get('total_slots', 1)),
            available_slots=int(payload.get('available_slots', 1)),
            current_queue_length=int(payload.get('current_queue_length', 0)),
            max_queue_length=int(
                payload.get('max_queue_length') or constants.DEFAULT_MAX_QUEUE_LENGTH
            ),
            average_session_minutes=int(
                payload.get('average_session_minutes')
                or constants.DEFAULT_AVERAGE_SESSION_MINUTES
            ),
        )

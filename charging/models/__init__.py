"""Domain model definitions for the charging queue engine."""

from .queue_entry import ACTIVE_STATUSES, TERMINAL_STATUSES, QueueEntry, QueueStatus
from .session import ChargingSession, SessionStatus
from .station import Station

__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "QueueEntry",
    "QueueStatus",
    "ChargingSession",
    "SessionStatus",
    "Station",
]

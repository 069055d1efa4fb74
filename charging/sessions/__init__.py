"""Charging session monitoring."""

from .session_gateway import InMemorySessionGateway, SessionGateway
from .session_monitor import SessionMonitor, SessionSweepResult

__all__ = [
    "InMemorySessionGateway",
    "SessionGateway",
    "SessionMonitor",
    "SessionSweepResult",
]

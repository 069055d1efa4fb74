"""External charging-session interface and an in-process registry implementation."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from charging.models import ChargingSession, SessionStatus
from infrastructure.errors import NotFoundError


class SessionGateway(ABC):
    """Read live charging sessions and stop them."""

    @abstractmethod
    async def get_active_sessions(self) -> List[ChargingSession]:
        ...

    @abstractmethod
    async def get_session_status(self, session_id: str) -> Optional[SessionStatus]:
        """Latest telemetry, or None when the charger has not reported any."""

    @abstractmethod
    async def complete_session(self, user_id: str, station_id: int) -> bool:
        """Stop the user's session at the station; False if it was not stopped."""


class InMemorySessionGateway(SessionGateway):
    """Session registry fed by whoever owns the chargers' telemetry."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger('SessionGateway')
        self._sessions: Dict[str, ChargingSession] = {}
        self._statuses: Dict[str, SessionStatus] = {}
        self.completed: List[str] = []

    def register(self, session: ChargingSession, status: Optional[SessionStatus] = None) -> None:
        self._sessions[session.id] = session
        if status is not None:
            self._statuses[session.id] = status

    def report(self, session_id: str, status: SessionStatus) -> None:
        if session_id not in self._sessions:
            raise NotFoundError(f"Charging session {session_id} not found")
        self._statuses[session_id] = status

    async def get_active_sessions(self) -> List[ChargingSession]:
        return list(self._sessions.values())

    async def get_session_status(self, session_id: str) -> Optional[SessionStatus]:
        return self._statuses.get(session_id)

    async def complete_session(self, user_id: str, station_id: int) -> bool:
        session = next(
            (
                candidate for candidate in self._sessions.values()
                if candidate.user_id == user_id and candidate.station_id == station_id
            ),
            None,
        )
        if session is None:
            self.logger.warning("No charging session for user %s at station %s", user_id, station_id)
            return False
        del self._sessions[session.id]
        self._statuses.pop(session.id, None)
        self.completed.append(session.id)
        self.logger.info("Charging session %s completed", session.id)
        return True

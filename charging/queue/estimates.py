"""Wait-time estimates shown to queued users."""

from __future__ import annotations

from infrastructure import constants


def estimate_wait_minutes(
    position: int,
    average_session_minutes: int = constants.DEFAULT_AVERAGE_SESSION_MINUTES,
) -> int:
    """Head of line waits a fixed handover time; everyone else adds one session per user ahead."""

    if position <= 1:
        return constants.HEAD_OF_LINE_WAIT_MINUTES
    return (position - 1) * average_session_minutes + constants.HEAD_OF_LINE_WAIT_MINUTES

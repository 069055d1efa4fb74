"""Injectable time source."""

from __future__ import annotations

from datetime import datetime
from typing import Callable

import pytz

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current timezone-aware UTC time."""

    return datetime.now(pytz.UTC)

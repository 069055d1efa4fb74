"""Sweep that cancels reservations whose hold window has lapsed."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from charging.clock import Clock, utc_now
from charging.models import QueueStatus
from infrastructure import constants


@dataclass
class ExpirySweepResult:
    found: int = 0
    cleaned: int = 0
    failed: int = 0


class ExpiryMonitor:
    """Find reserved entries past their deadline and release them through the queue service."""

    def __init__(
        self,
        store,
        queue_service,
        *,
        clock: Clock = utc_now,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.queue_service = queue_service
        self.clock = clock
        self.logger = logger or logging.getLogger('ExpiryMonitor')

    async def run(self) -> ExpirySweepResult:
        now = self.clock()
        expired = await self.store.find_entries(
            statuses={QueueStatus.RESERVED},
            reservation_expired_before=now,
        )
        result = ExpirySweepResult(found=len(expired))
        if not expired:
            return result

        for entry in expired:
            try:
                if await self.queue_service.leave_queue(
                    entry.user_id, entry.station_id, constants.REASON_EXPIRED
                ):
                    result.cleaned += 1
                else:
                    # Another path (start_charging, a concurrent sweep) got there first.
                    self.logger.debug("Expired reservation %s already settled", entry.id)
            except Exception as exc:
                result.failed += 1
                self.logger.error("Failed to expire reservation %s: %s", entry.id, exc, exc_info=True)

        self.logger.info(
            "Cleaned up %s/%s expired reservations",
            result.cleaned,
            result.found,
        )
        return result

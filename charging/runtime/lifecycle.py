"""Lifecycle orchestration for the charging queue runtime."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Optional

from .container import ChargingDependencies


class LifecycleManager:
    """Start the scheduler, wait for a shutdown signal, and stop everything as a unit."""

    def __init__(
        self,
        dependencies: ChargingDependencies,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.dependencies = dependencies
        self.logger = logger or logging.getLogger('LifecycleManager')
        self._shutdown = asyncio.Event()

    def request_shutdown(self, signum: Optional[int] = None) -> None:
        if signum is not None:
            self.logger.info("🚨 Received signal %s, initiating graceful shutdown...", signum)
        self._shutdown.set()

    async def startup(self) -> None:
        scheduler = self.dependencies.scheduler
        await scheduler.start()
        healthy = await scheduler.health_check()
        self.logger.info("Startup health: %s", 'healthy' if healthy else 'unhealthy')

    async def shutdown(self) -> None:
        self.logger.info("🔴 Starting shutdown sequence...")
        await self.dependencies.scheduler.stop()
        self.logger.info("✅ Queue scheduler stopped")
        await self.dependencies.notifier.drain()
        self.logger.info("✅ Pending notifications flushed")

    async def run(self) -> None:
        """Run until SIGINT/SIGTERM (or :meth:`request_shutdown`)."""

        loop = asyncio.get_running_loop()
        installed = []
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self.request_shutdown, signum)
                installed.append(signum)
            except (NotImplementedError, RuntimeError):
                self.logger.debug("Signal handler for %s not supported on this platform", signum)

        try:
            await self.startup()
            await self._shutdown.wait()
        finally:
            await self.shutdown()
            for signum in installed:
                loop.remove_signal_handler(signum)

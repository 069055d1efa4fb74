"""
Scheduler Core

Runs a set of named periodic processes on independent cadences. Each tick runs
its handler inside an isolation boundary, so a failing process is logged and
counted but never stops its own ticker or any other process.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from infrastructure import constants
from infrastructure.errors import ConflictError, ValidationError

from .metrics import SchedulerStats

Handler = Callable[[], Awaitable[object]]


@dataclass(frozen=True)
class PeriodicProcess:
    """A named handler invoked every ``interval`` seconds."""

    name: str
    interval: float
    handler: Handler

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("Periodic process needs a name")
        if self.interval <= 0:
            raise ValidationError(f"Process {self.name} interval must be positive")


class SchedulerCore:
    """
    Owns the periodic processes and their tickers.

    A tick that arrives while the previous run of the same process is still in
    flight is skipped and counted instead of stacking a second run.
    """

    def __init__(
        self,
        processes: Iterable[PeriodicProcess] = (),
        *,
        stats: Optional[SchedulerStats] = None,
        shutdown_grace_seconds: float = constants.SHUTDOWN_GRACE_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger('SchedulerCore')
        self.stats = stats or SchedulerStats()
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self._processes: Dict[str, PeriodicProcess] = {}
        self._tickers: Dict[str, asyncio.Task] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}
        self.running = False
        for process in processes:
            self.register(process)

    @property
    def process_names(self) -> List[str]:
        return list(self._processes)

    @property
    def active_processes(self) -> List[str]:
        return [name for name, task in self._tickers.items() if not task.done()]

    def register(self, process: PeriodicProcess) -> None:
        if process.name in self._processes:
            raise ConflictError(f"Process {process.name} is already registered")
        self._processes[process.name] = process
        self.stats.for_process(process.name)
        if self.running:
            self._start_ticker(process)

    def get_process(self, name: str) -> Optional[PeriodicProcess]:
        return self._processes.get(name)

    def is_running(self, name: str) -> bool:
        task = self._in_flight.get(name)
        return task is not None and not task.done()

    async def start(self) -> None:
        if self.running:
            self.logger.warning("Scheduler core already running")
            return
        self.running = True
        for process in self._processes.values():
            self._start_ticker(process)
        self.logger.info(
            "Started %s periodic processes: %s",
            len(self._tickers),
            ", ".join(f"{name} ({proc.interval:g}s)" for name, proc in self._processes.items()),
        )

    async def stop(self) -> None:
        """Cancel tickers, give in-flight runs a bounded grace period, then cancel them."""

        if not self.running:
            return
        self.running = False

        tickers = list(self._tickers.values())
        for ticker in tickers:
            ticker.cancel()
        await asyncio.gather(*tickers, return_exceptions=True)
        self._tickers.clear()

        in_flight = [task for task in self._in_flight.values() if not task.done()]
        if in_flight:
            self.logger.info("Waiting up to %ss for %s in-flight runs", self.shutdown_grace_seconds, len(in_flight))
            _, pending = await asyncio.wait(in_flight, timeout=self.shutdown_grace_seconds)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                self.logger.warning("Cancelled %s runs still in flight at shutdown", len(pending))
        self._in_flight.clear()
        self.logger.info("Scheduler core stopped")

    def trigger(self, name: str) -> Optional[asyncio.Task]:
        """Start one run of ``name`` now, unless a run is already in flight."""

        process = self._processes.get(name)
        if process is None:
            raise ValidationError(f"Unknown process {name!r}")
        if self.is_running(name):
            self.stats.record_skip(name)
            self.logger.warning("Skipping %s tick: previous run still in flight", name)
            return None
        task = asyncio.create_task(self._run_isolated(process), name=f"process-{name}")
        self._in_flight[name] = task
        return task

    def _start_ticker(self, process: PeriodicProcess) -> None:
        self._tickers[process.name] = asyncio.create_task(
            self._ticker(process), name=f"ticker-{process.name}"
        )

    async def _ticker(self, process: PeriodicProcess) -> None:
        while self.running:
            await asyncio.sleep(process.interval)
            if not self.running:
                break
            self.trigger(process.name)

    async def _run_isolated(self, process: PeriodicProcess) -> None:
        started = time.perf_counter()
        try:
            await process.handler()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            elapsed = time.perf_counter() - started
            self.stats.record_run(process.name, elapsed, error=str(exc) or type(exc).__name__)
            self.logger.error("Process %s failed: %s", process.name, exc, exc_info=True)
            return
        self.stats.record_run(process.name, time.perf_counter() - started)

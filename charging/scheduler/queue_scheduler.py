"""
Queue Scheduler

Control surface for the background maintenance processes. Wires the default
process set (cleanup, optimization, notifications, analytics, sessions,
availability alerts, performance) into a :class:`SchedulerCore` and exposes
the same handlers to one-off scheduled tasks.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from charging.clock import Clock, utc_now
from infrastructure import constants

from .core import PeriodicProcess, SchedulerCore
from .metrics import SchedulerStats
from .task_queue import TaskQueue

DEFAULT_INTERVALS: Dict[str, float] = {
    constants.PROCESS_CLEANUP: constants.CLEANUP_INTERVAL_SECONDS,
    constants.PROCESS_OPTIMIZATION: constants.OPTIMIZATION_INTERVAL_SECONDS,
    constants.PROCESS_NOTIFICATIONS: constants.NOTIFICATIONS_INTERVAL_SECONDS,
    constants.PROCESS_ANALYTICS: constants.ANALYTICS_INTERVAL_SECONDS,
    constants.PROCESS_SESSIONS: constants.SESSIONS_INTERVAL_SECONDS,
    constants.PROCESS_AVAILABILITY_ALERTS: constants.AVAILABILITY_ALERTS_INTERVAL_SECONDS,
    constants.PROCESS_PERFORMANCE: constants.PERFORMANCE_INTERVAL_SECONDS,
}


@dataclass(frozen=True)
class SchedulerStatus:
    """Point-in-time view of the scheduler returned by :meth:`QueueScheduler.get_status`."""

    is_running: bool
    uptime_seconds: float
    active_processes: List[str]
    scheduled_task_count: int
    average_latency: float
    processes: Dict[str, Dict[str, object]] = field(default_factory=dict)


class QueueScheduler:
    """
    Runs queue maintenance on fixed cadences and accepts ad-hoc tasks.

    Attributes:
        core (SchedulerCore): Periodic process runner
        tasks (TaskQueue): Delayed one-off tasks
        stats (SchedulerStats): Shared run statistics
    """

    def __init__(
        self,
        *,
        store,
        expiry_monitor,
        rebalancer,
        session_monitor,
        maintenance,
        intervals: Optional[Mapping[str, float]] = None,
        clock: Clock = utc_now,
        task_sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        task_backoff_base_seconds: float = constants.TASK_BACKOFF_BASE_SECONDS,
        shutdown_grace_seconds: float = constants.SHUTDOWN_GRACE_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.expiry_monitor = expiry_monitor
        self.rebalancer = rebalancer
        self.session_monitor = session_monitor
        self.maintenance = maintenance
        self.clock = clock
        self.logger = logger or logging.getLogger('QueueScheduler')
        self.stats = SchedulerStats()
        self.started_at: Optional[datetime] = None

        cadence = dict(DEFAULT_INTERVALS)
        cadence.update(intervals or {})
        self.intervals = cadence

        self.handlers: Dict[str, Callable[[], Awaitable[Any]]] = {
            constants.PROCESS_CLEANUP: self.expiry_monitor.run,
            constants.PROCESS_OPTIMIZATION: self.rebalancer.rebalance_all,
            constants.PROCESS_NOTIFICATIONS: self.maintenance.send_notifications,
            constants.PROCESS_ANALYTICS: self.maintenance.refresh_analytics,
            constants.PROCESS_SESSIONS: self.session_monitor.run,
            constants.PROCESS_AVAILABILITY_ALERTS: self.maintenance.promote_available,
            constants.PROCESS_PERFORMANCE: self.report_performance,
        }

        self.core = SchedulerCore(
            (
                PeriodicProcess(name, self.intervals[name], handler)
                for name, handler in self.handlers.items()
            ),
            stats=self.stats,
            shutdown_grace_seconds=shutdown_grace_seconds,
            logger=logging.getLogger('SchedulerCore'),
        )
        self.tasks = TaskQueue(
            self.handlers,
            clock=clock,
            sleep=task_sleep or asyncio.sleep,
            backoff_base_seconds=task_backoff_base_seconds,
            stats=self.stats,
            logger=logging.getLogger('TaskQueue'),
        )

    @property
    def is_running(self) -> bool:
        return self.core.running

    async def start(self) -> None:
        if self.is_running:
            self.logger.warning("Queue scheduler is already running")
            return
        self.started_at = self.clock()
        self.tasks.start()
        await self.core.start()
        self.logger.info(f"""QUEUE SCHEDULER STARTED
        Processes: {len(self.core.process_names)}
        Cadence: {', '.join(f'{name}={interval:g}s' for name, interval in self.intervals.items())}
        """)

    async def stop(self) -> None:
        if not self.is_running:
            return
        self.logger.info("Stopping queue scheduler")
        await self.tasks.stop()
        await self.core.stop()
        self.logger.info("Queue scheduler stopped\n%s", self.stats.format_report())

    def get_status(self) -> SchedulerStatus:
        uptime = 0.0
        if self.is_running and self.started_at is not None:
            uptime = max(0.0, (self.clock() - self.started_at).total_seconds())
        return SchedulerStatus(
            is_running=self.is_running,
            uptime_seconds=uptime,
            active_processes=self.core.active_processes,
            scheduled_task_count=self.tasks.pending_count,
            average_latency=self.stats.avg_latency,
            processes={name: stats.to_dict() for name, stats in self.stats.processes.items()},
        )

    def schedule_task(
        self,
        task_type: str,
        scheduled_time: datetime,
        max_retries: int = constants.DEFAULT_TASK_MAX_RETRIES,
    ) -> str:
        """Run one of the process handlers once at ``scheduled_time``."""

        return self.tasks.schedule(task_type, scheduled_time, max_retries)

    async def health_check(self) -> bool:
        """Healthy when running, every default process is ticking and the store answers."""

        report = await self.health_report()
        return report['status'] == 'healthy'

    async def health_report(self) -> Dict[str, Any]:
        """Per-check breakdown behind :meth:`health_check`."""

        try:
            store_ok = bool(await self.store.ping())
        except Exception as exc:
            self.logger.error("Store ping failed during health check: %s", exc)
            store_ok = False

        active = set(self.core.active_processes)
        missing = sorted(set(DEFAULT_INTERVALS) - active)
        checks = {
            'running': self.is_running,
            'processes': not missing,
            'store': store_ok,
        }
        healthy = all(checks.values())
        if not healthy:
            self.logger.warning("Queue scheduler health check failed: %s (missing: %s)", checks, missing)
        return {
            'status': 'healthy' if healthy else 'unhealthy',
            'checks': checks,
            'missing_processes': missing,
            'timestamp': self.clock().isoformat(),
        }

    async def report_performance(self) -> Dict[str, Any]:
        status = self.get_status()
        return await self.maintenance.report_performance(
            {
                'active_sessions': self.session_monitor.active_session_count,
                'uptime_seconds': round(status.uptime_seconds, 1),
                'scheduled_tasks': status.scheduled_task_count,
                'avg_latency_s': round(status.average_latency, 4),
                'process_runs': self.stats.total_runs,
                'process_failures': self.stats.total_failures,
            }
        )

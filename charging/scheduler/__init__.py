"""Background scheduler for queue maintenance."""

from .core import PeriodicProcess, SchedulerCore
from .maintenance import QueueMaintenance
from .metrics import ProcessStats, SchedulerStats
from .queue_scheduler import DEFAULT_INTERVALS, QueueScheduler, SchedulerStatus
from .task_queue import ScheduledTask, TaskQueue

__all__ = [
    "PeriodicProcess",
    "SchedulerCore",
    "QueueMaintenance",
    "ProcessStats",
    "SchedulerStats",
    "DEFAULT_INTERVALS",
    "QueueScheduler",
    "SchedulerStatus",
    "ScheduledTask",
    "TaskQueue",
]

"""
Task Queue

One-off jobs that fire at a target time. A failing job is retried with an
exponential backoff of ``base * 2**retries`` and dropped once it has used up
its ``max_retries`` attempts.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Mapping, Optional

from charging.clock import Clock, utc_now
from infrastructure import constants
from infrastructure.errors import PermanentError, ValidationError

from .metrics import SchedulerStats

Handler = Callable[[], Awaitable[object]]
Sleep = Callable[[float], Awaitable[None]]


@dataclass
class ScheduledTask:
    """An in-memory delayed job; lost on restart."""

    type: str
    scheduled_time: datetime
    max_retries: int = constants.DEFAULT_TASK_MAX_RETRIES
    retries: int = 0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValidationError(f"max_retries must be at least 1, got {self.max_retries}")
        if self.scheduled_time.tzinfo is None:
            raise ValidationError("scheduled_time must be timezone-aware")

    def to_dict(self) -> Dict[str, object]:
        return {
            'id': self.id,
            'type': self.type,
            'scheduled_time': self.scheduled_time.isoformat(),
            'retries': self.retries,
            'max_retries': self.max_retries,
        }


class TaskQueue:
    """Executes scheduled tasks against a table of handlers keyed by task type."""

    def __init__(
        self,
        handlers: Mapping[str, Handler],
        *,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
        backoff_base_seconds: float = constants.TASK_BACKOFF_BASE_SECONDS,
        stats: Optional[SchedulerStats] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.handlers = dict(handlers)
        self.clock = clock
        self.sleep = sleep
        self.backoff_base_seconds = backoff_base_seconds
        self.stats = stats or SchedulerStats()
        self.logger = logger or logging.getLogger('TaskQueue')
        self.accepting = False
        self._tasks: Dict[str, ScheduledTask] = {}
        self._runners: Dict[str, asyncio.Task] = {}

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def pending_tasks(self) -> List[ScheduledTask]:
        return sorted(self._tasks.values(), key=lambda task: task.scheduled_time)

    def backoff_seconds(self, retries: int) -> float:
        return self.backoff_base_seconds * (2 ** retries)

    def start(self) -> None:
        self.accepting = True

    def schedule(
        self,
        task_type: str,
        scheduled_time: datetime,
        max_retries: int = constants.DEFAULT_TASK_MAX_RETRIES,
    ) -> str:
        """Register a one-shot task and return its id.

        Raises:
            ValidationError: unknown task type or malformed arguments.
        """

        if task_type not in self.handlers:
            raise ValidationError(
                f"Unknown task type {task_type!r}; expected one of {', '.join(sorted(self.handlers))}"
            )
        task = ScheduledTask(type=task_type, scheduled_time=scheduled_time, max_retries=max_retries)
        self._tasks[task.id] = task
        runner = asyncio.create_task(self._run(task), name=f"task-{task_type}-{task.id[:8]}")
        self._runners[task.id] = runner
        runner.add_done_callback(lambda _, task_id=task.id: self._forget(task_id))
        self.logger.info(
            "Scheduled %s task %s for %s (max retries %s)",
            task_type, task.id, scheduled_time.isoformat(), max_retries,
        )
        return task.id

    async def join(self) -> None:
        """Wait until every scheduled task has completed or been dropped."""

        while self._runners:
            await asyncio.gather(*list(self._runners.values()), return_exceptions=True)

    async def stop(self) -> None:
        self.accepting = False
        runners = list(self._runners.values())
        for runner in runners:
            runner.cancel()
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
            self.logger.info("Discarded %s pending scheduled tasks", len(runners))
        self._runners.clear()
        self._tasks.clear()

    async def _run(self, task: ScheduledTask) -> None:
        delay = max(0.0, (task.scheduled_time - self.clock()).total_seconds())
        await self.sleep(delay)

        while True:
            if not self.accepting:
                self.logger.warning("Dropping %s task %s: scheduler is not running", task.type, task.id)
                return
            try:
                await self.handlers[task.type]()
            except Exception as exc:
                task.retries += 1
                if task.retries < task.max_retries:
                    backoff = self.backoff_seconds(task.retries)
                    task.scheduled_time = self.clock() + timedelta(seconds=backoff)
                    self.stats.tasks_retried += 1
                    self.logger.warning(
                        "Task %s (%s) failed (attempt %s/%s): %s; retrying in %ss",
                        task.id, task.type, task.retries, task.max_retries, exc, backoff,
                    )
                    await self.sleep(backoff)
                    continue

                self.stats.tasks_dropped += 1
                failure = PermanentError(
                    f"Task {task.id} ({task.type}) failed permanently after {task.retries} attempts: {exc}"
                )
                self.logger.critical("%s", failure, exc_info=exc)
                return

            self.stats.tasks_executed += 1
            self.logger.info("Task %s (%s) completed", task.id, task.type)
            return

    def _forget(self, task_id: str) -> None:
        self._tasks.pop(task_id, None)
        self._runners.pop(task_id, None)

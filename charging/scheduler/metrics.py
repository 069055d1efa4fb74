"""Statistics helpers for the queue scheduler."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Optional

from infrastructure import constants


@dataclass
class ProcessStats:
    """Mutable counters tracking one periodic process."""

    runs: int = 0
    failures: int = 0
    skipped: int = 0
    total_execution_time: float = 0.0
    last_error: Optional[str] = None

    def record_success(self, execution_time: Optional[float] = None) -> None:
        self.runs += 1
        self._record_execution_time(execution_time)

    def record_failure(self, error: str, execution_time: Optional[float] = None) -> None:
        self.runs += 1
        self.failures += 1
        self.last_error = error
        self._record_execution_time(execution_time)

    def record_skip(self) -> None:
        self.skipped += 1

    def _record_execution_time(self, execution_time: Optional[float]) -> None:
        if execution_time is None:
            return
        try:
            value = float(execution_time)
        except (TypeError, ValueError):
            return
        if value < 0:
            return
        self.total_execution_time += value

    @property
    def avg_execution_time(self) -> float:
        if self.runs == 0:
            return 0.0
        return self.total_execution_time / self.runs

    def to_dict(self) -> Dict[str, object]:
        return {
            'runs': self.runs,
            'failures': self.failures,
            'skipped': self.skipped,
            'avg_execution_time': round(self.avg_execution_time, 4),
            'last_error': self.last_error,
        }


@dataclass
class SchedulerStats:
    """Per-process counters plus a rolling window of run latencies."""

    processes: Dict[str, ProcessStats] = field(default_factory=dict)
    tasks_executed: int = 0
    tasks_retried: int = 0
    tasks_dropped: int = 0
    latencies: Deque[float] = field(
        default_factory=lambda: deque(maxlen=constants.LATENCY_WINDOW)
    )

    def for_process(self, name: str) -> ProcessStats:
        stats = self.processes.get(name)
        if stats is None:
            stats = self.processes[name] = ProcessStats()
        return stats

    def record_run(self, name: str, execution_time: float, error: Optional[str] = None) -> None:
        stats = self.for_process(name)
        if error is None:
            stats.record_success(execution_time)
        else:
            stats.record_failure(error, execution_time)
        self.latencies.append(execution_time)

    def record_skip(self, name: str) -> None:
        self.for_process(name).record_skip()

    @property
    def avg_latency(self) -> float:
        if not self.latencies:
            return 0.0
        return sum(self.latencies) / len(self.latencies)

    @property
    def total_runs(self) -> int:
        return sum(stats.runs for stats in self.processes.values())

    @property
    def total_failures(self) -> int:
        return sum(stats.failures for stats in self.processes.values())

    def format_report(self) -> str:
        lines = [
            "📊 Queue Scheduler Performance Report",
            f"🔁 Process Runs: {self.total_runs}",
            f"❌ Failed Runs: {self.total_failures}",
            f"⏱️ Avg Latency: {self.avg_latency:.3f}s",
        ]
        for name in sorted(self.processes):
            stats = self.processes[name]
            lines.append(
                f"  • {name}: {stats.runs} runs, {stats.failures} failed, {stats.skipped} skipped"
            )
        if self.tasks_executed or self.tasks_retried or self.tasks_dropped:
            lines.append(
                f"🗓️ Tasks: {self.tasks_executed} executed, {self.tasks_retried} retried, "
                f"{self.tasks_dropped} dropped"
            )
        return "\n".join(lines)

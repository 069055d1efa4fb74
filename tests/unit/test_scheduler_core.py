import asyncio

import pytest

from charging.scheduler import PeriodicProcess, SchedulerCore
from infrastructure.errors import ConflictError, ValidationError
from tests.helpers import DummyLogger


def test_periodic_process_validates_interval():
    async def handler():
        return None

    with pytest.raises(ValidationError):
        PeriodicProcess("cleanup", 0, handler)


def test_duplicate_process_names_are_rejected():
    async def handler():
        return None

    core = SchedulerCore([PeriodicProcess("cleanup", 1, handler)], logger=DummyLogger())

    with pytest.raises(ConflictError):
        core.register(PeriodicProcess("cleanup", 2, handler))


@pytest.mark.asyncio
async def test_tick_during_in_flight_run_is_skipped_and_counted():
    release = asyncio.Event()
    calls = []

    async def slow():
        calls.append("run")
        await release.wait()

    core = SchedulerCore([PeriodicProcess("optimization", 60, slow)], logger=DummyLogger())

    first = core.trigger("optimization")
    await asyncio.sleep(0)
    second = core.trigger("optimization")

    assert first is not None
    assert second is None
    assert core.stats.processes["optimization"].skipped == 1

    release.set()
    await first
    assert calls == ["run"]
    assert core.stats.processes["optimization"].runs == 1


@pytest.mark.asyncio
async def test_failing_process_is_isolated_from_others():
    ran = []

    async def broken():
        raise RuntimeError("handler exploded")

    async def healthy():
        ran.append(True)

    logger = DummyLogger()
    core = SchedulerCore(
        [PeriodicProcess("analytics", 60, broken), PeriodicProcess("cleanup", 60, healthy)],
        logger=logger,
    )

    await core.trigger("analytics")
    await core.trigger("cleanup")

    assert core.stats.processes["analytics"].failures == 1
    assert core.stats.processes["analytics"].last_error == "handler exploded"
    assert core.stats.processes["cleanup"].failures == 0
    assert ran == [True]
    assert "error" in logger.levels()


@pytest.mark.asyncio
async def test_tickers_keep_running_after_failures_and_stop_as_unit():
    counts = {"broken": 0, "healthy": 0}

    async def broken():
        counts["broken"] += 1
        raise RuntimeError("again")

    async def healthy():
        counts["healthy"] += 1

    core = SchedulerCore(
        [PeriodicProcess("broken", 0.01, broken), PeriodicProcess("healthy", 0.01, healthy)],
        logger=DummyLogger(),
    )

    await core.start()
    assert sorted(core.active_processes) == ["broken", "healthy"]
    await asyncio.sleep(0.1)
    await core.stop()

    assert counts["broken"] >= 2
    assert counts["healthy"] >= 2
    assert core.active_processes == []

    settled = dict(counts)
    await asyncio.sleep(0.05)
    assert counts == settled


@pytest.mark.asyncio
async def test_stop_cancels_runs_exceeding_grace_period():
    started = asyncio.Event()
    cancelled = []

    async def stuck():
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(True)
            raise

    core = SchedulerCore(
        [PeriodicProcess("sessions", 60, stuck)],
        shutdown_grace_seconds=0.05,
        logger=DummyLogger(),
    )
    await core.start()
    core.trigger("sessions")
    await started.wait()

    await core.stop()

    assert cancelled == [True]
    assert not core.running
    assert not core.is_running("sessions")


def test_trigger_unknown_process_is_rejected():
    core = SchedulerCore(logger=DummyLogger())

    with pytest.raises(ValidationError):
        core.trigger("nope")

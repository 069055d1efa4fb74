import pytest

from charging.models import QueueStatus
from charging.queue import InMemoryQueueStore
from charging.runtime import build_dependencies
from charging.scheduler import DEFAULT_INTERVALS
from infrastructure.errors import ValidationError
from infrastructure.settings import load_settings
from tests.helpers import FakeClock, RecordingDispatcher, RecordingSleep, make_station


def make_dependencies(stations=None, clock=None):
    settings = load_settings({"QUEUE_STORE_BACKEND": "memory"})
    clock = clock or FakeClock()
    dispatcher = RecordingDispatcher()
    deps = build_dependencies(
        settings,
        store=InMemoryQueueStore(stations or [make_station(1)]),
        dispatcher=dispatcher,
        clock=clock,
    )
    deps.scheduler.tasks.sleep = RecordingSleep()
    return deps, clock, dispatcher


async def entry_for(store, user_id):
    return (await store.find_entries(user_id=user_id))[0]


@pytest.mark.asyncio
async def test_start_status_health_and_stop():
    deps, clock, _ = make_dependencies()
    scheduler = deps.scheduler

    assert not scheduler.get_status().is_running
    assert await scheduler.health_check() is False

    await scheduler.start()
    clock.advance(seconds=30)
    status = scheduler.get_status()
    healthy = await scheduler.health_check()
    report = await scheduler.health_report()

    assert status.is_running
    assert status.uptime_seconds == 30
    assert sorted(status.active_processes) == sorted(DEFAULT_INTERVALS)
    assert healthy is True
    assert report["status"] == "healthy"
    assert report["missing_processes"] == []

    await scheduler.stop()

    assert not scheduler.get_status().is_running
    assert await scheduler.health_check() is False
    assert (await scheduler.health_report())["checks"]["running"] is False


@pytest.mark.asyncio
async def test_health_check_reports_store_failure():
    deps, _, _ = make_dependencies()

    async def broken_ping():
        raise RuntimeError("no store")

    deps.store.ping = broken_ping
    await deps.scheduler.start()
    try:
        healthy = await deps.scheduler.health_check()
        report = await deps.scheduler.health_report()
    finally:
        await deps.scheduler.stop()

    assert healthy is False
    assert report["status"] == "unhealthy"
    assert report["checks"]["store"] is False


@pytest.mark.asyncio
async def test_scheduled_cleanup_task_expires_reservations():
    deps, clock, _ = make_dependencies()
    service = deps.queue_service
    await service.join("A", 1)
    await service.join("B", 1)
    await service.reserve_slot("A", 1, 15)
    clock.advance(minutes=20)

    await deps.scheduler.start()
    try:
        deps.scheduler.schedule_task("cleanup", clock())
        assert deps.scheduler.get_status().scheduled_task_count == 1
        await deps.scheduler.tasks.join()
    finally:
        await deps.scheduler.stop()

    assert (await entry_for(deps.store, "A")).status is QueueStatus.CANCELLED
    assert (await entry_for(deps.store, "B")).position == 1
    assert deps.scheduler.stats.tasks_executed == 1


def test_schedule_task_rejects_unknown_type():
    deps, clock, _ = make_dependencies()

    with pytest.raises(ValidationError):
        deps.scheduler.schedule_task("reindex", clock())


@pytest.mark.asyncio
async def test_progress_reminders_are_sent_once_to_front_of_line():
    deps, _, _ = make_dependencies()
    for user in ("A", "B", "C", "D"):
        await deps.queue_service.join(user, 1)

    first = await deps.maintenance.send_notifications()
    second = await deps.maintenance.send_notifications()

    assert (first, second) == (3, 0)
    flags = {user: (await entry_for(deps.store, user)).reminder_sent for user in "ABCD"}
    assert flags == {"A": True, "B": True, "C": True, "D": False}


@pytest.mark.asyncio
async def test_reservation_warning_before_expiry():
    deps, clock, dispatcher = make_dependencies()
    await deps.queue_service.join("A", 1)
    await deps.maintenance.send_notifications()
    await deps.queue_service.reserve_slot("A", 1, 15)

    clock.advance(minutes=5)
    early = await deps.maintenance.send_notifications()
    clock.advance(minutes=6)
    warned = await deps.maintenance.send_notifications()
    await deps.notifier.drain()

    assert (early, warned) == (0, 1)
    assert dispatcher.kinds("warning") == [("warning", "A", 1, 4)]


@pytest.mark.asyncio
async def test_analytics_refresh_and_eviction():
    deps, clock, _ = make_dependencies()
    await deps.queue_service.join("A", 1)
    await deps.queue_service.join("B", 1)

    assert await deps.maintenance.refresh_analytics() == 1

    station = await deps.store.get_station(1)
    assert station.current_queue_length == 2
    computed_at, stats = deps.maintenance.analytics_cache[1]
    assert stats.total_in_queue == 2

    clock.advance(minutes=31)
    assert deps.maintenance.evict_stale_analytics() == 1
    assert deps.maintenance.analytics_cache == {}


@pytest.mark.asyncio
async def test_availability_sweep_promotes_waiting_head_once():
    deps, _, dispatcher = make_dependencies([make_station(1), make_station(2, total_slots=1, available_slots=0)])
    await deps.queue_service.join("A", 1)
    await deps.queue_service.join("B", 2)

    assert await deps.maintenance.promote_available() == 1
    assert await deps.maintenance.promote_available() == 0

    assert (await entry_for(deps.store, "A")).status is QueueStatus.RESERVED
    assert (await entry_for(deps.store, "B")).status is QueueStatus.WAITING
    await deps.notifier.drain()
    assert dispatcher.kinds("promotion") == [("promotion", "A", 1, 1)]


@pytest.mark.asyncio
async def test_performance_snapshot_includes_process_metrics():
    deps, _, _ = make_dependencies()
    await deps.queue_service.join("A", 1)

    metrics = await deps.scheduler.report_performance()

    assert metrics["active_queues"] == 1
    assert metrics["rss_mb"] > 0
    assert metrics["scheduled_tasks"] == 0
    assert "avg_latency_s" in metrics

import asyncio
from datetime import timedelta

import pytest

from charging.models import ACTIVE_STATUSES, QueueEntry, QueueStatus
from tests.helpers import build_engine, make_station


def seed(engine, user_id, position, status=QueueStatus.WAITING, station_id=1, expiry=None, minutes_ago=0):
    created = engine.clock.now - timedelta(minutes=minutes_ago)
    entry = QueueEntry(
        user_id=user_id,
        station_id=station_id,
        position=position,
        status=status,
        reservation_expiry=expiry,
        created_at=created,
        updated_at=created,
    )
    # Bypass insert-time uniqueness to model state left behind by concurrent writers.
    engine.store._entries[entry.id] = entry
    return entry


async def active_positions(store, station_id=1):
    entries = await store.get_queue_entries(station_id, ACTIVE_STATUSES)
    return [(entry.user_id, entry.position) for entry in entries]


@pytest.mark.asyncio
async def test_rebalance_closes_gaps_and_only_rewrites_moved_rows():
    engine = build_engine()
    seed(engine, "A", 1, minutes_ago=30)
    seed(engine, "B", 3, minutes_ago=20)
    seed(engine, "C", 7, minutes_ago=10)

    result = await engine.rebalancer.rebalance(1)

    assert await active_positions(engine.store) == [("A", 1), ("B", 2), ("C", 3)]
    assert result.position_updates == 2
    assert engine.store.write_count == 2


@pytest.mark.asyncio
async def test_rebalance_is_idempotent():
    engine = build_engine()
    seed(engine, "A", 2, minutes_ago=30)
    seed(engine, "B", 5, minutes_ago=20)

    await engine.rebalancer.rebalance(1)
    writes = engine.store.write_count
    second = await engine.rebalancer.rebalance(1)

    assert engine.store.write_count == writes
    assert not second.changed


@pytest.mark.asyncio
async def test_rebalance_breaks_position_ties_by_join_time():
    engine = build_engine()
    seed(engine, "late", 2, minutes_ago=1)
    seed(engine, "early", 2, minutes_ago=5)
    seed(engine, "head", 1, minutes_ago=10)

    await engine.rebalancer.rebalance(1)

    assert await active_positions(engine.store) == [("head", 1), ("early", 2), ("late", 3)]


@pytest.mark.asyncio
async def test_stalled_head_reservation_is_recovered_and_next_user_promoted():
    engine = build_engine([make_station(1, total_slots=1, available_slots=1)])
    expiry = engine.clock.now - timedelta(minutes=6)
    seed(engine, "A", 1, status=QueueStatus.RESERVED, expiry=expiry, minutes_ago=30)
    seed(engine, "B", 2, minutes_ago=20)
    seed(engine, "C", 3, minutes_ago=10)

    result = await engine.rebalancer.rebalance(1)

    assert result.expired_user == "A"
    assert result.promoted_user == "B"
    assert await active_positions(engine.store) == [("B", 1), ("C", 2)]
    entries = {entry.user_id: entry for entry in await engine.store.find_entries(station_id=1)}
    assert entries["A"].status is QueueStatus.CANCELLED
    assert entries["A"].cancel_reason == "expired"
    assert entries["B"].status is QueueStatus.RESERVED

    await engine.notifier.drain()
    assert engine.dispatcher.kinds("expired") == [("expired", "A", 1)]
    assert engine.dispatcher.kinds("promotion") == [("promotion", "B", 1, 1)]


@pytest.mark.asyncio
async def test_reservation_within_grace_window_is_left_alone():
    engine = build_engine()
    expiry = engine.clock.now - timedelta(minutes=3)
    seed(engine, "A", 1, status=QueueStatus.RESERVED, expiry=expiry, minutes_ago=30)
    seed(engine, "B", 2, minutes_ago=20)

    result = await engine.rebalancer.rebalance(1)

    assert result.expired_user is None
    assert engine.store.write_count == 0


@pytest.mark.asyncio
async def test_stalled_head_without_free_slot_is_not_replaced():
    engine = build_engine([make_station(1, total_slots=1, available_slots=0)])
    expiry = engine.clock.now - timedelta(minutes=10)
    seed(engine, "A", 1, status=QueueStatus.RESERVED, expiry=expiry, minutes_ago=30)
    seed(engine, "B", 2, minutes_ago=20)

    result = await engine.rebalancer.rebalance(1)

    assert result.expired_user == "A"
    assert result.promoted_user is None
    remaining = await engine.store.get_queue_entries(1, ACTIVE_STATUSES)
    assert [(entry.user_id, entry.status) for entry in remaining] == [("B", QueueStatus.WAITING)]


@pytest.mark.asyncio
async def test_misplaced_reservation_returns_to_waiting():
    engine = build_engine()
    seed(engine, "A", 1, status=QueueStatus.CHARGING, minutes_ago=30)
    seed(engine, "B", 2, status=QueueStatus.RESERVED, expiry=engine.clock.now, minutes_ago=20)

    result = await engine.rebalancer.rebalance(1)

    assert result.demoted == 1
    b = (await engine.store.find_entries(user_id="B"))[0]
    assert b.status is QueueStatus.WAITING
    assert b.reservation_expiry is None


@pytest.mark.asyncio
async def test_rebalance_all_isolates_failing_station():
    engine = build_engine([make_station(1), make_station(2)])
    seed(engine, "A", 3, station_id=2)
    original = engine.store.get_queue_entries

    async def flaky(station_id, statuses=None):
        if station_id == 1:
            raise RuntimeError("station 1 unreadable")
        return await original(station_id, statuses)

    engine.store.get_queue_entries = flaky

    results = await engine.rebalancer.rebalance_all()

    assert [result.station_id for result in results] == [2]
    assert [entry.position for entry in await original(2, ACTIVE_STATUSES)] == [1]


@pytest.mark.asyncio
async def test_concurrent_leaves_and_rebalances_converge_to_contiguous_positions():
    engine = build_engine()
    users = [f"user-{index}" for index in range(8)]
    for user in users:
        await engine.service.join(user, 1)

    await asyncio.gather(
        engine.service.leave_queue("user-1", 1),
        engine.service.leave_queue("user-4", 1),
        engine.rebalancer.rebalance(1),
        engine.service.leave_queue("user-6", 1),
        engine.rebalancer.rebalance(1),
    )
    await engine.rebalancer.rebalance(1)

    settled = await active_positions(engine.store)
    assert [position for _, position in settled] == list(range(1, len(settled) + 1))
    assert [user for user, _ in settled] == ["user-0", "user-2", "user-3", "user-5", "user-7"]

import asyncio
import logging

import pytest

from charging.notifications import LoggingNotificationDispatcher
from charging.queue import InMemoryQueueStore, JsonQueueStore
from charging.runtime import LifecycleManager, build_dependencies, build_dispatcher, build_store
from infrastructure.errors import ValidationError
from infrastructure.logging_config import QUEUE_LOGGERS, setup_logging
from infrastructure.settings import load_settings
from tests.helpers import DummyLogger, RecordingDispatcher


def test_store_backend_selection(tmp_path):
    memory = build_store(load_settings({"QUEUE_STORE_BACKEND": "memory"}))
    json_store = build_store(load_settings({
        "QUEUE_FILE": str(tmp_path / "queue.json"),
        "STATIONS_FILE": str(tmp_path / "stations.json"),
    }))

    assert type(memory) is InMemoryQueueStore
    assert isinstance(json_store, JsonQueueStore)
    with pytest.raises(ValidationError):
        build_store(load_settings({"QUEUE_STORE_BACKEND": "postgres"}))


def test_dispatcher_falls_back_to_logging_without_token():
    dispatcher = build_dispatcher(load_settings({}))

    assert isinstance(dispatcher, LoggingNotificationDispatcher)


def test_dependencies_share_one_store():
    deps = build_dependencies(load_settings({"QUEUE_STORE_BACKEND": "memory"}), dispatcher=RecordingDispatcher())

    assert deps.queue_service.store is deps.store
    assert deps.scheduler.store is deps.store
    assert deps.rebalancer.store is deps.store
    assert set(deps.as_dict()) >= {"store", "queue_service", "scheduler"}


@pytest.mark.asyncio
async def test_lifecycle_runs_until_shutdown_requested():
    deps = build_dependencies(load_settings({"QUEUE_STORE_BACKEND": "memory"}), dispatcher=RecordingDispatcher())
    lifecycle = LifecycleManager(deps, logger=DummyLogger())

    runner = asyncio.create_task(lifecycle.run())
    for _ in range(10):
        await asyncio.sleep(0)
        if deps.scheduler.is_running:
            break
    assert deps.scheduler.is_running

    lifecycle.request_shutdown()
    await asyncio.wait_for(runner, timeout=2)

    assert not deps.scheduler.is_running


def test_setup_logging_writes_queue_log(tmp_path):
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging(production_mode=False, log_dir=str(tmp_path))
        logging.getLogger("QueueService").info("queue event")
        for handler in logging.getLogger().handlers + logging.getLogger("QueueService").handlers:
            handler.flush()

        assert "queue event" in (tmp_path / "queue.log").read_text(encoding="utf-8")
        assert (tmp_path / "charging_debug.log").exists()
    finally:
        for handler in logging.getLogger().handlers:
            handler.close()
        for name in QUEUE_LOGGERS:
            queue_logger = logging.getLogger(name)
            for handler in queue_logger.handlers:
                handler.close()
            queue_logger.handlers = []
            queue_logger.setLevel(logging.NOTSET)
        root.handlers = saved_handlers
        root.setLevel(saved_level)

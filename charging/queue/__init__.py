"""Queue and reservation engine."""

from .estimates import estimate_wait_minutes
from .expiry_monitor import ExpiryMonitor, ExpirySweepResult
from .queue_repository import JsonRecordRepository
from .queue_service import JoinResult, QueueService, QueueStats
from .queue_store import InMemoryQueueStore, JsonQueueStore
from .rebalancer import PositionRebalancer, RebalanceResult

__all__ = [
    "estimate_wait_minutes",
    "ExpiryMonitor",
    "ExpirySweepResult",
    "JsonRecordRepository",
    "JoinResult",
    "QueueService",
    "QueueStats",
    "InMemoryQueueStore",
    "JsonQueueStore",
    "PositionRebalancer",
    "RebalanceResult",
]

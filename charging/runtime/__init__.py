"""Runtime wiring and lifecycle for the charging queue service."""

from .container import ChargingDependencies, build_dependencies, build_dispatcher, build_store
from .lifecycle import LifecycleManager

__all__ = [
    "ChargingDependencies",
    "build_dependencies",
    "build_dispatcher",
    "build_store",
    "LifecycleManager",
]

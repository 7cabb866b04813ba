from __future__ import annotations

from .config import MemsyncConfig, load_config
from .executors import JsonBackendExecutor, ObjectBackendExecutor, create_executor
from .metrics import MemsyncMetrics
from .monitor import (
    MemoryMonitor,
    MemoryState,
    MemoryStats,
    calculate_usage_ratio,
    classify_status,
    is_write_query,
    warn_volatility,
)
from .sizing import estimate_size
from .store import LocalStore, MutationResult

__version__ = "0.1.0"

__all__ = [
    "JsonBackendExecutor",
    "LocalStore",
    "MemoryMonitor",
    "MemoryState",
    "MemoryStats",
    "MemsyncConfig",
    "MemsyncMetrics",
    "MutationResult",
    "ObjectBackendExecutor",
    "calculate_usage_ratio",
    "classify_status",
    "create_executor",
    "estimate_size",
    "is_write_query",
    "load_config",
    "warn_volatility",
]

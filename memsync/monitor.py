from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any, Literal

from .config import MemsyncConfig, validate_thresholds
from .executors import QueryExecutor, QueryResult, create_executor
from .metrics import MemsyncMetrics
from .sizing import DEFAULT_ESTIMATE_MULTIPLIER, estimate_size

logger = logging.getLogger(__name__)

MemoryStatus = Literal["ok", "warning", "critical"]

DEFAULT_MAX_BYTES = 50 * 1024 * 1024
DEFAULT_WARNING_THRESHOLD = 0.8
DEFAULT_CRITICAL_THRESHOLD = 0.95

WRITE_KEYWORDS = frozenset({"CREATE", "INSERT", "REPLACE", "UPDATE", "UPSERT"})
MUTATION_MARKERS = (":put", ":create")
_LEADING_NOISE = re.compile(r"(?:\s+|--[^\n]*(?:\n|$)|/\*.*?\*/)*", re.DOTALL)
_FIRST_WORD = re.compile(r"[A-Za-z]+")


@dataclass(frozen=True)
class MemoryState:
    bytes_written: int = 0
    row_count: int = 0
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class MemoryStats:
    bytes_written: int
    row_count: int
    max_bytes: int
    usage_ratio: float
    status: MemoryStatus
    runtime_ms: float

    @property
    def usage_percent(self) -> float:
        return round(self.usage_ratio * 100, 2)


StatsCallback = Callable[[MemoryStats], object]


def calculate_usage_ratio(bytes_written: int, max_bytes: int) -> float:
    return min(max(bytes_written / max_bytes, 0.0), 1.0)


def classify_status(
    usage_ratio: float,
    warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
    critical_threshold: float = DEFAULT_CRITICAL_THRESHOLD,
) -> MemoryStatus:
    if usage_ratio >= critical_threshold:
        return "critical"
    if usage_ratio >= warning_threshold:
        return "warning"
    return "ok"


def is_write_query(query: str) -> bool:
    if any(marker in query for marker in MUTATION_MARKERS):
        return True
    start = _LEADING_NOISE.match(query)
    match = _FIRST_WORD.match(query, start.end() if start else 0)
    return bool(match) and match.group(0).upper() in WRITE_KEYWORDS


def warn_volatility(environment: str = "browser") -> str:
    if environment == "browser":
        message = (
            "in-memory data is VOLATILE and is lost when the host context is torn down; "
            "call sync() to persist it to the server"
        )
    else:
        message = "using an in-memory backend; data will be lost on process exit"
    logger.warning(message)
    return message


class MemoryMonitor:
    """Wraps a query backend and tracks the estimated volume of writes.

    Usage is classified into ``ok``/``warning``/``critical`` bands.
    ``on_warning`` and ``on_critical`` fire only when the band changes;
    ``on_overflow`` fires on every tracked write while the estimate is
    above ``max_bytes``. Callbacks receive a fresh ``MemoryStats`` and any
    exception they raise propagates to the caller of ``run``/``track_bytes``.
    """

    def __init__(
        self,
        backend: Any,
        *,
        max_bytes: int = DEFAULT_MAX_BYTES,
        warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
        critical_threshold: float = DEFAULT_CRITICAL_THRESHOLD,
        estimate_multiplier: float = DEFAULT_ESTIMATE_MULTIPLIER,
        on_warning: StatsCallback | None = None,
        on_critical: StatsCallback | None = None,
        on_overflow: StatsCallback | None = None,
        string_encoded: bool = False,
        metrics: MemsyncMetrics | None = None,
    ) -> None:
        validate_thresholds(max_bytes, warning_threshold, critical_threshold)
        if estimate_multiplier <= 0:
            raise ValueError("estimate_multiplier must be positive")
        self.executor: QueryExecutor = create_executor(backend, string_encoded=string_encoded)
        self.max_bytes = max_bytes
        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold
        self.estimate_multiplier = estimate_multiplier
        self.on_warning = on_warning
        self.on_critical = on_critical
        self.on_overflow = on_overflow
        self.metrics = metrics
        self._state = MemoryState()
        self._last_status: MemoryStatus = "ok"

    @classmethod
    def from_config(
        cls,
        backend: Any,
        config: MemsyncConfig,
        *,
        on_warning: StatsCallback | None = None,
        on_critical: StatsCallback | None = None,
        on_overflow: StatsCallback | None = None,
        metrics: MemsyncMetrics | None = None,
    ) -> MemoryMonitor:
        return cls(
            backend,
            max_bytes=config.max_bytes,
            warning_threshold=config.warning_threshold,
            critical_threshold=config.critical_threshold,
            estimate_multiplier=config.estimate_multiplier,
            on_warning=on_warning,
            on_critical=on_critical,
            on_overflow=on_overflow,
            string_encoded=config.string_encoded_backend,
            metrics=metrics,
        )

    def run(self, query: str, params: dict[str, Any] | None = None) -> QueryResult:
        params = params if params is not None else {}
        started = time.perf_counter()
        try:
            result = self.executor.execute(query, params)
        except Exception:
            self._record_query(False, started)
            raise
        self._record_query(bool(result.get("ok", True)), started)
        if is_write_query(query):
            write_size = estimate_size(query, self.estimate_multiplier) + estimate_size(
                params, self.estimate_multiplier
            )
            rows = result.get("rows") or []
            self._state = replace(
                self._state,
                bytes_written=self._state.bytes_written + write_size,
                row_count=self._state.row_count + (len(rows) or 1),
            )
            self._check_thresholds()
        return result

    def track_bytes(self, n: int) -> MemoryStatus:
        if n < 0:
            raise ValueError("tracked bytes must be non-negative")
        self._state = replace(self._state, bytes_written=self._state.bytes_written + n)
        return self._check_thresholds()

    def get_stats(self) -> MemoryStats:
        ratio = calculate_usage_ratio(self._state.bytes_written, self.max_bytes)
        return MemoryStats(
            bytes_written=self._state.bytes_written,
            row_count=self._state.row_count,
            max_bytes=self.max_bytes,
            usage_ratio=ratio,
            status=classify_status(ratio, self.warning_threshold, self.critical_threshold),
            runtime_ms=(time.time() - self._state.created_at) * 1000,
        )

    def reset(self) -> None:
        logger.info(
            "memory tracking reset after %d bytes / %d rows",
            self._state.bytes_written,
            self._state.row_count,
        )
        self._state = MemoryState()
        self._last_status = "ok"
        if self.metrics is not None:
            self.metrics.memory_usage(0, self.max_bytes)

    def _record_query(self, success: bool, started: float) -> None:
        if self.metrics is None:
            return
        self.metrics.query_executed(success, (time.perf_counter() - started) * 1000)

    def _check_thresholds(self) -> MemoryStatus:
        bytes_written = self._state.bytes_written
        if self.metrics is not None:
            self.metrics.memory_usage(bytes_written, self.max_bytes)
        ratio = calculate_usage_ratio(bytes_written, self.max_bytes)
        status = classify_status(ratio, self.warning_threshold, self.critical_threshold)

        if status != self._last_status:
            if status == "warning":
                logger.warning("memory usage at %.0f%% of %d bytes", ratio * 100, self.max_bytes)
                if self.on_warning is not None:
                    self.on_warning(self.get_stats())
            elif status == "critical":
                logger.warning(
                    "memory usage critical at %.0f%% of %d bytes", ratio * 100, self.max_bytes
                )
                if self.on_critical is not None:
                    self.on_critical(self.get_stats())
            self._last_status = status

        if bytes_written > self.max_bytes:
            logger.error("memory limit exceeded: %d > %d bytes", bytes_written, self.max_bytes)
            if self.on_overflow is not None:
                self.on_overflow(self.get_stats())
        return status

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any

from rich import print
from rich.table import Table

from ..executors import create_executor
from ..monitor import MemoryMonitor

BENCH_QUERY = "INSERT INTO bench(id, value) VALUES (:id, :value)"


class SimulatedBackend:
    """Backend that sleeps for a random latency and returns a fixed result set."""

    def __init__(self, min_latency_ms: float, max_latency_ms: float, rows: int = 100) -> None:
        self.min_latency_ms = min_latency_ms
        self.max_latency_ms = max(max_latency_ms, min_latency_ms)
        self.result_rows = [[i, f"val{i}"] for i in range(rows)]

    def run(self, query: str, params: dict[str, Any]) -> dict[str, Any]:
        latency_ms = random.uniform(self.min_latency_ms, self.max_latency_ms)
        if latency_ms > 0:
            time.sleep(latency_ms / 1000)
        return {"ok": True, "headers": ["id", "value"], "rows": self.result_rows}


@dataclass(frozen=True)
class BenchResult:
    iterations: int
    executor_ms: float
    monitor_ms: float
    bytes_written: int

    @property
    def executor_avg_ms(self) -> float:
        return self.executor_ms / self.iterations

    @property
    def monitor_avg_ms(self) -> float:
        return self.monitor_ms / self.iterations

    @property
    def overhead_ms(self) -> float:
        return self.monitor_avg_ms - self.executor_avg_ms


def run_bench(iterations: int, *, min_latency_ms: float, max_latency_ms: float) -> BenchResult:
    if iterations <= 0:
        raise ValueError("iterations must be positive")
    backend = SimulatedBackend(min_latency_ms, max_latency_ms)

    executor = create_executor(backend)
    started = time.perf_counter()
    for i in range(iterations):
        executor.execute(BENCH_QUERY, {"id": i, "value": f"val{i}"})
    executor_ms = (time.perf_counter() - started) * 1000

    monitor = MemoryMonitor(
        backend,
        max_bytes=1024 * 1024,
        on_warning=lambda stats: None,
        on_critical=lambda stats: None,
        on_overflow=lambda stats: None,
    )
    started = time.perf_counter()
    for i in range(iterations):
        monitor.run(BENCH_QUERY, {"id": i, "value": f"val{i}"})
    monitor_ms = (time.perf_counter() - started) * 1000

    return BenchResult(
        iterations=iterations,
        executor_ms=executor_ms,
        monitor_ms=monitor_ms,
        bytes_written=monitor.get_stats().bytes_written,
    )


def bench_cmd(*, iterations: int, min_latency_ms: float, max_latency_ms: float) -> None:
    """Measure memory monitor overhead against a bare executor."""

    result = run_bench(iterations, min_latency_ms=min_latency_ms, max_latency_ms=max_latency_ms)
    table = Table(title=f"memsync overhead ({result.iterations} iterations)")
    table.add_column("Path")
    table.add_column("Total ms", justify="right")
    table.add_column("Avg ms/query", justify="right")
    table.add_row("executor", f"{result.executor_ms:.1f}", f"{result.executor_avg_ms:.3f}")
    table.add_row("memory monitor", f"{result.monitor_ms:.1f}", f"{result.monitor_avg_ms:.3f}")
    print(table)
    print(f"Monitor overhead: [bold]{result.overhead_ms:.3f}[/bold] ms/query")
    print(f"Estimated bytes tracked: {result.bytes_written}")

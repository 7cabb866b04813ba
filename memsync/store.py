from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from . import db


@dataclass(frozen=True)
class MutationResult:
    success: bool
    affected: int


class LocalStore:
    """Executor over the local in-memory replica.

    Exposes the ``query``/``mutate`` pair the sync layer reads and writes
    through, plus ``run`` so the same connection can sit behind a
    ``MemoryMonitor``.
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        self.db_path = db_path
        self.conn = db.connect(db_path, check_same_thread=False)
        self._lock = threading.RLock()

    def query(self, query: str, params: dict[str, Any] | None = None) -> list[tuple[Any, ...]]:
        with self._lock:
            rows = self.conn.execute(query, params or {}).fetchall()
        return [tuple(row) for row in rows]

    def mutate(self, query: str, params: dict[str, Any] | None = None) -> MutationResult:
        with self._lock:
            cur = self.conn.execute(query, params or {})
            self.conn.commit()
        return MutationResult(success=True, affected=max(cur.rowcount, 0))

    def run(self, query: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        with self._lock:
            cur = self.conn.execute(query, params or {})
            rows = cur.fetchall()
            self.conn.commit()
        headers = [col[0] for col in cur.description] if cur.description else []
        return {"ok": True, "headers": headers, "rows": [list(row) for row in rows]}

    def close(self) -> None:
        with self._lock:
            self.conn.close()


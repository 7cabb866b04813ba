from __future__ import annotations

import threading
import time
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, TypedDict

from . import db
from .sync.records import SyncRecord, SyncRecordPayload


class ChangeSet(TypedDict):
    items: list[SyncRecordPayload]
    serverTime: float


class ServerStore:
    """Authoritative replica behind the reference sync server.

    Incoming records are merged last-write-wins on ``updatedAt``: a record
    replaces the stored one only when strictly newer. Pulls are keyed on the
    server-side ``received_at`` stamp rather than the client-supplied
    ``updatedAt``, so an edit made offline and pushed late still reaches
    replicas whose watermark has moved past its ``updatedAt``.
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        self.db_path = db_path
        self.conn = db.connect(db_path, check_same_thread=False)
        db.initialize_server_schema(self.conn)
        self._lock = threading.Lock()

    def apply_items(
        self,
        table: str,
        items: Iterable[Mapping[str, Any]],
        *,
        client_id: str | None = None,
    ) -> dict[str, int]:
        records = [SyncRecord.from_wire(item) for item in items]
        accepted = 0
        ignored = 0
        with self._lock:
            received_at = time.time()
            for record in records:
                row = self.conn.execute(
                    "SELECT updated_at FROM sync_items WHERE table_name = ? AND id = ?",
                    (table, record.id),
                ).fetchone()
                if row is not None and record.updated_at <= float(row["updated_at"]):
                    ignored += 1
                    continue
                self.conn.execute(
                    """
                    INSERT OR REPLACE INTO sync_items(
                        table_name, id, client_id, data, updated_at, sync_id, received_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        table,
                        record.id,
                        record.client_id or client_id,
                        record.data,
                        record.updated_at,
                        record.sync_id,
                        received_at,
                    ),
                )
                accepted += 1
            self.conn.commit()
        return {"accepted": accepted, "ignored": ignored}

    def items_since(self, table: str, since: float = 0.0) -> list[SyncRecordPayload]:
        return self.changes_since(table, since)["items"]

    def changes_since(self, table: str, since: float = 0.0) -> ChangeSet:
        """Records received at or after ``since`` on the server clock.

        ``serverTime`` is read under the same lock that stamps
        ``received_at`` on push, so a later push always lands at or after it
        and is picked up by the next pull that uses it as ``since``.
        """
        with self._lock:
            server_time = time.time()
            rows = self.conn.execute(
                """
                SELECT id, client_id, data, updated_at, sync_id
                FROM sync_items
                WHERE table_name = ? AND received_at >= ?
                ORDER BY received_at ASC, rowid ASC
                """,
                (table, since),
            ).fetchall()
        items: list[SyncRecordPayload] = [
            SyncRecord(
                id=row["id"],
                data=row["data"],
                client_id=row["client_id"] or "",
                updated_at=float(row["updated_at"]),
                sync_id=row["sync_id"] or "",
            ).to_wire()
            for row in rows
        ]
        return {"items": items, "serverTime": server_time}

    def close(self) -> None:
        with self._lock:
            self.conn.close()

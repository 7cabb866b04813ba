from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

MEMORY_DB = ":memory:"


def connect(db_path: Path | str | None = None, check_same_thread: bool = True) -> sqlite3.Connection:
    if db_path is None or str(db_path) == MEMORY_DB:
        conn = sqlite3.connect(MEMORY_DB, check_same_thread=check_same_thread)
        conn.row_factory = sqlite3.Row
        return conn
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def initialize_server_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS sync_items (
            table_name TEXT NOT NULL,
            id NOT NULL,
            client_id TEXT,
            data TEXT NOT NULL,
            updated_at REAL NOT NULL,
            sync_id TEXT,
            received_at REAL NOT NULL,
            PRIMARY KEY (table_name, id)
        );
        CREATE INDEX IF NOT EXISTS idx_sync_items_received
            ON sync_items(table_name, received_at);
        """
    )
    conn.commit()


def quote_ident(name: str) -> str:
    if not name or "\x00" in name:
        raise ValueError(f"invalid identifier: {name!r}")
    return '"' + name.replace('"', '""') + '"'


def from_json(text: str | None) -> dict[str, Any]:
    if not text:
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


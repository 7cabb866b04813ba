from __future__ import annotations

from .auto import AutoSync, setup_auto_sync
from .http_client import TransportError
from .manager import PendingChange, SyncManager, SyncStatus
from .records import (
    SyncRecord,
    create_sync_record,
    generate_sync_id,
    is_local_newer,
    resolve_conflict,
)

__all__ = [
    "AutoSync",
    "PendingChange",
    "SyncManager",
    "SyncRecord",
    "SyncStatus",
    "TransportError",
    "create_sync_record",
    "generate_sync_id",
    "is_local_newer",
    "resolve_conflict",
    "setup_auto_sync",
]

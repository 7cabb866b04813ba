from __future__ import annotations

import logging
import secrets
import string
import time
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any, TypedDict

from ..sizing import canonical_json

logger = logging.getLogger(__name__)

CONFLICT_STRATEGIES = ("local", "server", "merge")
_SYNC_ID_ALPHABET = string.ascii_lowercase + string.digits


class SyncRecordPayload(TypedDict):
    id: Any
    data: str
    clientId: str
    updatedAt: float
    syncId: str


@dataclass(frozen=True)
class SyncRecord:
    id: Any
    data: str
    client_id: str
    updated_at: float
    sync_id: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_wire(self) -> SyncRecordPayload:
        return {
            "id": self.id,
            "data": self.data,
            "clientId": self.client_id,
            "updatedAt": self.updated_at,
            "syncId": self.sync_id,
        }

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any]) -> SyncRecord:
        if not isinstance(payload, Mapping):
            raise ValueError("sync record must be an object")
        record_id = payload.get("id")
        if isinstance(record_id, bool) or not isinstance(record_id, str | int):
            raise ValueError("sync record id must be a string or integer")
        updated_at = payload.get("updatedAt")
        if isinstance(updated_at, bool) or not isinstance(updated_at, int | float):
            raise ValueError("sync record missing updatedAt")
        data = payload.get("data")
        return cls(
            id=record_id,
            data=data if isinstance(data, str) else canonical_json(data),
            client_id=str(payload.get("clientId") or ""),
            updated_at=float(updated_at),
            sync_id=str(payload.get("syncId") or ""),
        )


def generate_sync_id() -> str:
    suffix = "".join(secrets.choice(_SYNC_ID_ALPHABET) for _ in range(9))
    return f"{int(time.time() * 1000)}-{suffix}"


def create_sync_record(
    record_id: Any,
    data: Any,
    client_id: str,
    *,
    updated_at: float | None = None,
) -> SyncRecord:
    return SyncRecord(
        id=record_id,
        data=data if isinstance(data, str) else canonical_json(data),
        client_id=client_id,
        updated_at=time.time() if updated_at is None else updated_at,
        sync_id=generate_sync_id(),
    )


def is_local_newer(local: Mapping[str, Any], remote: Mapping[str, Any]) -> bool:
    local_ts = local.get("updated_at")
    remote_ts = remote.get("updated_at")
    if local_ts is None or remote_ts is None:
        return False
    return local_ts > remote_ts


def resolve_conflict(
    local: Mapping[str, Any],
    remote: Mapping[str, Any],
    strategy: str = "server",
) -> Mapping[str, Any]:
    if strategy == "local":
        return local
    if strategy == "merge":
        merged = dict(remote)
        merged.update({key: value for key, value in local.items() if value is not None})
        timestamps = [
            ts for ts in (local.get("updated_at"), remote.get("updated_at")) if ts is not None
        ]
        if timestamps:
            merged["updated_at"] = max(timestamps)
        return merged
    if strategy != "server":
        logger.warning("unknown conflict strategy %r; keeping the server version", strategy)
    return remote

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from .. import db
from ..config import MemsyncConfig
from ..metrics import MemsyncMetrics
from ..sizing import canonical_json
from . import http_client
from .http_client import TransportError
from .records import (
    SyncRecord,
    create_sync_record,
    generate_sync_id,
    is_local_newer,
    resolve_conflict,
)

logger = logging.getLogger(__name__)

BEACON_TIMEOUT_S = 1.0
SUPPORTED_OPERATIONS = ("put",)


class LocalExecutor(Protocol):
    def query(self, query: str, params: dict[str, Any] | None = None) -> Sequence[Sequence[Any]]: ...

    def mutate(self, query: str, params: dict[str, Any] | None = None) -> Any: ...


@dataclass(frozen=True)
class PendingChange:
    table: str
    operation: str
    record: SyncRecord


@dataclass(frozen=True)
class SyncStatus:
    client_id: str
    last_sync_time: float
    pending_count: int
    is_syncing: bool


ConflictHook = Callable[[Mapping[str, Any], Mapping[str, Any]], object]


def _failure_message(action: str, status: int, payload: Any) -> str:
    detail = http_client.error_detail(payload)
    suffix = f" ({status}: {detail})" if detail else f" ({status})"
    return f"{action} failed{suffix}"


class SyncManager:
    """Reconciles the local replica with one authoritative sync server.

    Local mutations are queued with ``queue_change`` and delivered by
    ``push``; ``pull`` fetches everything the server saw since the last
    watermark and applies it, resolving records where the local copy is
    strictly newer with the configured strategy. Delivery is at-least-once:
    a failed push leaves its entries queued for the next attempt.
    """

    def __init__(
        self,
        local_store: LocalExecutor,
        server_url: str,
        *,
        client_id: str | None = None,
        conflict_strategy: str = "server",
        on_conflict: ConflictHook | None = None,
        on_sync_start: Callable[[], object] | None = None,
        on_sync_complete: Callable[[dict[str, Any]], object] | None = None,
        on_sync_error: Callable[[Exception], object] | None = None,
        timeout_s: float = 3.0,
        metrics: MemsyncMetrics | None = None,
    ) -> None:
        self.local_store = local_store
        self.server_url = http_client.build_base_url(server_url)
        self.client_id = client_id or generate_sync_id()
        self.conflict_strategy = conflict_strategy
        self.on_conflict = on_conflict
        self.on_sync_start = on_sync_start
        self.on_sync_complete = on_sync_complete
        self.on_sync_error = on_sync_error
        self.timeout_s = timeout_s
        self.metrics = metrics
        self._last_sync_time = 0.0
        self._pending: list[PendingChange] = []
        self._queue_lock = threading.Lock()
        self._sync_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        local_store: LocalExecutor,
        config: MemsyncConfig,
        **hooks: Any,
    ) -> SyncManager:
        return cls(
            local_store,
            config.server_url,
            client_id=config.client_id,
            conflict_strategy=config.conflict_strategy,
            timeout_s=config.sync_timeout_s,
            **hooks,
        )

    def init(self) -> dict[str, str]:
        logger.warning("local replica is VOLATILE; unsynced changes are lost on teardown")
        logger.warning("call sync() regularly to prevent data loss")
        logger.warning("recommended triggers: lost focus, unload and a periodic interval")
        return {"client_id": self.client_id, "server_url": self.server_url}

    def queue_change(self, table: str, record_id: Any, data: Any, operation: str = "put") -> str:
        # The wire format carries full records only; deletes have no representation.
        if operation not in SUPPORTED_OPERATIONS:
            raise ValueError(f"unsupported sync operation: {operation!r}")
        record = create_sync_record(record_id, data, self.client_id)
        with self._queue_lock:
            self._pending.append(PendingChange(table=table, operation=operation, record=record))
        return record.sync_id

    def pending_for(self, table: str) -> list[PendingChange]:
        with self._queue_lock:
            return [change for change in self._pending if change.table == table]

    def push(self, table: str) -> dict[str, Any]:
        batch = self.pending_for(table)
        if not batch:
            return {"pushed": 0}
        url = http_client.build_sync_url(self.server_url, table)
        body = {"clientId": self.client_id, "items": [change.record.to_wire() for change in batch]}
        try:
            status, payload = http_client.request_json(
                "POST", url, body=body, timeout_s=self.timeout_s
            )
            if not http_client.is_success(status):
                raise TransportError(
                    _failure_message("push", status, payload), status=status, payload=payload
                )
        except Exception as exc:
            self._report_error("push", table, exc)
            raise

        pushed = {id(change) for change in batch}
        with self._queue_lock:
            self._pending = [change for change in self._pending if id(change) not in pushed]
        if self.metrics is not None:
            self.metrics.sync_completed("push", len(batch))
        logger.info("pushed %d change(s) for %s", len(batch), table)
        return {"pushed": len(batch), "server_response": payload}

    def pull(self, table: str, fields: Sequence[str]) -> dict[str, Any]:
        url = http_client.build_sync_url(
            self.server_url,
            table,
            {"since": self._last_sync_time, "clientId": self.client_id},
        )
        try:
            status, payload = http_client.request_json("GET", url, timeout_s=self.timeout_s)
            if not http_client.is_success(status):
                raise TransportError(
                    _failure_message("pull", status, payload), status=status, payload=payload
                )
            items = payload.get("items") if isinstance(payload, dict) else None
            if not isinstance(items, list):
                raise TransportError("invalid pull response", status=status, payload=payload)
            try:
                remote_records = [SyncRecord.from_wire(item) for item in items]
            except ValueError as exc:
                raise TransportError(
                    f"invalid pull response: {exc}", status=status, payload=payload
                ) from exc

            applied = 0
            for remote_record in remote_records:
                remote = remote_record.to_dict()
                local = self._get_local_record(table, remote["id"], fields)
                if local is not None and is_local_newer(local, remote):
                    if self.on_conflict is not None and self.on_conflict(local, remote) == "skip":
                        continue
                    resolved = resolve_conflict(local, remote, self.conflict_strategy)
                    self._apply_to_local(table, resolved, fields)
                else:
                    self._apply_to_local(table, remote, fields)
                applied += 1
        except Exception as exc:
            self._report_error("pull", table, exc)
            raise

        server_time = payload.get("serverTime")
        if isinstance(server_time, int | float) and not isinstance(server_time, bool) and server_time:
            self._last_sync_time = float(server_time)
        else:
            self._last_sync_time = time.time()
        if self.metrics is not None:
            self.metrics.sync_completed("pull", applied)
        logger.info("pulled %d record(s) for %s", applied, table)
        return {"pulled": applied}

    def sync(self, table: str, fields: Sequence[str]) -> dict[str, Any]:
        if not self._sync_lock.acquire(blocking=False):
            logger.warning("sync already in progress; skipping")
            return {"skipped": True}
        try:
            if self.on_sync_start is not None:
                self.on_sync_start()
            push_result = self.push(table)
            pull_result = self.pull(table, fields)
            result = {
                "pushed": push_result["pushed"],
                "pulled": pull_result["pulled"],
                "timestamp": int(time.time() * 1000),
            }
            if self.on_sync_complete is not None:
                self.on_sync_complete(result)
            return result
        finally:
            self._sync_lock.release()

    def send_beacon(self, table: str) -> bool:
        batch = self.pending_for(table)
        if not batch:
            return False
        url = http_client.build_sync_url(self.server_url, table)
        body = {"clientId": self.client_id, "items": [change.record.to_wire() for change in batch]}
        try:
            status, _payload = http_client.request_json(
                "POST", url, body=body, timeout_s=BEACON_TIMEOUT_S
            )
        except (TransportError, ValueError) as exc:
            logger.debug("unload beacon for %s failed: %s", table, exc)
            return False
        return http_client.is_success(status)

    def get_status(self) -> SyncStatus:
        with self._queue_lock:
            pending_count = len(self._pending)
        return SyncStatus(
            client_id=self.client_id,
            last_sync_time=self._last_sync_time,
            pending_count=pending_count,
            is_syncing=self._sync_lock.locked(),
        )

    def _report_error(self, action: str, table: str, exc: Exception) -> None:
        logger.warning("sync %s for %s failed: %s", action, table, exc)
        if self.on_sync_error is not None:
            self.on_sync_error(exc)

    def _get_local_record(
        self, table: str, record_id: Any, fields: Sequence[str]
    ) -> dict[str, Any] | None:
        columns = ", ".join(db.quote_ident(field) for field in fields)
        query = f"SELECT {columns} FROM {db.quote_ident(table)} WHERE id = :id"
        try:
            rows = self.local_store.query(query, {"id": record_id})
        except Exception as exc:
            logger.debug("local lookup in %s failed: %s", table, exc)
            return None
        if not rows:
            return None
        return dict(zip(fields, rows[0], strict=False))

    def _apply_to_local(
        self, table: str, record: Mapping[str, Any], fields: Sequence[str]
    ) -> None:
        data = record.get("data")
        if isinstance(data, str):
            payload = db.from_json(data)
        elif isinstance(data, Mapping):
            payload = dict(data)
        else:
            payload = {}
        params: dict[str, Any] = {}
        for index, field in enumerate(fields):
            value = record.get(field)
            if value is None:
                value = payload.get(field)
            if isinstance(value, dict | list):
                value = canonical_json(value)
            params[f"p{index}"] = value
        columns = ", ".join(db.quote_ident(field) for field in fields)
        placeholders = ", ".join(f":p{index}" for index in range(len(fields)))
        self.local_store.mutate(
            f"INSERT OR REPLACE INTO {db.quote_ident(table)} ({columns}) VALUES ({placeholders})",
            params,
        )

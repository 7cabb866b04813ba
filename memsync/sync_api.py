from __future__ import annotations

import contextlib
import json
import logging
import os
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, unquote, urlparse

from .server_store import ServerStore

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "1"
DEFAULT_MAX_BODY_BYTES = 1024 * 1024
DEFAULT_MAX_ITEMS = 2000


class SyncRequestError(Exception):
    """A request the server refuses; maps to one JSON error response."""

    def __init__(self, status: int, error: str, reason: str | None = None) -> None:
        super().__init__(reason or error)
        self.status = status
        self.error = error
        self.reason = reason

    def payload(self) -> dict[str, str]:
        if self.reason is None:
            return {"error": self.error}
        return {"error": self.error, "reason": self.reason}


def _reply(handler: BaseHTTPRequestHandler, status: int, payload: dict[str, Any]) -> None:
    encoded = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(encoded)))
    handler.end_headers()
    handler.wfile.write(encoded)


def _route(path: str) -> str | None:
    """Table name for ``/sync/<table>``, else None."""

    prefix, _, table = path.strip("/").partition("/")
    if prefix != "sync" or not table or "/" in table:
        return None
    return unquote(table)


def _since(query: str) -> float:
    raw = parse_qs(query).get("since", ["0"])[0]
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return 0.0


def _read_push(
    handler: BaseHTTPRequestHandler, *, max_body_bytes: int, max_items: int
) -> tuple[list[Any], str | None]:
    """Decode a push body into its items and the posting client id."""

    declared = handler.headers.get("Content-Length") or "0"
    try:
        length = int(declared)
    except ValueError:
        raise SyncRequestError(400, "invalid_json", "bad content-length") from None
    if length > max_body_bytes:
        raise SyncRequestError(413, "payload_too_large")
    raw = handler.rfile.read(length) if length > 0 else b""
    try:
        body = json.loads(raw.decode("utf-8")) if raw else None
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None
    if not isinstance(body, dict):
        raise SyncRequestError(400, "invalid_json")
    items = body.get("items")
    if not isinstance(items, list):
        raise SyncRequestError(400, "invalid_items")
    if len(items) > max_items:
        raise SyncRequestError(413, "too_many_items")
    client_id = body.get("clientId")
    return items, client_id if isinstance(client_id, str) else None


def build_sync_handler(
    store: ServerStore,
    *,
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
    max_items: int = DEFAULT_MAX_ITEMS,
):
    class SyncHandler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args: object) -> None:  # noqa: A003
            if os.environ.get("MEMSYNC_SYNC_LOGS") == "1":
                super().log_message(format, *args)

        def do_GET(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            if parsed.path == "/status":
                _reply(self, 200, {"protocol_version": PROTOCOL_VERSION, "serverTime": time.time()})
                return
            table = _route(parsed.path)
            if table is None:
                _reply(self, 404, {"error": "not_found"})
                return
            try:
                changes = store.changes_since(table, _since(parsed.query))
            except Exception:
                logger.exception("sync pull for %s failed", table)
                _reply(self, 500, {"error": "internal_error"})
                return
            _reply(self, 200, dict(changes))

        def do_POST(self) -> None:  # noqa: N802
            table = _route(urlparse(self.path).path)
            if table is None:
                _reply(self, 404, {"error": "not_found"})
                return
            try:
                items, client_id = _read_push(
                    self, max_body_bytes=max_body_bytes, max_items=max_items
                )
                try:
                    result = store.apply_items(table, items, client_id=client_id)
                except ValueError as exc:
                    raise SyncRequestError(400, "invalid_items", str(exc)) from exc
            except SyncRequestError as exc:
                _reply(self, exc.status, exc.payload())
                return
            except Exception:
                logger.exception("sync push for %s failed", table)
                _reply(self, 500, {"error": "internal_error"})
                return
            _reply(self, 200, {**result, "serverTime": time.time()})

    return SyncHandler


def start_sync_server(
    host: str,
    port: int,
    store: ServerStore,
    *,
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
    max_items: int = DEFAULT_MAX_ITEMS,
) -> tuple[HTTPServer, threading.Thread]:
    class Server(HTTPServer):
        address_family = socket.AF_INET6 if ":" in host else socket.AF_INET

        def server_bind(self) -> None:
            if self.address_family == socket.AF_INET6:
                with contextlib.suppress(OSError):
                    self.socket.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            super().server_bind()

    handler = build_sync_handler(store, max_body_bytes=max_body_bytes, max_items=max_items)
    server = Server((host, port), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server, thread


def run_sync_server(
    host: str,
    port: int,
    *,
    db_path: Path | str | None = None,
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
    max_items: int = DEFAULT_MAX_ITEMS,
    stop_event: threading.Event | None = None,
) -> None:
    store = ServerStore(db_path)
    server, _thread = start_sync_server(
        host, port, store, max_body_bytes=max_body_bytes, max_items=max_items
    )
    logger.info("sync server listening on %s:%d", host, server.server_address[1])
    stop = stop_event or threading.Event()
    try:
        while not stop.is_set():
            stop.wait(1.0)
    finally:
        server.shutdown()
        server.server_close()
        store.close()

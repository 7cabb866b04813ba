import contextlib
import http.client
import json
from collections.abc import Iterator
from http.server import HTTPServer
from typing import Any

import pytest

from memsync.server_store import ServerStore
from memsync.sync_api import start_sync_server


@pytest.fixture
def server() -> Iterator[tuple[HTTPServer, ServerStore, int]]:
    store = ServerStore()
    httpd, thread = start_sync_server("127.0.0.1", 0, store)
    try:
        yield httpd, store, int(httpd.server_address[1])
    finally:
        httpd.shutdown()
        httpd.server_close()
        thread.join(2)
        store.close()


@contextlib.contextmanager
def _limited_server(**limits: int) -> Iterator[int]:
    store = ServerStore()
    httpd, thread = start_sync_server("127.0.0.1", 0, store, **limits)
    try:
        yield int(httpd.server_address[1])
    finally:
        httpd.shutdown()
        httpd.server_close()
        thread.join(2)
        store.close()


def _request(
    port: int, method: str, path: str, body: bytes | None = None
) -> tuple[int, dict[str, Any]]:
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=2)
    try:
        headers = {"Content-Type": "application/json"} if body is not None else {}
        conn.request(method, path, body=body, headers=headers)
        resp = conn.getresponse()
        return resp.status, json.loads(resp.read().decode("utf-8"))
    finally:
        conn.close()


def _item(record_id: Any, title: str, updated_at: float) -> dict[str, Any]:
    return {
        "id": record_id,
        "data": json.dumps({"title": title}),
        "clientId": "client-a",
        "updatedAt": updated_at,
        "syncId": "1-abcdefghi",
    }


def _push(port: int, table: str, items: list[dict[str, Any]]) -> tuple[int, dict[str, Any]]:
    body = json.dumps({"clientId": "client-a", "items": items}).encode("utf-8")
    return _request(port, "POST", f"/sync/{table}", body)


def test_sync_status_endpoint(server) -> None:
    _httpd, _store, port = server
    status, payload = _request(port, "GET", "/status")
    assert status == 200
    assert payload["protocol_version"] == "1"
    assert payload["serverTime"] > 0


def test_push_then_pull_returns_items(server) -> None:
    _httpd, _store, port = server
    status, payload = _push(port, "notes", [_item("n1", "A", 100.0), _item(2, "B", 200.0)])
    assert status == 200
    assert payload["accepted"] == 2
    assert payload["ignored"] == 0

    status, payload = _request(port, "GET", "/sync/notes?since=0&clientId=client-b")
    assert status == 200
    assert [item["id"] for item in payload["items"]] == ["n1", 2]
    assert json.loads(payload["items"][0]["data"]) == {"title": "A"}
    assert payload["items"][0]["clientId"] == "client-a"
    assert payload["serverTime"] > 0


def test_pull_filters_by_since(server) -> None:
    _httpd, _store, port = server
    _push(port, "notes", [_item("n1", "A", 100.0)])
    _status, first = _request(port, "GET", "/sync/notes?since=0")
    _push(port, "notes", [_item("n2", "B", 50.0)])

    _status, payload = _request(port, "GET", f"/sync/notes?since={first['serverTime']}")

    assert [item["id"] for item in payload["items"]] == ["n2"]


def test_tables_are_isolated(server) -> None:
    _httpd, _store, port = server
    _push(port, "notes", [_item("n1", "A", 100.0)])

    _status, payload = _request(port, "GET", "/sync/tags")

    assert payload["items"] == []


def test_last_write_wins_ignores_stale_updates(server) -> None:
    _httpd, store, port = server
    _push(port, "notes", [_item("n1", "Newer", 200.0)])

    _status, payload = _push(port, "notes", [_item("n1", "Older", 100.0), _item("n1", "Same", 200.0)])

    assert payload == {"accepted": 0, "ignored": 2, "serverTime": payload["serverTime"]}
    stored = store.items_since("notes")
    assert json.loads(stored[0]["data"]) == {"title": "Newer"}


def test_newer_update_replaces_record(server) -> None:
    _httpd, store, port = server
    _push(port, "notes", [_item("n1", "Old", 100.0)])
    _push(port, "notes", [_item("n1", "New", 300.0)])

    stored = store.items_since("notes")
    assert len(stored) == 1
    assert stored[0]["updatedAt"] == 300.0


def test_unknown_path_is_not_found(server) -> None:
    _httpd, _store, port = server
    assert _request(port, "GET", "/v1/ops")[0] == 404
    assert _request(port, "POST", "/sync/notes/extra", b"{}")[0] == 404


def test_post_rejects_invalid_json(server) -> None:
    _httpd, _store, port = server
    status, payload = _request(port, "POST", "/sync/notes", b"{not json")
    assert status == 400
    assert payload == {"error": "invalid_json"}


def test_post_requires_items_list(server) -> None:
    _httpd, _store, port = server
    status, payload = _request(port, "POST", "/sync/notes", b'{"items": {}}')
    assert status == 400
    assert payload == {"error": "invalid_items"}


def test_post_rejects_malformed_record(server) -> None:
    _httpd, store, port = server
    status, payload = _push(port, "notes", [_item("n1", "A", 100.0), {"id": "n2"}])
    assert status == 400
    assert payload["error"] == "invalid_items"
    assert "updatedAt" in payload["reason"]
    assert store.items_since("notes") == []


def test_post_rejects_oversized_body() -> None:
    with _limited_server(max_body_bytes=16) as port:
        status, payload = _push(port, "notes", [_item("n1", "A", 100.0)])
    assert status == 413
    assert payload == {"error": "payload_too_large"}


def test_post_rejects_too_many_items() -> None:
    with _limited_server(max_items=1) as port:
        status, payload = _push(port, "notes", [_item("n1", "A", 1.0), _item("n2", "B", 2.0)])
    assert status == 413
    assert payload == {"error": "too_many_items"}


def test_server_store_persists_to_file(tmp_path) -> None:
    db_path = tmp_path / "server.sqlite"
    store = ServerStore(db_path)
    try:
        assert store.apply_items("notes", [_item("n1", "A", 100.0)]) == {
            "accepted": 1,
            "ignored": 0,
        }
    finally:
        store.close()

    reopened = ServerStore(db_path)
    try:
        assert [item["id"] for item in reopened.items_since("notes")] == ["n1"]
    finally:
        reopened.close()


def test_server_store_falls_back_to_request_client_id() -> None:
    store = ServerStore()
    try:
        item = _item("n1", "A", 100.0)
        item.pop("clientId")
        store.apply_items("notes", [item], client_id="posting-client")
        assert store.items_since("notes")[0]["clientId"] == "posting-client"
    finally:
        store.close()


def test_late_push_with_old_timestamp_is_pulled_after_watermark() -> None:
    store = ServerStore()
    try:
        watermark = store.changes_since("notes")["serverTime"]
        store.apply_items("notes", [_item("n1", "Written offline", watermark - 3600)])

        changes = store.changes_since("notes", watermark)

        assert [item["id"] for item in changes["items"]] == ["n1"]
        assert changes["items"][0]["updatedAt"] == watermark - 3600
        assert changes["serverTime"] >= watermark
    finally:
        store.close()


def test_pull_orders_by_arrival() -> None:
    store = ServerStore()
    try:
        store.apply_items("notes", [_item("late", "B", 500.0)])
        store.apply_items("notes", [_item("early", "A", 100.0)])
        assert [item["id"] for item in store.items_since("notes")] == ["late", "early"]
    finally:
        store.close()

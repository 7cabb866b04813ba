from __future__ import annotations

import json
from http.client import HTTPConnection, HTTPException, HTTPSConnection
from typing import Any
from urllib.parse import quote, urlencode, urlparse


class TransportError(RuntimeError):
    """A sync request failed on the network or came back non-2xx."""

    def __init__(self, message: str, *, status: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.payload = payload


def build_base_url(address: str) -> str:
    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return ""
    parsed = urlparse(trimmed)
    if parsed.scheme:
        return trimmed
    return f"http://{trimmed}"


def build_sync_url(base_url: str, table: str, query: dict[str, Any] | None = None) -> str:
    url = f"{build_base_url(base_url)}/sync/{quote(table, safe='')}"
    if query:
        url = f"{url}?{urlencode(query)}"
    return url


def is_success(status: int) -> bool:
    return 200 <= status < 300


def error_detail(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    reason = payload.get("reason")
    if isinstance(error, str) and isinstance(reason, str):
        return f"{error}:{reason}"
    if isinstance(error, str):
        return error
    return None


def _open(url: str, timeout_s: float) -> tuple[HTTPConnection, str]:
    parsed = urlparse(url)
    if not parsed.hostname:
        raise ValueError("missing hostname")
    secure = parsed.scheme == "https"
    factory = HTTPSConnection if secure else HTTPConnection
    conn = factory(parsed.hostname, parsed.port or (443 if secure else 80), timeout=timeout_s)
    target = parsed.path or "/"
    return conn, f"{target}?{parsed.query}" if parsed.query else target


def _decode(raw: bytes) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        snippet = raw[:240].decode("utf-8", errors="replace").strip()
        if not snippet:
            return {"error": "non_json_response"}
        return {"error": "non_json_response", "reason": snippet}


def request_json(
    method: str,
    url: str,
    *,
    body: Any = None,
    timeout_s: float = 3.0,
) -> tuple[int, Any]:
    """Send ``body`` as JSON and return ``(status, decoded payload)``.

    Network and protocol failures become ``TransportError``; a non-2xx
    status is returned, not raised, so callers can read the error payload.
    """

    conn, target = _open(url, timeout_s)
    headers = {"Accept": "application/json"}
    encoded = None
    if body is not None:
        encoded = json.dumps(body, ensure_ascii=False).encode("utf-8")
        headers["Content-Type"] = "application/json"
        headers["Content-Length"] = str(len(encoded))
    try:
        conn.request(method, target, body=encoded, headers=headers)
        resp = conn.getresponse()
        status, raw = int(resp.status), resp.read()
    except (OSError, HTTPException) as exc:
        raise TransportError(f"{method} {url} failed: {exc}") from exc
    finally:
        conn.close()
    return status, _decode(raw)

from __future__ import annotations

import json
from typing import Any, Protocol

QueryResult = dict[str, Any]


class QueryExecutor(Protocol):
    def execute(self, query: str, params: dict[str, Any]) -> QueryResult: ...


class ObjectBackendExecutor:
    """Backend whose ``run(query, params)`` takes and returns plain objects."""

    def __init__(self, backend: Any) -> None:
        self.backend = backend

    def execute(self, query: str, params: dict[str, Any]) -> QueryResult:
        return self.backend.run(query, params)


class JsonBackendExecutor:
    """Backend whose ``run(query, params_json)`` speaks JSON strings both ways."""

    def __init__(self, backend: Any) -> None:
        self.backend = backend

    def execute(self, query: str, params: dict[str, Any]) -> QueryResult:
        raw = self.backend.run(query, json.dumps(params, ensure_ascii=False))
        result = json.loads(raw)
        if not isinstance(result, dict):
            raise ValueError(f"unexpected backend result type: {type(result).__name__}")
        return result


def create_executor(backend: Any, *, string_encoded: bool = False) -> QueryExecutor:
    if string_encoded:
        return JsonBackendExecutor(backend)
    return ObjectBackendExecutor(backend)

from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/memsync/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "max_bytes": "MEMSYNC_MAX_BYTES",
    "warning_threshold": "MEMSYNC_WARNING_THRESHOLD",
    "critical_threshold": "MEMSYNC_CRITICAL_THRESHOLD",
    "estimate_multiplier": "MEMSYNC_ESTIMATE_MULTIPLIER",
    "string_encoded_backend": "MEMSYNC_STRING_ENCODED_BACKEND",
    "server_url": "MEMSYNC_SERVER_URL",
    "client_id": "MEMSYNC_CLIENT_ID",
    "conflict_strategy": "MEMSYNC_CONFLICT_STRATEGY",
    "sync_interval_s": "MEMSYNC_SYNC_INTERVAL_S",
    "sync_on_blur": "MEMSYNC_SYNC_ON_BLUR",
    "sync_on_unload": "MEMSYNC_SYNC_ON_UNLOAD",
    "sync_timeout_s": "MEMSYNC_SYNC_TIMEOUT_S",
    "server_host": "MEMSYNC_SERVER_HOST",
    "server_port": "MEMSYNC_SERVER_PORT",
    "server_db": "MEMSYNC_SERVER_DB",
    "server_max_body_bytes": "MEMSYNC_SERVER_MAX_BODY_BYTES",
    "server_max_items": "MEMSYNC_SERVER_MAX_ITEMS",
    "log_level": "MEMSYNC_LOG_LEVEL",
}

_INT_KEYS = {
    "max_bytes",
    "sync_interval_s",
    "server_port",
    "server_max_body_bytes",
    "server_max_items",
}
_FLOAT_KEYS = {
    "warning_threshold",
    "critical_threshold",
    "estimate_multiplier",
    "sync_timeout_s",
}
_BOOL_KEYS = {"string_encoded_backend", "sync_on_blur", "sync_on_unload"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("MEMSYNC_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class MemsyncConfig:
    max_bytes: int = 50 * 1024 * 1024
    warning_threshold: float = 0.8
    critical_threshold: float = 0.95
    estimate_multiplier: float = 2.5
    string_encoded_backend: bool = False
    server_url: str = "http://127.0.0.1:3458"
    client_id: str | None = None
    conflict_strategy: str = "server"
    sync_interval_s: int = 60
    sync_on_blur: bool = True
    sync_on_unload: bool = True
    sync_timeout_s: float = 3.0
    server_host: str = "127.0.0.1"
    server_port: int = 3458
    # None keeps the reference server's store in memory.
    server_db: str | None = None
    server_max_body_bytes: int = 1024 * 1024
    server_max_items: int = 2000
    log_level: str = "INFO"

    def validate(self) -> MemsyncConfig:
        validate_thresholds(self.max_bytes, self.warning_threshold, self.critical_threshold)
        if self.estimate_multiplier <= 0:
            raise ValueError("estimate_multiplier must be positive")
        if self.sync_interval_s <= 0:
            raise ValueError("sync_interval_s must be positive")
        return self


def validate_thresholds(max_bytes: int, warning: float, critical: float) -> None:
    if max_bytes <= 0:
        raise ValueError("max_bytes must be positive")
    if not 0 <= warning <= critical <= 1:
        raise ValueError("thresholds must satisfy 0 <= warning <= critical <= 1")


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def load_config(path: Path | None = None) -> MemsyncConfig:
    cfg = MemsyncConfig()
    try:
        data = read_config_file(path)
    except ValueError as exc:
        warnings.warn(f"Invalid config file: {exc}", RuntimeWarning, stacklevel=2)
        data = {}
    cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg.validate()


def _apply_dict(cfg: MemsyncConfig, data: dict[str, Any]) -> MemsyncConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        current = getattr(cfg, key)
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, current, key=key))
        elif key in _FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, current, key=key))
        elif key in _BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, current, key=key))
        else:
            setattr(cfg, key, value)
    return cfg

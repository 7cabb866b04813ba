import json
from pathlib import Path

import pytest

from memsync.config import (
    MemsyncConfig,
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
    write_config_file,
)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_rejects_non_object(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]")
    with pytest.raises(ValueError, match="config must be an object"):
        read_config_file(config_path)


def test_read_config_file_missing_or_empty(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "missing.json") == {}
    empty = tmp_path / "empty.json"
    empty.write_text("  \n")
    assert read_config_file(empty) == {}


def test_config_path_honors_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "custom.json"
    monkeypatch.setenv("MEMSYNC_CONFIG", str(config_path))
    assert get_config_path() == config_path


def test_write_config_file_roundtrip(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "config.json"
    written = write_config_file({"max_bytes": 1024}, config_path)
    assert written == config_path
    assert json.loads(config_path.read_text()) == {"max_bytes": 1024}


def test_load_config_defaults() -> None:
    cfg = load_config()
    assert cfg == MemsyncConfig()
    assert cfg.max_bytes == 50 * 1024 * 1024
    assert cfg.warning_threshold == 0.8
    assert cfg.critical_threshold == 0.95
    assert cfg.conflict_strategy == "server"
    assert cfg.sync_interval_s == 60


def test_load_config_reads_file_values(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    write_config_file(
        {
            "max_bytes": "2048",
            "warning_threshold": 0.5,
            "string_encoded_backend": "true",
            "sync_on_blur": 0,
            "server_url": "http://sync.example.com",
            "unknown_key": "ignored",
        },
        config_path,
    )

    cfg = load_config(config_path)

    assert cfg.max_bytes == 2048
    assert cfg.warning_threshold == 0.5
    assert cfg.string_encoded_backend is True
    assert cfg.sync_on_blur is False
    assert cfg.server_url == "http://sync.example.com"
    assert not hasattr(cfg, "unknown_key")


def test_env_overrides_win_over_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.json"
    write_config_file({"max_bytes": 2048, "client_id": "from-file"}, config_path)
    monkeypatch.setenv("MEMSYNC_MAX_BYTES", "4096")
    monkeypatch.setenv("MEMSYNC_SYNC_ON_UNLOAD", "off")

    assert get_env_overrides() == {"max_bytes": "4096", "sync_on_unload": "off"}
    cfg = load_config(config_path)

    assert cfg.max_bytes == 4096
    assert cfg.client_id == "from-file"
    assert cfg.sync_on_unload is False


def test_invalid_numbers_warn_and_keep_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEMSYNC_SYNC_INTERVAL_S", "soon")
    with pytest.warns(RuntimeWarning, match="Invalid int for sync_interval_s"):
        cfg = load_config()
    assert cfg.sync_interval_s == 60


def test_invalid_config_file_warns_and_uses_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{broken")
    with pytest.warns(RuntimeWarning, match="Invalid config file"):
        cfg = load_config(config_path)
    assert cfg == MemsyncConfig()


def test_load_config_rejects_inverted_thresholds(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    write_config_file({"warning_threshold": 0.9, "critical_threshold": 0.5}, config_path)
    with pytest.raises(ValueError, match="thresholds"):
        load_config(config_path)


def test_validate_rejects_non_positive_multiplier() -> None:
    with pytest.raises(ValueError, match="estimate_multiplier"):
        MemsyncConfig(estimate_multiplier=0).validate()


def test_validate_rejects_non_positive_sync_interval() -> None:
    with pytest.raises(ValueError, match="sync_interval_s"):
        MemsyncConfig(sync_interval_s=0).validate()


def test_server_limits_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEMSYNC_SERVER_MAX_BODY_BYTES", "2048")
    monkeypatch.setenv("MEMSYNC_SERVER_MAX_ITEMS", "10")
    cfg = load_config()
    assert cfg.server_max_body_bytes == 2048
    assert cfg.server_max_items == 10

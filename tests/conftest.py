from __future__ import annotations

from pathlib import Path

import pytest

from memsync.config import CONFIG_ENV_OVERRIDES


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for env_var in CONFIG_ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.setenv("MEMSYNC_CONFIG", str(tmp_path / "memsync-config.json"))

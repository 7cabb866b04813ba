from __future__ import annotations

import atexit
import logging
import threading
from collections.abc import Sequence
from typing import Any

from ..config import MemsyncConfig
from .manager import SyncManager

logger = logging.getLogger(__name__)


class AutoSync:
    """Drives ``SyncManager.sync`` from a timer and lifecycle triggers.

    The periodic loop runs on a daemon thread. ``notify_blur`` is the
    lost-focus trigger. The unload trigger only posts still-queued records
    since a full round trip cannot be relied on during teardown.
    """

    def __init__(
        self,
        manager: SyncManager,
        table: str,
        fields: Sequence[str],
        *,
        interval_s: float = 60,
        sync_on_blur: bool = True,
        sync_on_unload: bool = True,
    ) -> None:
        self.manager = manager
        self.table = table
        self.fields = list(fields)
        self.interval_s = interval_s
        self.sync_on_blur = sync_on_blur
        self.sync_on_unload = sync_on_unload
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._unload_registered = False

    @classmethod
    def from_config(
        cls,
        manager: SyncManager,
        table: str,
        fields: Sequence[str],
        config: MemsyncConfig,
    ) -> AutoSync:
        return cls(
            manager,
            table,
            fields,
            interval_s=config.sync_interval_s,
            sync_on_blur=config.sync_on_blur,
            sync_on_unload=config.sync_on_unload,
        )

    def start(self) -> AutoSync:
        if self._thread is not None:
            return self
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name=f"memsync-auto-{self.table}", daemon=True
        )
        self._thread.start()
        if self.sync_on_unload:
            atexit.register(self.notify_unload)
            self._unload_registered = True
        return self

    def stop(self, timeout_s: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout_s)
            self._thread = None
        if self._unload_registered:
            atexit.unregister(self.notify_unload)
            self._unload_registered = False

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def notify_blur(self) -> dict[str, Any] | None:
        if not self.sync_on_blur:
            return None
        return self._sync_quietly()

    def notify_unload(self) -> bool:
        if not self.sync_on_unload:
            return False
        return self.manager.send_beacon(self.table)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_s):
            self._sync_quietly()

    def _sync_quietly(self) -> dict[str, Any] | None:
        try:
            return self.manager.sync(self.table, self.fields)
        except Exception:
            logger.exception("auto-sync for %s failed", self.table)
            return None


def setup_auto_sync(
    manager: SyncManager,
    table: str,
    fields: Sequence[str],
    *,
    interval_s: float = 60,
    sync_on_blur: bool = True,
    sync_on_unload: bool = True,
) -> AutoSync:
    return AutoSync(
        manager,
        table,
        fields,
        interval_s=interval_s,
        sync_on_blur=sync_on_blur,
        sync_on_unload=sync_on_unload,
    ).start()

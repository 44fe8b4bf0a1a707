"""Periodic tasks bound to a session's cancellation event."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger("mcp.perf.timers")


class SessionTimer:
    """Run `callback` every `interval` seconds until `cancel` is set.

    The first tick happens after one full interval. A failing tick is logged
    and the loop keeps going; only the cancellation event ends it.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], None],
        cancel: threading.Event,
        *,
        name: str = "session-timer",
    ) -> None:
        self.interval = max(0.01, float(interval))
        self._callback = callback
        self._cancel = cancel
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self.ticks = 0

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        if self._thread.is_alive() or self._cancel.is_set():
            return
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    def _run(self) -> None:
        while not self._cancel.wait(self.interval):
            try:
                self._callback()
            except Exception:  # noqa: BLE001
                logger.debug("timer %s tick failed", self._thread.name, exc_info=True)
            self.ticks += 1


__all__ = ["SessionTimer"]

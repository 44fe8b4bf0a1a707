from __future__ import annotations

import logging
import threading
import time

import pytest

from mcp_servers.perf_analyzer.timers import SessionTimer


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def test_timer_ticks_until_cancelled() -> None:
    cancel = threading.Event()
    calls: list[int] = []
    timer = SessionTimer(0.01, lambda: calls.append(1), cancel, name="tick-test")
    timer.start()
    assert _wait_for(lambda: len(calls) >= 3)
    cancel.set()
    timer.join(1.0)
    assert not timer.alive
    settled = len(calls)
    time.sleep(0.05)
    assert len(calls) == settled


def test_failing_tick_is_logged_and_loop_continues(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="mcp.perf.timers")
    cancel = threading.Event()

    def boom() -> None:
        raise RuntimeError("sample failed")

    timer = SessionTimer(0.01, boom, cancel, name="boom-test")
    timer.start()
    assert _wait_for(lambda: timer.ticks >= 2)
    cancel.set()
    timer.join(1.0)
    assert "tick failed" in caplog.text


def test_timer_never_starts_on_cancelled_session() -> None:
    cancel = threading.Event()
    cancel.set()
    timer = SessionTimer(0.01, lambda: None, cancel)
    timer.start()
    assert not timer.alive
    assert timer.ticks == 0

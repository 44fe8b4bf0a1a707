from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

import pytest

from mcp_servers.perf_analyzer.config import AnalyzerConfig
from mcp_servers.perf_analyzer.errors import NavigationTimeoutError
from mcp_servers.perf_analyzer.models import ACTIVE, FrozenSession, ResourceTiming, Session
from mcp_servers.perf_analyzer.registry import SessionRegistry


class FakeDriver:
    """In-memory driver: records calls and lets tests push events through the bound sink."""

    def __init__(
        self,
        *,
        launch_error: Exception | None = None,
        navigate_error: Exception | None = None,
        start: bool = True,
        timeout: bool = False,
        events: list[tuple[str, dict[str, Any]]] | None = None,
    ) -> None:
        self.launch_error = launch_error
        self.navigate_error = navigate_error
        self.start = start
        self.timeout = timeout
        self.events = list(events or [])
        self.launched: str | None = None
        self.session_id: str | None = None
        self.sink: Callable[[str, str, Any], bool] | None = None
        self.cancel: threading.Event | None = None
        self.bind_calls = 0
        self.closed = False

    def launch(self, browser: str) -> None:
        self.launched = browser
        if self.launch_error is not None:
            raise self.launch_error

    def bind(self, session_id: str, sink: Callable[[str, str, Any], bool], cancel: threading.Event) -> None:
        self.bind_calls += 1
        self.session_id = session_id
        self.sink = sink
        self.cancel = cancel

    def navigate(self, url: str, *, timeout: float, on_started: Callable[[], None]) -> None:
        if self.navigate_error is not None:
            raise self.navigate_error
        if self.start:
            on_started()
        for kind, payload in self.events:
            self.emit(kind, payload)
        if self.timeout:
            raise NavigationTimeoutError(url, timeout)

    def emit(self, kind: str, payload: Any) -> bool:
        assert self.sink is not None and self.session_id is not None
        return self.sink(self.session_id, kind, payload)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def analyzer_config() -> AnalyzerConfig:
    return AnalyzerConfig(heartbeat_interval=0, memory_sample_interval=0, url_poll_interval=0)


@pytest.fixture
def make_registry(analyzer_config: AnalyzerConfig) -> Callable[..., tuple[SessionRegistry, list[FakeDriver]]]:
    def _make(
        config: AnalyzerConfig | None = None, **driver_kwargs: Any
    ) -> tuple[SessionRegistry, list[FakeDriver]]:
        drivers: list[FakeDriver] = []

        def factory() -> FakeDriver:
            driver = FakeDriver(**driver_kwargs)
            drivers.append(driver)
            return driver

        return SessionRegistry(config or analyzer_config, driver_factory=factory), drivers

    return _make


@pytest.fixture
def active_session() -> Session:
    session = Session(session_id="s1", url="https://example.com/", browser="chrome")
    assert session.transition(ACTIVE)
    return session


@pytest.fixture
def make_frozen() -> Callable[..., FrozenSession]:
    def _make(**kwargs: Any) -> FrozenSession:
        base: dict[str, Any] = {
            "session_id": "s1",
            "url": "https://example.com/",
            "browser": "chrome",
            "status": "completed",
            "start_time": 1_000,
            "end_time": 11_000,
        }
        for key in ("navigation_events", "resource_timings", "errors", "console_logs", "user_interactions"):
            if key in kwargs:
                kwargs[key] = tuple(kwargs[key])
        base.update(kwargs)
        return FrozenSession(**base)

    return _make


@pytest.fixture
def resource() -> Callable[..., ResourceTiming]:
    def _make(url: str = "https://example.com/app.js", **kwargs: Any) -> ResourceTiming:
        kwargs.setdefault("timestamp", 1_000)
        kwargs.setdefault("status", 200)
        return ResourceTiming(url=url, **kwargs)

    return _make

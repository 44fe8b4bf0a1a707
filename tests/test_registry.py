from __future__ import annotations

import threading
import time

import pytest

from mcp_servers.perf_analyzer import registry as registry_module
from mcp_servers.perf_analyzer.config import AnalyzerConfig
from mcp_servers.perf_analyzer.errors import (
    BrowserLaunchError,
    InvalidTargetError,
    ReportNotReadyError,
    SessionAlreadyCompletedError,
    SessionNotFoundError,
)


def test_create_activates_session_and_binds_once(make_registry) -> None:
    reg, drivers = make_registry()
    sid = reg.create("https://example.com/", "Chrome")
    snap = reg.status(sid)
    assert snap.status == "active"
    assert snap.browser == "chrome"
    assert drivers[0].bind_calls == 1
    assert drivers[0].launched == "chrome"


@pytest.mark.parametrize("url", ["", "example.com", "ftp://example.com/", "javascript:alert(1)"])
def test_create_rejects_bad_urls(make_registry, url: str) -> None:
    reg, drivers = make_registry()
    with pytest.raises(InvalidTargetError):
        reg.create(url)
    assert drivers == []


def test_create_rejects_unknown_browser(make_registry) -> None:
    reg, _ = make_registry()
    with pytest.raises(InvalidTargetError):
        reg.create("https://example.com/", "netscape")


def test_launch_failure_never_admits_a_session(make_registry) -> None:
    reg, drivers = make_registry(launch_error=RuntimeError("no chrome binary"))
    with pytest.raises(BrowserLaunchError) as excinfo:
        reg.create("https://example.com/")
    assert "no chrome binary" in excinfo.value.reason
    assert len(reg) == 0
    assert reg.list_sessions() == []
    assert drivers[0].closed


def test_navigation_failure_before_activation_fails_session_with_report(make_registry) -> None:
    reg, drivers = make_registry(start=False, navigate_error=RuntimeError("net::ERR_NAME_NOT_RESOLVED"))
    sid = reg.create("https://nowhere.invalid/")
    assert reg.status(sid).status == "failed"
    report = reg.report(sid)
    assert report.status == "failed"
    assert report.to_dict()["startupError"]["message"] == "net::ERR_NAME_NOT_RESOLVED"
    assert drivers[0].closed
    with pytest.raises(SessionAlreadyCompletedError):
        reg.stop(sid)


def test_navigation_timeout_degrades_but_keeps_session_active(make_registry) -> None:
    reg, _ = make_registry(timeout=True)
    sid = reg.create("https://slow.example.com/")
    snap = reg.status(sid)
    assert snap.status == "active"
    assert snap.degraded is True
    report = reg.stop(sid)
    data = report.to_dict()
    assert data["errors"]["byType"] == {"network_error": 1}
    assert "degraded_session" in [r.code for r in report.recommendations["warning"]]


def test_stop_returns_report_with_buffered_events(make_registry) -> None:
    events = [
        ("navigation", {"url": "https://example.com/"}),
        ("page_load", {"url": "https://example.com/", "loadTime": 800}),
        ("response", {"url": "https://example.com/app.js", "status": 200, "size": 100, "duration": 50}),
        ("click", {"x": 1, "y": 2}),
    ]
    reg, drivers = make_registry(events=events)
    sid = reg.create("https://example.com/")
    report = reg.stop(sid)
    data = report.to_dict()
    assert data["session"]["status"] == "completed"
    assert data["resources"]["total"] == 1
    assert data["pageLoad"]["averageLoadTime"] == 800.0
    assert data["interactions"]["clicks"] == 1
    assert 90 <= data["scores"]["performance"] <= 100
    assert drivers[0].closed
    assert drivers[0].cancel is not None and drivers[0].cancel.is_set()
    assert reg.report(sid) is report


def test_second_stop_is_rejected_and_first_report_unchanged(make_registry) -> None:
    reg, _ = make_registry()
    sid = reg.create("https://example.com/")
    first = reg.stop(sid)
    before = first.to_json()
    with pytest.raises(SessionAlreadyCompletedError):
        reg.stop(sid)
    assert reg.report(sid).to_json() == before


def test_late_events_after_stop_are_dropped(make_registry) -> None:
    reg, drivers = make_registry()
    sid = reg.create("https://example.com/")
    reg.stop(sid)
    assert drivers[0].emit("response", {"url": "https://example.com/late.js"}) is False
    assert reg.status(sid).counts["resourceTimings"] == 0
    assert reg.report(sid).to_dict()["resources"]["total"] == 0


def test_unknown_session_raises(make_registry) -> None:
    reg, _ = make_registry()
    assert reg.get("missing") is None
    with pytest.raises(SessionNotFoundError):
        reg.status("missing")
    with pytest.raises(SessionNotFoundError):
        reg.stop("missing")
    with pytest.raises(SessionNotFoundError):
        reg.report("missing")


def test_report_not_ready_while_active(make_registry) -> None:
    reg, _ = make_registry()
    sid = reg.create("https://example.com/")
    with pytest.raises(ReportNotReadyError):
        reg.report(sid)


def test_concurrent_stops_have_exactly_one_winner(make_registry) -> None:
    reg, _ = make_registry()
    sid = reg.create("https://example.com/")
    outcomes: list[str] = []
    lock = threading.Lock()
    barrier = threading.Barrier(8)

    def worker() -> None:
        barrier.wait()
        try:
            reg.stop(sid)
            result = "ok"
        except SessionAlreadyCompletedError:
            result = "rejected"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert outcomes.count("ok") == 1
    assert outcomes.count("rejected") == 7


def test_sessions_are_independent_under_concurrent_ingestion(make_registry) -> None:
    reg, drivers = make_registry()
    ids = [reg.create("https://example.com/") for _ in range(3)]

    def pump(driver) -> None:
        for i in range(100):
            driver.emit("response", {"url": f"https://example.com/{i}.js", "size": 1})

    threads = [threading.Thread(target=pump, args=(d,)) for d in drivers]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(set(ids)) == 3
    for sid in ids:
        assert reg.stop(sid).to_dict()["resources"]["total"] == 100


def test_retention_evicts_oldest_terminal_sessions(make_registry) -> None:
    reg, _ = make_registry(AnalyzerConfig(heartbeat_interval=0, max_retained_sessions=2))
    ids = []
    for _ in range(3):
        sid = reg.create("https://example.com/")
        reg.stop(sid)
        ids.append(sid)
        time.sleep(0.002)
    assert reg.get(ids[0]) is None
    assert reg.get(ids[1]) is not None
    assert reg.get(ids[2]) is not None


def test_evict_only_drops_terminal_sessions(make_registry) -> None:
    reg, _ = make_registry()
    running = reg.create("https://example.com/")
    done = reg.create("https://example.com/")
    reg.stop(done)
    assert reg.evict(running) is False
    assert reg.evict(done) is True
    assert reg.get(done) is None
    assert reg.evict("missing") is False


def test_close_stops_everything_running(make_registry) -> None:
    reg, drivers = make_registry()
    ids = [reg.create("https://example.com/") for _ in range(2)]
    reg.close()
    assert all(reg.status(sid).status == "completed" for sid in ids)
    assert all(d.closed for d in drivers)


def test_heartbeat_timer_stops_with_session(make_registry, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level("INFO", logger="mcp.perf.registry")
    reg, _ = make_registry(AnalyzerConfig(heartbeat_interval=0.02))
    sid = reg.create("https://example.com/")
    deadline = time.time() + 2.0
    while "heartbeat" not in caplog.text and time.time() < deadline:
        time.sleep(0.01)
    assert "heartbeat" in caplog.text
    reg.stop(sid)
    timer_threads = [t for t in threading.enumerate() if t.name == f"heartbeat-{sid[:8]}"]
    assert all(not t.is_alive() for t in timer_threads)


def test_list_sessions_is_ordered_by_start(make_registry) -> None:
    reg, _ = make_registry()
    first = reg.create("https://example.com/a")
    time.sleep(0.002)
    second = reg.create("https://example.com/b")
    assert [snap.session_id for snap in reg.list_sessions()] == [first, second]


def test_stop_during_activation_leaves_no_heartbeat_timer(make_registry, monkeypatch: pytest.MonkeyPatch) -> None:
    reg, _ = make_registry(AnalyzerConfig(heartbeat_interval=0.02))
    real_timer = registry_module.SessionTimer

    def stop_then_build(*args, **kwargs):
        reg.stop(next(iter(reg._sessions)))
        return real_timer(*args, **kwargs)

    monkeypatch.setattr(registry_module, "SessionTimer", stop_then_build)
    sid = reg.create("https://example.com/")
    assert reg.status(sid).status == "completed"
    assert reg._timers == {}

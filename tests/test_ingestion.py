from __future__ import annotations

import logging
import threading

import pytest

from mcp_servers.perf_analyzer.ingestion import DISPATCH_TABLE, EVENT_KINDS, EventIngestionAdapter
from mcp_servers.perf_analyzer.models import COMPLETED, Session


@pytest.fixture
def adapter(active_session: Session) -> EventIngestionAdapter:
    return EventIngestionAdapter(lambda sid: active_session if sid == active_session.session_id else None)


def test_every_event_kind_has_one_normalizer_and_callback() -> None:
    assert set(EVENT_KINDS) == {
        "page_load",
        "dom_content_loaded",
        "navigation",
        "spa_navigation",
        "url_change",
        "detailed_navigation",
        "response",
        "console",
        "page_error",
        "network_error",
        "click",
        "scroll",
        "link_click",
        "memory",
    }
    for kind in DISPATCH_TABLE:
        assert callable(getattr(EventIngestionAdapter, f"on_{kind}"))


def test_page_load_is_normalized(adapter: EventIngestionAdapter, active_session: Session) -> None:
    assert adapter.on_page_load("s1", {"url": "https://example.com/", "loadTime": 812.5, "firstPaint": "120"})
    ev = active_session.navigation_events[0]
    assert ev.kind == "page_load"
    assert ev.load_time == 812.5
    assert ev.first_paint == 120.0
    assert ev.timestamp > 0


def test_response_clamps_numbers_and_falls_back_to_content_length(
    adapter: EventIngestionAdapter, active_session: Session
) -> None:
    adapter.on_response(
        "s1",
        {
            "url": "https://cdn.example.com/lib.js",
            "status": 200,
            "headers": {"Content-Length": "2048"},
            "duration": -5,
            "timing": {"domainLookupStart": float("nan"), "domainLookupEnd": 10},
        },
    )
    adapter.on_response("s1", {"url": "https://example.com/x.css", "size": "garbage", "duration": float("inf")})
    first, second = active_session.resource_timings
    assert first.size == 2048
    assert first.duration == 0.0
    assert first.timing is not None and first.timing["domainLookupStart"] == 0.0
    assert second.size == 0
    assert second.duration == 0.0
    assert second.status is None


def test_console_error_lands_in_two_buffers(adapter: EventIngestionAdapter, active_session: Session) -> None:
    adapter.on_console("s1", {"level": "error", "message": "boom"})
    adapter.on_console("s1", {"type": "warning", "text": "careful"})
    assert [c.level for c in active_session.console_logs] == ["error", "warn"]
    assert len(active_session.errors) == 1
    assert active_session.errors[0].kind == "console_error"
    assert active_session.errors[0].message == "boom"


def test_interactions_and_memory(adapter: EventIngestionAdapter, active_session: Session) -> None:
    adapter.on_click("s1", {"x": 10.7, "y": "20", "target": "button"})
    adapter.on_link_click("s1", {"href": "https://example.com/next"})
    adapter.on_scroll("s1", {"x": None, "y": 300})
    adapter.on_memory("s1", {"usedJSHeapSize": 1000, "totalJSHeapSize": 2000, "jsHeapSizeLimit": 4000})
    click, link, scroll = active_session.user_interactions
    assert (click.x, click.y, click.target) == (10, 20, "button")
    assert link.target == "https://example.com/next"
    assert scroll.x is None and scroll.y == 300
    assert active_session.memory_samples[0].used_heap == 1000


def test_events_for_inactive_or_unknown_sessions_are_dropped(
    adapter: EventIngestionAdapter, active_session: Session
) -> None:
    assert not adapter.dispatch("nope", "navigation", {"url": "https://example.com/"})
    active_session.transition(COMPLETED)
    assert not adapter.on_navigation("s1", {"url": "https://example.com/late"})
    assert active_session.navigation_events == []
    assert adapter.stats()["dropped"] == 2


def test_pending_session_drops_events() -> None:
    pending = Session(session_id="p", url="https://example.com/", browser="chrome")
    adapter = EventIngestionAdapter(lambda sid: pending)
    assert not adapter.on_page_load("p", {"loadTime": 100})
    assert pending.navigation_events == []


def test_malformed_events_are_rejected_and_session_continues(
    adapter: EventIngestionAdapter, active_session: Session, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.WARNING, logger="mcp.perf.ingestion")
    assert not adapter.on_response("s1", {"status": 200})
    assert not adapter.dispatch("s1", "response", ["not", "a", "dict"])
    assert not adapter.dispatch("s1", "teleport", {})
    assert not adapter.on_detailed_navigation("s1", {"url": "https://example.com/"})
    assert adapter.on_navigation("s1", {"url": "https://example.com/ok"})
    assert adapter.stats() == {"accepted": 1, "dropped": 0, "rejected": 4}
    assert "ingest_rejected" in caplog.text


def test_url_falls_back_to_session_url(adapter: EventIngestionAdapter, active_session: Session) -> None:
    adapter.on_page_error("s1", {"message": "TypeError: x is undefined", "stack": "at foo"})
    err = active_session.errors[0]
    assert err.url == active_session.url
    assert err.stack == "at foo"


def test_concurrent_dispatch_keeps_every_event(adapter: EventIngestionAdapter, active_session: Session) -> None:
    def worker(n: int) -> None:
        for i in range(200):
            adapter.on_response("s1", {"url": f"https://example.com/{n}/{i}.js", "size": 1})

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(active_session.resource_timings) == 800

"""Event ingestion: driver payloads -> normalized session records.

Drivers push plain dict payloads keyed by event kind. Each kind has exactly one
normalizer in the dispatch table; the adapter resolves the session, normalizes
the payload and appends under the session lock. Nothing in here raises to the
driver: malformed payloads are logged and dropped, the session carries on.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Mapping
from typing import Any

from .errors import EventIngestionError
from .models import (
    ACTIVE,
    ConsoleEntry,
    ErrorEvent,
    Interaction,
    MemorySample,
    NavigationEvent,
    ResourceTiming,
    Session,
    now_ms,
)

logger = logging.getLogger("mcp.perf.ingestion")

Entries = list[tuple[str, Any]]
Normalizer = Callable[[str, Mapping[str, Any], str], Entries]

NAVIGATION_TIMING_KEYS = (
    "fetchStart",
    "domainLookupStart",
    "domainLookupEnd",
    "connectStart",
    "connectEnd",
    "requestStart",
    "responseStart",
    "responseEnd",
    "domInteractive",
    "domContentLoadedEventStart",
    "domContentLoadedEventEnd",
    "domComplete",
    "loadEventStart",
    "loadEventEnd",
)

RESOURCE_TIMING_KEYS = (
    "domainLookupStart",
    "domainLookupEnd",
    "connectStart",
    "connectEnd",
    "requestStart",
    "responseStart",
    "responseEnd",
)

_MAX_TEXT = 2000


def _num(value: Any) -> float:
    """Coerce to a finite, non-negative float; anything else becomes 0."""
    if isinstance(value, bool):
        return 0.0
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(v) or math.isinf(v) or v < 0:
        return 0.0
    return v


def _int(value: Any) -> int:
    return int(_num(value))


def _str(value: Any, *, max_len: int = _MAX_TEXT) -> str:
    if value is None:
        return ""
    s = value if isinstance(value, str) else str(value)
    return s[:max_len]


def _timestamp(payload: Mapping[str, Any]) -> int:
    ts = _int(payload.get("timestamp"))
    return ts or now_ms()


def _url(payload: Mapping[str, Any], fallback: str) -> str:
    url = payload.get("url")
    if isinstance(url, str) and url.strip():
        return url.strip()
    return fallback


def _header_value(headers: Any, name: str) -> Any:
    if not isinstance(headers, Mapping):
        return None
    target = name.lower()
    for key, value in headers.items():
        if str(key).lower() == target:
            return value
    return None


def _timing(raw: Any, keys: tuple[str, ...]) -> dict[str, float] | None:
    if not isinstance(raw, Mapping):
        return None
    out = {key: _num(raw.get(key)) for key in keys if raw.get(key) is not None}
    return out or None


def _require_mapping(kind: str, payload: Any) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise EventIngestionError(kind, f"payload must be an object, got {type(payload).__name__}")
    return payload


# ── normalizers ──────────────────────────────────────────────────────────────


def _page_load(kind: str, p: Mapping[str, Any], fallback: str) -> Entries:
    return [
        (
            "navigation_events",
            NavigationEvent(
                kind=kind,
                url=_url(p, fallback),
                timestamp=_timestamp(p),
                load_time=_num(p.get("loadTime")),
                dom_content_loaded=_num(p.get("domContentLoaded")),
                first_paint=_num(p.get("firstPaint")),
                first_contentful_paint=_num(p.get("firstContentfulPaint")),
            ),
        )
    ]


def _simple_navigation(kind: str, p: Mapping[str, Any], fallback: str) -> Entries:
    return [("navigation_events", NavigationEvent(kind=kind, url=_url(p, fallback), timestamp=_timestamp(p)))]


def _detailed_navigation(kind: str, p: Mapping[str, Any], fallback: str) -> Entries:
    timing = _timing(p.get("timing"), NAVIGATION_TIMING_KEYS)
    if timing is None:
        raise EventIngestionError(kind, "missing navigation timing")
    return [
        (
            "navigation_events",
            NavigationEvent(
                kind=kind,
                url=_url(p, fallback),
                timestamp=_timestamp(p),
                first_paint=_num(p.get("firstPaint")),
                first_contentful_paint=_num(p.get("firstContentfulPaint")),
                timing=timing,
            ),
        )
    ]


def _response(kind: str, p: Mapping[str, Any], fallback: str) -> Entries:
    url = p.get("url")
    if not isinstance(url, str) or not url.strip():
        raise EventIngestionError(kind, "response without url")
    size = p.get("size")
    if size is None:
        size = _header_value(p.get("headers"), "content-length")
    status_raw = p.get("status")
    status = _int(status_raw) if status_raw is not None else None
    return [
        (
            "resource_timings",
            ResourceTiming(
                url=url.strip(),
                timestamp=_timestamp(p),
                status=status or None,
                size=_int(size),
                decoded_size=_int(p.get("decodedSize")),
                duration=_num(p.get("duration")),
                resource_type=_str(p.get("initiatorType") or p.get("resourceType"), max_len=40) or None,
                content_type=_str(p.get("contentType") or _header_value(p.get("headers"), "content-type"), max_len=120)
                or None,
                protocol=_str(p.get("protocol"), max_len=20) or None,
                timing=_timing(p.get("timing"), RESOURCE_TIMING_KEYS),
            ),
        )
    ]


def _console(kind: str, p: Mapping[str, Any], fallback: str) -> Entries:
    level = _str(p.get("level") or p.get("type") or "log", max_len=20).lower()
    if level == "warning":
        level = "warn"
    message = _str(p.get("message") if p.get("message") is not None else p.get("text"))
    url = _url(p, fallback)
    ts = _timestamp(p)
    entries: Entries = [("console_logs", ConsoleEntry(level=level, message=message, url=url, timestamp=ts))]
    if level == "error":
        entries.append(("errors", ErrorEvent(kind="console_error", message=message, url=url, timestamp=ts)))
    return entries


def _error(kind: str, p: Mapping[str, Any], fallback: str) -> Entries:
    message = p.get("message") if p.get("message") is not None else p.get("errorText")
    if message is None:
        raise EventIngestionError(kind, "error without message")
    stack = p.get("stack")
    return [
        (
            "errors",
            ErrorEvent(
                kind=kind,
                message=_str(message),
                url=_url(p, fallback),
                timestamp=_timestamp(p),
                stack=_str(stack, max_len=8000) if stack else None,
            ),
        )
    ]


def _coord(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(v) or math.isinf(v):
        return None
    return max(0, int(v))


def _interaction(kind: str, p: Mapping[str, Any], fallback: str) -> Entries:
    target = p.get("target") or p.get("href")
    return [
        (
            "user_interactions",
            Interaction(
                kind=kind,
                url=_url(p, fallback),
                timestamp=_timestamp(p),
                x=_coord(p.get("x")),
                y=_coord(p.get("y")),
                target=_str(target, max_len=500) if target else None,
            ),
        )
    ]


def _memory(kind: str, p: Mapping[str, Any], fallback: str) -> Entries:
    if p.get("usedJSHeapSize") is None:
        raise EventIngestionError(kind, "memory sample without usedJSHeapSize")
    return [
        (
            "memory_samples",
            MemorySample(
                used_heap=_int(p.get("usedJSHeapSize")),
                total_heap=_int(p.get("totalJSHeapSize")),
                heap_limit=_int(p.get("jsHeapSizeLimit")),
                timestamp=_timestamp(p),
            ),
        )
    ]


DISPATCH_TABLE: dict[str, Normalizer] = {
    "page_load": _page_load,
    "dom_content_loaded": _simple_navigation,
    "navigation": _simple_navigation,
    "spa_navigation": _simple_navigation,
    "url_change": _simple_navigation,
    "detailed_navigation": _detailed_navigation,
    "response": _response,
    "console": _console,
    "page_error": _error,
    "network_error": _error,
    "click": _interaction,
    "scroll": _interaction,
    "link_click": _interaction,
    "memory": _memory,
}

EVENT_KINDS = tuple(DISPATCH_TABLE)


class EventIngestionAdapter:
    """Routes driver events into the owning session's buffers."""

    def __init__(self, resolve: Callable[[str], Session | None]) -> None:
        self._resolve = resolve
        self._lock = threading.Lock()
        self.accepted = 0
        self.dropped = 0
        self.rejected = 0

    def _count(self, attr: str) -> None:
        with self._lock:
            setattr(self, attr, getattr(self, attr) + 1)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"accepted": self.accepted, "dropped": self.dropped, "rejected": self.rejected}

    def dispatch(self, session_id: str, kind: str, payload: Any) -> bool:
        """Normalize and append one event. Returns True when it was recorded."""
        session = self._resolve(session_id)
        if session is None or session.status != ACTIVE:
            self._count("dropped")
            return False

        normalizer = DISPATCH_TABLE.get(kind)
        try:
            if normalizer is None:
                raise EventIngestionError(kind, "unknown event kind")
            entries = normalizer(kind, _require_mapping(kind, payload), session.url)
        except EventIngestionError as exc:
            logger.warning("ingest_rejected session=%s %s", session_id, exc.reason)
            self._count("rejected")
            return False

        if not session.append(entries):
            self._count("dropped")
            return False
        self._count("accepted")
        return True

    # One callback per event kind; each is a thin alias over dispatch().

    def on_page_load(self, session_id: str, payload: Any) -> bool:
        return self.dispatch(session_id, "page_load", payload)

    def on_dom_content_loaded(self, session_id: str, payload: Any) -> bool:
        return self.dispatch(session_id, "dom_content_loaded", payload)

    def on_navigation(self, session_id: str, payload: Any) -> bool:
        return self.dispatch(session_id, "navigation", payload)

    def on_spa_navigation(self, session_id: str, payload: Any) -> bool:
        return self.dispatch(session_id, "spa_navigation", payload)

    def on_url_change(self, session_id: str, payload: Any) -> bool:
        return self.dispatch(session_id, "url_change", payload)

    def on_detailed_navigation(self, session_id: str, payload: Any) -> bool:
        return self.dispatch(session_id, "detailed_navigation", payload)

    def on_response(self, session_id: str, payload: Any) -> bool:
        return self.dispatch(session_id, "response", payload)

    def on_console(self, session_id: str, payload: Any) -> bool:
        return self.dispatch(session_id, "console", payload)

    def on_page_error(self, session_id: str, payload: Any) -> bool:
        return self.dispatch(session_id, "page_error", payload)

    def on_network_error(self, session_id: str, payload: Any) -> bool:
        return self.dispatch(session_id, "network_error", payload)

    def on_click(self, session_id: str, payload: Any) -> bool:
        return self.dispatch(session_id, "click", payload)

    def on_scroll(self, session_id: str, payload: Any) -> bool:
        return self.dispatch(session_id, "scroll", payload)

    def on_link_click(self, session_id: str, payload: Any) -> bool:
        return self.dispatch(session_id, "link_click", payload)

    def on_memory(self, session_id: str, payload: Any) -> bool:
        return self.dispatch(session_id, "memory", payload)


__all__ = ["DISPATCH_TABLE", "EVENT_KINDS", "EventIngestionAdapter"]

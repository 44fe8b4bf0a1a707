"""Session and telemetry record types.

Records are immutable once normalized by the ingestion adapter. A Session owns
mutable buffers of records while it is active; `freeze()` hands the aggregator
an immutable view, `snapshot()` hands callers a detached summary.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .report import ReportModel

PENDING = "pending"
ACTIVE = "active"
COMPLETED = "completed"
FAILED = "failed"

TERMINAL = frozenset({COMPLETED, FAILED})

# Allowed forward moves; anything else is rejected.
_TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({ACTIVE, COMPLETED, FAILED}),
    ACTIVE: frozenset({COMPLETED, FAILED}),
    COMPLETED: frozenset(),
    FAILED: frozenset(),
}

NAVIGATION_KINDS = frozenset(
    {"page_load", "dom_content_loaded", "navigation", "spa_navigation", "url_change", "detailed_navigation"}
)
ERROR_KINDS = frozenset({"page_error", "console_error", "network_error", "startup_error"})
INTERACTION_KINDS = frozenset({"click", "scroll", "link_click"})

BUFFERS = (
    "navigation_events",
    "resource_timings",
    "errors",
    "console_logs",
    "user_interactions",
    "memory_samples",
)


def now_ms() -> int:
    return int(time.time() * 1000)


def _frozen_mapping(data: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    if not data:
        return None
    return MappingProxyType(dict(data))


@dataclass(frozen=True, slots=True)
class NavigationEvent:
    kind: str
    url: str
    timestamp: int
    load_time: float = 0.0
    dom_content_loaded: float = 0.0
    first_paint: float = 0.0
    first_contentful_paint: float = 0.0
    timing: Mapping[str, float] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "timing", _frozen_mapping(self.timing))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": self.kind,
            "url": self.url,
            "timestamp": self.timestamp,
            "loadTime": self.load_time,
            "domContentLoaded": self.dom_content_loaded,
            "firstPaint": self.first_paint,
            "firstContentfulPaint": self.first_contentful_paint,
        }
        if self.timing:
            out["timing"] = dict(self.timing)
        return out


@dataclass(frozen=True, slots=True)
class ResourceTiming:
    url: str
    timestamp: int
    status: int | None = None
    size: int = 0
    decoded_size: int = 0
    duration: float = 0.0
    resource_type: str | None = None
    content_type: str | None = None
    protocol: str | None = None
    timing: Mapping[str, float] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "timing", _frozen_mapping(self.timing))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "url": self.url,
            "status": self.status,
            "size": self.size,
            "duration": self.duration,
            "timestamp": self.timestamp,
        }
        if self.decoded_size:
            out["decodedSize"] = self.decoded_size
        if self.resource_type:
            out["initiatorType"] = self.resource_type
        if self.content_type:
            out["contentType"] = self.content_type
        if self.protocol:
            out["protocol"] = self.protocol
        if self.timing:
            out["timing"] = dict(self.timing)
        return out


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    kind: str
    message: str
    url: str
    timestamp: int
    stack: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.kind, "message": self.message, "url": self.url, "timestamp": self.timestamp}
        if self.stack:
            out["stack"] = self.stack
        return out


@dataclass(frozen=True, slots=True)
class ConsoleEntry:
    level: str
    message: str
    url: str
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.level, "message": self.message, "url": self.url, "timestamp": self.timestamp}


@dataclass(frozen=True, slots=True)
class Interaction:
    kind: str
    url: str
    timestamp: int
    x: int | None = None
    y: int | None = None
    target: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.kind, "url": self.url, "timestamp": self.timestamp}
        if self.x is not None and self.y is not None:
            out["coordinates"] = {"x": self.x, "y": self.y}
        if self.target:
            out["target"] = self.target
        return out


@dataclass(frozen=True, slots=True)
class MemorySample:
    used_heap: int
    total_heap: int
    heap_limit: int
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "usedJSHeapSize": self.used_heap,
            "totalJSHeapSize": self.total_heap,
            "jsHeapSizeLimit": self.heap_limit,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True, slots=True)
class FrozenSession:
    """Immutable view of a finished session, the aggregator's only input."""

    session_id: str
    url: str
    browser: str
    status: str
    start_time: int
    end_time: int | None
    degraded: bool = False
    navigation_events: tuple[NavigationEvent, ...] = ()
    resource_timings: tuple[ResourceTiming, ...] = ()
    errors: tuple[ErrorEvent, ...] = ()
    console_logs: tuple[ConsoleEntry, ...] = ()
    user_interactions: tuple[Interaction, ...] = ()
    memory_samples: tuple[MemorySample, ...] = ()
    dropped_events: int = 0

    @property
    def duration_ms(self) -> int:
        if self.end_time is None:
            return 0
        return max(0, self.end_time - self.start_time)


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    session_id: str
    url: str
    browser: str
    status: str
    start_time: int
    end_time: int | None
    duration_ms: int
    degraded: bool
    counts: Mapping[str, int]
    has_report: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "url": self.url,
            "browserType": self.browser,
            "status": self.status,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "durationMs": self.duration_ms,
            "degraded": self.degraded,
            "counts": dict(self.counts),
            "hasReport": self.has_report,
        }


@dataclass(slots=True)
class Session:
    """One browser-driven analysis run.

    All reads and writes of `status` and the buffers happen under `lock`, so an
    append racing a stop either lands before the freeze or is dropped.
    `cancel` is set the moment the session leaves the active state; every
    periodic task of the session waits on it.
    """

    session_id: str
    url: str
    browser: str
    start_time: int = field(default_factory=now_ms)
    status: str = PENDING
    end_time: int | None = None
    degraded: bool = False
    failure: ErrorEvent | None = None
    max_buffer_events: int = 20_000
    dropped_events: int = 0

    navigation_events: list[NavigationEvent] = field(default_factory=list)
    resource_timings: list[ResourceTiming] = field(default_factory=list)
    errors: list[ErrorEvent] = field(default_factory=list)
    console_logs: list[ConsoleEntry] = field(default_factory=list)
    user_interactions: list[Interaction] = field(default_factory=list)
    memory_samples: list[MemorySample] = field(default_factory=list)

    report: ReportModel | None = field(default=None, repr=False)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    cancel: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL

    def transition(self, new_status: str) -> bool:
        """Move forward to `new_status`. Returns False when the move is not allowed."""
        with self.lock:
            if new_status not in _TRANSITIONS.get(self.status, frozenset()):
                return False
            self.status = new_status
            if new_status in TERMINAL:
                self.end_time = now_ms()
            if new_status != ACTIVE:
                self.cancel.set()
            return True

    def fail(self, error: ErrorEvent) -> bool:
        with self.lock:
            if not self.transition(FAILED):
                return False
            self.failure = error
            return True

    def append(self, entries: list[tuple[str, Any]]) -> bool:
        """Append normalized records while active. All-or-nothing per event."""
        with self.lock:
            if self.status != ACTIVE:
                return False
            buffers = [getattr(self, name) for name, _ in entries]
            if any(len(buf) >= self.max_buffer_events for buf in buffers):
                self.dropped_events += 1
                return False
            for buf, (_, record) in zip(buffers, entries):
                buf.append(record)
            return True

    def counts(self) -> dict[str, int]:
        with self.lock:
            return {
                "navigationEvents": len(self.navigation_events),
                "resourceTimings": len(self.resource_timings),
                "errors": len(self.errors) + (1 if self.failure else 0),
                "consoleLogs": len(self.console_logs),
                "userInteractions": len(self.user_interactions),
                "memorySamples": len(self.memory_samples),
            }

    def freeze(self) -> FrozenSession:
        with self.lock:
            errors = tuple(self.errors)
            if self.failure is not None:
                errors = (self.failure, *errors)
            return FrozenSession(
                session_id=self.session_id,
                url=self.url,
                browser=self.browser,
                status=self.status,
                start_time=self.start_time,
                end_time=self.end_time,
                degraded=self.degraded,
                navigation_events=tuple(self.navigation_events),
                resource_timings=tuple(self.resource_timings),
                errors=errors,
                console_logs=tuple(self.console_logs),
                user_interactions=tuple(self.user_interactions),
                memory_samples=tuple(self.memory_samples),
                dropped_events=self.dropped_events,
            )

    def snapshot(self) -> SessionSnapshot:
        with self.lock:
            end = self.end_time if self.end_time is not None else now_ms()
            return SessionSnapshot(
                session_id=self.session_id,
                url=self.url,
                browser=self.browser,
                status=self.status,
                start_time=self.start_time,
                end_time=self.end_time,
                duration_ms=max(0, end - self.start_time),
                degraded=self.degraded,
                counts=MappingProxyType(self.counts()),
                has_report=self.report is not None,
            )

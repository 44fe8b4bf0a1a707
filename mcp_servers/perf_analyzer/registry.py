"""Session registry: lifecycle owner for analysis sessions.

Callers never touch a Session directly; they get ids, snapshots and
ReportModels. The registry lock guards the maps only. Per-session state moves
under the session's own lock, so sessions never block each other.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from contextlib import suppress
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from .aggregator import aggregate
from .config import AnalyzerConfig, normalize_browser
from .errors import (
    AnalyzerError,
    BrowserLaunchError,
    InvalidTargetError,
    NavigationTimeoutError,
    ReportNotReadyError,
    SessionAlreadyCompletedError,
    SessionNotFoundError,
)
from .ingestion import EventIngestionAdapter
from .models import ACTIVE, COMPLETED, ErrorEvent, Session, SessionSnapshot, now_ms
from .report import ReportModel, build_report
from .scoring import ScoringThresholds, score
from .timers import SessionTimer

if TYPE_CHECKING:
    from .driver import BrowserDriver

logger = logging.getLogger("mcp.perf.registry")

DriverFactory = Callable[[], "BrowserDriver"]


def validate_url(url: str) -> str:
    raw = (url or "").strip()
    try:
        parts = urlsplit(raw)
    except ValueError as exc:
        raise InvalidTargetError(f"malformed url {raw!r}") from exc
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidTargetError(f"url must be absolute http(s), got {raw!r}", details={"url": raw})
    return raw


class SessionRegistry:
    def __init__(
        self,
        config: AnalyzerConfig | None = None,
        *,
        driver_factory: DriverFactory | None = None,
        thresholds: ScoringThresholds | None = None,
    ) -> None:
        self.config = config or AnalyzerConfig.from_env()
        self.thresholds = thresholds
        self._driver_factory = driver_factory or self._default_driver_factory
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}
        self._drivers: dict[str, BrowserDriver] = {}
        self._timers: dict[str, SessionTimer] = {}
        self.ingestion = EventIngestionAdapter(self._lookup)

    def _default_driver_factory(self) -> BrowserDriver:
        from .driver import CdpBrowserDriver

        return CdpBrowserDriver(self.config)

    def _lookup(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def _require(self, session_id: str) -> Session:
        session = self._lookup(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    # ── lifecycle ────────────────────────────────────────────────────────────

    def create(self, url: str, browser: str | None = "chrome") -> str:
        """Launch a browser, admit a session and navigate it. Returns the session id."""
        target = validate_url(url)
        kind = normalize_browser(browser)

        driver = self._driver_factory()
        try:
            driver.launch(kind)
        except Exception as exc:  # noqa: BLE001
            with suppress(Exception):
                driver.close()
            if isinstance(exc, BrowserLaunchError):
                raise
            raise BrowserLaunchError(kind, str(exc) or type(exc).__name__) from exc

        session = Session(
            session_id=uuid.uuid4().hex,
            url=target,
            browser=kind,
            max_buffer_events=self.config.max_buffer_events,
        )
        sid = session.session_id
        with self._lock:
            self._sessions[sid] = session
            self._drivers[sid] = driver
        logger.info("session_created session=%s browser=%s", sid, kind)

        driver.bind(sid, self.ingestion.dispatch, session.cancel)
        try:
            driver.navigate(target, timeout=self.config.navigation_timeout, on_started=lambda: self._activate(session))
        except NavigationTimeoutError as exc:
            self._navigation_timeout(session, exc)
        except Exception as exc:  # noqa: BLE001
            reason = exc.reason if isinstance(exc, AnalyzerError) else str(exc)
            logger.warning("navigation_failed session=%s reason=%s", sid, reason)
            self._fail(session, reason or type(exc).__name__)
        return sid

    def _activate(self, session: Session) -> None:
        if not session.transition(ACTIVE):
            return
        logger.info("session_active session=%s url=%s", session.session_id, session.url)
        if self.config.heartbeat_interval <= 0:
            return
        timer = SessionTimer(
            self.config.heartbeat_interval,
            lambda: self._heartbeat(session),
            session.cancel,
            name=f"heartbeat-{session.session_id[:8]}",
        )
        with self._lock:
            if session.session_id not in self._drivers or session.cancel.is_set():
                return
            self._timers[session.session_id] = timer
        timer.start()

    def _heartbeat(self, session: Session) -> None:
        snap = session.snapshot()
        logger.info(
            "heartbeat session=%s elapsedMs=%s counts=%s", snap.session_id, snap.duration_ms, dict(snap.counts)
        )

    def _navigation_timeout(self, session: Session, exc: NavigationTimeoutError) -> None:
        if session.status != ACTIVE:
            self._fail(session, exc.reason)
            return
        with session.lock:
            session.degraded = True
        logger.warning("navigation_timeout session=%s timeoutS=%s", session.session_id, exc.timeout)
        self.ingestion.dispatch(session.session_id, "network_error", {"message": exc.reason, "url": exc.url})

    def _fail(self, session: Session, reason: str) -> None:
        error = ErrorEvent(kind="startup_error", message=reason, url=session.url, timestamp=now_ms())
        with session.lock:
            if not session.fail(error):
                return
            self._finalize(session)
        logger.info("session_failed session=%s reason=%s", session.session_id, reason)
        self._release(session.session_id)

    def _finalize(self, session: Session) -> ReportModel:
        """Aggregate, score and store the report. Caller holds the session lock."""
        frozen = session.freeze()
        stats = aggregate(frozen, self.config)
        scores = score(stats, self.thresholds)
        session.report = build_report(frozen, stats, scores)
        return session.report

    def _release(self, session_id: str) -> None:
        with self._lock:
            driver = self._drivers.pop(session_id, None)
            timer = self._timers.pop(session_id, None)
        if driver is not None:
            try:
                driver.close()
            except Exception:  # noqa: BLE001
                logger.exception("driver_close_failed session=%s", session_id)
        if timer is not None:
            timer.join(timeout=1.0)
        self._evict_overflow()

    def stop(self, session_id: str) -> ReportModel:
        """Finish a session and return its report. Exactly one stop wins."""
        session = self._require(session_id)
        with session.lock:
            if session.is_terminal:
                raise SessionAlreadyCompletedError(session_id, session.status)
            session.transition(COMPLETED)
            report = self._finalize(session)
        logger.info("session_completed session=%s durationMs=%s", session_id, report.session.get("durationMs"))
        self._release(session_id)
        return report

    def close(self) -> None:
        """Stop every session that is still running."""
        with self._lock:
            ids = [sid for sid, session in self._sessions.items() if not session.is_terminal]
        for sid in ids:
            with suppress(SessionAlreadyCompletedError, SessionNotFoundError):
                self.stop(sid)

    # ── queries ──────────────────────────────────────────────────────────────

    def get(self, session_id: str) -> SessionSnapshot | None:
        session = self._lookup(session_id)
        return session.snapshot() if session is not None else None

    def status(self, session_id: str) -> SessionSnapshot:
        return self._require(session_id).snapshot()

    def report(self, session_id: str) -> ReportModel:
        session = self._require(session_id)
        with session.lock:
            if session.report is None:
                raise ReportNotReadyError(session_id, session.status)
            return session.report

    def list_sessions(self) -> list[SessionSnapshot]:
        with self._lock:
            sessions = list(self._sessions.values())
        return sorted((s.snapshot() for s in sessions), key=lambda snap: (snap.start_time, snap.session_id))

    def evict(self, session_id: str) -> bool:
        """Drop a finished session and its report. Running sessions are kept."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or not session.is_terminal:
                return False
            del self._sessions[session_id]
        logger.info("session_evicted session=%s", session_id)
        return True

    def _evict_overflow(self) -> None:
        with self._lock:
            finished = [s for s in self._sessions.values() if s.is_terminal]
            excess = len(finished) - self.config.max_retained_sessions
            if excess <= 0:
                return
            finished.sort(key=lambda s: (s.end_time or 0, s.start_time))
            for session in finished[:excess]:
                del self._sessions[session.session_id]
                logger.info("session_evicted session=%s reason=retention", session.session_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


__all__ = ["DriverFactory", "SessionRegistry", "validate_url"]

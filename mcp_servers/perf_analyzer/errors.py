"""
Error taxonomy for the analyzer.

Provides:
- AnalyzerError: structured base error (tool-friendly dict form)
- BrowserLaunchError: fatal, raised synchronously from create()
- NavigationTimeoutError: recoverable, recorded as telemetry instead of raised to callers
- SessionNotFoundError / SessionAlreadyCompletedError / ReportNotReadyError: control-surface misuse
- InvalidTargetError: rejected URL or browser kind
- EventIngestionError: a single malformed event (dropped, never propagated)
"""

from __future__ import annotations

from typing import Any


class AnalyzerError(Exception):
    """Structured error with a short action/reason/suggestion triple."""

    action: str = "analysis"
    suggestion: str = ""

    def __init__(self, reason: str, *, suggestion: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        if suggestion is not None:
            self.suggestion = suggestion
        self.details: dict[str, Any] = dict(details or {})

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.action} failed: {self.reason}. Suggestion: {self.suggestion}"
        return f"{self.action} failed: {self.reason}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "kind": type(self).__name__,
            "action": self.action,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "details": self.details,
        }


class BrowserLaunchError(AnalyzerError):
    action = "start"
    suggestion = "Check MCP_BROWSER_BINARY / MCP_HEADLESS and that the browser can start on this host"

    def __init__(self, browser: str, reason: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"{browser}: {reason}", details={"browser": browser, **(details or {})})
        self.browser = browser


class NavigationTimeoutError(AnalyzerError):
    action = "navigate"
    suggestion = "The session continues with partial telemetry; raise MCP_PERF_NAV_TIMEOUT for slow sites"

    def __init__(self, url: str, timeout: float) -> None:
        super().__init__(
            f"navigation to {url} did not finish within {timeout:g}s",
            details={"url": url, "timeoutS": timeout},
        )
        self.url = url
        self.timeout = timeout


class SessionNotFoundError(AnalyzerError):
    suggestion = "Use analysis(action='list') to see known sessions"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session {session_id!r} not found", details={"sessionId": session_id})
        self.session_id = session_id


class SessionAlreadyCompletedError(AnalyzerError):
    action = "stop"
    suggestion = "Fetch the existing result with analysis(action='report')"

    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(
            f"session {session_id!r} is already {status}",
            details={"sessionId": session_id, "status": status},
        )
        self.session_id = session_id
        self.status = status


class ReportNotReadyError(AnalyzerError):
    action = "report"
    suggestion = "Stop the session first with analysis(action='stop')"

    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(
            f"session {session_id!r} is {status}; no report yet",
            details={"sessionId": session_id, "status": status},
        )
        self.session_id = session_id
        self.status = status


class InvalidTargetError(AnalyzerError):
    action = "start"
    suggestion = "Pass an absolute http(s) URL and one of: chrome, chromium, edge, firefox, safari"


class EventIngestionError(AnalyzerError):
    action = "ingest"

    def __init__(self, kind: str, reason: str) -> None:
        super().__init__(f"{kind}: {reason}", details={"kind": kind})
        self.kind = kind


__all__ = [
    "AnalyzerError",
    "BrowserLaunchError",
    "EventIngestionError",
    "InvalidTargetError",
    "NavigationTimeoutError",
    "ReportNotReadyError",
    "SessionAlreadyCompletedError",
    "SessionNotFoundError",
]

"""Handler for the `analysis` tool."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ..errors import InvalidTargetError
from .contract import ANALYSIS_ACTIONS
from .types import ToolResult

if TYPE_CHECKING:
    from ..registry import SessionRegistry


def _session_id(arguments: dict[str, Any]) -> str:
    sid = arguments.get("sessionId") or arguments.get("session_id")
    if not isinstance(sid, str) or not sid.strip():
        raise InvalidTargetError("sessionId is required", suggestion="Pass the id returned by action='start'")
    return sid.strip()


def _start(sessions: SessionRegistry, arguments: dict[str, Any]) -> ToolResult:
    url = arguments.get("url")
    if not isinstance(url, str):
        raise InvalidTargetError("url is required")
    sid = sessions.create(url, arguments.get("browser") or arguments.get("browserType") or "chrome")
    return ToolResult.json({"sessionId": sid, **sessions.status(sid).to_dict()})


def _stop(sessions: SessionRegistry, arguments: dict[str, Any]) -> ToolResult:
    return ToolResult.json(sessions.stop(_session_id(arguments)).to_dict())


def _status(sessions: SessionRegistry, arguments: dict[str, Any]) -> ToolResult:
    return ToolResult.json(sessions.status(_session_id(arguments)).to_dict())


def _report(sessions: SessionRegistry, arguments: dict[str, Any]) -> ToolResult:
    return ToolResult.json(sessions.report(_session_id(arguments)).to_dict())


def _list(sessions: SessionRegistry, arguments: dict[str, Any]) -> ToolResult:
    del arguments
    return ToolResult.json({"sessions": [snap.to_dict() for snap in sessions.list_sessions()]})


_ACTIONS: dict[str, Callable[[SessionRegistry, dict[str, Any]], ToolResult]] = {
    "start": _start,
    "stop": _stop,
    "status": _status,
    "report": _report,
    "list": _list,
}


def handle_analysis(sessions: SessionRegistry, arguments: dict[str, Any]) -> ToolResult:
    action = str(arguments.get("action") or "").strip().lower()
    handler = _ACTIONS.get(action)
    if handler is None:
        return ToolResult.error(
            f"Unknown action: {action or '<missing>'}",
            tool="analysis",
            suggestion=f"Use one of: {', '.join(ANALYSIS_ACTIONS)}",
        )
    return handler(sessions, arguments)


__all__ = ["handle_analysis"]

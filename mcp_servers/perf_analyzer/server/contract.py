"""Protocol and tool contract definitions.

Single source of truth for the supported MCP protocol versions, server
identity, the capabilities advertised by initialize, and the tool list.
"""

from __future__ import annotations

from typing import Any

from ..config import SUPPORTED_BROWSERS

SERVER_INFO: dict[str, str] = {"name": "perf-analyzer", "version": "0.1.0"}

SUPPORTED_PROTOCOL_VERSIONS = ["2025-06-18", "2024-11-05"]
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]
DEFAULT_PROTOCOL_VERSION = LATEST_PROTOCOL_VERSION

CAPABILITIES: dict[str, Any] = {
    "logging": {},
    "tools": {"listChanged": False},
}

ANALYSIS_ACTIONS = ("start", "stop", "status", "report", "list")

ANALYSIS_TOOL: dict[str, Any] = {
    "name": "analysis",
    "description": (
        "Browser performance sessions. start: launch a browser on a URL and begin collecting telemetry "
        "(returns sessionId). status: live counts for a session. stop: finish a session and return the "
        "scored report. report: fetch the report of a finished session. list: known sessions."
    ),
    "inputSchema": {
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": list(ANALYSIS_ACTIONS)},
            "url": {"type": "string", "description": "Absolute http(s) URL (start)"},
            "browser": {"type": "string", "enum": list(SUPPORTED_BROWSERS), "default": "chrome"},
            "sessionId": {"type": "string", "description": "Session id (stop/status/report)"},
        },
        "required": ["action"],
        "additionalProperties": False,
    },
}

TOOL_DEFINITIONS: list[dict[str, Any]] = [ANALYSIS_TOOL]


def select_protocol(requested: Any) -> str:
    if isinstance(requested, str) and requested in SUPPORTED_PROTOCOL_VERSIONS:
        return requested
    return DEFAULT_PROTOCOL_VERSION


def initialize_result(protocol: str) -> dict[str, Any]:
    return {
        "protocolVersion": protocol,
        "serverInfo": SERVER_INFO,
        "capabilities": CAPABILITIES,
        "instructions": "Start a session with analysis(action='start', url=...), stop it to get the report.",
    }


def tools_list() -> list[dict[str, Any]]:
    return TOOL_DEFINITIONS


def contract_snapshot(protocol: str | None = None) -> dict[str, Any]:
    return {
        "protocolVersion": protocol or DEFAULT_PROTOCOL_VERSION,
        "serverInfo": SERVER_INFO,
        "tools": tools_list(),
    }

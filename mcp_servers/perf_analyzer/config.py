from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from .errors import InvalidTargetError

SUPPORTED_BROWSERS = ("chrome", "chromium", "edge", "firefox", "safari")

# Kinds without a CDP endpoint run on Chromium instead.
CHROMIUM_FALLBACK = {"firefox", "safari"}

BINARY_CANDIDATES: dict[str, list[str]] = {
    "chrome": [
        "/usr/bin/google-chrome",
        "/usr/bin/google-chrome-stable",
        "/usr/bin/google-chrome-beta",
        "/opt/google/chrome/chrome",
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
        "C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe",
    ],
    "chromium": [
        "/usr/bin/chromium",
        "/usr/bin/chromium-browser",
        "/usr/local/bin/chromium",
        "/opt/chromium/chromium",
        "/Applications/Chromium.app/Contents/MacOS/Chromium",
        "C:\\Program Files\\Chromium\\Application\\chrome.exe",
        # Snap last: it ignores --user-data-dir.
        "/snap/bin/chromium",
    ],
    "edge": [
        "/usr/bin/microsoft-edge",
        "/usr/bin/microsoft-edge-stable",
        "/opt/microsoft/msedge/msedge",
        "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
        "C:\\Program Files (x86)\\Microsoft\\Edge\\Application\\msedge.exe",
        "C:\\Program Files\\Microsoft\\Edge\\Application\\msedge.exe",
    ],
}

PATH_FALLBACK = {"chrome": "google-chrome", "chromium": "chromium", "edge": "microsoft-edge"}


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def normalize_browser(raw: str | None) -> str:
    kind = (raw or "").strip().lower()
    if kind in {"", "chrome", "google-chrome"}:
        return "chrome"
    if kind in {"msedge", "edge"}:
        return "edge"
    if kind in {"webkit", "safari"}:
        return "safari"
    if kind in SUPPORTED_BROWSERS:
        return kind
    raise InvalidTargetError(f"unsupported browser {raw!r}", details={"supported": list(SUPPORTED_BROWSERS)})


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass
class BrowserConfig:
    binary_path: str
    profile_path: str
    cdp_port: int = 9222
    headless: bool = True
    extra_flags: list[str] = field(default_factory=list)
    launch_timeout: float = 10.0
    cdp_timeout: float = 5.0

    @classmethod
    def detect_binary(cls, browser: str = "chrome") -> str:
        env_path = os.environ.get("MCP_BROWSER_BINARY")
        if env_path:
            return expand_path(env_path)
        kind = "chromium" if browser in CHROMIUM_FALLBACK else browser
        candidates = list(BINARY_CANDIDATES.get(kind, []))
        if kind == "chrome":
            # Chromium is an acceptable stand-in for Chrome.
            candidates += BINARY_CANDIDATES["chromium"]
        for candidate in candidates:
            path = Path(candidate)
            if path.exists() and os.access(str(path), os.X_OK):
                return str(path)
        # Last resort: rely on PATH lookup
        return PATH_FALLBACK.get(kind, "google-chrome")

    @classmethod
    def from_env(cls, browser: str = "chrome") -> BrowserConfig:
        flags_raw = os.environ.get("MCP_BROWSER_FLAGS", "")
        return cls(
            binary_path=cls.detect_binary(browser),
            profile_path=expand_path(os.environ.get("MCP_BROWSER_PROFILE", "~/.cache/perf-analyzer/profile")),
            cdp_port=_env_int("MCP_BROWSER_PORT", 9222),
            headless=os.environ.get("MCP_HEADLESS", "1") == "1",
            extra_flags=[flag for flag in flags_raw.split(",") if flag.strip()],
            launch_timeout=_env_float("MCP_BROWSER_LAUNCH_TIMEOUT", 10.0),
            cdp_timeout=_env_float("MCP_CDP_TIMEOUT", 5.0),
        )


@dataclass
class AnalyzerConfig:
    """Analysis knobs: timeouts, aggregation limits and timer intervals."""

    navigation_timeout: float = 30.0
    # Floor for the load time of a navigation synthesized from resource timings.
    min_synthesized_load_ms: float = 100.0
    top_n: int = 5
    large_resource_bytes: int = 500 * 1024
    slow_resource_ms: float = 1000.0
    third_party_script_limit: int = 10
    heartbeat_interval: float = 5.0
    memory_sample_interval: float = 5.0
    url_poll_interval: float = 1.0
    max_retained_sessions: int = 20
    max_buffer_events: int = 20_000

    @classmethod
    def from_env(cls) -> AnalyzerConfig:
        return cls(
            navigation_timeout=_env_float("MCP_PERF_NAV_TIMEOUT", 30.0),
            min_synthesized_load_ms=_env_float("MCP_PERF_MIN_SYNTH_LOAD_MS", 100.0),
            top_n=max(0, _env_int("MCP_PERF_TOP_N", 5)),
            large_resource_bytes=max(0, _env_int("MCP_PERF_LARGE_RESOURCE_BYTES", 500 * 1024)),
            slow_resource_ms=max(0.0, _env_float("MCP_PERF_SLOW_RESOURCE_MS", 1000.0)),
            third_party_script_limit=max(0, _env_int("MCP_PERF_THIRD_PARTY_SCRIPT_LIMIT", 10)),
            heartbeat_interval=max(0.0, _env_float("MCP_PERF_HEARTBEAT_S", 5.0)),
            memory_sample_interval=max(0.0, _env_float("MCP_PERF_MEMORY_SAMPLE_S", 5.0)),
            url_poll_interval=max(0.0, _env_float("MCP_PERF_URL_POLL_S", 1.0)),
            max_retained_sessions=max(1, _env_int("MCP_PERF_MAX_RETAINED", 20)),
            max_buffer_events=max(100, _env_int("MCP_PERF_MAX_BUFFER_EVENTS", 20_000)),
        )

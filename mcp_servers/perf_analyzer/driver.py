"""Browser driver boundary and the default CDP implementation.

The registry only sees the `BrowserDriver` protocol. `CdpBrowserDriver` launches
a Chromium-family browser per session, opens one page target and translates
CDP traffic into ingestion events:

- a command connection (guarded by a lock) for navigation and evaluations;
- an event bus thread on a second connection that reads CDP events;
- session timers for memory sampling and URL polling.
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
import threading
import time
from collections.abc import Callable
from contextlib import suppress
from typing import Any, Protocol

from .cdp import CdpConnection, CdpError
from .config import CHROMIUM_FALLBACK, AnalyzerConfig, BrowserConfig
from .errors import AnalyzerError, BrowserLaunchError, NavigationTimeoutError
from .launcher import BrowserLauncher
from .timers import SessionTimer

logger = logging.getLogger("mcp.perf.driver")

EventSink = Callable[[str, str, Any], bool]
Connect = Callable[..., CdpConnection]

BINDING_NAME = "__perfAnalyzerEmit"

INTERACTION_SCRIPT = """
(() => {
  if (window.__perfAnalyzerInstalled) return;
  window.__perfAnalyzerInstalled = true;
  const send = (kind, data) => {
    try {
      window.__perfAnalyzerEmit(JSON.stringify(Object.assign(
        {kind: kind, url: location.href, timestamp: Date.now()}, data)));
    } catch (e) {}
  };
  document.addEventListener('click', (e) => {
    const el = e.target;
    send('click', {x: e.clientX, y: e.clientY, target: el && el.tagName ? el.tagName.toLowerCase() : null});
    const link = el && el.closest ? el.closest('a[href]') : null;
    if (link) send('link_click', {target: link.href});
  }, true);
  let last = 0;
  window.addEventListener('scroll', () => {
    const now = Date.now();
    if (now - last < 250) return;
    last = now;
    send('scroll', {x: Math.round(window.scrollX), y: Math.round(window.scrollY)});
  }, {passive: true});
})();
"""

LOAD_METRICS_SCRIPT = """
(async () => {
  const t = performance.timing;
  for (let i = 0; i < 20 && !t.loadEventEnd; i++) {
    await new Promise((r) => setTimeout(r, 50));
  }
  const paint = {};
  for (const p of performance.getEntriesByType('paint')) paint[p.name] = p.startTime;
  const timing = {};
  for (const k of %s) timing[k] = t[k];
  return JSON.stringify({
    url: location.href,
    navigationStart: t.navigationStart,
    timing: timing,
    firstPaint: paint['first-paint'] || 0,
    firstContentfulPaint: paint['first-contentful-paint'] || 0,
  });
})()
"""

MEMORY_SCRIPT = (
    "performance.memory ? JSON.stringify({usedJSHeapSize: performance.memory.usedJSHeapSize,"
    " totalJSHeapSize: performance.memory.totalJSHeapSize, jsHeapSizeLimit: performance.memory.jsHeapSizeLimit})"
    " : null"
)

NAVIGATION_TIMING_FIELDS = (
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


class BrowserDriver(Protocol):
    def launch(self, browser: str) -> None: ...

    def bind(self, session_id: str, sink: EventSink, cancel: threading.Event) -> None: ...

    def navigate(self, url: str, *, timeout: float, on_started: Callable[[], None]) -> None: ...

    def close(self) -> None: ...


class _CdpEventBus:
    """Background CDP event reader for one page target.

    Reconnects with backoff until stopped. `ready` is set once the domains are
    enabled and the interaction hooks are installed.
    """

    def __init__(
        self,
        *,
        ws_url: str,
        on_event: Callable[[dict[str, Any]], None],
        setup: Callable[[CdpConnection], None],
        name: str,
        connect: Connect = CdpConnection,
    ) -> None:
        self.ws_url = ws_url
        self._on_event = on_event
        self._setup = setup
        self._connect = connect
        self._stop = threading.Event()
        self.ready = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._conn: CdpConnection | None = None

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        conn = self._conn
        if conn is not None:
            conn.close()

    def _pump(self, conn: CdpConnection) -> None:
        while not self._stop.is_set():
            data = conn.recv(0.5)
            if data is None or not isinstance(data.get("method"), str) or "id" in data:
                continue
            try:
                self._on_event(data)
            except Exception:  # noqa: BLE001
                logger.debug("cdp event handler failed method=%s", data.get("method"), exc_info=True)

    def _run(self) -> None:
        backoff = 0.2
        while not self._stop.is_set():
            conn: CdpConnection | None = None
            try:
                conn = self._connect(self.ws_url, timeout=5.0)
                self._conn = conn
                self._setup(conn)
                self.ready.set()
                backoff = 0.2
                self._pump(conn)
            except CdpError as exc:
                if not self._stop.is_set():
                    logger.debug("event bus reconnect: %s", exc)
            finally:
                if conn is not None:
                    conn.close()
                self._conn = None
            if self._stop.wait(backoff):
                break
            backoff = min(backoff * 1.5, 2.0)


def _console_text(args: Any) -> str:
    parts: list[str] = []
    for arg in args if isinstance(args, list) else []:
        if not isinstance(arg, dict):
            continue
        if "value" in arg:
            value = arg["value"]
            parts.append(value if isinstance(value, str) else json.dumps(value))
        elif arg.get("description"):
            parts.append(str(arg["description"]))
        elif arg.get("type"):
            parts.append(str(arg["type"]))
    return " ".join(parts)


def _resource_phases(timing: Any, finished_ts: float | None) -> dict[str, float] | None:
    """Map CDP ResourceTiming (ms offsets from requestTime) onto phase keys."""
    if not isinstance(timing, dict):
        return None
    mapping = {
        "domainLookupStart": "dnsStart",
        "domainLookupEnd": "dnsEnd",
        "connectStart": "connectStart",
        "connectEnd": "connectEnd",
        "requestStart": "sendStart",
        "responseStart": "receiveHeadersEnd",
    }
    out: dict[str, float] = {}
    for key, cdp_key in mapping.items():
        value = timing.get(cdp_key)
        if isinstance(value, (int, float)) and value >= 0:
            out[key] = float(value)
    request_time = timing.get("requestTime")
    if isinstance(request_time, (int, float)) and isinstance(finished_ts, (int, float)):
        out["responseEnd"] = max(0.0, (finished_ts - request_time) * 1000.0)
    return out or None


class CdpBrowserDriver:
    """Default driver: one Chromium-family browser per session, driven over CDP."""

    def __init__(
        self,
        config: AnalyzerConfig | None = None,
        browser_config: BrowserConfig | None = None,
        *,
        connect: Connect = CdpConnection,
    ) -> None:
        self.config = config or AnalyzerConfig()
        self._browser_config = browser_config
        self._connect = connect
        self.launcher: BrowserLauncher | None = None
        self.page_ws_url: str | None = None
        self._profile_dir: str | None = None
        self._cmd: CdpConnection | None = None
        self._cmd_lock = threading.Lock()
        self._bus: _CdpEventBus | None = None
        self._timers: list[SessionTimer] = []

        self.session_id: str | None = None
        self._sink: EventSink | None = None
        self._cancel: threading.Event | None = None
        self._emit_lock = threading.Lock()
        self._started = threading.Event()
        self._pending: list[tuple[str, dict[str, Any]]] = []
        self._load_seen = threading.Event()
        self._requests: dict[str, dict[str, Any]] = {}
        self._main_frame: str | None = None
        self.current_url = ""

        self._handlers: dict[str, Callable[[dict[str, Any]], None]] = {
            "Network.requestWillBeSent": self._on_request,
            "Network.responseReceived": self._on_response,
            "Network.loadingFinished": self._on_loading_finished,
            "Network.loadingFailed": self._on_loading_failed,
            "Page.frameNavigated": self._on_frame_navigated,
            "Page.navigatedWithinDocument": self._on_within_document,
            "Page.domContentEventFired": self._on_dom_content,
            "Page.loadEventFired": self._on_load,
            "Runtime.consoleAPICalled": self._on_console,
            "Runtime.exceptionThrown": self._on_exception,
            "Runtime.bindingCalled": self._on_binding,
        }

    # ── lifecycle ────────────────────────────────────────────────────────────

    def launch(self, browser: str) -> None:
        if browser in CHROMIUM_FALLBACK:
            logger.warning("%s has no DevTools Protocol endpoint; falling back to Chromium", browser)
        cfg = self._browser_config or BrowserConfig.from_env(browser)
        cfg.cdp_port = BrowserLauncher.find_free_port()
        self._profile_dir = tempfile.mkdtemp(prefix="perf-analyzer-")
        cfg.profile_path = self._profile_dir

        self.launcher = BrowserLauncher(cfg)
        result = self.launcher.ensure_running()
        if not result.started:
            self.close()
            raise BrowserLaunchError(
                browser, result.message, details={"command": result.command, "logTail": result.log_tail}
            )
        try:
            version = self.launcher.cdp_version()
            browser_ws = version.get("webSocketDebuggerUrl")
            if not isinstance(browser_ws, str) or not browser_ws:
                raise CdpError("/json/version did not return webSocketDebuggerUrl")
            conn = self._connect(browser_ws, timeout=cfg.cdp_timeout)
            try:
                target_id = conn.send("Target.createTarget", {"url": "about:blank"}).get("targetId")
            finally:
                conn.close()
            if not target_id:
                raise CdpError("Target.createTarget returned no targetId")
            self.page_ws_url = f"ws://127.0.0.1:{cfg.cdp_port}/devtools/page/{target_id}"
            self._cmd = self._connect(self.page_ws_url, timeout=cfg.cdp_timeout)
        except (CdpError, RuntimeError) as exc:
            self.close()
            raise BrowserLaunchError(browser, str(exc)) from exc
        logger.info("browser_launched browser=%s port=%s", browser, cfg.cdp_port)

    def bind(self, session_id: str, sink: EventSink, cancel: threading.Event) -> None:
        if self._sink is not None:
            raise RuntimeError("driver is already bound to a session")
        self.session_id = session_id
        self._sink = sink
        self._cancel = cancel
        if self.page_ws_url is not None:
            self._bus = _CdpEventBus(
                ws_url=self.page_ws_url,
                on_event=self.handle_event,
                setup=self._setup_bus,
                name=f"cdp-bus-{session_id[:8]}",
                connect=self._connect,
            )
            self._bus.start()
            if not self._bus.ready.wait(self.config.navigation_timeout):
                logger.warning("event bus not ready session=%s", session_id)
        self._start_timers(cancel)

    def _setup_bus(self, conn: CdpConnection) -> None:
        conn.send_many(
            [
                {"method": "Page.enable"},
                {"method": "Runtime.enable"},
                {"method": "Network.enable"},
                {"method": "Runtime.addBinding", "params": {"name": BINDING_NAME}},
                {"method": "Page.addScriptToEvaluateOnNewDocument", "params": {"source": INTERACTION_SCRIPT}},
            ]
        )

    def _start_timers(self, cancel: threading.Event) -> None:
        tag = (self.session_id or "")[:8]
        for interval, callback, name in (
            (self.config.memory_sample_interval, self.sample_memory, f"memory-{tag}"),
            (self.config.url_poll_interval, self.poll_url, f"url-poll-{tag}"),
        ):
            if interval <= 0:
                continue
            timer = SessionTimer(interval, callback, cancel, name=name)
            self._timers.append(timer)
            timer.start()

    def navigate(self, url: str, *, timeout: float, on_started: Callable[[], None]) -> None:
        result = self.evaluate_command("Page.navigate", {"url": url})
        error_text = result.get("errorText")
        if error_text:
            raise AnalyzerError(f"navigation to {url} failed: {error_text}", details={"url": url})
        if isinstance(result.get("frameId"), str):
            self._main_frame = self._main_frame or result["frameId"]
        on_started()
        self._flush_pending()
        if not self._load_seen.wait(timeout):
            raise NavigationTimeoutError(url, timeout)

    def close(self) -> None:
        if self._cancel is not None:
            self._cancel.set()
        if self._bus is not None:
            self._bus.stop()
        if self._cmd is not None:
            self._cmd.close()
        for timer in self._timers:
            timer.join(timeout=1.0)
        if self.launcher is not None:
            self.launcher.stop()
        if self._profile_dir:
            shutil.rmtree(self._profile_dir, ignore_errors=True)
            self._profile_dir = None

    # ── command connection ───────────────────────────────────────────────────

    def evaluate_command(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        if self._cmd is None:
            raise CdpError("driver is not launched")
        with self._cmd_lock:
            return self._cmd.send(method, params)

    def evaluate(self, expression: str, *, await_promise: bool = False) -> Any:
        result = self.evaluate_command(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": await_promise},
        )
        if result.get("exceptionDetails"):
            raise CdpError(str(result["exceptionDetails"].get("text") or "evaluation failed"))
        value = (result.get("result") or {}).get("value")
        if isinstance(value, str):
            with suppress(ValueError):
                return json.loads(value)
        return value

    # ── emission ─────────────────────────────────────────────────────────────

    def emit(self, kind: str, payload: dict[str, Any]) -> None:
        """Hand one event to the sink. Events before navigation starts are held back."""
        with self._emit_lock:
            if not self._started.is_set():
                self._pending.append((kind, payload))
                return
        self._deliver(kind, payload)

    def _deliver(self, kind: str, payload: dict[str, Any]) -> None:
        if self._sink is None or self.session_id is None:
            return
        self._sink(self.session_id, kind, payload)

    def _flush_pending(self) -> None:
        with self._emit_lock:
            pending, self._pending = self._pending, []
            self._started.set()
            for kind, payload in pending:
                self._deliver(kind, payload)

    def handle_event(self, event: dict[str, Any]) -> None:
        handler = self._handlers.get(event.get("method", ""))
        if handler is None:
            return
        params = event.get("params")
        handler(params if isinstance(params, dict) else {})

    # ── network ──────────────────────────────────────────────────────────────

    def _on_request(self, params: dict[str, Any]) -> None:
        request = params.get("request") or {}
        url = request.get("url")
        rid = params.get("requestId")
        if not isinstance(url, str) or not rid or url.startswith("data:"):
            return
        wall = params.get("wallTime")
        self._requests[rid] = {
            "url": url,
            "type": str(params.get("type") or "").lower() or None,
            "start": params.get("timestamp"),
            "wallMs": int(wall * 1000) if isinstance(wall, (int, float)) else None,
        }

    def _on_response(self, params: dict[str, Any]) -> None:
        entry = self._requests.get(params.get("requestId"))
        response = params.get("response")
        if entry is None or not isinstance(response, dict):
            return
        entry.update(
            {
                "status": response.get("status"),
                "headers": response.get("headers") or {},
                "mimeType": response.get("mimeType"),
                "protocol": response.get("protocol"),
                "timing": response.get("timing"),
            }
        )

    def _on_loading_finished(self, params: dict[str, Any]) -> None:
        entry = self._requests.pop(params.get("requestId"), None)
        if entry is None:
            return
        finished = params.get("timestamp")
        start = entry.get("start")
        duration = 0.0
        if isinstance(finished, (int, float)) and isinstance(start, (int, float)):
            duration = (finished - start) * 1000.0
        size = params.get("encodedDataLength")
        payload: dict[str, Any] = {
            "url": entry["url"],
            "status": entry.get("status"),
            "size": size if isinstance(size, (int, float)) and size > 0 else None,
            "headers": entry.get("headers") or {},
            "duration": duration,
            "resourceType": entry.get("type"),
            "contentType": entry.get("mimeType"),
            "protocol": entry.get("protocol"),
            "timing": _resource_phases(entry.get("timing"), finished),
        }
        if entry.get("wallMs"):
            payload["timestamp"] = entry["wallMs"]
        self.emit("response", payload)

    def _on_loading_failed(self, params: dict[str, Any]) -> None:
        entry = self._requests.pop(params.get("requestId"), None)
        if entry is None:
            return
        self.emit("network_error", {"message": str(params.get("errorText") or "request failed"), "url": entry["url"]})

    # ── page ─────────────────────────────────────────────────────────────────

    def _on_frame_navigated(self, params: dict[str, Any]) -> None:
        frame = params.get("frame") or {}
        if frame.get("parentId"):
            return
        url = frame.get("url")
        if not isinstance(url, str) or url == "about:blank":
            return
        self._main_frame = frame.get("id") or self._main_frame
        self.current_url = url
        self.emit("navigation", {"url": url})

    def _on_within_document(self, params: dict[str, Any]) -> None:
        if self._main_frame and params.get("frameId") not in (None, self._main_frame):
            return
        url = params.get("url")
        if isinstance(url, str):
            self.current_url = url
            self.emit("spa_navigation", {"url": url})

    def _on_dom_content(self, params: dict[str, Any]) -> None:
        self.emit("dom_content_loaded", {"url": self.current_url})

    def _on_load(self, params: dict[str, Any]) -> None:
        try:
            self.collect_load_metrics()
        except CdpError as exc:
            logger.debug("load metrics unavailable: %s", exc)
            self.emit("page_load", {"url": self.current_url})
        finally:
            self._load_seen.set()

    def collect_load_metrics(self) -> None:
        data = self.evaluate(LOAD_METRICS_SCRIPT % json.dumps(list(NAVIGATION_TIMING_FIELDS)), await_promise=True)
        if not isinstance(data, dict):
            raise CdpError("load metrics script returned no data")
        timing = data.get("timing") if isinstance(data.get("timing"), dict) else {}
        nav_start = data.get("navigationStart") or timing.get("fetchStart") or 0
        load_end = timing.get("loadEventEnd") or 0
        dom_end = timing.get("domContentLoadedEventEnd") or 0
        url = data.get("url") or self.current_url
        self.emit(
            "page_load",
            {
                "url": url,
                "loadTime": max(0, load_end - nav_start) if load_end else 0,
                "domContentLoaded": max(0, dom_end - nav_start) if dom_end else 0,
                "firstPaint": data.get("firstPaint"),
                "firstContentfulPaint": data.get("firstContentfulPaint"),
            },
        )
        self.emit(
            "detailed_navigation",
            {
                "url": url,
                "timing": timing,
                "firstPaint": data.get("firstPaint"),
                "firstContentfulPaint": data.get("firstContentfulPaint"),
            },
        )

    # ── runtime ──────────────────────────────────────────────────────────────

    def _on_console(self, params: dict[str, Any]) -> None:
        self.emit(
            "console",
            {"level": params.get("type") or "log", "message": _console_text(params.get("args")), "url": self.current_url},
        )

    def _on_exception(self, params: dict[str, Any]) -> None:
        details = params.get("exceptionDetails") or {}
        exc = details.get("exception") or {}
        description = exc.get("description") if isinstance(exc, dict) else None
        message = description.split("\n", 1)[0] if isinstance(description, str) else details.get("text")
        self.emit(
            "page_error",
            {
                "message": message or "Uncaught exception",
                "stack": description if isinstance(description, str) else None,
                "url": details.get("url") or self.current_url,
            },
        )

    def _on_binding(self, params: dict[str, Any]) -> None:
        if params.get("name") != BINDING_NAME:
            return
        try:
            data = json.loads(params.get("payload") or "")
        except ValueError:
            return
        kind = data.pop("kind", None) if isinstance(data, dict) else None
        if kind in ("click", "scroll", "link_click"):
            self.emit(kind, data)

    # ── periodic ─────────────────────────────────────────────────────────────

    def sample_memory(self) -> None:
        data = self.evaluate(MEMORY_SCRIPT)
        if isinstance(data, dict):
            data["timestamp"] = int(time.time() * 1000)
            self.emit("memory", data)

    def poll_url(self) -> None:
        url = self.evaluate("location.href")
        if isinstance(url, str) and url and url != self.current_url and url != "about:blank":
            self.current_url = url
            self.emit("url_change", {"url": url})


__all__ = ["BINDING_NAME", "BrowserDriver", "CdpBrowserDriver", "EventSink", "INTERACTION_SCRIPT"]

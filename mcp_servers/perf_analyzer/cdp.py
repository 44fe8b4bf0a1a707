"""Chrome DevTools Protocol over websocket-client."""

from __future__ import annotations

import json
import socket
import time
from collections.abc import Callable
from contextlib import suppress
from typing import Any

import websocket


class CdpError(Exception):
    pass


def _is_timeout(exc: Exception) -> bool:
    return isinstance(exc, (TimeoutError, websocket.WebSocketTimeoutException)) or "timed out" in str(exc).lower()


class CdpConnection:
    """Low-level CDP WebSocket connection."""

    def __init__(self, ws_url: str, timeout: float = 5.0):
        try:
            self.ws = websocket.create_connection(ws_url, timeout=timeout)
        except Exception as exc:  # noqa: BLE001
            raise CdpError(f"cannot connect to {ws_url}: {exc}") from exc
        self.ws_url = ws_url
        self.timeout = timeout
        self._next_id = 1
        # Events seen while waiting for a command response are kept, not dropped.
        self._event_queue: list[dict[str, Any]] = []
        self._max_event_queue = 2000
        self._event_sink: Callable[[dict[str, Any]], None] | None = None

    def set_event_sink(self, sink: Callable[[dict[str, Any]], None] | None) -> None:
        self._event_sink = sink

    def _push_event(self, event: dict[str, Any]) -> None:
        sink = self._event_sink
        if sink is not None:
            with suppress(Exception):
                sink(event)
        self._event_queue.append(event)
        if len(self._event_queue) > self._max_event_queue:
            del self._event_queue[: len(self._event_queue) - self._max_event_queue]

    def pop_event(self, event_name: str) -> dict[str, Any] | None:
        """Pop the oldest queued event params for the given event name."""
        for i, ev in enumerate(self._event_queue):
            if ev.get("method") == event_name:
                self._event_queue.pop(i)
                params = ev.get("params")
                return params if isinstance(params, dict) else {}
        return None

    def recv(self, timeout: float) -> dict[str, Any] | None:
        """Receive one decoded message, or None when nothing arrived in time."""
        try:
            self.ws.settimeout(max(0.0, timeout))
            raw = self.ws.recv()
        except Exception as exc:  # noqa: BLE001
            if _is_timeout(exc):
                return None
            raise CdpError(str(exc)) from exc
        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            return None
        return data if isinstance(data, dict) else None

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send CDP command and wait for response."""
        msg_id = self._next_id
        self._next_id += 1

        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params
        try:
            self.ws.settimeout(min(2.0, max(0.5, float(self.timeout))))
            self.ws.send(json.dumps(msg))
        except Exception as exc:  # noqa: BLE001
            raise CdpError(str(exc)) from exc
        return self._recv_until(msg_id)

    def send_many(self, commands: list[dict[str, Any]], *, stop_on_error: bool = True) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for cmd in commands:
            method = cmd.get("method")
            if not isinstance(method, str) or not method:
                raise CdpError("send_many: each command must include a non-empty 'method'")
            params = cmd.get("params") if isinstance(cmd.get("params"), dict) else None
            try:
                out.append(self.send(method, params))
            except CdpError as exc:
                if stop_on_error:
                    raise
                out.append({"ok": False, "error": str(exc), "method": method})
        return out

    def _recv_until(self, expected_id: int) -> dict[str, Any]:
        deadline = time.time() + self.timeout
        while True:
            remaining = deadline - time.time()
            if remaining <= 0:
                raise CdpError("CDP response timed out")
            data = self.recv(min(0.5, remaining))
            if data is None:
                continue
            if isinstance(data.get("method"), str) and "id" not in data:
                self._push_event(data)
                continue
            if data.get("id") == expected_id:
                if "error" in data:
                    raise CdpError(str(data["error"]))
                result = data.get("result")
                return result if isinstance(result, dict) else {}

    def wait_for_event(self, event_name: str, timeout: float = 10.0) -> dict[str, Any] | None:
        queued = self.pop_event(event_name)
        if queued is not None:
            return queued
        deadline = time.time() + timeout
        while (remaining := deadline - time.time()) > 0:
            data = self.recv(min(0.5, remaining))
            if data is None or not isinstance(data.get("method"), str) or "id" in data:
                continue
            if data["method"] == event_name:
                params = data.get("params")
                return params if isinstance(params, dict) else {}
            self._push_event(data)
        return None

    def abort(self) -> None:
        """Hard break of the underlying socket; safe from any thread."""
        sock = getattr(self.ws, "sock", None)
        if sock is not None:
            with suppress(Exception):
                sock.shutdown(socket.SHUT_RDWR)
            with suppress(Exception):
                sock.close()

    def close(self) -> None:
        self.abort()


__all__ = ["CdpConnection", "CdpError"]

"""Redaction utilities for logging tool traffic.

Target URLs often carry tokens in their query string; logs keep the shape of
the URL and drop the secret values.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SENSITIVE_SUBSTRINGS = (
    "token",
    "secret",
    "password",
    "passwd",
    "pwd",
    "authorization",
    "cookie",
    "jwt",
    "bearer",
    "api-key",
    "api_key",
    "apikey",
)

# Avoid false-positives like "author" while still protecting the obvious key.
_SENSITIVE_EXACT = {"auth", "key", "sig", "signature"}


def is_sensitive_key(key: str) -> bool:
    k = (key or "").strip().lower()
    if not k:
        return False
    if k in _SENSITIVE_EXACT:
        return True
    return any(s in k for s in _SENSITIVE_SUBSTRINGS)


def _redact_pairs(raw: str) -> tuple[str, bool]:
    pairs = parse_qsl(raw, keep_blank_values=True)
    out_pairs: list[tuple[str, str]] = []
    changed = False
    for k, v in pairs:
        if is_sensitive_key(k) and v:
            out_pairs.append((k, "<redacted>"))
            changed = True
        else:
            out_pairs.append((k, v))
    return (urlencode(out_pairs, doseq=True), True) if changed else (raw, False)


def redact_url(url: str) -> str:
    """Redact sensitive query/fragment values and userinfo, keep everything else.

    Returns the original URL unchanged when no redaction is needed.
    """
    if not isinstance(url, str) or not url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    netloc = parts.netloc.split("@", 1)[1] if "@" in parts.netloc else parts.netloc
    query, q_changed = _redact_pairs(parts.query) if parts.query else ("", False)
    fragment, f_changed = (
        _redact_pairs(parts.fragment) if parts.fragment and "=" in parts.fragment else (parts.fragment, False)
    )
    if netloc == parts.netloc and not q_changed and not f_changed:
        return url
    return urlunsplit((parts.scheme, netloc, parts.path, query, fragment))


def _redacted_summary(value: Any) -> str:
    if isinstance(value, str):
        return f"<redacted str len={len(value)}>"
    return "<redacted>"


def _redact_any(value: Any, *, key: str | None) -> Any:
    if isinstance(value, dict):
        return {k: _redact_any(v, key=str(k)) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact_any(v, key=key) for v in value]
    if isinstance(value, str) and key and key.lower() == "url":
        return redact_url(value)
    if key and is_sensitive_key(key):
        return _redacted_summary(value)
    return value


def redact_tool_arguments(tool: str, args: dict[str, Any]) -> dict[str, Any]:
    """Redact tool arguments for safe logging."""
    del tool
    return _redact_any(args, key=None)


def redact_jsonrpc_for_log(payload: dict[str, Any], *, max_text_chars: int = 512) -> dict[str, Any]:
    """Redact a JSON-RPC message for trace logs: tool args redacted, long text truncated."""
    msg = dict(payload) if isinstance(payload, dict) else {}
    params = msg.get("params")
    if msg.get("method") in {"tools/call", "call_tool"} and isinstance(params, dict):
        args = params.get("arguments") or params.get("args")
        if isinstance(args, dict):
            msg["params"] = {**params, "arguments": redact_tool_arguments(str(params.get("name")), args)}
            msg["params"].pop("args", None)

    result = msg.get("result")
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        content = []
        for item in result["content"]:
            if isinstance(item, dict) and isinstance(item.get("text"), str) and len(item["text"]) > max_text_chars:
                item = {**item, "text": item["text"][:max_text_chars] + f"… <truncated len={len(item['text'])}>"}
            content.append(item)
        msg["result"] = {**result, "content": content}
    return msg


__all__ = ["is_sensitive_key", "redact_jsonrpc_for_log", "redact_tool_arguments", "redact_url"]

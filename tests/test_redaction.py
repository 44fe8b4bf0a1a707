from __future__ import annotations

from mcp_servers.perf_analyzer.server.redaction import (
    is_sensitive_key,
    redact_jsonrpc_for_log,
    redact_tool_arguments,
    redact_url,
)


def test_redact_url_keeps_normal_query() -> None:
    url = "https://example.com/search?q=hello&sort=asc"
    assert redact_url(url) == url


def test_redact_url_redacts_sensitive_query_param_but_keeps_others() -> None:
    out = redact_url("https://example.com/?token=abc&q=hello")
    assert "q=hello" in out
    assert "token=abc" not in out
    assert "token=" in out and "redacted" in out


def test_redact_url_redacts_oauth_fragment_and_userinfo() -> None:
    out = redact_url("https://user:pw@example.com/callback#access_token=abc&state=1")
    assert "state=1" in out
    assert "access_token=abc" not in out
    assert "user:pw@" not in out


def test_redact_url_does_not_redact_author_like_keys() -> None:
    out = redact_url("https://example.com/?author=John&auth=abc&q=hello")
    assert "author=John" in out
    assert "auth=abc" not in out


def test_session_ids_are_not_treated_as_secrets() -> None:
    assert not is_sensitive_key("sessionId")
    assert is_sensitive_key("X-Api-Key")
    assert redact_tool_arguments("analysis", {"action": "status", "sessionId": "abc"}) == {
        "action": "status",
        "sessionId": "abc",
    }


def test_tool_arguments_redact_target_url() -> None:
    out = redact_tool_arguments("analysis", {"action": "start", "url": "https://example.com/?apikey=s3cret"})
    assert out["action"] == "start"
    assert "s3cret" not in out["url"]


def test_jsonrpc_trace_redacts_arguments_and_truncates_results() -> None:
    call = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "tools/call",
        "params": {"name": "analysis", "args": {"action": "start", "url": "https://example.com/?token=t"}},
    }
    out = redact_jsonrpc_for_log(call)
    assert "args" not in out["params"]
    assert "token=t" not in out["params"]["arguments"]["url"]

    reply = {"jsonrpc": "2.0", "id": 1, "result": {"content": [{"type": "text", "text": "x" * 2000}]}}
    text = redact_jsonrpc_for_log(reply, max_text_chars=100)["result"]["content"][0]["text"]
    assert text.startswith("x" * 100)
    assert "truncated len=2000" in text
    assert reply["result"]["content"][0]["text"] == "x" * 2000

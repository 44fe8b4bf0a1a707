from __future__ import annotations

from urllib.error import URLError

import pytest

from mcp_servers.perf_analyzer import launcher as launcher_module
from mcp_servers.perf_analyzer.config import AnalyzerConfig, BrowserConfig, normalize_browser
from mcp_servers.perf_analyzer.errors import InvalidTargetError
from mcp_servers.perf_analyzer.launcher import BrowserLauncher


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, "chrome"),
        ("", "chrome"),
        ("  Chrome ", "chrome"),
        ("chromium", "chromium"),
        ("msedge", "edge"),
        ("firefox", "firefox"),
        ("webkit", "safari"),
    ],
)
def test_normalize_browser(raw, expected: str) -> None:
    assert normalize_browser(raw) == expected


def test_normalize_browser_rejects_unknown_kinds() -> None:
    with pytest.raises(InvalidTargetError) as excinfo:
        normalize_browser("opera")
    assert "chrome" in excinfo.value.details["supported"]


def test_analyzer_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MCP_PERF_NAV_TIMEOUT", "12.5")
    monkeypatch.setenv("MCP_PERF_TOP_N", "3")
    monkeypatch.setenv("MCP_PERF_MAX_RETAINED", "0")
    monkeypatch.setenv("MCP_PERF_URL_POLL_S", "")
    cfg = AnalyzerConfig.from_env()
    assert cfg.navigation_timeout == 12.5
    assert cfg.top_n == 3
    assert cfg.max_retained_sessions == 1
    assert cfg.url_poll_interval == 1.0


def test_browser_config_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("MCP_BROWSER_BINARY", "/opt/custom/chrome")
    monkeypatch.setenv("MCP_BROWSER_PROFILE", str(tmp_path / "profile"))
    monkeypatch.setenv("MCP_BROWSER_FLAGS", "--mute-audio,,--disable-gpu")
    monkeypatch.setenv("MCP_HEADLESS", "0")
    cfg = BrowserConfig.from_env("firefox")
    assert cfg.binary_path == "/opt/custom/chrome"
    assert cfg.profile_path == str(tmp_path / "profile")
    assert cfg.extra_flags == ["--mute-audio", "--disable-gpu"]
    assert cfg.headless is False


def test_detect_binary_falls_back_to_path_lookup(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MCP_BROWSER_BINARY", raising=False)
    monkeypatch.setattr("mcp_servers.perf_analyzer.config.BINARY_CANDIDATES", {"chromium": [], "edge": []})
    assert BrowserConfig.detect_binary("edge") == "microsoft-edge"
    assert BrowserConfig.detect_binary("safari") == "chromium"


def _config(tmp_path, **kw) -> BrowserConfig:
    return BrowserConfig(binary_path="/usr/bin/chromium", profile_path=str(tmp_path / "p"), cdp_port=9333, **kw)


def test_launch_command_flags(tmp_path) -> None:
    cmd = BrowserLauncher(_config(tmp_path, extra_flags=["--mute-audio"])).build_launch_command(["--foo"])
    assert cmd[0] == "/usr/bin/chromium"
    assert "--remote-debugging-port=9333" in cmd
    assert f"--user-data-dir={tmp_path / 'p'}" in cmd
    assert "--headless=new" in cmd
    assert cmd[-2:] == ["--mute-audio", "--foo"]


def test_headed_launch_uses_window_size(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MCP_WINDOW_SIZE", "800,600")
    cmd = BrowserLauncher(_config(tmp_path, headless=False)).build_launch_command()
    assert "--headless=new" not in cmd
    assert "--window-size=800,600" in cmd


def test_ensure_running_does_not_adopt_a_foreign_browser(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    launcher = BrowserLauncher(_config(tmp_path))
    monkeypatch.setattr(launcher, "_cdp_ready", lambda timeout=0.4: True)
    result = launcher.ensure_running()
    assert result.started is False
    assert launcher.process is None


def test_ensure_running_reports_spawn_failure(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    launcher = BrowserLauncher(_config(tmp_path))
    monkeypatch.setattr(launcher, "_cdp_ready", lambda timeout=0.4: False)
    monkeypatch.setattr(launcher, "_port_available", lambda timeout=0.2: True)

    def fail(*_a, **_k):
        raise FileNotFoundError("no such browser")

    monkeypatch.setattr(launcher_module.subprocess, "Popen", fail)
    result = launcher.ensure_running(timeout=0.1)
    assert result.started is False
    assert "no such browser" in result.message
    assert result.command[0] == "/usr/bin/chromium"


def test_unreachable_cdp_endpoint(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    def unreachable(*_a, **_k):
        raise URLError("connection refused")

    monkeypatch.setattr(launcher_module, "urlopen", unreachable)
    launcher = BrowserLauncher(_config(tmp_path))
    assert launcher.list_targets() == []
    with pytest.raises(RuntimeError):
        launcher.cdp_version()


def test_find_free_port_returns_bindable_port() -> None:
    port = BrowserLauncher.find_free_port()
    assert 0 < port < 65536


def test_stop_without_process_is_a_noop(tmp_path) -> None:
    assert BrowserLauncher(_config(tmp_path)).stop() is False

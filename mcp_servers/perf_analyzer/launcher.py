from __future__ import annotations

import contextlib
import json
import os
import socket
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from urllib.error import URLError
from urllib.request import Request, urlopen

from .config import BrowserConfig, expand_path


@dataclass
class LaunchResult:
    command: list[str]
    started: bool
    message: str
    log_path: str | None = None
    log_tail: str | None = None


def _tail_text(path: str | None, max_chars: int = 4000) -> str | None:
    if not path:
        return None
    try:
        raw = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    return raw[-max_chars:]


class BrowserLauncher:
    def __init__(self, config: BrowserConfig | None = None) -> None:
        self.config = config or BrowserConfig.from_env()
        self.process: subprocess.Popen | None = None

    @property
    def base_url(self) -> str:
        return f"http://127.0.0.1:{self.config.cdp_port}"

    def cdp_ready(self, timeout: float = 0.4) -> bool:
        """Return True if the CDP HTTP endpoint responds."""
        return self._cdp_ready(timeout=timeout)

    def stop(self, *, timeout: float = 2.0) -> bool:
        """Stop the launcher-owned browser process (terminate, then kill)."""
        proc = self.process
        if proc is None:
            return False
        if proc.poll() is not None:
            return True

        with contextlib.suppress(Exception):
            proc.terminate()

        deadline = time.time() + max(0.1, float(timeout))
        while time.time() < deadline:
            if proc.poll() is not None:
                return True
            time.sleep(0.05)

        # Escalate to kill.
        with contextlib.suppress(Exception):
            proc.kill()
        return True

    def _build_common_flags(self) -> list[str]:
        flags = [
            f"--remote-debugging-port={self.config.cdp_port}",
            f"--user-data-dir={expand_path(self.config.profile_path)}",
            "--remote-allow-origins=*",
            "--disable-fre",
            "--no-first-run",
            "--no-default-browser-check",
            "--disable-background-networking",
            "--disable-dev-shm-usage",
        ]
        if "vendor/chromium" in self.config.binary_path:
            flags.append("--no-sandbox")
        if self.config.headless:
            flags.append("--headless=new")
        else:
            flags.append(f"--window-size={os.environ.get('MCP_WINDOW_SIZE', '1280,900')}")
        return flags

    def build_launch_command(self, extra: list[str] | None = None) -> list[str]:
        flags = self._build_common_flags() + self.config.extra_flags
        if extra:
            flags.extend(extra)
        return [self.config.binary_path, *flags]

    def _port_available(self, timeout: float = 0.2) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            try:
                result = sock.connect_ex(("127.0.0.1", self.config.cdp_port))
                return result != 0
            except OSError:
                return False

    def _cdp_ready(self, timeout: float = 0.4) -> bool:
        try:
            with urlopen(f"{self.base_url}/json/version", timeout=timeout) as resp:
                return resp.status == 200
        except (OSError, TimeoutError, URLError):
            return False

    def _make_log_path(self) -> str | None:
        log_dir = os.environ.get("MCP_BROWSER_LOG_DIR")
        if not log_dir:
            return None
        Path(log_dir).expanduser().mkdir(parents=True, exist_ok=True)
        return str(Path(log_dir).expanduser() / f"browser_{self.config.cdp_port}_{int(time.time() * 1000)}.log")

    def ensure_running(self, timeout: float | None = None) -> LaunchResult:
        """Start the browser unless a CDP endpoint already answers on the port."""
        if self._cdp_ready():
            return LaunchResult([], False, "Browser already listening on CDP port")
        if not self._port_available():
            return LaunchResult([], False, f"Port {self.config.cdp_port} already in use")

        Path(expand_path(self.config.profile_path)).mkdir(parents=True, exist_ok=True)
        cmd = self.build_launch_command()
        log_path = self._make_log_path()
        try:
            if log_path:
                with open(log_path, "ab", buffering=0) as log_fh:
                    self.process = subprocess.Popen(
                        cmd, stdout=log_fh, stderr=log_fh, stdin=subprocess.DEVNULL, start_new_session=True
                    )
            else:
                self.process = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as exc:
            return LaunchResult(cmd, False, str(exc), log_path=log_path, log_tail=_tail_text(log_path))

        deadline = time.time() + (self.config.launch_timeout if timeout is None else timeout)
        while time.time() < deadline:
            if self._cdp_ready():
                return LaunchResult(cmd, True, "Browser launched", log_path=log_path)
            if self.process.poll() is not None:
                return LaunchResult(
                    cmd,
                    False,
                    f"Browser exited with code {self.process.returncode}",
                    log_path=log_path,
                    log_tail=_tail_text(log_path),
                )
            time.sleep(0.1)
        return LaunchResult(cmd, False, "Browser launch timed out", log_path=log_path, log_tail=_tail_text(log_path))

    @staticmethod
    def find_free_port() -> int:
        with contextlib.closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
            s.bind(("127.0.0.1", 0))
            return s.getsockname()[1]

    def cdp_version(self, timeout: float = 0.8) -> dict:
        try:
            req = Request(f"{self.base_url}/json/version", headers={"User-Agent": "perf-analyzer"})
            with urlopen(req, timeout=timeout) as resp:
                return json.loads(resp.read().decode())
        except URLError as exc:
            raise RuntimeError(f"CDP not reachable on port {self.config.cdp_port}: {exc}") from exc

    def list_targets(self) -> list[dict]:
        try:
            req = Request(f"{self.base_url}/json/list", headers={"User-Agent": "perf-analyzer"})
            with urlopen(req, timeout=0.5) as resp:
                return json.loads(resp.read().decode())
        except URLError:
            return []

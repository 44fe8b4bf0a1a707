#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[mcp] binary={os.environ.get('MCP_BROWSER_BINARY', 'auto')} | "
    f"headless={os.environ.get('MCP_HEADLESS', '1')} | "
    f"nav_timeout={os.environ.get('MCP_PERF_NAV_TIMEOUT', '30')}s | "
    f"retain={os.environ.get('MCP_PERF_MAX_RETAINED', '20')}",
    file=sys.stderr,
)

from mcp_servers.perf_analyzer.main import main  # noqa: E402

if __name__ == "__main__":
    main()

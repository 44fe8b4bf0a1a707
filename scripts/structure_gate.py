#!/usr/bin/env python3
from __future__ import annotations

import ast
import sys
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Limits:
    max_file_loc: int
    max_func_loc: int
    max_cc: int


REPO_ROOT = Path(__file__).resolve().parents[1]
PACKAGE = Path("mcp_servers") / "perf_analyzer"

# The pure core stays small and flat.
STRICT_FILES: dict[str, Limits] = {
    "mcp_servers/perf_analyzer/aggregator.py": Limits(max_file_loc=400, max_func_loc=40, max_cc=15),
    "mcp_servers/perf_analyzer/scoring.py": Limits(max_file_loc=200, max_func_loc=40, max_cc=15),
    "mcp_servers/perf_analyzer/ingestion.py": Limits(max_file_loc=400, max_func_loc=40, max_cc=15),
    "mcp_servers/perf_analyzer/models.py": Limits(max_file_loc=400, max_func_loc=40, max_cc=15),
}

# Defaults for everything else.
DEFAULT_LIMITS = Limits(max_file_loc=600, max_func_loc=150, max_cc=25)

SKIP_DIRS = {".git", ".venv", ".pytest_cache", "__pycache__", "vendor", "dist", "build", "node_modules"}


def _iter_python_files(root: Path) -> list[Path]:
    out: list[Path] = []
    for p in sorted(root.rglob("*.py")):
        if any(part in SKIP_DIRS for part in p.parts):
            continue
        out.append(p)
    return out


def _limits_for(rel: str) -> Limits:
    return STRICT_FILES.get(rel, DEFAULT_LIMITS)


class _CcVisitor(ast.NodeVisitor):
    def __init__(self) -> None:
        self.cc = 1

    def _branch(self, node: ast.AST, weight: int = 1) -> None:
        self.cc += weight
        self.generic_visit(node)

    def visit_If(self, node: ast.If) -> None:  # noqa: N802
        self._branch(node)

    def visit_For(self, node: ast.For) -> None:  # noqa: N802
        self._branch(node)

    def visit_While(self, node: ast.While) -> None:  # noqa: N802
        self._branch(node)

    def visit_With(self, node: ast.With) -> None:  # noqa: N802
        self._branch(node)

    def visit_Try(self, node: ast.Try) -> None:  # noqa: N802
        self._branch(node, len(node.handlers))

    def visit_BoolOp(self, node: ast.BoolOp) -> None:  # noqa: N802
        # a and b and c => 2 decision points
        self._branch(node, max(0, len(node.values) - 1))

    def visit_IfExp(self, node: ast.IfExp) -> None:  # noqa: N802
        self._branch(node)

    def visit_comprehension(self, node: ast.comprehension) -> None:  # noqa: N802
        self._branch(node, 1 + len(node.ifs))

    def visit_Match(self, node: ast.Match) -> None:  # noqa: N802
        self._branch(node, len(node.cases))


def cc_for(node: ast.AST) -> int:
    v = _CcVisitor()
    v.visit(node)
    return v.cc


def _loc_for(node: ast.AST) -> int:
    lineno = getattr(node, "lineno", None)
    end_lineno = getattr(node, "end_lineno", None)
    if isinstance(lineno, int) and isinstance(end_lineno, int) and end_lineno >= lineno:
        return end_lineno - lineno + 1
    return 0


def check_file(path: Path, root: Path = REPO_ROOT) -> list[str]:
    rel = path.relative_to(root).as_posix()
    limits = _limits_for(rel)
    try:
        source = path.read_text(encoding="utf-8")
    except OSError as e:
        return [f"{rel}: failed to read ({e})"]

    errors: list[str] = []
    loc = len(source.splitlines())
    if loc > limits.max_file_loc:
        errors.append(f"{rel}: file too large (loc={loc}, max={limits.max_file_loc})")
    try:
        tree = ast.parse(source, filename=rel)
    except SyntaxError as e:
        return [*errors, f"{rel}: syntax error ({e})"]

    for node in ast.walk(tree):
        if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            continue
        fn = f"{rel}:{node.lineno}"
        fn_loc = _loc_for(node)
        if fn_loc > limits.max_func_loc:
            errors.append(f"{fn}: function too large (loc={fn_loc}, max={limits.max_func_loc})")
        cc = cc_for(node)
        if cc > limits.max_cc:
            errors.append(f"{fn}: cyclomatic too high (cc={cc}, max={limits.max_cc})")
    return errors


def main() -> int:
    files = _iter_python_files(REPO_ROOT / PACKAGE) + [REPO_ROOT / "scripts" / "structure_gate.py"]
    errors = [err for path in files for err in check_file(path)]

    if errors:
        print("== structure gate errors ==", file=sys.stderr)
        for e in errors:
            print(f"- {e}", file=sys.stderr)
        print(f"\nFAIL: structure gate ({len(errors)} error(s)).", file=sys.stderr)
        return 2

    print("OK: structure gate")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

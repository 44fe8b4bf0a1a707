"""ReportModel: the immutable artifact handed to renderers."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .models import FrozenSession
from .scoring import score_label

SCHEMA_VERSION = "1.0"

SLOW_LOAD_MS = 3000
MODERATE_LOAD_MS = 1000
HEAVY_PAYLOAD_BYTES = 2_000_000
MANY_RESOURCES = 50
COMPRESSIBLE_RATIO = 0.5


def deep_freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: deep_freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(deep_freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return value


@dataclass(frozen=True, slots=True)
class Recommendation:
    severity: str
    code: str
    message: str
    condition: str
    value: Any = None
    threshold: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "condition": self.condition,
            "value": self.value,
            "threshold": self.threshold,
        }


@dataclass(frozen=True, slots=True)
class ReportModel:
    session: Mapping[str, Any]
    stats: Mapping[str, Any]
    scores: Mapping[str, int]
    labels: Mapping[str, str]
    recommendations: Mapping[str, tuple[Recommendation, ...]]
    schema_version: str = SCHEMA_VERSION
    startup_error: Mapping[str, Any] | None = field(default=None)

    def __post_init__(self) -> None:
        object.__setattr__(self, "session", deep_freeze(self.session))
        object.__setattr__(self, "stats", deep_freeze(self.stats))
        object.__setattr__(self, "scores", MappingProxyType(dict(self.scores)))
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))
        object.__setattr__(
            self,
            "recommendations",
            MappingProxyType({k: tuple(v) for k, v in self.recommendations.items()}),
        )
        if self.startup_error is not None:
            object.__setattr__(self, "startup_error", deep_freeze(self.startup_error))

    @property
    def session_id(self) -> str:
        return str(self.session.get("sessionId", ""))

    @property
    def status(self) -> str:
        return str(self.session.get("status", ""))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "schemaVersion": self.schema_version,
            "session": thaw(self.session),
            "scores": dict(self.scores),
            "scoreLabels": dict(self.labels),
            "recommendations": {k: [r.to_dict() for r in v] for k, v in self.recommendations.items()},
        }
        out.update(thaw(self.stats))
        if self.startup_error is not None:
            out["startupError"] = thaw(self.startup_error)
        return out

    def to_json(self, *, indent: int | None = None) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, indent=indent, ensure_ascii=False)


def _rec(severity: str, code: str, message: str, condition: str, value: Any = None, threshold: Any = None) -> Recommendation:
    return Recommendation(severity, code, message, condition, value, threshold)


def _critical(stats: Mapping[str, Any]) -> list[Recommendation]:
    out: list[Recommendation] = []
    page_errors = stats["errors"]["byType"].get("page_error", 0)
    if page_errors:
        out.append(
            _rec("critical", "page_errors", f"{page_errors} uncaught page errors detected", "page_error > 0", page_errors, 0)
        )
    avg = stats["pageLoad"]["averageLoadTime"]
    if avg > SLOW_LOAD_MS:
        out.append(
            _rec(
                "critical",
                "slow_page_load",
                f"Average load time exceeds {SLOW_LOAD_MS}ms ({avg:g}ms)",
                f"averageLoadTime > {SLOW_LOAD_MS}",
                avg,
                SLOW_LOAD_MS,
            )
        )
    return out


def _warnings(stats: Mapping[str, Any], degraded: bool) -> list[Recommendation]:
    out: list[Recommendation] = []
    res, opt, sec = stats["resources"], stats["optimization"], stats["security"]
    if res["largeCount"]:
        out.append(
            _rec(
                "warning",
                "large_resources",
                f"{res['largeCount']} resources exceed {res['largeResourceBytes'] / 1024:g}KB",
                f"size > {res['largeResourceBytes']}",
                res["largeCount"],
                res["largeResourceBytes"],
            )
        )
    if opt["duplicates"]:
        count = opt["duplicateRequests"]
        out.append(
            _rec("warning", "duplicate_requests", f"{count} duplicate requests detected", "same url fetched > 1", count, 0)
        )
    if res["totalSize"] > HEAVY_PAYLOAD_BYTES:
        out.append(
            _rec(
                "warning",
                "heavy_payload",
                f"Total transfer size is {res['totalSize'] / 1_000_000:.1f}MB",
                f"totalSize > {HEAVY_PAYLOAD_BYTES}",
                res["totalSize"],
                HEAVY_PAYLOAD_BYTES,
            )
        )
    avg = stats["pageLoad"]["averageLoadTime"]
    if MODERATE_LOAD_MS < avg <= SLOW_LOAD_MS:
        out.append(
            _rec(
                "warning",
                "moderate_page_load",
                f"Average load time exceeds {MODERATE_LOAD_MS}ms ({avg:g}ms)",
                f"averageLoadTime > {MODERATE_LOAD_MS}",
                avg,
                MODERATE_LOAD_MS,
            )
        )
    console_errors = stats["errors"]["byType"].get("console_error", 0)
    if console_errors:
        out.append(
            _rec(
                "warning",
                "console_errors",
                f"{console_errors} console errors logged",
                "console_error > 0",
                console_errors,
                0,
            )
        )
    if sec["httpRequests"]:
        out.append(
            _rec(
                "warning",
                "insecure_requests",
                f"{sec['httpRequests']} requests use plain HTTP",
                "http requests > 0",
                sec["httpRequests"],
                0,
            )
        )
    if sec["thirdPartyScriptWarning"]:
        out.append(
            _rec(
                "warning",
                "third_party_scripts",
                f"{sec['thirdPartyScripts']} third-party scripts loaded",
                "thirdPartyScripts > thirdPartyScriptLimit",
                sec["thirdPartyScripts"],
                None,
            )
        )
    if res["total"] > MANY_RESOURCES:
        out.append(
            _rec(
                "warning",
                "many_requests",
                f"{res['total']} requests made; consider bundling",
                f"resources > {MANY_RESOURCES}",
                res["total"],
                MANY_RESOURCES,
            )
        )
    if res["failed"]:
        out.append(
            _rec("warning", "failed_requests", f"{res['failed']} requests failed", "status >= 400", res["failed"], 0)
        )
    if degraded:
        out.append(
            _rec(
                "warning",
                "degraded_session",
                "Navigation did not finish in time; telemetry may be partial",
                "navigation timeout",
                True,
                None,
            )
        )
    return out


def _info(stats: Mapping[str, Any]) -> list[Recommendation]:
    out: list[Recommendation] = []
    res, opt, page_load = stats["resources"], stats["optimization"], stats["pageLoad"]
    if res["total"] and not opt["cdnDomains"]:
        out.append(_rec("info", "no_cdn", "No CDN usage detected", "cdnDomains == 0", 0, 1))
    if opt["compressibleRatio"] > COMPRESSIBLE_RATIO:
        out.append(
            _rec(
                "info",
                "compression",
                f"{opt['compressibleRequests']} text resources; make sure they are served compressed",
                f"compressibleRatio > {COMPRESSIBLE_RATIO}",
                opt["compressibleRatio"],
                COMPRESSIBLE_RATIO,
            )
        )
    if res["slowCount"]:
        out.append(
            _rec(
                "info",
                "slow_resources",
                f"{res['slowCount']} resources took longer than {res['slowResourceMs']:g}ms",
                f"duration > {res['slowResourceMs']:g}",
                res["slowCount"],
                res["slowResourceMs"],
            )
        )
    if not page_load["totalPages"] and not page_load["samples"]:
        out.append(_rec("info", "no_page_load", "No page load was captured", "pages == 0 and samples == 0", 0, 1))
    if page_load["synthesized"]:
        out.append(
            _rec(
                "info",
                "synthesized_load",
                "Load time was estimated from resource timings",
                "no navigation events",
                page_load["averageLoadTime"],
                None,
            )
        )
    return out


def recommendations(stats: Mapping[str, Any], *, degraded: bool = False) -> dict[str, tuple[Recommendation, ...]]:
    return {
        "critical": tuple(_critical(stats)),
        "warning": tuple(_warnings(stats, degraded)),
        "info": tuple(_info(stats)),
    }


def session_metadata(frozen: FrozenSession) -> dict[str, Any]:
    return {
        "sessionId": frozen.session_id,
        "url": frozen.url,
        "browserType": frozen.browser,
        "status": frozen.status,
        "startTime": frozen.start_time,
        "endTime": frozen.end_time,
        "durationMs": frozen.duration_ms,
        "degraded": frozen.degraded,
    }


def build_report(frozen: FrozenSession, stats: Mapping[str, Any], scores: Mapping[str, int]) -> ReportModel:
    startup = next((err for err in frozen.errors if err.kind == "startup_error"), None)
    return ReportModel(
        session=session_metadata(frozen),
        stats=stats,
        scores=scores,
        labels={name: score_label(value) for name, value in scores.items()},
        recommendations=recommendations(stats, degraded=frozen.degraded),
        startup_error=startup.to_dict() if startup is not None else None,
    )


__all__ = ["SCHEMA_VERSION", "Recommendation", "ReportModel", "build_report", "deep_freeze", "recommendations"]

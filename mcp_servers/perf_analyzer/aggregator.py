"""Reduce a frozen session into report statistics.

Pure: reads a FrozenSession, returns plain dicts with camelCase keys. The same
input always produces the same output (stable sorts with index tie-breaks,
floats rounded to 2 places). A malformed entry only drops out of the stat it
breaks.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from typing import Any
from urllib.parse import urlsplit

from .config import AnalyzerConfig
from .models import FrozenSession, NavigationEvent, ResourceTiming

EXTENSION_TYPES: dict[str, str] = {
    "js": "JavaScript",
    "mjs": "JavaScript",
    "css": "CSS",
    "png": "Image",
    "jpg": "Image",
    "jpeg": "Image",
    "gif": "Image",
    "svg": "Image",
    "webp": "Image",
    "woff": "Font",
    "woff2": "Font",
    "ttf": "Font",
    "eot": "Font",
    "json": "JSON",
    "xml": "XML",
}

CDN_FRAGMENTS = (
    "cdn",
    "cloudflare",
    "cloudfront",
    "akamai",
    "fastly",
    "jsdelivr",
    "unpkg",
    "googleapis",
    "gstatic",
    "azureedge",
    "bootstrapcdn",
    "cdnjs",
)

COMPRESSIBLE_TYPES = frozenset({"JavaScript", "CSS", "JSON", "XML"})
COMPRESSIBLE_CONTENT = ("text/", "javascript", "json", "xml", "svg")
TEXT_EXTENSIONS = frozenset({"html", "htm", "txt", "svg"})


def _r(value: float) -> float:
    return round(float(value), 2)


def _avg(values: list[float]) -> float:
    return _r(sum(values) / len(values)) if values else 0.0


def _host(url: str) -> str | None:
    try:
        host = urlsplit(url).hostname
    except (ValueError, AttributeError):
        return None
    return host.lower() if host else None


def _extension(url: str) -> str:
    try:
        path = urlsplit(url).path
    except (ValueError, AttributeError):
        return ""
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


def resource_type(url: str) -> str:
    return EXTENSION_TYPES.get(_extension(url), "Other")


def _site(host: str) -> str:
    labels = host.split(".")
    return ".".join(labels[-2:]) if len(labels) >= 2 else host


def _top(resources: tuple[ResourceTiming, ...], key: str, n: int) -> list[dict[str, Any]]:
    ranked = sorted(enumerate(resources), key=lambda pair: (-getattr(pair[1], key), pair[0]))
    return [
        {"url": res.url, "type": resource_type(res.url), "size": res.size, "duration": _r(res.duration)}
        for _, res in ranked[: max(0, n)]
    ]


def _counts(values: Iterable[str]) -> dict[str, int]:
    return dict(sorted(Counter(values).items()))


def resource_stats(resources: tuple[ResourceTiming, ...], config: AnalyzerConfig) -> dict[str, Any]:
    total = len(resources)
    total_size = sum(res.size for res in resources)
    return {
        "total": total,
        "totalSize": total_size,
        "averageSize": _r(total_size / total) if total else 0.0,
        "averageDuration": _avg([res.duration for res in resources]),
        "byType": _counts(resource_type(res.url) for res in resources),
        "byStatus": _counts(str(res.status) if res.status else "unknown" for res in resources),
        "slowest": _top(resources, "duration", config.top_n),
        "largest": _top(resources, "size", config.top_n),
        "largeCount": sum(1 for res in resources if res.size > config.large_resource_bytes),
        "largeResourceBytes": config.large_resource_bytes,
        "slowCount": sum(1 for res in resources if res.duration > config.slow_resource_ms),
        "slowResourceMs": _r(config.slow_resource_ms),
        "failed": sum(1 for res in resources if res.status is not None and res.status >= 400),
    }


def _phase(timing: Any, start: str, end: str) -> float:
    if not timing or start not in timing or end not in timing:
        return 0.0
    return max(0.0, timing[end] - timing[start])


def _request_phases(res: ResourceTiming) -> dict[str, float]:
    timing = res.timing
    total = _phase(timing, "requestStart", "responseEnd")
    return {
        "dnsLookup": _phase(timing, "domainLookupStart", "domainLookupEnd"),
        "connect": _phase(timing, "connectStart", "connectEnd"),
        "response": _phase(timing, "responseStart", "responseEnd"),
        "total": total or res.duration,
    }


def network_stats(resources: tuple[ResourceTiming, ...]) -> dict[str, Any]:
    phases = [_request_phases(res) for res in resources]
    hosts = [host for host in (_host(res.url) for res in resources) if host]
    return {
        "requests": len(resources),
        "averageDnsLookup": _avg([p["dnsLookup"] for p in phases]),
        "averageConnect": _avg([p["connect"] for p in phases]),
        "averageResponse": _avg([p["response"] for p in phases]),
        "averageTotal": _avg([p["total"] for p in phases]),
        "byProtocol": _counts(res.protocol or "unknown" for res in resources),
        "byDomain": _counts(hosts),
    }


def _detailed_phases(timing: Any) -> tuple[float, float]:
    load = _phase(timing, "fetchStart", "loadEventEnd") or _phase(timing, "loadEventStart", "loadEventEnd")
    return load, _phase(timing, "fetchStart", "domContentLoadedEventEnd")


def _navigation_entry(event: NavigationEvent) -> dict[str, Any]:
    return {
        "type": event.kind,
        "url": event.url,
        "timestamp": event.timestamp,
        "loadTime": _r(event.load_time),
        "domReady": _r(event.dom_content_loaded),
        "firstPaint": _r(event.first_paint),
        "firstContentfulPaint": _r(event.first_contentful_paint),
    }


def _detail_entry(event: NavigationEvent) -> dict[str, Any]:
    load, dom_ready = _detailed_phases(event.timing)
    return {
        "url": event.url,
        "timestamp": event.timestamp,
        "loadTime": _r(load),
        "domReady": _r(dom_ready),
        "firstPaint": _r(event.first_paint),
        "firstContentfulPaint": _r(event.first_contentful_paint),
    }


def _page_entries(events: Iterable[NavigationEvent]) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Split navigations into pages and navigation-timing details.

    A detailed_navigation is attached to the latest page_load entry as `detail`;
    it is never a page of its own.
    """
    pages: list[dict[str, Any]] = []
    details: list[dict[str, Any]] = []
    last_load: dict[str, Any] | None = None
    for ev in events:
        if ev.kind == "dom_content_loaded":
            continue
        if ev.kind == "detailed_navigation":
            detail = _detail_entry(ev)
            details.append(detail)
            if last_load is not None and "detail" not in last_load:
                last_load["detail"] = detail
            continue
        entry = _navigation_entry(ev)
        pages.append(entry)
        if ev.kind == "page_load":
            last_load = entry
    return pages, details


def _synthesized_entry(frozen: FrozenSession, config: AnalyzerConfig) -> dict[str, Any]:
    resources = frozen.resource_timings
    average = sum(res.duration for res in resources) / len(resources)
    return {
        "type": "synthesized",
        "url": frozen.url,
        "timestamp": min(res.timestamp for res in resources),
        "loadTime": _r(max(config.min_synthesized_load_ms, average)),
        "domReady": 0.0,
        "firstPaint": 0.0,
        "firstContentfulPaint": 0.0,
    }


def page_load_stats(frozen: FrozenSession, config: AnalyzerConfig) -> dict[str, Any]:
    events = frozen.navigation_events
    pages, details = _page_entries(events)
    page_loads = [entry for entry in pages if entry["type"] == "page_load"]
    synthesized = not events and bool(frozen.resource_timings)
    if synthesized:
        pages = [_synthesized_entry(frozen, config)]
        page_loads = pages
    # Navigation timing only stands in for load times when no page_load was seen.
    source = page_loads or details
    loads = [entry["loadTime"] for entry in source if entry["loadTime"] > 0]
    return {
        "pages": pages,
        "totalPages": len(pages),
        "pageLoads": len(page_loads),
        "detailedNavigations": len(details),
        "samples": len(loads),
        "averageLoadTime": _avg(loads),
        "fastestLoad": _r(min(loads)) if loads else 0.0,
        "slowestLoad": _r(max(loads)) if loads else 0.0,
        "domReadyEvents": sum(1 for ev in events if ev.kind == "dom_content_loaded"),
        "synthesized": synthesized,
    }


def severity(kind: str) -> str:
    if kind == "page_error":
        return "critical"
    if kind == "console_error":
        return "warning"
    return "info"


def error_stats(frozen: FrozenSession) -> dict[str, Any]:
    buckets = {"critical": 0, "warning": 0, "info": 0}
    for err in frozen.errors:
        buckets[severity(err.kind)] += 1
    return {
        "total": len(frozen.errors),
        "byType": _counts(err.kind for err in frozen.errors),
        "bySeverity": buckets,
    }


def _is_compressible(res: ResourceTiming) -> bool:
    if resource_type(res.url) in COMPRESSIBLE_TYPES or _extension(res.url) in TEXT_EXTENSIONS:
        return True
    content_type = (res.content_type or "").lower()
    return any(fragment in content_type for fragment in COMPRESSIBLE_CONTENT)


def optimization_stats(resources: tuple[ResourceTiming, ...]) -> dict[str, Any]:
    seen = Counter(res.url for res in resources)
    duplicates = sorted(
        ({"url": url, "count": count} for url, count in seen.items() if count > 1),
        key=lambda item: (-item["count"], item["url"]),
    )
    cdn_hosts = [
        host for host in (_host(res.url) for res in resources) if host and any(f in host for f in CDN_FRAGMENTS)
    ]
    compressible = sum(1 for res in resources if _is_compressible(res))
    return {
        "duplicates": duplicates,
        "duplicateRequests": sum(item["count"] - 1 for item in duplicates),
        "cdnDomains": sorted(set(cdn_hosts)),
        "cdnRequests": len(cdn_hosts),
        "compressibleRequests": compressible,
        "compressibleRatio": _r(compressible / len(resources)) if resources else 0.0,
    }


def security_stats(frozen: FrozenSession, config: AnalyzerConfig) -> dict[str, Any]:
    resources = frozen.resource_timings
    schemes = []
    for res in resources:
        try:
            schemes.append(urlsplit(res.url).scheme.lower())
        except ValueError:
            continue
    https, http = schemes.count("https"), schemes.count("http")
    page_host = _host(frozen.url)
    page_site = _site(page_host) if page_host else None
    third_party = [
        host
        for host in (_host(res.url) for res in resources if resource_type(res.url) == "JavaScript")
        if host and _site(host) != page_site
    ]
    return {
        "httpsRequests": https,
        "httpRequests": http,
        "httpsRatio": _r(https / (https + http)) if https + http else 0.0,
        "thirdPartyScriptDomains": sorted(set(third_party)),
        "thirdPartyScripts": len(third_party),
        "thirdPartyScriptWarning": len(third_party) > config.third_party_script_limit,
    }


def interaction_stats(frozen: FrozenSession) -> dict[str, Any]:
    by_type = _counts(item.kind for item in frozen.user_interactions)
    return {"total": len(frozen.user_interactions), "byType": by_type, "clicks": by_type.get("click", 0)}


def console_stats(frozen: FrozenSession) -> dict[str, Any]:
    return {"total": len(frozen.console_logs), "byLevel": _counts(entry.level for entry in frozen.console_logs)}


def memory_stats(frozen: FrozenSession) -> dict[str, Any]:
    used = [float(sample.used_heap) for sample in frozen.memory_samples]
    return {
        "samples": len(used),
        "averageUsedHeap": _avg(used),
        "peakUsedHeap": int(max(used)) if used else 0,
        "latestUsedHeap": frozen.memory_samples[-1].used_heap if used else 0,
    }


def aggregate(frozen: FrozenSession, config: AnalyzerConfig | None = None) -> dict[str, Any]:
    """Compute every statistics section for one frozen session."""
    cfg = config or AnalyzerConfig()
    resources = frozen.resource_timings
    stats: dict[str, Any] = {
        "resources": resource_stats(resources, cfg),
        "network": network_stats(resources),
        "pageLoad": page_load_stats(frozen, cfg),
        "errors": error_stats(frozen),
        "optimization": optimization_stats(resources),
        "security": security_stats(frozen, cfg),
        "interactions": interaction_stats(frozen),
        "console": console_stats(frozen),
        "memory": memory_stats(frozen),
    }
    stats["summary"] = {
        "pages": stats["pageLoad"]["totalPages"],
        "resources": stats["resources"]["total"],
        "errors": stats["errors"]["total"],
        "clicks": stats["interactions"]["clicks"],
        "totalSize": stats["resources"]["totalSize"],
        "averageMemoryUsage": stats["memory"]["averageUsedHeap"],
        "durationMs": frozen.duration_ms,
        "droppedEvents": frozen.dropped_events,
    }
    return stats


__all__ = ["CDN_FRAGMENTS", "EXTENSION_TYPES", "aggregate", "resource_type", "severity"]

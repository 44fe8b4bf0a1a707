"""Threshold scoring over aggregator output.

Each category starts at 100. A tier table is a tuple of (limit, penalty) pairs
sorted by limit; the penalty of the highest limit the observed value exceeds
applies. Categories then subtract their dimensions, clamp to [0, 100] and round.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

Tiers = tuple[tuple[float, int], ...]

MB = 1_000_000


@dataclass(frozen=True, slots=True)
class ScoringThresholds:
    load_time: Tiers = ((500, 5), (1000, 15), (2000, 25), (3000, 40), (5000, 60))
    resource_count: Tiers = ((20, 5), (50, 10), (100, 40))
    error_count: Tiers = ((0, 10), (5, 20), (10, 30), (20, 50))
    total_size: Tiers = ((1 * MB, 10), (2 * MB, 20), (5 * MB, 30), (10 * MB, 40))
    image_count: Tiers = ((20, 5), (50, 10))
    script_count: Tiers = ((15, 5), (30, 10))
    stylesheet_count: Tiers = ((5, 5), (10, 10))
    seo_load_time: Tiers = ((3000, 20), (5000, 30))
    seo_error_count: Tiers = ((0, 10), (10, 20))
    seo_no_samples_penalty: int = 50
    seo_few_types_penalty: int = 20
    seo_some_types_penalty: int = 10
    seo_few_types_limit: int = 3
    seo_some_types_limit: int = 5

    def __post_init__(self) -> None:
        for f in fields(self):
            table = getattr(self, f.name)
            if not isinstance(table, tuple):
                continue
            limits = [limit for limit, _ in table]
            penalties = [penalty for _, penalty in table]
            if limits != sorted(limits) or penalties != sorted(penalties):
                raise ValueError(f"{f.name}: tiers must be sorted with non-decreasing penalties")
            if any(penalty < 0 for penalty in penalties):
                raise ValueError(f"{f.name}: penalties must be >= 0")


DEFAULT_THRESHOLDS = ScoringThresholds()


def tier_penalty(value: float, tiers: Tiers) -> int:
    penalty = 0
    for limit, tier in tiers:
        if value > limit:
            penalty = tier
    return penalty


def _clamp(score: float) -> int:
    return int(round(max(0.0, min(100.0, score))))


def _num(section: Mapping[str, Any] | None, key: str) -> float:
    if not isinstance(section, Mapping):
        return 0.0
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def _seo(stats: Mapping[str, Any], t: ScoringThresholds) -> int:
    page_load = stats.get("pageLoad")
    by_type = (stats.get("resources") or {}).get("byType") or {}
    penalty = 0
    if _num(page_load, "samples") <= 0:
        penalty += t.seo_no_samples_penalty
    distinct = len(by_type)
    if distinct < t.seo_few_types_limit:
        penalty += t.seo_few_types_penalty
    elif distinct < t.seo_some_types_limit:
        penalty += t.seo_some_types_penalty
    penalty += tier_penalty(_num(page_load, "averageLoadTime"), t.seo_load_time)
    penalty += tier_penalty(_num(stats.get("errors"), "total"), t.seo_error_count)
    return _clamp(100 - penalty)


def score(stats: Mapping[str, Any], thresholds: ScoringThresholds | None = None) -> dict[str, int]:
    """Score aggregator output into performance/accessibility/bestPractices/seo."""
    t = thresholds or DEFAULT_THRESHOLDS
    resources = stats.get("resources")
    by_type = (resources or {}).get("byType") or {}
    avg_load = _num(stats.get("pageLoad"), "averageLoadTime")
    errors = _num(stats.get("errors"), "total")

    performance = 100 - tier_penalty(avg_load, t.load_time) - tier_penalty(_num(resources, "total"), t.resource_count)
    accessibility = 100 - tier_penalty(errors, t.error_count)
    best_practices = (
        100
        - tier_penalty(_num(resources, "totalSize"), t.total_size)
        - tier_penalty(float(by_type.get("Image", 0)), t.image_count)
        - tier_penalty(float(by_type.get("JavaScript", 0)), t.script_count)
        - tier_penalty(float(by_type.get("CSS", 0)), t.stylesheet_count)
    )
    return {
        "performance": _clamp(performance),
        "accessibility": _clamp(accessibility),
        "bestPractices": _clamp(best_practices),
        "seo": _seo(stats, t),
    }


def score_label(value: int) -> str:
    if value >= 90:
        return "Good"
    if value >= 50:
        return "Needs improvement"
    return "Poor"


__all__ = ["DEFAULT_THRESHOLDS", "ScoringThresholds", "score", "score_label", "tier_penalty"]

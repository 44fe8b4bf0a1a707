from __future__ import annotations

import pytest

from mcp_servers.perf_analyzer.aggregator import aggregate
from mcp_servers.perf_analyzer.models import ErrorEvent, NavigationEvent
from mcp_servers.perf_analyzer.scoring import ScoringThresholds, score, score_label, tier_penalty


def _stats(*, avg_load: float = 0, samples: int = 1, resources: int = 0, errors: int = 0, by_type=None, size=0):
    return {
        "pageLoad": {"averageLoadTime": avg_load, "samples": samples},
        "resources": {"total": resources, "totalSize": size, "byType": by_type or {}},
        "errors": {"total": errors},
    }


def test_tier_penalty_takes_highest_exceeded_tier() -> None:
    tiers = ((500, 5), (1000, 15), (2000, 25))
    assert tier_penalty(500, tiers) == 0
    assert tier_penalty(501, tiers) == 5
    assert tier_penalty(1500, tiers) == 15
    assert tier_penalty(10_000, tiers) == 25


def test_clean_800ms_page_load_scores_high_on_performance(make_frozen) -> None:
    frozen = make_frozen(
        navigation_events=[NavigationEvent(kind="page_load", url="https://example.com/", timestamp=1, load_time=800)]
    )
    scores = score(aggregate(frozen))
    assert 90 <= scores["performance"] <= 100
    assert scores["accessibility"] == 100


def test_heavy_slow_session_scores_zero_on_performance() -> None:
    assert score(_stats(avg_load=6000, resources=150))["performance"] == 0


def test_twenty_five_errors_halve_accessibility(make_frozen) -> None:
    errors = [ErrorEvent(kind="page_error", message="x", url="u", timestamp=i) for i in range(25)]
    assert score(aggregate(make_frozen(errors=errors)))["accessibility"] == 50


def test_best_practices_dimensions_stack() -> None:
    stats = _stats(size=6_000_000, by_type={"Image": 60, "JavaScript": 20, "CSS": 6})
    # 30 (size > 5MB) + 10 (images > 50) + 5 (scripts > 15) + 5 (stylesheets > 5)
    assert score(stats)["bestPractices"] == 50


def test_seo_rules() -> None:
    no_samples = _stats(samples=0, by_type={"A": 1, "B": 1, "C": 1, "D": 1, "E": 1})
    assert score(no_samples)["seo"] == 50
    few_types = _stats(by_type={"A": 1, "B": 1})
    assert score(few_types)["seo"] == 80
    some_types = _stats(by_type={"A": 1, "B": 1, "C": 1})
    assert score(some_types)["seo"] == 90
    slow_and_broken = _stats(avg_load=5500, errors=11, by_type={k: 1 for k in "ABCDE"})
    assert score(slow_and_broken)["seo"] == 50


def test_scores_are_clamped() -> None:
    worst = _stats(avg_load=60_000, samples=0, resources=1000, errors=1000, size=10**9)
    scores = score(worst)
    assert all(0 <= value <= 100 for value in scores.values())
    assert scores["seo"] == 0


def test_scores_are_monotonic_in_errors_and_load_time() -> None:
    previous = 101
    for errors in range(0, 40):
        current = score(_stats(errors=errors))["accessibility"]
        assert current <= previous
        previous = current
    previous = 101
    for load in range(0, 8000, 250):
        current = score(_stats(avg_load=load))["performance"]
        assert current <= previous
        previous = current


def test_thresholds_are_overridable_and_validated() -> None:
    strict = ScoringThresholds(load_time=((100, 50),))
    assert score(_stats(avg_load=200), strict)["performance"] == 50
    with pytest.raises(ValueError):
        ScoringThresholds(load_time=((1000, 20), (500, 10)))
    with pytest.raises(ValueError):
        ScoringThresholds(error_count=((0, 30), (5, 10)))


def test_scoring_ignores_missing_sections() -> None:
    scores = score({})
    assert scores["performance"] == 100
    assert scores["seo"] == 30


def test_score_labels() -> None:
    assert score_label(95) == "Good"
    assert score_label(90) == "Good"
    assert score_label(50) == "Needs improvement"
    assert score_label(49) == "Poor"

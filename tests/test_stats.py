"""Tests for statistical calculations and report rendering."""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ado_metrics.models import (
    AuthoredMetrics,
    PeopleRollup,
    Person,
    PersonRollup,
    ReviewMetrics,
    StateDurations,
    WorkItemRollup,
)
from ado_metrics.stats import (
    calculate_percentile,
    compute_statistics,
    format_duration,
    format_ratio,
    generate_report,
)


def test_calculate_percentile_empty_returns_none():
    """Verify percentile calculation returns None when sample list is empty."""
    assert calculate_percentile([], 50) is None


def test_calculate_percentile_multiple_values_p50_p75_p90():
    """Verify linear interpolation percentile values for a multi-value sorted sample."""
    values = [10.0, 20.0, 30.0, 40.0]
    assert calculate_percentile(values, 50) == pytest.approx(25.0)
    assert calculate_percentile(values, 75) == pytest.approx(32.5)
    assert calculate_percentile(values, 90) == pytest.approx(37.0)


def test_calculate_percentile_rejects_out_of_range():
    with pytest.raises(ValueError):
        calculate_percentile([1.0], 101)


def test_compute_statistics_filters_invalid_and_computes_summary():
    """Verify statistics ignore invalid samples and compute count and percentiles."""
    stats = compute_statistics([10.0, 20.0, None, -5.0, float("nan"), 30.0])

    assert stats["count"] == 3
    assert stats["p50"] == pytest.approx(20.0)
    assert stats["p90"] == pytest.approx(28.0)


def test_format_duration_handles_milliseconds():
    """Verify the formatter converts milliseconds to HH:MM:SS."""
    assert format_duration(None) == "n/a"
    assert format_duration(0) == "00:00:00"
    assert format_duration(3_661_000) == "01:01:01"
    assert format_duration((27 * 3600 + 5 * 60 + 9) * 1000) == "27:05:09"


def test_format_ratio():
    assert format_ratio(None) == "n/a"
    assert format_ratio(0.5) == "50%"


def test_generate_report_renders_people_notes_and_distribution():
    """Verify report output includes per-person sections, notes and team percentiles."""
    ann = PersonRollup(
        person=Person(id="1", email="ann@example.com", display_name="Ann"),
        team="Core",
        notes=["Directional (n=3)"],
        work_items=WorkItemRollup(
            count=3,
            completed_total=2,
            throughput_total=2,
            lead_time_avg_ms=7_200_000,
            cycle_time_avg_ms=3_600_000,
            time_in_state_ms=StateDurations(),
            rework_count_total=1,
        ),
        pr_authored=AuthoredMetrics(count=3, ttfr_avg_ms=60_000, ttfr_n=3, time_to_merge_avg_ms=120_000, ci_pass_rate=0.75),
        pr_reviewed=ReviewMetrics(count=4, responsiveness_avg_ms=30_000, comments_avg=2.5, cross_team_pct=0.25),
    )
    bob = PersonRollup(
        person=Person(id="2", email="bob@example.com", display_name="Bob"),
        notes=["Authored PR metrics suppressed (n < 3)"],
    )
    rollup = PeopleRollup(generated_at=datetime(2026, 2, 1, tzinfo=timezone.utc), items=(ann, bob))

    report = generate_report(rollup)

    assert "People Metrics Report" in report
    assert "Ann [Core]" in report
    assert "lead=02:00:00" in report
    assert "ttfr=00:01:00" in report
    assert "ci=75%" in report
    assert "cross-team=25%" in report
    assert "note: Authored PR metrics suppressed (n < 3)" in report
    assert "Time to First Response: people=1 P50=00:01:00" in report

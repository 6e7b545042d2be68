"""Statistics and formatting helpers for people metrics reporting.

This module provides utilities for:
- Computing linear-interpolation percentiles from pre-sorted samples.
- Summarizing per-person averages across the team (P50, P75, P90, count).
- Formatting millisecond durations as ``HH:MM:SS``.
- Building a human-readable report from a :class:`~ado_metrics.models.PeopleRollup`.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional

from .models import PeopleRollup, PersonRollup


def calculate_percentile(sorted_values: List[float], p: float) -> Optional[float]:
    """Calculate a percentile using linear interpolation.

    The input sequence is expected to already be sorted in ascending order.
    - Empty input returns ``None``.
    - ``p <= 0`` returns the first value.
    - ``p >= 100`` returns the last value.
    - Otherwise, percentile is linearly interpolated between adjacent ranks.

    Raises:
        ValueError: If ``p`` is outside ``[0, 100]``.
    """
    if not 0 <= p <= 100:
        raise ValueError("Percentile 'p' must be in the range [0, 100].")

    if not sorted_values:
        return None

    if p <= 0:
        return sorted_values[0]

    if p >= 100:
        return sorted_values[-1]

    position = (len(sorted_values) - 1) * (p / 100.0)
    lower_index = math.floor(position)
    upper_index = math.ceil(position)

    if lower_index == upper_index:
        return sorted_values[int(position)]

    lower_value = sorted_values[lower_index]
    upper_value = sorted_values[upper_index]
    return lower_value + (upper_value - lower_value) * (position - lower_index)


def compute_statistics(samples: Iterable[Optional[float]]) -> Dict[str, Optional[float]]:
    """Compute P50, P75, P90 and sample count, ignoring ``None``/NaN/negative values."""
    clean_samples = sorted(
        float(sample)
        for sample in samples
        if sample is not None and not math.isnan(sample) and sample >= 0
    )

    return {
        "p50": calculate_percentile(clean_samples, 50),
        "p75": calculate_percentile(clean_samples, 75),
        "p90": calculate_percentile(clean_samples, 90),
        "count": float(len(clean_samples)),
    }


def format_duration(milliseconds: Optional[float]) -> str:
    """Format milliseconds as ``HH:MM:SS`` (``"n/a"`` when ``None``)."""
    if milliseconds is None:
        return "n/a"

    total_seconds = max(0, int(round(milliseconds / 1000.0)))
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    remaining_seconds = total_seconds % 60
    return f"{hours:02d}:{minutes:02d}:{remaining_seconds:02d}"


def format_ratio(value: Optional[float]) -> str:
    if value is None:
        return "n/a"
    return f"{value * 100:.0f}%"


def _person_lines(item: PersonRollup) -> List[str]:
    header = item.person.display_name
    if item.team:
        header += f" [{item.team}]"
    lines = [header]

    if item.work_items is not None:
        work = item.work_items
        lines.append(
            f"   Work items: n={work.count} completed={work.completed_total} "
            f"throughput={work.throughput_total} rework={work.rework_count_total} "
            f"lead={format_duration(work.lead_time_avg_ms)} "
            f"cycle={format_duration(work.cycle_time_avg_ms)}"
        )
    if item.pr_authored is not None:
        authored = item.pr_authored
        iterations = "n/a" if authored.iterations_avg is None else f"{authored.iterations_avg:.1f}"
        lines.append(
            f"   Authored PRs: n={authored.count} ttfr={format_duration(authored.ttfr_avg_ms)} "
            f"approve={format_duration(authored.time_to_approve_avg_ms)} "
            f"merge={format_duration(authored.time_to_merge_avg_ms)} "
            f"iterations={iterations} ci={format_ratio(authored.ci_pass_rate)}"
        )
    if item.pr_reviewed is not None:
        reviewed = item.pr_reviewed
        comments = "n/a" if reviewed.comments_avg is None else f"{reviewed.comments_avg:.1f}"
        lines.append(
            f"   Reviews: n={reviewed.count} "
            f"responsiveness={format_duration(reviewed.responsiveness_avg_ms)} "
            f"comments={comments} cross-team={format_ratio(reviewed.cross_team_pct)}"
        )
    for note in item.notes:
        lines.append(f"   note: {note}")
    return lines


def generate_report(rollup: PeopleRollup) -> str:
    """Generate a human-readable report for a people rollup.

    Per-person sections are followed by the team distribution (P50/P75/P90)
    of per-person average TTFR and time to merge, in business hours.
    """
    lines = [
        "People Metrics Report",
        f"Generated: {rollup.generated_at.isoformat()}",
        "",
    ]
    for item in rollup.items:
        lines.extend(_person_lines(item))
        lines.append("")

    distributions = (
        ("Time to First Response", [i.pr_authored.ttfr_avg_ms for i in rollup.items if i.pr_authored]),
        ("Time to Merge", [i.pr_authored.time_to_merge_avg_ms for i in rollup.items if i.pr_authored]),
    )
    lines.append("Team distribution of per-person averages")
    for label, samples in distributions:
        stats = compute_statistics(samples)
        lines.append(
            f"   {label}: people={int(stats['count'] or 0)} "
            f"P50={format_duration(stats['p50'])} "
            f"P75={format_duration(stats['p75'])} "
            f"P90={format_duration(stats['p90'])}"
        )

    return "\n".join(lines)

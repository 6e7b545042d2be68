"""Per-person rollups over work item, authored PR and review metrics."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence

from .models import (
    Person,
    PersonRollup,
    PeopleRollup,
    Segment,
    StateDurations,
    WorkItemMetrics,
    WorkItemRollup,
)
from .pr_authored import AuthoredContext, compute_authored_metrics
from .pr_review import ReviewContext, compute_review_metrics
from .schemas import PullRequest, WorkItem
from .timeutil import parse_timestamp
from .workitem_metrics import compute_work_item_metrics

logger = logging.getLogger(__name__)

DIRECTIONAL_MARGIN = 2


def aggregate_work_items(
    work_items: Sequence[WorkItem],
    segments_by_item: Mapping[int, Sequence[Segment]],
    metrics_by_item: Mapping[int, WorkItemMetrics],
    threshold: int,
) -> WorkItemRollup:
    """Sum and average work item metrics for one person.

    Metrics are taken from ``metrics_by_item`` or, when missing, computed from
    the item's segments and ``System.CreatedDate``. Lead and cycle averages
    are ``None`` when fewer than ``threshold`` items contribute.
    """
    count = 0
    completed_total = 0
    throughput_total = 0
    rework_total = 0
    lead_times: List[int] = []
    cycle_times: List[int] = []
    to_do = in_progress = done = 0

    for work_item in work_items:
        count += 1
        metrics = metrics_by_item.get(work_item.id)
        if metrics is None:
            segments = segments_by_item.get(work_item.id, ())
            created_at = parse_timestamp(work_item.fields.created_date)
            if not segments or created_at is None:
                logger.debug(
                    "Skipping work item without timeline or creation date",
                    extra={"work_item_id": work_item.id},
                )
                continue
            metrics = compute_work_item_metrics(segments, created_at)

        completed_total += int(metrics.completed)
        throughput_total += metrics.throughput
        rework_total += metrics.rework_count
        if metrics.lead_time_ms is not None:
            lead_times.append(metrics.lead_time_ms)
        if metrics.cycle_time_ms is not None:
            cycle_times.append(metrics.cycle_time_ms)
        to_do += metrics.time_in_state_ms.to_do
        in_progress += metrics.time_in_state_ms.in_progress
        done += metrics.time_in_state_ms.done

    def _average(values: List[int]) -> Optional[int]:
        if not values or len(values) < threshold:
            return None
        return round(sum(values) / len(values))

    return WorkItemRollup(
        count=count,
        completed_total=completed_total,
        throughput_total=throughput_total,
        lead_time_avg_ms=_average(lead_times),
        cycle_time_avg_ms=_average(cycle_times),
        time_in_state_ms=StateDurations(to_do=to_do, in_progress=in_progress, done=done),
        rework_count_total=rework_total,
    )


def compute_person_rollups(
    people: Sequence[Person],
    work_items_by_person: Mapping[str, Sequence[WorkItem]],
    authored_by_person: Mapping[str, Sequence[PullRequest]],
    reviewed_by_person: Mapping[str, Sequence[PullRequest]],
    segments_by_item: Mapping[int, Sequence[Segment]],
    authored_ctx: AuthoredContext,
    review_ctx: ReviewContext,
    n_threshold: int,
    metrics_by_item: Optional[Mapping[int, WorkItemMetrics]] = None,
    team_by_email: Optional[Mapping[str, str]] = None,
    generated_at: Optional[datetime] = None,
) -> PeopleRollup:
    """Build rollups for ``people``; per-person maps are keyed by ``Person.key``.

    Sections with fewer than ``n_threshold`` samples are omitted (left
    ``None``) and explained in ``notes``; sections at most two samples above
    the threshold are flagged as directional.
    """
    threshold = max(0, int(n_threshold))
    teams: Dict[str, str] = {key.strip().lower(): team for key, team in (team_by_email or {}).items()}
    items: List[PersonRollup] = []

    for person in people:
        key = person.key
        work = aggregate_work_items(
            work_items_by_person.get(key, ()),
            segments_by_item,
            metrics_by_item or {},
            threshold,
        )
        authored = compute_authored_metrics(authored_by_person.get(key, ()), authored_ctx)
        reviewed = compute_review_metrics(
            reviewed_by_person.get(key, ()),
            person.email or person.id,
            review_ctx,
        )

        rollup = PersonRollup(person=person, team=teams.get(key))
        sections = (
            ("work_items", "Work item metrics", work.count, work),
            ("pr_authored", "Authored PR metrics", authored.count, authored),
            ("pr_reviewed", "Review participation metrics", reviewed.count, reviewed),
        )
        for attribute, label, samples, value in sections:
            if samples < threshold:
                rollup.notes.append(f"{label} suppressed (n < {threshold})")
                continue
            setattr(rollup, attribute, value)
            if samples <= threshold + DIRECTIONAL_MARGIN:
                rollup.notes.append(f"Directional (n={samples})")
        items.append(rollup)

    items.sort(key=lambda item: item.person.display_name.casefold())
    logger.info("Computed person rollups", extra={"people": len(items), "threshold": threshold})
    return PeopleRollup(
        generated_at=generated_at or datetime.now(timezone.utc),
        items=tuple(items),
    )

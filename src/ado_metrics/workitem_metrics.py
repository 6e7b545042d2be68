"""Flow metrics for a single work item, computed from its timeline segments."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from .models import DONE, IN_PROGRESS, TO_DO, Segment, StateDurations, WorkItemMetrics
from .timeutil import elapsed_ms


def compute_work_item_metrics(
    segments: Sequence[Segment],
    created_at: Optional[datetime],
) -> WorkItemMetrics:
    """Compute flow metrics from (optionally window-clipped) segments.

    Business logic:
    - ``completed``: the last segment's state is ``done``.
    - ``throughput``: 1 when some ``done`` segment follows a non-done one,
      i.e. a completion happened inside the segments' span. This can differ
      from ``completed`` for items finished before the window.
    - ``lead_time_ms``: creation to first entry into ``done``.
    - ``cycle_time_ms``: first ``inProgress`` to first ``done`` entry, when the
      latter is not earlier.
    - ``time_in_state_ms``: summed durations for the three normalized states.
    - ``rework_count``: transitions out of ``done``.
    """
    if not segments:
        return WorkItemMetrics(
            completed=False,
            throughput=0,
            time_in_state_ms=StateDurations(),
            rework_count=0,
        )

    totals = {TO_DO: 0, IN_PROGRESS: 0, DONE: 0}
    first_done_at: Optional[datetime] = None
    first_in_progress_at: Optional[datetime] = None
    entered_done = False
    rework_count = 0

    for index, segment in enumerate(segments):
        previous = segments[index - 1].state if index > 0 else None
        if segment.state in totals:
            totals[segment.state] += segment.duration_ms

        if segment.state == IN_PROGRESS and first_in_progress_at is None:
            first_in_progress_at = segment.t_start
        elif segment.state == DONE:
            if first_done_at is None:
                first_done_at = segment.t_start
            if previous is not None and previous != DONE:
                entered_done = True

        if previous == DONE and segment.state != DONE:
            rework_count += 1

    lead_time_ms: Optional[int] = None
    if first_done_at is not None and created_at is not None:
        lead_time_ms = max(0, elapsed_ms(created_at, first_done_at))

    cycle_time_ms: Optional[int] = None
    if (
        first_done_at is not None
        and first_in_progress_at is not None
        and first_done_at >= first_in_progress_at
    ):
        cycle_time_ms = elapsed_ms(first_in_progress_at, first_done_at)

    return WorkItemMetrics(
        completed=segments[-1].state == DONE,
        throughput=1 if entered_done else 0,
        time_in_state_ms=StateDurations(
            to_do=totals[TO_DO],
            in_progress=totals[IN_PROGRESS],
            done=totals[DONE],
        ),
        rework_count=rework_count,
        first_done_at=first_done_at,
        lead_time_ms=lead_time_ms,
        cycle_time_ms=cycle_time_ms,
    )

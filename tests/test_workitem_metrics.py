"""Tests for per-item flow metrics."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ado_metrics.models import DONE, IN_PROGRESS, TO_DO, Segment, StateDurations
from ado_metrics.workitem_metrics import compute_work_item_metrics

T0 = datetime(2026, 1, 5, tzinfo=timezone.utc)


def _ms(value: int) -> datetime:
    return T0 + timedelta(milliseconds=value)


def _segment(state: str, start: int, end: int) -> Segment:
    return Segment(state, "ann", _ms(start), _ms(end))


def test_straight_flow_through_all_states():
    """Verify lead, cycle and throughput for toDo -> inProgress -> done."""
    segments = [_segment(TO_DO, 0, 10), _segment(IN_PROGRESS, 10, 20), _segment(DONE, 20, 30)]

    metrics = compute_work_item_metrics(segments, created_at=_ms(0))

    assert metrics.completed is True
    assert metrics.throughput == 1
    assert metrics.lead_time_ms == 20
    assert metrics.cycle_time_ms == 10
    assert metrics.rework_count == 0
    assert metrics.first_done_at == _ms(20)
    assert metrics.time_in_state_ms == StateDurations(to_do=10, in_progress=10, done=10)


def test_reopened_item_counts_rework_and_is_not_completed():
    segments = [
        _segment(IN_PROGRESS, 0, 10),
        _segment(DONE, 10, 15),
        _segment(IN_PROGRESS, 15, 25),
        _segment(DONE, 25, 30),
        _segment(TO_DO, 30, 40),
    ]

    metrics = compute_work_item_metrics(segments, created_at=_ms(0))

    assert metrics.rework_count == 2
    assert metrics.completed is False
    assert metrics.throughput == 1
    assert metrics.lead_time_ms == 10
    assert metrics.time_in_state_ms.done == 10


def test_done_before_window_is_completed_without_throughput():
    """Verify an item already done at the first segment has no in-window completion."""
    metrics = compute_work_item_metrics([_segment(DONE, 0, 50)], created_at=_ms(-100))

    assert metrics.completed is True
    assert metrics.throughput == 0


def test_cycle_time_undefined_when_never_in_progress_before_done():
    segments = [_segment(TO_DO, 0, 10), _segment(DONE, 10, 20), _segment(IN_PROGRESS, 20, 30)]

    metrics = compute_work_item_metrics(segments, created_at=None)

    assert metrics.cycle_time_ms is None
    assert metrics.lead_time_ms is None
    assert metrics.rework_count == 1


def test_custom_states_are_excluded_from_time_in_state():
    segments = [_segment("Blocked", 0, 100), _segment(IN_PROGRESS, 100, 110)]

    metrics = compute_work_item_metrics(segments, created_at=_ms(0))

    assert metrics.time_in_state_ms == StateDurations(to_do=0, in_progress=10, done=0)
    assert metrics.lead_time_ms is None


def test_no_segments_yields_empty_metrics():
    metrics = compute_work_item_metrics([], created_at=_ms(0))

    assert metrics.completed is False
    assert metrics.throughput == 0
    assert metrics.time_in_state_ms == StateDurations()

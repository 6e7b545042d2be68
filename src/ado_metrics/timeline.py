"""Work item state timeline reconstruction.

Turns the update (revision) stream of one work item into ordered,
non-overlapping segments of constant normalized state and assignee:

- Updates with unparseable ``revisedDate`` are dropped; the rest are sorted.
- Updates sharing a timestamp merge into one event, later ones winning per field.
- Fields an event does not touch keep their last known value.
- A segment boundary exists only where ``(state, assignee)`` actually changes.
- The first segment starts at the first event; the last ends at the last event.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Optional, Sequence

from .identity import clean_string, display_name
from .models import DONE, IN_PROGRESS, TO_DO, UNKNOWN_STATE, Segment, StateMapping, TimeWindow
from .schemas import WorkItemUpdate
from .timeutil import parse_timestamp

STATE_FIELD = "System.State"
ASSIGNEE_FIELD = "System.AssignedTo"


@dataclass(slots=True)
class _Event:
    at: datetime
    state: Optional[str]
    assignee: Optional[str]


def normalize_state(raw: Optional[str], mapping: StateMapping) -> str:
    """Map a raw state onto ``toDo``/``inProgress``/``done``, else pass it through."""
    if not raw:
        return UNKNOWN_STATE
    value = raw.strip()
    folded = value.casefold()
    if folded == mapping.to_do.strip().casefold():
        return TO_DO
    if folded == mapping.in_progress.strip().casefold():
        return IN_PROGRESS
    if folded == mapping.done.strip().casefold():
        return DONE
    return value


def _new_value(update: WorkItemUpdate, name: str) -> Any:
    delta = update.fields.get(name)
    return delta.newValue if delta is not None else None


def _extract_state(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip()
    return str(value)


def _to_events(updates: Iterable[WorkItemUpdate]) -> List[_Event]:
    rows: List[_Event] = []
    for update in updates:
        at = parse_timestamp(update.revisedDate)
        if at is None:
            continue
        rows.append(
            _Event(
                at=at,
                state=_extract_state(_new_value(update, STATE_FIELD)),
                assignee=display_name(_new_value(update, ASSIGNEE_FIELD)),
            )
        )
    # sort is stable, so equal timestamps keep their original order
    rows.sort(key=lambda row: row.at)

    events: List[_Event] = []
    for row in rows:
        if events and events[-1].at == row.at:
            current = events[-1]
            if row.state is not None:
                current.state = row.state
            if row.assignee is not None:
                current.assignee = row.assignee
        else:
            events.append(_Event(at=row.at, state=row.state, assignee=row.assignee))
    return events


def _base_segments(events: Sequence[_Event], mapping: StateMapping) -> List[Segment]:
    segments: List[Segment] = []
    raw_state: Optional[str] = None
    assignee: Optional[str] = None

    first = events[0]
    if first.state is not None:
        raw_state = first.state
    if first.assignee is not None:
        assignee = first.assignee
    seg_start = first.at
    seg_state = normalize_state(raw_state, mapping)
    seg_assignee = assignee

    for event in events[1:]:
        if event.state is not None:
            raw_state = event.state
        if event.assignee is not None:
            assignee = event.assignee

        next_state = normalize_state(raw_state, mapping)
        if next_state != seg_state or assignee != seg_assignee:
            segments.append(Segment(seg_state, seg_assignee, seg_start, event.at))
            seg_start = event.at
            seg_state = next_state
            seg_assignee = assignee

    segments.append(Segment(seg_state, seg_assignee, seg_start, events[-1].at))
    return segments


def clip_to_window(segments: Iterable[Segment], window: TimeWindow) -> List[Segment]:
    """Intersect segments with ``window``, dropping empty results."""
    if window.end <= window.start:
        return []
    clipped: List[Segment] = []
    for segment in segments:
        start = max(segment.t_start, window.start)
        end = min(segment.t_end, window.end)
        if start < end:
            clipped.append(Segment(segment.state, segment.assignee, start, end))
    return clipped


def build_segments(
    updates: Iterable[WorkItemUpdate],
    mapping: StateMapping,
    window: Optional[TimeWindow] = None,
) -> List[Segment]:
    """Reconstruct the state/assignee timeline of one work item.

    Args:
        updates: Update records for a single work item, in any order.
        mapping: Raw state names for ``toDo``/``inProgress``/``done``.
        window: Optional window the segments are clipped to.

    Returns:
        Ordered, non-overlapping segments.

    The last segment never extends past the last observed update, so a change
    made by the final update yields a zero-length trailing segment that keeps
    the current state visible. Clipping drops such segments.
    """
    events = _to_events(updates)
    if not events:
        return []
    segments = _base_segments(events, mapping)
    if window is not None:
        return clip_to_window(segments, window)
    return segments


def first_done_transition(segments: Sequence[Segment]) -> Optional[Segment]:
    """Return the first ``done`` segment whose predecessor is not ``done``."""
    for index, segment in enumerate(segments):
        if segment.state != DONE or index == 0:
            continue
        if segments[index - 1].state == DONE:
            continue
        return segment
    return None


def assignee_at_first_done(segments: Sequence[Segment]) -> Optional[str]:
    """Return the assignee of the first in-window transition into ``done``.

    Items already done at the first segment (no observed transition) are not
    attributed and yield ``None``.
    """
    segment = first_done_transition(segments)
    return clean_string(segment.assignee) if segment is not None else None

"""Domain models for timeline reconstruction and metric aggregation.

Remote payloads live in :mod:`ado_metrics.schemas`; these dataclasses hold the
values derived from them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from .timeutil import millis

TO_DO = "toDo"
IN_PROGRESS = "inProgress"
DONE = "done"
UNKNOWN_STATE = "unknown"


@dataclass(frozen=True, slots=True)
class StateMapping:
    """Raw Azure DevOps state names for the three normalized states."""

    to_do: str = "To Do"
    in_progress: str = "Doing"
    done: str = "Done"


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Half-open reporting window ``[start, end)``."""

    start: datetime
    end: datetime


@dataclass(frozen=True, slots=True)
class Segment:
    """A maximal interval during which state and assignee are constant."""

    state: str
    assignee: Optional[str]
    t_start: datetime
    t_end: datetime

    @property
    def duration_ms(self) -> int:
        return max(0, millis(self.t_end - self.t_start))


@dataclass(frozen=True, slots=True)
class StateDurations:
    """Milliseconds spent in each normalized state."""

    to_do: int = 0
    in_progress: int = 0
    done: int = 0


@dataclass(frozen=True, slots=True)
class WorkItemMetrics:
    """Flow metrics for one work item."""

    completed: bool
    throughput: int
    time_in_state_ms: StateDurations
    rework_count: int
    first_done_at: Optional[datetime] = None
    lead_time_ms: Optional[int] = None
    cycle_time_ms: Optional[int] = None


@dataclass(frozen=True, slots=True)
class AuthoredMetrics:
    """Aggregated metrics over a person's authored pull requests."""

    count: int
    ttfr_avg_ms: Optional[int] = None
    ttfr_n: int = 0
    time_to_approve_avg_ms: Optional[int] = None
    time_to_merge_avg_ms: Optional[int] = None
    iterations_avg: Optional[float] = None
    ci_pass_rate: Optional[float] = None


@dataclass(frozen=True, slots=True)
class ReviewMetrics:
    """Aggregated metrics over pull requests a person reviewed."""

    count: int
    responsiveness_avg_ms: Optional[int] = None
    comments_avg: Optional[float] = None
    cross_team_pct: Optional[float] = None


@dataclass(frozen=True, slots=True)
class Person:
    """A human identity; ``key`` is the normalized email."""

    id: str
    email: str
    display_name: str

    @property
    def key(self) -> str:
        return self.email.strip().lower()


@dataclass(frozen=True, slots=True)
class DirectoryUser:
    """An organization user as returned by the directory, with a service flag."""

    id: str
    display_name: Optional[str]
    unique_name: Optional[str]
    mail_address: Optional[str]
    descriptor: Optional[str]
    is_service_account: bool


@dataclass(frozen=True, slots=True)
class WorkItemRollup:
    """Work item metrics summed or averaged over one person's items."""

    count: int
    completed_total: int
    throughput_total: int
    lead_time_avg_ms: Optional[int]
    cycle_time_avg_ms: Optional[int]
    time_in_state_ms: StateDurations
    rework_count_total: int


@dataclass(slots=True)
class PersonRollup:
    """Per-person metrics; sections below the sample threshold are ``None``."""

    person: Person
    team: Optional[str] = None
    notes: List[str] = field(default_factory=list)
    work_items: Optional[WorkItemRollup] = None
    pr_authored: Optional[AuthoredMetrics] = None
    pr_reviewed: Optional[ReviewMetrics] = None


@dataclass(slots=True)
class PeopleRollup:
    generated_at: datetime
    items: Tuple[PersonRollup, ...]

"""Application orchestration for the ADO people metrics report."""

from __future__ import annotations

import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from .ado_client import AdoClient
from .business_time import WorkSchedule, business_time_fn
from .cli import parse_args
from .config import Config, load_config_from_env
from .errors import ConfigurationError, HttpError, PagingSafetyError, ResponseValidationError
from .http import AdoHttp
from .identity import identity_key
from .models import PeopleRollup, Person, Segment, StateMapping, TimeWindow, WorkItemMetrics
from .pr_authored import AuthoredContext
from .pr_review import ReviewContext
from .rollups import compute_person_rollups
from .schemas import PolicyEvaluation, PRIteration, PRReviewer, PRThread, PullRequest, WorkItem
from .stats import generate_report
from .timeline import assignee_at_first_done, build_segments, first_done_transition
from .timeutil import parse_timestamp
from .workitem_metrics import compute_work_item_metrics

logger = logging.getLogger(__name__)

WORK_ITEM_FIELDS = [
    "System.Id",
    "System.Title",
    "System.State",
    "System.AssignedTo",
    "System.CreatedDate",
    "System.ChangedDate",
]


@dataclass
class PullRequestDetails:
    """Per-PR detail lists keyed by pull request id."""

    threads: Dict[int, List[PRThread]] = field(default_factory=dict)
    reviewers: Dict[int, List[PRReviewer]] = field(default_factory=dict)
    iterations: Dict[int, List[PRIteration]] = field(default_factory=dict)
    policies: Dict[int, List[PolicyEvaluation]] = field(default_factory=dict)


def _project_id(pr: PullRequest, fallback: str) -> str:
    repository = pr.to_payload().get("repository") or {}
    project = repository.get("project") if isinstance(repository, dict) else None
    if isinstance(project, dict) and project.get("id"):
        return str(project["id"])
    return fallback


def collect_pr_details(
    client: AdoClient,
    prs: Sequence[PullRequest],
    project: str,
    workers: int,
) -> PullRequestDetails:
    """Fetch threads, reviewers, iterations and policy evaluations for ``prs``."""
    details = PullRequestDetails()

    def fetch(pr: PullRequest):
        return (
            pr.id,
            client.list_pr_threads(pr.id),
            client.list_pr_reviewers(pr.id),
            client.list_pr_iterations(pr.id),
            client.list_policy_evaluations(_project_id(pr, project), pr.id),
        )

    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        for pr_id, threads, reviewers, iterations, policies in pool.map(fetch, prs):
            details.threads[pr_id] = threads
            details.reviewers[pr_id] = reviewers
            details.iterations[pr_id] = iterations
            details.policies[pr_id] = policies

    return details


def _work_item_query(window: TimeWindow) -> str:
    since = window.start.astimezone(timezone.utc).strftime("%Y-%m-%d")
    return (
        "SELECT [System.Id] FROM WorkItems "
        "WHERE [System.TeamProject] = @project "
        f"AND [System.ChangedDate] >= '{since}' "
        "ORDER BY [System.Id]"
    )


def _person_lookup(people: Sequence[Person]) -> Dict[str, str]:
    lookup: Dict[str, str] = {}
    for person in people:
        if person.key:
            lookup.setdefault(person.key, person.key)
            lookup.setdefault(person.display_name.strip().casefold(), person.key)
    return lookup


def collect_work_items(
    client: AdoClient,
    window: TimeWindow,
    mapping: StateMapping,
    people: Sequence[Person],
    workers: int,
):
    """Fetch work items changed in ``window`` and attribute completions to people.

    Timelines are kept unclipped so a completion recorded by an item's last
    update still shows up as a transition; an item is attributed only when
    that first transition into ``done`` falls inside ``window``.

    Returns ``(work_items_by_person, segments_by_item, metrics_by_item)``.
    """
    ids = client.query_by_wiql(_work_item_query(window))
    items: List[WorkItem] = client.get_work_items_batch(ids, WORK_ITEM_FIELDS)

    def timeline(item: WorkItem) -> List[Segment]:
        return build_segments(client.list_work_item_updates_paged(item.id), mapping)

    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        timelines = list(pool.map(timeline, items))

    lookup = _person_lookup(people)
    by_person: Dict[str, List[WorkItem]] = {}
    segments_by_item: Dict[int, List[Segment]] = {}
    metrics_by_item: Dict[int, WorkItemMetrics] = {}

    for item, segments in zip(items, timelines):
        segments_by_item[item.id] = segments
        metrics_by_item[item.id] = compute_work_item_metrics(
            segments, parse_timestamp(item.fields.created_date)
        )
        completion = first_done_transition(segments)
        if completion is None or not window.start <= completion.t_start < window.end:
            continue
        assignee = assignee_at_first_done(segments)
        person_key = lookup.get(assignee.casefold()) if assignee else None
        if person_key is None:
            continue
        by_person.setdefault(person_key, []).append(item)

    logger.info(
        "Collected work items",
        extra={"work_items": len(items), "attributed": sum(len(v) for v in by_person.values())},
    )
    return by_person, segments_by_item, metrics_by_item


def build_people_rollup(
    client: AdoClient,
    config: Config,
    window: TimeWindow,
    mapping: StateMapping,
    schedule: WorkSchedule,
    threshold: int,
    target_refs: Optional[Sequence[str]] = None,
    refresh: bool = False,
    workers: int = 6,
) -> PeopleRollup:
    """Fetch everything needed and compute the per-person rollup."""
    people = client.people(bypass=refresh)
    prs = client.list_pull_requests(window.start, window.end, target_refs=target_refs or None)
    details = collect_pr_details(client, prs, config.project, workers)

    authored_by_person: Dict[str, List[PullRequest]] = {}
    reviewed_by_person: Dict[str, List[PullRequest]] = {}
    for pr in prs:
        author = identity_key(pr.createdBy)
        if author:
            authored_by_person.setdefault(author, []).append(pr)
        for reviewer in details.reviewers.get(pr.id, []):
            reviewer_key = (reviewer.uniqueName or "").strip().lower()
            if reviewer_key and reviewer_key != author:
                reviewed_by_person.setdefault(reviewer_key, []).append(pr)

    work_items_by_person, segments_by_item, metrics_by_item = collect_work_items(
        client, window, mapping, people, workers
    )

    business_time = business_time_fn(schedule)
    return compute_person_rollups(
        people=people,
        work_items_by_person=work_items_by_person,
        authored_by_person=authored_by_person,
        reviewed_by_person=reviewed_by_person,
        segments_by_item=segments_by_item,
        metrics_by_item=metrics_by_item,
        authored_ctx=AuthoredContext(
            business_time=business_time,
            threads_by_pr=details.threads,
            reviewers_by_pr=details.reviewers,
            policies_by_pr=details.policies,
            iterations_by_pr=details.iterations,
            start=window.start,
            end=window.end,
        ),
        review_ctx=ReviewContext(
            business_time=business_time,
            threads_by_pr=details.threads,
            reviewers_by_pr=details.reviewers,
        ),
        n_threshold=threshold,
    )


def orchestrate_people_report(argv: Optional[Sequence[str]] = None) -> int:
    """Run the full report flow and return a process exit code.

    Returns ``0`` on success, ``2`` for configuration errors and ``1`` for
    Azure DevOps API failures.
    """
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config_from_env()
    except ConfigurationError as exc:
        logger.error("Configuration error", extra={"error": str(exc)})
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    end = datetime.now(timezone.utc)
    window = TimeWindow(start=end - timedelta(days=args.days), end=end)
    mapping = StateMapping(
        to_do=args.state_to_do,
        in_progress=args.state_in_progress,
        done=args.state_done,
    )

    try:
        with AdoHttp.from_config(config) as http:
            client = AdoClient(config=config, http=http)
            rollup = build_people_rollup(
                client=client,
                config=config,
                window=window,
                mapping=mapping,
                schedule=WorkSchedule(),
                threshold=args.threshold,
                target_refs=args.target_ref,
                refresh=args.refresh,
                workers=config.max_concurrency,
            )
    except (HttpError, ResponseValidationError, PagingSafetyError) as exc:
        logger.error("Azure DevOps data collection failed", extra={"error": str(exc)})
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    print(generate_report(rollup))
    return 0


def main() -> int:
    return orchestrate_people_report()


if __name__ == "__main__":
    raise SystemExit(main())

"""Metrics over a person's authored pull requests.

For each qualifying PR (created inside the window, not a draft) this module
measures, in business time:

- time to first response (TTFR) from the effective review start to the first
  comment by someone other than the author,
- time to approval from creation to the first approved reviewer policy,
- time to merge from creation to close for completed PRs,

plus the average iteration count and the CI pass rate over completed build
policy evaluations. Unusable data points are skipped, never raised.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .identity import equals_ignore_case, identity_key, normalize_key
from .models import AuthoredMetrics
from .schemas import PolicyEvaluation, PRIteration, PRReviewer, PRThread, PullRequest
from .timeutil import elapsed_ms, parse_timestamp

logger = logging.getLogger(__name__)

APPROVED_VOTE = 5

READY_FOR_REVIEW = re.compile(
    r"(ready\s*for\s*review|mark(?:ed)?\s*as\s*ready|convert(?:ed)?\s*to\s*ready"
    r"|unmark(?:ed)?\s*as\s*draft|remove(?:d)?\s*draft)",
    re.IGNORECASE,
)

BusinessTime = Callable[[datetime, datetime], int]


def _is_draft(pr: PullRequest) -> bool:
    return pr.isDraft is True


@dataclass
class AuthoredContext:
    """Pre-fetched PR details keyed by pull request id."""

    business_time: BusinessTime
    threads_by_pr: Mapping[int, Sequence[PRThread]] = field(default_factory=dict)
    reviewers_by_pr: Mapping[int, Sequence[PRReviewer]] = field(default_factory=dict)
    policies_by_pr: Mapping[int, Sequence[PolicyEvaluation]] = field(default_factory=dict)
    iterations_by_pr: Mapping[int, Sequence[PRIteration]] = field(default_factory=dict)
    is_draft_excluded: Callable[[PullRequest], bool] = _is_draft
    start: Optional[datetime] = None
    end: Optional[datetime] = None


def safe_business_time(business_time: BusinessTime, start: datetime, end: datetime) -> int:
    """Call ``business_time``, falling back to wall-clock time if it fails."""
    try:
        value = business_time(start, end)
    except Exception:
        logger.debug(
            "Business time calculation failed; using wall-clock duration",
            extra={"start": start.isoformat(), "end": end.isoformat()},
        )
        return max(0, elapsed_ms(start, end))
    if not isinstance(value, (int, float)) or value != value or value < 0:
        return 0
    return int(value)


def _comments(threads: Iterable[PRThread]):
    for thread in threads:
        for comment in thread.comments or []:
            yield comment


def detect_ready_at(threads: Iterable[PRThread]) -> Optional[datetime]:
    """Return the earliest comment announcing the PR left draft, if any."""
    ready_at: Optional[datetime] = None
    for comment in _comments(threads):
        text = (comment.content or "").strip()
        if not text or not READY_FOR_REVIEW.search(text):
            continue
        published = parse_timestamp(comment.publishedDate)
        if published is not None and (ready_at is None or published < ready_at):
            ready_at = published
    return ready_at


def first_non_author_comment_at(
    threads: Iterable[PRThread],
    author_key: Optional[str],
    not_before: datetime,
) -> Optional[datetime]:
    """Earliest comment at/after ``not_before`` written by anyone but the author."""
    first: Optional[datetime] = None
    for comment in _comments(threads):
        published = parse_timestamp(comment.publishedDate)
        if published is None or published < not_before:
            continue
        commenter = identity_key(comment.author)
        if commenter is None or (author_key is not None and commenter == author_key):
            continue
        if first is None or published < first:
            first = published
    return first


def is_reviewer_policy(policy: PolicyEvaluation) -> bool:
    return "review" in policy.type_name.lower()


def is_build_policy(policy: PolicyEvaluation) -> bool:
    return "build" in policy.type_name.lower()


def _earliest_comment_by(threads: Sequence[PRThread], key: str) -> Optional[datetime]:
    first: Optional[datetime] = None
    for comment in _comments(threads):
        if identity_key(comment.author) != key:
            continue
        published = parse_timestamp(comment.publishedDate)
        if published is not None and (first is None or published < first):
            first = published
    return first


def infer_approved_at(
    reviewers: Sequence[PRReviewer],
    threads: Sequence[PRThread],
) -> Optional[datetime]:
    """Best-effort approval time from reviewer votes and comment timestamps.

    Heuristic only: every reviewer must have voted approve (``vote >= 5``) and
    have at least one comment; the latest of their earliest comments is used.
    """
    if not reviewers:
        return None
    if any(reviewer.vote < APPROVED_VOTE for reviewer in reviewers):
        return None

    earliest: List[datetime] = []
    for reviewer in reviewers:
        key = normalize_key(reviewer.uniqueName or reviewer.displayName or reviewer.id)
        if not key:
            return None
        commented_at = _earliest_comment_by(threads, key)
        if commented_at is None:
            return None
        earliest.append(commented_at)
    return max(earliest)


def _approved_at(
    pr: PullRequest,
    policies: Sequence[PolicyEvaluation],
    reviewers: Sequence[PRReviewer],
    threads: Sequence[PRThread],
) -> Optional[datetime]:
    reviewer_policies = [policy for policy in policies if is_reviewer_policy(policy)]
    if not reviewer_policies:
        return infer_approved_at(reviewers, threads)

    approvals: List[datetime] = []
    for policy in reviewer_policies:
        if not equals_ignore_case(policy.status, "approved"):
            continue
        when = parse_timestamp(policy.completedDate) or parse_timestamp(policy.startedDate)
        if when is not None:
            approvals.append(when)
    if not approvals:
        logger.debug("No timestamped reviewer approval", extra={"pr_id": pr.id})
        return None
    return min(approvals)


def _in_scope(pr: PullRequest, ctx: AuthoredContext) -> bool:
    created = parse_timestamp(pr.creationDate)
    if created is None:
        return False
    if ctx.start is not None and created < ctx.start:
        return False
    if ctx.end is not None and created > ctx.end:
        return False
    return not ctx.is_draft_excluded(pr)


def _average_ms(total: int, samples: int) -> Optional[int]:
    return round(total / samples) if samples else None


def compute_authored_metrics(
    prs: Iterable[PullRequest],
    ctx: AuthoredContext,
) -> AuthoredMetrics:
    """Aggregate authored-PR metrics over the PRs in scope of ``ctx``."""
    included = [pr for pr in prs if _in_scope(pr, ctx)]
    if not included:
        return AuthoredMetrics(count=0)

    sums: Dict[str, int] = {"ttfr": 0, "approve": 0, "merge": 0}
    samples: Dict[str, int] = {"ttfr": 0, "approve": 0, "merge": 0}
    iteration_total = 0
    iteration_prs = 0
    ci_total = 0
    ci_passed = 0

    for pr in included:
        created = parse_timestamp(pr.creationDate)
        threads = ctx.threads_by_pr.get(pr.id, ())

        ready_at = detect_ready_at(threads)
        if ready_at is None and not pr.isDraft:
            ready_at = created
        ttfr_start = ready_at if ready_at is not None and ready_at > created else created

        first_response = first_non_author_comment_at(threads, identity_key(pr.createdBy), ttfr_start)
        if first_response is not None and first_response > ttfr_start:
            sums["ttfr"] += safe_business_time(ctx.business_time, ttfr_start, first_response)
            samples["ttfr"] += 1

        policies = ctx.policies_by_pr.get(pr.id, ())
        approved_at = _approved_at(pr, policies, ctx.reviewers_by_pr.get(pr.id, ()), threads)
        if approved_at is not None and approved_at > created:
            sums["approve"] += safe_business_time(ctx.business_time, created, approved_at)
            samples["approve"] += 1

        closed = parse_timestamp(pr.closedDate)
        if closed is not None and equals_ignore_case(pr.status, "completed") and closed > created:
            sums["merge"] += safe_business_time(ctx.business_time, created, closed)
            samples["merge"] += 1

        iterations = ctx.iterations_by_pr.get(pr.id)
        if iterations is not None:
            iteration_total += len(iterations)
            iteration_prs += 1

        for policy in policies:
            if not is_build_policy(policy) or parse_timestamp(policy.completedDate) is None:
                continue
            ci_total += 1
            if equals_ignore_case(policy.status, "approved"):
                ci_passed += 1

    logger.info(
        "Computed authored PR metrics",
        extra={
            "prs_total": len(included),
            "ttfr_samples": samples["ttfr"],
            "approval_samples": samples["approve"],
            "merge_samples": samples["merge"],
            "ci_evaluations": ci_total,
        },
    )

    return AuthoredMetrics(
        count=len(included),
        ttfr_avg_ms=_average_ms(sums["ttfr"], samples["ttfr"]),
        ttfr_n=samples["ttfr"],
        time_to_approve_avg_ms=_average_ms(sums["approve"], samples["approve"]),
        time_to_merge_avg_ms=_average_ms(sums["merge"], samples["merge"]),
        iterations_avg=iteration_total / iteration_prs if iteration_prs else None,
        ci_pass_rate=ci_passed / ci_total if ci_total else None,
    )

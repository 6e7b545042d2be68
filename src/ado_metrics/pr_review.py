"""Review participation metrics for one person across pull requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Mapping, Optional, Sequence, Set, Tuple

from .identity import equals_ignore_case, identity_key, normalize_key
from .models import ReviewMetrics
from .pr_authored import BusinessTime, safe_business_time
from .schemas import PRReviewer, PRThread, PullRequest
from .timeutil import parse_timestamp

logger = logging.getLogger(__name__)


def _never_assigned(pr: PullRequest, reviewer_id: str) -> Optional[datetime]:
    return None


def _no_author_team(pr_id: int) -> Optional[str]:
    return None


@dataclass
class ReviewContext:
    """Pre-fetched PR details plus team lookups used for review metrics."""

    business_time: BusinessTime
    threads_by_pr: Mapping[int, Sequence[PRThread]] = field(default_factory=dict)
    reviewers_by_pr: Mapping[int, Sequence[PRReviewer]] = field(default_factory=dict)
    reviewer_assigned_at: Callable[[PullRequest, str], Optional[datetime]] = _never_assigned
    person_team_by_email: Mapping[str, str] = field(default_factory=dict)
    author_team_by_pr: Callable[[int], Optional[str]] = _no_author_team


def _matches(reviewer: PRReviewer, wanted: str) -> bool:
    return normalize_key(reviewer.id) == wanted or (
        bool(reviewer.uniqueName) and normalize_key(reviewer.uniqueName) == wanted
    )


def reviewer_aliases(
    reviewers: Iterable[PRReviewer],
    reviewer_id: str,
) -> Tuple[Set[str], Optional[str]]:
    """Collect identity keys and an email for the reviewer ``reviewer_id``."""
    wanted = normalize_key(reviewer_id)
    aliases: Set[str] = set()
    email: Optional[str] = None
    for reviewer in reviewers:
        if not _matches(reviewer, wanted):
            continue
        aliases.add(normalize_key(reviewer.id))
        if reviewer.uniqueName:
            aliases.add(normalize_key(reviewer.uniqueName))
            if email is None and "@" in reviewer.uniqueName:
                email = reviewer.uniqueName.strip()
    if wanted:
        aliases.add(wanted)
    aliases.discard("")
    return aliases, email


def _has_vote(reviewers: Iterable[PRReviewer], reviewer_id: str) -> bool:
    wanted = normalize_key(reviewer_id)
    return any(_matches(reviewer, wanted) and reviewer.vote != 0 for reviewer in reviewers)


def _comment_times(threads: Iterable[PRThread], aliases: Set[str]):
    for thread in threads:
        for comment in thread.comments or []:
            key = identity_key(comment.author)
            if key is not None and key in aliases:
                yield parse_timestamp(comment.publishedDate)


def _team_for(teams: Mapping[str, str], email: Optional[str]) -> Optional[str]:
    if not teams or not email:
        return None
    return teams.get(email) or teams.get(email.lower()) or None


def compute_review_metrics(
    prs: Iterable[PullRequest],
    reviewer_id: str,
    ctx: ReviewContext,
) -> ReviewMetrics:
    """Aggregate review metrics for ``reviewer_id`` over ``prs``.

    A PR counts when the reviewer commented or cast a non-zero vote.
    Responsiveness runs from the assignment time (or PR creation) to the
    reviewer's first comment at or after it. Cross-team percentage only counts
    PRs where both the author's and the reviewer's teams are known.
    """
    count = 0
    response_total = 0
    response_samples = 0
    comment_total = 0
    cross_team_known = 0
    cross_team = 0

    for pr in prs:
        reviewers = ctx.reviewers_by_pr.get(pr.id, ())
        threads = ctx.threads_by_pr.get(pr.id, ())
        aliases, email = reviewer_aliases(reviewers, reviewer_id)

        times = list(_comment_times(threads, aliases))
        if not times and not _has_vote(reviewers, reviewer_id):
            continue
        count += 1
        comment_total += len(times)

        start = ctx.reviewer_assigned_at(pr, reviewer_id) or parse_timestamp(pr.creationDate)
        if start is not None:
            after = [when for when in times if when is not None and when >= start]
            if after and min(after) > start:
                response_total += safe_business_time(ctx.business_time, start, min(after))
                response_samples += 1

        author_team = ctx.author_team_by_pr(pr.id)
        if email is None:
            email = next((alias for alias in sorted(aliases) if "@" in alias), None)
        reviewer_team = _team_for(ctx.person_team_by_email, email)
        if author_team and reviewer_team:
            cross_team_known += 1
            if not equals_ignore_case(author_team, reviewer_team):
                cross_team += 1

    if count == 0:
        return ReviewMetrics(count=0)

    logger.debug(
        "Computed review metrics",
        extra={"reviewer_id": reviewer_id, "prs_reviewed": count, "response_samples": response_samples},
    )

    return ReviewMetrics(
        count=count,
        responsiveness_avg_ms=round(response_total / response_samples) if response_samples else None,
        comments_avg=comment_total / count,
        cross_team_pct=cross_team / cross_team_known if cross_team_known else None,
    )

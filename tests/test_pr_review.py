"""Tests for review participation metrics."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ado_metrics.pr_review import ReviewContext, compute_review_metrics, reviewer_aliases
from ado_metrics.schemas import PRReviewer, PRThread, PullRequest
from ado_metrics.timeutil import elapsed_ms

T0 = datetime(2026, 1, 6, 10, 0, tzinfo=timezone.utc)
REVIEWER = "rita@example.com"


def _iso(minutes: float) -> str:
    return (T0 + timedelta(minutes=minutes)).isoformat().replace("+00:00", "Z")


def _make_pr(pr_id: int) -> PullRequest:
    return PullRequest.model_validate(
        {
            "pullRequestId": pr_id,
            "createdBy": {"uniqueName": "alice@example.com"},
            "creationDate": _iso(0),
            "status": "active",
            "targetRefName": "refs/heads/main",
            "sourceRefName": "refs/heads/feature",
        }
    )


def _reviewer(vote: int = 0) -> PRReviewer:
    return PRReviewer.model_validate(
        {"id": "guid-rita", "uniqueName": "Rita@Example.com", "displayName": "Rita", "vote": vote}
    )


def _thread(*comments) -> PRThread:
    return PRThread.model_validate(
        {
            "id": 1,
            "comments": [
                {"author": {"uniqueName": who}, "publishedDate": _iso(minutes)} for who, minutes in comments
            ],
        }
    )


def _ctx(**kwargs) -> ReviewContext:
    return ReviewContext(business_time=lambda start, end: elapsed_ms(start, end), **kwargs)


def test_reviewer_aliases_collects_id_and_email():
    aliases, email = reviewer_aliases([_reviewer()], REVIEWER)

    assert aliases == {"guid-rita", "rita@example.com"}
    assert email == "Rita@Example.com"


def test_vote_without_comments_counts_as_participation():
    """Verify a non-zero vote alone counts the PR as reviewed."""
    ctx = _ctx(reviewers_by_pr={1: [_reviewer(vote=10)]})

    metrics = compute_review_metrics([_make_pr(1)], REVIEWER, ctx)

    assert metrics.count == 1
    assert metrics.comments_avg == 0.0
    assert metrics.responsiveness_avg_ms is None


def test_no_vote_and_no_comment_is_not_participation():
    ctx = _ctx(
        reviewers_by_pr={1: [_reviewer(vote=0)]},
        threads_by_pr={1: [_thread(("alice@example.com", 5))]},
    )

    metrics = compute_review_metrics([_make_pr(1)], REVIEWER, ctx)

    assert metrics.count == 0
    assert metrics.comments_avg is None


def test_responsiveness_and_comment_average():
    ctx = _ctx(
        reviewers_by_pr={1: [_reviewer()], 2: [_reviewer(vote=-5)]},
        threads_by_pr={
            1: [_thread((REVIEWER, 120), (REVIEWER, 180)), _thread(("alice@example.com", 10))],
            2: [_thread(("guid-rita", 60))],
        },
    )

    metrics = compute_review_metrics([_make_pr(1), _make_pr(2)], REVIEWER, ctx)

    assert metrics.count == 2
    assert metrics.comments_avg == 1.5
    assert metrics.responsiveness_avg_ms == 90 * 60_000


def test_responsiveness_starts_at_assignment_time():
    assigned = T0 + timedelta(minutes=100)
    ctx = _ctx(
        reviewers_by_pr={1: [_reviewer()]},
        threads_by_pr={1: [_thread((REVIEWER, 30), (REVIEWER, 130))]},
        reviewer_assigned_at=lambda pr, reviewer_id: assigned,
    )

    metrics = compute_review_metrics([_make_pr(1)], REVIEWER, ctx)

    assert metrics.responsiveness_avg_ms == 30 * 60_000
    assert metrics.comments_avg == 2.0


def test_cross_team_share_only_counts_known_teams():
    author_teams = {1: "Web", 2: "Core", 3: None}
    ctx = _ctx(
        reviewers_by_pr={pr_id: [_reviewer(vote=5)] for pr_id in (1, 2, 3)},
        person_team_by_email={"rita@example.com": "core"},
        author_team_by_pr=author_teams.get,
    )

    metrics = compute_review_metrics([_make_pr(1), _make_pr(2), _make_pr(3)], REVIEWER, ctx)

    assert metrics.count == 3
    assert metrics.cross_team_pct == 0.5


def test_cross_team_share_is_none_without_team_data():
    ctx = _ctx(reviewers_by_pr={1: [_reviewer(vote=5)]})

    metrics = compute_review_metrics([_make_pr(1)], REVIEWER, ctx)

    assert metrics.cross_team_pct is None

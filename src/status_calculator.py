"""Status, readiness and actionability calculation for pull requests."""

from __future__ import annotations

from datetime import UTC, datetime

from models import (
    MergeableState,
    OverrideState,
    PullRequest,
    PullRequestStatus,
    Readiness,
    ReadinessKind,
    Review,
    ReviewBadge,
    ReviewDecision,
    ReviewState,
)


def _badge_state(pr: PullRequest, viewer: str) -> ReviewBadge:
    """
    Compare the viewer's latest review against the latest commit.

    Returns:
        NONE if the viewer never reviewed, REVIEWED if no commit landed after
        the viewer's latest review (or the commit date is unknown),
        NEEDS_RE_REVIEW otherwise
    """
    own_reviews = sorted(
        (review for review in pr.detail.reviews if review.reviewer.lower() == viewer),
        key=lambda review: review.submitted_at,
        reverse=True,
    )
    if not own_reviews:
        return ReviewBadge.NONE

    latest_commit = pr.detail.latest_commit_at
    if latest_commit is None:
        return ReviewBadge.REVIEWED

    if latest_commit <= own_reviews[0].submitted_at:
        return ReviewBadge.REVIEWED
    return ReviewBadge.NEEDS_RE_REVIEW


def latest_reviews_by_reviewer(reviews: list[Review]) -> dict[str, Review]:
    """
    Reduce reviews to the latest review per reviewer (case-insensitive login).

    When two reviews from the same reviewer share a timestamp, the one that
    appears first in the input wins.
    """
    latest: dict[str, Review] = {}
    for review in reviews:
        reviewer = review.reviewer.lower()
        existing = latest.get(reviewer)
        if existing is None or review.submitted_at > existing.submitted_at:
            latest[reviewer] = review
    return latest


def _approval_counts(pr: PullRequest) -> tuple[int, int]:
    approvals = 0
    changes_requested = 0
    for review in latest_reviews_by_reviewer(pr.detail.reviews).values():
        if review.state is ReviewState.APPROVED:
            approvals += 1
        elif review.state is ReviewState.CHANGES_REQUESTED:
            changes_requested += 1
    return approvals, changes_requested


def _readiness_state(pr: PullRequest, changes_requested: int) -> Readiness:
    detail = pr.detail
    if detail.mergeable is MergeableState.UNKNOWN:
        return Readiness.checking()
    if pr.is_draft:
        return Readiness.blocked("Draft")
    if detail.mergeable is not MergeableState.MERGEABLE:
        return Readiness.blocked("Conflicts")
    if changes_requested > 0:
        return Readiness.blocked("Changes requested")
    if detail.review_decision is not None and detail.review_decision is not ReviewDecision.APPROVED:
        return Readiness.pending()
    return Readiness.ready()


def _is_actionable(pr: PullRequest, readiness: Readiness, now: datetime) -> bool:
    override = pr.override
    if override.state is OverrideState.NOT_APPLICABLE or override.is_snoozed_at(now):
        return False

    if readiness.kind is ReadinessKind.READY:
        return True
    if readiness.kind in (ReadinessKind.PENDING, ReadinessKind.BLOCKED):
        return override.state is OverrideState.TODO
    # Nothing to act on while mergeability is still being computed
    return False


def calculate_status(
    pr: PullRequest, viewer_login: str, now: datetime | None = None
) -> PullRequestStatus:
    """
    Calculate the status of a pull request from the viewer's point of view.

    The calculation is pure: it only reads the pull request (with its detail
    and override already attached) and never fails on missing optional data.

    Args:
        pr: The pull request to classify
        viewer_login: GitHub login of the current user (compared case-insensitively)
        now: Instant used to evaluate snoozes (default: current UTC time)

    Returns:
        PullRequestStatus with badge, approval tally, readiness and actionability

    Notes:
        - Readiness rules are evaluated in priority order: unknown mergeability,
          draft, conflicts, outstanding change requests, review decision
        - A reviewer who requests changes and later approves counts only once,
          as an approval
    """
    if now is None:
        now = datetime.now(UTC)

    viewer = viewer_login.lower()
    badge = _badge_state(pr, viewer)
    approvals, changes_requested = _approval_counts(pr)
    readiness = _readiness_state(pr, changes_requested)

    return PullRequestStatus(
        badge=badge,
        approvals=approvals,
        changes_requested=changes_requested,
        readiness=readiness,
        is_actionable=_is_actionable(pr, readiness, now),
    )

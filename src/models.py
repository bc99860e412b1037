"""Data models for the PR Pulse application."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse an ISO 8601 timestamp into a timezone-aware datetime.

    Accepts the trailing 'Z' GitHub uses. Naive values are assumed to be UTC.

    Returns:
        Parsed datetime, or None if the value is missing or malformed
    """
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Format a datetime as an ISO 8601 string for persistence."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


class MergeableState(str, Enum):
    """Server-computed mergeability of a pull request."""

    MERGEABLE = "MERGEABLE"
    CONFLICTING = "CONFLICTING"
    UNKNOWN = "UNKNOWN"


class ReviewDecision(str, Enum):
    """GitHub's computed review decision based on branch protection rules."""

    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    REVIEW_REQUIRED = "REVIEW_REQUIRED"
    COMMENTED = "COMMENTED"


class ReviewState(str, Enum):
    """State of a single submitted review."""

    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    COMMENTED = "COMMENTED"
    DISMISSED = "DISMISSED"


class OverrideState(str, Enum):
    """User triage state for a pull request."""

    NONE = "none"
    TODO = "todo"
    NOT_APPLICABLE = "notApplicable"


class PullRequestTab(str, Enum):
    """The three pull request lists shown on the dashboard."""

    MINE = "mine"
    REVIEW_REQUESTED = "reviewRequested"
    WATCHED = "watched"

    @property
    def title(self) -> str:
        """Human-readable tab title."""
        return {
            PullRequestTab.MINE: "My PRs",
            PullRequestTab.REVIEW_REQUESTED: "Review Requested",
            PullRequestTab.WATCHED: "Watched",
        }[self]


class ReviewBadge(str, Enum):
    """Review-staleness indicator relative to the viewer's own last review."""

    NONE = "none"
    REVIEWED = "reviewed"
    NEEDS_RE_REVIEW = "needsReReview"


class ReadinessKind(str, Enum):
    """Discriminator for Readiness."""

    READY = "ready"
    PENDING = "pending"
    BLOCKED = "blocked"
    CHECKING = "checking"


class ActivityEventType(str, Enum):
    """Kinds of activity counted by the digest."""

    OPENED_MY_PR = "openedMyPR"
    REVIEWED_PR = "reviewedPR"


class DigestCadence(str, Enum):
    """Digest summarization period."""

    OFF = "off"
    WEEKLY = "weekly"
    BI_WEEKLY = "biWeekly"

    @property
    def days(self) -> int:
        """Length of the trailing window in days (0 when off)."""
        return {DigestCadence.OFF: 0, DigestCadence.WEEKLY: 7, DigestCadence.BI_WEEKLY: 14}[self]


@dataclass
class Review:
    """A single submitted review on a pull request."""

    reviewer: str
    """GitHub login of the reviewer"""

    state: ReviewState
    """Review state as reported by GitHub"""

    submitted_at: datetime
    """Timestamp when the review was submitted (timezone-aware)"""


@dataclass
class PullRequestDetail:
    """Review and mergeability details of a pull request."""

    mergeable: MergeableState = MergeableState.UNKNOWN
    """Mergeability; UNKNOWN while GitHub is still computing it"""

    review_decision: ReviewDecision | None = None
    """
    GitHub's computed review decision.
    None indicates no review requirements configured.
    """

    latest_commit_at: datetime | None = None
    """Commit date of the head commit, if known"""

    reviews: list[Review] = field(default_factory=list)
    """Submitted reviews in the order received (no ordering guarantee)"""


@dataclass
class PullRequestOverride:
    """User-controlled triage state, persisted per pull request id."""

    state: OverrideState = OverrideState.NONE
    """Triage state chosen by the user"""

    snoozed_until: datetime | None = None
    """Instant until which the pull request is snoozed"""

    @property
    def is_snoozed(self) -> bool:
        """Check if the snooze is still in effect right now."""
        return self.is_snoozed_at(datetime.now(UTC))

    def is_snoozed_at(self, now: datetime) -> bool:
        """Check if the snooze is in effect at the given instant."""
        return self.snoozed_until is not None and self.snoozed_until > now

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        data: dict[str, Any] = {"state": self.state.value}
        if self.snoozed_until is not None:
            data["snoozedUntil"] = format_timestamp(self.snoozed_until)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PullRequestOverride:
        """Deserialize from a dict, defaulting missing or unknown values."""
        try:
            state = OverrideState(data.get("state", OverrideState.NONE.value))
        except ValueError:
            state = OverrideState.NONE
        return cls(state=state, snoozed_until=parse_timestamp(data.get("snoozedUntil")))


@dataclass
class PullRequest:
    """A GitHub pull request with its details and local override attached."""

    id: str
    """Opaque node id, stable across refreshes"""

    number: int
    """PR number within the repository"""

    title: str
    """PR title"""

    url: str
    """Full URL to the PR on GitHub"""

    repository: str
    """Repository name with owner (e.g., 'octo-org/review-ops')"""

    author: str
    """GitHub login of the PR author"""

    created_at: datetime
    """Timestamp when the PR was created (timezone-aware)"""

    updated_at: datetime
    """Timestamp of the last update (timezone-aware)"""

    is_draft: bool = False
    """Whether the PR is still a draft"""

    detail: PullRequestDetail = field(default_factory=PullRequestDetail)
    """Reviews and mergeability"""

    override: PullRequestOverride = field(default_factory=PullRequestOverride)
    """Local triage override merged in from the store"""


@dataclass
class PullRequestPage:
    """One page of results from the fetch contract."""

    items: list[PullRequest]
    cursor: str | None = None
    has_next_page: bool = False


@dataclass(frozen=True)
class Readiness:
    """
    Merge readiness of a pull request.

    A tagged union: `kind` is the variant and `reason` is only set for
    the blocked variant.
    """

    kind: ReadinessKind
    reason: str | None = None

    @classmethod
    def ready(cls) -> Readiness:
        return cls(ReadinessKind.READY)

    @classmethod
    def pending(cls) -> Readiness:
        return cls(ReadinessKind.PENDING)

    @classmethod
    def blocked(cls, reason: str) -> Readiness:
        return cls(ReadinessKind.BLOCKED, reason)

    @classmethod
    def checking(cls) -> Readiness:
        return cls(ReadinessKind.CHECKING)

    @property
    def label(self) -> str:
        """Short human-readable description."""
        if self.kind is ReadinessKind.BLOCKED:
            return f"Blocked: {self.reason}"
        return self.kind.value.capitalize()


@dataclass(frozen=True)
class PullRequestStatus:
    """Derived status of a pull request. Never persisted."""

    badge: ReviewBadge
    approvals: int
    changes_requested: int
    readiness: Readiness
    is_actionable: bool


@dataclass
class PullRequestPresentation:
    """A pull request paired with its computed status, ready for display."""

    pull_request: PullRequest
    status: PullRequestStatus

    @property
    def id(self) -> str:
        return self.pull_request.id

    @property
    def subtitle(self) -> str:
        return f"#{self.pull_request.number} · {self.pull_request.repository}"

    @property
    def badge_text(self) -> str:
        return {
            ReviewBadge.NONE: "",
            ReviewBadge.REVIEWED: "Reviewed",
            ReviewBadge.NEEDS_RE_REVIEW: "Needs re-review",
        }[self.status.badge]


@dataclass
class FilterState:
    """Dashboard list filters."""

    search_text: str = ""
    actionable_only: bool = False
    hide_reviewed: bool = False
    hide_snoozed: bool = False
    hide_not_applicable: bool = False


@dataclass
class ActivityEvent:
    """An entry in the append-only activity log."""

    type: ActivityEventType
    date: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "date": format_timestamp(self.date)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivityEvent | None:
        """Deserialize an event, returning None if it is malformed."""
        date = parse_timestamp(data.get("date"))
        try:
            event_type = ActivityEventType(data.get("type"))
        except ValueError:
            return None
        if date is None:
            return None
        return cls(type=event_type, date=date)


@dataclass
class DigestSnapshot:
    """Activity counts over the digest window."""

    opened_count: int
    reviewed_count: int
    timeframe_description: str


@dataclass
class RepositorySubscription:
    """A watched repository."""

    name_with_owner: str
    """Repository name with owner (e.g., 'octo-org/review-ops')"""

    notifications_enabled: bool = True
    """Whether PRs in this repository may raise notifications"""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "nameWithOwner": self.name_with_owner,
            "notificationsEnabled": self.notifications_enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RepositorySubscription | None:
        name = data.get("nameWithOwner")
        if not isinstance(name, str) or not name.strip():
            return None
        subscription = cls(
            name_with_owner=name.strip(),
            notifications_enabled=bool(data.get("notificationsEnabled", True)),
        )
        if isinstance(data.get("id"), str):
            subscription.id = data["id"]
        return subscription


@dataclass
class QuietHours:
    """Hours of the day (local time) during which notifications are held back."""

    start_hour: int
    end_hour: int

    def contains(self, hour: int) -> bool:
        """Check if an hour falls inside the quiet window (wraps past midnight)."""
        if self.start_hour == self.end_hour:
            return False
        if self.start_hour < self.end_hour:
            return self.start_hour <= hour < self.end_hour
        return hour >= self.start_hour or hour < self.end_hour


@dataclass
class AppSettings:
    """User settings persisted by the store."""

    token: str = ""
    """
    Deprecated in-memory carrier for the GitHub token.
    Never persisted; the token lives in the secret store.
    """

    refresh_interval: float = 5 * 60
    """Seconds between scheduled refreshes"""

    refresh_on_launch: bool = True
    notify_needs_review: bool = True
    notify_new_review_requests: bool = True
    quiet_hours: QuietHours | None = None

    snooze_default_hour: int = 9
    """Local hour used by 'snooze until tomorrow'"""

    digest_cadence: DigestCadence = DigestCadence.WEEKLY
    watched_repositories: list[RepositorySubscription] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for persistence. The token is never included."""
        data: dict[str, Any] = {
            "refreshInterval": self.refresh_interval,
            "refreshOnLaunch": self.refresh_on_launch,
            "notifyNeedsReview": self.notify_needs_review,
            "notifyNewReviewRequests": self.notify_new_review_requests,
            "snoozeDefaultHour": self.snooze_default_hour,
            "digestCadence": self.digest_cadence.value,
            "watchedRepositories": [repo.to_dict() for repo in self.watched_repositories],
        }
        if self.quiet_hours is not None:
            data["quietHours"] = {
                "startHour": self.quiet_hours.start_hour,
                "endHour": self.quiet_hours.end_hour,
            }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppSettings:
        """Deserialize settings, defaulting anything missing or invalid."""
        defaults = cls()

        def _get(key: str, kind: type | tuple[type, ...], default: Any) -> Any:
            value = data.get(key, default)
            # bool is an int subclass; keep flags and numbers apart
            if isinstance(value, bool) and kind is not bool:
                return default
            return value if isinstance(value, kind) else default

        try:
            cadence = DigestCadence(data.get("digestCadence", defaults.digest_cadence.value))
        except ValueError:
            cadence = defaults.digest_cadence

        quiet_hours = None
        raw_quiet = data.get("quietHours")
        if isinstance(raw_quiet, dict):
            start, end = raw_quiet.get("startHour"), raw_quiet.get("endHour")
            if isinstance(start, int) and isinstance(end, int):
                quiet_hours = QuietHours(start_hour=start, end_hour=end)

        repos = []
        raw_repos = data.get("watchedRepositories", [])
        if isinstance(raw_repos, list):
            for raw in raw_repos:
                if isinstance(raw, dict):
                    repo = RepositorySubscription.from_dict(raw)
                    if repo is not None:
                        repos.append(repo)

        return cls(
            refresh_interval=float(
                _get("refreshInterval", (int, float), defaults.refresh_interval)
            ),
            refresh_on_launch=_get("refreshOnLaunch", bool, defaults.refresh_on_launch),
            notify_needs_review=_get("notifyNeedsReview", bool, defaults.notify_needs_review),
            notify_new_review_requests=_get(
                "notifyNewReviewRequests", bool, defaults.notify_new_review_requests
            ),
            quiet_hours=quiet_hours,
            snooze_default_hour=_get("snoozeDefaultHour", int, defaults.snooze_default_hour),
            digest_cadence=cadence,
            watched_repositories=repos,
        )


@dataclass
class Config:
    """Application configuration from environment variables."""

    data_dir: str
    """Directory holding the overrides, ledger, settings and activity files"""

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR)"""

    use_mock_client: bool = False
    """Serve pull requests from the built-in mock dataset instead of GitHub"""

    slack_webhook_url: str | None = None
    """Slack incoming webhook used to deliver notifications (optional)"""

    holidays_country: str = "US"
    """Country code for holiday calendar used by next-business-day snoozes"""

    page_size: int = 20
    """Number of pull requests per search page"""

    api_timeout: int = 30
    """Transport timeout for GitHub and Slack requests, in seconds"""

"""Unit tests for data models."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from models import (
    AppSettings,
    DigestCadence,
    OverrideState,
    PullRequestOverride,
    PullRequestPresentation,
    PullRequestStatus,
    PullRequestTab,
    QuietHours,
    Readiness,
    RepositorySubscription,
    ReviewBadge,
    parse_timestamp,
)


def test_parse_timestamp_accepts_github_format():
    """Test parsing of GitHub's trailing-Z timestamps."""
    assert parse_timestamp("2025-10-22T12:00:00Z") == datetime(2025, 10, 22, 12, tzinfo=UTC)


def test_parse_timestamp_rejects_garbage():
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None
    assert parse_timestamp(42) is None


def test_override_is_snoozed():
    """Test that is_snoozed is derived from the current time."""
    future = PullRequestOverride(snoozed_until=datetime.now(UTC) + timedelta(hours=1))
    past = PullRequestOverride(snoozed_until=datetime.now(UTC) - timedelta(hours=1))
    assert future.is_snoozed is True
    assert past.is_snoozed is False
    assert PullRequestOverride().is_snoozed is False


def test_override_from_dict_defaults_unknown_values():
    """Test that unknown state values and missing fields fall back to defaults."""
    override = PullRequestOverride.from_dict({"state": "someFutureState", "extra": 1})
    assert override == PullRequestOverride()


def test_override_dict_round_trip():
    override = PullRequestOverride(
        state=OverrideState.TODO,
        snoozed_until=datetime(2025, 10, 23, 9, 0, 0, 123456, tzinfo=UTC),
    )
    assert PullRequestOverride.from_dict(override.to_dict()) == override


def test_settings_never_serialize_token():
    """Test that the token is not part of the persisted payload."""
    settings = AppSettings(token="ghp_secret")
    data = settings.to_dict()
    assert "token" not in data
    assert "ghp_secret" not in str(data)


def test_settings_from_dict_ignores_token_and_bad_values():
    """Test forward-readable settings decoding."""
    settings = AppSettings.from_dict(
        {
            "token": "ghp_secret",
            "refreshInterval": "soon",
            "refreshOnLaunch": False,
            "snoozeDefaultHour": True,
            "digestCadence": "daily",
            "quietHours": {"startHour": 22, "endHour": 7},
            "watchedRepositories": [
                {"nameWithOwner": "octo-org/api", "notificationsEnabled": False},
                {"nameWithOwner": ""},
                "garbage",
            ],
            "unknownField": [1, 2, 3],
        }
    )
    assert settings.token == ""
    assert settings.refresh_interval == 300
    assert settings.refresh_on_launch is False
    assert settings.snooze_default_hour == 9
    assert settings.digest_cadence is DigestCadence.WEEKLY
    assert settings.quiet_hours == QuietHours(start_hour=22, end_hour=7)
    assert [repo.name_with_owner for repo in settings.watched_repositories] == ["octo-org/api"]
    assert settings.watched_repositories[0].notifications_enabled is False


def test_repository_subscription_keeps_id():
    repo = RepositorySubscription(name_with_owner="octo-org/api")
    assert RepositorySubscription.from_dict(repo.to_dict()) == repo


def test_quiet_hours_wrap_past_midnight():
    """Test quiet hour ranges that span midnight."""
    night = QuietHours(start_hour=22, end_hour=7)
    assert night.contains(23) is True
    assert night.contains(3) is True
    assert night.contains(7) is False
    assert night.contains(12) is False

    lunch = QuietHours(start_hour=12, end_hour=13)
    assert lunch.contains(12) is True
    assert lunch.contains(13) is False

    assert QuietHours(start_hour=5, end_hour=5).contains(5) is False


def test_readiness_labels():
    assert Readiness.ready().label == "Ready"
    assert Readiness.blocked("Draft").label == "Blocked: Draft"
    assert Readiness.blocked("Draft") != Readiness.blocked("Conflicts")


def test_presentation_text(make_pr):
    """Test subtitle and badge text of a presentation."""
    status = PullRequestStatus(
        badge=ReviewBadge.NEEDS_RE_REVIEW,
        approvals=0,
        changes_requested=0,
        readiness=Readiness.pending(),
        is_actionable=False,
    )
    item = PullRequestPresentation(pull_request=make_pr(number=7), status=status)
    assert item.id == "PR_1"
    assert item.subtitle == "#7 · octo-org/pr-pulse"
    assert item.badge_text == "Needs re-review"


def test_tab_titles():
    assert PullRequestTab.MINE.title == "My PRs"
    assert PullRequestTab.REVIEW_REQUESTED.title == "Review Requested"
    assert PullRequestTab.WATCHED.title == "Watched"


def test_cadence_days():
    assert DigestCadence.OFF.days == 0
    assert DigestCadence.WEEKLY.days == 7
    assert DigestCadence.BI_WEEKLY.days == 14

"""Unit tests for the file-backed PullRequestStore."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from models import (
    ActivityEvent,
    ActivityEventType,
    AppSettings,
    DigestCadence,
    OverrideState,
    PullRequestOverride,
    QuietHours,
    RepositorySubscription,
)
from store import (
    ACTIVITY_FILE,
    OVERRIDES_FILE,
    REMINDERS_FILE,
    SETTINGS_FILE,
    PullRequestStore,
    StoreError,
)


class TestOverrides:
    """Tests for per-PR override persistence."""

    @pytest.mark.asyncio
    async def test_missing_override_is_empty(self, store):
        assert await store.get_override("PR_unknown") == PullRequestOverride()

    @pytest.mark.asyncio
    async def test_set_then_get(self, store, now):
        """Test that a read after a write returns the written override."""
        override = PullRequestOverride(state=OverrideState.TODO, snoozed_until=now)
        await store.set_override("PR_1", override)

        assert await store.get_override("PR_1") == override

    @pytest.mark.asyncio
    async def test_survives_reload(self, store, store_dir, now):
        """Test that overrides written by one instance are read by the next."""
        await store.set_override(
            "PR_1", PullRequestOverride(state=OverrideState.NOT_APPLICABLE)
        )
        await store.set_override(
            "PR_2", PullRequestOverride(snoozed_until=now + timedelta(days=1))
        )

        reloaded = PullRequestStore(store_dir)
        assert (await reloaded.get_override("PR_1")).state is OverrideState.NOT_APPLICABLE
        assert (await reloaded.get_override("PR_2")).snoozed_until == now + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_returned_override_is_a_copy(self, store):
        """Test that mutating a returned override does not change stored state."""
        await store.set_override("PR_1", PullRequestOverride(state=OverrideState.TODO))
        fetched = await store.get_override("PR_1")
        fetched.state = OverrideState.NOT_APPLICABLE

        assert (await store.get_override("PR_1")).state is OverrideState.TODO

    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_state(self, store, store_dir):
        """Test that a failed write raises and leaves memory and disk untouched."""
        await store.set_override("PR_1", PullRequestOverride(state=OverrideState.TODO))
        before = (store_dir / OVERRIDES_FILE).read_text()

        with patch("store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StoreError) as exc_info:
                await store.set_override(
                    "PR_1", PullRequestOverride(state=OverrideState.NOT_APPLICABLE)
                )

        assert exc_info.value.resource == "overrides"
        assert "disk full" in str(exc_info.value)
        assert (await store.get_override("PR_1")).state is OverrideState.TODO
        assert (store_dir / OVERRIDES_FILE).read_text() == before
        # No temporary files left behind
        assert sorted(p.name for p in store_dir.iterdir()) == [OVERRIDES_FILE]


class TestLedger:
    """Tests for the notification ledger."""

    @pytest.mark.asyncio
    async def test_unknown_key_is_none(self, store):
        assert await store.get_ledger_timestamp("PR_1-needs-review") is None

    @pytest.mark.asyncio
    async def test_set_and_reload(self, store, store_dir, now):
        await store.set_ledger_timestamp("PR_1-needs-review", now)

        assert await store.get_ledger_timestamp("PR_1-needs-review") == now
        reloaded = PullRequestStore(store_dir)
        assert await reloaded.get_ledger_timestamp("PR_1-needs-review") == now


class TestReminders:
    """Tests for reminders held until their trigger time."""

    @pytest.mark.asyncio
    async def test_set_and_reload(self, store, store_dir):
        reminder = {"identifier": "PR_1-snooze", "title": "Snoozed PR ready"}

        await store.set_reminders({"PR_1-snooze": reminder})

        assert await store.get_reminders() == {"PR_1-snooze": reminder}
        reloaded = PullRequestStore(store_dir)
        assert await reloaded.get_reminders() == {"PR_1-snooze": reminder}

    @pytest.mark.asyncio
    async def test_non_object_entries_are_skipped(self, store_dir):
        store_dir.mkdir(parents=True)
        (store_dir / REMINDERS_FILE).write_text(
            json.dumps({"PR_1-snooze": {"identifier": "PR_1-snooze"}, "PR_2-snooze": "garbage"})
        )

        store = PullRequestStore(store_dir)

        assert list(await store.get_reminders()) == ["PR_1-snooze"]


class TestSettings:
    """Tests for settings persistence."""

    @pytest.mark.asyncio
    async def test_defaults_when_missing(self, store):
        assert await store.get_settings() == AppSettings()

    @pytest.mark.asyncio
    async def test_token_never_written(self, store, store_dir):
        """Test that the token is stripped before anything reaches disk."""
        settings = AppSettings(
            token="ghp_do_not_persist",
            refresh_interval=60,
            quiet_hours=QuietHours(start_hour=22, end_hour=7),
            digest_cadence=DigestCadence.BI_WEEKLY,
            watched_repositories=[RepositorySubscription(name_with_owner="octo-org/api")],
        )
        await store.set_settings(settings)

        raw = (store_dir / SETTINGS_FILE).read_text()
        assert "ghp_do_not_persist" not in raw
        assert "token" not in json.loads(raw)

        loaded = PullRequestStore(store_dir)
        reloaded = await loaded.get_settings()
        assert reloaded.token == ""
        assert reloaded.refresh_interval == 60
        assert reloaded.quiet_hours == QuietHours(start_hour=22, end_hour=7)
        assert reloaded.digest_cadence is DigestCadence.BI_WEEKLY
        assert reloaded.watched_repositories == settings.watched_repositories

    @pytest.mark.asyncio
    async def test_token_on_disk_is_ignored(self, store_dir):
        """Test that a token left on disk by an older version is not loaded."""
        store_dir.mkdir(parents=True)
        (store_dir / SETTINGS_FILE).write_text(
            json.dumps({"token": "ghp_legacy", "refreshOnLaunch": False})
        )

        settings = await PullRequestStore(store_dir).get_settings()
        assert settings.token == ""
        assert settings.refresh_on_launch is False


class TestCorruptFiles:
    """Tests for degrading to defaults on unreadable files."""

    @pytest.mark.asyncio
    async def test_corrupt_files_degrade_to_defaults(self, store_dir):
        store_dir.mkdir(parents=True)
        (store_dir / OVERRIDES_FILE).write_text("{not json")
        (store_dir / SETTINGS_FILE).write_text("[1, 2, 3]")
        (store_dir / ACTIVITY_FILE).write_text('{"type": "openedMyPR"}')

        store = PullRequestStore(store_dir)

        assert await store.get_override("PR_1") == PullRequestOverride()
        assert await store.get_settings() == AppSettings()
        assert await store.recent_activity(since=datetime.min.replace(tzinfo=UTC)) == []

    @pytest.mark.asyncio
    async def test_malformed_entries_are_skipped(self, store_dir, now):
        """Test that well-formed entries survive alongside malformed ones."""
        store_dir.mkdir(parents=True)
        (store_dir / OVERRIDES_FILE).write_text(
            json.dumps({"PR_1": {"state": "todo"}, "PR_2": "garbage"})
        )
        (store_dir / ACTIVITY_FILE).write_text(
            json.dumps(
                [
                    {"type": "openedMyPR", "date": now.isoformat()},
                    {"type": "mergedPR", "date": now.isoformat()},
                    {"type": "reviewedPR", "date": "yesterday"},
                ]
            )
        )

        store = PullRequestStore(store_dir)

        assert (await store.get_override("PR_1")).state is OverrideState.TODO
        assert await store.get_override("PR_2") == PullRequestOverride()
        events = await store.recent_activity(since=now - timedelta(days=1))
        assert [event.type for event in events] == [ActivityEventType.OPENED_MY_PR]


class TestActivity:
    """Tests for the activity log."""

    @pytest.mark.asyncio
    async def test_recent_activity_filters_by_date(self, store, now):
        old = ActivityEvent(type=ActivityEventType.REVIEWED_PR, date=now - timedelta(days=10))
        recent = ActivityEvent(type=ActivityEventType.OPENED_MY_PR, date=now - timedelta(days=1))
        await store.append_activity(old, now=now)
        await store.append_activity(recent, now=now)

        assert await store.recent_activity(since=now - timedelta(days=7)) == [recent]
        assert await store.recent_activity(since=now - timedelta(days=14)) == [old, recent]

    @pytest.mark.asyncio
    async def test_append_prunes_expired_events(self, store, store_dir, now):
        """Test that events older than the retention window are dropped on append."""
        expired = ActivityEvent(type=ActivityEventType.REVIEWED_PR, date=now - timedelta(days=30))
        await store.append_activity(expired, now=now - timedelta(days=30))
        fresh = ActivityEvent(type=ActivityEventType.OPENED_MY_PR, date=now)
        await store.append_activity(fresh, now=now)

        assert await store.recent_activity(since=now - timedelta(days=365)) == [fresh]
        on_disk = json.loads((store_dir / ACTIVITY_FILE).read_text())
        assert len(on_disk) == 1

"""Dashboard orchestration: fetch, merge overrides, classify, filter and notify."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from digest import DIGEST_NA_LABEL, DIGEST_OFF_LABEL, digest_cutoff, make_digest_snapshot
from github_client import GitHubClient, GitHubClientError
from models import (
    ActivityEvent,
    AppSettings,
    DigestCadence,
    DigestSnapshot,
    FilterState,
    OverrideState,
    PullRequest,
    PullRequestOverride,
    PullRequestPresentation,
    PullRequestTab,
    ReviewBadge,
)
from notifications import NotificationDispatcher
from scheduler import RefreshScheduler
from snooze import snooze_until_next_business_day, snooze_until_tomorrow
from status_calculator import calculate_status
from store import PullRequestStore, StoreError

logger = logging.getLogger(__name__)

MAX_CONNECTION_ERRORS = 50


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    ERROR = "error"


class QuickAction(str, Enum):
    """User triage actions on a single pull request."""

    MARK_TODO = "todo"
    MARK_NOT_APPLICABLE = "notApplicable"
    CLEAR_OVERRIDE = "clear"
    SNOOZE_TOMORROW = "snoozeTomorrow"
    SNOOZE_NEXT_BUSINESS_DAY = "snoozeNextBusinessDay"
    SNOOZE_UNTIL = "snoozeUntil"


@dataclass
class PullRequestListState:
    """Transient per-tab list state. Fetched content is never written to disk."""

    raw_items: list[PullRequest] = field(default_factory=list)
    displayed_items: list[PullRequestPresentation] = field(default_factory=list)
    cursor: str | None = None
    has_next_page: bool = False
    is_loading: bool = False
    fetch_task: asyncio.Task | None = field(default=None, repr=False)


class Dashboard:
    """
    Coordinates the fetch client, the store, the status calculator and notifications.

    Rules upheld here:
    - at most one fetch is in flight per tab; a second request is a no-op
      unless it explicitly supersedes the first, which cancels it silently
    - fetched pull requests are merged with their persisted override before
      being classified
    - every settings, filter or override change recomputes the displayed lists
      from scratch
    - transport failures become connection state; cancellations are never
      reported
    """

    def __init__(
        self,
        client: GitHubClient,
        store: PullRequestStore,
        notifier: NotificationDispatcher,
        scheduler: RefreshScheduler,
        holidays_country: str = "US",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.notifier = notifier
        self.scheduler = scheduler
        self.holidays_country = holidays_country
        self._clock = clock or (lambda: datetime.now(UTC))

        self.selected_tab = PullRequestTab.REVIEW_REQUESTED
        self.filter_state = FilterState()
        self.list_states: dict[PullRequestTab, PullRequestListState] = {
            tab: PullRequestListState() for tab in PullRequestTab
        }
        self.settings = AppSettings()
        self.viewer_login = ""
        self.badge_count = 0
        self.digest_snapshot = DigestSnapshot(0, 0, DIGEST_NA_LABEL)
        self.is_refreshing = False
        self.last_refresh_at: datetime | None = None

        self.connection_state = ConnectionState.CONNECTED
        self.connection_status_text = "Connected"
        self.connection_errors: list[str] = []
        self.persistence_error: str | None = None

        self._has_bootstrapped = False
        self._observers: list[Callable[[Dashboard], None]] = []

    # Observers

    def subscribe(self, callback: Callable[[Dashboard], None]) -> Callable[[], None]:
        """
        Register a callback invoked after every recompute of the displayed lists.

        Returns:
            A function that removes the callback
        """
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    # Lifecycle

    async def bootstrap(self) -> None:
        """
        Request notification permission, resolve the viewer, load settings, run the
        launch refresh and start the schedule.
        """
        if self._has_bootstrapped:
            return
        self._has_bootstrapped = True

        await self.notifier.request_authorization()

        try:
            self.viewer_login = await self.client.fetch_viewer()
            self._mark_connected()
        except asyncio.CancelledError:
            self.viewer_login = "me"
            if self._being_cancelled():
                raise
        except GitHubClientError as e:
            self.viewer_login = "me"
            self._mark_connection_error(f"Viewer lookup failed: {e}")

        self.settings = await self.store.get_settings()
        logger.info(f"Dashboard ready for {self.viewer_login}")

        if self.settings.refresh_on_launch:
            await self.refresh_active_tab()

        self._start_scheduler()

    def shutdown(self) -> None:
        self.scheduler.stop()
        for tab in PullRequestTab:
            self.cancel_fetch(tab)

    def _start_scheduler(self) -> None:
        self.scheduler.start(self.settings.refresh_interval, self._scheduled_refresh)

    async def _scheduled_refresh(self) -> None:
        await self.refresh_active_tab()
        await self.notifier.deliver_due()
        await self.update_digest()

    # Fetching

    async def refresh_active_tab(self) -> None:
        await self.load_page(self.selected_tab, reset=True)

    async def refresh_all(self) -> None:
        """
        Refresh every tab, then the digest. Ignored while a full refresh is running.

        A full refresh starts from an empty connection error log.
        """
        if self.is_refreshing:
            return
        self.is_refreshing = True
        self.clear_connection_errors()
        try:
            for tab in PullRequestTab:
                await self.load_page(tab, reset=True)
            await self.notifier.deliver_due()
            await self.update_digest()
            self.last_refresh_at = self._clock()
        finally:
            self.is_refreshing = False

    async def load_more(self) -> None:
        await self.load_page(self.selected_tab, reset=False)

    async def select_tab(self, tab: PullRequestTab) -> None:
        """Switch tabs, loading the tab's first page if it has never been loaded."""
        self.selected_tab = tab
        if not self.list_states[tab].raw_items:
            await self.load_page(tab, reset=True)

    def cancel_fetch(self, tab: PullRequestTab) -> None:
        """Cancel the in-flight fetch of a tab, if any. The cancelled fetch reports nothing."""
        state = self.list_states[tab]
        task = state.fetch_task
        if task is not None and not task.done():
            task.cancel()
            logger.debug(f"Cancelled in-flight fetch for tab {tab.value}")
        state.fetch_task = None
        state.is_loading = False

    async def load_page(
        self, tab: PullRequestTab, reset: bool = True, supersede: bool = False
    ) -> None:
        """
        Fetch one page for a tab and merge it into the tab's list.

        Args:
            tab: Tab to load
            reset: Start from the first page (True) or continue from the stored cursor
            supersede: For resets only, cancel an in-flight fetch instead of skipping
        """
        state = self.list_states[tab]
        if state.is_loading:
            if not (supersede and reset):
                logger.debug(f"Fetch already in flight for tab {tab.value}, skipping")
                return
            self.cancel_fetch(tab)

        if not reset and not state.has_next_page:
            return

        cursor = None if reset else state.cursor
        task = asyncio.ensure_future(self.client.fetch_pull_requests(tab, cursor))
        state.is_loading = True
        state.fetch_task = task

        try:
            try:
                page = await task
            except asyncio.CancelledError:
                if self._being_cancelled():
                    raise
                logger.debug(f"Fetch for tab {tab.value} was superseded")
                return
            except GitHubClientError as e:
                if state.fetch_task is task:
                    self._mark_connection_error(str(e))
                return

            if state.fetch_task is not task:
                return

            enriched = []
            for item in page.items:
                override = await self.store.get_override(item.id)
                enriched.append(replace(item, override=override))

            if state.fetch_task is not task:
                # Superseded while overrides were read; the newer fetch owns the list
                logger.debug(f"Dropping stale page for tab {tab.value}")
                return

            if reset:
                state.raw_items = enriched
            else:
                state.raw_items.extend(enriched)
            state.cursor = page.cursor
            state.has_next_page = page.has_next_page
        finally:
            if state.fetch_task is task:
                state.fetch_task = None
                state.is_loading = False

        logger.info(f"Loaded {len(enriched)} PRs for {tab.title} (total {len(state.raw_items)})")

        self.recompute_displayed_items()
        self.last_refresh_at = self._clock()
        self._mark_connected()

        if tab in (PullRequestTab.REVIEW_REQUESTED, PullRequestTab.WATCHED):
            await self.notify_needs_review(tab)

    @staticmethod
    def _being_cancelled() -> bool:
        current = asyncio.current_task()
        return current is not None and current.cancelling() > 0

    # User actions

    def _find_pull_request(self, pr_id: str) -> PullRequest | None:
        for state in self.list_states.values():
            for pr in state.raw_items:
                if pr.id == pr_id:
                    return pr
        return None

    async def perform(
        self, action: QuickAction, pr_id: str, until: datetime | None = None
    ) -> PullRequestOverride:
        """
        Apply a quick action to a pull request, persist the override and recompute.

        A persistence failure keeps the in-memory change and is reported once
        through `persistence_error`.

        Args:
            action: Quick action to apply
            pr_id: Pull request id
            until: Snooze target, required for SNOOZE_UNTIL

        Returns:
            The new override

        Raises:
            ValueError: If SNOOZE_UNTIL is requested without a target
        """
        pr = self._find_pull_request(pr_id)
        current = pr.override if pr is not None else await self.store.get_override(pr_id)
        override = PullRequestOverride(state=current.state, snoozed_until=current.snoozed_until)
        now = self._clock()
        snooze_target = None

        if action is QuickAction.MARK_TODO:
            override.state = OverrideState.TODO
            override.snoozed_until = None
        elif action is QuickAction.MARK_NOT_APPLICABLE:
            override.state = OverrideState.NOT_APPLICABLE
        elif action is QuickAction.CLEAR_OVERRIDE:
            override = PullRequestOverride()
        elif action is QuickAction.SNOOZE_TOMORROW:
            snooze_target = snooze_until_tomorrow(now, self.settings.snooze_default_hour)
        elif action is QuickAction.SNOOZE_NEXT_BUSINESS_DAY:
            snooze_target = snooze_until_next_business_day(
                now, self.settings.snooze_default_hour, self.holidays_country
            )
        elif action is QuickAction.SNOOZE_UNTIL:
            if until is None:
                raise ValueError("A snooze target is required for SNOOZE_UNTIL")
            snooze_target = until

        if snooze_target is not None:
            override.state = OverrideState.TODO
            override.snoozed_until = snooze_target
            await self.notifier.schedule_snooze_reminder(
                pr_id, snooze_target, title=pr.title if pr is not None else None
            )

        try:
            await self.store.set_override(pr_id, override)
            self.persistence_error = None
        except StoreError as e:
            self._mark_persistence_error(str(e))

        self._update_override(override, pr_id)
        return override

    def _update_override(self, override: PullRequestOverride, pr_id: str) -> None:
        for state in self.list_states.values():
            for index, pr in enumerate(state.raw_items):
                if pr.id == pr_id:
                    state.raw_items[index] = replace(
                        pr,
                        override=PullRequestOverride(
                            state=override.state, snoozed_until=override.snoozed_until
                        ),
                    )
        self.recompute_displayed_items()

    def set_filters(self, filter_state: FilterState) -> None:
        self.filter_state = filter_state
        self.recompute_displayed_items()

    async def update_settings(self, settings: AppSettings) -> None:
        """Persist new settings, restart the schedule and recompute."""
        self.settings = settings
        try:
            await self.store.set_settings(settings)
            self.persistence_error = None
        except StoreError as e:
            self._mark_persistence_error(str(e))
        self._start_scheduler()
        self.recompute_displayed_items()
        await self.update_digest()

    async def record_activity(self, event: ActivityEvent) -> None:
        try:
            await self.store.append_activity(event, now=self._clock())
            self.persistence_error = None
        except StoreError as e:
            self._mark_persistence_error(str(e))
        await self.update_digest()

    # Derived state

    def recompute_displayed_items(self) -> None:
        """Rebuild every tab's displayed list from its raw items, then notify observers."""
        if not self.viewer_login:
            return

        now = self._clock()
        filters = self.filter_state
        search = filters.search_text.strip().lower()

        for state in self.list_states.values():
            displayed = []
            for pr in state.raw_items:
                if search and search not in pr.title.lower() and search not in pr.repository.lower():
                    continue
                if filters.hide_not_applicable and pr.override.state is OverrideState.NOT_APPLICABLE:
                    continue
                if filters.hide_snoozed and pr.override.is_snoozed_at(now):
                    continue

                status = calculate_status(pr, self.viewer_login, now)
                if filters.actionable_only and not status.is_actionable:
                    continue
                if filters.hide_reviewed and status.badge is ReviewBadge.REVIEWED:
                    continue
                displayed.append(PullRequestPresentation(pull_request=pr, status=status))

            displayed.sort(
                key=lambda item: (
                    not item.status.is_actionable,
                    -item.pull_request.updated_at.timestamp(),
                )
            )
            state.displayed_items = displayed

        self._update_badge_count()
        for callback in list(self._observers):
            callback(self)

    def _update_badge_count(self) -> None:
        actionable = {
            item.id
            for state in self.list_states.values()
            for item in state.displayed_items
            if item.status.is_actionable
        }
        self.badge_count = len(actionable)

    async def update_digest(self) -> None:
        cadence = self.settings.digest_cadence
        if cadence is DigestCadence.OFF:
            self.digest_snapshot = DigestSnapshot(0, 0, DIGEST_OFF_LABEL)
            return
        now = self._clock()
        events = await self.store.recent_activity(digest_cutoff(cadence, now))
        self.digest_snapshot = make_digest_snapshot(events, cadence, now)

    # Notifications

    async def notify_needs_review(self, tab: PullRequestTab = PullRequestTab.REVIEW_REQUESTED) -> int:
        """
        Send needs-review notifications for a tab's pull requests.

        Review-requested PRs notify when the viewer's review went stale (new
        commits) or when the viewer has not reviewed yet. Watched PRs only
        notify for stale reviews, and only for subscriptions with
        notifications enabled. The dispatcher's ledger keeps each PR to one
        notification per 24 hours.

        Returns:
            Number of notifications delivered
        """
        if not self.viewer_login:
            return 0

        settings = self.settings
        enabled_repos = {
            repo.name_with_owner.lower()
            for repo in settings.watched_repositories
            if repo.notifications_enabled
        }
        now = self._clock()
        sent = 0
        for pr in list(self.list_states[tab].raw_items):
            if pr.override.state is OverrideState.NOT_APPLICABLE or pr.override.is_snoozed_at(now):
                continue
            status = calculate_status(pr, self.viewer_login, now)

            if tab is PullRequestTab.WATCHED:
                wanted = (
                    pr.repository.lower() in enabled_repos
                    and settings.notify_needs_review
                    and status.badge is ReviewBadge.NEEDS_RE_REVIEW
                )
            else:
                wanted = (
                    settings.notify_needs_review and status.badge is ReviewBadge.NEEDS_RE_REVIEW
                ) or (settings.notify_new_review_requests and status.badge is ReviewBadge.NONE)

            if wanted and await self.notifier.send_needs_review(
                pr, now=now, quiet_hours=settings.quiet_hours
            ):
                sent += 1

        if sent:
            logger.info(f"Sent {sent} needs-review notification(s) for {tab.title}")
        return sent

    # Error state

    def _mark_connected(self) -> None:
        self.connection_state = ConnectionState.CONNECTED
        self.connection_status_text = "Connected"
        self.connection_errors.clear()

    def _mark_connection_error(self, message: str) -> None:
        trimmed = message.strip()
        if not trimmed:
            return
        logger.warning(f"Connection issue: {trimmed}")
        entry = f"{self._clock().astimezone().strftime('%H:%M:%S')}: {trimmed}"
        if not self.connection_errors or self.connection_errors[-1] != entry:
            self.connection_errors.append(entry)
            del self.connection_errors[:-MAX_CONNECTION_ERRORS]
        self.connection_state = ConnectionState.ERROR
        self.connection_status_text = "Connection issue"

    def _mark_persistence_error(self, message: str) -> None:
        if self.persistence_error is None:
            logger.error(f"Local storage problem, continuing in memory: {message}")
        self.persistence_error = message

    def clear_connection_errors(self) -> None:
        self._mark_connected()

    # Diagnostics

    def diagnostics_report(self) -> str:
        settings = self.settings
        now = self._clock().astimezone()
        lines = [
            "PR Pulse Diagnostics",
            f"Generated: {now.strftime('%Y-%m-%d %H:%M:%S')}",
            "",
            f"Viewer: {self.viewer_login or '(unknown)'}",
            f"Selected Tab: {self.selected_tab.title}",
            f"Connection: {self.connection_status_text}",
            f"Refresh On Launch: {settings.refresh_on_launch}",
            f"Refresh Interval (min): {int(settings.refresh_interval // 60)}",
            f"Needs Re-Review Notifications: {settings.notify_needs_review}",
            f"Review Requested Notifications: {settings.notify_new_review_requests}",
            f"Digest Cadence: {settings.digest_cadence.value}",
            f"Default Snooze Hour: {settings.snooze_default_hour}",
            "Watched Repositories: "
            + ", ".join(repo.name_with_owner for repo in settings.watched_repositories),
        ]
        if self.last_refresh_at is not None:
            last = self.last_refresh_at.astimezone().strftime("%Y-%m-%d %H:%M:%S")
            lines.append(f"Last Refresh: {last}")
        else:
            lines.append("Last Refresh: Never")
        return "\n".join(lines)

    def export_diagnostics(self, directory: str | Path) -> Path:
        """
        Write the diagnostics report to a timestamped file.

        Raises:
            OSError: If the file cannot be written
        """
        path = Path(directory).expanduser() / (
            f"PRPulse-Diagnostics-{int(self._clock().timestamp())}.txt"
        )
        path.write_text(self.diagnostics_report() + "\n", encoding="utf-8")
        logger.info(f"Diagnostics written to {path}")
        return path

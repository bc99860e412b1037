"""Notification delivery and the ledger-backed notification dispatcher."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import requests

from models import PullRequest, QuietHours, format_timestamp, parse_timestamp
from store import PullRequestStore, StoreError

logger = logging.getLogger(__name__)

NEEDS_REVIEW_WINDOW = timedelta(hours=24)


class NotificationError(Exception):
    """Raised when a notification cannot be delivered."""


@dataclass
class PendingReminder:
    """A notification waiting for its trigger time."""

    identifier: str
    title: str
    body: str
    subtitle: str
    trigger_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "title": self.title,
            "body": self.body,
            "subtitle": self.subtitle,
            "triggerAt": format_timestamp(self.trigger_at) if self.trigger_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingReminder | None:
        """Rebuild a persisted reminder, or None if it has no usable identifier or title."""
        identifier = data.get("identifier")
        title = data.get("title")
        if not isinstance(identifier, str) or not identifier or not isinstance(title, str):
            return None
        body = data.get("body")
        subtitle = data.get("subtitle")
        return cls(
            identifier=identifier,
            title=title,
            body=body if isinstance(body, str) else "",
            subtitle=subtitle if isinstance(subtitle, str) else "",
            trigger_at=parse_timestamp(data.get("triggerAt")),
        )


class NotificationCenter(ABC):
    """
    Notification delivery contract.

    A reminder scheduled with an identifier that is already pending replaces
    the pending one.
    """

    @abstractmethod
    async def request_permission(self) -> bool:
        """Ask for permission to deliver notifications. Returns whether it was granted."""

    @abstractmethod
    async def schedule_reminder(
        self,
        identifier: str,
        title: str,
        body: str,
        trigger_at: datetime | None = None,
        subtitle: str = "",
    ) -> None:
        """
        Deliver a notification now (trigger_at is None or in the past) or at trigger_at.

        Raises:
            NotificationError: If delivery fails
        """


class MemoryNotificationCenter(NotificationCenter):
    """Records notifications in memory instead of delivering them."""

    def __init__(self) -> None:
        self.delivered: list[PendingReminder] = []
        self.pending: dict[str, PendingReminder] = {}
        self.permission_requested = False

    async def request_permission(self) -> bool:
        self.permission_requested = True
        return True

    async def schedule_reminder(
        self,
        identifier: str,
        title: str,
        body: str,
        trigger_at: datetime | None = None,
        subtitle: str = "",
    ) -> None:
        reminder = PendingReminder(identifier, title, body, subtitle, trigger_at)
        if trigger_at is None or trigger_at <= datetime.now(UTC):
            self.delivered.append(reminder)
        else:
            self.pending[identifier] = reminder


class SlackNotificationCenter(NotificationCenter):
    """
    Delivers notifications to a Slack channel through an incoming webhook.

    Reminders with a future trigger time are held until `deliver_due` runs
    past that time (the dashboard calls it on every refresh cycle). With a
    store, held reminders are persisted so a later process can deliver them.
    """

    def __init__(
        self, webhook_url: str, timeout: int = 10, store: PullRequestStore | None = None
    ) -> None:
        """
        Initialize the notification center.

        Args:
            webhook_url: Slack incoming webhook URL
            timeout: Request timeout in seconds (default: 10)
            store: Optional store that keeps held reminders across runs
        """
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.store = store
        self.pending: dict[str, PendingReminder] = {}
        self._restored = store is None

    async def request_permission(self) -> bool:
        # Incoming webhooks are authorized when they are created
        return True

    async def _restore_pending(self) -> None:
        if self._restored:
            return
        self._restored = True
        for identifier, raw in (await self.store.get_reminders()).items():
            reminder = PendingReminder.from_dict(raw)
            if reminder is not None:
                self.pending.setdefault(identifier, reminder)
        if self.pending:
            logger.debug(f"Restored {len(self.pending)} pending reminder(s)")

    async def _save_pending(self) -> None:
        if self.store is None:
            return
        try:
            await self.store.set_reminders(
                {key: reminder.to_dict() for key, reminder in self.pending.items()}
            )
        except StoreError as e:
            raise NotificationError(f"Failed to save pending reminders: {e}") from e

    async def schedule_reminder(
        self,
        identifier: str,
        title: str,
        body: str,
        trigger_at: datetime | None = None,
        subtitle: str = "",
    ) -> None:
        await self._restore_pending()
        reminder = PendingReminder(identifier, title, body, subtitle, trigger_at)
        if trigger_at is not None and trigger_at > datetime.now(UTC):
            self.pending[identifier] = reminder
            await self._save_pending()
            logger.debug(f"Scheduled reminder {identifier} for {trigger_at.isoformat()}")
            return
        if self.pending.pop(identifier, None) is not None:
            await self._save_pending()
        await asyncio.to_thread(self._post, reminder)

    async def deliver_due(self, now: datetime | None = None) -> int:
        """
        Deliver every pending reminder whose trigger time has passed.

        Returns:
            Number of reminders delivered
        """
        await self._restore_pending()
        if now is None:
            now = datetime.now(UTC)
        due = [
            reminder
            for reminder in self.pending.values()
            if reminder.trigger_at is None or reminder.trigger_at <= now
        ]
        try:
            for reminder in due:
                await asyncio.to_thread(self._post, reminder)
                del self.pending[reminder.identifier]
        finally:
            if due:
                await self._save_pending()
        return len(due)

    def build_blocks(self, reminder: PendingReminder) -> list[dict]:
        """Build the Block Kit payload for a reminder."""
        blocks: list[dict] = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": reminder.title, "emoji": True},
            }
        ]
        lines = []
        if reminder.subtitle:
            lines.append(f"*{self._escape_mrkdwn(reminder.subtitle)}*")
        if reminder.body:
            lines.append(self._escape_mrkdwn(reminder.body))
        if lines:
            blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(lines)}})
        return blocks

    def _escape_mrkdwn(self, text: str) -> str:
        """Escape the characters Slack treats as control sequences in mrkdwn."""
        return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")

    def _post(self, reminder: PendingReminder) -> None:
        """
        Send a reminder to Slack.

        Raises:
            NotificationError: If the webhook request fails
        """
        fallback = f"{reminder.title}: {reminder.subtitle}".rstrip(": ")
        payload = {"text": fallback, "blocks": self.build_blocks(reminder)}
        try:
            response = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise NotificationError(f"Failed to send Slack message: {e}") from e

        if response.status_code != 200:
            msg = f"Failed to send Slack message: {response.status_code} - {response.text}"
            raise NotificationError(msg)


def needs_review_key(pr_id: str) -> str:
    """Ledger key for the needs-review notification of a PR."""
    return f"{pr_id}-needs-review"


def snooze_identifier(pr_id: str) -> str:
    """Notification identifier for the snooze reminder of a PR."""
    return f"{pr_id}-snooze"


class NotificationDispatcher:
    """Sends pull request notifications, deduplicated through the store's ledger."""

    def __init__(self, store: PullRequestStore, center: NotificationCenter) -> None:
        self.store = store
        self.center = center
        # Held across the ledger check, the delivery and the ledger write
        self._needs_review_lock = asyncio.Lock()

    async def request_authorization(self) -> None:
        try:
            granted = await self.center.request_permission()
        except NotificationError as e:
            logger.warning(f"Notification permission error: {e}")
            return
        if not granted:
            logger.info("Notification permission was not granted")

    async def send_needs_review(
        self,
        pr: PullRequest,
        now: datetime | None = None,
        quiet_hours: QuietHours | None = None,
    ) -> bool:
        """
        Send a "needs review" notification unless one went out for this PR in the last 24 hours.

        During quiet hours nothing is sent and the ledger is left untouched.

        Returns:
            True if a notification was delivered
        """
        if now is None:
            now = datetime.now(UTC)
        if quiet_hours is not None and quiet_hours.contains(now.astimezone().hour):
            logger.debug(f"Quiet hours: holding needs-review notification for {pr.id}")
            return False

        key = needs_review_key(pr.id)
        async with self._needs_review_lock:
            last_sent = await self.store.get_ledger_timestamp(key)
            if last_sent is not None and now - last_sent < NEEDS_REVIEW_WINDOW:
                logger.debug(
                    f"Needs-review notification for {pr.id} already sent at {last_sent}"
                )
                return False

            try:
                await self.center.schedule_reminder(
                    identifier=key,
                    title="Needs review",
                    subtitle=pr.title,
                    body=pr.repository,
                )
            except NotificationError as e:
                logger.warning(f"Failed to send notification: {e}")
                return False

            try:
                await self.store.set_ledger_timestamp(key, now)
            except StoreError as e:
                logger.error(f"Notification sent but ledger not updated: {e}")
            return True

    async def schedule_snooze_reminder(
        self, pr_id: str, until: datetime, title: str | None = None
    ) -> None:
        """
        Schedule a reminder for when a snooze expires. Not deduplicated.

        The PR title is shown when known; otherwise the reminder names the PR id.
        """
        try:
            await self.center.schedule_reminder(
                identifier=snooze_identifier(pr_id),
                title="Snoozed PR ready",
                subtitle=title or pr_id,
                body="Snooze expired",
                trigger_at=until,
            )
        except NotificationError as e:
            logger.warning(f"Failed to schedule snooze reminder: {e}")

    async def deliver_due(self) -> None:
        """Flush reminders whose trigger time has passed, for centers that hold them."""
        deliver_due = getattr(self.center, "deliver_due", None)
        if deliver_due is None:
            return
        try:
            await deliver_due()
        except NotificationError as e:
            logger.warning(f"Failed to deliver pending reminders: {e}")

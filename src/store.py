"""File-backed store for overrides, the notification ledger, settings, activity and reminders."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from models import (
    ActivityEvent,
    AppSettings,
    DigestCadence,
    PullRequestOverride,
    format_timestamp,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

OVERRIDES_FILE = "overrides.json"
LEDGER_FILE = "ledger.json"
SETTINGS_FILE = "settings.json"
ACTIVITY_FILE = "activity.json"
REMINDERS_FILE = "reminders.json"

# Longest digest window plus a day of slack
ACTIVITY_RETENTION = timedelta(days=max(c.days for c in DigestCadence) + 1)


class StoreError(Exception):
    """Raised when a persisted resource cannot be written."""

    def __init__(self, resource: str, reason: str) -> None:
        self.resource = resource
        self.reason = reason
        super().__init__(f"Failed to persist {resource}: {reason}")


def _atomic_write_json(path: Path, payload: Any) -> None:
    """
    Write JSON to a temporary file next to `path` and rename it into place.

    Either the new content fully lands or the previous file is left intact.

    Raises:
        OSError: If the file cannot be written or renamed
    """
    data = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def _read_json(path: Path, expected: type) -> Any | None:
    """
    Read a JSON document, returning None if it is missing, corrupt or of the wrong shape.
    """
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read {path.name}, starting from an empty default: {e}")
        return None
    if not isinstance(data, expected):
        logger.warning(
            f"{path.name} must contain a JSON {expected.__name__}, got {type(data).__name__}. "
            "Starting from an empty default."
        )
        return None
    return data


class PullRequestStore:
    """
    Persists per-PR overrides, the notification ledger, app settings, the
    activity log and reminders waiting for their trigger time.

    Each resource lives in its own JSON file guarded by its own
    asyncio lock, so contention on one resource never blocks another. The
    in-memory copy of a resource is only replaced after its file write has
    landed, which keeps reads consistent with acknowledged writes and leaves
    the previous state intact when a write fails.
    """

    def __init__(self, directory: str | Path) -> None:
        """
        Load all persisted resources from a directory.

        Missing or corrupt files degrade to empty defaults instead of failing.

        Args:
            directory: Directory holding the store files (created if missing)
        """
        self.directory = Path(directory).expanduser()
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Could not create store directory {self.directory}: {e}")

        self.overrides_path = self.directory / OVERRIDES_FILE
        self.ledger_path = self.directory / LEDGER_FILE
        self.settings_path = self.directory / SETTINGS_FILE
        self.activity_path = self.directory / ACTIVITY_FILE
        self.reminders_path = self.directory / REMINDERS_FILE

        self._overrides_lock = asyncio.Lock()
        self._ledger_lock = asyncio.Lock()
        self._settings_lock = asyncio.Lock()
        self._activity_lock = asyncio.Lock()
        self._reminders_lock = asyncio.Lock()

        self._overrides = self._load_overrides()
        self._ledger = self._load_ledger()
        self._settings = self._load_settings()
        self._activity = self._load_activity()
        self._reminders = self._load_reminders()

        logger.debug(
            f"Loaded store from {self.directory}: {len(self._overrides)} overrides, "
            f"{len(self._ledger)} ledger entries, {len(self._activity)} activity events"
        )

    # Loading

    def _load_overrides(self) -> dict[str, PullRequestOverride]:
        data = _read_json(self.overrides_path, dict) or {}
        overrides = {}
        for pr_id, raw in data.items():
            if isinstance(raw, dict):
                overrides[pr_id] = PullRequestOverride.from_dict(raw)
        return overrides

    def _load_ledger(self) -> dict[str, datetime]:
        data = _read_json(self.ledger_path, dict) or {}
        ledger = {}
        for key, raw in data.items():
            timestamp = parse_timestamp(raw)
            if timestamp is not None:
                ledger[key] = timestamp
        return ledger

    def _load_settings(self) -> AppSettings:
        data = _read_json(self.settings_path, dict)
        if data is None:
            return AppSettings()
        # from_dict never reads a token, so nothing on disk can populate it
        return AppSettings.from_dict(data)

    def _load_activity(self) -> list[ActivityEvent]:
        data = _read_json(self.activity_path, list) or []
        events = []
        for raw in data:
            if isinstance(raw, dict):
                event = ActivityEvent.from_dict(raw)
                if event is not None:
                    events.append(event)
        return events

    def _load_reminders(self) -> dict[str, dict[str, Any]]:
        data = _read_json(self.reminders_path, dict) or {}
        return {key: raw for key, raw in data.items() if isinstance(raw, dict)}

    async def _persist(self, resource: str, path: Path, payload: Any) -> None:
        try:
            await asyncio.to_thread(_atomic_write_json, path, payload)
        except OSError as e:
            logger.error(f"Failed to write {path}: {e}")
            raise StoreError(resource, str(e)) from e

    # Overrides

    async def get_override(self, pr_id: str) -> PullRequestOverride:
        """Return the override for a PR id, or the empty override if none is recorded."""
        async with self._overrides_lock:
            override = self._overrides.get(pr_id)
            if override is None:
                return PullRequestOverride()
            return PullRequestOverride(state=override.state, snoozed_until=override.snoozed_until)

    async def set_override(self, pr_id: str, override: PullRequestOverride) -> None:
        """
        Replace the override for a PR id and persist it before returning.

        Raises:
            StoreError: If the overrides file cannot be written
        """
        async with self._overrides_lock:
            updated = dict(self._overrides)
            updated[pr_id] = PullRequestOverride(
                state=override.state, snoozed_until=override.snoozed_until
            )
            await self._persist(
                "overrides",
                self.overrides_path,
                {key: value.to_dict() for key, value in updated.items()},
            )
            self._overrides = updated

    # Notification ledger

    async def get_ledger_timestamp(self, key: str) -> datetime | None:
        """Return when a notification with this key was last sent, if ever."""
        async with self._ledger_lock:
            return self._ledger.get(key)

    async def set_ledger_timestamp(self, key: str, timestamp: datetime) -> None:
        """
        Record when a notification with this key was sent.

        Raises:
            StoreError: If the ledger file cannot be written
        """
        async with self._ledger_lock:
            updated = dict(self._ledger)
            updated[key] = timestamp
            await self._persist(
                "ledger",
                self.ledger_path,
                {k: format_timestamp(v) for k, v in updated.items()},
            )
            self._ledger = updated

    # Settings

    async def get_settings(self) -> AppSettings:
        async with self._settings_lock:
            return AppSettings.from_dict(self._settings.to_dict())

    async def set_settings(self, settings: AppSettings) -> None:
        """
        Persist settings. The token is stripped and never written to disk.

        Raises:
            StoreError: If the settings file cannot be written
        """
        async with self._settings_lock:
            sanitized = AppSettings.from_dict(settings.to_dict())
            await self._persist("settings", self.settings_path, sanitized.to_dict())
            self._settings = sanitized

    # Activity log

    async def append_activity(self, event: ActivityEvent, now: datetime | None = None) -> None:
        """
        Append an event to the activity log, pruning events past the retention window.

        Raises:
            StoreError: If the activity file cannot be written
        """
        if now is None:
            now = datetime.now(UTC)
        cutoff = now - ACTIVITY_RETENTION
        async with self._activity_lock:
            updated = [existing for existing in self._activity if existing.date >= cutoff]
            updated.append(event)
            await self._persist(
                "activity", self.activity_path, [item.to_dict() for item in updated]
            )
            pruned = len(self._activity) + 1 - len(updated)
            if pruned:
                logger.debug(f"Pruned {pruned} activity events older than {cutoff.isoformat()}")
            self._activity = updated

    async def recent_activity(self, since: datetime) -> list[ActivityEvent]:
        """Return events dated at or after `since`, in log order."""
        async with self._activity_lock:
            return [event for event in self._activity if event.date >= since]

    # Pending reminders

    async def get_reminders(self) -> dict[str, dict[str, Any]]:
        """Return the pending reminders keyed by notification identifier."""
        async with self._reminders_lock:
            return {key: dict(raw) for key, raw in self._reminders.items()}

    async def set_reminders(self, reminders: dict[str, dict[str, Any]]) -> None:
        """
        Replace the pending reminders.

        Raises:
            StoreError: If the reminders file cannot be written
        """
        async with self._reminders_lock:
            updated = {key: dict(raw) for key, raw in reminders.items()}
            await self._persist("reminders", self.reminders_path, updated)
            self._reminders = updated

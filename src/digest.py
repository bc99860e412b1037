"""Activity digest computation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from models import ActivityEvent, ActivityEventType, DigestCadence, DigestSnapshot

DIGEST_NA_LABEL = "N/A"
DIGEST_OFF_LABEL = "Off"


def digest_cutoff(cadence: DigestCadence, now: datetime | None = None) -> datetime:
    """Start of the trailing window for a cadence (equal to now when off)."""
    if now is None:
        now = datetime.now(UTC)
    return now - timedelta(days=cadence.days)


def make_digest_snapshot(
    events: list[ActivityEvent],
    cadence: DigestCadence,
    now: datetime | None = None,
) -> DigestSnapshot:
    """
    Count activity events over the trailing window of a cadence.

    Args:
        events: Activity events in any order
        cadence: Digest cadence (off, weekly = 7 days, biWeekly = 14 days)
        now: Reference instant (default: current UTC time)

    Returns:
        DigestSnapshot with opened/reviewed counts. When the cadence is off the
        counts are zero and the timeframe is the N/A sentinel.
    """
    if cadence is DigestCadence.OFF:
        return DigestSnapshot(opened_count=0, reviewed_count=0, timeframe_description=DIGEST_NA_LABEL)

    cutoff = digest_cutoff(cadence, now)
    recent = [event for event in events if event.date >= cutoff]
    opened = sum(1 for event in recent if event.type is ActivityEventType.OPENED_MY_PR)
    reviewed = sum(1 for event in recent if event.type is ActivityEventType.REVIEWED_PR)

    return DigestSnapshot(
        opened_count=opened,
        reviewed_count=reviewed,
        timeframe_description=f"last {cadence.days} days",
    )

"""Unit tests for digest computation."""

from __future__ import annotations

from datetime import timedelta

import pytest

from digest import DIGEST_NA_LABEL, digest_cutoff, make_digest_snapshot
from models import ActivityEvent, ActivityEventType, DigestCadence


@pytest.fixture
def events(now):
    """Activity spread over the last three weeks."""
    return [
        ActivityEvent(type=ActivityEventType.OPENED_MY_PR, date=now - timedelta(days=1)),
        ActivityEvent(type=ActivityEventType.REVIEWED_PR, date=now - timedelta(days=2)),
        ActivityEvent(type=ActivityEventType.REVIEWED_PR, date=now - timedelta(days=6)),
        ActivityEvent(type=ActivityEventType.OPENED_MY_PR, date=now - timedelta(days=10)),
        ActivityEvent(type=ActivityEventType.REVIEWED_PR, date=now - timedelta(days=20)),
    ]


def test_weekly_counts(events, now):
    snapshot = make_digest_snapshot(events, DigestCadence.WEEKLY, now)

    assert snapshot.opened_count == 1
    assert snapshot.reviewed_count == 2
    assert snapshot.timeframe_description == "last 7 days"


def test_bi_weekly_counts(events, now):
    snapshot = make_digest_snapshot(events, DigestCadence.BI_WEEKLY, now)

    assert snapshot.opened_count == 2
    assert snapshot.reviewed_count == 2
    assert snapshot.timeframe_description == "last 14 days"


def test_off_is_zero_regardless_of_events(events, now):
    """Test that a disabled digest reports zero counts and the N/A sentinel."""
    snapshot = make_digest_snapshot(events, DigestCadence.OFF, now)

    assert snapshot.opened_count == 0
    assert snapshot.reviewed_count == 0
    assert snapshot.timeframe_description == DIGEST_NA_LABEL


def test_event_on_cutoff_is_counted(now):
    """Test that the window start is inclusive."""
    event = ActivityEvent(type=ActivityEventType.OPENED_MY_PR, date=now - timedelta(days=7))
    assert make_digest_snapshot([event], DigestCadence.WEEKLY, now).opened_count == 1


def test_empty_log(now):
    snapshot = make_digest_snapshot([], DigestCadence.WEEKLY, now)
    assert (snapshot.opened_count, snapshot.reviewed_count) == (0, 0)


def test_cutoff(now):
    assert digest_cutoff(DigestCadence.BI_WEEKLY, now) == now - timedelta(days=14)

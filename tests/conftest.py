"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from models import (
    MergeableState,
    PullRequest,
    PullRequestDetail,
    PullRequestOverride,
    Review,
    ReviewDecision,
    ReviewState,
)
from store import PullRequestStore

NOW = datetime(2025, 10, 22, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def now() -> datetime:
    """A fixed reference instant (Wednesday noon UTC)."""
    return NOW


@pytest.fixture
def make_pr() -> Callable[..., PullRequest]:
    """Provide a factory for PullRequest objects with sensible defaults."""

    def _make_pr(
        pr_id: str = "PR_1",
        number: int = 123,
        title: str = "Add status calculation",
        repository: str = "octo-org/pr-pulse",
        author: str = "alice",
        is_draft: bool = False,
        mergeable: MergeableState = MergeableState.MERGEABLE,
        review_decision: ReviewDecision | None = None,
        latest_commit_at: datetime | None = None,
        reviews: list[Review] | None = None,
        override: PullRequestOverride | None = None,
        updated_at: datetime | None = None,
    ) -> PullRequest:
        return PullRequest(
            id=pr_id,
            number=number,
            title=title,
            url=f"https://github.com/{repository}/pull/{number}",
            repository=repository,
            author=author,
            created_at=NOW - timedelta(days=3),
            updated_at=updated_at or NOW - timedelta(hours=1),
            is_draft=is_draft,
            detail=PullRequestDetail(
                mergeable=mergeable,
                review_decision=review_decision,
                latest_commit_at=latest_commit_at,
                reviews=reviews or [],
            ),
            override=override or PullRequestOverride(),
        )

    return _make_pr


@pytest.fixture
def review() -> Callable[..., Review]:
    """Provide a factory for Review objects submitted relative to NOW."""

    def _review(
        reviewer: str, state: ReviewState, minutes_ago: int = 0
    ) -> Review:
        return Review(
            reviewer=reviewer,
            state=state,
            submitted_at=NOW - timedelta(minutes=minutes_ago),
        )

    return _review


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    """Return a fresh directory for store files."""
    return tmp_path / "pr-pulse"


@pytest.fixture
def store(store_dir: Path) -> PullRequestStore:
    """Provide a store backed by a temporary directory."""
    return PullRequestStore(store_dir)

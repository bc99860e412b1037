"""GitHub search query and URL generation utilities."""

from __future__ import annotations

import logging
from urllib.parse import quote_plus

from models import PullRequestTab

logger = logging.getLogger(__name__)

# GitHub caps owner (39) + "/" + repository (100) names
MAX_REPOSITORY_NAME_LENGTH = 140


def build_search_query(tab: PullRequestTab, repository: str | None = None) -> str:
    """
    Build the GitHub search query for a dashboard tab.

    Args:
        tab: Dashboard tab
        repository: Repository name with owner; required for the watched tab

    Returns:
        Search query string (e.g., "is:pr is:open author:@me sort:updated-desc")

    Raises:
        ValueError: If the watched tab is requested without a valid repository
    """
    if tab is PullRequestTab.MINE:
        return "is:pr is:open author:@me sort:updated-desc"
    if tab is PullRequestTab.REVIEW_REQUESTED:
        return "is:pr is:open review-requested:@me sort:updated-desc"

    if not repository or not repository.strip():
        raise ValueError("Repository cannot be empty for the watched tab")
    repository = repository.strip()
    if "/" not in repository:
        raise ValueError(f"Repository '{repository}' must be in 'owner/name' form")
    if len(repository) > MAX_REPOSITORY_NAME_LENGTH:
        logger.warning(
            f"Repository name '{repository}' exceeds GitHub's length limits. "
            "Search may not work correctly."
        )
    return f"repo:{repository} is:pr is:open sort:updated-desc"


def build_tab_search_url(tab: PullRequestTab, repository: str | None = None) -> str:
    """
    Build a browser URL showing the same pull requests as a dashboard tab.

    Returns:
        Fully encoded GitHub search URL (https://github.com/pulls?q=...)

    Raises:
        ValueError: If the query cannot be built
    """
    query = build_search_query(tab, repository)
    url = f"https://github.com/pulls?q={quote_plus(query)}"
    logger.debug(f"Generated GitHub search URL for {tab.value}: {url}")
    return url

"""GitHub clients implementing the pull request fetch contract."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import requests
from github import Auth, Github, GithubException

from models import (
    MergeableState,
    PullRequest,
    PullRequestDetail,
    PullRequestPage,
    PullRequestTab,
    RepositorySubscription,
    Review,
    ReviewDecision,
    ReviewState,
    parse_timestamp,
)
from url_builder import build_search_query

logger = logging.getLogger(__name__)

GRAPHQL_ENDPOINT = "https://api.github.com/graphql"

SEARCH_PULL_REQUESTS_QUERY = """
query SearchPRs($query: String!, $first: Int!, $after: String) {
  search(query: $query, type: ISSUE, first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    nodes {
      ... on PullRequest {
        id
        number
        title
        url
        createdAt
        updatedAt
        isDraft
        author { login }
        repository { nameWithOwner }
      }
    }
  }
}
"""

PULL_REQUEST_DETAILS_QUERY = """
query PRDetails($ids: [ID!]!) {
  nodes(ids: $ids) {
    ... on PullRequest {
      id
      mergeable
      reviewDecision
      commits(last: 1) {
        nodes { commit { committedDate } }
      }
      reviews(last: 50) {
        nodes {
          author { login }
          state
          submittedAt
        }
      }
    }
  }
}
"""


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


class GitHubClientError(Exception):
    """Base class for transport and API failures."""


class MissingTokenError(GitHubClientError):
    """Raised when no GitHub token is available."""

    def __init__(self) -> None:
        super().__init__("GitHub token missing. Save a token with `pr-pulse token set` first.")


class InvalidResponseError(GitHubClientError):
    """Raised when GitHub returns a response that cannot be decoded."""

    def __init__(self, detail: str = "") -> None:
        message = "GitHub API returned an invalid response."
        super().__init__(f"{message} {detail}".strip())


class GraphQLError(GitHubClientError):
    """Raised when a GraphQL response carries errors."""

    def __init__(self, messages: list[str]) -> None:
        self.messages = messages
        super().__init__("\n".join(messages))


class APIFailureError(GitHubClientError):
    """Raised for HTTP failures, timeouts and connection errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class GitHubClient(ABC):
    """
    Fetch contract consumed by the dashboard.

    Which implementation is used is a wiring decision made by the caller.
    """

    @abstractmethod
    async def fetch_viewer(self) -> str:
        """Return the login of the authenticated user."""

    @abstractmethod
    async def fetch_pull_requests(
        self, tab: PullRequestTab, cursor: str | None = None
    ) -> PullRequestPage:
        """
        Return one page of pull requests for a tab.

        Args:
            tab: Dashboard tab to fetch
            cursor: Opaque cursor from the previous page; None for the first page
        """


class GitHubAPIClient(GitHubClient):
    """
    Client for GitHub's GraphQL API.

    Pull requests are found with the search API (one page per call) and then
    enriched with a single batched `nodes(ids:)` query for mergeability, review
    decision, last commit date and reviews. The viewer login is resolved with
    PyGithub. Blocking HTTP calls run in a worker thread so they never stall
    the event loop.
    """

    def __init__(
        self,
        token_provider: Callable[[], str | None],
        watched_repositories_provider: Callable[[], list[RepositorySubscription]] | None = None,
        page_size: int = 20,
        timeout: int = 30,
        session: requests.Session | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            token_provider: Returns the GitHub token (read on every call, never cached)
            watched_repositories_provider: Returns the watched repositories for the watched tab
            page_size: Number of pull requests per search page (default: 20)
            timeout: Request timeout in seconds (default: 30)
            session: Optional requests session (default: a new session)
        """
        self.token_provider = token_provider
        self.watched_repositories_provider = watched_repositories_provider or (lambda: [])
        self.page_size = page_size
        self.timeout = timeout
        self.session = session or requests.Session()

    def _require_token(self) -> str:
        token = self.token_provider()
        if not token:
            raise MissingTokenError()
        return token

    async def fetch_viewer(self) -> str:
        token = self._require_token()
        return await asyncio.to_thread(self._fetch_viewer_login, token)

    def _fetch_viewer_login(self, token: str) -> str:
        try:
            client = Github(auth=Auth.Token(token), timeout=self.timeout)
            login = client.get_user().login
        except GithubException as e:
            raise APIFailureError(f"Viewer lookup failed: {e}", status_code=e.status) from e
        except requests.RequestException as e:
            raise APIFailureError(f"Viewer lookup failed: {e}") from e
        logger.debug(f"Resolved viewer login: {login}")
        return login

    async def fetch_pull_requests(
        self, tab: PullRequestTab, cursor: str | None = None
    ) -> PullRequestPage:
        return await asyncio.to_thread(self._fetch_pull_requests_sync, tab, cursor)

    def _fetch_pull_requests_sync(
        self, tab: PullRequestTab, cursor: str | None
    ) -> PullRequestPage:
        try:
            return self._fetch_and_decode(tab, cursor)
        except (AttributeError, KeyError, TypeError) as e:
            raise InvalidResponseError(f"Unexpected response shape: {e}") from e

    def _fetch_and_decode(self, tab: PullRequestTab, cursor: str | None) -> PullRequestPage:
        if tab is PullRequestTab.WATCHED:
            page = self._fetch_watched_page(cursor)
        else:
            page = self._fetch_search_page(build_search_query(tab), cursor)

        if not page.items:
            return page

        details = self._fetch_details([item.id for item in page.items])
        for item in page.items:
            detail = details.get(item.id)
            if detail is not None:
                item.detail = detail

        logger.debug(
            f"Fetched {len(page.items)} PRs for tab {tab.value} "
            f"(has_next_page={page.has_next_page})"
        )
        return page

    def _fetch_search_page(self, query: str, cursor: str | None) -> PullRequestPage:
        data = self._perform_graphql(
            SEARCH_PULL_REQUESTS_QUERY,
            {"query": query, "first": self.page_size, "after": cursor},
        )
        search = data.get("search")
        if not isinstance(search, dict):
            raise InvalidResponseError("Missing search connection.")

        items = []
        dropped = 0
        for node in _as_list(search.get("nodes")):
            pr = self._parse_search_node(node)
            if pr is None:
                dropped += 1
                continue
            items.append(pr)
        if dropped:
            logger.debug(f"Dropped {dropped} malformed search result(s) for query '{query}'")

        page_info = _as_dict(search.get("pageInfo"))
        end_cursor = page_info.get("endCursor")
        return PullRequestPage(
            items=items,
            cursor=end_cursor if isinstance(end_cursor, str) else None,
            has_next_page=bool(page_info.get("hasNextPage", False)),
        )

    def _fetch_watched_page(self, cursor: str | None) -> PullRequestPage:
        """
        Merge the latest page of every watched repository into a single page.

        Only the first page exists for the watched tab; any cursor yields an
        empty final page.
        """
        if cursor is not None:
            return PullRequestPage(items=[], cursor=None, has_next_page=False)

        repositories: list[str] = []
        for subscription in self.watched_repositories_provider():
            name = subscription.name_with_owner.strip()
            if name and name not in repositories:
                repositories.append(name)

        if not repositories:
            return PullRequestPage(items=[], cursor=None, has_next_page=False)

        by_id: dict[str, PullRequest] = {}
        for repository in repositories:
            try:
                query = build_search_query(PullRequestTab.WATCHED, repository)
            except ValueError as e:
                logger.warning(f"Skipping watched repository: {e}")
                continue
            for item in self._fetch_search_page(query, None).items:
                existing = by_id.get(item.id)
                if existing is None or item.updated_at > existing.updated_at:
                    by_id[item.id] = item

        top = sorted(by_id.values(), key=lambda pr: pr.updated_at, reverse=True)
        return PullRequestPage(items=top[: self.page_size], cursor=None, has_next_page=False)

    def _fetch_details(self, ids: list[str]) -> dict[str, PullRequestDetail]:
        if not ids:
            return {}
        data = self._perform_graphql(PULL_REQUEST_DETAILS_QUERY, {"ids": ids})

        details: dict[str, PullRequestDetail] = {}
        for node in _as_list(data.get("nodes")):
            if not isinstance(node, dict) or not isinstance(node.get("id"), str):
                continue
            details[node["id"]] = self._parse_detail_node(node)
        return details

    def _perform_graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """
        POST a GraphQL query and return its `data` payload.

        Raises:
            MissingTokenError: If no token is available
            APIFailureError: On HTTP errors, timeouts or connection failures
            GraphQLError: If the response carries GraphQL errors
            InvalidResponseError: If the response cannot be decoded
        """
        token = self._require_token()
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
        }
        try:
            response = self.session.post(
                GRAPHQL_ENDPOINT,
                json={"query": query, "variables": variables},
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise APIFailureError(f"GitHub API request timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise APIFailureError(f"GitHub API request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            message = f"GitHub API error {response.status_code}"
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("message"):
                    message = body["message"]
            except ValueError:
                pass
            raise APIFailureError(message, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise InvalidResponseError("Body is not JSON.") from e
        if not isinstance(body, dict):
            raise InvalidResponseError()

        errors = body.get("errors")
        if errors:
            messages = [
                error.get("message", "Unknown GraphQL error")
                for error in _as_list(errors)
                if isinstance(error, dict)
            ]
            raise GraphQLError(messages or ["Unknown GraphQL error"])

        data = body.get("data")
        if not isinstance(data, dict):
            raise InvalidResponseError("Missing data payload.")
        return data

    @staticmethod
    def _parse_search_node(node: Any) -> PullRequest | None:
        """Build a PullRequest from a search node, or None if required fields are missing."""
        if not isinstance(node, dict):
            return None
        pr_id = node.get("id")
        number = node.get("number")
        title = node.get("title")
        url = node.get("url")
        repository = _as_dict(node.get("repository")).get("nameWithOwner")
        created_at = parse_timestamp(node.get("createdAt"))
        updated_at = parse_timestamp(node.get("updatedAt"))
        if not (
            isinstance(pr_id, str)
            and isinstance(number, int)
            and isinstance(title, str)
            and isinstance(url, str)
            and isinstance(repository, str)
            and created_at is not None
            and updated_at is not None
        ):
            return None

        author = _as_dict(node.get("author")).get("login")
        if not isinstance(author, str) or not author:
            author = "unknown"
        return PullRequest(
            id=pr_id,
            number=number,
            title=title,
            url=url,
            repository=repository,
            author=author,
            created_at=created_at,
            updated_at=updated_at,
            is_draft=bool(node.get("isDraft", False)),
        )

    @staticmethod
    def _parse_detail_node(node: dict[str, Any]) -> PullRequestDetail:
        try:
            mergeable = MergeableState(node.get("mergeable") or MergeableState.UNKNOWN.value)
        except (ValueError, TypeError):
            mergeable = MergeableState.UNKNOWN

        review_decision = None
        if node.get("reviewDecision"):
            try:
                review_decision = ReviewDecision(node["reviewDecision"])
            except (ValueError, TypeError):
                review_decision = None

        latest_commit_at = None
        commit_nodes = _as_list(_as_dict(node.get("commits")).get("nodes"))
        if commit_nodes and isinstance(commit_nodes[-1], dict):
            commit = _as_dict(commit_nodes[-1].get("commit"))
            latest_commit_at = parse_timestamp(commit.get("committedDate"))

        reviews = []
        for raw in _as_list(_as_dict(node.get("reviews")).get("nodes")):
            if not isinstance(raw, dict):
                continue
            reviewer = _as_dict(raw.get("author")).get("login")
            submitted_at = parse_timestamp(raw.get("submittedAt"))
            try:
                state = ReviewState(raw.get("state"))
            except (ValueError, TypeError):
                # PENDING reviews and unknown states carry no signal
                continue
            if not isinstance(reviewer, str) or not reviewer or submitted_at is None:
                continue
            reviews.append(Review(reviewer=reviewer, state=state, submitted_at=submitted_at))

        return PullRequestDetail(
            mergeable=mergeable,
            review_decision=review_decision,
            latest_commit_at=latest_commit_at,
            reviews=reviews,
        )


class MockGitHubClient(GitHubClient):
    """Serves a deterministic in-memory dataset; the cursor is a stringified offset."""

    def __init__(
        self,
        current_user: str = "octocat",
        page_size: int = 20,
        latency: float = 0.15,
        now: datetime | None = None,
    ) -> None:
        self.current_user = current_user
        self.page_size = page_size
        self.latency = latency
        self.dataset = self._make_dataset(current_user, now or datetime.now(UTC))

    async def fetch_viewer(self) -> str:
        return self.current_user

    async def fetch_pull_requests(
        self, tab: PullRequestTab, cursor: str | None = None
    ) -> PullRequestPage:
        items = self.dataset[tab]
        start = int(cursor) if cursor and cursor.isdigit() else 0
        end = min(start + self.page_size, len(items))
        has_next = end < len(items)

        if self.latency:
            await asyncio.sleep(self.latency)

        return PullRequestPage(
            items=items[start:end],
            cursor=str(end) if has_next else None,
            has_next_page=has_next,
        )

    @staticmethod
    def _make_dataset(
        current_user: str, now: datetime
    ) -> dict[PullRequestTab, list[PullRequest]]:
        mine: list[PullRequest] = []
        review_requested: list[PullRequest] = []
        watched: list[PullRequest] = []

        for index in range(1, 36):
            is_draft = index % 5 == 0
            repository = f"octo-org/service-{index % 4}"
            if is_draft:
                mergeable = MergeableState.UNKNOWN
            elif index % 2 == 0:
                mergeable = MergeableState.MERGEABLE
            else:
                mergeable = MergeableState.CONFLICTING

            detail = PullRequestDetail(
                mergeable=mergeable,
                review_decision=(
                    ReviewDecision.APPROVED if index % 3 == 0 else ReviewDecision.REVIEW_REQUIRED
                ),
                latest_commit_at=now - timedelta(seconds=index * 18_000),
                reviews=MockGitHubClient._make_reviews(index, current_user, now),
            )
            pr = PullRequest(
                id=f"MOCK_PR_{index}",
                number=1000 + index,
                title=f"Improve reliability of build pipeline {index}",
                url=f"https://github.com/{repository}/pull/{1000 + index}",
                repository=repository,
                author=current_user if index % 2 == 0 else f"collaborator{index}",
                created_at=now - timedelta(seconds=index * 48_000),
                updated_at=now - timedelta(seconds=index * 22_000),
                is_draft=is_draft,
                detail=detail,
            )

            mine.append(pr)
            if index % 2 == 0:
                review_requested.append(pr)
            if index % 3 == 0:
                watched.append(pr)

        return {
            PullRequestTab.MINE: mine,
            PullRequestTab.REVIEW_REQUESTED: review_requested,
            PullRequestTab.WATCHED: watched,
        }

    @staticmethod
    def _make_reviews(index: int, current_user: str, now: datetime) -> list[Review]:
        base = now - timedelta(seconds=index * 11_000)
        reviewers = ["alice", "bob", current_user, "eve"]
        # Rotate instead of shuffling so the dataset is reproducible
        shift = index % len(reviewers)
        reviewers = reviewers[shift:] + reviewers[:shift]
        states = [ReviewState.APPROVED, ReviewState.CHANGES_REQUESTED, ReviewState.COMMENTED]
        return [
            Review(
                reviewer=reviewer,
                state=states[(offset + index) % 3],
                submitted_at=base + timedelta(seconds=offset * 4_000),
            )
            for offset, reviewer in enumerate(reviewers)
        ]

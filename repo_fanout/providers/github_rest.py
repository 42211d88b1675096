"""GitHub provider implementation using PyGithub and REST API."""

import asyncio
from collections.abc import Callable
from typing import TypeVar
from urllib.parse import urlparse

import structlog
from github import Auth, Github, GithubException, RateLimitExceededException  # type: ignore[import-not-found]
from github.PaginatedList import PaginatedList  # type: ignore[import-not-found]
from github.PullRequest import PullRequest as GHPullRequest  # type: ignore[import-not-found]
from github.Repository import Repository as GHRepository  # type: ignore[import-not-found]

from repo_fanout.enums import BuildStatus, ChangeRequestState, ProviderType
from repo_fanout.exceptions import ProviderError, RateLimitedError
from repo_fanout.models.domain import ChangeRequest, ChangeRequestStatus, Repo
from repo_fanout.providers.base import RepoProvider
from repo_fanout.utils.rate_limiter import RateLimiter

log = structlog.get_logger(__name__)

T = TypeVar("T")

SEARCH_PAGE_SIZE = 100
# GitHub code search never returns more than 1000 results
SEARCH_RESULT_CAP = 1000

_BUILD_STATES = {
    "success": BuildStatus.SUCCESS,
    "pending": BuildStatus.PENDING,
    "failure": BuildStatus.FAILURE,
    "error": BuildStatus.FAILURE,
}


async def _run_sync(func: Callable[[], T]) -> T:
    """Run a synchronous function in a thread pool.

    This prevents blocking the event loop when calling synchronous
    PyGithub methods.
    """
    return await asyncio.to_thread(func)


def _error_message(e: GithubException) -> str:
    if isinstance(e.data, dict) and e.data.get("message"):
        return str(e.data["message"])
    return str(e)


class GitHubRestProvider(RepoProvider):
    """GitHub implementation using PyGithub library.

    PyGithub's own retry and request spacing are disabled: pacing is done by
    the shared :class:`RateLimiter`, and failed requests are surfaced instead
    of retried so that the operator decides when to re-run a stage.
    """

    provider_type = ProviderType.GITHUB

    def __init__(
        self,
        token: str,
        limiter: RateLimiter,
        base_url: str = "https://api.github.com",
        clone_protocol: str = "ssh",
    ):
        """Initialize GitHub provider.

        Args:
            token: GitHub personal access token or App token
            limiter: Shared pacing service for API requests
            base_url: GitHub API base URL (for GitHub Enterprise)
            clone_protocol: "ssh" or "https"
        """
        super().__init__(limiter)
        self.token = token.strip() if token else token
        self.base_url = base_url.rstrip("/")
        self.clone_protocol = clone_protocol
        self._client: Github | None = None

    @property
    def web_host(self) -> str:
        """Host serving git and web traffic (api.github.com -> github.com)."""
        host = urlparse(self.base_url).hostname or "github.com"
        return "github.com" if host == "api.github.com" else host

    async def connect(self) -> None:
        """Initialize GitHub client. No request is made until first use."""
        if self._client is None:
            self._client = Github(
                auth=Auth.Token(self.token),
                base_url=self.base_url,
                per_page=SEARCH_PAGE_SIZE,
                retry=None,
                seconds_between_requests=None,
                seconds_between_writes=None,
            )
            log.info("github_connected", base_url=self.base_url)

    async def disconnect(self) -> None:
        """Close GitHub client."""
        if self._client:
            await _run_sync(self._client.close)
            self._client = None

    def _github(self) -> Github:
        if self._client is None:
            raise ProviderError("GitHub provider is not connected")
        return self._client

    def _repo(self, repo: Repo) -> GHRepository:
        # lazy=True builds the object without fetching it
        return self._github().get_repo(repo.name, lazy=True)

    async def _call(self, action: str, func: Callable[[], T], requests: int = 1) -> T:
        """Run a PyGithub call that issues ``requests`` API requests."""
        for _ in range(requests):
            await self.limiter.acquire()

        try:
            return await _run_sync(func)
        except RateLimitExceededException as e:
            log.error("github_rate_limited", action=action, error=_error_message(e))
            raise RateLimitedError(f"GitHub rate limit hit during {action}: {_error_message(e)}", e.status) from e
        except GithubException as e:
            message = _error_message(e)
            log.error("github_request_failed", action=action, status=e.status, error=message)
            lowered = message.lower()
            if e.status in (403, 429) and ("rate limit" in lowered or "abuse" in lowered):
                raise RateLimitedError(f"GitHub rate limit hit during {action}: {message}", e.status) from e
            raise ProviderError(f"GitHub {action} failed: {message}", e.status) from e
        except OSError as e:
            log.error("github_network_error", action=action, error=str(e))
            raise ProviderError(f"GitHub {action} failed: {e}") from e

    async def _all_pages(self, action: str, paginated: PaginatedList) -> list:
        """Fetch every page of a PyGithub list, one rate-limited request per page."""
        items: list = []
        page = 0
        while True:
            current = page
            batch = await self._call(action, lambda: paginated.get_page(current))
            items.extend(batch)
            if len(batch) < SEARCH_PAGE_SIZE:
                return items
            page += 1

    def clone_url(self, full_name: str) -> str:
        if self.clone_protocol == "https":
            return f"https://{self.web_host}/{full_name}.git"
        return f"git@{self.web_host}:{full_name}.git"

    async def search(self, query: str) -> list[Repo]:
        """Search repositories through GitHub code search.

        See https://help.github.com/articles/searching-code/ for the syntax.
        Each result page is one rate-limited request.
        """
        log.info("github_search", query=query)
        results = self._github().search_code(query)

        found: dict[str, Repo] = {}
        page = 0
        while page * SEARCH_PAGE_SIZE < SEARCH_RESULT_CAP:
            current = page
            items = await self._call("code search", lambda: results.get_page(current))
            for item in items:
                gh_repo = item.repository
                if gh_repo.full_name not in found:
                    found[gh_repo.full_name] = Repo(
                        name=gh_repo.full_name,
                        owner=gh_repo.owner.login,
                        provider=self.provider_type,
                        clone_url=self.clone_url(gh_repo.full_name),
                    )
            if len(items) < SEARCH_PAGE_SIZE:
                break
            page += 1

        log.info("github_search_complete", query=query, repos=len(found))
        return [found[name] for name in sorted(found)]

    async def open_change_request(
        self,
        repo: Repo,
        branch: str,
        base: str,
        title: str,
        body: str,
        assignee: str | None = None,
    ) -> ChangeRequest:
        """Open a pull request, reusing the open one for ``branch`` if any."""
        log.info("github_open_pull_request", repo=repo.name, branch=branch, base=base)
        gh_repo = self._repo(repo)

        # GitHub allows one open pull request per head and base, so this is a single page
        existing = await self._call(
            "list pull requests",
            lambda: list(gh_repo.get_pulls(state="open", head=f"{repo.owner}:{branch}", base=base)),
        )

        gh_pr: GHPullRequest
        if existing:
            gh_pr = existing[0]
            log.info("github_pull_request_exists", repo=repo.name, number=gh_pr.number)
        else:
            gh_pr = await self._call(
                "create pull request",
                lambda: gh_repo.create_pull(title=title, body=body, head=branch, base=base),
            )

        if assignee:
            await self._call("assign pull request", lambda: gh_pr.add_to_assignees(assignee))

        return ChangeRequest(number=gh_pr.number, url=gh_pr.html_url, title=gh_pr.title, branch=branch)

    async def change_request_status(self, repo: Repo, number: int) -> ChangeRequestStatus:
        """Collect PR state, reviews and the combined commit status."""
        log.info("github_pull_request_status", repo=repo.name, number=number)
        gh_repo = self._repo(repo)

        gh_pr = await self._call("get pull request", lambda: gh_repo.get_pull(number))
        reviews = await self._all_pages("list reviews", gh_pr.get_reviews())
        combined = await self._call(
            "get combined status",
            lambda: gh_repo.get_commit(gh_pr.head.sha).get_combined_status(),
            requests=2,
        )

        if gh_pr.merged:
            state = ChangeRequestState.MERGED
        elif gh_pr.state == "closed":
            state = ChangeRequestState.CLOSED
        else:
            state = ChangeRequestState.OPEN

        # Only each reviewer's latest verdict counts
        latest: dict[str, str] = {}
        for review in reviews:
            if review.state in ("APPROVED", "CHANGES_REQUESTED", "DISMISSED"):
                latest[review.user.login if review.user else ""] = review.state
        approved = "APPROVED" in latest.values() and "CHANGES_REQUESTED" not in latest.values()

        if combined.total_count == 0:
            build_status = BuildStatus.UNKNOWN
        else:
            build_status = _BUILD_STATES.get(combined.state, BuildStatus.UNKNOWN)

        return ChangeRequestStatus(
            number=gh_pr.number,
            url=gh_pr.html_url,
            state=state,
            mergeable=gh_pr.mergeable,
            approved=approved,
            build_status=build_status,
            head_sha=gh_pr.head.sha,
            merge_commit_sha=gh_pr.merge_commit_sha if state == ChangeRequestState.MERGED else None,
        )

    async def merge_change_request(self, repo: Repo, number: int, commit_sha: str | None = None) -> str | None:
        """Merge the pull request and delete its head branch."""
        log.info("github_merge_pull_request", repo=repo.name, number=number)
        gh_repo = self._repo(repo)

        gh_pr = await self._call("get pull request", lambda: gh_repo.get_pull(number))
        if commit_sha:
            result = await self._call("merge pull request", lambda: gh_pr.merge(sha=commit_sha))
        else:
            result = await self._call("merge pull request", lambda: gh_pr.merge())

        if not result.merged:
            raise ProviderError(f"GitHub refused to merge pull request #{number}: {result.message}")

        branch = gh_pr.head.ref
        try:
            await self._call("delete branch", lambda: gh_repo.get_git_ref(f"heads/{branch}").delete(), requests=2)
        except ProviderError as e:
            # The merge already happened; a leftover branch is not a failure
            log.warning("github_delete_branch_failed", repo=repo.name, branch=branch, error=e.message)

        log.info("github_pull_request_merged", repo=repo.name, number=number, sha=result.sha)
        return result.sha

"""GitLab provider implementation using direct REST API calls."""

import urllib.parse
from typing import Any

import httpx
import structlog

from repo_fanout.enums import BuildStatus, ChangeRequestState, ProviderType
from repo_fanout.exceptions import ProviderError, RateLimitedError
from repo_fanout.models.domain import ChangeRequest, ChangeRequestStatus, Repo
from repo_fanout.providers.base import RepoProvider
from repo_fanout.utils.connection_pool import HTTPConnectionPool
from repo_fanout.utils.rate_limiter import RateLimiter

log = structlog.get_logger(__name__)

SEARCH_PAGE_SIZE = 100

_PIPELINE_STATES = {
    "success": BuildStatus.SUCCESS,
    "failed": BuildStatus.FAILURE,
    "canceled": BuildStatus.FAILURE,
    "skipped": BuildStatus.FAILURE,
}

_MR_STATES = {
    "opened": ChangeRequestState.OPEN,
    "locked": ChangeRequestState.OPEN,
    "merged": ChangeRequestState.MERGED,
    "closed": ChangeRequestState.CLOSED,
}


class GitLabRestProvider(RepoProvider):
    """GitLab implementation using direct REST API v4 calls.

    Supports gitlab.com and self-managed instances.

    GitLab API differences from GitHub:
    - Uses 'iid' (internal ID) for project-scoped merge request numbers
    - Uses 'description' instead of 'body'
    - Uses 'opened' instead of 'open'
    - Uses 'merge_requests' instead of 'pull_requests'
    - Project path must be URL-encoded in API calls

    Search:
        gitlab.com only offers the global ``projects`` scope, so a query
        there matches project names. Self-managed instances are assumed to
        run advanced search (ElasticSearch), where the ``blobs`` scope
        matches file contents and each hit is resolved to its project.
    """

    provider_type = ProviderType.GITLAB

    def __init__(
        self,
        base_url: str,
        token: str,
        limiter: RateLimiter,
        advanced_search: bool = False,
        clone_protocol: str = "ssh",
    ):
        """Initialize GitLab provider.

        Args:
            base_url: GitLab base URL (e.g., https://gitlab.com)
            token: Personal access token with api, read_repository, write_repository scopes
            limiter: Shared pacing service for API requests
            advanced_search: Search blobs (ElasticSearch) instead of projects
            clone_protocol: "ssh" or "https"
        """
        super().__init__(limiter)
        self.base_url = base_url.rstrip("/")
        self.api_base = f"{self.base_url}/api/v4"
        self.token = token
        self.advanced_search = advanced_search
        self.clone_protocol = clone_protocol
        self._pool: HTTPConnectionPool | None = None

    @property
    def web_host(self) -> str:
        return urllib.parse.urlparse(self.base_url).hostname or "gitlab.com"

    async def connect(self) -> None:
        """Create the connection pool. No request is made until first use."""
        if self._pool is None:
            self._pool = HTTPConnectionPool(
                base_url=self.api_base,
                headers={
                    "PRIVATE-TOKEN": self.token,
                    "Content-Type": "application/json",
                },
            )
            log.info("gitlab_connected", base_url=self.base_url, advanced_search=self.advanced_search)

    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @staticmethod
    def _project_path(repo: Repo) -> str:
        return urllib.parse.quote(repo.name, safe="")

    async def _request(self, method: str, path: str, action: str, **kwargs: Any) -> httpx.Response:
        """Send one rate-limited request and map failures to provider errors."""
        if self._pool is None:
            raise ProviderError("GitLab provider is not connected")

        await self.limiter.acquire()
        try:
            response = await getattr(self._pool, method)(path, **kwargs)
        except httpx.HTTPError as e:
            log.error("gitlab_network_error", action=action, error=str(e))
            raise ProviderError(f"GitLab {action} failed: {e}") from e

        if response.status_code >= 400:
            message = self._error_message(response)
            log.error("gitlab_request_failed", action=action, status=response.status_code, error=message)
            if response.status_code == 429:
                raise RateLimitedError(f"GitLab rate limit hit during {action}: {message}", response.status_code)
            raise ProviderError(f"GitLab {action} failed: {message}", response.status_code)

        return response

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(data, dict):
            return str(data.get("message") or data.get("error") or data)
        return str(data)

    def clone_url(self, full_name: str) -> str:
        if self.clone_protocol == "https":
            return f"https://{self.web_host}/{full_name}.git"
        return f"git@{self.web_host}:{full_name}.git"

    def _parse_project(self, data: dict[str, Any]) -> Repo:
        full_name = data["path_with_namespace"]
        namespace = data.get("namespace") or {}
        return Repo(
            name=full_name,
            owner=namespace.get("full_path") or full_name.rsplit("/", 1)[0],
            provider=self.provider_type,
            default_branch=data.get("default_branch"),
            clone_url=self.clone_url(full_name),
        )

    async def _search_pages(self, scope: str, query: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            response = await self._request(
                "get",
                "/search",
                f"{scope} search",
                params={"scope": scope, "search": query, "per_page": SEARCH_PAGE_SIZE, "page": page},
            )
            batch = response.json()
            items.extend(batch)
            if len(batch) < SEARCH_PAGE_SIZE:
                return items
            page += 1

    async def search(self, query: str) -> list[Repo]:
        """Search projects (gitlab.com) or blobs (advanced search).

        See https://docs.gitlab.com/ce/api/search.html#scope-projects and
        https://docs.gitlab.com/ee/user/search/advanced_search_syntax.html.
        """
        log.info("gitlab_search", query=query, advanced_search=self.advanced_search)

        found: dict[str, Repo] = {}
        if self.advanced_search:
            project_ids: list[int] = []
            for blob in await self._search_pages("blobs", query):
                if blob["project_id"] not in project_ids:
                    project_ids.append(blob["project_id"])
            for project_id in project_ids:
                response = await self._request("get", f"/projects/{project_id}", "get project")
                repo = self._parse_project(response.json())
                found[repo.name] = repo
        else:
            for project in await self._search_pages("projects", query):
                repo = self._parse_project(project)
                found[repo.name] = repo

        log.info("gitlab_search_complete", query=query, repos=len(found))
        return [found[name] for name in sorted(found)]

    async def _user_id(self, username: str) -> int:
        response = await self._request("get", "/users", "find user", params={"username": username})
        users = response.json()
        if not users:
            raise ProviderError(f"GitLab user not found: {username}")
        return int(users[0]["id"])

    async def open_change_request(
        self,
        repo: Repo,
        branch: str,
        base: str,
        title: str,
        body: str,
        assignee: str | None = None,
    ) -> ChangeRequest:
        """Open a merge request, reusing the open one for ``branch`` if any."""
        log.info("gitlab_open_merge_request", repo=repo.name, branch=branch, base=base)
        mrs_path = f"/projects/{self._project_path(repo)}/merge_requests"

        list_response = await self._request(
            "get",
            mrs_path,
            "list merge requests",
            params={"state": "opened", "source_branch": branch, "target_branch": base},
        )
        existing = list_response.json()

        if existing:
            mr = existing[0]
            log.info("gitlab_merge_request_exists", repo=repo.name, number=mr["iid"])
        else:
            response = await self._request(
                "post",
                mrs_path,
                "create merge request",
                json={
                    "source_branch": branch,
                    "target_branch": base,
                    "title": title,
                    "description": body,
                    "remove_source_branch": True,
                },
            )
            mr = response.json()

        if assignee:
            user_id = await self._user_id(assignee)
            await self._request(
                "put",
                f"{mrs_path}/{mr['iid']}",
                "assign merge request",
                json={"assignee_ids": [user_id]},
            )

        return ChangeRequest(number=mr["iid"], url=mr["web_url"], title=mr["title"], branch=branch)

    async def change_request_status(self, repo: Repo, number: int) -> ChangeRequestStatus:
        """Collect MR state, approvals and head pipeline status."""
        log.info("gitlab_merge_request_status", repo=repo.name, number=number)
        mr_path = f"/projects/{self._project_path(repo)}/merge_requests/{number}"

        mr = (await self._request("get", mr_path, "get merge request")).json()

        try:
            approvals = (await self._request("get", f"{mr_path}/approvals", "get approvals")).json()
            approved = bool(approvals.get("approved", approvals.get("approvals_left") == 0))
        except ProviderError as e:
            if e.status_code not in (403, 404):
                raise
            # Approvals API unavailable on this tier
            approved = False

        merge_status = mr.get("detailed_merge_status") or mr.get("merge_status")
        if merge_status in ("can_be_merged", "mergeable"):
            mergeable: bool | None = True
        elif merge_status in ("cannot_be_merged", "conflict", "broken_status"):
            mergeable = False
        else:
            mergeable = None

        pipeline = mr.get("head_pipeline") or {}
        pipeline_state = pipeline.get("status")
        if pipeline_state is None:
            build_status = BuildStatus.UNKNOWN
        else:
            build_status = _PIPELINE_STATES.get(pipeline_state, BuildStatus.PENDING)

        return ChangeRequestStatus(
            number=mr["iid"],
            url=mr["web_url"],
            state=_MR_STATES.get(mr["state"], ChangeRequestState.CLOSED),
            mergeable=mergeable,
            approved=approved,
            build_status=build_status,
            head_sha=mr.get("sha"),
            merge_commit_sha=mr.get("merge_commit_sha"),
        )

    async def merge_change_request(self, repo: Repo, number: int, commit_sha: str | None = None) -> str | None:
        """Accept the merge request, removing its source branch."""
        log.info("gitlab_merge_merge_request", repo=repo.name, number=number)

        data: dict[str, Any] = {"should_remove_source_branch": True}
        if commit_sha:
            data["sha"] = commit_sha

        response = await self._request(
            "put",
            f"/projects/{self._project_path(repo)}/merge_requests/{number}/merge",
            "merge merge request",
            json=data,
        )
        mr = response.json()

        log.info("gitlab_merge_request_merged", repo=repo.name, number=number, sha=mr.get("merge_commit_sha"))
        return mr.get("merge_commit_sha")

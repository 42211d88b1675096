"""Tests for repo_fanout/providers/gitlab_rest.py - GitLab REST API provider.

Key GitLab differences tested:
- iid -> change request number
- opened state -> ChangeRequestState.OPEN
- projects scope search on gitlab.com, blobs scope on advanced-search instances
- head_pipeline status -> BuildStatus
"""

from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from repo_fanout.enums import BuildStatus, ChangeRequestState
from repo_fanout.exceptions import ProviderError, RateLimitedError
from repo_fanout.models.domain import Repo
from repo_fanout.providers.gitlab_rest import SEARCH_PAGE_SIZE, GitLabRestProvider
from repo_fanout.utils.connection_pool import HTTPConnectionPool
from repo_fanout.utils.rate_limiter import RateLimiter

# =============================================================================
# Fixtures
# =============================================================================


def _response(status_code: int, data: Any) -> httpx.Response:
    return httpx.Response(status_code, json=data, request=httpx.Request("GET", "https://gitlab.example.com"))


def _project(path: str, project_id: int = 1) -> dict:
    return {
        "id": project_id,
        "path_with_namespace": path,
        "namespace": {"full_path": path.rsplit("/", 1)[0]},
        "default_branch": "main",
    }


@pytest.fixture
def limiter() -> RateLimiter:
    limiter = RateLimiter.unlimited()
    limiter.acquire = AsyncMock()
    return limiter


@pytest.fixture
def mock_pool() -> AsyncMock:
    return AsyncMock(spec=HTTPConnectionPool)


@pytest.fixture
def provider(limiter, mock_pool) -> GitLabRestProvider:
    provider = GitLabRestProvider(base_url="https://gitlab.example.com/", token="glpat-test", limiter=limiter)
    provider._pool = mock_pool
    return provider


@pytest.fixture
def gitlab_repo(provider) -> Repo:
    return provider.repos_from_names(["group/sub/proj"])[0]


@pytest.fixture
def sample_mr() -> dict:
    return {
        "iid": 12,
        "title": "Bump base image",
        "web_url": "https://gitlab.example.com/group/sub/proj/-/merge_requests/12",
        "state": "opened",
        "detailed_merge_status": "mergeable",
        "head_pipeline": {"status": "success"},
        "sha": "abc123",
    }


# =============================================================================
# Basics
# =============================================================================


class TestGitLabRestProviderBasics:
    def test_init(self, limiter):
        provider = GitLabRestProvider(base_url="https://gitlab.com/", token="t", limiter=limiter)

        assert provider.base_url == "https://gitlab.com"
        assert provider.api_base == "https://gitlab.com/api/v4"
        assert provider.clone_url("g/p") == "git@gitlab.com:g/p.git"

    def test_repos_from_names_keeps_nested_namespace(self, gitlab_repo):
        assert gitlab_repo.name == "group/sub/proj"
        assert gitlab_repo.owner == "group/sub"
        assert gitlab_repo.short_name == "proj"

    @pytest.mark.asyncio
    async def test_connect_creates_pool_without_request(self, limiter):
        provider = GitLabRestProvider(base_url="https://gitlab.com", token="t", limiter=limiter)

        await provider.connect()
        try:
            assert isinstance(provider._pool, HTTPConnectionPool)
            limiter.acquire.assert_not_awaited()
        finally:
            await provider.disconnect()
        assert provider._pool is None

    @pytest.mark.asyncio
    async def test_requires_connection(self, limiter, gitlab_repo):
        provider = GitLabRestProvider(base_url="https://gitlab.com", token="t", limiter=limiter)

        with pytest.raises(ProviderError, match="not connected"):
            await provider.merge_change_request(gitlab_repo, 1)


# =============================================================================
# Search
# =============================================================================


class TestGitLabSearch:
    @pytest.mark.asyncio
    async def test_projects_scope(self, provider, mock_pool, limiter):
        mock_pool.get.return_value = _response(200, [_project("g/b", 2), _project("g/a", 1)])

        repos = await provider.search("mp-test")

        assert [r.name for r in repos] == ["g/a", "g/b"]
        assert repos[0].default_branch == "main"
        params = mock_pool.get.call_args.kwargs["params"]
        assert params["scope"] == "projects"
        assert params["search"] == "mp-test"
        assert limiter.acquire.await_count == 1

    @pytest.mark.asyncio
    async def test_projects_scope_paginates(self, provider, mock_pool):
        first = [_project(f"g/p{i}", i) for i in range(SEARCH_PAGE_SIZE)]
        mock_pool.get.side_effect = [_response(200, first), _response(200, [_project("g/zz", 999)])]

        repos = await provider.search("p")

        assert len(repos) == SEARCH_PAGE_SIZE + 1
        assert [c.kwargs["params"]["page"] for c in mock_pool.get.call_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_blobs_scope_resolves_projects(self, provider, mock_pool, limiter):
        provider.advanced_search = True
        mock_pool.get.side_effect = [
            _response(200, [{"project_id": 5}, {"project_id": 5}, {"project_id": 9}]),
            _response(200, _project("g/five", 5)),
            _response(200, _project("g/nine", 9)),
        ]

        repos = await provider.search("filename:Dockerfile")

        assert [r.name for r in repos] == ["g/five", "g/nine"]
        assert mock_pool.get.call_args_list[0].kwargs["params"]["scope"] == "blobs"
        assert mock_pool.get.call_args_list[1].args[0] == "/projects/5"
        assert limiter.acquire.await_count == 3

    @pytest.mark.asyncio
    async def test_search_error(self, provider, mock_pool):
        mock_pool.get.return_value = _response(400, {"error": "scope does not have a valid value"})

        with pytest.raises(ProviderError) as exc_info:
            await provider.search("x")

        assert exc_info.value.status_code == 400
        assert "scope" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_search_rate_limited(self, provider, mock_pool):
        mock_pool.get.return_value = _response(429, {"message": "Retry later"})

        with pytest.raises(RateLimitedError):
            await provider.search("x")

    @pytest.mark.asyncio
    async def test_network_error(self, provider, mock_pool):
        mock_pool.get.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(ProviderError, match="connection refused"):
            await provider.search("x")


# =============================================================================
# Merge requests
# =============================================================================


class TestGitLabMergeRequests:
    @pytest.mark.asyncio
    async def test_open_creates_and_assigns(self, provider, mock_pool, gitlab_repo, sample_mr):
        mock_pool.get.side_effect = [_response(200, []), _response(200, [{"id": 42, "username": "alice"}])]
        mock_pool.post.return_value = _response(201, sample_mr)
        mock_pool.put.return_value = _response(200, sample_mr)

        change_request = await provider.open_change_request(
            gitlab_repo, branch="bump", base="main", title="Bump base image", body="details", assignee="alice"
        )

        assert change_request.number == 12
        assert change_request.url == sample_mr["web_url"]
        post_path = mock_pool.post.call_args.args[0]
        assert post_path == "/projects/group%2Fsub%2Fproj/merge_requests"
        payload = mock_pool.post.call_args.kwargs["json"]
        assert payload["source_branch"] == "bump"
        assert payload["target_branch"] == "main"
        assert payload["description"] == "details"
        assert mock_pool.put.call_args.kwargs["json"] == {"assignee_ids": [42]}

    @pytest.mark.asyncio
    async def test_open_reuses_existing(self, provider, mock_pool, gitlab_repo, sample_mr):
        mock_pool.get.return_value = _response(200, [sample_mr])

        change_request = await provider.open_change_request(gitlab_repo, "bump", "main", "t", "b")

        mock_pool.post.assert_not_called()
        assert change_request.number == 12

    @pytest.mark.asyncio
    async def test_unknown_assignee(self, provider, mock_pool, gitlab_repo, sample_mr):
        mock_pool.get.side_effect = [_response(200, [sample_mr]), _response(200, [])]

        with pytest.raises(ProviderError, match="user not found"):
            await provider.open_change_request(gitlab_repo, "bump", "main", "t", "b", assignee="ghost")

    @pytest.mark.asyncio
    async def test_status_mergeable_approved_passing(self, provider, mock_pool, gitlab_repo, sample_mr):
        mock_pool.get.side_effect = [_response(200, sample_mr), _response(200, {"approved": True})]

        status = await provider.change_request_status(gitlab_repo, 12)

        assert status.state == ChangeRequestState.OPEN
        assert status.mergeable is True
        assert status.approved is True
        assert status.build_status == BuildStatus.SUCCESS
        assert status.head_sha == "abc123"
        assert status.merge_commit_sha is None

    @pytest.mark.asyncio
    async def test_status_without_approvals_api(self, provider, mock_pool, gitlab_repo, sample_mr):
        sample_mr.update(detailed_merge_status="conflict", head_pipeline={"status": "running"})
        mock_pool.get.side_effect = [_response(200, sample_mr), _response(403, {"message": "403 Forbidden"})]

        status = await provider.change_request_status(gitlab_repo, 12)

        assert status.approved is False
        assert status.mergeable is False
        assert status.build_status == BuildStatus.PENDING

    @pytest.mark.asyncio
    async def test_status_merged_without_pipeline(self, provider, mock_pool, gitlab_repo, sample_mr):
        sample_mr.update(state="merged", head_pipeline=None, merge_commit_sha="m3rg3")
        mock_pool.get.side_effect = [_response(200, sample_mr), _response(200, {"approvals_left": 0})]

        status = await provider.change_request_status(gitlab_repo, 12)

        assert status.state == ChangeRequestState.MERGED
        assert status.approved is True
        assert status.build_status == BuildStatus.UNKNOWN
        assert status.merge_commit_sha == "m3rg3"

    @pytest.mark.asyncio
    async def test_merge(self, provider, mock_pool, gitlab_repo):
        mock_pool.put.return_value = _response(200, {"merge_commit_sha": "m3rg3"})

        sha = await provider.merge_change_request(gitlab_repo, 12, commit_sha="abc123")

        assert sha == "m3rg3"
        assert mock_pool.put.call_args.args[0] == "/projects/group%2Fsub%2Fproj/merge_requests/12/merge"
        assert mock_pool.put.call_args.kwargs["json"] == {"should_remove_source_branch": True, "sha": "abc123"}

    @pytest.mark.asyncio
    async def test_merge_rejected(self, provider, mock_pool, gitlab_repo):
        mock_pool.put.return_value = _response(405, {"message": "Method Not Allowed"})

        with pytest.raises(ProviderError) as exc_info:
            await provider.merge_change_request(gitlab_repo, 12)

        assert exc_info.value.status_code == 405

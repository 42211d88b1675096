"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest
import structlog

from repo_fanout.engine.workflow_store import WorkflowStore
from repo_fanout.enums import BuildStatus, ChangeRequestState, ProviderType
from repo_fanout.exceptions import GitOperationError
from repo_fanout.models.domain import ChangeRequest, ChangeRequestStatus, Repo
from repo_fanout.providers.base import RepoProvider
from repo_fanout.utils.rate_limiter import RateLimiter

FANOUT_ENV_VARS = (
    "GITHUB_API_TOKEN",
    "GITLAB_API_TOKEN",
    "GITHUB_URL",
    "GITLAB_URL",
    "GITLAB_ADVANCED_SEARCH",
    "FANOUT_RATE_LIMIT_INTERVAL",
    "FANOUT_WORKERS",
    "FANOUT_CLONE_PROTOCOL",
)


class FakeProvider(RepoProvider):
    """In-memory provider recording every call.

    ``clone`` creates an empty checkout directory unless the repository is
    listed in ``fail_clone``. ``change_request_status`` raises the error
    registered for a repository in ``status_errors``.
    """

    provider_type = ProviderType.GITHUB

    def __init__(self) -> None:
        super().__init__(RateLimiter.unlimited())
        self.search_results: list[Repo] = []
        self.fail_clone: set[str] = set()
        self.cloned: list[str] = []
        self.pushed: list[tuple[str, str]] = []
        self.opened: list[dict] = []
        self.statuses: dict[str, ChangeRequestStatus] = {}
        self.status_errors: dict[str, Exception] = {}
        self.merged: list[tuple[str, int, str | None]] = []

    async def search(self, query: str) -> list[Repo]:
        return list(self.search_results)

    def clone_url(self, full_name: str) -> str:
        return f"git@example.com:{full_name}.git"

    async def clone(self, repo: Repo, dest: Path) -> None:
        if repo.name in self.fail_clone:
            raise GitOperationError("git clone failed", ("clone",), "fatal: repository not found")
        dest.mkdir(parents=True)
        (dest / "README.md").write_text(f"# {repo.short_name}\n")
        self.cloned.append(repo.name)

    async def push_branch(self, repo: Repo, path: Path, branch: str) -> None:
        self.pushed.append((repo.name, branch))

    async def open_change_request(self, repo, branch, base, title, body, assignee=None) -> ChangeRequest:
        self.opened.append(
            {"repo": repo.name, "branch": branch, "base": base, "title": title, "body": body, "assignee": assignee}
        )
        number = len(self.opened)
        return ChangeRequest(
            number=number,
            url=f"https://example.com/{repo.name}/pull/{number}",
            title=title,
            branch=branch,
        )

    async def change_request_status(self, repo: Repo, number: int) -> ChangeRequestStatus:
        if repo.name in self.status_errors:
            raise self.status_errors[repo.name]
        if repo.name in self.statuses:
            return self.statuses[repo.name]
        return ChangeRequestStatus(
            number=number,
            url=f"https://example.com/{repo.name}/pull/{number}",
            state=ChangeRequestState.OPEN,
            mergeable=True,
            approved=True,
            build_status=BuildStatus.SUCCESS,
        )

    async def merge_change_request(self, repo: Repo, number: int, commit_sha: str | None = None) -> str | None:
        self.merged.append((repo.name, number, commit_sha))
        return "m3rg3d"


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove every repo-fanout variable from the environment."""
    for name in FANOUT_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    """Workflow directory (not created)."""
    return tmp_path / "fanout"


@pytest.fixture
def store(work_dir: Path) -> WorkflowStore:
    """WorkflowStore rooted at a temporary directory."""
    return WorkflowStore(work_dir)


@pytest.fixture
def fake_provider() -> FakeProvider:
    """Provider double that never touches the network."""
    return FakeProvider()


@pytest.fixture
def sample_repo() -> Repo:
    """Sample GitHub repository."""
    return Repo(
        name="acme/widgets",
        owner="acme",
        provider=ProviderType.GITHUB,
        default_branch="main",
        clone_url="git@github.com:acme/widgets.git",
    )


@pytest.fixture
def repos_file(tmp_path: Path) -> Path:
    """Repos file listing org/a and org/b."""
    path = tmp_path / "repos.txt"
    path.write_text("org/a\norg/b\n")
    return path


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo configure_logging() calls made by CLI tests."""
    yield
    structlog.reset_defaults()

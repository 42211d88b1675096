"""Tests for repo_fanout/git/client.py and the stages against real git repositories.

A bare repository in tmp_path stands in for the hosting provider's remote.
"""

import shutil
import subprocess
from pathlib import Path
from types import MethodType

import pytest

from repo_fanout.engine.pipeline import OutcomeStatus, StagePipeline
from repo_fanout.engine.stages import CloneStage, PlanStage, PushStage
from repo_fanout.engine.workflow_store import WorkflowStore
from repo_fanout.enums import Stage
from repo_fanout.exceptions import GitOperationError
from repo_fanout.git import client as git_client
from repo_fanout.models.domain import PlanRecord
from repo_fanout.providers.base import RepoProvider
from repo_fanout.utils.rate_limiter import RateLimiter

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def _git(*args: str, cwd: Path) -> str:
    return subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True).stdout.strip()


@pytest.fixture
def git_identity(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Fanout Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "fanout@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Fanout Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "fanout@example.com")


@pytest.fixture
def origin(tmp_path: Path, git_identity) -> Path:
    """Bare repository with one commit on main."""
    seed = tmp_path / "seed"
    seed.mkdir()
    _git("init", "--quiet", cwd=seed)
    _git("checkout", "--quiet", "-b", "main", cwd=seed)
    (seed / "README.md").write_text("hello\n")
    _git("add", "README.md", cwd=seed)
    _git("commit", "--quiet", "-m", "Initial commit", cwd=seed)

    bare = tmp_path / "origin.git"
    _git("clone", "--quiet", "--bare", str(seed), str(bare), cwd=tmp_path)
    return bare


@pytest.fixture
def provider(fake_provider, origin: Path, monkeypatch: pytest.MonkeyPatch):
    """Fake provider whose git transport is real and points at the local remote."""
    monkeypatch.setattr(fake_provider, "clone_url", lambda full_name: str(origin))
    monkeypatch.setattr(fake_provider, "clone", MethodType(RepoProvider.clone, fake_provider))
    monkeypatch.setattr(fake_provider, "push_branch", MethodType(RepoProvider.push_branch, fake_provider))
    return fake_provider


class TestGitClient:
    @pytest.mark.asyncio
    async def test_clone_branch_commit_push(self, origin: Path, tmp_path: Path):
        checkout = tmp_path / "checkout"

        await git_client.clone(str(origin), checkout)

        assert await git_client.current_branch(checkout) == "main"
        base_sha = await git_client.head_sha(checkout)
        assert len(base_sha) == 40

        await git_client.create_branch(checkout, "feature")
        assert await git_client.current_branch(checkout) == "feature"
        assert await git_client.has_changes(checkout) is False

        (checkout / "README.md").write_text("hello\nworld\n")
        (checkout / "NEW.txt").write_text("new file\n")
        assert await git_client.has_changes(checkout) is True

        sha = await git_client.commit_all(checkout, "Add world")
        assert sha != base_sha
        assert await git_client.has_changes(checkout) is False
        diff = await git_client.last_commit_diff(checkout)
        assert "+world" in diff
        assert "NEW.txt" in diff

        await git_client.push(checkout, "feature")
        assert _git("rev-parse", "feature", cwd=origin) == sha

    @pytest.mark.asyncio
    async def test_failed_command_raises_with_stderr(self, tmp_path: Path):
        with pytest.raises(GitOperationError) as exc_info:
            await git_client.clone(str(tmp_path / "missing.git"), tmp_path / "dest")

        assert exc_info.value.command[0] == "clone"
        assert exc_info.value.stderr


class TestStagesWithGit:
    @pytest.mark.asyncio
    async def test_clone_plan_push(self, origin: Path, provider, tmp_path: Path):
        store = WorkflowStore(tmp_path / "fanout")
        pipeline = StagePipeline(store, provider, version="0.1.0", max_workers=2)
        repos_file = tmp_path / "repos.txt"
        repos_file.write_text("org/a\n")
        await pipeline.initialize(repos_file=repos_file)

        clone = await pipeline.run(CloneStage(store, provider))
        assert clone.outcome_for("org/a").status == OutcomeStatus.SUCCEEDED

        command = ["sh", "-c", 'echo "owner=$FANOUT_REPO_OWNER" >> README.md']
        plan = await pipeline.run(PlanStage(store, provider, branch="fanout-test", message="Tag owner", command=command))
        assert plan.outcome_for("org/a").status == OutcomeStatus.SUCCEEDED, plan.outcome_for("org/a").detail

        record = await store.read("org/a", Stage.PLAN, PlanRecord)
        assert record.payload.changed is True
        assert record.payload.base_branch == "main"
        assert "+owner=org" in record.payload.diff
        # The clone itself is left untouched
        assert "owner=org" not in (store.stage_dir("org/a", Stage.CLONE) / "repo" / "README.md").read_text()

        push = await pipeline.run(PushStage(store, provider, throttle=RateLimiter.unlimited()))
        assert push.outcome_for("org/a").status == OutcomeStatus.SUCCEEDED, push.outcome_for("org/a").detail
        assert _git("rev-parse", "fanout-test", cwd=origin) == record.payload.commit_sha
        assert provider.opened[0]["title"] == "Tag owner"

    @pytest.mark.asyncio
    async def test_noop_command_is_unchanged_and_push_skips(self, provider, tmp_path: Path):
        store = WorkflowStore(tmp_path / "fanout")
        pipeline = StagePipeline(store, provider, version="0.1.0")
        repos_file = tmp_path / "repos.txt"
        repos_file.write_text("org/a\n")
        await pipeline.initialize(repos_file=repos_file)
        await pipeline.run(CloneStage(store, provider))

        await pipeline.run(PlanStage(store, provider, branch="noop", message="Nothing", command=["true"]))
        push = await pipeline.run(PushStage(store, provider, throttle=RateLimiter.unlimited()))

        assert push.outcome_for("org/a").status == OutcomeStatus.SKIPPED
        assert push.outcome_for("org/a").detail == "plan produced no changes"
        assert provider.opened == []

"""
Plan stage - Apply the operator's change command to every clone.

For each repository the clone is copied to ``<repo>/plan/repo``, a branch is
created, and the command runs inside the copy with these extra environment
variables:

- ``FANOUT_REPO_NAME``: full ``namespace/name``
- ``FANOUT_REPO_OWNER``: namespace
- ``FANOUT_REPO_SHORT_NAME``: name without namespace

Whatever the command changed is committed on the branch. A command that
changes nothing still succeeds; the push stage skips such repositories.
Re-running the stage starts again from a fresh copy of the clone.
"""

import asyncio
import os
import shutil
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import structlog

from repo_fanout.engine.stages.base import RepoStage
from repo_fanout.engine.workflow_store import WorkflowStore
from repo_fanout.enums import Stage
from repo_fanout.exceptions import StageError
from repo_fanout.git import client as git_client
from repo_fanout.models.domain import CloneRecord, PlanPayload, PlanRecord, Repo, StageRecord
from repo_fanout.providers.base import RepoProvider
from repo_fanout.utils.async_subprocess import run_command

log = structlog.get_logger(__name__)

COMMAND_TIMEOUT = 1800.0


def _copy_checkout(src: Path, dest: Path) -> None:
    if dest.exists():
        shutil.rmtree(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copytree(src, dest, symlinks=True)


def _resolve_command(command: Sequence[str]) -> list[str]:
    """Make a relative script path absolute; the command runs inside each copy."""
    resolved = list(command)
    if resolved and os.sep in resolved[0] and not os.path.isabs(resolved[0]):
        resolved[0] = str(Path(resolved[0]).absolute())
    return resolved


class PlanStage(RepoStage):
    """Run the change command and commit the result on a branch."""

    stage = Stage.PLAN
    requires = Stage.CLONE
    predecessor_model = CloneRecord
    record_model = PlanRecord

    def __init__(
        self,
        store: WorkflowStore,
        provider: RepoProvider,
        branch: str,
        message: str,
        command: Sequence[str],
    ) -> None:
        super().__init__(store, provider)
        if not command:
            raise ValueError("a change command is required")
        self.branch = branch
        self.message = message
        self.command = _resolve_command(command)

    async def process(self, repo: Repo, predecessor: StageRecord[Any] | None) -> PlanPayload:
        assert predecessor is not None and predecessor.payload is not None
        clone = predecessor.payload

        dest = self.store.stage_dir(repo.name, self.stage) / "repo"
        await asyncio.to_thread(_copy_checkout, Path(clone.path), dest)
        await git_client.create_branch(dest, self.branch)

        env = {
            "FANOUT_REPO_NAME": repo.name,
            "FANOUT_REPO_OWNER": repo.owner,
            "FANOUT_REPO_SHORT_NAME": repo.short_name,
        }
        try:
            stdout, stderr, code = await run_command(
                *self.command,
                cwd=dest,
                check=False,
                timeout=COMMAND_TIMEOUT,
                env=env,
            )
        except FileNotFoundError as e:
            raise StageError(f"Command not found: {self.command[0]}") from e
        except TimeoutError as e:
            raise StageError(f"Command timed out after {COMMAND_TIMEOUT:.0f}s") from e

        if code != 0:
            output = stderr.strip() or stdout.strip()
            raise StageError(f"Command exited with status {code}: {output}")

        if not await git_client.has_changes(dest):
            log.info("plan_no_changes", repo=repo.name)
            return PlanPayload(
                path=str(dest),
                branch=self.branch,
                base_branch=clone.default_branch,
                commit_message=self.message,
                command=self.command,
                changed=False,
                commit_sha=await git_client.head_sha(dest),
            )

        commit_sha = await git_client.commit_all(dest, self.message)
        diff = await git_client.last_commit_diff(dest)
        log.info("plan_committed", repo=repo.name, branch=self.branch, sha=commit_sha)

        return PlanPayload(
            path=str(dest),
            branch=self.branch,
            base_branch=clone.default_branch,
            commit_message=self.message,
            command=self.command,
            changed=True,
            commit_sha=commit_sha,
            diff=diff,
        )

"""
Clone stage - Check out every repository of the workflow.

The checkout lives in ``<repo>/clone/repo`` inside the workflow directory.
Re-running the stage deletes it and clones again, so a retry always starts
from the current remote default branch.
"""

import asyncio
import shutil
from pathlib import Path
from typing import Any

import structlog

from repo_fanout.engine.stages.base import RepoStage
from repo_fanout.enums import Stage
from repo_fanout.git import client as git_client
from repo_fanout.models.domain import ClonePayload, CloneRecord, Repo, StageRecord

log = structlog.get_logger(__name__)


def _prepare_destination(dest: Path) -> None:
    if dest.exists():
        shutil.rmtree(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)


class CloneStage(RepoStage):
    """Clone repositories listed by init."""

    stage = Stage.CLONE
    requires = Stage.INIT
    record_model = CloneRecord

    async def process(self, repo: Repo, predecessor: StageRecord[Any] | None) -> ClonePayload:
        dest = self.store.stage_dir(repo.name, self.stage) / "repo"
        await asyncio.to_thread(_prepare_destination, dest)

        await self.provider.clone(repo, dest)

        default_branch = repo.default_branch or await git_client.current_branch(dest)
        commit_sha = await git_client.head_sha(dest)
        log.info("repo_cloned", repo=repo.name, branch=default_branch, sha=commit_sha)

        return ClonePayload(
            path=str(dest),
            clone_url=repo.clone_url,
            default_branch=default_branch,
            commit_sha=commit_sha,
        )

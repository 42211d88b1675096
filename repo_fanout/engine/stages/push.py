"""
Push stage - Publish planned commits and open change requests.

Each push notifies people, so besides the global API rate limiter the stage
waits on the operator's throttle (one push per throttle interval). The
branch is force-pushed and an already open change request for it is reused,
which makes re-running the stage after a re-plan safe.
"""

from pathlib import Path
from typing import Any

import structlog

from repo_fanout.engine.stages.base import RepoStage
from repo_fanout.engine.workflow_store import WorkflowStore
from repo_fanout.enums import Stage
from repo_fanout.models.domain import PlanRecord, PushPayload, PushRecord, Repo, StageRecord
from repo_fanout.providers.base import RepoProvider
from repo_fanout.utils.rate_limiter import RateLimiter

log = structlog.get_logger(__name__)


class PushStage(RepoStage):
    """Push the plan branch and open a pull/merge request."""

    stage = Stage.PUSH
    requires = Stage.PLAN
    predecessor_model = PlanRecord
    record_model = PushRecord

    def __init__(
        self,
        store: WorkflowStore,
        provider: RepoProvider,
        throttle: RateLimiter,
        assignee: str | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(store, provider)
        self.throttle = throttle
        self.assignee = assignee
        self.body = body

    def skip_reason(self, repo: Repo, predecessor: StageRecord[Any] | None) -> str | None:
        if predecessor is not None and predecessor.payload is not None and not predecessor.payload.changed:
            return "plan produced no changes"
        return None

    async def process(self, repo: Repo, predecessor: StageRecord[Any] | None) -> PushPayload:
        assert predecessor is not None and predecessor.payload is not None
        plan = predecessor.payload

        await self.throttle.acquire()
        await self.provider.push_branch(repo, Path(plan.path), plan.branch)

        title = plan.commit_message.strip().splitlines()[0]
        body = self.body if self.body is not None else plan.commit_message
        change_request = await self.provider.open_change_request(
            repo,
            branch=plan.branch,
            base=plan.base_branch,
            title=title,
            body=body,
            assignee=self.assignee,
        )
        log.info("change_request_opened", repo=repo.name, number=change_request.number, url=change_request.url)

        return PushPayload(
            branch=plan.branch,
            base_branch=plan.base_branch,
            commit_sha=plan.commit_sha,
            change_request=change_request,
            assignee=self.assignee,
        )

"""
Merge stage - Merge pushed change requests that pass their gates.

Gates, checked in order:

1. The change request must still be open (already merged counts as success)
2. The push must not be stale: if the plan was re-run after the push, the
   pushed branch no longer matches the plan and push has to run again
3. It must be mergeable (no conflicts)
4. Its review must be approved, unless ``ignore_review_approval``
5. Its build must be passing, unless ``ignore_build_status``

The merge itself is pinned to the pushed commit and paced by the operator's
throttle.
"""

from typing import Any

import structlog

from repo_fanout.engine.stages.base import RepoStage
from repo_fanout.engine.workflow_store import WorkflowStore
from repo_fanout.enums import BuildStatus, ChangeRequestState, Stage
from repo_fanout.exceptions import RecordCorruptedError, RecordNotFoundError, StageError
from repo_fanout.models.domain import MergePayload, MergeRecord, PlanRecord, PushRecord, Repo, StageRecord
from repo_fanout.providers.base import RepoProvider
from repo_fanout.utils.rate_limiter import RateLimiter

log = structlog.get_logger(__name__)


class MergeStage(RepoStage):
    """Merge change requests opened by the push stage."""

    stage = Stage.MERGE
    requires = Stage.PUSH
    predecessor_model = PushRecord
    record_model = MergeRecord

    def __init__(
        self,
        store: WorkflowStore,
        provider: RepoProvider,
        throttle: RateLimiter,
        ignore_review_approval: bool = False,
        ignore_build_status: bool = False,
    ) -> None:
        super().__init__(store, provider)
        self.throttle = throttle
        self.ignore_review_approval = ignore_review_approval
        self.ignore_build_status = ignore_build_status

    async def _check_not_stale(self, repo: Repo, push_record: StageRecord[Any]) -> None:
        try:
            plan_record = await self.store.read(repo.name, Stage.PLAN, PlanRecord)
        except RecordNotFoundError:
            return
        if plan_record.recorded_at > push_record.recorded_at:
            raise StageError("Plan was re-run after the last push; run push again before merging")

    async def _recorded_merge_sha(self, repo: Repo) -> str | None:
        try:
            previous = await self.store.read(repo.name, Stage.MERGE, MergeRecord)
        except (RecordNotFoundError, RecordCorruptedError):
            return None
        if previous.success and previous.payload is not None:
            return previous.payload.merge_commit_sha
        return None

    async def process(self, repo: Repo, predecessor: StageRecord[Any] | None) -> MergePayload:
        assert predecessor is not None and predecessor.payload is not None
        push = predecessor.payload
        number = push.change_request.number

        status = await self.provider.change_request_status(repo, number)

        if status.state == ChangeRequestState.MERGED:
            merge_sha = status.merge_commit_sha or await self._recorded_merge_sha(repo)
            log.info("change_request_already_merged", repo=repo.name, number=number, sha=merge_sha)
            return MergePayload(change_request_number=number, merge_commit_sha=merge_sha, already_merged=True)
        if status.state == ChangeRequestState.CLOSED:
            raise StageError(f"Change request #{number} was closed without merging")

        await self._check_not_stale(repo, predecessor)
        if status.mergeable is False:
            raise StageError(f"Change request #{number} is not mergeable (conflicts?)")
        if not self.ignore_review_approval and not status.approved:
            raise StageError(f"Review of change request #{number} is not approved")
        if not self.ignore_build_status and status.build_status != BuildStatus.SUCCESS:
            raise StageError(f"Build status of change request #{number} is '{status.build_status}', not 'success'")

        await self.throttle.acquire()
        merge_sha = await self.provider.merge_change_request(repo, number, commit_sha=push.commit_sha)
        log.info("change_request_merged", repo=repo.name, number=number, sha=merge_sha)

        return MergePayload(change_request_number=number, merge_commit_sha=merge_sha)

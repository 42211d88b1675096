"""
Status stage - Snapshot the state of every pushed change request.
"""

from typing import Any

import structlog

from repo_fanout.engine.stages.base import RepoStage
from repo_fanout.enums import Stage
from repo_fanout.models.domain import PushRecord, Repo, StageRecord, StatusPayload, StatusRecord

log = structlog.get_logger(__name__)


class StatusStage(RepoStage):
    """Query review, build and merge state of pushed change requests."""

    stage = Stage.STATUS
    requires = Stage.PUSH
    predecessor_model = PushRecord
    record_model = StatusRecord

    async def process(self, repo: Repo, predecessor: StageRecord[Any] | None) -> StatusPayload:
        assert predecessor is not None and predecessor.payload is not None
        number = predecessor.payload.change_request.number

        status = await self.provider.change_request_status(repo, number)
        log.info(
            "change_request_status",
            repo=repo.name,
            number=number,
            state=str(status.state),
            build=str(status.build_status),
            approved=status.approved,
        )
        return StatusPayload(change_request=status)

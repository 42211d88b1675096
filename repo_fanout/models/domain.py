"""
Domain models for repo-fanout.

Everything that is persisted in the workflow directory is a pydantic model so
that it serialises to JSON and validates on the way back in. A record that no
longer matches its model is reported as corrupted by the workflow store.

Example:
    Recording a successful clone::

        record = StageRecord[ClonePayload](
            repo="org/a",
            stage=Stage.CLONE,
            success=True,
            payload=ClonePayload(
                path="/work/fanout/org/a/clone/repo",
                clone_url="git@github.com:org/a.git",
                default_branch="main",
                commit_sha="3f2c0de",
            ),
        )
"""

from datetime import UTC, datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from repo_fanout.enums import BuildStatus, ChangeRequestState, ProviderType, Stage


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Repo(BaseModel):
    """A target repository.

    Attributes:
        name: Full ``namespace/name`` path, the key used by every stage
        owner: Namespace (user, organization or, on GitLab, a nested group)
        provider: Hosting backend the repository lives on
        default_branch: Default branch if known at discovery time
        clone_url: URL passed to ``git clone``
    """

    name: str
    owner: str
    provider: ProviderType
    default_branch: str | None = None
    clone_url: str

    @property
    def short_name(self) -> str:
        """Repository name without its namespace."""
        return self.name.rsplit("/", 1)[-1]


class InitOutput(BaseModel):
    """The single ``init.json`` record describing the whole workflow."""

    version: str
    provider: ProviderType
    query: str | None = None
    repos_file: str | None = None
    repos: list[Repo] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)

    def repo_names(self) -> list[str]:
        return [repo.name for repo in self.repos]


class ChangeRequest(BaseModel):
    """Reference to an opened pull request (GitHub) or merge request (GitLab)."""

    number: int
    url: str
    title: str = ""
    branch: str = ""


class ChangeRequestStatus(BaseModel):
    """Point-in-time status of a change request."""

    number: int
    url: str
    state: ChangeRequestState
    mergeable: bool | None = None
    approved: bool = False
    build_status: BuildStatus = BuildStatus.UNKNOWN
    head_sha: str | None = None
    merge_commit_sha: str | None = None


class ClonePayload(BaseModel):
    path: str
    clone_url: str
    default_branch: str
    commit_sha: str


class PlanPayload(BaseModel):
    path: str
    branch: str
    base_branch: str
    commit_message: str
    command: list[str]
    changed: bool
    commit_sha: str
    diff: str = ""


class PushPayload(BaseModel):
    branch: str
    base_branch: str
    commit_sha: str
    change_request: ChangeRequest
    assignee: str | None = None


class MergePayload(BaseModel):
    change_request_number: int
    merge_commit_sha: str | None = None
    already_merged: bool = False


class StatusPayload(BaseModel):
    change_request: ChangeRequestStatus


PayloadT = TypeVar("PayloadT", bound=BaseModel)


class StageRecord(BaseModel, Generic[PayloadT]):
    """Outcome of one stage for one repository.

    A failed record carries ``error`` and no payload. Re-running the stage
    for the repository overwrites the record.
    """

    repo: str
    stage: Stage
    success: bool
    error: str | None = None
    recorded_at: datetime = Field(default_factory=_utcnow)
    payload: PayloadT | None = None


CloneRecord = StageRecord[ClonePayload]
PlanRecord = StageRecord[PlanPayload]
PushRecord = StageRecord[PushPayload]
MergeRecord = StageRecord[MergePayload]
StatusRecord = StageRecord[StatusPayload]

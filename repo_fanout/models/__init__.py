"""Domain models persisted in the workflow directory.

Key Models:
    - Repo: A target repository resolved by init
    - InitOutput: The single init record of a workflow
    - StageRecord: Per-repository outcome of one stage
    - ChangeRequest / ChangeRequestStatus: Pull or merge request references

Example:
    >>> from repo_fanout.models import Repo
    >>> repo = Repo(name="org/a", owner="org", provider="github", clone_url="git@github.com:org/a.git")
    >>> repo.short_name
    'a'
"""

from repo_fanout.models.domain import (
    ChangeRequest,
    ChangeRequestStatus,
    ClonePayload,
    CloneRecord,
    InitOutput,
    MergePayload,
    MergeRecord,
    PlanPayload,
    PlanRecord,
    PushPayload,
    PushRecord,
    Repo,
    StageRecord,
    StatusPayload,
    StatusRecord,
)

__all__ = [
    "ChangeRequest",
    "ChangeRequestStatus",
    "ClonePayload",
    "CloneRecord",
    "InitOutput",
    "MergePayload",
    "MergeRecord",
    "PlanPayload",
    "PlanRecord",
    "PushPayload",
    "PushRecord",
    "Repo",
    "StageRecord",
    "StatusPayload",
    "StatusRecord",
]

"""Enumerations for repo-fanout provider and stage types."""

from enum import Enum


class ProviderType(str, Enum):
    """Hosting backends supported by repo-fanout.

    Exactly one is active per process, selected by which API token is set.
    """

    GITHUB = "github"
    GITLAB = "gitlab"

    def __str__(self) -> str:
        return self.value


class Stage(str, Enum):
    """Workflow stages, in the order they run.

    ``INIT`` is the sentinel stage: its record is the single ``init.json``
    for the whole workflow and carries no repository name.
    """

    INIT = "init"
    CLONE = "clone"
    PLAN = "plan"
    PUSH = "push"
    MERGE = "merge"
    STATUS = "status"

    def __str__(self) -> str:
        return self.value


class BuildStatus(str, Enum):
    """Combined CI status of a change request's head commit."""

    SUCCESS = "success"
    PENDING = "pending"
    FAILURE = "failure"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


class ChangeRequestState(str, Enum):
    """Normalized pull request / merge request state.

    GitLab's ``opened`` maps to ``OPEN``; GitHub's merged-and-closed pull
    request maps to ``MERGED``.
    """

    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"

    def __str__(self) -> str:
        return self.value

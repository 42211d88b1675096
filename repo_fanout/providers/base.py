"""
Abstract base class for hosting providers.

Every stage talks to GitHub or GitLab only through :class:`RepoProvider`.
Adding a third backend means implementing this one class; the pipeline does
not change.
"""

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from repo_fanout.enums import ProviderType
from repo_fanout.exceptions import ConfigurationError
from repo_fanout.git import client as git_client
from repo_fanout.models.domain import ChangeRequest, ChangeRequestStatus, Repo
from repo_fanout.utils.rate_limiter import RateLimiter

_SEGMENT = re.compile(r"^[A-Za-z0-9_.][A-Za-z0-9_.-]*$")


def parse_repo_names(lines: Iterable[str]) -> list[tuple[str, str]]:
    """Validate ``namespace/name`` entries.

    Blank lines and ``#`` comments are ignored, surrounding whitespace is
    stripped, a trailing ``.git`` is dropped and duplicates are removed while
    keeping the first occurrence's position.

    Args:
        lines: Raw entries, e.g. the lines of a repos file.

    Returns:
        List of (owner, full_name) tuples. ``owner`` may contain slashes for
        nested GitLab groups.

    Raises:
        ConfigurationError: If an entry is not of the form ``namespace/name``.
    """
    seen: set[str] = set()
    parsed: list[tuple[str, str]] = []

    for lineno, raw in enumerate(lines, start=1):
        entry = raw.strip()
        if not entry or entry.startswith("#"):
            continue
        if entry.endswith(".git"):
            entry = entry[: -len(".git")]

        segments = entry.split("/")
        if len(segments) < 2 or not all(_SEGMENT.match(segment) for segment in segments):
            raise ConfigurationError(f"Invalid repository on line {lineno}: {raw.strip()!r} (expected namespace/name)")

        if entry in seen:
            continue
        seen.add(entry)
        parsed.append(("/".join(segments[:-1]), entry))

    return parsed


class RepoProvider(ABC):
    """Abstract base class for hosting provider implementations.

    Implementations normalize backend-specific APIs into the domain models in
    :mod:`repo_fanout.models.domain`:

    - GitHub pull requests and GitLab merge requests become ``ChangeRequest``
    - GitLab's ``iid`` is used as the change request number
    - GitLab's ``opened`` state becomes ``ChangeRequestState.OPEN``

    Every request to the backend awaits ``self.limiter.acquire()`` first, so
    all workers share one pacing schedule. Git transport (clone and push)
    goes through the same limiter and is shared by all backends.

    Attributes:
        provider_type: Backend this implementation talks to.
        limiter: Shared pacing service for API requests.
    """

    provider_type: ProviderType

    def __init__(self, limiter: RateLimiter) -> None:
        self.limiter = limiter

    async def connect(self) -> None:
        """Open network resources. Default: nothing to do."""

    async def disconnect(self) -> None:
        """Release network resources. Default: nothing to do."""

    async def __aenter__(self) -> "RepoProvider":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.disconnect()

    @abstractmethod
    async def search(self, query: str) -> list[Repo]:
        """Find repositories matching a backend-specific search query.

        Args:
            query: GitHub code search query, or a GitLab projects / blobs
                search string depending on the deployment.

        Returns:
            Matching repositories, de-duplicated and sorted by name. An empty
            list is a valid result.

        Raises:
            ProviderError: If the backend rejects the query or the request fails.
            RateLimitedError: If the backend throttles us.
        """
        pass

    def repos_from_names(self, names: Iterable[str]) -> list[Repo]:
        """Resolve an explicit list of ``namespace/name`` entries.

        No network call is made. The default branch stays unknown until the
        repository is cloned.

        Raises:
            ConfigurationError: If an entry is malformed.
        """
        return [
            Repo(
                name=full_name,
                owner=owner,
                provider=self.provider_type,
                clone_url=self.clone_url(full_name),
            )
            for owner, full_name in parse_repo_names(names)
        ]

    @abstractmethod
    def clone_url(self, full_name: str) -> str:
        """URL used to clone ``full_name``."""
        pass

    async def clone(self, repo: Repo, dest: Path) -> None:
        """Clone ``repo`` into ``dest`` (whose parent must exist)."""
        await self.limiter.acquire()
        await git_client.clone(repo.clone_url, dest)

    async def push_branch(self, repo: Repo, path: Path, branch: str) -> None:
        """Force-push ``branch`` of the working copy at ``path`` to ``repo``."""
        await self.limiter.acquire()
        await git_client.push(path, branch)

    @abstractmethod
    async def open_change_request(
        self,
        repo: Repo,
        branch: str,
        base: str,
        title: str,
        body: str,
        assignee: str | None = None,
    ) -> ChangeRequest:
        """Open a pull/merge request from ``branch`` into ``base``.

        If one is already open for ``branch`` it is returned instead, which
        makes re-running the push stage safe.
        """
        pass

    @abstractmethod
    async def change_request_status(self, repo: Repo, number: int) -> ChangeRequestStatus:
        """Fetch state, mergeability, review approval and build status."""
        pass

    @abstractmethod
    async def merge_change_request(self, repo: Repo, number: int, commit_sha: str | None = None) -> str | None:
        """Merge a change request and delete its source branch.

        Args:
            repo: Repository the change request belongs to.
            number: Change request number (GitLab ``iid``).
            commit_sha: If given, only merge when the head is still this commit.

        Returns:
            The merge commit SHA, when the backend reports one.
        """
        pass

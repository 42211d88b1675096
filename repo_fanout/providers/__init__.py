"""Hosting provider implementations.

Key Components:
    - RepoProvider: Abstract base every stage talks to
    - GitHubRestProvider: GitHub implementation on PyGithub
    - GitLabRestProvider: GitLab REST API v4 implementation on httpx
    - create_repo_provider: Selects the implementation from the environment

Example:
    >>> from repo_fanout.providers import create_repo_provider
    >>> provider = create_repo_provider(settings, limiter)
"""

from repo_fanout.providers.base import RepoProvider
from repo_fanout.providers.factory import create_repo_provider

__all__ = [
    "RepoProvider",
    "create_repo_provider",
]

"""Factory for creating the repository provider based on configuration."""

import structlog

from repo_fanout.config.settings import FanoutSettings
from repo_fanout.enums import ProviderType
from repo_fanout.providers.base import RepoProvider
from repo_fanout.providers.github_rest import GitHubRestProvider
from repo_fanout.providers.gitlab_rest import GitLabRestProvider
from repo_fanout.utils.rate_limiter import RateLimiter

log = structlog.get_logger(__name__)


def create_repo_provider(settings: FanoutSettings, limiter: RateLimiter) -> RepoProvider:
    """Create the provider selected by the configured API token.

    Called once per process. Nothing downstream branches on the backend.

    Args:
        settings: Settings holding exactly one API token
        limiter: Shared pacing service for every API request

    Returns:
        GitHubRestProvider or GitLabRestProvider

    Raises:
        ConfigurationError: If both or neither tokens are configured

    Example:
        >>> provider = create_repo_provider(FanoutSettings.load(), RateLimiter(0.72))
        >>> async with provider:
        ...     repos = await provider.search("org:acme filename:Dockerfile")
    """
    provider_type = settings.provider_type

    if provider_type == ProviderType.GITHUB:
        log.info("creating_github_provider", base_url=settings.github_url)
        return GitHubRestProvider(
            token=settings.api_token,
            limiter=limiter,
            base_url=settings.github_url,
            clone_protocol=settings.clone_protocol,
        )

    log.info("creating_gitlab_provider", base_url=settings.gitlab_url)
    return GitLabRestProvider(
        base_url=settings.gitlab_url,
        token=settings.api_token,
        limiter=limiter,
        advanced_search=settings.use_gitlab_advanced_search,
        clone_protocol=settings.clone_protocol,
    )

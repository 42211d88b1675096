"""
Configuration system using Pydantic for type-safe settings management.

All settings come from the environment. The hosting provider is selected by
which API token is present: exactly one of ``GITHUB_API_TOKEN`` and
``GITLAB_API_TOKEN`` must be set.
"""

from __future__ import annotations

from typing import Literal
from urllib.parse import urlparse

from pydantic import Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from repo_fanout.enums import ProviderType
from repo_fanout.exceptions import ConfigurationError

GITHUB_TOKEN_HELP = (
    "In order to use repo-fanout with GitHub, create a token "
    "(https://help.github.com/articles/creating-a-personal-access-token-for-the-command-line/) "
    "then set GITHUB_API_TOKEN."
)
GITLAB_TOKEN_HELP = (
    "In order to use repo-fanout with GitLab, create a token "
    "(https://docs.gitlab.com/ee/user/profile/personal_access_tokens.html) "
    "then set GITLAB_API_TOKEN."
)

# GitHub's quota for authenticated requests is 5000/hour, i.e. one every 720ms
DEFAULT_RATE_LIMIT_INTERVAL = 0.72


class FanoutSettings(BaseSettings):
    """Process configuration read from the environment.

    Example:
        >>> settings = FanoutSettings.load()
        >>> settings.provider_type
        <ProviderType.GITHUB: 'github'>
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
    )

    github_api_token: SecretStr | None = Field(default=None, description="GitHub personal access token")
    gitlab_api_token: SecretStr | None = Field(default=None, description="GitLab personal access token")
    github_url: str = Field(default="https://api.github.com", description="GitHub API base URL")
    gitlab_url: str = Field(default="https://gitlab.com", description="GitLab instance base URL")
    gitlab_advanced_search: bool | None = Field(
        default=None,
        description="Use blob (ElasticSearch) search on GitLab. Defaults to on for self-managed instances.",
    )
    rate_limit_interval: float = Field(
        default=DEFAULT_RATE_LIMIT_INTERVAL,
        ge=0.0,
        validation_alias="fanout_rate_limit_interval",
        description="Minimum seconds between provider API requests",
    )
    max_workers: int = Field(
        default=10,
        ge=1,
        le=100,
        validation_alias="fanout_workers",
        description="Repositories processed concurrently within a stage",
    )
    clone_protocol: Literal["ssh", "https"] = Field(
        default="ssh",
        validation_alias="fanout_clone_protocol",
        description="URL scheme used for git clone",
    )

    @classmethod
    def load(cls) -> FanoutSettings:
        """Load settings from the environment and resolve the provider.

        Raises:
            ConfigurationError: If values are invalid or the credentials are
                ambiguous or missing.
        """
        try:
            settings = cls()
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        # Fail on credential problems now, before anything touches disk or network
        _ = settings.provider_type
        return settings

    @property
    def provider_type(self) -> ProviderType:
        """The single configured hosting provider.

        Raises:
            ConfigurationError: If both or neither tokens are set.
        """
        has_github = bool(self.github_api_token and self.github_api_token.get_secret_value().strip())
        has_gitlab = bool(self.gitlab_api_token and self.gitlab_api_token.get_secret_value().strip())

        if has_github and has_gitlab:
            raise ConfigurationError("GITLAB_API_TOKEN and GITHUB_API_TOKEN can't both be set")
        if has_github:
            return ProviderType.GITHUB
        if has_gitlab:
            return ProviderType.GITLAB
        raise ConfigurationError(
            "Neither GITHUB_API_TOKEN nor GITLAB_API_TOKEN is set.\n"
            f"{GITHUB_TOKEN_HELP}\n{GITLAB_TOKEN_HELP}"
        )

    @property
    def api_token(self) -> str:
        """Token of the selected provider."""
        secret = self.github_api_token if self.provider_type == ProviderType.GITHUB else self.gitlab_api_token
        assert secret is not None
        return secret.get_secret_value().strip()

    @property
    def use_gitlab_advanced_search(self) -> bool:
        """Whether GitLab searches go through the blob (ElasticSearch) scope.

        gitlab.com only offers the global projects scope; self-managed
        instances are assumed to run advanced search unless told otherwise.
        """
        if self.gitlab_advanced_search is not None:
            return self.gitlab_advanced_search
        host = urlparse(self.gitlab_url).hostname or ""
        return host != "gitlab.com"

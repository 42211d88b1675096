"""Configuration system for repo-fanout.

Key Components:
    - FanoutSettings: Environment-driven settings and provider selection

Example:
    >>> from repo_fanout.config import FanoutSettings
    >>> settings = FanoutSettings.load()
    >>> settings.provider_type
"""

from repo_fanout.config.settings import FanoutSettings

__all__ = ["FanoutSettings"]

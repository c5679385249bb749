"""Configuration loading."""

from repo_converge.config.settings import (
    ConvergeSettings,
    GitConfig,
    HostingConfig,
    IssueMapping,
    RepositoryConfig,
)

__all__ = [
    "ConvergeSettings",
    "GitConfig",
    "HostingConfig",
    "IssueMapping",
    "RepositoryConfig",
]

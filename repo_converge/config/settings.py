"""
Configuration system using Pydantic for type-safe settings management.

This module provides configuration classes for the hosting service, the Git
backend, the repository being operated on and the issue mapping used by the
issue tracker reconciler.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from repo_converge.enums import GitBackendType, HostingProviderType
from repo_converge.exceptions import ConfigurationError
from repo_converge.models.domain import ProjectId, RepositoryHandle


class HostingConfig(BaseModel):
    """Hosting service configuration (GitHub or GitLab).

    Supports environment references in YAML:
    - api_token: "${GITHUB_TOKEN}"
    - api_token: "${GITLAB_TOKEN:-}"
    """

    provider_type: HostingProviderType = Field(default=HostingProviderType.GITHUB, description="Hosting service")
    base_url: str | None = Field(default=None, description="API base URL (defaults to the public service)")
    api_token: str | None = Field(default=None, repr=False, description="API token for authentication")
    organization: str | None = Field(default=None, description="Organization (GitHub) or group (GitLab)")
    user_name: str | None = Field(default=None, description="Account name, used as owner without an organization")

    @property
    def owner_name(self) -> str | None:
        """Repository owner: the organization if set, otherwise the user name."""
        return self.organization or self.user_name

    def project(self, repository_name: str, namespace: str | None = None) -> ProjectId:
        """Build a ProjectId, defaulting the namespace to the owner name.

        Raises:
            ConfigurationError: If neither a namespace nor an owner is available
        """
        owner = namespace or self.owner_name
        if not owner:
            raise ConfigurationError("An organization or user name is required to address a project")
        return ProjectId(owner, repository_name)


class GitConfig(BaseModel):
    """Git backend configuration."""

    backend: GitBackendType = Field(default=GitBackendType.LIBRARY, description="library (GitPython) or process")
    git_executable: str = Field(default="git", description="git executable used by the process backend")
    command_timeout: float | None = Field(default=None, gt=0, description="Per-command timeout in seconds")
    temp_directory: str | None = Field(default=None, description="Parent directory for temporary repositories")


class RepositoryConfig(BaseModel):
    """Repository the Git operations act on."""

    local_path: str | None = Field(default=None, description="Working copy location")
    remote_url: str | None = Field(default=None, description="Remote repository URL")
    user_name: str | None = Field(default=None, description="User name for HTTP authentication")
    password: str | None = Field(default=None, repr=False, description="Password or token for HTTP authentication")
    recurse_submodules: bool = Field(default=False, description="Clone and update submodules")

    def to_handle(self, local_path: str | Path | None = None) -> RepositoryHandle:
        """Build the RepositoryHandle for a Git call.

        Args:
            local_path: Overrides the configured working copy location

        Raises:
            ConfigurationError: If no local path is configured or given
        """
        path = local_path or self.local_path
        if not path:
            raise ConfigurationError("A local repository path is required for this operation")
        return RepositoryHandle(
            local_path=Path(path),
            remote_url=self.remote_url,
            user_name=self.user_name,
            password=self.password,
            recurse_submodules=self.recurse_submodules,
        )


class IssueMapping(BaseModel):
    """How a release maps onto the issues of a project.

    Expressions are Jinja2 templates evaluated against the release context
    (for example ``release_number``). A non-empty custom filter query
    replaces the milestone and labels.
    """

    milestone_expression: str = Field(default="{{ release_number }}", description="Milestone title expression")
    labels: str | None = Field(default=None, description="Comma separated label expression, e.g. bug,ui")
    custom_filter_query: str | None = Field(default=None, description="Raw issue list query string expression")


class ConvergeSettings(BaseSettings):
    """Main settings.

    Combines all configuration sections and provides loading from YAML
    files with environment variable interpolation.
    """

    model_config = SettingsConfigDict(
        env_prefix="REPO_CONVERGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    hosting: HostingConfig = Field(default_factory=HostingConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)
    issues: IssueMapping = Field(default_factory=IssueMapping)
    dry_run: bool = Field(default=False, description="Report planned changes without sending them")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")

    @property
    def temp_root(self) -> Path | None:
        """Parent for temporary directories, if configured."""
        return Path(self.git.temp_directory) if self.git.temp_directory else None

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> ConvergeSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ${VAR_NAME} and ${VAR_NAME:-default} substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            ConvergeSettings instance

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            yaml_content = config_file.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e

        if config_dict is None:
            config_dict = {}
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except (PydanticValidationError, TypeError) as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        Supports two syntaxes:
        - ${VAR_NAME} - Required environment variable (raises if not set)
        - ${VAR_NAME:-default} - Optional with default value

        YAML comment lines are left unchanged.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            elif default_value is not None:
                return default_value
            else:
                raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))

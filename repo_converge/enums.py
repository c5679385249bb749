"""Enumerations for repo-converge backend and provider types."""

from enum import Enum


class GitBackendType(str, Enum):
    """Git operation backends.

    - library: GitPython, structured calls inside the current process
    - process: an external ``git`` executable driven command by command
    """

    LIBRARY = "library"
    PROCESS = "process"

    def __str__(self) -> str:
        return self.value


class HostingProviderType(str, Enum):
    """Hosting services a reconciler can talk to."""

    GITHUB = "github"
    GITLAB = "gitlab"

    def __str__(self) -> str:
        return self.value

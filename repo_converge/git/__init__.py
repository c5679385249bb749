"""Git repository operations behind a pluggable backend.

Two backends implement the same GitClient contract:

    - library: GitPython calls inside the current process
    - process: an external ``git`` executable, with log-safe command lines

Example:
    >>> from repo_converge.git import create_git_client
    >>> from repo_converge.models import RepositoryHandle, UpdateOptions
    >>> handle = RepositoryHandle(local_path="/srv/checkout", remote_url="https://example.com/repo.git")
    >>> client = create_git_client(handle, backend="library")
    >>> await client.update(UpdateOptions(branch="main"))
"""

from repo_converge.git.arguments import GitArguments
from repo_converge.git.client import GitClient, temporary_repository
from repo_converge.git.credentials import (
    CredentialsCallback,
    CredentialTypes,
    DefaultCredentials,
    UsernamePasswordCredentials,
    make_credentials_callback,
)
from repo_converge.git.factory import create_git_client

__all__ = [
    # Main API
    "GitClient",
    "create_git_client",
    "temporary_repository",
    # Command lines
    "GitArguments",
    # Credentials
    "CredentialsCallback",
    "CredentialTypes",
    "DefaultCredentials",
    "UsernamePasswordCredentials",
    "make_credentials_callback",
]

"""Git backend selection."""

from pathlib import Path

from repo_converge.enums import GitBackendType
from repo_converge.exceptions import ConfigurationError
from repo_converge.git.client import GitClient
from repo_converge.git.credentials import CredentialsCallback
from repo_converge.models.domain import RepositoryHandle


def create_git_client(
    repository: RepositoryHandle,
    backend: GitBackendType | str = GitBackendType.LIBRARY,
    credentials: CredentialsCallback | None = None,
    temp_root: Path | None = None,
    git_executable: str = "git",
    timeout: float | None = None,
) -> GitClient:
    """Create a Git client for the requested backend.

    Both backends expose the same operations with the same observable
    results; only the way git is driven differs.

    Args:
        repository: Handle describing the local and remote repository
        backend: "library" (GitPython) or "process" (git executable)
        credentials: Credential callback; built from the handle if None
        temp_root: Parent directory for temporary repositories/archives
        git_executable: Executable used by the process backend
        timeout: Per-command timeout in seconds for the process backend

    Returns:
        A GitClient for the selected backend

    Raises:
        ConfigurationError: If the backend type is not recognized

    Example:
        >>> client = create_git_client(handle, backend="process", git_executable="/usr/bin/git")
    """
    try:
        backend_type = GitBackendType(str(backend).lower())
    except ValueError as e:
        supported = ", ".join(f"'{b.value}'" for b in GitBackendType)
        raise ConfigurationError(f"Unknown git backend: {backend}. Supported backends: {supported}") from e

    if backend_type == GitBackendType.PROCESS:
        from repo_converge.git.process_backend import GitCommandLineClient

        return GitCommandLineClient(
            repository,
            credentials=credentials,
            temp_root=temp_root,
            git_executable=git_executable,
            timeout=timeout,
        )

    from repo_converge.git.library_backend import GitPythonClient

    return GitPythonClient(repository, credentials=credentials, temp_root=temp_root)

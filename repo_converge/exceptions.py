"""Custom exception hierarchy for repo-converge.

This module defines a structured exception hierarchy shared by the Git
operations layer and the reconciliation engine, so callers can tell apart
setup problems, tolerated absences, invalid requests and remote failures.

Exception Hierarchy:
    RepoConvergeError (base)
    ├── ConfigurationError
    ├── NotFoundError
    ├── ValidationError
    ├── OperationError
    │   └── RemoteApiError
    └── ResourceCleanupError
    OperationCancelledError (asyncio.CancelledError)

Example Usage:
    >>> from repo_converge.exceptions import ConfigurationError
    >>> try:
    ...     load_config(path)
    ... except FileNotFoundError as e:
    ...     raise ConfigurationError(f"Config file not found: {path}") from e
"""

import asyncio
from pathlib import Path


class RepoConvergeError(Exception):
    """Base exception for all repo-converge errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(RepoConvergeError):
    """Ambiguous or invalid local/remote setup.

    Fatal and never retried.

    Examples:
        - Configuration file not found or invalid
        - Local repository path exists, is not empty and is not a repository
        - Remote URL missing for a network operation
        - Issue mapping expression evaluates to an empty string
    """

    pass


class NotFoundError(RepoConvergeError):
    """A branch, milestone or release is absent where a lookup was requested.

    Tolerated where absence is expected (branch resolution during update
    logs it and continues); fatal where the caller required existence.
    """

    pass


class ValidationError(RepoConvergeError):
    """Invalid request, raised before any remote call is made.

    Examples:
        - Issue transition target other than Open or Closed
    """

    pass


class OperationError(RepoConvergeError):
    """A remote command or API call failed.

    Attributes:
        message: Human-readable error description
        details: Captured diagnostic text (stderr, response body), if any
    """

    def __init__(self, message: str, details: str | None = None) -> None:
        """Initialize exception.

        Args:
            message: Error message
            details: Captured diagnostic text
        """
        self.details = details

        full_message = message
        if details:
            full_message = f"{message}: {details.strip()}"

        super().__init__(full_message)
        self.message = message


class RemoteApiError(OperationError):
    """A hosting service API responded with a non-2xx status.

    Attributes:
        status_code: HTTP status code (if applicable)
        response_text: Response body text (if applicable)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            status_code: HTTP status code (if applicable)
            response_text: Response body text (if applicable)
        """
        self.status_code = status_code
        self.response_text = response_text

        if status_code:
            message = f"{message} (HTTP {status_code})"

        super().__init__(message, details=response_text)


class ResourceCleanupError(RepoConvergeError):
    """A temporary resource could not be removed.

    Only ever logged; it never replaces the result or error of the
    operation the resource supported.
    """

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        super().__init__(f"Could not delete temporary directory '{path}': {reason}")


class OperationCancelledError(asyncio.CancelledError):
    """A cancellation signal was observed between remote calls."""

    pass

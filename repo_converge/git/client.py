"""Abstract Git client contract shared by both backends.

GitClient implements the parts of every operation that do not depend on
how git is driven: argument validation, the update algorithm, remote
branch enumeration with its scoped temporary repository, and archive
extraction. Backends supply the primitive steps.

Key Exports:
    GitClient: Abstract base class for Git backends.
    temporary_repository: Scoped temporary repository for ref listing.

Example:
    >>> from repo_converge.git import create_git_client
    >>> client = create_git_client(handle, backend="process")
    >>> if not await client.is_repository_valid():
    ...     await client.clone(CloneOptions(branch="main"))
    >>> branches = await client.enumerate_remote_branches()

Concurrency:
    A client performs one operation at a time against its handle. Callers
    serialize concurrent operations on the same local path.
"""

import asyncio
import shutil
import tarfile
import tempfile
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path

import structlog

from repo_converge.exceptions import (
    ConfigurationError,
    NotFoundError,
    OperationError,
    ResourceCleanupError,
)
from repo_converge.git.credentials import (
    SUPPORTED_TYPES,
    Credentials,
    CredentialsCallback,
    make_credentials_callback,
    username_from_url,
)
from repo_converge.models.domain import CloneOptions, RemoteRef, RepositoryHandle, UpdateOptions
from repo_converge.utils.cancellation import raise_if_cancelled

log = structlog.get_logger(__name__)

ORIGIN = "origin"
TEMP_PREFIX = "repo-converge-"


def is_missing_or_empty(path: Path) -> bool:
    if not path.exists():
        return True
    return path.is_dir() and not any(path.iterdir())


def ensure_missing_or_empty(path: Path) -> None:
    """Refuse to guess what an unexpected, non-repository directory is for.

    Raises:
        ConfigurationError: If path exists and is not an empty directory
    """
    if not is_missing_or_empty(path):
        raise ConfigurationError(
            f"Specified local repository path is invalid: '{path}' is not empty and is not a Git repository"
        )


def parse_ls_remote(output: str) -> list[RemoteRef]:
    """Parse ``git ls-remote`` output (``<sha>\\t<refname>`` per line)."""
    refs = []
    for line in output.splitlines():
        parts = line.strip().split("\t")
        if len(parts) == 2 and parts[1]:
            refs.append(RemoteRef(canonical_name=parts[1]))
    return refs


def branch_names(refs: list[RemoteRef]) -> list[str]:
    """Branch names from refs under ``refs/heads/``, prefix stripped."""
    return [ref.branch_name for ref in refs if ref.branch_name is not None]


def remove_directory(path: Path) -> None:
    """Delete a temporary directory, logging (never raising) on failure."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return
    except OSError as e:
        cleanup_error = ResourceCleanupError(path, str(e))
        log.warning("git_temp_repository_cleanup_failed", path=str(path), error=cleanup_error.message)


@asynccontextmanager
async def temporary_repository(
    initialize: Callable[[Path], Awaitable[None]],
    parent: Path | None = None,
) -> AsyncIterator[Path]:
    """Create an empty repository that is deleted on every exit path.

    Deletion runs synchronously in ``finally`` so that it also happens when
    the surrounding task is cancelled.

    Args:
        initialize: Coroutine function creating a repository at a path
        parent: Directory in which the temporary directory is created
            (system temp directory when None)

    Yields:
        Path of the initialized temporary repository
    """
    if parent is not None:
        parent.mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX, dir=parent))
    try:
        log.debug("git_temp_repository_created", path=str(path))
        await initialize(path)
        yield path
    finally:
        log.debug("git_temp_repository_deleting", path=str(path))
        remove_directory(path)


def extract_archive(archive_path: Path, target_directory: Path) -> None:
    """Unpack a tar archive produced by ``git archive``."""
    target_directory.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive_path) as archive:
        archive.extractall(target_directory, filter="tar")


class GitClient(ABC):
    """Abstract base class for Git backends.

    Both backends must produce identical observable results (files on
    disk, branch states) for every operation.

    Attributes:
        repository: Handle describing the local and remote repository
        temp_root: Parent for temporary directories (system default if None)
    """

    def __init__(
        self,
        repository: RepositoryHandle,
        credentials: CredentialsCallback | None = None,
        temp_root: Path | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            repository: Repository handle (read-only for the client)
            credentials: Credential callback; built from the handle if None
            temp_root: Parent directory for temporary repositories/archives
        """
        self.repository = repository
        self.temp_root = temp_root
        self._credentials = credentials or make_credentials_callback(repository)

    @property
    def local_path(self) -> Path:
        return self.repository.local_path

    def get_credentials(self, url: str | None = None) -> Credentials:
        """Ask the credential callback for credentials for one remote call."""
        url = url or self.repository.remote_url or ORIGIN
        return self._credentials(url, username_from_url(url), SUPPORTED_TYPES)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @abstractmethod
    async def is_repository_valid(self) -> bool:
        """Return True if ``local_path`` itself contains a Git repository."""

    async def clone(self, options: CloneOptions) -> None:
        """Clone the remote repository into ``local_path``.

        Args:
            options: Branch to check out and submodule recursion flag

        Raises:
            ConfigurationError: If no remote URL is configured
            OperationError: If the target is a non-empty directory or git fails
        """
        url = self.repository.require_remote_url()
        if not is_missing_or_empty(self.local_path):
            raise OperationError(f"Cannot clone into '{self.local_path}': directory exists and is not empty")

        recurse = options.recurse_submodules or self.repository.recurse_submodules
        log.info("git_clone_started", path=str(self.local_path), branch=options.branch, recurse_submodules=recurse)
        await asyncio.to_thread(self.local_path.mkdir, parents=True, exist_ok=True)
        await self._clone(url, options.branch, recurse)
        log.info("git_clone_completed", path=str(self.local_path))

    async def update(self, options: UpdateOptions) -> None:
        """Make the working copy equal to the remote branch tip.

        Local modifications are discarded. When no repository exists yet the
        remote is cloned instead.

        Args:
            options: Branch to switch to and submodule recursion flag

        Raises:
            ConfigurationError: If ``local_path`` is a non-empty non-repository
            OperationError: If fetching or resetting fails
        """
        recurse = options.recurse_submodules or self.repository.recurse_submodules

        if not await self.is_repository_valid():
            ensure_missing_or_empty(self.local_path)
            log.info("git_update_bootstrap", path=str(self.local_path))
            await self.clone(CloneOptions(branch=options.branch, recurse_submodules=recurse))
            return

        log.debug("git_update_started", path=str(self.local_path), branch=options.branch)
        if options.branch:
            try:
                await self._checkout_branch(options.branch)
            except NotFoundError as e:
                log.error("git_branch_not_found", branch=options.branch, error=e.message)

        log.debug("git_fetch_origin", path=str(self.local_path))
        await self._fetch_origin()
        log.debug("git_reset_fetch_head", path=str(self.local_path))
        await self._reset_hard("FETCH_HEAD")
        if recurse:
            await self._update_submodules()
        log.info("git_update_completed", path=str(self.local_path), branch=options.branch)

    async def enumerate_remote_branches(self, cancel_event: asyncio.Event | None = None) -> list[str]:
        """List remote branch names without changing anything on disk.

        Args:
            cancel_event: Cooperative cancellation signal

        Returns:
            Branch names (``refs/heads/`` prefix stripped)

        Raises:
            ConfigurationError: If ``local_path`` is a non-empty non-repository
                or no remote URL is available for a repository-less query
            OperationError: If listing the remote references fails
        """
        raise_if_cancelled(cancel_event)
        log.debug("git_enumerate_remote_branches", path=str(self.local_path))

        if await self.is_repository_valid():
            refs = await self._list_remote_refs(self.local_path, ORIGIN)
            return branch_names(refs)

        ensure_missing_or_empty(self.local_path)
        url = self.repository.require_remote_url()
        async with temporary_repository(self._init_repository, parent=self.temp_root) as temp_path:
            raise_if_cancelled(cancel_event)
            refs = await self._list_remote_refs(temp_path, url)
        return branch_names(refs)

    async def tag(self, name: str) -> None:
        """Tag HEAD and push the tag to origin.

        Raises:
            OperationError: If HEAD is unborn or the push is rejected
        """
        log.info("git_tag_started", tag=name, path=str(self.local_path))
        await self._create_tag(name)
        refspec = f"refs/tags/{name}"
        log.debug("git_push_tag", refspec=refspec, remote=ORIGIN)
        await self._push(refspec)
        log.info("git_tag_pushed", tag=name)

    async def archive(self, target_directory: Path | str) -> None:
        """Export the tree at HEAD's commit into ``target_directory``.

        No Git metadata is written to the target.

        Raises:
            OperationError: If HEAD is unborn or git fails
        """
        target = Path(target_directory)
        if self.temp_root is not None:
            self.temp_root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix=TEMP_PREFIX, dir=self.temp_root) as scratch:
            archive_path = Path(scratch) / "head.tar"
            commit = await self._write_head_archive(archive_path)
            log.info("git_archive_head", commit=commit, target=str(target))
            await asyncio.to_thread(extract_archive, archive_path, target)

    @abstractmethod
    async def list_local_branches(self) -> list[str]:
        """Names of local branches in ``local_path``."""

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------

    @abstractmethod
    async def _clone(self, url: str, branch: str | None, recurse_submodules: bool) -> None: ...

    @abstractmethod
    async def _init_repository(self, path: Path) -> None: ...

    @abstractmethod
    async def _checkout_branch(self, name: str) -> None:
        """Check out ``name``, creating it from ``origin/<name>`` if needed.

        Raises:
            NotFoundError: If neither a local nor a remote-tracking branch exists
        """

    @abstractmethod
    async def _fetch_origin(self) -> None: ...

    @abstractmethod
    async def _reset_hard(self, ref: str) -> None: ...

    @abstractmethod
    async def _update_submodules(self) -> None: ...

    @abstractmethod
    async def _list_remote_refs(self, repo_path: Path, remote: str) -> list[RemoteRef]: ...

    @abstractmethod
    async def _create_tag(self, name: str) -> None: ...

    @abstractmethod
    async def _push(self, refspec: str) -> None: ...

    @abstractmethod
    async def _write_head_archive(self, archive_path: Path) -> str:
        """Write HEAD's tree as a tar file and return the commit SHA."""

"""Git backend built on GitPython.

Operations are structured GitPython calls (Repo.clone_from, Remote.fetch,
HEAD.reset, Repo.create_tag, Remote.push, Repo.archive). GitPython is
synchronous, so every call runs on a worker thread via asyncio.to_thread
and never blocks the event loop.

Credentials from the callback are passed as ``GIT_CONFIG_COUNT`` style
environment variables for the duration of one remote call.

Dependencies:
    Requires GitPython (gitpython) package for repository access.
"""

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import structlog

try:
    import git
    from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError
except ImportError as e:
    raise ImportError("GitPython is required for the library backend. Install it with: pip install gitpython") from e

from repo_converge.exceptions import NotFoundError, OperationError
from repo_converge.git.client import ORIGIN, GitClient, parse_ls_remote
from repo_converge.git.credentials import credential_environment
from repo_converge.models.domain import RemoteRef

log = structlog.get_logger(__name__)

T = TypeVar("T")

PUSH_FAILURE_FLAGS = git.PushInfo.ERROR | git.PushInfo.REJECTED | git.PushInfo.REMOTE_REJECTED


def is_repository(path: Path) -> bool:
    """True if ``path`` itself (not a parent) holds a non-bare Git repository."""
    try:
        with git.Repo(path) as repo:
            return not repo.bare
    except (InvalidGitRepositoryError, NoSuchPathError):
        return False


class GitPythonClient(GitClient):
    """GitClient implementation using GitPython."""

    async def _run(self, func: Callable[..., T], *args: object) -> T:
        """Run a blocking GitPython call on a worker thread.

        Raises:
            OperationError: If git reports a failure
        """
        try:
            return await asyncio.to_thread(func, *args)
        except GitCommandError as e:
            raise OperationError(f"git {e.command[1] if len(e.command) > 1 else ''} failed", details=e.stderr) from e

    def _open(self) -> git.Repo:
        return git.Repo(self.local_path)

    def _environment(self) -> dict[str, str]:
        return credential_environment(self.get_credentials())

    async def is_repository_valid(self) -> bool:
        return await asyncio.to_thread(is_repository, self.local_path)

    async def list_local_branches(self) -> list[str]:
        def _list() -> list[str]:
            with self._open() as repo:
                return [head.name for head in repo.heads]

        return await self._run(_list)

    async def _clone(self, url: str, branch: str | None, recurse_submodules: bool) -> None:
        env = credential_environment(self.get_credentials(url))
        options: dict[str, object] = {}
        if branch:
            options["branch"] = branch
        if recurse_submodules:
            options["recurse_submodules"] = True

        def _clone() -> None:
            git.Repo.clone_from(url, self.local_path, env=env or None, **options).close()

        await self._run(_clone)

    async def _init_repository(self, path: Path) -> None:
        await self._run(lambda: git.Repo.init(path).close())

    async def _checkout_branch(self, name: str) -> None:
        def _checkout() -> None:
            with self._open() as repo:
                self._get_or_create_local_branch(repo, name).checkout(force=True)

        await self._run(_checkout)

    def _get_or_create_local_branch(self, repo: git.Repo, name: str) -> git.Head:
        log.debug("git_find_local_branch", branch=name)
        existing = next((head for head in repo.heads if head.name == name), None)
        if existing is not None:
            log.debug("git_using_local_branch", branch=existing.path)
            return existing

        tracked_name = f"{ORIGIN}/{name}"
        log.debug("git_find_tracked_branch", branch=tracked_name)
        tracked = next(
            (ref for ref in repo.references if isinstance(ref, git.RemoteReference) and ref.name == tracked_name),
            None,
        )
        if tracked is None:
            raise NotFoundError(f"Branch '{name}' not found locally or as '{tracked_name}'")

        local = repo.create_head(name, tracked.commit)
        log.debug("git_create_tracking_branch", branch=name, tracked=tracked.path)
        local.set_tracking_branch(tracked)
        return local

    async def _fetch_origin(self) -> None:
        env = self._environment()

        def _fetch() -> None:
            with self._open() as repo:
                with repo.git.custom_environment(**env):
                    repo.remote(ORIGIN).fetch()

        await self._run(_fetch)

    async def _reset_hard(self, ref: str) -> None:
        def _reset() -> None:
            with self._open() as repo:
                repo.head.reset(ref, index=True, working_tree=True)

        await self._run(_reset)

    async def _update_submodules(self) -> None:
        env = self._environment()

        def _update() -> None:
            with self._open() as repo:
                with repo.git.custom_environment(**env):
                    repo.git.submodule("update", "--init", "--recursive")

        await self._run(_update)

    async def _list_remote_refs(self, repo_path: Path, remote: str) -> list[RemoteRef]:
        env = self._environment()

        def _ls_remote() -> str:
            with git.Repo(repo_path) as repo:
                with repo.git.custom_environment(**env):
                    return repo.git.ls_remote(remote)

        return parse_ls_remote(await self._run(_ls_remote))

    async def _create_tag(self, name: str) -> None:
        def _tag() -> None:
            with self._open() as repo:
                if not repo.head.is_valid():
                    raise OperationError(f"Cannot create tag '{name}': HEAD does not point to a commit")
                log.debug("git_create_tag", tag=name, commit=repo.head.commit.hexsha)
                repo.create_tag(name)

        await self._run(_tag)

    async def _push(self, refspec: str) -> None:
        env = self._environment()

        def _push() -> None:
            with self._open() as repo:
                with repo.git.custom_environment(**env):
                    results = repo.remote(ORIGIN).push(refspec)
                for info in results:
                    if info.flags & PUSH_FAILURE_FLAGS:
                        raise OperationError(f"Push of '{refspec}' to {ORIGIN} was rejected", details=info.summary)

        await self._run(_push)

    async def _write_head_archive(self, archive_path: Path) -> str:
        def _archive() -> str:
            with self._open() as repo:
                if not repo.head.is_valid():
                    raise OperationError(f"Cannot archive '{self.local_path}': HEAD does not point to a commit")
                commit = repo.head.commit.hexsha
                with open(archive_path, "wb") as stream:
                    repo.archive(stream, treeish=commit, format="tar")
                return commit

        return await self._run(_archive)

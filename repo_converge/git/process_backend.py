"""Git backend driving an external ``git`` executable.

Each operation builds one GitArguments per git invocation. The redacted
rendering is what gets logged; argv() is what gets executed, through
run_command (exec-style, no shell). A non-zero exit status becomes an
OperationError carrying git's standard error, scrubbed of any sensitive
argument values.

Credentials travel as ``-c http.extraHeader=...`` sensitive arguments, so
they apply to a single invocation and never land in ``.git/config``.
"""

from pathlib import Path
from urllib.parse import urlsplit

import structlog

from repo_converge.exceptions import ConfigurationError, NotFoundError, OperationError
from repo_converge.git.arguments import HIDDEN, GitArguments
from repo_converge.git.client import ORIGIN, GitClient, parse_ls_remote
from repo_converge.git.credentials import Credentials, CredentialsCallback, credential_config
from repo_converge.models.domain import RemoteRef, RepositoryHandle
from repo_converge.utils.async_subprocess import run_command

log = structlog.get_logger(__name__)

# Never block on an interactive credential prompt
GIT_ENVIRONMENT = {"GIT_TERMINAL_PROMPT": "0"}


def scrub(text: str, secrets: list[str]) -> str:
    for secret in secrets:
        text = text.replace(secret, HIDDEN)
    return text


class GitCommandLineClient(GitClient):
    """GitClient implementation running ``git`` as a subprocess.

    Attributes:
        git_executable: Path or name of the git executable
        timeout: Per-command timeout in seconds (None waits indefinitely)
    """

    def __init__(
        self,
        repository: RepositoryHandle,
        credentials: CredentialsCallback | None = None,
        temp_root: Path | None = None,
        git_executable: str = "git",
        timeout: float | None = None,
    ) -> None:
        super().__init__(repository, credentials=credentials, temp_root=temp_root)
        self.git_executable = git_executable
        self.timeout = timeout

    def _arguments(self, credentials: Credentials | None = None) -> GitArguments:
        args = GitArguments()
        if credentials is not None:
            for key, value in credential_config(credentials).items():
                args.append("-c")
                args.append_sensitive(f"{key}={value}")
        return args

    @staticmethod
    def _append_url(args: GitArguments, url: str) -> None:
        # URLs with an embedded password are as secret as the password
        try:
            has_password = bool(urlsplit(url).password)
        except ValueError:
            has_password = False
        if has_password:
            args.append_sensitive(url)
        else:
            args.append_quoted(url)

    async def _execute(
        self,
        args: GitArguments,
        cwd: Path | None = None,
        check: bool = True,
    ) -> tuple[str, int]:
        """Run one git command.

        Args:
            args: Arguments following the git executable
            cwd: Working directory (the repository path by default)
            check: Raise OperationError on a non-zero exit status

        Returns:
            Tuple of (stdout, exit status)
        """
        cwd = cwd or self.local_path
        command = f"{self.git_executable} {args.render_redacted()}"
        log.debug("git_command", command=command, cwd=str(cwd))

        try:
            stdout, stderr, code = await run_command(
                self.git_executable,
                *args.argv(),
                cwd=cwd,
                check=False,
                timeout=self.timeout,
                env=GIT_ENVIRONMENT,
            )
        except FileNotFoundError as e:
            raise ConfigurationError(f"Cannot run '{self.git_executable}' in '{cwd}': {e.strerror}") from e
        except TimeoutError as e:
            raise OperationError(f"{command} timed out after {self.timeout}s") from e

        if check and code != 0:
            raise OperationError(
                f"{command} exited with code {code}",
                details=scrub(stderr, args.sensitive_values()),
            )
        return stdout, code

    async def _ref_exists(self, ref: str) -> bool:
        args = GitArguments("rev-parse")
        args.extend(["--verify", "--quiet"])
        args.append_quoted(ref)
        _, code = await self._execute(args, check=False)
        return code == 0

    async def is_repository_valid(self) -> bool:
        if not self.local_path.is_dir():
            return False
        stdout, code = await self._execute(GitArguments("rev-parse --show-toplevel"), check=False)
        if code != 0:
            return False
        return Path(stdout.strip()).resolve() == self.local_path.resolve()

    async def list_local_branches(self) -> list[str]:
        args = GitArguments("for-each-ref")
        args.append("--format=%(refname:short)")
        args.append("refs/heads/")
        stdout, _ = await self._execute(args)
        return [line.strip() for line in stdout.splitlines() if line.strip()]

    async def _clone(self, url: str, branch: str | None, recurse_submodules: bool) -> None:
        args = self._arguments(self.get_credentials(url))
        args.append("clone")
        if branch:
            args.append("--branch")
            args.append_quoted(branch)
        if recurse_submodules:
            args.append("--recurse-submodules")
        args.append("--")
        self._append_url(args, url)
        args.append_quoted(str(self.local_path))
        await self._execute(args, cwd=self.local_path.parent)

    async def _init_repository(self, path: Path) -> None:
        args = GitArguments("init --quiet")
        args.append_quoted(str(path))
        await self._execute(args, cwd=path)

    async def _checkout_branch(self, name: str) -> None:
        log.debug("git_find_local_branch", branch=name)
        if not await self._ref_exists(f"refs/heads/{name}"):
            tracked = f"{ORIGIN}/{name}"
            log.debug("git_find_tracked_branch", branch=tracked)
            if not await self._ref_exists(f"refs/remotes/{tracked}"):
                raise NotFoundError(f"Branch '{name}' not found locally or as '{tracked}'")

            log.debug("git_create_tracking_branch", branch=name, tracked=tracked)
            args = GitArguments("branch --track")
            args.append_quoted(name)
            args.append_quoted(tracked)
            await self._execute(args)

        args = GitArguments("checkout --force --quiet")
        args.append_quoted(name)
        args.append("--")
        await self._execute(args)

    async def _fetch_origin(self) -> None:
        args = self._arguments(self.get_credentials())
        args.extend(["fetch", ORIGIN])
        await self._execute(args)

    async def _reset_hard(self, ref: str) -> None:
        args = GitArguments("reset --hard --quiet")
        args.append(ref)
        await self._execute(args)

    async def _update_submodules(self) -> None:
        args = self._arguments(self.get_credentials())
        args.append("submodule update --init --recursive")
        await self._execute(args)

    async def _list_remote_refs(self, repo_path: Path, remote: str) -> list[RemoteRef]:
        args = self._arguments(self.get_credentials())
        args.append("ls-remote")
        if remote == ORIGIN:
            args.append(remote)
        else:
            self._append_url(args, remote)
        stdout, _ = await self._execute(args, cwd=repo_path)
        return parse_ls_remote(stdout)

    async def _create_tag(self, name: str) -> None:
        if not await self._ref_exists("HEAD"):
            raise OperationError(f"Cannot create tag '{name}': HEAD does not point to a commit")
        args = GitArguments("tag")
        args.append_quoted(name)
        await self._execute(args)

    async def _push(self, refspec: str) -> None:
        args = self._arguments(self.get_credentials())
        args.extend(["push", ORIGIN])
        args.append_quoted(refspec)
        await self._execute(args)

    async def _write_head_archive(self, archive_path: Path) -> str:
        args = GitArguments("rev-parse")
        args.extend(["--verify", "--quiet", "HEAD"])
        stdout, code = await self._execute(args, check=False)
        if code != 0:
            raise OperationError(f"Cannot archive '{self.local_path}': HEAD does not point to a commit")
        commit = stdout.strip()

        args = GitArguments("archive --format=tar")
        args.append("--output")
        args.append_quoted(str(archive_path))
        args.append(commit)
        await self._execute(args)
        return commit

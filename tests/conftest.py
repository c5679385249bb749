"""Pytest configuration and shared fixtures."""

import subprocess
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import pytest

from repo_converge.exceptions import NotFoundError
from repo_converge.git.client import GitClient, parse_ls_remote
from repo_converge.hosting.base import HostingApiClient
from repo_converge.hosting.issue_filter import IssueQueryFilter
from repo_converge.models.domain import (
    IssueStatus,
    IssueTrackerIssue,
    Milestone,
    MilestoneState,
    ProjectId,
    ReleaseCurrentState,
    ReleaseDesiredState,
    RemoteRef,
)

# =============================================================================
# Real Git repositories
# =============================================================================


def git(*args: str, cwd: Path) -> str:
    """Run git in ``cwd`` and return its standard output."""
    result = subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)
    return result.stdout.strip()


@dataclass
class RemoteRepository:
    """A bare repository acting as 'origin' plus the clone used to seed it."""

    bare: Path
    seed: Path

    @property
    def url(self) -> str:
        return str(self.bare)

    def commit(self, name: str, content: str, branch: str = "main", message: str | None = None) -> str:
        """Commit a file on ``branch`` in the seed and push it to the bare repository."""
        git("checkout", "--quiet", branch, cwd=self.seed)
        (self.seed / name).write_text(content)
        git("add", name, cwd=self.seed)
        git("commit", "--quiet", "-m", message or f"Update {name}", cwd=self.seed)
        git("push", "--quiet", "origin", branch, cwd=self.seed)
        return git("rev-parse", "HEAD", cwd=self.seed)


@pytest.fixture(autouse=True)
def isolated_git_config(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the user's git configuration out of the tests."""
    config = tmp_path_factory.mktemp("gitconfig") / "config"
    config.write_text("[init]\n\tdefaultBranch = main\n[user]\n\tname = Test User\n\temail = test@example.com\n")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")


@pytest.fixture
def run_git():
    """The git() helper, for assertions against real repositories."""
    return git


@pytest.fixture
def remote_repo(tmp_path: Path) -> RemoteRepository:
    """Bare remote with branches 'main' (README.md) and 'feature' (feature.txt)."""
    bare = tmp_path / "remote.git"
    seed = tmp_path / "seed"
    bare.mkdir()
    git("init", "--quiet", "--bare", "--initial-branch=main", cwd=bare)
    git("clone", "--quiet", str(bare), str(seed), cwd=tmp_path)

    (seed / "README.md").write_text("# Test Repository\n")
    git("add", "README.md", cwd=seed)
    git("commit", "--quiet", "-m", "Initial commit", cwd=seed)
    git("push", "--quiet", "origin", "main", cwd=seed)

    git("checkout", "--quiet", "-b", "feature", cwd=seed)
    (seed / "feature.txt").write_text("feature work\n")
    git("add", "feature.txt", cwd=seed)
    git("commit", "--quiet", "-m", "Feature commit", cwd=seed)
    git("push", "--quiet", "origin", "feature", cwd=seed)
    git("checkout", "--quiet", "main", cwd=seed)

    return RemoteRepository(bare=bare, seed=seed)


# =============================================================================
# In-memory Git client
# =============================================================================


class FakeGitClient(GitClient):
    """GitClient whose primitives act on in-memory state.

    Attributes:
        calls: Names of the primitives invoked, in order
        remote_refs: Refs returned by ls-remote
    """

    def __init__(self, *args: Any, valid: bool = True, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.valid = valid
        self.calls: list[str] = []
        self.local_branches = ["main"]
        self.tracking_branches = ["feature"]
        self.remote_refs = [
            RemoteRef("HEAD"),
            RemoteRef("refs/heads/main"),
            RemoteRef("refs/heads/feature"),
            RemoteRef("refs/tags/v1.0"),
        ]
        self.list_error: Exception | None = None
        self.init_paths: list[Path] = []

    async def is_repository_valid(self) -> bool:
        return self.valid

    async def list_local_branches(self) -> list[str]:
        return list(self.local_branches)

    async def _clone(self, url: str, branch: str | None, recurse_submodules: bool) -> None:
        self.calls.append(f"clone:{branch}:{recurse_submodules}")

    async def _init_repository(self, path: Path) -> None:
        self.calls.append("init")
        self.init_paths.append(path)
        (path / "HEAD").write_text("ref: refs/heads/main\n")

    async def _checkout_branch(self, name: str) -> None:
        self.calls.append(f"checkout:{name}")
        if name in self.local_branches:
            return
        if name in self.tracking_branches:
            self.local_branches.append(name)
            return
        raise NotFoundError(f"Branch '{name}' not found")

    async def _fetch_origin(self) -> None:
        self.calls.append("fetch")

    async def _reset_hard(self, ref: str) -> None:
        self.calls.append(f"reset:{ref}")

    async def _update_submodules(self) -> None:
        self.calls.append("submodules")

    async def _list_remote_refs(self, repo_path: Path, remote: str) -> list[RemoteRef]:
        self.calls.append(f"ls-remote:{remote}")
        if self.list_error is not None:
            raise self.list_error
        return parse_ls_remote("\n".join(f"0000\t{ref.canonical_name}" for ref in self.remote_refs))

    async def _create_tag(self, name: str) -> None:
        self.calls.append(f"tag:{name}")

    async def _push(self, refspec: str) -> None:
        self.calls.append(f"push:{refspec}")

    async def _write_head_archive(self, archive_path: Path) -> str:
        raise NotImplementedError


# =============================================================================
# In-memory hosting service
# =============================================================================


class FakeHostingClient(HostingApiClient):
    """HostingApiClient backed by dictionaries, recording every mutating call."""

    def __init__(self) -> None:
        self.releases: dict[tuple[str, str], ReleaseCurrentState] = {}
        self.milestones: dict[str, Milestone] = {}
        self.issues: list[IssueTrackerIssue] = []
        self.comments: list[tuple[str, str]] = []
        self.mutations: list[tuple[Any, ...]] = []
        self.filters: list[IssueQueryFilter] = []
        self.namespaces = ["acme", "tools"]
        self.projects = {"acme": ["widgets", "gadgets"]}

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def get_release(self, project: ProjectId, tag: str) -> ReleaseCurrentState:
        return self.releases.get((project.full_name, tag), ReleaseCurrentState.missing())

    async def create_release(self, desired: ReleaseDesiredState) -> ReleaseCurrentState:
        self.mutations.append(("create_release", desired.tag))
        release = ReleaseCurrentState(
            exists=True,
            owner_name=desired.owner_name,
            repository_name=desired.repository_name,
            tag=desired.tag,
            target=desired.target or "main",
            title=desired.title,
            description=desired.description or "",
            draft=bool(desired.draft),
            prerelease=bool(desired.prerelease),
            release_id=len(self.releases) + 1,
        )
        self.releases[(desired.project.full_name, desired.tag)] = release
        return release

    async def update_release(
        self,
        project: ProjectId,
        current: ReleaseCurrentState,
        changes: dict[str, Any],
    ) -> ReleaseCurrentState:
        self.mutations.append(("update_release", current.tag, tuple(sorted(changes))))
        updated = replace(current, **changes)
        self.releases[(project.full_name, current.tag or "")] = updated
        return updated

    async def list_milestones(self, project: ProjectId, state: MilestoneState | None = None) -> list[Milestone]:
        return [m for m in self.milestones.values() if state is None or m.state == state]

    async def create_milestone(self, project: ProjectId, title: str) -> Milestone:
        self.mutations.append(("create_milestone", title))
        milestone = Milestone(id=len(self.milestones) + 1, title=title, state=MilestoneState.OPEN)
        self.milestones[title] = milestone
        return milestone

    async def update_milestone(self, project: ProjectId, milestone_id: int, state: MilestoneState) -> Milestone:
        self.mutations.append(("update_milestone", milestone_id, state))
        current = next(m for m in self.milestones.values() if m.id == milestone_id)
        updated = Milestone(id=current.id, title=current.title, state=state)
        self.milestones[current.title] = updated
        return updated

    async def list_issues(self, project: ProjectId, issue_filter: IssueQueryFilter) -> list[IssueTrackerIssue]:
        self.filters.append(issue_filter)
        return list(self.issues)

    async def update_issue(self, project: ProjectId, issue_id: str, status: IssueStatus) -> None:
        self.mutations.append(("update_issue", issue_id, status))

    async def add_issue_comment(self, project: ProjectId, issue_id: str, body: str) -> None:
        self.mutations.append(("add_issue_comment", issue_id))
        self.comments.append((issue_id, body))

    async def list_namespaces(self) -> list[str]:
        return list(self.namespaces)

    async def list_projects(self, namespace: str) -> list[str]:
        return list(self.projects.get(namespace, []))


def make_issue(issue_id: str, status: str, title: str = "An issue") -> IssueTrackerIssue:
    return IssueTrackerIssue(
        id=issue_id,
        status=status,
        type="Issue",
        title=title,
        description="",
        submitter="developer123",
        submitted_date=None,
        is_closed=status.lower() == "closed",
        url=f"https://gitlab.example.com/acme/widgets/-/issues/{issue_id}",
    )


@pytest.fixture
def hosting() -> FakeHostingClient:
    return FakeHostingClient()


@pytest.fixture
def project() -> ProjectId:
    return ProjectId("acme", "widgets")


@pytest.fixture
def issue_factory() -> Any:
    return make_issue


@pytest.fixture
def fake_git_client_class() -> type[FakeGitClient]:
    return FakeGitClient

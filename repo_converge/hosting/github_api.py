"""GitHub client implementation using PyGithub."""

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from github import Auth, Github, GithubException, UnknownObjectException  # type: ignore[import-not-found]
from github.GitRelease import GitRelease as GHRelease  # type: ignore[import-not-found]
from github.Issue import Issue as GHIssue  # type: ignore[import-not-found]
from github.Milestone import Milestone as GHMilestone  # type: ignore[import-not-found]
from github.Repository import Repository as GHRepository  # type: ignore[import-not-found]

from repo_converge.exceptions import RemoteApiError
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
)

log = structlog.get_logger(__name__)

T = TypeVar("T")

# Query keys passed straight through to Repository.get_issues
PASSTHROUGH_ISSUE_PARAMS = ("state", "assignee", "creator", "mentioned", "sort", "direction")


async def _run_sync(func: Callable[[], T]) -> T:
    """Run a synchronous function in a thread pool.

    This prevents blocking the event loop when calling synchronous
    PyGithub methods.
    """
    return await asyncio.to_thread(func)


def _api_error(action: str, e: GithubException) -> RemoteApiError:
    return RemoteApiError(
        f"GitHub API call failed: {action}",
        status_code=e.status,
        response_text=str(e.data) if e.data else None,
    )


class GitHubApiClient(HostingApiClient):
    """GitHub implementation using the PyGithub library.

    Pull requests are excluded from issue listings. Milestones are
    addressed by their number.
    """

    def __init__(self, token: str, base_url: str = "https://api.github.com") -> None:
        """Initialize GitHub client.

        Args:
            token: GitHub personal access token or App token
            base_url: GitHub API base URL (for GitHub Enterprise)
        """
        self.token = token.strip() if token else token
        # Normalize base_url by removing trailing slash (Pydantic HttpUrl adds it)
        self.base_url = base_url.rstrip("/")
        self._client: Github | None = None

    async def connect(self) -> None:
        """Initialize GitHub client."""

        def _connect() -> Github:
            auth = Auth.Token(self.token) if self.token else None
            return Github(auth=auth, base_url=self.base_url)

        self._client = await _run_sync(_connect)
        log.info("github_connected", base_url=self.base_url)

    async def disconnect(self) -> None:
        """Close GitHub client."""
        if self._client:
            await _run_sync(self._client.close)
            self._client = None

    @property
    def client(self) -> Github:
        if self._client is None:
            raise RuntimeError("GitHub client is not connected")
        return self._client

    def _repo(self, project: ProjectId) -> GHRepository:
        return self.client.get_repo(project.full_name, lazy=True)

    # ------------------------------------------------------------------
    # Releases
    # ------------------------------------------------------------------

    async def get_release(self, project: ProjectId, tag: str) -> ReleaseCurrentState:
        """Fetch the release for ``tag``.

        The tag endpoint only returns published releases, so a miss falls
        back to the full release list, which includes drafts.
        """
        log.info("get_release", project=project.full_name, tag=tag)

        def _find() -> GHRelease | None:
            repo = self._repo(project)
            try:
                return repo.get_release(tag)
            except UnknownObjectException:
                return next((r for r in repo.get_releases() if r.tag_name == tag), None)

        try:
            gh_release = await _run_sync(_find)
        except UnknownObjectException:
            return ReleaseCurrentState.missing()
        except GithubException as e:
            log.error("github_get_release_failed", tag=tag, error=str(e))
            raise _api_error("get release", e) from e

        if gh_release is None:
            return ReleaseCurrentState.missing()
        return self._convert_release(project, gh_release)

    async def create_release(self, desired: ReleaseDesiredState) -> ReleaseCurrentState:
        log.info("create_release", project=desired.project.full_name, tag=desired.tag)

        options: dict[str, Any] = {
            "name": desired.title if desired.title is not None else desired.tag,
            "message": desired.description or "",
        }
        if desired.draft is not None:
            options["draft"] = desired.draft
        if desired.prerelease is not None:
            options["prerelease"] = desired.prerelease
        if desired.target is not None:
            options["target_commitish"] = desired.target

        try:
            gh_release = await _run_sync(lambda: self._repo(desired.project).create_git_release(desired.tag, **options))
        except GithubException as e:
            log.error("github_create_release_failed", tag=desired.tag, error=str(e))
            raise _api_error("create release", e) from e

        return self._convert_release(desired.project, gh_release)

    async def update_release(
        self,
        project: ProjectId,
        current: ReleaseCurrentState,
        changes: dict[str, Any],
    ) -> ReleaseCurrentState:
        log.info("update_release", project=project.full_name, tag=current.tag, fields=sorted(changes))

        def _update() -> GHRelease:
            gh_release = self._repo(project).get_release(current.release_id)
            # name, message, draft and prerelease are always sent, so unchanged
            # values are carried over from the current release
            options: dict[str, Any] = {
                "name": changes.get("title", current.title) or "",
                "message": changes.get("description", current.description) or "",
                "draft": bool(changes.get("draft", current.draft)),
                "prerelease": bool(changes.get("prerelease", current.prerelease)),
            }
            if "target" in changes:
                options["target_commitish"] = changes["target"]
            return gh_release.update_release(**options)

        try:
            gh_release = await _run_sync(_update)
        except GithubException as e:
            log.error("github_update_release_failed", tag=current.tag, error=str(e))
            raise _api_error("update release", e) from e

        return self._convert_release(project, gh_release)

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------

    async def list_milestones(self, project: ProjectId, state: MilestoneState | None = None) -> list[Milestone]:
        log.info("list_milestones", project=project.full_name, state=state)

        gh_state = state.value if state is not None else "all"
        try:
            gh_milestones = await _run_sync(lambda: list(self._repo(project).get_milestones(state=gh_state)))
        except GithubException as e:
            log.error("github_list_milestones_failed", error=str(e))
            raise _api_error("list milestones", e) from e

        return [self._convert_milestone(m) for m in gh_milestones]

    async def create_milestone(self, project: ProjectId, title: str) -> Milestone:
        log.info("create_milestone", project=project.full_name, title=title)

        try:
            gh_milestone = await _run_sync(lambda: self._repo(project).create_milestone(title))
        except GithubException as e:
            log.error("github_create_milestone_failed", title=title, error=str(e))
            raise _api_error("create milestone", e) from e

        return self._convert_milestone(gh_milestone)

    async def update_milestone(self, project: ProjectId, milestone_id: int, state: MilestoneState) -> Milestone:
        log.info("update_milestone", project=project.full_name, milestone_id=milestone_id, state=state.value)

        def _update() -> GHMilestone:
            gh_milestone = self._repo(project).get_milestone(milestone_id)
            gh_milestone.edit(gh_milestone.title, state=state.value)
            return gh_milestone

        try:
            gh_milestone = await _run_sync(_update)
        except GithubException as e:
            log.error("github_update_milestone_failed", milestone_id=milestone_id, error=str(e))
            raise _api_error("update milestone", e) from e

        return self._convert_milestone(gh_milestone)

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    async def list_issues(self, project: ProjectId, issue_filter: IssueQueryFilter) -> list[IssueTrackerIssue]:
        log.info("list_issues", project=project.full_name, query=issue_filter.to_query_string())

        def _list() -> list[GHIssue]:
            repo = self._repo(project)
            options = self._issue_options(repo, issue_filter)
            if options is None:
                return []
            return [issue for issue in repo.get_issues(**options) if issue.pull_request is None]

        try:
            gh_issues = await _run_sync(_list)
        except GithubException as e:
            log.error("github_list_issues_failed", error=str(e))
            raise _api_error("list issues", e) from e

        return [self._convert_issue(issue) for issue in gh_issues]

    def _issue_options(self, repo: GHRepository, issue_filter: IssueQueryFilter) -> dict[str, Any] | None:
        """Translate a filter into Repository.get_issues keyword arguments.

        Returns None when the filter names a milestone that does not exist,
        which matches no issues.
        """
        options: dict[str, Any] = {"state": "all"}
        for key, value in issue_filter.query_params():
            if key in PASSTHROUGH_ISSUE_PARAMS:
                options[key] = value
            elif key == "labels":
                options["labels"] = [label.strip() for label in value.split(",") if label.strip()]
            elif key == "milestone":
                milestone = self._resolve_milestone(repo, value)
                if milestone is None:
                    return None
                options["milestone"] = milestone
            elif key != "per_page":
                log.debug("github_issue_param_ignored", param=key)
        return options

    @staticmethod
    def _resolve_milestone(repo: GHRepository, value: str) -> GHMilestone | str | None:
        if value in ("none", "*"):
            return value
        if value.isdigit():
            return repo.get_milestone(int(value))
        for milestone in repo.get_milestones(state="all"):
            if milestone.title == value:
                return milestone
        return None

    async def update_issue(self, project: ProjectId, issue_id: str, status: IssueStatus) -> None:
        log.info("update_issue", project=project.full_name, issue_id=issue_id, status=status.value)

        state = "closed" if status == IssueStatus.CLOSED else "open"
        try:
            await _run_sync(lambda: self._repo(project).get_issue(int(issue_id)).edit(state=state))
        except GithubException as e:
            log.error("github_update_issue_failed", issue_id=issue_id, error=str(e))
            raise _api_error("update issue", e) from e

    async def add_issue_comment(self, project: ProjectId, issue_id: str, body: str) -> None:
        log.info("add_issue_comment", project=project.full_name, issue_id=issue_id)

        try:
            await _run_sync(lambda: self._repo(project).get_issue(int(issue_id)).create_comment(body))
        except GithubException as e:
            log.error("github_add_comment_failed", issue_id=issue_id, error=str(e))
            raise _api_error("add issue comment", e) from e

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def list_namespaces(self) -> list[str]:
        log.info("list_namespaces")

        def _list() -> list[str]:
            user = self.client.get_user()
            return [user.login] + [org.login for org in user.get_orgs()]

        try:
            return await _run_sync(_list)
        except GithubException as e:
            log.error("github_list_namespaces_failed", error=str(e))
            raise _api_error("list namespaces", e) from e

    async def list_projects(self, namespace: str) -> list[str]:
        log.info("list_projects", namespace=namespace)

        def _list() -> list[str]:
            try:
                repos = self.client.get_organization(namespace).get_repos()
                return [repo.name for repo in repos]
            except UnknownObjectException:
                # Not an organization, try a user account
                return [repo.name for repo in self.client.get_user(namespace).get_repos()]

        try:
            return await _run_sync(_list)
        except GithubException as e:
            log.error("github_list_projects_failed", namespace=namespace, error=str(e))
            raise _api_error("list projects", e) from e

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def _convert_release(self, project: ProjectId, gh_release: GHRelease) -> ReleaseCurrentState:
        return ReleaseCurrentState(
            exists=True,
            owner_name=project.namespace,
            repository_name=project.project_name,
            tag=gh_release.tag_name,
            target=gh_release.target_commitish,
            title=gh_release.title,
            description=gh_release.body or "",
            draft=gh_release.draft,
            prerelease=gh_release.prerelease,
            release_id=gh_release.id,
        )

    def _convert_milestone(self, gh_milestone: GHMilestone) -> Milestone:
        return Milestone(
            id=gh_milestone.number,
            title=gh_milestone.title,
            state=MilestoneState.from_remote(gh_milestone.state),
        )

    def _convert_issue(self, gh_issue: GHIssue) -> IssueTrackerIssue:
        """Convert GitHub Issue to the tracker issue model."""
        is_closed = gh_issue.state == "closed"
        return IssueTrackerIssue(
            id=str(gh_issue.number),
            status=IssueStatus.CLOSED.value if is_closed else IssueStatus.OPEN.value,
            type=gh_issue.labels[0].name if gh_issue.labels else "Issue",
            title=gh_issue.title,
            description=gh_issue.body or "",
            submitter=gh_issue.user.login if gh_issue.user else "",
            submitted_date=gh_issue.created_at,
            is_closed=is_closed,
            url=gh_issue.html_url,
        )

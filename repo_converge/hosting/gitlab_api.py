"""GitLab client implementation using direct REST API v4 calls."""

import urllib.parse
from datetime import datetime
from typing import Any

import httpx
import structlog

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
from repo_converge.utils.connection_pool import HTTPConnectionPool, get_pool
from repo_converge.utils.retry import async_retry

log = structlog.get_logger(__name__)

# GitLab issue states mapped to tracker statuses
ISSUE_STATUSES = {"opened": IssueStatus.OPEN.value, "closed": IssueStatus.CLOSED.value}


def encode_path(path: str) -> str:
    """URL-encode a namespace/project path or tag for use in an API path."""
    return urllib.parse.quote(path, safe="")


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class GitLabApiClient(HostingApiClient):
    """GitLab implementation using direct REST API v4 calls.

    Supports gitlab.com and self-hosted instances.

    GitLab API differences from GitHub:
    - Projects are addressed by their URL-encoded ``namespace/project`` path
    - Issues are addressed by 'iid' (project-scoped), not the global 'id'
    - Issues report 'opened'/'closed'; milestones report 'active'/'closed'
    - State changes go through 'state_event' (close/reopen for issues,
      close/activate for milestones)
    - Comments are 'notes'
    - Releases have no draft or prerelease flag and their ref cannot change
    - Lists are paginated, the next page number is in 'X-Next-Page'
    """

    release_fields = ("title", "description")

    def __init__(self, base_url: str, token: str) -> None:
        """Initialize GitLab client.

        Args:
            base_url: GitLab base URL (e.g., https://gitlab.com)
            token: Personal access token with the api scope
        """
        self.base_url = base_url.rstrip("/")
        self.api_base = f"{self.base_url}/api/v4"
        self.token = token
        self._pool: HTTPConnectionPool | None = None

    async def connect(self) -> None:
        """Attach to the shared connection pool for this server."""
        self._pool = await get_pool(
            name=f"gitlab-{self.base_url}",
            base_url=self.api_base,
            headers={
                "PRIVATE-TOKEN": self.token,
                "Content-Type": "application/json",
            },
        )
        log.info("gitlab_connected", base_url=self.base_url)

    async def disconnect(self) -> None:
        """Clear pool reference (pool manager handles actual cleanup)."""
        self._pool = None

    @property
    def pool(self) -> HTTPConnectionPool:
        if self._pool is None:
            raise RuntimeError("GitLab client is not connected")
        return self._pool

    @staticmethod
    def _check(response: httpx.Response, action: str) -> None:
        """Raise RemoteApiError for a non-2xx response."""
        if response.is_success:
            return
        log.error("gitlab_request_failed", action=action, status_code=response.status_code)
        raise RemoteApiError(
            f"GitLab API call failed: {action}",
            status_code=response.status_code,
            response_text=response.text,
        )

    async def _get_all(self, path: str, action: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """GET every page of a list endpoint.

        A query string already in ``path`` is kept for every page and the
        page number is appended to it; otherwise it goes into ``params``.
        """
        items: list[dict[str, Any]] = []
        page_path = path
        page_params = dict(params or {})
        while True:
            response = await self.pool.get(page_path, params=dict(page_params) or None)
            self._check(response, action)
            items.extend(response.json())

            next_page = response.headers.get("X-Next-Page", "").strip()
            if not next_page:
                return items
            if "?" in path:
                page_path = f"{path}&page={next_page}"
            else:
                page_params["page"] = next_page

    def _project_path(self, project: ProjectId) -> str:
        return f"/projects/{encode_path(project.full_name)}"

    # ------------------------------------------------------------------
    # Releases
    # ------------------------------------------------------------------

    @async_retry(max_attempts=3, backoff_factor=2.0, exceptions=(httpx.TransportError,))
    async def get_release(self, project: ProjectId, tag: str) -> ReleaseCurrentState:
        log.info("get_release", project=project.full_name, tag=tag)

        response = await self.pool.get(f"{self._project_path(project)}/releases/{encode_path(tag)}")
        if response.status_code == 404:
            return ReleaseCurrentState.missing()
        self._check(response, "get release")

        return self._parse_release(project, response.json())

    async def create_release(self, desired: ReleaseDesiredState) -> ReleaseCurrentState:
        log.info("create_release", project=desired.project.full_name, tag=desired.tag)

        data: dict[str, Any] = {"tag_name": desired.tag}
        if desired.title is not None:
            data["name"] = desired.title
        if desired.description is not None:
            data["description"] = desired.description
        if desired.target is not None:
            data["ref"] = desired.target

        response = await self.pool.post(f"{self._project_path(desired.project)}/releases", json=data)
        self._check(response, "create release")

        return self._parse_release(desired.project, response.json())

    async def update_release(
        self,
        project: ProjectId,
        current: ReleaseCurrentState,
        changes: dict[str, Any],
    ) -> ReleaseCurrentState:
        log.info("update_release", project=project.full_name, tag=current.tag, fields=sorted(changes))

        data: dict[str, Any] = {}
        if "title" in changes:
            data["name"] = changes["title"]
        if "description" in changes:
            data["description"] = changes["description"]

        response = await self.pool.put(
            f"{self._project_path(project)}/releases/{encode_path(current.tag or '')}",
            json=data,
        )
        self._check(response, "update release")

        return self._parse_release(project, response.json())

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------

    @async_retry(max_attempts=3, backoff_factor=2.0, exceptions=(httpx.TransportError,))
    async def list_milestones(self, project: ProjectId, state: MilestoneState | None = None) -> list[Milestone]:
        log.info("list_milestones", project=project.full_name, state=state)

        params: dict[str, Any] = {"per_page": 100}
        if state is not None:
            params["state"] = "closed" if state == MilestoneState.CLOSED else "active"

        milestones = await self._get_all(f"{self._project_path(project)}/milestones", "list milestones", params)
        return [self._parse_milestone(m) for m in milestones]

    @async_retry(max_attempts=3, backoff_factor=2.0, exceptions=(httpx.TransportError,))
    async def find_milestone(self, project: ProjectId, title: str) -> Milestone | None:
        log.info("find_milestone", project=project.full_name, title=title)

        milestones = await self._get_all(
            f"{self._project_path(project)}/milestones",
            "find milestone",
            {"title": title},
        )
        # The title parameter is an exact match, but guard against servers that ignore it
        for data in milestones:
            if data.get("title") == title:
                return self._parse_milestone(data)
        return None

    async def create_milestone(self, project: ProjectId, title: str) -> Milestone:
        log.info("create_milestone", project=project.full_name, title=title)

        response = await self.pool.post(f"{self._project_path(project)}/milestones", json={"title": title})
        self._check(response, "create milestone")

        return self._parse_milestone(response.json())

    async def update_milestone(self, project: ProjectId, milestone_id: int, state: MilestoneState) -> Milestone:
        log.info("update_milestone", project=project.full_name, milestone_id=milestone_id, state=state.value)

        state_event = "close" if state == MilestoneState.CLOSED else "activate"
        response = await self.pool.put(
            f"{self._project_path(project)}/milestones/{milestone_id}",
            json={"state_event": state_event},
        )
        self._check(response, "update milestone")

        return self._parse_milestone(response.json())

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    @async_retry(max_attempts=3, backoff_factor=2.0, exceptions=(httpx.TransportError,))
    async def list_issues(self, project: ProjectId, issue_filter: IssueQueryFilter) -> list[IssueTrackerIssue]:
        query = issue_filter.to_query_string()
        if not query.startswith("?"):
            query = f"?{query}"
        log.info("list_issues", project=project.full_name, query=query)

        issues = await self._get_all(f"{self._project_path(project)}/issues{query}", "list issues")
        return [self._parse_issue(issue) for issue in issues]

    async def update_issue(self, project: ProjectId, issue_id: str, status: IssueStatus) -> None:
        log.info("update_issue", project=project.full_name, issue_id=issue_id, status=status.value)

        state_event = "close" if status == IssueStatus.CLOSED else "reopen"
        response = await self.pool.put(
            f"{self._project_path(project)}/issues/{issue_id}",
            json={"state_event": state_event},
        )
        self._check(response, "update issue")

    async def add_issue_comment(self, project: ProjectId, issue_id: str, body: str) -> None:
        log.info("add_issue_comment", project=project.full_name, issue_id=issue_id)

        response = await self.pool.post(
            f"{self._project_path(project)}/issues/{issue_id}/notes",
            json={"body": body},
        )
        self._check(response, "add issue comment")

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    @async_retry(max_attempts=3, backoff_factor=2.0, exceptions=(httpx.TransportError,))
    async def list_namespaces(self) -> list[str]:
        log.info("list_namespaces")

        groups = await self._get_all("/groups", "list groups", {"per_page": 100})
        return [group["full_path"] for group in groups]

    @async_retry(max_attempts=3, backoff_factor=2.0, exceptions=(httpx.TransportError,))
    async def list_projects(self, namespace: str) -> list[str]:
        log.info("list_projects", namespace=namespace)

        projects = await self._get_all(f"/groups/{encode_path(namespace)}/projects", "list projects", {"per_page": 100})
        return [project["path"] for project in projects]

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def _parse_release(self, project: ProjectId, data: dict[str, Any]) -> ReleaseCurrentState:
        """Parse release data from GitLab API response.

        GitLab-specific fields:
        - 'name' -> title
        - 'commit.id' -> target (a SHA, GitLab does not keep the ref name)
        - the tag name is the release identifier
        """
        return ReleaseCurrentState(
            exists=True,
            owner_name=project.namespace,
            repository_name=project.project_name,
            tag=data["tag_name"],
            target=(data.get("commit") or {}).get("id"),
            title=data.get("name"),
            description=data.get("description") or "",
            release_id=data["tag_name"],
        )

    def _parse_milestone(self, data: dict[str, Any]) -> Milestone:
        return Milestone(
            id=data["id"],
            title=data["title"],
            state=MilestoneState.from_remote(data.get("state")),
        )

    def _parse_issue(self, data: dict[str, Any]) -> IssueTrackerIssue:
        """Parse issue data from GitLab API response.

        Handles GitLab-specific field names:
        - 'iid' -> id (project-scoped number used in issue URLs)
        - 'opened' state -> "Open"
        - 'issue_type' -> type (defaults to "Issue")
        """
        state = data.get("state", "")
        return IssueTrackerIssue(
            id=str(data["iid"]),
            status=ISSUE_STATUSES.get(state, state),
            type=(data.get("issue_type") or "issue").capitalize(),
            title=data.get("title", ""),
            description=data.get("description") or "",
            submitter=(data.get("author") or {}).get("username", ""),
            submitted_date=parse_timestamp(data.get("created_at")),
            is_closed=state == "closed",
            url=data.get("web_url", ""),
        )

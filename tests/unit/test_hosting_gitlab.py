"""Tests for repo_converge/hosting/gitlab_api.py - GitLab REST API v4 client.

Key GitLab differences tested:
- Projects addressed by URL-encoded namespace/project path
- iid -> issue id mapping (project-scoped)
- opened/closed issue states -> Open/Closed
- active/closed milestone states
- state_event for closing/reopening issues and milestones
- X-Next-Page pagination
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from repo_converge.exceptions import RemoteApiError
from repo_converge.hosting.gitlab_api import GitLabApiClient, encode_path
from repo_converge.hosting.issue_filter import IssueQueryFilter
from repo_converge.models.domain import (
    IssueStatus,
    MilestoneState,
    ProjectId,
    ReconcileOutcome,
    ReleaseDesiredState,
)
from repo_converge.utils.connection_pool import HTTPConnectionPool

PROJECT_PATH = "/projects/acme%2Fwidgets"

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_pool() -> AsyncMock:
    """Create a mock HTTPConnectionPool."""
    return AsyncMock(spec=HTTPConnectionPool)


@pytest.fixture
def client(mock_pool) -> GitLabApiClient:
    """GitLab client already attached to the mock pool."""
    gitlab = GitLabApiClient(base_url="https://gitlab.example.com/", token="glpat-test")
    gitlab._pool = mock_pool
    return gitlab


@pytest.fixture
def sample_issue_data() -> dict:
    """Sample issue data as returned by GitLab API."""
    return {
        "id": 1001,
        "iid": 42,
        "title": "Fix authentication bug",
        "description": "Users cannot log in.",
        "state": "opened",
        "issue_type": "incident",
        "created_at": "2024-06-15T10:30:00Z",
        "author": {"username": "developer123"},
        "web_url": "https://gitlab.example.com/acme/widgets/-/issues/42",
    }


@pytest.fixture
def sample_release_data() -> dict:
    return {
        "tag_name": "v1.0.0",
        "name": "Widgets 1.0.0",
        "description": "First release",
        "commit": {"id": "abc123"},
    }


def response(status: int = 200, json=None, headers: dict | None = None) -> httpx.Response:
    return httpx.Response(status, json=json if json is not None else {}, headers=headers)


# =============================================================================
# Connection
# =============================================================================


class TestConnection:
    """Tests for connect/disconnect."""

    def test_init_strips_trailing_slash(self, client):
        assert client.base_url == "https://gitlab.example.com"
        assert client.api_base == "https://gitlab.example.com/api/v4"

    @pytest.mark.asyncio
    async def test_connect_uses_shared_pool(self, mock_pool):
        gitlab = GitLabApiClient(base_url="https://gitlab.example.com", token="glpat-test")

        with patch("repo_converge.hosting.gitlab_api.get_pool", AsyncMock(return_value=mock_pool)) as get_pool:
            async with gitlab:
                assert gitlab.pool is mock_pool

        kwargs = get_pool.call_args.kwargs
        assert kwargs["name"] == "gitlab-https://gitlab.example.com"
        assert kwargs["base_url"] == "https://gitlab.example.com/api/v4"
        assert kwargs["headers"]["PRIVATE-TOKEN"] == "glpat-test"

    def test_pool_requires_connect(self):
        gitlab = GitLabApiClient(base_url="https://gitlab.example.com", token="t")

        with pytest.raises(RuntimeError, match="not connected"):
            _ = gitlab.pool

    def test_encode_path(self):
        assert encode_path("group/sub group/project") == "group%2Fsub%20group%2Fproject"


# =============================================================================
# Releases
# =============================================================================


class TestReleases:
    """Tests for release operations."""

    @pytest.mark.asyncio
    async def test_get_release(self, client, mock_pool, sample_release_data):
        mock_pool.get.return_value = response(json=sample_release_data)

        release = await client.get_release(ProjectId("acme", "widgets"), "v1.0.0")

        mock_pool.get.assert_awaited_once_with(f"{PROJECT_PATH}/releases/v1.0.0")
        assert release.exists
        assert release.title == "Widgets 1.0.0"
        assert release.description == "First release"
        assert release.target == "abc123"
        assert release.release_id == "v1.0.0"

    @pytest.mark.asyncio
    async def test_get_release_missing(self, client, mock_pool):
        mock_pool.get.return_value = response(404, json={"message": "404 Not found"})

        release = await client.get_release(ProjectId("acme", "widgets"), "v9")

        assert release.exists is False

    @pytest.mark.asyncio
    async def test_get_release_error(self, client, mock_pool):
        mock_pool.get.return_value = response(403, json={"message": "403 Forbidden"})

        with pytest.raises(RemoteApiError) as exc_info:
            await client.get_release(ProjectId("acme", "widgets"), "v1")

        assert exc_info.value.status_code == 403
        assert "403 Forbidden" in exc_info.value.response_text

    @pytest.mark.asyncio
    async def test_get_release_retries_transport_errors(self, client, mock_pool, sample_release_data):
        mock_pool.get.side_effect = [httpx.ConnectError("refused"), response(json=sample_release_data)]

        with patch("asyncio.sleep", new_callable=AsyncMock):
            release = await client.get_release(ProjectId("acme", "widgets"), "v1.0.0")

        assert release.exists
        assert mock_pool.get.await_count == 2

    @pytest.mark.asyncio
    async def test_create_release_omits_unset_fields(self, client, mock_pool, sample_release_data):
        mock_pool.post.return_value = response(201, json=sample_release_data)
        desired = ReleaseDesiredState("acme", "widgets", "v1.0.0", target="main", title="Widgets 1.0.0")

        await client.create_release(desired)

        mock_pool.post.assert_awaited_once_with(
            f"{PROJECT_PATH}/releases",
            json={"tag_name": "v1.0.0", "name": "Widgets 1.0.0", "ref": "main"},
        )

    @pytest.mark.asyncio
    async def test_create_release_is_not_retried(self, client, mock_pool):
        mock_pool.post.side_effect = httpx.ConnectError("refused")

        with pytest.raises(httpx.ConnectError):
            await client.create_release(ReleaseDesiredState("acme", "widgets", "v1"))

        assert mock_pool.post.await_count == 1

    @pytest.mark.asyncio
    async def test_create_or_update_sends_only_differing_fields(self, client, mock_pool, sample_release_data):
        mock_pool.get.return_value = response(json=sample_release_data)
        mock_pool.put.return_value = response(json={**sample_release_data, "description": "Notes"})
        desired = ReleaseDesiredState(
            "acme",
            "widgets",
            "v1.0.0",
            target="main",
            title="Widgets 1.0.0",
            description="Notes",
            draft=True,
        )

        report = await client.create_or_update_release(desired)

        assert report.outcome == ReconcileOutcome.UPDATED
        assert report.changes == {"description": "Notes"}
        mock_pool.put.assert_awaited_once_with(f"{PROJECT_PATH}/releases/v1.0.0", json={"description": "Notes"})

    @pytest.mark.asyncio
    async def test_create_or_update_converged(self, client, mock_pool, sample_release_data):
        mock_pool.get.return_value = response(json=sample_release_data)
        desired = ReleaseDesiredState("acme", "widgets", "v1.0.0", title="Widgets 1.0.0", description="First release")

        report = await client.create_or_update_release(desired)

        assert report.outcome == ReconcileOutcome.UNCHANGED
        mock_pool.post.assert_not_awaited()
        mock_pool.put.assert_not_awaited()


# =============================================================================
# Milestones
# =============================================================================


class TestMilestones:
    """Tests for milestone operations."""

    @pytest.mark.asyncio
    async def test_list_milestones_follows_pagination(self, client, mock_pool):
        mock_pool.get.side_effect = [
            response(json=[{"id": 1, "title": "1.0", "state": "closed"}], headers={"X-Next-Page": "2"}),
            response(json=[{"id": 2, "title": "1.1", "state": "active"}], headers={"X-Next-Page": ""}),
        ]

        milestones = await client.list_milestones(ProjectId("acme", "widgets"))

        assert [(m.title, m.state) for m in milestones] == [
            ("1.0", MilestoneState.CLOSED),
            ("1.1", MilestoneState.OPEN),
        ]
        second_call = mock_pool.get.await_args_list[1]
        assert second_call.kwargs["params"] == {"per_page": 100, "page": "2"}

    @pytest.mark.asyncio
    async def test_list_milestones_state_filter(self, client, mock_pool):
        mock_pool.get.return_value = response(json=[])

        await client.list_milestones(ProjectId("acme", "widgets"), MilestoneState.OPEN)

        assert mock_pool.get.await_args.kwargs["params"] == {"per_page": 100, "state": "active"}

    @pytest.mark.asyncio
    async def test_find_milestone_exact_title(self, client, mock_pool):
        mock_pool.get.return_value = response(
            json=[{"id": 1, "title": "1.0.1", "state": "active"}, {"id": 2, "title": "1.0", "state": "active"}]
        )

        milestone = await client.find_milestone(ProjectId("acme", "widgets"), "1.0")

        assert milestone.id == 2
        assert mock_pool.get.await_args.kwargs["params"] == {"title": "1.0"}

    @pytest.mark.asyncio
    async def test_find_milestone_missing(self, client, mock_pool):
        mock_pool.get.return_value = response(json=[])

        assert await client.find_milestone(ProjectId("acme", "widgets"), "2.0") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("state", "event"),
        [(MilestoneState.CLOSED, "close"), (MilestoneState.OPEN, "activate")],
    )
    async def test_update_milestone_state_event(self, client, mock_pool, state, event):
        mock_pool.put.return_value = response(json={"id": 7, "title": "1.0", "state": "closed"})

        await client.update_milestone(ProjectId("acme", "widgets"), 7, state)

        mock_pool.put.assert_awaited_once_with(f"{PROJECT_PATH}/milestones/7", json={"state_event": event})

    @pytest.mark.asyncio
    async def test_create_milestone(self, client, mock_pool):
        mock_pool.post.return_value = response(201, json={"id": 3, "title": "2.0", "state": "active"})

        milestone = await client.create_milestone(ProjectId("acme", "widgets"), "2.0")

        assert milestone.id == 3
        assert milestone.is_closed is False


# =============================================================================
# Issues
# =============================================================================


class TestIssues:
    """Tests for issue operations."""

    @pytest.mark.asyncio
    async def test_list_issues_structured_filter(self, client, mock_pool, sample_issue_data):
        mock_pool.get.return_value = response(json=[sample_issue_data])

        issues = await client.list_issues(ProjectId("acme", "widgets"), IssueQueryFilter.structured("1.0", "bug"))

        path = mock_pool.get.await_args.args[0]
        assert path == f"{PROJECT_PATH}/issues?per_page=100&milestone=1.0&labels=bug"
        issue = issues[0]
        assert issue.id == "42"
        assert issue.status == "Open"
        assert issue.type == "Incident"
        assert issue.submitter == "developer123"
        assert issue.submitted_date.year == 2024
        assert issue.is_closed is False

    @pytest.mark.asyncio
    async def test_list_issues_keeps_filter_on_every_page(self, sample_issue_data):
        seen: list[dict[str, str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(dict(request.url.params))
            next_page = "2" if len(seen) == 1 else ""
            page = [{**sample_issue_data, "iid": len(seen)}]
            return httpx.Response(200, json=page, headers={"X-Next-Page": next_page})

        pool = HTTPConnectionPool(base_url="https://gitlab.example.com/api/v4")
        pool._client = httpx.AsyncClient(base_url=pool.base_url, transport=httpx.MockTransport(handler))
        gitlab = GitLabApiClient(base_url="https://gitlab.example.com", token="glpat-test")
        gitlab._pool = pool

        try:
            issues = await gitlab.list_issues(ProjectId("acme", "widgets"), IssueQueryFilter.structured("1.0", "bug"))
        finally:
            await pool.close()

        assert [issue.id for issue in issues] == ["1", "2"]
        assert seen == [
            {"per_page": "100", "milestone": "1.0", "labels": "bug"},
            {"per_page": "100", "milestone": "1.0", "labels": "bug", "page": "2"},
        ]

    @pytest.mark.asyncio
    async def test_list_issues_custom_query_gets_leading_question_mark(self, client, mock_pool):
        mock_pool.get.return_value = response(json=[])

        await client.list_issues(ProjectId("acme", "widgets"), IssueQueryFilter.custom("state=opened&labels=x"))

        assert mock_pool.get.await_args.args[0] == f"{PROJECT_PATH}/issues?state=opened&labels=x"

    @pytest.mark.asyncio
    async def test_unknown_state_passes_through(self, client, mock_pool, sample_issue_data):
        mock_pool.get.return_value = response(json=[{**sample_issue_data, "state": "locked", "issue_type": None}])

        issues = await client.list_issues(ProjectId("acme", "widgets"), IssueQueryFilter.custom("?x=1"))

        assert issues[0].status == "locked"
        assert issues[0].type == "Issue"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("status", "event"), [(IssueStatus.CLOSED, "close"), (IssueStatus.OPEN, "reopen")])
    async def test_update_issue_state_event(self, client, mock_pool, status, event):
        mock_pool.put.return_value = response(json={})

        await client.update_issue(ProjectId("acme", "widgets"), "42", status)

        mock_pool.put.assert_awaited_once_with(f"{PROJECT_PATH}/issues/42", json={"state_event": event})

    @pytest.mark.asyncio
    async def test_add_issue_comment_posts_note(self, client, mock_pool):
        mock_pool.post.return_value = response(201, json={"id": 1})

        await client.add_issue_comment(ProjectId("acme", "widgets"), "42", "Fixed in 1.0")

        mock_pool.post.assert_awaited_once_with(f"{PROJECT_PATH}/issues/42/notes", json={"body": "Fixed in 1.0"})

    @pytest.mark.asyncio
    async def test_update_issue_failure(self, client, mock_pool):
        mock_pool.put.return_value = response(500, json={"message": "boom"})

        with pytest.raises(RemoteApiError, match="update issue"):
            await client.update_issue(ProjectId("acme", "widgets"), "42", IssueStatus.CLOSED)


# =============================================================================
# Discovery
# =============================================================================


class TestDiscovery:
    """Tests for namespace/project listing."""

    @pytest.mark.asyncio
    async def test_list_namespaces(self, client, mock_pool):
        mock_pool.get.return_value = response(json=[{"full_path": "acme"}, {"full_path": "acme/tools"}])

        assert await client.list_namespaces() == ["acme", "acme/tools"]
        assert mock_pool.get.await_args.args[0] == "/groups"

    @pytest.mark.asyncio
    async def test_list_projects(self, client, mock_pool):
        mock_pool.get.return_value = response(json=[{"path": "widgets"}, {"path": "gadgets"}])

        assert await client.list_projects("acme/tools") == ["widgets", "gadgets"]
        assert mock_pool.get.await_args.args[0] == "/groups/acme%2Ftools/projects"

"""
Abstract base class for hosting service API clients.

This module defines the interface the reconcilers use to read and change
releases, milestones and issues on a hosting service (GitHub, GitLab).
"""

from abc import ABC, abstractmethod
from typing import Any

import structlog

from repo_converge.hosting.issue_filter import IssueQueryFilter
from repo_converge.models.domain import (
    RELEASE_MUTABLE_FIELDS,
    IssueStatus,
    IssueTrackerIssue,
    Milestone,
    MilestoneState,
    ProjectId,
    ReconcileOutcome,
    ReconcileReport,
    ReleaseCurrentState,
    ReleaseDesiredState,
)

log = structlog.get_logger(__name__)


class HostingApiClient(ABC):
    """Abstract base class for hosting service clients.

    Implementations normalize provider-specific APIs into the domain models
    of ``models.domain`` and handle provider quirks such as:
    - Different release fields (GitLab has no draft/prerelease flags)
    - Different state names (GitLab's 'opened'/'active' vs 'open')
    - Different state changes (GitLab's 'state_event' vs a 'state' field)

    Every per-project call takes a ProjectId, so one client can serve any
    number of projects. API failures raise RemoteApiError.

    Attributes:
        release_fields: Release fields the service stores and compares
    """

    release_fields: tuple[str, ...] = RELEASE_MUTABLE_FIELDS

    @abstractmethod
    async def connect(self) -> None:
        """Establish the API session."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the API session."""
        pass

    async def __aenter__(self) -> "HostingApiClient":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.disconnect()

    # ------------------------------------------------------------------
    # Releases
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_release(self, project: ProjectId, tag: str) -> ReleaseCurrentState:
        """Fetch the release for a tag.

        Args:
            project: Repository the release belongs to
            tag: Tag name identifying the release

        Returns:
            Current release state, or ``ReleaseCurrentState.missing()`` when
            no release exists for the tag.

        Raises:
            RemoteApiError: If the API request fails for any other reason
        """
        pass

    @abstractmethod
    async def create_release(self, desired: ReleaseDesiredState) -> ReleaseCurrentState:
        """Create a release for ``desired.tag``.

        Fields left as None in ``desired`` are omitted from the request so
        the service applies its own defaults.
        """
        pass

    @abstractmethod
    async def update_release(
        self,
        project: ProjectId,
        current: ReleaseCurrentState,
        changes: dict[str, Any],
    ) -> ReleaseCurrentState:
        """Change the given fields of an existing release.

        Args:
            project: Repository the release belongs to
            current: The release as last fetched (identifies it)
            changes: Field name to new value, as from ``changes_to``.
                The tag is never among them.
        """
        pass

    async def create_or_update_release(self, desired: ReleaseDesiredState) -> ReconcileReport:
        """Make the release for ``desired.tag`` match ``desired``.

        Fetches by tag. An absent release is created; an existing one is
        updated with exactly the differing fields; a matching one is left
        alone, so a repeated call sends no mutating request.

        Returns:
            ReconcileReport describing what was sent
        """
        current = await self.get_release(desired.project, desired.tag)

        if not current.exists:
            await self.create_release(desired)
            fields = ReleaseCurrentState.missing().changes_to(desired, self.release_fields)
            log.info("release_created", project=desired.project.full_name, tag=desired.tag)
            return ReconcileReport(ReconcileOutcome.CREATED, changes=fields)

        changes = current.changes_to(desired, self.release_fields)
        if not changes:
            log.debug("release_unchanged", project=desired.project.full_name, tag=desired.tag)
            return ReconcileReport(ReconcileOutcome.UNCHANGED)

        await self.update_release(desired.project, current, changes)
        log.info(
            "release_updated",
            project=desired.project.full_name,
            tag=desired.tag,
            fields=sorted(changes),
        )
        return ReconcileReport(ReconcileOutcome.UPDATED, changes=changes)

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_milestones(self, project: ProjectId, state: MilestoneState | None = None) -> list[Milestone]:
        """List milestones, optionally only those in ``state``."""
        pass

    async def find_milestone(self, project: ProjectId, title: str) -> Milestone | None:
        """Find a milestone by exact title, open or closed."""
        for milestone in await self.list_milestones(project):
            if milestone.title == title:
                return milestone
        return None

    @abstractmethod
    async def create_milestone(self, project: ProjectId, title: str) -> Milestone:
        """Create an open milestone."""
        pass

    @abstractmethod
    async def update_milestone(self, project: ProjectId, milestone_id: int, state: MilestoneState) -> Milestone:
        """Close or reopen a milestone.

        Args:
            project: Repository the milestone belongs to
            milestone_id: Service identifier of the milestone
            state: Desired state
        """
        pass

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_issues(self, project: ProjectId, issue_filter: IssueQueryFilter) -> list[IssueTrackerIssue]:
        """List issues matching the filter.

        Returned statuses are normalized to "Open"/"Closed" where the
        service state maps onto them; anything else is passed through.
        """
        pass

    @abstractmethod
    async def update_issue(self, project: ProjectId, issue_id: str, status: IssueStatus) -> None:
        """Close or reopen an issue."""
        pass

    @abstractmethod
    async def add_issue_comment(self, project: ProjectId, issue_id: str, body: str) -> None:
        """Post a comment on an issue."""
        pass

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_namespaces(self) -> list[str]:
        """Namespaces (organizations, groups) visible to the credentials."""
        pass

    @abstractmethod
    async def list_projects(self, namespace: str) -> list[str]:
        """Project names within a namespace."""
        pass

"""Milestone and issue reconciliation for one project.

A release version is represented by a milestone with the same title.
ensure_version moves the milestone at most one step through

    absent -> open <-> closed

per call, and transition_issues moves every matching issue to a target
status, leaving issues already there untouched.
"""

import asyncio

import structlog

from repo_converge.exceptions import ConfigurationError
from repo_converge.hosting.base import HostingApiClient
from repo_converge.hosting.issue_filter import IssueQueryFilter
from repo_converge.models.domain import (
    IssueStatus,
    IssueTrackerIssue,
    IssueTrackerVersion,
    MilestoneState,
    ProjectId,
    ReconcileOutcome,
    ReconcileReport,
)
from repo_converge.utils.cancellation import raise_if_cancelled

log = structlog.get_logger(__name__)


class IssueTrackerReconciler:
    """Keeps the milestones and issues of a project in a desired state.

    Attributes:
        client: Connected hosting API client
        project: Project the milestones and issues belong to
        issue_filter: Default filter for issue enumeration and transitions
        dry_run: Log planned mutations without sending them
    """

    def __init__(
        self,
        client: HostingApiClient,
        project: ProjectId,
        issue_filter: IssueQueryFilter | None = None,
        dry_run: bool = False,
    ) -> None:
        self.client = client
        self.project = project
        self.issue_filter = issue_filter
        self.dry_run = dry_run

    def _filter(self, issue_filter: IssueQueryFilter | None) -> IssueQueryFilter:
        selected = issue_filter or self.issue_filter
        if selected is None:
            raise ConfigurationError("An issue filter is required to select issues")
        return selected

    async def ensure_version(
        self,
        version: str,
        is_closed: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> ReconcileReport:
        """Make the milestone titled ``version`` exist in the desired state.

        A missing milestone is created, then closed when ``is_closed`` is
        requested. An existing one is closed or reopened only if its state
        differs. A call never both closes and reopens.

        Returns:
            ReconcileReport (CREATED, CLOSED, REOPENED or UNCHANGED)
        """
        raise_if_cancelled(cancel_event)
        desired_state = MilestoneState.CLOSED if is_closed else MilestoneState.OPEN
        milestone = await self.client.find_milestone(self.project, version)

        if milestone is None:
            changes = {"title": version, "state": desired_state.value}
            if not self.dry_run:
                raise_if_cancelled(cancel_event)
                created = await self.client.create_milestone(self.project, version)
                if is_closed:
                    raise_if_cancelled(cancel_event)
                    await self.client.update_milestone(self.project, created.id, MilestoneState.CLOSED)
            log.info("milestone_created", project=self.project.full_name, title=version, **self._mode())
            return ReconcileReport(ReconcileOutcome.CREATED, changes=changes, dry_run=self.dry_run)

        if is_closed == milestone.is_closed:
            log.debug("milestone_unchanged", project=self.project.full_name, title=version)
            return ReconcileReport(ReconcileOutcome.UNCHANGED)

        if not self.dry_run:
            raise_if_cancelled(cancel_event)
            await self.client.update_milestone(self.project, milestone.id, desired_state)

        outcome = ReconcileOutcome.CLOSED if is_closed else ReconcileOutcome.REOPENED
        log.info(
            f"milestone_{outcome.value}",
            project=self.project.full_name,
            title=version,
            **self._mode(),
        )
        return ReconcileReport(outcome, changes={"state": desired_state.value}, dry_run=self.dry_run)

    async def transition_issues(
        self,
        to_status: str,
        from_status: str | None = None,
        comment: str | None = None,
        issue_filter: IssueQueryFilter | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[IssueTrackerIssue]:
        """Move every matching issue to ``to_status``.

        Issues already in ``to_status`` are skipped, as are issues whose
        status differs from ``from_status`` when one is given. Statuses
        other than Open/Closed are never selected.

        Args:
            to_status: "Open" or "Closed" (any case)
            from_status: Optional "Open" or "Closed" (any case)
            comment: Posted on every transitioned issue when given
            issue_filter: Overrides the reconciler's default filter
            cancel_event: Cooperative cancellation signal

        Returns:
            The issues that were (or in dry-run mode would be) transitioned

        Raises:
            ValidationError: If a status is not Open or Closed, before any
                remote call
        """
        target = IssueStatus.parse(to_status)
        source = IssueStatus.parse(from_status) if from_status else None
        selected_filter = self._filter(issue_filter)

        raise_if_cancelled(cancel_event)
        issues = await self.client.list_issues(self.project, selected_filter)

        transitioned = []
        for issue in issues:
            if target.matches(issue.status):
                continue
            if source is not None and not source.matches(issue.status):
                continue
            if not any(status.matches(issue.status) for status in IssueStatus):
                log.debug("issue_status_unknown", issue_id=issue.id, status=issue.status)
                continue

            if not self.dry_run:
                raise_if_cancelled(cancel_event)
                await self.client.update_issue(self.project, issue.id, target)
                if comment:
                    raise_if_cancelled(cancel_event)
                    await self.client.add_issue_comment(self.project, issue.id, comment)
            log.info(
                "issue_transitioned",
                project=self.project.full_name,
                issue_id=issue.id,
                from_status=issue.status,
                to_status=target.value,
                **self._mode(),
            )
            transitioned.append(issue)

        return transitioned

    async def enumerate_issues(
        self,
        issue_filter: IssueQueryFilter | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[IssueTrackerIssue]:
        """Issues matching the filter."""
        raise_if_cancelled(cancel_event)
        return await self.client.list_issues(self.project, self._filter(issue_filter))

    async def enumerate_versions(self, cancel_event: asyncio.Event | None = None) -> list[IssueTrackerVersion]:
        """One version per milestone, closed milestones marked closed."""
        raise_if_cancelled(cancel_event)
        milestones = await self.client.list_milestones(self.project)
        return [IssueTrackerVersion(m.title, m.is_closed) for m in milestones]

    async def list_namespaces(self, cancel_event: asyncio.Event | None = None) -> list[str]:
        raise_if_cancelled(cancel_event)
        return await self.client.list_namespaces()

    async def list_projects(self, namespace: str | None = None, cancel_event: asyncio.Event | None = None) -> list[str]:
        raise_if_cancelled(cancel_event)
        return await self.client.list_projects(namespace or self.project.namespace)

    def _mode(self) -> dict[str, bool]:
        return {"dry_run": True} if self.dry_run else {}

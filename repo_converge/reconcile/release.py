"""Release reconciliation.

Collect reads the release for a tag; ensure makes it match the desired
state with the fewest mutating calls. Running ensure twice with the same
arguments sends no mutating request the second time.
"""

import asyncio

import structlog

from repo_converge.hosting.base import HostingApiClient
from repo_converge.models.domain import (
    ProjectId,
    ReconcileOutcome,
    ReconcileReport,
    ReleaseCurrentState,
    ReleaseDesiredState,
)
from repo_converge.utils.cancellation import raise_if_cancelled

log = structlog.get_logger(__name__)


class ReleaseReconciler:
    """Ensures a tagged release exists with the desired fields.

    Attributes:
        client: Connected hosting API client
        dry_run: Report the planned change without sending it
    """

    def __init__(self, client: HostingApiClient, dry_run: bool = False) -> None:
        self.client = client
        self.dry_run = dry_run

    async def get_release(self, owner_name: str, repository_name: str, tag: str) -> ReleaseCurrentState:
        """Read the release for ``tag`` (``exists=False`` when absent)."""
        return await self.client.get_release(ProjectId(owner_name, repository_name), tag)

    async def ensure_release(
        self,
        owner_name: str,
        repository_name: str,
        tag: str,
        target: str | None = None,
        title: str | None = None,
        description: str | None = None,
        draft: bool | None = None,
        prerelease: bool | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ReconcileReport:
        """Create or update the release for ``tag``.

        Fields passed as None are left as the hosting service has them.

        Args:
            owner_name: Organization or user owning the repository
            repository_name: Repository name
            tag: Release tag (identity of the release, never changed)
            target: Branch or commit the tag is created from
            title: Release title
            description: Release notes
            draft: Draft flag
            prerelease: Prerelease flag
            cancel_event: Cooperative cancellation signal

        Returns:
            ReconcileReport with the outcome and the fields sent

        Raises:
            RemoteApiError: If the hosting service rejects a call
            OperationCancelledError: If cancel_event is set
        """
        desired = ReleaseDesiredState(
            owner_name=owner_name,
            repository_name=repository_name,
            tag=tag,
            target=target,
            title=title,
            description=description,
            draft=draft,
            prerelease=prerelease,
        )
        raise_if_cancelled(cancel_event)

        if self.dry_run:
            return await self._plan(desired)

        report = await self.client.create_or_update_release(desired)
        log.info(
            "release_ensured",
            project=desired.project.full_name,
            tag=tag,
            outcome=report.outcome.value,
        )
        return report

    async def _plan(self, desired: ReleaseDesiredState) -> ReconcileReport:
        current = await self.client.get_release(desired.project, desired.tag)
        fields = self.client.release_fields

        if not current.exists:
            report = ReconcileReport(
                ReconcileOutcome.CREATED,
                changes=ReleaseCurrentState.missing().changes_to(desired, fields),
                dry_run=True,
            )
        else:
            changes = current.changes_to(desired, fields)
            outcome = ReconcileOutcome.UPDATED if changes else ReconcileOutcome.UNCHANGED
            report = ReconcileReport(outcome, changes=changes, dry_run=True)

        log.info(
            "release_dry_run",
            project=desired.project.full_name,
            tag=desired.tag,
            outcome=report.outcome.value,
            fields=sorted(report.changes),
        )
        return report

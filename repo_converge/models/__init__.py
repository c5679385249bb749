"""Value objects shared by the Git layer and the reconcilers."""

from repo_converge.models.domain import (
    CloneOptions,
    IssueStatus,
    IssueTrackerIssue,
    IssueTrackerVersion,
    Milestone,
    MilestoneState,
    ProjectId,
    ReconcileOutcome,
    ReconcileReport,
    ReleaseCurrentState,
    ReleaseDesiredState,
    RemoteRef,
    RepositoryHandle,
    UpdateOptions,
)

__all__ = [
    "CloneOptions",
    "IssueStatus",
    "IssueTrackerIssue",
    "IssueTrackerVersion",
    "Milestone",
    "MilestoneState",
    "ProjectId",
    "ReconcileOutcome",
    "ReconcileReport",
    "ReleaseCurrentState",
    "ReleaseDesiredState",
    "RemoteRef",
    "RepositoryHandle",
    "UpdateOptions",
]

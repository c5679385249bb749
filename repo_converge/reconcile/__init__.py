"""Declarative reconciliation of releases, milestones and issues."""

from repo_converge.reconcile.issues import IssueTrackerReconciler
from repo_converge.reconcile.release import ReleaseReconciler

__all__ = ["IssueTrackerReconciler", "ReleaseReconciler"]

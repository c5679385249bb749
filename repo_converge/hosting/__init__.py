"""Hosting service API clients (GitHub, GitLab)."""

from repo_converge.hosting.base import HostingApiClient
from repo_converge.hosting.factory import create_hosting_client
from repo_converge.hosting.issue_filter import IssueQueryFilter

__all__ = [
    "HostingApiClient",
    "IssueQueryFilter",
    "create_hosting_client",
]

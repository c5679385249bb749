"""
Domain models for repo-converge.

Value objects describing repositories, Git call options, releases,
milestones and issues. They are the normalized internal representation,
converted from provider-specific formats (GitHub, GitLab). All of them are
constructed per call and discarded afterwards; nothing here is cached.

Example:
    Describing the release a pipeline wants to exist::

        desired = ReleaseDesiredState(
            owner_name="acme",
            repository_name="widgets",
            tag="v1.2.0",
            target="main",
            title="Widgets 1.2.0",
            description="Bug fixes",
            draft=False,
            prerelease=False,
        )
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from repo_converge.exceptions import ConfigurationError, ValidationError

HEADS_PREFIX = "refs/heads/"


@dataclass(frozen=True)
class RepositoryHandle:
    """Local and remote location of a repository plus its credentials.

    Owned by the caller and passed into every Git operation. The password
    is excluded from ``repr`` so handles can appear in logs.
    """

    local_path: Path
    remote_url: str | None = None
    user_name: str | None = None
    password: str | None = field(default=None, repr=False)
    recurse_submodules: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "local_path", Path(self.local_path))

    def require_remote_url(self) -> str:
        """Return the remote URL, failing when a network operation lacks one.

        Raises:
            ConfigurationError: If no remote URL is configured
        """
        if not self.remote_url:
            raise ConfigurationError("A remote repository URL is required for this operation")
        return self.remote_url


@dataclass(frozen=True)
class CloneOptions:
    """Options for a single clone call."""

    branch: str | None = None
    recurse_submodules: bool = False


@dataclass(frozen=True)
class UpdateOptions:
    """Options for a single update call."""

    branch: str | None = None
    recurse_submodules: bool = False


@dataclass(frozen=True)
class RemoteRef:
    """A reference advertised by a remote."""

    canonical_name: str

    @property
    def branch_name(self) -> str | None:
        """Branch name with ``refs/heads/`` stripped, None for other namespaces."""
        if self.canonical_name.startswith(HEADS_PREFIX):
            return self.canonical_name[len(HEADS_PREFIX) :]
        return None


@dataclass(frozen=True)
class ProjectId:
    """Composite key of a remote project (GitLab) or repository (GitHub)."""

    namespace: str
    project_name: str

    @property
    def full_name(self) -> str:
        """Return namespace/project format."""
        return f"{self.namespace}/{self.project_name}"


# Fields that may differ between an existing release and the desired one.
# The tag is the release identity and never changes once created.
RELEASE_MUTABLE_FIELDS = ("title", "description", "target", "draft", "prerelease")


@dataclass(frozen=True)
class ReleaseDesiredState:
    """The release a caller wants to exist.

    ``None`` for a mutable field means "leave whatever the remote has".
    """

    owner_name: str
    repository_name: str
    tag: str
    target: str | None = None
    title: str | None = None
    description: str | None = None
    draft: bool | None = None
    prerelease: bool | None = None

    @property
    def project(self) -> ProjectId:
        return ProjectId(self.owner_name, self.repository_name)


@dataclass(frozen=True)
class ReleaseCurrentState:
    """The release as the hosting service currently reports it."""

    exists: bool
    owner_name: str | None = None
    repository_name: str | None = None
    tag: str | None = None
    target: str | None = None
    title: str | None = None
    description: str | None = None
    draft: bool | None = None
    prerelease: bool | None = None
    release_id: int | str | None = None

    @classmethod
    def missing(cls) -> "ReleaseCurrentState":
        """Sentinel for "no release matches the tag"."""
        return cls(exists=False)

    def changes_to(
        self,
        desired: ReleaseDesiredState,
        fields: tuple[str, ...] = RELEASE_MUTABLE_FIELDS,
    ) -> dict[str, Any]:
        """Compute the fields that must change to reach ``desired``.

        Args:
            desired: Target release state
            fields: Fields the hosting service supports (all mutable fields
                by default)

        Returns:
            Mapping of field name to desired value, empty when converged
        """
        changes: dict[str, Any] = {}
        for name in fields:
            wanted = getattr(desired, name)
            if wanted is None:
                continue
            if getattr(self, name) != wanted:
                changes[name] = wanted
        return changes


class MilestoneState(str, Enum):
    """Milestone states shared by GitHub and GitLab."""

    OPEN = "open"
    CLOSED = "closed"

    @classmethod
    def from_remote(cls, value: str | None) -> "MilestoneState":
        # GitLab reports "active" for open milestones
        return cls.CLOSED if (value or "").lower() == "closed" else cls.OPEN


@dataclass(frozen=True)
class Milestone:
    """A milestone, keyed by title within a project."""

    id: int
    title: str
    state: MilestoneState

    @property
    def is_closed(self) -> bool:
        return self.state == MilestoneState.CLOSED


@dataclass(frozen=True)
class IssueTrackerVersion:
    """A release version as seen by the issue tracker (one milestone)."""

    version: str
    is_closed: bool = False


class IssueStatus(str, Enum):
    """Statuses an issue can be transitioned to."""

    OPEN = "Open"
    CLOSED = "Closed"

    @classmethod
    def parse(cls, value: str) -> "IssueStatus":
        """Parse a status case-insensitively.

        Raises:
            ValidationError: If the value is neither Open nor Closed
        """
        for status in cls:
            if status.value.lower() == (value or "").lower():
                return status
        raise ValidationError(f'Issue status cannot be set to "{value}", only Open or Closed.')

    def matches(self, remote_status: str | None) -> bool:
        """Case-insensitive comparison with a free-form remote status."""
        return self.value.lower() == (remote_status or "").lower()


@dataclass(frozen=True)
class IssueTrackerIssue:
    """An issue as presented to pipelines.

    ``status`` is free-form text from the remote system.
    """

    id: str
    status: str
    type: str
    title: str
    description: str
    submitter: str
    submitted_date: datetime | None
    is_closed: bool
    url: str


class ReconcileOutcome(str, Enum):
    """What a reconciliation run did to the remote."""

    CREATED = "created"
    UPDATED = "updated"
    CLOSED = "closed"
    REOPENED = "reopened"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class ReconcileReport:
    """Result of one reconciliation.

    Attributes:
        outcome: The (planned, in dry-run mode) effect on the remote
        changes: Field name to new value for updates
        dry_run: True when nothing was actually sent
    """

    outcome: ReconcileOutcome
    changes: dict[str, Any] = field(default_factory=dict)
    dry_run: bool = False

    @property
    def mutated(self) -> bool:
        return self.outcome != ReconcileOutcome.UNCHANGED and not self.dry_run

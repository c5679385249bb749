"""CLI entry point for repo-converge."""

import asyncio
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

import click
import structlog

from repo_converge.config.settings import ConvergeSettings
from repo_converge.exceptions import ConfigurationError, RepoConvergeError
from repo_converge.git.client import GitClient
from repo_converge.git.factory import create_git_client
from repo_converge.hosting.base import HostingApiClient
from repo_converge.hosting.factory import create_hosting_client
from repo_converge.models.domain import CloneOptions, ReconcileReport, UpdateOptions
from repo_converge.reconcile.issues import IssueTrackerReconciler
from repo_converge.reconcile.release import ReleaseReconciler
from repo_converge.rendering.expressions import build_issue_filter
from repo_converge.utils.connection_pool import close_all_pools
from repo_converge.utils.logging_config import configure_logging

log = structlog.get_logger(__name__)

DEFAULT_CONFIG = "repo-converge.yaml"


@click.group()
@click.option("--config", default=None, help=f"Path to configuration file (default: ./{DEFAULT_CONFIG} if present)")
@click.option("--log-level", default=None, help="Logging level (overrides the configuration)")
@click.option("--dry-run", is_flag=True, default=False, help="Report remote changes without sending them")
@click.pass_context
def cli(ctx: click.Context, config: str | None, log_level: str | None, dry_run: bool) -> None:
    """repo-converge: Git operations and release/issue reconciliation."""
    try:
        settings = _load_settings(config)
    except ConfigurationError as e:
        configure_logging(log_level or "INFO")
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(1)

    if dry_run:
        settings = settings.model_copy(update={"dry_run": True})

    configure_logging(log_level or settings.log_level)
    ctx.obj = {"settings": settings}


def _load_settings(config: str | None) -> ConvergeSettings:
    if config is not None:
        return ConvergeSettings.from_yaml(config)
    if Path(DEFAULT_CONFIG).exists():
        return ConvergeSettings.from_yaml(DEFAULT_CONFIG)
    # Environment variables only
    return ConvergeSettings()


async def _with_pools_closed(coro: Coroutine[Any, Any, None]) -> None:
    try:
        await coro
    finally:
        await close_all_pools()


def _run(coro: Coroutine[Any, Any, None], command: str) -> None:
    """Run a command coroutine, turning failures into an exit status."""
    try:
        asyncio.run(_with_pools_closed(coro))
    except RepoConvergeError as e:
        click.echo(f"Error: {e}", err=True)
        log.debug(f"{command}_error", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)


def _git_client(settings: ConvergeSettings, path: str | None) -> GitClient:
    return create_git_client(
        settings.repository.to_handle(path),
        backend=settings.git.backend,
        temp_root=settings.temp_root,
        git_executable=settings.git.git_executable,
        timeout=settings.git.command_timeout,
    )


def _hosting_client(settings: ConvergeSettings) -> HostingApiClient:
    return create_hosting_client(
        settings.hosting.provider_type,
        api_token=settings.hosting.api_token or "",
        base_url=settings.hosting.base_url,
    )


def _echo_report(report: ReconcileReport) -> None:
    prefix = "[dry-run] " if report.dry_run else ""
    click.echo(f"{prefix}{report.outcome.value}")
    for name, value in sorted(report.changes.items()):
        click.echo(f"  {name}: {value}")


# ----------------------------------------------------------------------
# Git commands
# ----------------------------------------------------------------------

path_option = click.option("--path", default=None, help="Local repository path (overrides the configuration)")


@cli.command()
@path_option
@click.option("--branch", default=None, help="Branch to check out")
@click.option("--recurse-submodules", is_flag=True, default=False, help="Clone submodules as well")
@click.pass_context
def clone(ctx: click.Context, path: str | None, branch: str | None, recurse_submodules: bool) -> None:
    """Clone the configured remote into the local path."""

    async def _clone() -> None:
        client = _git_client(ctx.obj["settings"], path)
        await client.clone(CloneOptions(branch=branch, recurse_submodules=recurse_submodules))
        click.echo(f"Cloned into {client.local_path}")

    _run(_clone(), "clone")


@cli.command()
@path_option
@click.option("--branch", default=None, help="Branch to switch to before resetting")
@click.option("--recurse-submodules", is_flag=True, default=False, help="Update submodules as well")
@click.pass_context
def update(ctx: click.Context, path: str | None, branch: str | None, recurse_submodules: bool) -> None:
    """Fetch origin and hard-reset the working copy to it (cloning if needed)."""

    async def _update() -> None:
        client = _git_client(ctx.obj["settings"], path)
        await client.update(UpdateOptions(branch=branch, recurse_submodules=recurse_submodules))
        click.echo(f"Updated {client.local_path}")

    _run(_update(), "update")


@cli.command()
@path_option
@click.pass_context
def branches(ctx: click.Context, path: str | None) -> None:
    """List the remote's branches."""

    async def _branches() -> None:
        client = _git_client(ctx.obj["settings"], path)
        for name in await client.enumerate_remote_branches():
            click.echo(name)

    _run(_branches(), "branches")


@cli.command()
@click.argument("name")
@path_option
@click.pass_context
def tag(ctx: click.Context, name: str, path: str | None) -> None:
    """Tag HEAD as NAME and push the tag to origin."""

    async def _tag() -> None:
        client = _git_client(ctx.obj["settings"], path)
        await client.tag(name)
        click.echo(f"Tagged and pushed {name}")

    _run(_tag(), "tag")


@cli.command()
@click.argument("target", type=click.Path(file_okay=False))
@path_option
@click.pass_context
def archive(ctx: click.Context, target: str, path: str | None) -> None:
    """Export HEAD's tree into TARGET without Git metadata."""

    async def _archive() -> None:
        client = _git_client(ctx.obj["settings"], path)
        await client.archive(target)
        click.echo(f"Exported {client.local_path} to {target}")

    _run(_archive(), "archive")


# ----------------------------------------------------------------------
# Release commands
# ----------------------------------------------------------------------


@cli.command("ensure-release")
@click.option("--repository", required=True, help="Repository name")
@click.option("--tag", "tag_name", required=True, help="Release tag")
@click.option("--owner", default=None, help="Owner (defaults to the organization, then the user name)")
@click.option("--target", default=None, help="Branch or commit to create the tag from")
@click.option("--title", default=None, help="Release title")
@click.option("--description", default=None, help="Release notes")
@click.option("--draft/--no-draft", default=None, help="Draft flag")
@click.option("--prerelease/--no-prerelease", default=None, help="Prerelease flag")
@click.pass_context
def ensure_release(
    ctx: click.Context,
    repository: str,
    tag_name: str,
    owner: str | None,
    target: str | None,
    title: str | None,
    description: str | None,
    draft: bool | None,
    prerelease: bool | None,
) -> None:
    """Create or update a tagged release."""
    settings: ConvergeSettings = ctx.obj["settings"]

    async def _ensure() -> None:
        project = settings.hosting.project(repository, owner)
        async with _hosting_client(settings) as client:
            reconciler = ReleaseReconciler(client, dry_run=settings.dry_run)
            report = await reconciler.ensure_release(
                project.namespace,
                project.project_name,
                tag_name,
                target=target,
                title=title,
                description=description,
                draft=draft,
                prerelease=prerelease,
            )
        _echo_report(report)

    _run(_ensure(), "ensure_release")


@cli.command("show-release")
@click.option("--repository", required=True, help="Repository name")
@click.option("--tag", "tag_name", required=True, help="Release tag")
@click.option("--owner", default=None, help="Owner (defaults to the organization, then the user name)")
@click.pass_context
def show_release(ctx: click.Context, repository: str, tag_name: str, owner: str | None) -> None:
    """Show the release for a tag."""
    settings: ConvergeSettings = ctx.obj["settings"]

    async def _show() -> None:
        project = settings.hosting.project(repository, owner)
        async with _hosting_client(settings) as client:
            current = await ReleaseReconciler(client).get_release(project.namespace, project.project_name, tag_name)
        if not current.exists:
            click.echo(f"No release for tag {tag_name}")
            return
        for name in ("tag", "target", "title", "description", "draft", "prerelease"):
            click.echo(f"{name}: {getattr(current, name)}")

    _run(_show(), "show_release")


# ----------------------------------------------------------------------
# Issue tracker commands
# ----------------------------------------------------------------------

project_option = click.option("--project", required=True, help="Project (repository) name")
namespace_option = click.option("--namespace", default=None, help="Namespace (defaults to the configured owner)")
release_option = click.option("--release-number", default=None, help="Value of release_number in issue mappings")


def _issue_reconciler(
    settings: ConvergeSettings,
    client: HostingApiClient,
    project_name: str,
    namespace: str | None,
    release_number: str | None = None,
) -> IssueTrackerReconciler:
    issue_filter = None
    if release_number is not None or settings.issues.custom_filter_query:
        context = {"release_number": release_number} if release_number is not None else {}
        issue_filter = build_issue_filter(settings.issues, context)
    return IssueTrackerReconciler(
        client,
        settings.hosting.project(project_name, namespace),
        issue_filter=issue_filter,
        dry_run=settings.dry_run,
    )


@cli.command("ensure-version")
@click.argument("version")
@project_option
@namespace_option
@click.option("--closed/--open", "is_closed", default=False, help="Desired milestone state")
@click.pass_context
def ensure_version(ctx: click.Context, version: str, project: str, namespace: str | None, is_closed: bool) -> None:
    """Ensure the milestone VERSION exists in the desired state."""
    settings: ConvergeSettings = ctx.obj["settings"]

    async def _ensure() -> None:
        async with _hosting_client(settings) as client:
            reconciler = _issue_reconciler(settings, client, project, namespace)
            report = await reconciler.ensure_version(version, is_closed=is_closed)
        _echo_report(report)

    _run(_ensure(), "ensure_version")


@cli.command("transition-issues")
@project_option
@namespace_option
@release_option
@click.option("--to-status", required=True, help="Open or Closed")
@click.option("--from-status", default=None, help="Only transition issues in this status")
@click.option("--comment", default=None, help="Comment to post on each transitioned issue")
@click.pass_context
def transition_issues(
    ctx: click.Context,
    project: str,
    namespace: str | None,
    release_number: str | None,
    to_status: str,
    from_status: str | None,
    comment: str | None,
) -> None:
    """Move the issues selected by the issue mapping to a new status."""
    settings: ConvergeSettings = ctx.obj["settings"]

    async def _transition() -> None:
        async with _hosting_client(settings) as client:
            reconciler = _issue_reconciler(settings, client, project, namespace, release_number)
            issues = await reconciler.transition_issues(to_status, from_status=from_status, comment=comment)
        prefix = "[dry-run] " if settings.dry_run else ""
        for issue in issues:
            click.echo(f"{prefix}#{issue.id} {issue.status} -> {to_status}: {issue.title}")
        click.echo(f"{prefix}{len(issues)} issue(s) transitioned")

    _run(_transition(), "transition_issues")


@cli.command("list-issues")
@project_option
@namespace_option
@release_option
@click.pass_context
def list_issues(ctx: click.Context, project: str, namespace: str | None, release_number: str | None) -> None:
    """List the issues selected by the issue mapping."""
    settings: ConvergeSettings = ctx.obj["settings"]

    async def _list() -> None:
        async with _hosting_client(settings) as client:
            reconciler = _issue_reconciler(settings, client, project, namespace, release_number)
            issues = await reconciler.enumerate_issues()
        for issue in issues:
            click.echo(f"#{issue.id}\t{issue.status}\t{issue.type}\t{issue.title}")

    _run(_list(), "list_issues")


@cli.command("list-versions")
@project_option
@namespace_option
@click.pass_context
def list_versions(ctx: click.Context, project: str, namespace: str | None) -> None:
    """List milestones as release versions."""
    settings: ConvergeSettings = ctx.obj["settings"]

    async def _list() -> None:
        async with _hosting_client(settings) as client:
            versions = await _issue_reconciler(settings, client, project, namespace).enumerate_versions()
        for version in versions:
            click.echo(f"{version.version}\t{'closed' if version.is_closed else 'open'}")

    _run(_list(), "list_versions")


@cli.command("list-namespaces")
@click.pass_context
def list_namespaces(ctx: click.Context) -> None:
    """List organizations (GitHub) or groups (GitLab)."""
    settings: ConvergeSettings = ctx.obj["settings"]

    async def _list() -> None:
        async with _hosting_client(settings) as client:
            for name in await client.list_namespaces():
                click.echo(name)

    _run(_list(), "list_namespaces")


@cli.command("list-projects")
@namespace_option
@click.pass_context
def list_projects(ctx: click.Context, namespace: str | None) -> None:
    """List the projects of a namespace."""
    settings: ConvergeSettings = ctx.obj["settings"]

    async def _list() -> None:
        owner = namespace or settings.hosting.owner_name
        if not owner:
            raise ConfigurationError("A namespace is required (--namespace or an organization/user name)")
        async with _hosting_client(settings) as client:
            for name in await client.list_projects(owner):
                click.echo(name)

    _run(_list(), "list_projects")


if __name__ == "__main__":
    cli()

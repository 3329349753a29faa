"""
Main CLI entry point for project-snapshot.

This module provides the command-line interface using Click with Rich
formatting: create, list, restore and clean up restore points.
"""

import json
import sys
from typing import Optional

import click
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

from project_snapshot import __version__
from project_snapshot.backup.manager import BackupOrchestrator
from project_snapshot.backup.rollback import RestoreCoordinator
from project_snapshot.core.exceptions import RestoreStepError, SnapshotOrchestratorError
from project_snapshot.models.config import load_snapshot_config
from project_snapshot.models.snapshot import FacetStatus, RestoreOptions, RestoreReport
from project_snapshot.utils.helpers import format_bytes
from project_snapshot.utils.logging import setup_logging

console = Console()

STATUS_STYLES = {
    FacetStatus.COMPLETED: "green",
    FacetStatus.READY: "cyan",
    FacetStatus.SKIPPED: "dim",
    FacetStatus.FAILED: "red",
}


def _fail(message: str):
    console.print(f"[red]{message}[/red]", soft_wrap=True)
    sys.exit(1)


def _orchestrator(ctx: click.Context) -> BackupOrchestrator:
    """Build the orchestrator on first use so --help works outside a project."""
    if ctx.obj.get('orchestrator') is None:
        try:
            config = load_snapshot_config(ctx.obj.get('config_file'), ctx.obj.get('root'))
        except SnapshotOrchestratorError as e:
            _fail(f"Configuration error: {e}")
        ctx.obj['orchestrator'] = BackupOrchestrator(config)
    return ctx.obj['orchestrator']


@click.group()
@click.version_option(__version__, prog_name="project-snapshot")
@click.option('--root', '-r', type=click.Path(file_okay=False), envvar='PROJECT_SNAPSHOT_ROOT',
              help='Project root to snapshot (default: current directory)')
@click.option('--config', '-c', 'config_file', type=click.Path(exists=True, dir_okay=False),
              envvar='PROJECT_SNAPSHOT_CONFIG', help='YAML or JSON configuration file')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--log-file', type=click.Path(dir_okay=False), help='Also write logs to this file')
@click.pass_context
def main(ctx: click.Context, root: Optional[str], config_file: Optional[str],
         verbose: bool, log_file: Optional[str]):
    """
    Checkpoint and restore a working project.

    Captures code history, embedded databases, configuration files and a
    full archive under one named restore point, and rolls the project
    back to it later.
    """
    ctx.ensure_object(dict)
    ctx.obj.setdefault('root', root)
    ctx.obj.setdefault('config_file', config_file)
    ctx.obj['verbose'] = verbose

    setup_logging(level="DEBUG" if verbose else "INFO", log_file=log_file)


@main.command()
@click.argument('label', required=False, default='manual')
@click.pass_context
def create(ctx: click.Context, label: str):
    """Create a full restore point named LABEL."""
    orchestrator = _orchestrator(ctx)
    try:
        point = orchestrator.create_full_backup(label)
    except SnapshotOrchestratorError as e:
        _fail(f"Backup failed: {e}")

    console.print(f"[green]Full backup created: {point.id}[/green]", soft_wrap=True)
    if ctx.obj.get('verbose'):
        for facet, path in point.artifact_paths().items():
            console.print(f"  [dim]{facet}:[/dim] {path}", soft_wrap=True)


@main.command(name='list')
@click.option('--format', '-f', 'output_format', type=click.Choice(['table', 'json', 'yaml']),
              default='table', help='Output format')
@click.pass_context
def list_command(ctx: click.Context, output_format: str):
    """List restore points, newest first."""
    orchestrator = _orchestrator(ctx)
    try:
        listings = orchestrator.list_backups()
    except SnapshotOrchestratorError as e:
        _fail(f"Could not read restore points: {e}")

    if output_format != 'table':
        data = [
            {
                **listing.restore_point.to_record(),
                "status": listing.status.value,
                "missing": listing.missing,
            }
            for listing in listings
        ]
        if output_format == 'json':
            click.echo(json.dumps(data, indent=2, default=str))
        else:
            click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
        return

    if not listings:
        console.print("[yellow]No backups found[/yellow]")
        return

    table = Table(title="Available Backups", box=box.ROUNDED, show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Timestamp", style="dim")
    table.add_column("Milestone")
    table.add_column("Archive")
    table.add_column("Git")
    table.add_column("Status")

    for listing in listings:
        point = listing.restore_point
        archive = point.artifact_paths().get("archive")
        if archive is not None and archive.exists():
            archive_cell = f"[green]yes[/green] ({format_bytes(archive.stat().st_size)})"
        else:
            archive_cell = "[red]missing[/red]"
        git_cell = "[green]yes[/green]" if listing.artifacts.get("git") else "[red]missing[/red]"
        status_style = "yellow" if listing.is_stale else "green"
        table.add_row(
            point.id,
            point.timestamp.isoformat(),
            f"Phase {point.phase}, Week {point.week}",
            archive_cell,
            git_cell,
            f"[{status_style}]{listing.status.value}[/{status_style}]",
        )

    console.print(table)


def print_report(report: RestoreReport):
    title = "Restore Simulation" if report.dry_run else "Restore Summary"
    table = Table(title=title, box=box.ROUNDED, show_header=True, header_style="bold magenta")
    table.add_column("Facet", style="cyan")
    table.add_column("Status")
    table.add_column("Details", style="dim")
    for facet, result in report.facets.items():
        style = STATUS_STYLES.get(result.status, "white")
        table.add_row(facet, f"[{style}]{result.status.value}[/{style}]", result.message)
    console.print(table)

    if report.safety_net_id:
        console.print(f"Pre-restore backup: [cyan]{report.safety_net_id}[/cyan]", soft_wrap=True)
    for warning in report.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}", soft_wrap=True)


@main.command()
@click.argument('backup_id')
@click.option('--no-code', is_flag=True, help='Do not restore code')
@click.option('--no-database', is_flag=True, help='Do not restore databases')
@click.option('--no-config', is_flag=True, help='Do not restore configuration files')
@click.option('--skip-current-backup', is_flag=True, help='Do not create a pre-restore backup')
@click.option('--force', is_flag=True, help='Proceed even if the pre-restore backup fails or changes would be lost')
@click.option('--continue-on-error', is_flag=True, help='Keep restoring other facets after a failure')
@click.option('--dry-run', is_flag=True, help='Show what would be restored without changing anything')
@click.option('--no-auto-stash', is_flag=True, help='Refuse instead of stashing uncommitted changes')
@click.pass_context
def restore(ctx: click.Context, backup_id: str, no_code: bool, no_database: bool, no_config: bool,
            skip_current_backup: bool, force: bool, continue_on_error: bool, dry_run: bool,
            no_auto_stash: bool):
    """Restore the project from BACKUP_ID."""
    options = RestoreOptions(
        restore_code=not no_code,
        restore_database=not no_database,
        restore_config=not no_config,
        skip_current_backup=skip_current_backup,
        force=force,
        continue_on_error=continue_on_error,
        dry_run=dry_run,
        auto_stash=not no_auto_stash,
    )
    coordinator = RestoreCoordinator(_orchestrator(ctx))

    try:
        report = coordinator.restore_from_backup(backup_id, options)
    except RestoreStepError as e:
        if e.report is not None and e.report.facets:
            print_report(e.report)
        _fail(f"Restore failed: {e}")
    except SnapshotOrchestratorError as e:
        _fail(f"Restore failed: {e}")

    print_report(report)
    if dry_run:
        console.print("[cyan]Dry run complete, no changes were made[/cyan]")
    elif report.failed:
        console.print("[yellow]Restore completed with some failures[/yellow]")
    else:
        console.print("[green]Restore completed successfully[/green]")
        console.print("[dim]Please restart services and run tests[/dim]")


@main.command()
@click.argument('days', required=False, type=click.IntRange(min=0))
@click.pass_context
def cleanup(ctx: click.Context, days: Optional[int]):
    """Remove restore points older than DAYS (default from configuration)."""
    orchestrator = _orchestrator(ctx)
    try:
        removed = orchestrator.cleanup(days)
    except SnapshotOrchestratorError as e:
        _fail(f"Cleanup failed: {e}")

    for point in removed:
        console.print(f"Removed old backup: {point.id}", soft_wrap=True)
    console.print(f"[green]Cleanup complete: {len(removed)} backups removed[/green]")


if __name__ == '__main__':
    main()

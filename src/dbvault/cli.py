#!/usr/bin/env python3
"""Command Line Interface for dbvault"""

import logging
import sys
from typing import Any, cast

import click
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .core.backup_engine import BackupEngine, OperationResult, setup_logging
from .core.config_manager import ConfigManager
from .core.exceptions import OperationInProgress
from .utils.background_backup import BackgroundBackupManager
from .utils.events import BackupEvent, LogLevel

console = Console()

_LEVEL_STYLES = {
    LogLevel.INFO: "white",
    LogLevel.SUCCESS: "green",
    LogLevel.WARNING: "yellow",
    LogLevel.ERROR: "red",
}

# Seconds the UI loop waits for events before checking the task again
POLL_INTERVAL = 0.2

# Lazy-initialized components (created on first access to avoid startup cost)
_components: dict[str, Any] = {}


def _get_config() -> ConfigManager:
    if "config" not in _components:
        _components["config"] = ConfigManager(_components.get("config_dir"))
    return cast("ConfigManager", _components["config"])


def _get_backup_engine() -> BackupEngine:
    if "backup_engine" not in _components:
        _components["backup_engine"] = BackupEngine(_get_config())
        if _components.get("verbose"):
            setup_logging(_components["backup_engine"].local_path / "logs", console_level=logging.INFO)
    return cast("BackupEngine", _components["backup_engine"])


def _get_background_manager() -> BackgroundBackupManager:
    if "bg_backup" not in _components:
        _components["bg_backup"] = BackgroundBackupManager(_get_backup_engine())
    return cast("BackgroundBackupManager", _components["bg_backup"])


def _render_event(event: BackupEvent) -> None:
    console.print(Text(event.format(), style=_LEVEL_STYLES[event.level]))


def _follow_task(manager: BackgroundBackupManager, task_id: str, title: str) -> OperationResult | None:
    """Drain events on this thread until the background task finishes"""
    task = manager.get_task_status(task_id)
    assert task is not None and task.future is not None

    with console.status(f"[bold cyan]{title}...[/bold cyan]") as status:
        while True:
            events = manager.channel.drain(timeout=POLL_INTERVAL)
            for event in events:
                if event.is_state_change:
                    status.update(f"[bold cyan]{title}: {event.state}[/bold cyan]")
                else:
                    _render_event(event)
            if not events and task.future.done():
                break

    if manager.channel.dropped:
        console.print(f"[dim]{manager.channel.dropped} log line(s) dropped from display, see backup.log[/dim]")
    return manager.wait(task_id)


def _print_result(result: OperationResult | None) -> None:
    if result is None:
        console.print("[red]✗[/red] Operation crashed, check backup.log for details")
        sys.exit(1)

    if result.success:
        console.print(f"[green]✓[/green] {result.message}")
        for warning in result.warnings:
            console.print(f"[yellow]⚠[/yellow] {warning}")
    else:
        console.print(f"[red]✗[/red] {result.error_kind}: {result.message}")
        if result.error_kind == "InvalidPasswordOrCorruptArchive":
            console.print("[yellow]Check the password and try again; if it is correct the archive is damaged.[/yellow]")
        sys.exit(1)


@click.group()
@click.option(
    "--config-dir",
    envvar="DBVAULT_CONFIG_DIR",
    type=click.Path(file_okay=False),
    help="Directory containing settings.yaml",
)
@click.option("--verbose", "-v", is_flag=True, help="Also print internal log records")
def cli(config_dir, verbose):
    """dbvault - encrypted MySQL backup and restore"""
    if config_dir:
        _components["config_dir"] = config_dir
    _components["verbose"] = verbose


@cli.command()
def backup():
    """Create an encrypted backup of the configured database"""
    console.print("[bold cyan]Creating encrypted database backup...[/bold cyan]")
    manager = _get_background_manager()

    try:
        task_id = manager.schedule_backup()
    except OperationInProgress as e:
        console.print(f"[red]✗[/red] {e.message}")
        sys.exit(1)

    _print_result(_follow_task(manager, task_id, "Backing up"))


@cli.command()
@click.argument("archive")
@click.option("--password", prompt="Backup password", hide_input=True, help="Password of the encrypted archive")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def restore(archive, password, yes):
    """Restore the database from an encrypted backup ARCHIVE"""
    if not password:
        console.print("[yellow]Restore cancelled: No password provided[/yellow]")
        return

    if not yes:
        console.print(f"[bold]Restore from: {archive}[/bold]")
        console.print(
            "[yellow]⚠ WARNING: This will completely replace your current database!\n"
            "  • All current data will be overwritten\n"
            "  • This action cannot be undone\n"
            "  • Make sure you have a recent backup if needed[/yellow]"
        )
        click.confirm("Do you want to proceed?", abort=True)

    manager = _get_background_manager()
    try:
        task_id = manager.schedule_restore(archive, password)
    except OperationInProgress as e:
        console.print(f"[red]✗[/red] {e.message}")
        sys.exit(1)

    _print_result(_follow_task(manager, task_id, "Restoring"))


@cli.command("list")
def list_backups():
    """List encrypted backups, newest first"""
    engine = _get_backup_engine()
    archives = engine.list_backups()

    if not archives:
        console.print(f"[yellow]No backups found in {engine.local_path}[/yellow]")
        return

    table = Table(title=f"Backups in {engine.local_path}", show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Date", style="green")

    for archive in archives:
        table.add_row(archive.name, archive.display_size, archive.display_date)

    console.print(table)


@cli.command()
def validate():
    """Check the configured paths, password and connection string"""
    results = _get_backup_engine().validate_configuration()

    table = Table(title="Configuration", show_header=True, header_style="bold magenta")
    table.add_column("Item", style="cyan")
    table.add_column("Status")
    table.add_column("Details", style="white")

    failed = False
    for item, ok, message in results:
        if ok:
            status = "[green]✓ OK[/green]"
        elif item == "replication":
            status = "[yellow]⚠ WARN[/yellow]"
        else:
            status = "[red]✗ FAIL[/red]"
            failed = True
        table.add_row(item, status, message)

    console.print(table)
    if failed:
        sys.exit(1)


@cli.command()
@click.option("--keep", type=click.IntRange(min=1), help="Number of newest backups to keep (default: backup.retention)")
def prune(keep):
    """Delete all but the newest backups in the local backup directory"""
    report = _get_backup_engine().prune_local(keep)

    console.print(f"[green]✓[/green] Kept {len(report.kept)}, deleted {len(report.deleted)} backup(s)")
    for failure in report.failed:
        console.print(f"[red]✗[/red] {failure.message}")
    if report.failed:
        sys.exit(1)


@cli.command("encrypt-secret")
@click.option("--value", prompt="Secret", hide_input=True, confirmation_prompt=True, help="Value to encrypt")
def encrypt_secret(value):
    """Print an encrypted value for settings.yaml"""
    console.print(f"enc:{_get_config().encrypt_value(value)}", soft_wrap=True)


@cli.command("open-folder")
def open_folder():
    """Open the backup directory in the system file manager"""
    path = _get_backup_engine().local_path
    path.mkdir(parents=True, exist_ok=True)
    click.launch(str(path))
    console.print(f"Opened backups folder: {path}")


if __name__ == "__main__":
    cli()

"""Run command: mirror the source tree onto the target tree."""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from pathlib import Path

import click
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ._common import console, friendly_size, logger, setup_logging
from ..backends import resolve_root
from ..config import load_config, resolve_password
from ..exceptions import BackendError, ConfigError, SyncCancelled
from ..models import BackendType, EncryptionConfig, MirrorConfig, RootConfig
from ..storage import CancellationSignal, display_name
from ..sync import (
    ActionKind,
    ActionRecord,
    EqualityMethod,
    ErrorRecord,
    ProgressRecord,
    RunOutcome,
    RunResult,
    RunStatistics,
    SyncEngine,
    SyncObserver,
)

EXIT_CODES = {
    RunOutcome.COMPLETED: 0,
    RunOutcome.FAILED: 1,
    RunOutcome.CANCELLED: 130,
}

_ACTION_STYLES = {
    ActionKind.CREATE: "green",
    ActionKind.UPDATE: "yellow",
    ActionKind.DELETE: "red",
    ActionKind.SKIP: "dim",
}


class ConsoleObserver(SyncObserver):
    """Prints run notifications to the rich console.

    Args:
        quiet: Only print errors.
        show_progress: Print a line per copied chunk.
        ignore_errors: Skip items whose retries are exhausted instead of
            failing the run.
    """

    def __init__(self, quiet: bool = False, show_progress: bool = False, ignore_errors: bool = False) -> None:
        self.quiet = quiet
        self.show_progress = show_progress
        self.ignore_errors = ignore_errors

    def on_action(self, record: ActionRecord) -> None:
        if self.quiet:
            return
        style = _ACTION_STYLES[record.kind]
        method = "" if record.method == EqualityMethod.NONE else f" ({record.method.label()})"
        line = f"  [{style}]{record.kind.value}[/]{method}: <{escape(display_name(record.source))}>"
        if record.target is not None:
            line += f" -> <{escape(display_name(record.target))}>"
        console.print(line, highlight=False)

    def on_error(self, record: ErrorRecord) -> None:
        if record.exhausted:
            console.print(f"  [bold red]Error[/] after {record.attempt} attempt(s): {escape(str(record.error))}")
            record.ignore = self.ignore_errors
        else:
            console.print(f"  [yellow]Retry ({record.attempt})[/]: {escape(str(record.error))}")

    def on_progress(self, record: ProgressRecord) -> None:
        if not self.show_progress:
            return
        console.print(
            f"  [dim]Copying ({record.percent:.1f}% - "
            f"{friendly_size(record.position)}/{friendly_size(record.length)}): "
            f"<{escape(display_name(record.source))}>[/]",
            highlight=False,
        )


def apply_overrides(config: MirrorConfig, **options) -> MirrorConfig:
    """Layer command line options over a loaded configuration.

    Options left at None keep the configured value.
    """
    policy_updates = {
        key: options[key]
        for key in (
            "create_directories",
            "delete_directories",
            "create_files",
            "update_files",
            "delete_files",
            "retry_count",
        )
        if options.get(key) is not None
    }
    if options.get("equality"):
        policy_updates["equality_methods"] = EqualityMethod.parse(options["equality"])

    def root(current: RootConfig, side: str) -> RootConfig:
        updates = {}
        if options.get(f"{side}_path"):
            updates["path"] = options[f"{side}_path"]
        if options.get(f"{side}_backend"):
            updates["backend"] = BackendType(options[f"{side}_backend"])
        if options.get(f"{side}_encrypted") and not current.encryption:
            updates["encryption"] = [
                EncryptionConfig(encrypt_file_names=True, encrypt_directory_names=True)
            ]
        return current.model_copy(update=updates)

    return config.model_copy(
        update={
            "source": root(config.source, "source"),
            "target": root(config.target, "target"),
            "policy": config.policy.model_copy(update=policy_updates),
        }
    )


def _prompt_password(variable: str) -> str:
    if not sys.stdin.isatty():
        return ""
    return click.prompt(f"Password (${variable})", hide_input=True, default="", show_default=False)


async def run_mirror(config: MirrorConfig, observer: SyncObserver) -> RunResult:
    """Resolve both roots and run the engine, honoring Ctrl-C."""
    cancel = CancellationSignal()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers unavailable; Ctrl-C will abort")

    def password_for(layer):
        return resolve_password(layer, _prompt_password)

    try:
        try:
            source = await resolve_root(config.source, password_for, cancel)
            target = await resolve_root(config.target, password_for, cancel)
        except SyncCancelled as exc:
            return RunResult(RunOutcome.CANCELLED, RunStatistics(), exc)
        except BackendError as exc:
            return RunResult(RunOutcome.FAILED, RunStatistics(), exc)
        engine = SyncEngine(config.policy, observer)
        return await engine.run(source, target, cancel)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


def _summary_table(stats: RunStatistics) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("")
    table.add_column("Seen", justify="right")
    table.add_column("Created", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_row(
        "Directories",
        str(stats.directories_seen),
        str(stats.directories_created),
        "-",
        str(stats.directories_deleted),
    )
    table.add_row(
        "Files",
        str(stats.files_seen),
        str(stats.files_created),
        str(stats.files_updated),
        str(stats.files_deleted),
    )
    return table


def register_run_commands(main: click.Group) -> None:
    """Register the run command."""

    @main.command("run")
    @click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False), help="Config file.")
    @click.option("--source", "source_path", default=None, help="Source root path.")
    @click.option("--target", "target_path", default=None, help="Target root path.")
    @click.option("--source-backend", type=click.Choice([b.value for b in BackendType]), default=None)
    @click.option("--target-backend", type=click.Choice([b.value for b in BackendType]), default=None)
    @click.option("--encrypted-source", "source_encrypted", is_flag=True, help="Source is an encrypted tree.")
    @click.option("--encrypted-target", "target_encrypted", is_flag=True, help="Encrypt the target tree.")
    @click.option("--create-directories/--no-create-directories", default=None)
    @click.option("--delete-directories/--no-delete-directories", default=None)
    @click.option("--create-files/--no-create-files", default=None)
    @click.option("--update-files/--no-update-files", default=None)
    @click.option("--delete-files/--no-delete-files", default=None)
    @click.option("--retry-count", type=click.IntRange(min=0), default=None, help="Retries per operation.")
    @click.option("--equality", default=None, help="e.g. length,last_write_time,content_hash")
    @click.option("--ignore-errors", is_flag=True, help="Skip items that keep failing.")
    @click.option("--progress", is_flag=True, help="Print copy progress.")
    @click.option("--quiet", "-q", is_flag=True, help="Only print errors and the summary.")
    @click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
    @click.option("--json-out", "--json", "json_out", is_flag=True, help="Print the result as JSON.")
    def run(config_path, ignore_errors, progress, quiet, verbose, json_out, **options):
        """Mirror the source tree onto the target tree.

        Creates what is missing, updates what differs, deletes what
        the policy allows. Ctrl-C cancels cleanly.

        Examples:

            skmirror run --source ~/Documents --target /mnt/usb/docs

            SKMIRROR_PASSWORD=... skmirror run --source ~/Photos --target /mnt/nas/photos --encrypted-target
        """
        try:
            config = load_config(Path(config_path).expanduser() if config_path else None)
            if options.get("equality"):
                EqualityMethod.parse(options["equality"])
        except (ConfigError, ValueError) as exc:
            console.print(f"[red]{escape(str(exc))}[/]")
            sys.exit(2)

        config = apply_overrides(config, **options)
        setup_logging("DEBUG" if verbose else config.log_level)

        if not config.source.path or not config.target.path:
            console.print("[red]Both --source and --target are required (or set them in the config).[/]")
            sys.exit(2)

        observer = ConsoleObserver(quiet=quiet or json_out, show_progress=progress, ignore_errors=ignore_errors)
        if not json_out:
            console.print(f"\n  Mirroring [cyan]{escape(config.source.path)}[/] -> [cyan]{escape(config.target.path)}[/]\n")

        try:
            result = asyncio.run(run_mirror(config, observer))
        except ConfigError as exc:
            console.print(f"[red]{escape(str(exc))}[/]")
            sys.exit(2)

        if json_out:
            click.echo(json.dumps({
                "outcome": result.outcome.value,
                "statistics": result.statistics.model_dump(mode="json"),
                "error": str(result.error) if result.error else None,
            }, indent=2))
            sys.exit(EXIT_CODES[result.outcome])

        console.print()
        console.print(_summary_table(result.statistics))
        copied = friendly_size(result.statistics.bytes_copied)
        if result.outcome == RunOutcome.COMPLETED:
            console.print(Panel(f"[bold green]Mirror complete[/] ({copied} copied)", border_style="green"))
        elif result.outcome == RunOutcome.CANCELLED:
            console.print(Panel("[bold yellow]Operation was cancelled[/]", border_style="yellow"))
        else:
            console.print(Panel(f"[bold red]Mirror failed[/]\n{escape(str(result.error))}", border_style="red"))
        sys.exit(EXIT_CODES[result.outcome])

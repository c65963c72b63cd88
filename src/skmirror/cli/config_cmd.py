"""Config commands: init, show."""

from __future__ import annotations

import sys
from pathlib import Path

import click
import yaml
from rich.markup import escape

from ._common import console
from ..config import default_config_path, load_config, save_config
from ..exceptions import ConfigError
from ..models import BackendType, EncryptionConfig, MirrorConfig, RootConfig
from ..sync import EqualityMethod, SyncPolicy


def _config_path(path: str | None) -> Path:
    return Path(path).expanduser() if path else default_config_path()


def register_config_commands(main: click.Group) -> None:
    """Register the config command group."""

    @main.group()
    def config():
        """Manage the mirror configuration file."""

    @config.command("init")
    @click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False), help="Config file.")
    @click.option("--source", "source_path", required=True, help="Source root path.")
    @click.option("--target", "target_path", required=True, help="Target root path.")
    @click.option("--source-backend", type=click.Choice([b.value for b in BackendType]), default="local")
    @click.option("--target-backend", type=click.Choice([b.value for b in BackendType]), default="local")
    @click.option("--encrypt-target", is_flag=True, help="Encrypt the target, names included.")
    @click.option("--password-env", default="SKMIRROR_PASSWORD", help="Variable holding the password.")
    @click.option("--delete/--no-delete", default=False, help="Delete target-only items.")
    @click.option("--equality", default=None, help="e.g. length,last_write_time,content_hash")
    @click.option("--force", is_flag=True, help="Overwrite an existing config.")
    def init(config_path, source_path, target_path, source_backend, target_backend,
             encrypt_target, password_env, delete, equality, force):
        """Write a new config file.

        Passwords are never written; only the name of the environment
        variable to read them from.
        """
        path = _config_path(config_path)
        if path.exists() and not force:
            console.print(f"[yellow]Config already exists:[/] {path} (use --force)")
            sys.exit(1)

        try:
            methods = EqualityMethod.parse(equality) if equality else EqualityMethod.DEFAULT
        except ValueError as exc:
            console.print(f"[red]{escape(str(exc))}[/]")
            sys.exit(2)

        encryption = []
        if encrypt_target:
            encryption.append(EncryptionConfig(
                password_env=password_env,
                encrypt_file_names=True,
                encrypt_directory_names=True,
            ))

        mirror = MirrorConfig(
            source=RootConfig(backend=BackendType(source_backend), path=source_path),
            target=RootConfig(backend=BackendType(target_backend), path=target_path, encryption=encryption),
            policy=SyncPolicy(
                delete_directories=delete,
                delete_files=delete,
                equality_methods=methods,
            ),
        )
        written = save_config(mirror, path)
        console.print(f"[green]Wrote[/] {written}")

    @config.command("show")
    @click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False), help="Config file.")
    def show(config_path):
        """Print the effective configuration as YAML."""
        path = _config_path(config_path)
        try:
            mirror = load_config(path)
        except ConfigError as exc:
            console.print(f"[red]{escape(str(exc))}[/]")
            sys.exit(2)

        if not path.exists():
            console.print(f"[dim]No config at {path}; showing defaults[/]")
        click.echo(yaml.dump(mirror.model_dump(mode="json"), default_flow_style=False, sort_keys=False))

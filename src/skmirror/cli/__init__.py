"""
SKMirror CLI -- the mirror command line.

Each command group lives in its own module and is registered on the
main Click group here.

Entry point: skmirror.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="skmirror")
def main():
    """SKMirror -- sovereign tree mirroring.

    Mirror a source tree onto a target tree. Local disk, memory,
    encrypted layers on top of either.
    """


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .run_cmd import register_run_commands
from .config_cmd import register_config_commands

register_run_commands(main)
register_config_commands(main)

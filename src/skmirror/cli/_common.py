"""Shared utilities for all CLI command modules.

Provides the Rich console instance, logging setup, and the
friendly formatting helpers used across command groups.
"""

from __future__ import annotations

import logging

from rich.console import Console

from .. import MIRROR_HOME

console = Console()
logger = logging.getLogger("skmirror.cli")

_SUFFIXES = ("B", "KB", "MB", "GB", "TB", "PB", "EB", "ZB", "YB")


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging for a CLI invocation."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


def friendly_size(length: int) -> str:
    """Render a byte count as e.g. ``12 KB``.

    Args:
        length: Number of bytes.

    Returns:
        str: Size with a binary-scaled suffix.
    """
    index = 0
    while length >= 1024 and index < len(_SUFFIXES) - 1:
        index += 1
        length //= 1024
    return f"{length} {_SUFFIXES[index]}"


__all__ = ["MIRROR_HOME", "console", "logger", "setup_logging", "friendly_size"]

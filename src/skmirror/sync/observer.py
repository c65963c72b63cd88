"""
Observers -- how a run talks back to its caller.

Three channels, all delivered synchronously on the task walking the
tree: action decided, error occurred, copy progress. A slow observer
slows the walk; a blocking one stalls it.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..storage import display_name
from .models import ActionRecord, ErrorRecord, ProgressRecord

logger = logging.getLogger("skmirror.sync.observer")


class SyncObserver:
    """Base observer. Every hook is a no-op; override what you need."""

    def on_action(self, record: ActionRecord) -> None:
        """Called when a create/update/delete/skip is decided."""

    def on_error(self, record: ErrorRecord) -> None:
        """Called on each failure. May set ``record.cancel`` / ``record.ignore``."""

    def on_progress(self, record: ProgressRecord) -> None:
        """Called as bytes are copied."""


class CallbackObserver(SyncObserver):
    """Observer built from plain functions.

    Args:
        on_action: Receives ActionRecord values.
        on_error: Receives ErrorRecord values.
        on_progress: Receives ProgressRecord values.
    """

    def __init__(
        self,
        on_action: Optional[Callable[[ActionRecord], None]] = None,
        on_error: Optional[Callable[[ErrorRecord], None]] = None,
        on_progress: Optional[Callable[[ProgressRecord], None]] = None,
    ) -> None:
        self._on_action = on_action
        self._on_error = on_error
        self._on_progress = on_progress

    def on_action(self, record: ActionRecord) -> None:
        if self._on_action:
            self._on_action(record)

    def on_error(self, record: ErrorRecord) -> None:
        if self._on_error:
            self._on_error(record)

    def on_progress(self, record: ProgressRecord) -> None:
        if self._on_progress:
            self._on_progress(record)


class LoggingObserver(SyncObserver):
    """Observer that writes every notification to the log."""

    def on_action(self, record: ActionRecord) -> None:
        logger.info(
            "%s (%s): <%s> -> <%s>",
            record.kind.value,
            record.method.label(),
            display_name(record.source),
            display_name(record.target),
        )

    def on_error(self, record: ErrorRecord) -> None:
        if record.exhausted:
            logger.error("Giving up after %d attempt(s): %s", record.attempt, record.error)
        else:
            logger.warning("Retry (%d): %s", record.attempt, record.error)

    def on_progress(self, record: ProgressRecord) -> None:
        logger.debug(
            "Copying (%.1f%%): <%s> -> <%s>",
            record.percent,
            display_name(record.source),
            display_name(record.target),
        )

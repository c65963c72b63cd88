"""
Retry controller -- run a fallible backend call up to N extra times.

Every failure below the bound is reported to the observer as an
ErrorRecord before the next attempt. The observer may set ``cancel``
on the record to stop retrying and cancel the run. Cancellation is
never retried.

Chunk-level retries inside a backend (e.g. per upload chunk) are the
backend's business and are not counted here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ..exceptions import BackendError, SyncCancelled
from ..storage import CancellationSignal
from .models import ErrorRecord
from .observer import SyncObserver

logger = logging.getLogger("skmirror.sync.retry")

T = TypeVar("T")

RETRYABLE_ERRORS = (BackendError, OSError)


class RetryController:
    """Invoke operations with bounded immediate retries.

    Args:
        retry_count: Extra attempts after the first failure (>= 0).
        observer: Receives an ErrorRecord for every retried failure.
        cancel: Run cancellation signal, checked before each attempt.
        delay: Seconds to wait between attempts.
    """

    def __init__(
        self,
        retry_count: int = 3,
        observer: Optional[SyncObserver] = None,
        cancel: Optional[CancellationSignal] = None,
        delay: float = 0.0,
    ) -> None:
        if retry_count < 0:
            raise ValueError("retry_count must be >= 0")
        self.retry_count = retry_count
        self.observer = observer or SyncObserver()
        self.cancel = cancel or CancellationSignal()
        self.delay = delay

    async def invoke(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` until it succeeds or the bound is reached.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt.

        Returns:
            The operation's result.

        Raises:
            SyncCancelled: If cancellation was requested, by the signal or
                by the observer through ``ErrorRecord.cancel``.
            BackendError: The last error once attempts are exhausted.
        """
        attempt = 0
        while True:
            self.cancel.raise_if_cancelled()
            try:
                return await operation()
            except SyncCancelled:
                raise
            except RETRYABLE_ERRORS as exc:
                if self.cancel.cancelled:
                    raise SyncCancelled("Operation was cancelled") from exc
                attempt += 1
                if attempt > self.retry_count:
                    raise

                record = ErrorRecord(error=exc, attempt=attempt)
                self.observer.on_error(record)
                if record.cancel:
                    raise SyncCancelled("Cancelled by observer") from exc

                logger.debug("Retrying (%d/%d) after: %s", attempt, self.retry_count, exc)
                if self.delay:
                    await asyncio.sleep(self.delay)

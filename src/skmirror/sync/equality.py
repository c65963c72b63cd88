"""
Equality evaluator -- is the target file already the source file?

Checks run cheapest first and stop at the first proof of inequality:

    ALWAYS_DIFFERENT -> never equal
    LENGTH           -> metadata only, no content read
    LAST_WRITE_TIME  -> metadata only
    CONTENT_HASH     -> reads both files through SHA-256

Directories are never compared; name and existence are all that matter.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from ..storage import CancellationSignal, File, Item, iter_chunks
from .models import EqualityMethod
from .retry import RetryController

logger = logging.getLogger("skmirror.sync.equality")


@dataclass(frozen=True)
class Comparison:
    """Result of comparing two items.

    ``method`` is the check that proved inequality, or the strongest
    check that passed when the items are equal.
    """

    equal: bool
    method: EqualityMethod = EqualityMethod.NONE


async def compute_digest(file: File, cancel: CancellationSignal) -> str:
    """Stream a file through SHA-256.

    Returns:
        Digest string in format "sha256:<hex>".
    """
    hasher = hashlib.sha256()
    async with await file.open_read(cancel) as stream:
        async for chunk in iter_chunks(stream):
            cancel.raise_if_cancelled()
            hasher.update(chunk)
    return f"sha256:{hasher.hexdigest()}"


class EqualityEvaluator:
    """Decide whether a source and target item are interchangeable.

    Args:
        methods: Configured equality methods.
        retry: Controller used for content reads. Defaults to no retries.
        cancel: Run cancellation signal.
    """

    def __init__(
        self,
        methods: EqualityMethod = EqualityMethod.DEFAULT,
        retry: Optional[RetryController] = None,
        cancel: Optional[CancellationSignal] = None,
    ) -> None:
        self.methods = methods
        self.cancel = cancel or (retry.cancel if retry else CancellationSignal())
        self.retry = retry or RetryController(0, cancel=self.cancel)

    async def compare(self, source: Item, target: Item) -> Comparison:
        """Compare a source item with the target item of the same name."""
        if source.is_directory or target.is_directory:
            return Comparison(source.is_directory == target.is_directory)

        methods = self.methods
        if EqualityMethod.ALWAYS_DIFFERENT in methods:
            return Comparison(False, EqualityMethod.ALWAYS_DIFFERENT)

        proved = EqualityMethod.NONE

        if EqualityMethod.LENGTH in methods:
            if source.length != target.length:
                return Comparison(False, EqualityMethod.LENGTH)
            proved = EqualityMethod.LENGTH

        if EqualityMethod.LAST_WRITE_TIME in methods:
            if source.modified_at != target.modified_at:
                return Comparison(False, EqualityMethod.LAST_WRITE_TIME)
            proved = EqualityMethod.LAST_WRITE_TIME

        if EqualityMethod.CONTENT_HASH in methods:
            source_digest = await self.retry.invoke(lambda: compute_digest(source, self.cancel))
            target_digest = await self.retry.invoke(lambda: compute_digest(target, self.cancel))
            if source_digest != target_digest:
                return Comparison(False, EqualityMethod.CONTENT_HASH)
            proved = EqualityMethod.CONTENT_HASH

        return Comparison(True, proved)

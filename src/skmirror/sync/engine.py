"""
Sync Engine -- walks two trees in lock-step and makes the target match.

    source-only   -> create (directories recurse, files stream across)
    target-only   -> delete (if the policy allows it)
    both, dirs    -> recurse
    both, files   -> equality check, then skip or update
    both, mixed   -> delete the target, then create from the source

Every backend call goes through the RetryController. When retries run
out the observer sees an exhausted ErrorRecord and decides: ignore the
item and keep walking, or let the run fail. The engine only speaks the
storage abstraction, so an encryption adapter slots in unnoticed.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from ..exceptions import SyncCancelled
from ..storage import (
    ByteStream,
    CancellationSignal,
    Directory,
    File,
    Item,
    display_name,
)
from .equality import EqualityEvaluator
from .models import (
    ActionKind,
    ActionRecord,
    EqualityMethod,
    ErrorRecord,
    ProgressRecord,
    RunOutcome,
    RunResult,
    RunStatistics,
    SyncPolicy,
)
from .observer import SyncObserver
from .retry import RETRYABLE_ERRORS, RetryController

logger = logging.getLogger("skmirror.sync.engine")

_FAILED = object()


class ProgressStream(ByteStream):
    """Wraps a source stream, reporting progress and honoring cancellation."""

    def __init__(
        self,
        inner: ByteStream,
        source: File,
        target: Optional[Item],
        observer: SyncObserver,
        cancel: CancellationSignal,
    ) -> None:
        self._inner = inner
        self._source = source
        self._target = target
        self._observer = observer
        self._cancel = cancel
        self.position = 0

    async def read(self, size: int = -1) -> bytes:
        self._cancel.raise_if_cancelled()
        data = await self._inner.read(size)
        if data:
            self.position += len(data)
            self._observer.on_progress(
                ProgressRecord(
                    position=self.position,
                    length=self._source.length,
                    source=self._source,
                    target=self._target,
                )
            )
        return data

    async def aclose(self) -> None:
        await self._inner.aclose()


class SyncEngine:
    """Mirror a source directory tree onto a target directory tree.

    Args:
        policy: What the run may create, update and delete. Defaults to
            SyncPolicy().
        observer: Receives action, error and progress notifications.
    """

    def __init__(
        self,
        policy: Optional[SyncPolicy] = None,
        observer: Optional[SyncObserver] = None,
    ) -> None:
        self.policy = policy or SyncPolicy()
        self.observer = observer or SyncObserver()

    async def run(
        self,
        source_root: Directory,
        target_root: Directory,
        cancel: Optional[CancellationSignal] = None,
    ) -> RunResult:
        """Synchronize ``target_root`` with ``source_root``.

        Args:
            source_root: Root of the tree to copy from.
            target_root: Root of the tree to bring in line.
            cancel: Cooperative cancellation signal.

        Returns:
            RunResult with the outcome (completed, cancelled, failed) and
            the statistics accumulated up to that point.
        """
        walk = _Walk(self.policy, self.observer, cancel or CancellationSignal())

        logger.info(
            "Starting sync: <%s> -> <%s>",
            display_name(source_root),
            display_name(target_root),
        )
        try:
            await walk.sync_directory(source_root, target_root)
        except SyncCancelled as exc:
            logger.warning("Sync cancelled: %s", exc)
            return RunResult(RunOutcome.CANCELLED, walk.statistics, exc)
        except RETRYABLE_ERRORS as exc:
            logger.error("Sync failed: %s", exc)
            return RunResult(RunOutcome.FAILED, walk.statistics, exc)

        stats = walk.statistics
        logger.info(
            "Sync completed: %d created, %d updated, %d deleted files; "
            "%d created, %d deleted directories",
            stats.files_created,
            stats.files_updated,
            stats.files_deleted,
            stats.directories_created,
            stats.directories_deleted,
        )
        return RunResult(RunOutcome.COMPLETED, stats)


class _Walk:
    """State of one run: policy, signal, retry controller, statistics."""

    def __init__(
        self,
        policy: SyncPolicy,
        observer: SyncObserver,
        cancel: CancellationSignal,
    ) -> None:
        self.policy = policy
        self.observer = observer
        self.cancel = cancel
        self.statistics = RunStatistics()
        self.retry = RetryController(
            policy.retry_count, observer, cancel, delay=policy.retry_delay
        )
        self.evaluator = EqualityEvaluator(policy.equality_methods, self.retry, cancel)

    # -------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------

    def _emit(
        self,
        kind: ActionKind,
        source: Optional[Item],
        target: Optional[Item],
        method: EqualityMethod = EqualityMethod.NONE,
    ) -> None:
        self.observer.on_action(ActionRecord(kind, source, target, method))

    async def _call(
        self, operation: Callable[[], Awaitable[Any]], retry: bool = True
    ) -> Any:
        """Run a backend call, escalating to the observer once retries are gone.

        Returns:
            The call's result, or ``_FAILED`` if the observer chose to
            ignore the error.
        """
        try:
            if retry:
                return await self.retry.invoke(operation)
            return await operation()
        except RETRYABLE_ERRORS as exc:
            record = ErrorRecord(
                error=exc, attempt=self.policy.retry_count + 1, exhausted=True
            )
            self.observer.on_error(record)
            if record.cancel:
                raise SyncCancelled("Cancelled by observer") from exc
            if record.ignore:
                logger.warning("Skipping item after error: %s", exc)
                return _FAILED
            raise

    # -------------------------------------------------------------------
    # Walk
    # -------------------------------------------------------------------

    async def sync_directory(self, source: Directory, target: Directory) -> None:
        """Reconcile the children of ``target`` with those of ``source``."""
        self.cancel.raise_if_cancelled()
        cancel = self.cancel

        source_children = await self._call(lambda: source.list_children(cancel))
        if source_children is _FAILED:
            return
        target_children = await self._call(lambda: target.list_children(cancel))
        if target_children is _FAILED:
            return

        remaining = {child.name: child for child in target_children}

        for item in source_children:
            self.cancel.raise_if_cancelled()
            existing = remaining.pop(item.name, None)

            if item.is_directory:
                self.statistics.directories_seen += 1
            else:
                self.statistics.files_seen += 1

            if existing is None:
                await self._create(item, target)
            elif existing.is_directory != item.is_directory:
                await self._replace(item, existing, target)
            elif item.is_directory:
                await self.sync_directory(item, existing)
            else:
                await self._sync_file(item, existing, target)

        for leftover in remaining.values():
            self.cancel.raise_if_cancelled()
            await self._delete(leftover)

    async def _create(self, item: Item, parent: Directory) -> None:
        cancel = self.cancel

        if item.is_directory:
            if not self.policy.create_directories:
                self._emit(ActionKind.SKIP, item, None)
                return
            created = await self._call(lambda: parent.create_directory(item.name, cancel))
            if created is _FAILED:
                return
            self.statistics.directories_created += 1
            self._emit(ActionKind.CREATE, item, created)
            await self.sync_directory(item, created)
            return

        if not self.policy.create_files:
            self._emit(ActionKind.SKIP, item, None)
            return
        self._emit(ActionKind.CREATE, item, None)
        if await self._copy(item, parent, None) is not _FAILED:
            self.statistics.files_created += 1

    async def _sync_file(self, item: File, existing: File, parent: Directory) -> None:
        comparison = await self._call(lambda: self.evaluator.compare(item, existing), retry=False)
        if comparison is _FAILED:
            return

        if comparison.equal:
            self._emit(ActionKind.SKIP, item, existing, comparison.method)
            return
        if not self.policy.update_files:
            self._emit(ActionKind.SKIP, item, existing, comparison.method)
            return

        self._emit(ActionKind.UPDATE, item, existing, comparison.method)
        if await self._copy(item, parent, existing) is not _FAILED:
            self.statistics.files_updated += 1

    async def _replace(self, item: Item, existing: Item, parent: Directory) -> None:
        """Different kinds under one name: delete the target, then create."""
        if await self._delete(existing):
            await self._create(item, parent)
        else:
            self._emit(ActionKind.SKIP, item, existing)

    async def _delete(self, item: Item) -> bool:
        """Delete a target-only item if allowed.

        Directories are emptied bottom-up first so every nested deletion
        honors the policy and is counted. A directory that keeps any
        child is kept too.

        Returns:
            True if the item is gone.
        """
        cancel = self.cancel

        if not item.is_directory:
            if not self.policy.delete_files:
                self._emit(ActionKind.SKIP, None, item)
                return False
            self._emit(ActionKind.DELETE, None, item)
            if await self._call(lambda: item.delete(cancel)) is _FAILED:
                return False
            self.statistics.files_deleted += 1
            return True

        if not self.policy.delete_directories:
            self._emit(ActionKind.SKIP, None, item)
            return False

        children = await self._call(lambda: item.list_children(cancel))
        if children is _FAILED:
            return False
        kept = False
        for child in children:
            self.cancel.raise_if_cancelled()
            if not await self._delete(child):
                kept = True
        if kept:
            self._emit(ActionKind.SKIP, None, item)
            return False

        self._emit(ActionKind.DELETE, None, item)
        if await self._call(lambda: item.delete(cancel)) is _FAILED:
            return False
        self.statistics.directories_deleted += 1
        return True

    async def _copy(self, item: File, parent: Directory, target: Optional[Item]) -> Any:
        """Stream ``item`` into ``parent`` (replacing any file of that name)."""
        cancel = self.cancel

        async def copy() -> File:
            async with await item.open_read(cancel) as stream:
                progress = ProgressStream(stream, item, target, self.observer, cancel)
                created = await parent.create_file(
                    item.name,
                    progress,
                    item.length,
                    cancel,
                    modified_at=item.modified_at,
                )
            self.statistics.bytes_copied += progress.position
            return created

        return await self._call(copy)

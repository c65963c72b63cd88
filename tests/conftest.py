"""Shared test fixtures for skmirror."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from skmirror.backends.memory import MemoryBackend
from skmirror.crypto import KeyRing
from skmirror.storage import CancellationSignal
from skmirror.sync import ActionKind, SyncObserver

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
T1 = datetime(2024, 6, 1, 8, 30, tzinfo=timezone.utc)


class RecordingObserver(SyncObserver):
    """Observer that keeps every notification for later assertions."""

    def __init__(self) -> None:
        self.actions = []
        self.errors = []
        self.progress = []
        self.ignore = False

    def on_action(self, record) -> None:
        self.actions.append(record)

    def on_error(self, record) -> None:
        self.errors.append(record)
        if record.exhausted and self.ignore:
            record.ignore = True

    def on_progress(self, record) -> None:
        self.progress.append(record)

    def kinds(self, kind: ActionKind) -> list[str]:
        """Names of the items that got ``kind``."""
        names = []
        for record in self.actions:
            if record.kind != kind:
                continue
            item = record.source if record.source is not None else record.target
            names.append(item.name)
        return names


@pytest.fixture
def cancel() -> CancellationSignal:
    """A fresh cancellation signal."""
    return CancellationSignal()


@pytest.fixture
def source_backend() -> MemoryBackend:
    """In-memory source tree."""
    return MemoryBackend("source")


@pytest.fixture
def target_backend() -> MemoryBackend:
    """In-memory target tree."""
    return MemoryBackend("target")


@pytest.fixture
def observer() -> RecordingObserver:
    """Observer that records everything."""
    return RecordingObserver()


@pytest.fixture
def keys() -> KeyRing:
    """Key ring with cheap key stretching for fast tests."""
    return KeyRing("correct horse battery staple", iterations=1000)


@pytest_asyncio.fixture
async def roots(source_backend: MemoryBackend, target_backend: MemoryBackend, cancel: CancellationSignal):
    """Root directories of the source and target memory trees."""
    source = await source_backend.get_directory("/", cancel)
    target = await target_backend.get_directory("/", cancel)
    return source, target

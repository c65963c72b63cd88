"""
Storage abstraction -- the contract every backend speaks.

The engine only ever sees these types. A backend (local disk, memory,
an encryption wrapper around either) hands out Directory and File
items and promises the semantics below:

    Directory.list_children   -> every child, nothing silently dropped
    Directory.create_file     -> visible only once fully written,
                                 replaces an existing file of that name
    Directory.create_directory-> not assumed idempotent
    Item.delete               -> directories go with their content
    File.open_read            -> an async ByteStream

Every operation is a coroutine, takes the run's CancellationSignal,
and raises BackendError on failure.

Optional capabilities (login) are declared once on
the backend through BackendCapabilities instead of per item.
"""

from __future__ import annotations

import asyncio
import io
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Optional

from .exceptions import SyncCancelled

COPY_CHUNK_SIZE = 64 * 1024  # 64 KB


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancellationSignal:
    """Cooperative cancel flag shared by every call of one run.

    Raising it never interrupts a backend call in flight; the next
    suspension point that checks it unwinds with SyncCancelled.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise SyncCancelled if cancellation was requested."""
        if self._event.is_set():
            raise SyncCancelled("Operation was cancelled")

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()


# ---------------------------------------------------------------------------
# Byte streams
# ---------------------------------------------------------------------------


class ByteStream(ABC):
    """Minimal async readable byte stream."""

    @abstractmethod
    async def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes; ``b""`` at end of stream."""

    async def aclose(self) -> None:
        """Release the underlying resource."""

    async def __aenter__(self) -> "ByteStream":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class MemoryStream(ByteStream):
    """ByteStream over an in-memory buffer."""

    def __init__(self, data: bytes = b"") -> None:
        self._buffer = io.BytesIO(data)

    async def read(self, size: int = -1) -> bytes:
        return self._buffer.read(size)

    async def aclose(self) -> None:
        self._buffer.close()


async def read_exactly(stream: ByteStream, size: int) -> bytes:
    """Read ``size`` bytes, or fewer only when the stream ends first."""
    parts = []
    remaining = size
    while remaining > 0:
        data = await stream.read(remaining)
        if not data:
            break
        parts.append(data)
        remaining -= len(data)
    return b"".join(parts)


async def iter_chunks(
    stream: ByteStream, chunk_size: int = COPY_CHUNK_SIZE
) -> AsyncIterator[bytes]:
    """Yield the stream's content chunk by chunk."""
    while True:
        data = await stream.read(chunk_size)
        if not data:
            return
        yield data


async def read_all(stream: ByteStream) -> bytes:
    """Drain a stream into bytes."""
    return b"".join([chunk async for chunk in iter_chunks(stream)])


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


class Item(ABC):
    """A directory or file exposed by a backend."""

    is_directory: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Leaf name, never containing a path separator."""

    @property
    def exists(self) -> bool:
        return True

    @property
    @abstractmethod
    def created_at(self) -> datetime:
        """Creation time (UTC)."""

    @property
    @abstractmethod
    def modified_at(self) -> datetime:
        """Last modification time (UTC)."""

    @property
    def full_name(self) -> Optional[str]:
        """Stable full path for display, when the backend has one."""
        return None

    @abstractmethod
    async def delete(self, cancel: CancellationSignal) -> None:
        """Delete this item (and, for directories, everything below it)."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {display_name(self)!r}>"


class File(Item):
    """A file item."""

    @property
    @abstractmethod
    def length(self) -> int:
        """Content length in bytes."""

    @abstractmethod
    async def open_read(self, cancel: CancellationSignal) -> ByteStream:
        """Open the content for reading."""


class Directory(Item):
    """A directory item."""

    is_directory = True

    @abstractmethod
    async def list_children(self, cancel: CancellationSignal) -> list[Item]:
        """List the direct children of this directory."""

    @abstractmethod
    async def create_file(
        self,
        name: str,
        stream: ByteStream,
        length: int,
        cancel: CancellationSignal,
        modified_at: Optional[datetime] = None,
    ) -> File:
        """Create (or replace) a child file from ``length`` bytes of ``stream``.

        Args:
            name: Leaf name of the new file.
            stream: Content source.
            length: Number of bytes the stream will deliver.
            cancel: Run cancellation signal.
            modified_at: Modification time to stamp on the file, when the
                backend is able to.

        Returns:
            The created file.
        """

    @abstractmethod
    async def create_directory(
        self, name: str, cancel: CancellationSignal
    ) -> "Directory":
        """Create a child directory."""


def display_name(item: Optional[Item]) -> str:
    """Best human-readable name for an item."""
    if item is None:
        return ""
    return item.full_name or item.name


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BackendCapabilities:
    """Optional capabilities a backend declares up front."""

    login: bool = False


class Backend(ABC):
    """A storage backend able to resolve root directories."""

    capabilities = BackendCapabilities()

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name."""

    async def log_in(self, cancel: CancellationSignal) -> None:
        """Authenticate. Only called when ``capabilities.login`` is set."""

    @abstractmethod
    async def get_directory(
        self, path: str, cancel: CancellationSignal
    ) -> Directory:
        """Resolve ``path`` to a directory, creating it when missing."""


async def open_root(
    backend: Backend, path: str, cancel: CancellationSignal
) -> Directory:
    """Log in if the backend needs it, then resolve the root directory.

    Args:
        backend: Backend (possibly wrapped in adapters).
        path: Backend-specific root path.
        cancel: Run cancellation signal.

    Returns:
        The root Directory.
    """
    cancel.raise_if_cancelled()
    if backend.capabilities.login:
        await backend.log_in(cancel)
    return await backend.get_directory(path, cancel)

"""
Local filesystem backend for disks, USB drives, NAS mounts.

Blocking calls run in worker threads via ``asyncio.to_thread``. Files
are written to a hidden temp file next to the destination and moved
into place with ``os.replace`` once complete, so a failed or cancelled
copy never leaves a half-written file under the real name.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import BinaryIO, Optional

from ..exceptions import BackendError
from ..storage import (
    Backend,
    BackendCapabilities,
    ByteStream,
    CancellationSignal,
    Directory,
    File,
    Item,
    iter_chunks,
)

logger = logging.getLogger("skmirror.backends.local")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
TEMP_PREFIX = ".skmirror-"


def from_ns(ns: int) -> datetime:
    """Nanosecond timestamp -> aware UTC datetime (microsecond precision)."""
    return _EPOCH + timedelta(microseconds=ns // 1000)


def to_ns(moment: datetime) -> int:
    """Aware (or UTC-naive) datetime -> nanosecond timestamp."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // timedelta(microseconds=1) * 1000


async def _io(func, *args):
    """Run a blocking call in a thread, mapping OSError to BackendError."""
    try:
        return await asyncio.to_thread(func, *args)
    except OSError as exc:
        raise BackendError(str(exc)) from exc


class LocalBackend(Backend):
    """Plain filesystem backend.

    Args:
        base: Directory relative root paths are resolved against.
    """

    capabilities = BackendCapabilities(login=False)

    def __init__(self, base: Optional[Path] = None) -> None:
        self.base = base

    @property
    def name(self) -> str:
        return "local"

    async def get_directory(self, path: str, cancel: CancellationSignal) -> Directory:
        cancel.raise_if_cancelled()
        target = Path(path).expanduser()
        if self.base is not None and not target.is_absolute():
            target = self.base / target
        await _io(lambda: target.mkdir(parents=True, exist_ok=True))
        stat = await _io(target.stat)
        return LocalDirectory(target, stat)


class _LocalItem:
    """Shared attributes of local items."""

    path: Path
    _stat: os.stat_result

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def exists(self) -> bool:
        return self.path.exists()

    @property
    def created_at(self) -> datetime:
        birth = getattr(self._stat, "st_birthtime", None)
        if birth is not None:
            return datetime.fromtimestamp(birth, tz=timezone.utc)
        return from_ns(self._stat.st_ctime_ns)

    @property
    def modified_at(self) -> datetime:
        return from_ns(self._stat.st_mtime_ns)

    @property
    def full_name(self) -> Optional[str]:
        return str(self.path.absolute())


class LocalReadStream(ByteStream):
    """ByteStream over a file opened in binary mode."""

    def __init__(self, handle: BinaryIO) -> None:
        self._handle = handle

    async def read(self, size: int = -1) -> bytes:
        return await _io(self._handle.read, size)

    async def aclose(self) -> None:
        await _io(self._handle.close)


class LocalFile(_LocalItem, File):
    """A regular file on disk."""

    def __init__(self, path: Path, stat: os.stat_result) -> None:
        self.path = path
        self._stat = stat

    @property
    def length(self) -> int:
        return self._stat.st_size

    async def open_read(self, cancel: CancellationSignal) -> ByteStream:
        cancel.raise_if_cancelled()
        handle = await _io(open, self.path, "rb")
        return LocalReadStream(handle)

    async def delete(self, cancel: CancellationSignal) -> None:
        cancel.raise_if_cancelled()
        await _io(self.path.unlink)


class LocalDirectory(_LocalItem, Directory):
    """A directory on disk."""

    def __init__(self, path: Path, stat: os.stat_result) -> None:
        self.path = path
        self._stat = stat

    async def delete(self, cancel: CancellationSignal) -> None:
        cancel.raise_if_cancelled()
        await _io(shutil.rmtree, self.path)

    def _scan(self) -> list[Item]:
        items: list[Item] = []
        with os.scandir(self.path) as entries:
            for entry in entries:
                if entry.name.startswith(TEMP_PREFIX):
                    continue
                if entry.is_dir():
                    items.append(LocalDirectory(Path(entry.path), entry.stat()))
                elif entry.is_file():
                    items.append(LocalFile(Path(entry.path), entry.stat()))
                else:
                    logger.warning("Ignoring unsupported entry: %s", entry.path)
        return items

    async def list_children(self, cancel: CancellationSignal) -> list[Item]:
        cancel.raise_if_cancelled()
        return await _io(self._scan)

    async def create_file(
        self,
        name: str,
        stream: ByteStream,
        length: int,
        cancel: CancellationSignal,
        modified_at: Optional[datetime] = None,
    ) -> File:
        cancel.raise_if_cancelled()
        final_path = self.path / name
        tmp_path = self.path / f"{TEMP_PREFIX}{uuid.uuid4().hex}.tmp"

        try:
            written = 0
            handle = await _io(open, tmp_path, "wb")
            try:
                async for chunk in iter_chunks(stream):
                    await _io(handle.write, chunk)
                    written += len(chunk)
                await _io(handle.flush)
                await _io(os.fsync, handle.fileno())
            finally:
                await _io(handle.close)

            if written != length:
                raise BackendError(f"Expected {length} bytes for {name!r}, got {written}")
            if modified_at is not None:
                mtime_ns = to_ns(modified_at)
                await _io(lambda: os.utime(tmp_path, ns=(mtime_ns, mtime_ns)))
            await _io(os.replace, tmp_path, final_path)
        except BaseException:
            try:
                tmp_path.unlink()
            except OSError:
                pass
            raise

        stat = await _io(final_path.stat)
        return LocalFile(final_path, stat)

    async def create_directory(self, name: str, cancel: CancellationSignal) -> Directory:
        cancel.raise_if_cancelled()
        path = self.path / name
        await _io(path.mkdir)
        stat = await _io(path.stat)
        return LocalDirectory(path, stat)

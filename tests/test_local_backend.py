"""Tests for the local filesystem backend."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from conftest import T0, T1
from skmirror.backends.local import TEMP_PREFIX, LocalBackend, from_ns, to_ns
from skmirror.exceptions import BackendError, SyncCancelled
from skmirror.storage import ByteStream, CancellationSignal, MemoryStream, read_all
from skmirror.sync import RunOutcome, SyncEngine, SyncObserver, SyncPolicy


class FailingStream(ByteStream):
    """Delivers some bytes, then raises."""

    def __init__(self, data: bytes, error: Exception) -> None:
        self._data = data
        self._error = error

    async def read(self, size: int = -1) -> bytes:
        if self._data:
            data, self._data = self._data, b""
            return data
        raise self._error


@pytest.fixture
def trees(tmp_path: Path) -> tuple[Path, Path]:
    """Empty source and target directories."""
    source, target = tmp_path / "source", tmp_path / "target"
    source.mkdir()
    target.mkdir()
    return source, target


class TestTimestamps:
    """Tests for timestamp conversion."""

    def test_round_trip(self) -> None:
        assert from_ns(to_ns(T1)) == T1

    def test_truncates_to_microseconds(self) -> None:
        assert to_ns(from_ns(1_700_000_000_123_456_789)) == 1_700_000_000_123_456_000


class TestLocalBackend:
    """Tests for items on disk."""

    @pytest.mark.asyncio
    async def test_get_directory_creates_path(self, tmp_path: Path, cancel) -> None:
        root = await LocalBackend().get_directory(str(tmp_path / "a" / "b"), cancel)
        assert (tmp_path / "a" / "b").is_dir()
        assert root.name == "b"
        assert root.full_name == str((tmp_path / "a" / "b").absolute())

    @pytest.mark.asyncio
    async def test_relative_to_base(self, tmp_path: Path, cancel) -> None:
        await LocalBackend(base=tmp_path).get_directory("mirror", cancel)
        assert (tmp_path / "mirror").is_dir()

    @pytest.mark.asyncio
    async def test_create_and_read_file(self, tmp_path: Path, cancel) -> None:
        root = await LocalBackend().get_directory(str(tmp_path), cancel)
        created = await root.create_file("x.bin", MemoryStream(b"abc"), 3, cancel, modified_at=T0)

        assert (tmp_path / "x.bin").read_bytes() == b"abc"
        assert created.length == 3
        assert created.modified_at == T0
        assert await read_all(await created.open_read(cancel)) == b"abc"

    @pytest.mark.asyncio
    async def test_create_replaces_existing(self, tmp_path: Path, cancel) -> None:
        (tmp_path / "x.txt").write_bytes(b"old content")
        root = await LocalBackend().get_directory(str(tmp_path), cancel)
        await root.create_file("x.txt", MemoryStream(b"new"), 3, cancel)
        assert (tmp_path / "x.txt").read_bytes() == b"new"

    @pytest.mark.asyncio
    async def test_length_mismatch_leaves_nothing(self, tmp_path: Path, cancel) -> None:
        root = await LocalBackend().get_directory(str(tmp_path), cancel)
        with pytest.raises(BackendError, match="Expected 10 bytes"):
            await root.create_file("short.txt", MemoryStream(b"abc"), 10, cancel)
        assert os.listdir(tmp_path) == []

    @pytest.mark.asyncio
    async def test_interrupted_write_leaves_nothing(self, tmp_path: Path, cancel) -> None:
        (tmp_path / "x.txt").write_bytes(b"keep me")
        root = await LocalBackend().get_directory(str(tmp_path), cancel)
        stream = FailingStream(b"partial", SyncCancelled("stop"))

        with pytest.raises(SyncCancelled):
            await root.create_file("x.txt", stream, 100, cancel)

        assert os.listdir(tmp_path) == ["x.txt"]
        assert (tmp_path / "x.txt").read_bytes() == b"keep me"

    @pytest.mark.asyncio
    async def test_listing_skips_temp_files(self, tmp_path: Path, cancel) -> None:
        (tmp_path / f"{TEMP_PREFIX}abc.tmp").write_bytes(b"junk")
        (tmp_path / "real.txt").write_bytes(b"data")
        (tmp_path / "sub").mkdir()
        root = await LocalBackend().get_directory(str(tmp_path), cancel)

        children = await root.list_children(cancel)

        assert sorted(child.name for child in children) == ["real.txt", "sub"]
        assert {child.name: child.is_directory for child in children} == {"real.txt": False, "sub": True}

    @pytest.mark.asyncio
    async def test_delete_directory_recursively(self, tmp_path: Path, cancel) -> None:
        (tmp_path / "sub" / "deeper").mkdir(parents=True)
        (tmp_path / "sub" / "deeper" / "f.txt").write_bytes(b"x")
        root = await LocalBackend().get_directory(str(tmp_path), cancel)
        (sub,) = await root.list_children(cancel)

        await sub.delete(cancel)

        assert not (tmp_path / "sub").exists()
        assert not sub.exists

    @pytest.mark.asyncio
    async def test_os_errors_become_backend_errors(self, tmp_path: Path, cancel) -> None:
        root = await LocalBackend().get_directory(str(tmp_path), cancel)
        await root.create_directory("dup", cancel)
        with pytest.raises(BackendError):
            await root.create_directory("dup", cancel)

    @pytest.mark.asyncio
    async def test_cancelled_signal_refuses_calls(self, tmp_path: Path) -> None:
        cancel = CancellationSignal()
        root = await LocalBackend().get_directory(str(tmp_path), cancel)
        cancel.cancel()
        with pytest.raises(SyncCancelled):
            await root.list_children(cancel)


class TestLocalMirror:
    """End-to-end runs between two directories on disk."""

    @pytest.mark.asyncio
    async def test_mirror_and_rerun(self, trees, cancel) -> None:
        source_path, target_path = trees
        (source_path / "a").mkdir()
        (source_path / "a" / "x.txt").write_bytes(b"0123456789")
        (source_path / "big.bin").write_bytes(os.urandom(300 * 1024))
        backend = LocalBackend()

        source = await backend.get_directory(str(source_path), cancel)
        target = await backend.get_directory(str(target_path), cancel)
        first = await SyncEngine().run(source, target, cancel)

        assert first.ok
        assert (target_path / "a" / "x.txt").read_bytes() == b"0123456789"
        assert (target_path / "big.bin").read_bytes() == (source_path / "big.bin").read_bytes()
        assert (
            (target_path / "big.bin").stat().st_mtime_ns // 1000
            == (source_path / "big.bin").stat().st_mtime_ns // 1000
        )

        source = await backend.get_directory(str(source_path), cancel)
        target = await backend.get_directory(str(target_path), cancel)
        second = await SyncEngine().run(source, target, cancel)

        assert second.statistics.files_created == 0
        assert second.statistics.files_updated == 0
        assert second.statistics.bytes_copied == 0

    @pytest.mark.asyncio
    async def test_cancel_mid_copy_leaves_no_temp_file(self, trees) -> None:
        source_path, target_path = trees
        (source_path / "big.bin").write_bytes(b"z" * (256 * 1024))
        backend = LocalBackend()
        cancel = CancellationSignal()

        class CancelOnProgress(SyncObserver):
            def on_progress(self, record) -> None:
                cancel.cancel()

        source = await backend.get_directory(str(source_path), cancel)
        target = await backend.get_directory(str(target_path), cancel)
        result = await SyncEngine(SyncPolicy(), CancelOnProgress()).run(source, target, cancel)

        assert result.outcome == RunOutcome.CANCELLED
        assert os.listdir(target_path) == []

"""Tests for the encrypted backend adapter."""

from __future__ import annotations

import pytest

from conftest import T0, T1, RecordingObserver
from skmirror.backends.encrypted import EncryptedBackend
from skmirror.backends.memory import MemoryBackend
from skmirror.crypto import SCHEME_CTR_HMAC, SCHEME_GCM, KeyRing, encrypted_length
from skmirror.exceptions import EncryptionError
from skmirror.storage import CancellationSignal, MemoryStream, open_root, read_all
from skmirror.sync import ActionKind, RunOutcome, SyncEngine, SyncPolicy


def _encrypted(inner: MemoryBackend, keys: KeyRing, **kwargs) -> EncryptedBackend:
    kwargs.setdefault("encrypt_file_names", True)
    kwargs.setdefault("encrypt_directory_names", True)
    return EncryptedBackend(inner, keys, **kwargs)


async def _read(directory, path: list[str], cancel: CancellationSignal) -> bytes:
    for name in path:
        children = {child.name: child for child in await directory.list_children(cancel)}
        directory = children[name]
    return await read_all(await directory.open_read(cancel))


class TestSyncThroughAdapter:
    """The engine mirrors onto an encrypted target without noticing."""

    @pytest.mark.asyncio
    async def test_mirror_to_encrypted_target(self, source_backend, keys, cancel) -> None:
        source_backend.write_file("docs/report.txt", b"quarterly numbers", modified_at=T0)
        store = MemoryBackend("store")
        adapter = _encrypted(store, keys)

        source = await source_backend.get_directory("/", cancel)
        target = await adapter.get_directory("/vault", cancel)
        result = await SyncEngine().run(source, target, cancel)

        assert result.ok
        assert result.statistics.files_created == 1
        (stored_dir,) = store.list_names("vault")
        assert stored_dir != "docs"
        (stored_file,) = store.list_names(f"vault/{stored_dir}")
        assert stored_file != "report.txt"
        raw = store.read_file(f"vault/{stored_dir}/{stored_file}")
        assert b"quarterly" not in raw
        assert len(raw) == encrypted_length(len(b"quarterly numbers"))

        target = await adapter.get_directory("/vault", cancel)
        assert await _read(target, ["docs", "report.txt"], cancel) == b"quarterly numbers"

    @pytest.mark.asyncio
    async def test_second_run_skips(self, source_backend, keys, cancel) -> None:
        source_backend.write_file("a/x.txt", b"0123456789", modified_at=T0)
        adapter = _encrypted(MemoryBackend("store"), keys)
        source = await source_backend.get_directory("/", cancel)

        await SyncEngine().run(source, await adapter.get_directory("/", cancel), cancel)
        observer = RecordingObserver()
        result = await SyncEngine(observer=observer).run(
            source, await adapter.get_directory("/", cancel), cancel
        )

        assert result.statistics.files_created == 0
        assert result.statistics.files_updated == 0
        assert observer.kinds(ActionKind.SKIP) == ["x.txt"]

    @pytest.mark.asyncio
    async def test_empty_file_created_and_emptied(self, source_backend, keys, cancel) -> None:
        source_backend.write_file("empty.txt", b"", modified_at=T0)
        source_backend.write_file("x.txt", b"something", modified_at=T0)
        store = MemoryBackend("store")
        adapter = _encrypted(store, keys, encrypt_file_names=False)
        source = await source_backend.get_directory("/", cancel)

        result = await SyncEngine().run(source, await adapter.get_directory("/", cancel), cancel)

        assert result.ok
        assert result.statistics.files_created == 2
        assert len(store.read_file("empty.txt")) == encrypted_length(0)
        assert await _read(await adapter.get_directory("/", cancel), ["empty.txt"], cancel) == b""

        source_backend.write_file("x.txt", b"", modified_at=T1)
        result = await SyncEngine().run(source, await adapter.get_directory("/", cancel), cancel)

        assert result.ok
        assert result.statistics.files_created == 0
        assert result.statistics.files_updated == 1
        assert len(store.read_file("x.txt")) == encrypted_length(0)
        assert await _read(await adapter.get_directory("/", cancel), ["x.txt"], cancel) == b""

    @pytest.mark.asyncio
    async def test_restore_from_encrypted_source(self, keys, cancel) -> None:
        store = MemoryBackend("store")
        adapter = _encrypted(store, keys)
        plain = MemoryBackend("plain")
        plain.write_file("photo.jpg", b"\xff\xd8" + b"\x00" * 5000)

        await SyncEngine().run(
            await plain.get_directory("/", cancel), await adapter.get_directory("/", cancel), cancel
        )
        restored = MemoryBackend("restored")
        result = await SyncEngine(SyncPolicy(equality_methods="content_hash")).run(
            await adapter.get_directory("/", cancel), await restored.get_directory("/", cancel), cancel
        )

        assert result.ok
        assert restored.read_file("photo.jpg") == plain.read_file("photo.jpg")

    @pytest.mark.asyncio
    async def test_deletes_through_adapter(self, source_backend, keys, cancel) -> None:
        store = MemoryBackend("store")
        adapter = _encrypted(store, keys)
        target = await adapter.get_directory("/", cancel)
        await target.create_file("gone.txt", MemoryStream(b"bye"), 3, cancel)

        source = await source_backend.get_directory("/", cancel)
        result = await SyncEngine(SyncPolicy(delete_files=True)).run(source, target, cancel)

        assert result.statistics.files_deleted == 1
        assert store.list_names() == []


class TestAdapter:
    """Tests for name handling, stacking and versions."""

    @pytest.mark.asyncio
    async def test_plain_names_when_disabled(self, keys, cancel) -> None:
        store = MemoryBackend("store")
        adapter = EncryptedBackend(store, keys)
        root = await adapter.get_directory("/", cancel)
        folder = await root.create_directory("folder", cancel)
        await folder.create_file("a.txt", MemoryStream(b"abc"), 3, cancel)

        assert store.list_names("folder") == ["a.txt"]
        assert store.read_file("folder/a.txt") != b"abc"

    @pytest.mark.asyncio
    async def test_file_names_only(self, keys, cancel) -> None:
        store = MemoryBackend("store")
        adapter = EncryptedBackend(store, keys, encrypt_file_names=True)
        root = await adapter.get_directory("/", cancel)
        folder = await root.create_directory("folder", cancel)
        await folder.create_file("a.txt", MemoryStream(b"abc"), 3, cancel)

        assert store.list_names() == ["folder"]
        assert store.list_names("folder") == [keys.names.encrypt("a.txt")]

    @pytest.mark.asyncio
    async def test_full_name_is_plaintext_path(self, keys, cancel) -> None:
        adapter = _encrypted(MemoryBackend("store"), keys)
        root = await adapter.get_directory("/vault", cancel)
        folder = await root.create_directory("folder", cancel)
        created = await folder.create_file("a.txt", MemoryStream(b"abc"), 3, cancel)

        assert created.full_name == "store:/vault/folder/a.txt"
        assert created.length == 3

    @pytest.mark.asyncio
    async def test_stacked_adapters(self, keys, cancel) -> None:
        store = MemoryBackend("store")
        inner = _encrypted(store, keys)
        outer = _encrypted(inner, KeyRing("second layer", iterations=1000))
        root = await outer.get_directory("/", cancel)
        await root.create_file("deep.txt", MemoryStream(b"two layers"), 10, cancel)

        (stored,) = store.list_names()
        assert len(store.read_file(stored)) == encrypted_length(encrypted_length(10))
        root = await outer.get_directory("/", cancel)
        assert await _read(root, ["deep.txt"], cancel) == b"two layers"
        assert outer.name == "encrypted(encrypted(store))"

    @pytest.mark.asyncio
    async def test_old_scheme_readable_after_upgrade(self, keys, cancel) -> None:
        store = MemoryBackend("store")
        old = _encrypted(store, keys, version=SCHEME_CTR_HMAC)
        root = await old.get_directory("/", cancel)
        await root.create_file("legacy.txt", MemoryStream(b"from v1"), 7, cancel)

        new = _encrypted(store, keys, version=SCHEME_GCM)
        root = await new.get_directory("/", cancel)
        assert await _read(root, ["legacy.txt"], cancel) == b"from v1"

    def test_unknown_version_rejected(self, keys) -> None:
        with pytest.raises(ValueError):
            EncryptedBackend(MemoryBackend(), keys, version=42)

    @pytest.mark.asyncio
    async def test_foreign_name_raises(self, keys, cancel) -> None:
        store = MemoryBackend("store")
        store.write_file("not-encrypted.txt", b"x")
        root = await _encrypted(store, keys).get_directory("/", cancel)
        with pytest.raises(EncryptionError):
            await root.list_children(cancel)

    @pytest.mark.asyncio
    async def test_foreign_name_fails_run(self, source_backend, keys, cancel) -> None:
        store = MemoryBackend("store")
        store.write_file("not-encrypted.txt", b"x")
        target = await _encrypted(store, keys).get_directory("/", cancel)
        source = await source_backend.get_directory("/", cancel)

        result = await SyncEngine(SyncPolicy(retry_count=0)).run(source, target, cancel)

        assert result.outcome == RunOutcome.FAILED
        assert isinstance(result.error, EncryptionError)

    @pytest.mark.asyncio
    async def test_login_delegated(self, keys, cancel) -> None:
        store = MemoryBackend("store", requires_login=True)
        adapter = _encrypted(store, keys)

        assert adapter.capabilities.login
        await open_root(adapter, "/", cancel)

        assert store.logged_in
        assert store.login_count == 1

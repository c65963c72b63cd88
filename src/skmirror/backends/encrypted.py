"""
Encrypted backend -- a transparent encryption layer over any backend.

Wraps an inner Backend and speaks the same contract. Names can be
encrypted (files and directories independently), content always is.
Every item handed out is an adapter item wrapping an inner item, so
the engine never touches raw inner items and adapters can be stacked.

Writes use the configured scheme version; reads pick the scheme from
each file's header so older content stays readable after an upgrade.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Union

from ..crypto import (
    LATEST_SCHEME,
    PBKDF2_ITERATIONS,
    SCHEMES,
    DecryptingStream,
    EncryptingStream,
    KeyRing,
    encrypted_length,
    plaintext_length,
)
from ..storage import (
    Backend,
    ByteStream,
    CancellationSignal,
    Directory,
    File,
    Item,
)

logger = logging.getLogger("skmirror.backends.encrypted")


class EncryptedBackend(Backend):
    """Encryption adapter around another backend.

    Args:
        inner: Backend that stores the encrypted tree.
        password: Password (or a prepared KeyRing).
        version: Scheme version used for new files.
        encrypt_file_names: Encrypt file names.
        encrypt_directory_names: Encrypt directory names.
        iterations: PBKDF2 iterations for the master key.
    """

    def __init__(
        self,
        inner: Backend,
        password: Union[str, KeyRing],
        version: int = LATEST_SCHEME,
        encrypt_file_names: bool = False,
        encrypt_directory_names: bool = False,
        iterations: int = PBKDF2_ITERATIONS,
    ) -> None:
        if version not in SCHEMES:
            raise ValueError(f"Unsupported encryption scheme version: {version}")
        self.inner = inner
        self.keys = password if isinstance(password, KeyRing) else KeyRing(password, iterations)
        self.version = version
        self.encrypt_file_names = encrypt_file_names
        self.encrypt_directory_names = encrypt_directory_names
        self.capabilities = inner.capabilities

    @property
    def name(self) -> str:
        return f"encrypted({self.inner.name})"

    async def log_in(self, cancel: CancellationSignal) -> None:
        await self.inner.log_in(cancel)

    async def get_directory(self, path: str, cancel: CancellationSignal) -> Directory:
        inner = await self.inner.get_directory(path, cancel)
        return EncryptedDirectory(self, inner, inner.name, parent=None)

    # -------------------------------------------------------------------
    # Name mapping
    # -------------------------------------------------------------------

    def _encrypts(self, is_directory: bool) -> bool:
        return self.encrypt_directory_names if is_directory else self.encrypt_file_names

    def encode_name(self, name: str, is_directory: bool) -> str:
        if self._encrypts(is_directory):
            return self.keys.names.encrypt(name)
        return name

    def decode_name(self, name: str, is_directory: bool) -> str:
        if self._encrypts(is_directory):
            return self.keys.names.decrypt(name)
        return name

    def wrap(self, inner: Item, parent: "EncryptedDirectory") -> Item:
        """Wrap an inner item, decrypting its name."""
        name = self.decode_name(inner.name, inner.is_directory)
        if inner.is_directory:
            return EncryptedDirectory(self, inner, name, parent)
        return EncryptedFile(self, inner, name, parent)


class _EncryptedItemMixin:
    """Shared attributes of adapter items."""

    def _setup(
        self,
        backend: EncryptedBackend,
        inner: Item,
        name: str,
        parent: Optional["EncryptedDirectory"],
    ) -> None:
        self.backend = backend
        self.inner = inner
        self._name = name
        self._parent = parent

    @property
    def name(self) -> str:
        return self._name

    @property
    def exists(self) -> bool:
        return self.inner.exists

    @property
    def created_at(self) -> datetime:
        return self.inner.created_at

    @property
    def modified_at(self) -> datetime:
        return self.inner.modified_at

    @property
    def full_name(self) -> Optional[str]:
        if self._parent is None:
            return self.inner.full_name
        parent_name = self._parent.full_name
        if parent_name is None:
            return None
        return f"{parent_name.rstrip('/')}/{self._name}"

    async def delete(self, cancel: CancellationSignal) -> None:
        await self.inner.delete(cancel)


class EncryptedFile(_EncryptedItemMixin, File):
    """A file whose stored content is encrypted."""

    def __init__(
        self,
        backend: EncryptedBackend,
        inner: File,
        name: str,
        parent: Optional["EncryptedDirectory"],
    ) -> None:
        self._setup(backend, inner, name, parent)
        self._length = plaintext_length(inner.length)

    @property
    def length(self) -> int:
        return self._length

    async def open_read(self, cancel: CancellationSignal) -> ByteStream:
        stream = await self.inner.open_read(cancel)
        return DecryptingStream(stream, self.backend.keys)


class EncryptedDirectory(_EncryptedItemMixin, Directory):
    """A directory whose children are encrypted on the inner backend."""

    def __init__(
        self,
        backend: EncryptedBackend,
        inner: Directory,
        name: str,
        parent: Optional["EncryptedDirectory"],
    ) -> None:
        self._setup(backend, inner, name, parent)

    async def list_children(self, cancel: CancellationSignal) -> list[Item]:
        children = await self.inner.list_children(cancel)
        return [self.backend.wrap(child, self) for child in children]

    async def create_file(
        self,
        name: str,
        stream: ByteStream,
        length: int,
        cancel: CancellationSignal,
        modified_at: Optional[datetime] = None,
    ) -> File:
        backend = self.backend
        sealed = EncryptingStream(stream, backend.keys, backend.version)
        inner = await self.inner.create_file(
            backend.encode_name(name, is_directory=False),
            sealed,
            encrypted_length(length),
            cancel,
            modified_at=modified_at,
        )
        return EncryptedFile(backend, inner, name, self)

    async def create_directory(self, name: str, cancel: CancellationSignal) -> Directory:
        inner = await self.inner.create_directory(
            self.backend.encode_name(name, is_directory=True), cancel
        )
        return EncryptedDirectory(self.backend, inner, name, self)

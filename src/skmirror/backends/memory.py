"""
In-memory backend -- a whole tree in a dict, for tests and dry runs.

Supports failure injection (``fail_next``) and an optional login
requirement so retry, escalation and login paths can be exercised
without touching a disk or a network.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ..exceptions import BackendError
from ..storage import (
    Backend,
    BackendCapabilities,
    ByteStream,
    CancellationSignal,
    Directory,
    File,
    Item,
    MemoryStream,
    iter_chunks,
)

logger = logging.getLogger("skmirror.backends.memory")

OPERATIONS = ("list", "create_file", "create_directory", "delete", "read", "login")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _split(path: str) -> list[str]:
    return [part for part in path.replace("\\", "/").split("/") if part and part != "."]


@dataclass
class MemoryNode:
    """One stored entry."""

    name: str
    is_directory: bool
    data: bytes = b""
    children: dict[str, "MemoryNode"] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_now)
    modified_at: datetime = field(default_factory=_now)


class MemoryBackend(Backend):
    """Backend keeping everything in process memory.

    Args:
        name: Backend label.
        requires_login: Declare the login capability and refuse every
            operation until ``log_in`` has been called.
    """

    def __init__(self, name: str = "memory", requires_login: bool = False) -> None:
        self._name = name
        self.root = MemoryNode(name="", is_directory=True)
        self.requires_login = requires_login
        self.capabilities = BackendCapabilities(login=requires_login)
        self.logged_in = False
        self.login_count = 0
        self.calls: dict[str, int] = {op: 0 for op in OPERATIONS}
        self._failures: dict[str, list[Exception]] = {op: [] for op in OPERATIONS}

    @property
    def name(self) -> str:
        return self._name

    # -------------------------------------------------------------------
    # Failure injection
    # -------------------------------------------------------------------

    def fail_next(self, operation: str, times: int = 1, error: Optional[Exception] = None) -> None:
        """Make the next ``times`` calls of ``operation`` raise.

        Args:
            operation: One of OPERATIONS.
            times: How many consecutive calls fail.
            error: Exception to raise (default: BackendError).
        """
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}")
        for _ in range(times):
            self._failures[operation].append(
                error or BackendError(f"Injected {operation} failure")
            )

    def _enter(self, operation: str, cancel: CancellationSignal) -> None:
        cancel.raise_if_cancelled()
        self.calls[operation] += 1
        if operation != "login" and self.requires_login and not self.logged_in:
            raise BackendError("Not logged in")
        if self._failures[operation]:
            raise self._failures[operation].pop(0)

    # -------------------------------------------------------------------
    # Backend contract
    # -------------------------------------------------------------------

    async def log_in(self, cancel: CancellationSignal) -> None:
        self._enter("login", cancel)
        self.logged_in = True
        self.login_count += 1
        logger.debug("Logged in to %s", self._name)

    async def get_directory(self, path: str, cancel: CancellationSignal) -> Directory:
        cancel.raise_if_cancelled()
        if self.requires_login and not self.logged_in:
            raise BackendError("Not logged in")
        node = self.root
        parts = _split(path)
        for part in parts:
            child = node.children.get(part)
            if child is None:
                child = node.children[part] = MemoryNode(name=part, is_directory=True)
            elif not child.is_directory:
                raise BackendError(f"Not a directory: {part}")
            node = child
        return MemoryDirectory(self, node, "/" + "/".join(parts), parent=None)

    # -------------------------------------------------------------------
    # Synchronous helpers for setting up and inspecting trees
    # -------------------------------------------------------------------

    def _lookup(self, path: str) -> Optional[MemoryNode]:
        node = self.root
        for part in _split(path):
            if not node.is_directory:
                return None
            node = node.children.get(part)
            if node is None:
                return None
        return node

    def make_dirs(self, path: str) -> MemoryNode:
        node = self.root
        for part in _split(path):
            node = node.children.setdefault(part, MemoryNode(name=part, is_directory=True))
        return node

    def write_file(self, path: str, data: bytes, modified_at: Optional[datetime] = None) -> MemoryNode:
        parts = _split(path)
        parent = self.make_dirs("/".join(parts[:-1]))
        node = MemoryNode(name=parts[-1], is_directory=False, data=data)
        if modified_at is not None:
            node.modified_at = modified_at
        parent.children[node.name] = node
        return node

    def read_file(self, path: str) -> bytes:
        node = self._lookup(path)
        if node is None or node.is_directory:
            raise FileNotFoundError(path)
        return node.data

    def exists(self, path: str) -> bool:
        return self._lookup(path) is not None

    def is_dir(self, path: str) -> bool:
        node = self._lookup(path)
        return node is not None and node.is_directory

    def list_names(self, path: str = "") -> list[str]:
        node = self._lookup(path)
        if node is None or not node.is_directory:
            raise FileNotFoundError(path)
        return sorted(node.children)


class _MemoryItem:
    """Shared attributes of memory items."""

    backend: MemoryBackend
    node: MemoryNode
    path: str
    parent: Optional["MemoryDirectory"]

    @property
    def name(self) -> str:
        return self.node.name

    @property
    def exists(self) -> bool:
        if self.parent is None:
            return True
        return self.parent.node.children.get(self.node.name) is self.node

    @property
    def created_at(self) -> datetime:
        return self.node.created_at

    @property
    def modified_at(self) -> datetime:
        return self.node.modified_at

    @property
    def full_name(self) -> Optional[str]:
        return f"{self.backend.name}:{self.path}"

    async def delete(self, cancel: CancellationSignal) -> None:
        self.backend._enter("delete", cancel)
        if self.parent is None:
            raise BackendError("Cannot delete a root directory")
        siblings = self.parent.node.children
        if siblings.get(self.node.name) is not self.node:
            raise BackendError(f"Not found: {self.path}")
        del siblings[self.node.name]


class MemoryFile(_MemoryItem, File):
    """A file stored in memory."""

    def __init__(self, backend: MemoryBackend, node: MemoryNode, path: str, parent: "MemoryDirectory") -> None:
        self.backend = backend
        self.node = node
        self.path = path
        self.parent = parent

    @property
    def length(self) -> int:
        return len(self.node.data)

    async def open_read(self, cancel: CancellationSignal) -> ByteStream:
        self.backend._enter("read", cancel)
        return MemoryStream(self.node.data)


class MemoryDirectory(_MemoryItem, Directory):
    """A directory stored in memory."""

    def __init__(
        self,
        backend: MemoryBackend,
        node: MemoryNode,
        path: str,
        parent: Optional["MemoryDirectory"],
    ) -> None:
        self.backend = backend
        self.node = node
        self.path = path
        self.parent = parent

    def _child_path(self, name: str) -> str:
        return f"{self.path.rstrip('/')}/{name}"

    def _wrap(self, node: MemoryNode) -> Item:
        if node.is_directory:
            return MemoryDirectory(self.backend, node, self._child_path(node.name), self)
        return MemoryFile(self.backend, node, self._child_path(node.name), self)

    async def list_children(self, cancel: CancellationSignal) -> list[Item]:
        self.backend._enter("list", cancel)
        return [self._wrap(node) for node in self.node.children.values()]

    async def create_file(
        self,
        name: str,
        stream: ByteStream,
        length: int,
        cancel: CancellationSignal,
        modified_at: Optional[datetime] = None,
    ) -> File:
        self.backend._enter("create_file", cancel)
        existing = self.node.children.get(name)
        if existing is not None and existing.is_directory:
            raise BackendError(f"A directory named {name!r} already exists")

        data = b"".join([chunk async for chunk in iter_chunks(stream)])
        if len(data) != length:
            raise BackendError(f"Expected {length} bytes for {name!r}, got {len(data)}")

        # Only becomes visible once the whole stream has been read.
        node = MemoryNode(name=name, is_directory=False, data=data)
        if existing is not None:
            node.created_at = existing.created_at
        if modified_at is not None:
            node.modified_at = modified_at
        self.node.children[name] = node
        return MemoryFile(self.backend, node, self._child_path(name), self)

    async def create_directory(self, name: str, cancel: CancellationSignal) -> Directory:
        self.backend._enter("create_directory", cancel)
        if name in self.node.children:
            raise BackendError(f"{name!r} already exists")
        node = self.node.children[name] = MemoryNode(name=name, is_directory=True)
        return MemoryDirectory(self.backend, node, self._child_path(name), self)

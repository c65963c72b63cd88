"""
Storage backends -- where the trees live.

Local: plain filesystem (disks, USB drives, NAS mounts).
Memory: in-process tree, for tests and throwaway targets.
Encrypted: wraps any of the above, any number of times.
"""

from __future__ import annotations

import logging
from typing import Callable

from ..models import BackendType, EncryptionConfig, RootConfig
from ..storage import Backend, CancellationSignal, Directory, open_root
from .encrypted import EncryptedBackend
from .local import LocalBackend
from .memory import MemoryBackend

logger = logging.getLogger("skmirror.backends")

_FACTORIES: dict[BackendType, Callable[[], Backend]] = {
    BackendType.LOCAL: LocalBackend,
    BackendType.MEMORY: MemoryBackend,
}


def create_backend(
    root: RootConfig,
    password_for: Callable[[EncryptionConfig], str],
) -> Backend:
    """Build the backend stack for one root.

    Args:
        root: Root configuration.
        password_for: Returns the password of an encryption layer.

    Returns:
        The outermost backend.

    Raises:
        ValueError: If the backend type is not supported.
    """
    factory = _FACTORIES.get(root.backend)
    if not factory:
        raise ValueError(f"Unsupported backend: {root.backend}")
    backend = factory()

    for layer in root.encryption:
        backend = EncryptedBackend(
            backend,
            password_for(layer),
            version=layer.version,
            encrypt_file_names=layer.encrypt_file_names,
            encrypt_directory_names=layer.encrypt_directory_names,
        )
    logger.debug("Backend for %s: %s", root.path, backend.name)
    return backend


async def resolve_root(
    root: RootConfig,
    password_for: Callable[[EncryptionConfig], str],
    cancel: CancellationSignal,
) -> Directory:
    """Create the backend stack for ``root`` and open its root directory."""
    backend = create_backend(root, password_for)
    return await open_root(backend, root.path, cancel)


__all__ = [
    "EncryptedBackend",
    "LocalBackend",
    "MemoryBackend",
    "create_backend",
    "resolve_root",
]

"""
Exceptions for mirror operations.
"""


class MirrorError(Exception):
    """Base exception for skmirror."""


class ConfigError(MirrorError):
    """Configuration is missing or invalid."""


class BackendError(MirrorError):
    """A storage backend operation failed (I/O, permission, not found, quota)."""


class EncryptionError(BackendError):
    """Name decryption, integrity check, or scheme version failure."""


class SyncCancelled(MirrorError):
    """The run was cancelled cooperatively. Not a failure."""

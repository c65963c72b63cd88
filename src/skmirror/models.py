"""
Configuration models -- what a mirror run is pointed at.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator

from .crypto import LATEST_SCHEME, SCHEMES
from .sync.models import SyncPolicy


class BackendType(str, Enum):
    """Supported storage backends."""

    LOCAL = "local"
    MEMORY = "memory"


class EncryptionConfig(BaseModel):
    """One encryption layer around a root's backend.

    The password itself never lives in the config file; it is read from
    the environment variable named here (or prompted for).
    """

    password_env: str = "SKMIRROR_PASSWORD"
    version: int = LATEST_SCHEME
    encrypt_file_names: bool = False
    encrypt_directory_names: bool = False

    @field_validator("version")
    @classmethod
    def _known_version(cls, value: int) -> int:
        if value not in SCHEMES:
            raise ValueError(f"Unsupported encryption scheme version: {value}")
        return value


class RootConfig(BaseModel):
    """Where one side of the mirror lives."""

    backend: BackendType = BackendType.LOCAL
    path: str = ""
    encryption: list[EncryptionConfig] = Field(
        default_factory=list,
        description="Encryption layers, innermost first",
    )


class MirrorConfig(BaseModel):
    """Complete mirror configuration."""

    source: RootConfig = Field(default_factory=RootConfig)
    target: RootConfig = Field(default_factory=RootConfig)
    policy: SyncPolicy = Field(default_factory=SyncPolicy)
    log_level: str = "INFO"

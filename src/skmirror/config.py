"""
Config file handling -- YAML on disk, pydantic in memory.

Default location: ~/.skmirror/config.yaml (or $SKMIRROR_HOME/config.yaml).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Optional

import yaml
from pydantic import ValidationError

from . import MIRROR_HOME
from .exceptions import ConfigError
from .models import EncryptionConfig, MirrorConfig

logger = logging.getLogger("skmirror.config")

CONFIG_FILE = "config.yaml"


def default_config_path() -> Path:
    """Path of the config file inside the mirror home."""
    return Path(MIRROR_HOME).expanduser() / CONFIG_FILE


def load_config(path: Optional[Path] = None) -> MirrorConfig:
    """Load the mirror configuration.

    Args:
        path: Config file. Defaults to default_config_path().

    Returns:
        MirrorConfig; defaults when the file does not exist.

    Raises:
        ConfigError: If the file is unreadable or invalid.
    """
    config_file = path or default_config_path()
    if not config_file.exists():
        logger.debug("No config at %s, using defaults", config_file)
        return MirrorConfig()

    try:
        data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
        return MirrorConfig(**data)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read config {config_file}: {exc}") from exc
    except (TypeError, ValidationError) as exc:
        raise ConfigError(f"Invalid config {config_file}: {exc}") from exc


def save_config(config: MirrorConfig, path: Optional[Path] = None) -> Path:
    """Persist the configuration as YAML.

    Returns:
        Path written.
    """
    config_file = path or default_config_path()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json")
    config_file.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False), encoding="utf-8")
    logger.info("Saved config to %s", config_file)
    return config_file


def resolve_password(
    layer: EncryptionConfig,
    prompt: Optional[Callable[[str], str]] = None,
) -> str:
    """Find the password for an encryption layer.

    Args:
        layer: Encryption layer settings.
        prompt: Called with the variable name when it is unset.

    Raises:
        ConfigError: If no password is available.
    """
    password = os.environ.get(layer.password_env)
    if password:
        return password
    if prompt is not None:
        password = prompt(layer.password_env)
        if password:
            return password
    raise ConfigError(f"No password: set ${layer.password_env}")

"""Locate, read and write ``triggers.toml``."""

from __future__ import annotations

import copy
import logging
import tomllib
from pathlib import Path
from typing import Any

import tomli_w
from pydantic import ValidationError

from animus_triggers.config.defaults import DEFAULT_CONFIG
from animus_triggers.config.schema import TriggersConfig

logger = logging.getLogger(__name__)

_CONFIG_DIR = Path("~/.config/animus").expanduser()
_CONFIG_FILE = "triggers.toml"


class ConfigManager:
    """Owns the trigger engine's TOML file.

    A missing, unreadable or invalid file never stops the engine: :meth:`load`
    logs the problem and hands back a :class:`TriggersConfig` built from
    defaults.
    """

    def __init__(self, config_dir: Path | None = None) -> None:
        self._config_dir = config_dir or _CONFIG_DIR

    def get_config_path(self) -> Path:
        return self._config_dir / _CONFIG_FILE

    def exists(self) -> bool:
        return self.get_config_path().is_file()

    def load(self) -> TriggersConfig:
        """Return the on-disk config layered over :data:`DEFAULT_CONFIG`."""
        path = self.get_config_path()
        raw = self._read(path)
        if raw is None:
            return TriggersConfig()

        try:
            return TriggersConfig(**_deep_merge(DEFAULT_CONFIG, raw))
        except ValidationError as exc:
            logger.warning("Invalid config at %s: %s; using defaults", path, exc)
            return TriggersConfig()

    def save(self, config: TriggersConfig) -> None:
        path = self.get_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(tomli_w.dumps(config.model_dump()).encode("utf-8"))
        logger.debug("Trigger config written to %s", path)

    @staticmethod
    def _read(path: Path) -> dict[str, Any] | None:
        if not path.is_file():
            logger.debug("No trigger config at %s, using defaults", path)
            return None
        try:
            return tomllib.loads(path.read_text(encoding="utf-8"))
        except (tomllib.TOMLDecodeError, OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read config at %s: %s; using defaults", path, exc)
            return None


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge *override* onto a deep copy of *base*; tables merge key by key."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged

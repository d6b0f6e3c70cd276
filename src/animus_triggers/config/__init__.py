"""Trigger engine configuration system."""

from animus_triggers.config.manager import ConfigManager
from animus_triggers.config.schema import TriggersConfig

__all__ = ["ConfigManager", "TriggersConfig"]

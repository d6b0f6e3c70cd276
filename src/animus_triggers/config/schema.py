"""Pydantic models for trigger engine configuration.

Nested section models use plain ``BaseModel`` so that pydantic-settings
does not read environment variables for fields like ``path``.  Only the
top-level :class:`TriggersConfig` extends ``BaseSettings``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class EngineSection(BaseModel):
    """Evaluation and execution settings."""

    buffer_capacity: int = Field(100, ge=1)
    action_timeout_seconds: float = Field(10.0, gt=0)
    max_regex_length: int = Field(512, ge=1)
    max_regex_input: int = Field(4000, ge=1)


class LimitsSection(BaseModel):
    """Per-guild authoring limits."""

    max_rules_per_guild: int = Field(20, ge=1)
    max_presets_per_rule: int = Field(5, ge=1)


class WebhookSection(BaseModel):
    """Outbound webhook settings."""

    timeout_seconds: float = Field(10.0, gt=0)
    user_agent: str = "animus-triggers/0.1"


class StorageSection(BaseModel):
    """Rule store settings."""

    backend: str = "sqlite"  # "sqlite" | "memory"
    path: str = "~/.local/share/animus/triggers.db"


class LoggingSection(BaseModel):
    """Logging settings."""

    level: str = "info"


class TriggersConfig(BaseSettings):
    """Top-level trigger engine configuration.

    Maps to the TOML structure:
        [engine] / [limits] / [webhook] / [storage] / [logging]

    Config file lives at ``~/.config/animus/triggers.toml``.
    """

    engine: EngineSection = Field(default_factory=EngineSection)
    limits: LimitsSection = Field(default_factory=LimitsSection)
    webhook: WebhookSection = Field(default_factory=WebhookSection)
    storage: StorageSection = Field(default_factory=StorageSection)
    logging: LoggingSection = Field(default_factory=LoggingSection)

    def get_storage_path(self) -> Path:
        """Return the resolved rule database path."""
        return Path(self.storage.path).expanduser()

"""Default configuration values for the trigger engine."""

from __future__ import annotations

DEFAULT_CONFIG: dict[str, dict[str, object]] = {
    "engine": {
        "buffer_capacity": 100,
        "action_timeout_seconds": 10.0,
        "max_regex_length": 512,
        "max_regex_input": 4000,
    },
    "limits": {
        "max_rules_per_guild": 20,
        "max_presets_per_rule": 5,
    },
    "webhook": {
        "timeout_seconds": 10.0,
        "user_agent": "animus-triggers/0.1",
    },
    "storage": {
        "backend": "sqlite",
        "path": "~/.local/share/animus/triggers.db",
    },
    "logging": {
        "level": "info",
    },
}

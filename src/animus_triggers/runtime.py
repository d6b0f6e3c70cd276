"""Runtime wiring — builds the trigger pipeline from configuration."""

from __future__ import annotations

import logging

from animus_triggers.actions import ActionExecutor
from animus_triggers.channels import OutboundChannels
from animus_triggers.cleanup import CleanupScheduler
from animus_triggers.config import ConfigManager, TriggersConfig
from animus_triggers.cooldown import CooldownTracker
from animus_triggers.dispatcher import Dispatcher
from animus_triggers.observer import ExecutionObserver
from animus_triggers.store import InMemoryRuleStore, RuleStore, SQLiteRuleStore

logger = logging.getLogger(__name__)


def build_store(config: TriggersConfig) -> RuleStore:
    """Create the rule store selected by ``[storage].backend``."""
    limits = config.limits
    if config.storage.backend == "memory":
        return InMemoryRuleStore(limits.max_rules_per_guild, limits.max_presets_per_rule)
    if config.storage.backend != "sqlite":
        raise ValueError(f"Unknown storage backend: {config.storage.backend}")

    path = config.get_storage_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    return SQLiteRuleStore(path, limits.max_rules_per_guild, limits.max_presets_per_rule)


class TriggerRuntime:
    """Holds the live components of one trigger engine.

    One instance per process: the cooldown tracker and the observer buffer
    are shared by every event the dispatcher handles.
    """

    def __init__(
        self,
        channels: OutboundChannels,
        config: TriggersConfig | None = None,
        store: RuleStore | None = None,
    ) -> None:
        self._config = config or ConfigManager().load()
        engine = self._config.engine
        logging.getLogger("animus_triggers").setLevel(
            getattr(logging, self._config.logging.level.upper(), logging.INFO)
        )

        self.store = store or build_store(self._config)
        self.cleanup = CleanupScheduler()
        self.cooldowns = CooldownTracker()
        self.observer = ExecutionObserver(capacity=engine.buffer_capacity)
        self.executor = ActionExecutor(
            channels,
            cleanup=self.cleanup,
            timeout_seconds=engine.action_timeout_seconds,
            webhook_timeout_seconds=self._config.webhook.timeout_seconds,
            user_agent=self._config.webhook.user_agent,
        )
        self.dispatcher = Dispatcher(
            self.store,
            self.executor,
            cooldowns=self.cooldowns,
            observer=self.observer,
            max_pattern_length=engine.max_regex_length,
            max_input_length=engine.max_regex_input,
        )
        logger.info("Trigger runtime ready (storage=%s)", self._config.storage.backend)

    @property
    def config(self) -> TriggersConfig:
        return self._config

    async def stop(self) -> None:
        """Finish in-flight events, cancel pending cleanups and close the store."""
        await self.dispatcher.drain()
        await self.cleanup.shutdown()
        self.store.close()
        logger.info("Trigger runtime stopped")

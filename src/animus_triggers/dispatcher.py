"""Dispatcher — routes platform events through the trigger pipeline.

event -> load rules -> filter (enabled, event type) -> sort by priority
      -> conditions -> preset selection -> cooldown -> execute -> observe
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from animus_triggers.actions import ActionExecutor
from animus_triggers.conditions import (
    MAX_INPUT_LENGTH,
    MAX_PATTERN_LENGTH,
    evaluate_conditions,
)
from animus_triggers.context import build_context
from animus_triggers.cooldown import CooldownTracker
from animus_triggers.models import (
    EventType,
    ExecutionContext,
    ExecutionOutcome,
    FiredEvent,
    Preset,
    PresetType,
    Rule,
)
from animus_triggers.observer import ExecutionObserver
from animus_triggers.selection import select_presets
from animus_triggers.store import RuleStore

logger = logging.getLogger(__name__)


@dataclass
class DryRunResult:
    """What a single rule would do for a sample event."""

    rule_id: str
    conditions_met: bool
    outcomes: list[ExecutionOutcome] = field(default_factory=list)


class Dispatcher:
    """Evaluates a guild's rules for each incoming event.

    Each call to :meth:`handle_event` is independent: rules are re-read from
    the store, and an error in one rule is logged without affecting the
    others or later events.
    """

    def __init__(
        self,
        store: RuleStore,
        executor: ActionExecutor,
        cooldowns: CooldownTracker | None = None,
        observer: ExecutionObserver | None = None,
        max_pattern_length: int = MAX_PATTERN_LENGTH,
        max_input_length: int = MAX_INPUT_LENGTH,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._cooldowns = cooldowns or CooldownTracker()
        self._observer = observer or ExecutionObserver()
        self._max_pattern_length = max_pattern_length
        self._max_input_length = max_input_length
        self._rng = rng
        self._inflight: set[asyncio.Task[list[FiredEvent]]] = set()

    @property
    def observer(self) -> ExecutionObserver:
        return self._observer

    @property
    def cooldowns(self) -> CooldownTracker:
        return self._cooldowns

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def handle_event(
        self,
        event_type: EventType | str,
        guild_id: str,
        event: Mapping[str, Any] | None,
    ) -> list[FiredEvent]:
        """Run every matching rule for one event and return what fired."""
        try:
            rules = await self._store.list(guild_id)
        except Exception:  # noqa: BLE001
            logger.exception("Could not load triggers for guild %s", guild_id)
            return []

        wanted = _tag(event_type)
        matching = sorted(
            (r for r in rules if r.enabled and _tag(r.event_type) == wanted),
            key=lambda r: r.priority,
        )
        logger.debug(
            "handle_event: type=%s guild=%s matching=%d", wanted, guild_id, len(matching)
        )
        if not matching:
            return []

        context = build_context(event_type, guild_id, event)
        fired: list[FiredEvent] = []
        for rule in matching:
            try:
                fired.extend(await self._process_rule(rule, context))
            except Exception:  # noqa: BLE001
                logger.exception("Trigger %s (%s) failed", rule.name, rule.id)
        return fired

    def submit(
        self,
        event_type: EventType | str,
        guild_id: str,
        event: Mapping[str, Any] | None,
    ) -> asyncio.Task[list[FiredEvent]]:
        """Schedule :meth:`handle_event` as its own task and return it."""
        task = asyncio.get_running_loop().create_task(
            self.handle_event(event_type, guild_id, event)
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def drain(self) -> None:
        """Wait for every submitted event to finish."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def dry_run(
        self,
        rule: Rule,
        event_type: EventType | str,
        event: Mapping[str, Any] | None,
    ) -> DryRunResult:
        """Evaluate one rule against a sample event without cooldowns or observing.

        Presets run through this dispatcher's executor, so pass one backed by
        :class:`~animus_triggers.channels.DryRunChannels` (with
        :meth:`ActionExecutor.record_webhooks`) to avoid real sends.
        """
        context = build_context(event_type, rule.guild_id, event)
        result = DryRunResult(rule_id=rule.id, conditions_met=self._matches(rule, context))
        if result.conditions_met:
            for preset in self._select(rule):
                result.outcomes.append(await self._executor.execute(preset, context))
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _process_rule(self, rule: Rule, context: ExecutionContext) -> list[FiredEvent]:
        if not self._matches(rule, context):
            logger.debug("Trigger %s (%s): conditions not met", rule.name, rule.id)
            return []

        logger.info("Trigger matched: %s (%s)", rule.name, rule.id)
        fired: list[FiredEvent] = []
        for preset in self._select(rule):
            try:
                event = await self._fire_preset(rule, preset, context)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Preset %s of trigger %s failed", preset.id, rule.id)
                event = _fired_event(
                    rule,
                    preset,
                    ExecutionOutcome(
                        preset_id=preset.id,
                        preset_type=_preset_tag(preset),
                        success=False,
                        error=str(exc) or type(exc).__name__,
                    ),
                )
                await self._record_quietly(event)
            if event is not None:
                fired.append(event)
        return fired

    async def _fire_preset(
        self, rule: Rule, preset: Preset, context: ExecutionContext
    ) -> FiredEvent | None:
        if not self._cooldowns.try_fire(rule.guild_id, preset.id, preset.cooldown_seconds):
            logger.debug("Preset %s skipped: cooling down", preset.id)
            return None

        outcome = await self._executor.execute(preset, context)
        event = _fired_event(rule, preset, outcome)
        await self._observer.record(event)
        return event

    async def _record_quietly(self, event: FiredEvent) -> None:
        try:
            await self._observer.record(event)
        except Exception:  # noqa: BLE001
            logger.exception("Could not record failure of preset %s", event.preset_id)

    def _matches(self, rule: Rule, context: ExecutionContext) -> bool:
        return evaluate_conditions(
            rule.conditions,
            context,
            rule.condition_logic,
            max_pattern_length=self._max_pattern_length,
            max_input_length=self._max_input_length,
        )

    def _select(self, rule: Rule) -> list[Preset]:
        return select_presets(rule.presets, rule.run_mode, rule.random_count, rng=self._rng)


def _tag(value: Any) -> str:
    return value.value if isinstance(value, EventType) else str(value)


def _preset_tag(preset: Preset) -> str:
    return preset.type.value if isinstance(preset.type, PresetType) else str(preset.type or "")


def _fired_event(rule: Rule, preset: Preset, outcome: ExecutionOutcome) -> FiredEvent:
    return FiredEvent(
        trigger_id=rule.id,
        preset_id=preset.id,
        guild_id=rule.guild_id,
        event_type=_tag(rule.event_type),
        summary=f"{rule.name} - {outcome.preset_type}",
        success=outcome.success,
        error=outcome.error,
        rendered_output=outcome.rendered_output,
    )

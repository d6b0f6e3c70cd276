"""Tests for the dispatcher pipeline, end to end with in-memory components."""

from __future__ import annotations

import random
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from animus_triggers.actions import ActionExecutor
from animus_triggers.channels import DryRunChannels
from animus_triggers.cooldown import CooldownTracker
from animus_triggers.dispatcher import Dispatcher
from animus_triggers.models import (
    Condition,
    ConditionLogic,
    ConditionType,
    EventType,
    MatchType,
    Preset,
    PresetType,
    Rule,
    RunMode,
    WebhookConfig,
)
from animus_triggers.observer import FIRED_EVENT, ExecutionObserver
from animus_triggers.store import InMemoryRuleStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _event(content: str = "ping", author: str = "alice") -> dict[str, object]:
    return {
        "message": {
            "id": "m1",
            "content": content,
            "author": {"id": "42", "username": author},
            "channel": {"id": "c1", "name": "general"},
        }
    }


def _ping_rule(**kwargs: object) -> Rule:
    defaults: dict[str, object] = {
        "guild_id": "g1",
        "name": "Ping",
        "event_type": EventType.MESSAGE_CREATE,
        "conditions": [
            Condition(
                type=ConditionType.MESSAGE_CONTENT, match_type=MatchType.EXACTLY, value="ping"
            )
        ],
        "presets": [Preset(type=PresetType.TEXT, template="pong to {user.name}")],
    }
    defaults.update(kwargs)
    return Rule(**defaults)  # type: ignore[arg-type]


def _build(
    clock: _FakeClock | None = None,
) -> tuple[Dispatcher, InMemoryRuleStore, DryRunChannels, ExecutionObserver]:
    store = InMemoryRuleStore()
    channels = DryRunChannels()
    observer = ExecutionObserver()
    dispatcher = Dispatcher(
        store,
        ActionExecutor(channels),
        cooldowns=CooldownTracker(clock=clock or _FakeClock()),
        observer=observer,
        rng=random.Random(1),
    )
    return dispatcher, store, channels, observer


# ===========================================================================
# TestHandleEvent
# ===========================================================================


class TestHandleEvent:
    """The full event -> rules -> presets -> observer pipeline."""

    @pytest.mark.asyncio()
    async def test_ping_pong(self) -> None:
        dispatcher, store, channels, observer = _build()
        rule = await store.create(_ping_rule())

        fired = await dispatcher.handle_event(EventType.MESSAGE_CREATE, "g1", _event())

        assert len(fired) == 1
        assert fired[0].success is True
        assert fired[0].trigger_id == rule.id
        assert fired[0].summary == "Ping - Text"
        assert fired[0].rendered_output == "pong to alice"
        assert [r.payload for r in channels.by_action("text")] == ["pong to alice"]
        assert observer.get_buffer() == fired

    @pytest.mark.asyncio()
    async def test_non_matching_content_fires_nothing(self) -> None:
        dispatcher, store, channels, observer = _build()
        await store.create(_ping_rule())

        fired = await dispatcher.handle_event("messageCreate", "g1", _event("pong"))

        assert fired == []
        assert channels.sent == []
        assert len(observer) == 0

    @pytest.mark.asyncio()
    async def test_other_event_type_ignored(self) -> None:
        dispatcher, store, channels, _ = _build()
        await store.create(_ping_rule())
        assert await dispatcher.handle_event(EventType.MESSAGE_UPDATE, "g1", _event()) == []

    @pytest.mark.asyncio()
    async def test_disabled_rule_ignored(self) -> None:
        dispatcher, store, channels, _ = _build()
        await store.create(_ping_rule(enabled=False))
        assert await dispatcher.handle_event(EventType.MESSAGE_CREATE, "g1", _event()) == []

    @pytest.mark.asyncio()
    async def test_other_guild_ignored(self) -> None:
        dispatcher, store, _, _ = _build()
        await store.create(_ping_rule())
        assert await dispatcher.handle_event(EventType.MESSAGE_CREATE, "g2", _event()) == []

    @pytest.mark.asyncio()
    async def test_priority_order(self) -> None:
        dispatcher, store, channels, _ = _build()
        await store.create(
            _ping_rule(name="late", priority=5, presets=[Preset(type="Text", template="late")])
        )
        await store.create(
            _ping_rule(name="early", priority=1, presets=[Preset(type="Text", template="early")])
        )
        await store.create(
            _ping_rule(name="tie", priority=5, presets=[Preset(type="Text", template="tie")])
        )

        await dispatcher.handle_event(EventType.MESSAGE_CREATE, "g1", _event())

        assert [r.payload for r in channels.sent] == ["early", "late", "tie"]

    @pytest.mark.asyncio()
    async def test_rule_without_conditions_always_fires(self) -> None:
        dispatcher, store, channels, _ = _build()
        await store.create(_ping_rule(conditions=[]))
        fired = await dispatcher.handle_event(EventType.MESSAGE_CREATE, "g1", _event("x"))
        assert len(fired) == 1

    @pytest.mark.asyncio()
    async def test_failed_preset_is_observed(self) -> None:
        dispatcher, store, channels, observer = _build()
        await store.create(_ping_rule(presets=[Preset(type=PresetType.REACT)]))

        fired = await dispatcher.handle_event(EventType.MESSAGE_CREATE, "g1", _event())

        assert len(fired) == 1
        assert fired[0].success is False
        assert fired[0].error
        assert observer.get_buffer()[0].success is False

    @pytest.mark.asyncio()
    async def test_malformed_condition_does_not_stop_rule(self) -> None:
        dispatcher, store, channels, _ = _build()
        conditions = [
            Condition(
                type=ConditionType.MESSAGE_CONTENT,
                match_type=MatchType.REGEX,
                value="([",
                group_id="broken",
            ),
            Condition(type=ConditionType.MESSAGE_CONTENT, value="ping", group_id="ok"),
        ]
        await store.create(_ping_rule(conditions=conditions, condition_logic=ConditionLogic.OR))

        fired = await dispatcher.handle_event(EventType.MESSAGE_CREATE, "g1", _event())

        assert len(fired) == 1
        assert fired[0].success is True

    @pytest.mark.asyncio()
    async def test_cooldown_gates_repeat_events(self) -> None:
        clock = _FakeClock()
        dispatcher, store, channels, observer = _build(clock)
        await store.create(
            _ping_rule(presets=[Preset(type="Text", template="pong", cooldown_seconds=60)])
        )

        assert len(await dispatcher.handle_event("messageCreate", "g1", _event())) == 1
        clock.now = 30
        assert await dispatcher.handle_event("messageCreate", "g1", _event()) == []
        clock.now = 61
        assert len(await dispatcher.handle_event("messageCreate", "g1", _event())) == 1
        assert len(channels.sent) == 2
        assert len(observer) == 2

    @pytest.mark.asyncio()
    async def test_pinned_random_run_mode(self) -> None:
        dispatcher, store, channels, _ = _build()
        presets = [
            Preset(type="Text", template="p1", is_pinned=True),
            Preset(type="Text", template="p2", is_pinned=True),
            Preset(type="Text", template="u1"),
            Preset(type="Text", template="u2"),
            Preset(type="Text", template="u3"),
        ]
        await store.create(
            _ping_rule(presets=presets, run_mode=RunMode.PINNED_RANDOM, random_count=2)
        )

        fired = await dispatcher.handle_event("messageCreate", "g1", _event())

        payloads = [r.payload for r in channels.sent]
        assert len(fired) == 4
        assert payloads[:2] == ["p1", "p2"]
        assert len(set(payloads)) == 4

    @pytest.mark.asyncio()
    async def test_live_sink_receives_firings(self) -> None:
        dispatcher, store, _, observer = _build()
        sink = AsyncMock()
        observer.subscribe(sink)
        await store.create(_ping_rule())

        fired = await dispatcher.handle_event(EventType.MESSAGE_CREATE, "g1", _event())

        sink.assert_awaited_once_with(FIRED_EVENT, fired[0])

    @pytest.mark.asyncio()
    async def test_store_failure_returns_empty(self) -> None:
        store = MagicMock()
        store.list = AsyncMock(side_effect=RuntimeError("db locked"))
        dispatcher = Dispatcher(store, ActionExecutor(DryRunChannels()))
        assert await dispatcher.handle_event(EventType.MESSAGE_CREATE, "g1", _event()) == []

    @pytest.mark.asyncio()
    async def test_rule_error_does_not_stop_other_rules(self) -> None:
        dispatcher, store, channels, _ = _build()
        await store.create(_ping_rule(name="first", priority=0))
        await store.create(_ping_rule(name="second", priority=1))

        original = dispatcher._process_rule
        calls: list[str] = []

        async def _flaky(rule, context):  # type: ignore[no-untyped-def]
            calls.append(rule.name)
            if rule.name == "first":
                raise RuntimeError("boom")
            return await original(rule, context)

        dispatcher._process_rule = _flaky  # type: ignore[method-assign]
        fired = await dispatcher.handle_event(EventType.MESSAGE_CREATE, "g1", _event())

        assert calls == ["first", "second"]
        assert len(fired) == 1

    @pytest.mark.asyncio()
    async def test_string_durations_from_stored_json(self) -> None:
        clock = _FakeClock()
        dispatcher, store, channels, observer = _build(clock)
        presets = [
            Preset.from_dict(
                {
                    "type": "Text",
                    "template": "one",
                    "cooldownSeconds": "60",
                    "removeAfterSeconds": "5",
                }
            ),
            Preset.from_dict({"type": "Text", "template": "two"}),
        ]
        await store.create(_ping_rule(presets=presets))

        fired = await dispatcher.handle_event("messageCreate", "g1", _event())
        clock.now = 30
        again = await dispatcher.handle_event("messageCreate", "g1", _event())

        assert [e.success for e in fired] == [True, True]
        assert [e.rendered_output for e in again] == ["two"]
        assert [r.payload for r in channels.sent] == ["one", "two", "two"]
        assert len(observer) == 3
        await dispatcher._executor.cleanup.shutdown()

    @pytest.mark.asyncio()
    async def test_preset_error_does_not_stop_later_presets(self) -> None:
        store = InMemoryRuleStore()
        channels = DryRunChannels()
        observer = ExecutionObserver()
        cooldowns = MagicMock()

        def _try_fire(guild_id: str, preset_id: str, seconds: object) -> bool:
            if preset_id == "broken":
                raise TypeError("bad cooldown")
            return True

        cooldowns.try_fire.side_effect = _try_fire
        dispatcher = Dispatcher(
            store, ActionExecutor(channels), cooldowns=cooldowns, observer=observer
        )
        presets = [
            Preset(id="broken", type="Text", template="one"),
            Preset(id="ok", type="Text", template="two"),
        ]
        await store.create(_ping_rule(presets=presets))

        fired = await dispatcher.handle_event(EventType.MESSAGE_CREATE, "g1", _event())

        assert [(e.preset_id, e.success) for e in fired] == [("broken", False), ("ok", True)]
        assert fired[0].error == "bad cooldown"
        assert fired[0].summary == "Ping - Text"
        assert [r.payload for r in channels.sent] == ["two"]
        assert observer.get_buffer() == fired

    @pytest.mark.asyncio()
    async def test_submit_and_drain(self) -> None:
        dispatcher, store, channels, _ = _build()
        await store.create(_ping_rule())

        task = dispatcher.submit(EventType.MESSAGE_CREATE, "g1", _event())
        await dispatcher.drain()

        assert task.done()
        assert len(task.result()) == 1


# ===========================================================================
# TestDryRun
# ===========================================================================


class TestDryRun:
    @pytest.mark.asyncio()
    async def test_dry_run_reports_outcomes_without_observing(self) -> None:
        dispatcher, _, channels, observer = _build()
        rule = _ping_rule(
            presets=[Preset(type="Text", template="pong", cooldown_seconds=60)]
        )

        first = await dispatcher.dry_run(rule, EventType.MESSAGE_CREATE, _event())
        second = await dispatcher.dry_run(rule, EventType.MESSAGE_CREATE, _event())

        assert first.conditions_met is True
        assert [o.success for o in first.outcomes] == [True]
        assert [o.success for o in second.outcomes] == [True]
        assert len(observer) == 0
        assert len(channels.sent) == 2

    @pytest.mark.asyncio()
    async def test_dry_run_conditions_not_met(self) -> None:
        dispatcher, _, channels, _ = _build()
        result = await dispatcher.dry_run(_ping_rule(), EventType.MESSAGE_CREATE, _event("no"))
        assert result.conditions_met is False
        assert result.outcomes == []
        assert channels.sent == []

    @pytest.mark.asyncio()
    async def test_dry_run_records_webhooks_instead_of_sending(self) -> None:
        channels = DryRunChannels()
        executor = ActionExecutor(channels)
        executor.record_webhooks(channels)
        dispatcher = Dispatcher(InMemoryRuleStore(), executor)
        rule = _ping_rule(
            presets=[
                Preset(
                    type=PresetType.WEBHOOK,
                    webhook=WebhookConfig(url="https://example.com/hook", body_template="{}"),
                )
            ]
        )

        with patch("animus_triggers.actions.httpx.AsyncClient") as client_cls:
            result = await dispatcher.dry_run(rule, EventType.MESSAGE_CREATE, _event())

        client_cls.assert_not_called()
        assert [o.success for o in result.outcomes] == [True]
        assert [r.target for r in channels.by_action("webhook")] == ["https://example.com/hook"]

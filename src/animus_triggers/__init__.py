"""Event trigger engine — conditions -> preset selection -> templated actions."""

from __future__ import annotations

from animus_triggers.actions import ActionExecutor
from animus_triggers.channels import ArtifactRef, DryRunChannels, OutboundChannels
from animus_triggers.conditions import evaluate_conditions
from animus_triggers.cooldown import CooldownTracker
from animus_triggers.dispatcher import Dispatcher
from animus_triggers.errors import CapacityError, TriggerError
from animus_triggers.models import (
    Condition,
    ExecutionContext,
    FiredEvent,
    Preset,
    Rule,
)
from animus_triggers.observer import ExecutionObserver
from animus_triggers.selection import select_presets
from animus_triggers.store import InMemoryRuleStore, RuleStore, SQLiteRuleStore
from animus_triggers.templates import render_template

__version__ = "0.1.0"

__all__ = [
    "ActionExecutor",
    "ArtifactRef",
    "CapacityError",
    "Condition",
    "CooldownTracker",
    "Dispatcher",
    "DryRunChannels",
    "ExecutionContext",
    "ExecutionObserver",
    "FiredEvent",
    "InMemoryRuleStore",
    "OutboundChannels",
    "Preset",
    "Rule",
    "RuleStore",
    "SQLiteRuleStore",
    "TriggerError",
    "evaluate_conditions",
    "render_template",
    "select_presets",
]

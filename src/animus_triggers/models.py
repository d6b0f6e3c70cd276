"""Trigger engine data models."""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

MAX_RULES_PER_GUILD = 20
MAX_PRESETS_PER_RULE = 5
DEFAULT_GROUP = "default"


class EventType(str, Enum):
    """Platform events a rule can react to."""

    GUILD_MEMBER_ADD = "guildMemberAdd"
    GUILD_MEMBER_REMOVE = "guildMemberRemove"
    MESSAGE_CREATE = "messageCreate"
    MESSAGE_UPDATE = "messageUpdate"
    MESSAGE_DELETE = "messageDelete"
    INTERACTION_CREATE = "interactionCreate"
    MESSAGE_REACTION_ADD = "messageReactionAdd"
    MESSAGE_REACTION_REMOVE = "messageReactionRemove"
    VOICE_STATE_UPDATE = "voiceStateUpdate"
    PRESENCE_UPDATE = "presenceUpdate"
    GUILD_MEMBER_UPDATE = "guildMemberUpdate"
    CHANNEL_CREATE = "channelCreate"
    CHANNEL_DELETE = "channelDelete"
    CHANNEL_UPDATE = "channelUpdate"
    THREAD_CREATE = "threadCreate"
    THREAD_DELETE = "threadDelete"
    ROLE_CREATE = "roleCreate"
    ROLE_DELETE = "roleDelete"
    GUILD_ROLE_UPDATE = "guildRoleUpdate"
    WEBHOOK_EVENT = "webhookEvent"
    CUSTOM_EVENT = "customEvent"


class ConditionType(str, Enum):
    """Which context field a condition inspects."""

    MESSAGE_CONTENT = "messageContent"
    AUTHOR_ID = "authorId"
    AUTHOR_ROLE = "authorRole"
    CHANNEL_ID = "channelId"
    HAS_ATTACHMENT = "hasAttachment"
    MENTION = "mention"
    REGEX = "regex"
    PRESENCE = "presence"
    VOICE_STATE = "voiceState"
    CUSTOM = "custom"


class MatchType(str, Enum):
    """How a condition compares the resolved field against its value."""

    EXACTLY = "exactly"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    REGEX = "regex"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"


class PresetType(str, Enum):
    """Action handler a preset is routed to."""

    EMBED = "Embed"
    TEXT = "Text"
    REPLY = "Reply"
    WEBHOOK = "Webhook"
    DM = "DM"
    REACT = "React"


class ConditionLogic(str, Enum):
    """How condition groups are combined."""

    AND = "AND"
    OR = "OR"


class RunMode(str, Enum):
    """Policy for choosing which presets fire on a match."""

    ALL = "all"
    RANDOM = "random"
    SINGLE = "single"
    PINNED_RANDOM = "pinned-random"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def coerce_enum(enum_cls: type[Enum], value: Any, default: Any = None) -> Any:
    """Return the enum member for *value*, or the raw value if it is unknown.

    Unknown tags are kept as plain strings so that stored rules written by
    a newer dashboard still load; the evaluator and executor report them
    as configuration errors when they are reached.
    """
    if value is None or value == "":
        return default
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return str(value)


def coerce_seconds(value: Any, field_name: str = "seconds") -> float | None:
    """Return *value* as a finite float, or ``None`` when it is unset or not numeric.

    Dashboard forms may send durations as strings such as ``"60"``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        logger.warning("Ignoring non-numeric %s: %r", field_name, value)
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric %s: %r", field_name, value)
        return None
    if not math.isfinite(seconds):
        logger.warning("Ignoring non-finite %s: %r", field_name, value)
        return None
    return seconds


def _tag(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


# ---------------------------------------------------------------------------
# Rule definition
# ---------------------------------------------------------------------------


@dataclass
class Condition:
    """One predicate evaluated against the execution context."""

    type: ConditionType | str
    match_type: MatchType | str = MatchType.CONTAINS
    value: str = ""
    negate: bool = False
    group_id: str | None = None
    id: str = field(default_factory=_new_id)

    @property
    def group(self) -> str:
        return self.group_id or DEFAULT_GROUP

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Condition:
        return cls(
            id=data.get("id") or _new_id(),
            type=coerce_enum(ConditionType, data.get("type"), ConditionType.CUSTOM),
            match_type=coerce_enum(MatchType, data.get("matchType"), MatchType.CONTAINS),
            value="" if data.get("value") is None else str(data["value"]),
            negate=bool(data.get("negate", False)),
            group_id=data.get("groupId") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "type": _tag(self.type),
                "matchType": _tag(self.match_type),
                "value": self.value,
                "negate": self.negate,
                "groupId": self.group_id,
            }
        )


@dataclass
class EmbedField:
    name: str
    value: str
    inline: bool = False


@dataclass
class EmbedFooter:
    text: str
    icon_url: str | None = None


@dataclass
class EmbedConfig:
    """Structured message layout for ``Embed`` presets."""

    title: str | None = None
    description: str | None = None
    color: str | None = None
    fields: list[EmbedField] = field(default_factory=list)
    image_url: str | None = None
    thumbnail_url: str | None = None
    footer: EmbedFooter | None = None
    timestamp: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EmbedConfig:
        footer = data.get("footer")
        return cls(
            title=data.get("title"),
            description=data.get("description"),
            color=data.get("color"),
            fields=[
                EmbedField(
                    name=str(f.get("name", "")),
                    value=str(f.get("value", "")),
                    inline=bool(f.get("inline", False)),
                )
                for f in data.get("fields") or []
            ],
            image_url=data.get("imageUrl"),
            thumbnail_url=data.get("thumbnailUrl"),
            footer=(
                EmbedFooter(text=str(footer.get("text", "")), icon_url=footer.get("iconUrl"))
                if isinstance(footer, dict)
                else None
            ),
            timestamp=bool(data.get("timestamp", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "title": self.title,
                "description": self.description,
                "color": self.color,
                "fields": [
                    {"name": f.name, "value": f.value, "inline": f.inline} for f in self.fields
                ],
                "imageUrl": self.image_url,
                "thumbnailUrl": self.thumbnail_url,
                "footer": (
                    _drop_none({"text": self.footer.text, "iconUrl": self.footer.icon_url})
                    if self.footer
                    else None
                ),
                "timestamp": self.timestamp,
            }
        )


@dataclass
class WebhookConfig:
    """Outbound HTTP call for ``Webhook`` presets."""

    url: str | None = None
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    body_template: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WebhookConfig:
        return cls(
            url=data.get("url"),
            method=str(data.get("method") or "POST").upper(),
            headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
            body_template=data.get("bodyTemplate") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "url": self.url,
                "method": self.method,
                "headers": dict(self.headers),
                "bodyTemplate": self.body_template,
            }
        )


@dataclass
class Preset:
    """One configured response action belonging to a rule."""

    type: PresetType | str
    id: str = field(default_factory=_new_id)
    trigger_id: str = ""
    index: int = 0
    enabled: bool = True
    is_pinned: bool = False
    template: str | None = None
    target_channel_id: str | None = None
    cooldown_seconds: float | None = None
    remove_after_seconds: float | None = None
    embed: EmbedConfig | None = None
    reply_template: str | None = None
    reply_with_mention: bool = False
    webhook: WebhookConfig | None = None
    dm_target_user_id: str | None = None
    react_emoji: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Preset:
        embed = data.get("embedConfig")
        webhook = data.get("webhookConfig")
        return cls(
            id=data.get("id") or _new_id(),
            trigger_id=data.get("triggerId") or "",
            index=int(data.get("index") or 0),
            enabled=bool(data.get("enabled", True)),
            is_pinned=bool(data.get("isPinned", False)),
            type=coerce_enum(PresetType, data.get("type"), ""),
            template=data.get("template"),
            target_channel_id=data.get("targetChannelId") or None,
            cooldown_seconds=coerce_seconds(data.get("cooldownSeconds"), "cooldownSeconds"),
            remove_after_seconds=coerce_seconds(
                data.get("removeAfterSeconds"), "removeAfterSeconds"
            ),
            embed=EmbedConfig.from_dict(embed) if isinstance(embed, dict) else None,
            reply_template=data.get("replyTemplate"),
            reply_with_mention=bool(data.get("replyWithMention", False)),
            webhook=WebhookConfig.from_dict(webhook) if isinstance(webhook, dict) else None,
            dm_target_user_id=data.get("dmTargetUserId") or None,
            react_emoji=data.get("reactEmoji") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "triggerId": self.trigger_id,
                "index": self.index,
                "enabled": self.enabled,
                "isPinned": self.is_pinned,
                "type": _tag(self.type),
                "template": self.template,
                "targetChannelId": self.target_channel_id,
                "cooldownSeconds": self.cooldown_seconds,
                "removeAfterSeconds": self.remove_after_seconds,
                "embedConfig": self.embed.to_dict() if self.embed else None,
                "replyTemplate": self.reply_template,
                "replyWithMention": self.reply_with_mention,
                "webhookConfig": self.webhook.to_dict() if self.webhook else None,
                "dmTargetUserId": self.dm_target_user_id,
                "reactEmoji": self.react_emoji,
            }
        )


@dataclass
class Rule:
    """A named, prioritised binding of an event type, conditions and presets."""

    guild_id: str
    name: str = ""
    event_type: EventType | str = EventType.MESSAGE_CREATE
    id: str = field(default_factory=_new_id)
    description: str = ""
    enabled: bool = True
    priority: int = 0
    conditions: list[Condition] = field(default_factory=list)
    presets: list[Preset] = field(default_factory=list)
    condition_logic: ConditionLogic | str = ConditionLogic.OR
    run_mode: RunMode | str = RunMode.ALL
    random_count: int | None = None
    created_by: str = "unknown"
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Rule:
        """Build a rule from its stored camelCase JSON shape."""
        random_count = data.get("randomCount")
        return cls(
            id=data.get("id") or _new_id(),
            guild_id=str(data.get("guildId") or ""),
            name=data.get("name") or "",
            description=data.get("description") or "",
            enabled=bool(data.get("enabled", True)),
            event_type=coerce_enum(EventType, data.get("eventType"), EventType.MESSAGE_CREATE),
            priority=int(data.get("priority") or 0),
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
            presets=[Preset.from_dict(p) for p in data.get("presets") or []],
            condition_logic=coerce_enum(
                ConditionLogic, data.get("conditionLogic"), ConditionLogic.OR
            ),
            run_mode=coerce_enum(RunMode, data.get("runMode"), RunMode.ALL),
            random_count=int(random_count) if random_count is not None else None,
            created_by=data.get("createdBy") or "unknown",
            created_at=data.get("createdAt") or _now_iso(),
            updated_at=data.get("updatedAt") or _now_iso(),
        )

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "guildId": self.guild_id,
                "name": self.name,
                "description": self.description,
                "enabled": self.enabled,
                "eventType": _tag(self.event_type),
                "priority": self.priority,
                "conditions": [c.to_dict() for c in self.conditions],
                "presets": [p.to_dict() for p in self.presets],
                "conditionLogic": _tag(self.condition_logic),
                "runMode": _tag(self.run_mode),
                "randomCount": self.random_count,
                "createdBy": self.created_by,
                "createdAt": self.created_at,
                "updatedAt": self.updated_at,
            }
        )


# ---------------------------------------------------------------------------
# Execution context
# ---------------------------------------------------------------------------


@dataclass
class UserInfo:
    id: str = ""
    name: str = ""
    tag: str = ""
    created_at: str = ""
    is_bot: bool = False
    locale: str = ""


@dataclass
class AuthorInfo:
    id: str = ""
    name: str = ""
    display_name: str = ""
    tag: str = ""
    mention: str = ""
    roles: list[str] = field(default_factory=list)
    is_bot: bool = False
    locale: str = ""


@dataclass
class GuildInfo:
    id: str = ""
    name: str = ""
    member_count: int = 0


@dataclass
class ChannelInfo:
    id: str = ""
    name: str = ""
    topic: str = ""


@dataclass
class MessageInfo:
    id: str = ""
    content: str = ""
    length: int = 0
    words: int = 0


@dataclass
class VoiceInfo:
    channel_id: str = ""
    channel_name: str = ""


@dataclass
class PresenceInfo:
    status: str = ""


@dataclass
class ExecutionContext:
    """Per-event bag of fields shared by conditions and templates.

    Every section is optional; lookups on a missing section resolve to an
    empty string or zero.
    """

    event_type: EventType | str = EventType.MESSAGE_CREATE
    guild_id: str = ""
    user: UserInfo | None = None
    author: AuthorInfo | None = None
    guild: GuildInfo | None = None
    channel: ChannelInfo | None = None
    message: MessageInfo | None = None
    attachments_count: int = 0
    mentioned_ids: list[str] = field(default_factory=list)
    voice: VoiceInfo | None = None
    presence: PresenceInfo | None = None
    time: str = field(default_factory=_now_iso)
    raw: Any = None


# ---------------------------------------------------------------------------
# Execution results
# ---------------------------------------------------------------------------


@dataclass
class ExecutionOutcome:
    """Result of one preset execution attempt."""

    preset_id: str
    preset_type: str
    success: bool
    error: str | None = None
    rendered_output: str | None = None
    artifact: Any = None


@dataclass
class FiredEvent:
    """Observability record for one preset firing."""

    trigger_id: str
    preset_id: str
    guild_id: str
    event_type: str
    summary: str
    success: bool
    timestamp: str = field(default_factory=_now_iso)
    error: str | None = None
    rendered_output: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "triggerId": self.trigger_id,
                "presetId": self.preset_id,
                "guildId": self.guild_id,
                "eventType": self.event_type,
                "summary": self.summary,
                "renderedOutput": self.rendered_output,
                "timestamp": self.timestamp,
                "success": self.success,
                "error": self.error,
            }
        )

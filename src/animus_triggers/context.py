"""Execution context construction from normalised platform events.

The event source hands the dispatcher a plain mapping per event.  The
shapes understood here are::

    messageCreate / messageUpdate / messageDelete
        {"message": {"id", "content", "author": {...}, "member": {...},
                     "channel": {...}, "guild": {...},
                     "attachments": [...], "mentions": [...]}}
    guildMemberAdd / guildMemberRemove / guildMemberUpdate
        {"member": {"user": {...}, "display_name", "roles"}, "guild": {...}}
    messageReactionAdd / messageReactionRemove
        {"reaction": {"emoji", "message_id", "channel": {...}},
         "user": {...}, "guild": {...}}
    voiceStateUpdate
        {"voice": {"channel_id", "channel_name"}, "member": {...}, "guild": {...}}
    presenceUpdate
        {"presence": {"status"}, "member": {...}, "guild": {...}}

Any other event type, or any malformed section, yields a context with the
affected sections left empty.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from animus_triggers.models import (
    AuthorInfo,
    ChannelInfo,
    EventType,
    ExecutionContext,
    GuildInfo,
    MessageInfo,
    PresenceInfo,
    UserInfo,
    VoiceInfo,
    coerce_enum,
)

logger = logging.getLogger(__name__)

_MESSAGE_EVENTS = {
    EventType.MESSAGE_CREATE,
    EventType.MESSAGE_UPDATE,
    EventType.MESSAGE_DELETE,
}
_MEMBER_EVENTS = {
    EventType.GUILD_MEMBER_ADD,
    EventType.GUILD_MEMBER_REMOVE,
    EventType.GUILD_MEMBER_UPDATE,
}
_REACTION_EVENTS = {
    EventType.MESSAGE_REACTION_ADD,
    EventType.MESSAGE_REACTION_REMOVE,
}


def build_context(
    event_type: EventType | str,
    guild_id: str,
    event: Mapping[str, Any] | None,
) -> ExecutionContext:
    """Build an :class:`ExecutionContext` for one event. Never raises."""
    kind = coerce_enum(EventType, event_type, EventType.CUSTOM_EVENT)
    ctx = ExecutionContext(event_type=kind, guild_id=guild_id, raw=event)
    if not isinstance(event, Mapping):
        return ctx

    try:
        if kind in _MESSAGE_EVENTS:
            _fill_from_message(ctx, event.get("message"))
        elif kind in _MEMBER_EVENTS:
            _fill_from_member(ctx, event.get("member"))
        elif kind in _REACTION_EVENTS:
            _fill_from_reaction(ctx, event)
        elif kind == EventType.VOICE_STATE_UPDATE:
            _fill_from_member(ctx, event.get("member"))
            voice = _section(event, "voice")
            ctx.voice = VoiceInfo(
                channel_id=_str(voice.get("channel_id")),
                channel_name=_str(voice.get("channel_name")),
            )
        elif kind == EventType.PRESENCE_UPDATE:
            _fill_from_member(ctx, event.get("member"))
            ctx.presence = PresenceInfo(status=_str(_section(event, "presence").get("status")))

        if ctx.guild is None and isinstance(event.get("guild"), Mapping):
            ctx.guild = _guild(event["guild"])
        if ctx.channel is None and isinstance(event.get("channel"), Mapping):
            ctx.channel = _channel(event["channel"])
    except (AttributeError, TypeError, ValueError) as exc:
        logger.debug("Context build for %s skipped malformed data: %s", kind, exc)

    return ctx


# ---------------------------------------------------------------------------
# Section builders
# ---------------------------------------------------------------------------


def _fill_from_message(ctx: ExecutionContext, message: Any) -> None:
    if not isinstance(message, Mapping):
        return

    content = _str(message.get("content"))
    ctx.message = MessageInfo(
        id=_str(message.get("id")),
        content=content,
        length=len(content),
        words=len(content.split()),
    )

    author = message.get("author")
    if isinstance(author, Mapping):
        ctx.user = _user(author)
        ctx.author = _author(author, message.get("member"))

    if isinstance(message.get("channel"), Mapping):
        ctx.channel = _channel(message["channel"])
    if isinstance(message.get("guild"), Mapping):
        ctx.guild = _guild(message["guild"])

    attachments = message.get("attachments") or []
    ctx.attachments_count = len(attachments) if not isinstance(attachments, int) else attachments
    ctx.mentioned_ids = _mentioned_ids(message.get("mentions"))


def _fill_from_member(ctx: ExecutionContext, member: Any) -> None:
    if not isinstance(member, Mapping):
        return
    user = member.get("user")
    if isinstance(user, Mapping):
        ctx.user = _user(user)
        ctx.author = _author(user, member)


def _fill_from_reaction(ctx: ExecutionContext, event: Mapping[str, Any]) -> None:
    reaction = _section(event, "reaction")
    user = event.get("user")
    if isinstance(user, Mapping):
        ctx.user = _user(user)
        ctx.author = _author(user, event.get("member"))
    if isinstance(reaction.get("channel"), Mapping):
        ctx.channel = _channel(reaction["channel"])
    message_id = _str(reaction.get("message_id"))
    if message_id:
        ctx.message = MessageInfo(id=message_id)


def _user(data: Mapping[str, Any]) -> UserInfo:
    return UserInfo(
        id=_str(data.get("id")),
        name=_str(data.get("username") or data.get("name")),
        tag=_str(data.get("tag")),
        created_at=_iso(data.get("created_at")),
        is_bot=bool(data.get("bot", False)),
        locale=_str(data.get("locale")),
    )


def _author(data: Mapping[str, Any], member: Any) -> AuthorInfo:
    member = member if isinstance(member, Mapping) else {}
    user_id = _str(data.get("id"))
    name = _str(data.get("username") or data.get("name"))
    return AuthorInfo(
        id=user_id,
        name=name,
        display_name=_str(member.get("display_name")) or name,
        tag=_str(data.get("tag")),
        mention=f"<@{user_id}>" if user_id else "",
        roles=[
            _str(role.get("id") if isinstance(role, Mapping) else role)
            for role in member.get("roles") or []
        ],
        is_bot=bool(data.get("bot", False)),
        locale=_str(data.get("locale")),
    )


def _channel(data: Mapping[str, Any]) -> ChannelInfo:
    return ChannelInfo(
        id=_str(data.get("id")),
        name=_str(data.get("name")),
        topic=_str(data.get("topic")),
    )


def _guild(data: Mapping[str, Any]) -> GuildInfo:
    return GuildInfo(
        id=_str(data.get("id")),
        name=_str(data.get("name")),
        member_count=int(data.get("member_count") or 0),
    )


def _mentioned_ids(mentions: Any) -> list[str]:
    """Accept a list of ids or of objects carrying an ``id``."""
    if not isinstance(mentions, list):
        return []
    ids: list[str] = []
    for item in mentions:
        if isinstance(item, Mapping):
            item = item.get("id")
        if isinstance(item, (str, int)) and str(item):
            ids.append(str(item))
    return ids


def _section(event: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = event.get(key)
    return value if isinstance(value, Mapping) else {}


def _str(value: Any) -> str:
    return "" if value is None else str(value)


def _iso(value: Any) -> str:
    if isinstance(value, datetime):
        return value.astimezone(UTC).isoformat() if value.tzinfo else value.isoformat()
    return _str(value)

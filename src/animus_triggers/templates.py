"""Template rendering — placeholder substitution followed by HTML escaping."""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from datetime import UTC, datetime

from animus_triggers.models import ExecutionContext

_PLACEHOLDER = re.compile(r"\{([A-Za-z][A-Za-z0-9_.]*)\}")

_ESCAPES = str.maketrans(
    {
        "&": "&amp;",
        "<": "&lt;",
        ">": "&gt;",
        '"': "&quot;",
        "'": "&#039;",
    }
)


def _author_mention(ctx: ExecutionContext) -> str:
    if ctx.author is None:
        return ""
    if ctx.author.mention:
        return ctx.author.mention
    return f"<@{ctx.author.id}>" if ctx.author.id else ""


def _channel_mention(ctx: ExecutionContext) -> str:
    if ctx.channel is None or not ctx.channel.id:
        return ""
    return f"<#{ctx.channel.id}>"


def _now() -> str:
    return datetime.now(UTC).isoformat()


_Resolver = Callable[[ExecutionContext], object]

PLACEHOLDERS: dict[str, _Resolver] = {
    "user": lambda c: c.user.name if c.user else "",
    "user.name": lambda c: c.user.name if c.user else "",
    "user.tag": lambda c: c.user.tag if c.user else "",
    "user.id": lambda c: c.user.id if c.user else "",
    "user.createdAt": lambda c: c.user.created_at if c.user else "",
    "author": lambda c: c.author.name if c.author else "",
    "author.name": lambda c: c.author.name if c.author else "",
    "author.displayName": lambda c: (c.author.display_name or c.author.name) if c.author else "",
    "author.mention": _author_mention,
    "author.id": lambda c: c.author.id if c.author else "",
    "author.tag": lambda c: c.author.tag if c.author else "",
    "author.roles": lambda c: ",".join(c.author.roles) if c.author else "",
    "guild.name": lambda c: c.guild.name if c.guild else "",
    "guild.id": lambda c: c.guild.id if c.guild else "",
    "guild.memberCount": lambda c: c.guild.member_count if c.guild else 0,
    "channel.name": lambda c: c.channel.name if c.channel else "",
    "channel.id": lambda c: c.channel.id if c.channel else "",
    "channel.topic": lambda c: c.channel.topic if c.channel else "",
    "channel.mention": _channel_mention,
    "message.content": lambda c: c.message.content if c.message else "",
    "message.id": lambda c: c.message.id if c.message else "",
    "message.length": lambda c: c.message.length if c.message else 0,
    "message.words": lambda c: c.message.words if c.message else 0,
    "attachments.count": lambda c: c.attachments_count,
    "mention": lambda c: ",".join(c.mentioned_ids),
    "time": lambda c: c.time or _now(),
    "voice.channel": lambda c: c.voice.channel_name if c.voice else "",
    "voice.channel.id": lambda c: c.voice.channel_id if c.voice else "",
    "presence.status": lambda c: c.presence.status if c.presence else "",
    "date.now": lambda c: _now(),
    "timestamp": lambda c: _now(),
    "timestamp.unix": lambda c: int(time.time()),
}


def escape_html(text: str) -> str:
    """Escape ``& < > " '`` as HTML entities."""
    return text.translate(_ESCAPES)


def render_template(template: str | None, context: ExecutionContext) -> str:
    """Substitute known placeholders in *template* and HTML-escape the result.

    Known placeholders with no value in *context* render as an empty string
    (counts render as ``0``).  Unknown ``{tokens}`` are left untouched.
    Escaping is applied to the whole output regardless of destination.
    """
    if not template:
        return ""

    def _replace(match: re.Match[str]) -> str:
        resolver = PLACEHOLDERS.get(match.group(1))
        if resolver is None:
            return match.group(0)
        value = resolver(context)
        return "" if value is None else str(value)

    return escape_html(_PLACEHOLDER.sub(_replace, template))

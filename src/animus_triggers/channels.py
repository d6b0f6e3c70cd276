"""Outbound channel protocol — the side effects presets are allowed to perform."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

__all__ = [
    "ArtifactRef",
    "DryRunChannels",
    "OutboundChannels",
    "SentRecord",
]


@dataclass(frozen=True)
class ArtifactRef:
    """Handle to something a preset produced, used for later cleanup.

    ``kind`` is ``"message"`` (channel message or reply), ``"dm"`` or
    ``"reaction"``.
    """

    kind: str
    message_id: str
    channel_id: str | None = None
    user_id: str | None = None
    emoji: str | None = None


@runtime_checkable
class OutboundChannels(Protocol):
    """Protocol the platform integration implements for the executor.

    Every send returns an :class:`ArtifactRef` identifying what was created
    so that ``removeAfterSeconds`` cleanup can delete it.
    """

    async def send_embed(self, channel_id: str, embed: dict[str, Any]) -> ArtifactRef:
        """Post a structured message to a channel."""

    async def send_text(self, channel_id: str, text: str) -> ArtifactRef:
        """Post a plain-text message to a channel."""

    async def reply(
        self,
        channel_id: str,
        message_id: str,
        text: str,
        suppress_mention: bool,
    ) -> ArtifactRef:
        """Reply in-thread to an existing message."""

    async def send_direct_message(self, user_id: str, text: str) -> ArtifactRef:
        """Send a direct message to a user."""

    async def add_reaction(self, channel_id: str, message_id: str, emoji: str) -> ArtifactRef:
        """Add the bot's reaction to a message."""

    async def delete_artifact(self, ref: ArtifactRef) -> None:
        """Delete a sent message or withdraw an added reaction."""


@dataclass
class SentRecord:
    """One call captured by :class:`DryRunChannels`."""

    action: str
    target: str
    payload: Any
    ref: ArtifactRef | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class DryRunChannels:
    """:class:`OutboundChannels` implementation that only records calls.

    Used to preview what a rule would do without touching the platform.
    """

    def __init__(self) -> None:
        self.sent: list[SentRecord] = []
        self.deleted: list[ArtifactRef] = []

    def _record(
        self,
        action: str,
        target: str,
        payload: Any,
        ref: ArtifactRef,
        **metadata: Any,
    ) -> ArtifactRef:
        self.sent.append(SentRecord(action, target, payload, ref, metadata))
        logger.debug("dry-run %s -> %s", action, target)
        return ref

    async def send_embed(self, channel_id: str, embed: dict[str, Any]) -> ArtifactRef:
        ref = ArtifactRef("message", str(uuid.uuid4()), channel_id=channel_id)
        return self._record("embed", channel_id, embed, ref)

    async def send_text(self, channel_id: str, text: str) -> ArtifactRef:
        ref = ArtifactRef("message", str(uuid.uuid4()), channel_id=channel_id)
        return self._record("text", channel_id, text, ref)

    async def reply(
        self,
        channel_id: str,
        message_id: str,
        text: str,
        suppress_mention: bool,
    ) -> ArtifactRef:
        ref = ArtifactRef("message", str(uuid.uuid4()), channel_id=channel_id)
        return self._record(
            "reply",
            channel_id,
            text,
            ref,
            reply_to=message_id,
            suppress_mention=suppress_mention,
        )

    async def send_direct_message(self, user_id: str, text: str) -> ArtifactRef:
        ref = ArtifactRef("dm", str(uuid.uuid4()), user_id=user_id)
        return self._record("dm", user_id, text, ref)

    async def add_reaction(self, channel_id: str, message_id: str, emoji: str) -> ArtifactRef:
        ref = ArtifactRef("reaction", message_id, channel_id=channel_id, emoji=emoji)
        return self._record("react", channel_id, emoji, ref)

    def record_webhook(self, method: str, url: str, headers: dict[str, str], body: Any) -> None:
        """Capture an HTTP call a Webhook preset would have made."""
        self.sent.append(
            SentRecord("webhook", url, body, None, {"method": method, "headers": headers})
        )
        logger.debug("dry-run webhook %s %s", method, url)

    async def delete_artifact(self, ref: ArtifactRef) -> None:
        self.deleted.append(ref)

    def by_action(self, action: str) -> list[SentRecord]:
        """Return recorded calls of one kind, in order."""
        return [r for r in self.sent if r.action == action]

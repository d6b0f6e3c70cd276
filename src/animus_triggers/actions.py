"""Action execution — run one preset against the outbound channels."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import httpx

from animus_triggers.channels import ArtifactRef, DryRunChannels, OutboundChannels
from animus_triggers.cleanup import CleanupScheduler
from animus_triggers.errors import (
    AddressingError,
    ConfigurationError,
    TransportError,
    TriggerError,
)
from animus_triggers.models import (
    ExecutionContext,
    ExecutionOutcome,
    Preset,
    PresetType,
    coerce_seconds,
)
from animus_triggers.templates import render_template

logger = logging.getLogger(__name__)

WEBHOOK_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})

HandlerResult = tuple[str | None, ArtifactRef | None]
PresetHandler = Callable[[Preset, ExecutionContext], Awaitable[HandlerResult]]


class ActionExecutor:
    """Dispatches presets to typed handlers and schedules artifact cleanup.

    Handlers are looked up by preset type in a table; :meth:`register` adds
    or replaces one.  :meth:`execute` never raises: every failure, including
    a timeout, becomes a failed :class:`ExecutionOutcome`.
    """

    def __init__(
        self,
        channels: OutboundChannels,
        cleanup: CleanupScheduler | None = None,
        timeout_seconds: float = 10.0,
        webhook_timeout_seconds: float = 10.0,
        user_agent: str = "animus-triggers/0.1",
    ) -> None:
        self._channels = channels
        self._cleanup = cleanup or CleanupScheduler()
        self._timeout = timeout_seconds
        self._webhook_timeout = webhook_timeout_seconds
        self._user_agent = user_agent
        self._handlers: dict[str, PresetHandler] = {
            PresetType.EMBED.value: self._execute_embed,
            PresetType.TEXT.value: self._execute_text,
            PresetType.REPLY.value: self._execute_reply,
            PresetType.WEBHOOK.value: self._execute_webhook,
            PresetType.DM.value: self._execute_dm,
            PresetType.REACT.value: self._execute_react,
        }

    @property
    def cleanup(self) -> CleanupScheduler:
        return self._cleanup

    def register(self, preset_type: PresetType | str, handler: PresetHandler) -> None:
        """Route presets of *preset_type* to *handler*."""
        self._handlers[_type_tag(preset_type)] = handler

    async def execute(self, preset: Preset, context: ExecutionContext) -> ExecutionOutcome:
        """Run *preset* and report the outcome."""
        tag = _type_tag(preset.type)
        outcome = ExecutionOutcome(preset_id=preset.id, preset_type=tag, success=False)

        handler = self._handlers.get(tag)
        if handler is None:
            outcome.error = f"Unsupported preset type: {tag or '<missing>'}"
            logger.warning("Preset %s: %s", preset.id, outcome.error)
            return outcome

        try:
            rendered, artifact = await asyncio.wait_for(
                handler(preset, context), timeout=self._timeout
            )
        except TimeoutError:
            outcome.error = f"{tag} preset timed out after {self._timeout:g}s"
            logger.warning("Preset %s: %s", preset.id, outcome.error)
            return outcome
        except TriggerError as exc:
            outcome.error = exc.message
            logger.warning("Preset %s (%s) failed: %s", preset.id, tag, exc.message)
            return outcome
        except Exception as exc:  # noqa: BLE001
            outcome.error = str(exc) or type(exc).__name__
            logger.exception("Preset %s (%s) raised", preset.id, tag)
            return outcome

        outcome.success = True
        outcome.rendered_output = rendered
        outcome.artifact = artifact
        logger.info("Preset %s (%s) executed", preset.id, tag)

        if artifact is not None:
            try:
                self._schedule_removal(preset, artifact)
            except Exception:  # noqa: BLE001
                logger.exception("Preset %s: could not schedule artifact removal", preset.id)

        return outcome

    def record_webhooks(self, channels: DryRunChannels) -> None:
        """Render Webhook presets into *channels* instead of sending them."""

        async def _record(preset: Preset, ctx: ExecutionContext) -> HandlerResult:
            method, url, headers, payload = self._webhook_request(preset, ctx)
            channels.record_webhook(method, url, headers, payload)
            return f"{method} {url}", None

        self.register(PresetType.WEBHOOK, _record)

    def _schedule_removal(self, preset: Preset, artifact: ArtifactRef) -> None:
        delay = coerce_seconds(preset.remove_after_seconds, "removeAfterSeconds")
        if delay is None or delay <= 0:
            return

        async def _remove() -> None:
            await self._channels.delete_artifact(artifact)

        self._cleanup.schedule(
            delay,
            _remove,
            label=f"{artifact.kind}:{artifact.message_id}",
        )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _execute_embed(self, preset: Preset, ctx: ExecutionContext) -> HandlerResult:
        channel_id = _target_channel(preset, ctx)
        config = preset.embed
        if config is None:
            raise ConfigurationError("Embed preset has no embed configuration")

        embed: dict[str, Any] = {}
        if config.title:
            embed["title"] = render_template(config.title, ctx)
        if config.description:
            embed["description"] = render_template(config.description, ctx)
        if config.color:
            embed["color"] = _parse_color(config.color)
        if config.fields:
            embed["fields"] = [
                {
                    "name": render_template(f.name, ctx),
                    "value": render_template(f.value, ctx),
                    "inline": f.inline,
                }
                for f in config.fields
            ]
        if config.image_url:
            embed["image"] = {"url": render_template(config.image_url, ctx)}
        if config.thumbnail_url:
            embed["thumbnail"] = {"url": render_template(config.thumbnail_url, ctx)}
        if config.footer:
            footer = {"text": render_template(config.footer.text, ctx)}
            if config.footer.icon_url:
                footer["icon_url"] = render_template(config.footer.icon_url, ctx)
            embed["footer"] = footer
        if config.timestamp:
            embed["timestamp"] = datetime.now(UTC).isoformat()

        if not embed.get("title") and not embed.get("description") and not embed.get("fields"):
            raise ConfigurationError("Embed is empty: set a title, description or field")

        ref = await self._channels.send_embed(channel_id, embed)
        return json.dumps(embed, ensure_ascii=False), ref

    async def _execute_text(self, preset: Preset, ctx: ExecutionContext) -> HandlerResult:
        channel_id = _target_channel(preset, ctx)
        text = _require_text(render_template(preset.template, ctx), "Message")
        ref = await self._channels.send_text(channel_id, text)
        return text, ref

    async def _execute_reply(self, preset: Preset, ctx: ExecutionContext) -> HandlerResult:
        message_id = ctx.message.id if ctx.message else ""
        channel_id = ctx.channel.id if ctx.channel else ""
        if not message_id or not channel_id:
            raise AddressingError("Reply target message or channel is unknown", "message")
        text = _require_text(render_template(preset.reply_template, ctx), "Reply")
        ref = await self._channels.reply(
            channel_id,
            message_id,
            text,
            suppress_mention=not preset.reply_with_mention,
        )
        return text, ref

    async def _execute_webhook(self, preset: Preset, ctx: ExecutionContext) -> HandlerResult:
        method, url, headers, payload = self._webhook_request(preset, ctx)

        try:
            async with httpx.AsyncClient(timeout=self._webhook_timeout) as client:
                resp = await client.request(method, url, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise TransportError(f"Webhook {method} {url} failed: {exc}") from exc

        if resp.status_code >= 400:
            raise TransportError(
                f"Webhook {method} {url} -> {resp.status_code}", status_code=resp.status_code
            )
        logger.info("Webhook %s %s -> %s", method, url, resp.status_code)
        return f"{method} {url} -> {resp.status_code}", None

    def _webhook_request(
        self, preset: Preset, ctx: ExecutionContext
    ) -> tuple[str, str, dict[str, str], Any]:
        config = preset.webhook
        if config is None or not config.url:
            raise ConfigurationError("Webhook URL is not set")

        url = render_template(config.url, ctx)
        method = render_template(config.method or "POST", ctx).upper()
        if method not in WEBHOOK_METHODS:
            raise ConfigurationError(f"Unsupported webhook method: {method}")
        headers = {"User-Agent": self._user_agent}
        headers.update({k: render_template(v, ctx) for k, v in config.headers.items()})
        return method, url, headers, _render_body(config.body_template, ctx)

    async def _execute_dm(self, preset: Preset, ctx: ExecutionContext) -> HandlerResult:
        user_id = preset.dm_target_user_id
        if not user_id or user_id == "{author}":
            user_id = ctx.user.id if ctx.user else ""
        if not user_id:
            raise AddressingError("DM recipient is unknown", "user")
        text = _require_text(render_template(preset.template, ctx), "DM")
        ref = await self._channels.send_direct_message(user_id, text)
        return text, ref

    async def _execute_react(self, preset: Preset, ctx: ExecutionContext) -> HandlerResult:
        message_id = ctx.message.id if ctx.message else ""
        channel_id = ctx.channel.id if ctx.channel else ""
        if not message_id or not channel_id:
            raise AddressingError("Reaction target message or channel is unknown", "message")
        if not preset.react_emoji:
            raise ConfigurationError("Reaction emoji is not set")
        ref = await self._channels.add_reaction(channel_id, message_id, preset.react_emoji)
        return preset.react_emoji, ref


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _type_tag(value: PresetType | str) -> str:
    return value.value if isinstance(value, PresetType) else str(value or "")


def _target_channel(preset: Preset, ctx: ExecutionContext) -> str:
    channel_id = preset.target_channel_id or (ctx.channel.id if ctx.channel else "")
    if not channel_id:
        raise AddressingError("No target channel configured or available from the event", "channel")
    return channel_id


def _require_text(text: str, what: str) -> str:
    if not text.strip():
        raise ConfigurationError(f"{what} text is empty after rendering; check the template")
    return text


def _parse_color(color: str) -> int | str:
    """Convert ``#RRGGBB`` / ``0xRRGGBB`` to an int, else pass it through."""
    raw = color.strip()
    for prefix in ("#", "0x", "0X"):
        if raw.startswith(prefix):
            try:
                return int(raw[len(prefix) :], 16)
            except ValueError:
                return color
    return color


def _render_body(body_template: str, ctx: ExecutionContext) -> Any:
    """Parse the JSON body template, then render every string inside it.

    Rendering leaves rather than the raw text keeps the escaped quotes out of
    the JSON syntax.
    """
    if not body_template.strip():
        return None
    try:
        body = json.loads(body_template)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Webhook body template is not valid JSON: {exc}") from exc
    return _render_leaves(body, ctx)


def _render_leaves(value: Any, ctx: ExecutionContext) -> Any:
    if isinstance(value, str):
        return render_template(value, ctx)
    if isinstance(value, list):
        return [_render_leaves(v, ctx) for v in value]
    if isinstance(value, dict):
        return {render_template(k, ctx): _render_leaves(v, ctx) for k, v in value.items()}
    return value

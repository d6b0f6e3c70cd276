"""Condition evaluation — decide whether a rule's conditions hold for an event."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable
from functools import lru_cache

from animus_triggers.errors import ConfigurationError
from animus_triggers.models import (
    Condition,
    ConditionLogic,
    ConditionType,
    ExecutionContext,
    MatchType,
)

logger = logging.getLogger(__name__)

MAX_PATTERN_LENGTH = 512
MAX_INPUT_LENGTH = 4000

_NUMBER_PREFIX = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_MENTION_TOKEN = re.compile(r"<@!?(\d+)>")


def evaluate_conditions(
    conditions: list[Condition],
    context: ExecutionContext,
    logic: ConditionLogic | str = ConditionLogic.OR,
    *,
    max_pattern_length: int = MAX_PATTERN_LENGTH,
    max_input_length: int = MAX_INPUT_LENGTH,
) -> bool:
    """Evaluate *conditions* grouped by ``group_id``.

    Conditions sharing a group are ANDed.  Group results are combined with
    *logic*: ``AND`` needs every group, anything else needs at least one.
    An empty list is always true.
    """
    if not conditions:
        return True

    groups: dict[str, list[Condition]] = {}
    for condition in conditions:
        groups.setdefault(condition.group, []).append(condition)

    # Every condition is evaluated, even after a group has already failed.
    group_results = [
        all(
            [
                evaluate_condition(
                    c,
                    context,
                    max_pattern_length=max_pattern_length,
                    max_input_length=max_input_length,
                )
                for c in members
            ]
        )
        for members in groups.values()
    ]

    if _logic_tag(logic) == ConditionLogic.AND.value:
        return all(group_results)
    return any(group_results)


def evaluate_condition(
    condition: Condition,
    context: ExecutionContext,
    *,
    max_pattern_length: int = MAX_PATTERN_LENGTH,
    max_input_length: int = MAX_INPUT_LENGTH,
) -> bool:
    """Evaluate one condition, applying ``negate`` to the raw match.

    Any error while matching (bad regex, unknown tag) makes the raw match
    ``False``; it never propagates.
    """
    try:
        checker = _CHECKERS.get(_condition_tag(condition.type))
        if checker is None:
            raise ConfigurationError(f"Unknown condition type: {condition.type}")
        result = checker(condition, context, max_pattern_length, max_input_length)
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "Condition %s (%s) failed to evaluate: %s",
            condition.id,
            _condition_tag(condition.type),
            exc,
        )
        result = False

    return not result if condition.negate else result


def match_string(
    value: str,
    pattern: str,
    match_type: MatchType | str,
    *,
    max_pattern_length: int = MAX_PATTERN_LENGTH,
    max_input_length: int = MAX_INPUT_LENGTH,
) -> bool:
    """Compare *value* against *pattern* using *match_type*."""
    mode = match_type.value if isinstance(match_type, MatchType) else str(match_type)
    if mode == MatchType.EXACTLY.value:
        return value == pattern
    if mode == MatchType.CONTAINS.value:
        return pattern in value
    if mode == MatchType.STARTS_WITH.value:
        return value.startswith(pattern)
    if mode == MatchType.ENDS_WITH.value:
        return value.endswith(pattern)
    if mode == MatchType.REGEX.value:
        return regex_search(
            pattern,
            value,
            max_pattern_length=max_pattern_length,
            max_input_length=max_input_length,
        )
    if mode == MatchType.GREATER_THAN.value:
        return parse_number(value) > parse_number(pattern)
    if mode == MatchType.LESS_THAN.value:
        return parse_number(value) < parse_number(pattern)
    raise ConfigurationError(f"Unknown match type: {match_type}")


def parse_number(text: str) -> float:
    """Parse the leading numeric prefix of *text*; ``nan`` when there is none."""
    stripped = text.strip()
    if stripped in ("Infinity", "+Infinity"):
        return math.inf
    if stripped == "-Infinity":
        return -math.inf
    match = _NUMBER_PREFIX.match(text)
    if match is None:
        return math.nan
    return float(match.group(1))


def regex_search(
    pattern: str,
    text: str,
    *,
    max_pattern_length: int = MAX_PATTERN_LENGTH,
    max_input_length: int = MAX_INPUT_LENGTH,
) -> bool:
    """Search *text* with a cached compiled *pattern*.

    Patterns above *max_pattern_length* are rejected and the searched text is
    truncated to *max_input_length* characters to bound backtracking.
    """
    if len(pattern) > max_pattern_length:
        raise ConfigurationError(
            f"Regex pattern too long ({len(pattern)} > {max_pattern_length})"
        )
    return _compile(pattern).search(text[:max_input_length]) is not None


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ConfigurationError(f"Invalid regex {pattern!r}: {exc}") from exc


# ---------------------------------------------------------------------------
# Per-type checks
# ---------------------------------------------------------------------------

_Checker = Callable[[Condition, ExecutionContext, int, int], bool]


def _check_field(getter: Callable[[ExecutionContext], str]) -> _Checker:
    def _check(condition: Condition, ctx: ExecutionContext, max_len: int, max_input: int) -> bool:
        return match_string(
            getter(ctx),
            condition.value,
            condition.match_type,
            max_pattern_length=max_len,
            max_input_length=max_input,
        )

    return _check


def _check_author_role(condition: Condition, ctx: ExecutionContext, *_: int) -> bool:
    roles = ctx.author.roles if ctx.author else []
    return condition.value in roles


def _check_has_attachment(condition: Condition, ctx: ExecutionContext, *_: int) -> bool:
    return ctx.attachments_count > 0


def _check_mention(
    condition: Condition, ctx: ExecutionContext, max_len: int, max_input: int
) -> bool:
    """``value`` may be ``<@id>``, ``<@!id>`` or a bare id."""
    cleaned = _MENTION_TOKEN.sub(r"\1", condition.value)
    mode = condition.match_type
    if mode in (MatchType.CONTAINS, MatchType.EXACTLY):
        return cleaned in ctx.mentioned_ids or condition.value in ctx.mentioned_ids
    return match_string(
        cleaned,
        condition.value,
        mode,
        max_pattern_length=max_len,
        max_input_length=max_input,
    )


def _check_regex(
    condition: Condition, ctx: ExecutionContext, max_len: int, max_input: int
) -> bool:
    content = ctx.message.content if ctx.message else ""
    return regex_search(
        condition.value,
        content,
        max_pattern_length=max_len,
        max_input_length=max_input,
    )


def _check_custom(condition: Condition, ctx: ExecutionContext, *_: int) -> bool:
    return False


_CHECKERS: dict[str, _Checker] = {
    ConditionType.MESSAGE_CONTENT.value: _check_field(
        lambda c: c.message.content if c.message else ""
    ),
    ConditionType.AUTHOR_ID.value: _check_field(lambda c: c.user.id if c.user else ""),
    ConditionType.AUTHOR_ROLE.value: _check_author_role,
    ConditionType.CHANNEL_ID.value: _check_field(lambda c: c.channel.id if c.channel else ""),
    ConditionType.HAS_ATTACHMENT.value: _check_has_attachment,
    ConditionType.MENTION.value: _check_mention,
    ConditionType.REGEX.value: _check_regex,
    ConditionType.PRESENCE.value: _check_field(lambda c: c.presence.status if c.presence else ""),
    ConditionType.VOICE_STATE.value: _check_field(lambda c: c.voice.channel_id if c.voice else ""),
    ConditionType.CUSTOM.value: _check_custom,
}


def _condition_tag(value: ConditionType | str) -> str:
    return value.value if isinstance(value, ConditionType) else str(value)


def _logic_tag(value: ConditionLogic | str) -> str:
    return value.value if isinstance(value, ConditionLogic) else str(value).upper()

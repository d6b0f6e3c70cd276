"""Per-preset cooldown tracking."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class CooldownTracker:
    """Remembers when each preset last fired and gates re-firing.

    Keys are ``(guild_id, preset_id)`` so two guilds that happen to reuse a
    preset id never share a cooldown.  All public methods are thread-safe.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._last_fired: dict[tuple[str, str], float] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def try_fire(self, guild_id: str, preset_id: str, cooldown_seconds: float | None) -> bool:
        """Return ``True`` and record *now* if the preset may fire.

        Unset or non-positive cooldowns always allow and record nothing.
        """
        if not cooldown_seconds or cooldown_seconds <= 0:
            return True

        key = (guild_id, preset_id)
        with self._lock:
            now = self._clock()
            last = self._last_fired.get(key)
            if last is not None and now - last < cooldown_seconds:
                logger.debug(
                    "cooldown: preset %s in guild %s blocked (%.1fs remaining)",
                    preset_id,
                    guild_id,
                    cooldown_seconds - (now - last),
                )
                return False
            self._last_fired[key] = now
            return True

    def remaining(self, guild_id: str, preset_id: str, cooldown_seconds: float | None) -> float:
        """Seconds left before the preset may fire again (0 when ready)."""
        if not cooldown_seconds:
            return 0.0
        with self._lock:
            last = self._last_fired.get((guild_id, preset_id))
            if last is None:
                return 0.0
            return max(0.0, cooldown_seconds - (self._clock() - last))

    def reset(self, guild_id: str, preset_id: str) -> None:
        """Forget the last firing of one preset."""
        with self._lock:
            self._last_fired.pop((guild_id, preset_id), None)

    def clear(self) -> None:
        """Forget every recorded firing."""
        with self._lock:
            self._last_fired.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_fired)

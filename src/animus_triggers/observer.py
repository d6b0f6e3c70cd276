"""Execution observer — in-memory feed of preset firings plus live sinks."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections import deque
from collections.abc import Awaitable, Callable

from animus_triggers.models import FiredEvent

logger = logging.getLogger(__name__)

FIRED_EVENT = "trigger:fired"

LiveSink = Callable[[str, FiredEvent], Awaitable[None] | None]


class ExecutionObserver:
    """Keeps the last *capacity* :class:`FiredEvent` records and forwards them.

    Appends happen under a lock so concurrent event handlers can record
    safely.  Sinks may be plain or async callables; a failing sink is logged
    and never affects rule execution, and an async sink gets at most
    *sink_timeout_seconds* before it is abandoned.
    """

    def __init__(self, capacity: int = 100, sink_timeout_seconds: float = 2.0) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._sink_timeout = sink_timeout_seconds
        self._buffer: deque[FiredEvent] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._sinks: list[LiveSink] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    def subscribe(self, sink: LiveSink) -> None:
        """Forward every future firing to *sink*."""
        if sink not in self._sinks:
            self._sinks.append(sink)

    def unsubscribe(self, sink: LiveSink) -> bool:
        """Stop forwarding to *sink*. Returns ``True`` if it was subscribed."""
        try:
            self._sinks.remove(sink)
        except ValueError:
            return False
        return True

    async def record(self, event: FiredEvent) -> None:
        """Append *event* to the buffer and emit it to every sink."""
        with self._lock:
            self._buffer.append(event)

        for sink in list(self._sinks):
            try:
                result = sink(FIRED_EVENT, event)
                if inspect.isawaitable(result):
                    await asyncio.wait_for(result, timeout=self._sink_timeout)
            except TimeoutError:
                logger.warning(
                    "Live sink %r timed out after %gs for preset %s",
                    sink,
                    self._sink_timeout,
                    event.preset_id,
                )
            except Exception:  # noqa: BLE001
                logger.exception("Live sink %r failed for preset %s", sink, event.preset_id)

    def get_buffer(self) -> list[FiredEvent]:
        """Return a snapshot of the buffer, oldest first."""
        with self._lock:
            return list(self._buffer)

    def clear_buffer(self) -> None:
        """Drop every buffered record."""
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)

"""Preset selection — pick which presets fire for a matched rule."""

from __future__ import annotations

import random

from animus_triggers.models import Preset, RunMode


def select_presets(
    presets: list[Preset],
    run_mode: RunMode | str | None = RunMode.ALL,
    random_count: int | None = None,
    rng: random.Random | None = None,
) -> list[Preset]:
    """Return the subset of enabled *presets* to run under *run_mode*.

    ``all``            every enabled preset, in order.
    ``random``         one enabled preset chosen uniformly.
    ``single``         the first pinned preset, else the first enabled one.
    ``pinned-random``  all pinned presets plus up to *random_count* distinct
                       unpinned presets (unset or 0 means 1).

    Unknown or missing modes behave like ``all``.
    """
    rng = rng or random
    enabled = [p for p in presets if p.enabled]
    mode = run_mode.value if isinstance(run_mode, RunMode) else run_mode

    if mode == RunMode.RANDOM.value:
        if not enabled:
            return []
        return [rng.choice(enabled)]

    if mode == RunMode.SINGLE.value:
        for preset in enabled:
            if preset.is_pinned:
                return [preset]
        return enabled[:1]

    if mode == RunMode.PINNED_RANDOM.value:
        pinned = [p for p in enabled if p.is_pinned]
        unpinned = [p for p in enabled if not p.is_pinned]
        count = min(max(random_count or 1, 0), len(unpinned))
        return pinned + rng.sample(unpinned, count)

    return enabled

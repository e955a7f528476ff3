"""Fold finer bars into coarser, midnight-anchored windows."""

from __future__ import annotations

from typing import Sequence

from core.errors import InvalidArgumentError
from core.models.bar import Bar
from core.models.resolution import MS_PER_DAY


def consolidate(bars: Sequence[Bar], periods_per_day: int) -> list[Bar]:
    """Consolidate bars sorted by start into windows of MS_PER_DAY / periods_per_day.

    Windows are anchored at midnight (UTC) of the first bar's day. A bar
    belongs to the window its end falls in. A window is flushed only when
    a later bar ends beyond its boundary, so windows without bars are
    skipped. The trailing window is emitted only when its last bar reaches
    the boundary; a still-open trailing window is withheld.

    Raises:
        InvalidArgumentError: On empty input or non-positive periods_per_day.
    """
    if not bars:
        raise InvalidArgumentError("Cannot consolidate an empty bar sequence")
    if periods_per_day <= 0:
        raise InvalidArgumentError(
            f"periods_per_day must be positive, got {periods_per_day}"
        )

    duration = MS_PER_DAY // periods_per_day
    first_start = bars[0].start
    boundary = first_start - first_start % MS_PER_DAY + duration

    result: list[Bar] = []
    pending: list[Bar] = []
    for bar in bars:
        if bar.end > boundary:
            if pending:
                result.append(Bar.from_bars(pending))
                pending = []
            # Jump straight to the window holding this bar; skipped windows had no bars
            boundary += -(-(bar.end - boundary) // duration) * duration
        pending.append(bar)

    if pending and pending[-1].end + 1 >= boundary:
        result.append(Bar.from_bars(pending))
    return result

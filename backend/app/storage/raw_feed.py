"""Parsing of raw OHLC rows from CSV text.

Rows are ``timestamp,open,high,low,close`` (``;`` also accepted). The
timestamp is either ``yyyyMMdd HHmmss`` or an ISO-like date. Each row is
shifted by an hour offset, aligned down to the resolution and becomes one
bar ending one millisecond before the next window.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Iterator

from core.errors import InvalidArgumentError
from core.models.bar import Bar
from core.models.resolution import Resolution

logger = logging.getLogger(__name__)

HEADER = "timestamp,open,high,low,close"
COMPACT_FORMAT = "%Y%m%d %H%M%S"


def parse_timestamp(text: str) -> datetime:
    """Parse a feed timestamp as UTC."""
    text = text.strip()
    if ":" in text or "-" in text:
        parsed = datetime.fromisoformat(text)
    else:
        parsed = datetime.strptime(text, COMPACT_FORMAT)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_row(line: str, resolution: Resolution, hours_offset: int = 0) -> Bar:
    """One CSV row to a bar.

    Raises:
        InvalidArgumentError: If the row is malformed or has invalid prices.
    """
    fields = line.strip().split("," if "," in line else ";")
    if len(fields) < 5:
        raise InvalidArgumentError(f"Expected 5 fields, got {len(fields)}")
    try:
        when = parse_timestamp(fields[0]) + timedelta(hours=hours_offset)
        open_, high, low, close = (float(f) for f in fields[1:5])
    except ValueError as e:
        raise InvalidArgumentError(str(e)) from None

    start = resolution.align(int(when.timestamp() * 1000))
    return Bar.from_prices(
        start=start,
        end=start + resolution.duration_ms - 1,
        open=open_,
        close=close,
        high=high,
        low=low,
    )


def iter_rows(
    lines: Iterable[str], resolution: Resolution, hours_offset: int = 0, source: str = "feed"
) -> Iterator[Bar]:
    """Bars of every valid row; the header, blank and invalid rows are skipped."""
    for number, line in enumerate(lines, start=1):
        line = line.strip()
        if not line or line == HEADER:
            continue
        try:
            yield parse_row(line, resolution, hours_offset)
        except InvalidArgumentError as e:
            logger.warning(f"{source}:{number}: skipped row '{line}': {e}")


def parse_csv(text: str, resolution: Resolution, hours_offset: int = 0, source: str = "feed") -> list[Bar]:
    return list(iter_rows(text.splitlines(), resolution, hours_offset, source))


def load_raw_years(
    raw_dir: Path,
    first_year: int,
    last_year: int,
    resolution: Resolution = Resolution.M1,
    hours_offset: int = 0,
) -> list[Bar]:
    """Concatenate <raw_dir>/<year>.csv for every year present."""
    bars: list[Bar] = []
    for year in range(first_year, last_year + 1):
        path = raw_dir / f"{year}.csv"
        if not path.exists():
            continue
        with path.open(encoding="utf-8") as f:
            before = len(bars)
            bars.extend(iter_rows(f, resolution, hours_offset, source=str(path)))
        logger.info(f"Loaded {len(bars) - before:,} raw {resolution.label} bars from {path}")
    return bars

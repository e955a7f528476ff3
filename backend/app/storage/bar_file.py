"""Binary bar files.

Layout, little-endian, no padding: int32 count, then `count` records of
uint64 start, uint64 end, float32 open, close, high, low, median.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import numpy as np

from core.errors import InvalidArgumentError
from core.models.bar import Bar

logger = logging.getLogger(__name__)

COUNT_DTYPE = np.dtype("<i4")
RECORD_DTYPE = np.dtype(
    [
        ("start", "<u8"),
        ("end", "<u8"),
        ("open", "<f4"),
        ("close", "<f4"),
        ("high", "<f4"),
        ("low", "<f4"),
        ("median", "<f4"),
    ]
)


def encode_bars(bars: Sequence[Bar]) -> bytes:
    records = np.empty(len(bars), dtype=RECORD_DTYPE)
    for name in RECORD_DTYPE.names:
        records[name] = np.fromiter(
            (getattr(bar, name) for bar in bars), dtype=RECORD_DTYPE[name], count=len(bars)
        )
    return np.array([len(bars)], dtype=COUNT_DTYPE).tobytes() + records.tobytes()


def decode_bars(data: bytes) -> list[Bar]:
    if len(data) < COUNT_DTYPE.itemsize:
        raise InvalidArgumentError("Bar file is shorter than its header")
    count = int(np.frombuffer(data, dtype=COUNT_DTYPE, count=1)[0])
    expected = COUNT_DTYPE.itemsize + count * RECORD_DTYPE.itemsize
    if count < 0 or len(data) != expected:
        raise InvalidArgumentError(
            f"Bar file holds {len(data)} bytes, expected {expected} for {count} bars"
        )
    if count == 0:
        return []
    records = np.frombuffer(data, dtype=RECORD_DTYPE, count=count, offset=COUNT_DTYPE.itemsize)
    return [
        Bar(start=start, end=end, open=open_, close=close, high=high, low=low, median=median)
        for start, end, open_, close, high, low, median in records.tolist()
    ]


def save_bars(path: Path, bars: Sequence[Bar]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encode_bars(bars))
    logger.debug(f"Saved {len(bars)} bars to {path}")


def load_bars(path: Path) -> list[Bar]:
    return decode_bars(path.read_bytes())


def to_file_precision(bars: Sequence[Bar]) -> list[Bar]:
    """Round prices to float32 so freshly built bars match their cached copy."""
    return decode_bars(encode_bars(bars))

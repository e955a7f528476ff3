"""Tests for the binary bar file layout."""

import struct

import numpy as np
import pytest

from app.storage.bar_file import RECORD_DTYPE, decode_bars, encode_bars, load_bars, save_bars, to_file_precision
from core.errors import InvalidArgumentError
from core.models.bar import Bar


def sample_bars() -> list[Bar]:
    # Prices exactly representable in single precision
    return [
        Bar(start=0, end=3_599_999, open=1.25, close=1.5, high=1.75, low=1.125, median=1.375),
        Bar(start=3_600_000, end=7_199_999, open=1.5, close=1.0, high=1.5, low=0.875, median=1.25),
    ]


class TestBarFile:
    def test_record_size(self):
        assert RECORD_DTYPE.itemsize == 36

    def test_layout(self):
        data = encode_bars(sample_bars())

        assert len(data) == 4 + 36 * 2
        assert struct.unpack_from("<i", data, 0) == (2,)
        assert struct.unpack_from("<QQfffff", data, 4) == (0, 3_599_999, 1.25, 1.5, 1.75, 1.125, 1.375)

    def test_round_trip(self, tmp_path):
        path = tmp_path / "bars" / "1H.dat"

        save_bars(path, sample_bars())

        assert load_bars(path) == sample_bars()

    def test_empty_file(self):
        data = encode_bars([])
        assert data == b"\x00\x00\x00\x00"
        assert decode_bars(data) == []

    def test_truncated_file_raises(self):
        data = encode_bars(sample_bars())
        with pytest.raises(InvalidArgumentError):
            decode_bars(data[:-1])
        with pytest.raises(InvalidArgumentError):
            decode_bars(b"\x01")

    def test_to_file_precision_rounds_to_single(self, tmp_path):
        bar = Bar.from_prices(start=0, end=59_999, open=1.1, close=1.3, high=1.7, low=0.9)

        [rounded] = to_file_precision([bar])

        assert rounded.close == float(np.float32(1.3))
        assert rounded.close != 1.3
        save_bars(tmp_path / "1m.dat", [bar])
        assert load_bars(tmp_path / "1m.dat") == [rounded]

"""Bar resolutions ordered from coarsest (1 day) to finest (1 minute)."""

from __future__ import annotations

from enum import IntEnum

from core.errors import InvalidArgumentError

MS_PER_DAY = 86_400_000


class Resolution(IntEnum):
    """Bar width. The integer value is the slot index, 0 = coarsest."""

    D1 = 0
    H12 = 1
    H6 = 2
    H3 = 3
    H2 = 4
    H1 = 5
    M30 = 6
    M15 = 7
    M5 = 8
    M1 = 9

    @property
    def periods_per_day(self) -> int:
        return _PERIODS_PER_DAY[self]

    @property
    def duration_ms(self) -> int:
        """Window length in milliseconds."""
        return MS_PER_DAY // _PERIODS_PER_DAY[self]

    @property
    def label(self) -> str:
        """Short name used for file names and the CLI (e.g. '1H', '15m')."""
        return _LABELS[self]

    @classmethod
    def finest(cls) -> Resolution:
        return cls.M1

    @classmethod
    def from_label(cls, label: str) -> Resolution:
        for resolution, name in _LABELS.items():
            if name == label:
                return resolution
        raise InvalidArgumentError(
            f"Unknown resolution '{label}'. Available: {', '.join(_LABELS.values())}"
        )

    def align(self, timestamp_ms: int) -> int:
        """Floor a timestamp to the start of its window (windows anchored at midnight UTC)."""
        return timestamp_ms - timestamp_ms % self.duration_ms

    def consolidation_source(self) -> Resolution:
        """Nearest finer resolution whose windows tile this one exactly.

        3H is built from 1H rather than 2H, whose windows straddle 3H boundaries.
        """
        for k in range(self.value + 1, len(Resolution)):
            finer = Resolution(k)
            if finer.periods_per_day % self.periods_per_day == 0:
                return finer
        raise InvalidArgumentError(f"{self.label} is the finest resolution")

    def coarser(self) -> list[Resolution]:
        """Coarser resolutions, nearest first."""
        return [Resolution(k) for k in range(self.value - 1, -1, -1)]


_PERIODS_PER_DAY: dict[Resolution, int] = {
    Resolution.D1: 1,
    Resolution.H12: 2,
    Resolution.H6: 4,
    Resolution.H3: 8,
    Resolution.H2: 12,
    Resolution.H1: 24,
    Resolution.M30: 48,
    Resolution.M15: 96,
    Resolution.M5: 288,
    Resolution.M1: 1440,
}

_LABELS: dict[Resolution, str] = {
    Resolution.D1: "1D",
    Resolution.H12: "12H",
    Resolution.H6: "6H",
    Resolution.H3: "3H",
    Resolution.H2: "2H",
    Resolution.H1: "1H",
    Resolution.M30: "30m",
    Resolution.M15: "15m",
    Resolution.M5: "5m",
    Resolution.M1: "1m",
}

_BY_PERIODS = {ppd: resolution for resolution, ppd in _PERIODS_PER_DAY.items()}


def periods_per_day(resolution: Resolution) -> int:
    return _PERIODS_PER_DAY[resolution]


def resolution_from_periods_per_day(value: int) -> Resolution:
    """Inverse of periods_per_day().

    Raises:
        InvalidArgumentError: If no resolution has that many periods per day.
    """
    try:
        return _BY_PERIODS[value]
    except KeyError:
        raise InvalidArgumentError(
            f"No resolution with {value} periods per day"
        ) from None

# Models are trained on, and the simulation walks, hourly bars
TRAINING_RESOLUTION = Resolution.H1


def check_model_resolution(resolution: Resolution) -> Resolution:
    """Models run on the training resolution or coarser; the simulation never walks finer slots.

    Raises:
        InvalidArgumentError: If the resolution is finer than TRAINING_RESOLUTION.
    """
    if resolution > TRAINING_RESOLUTION:
        raise InvalidArgumentError(
            f"Model resolution {resolution.label} is finer than {TRAINING_RESOLUTION.label}"
        )
    return resolution

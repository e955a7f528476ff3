"""Multi-resolution bar store with lazy, cascading population."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Iterator, Protocol

from core.consolidation import consolidate
from core.errors import InvalidStateError, NotFoundError
from core.models.bar import Bar
from core.models.resolution import Resolution
from core.time_index import floor

logger = logging.getLogger(__name__)


class StoreKind(str, Enum):
    """How an empty slot gets populated."""

    CUSTOM = "custom"
    HISTORICAL = "historical"
    REALTIME = "realtime"


class SlotLoader(Protocol):
    """Populates one slot of a store on first read.

    Loaders may read other slots of the same store (e.g. to consolidate a
    finer one); the store lock is re-entrant.
    """

    def load(self, store: MultiResolutionStore, resolution: Resolution) -> list[Bar]:
        ...


class MultiResolutionStore:
    """One ascending bar sequence per resolution.

    Historical and realtime stores populate each slot once, on first read,
    through their SlotLoader. Custom stores never auto-populate; their
    slots are assigned directly.
    """

    def __init__(self, kind: StoreKind = StoreKind.CUSTOM, loader: SlotLoader | None = None):
        if kind is not StoreKind.CUSTOM and loader is None:
            raise InvalidStateError(f"A {kind.value} store needs a slot loader")
        self.kind = kind
        self._loader = loader
        self._slots: list[list[Bar] | None] = [None] * len(Resolution)
        self._lock = threading.RLock()

    def __getitem__(self, resolution: Resolution) -> list[Bar]:
        slot = self._slots[resolution]
        if slot is not None:
            return slot

        if self._loader is None:
            raise NotFoundError(
                f"Slot {Resolution(resolution).label} of a {self.kind.value} store is not populated"
            )
        with self._lock:
            slot = self._slots[resolution]
            if slot is None:
                slot = self._loader.load(self, Resolution(resolution))
                self._slots[resolution] = slot
                logger.info(
                    f"Populated {self.kind.value} slot {Resolution(resolution).label}: {len(slot)} bars"
                )
        return slot

    def __setitem__(self, resolution: Resolution, bars: list[Bar]) -> None:
        with self._lock:
            self._slots[resolution] = bars

    def __iter__(self) -> Iterator[Resolution]:
        """Populated resolutions, coarsest first."""
        return (Resolution(k) for k, slot in enumerate(self._slots) if slot is not None)

    def is_populated(self, resolution: Resolution) -> bool:
        return self._slots[resolution] is not None

    def insert(self, bar: Bar, resolution: Resolution) -> None:
        """Append a bar and cascade its trailing window into every coarser slot.

        A coarser slot gets a new bar only when the re-consolidated trailing
        window ends somewhere other than that slot's last bar.
        """
        slot = self[resolution]
        slot.append(bar)
        window = slot[-resolution.periods_per_day:]

        for coarser in resolution.coarser():
            consolidated = consolidate(window, coarser.periods_per_day)
            if not consolidated:
                continue
            latest = consolidated[-1]
            target = self[coarser]
            if not target or target[-1].end != latest.end:
                target.append(latest)


def split(
    store: MultiResolutionStore, at_time: int, highest: Resolution
) -> tuple[MultiResolutionStore, MultiResolutionStore]:
    """Cut every resolution up to `highest` at the bar holding at_time.

    Part one receives the bars before that bar, part two the rest. Both
    parts are custom stores with their own lists.
    """
    before = MultiResolutionStore(StoreKind.CUSTOM)
    after = MultiResolutionStore(StoreKind.CUSTOM)
    for resolution in range(highest, -1, -1):
        bars = store[Resolution(resolution)]
        cut = floor(bars, at_time)
        before[Resolution(resolution)] = bars[:cut]
        after[Resolution(resolution)] = bars[cut:]
    return before, after

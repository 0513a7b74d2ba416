"""
Region sufficient statistics and the region-capacity owner.

Every table indexed by region is allocated with a region axis of size
``capacity`` (the expected region count), which may be larger than the number
of regions in use. Growth goes through ``RegionCapacity.grow`` so the live
tables, the annealer's sample sums and any per-region model state are resized
together.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import numpy as np
from numba import njit

from .errors import CapacityError

logger = logging.getLogger(__name__)

# Position of the region axis in every region-indexed table.
REGION_AXES: Dict[str, int] = {
    "word_by_region": 1,
    "region_by_document": 1,
    "all_words_by_region": 0,
    "toponym_by_region": 0,
    "toponym_by_region_coordinate": 0,
    "region_direction_sum": 0,
}


def expand_region_axis(arr: np.ndarray, new_capacity: int, axis: int) -> np.ndarray:
    """Copy ``arr`` into a zero-filled array whose ``axis`` has ``new_capacity`` slots."""
    old = arr.shape[axis]
    if new_capacity < old:
        raise CapacityError(f"Cannot shrink region axis from {old} to {new_capacity}")
    shape = list(arr.shape)
    shape[axis] = new_capacity
    out = np.zeros(shape, dtype=arr.dtype)
    index = [slice(None)] * arr.ndim
    index[axis] = slice(0, old)
    out[tuple(index)] = arr
    return out


class RegionCapacity:
    """
    Single owner of the region-axis size.

    Holders implement ``resize_regions(new_capacity)``; ``grow`` calls every
    holder before publishing the new capacity.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise CapacityError(f"Region capacity must be positive, got {capacity}")
        self.capacity = int(capacity)
        self.history: List[int] = [self.capacity]
        self._holders: list = []

    def attach(self, holder) -> None:
        self._holders.append(holder)

    def grow(self, new_capacity: int) -> None:
        new_capacity = int(new_capacity)
        if new_capacity < self.capacity:
            raise CapacityError(
                f"Region capacity can only grow ({self.capacity} -> {new_capacity})"
            )
        if new_capacity == self.capacity:
            return
        logger.info("Growing region capacity %d -> %d", self.capacity, new_capacity)
        try:
            for holder in self._holders:
                holder.resize_regions(new_capacity)
        except MemoryError as exc:
            raise CapacityError(
                f"Allocation failed while growing to {new_capacity} regions"
            ) from exc
        self.capacity = new_capacity
        self.history.append(new_capacity)


###############################################################################
# Count updates (shared by every sweep kernel)
###############################################################################


@njit(cache=True)
def update_word(
    word_by_region: np.ndarray,
    region_by_document: np.ndarray,
    all_words_by_region: np.ndarray,
    w: int,
    d: int,
    r: int,
    delta: int,
) -> None:
    word_by_region[w, r] += delta
    region_by_document[d, r] += delta
    all_words_by_region[r] += delta


@njit(cache=True)
def update_coordinate(
    toponym_by_region_coordinate: np.ndarray,
    region_direction_sum: np.ndarray,
    xyz: np.ndarray,
    r: int,
    slot: int,
    delta: int,
) -> None:
    """Move one toponym's chosen candidate (lexicon row ``slot``) in or out of region ``r``."""
    toponym_by_region_coordinate[r, slot] += delta
    region_direction_sum[r, 0] += delta * xyz[slot, 0]
    region_direction_sum[r, 1] += delta * xyz[slot, 1]
    region_direction_sum[r, 2] += delta * xyz[slot, 2]


class RegionStatistics:
    """Count tables keyed by word, document and region (and coordinates when spherical)."""

    def __init__(
        self,
        vocabulary_size: int,
        document_count: int,
        capacity: int,
        coordinate_slots: Optional[int] = None,
    ) -> None:
        self.W = int(vocabulary_size)
        self.D = int(document_count)
        self.word_by_region = np.zeros((self.W, capacity), dtype=np.int64)
        self.region_by_document = np.zeros((self.D, capacity), dtype=np.int64)
        self.all_words_by_region = np.zeros(capacity, dtype=np.int64)
        self.toponym_by_region = np.zeros(capacity, dtype=np.int64)
        self.spherical = coordinate_slots is not None
        if self.spherical:
            self.toponym_by_region_coordinate = np.zeros(
                (capacity, int(coordinate_slots)), dtype=np.int64
            )
            self.region_direction_sum = np.zeros((capacity, 3), dtype=np.float64)
        else:
            self.toponym_by_region_coordinate = None
            self.region_direction_sum = None

    @property
    def capacity(self) -> int:
        return int(self.all_words_by_region.shape[0])

    def region_arrays(self) -> Dict[str, np.ndarray]:
        arrays = {
            "word_by_region": self.word_by_region,
            "region_by_document": self.region_by_document,
            "all_words_by_region": self.all_words_by_region,
            "toponym_by_region": self.toponym_by_region,
        }
        if self.spherical:
            arrays["toponym_by_region_coordinate"] = self.toponym_by_region_coordinate
            arrays["region_direction_sum"] = self.region_direction_sum
        return arrays

    def resize_regions(self, new_capacity: int) -> None:
        for name, arr in self.region_arrays().items():
            setattr(self, name, expand_region_axis(arr, new_capacity, REGION_AXES[name]))

    # ------------------------------------------------------------------ updates
    def add_token(
        self,
        w: int,
        d: int,
        r: int,
        *,
        toponym: bool = False,
        slot: int = -1,
        xyz: Optional[np.ndarray] = None,
        delta: int = 1,
    ) -> None:
        update_word(
            self.word_by_region, self.region_by_document, self.all_words_by_region,
            w, d, r, delta,
        )
        if toponym:
            self.toponym_by_region[r] += delta
            if self.spherical and slot >= 0:
                update_coordinate(
                    self.toponym_by_region_coordinate, self.region_direction_sum,
                    xyz, r, slot, delta,
                )

    def remove_token(self, w: int, d: int, r: int, **kwargs) -> None:
        self.add_token(w, d, r, delta=-1, **kwargs)

    # ------------------------------------------------------------------ checks
    @classmethod
    def from_assignments(
        cls,
        tokens,
        region: np.ndarray,
        capacity: int,
        coord_index: Optional[np.ndarray] = None,
        lexicon=None,
    ) -> "RegionStatistics":
        """Recount every table from scratch; used to audit incremental updates."""
        spherical = lexicon is not None
        stats = cls(
            tokens.W, tokens.D, capacity,
            coordinate_slots=lexicon.total if spherical else None,
        )
        live = ~tokens.is_stopword
        w, d, r = tokens.word[live], tokens.doc[live], region[live]
        np.add.at(stats.word_by_region, (w, r), 1)
        np.add.at(stats.region_by_document, (d, r), 1)
        np.add.at(stats.all_words_by_region, r, 1)

        topo = live & tokens.is_toponym
        np.add.at(stats.toponym_by_region, region[topo], 1)
        if spherical:
            slots = lexicon.offsets[tokens.word[topo]] + coord_index[topo]
            np.add.at(stats.toponym_by_region_coordinate, (region[topo], slots), 1)
            np.add.at(stats.region_direction_sum, region[topo], lexicon.xyz[slots])
        return stats

    def row_totals(self) -> Dict[str, np.ndarray]:
        """Per-region token totals as seen by each table; all entries agree when consistent."""
        return {
            "word_by_region": self.word_by_region.sum(axis=0),
            "region_by_document": self.region_by_document.sum(axis=0),
            "all_words_by_region": self.all_words_by_region.copy(),
        }

    def check_consistency(
        self,
        tokens,
        region: np.ndarray,
        coord_index: Optional[np.ndarray] = None,
        lexicon=None,
        atol: float = 1e-8,
    ) -> bool:
        totals = self.row_totals()
        reference = totals.pop("all_words_by_region")
        if any(not np.array_equal(t, reference) for t in totals.values()):
            return False
        recount = RegionStatistics.from_assignments(
            tokens, region, self.capacity, coord_index=coord_index, lexicon=lexicon
        )
        return self.matches(recount, atol=atol)

    def matches(self, other: "RegionStatistics", atol: float = 1e-8) -> bool:
        mine, theirs = self.region_arrays(), other.region_arrays()
        if mine.keys() != theirs.keys():
            return False
        for name, arr in mine.items():
            if arr.shape != theirs[name].shape:
                return False
            if arr.dtype.kind == "f":
                if not np.allclose(arr, theirs[name], atol=atol):
                    return False
            elif not np.array_equal(arr, theirs[name]):
                return False
        return True


__all__ = [
    "REGION_AXES",
    "RegionCapacity",
    "RegionStatistics",
    "expand_region_axis",
    "update_word",
    "update_coordinate",
]

"""
Spherical region model: regions are created on demand by a Chinese
Restaurant Process and carry a mean direction on the sphere.

Toponym tokens jointly sample a region ``j`` and one of their candidate
coordinates ``k``:

    p(j, k) ~ n[d, j] * exp(kappa * (x_k . mu_j - 1))     for occupied j
    p(j, k) ~ crp_alpha / K                              for the new-region slot

where ``mu_j`` is the normalized sum of the unit vectors of the coordinates
currently assigned to region ``j``. Non-toponym tokens are sampled as in the
discrete model, restricted to occupied regions.

Region ids live in ``[0, current_region_count)``. An id whose last toponym
leaves becomes EMPTY and is the first to be reused; the lowest EMPTY id (or,
if none, the fresh id ``current_region_count``) is the NEXT_SLOT that receives
the CRP mass. Non-toponym tokens left in a region when it empties are
resampled into the occupied regions straight away, so EMPTY ids and the
NEXT_SLOT hold no counts. The region axis of every table has ``capacity``
slots and grows through ``RegionCapacity`` before it can run out.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Set, Tuple

import numpy as np
from numba import njit

from . import utils
from .annealer import MaximumPosteriorDecoder, anneal_probs
from .corpus import CoordinateLexicon, TokenArrays, require_rows
from .errors import ConfigurationError, SamplingDegenerate
from .region_model import RegionModelBase, RegionModelParams, _pick_cumulative, _pick_max
from .spherical import spherical_density, xyz_to_latlon
from .statistics import RegionStatistics, expand_region_axis, update_coordinate, update_word

logger = logging.getLogger(__name__)

# Stored region states. NEXT_SLOT is not stored; it is tracked as an id.
INACTIVE = 0
OCCUPIED = 1
EMPTY = 2

# Kernel exit status
_DONE = 0
_CAPACITY = 1
_DEGENERATE = 2
_REFILL = 3

# Indices into the kernels' shared counter array
_CURRENT = 0
_NEXT = 1
_DEGENERATE_COUNT = 2
_POOL = 3
_MOVED = 4


class RegionState(IntEnum):
    INACTIVE = INACTIVE
    OCCUPIED = OCCUPIED
    EMPTY = EMPTY
    NEXT_SLOT = 3


###############################################################################
# Kernels
###############################################################################


@njit(cache=True)
def _lowest_empty(region_state: np.ndarray, current_count: int) -> int:
    for j in range(current_count):
        if region_state[j] == EMPTY:
            return j
    return current_count


@njit(cache=True)
def _has_occupied(region_state: np.ndarray, current_count: int) -> bool:
    for j in range(current_count):
        if region_state[j] == OCCUPIED:
            return True
    return False


@njit(cache=True)
def _move_residual_words(
    old: int,
    current: int,
    word: np.ndarray,
    doc: np.ndarray,
    is_toponym: np.ndarray,
    is_stopword: np.ndarray,
    alpha: float,
    beta: float,
    beta_w: float,
    temperature_reciprocal: float,
    reset_pool: np.ndarray,
    region: np.ndarray,
    word_by_region: np.ndarray,
    region_by_document: np.ndarray,
    all_words_by_region: np.ndarray,
    region_state: np.ndarray,
    counters: np.ndarray,
    probs: np.ndarray,
    moved: np.ndarray,
) -> bool:
    """
    Resample every non-toponym token left in emptied region ``old`` over the
    occupied regions, one ``reset_pool`` draw per token.

    Moved token ids are appended to ``moved`` (count in ``counters[_MOVED]``)
    so the caller can undo them. Returns False on a degenerate score vector.
    """
    for t in range(word.shape[0]):
        if all_words_by_region[old] == 0:
            break
        if region[t] != old or is_stopword[t] or is_toponym[t]:
            continue
        w = word[t]
        d = doc[t]
        for j in range(current):
            if region_state[j] == OCCUPIED:
                probs[j] = (
                    (word_by_region[w, j] + beta)
                    / (all_words_by_region[j] + beta_w)
                    * (region_by_document[d, j] + alpha)
                )
            else:
                probs[j] = 0.0
        total = anneal_probs(probs, current, temperature_reciprocal)
        if not (total > 0.0) or not math.isfinite(total):
            return False
        u = reset_pool[counters[_POOL]]
        counters[_POOL] += 1
        r = _pick_cumulative(probs, current, u * total)
        update_word(word_by_region, region_by_document, all_words_by_region, w, d, old, -1)
        update_word(word_by_region, region_by_document, all_words_by_region, w, d, r, 1)
        region[t] = r
        moved[counters[_MOVED]] = t
        counters[_MOVED] += 1
    return True


@njit(cache=True)
def _undo_moves(
    old: int,
    n_moved: int,
    moved: np.ndarray,
    word: np.ndarray,
    doc: np.ndarray,
    region: np.ndarray,
    word_by_region: np.ndarray,
    region_by_document: np.ndarray,
    all_words_by_region: np.ndarray,
) -> None:
    for m in range(n_moved):
        t = moved[m]
        w = word[t]
        d = doc[t]
        update_word(word_by_region, region_by_document, all_words_by_region, w, d, region[t], -1)
        update_word(word_by_region, region_by_document, all_words_by_region, w, d, old, 1)
        region[t] = old


@njit(cache=True)
def _merge_residual_words(
    old: int,
    target: int,
    word: np.ndarray,
    doc: np.ndarray,
    is_toponym: np.ndarray,
    is_stopword: np.ndarray,
    region: np.ndarray,
    word_by_region: np.ndarray,
    region_by_document: np.ndarray,
    all_words_by_region: np.ndarray,
) -> None:
    for t in range(word.shape[0]):
        if all_words_by_region[old] == 0:
            break
        if region[t] != old or is_stopword[t] or is_toponym[t]:
            continue
        w = word[t]
        d = doc[t]
        update_word(word_by_region, region_by_document, all_words_by_region, w, d, old, -1)
        update_word(word_by_region, region_by_document, all_words_by_region, w, d, target, 1)
        region[t] = target


@njit(cache=True)
def _init_toponyms_kernel(
    start: int,
    word: np.ndarray,
    doc: np.ndarray,
    is_toponym: np.ndarray,
    is_stopword: np.ndarray,
    lex_offsets: np.ndarray,
    xyz: np.ndarray,
    crp_alpha: float,
    u_region: np.ndarray,
    u_coord: np.ndarray,
    region: np.ndarray,
    coord_index: np.ndarray,
    word_by_region: np.ndarray,
    region_by_document: np.ndarray,
    all_words_by_region: np.ndarray,
    toponym_by_region: np.ndarray,
    toponym_by_region_coordinate: np.ndarray,
    region_direction_sum: np.ndarray,
    region_state: np.ndarray,
    counters: np.ndarray,
) -> int:
    """
    Seat toponym tokens ``start..N-1`` by CRP (mass 1 per occupied region,
    ``crp_alpha`` for a new one) with a uniform candidate coordinate.

    Returns N when done, or the next token when the fresh region id has run
    past the capacity.
    """
    capacity = region_state.shape[0]
    n_tokens = word.shape[0]
    for i in range(start, n_tokens):
        if is_stopword[i] or not is_toponym[i]:
            continue
        w = word[i]
        d = doc[i]
        current = counters[_CURRENT]

        draw = u_region[i - start] * (current + crp_alpha)
        j = current
        acc = 0.0
        for r in range(current):
            acc += 1.0
            if acc > draw:
                j = r
                break

        lo = lex_offsets[w]
        m = lex_offsets[w + 1] - lo
        k = min(int(u_coord[i - start] * m), m - 1)

        region[i] = j
        coord_index[i] = k
        update_word(word_by_region, region_by_document, all_words_by_region, w, d, j, 1)
        toponym_by_region[j] += 1
        update_coordinate(toponym_by_region_coordinate, region_direction_sum, xyz, j, lo + k, 1)

        if j == current:
            region_state[j] = OCCUPIED
            counters[_CURRENT] = current + 1
            counters[_NEXT] = current + 1
            if current + 1 >= capacity:
                return i + 1
    return n_tokens


@njit(cache=True)
def _init_words_kernel(
    word: np.ndarray,
    doc: np.ndarray,
    is_toponym: np.ndarray,
    is_stopword: np.ndarray,
    occupied: np.ndarray,
    u_region: np.ndarray,
    region: np.ndarray,
    word_by_region: np.ndarray,
    region_by_document: np.ndarray,
    all_words_by_region: np.ndarray,
) -> None:
    m = occupied.shape[0]
    for i in range(word.shape[0]):
        if is_stopword[i] or is_toponym[i]:
            continue
        r = occupied[min(int(u_region[i] * m), m - 1)]
        region[i] = r
        update_word(word_by_region, region_by_document, all_words_by_region, word[i], doc[i], r, 1)


@njit(cache=True)
def _sweep_kernel(
    start: int,
    stop: int,
    word: np.ndarray,
    doc: np.ndarray,
    is_toponym: np.ndarray,
    is_stopword: np.ndarray,
    lex_offsets: np.ndarray,
    xyz: np.ndarray,
    alpha: float,
    beta: float,
    beta_w: float,
    crp_alpha: float,
    kappa: float,
    temperature_reciprocal: float,
    uniforms: np.ndarray,
    region: np.ndarray,
    coord_index: np.ndarray,
    word_by_region: np.ndarray,
    region_by_document: np.ndarray,
    all_words_by_region: np.ndarray,
    toponym_by_region: np.ndarray,
    toponym_by_region_coordinate: np.ndarray,
    region_direction_sum: np.ndarray,
    region_state: np.ndarray,
    reset_flags: np.ndarray,
    counters: np.ndarray,
    probs: np.ndarray,
    cand_region: np.ndarray,
    cand_coord: np.ndarray,
    reset_pool: np.ndarray,
    moved: np.ndarray,
    retain_degenerate: bool,
) -> Tuple[int, int]:
    """
    Resample tokens ``start..stop-1``; ``uniforms[i - start]`` belongs to token i.

    When a toponym leaves its region empty, the non-toponym tokens still in
    that region are resampled over the other occupied regions before the
    toponym is scored, using draws from ``reset_pool``. With no other occupied
    region they follow the toponym to wherever it lands.

    Returns ``(next_token, status)``. On ``_CAPACITY`` the token before
    ``next_token`` opened a region and the next fresh id does not fit; on
    ``_REFILL`` token ``next_token`` is untouched and ``reset_pool`` has too
    few draws left for its region; on ``_DEGENERATE`` ``next_token`` is the
    offending token, already restored along with any tokens it displaced.
    """
    capacity = region_state.shape[0]
    for i in range(start, stop):
        if is_stopword[i]:
            continue
        w = word[i]
        d = doc[i]
        old = region[i]
        current = counters[_CURRENT]
        next_slot = counters[_NEXT]

        if (
            is_toponym[i]
            and toponym_by_region[old] == 1
            and reset_pool.shape[0] - counters[_POOL] < all_words_by_region[old] - 1
        ):
            return i, _REFILL

        update_word(word_by_region, region_by_document, all_words_by_region, w, d, old, -1)

        if is_toponym[i]:
            lo = lex_offsets[w]
            n_coords = lex_offsets[w + 1] - lo
            old_slot = lo + coord_index[i]
            toponym_by_region[old] -= 1
            update_coordinate(
                toponym_by_region_coordinate, region_direction_sum, xyz, old, old_slot, -1
            )
            emptied = toponym_by_region[old] == 0
            was_flagged = reset_flags[old]
            follow = False
            degenerate = False
            counters[_MOVED] = 0
            if emptied:
                region_state[old] = EMPTY
                for c in range(3):
                    region_direction_sum[old, c] = 0.0
                reset_flags[old] = True
                if old < next_slot:
                    next_slot = old
                if _has_occupied(region_state, current):
                    degenerate = not _move_residual_words(
                        old, current, word, doc, is_toponym, is_stopword,
                        alpha, beta, beta_w, temperature_reciprocal, reset_pool, region,
                        word_by_region, region_by_document, all_words_by_region,
                        region_state, counters, probs, moved,
                    )
                else:
                    follow = True

            n = 0
            total = 0.0
            if not degenerate:
                new_mass = crp_alpha / n_coords
                for j in range(current + 1):
                    if j == next_slot:
                        for k in range(n_coords):
                            probs[n] = new_mass
                            cand_region[n] = j
                            cand_coord[n] = k
                            n += 1
                    elif j < current and region_state[j] == OCCUPIED:
                        dj = region_by_document[d, j]
                        for k in range(n_coords):
                            probs[n] = dj * spherical_density(
                                xyz[lo + k], region_direction_sum[j], kappa
                            )
                            cand_region[n] = j
                            cand_coord[n] = k
                            n += 1
                total = anneal_probs(probs, n, temperature_reciprocal)
                degenerate = not (total > 0.0) or not math.isfinite(total)

            if degenerate:
                _undo_moves(
                    old, counters[_MOVED], moved, word, doc, region,
                    word_by_region, region_by_document, all_words_by_region,
                )
                update_word(word_by_region, region_by_document, all_words_by_region, w, d, old, 1)
                toponym_by_region[old] += 1
                update_coordinate(
                    toponym_by_region_coordinate, region_direction_sum, xyz, old, old_slot, 1
                )
                if emptied:
                    region_state[old] = OCCUPIED
                    reset_flags[old] = was_flagged
                counters[_DEGENERATE_COUNT] += 1
                if retain_degenerate:
                    continue
                return i, _DEGENERATE

            choice = _pick_cumulative(probs, n, uniforms[i - start] * total)
            j = cand_region[choice]
            k = cand_coord[choice]
            region[i] = j
            coord_index[i] = k
            update_word(word_by_region, region_by_document, all_words_by_region, w, d, j, 1)
            toponym_by_region[j] += 1
            update_coordinate(
                toponym_by_region_coordinate, region_direction_sum, xyz, j, lo + k, 1
            )
            if follow and j != old:
                _merge_residual_words(
                    old, j, word, doc, is_toponym, is_stopword, region,
                    word_by_region, region_by_document, all_words_by_region,
                )

            if j == next_slot:
                region_state[j] = OCCUPIED
                if j == current:
                    current += 1
                    counters[_CURRENT] = current
                next_slot = _lowest_empty(region_state, current)
            counters[_NEXT] = next_slot
            if next_slot >= capacity:
                return i + 1, _CAPACITY
        else:
            for j in range(current):
                if region_state[j] == OCCUPIED:
                    probs[j] = (
                        (word_by_region[w, j] + beta)
                        / (all_words_by_region[j] + beta_w)
                        * (region_by_document[d, j] + alpha)
                    )
                else:
                    probs[j] = 0.0

            total = anneal_probs(probs, current, temperature_reciprocal)
            if not (total > 0.0) or not math.isfinite(total):
                update_word(word_by_region, region_by_document, all_words_by_region, w, d, old, 1)
                counters[_DEGENERATE_COUNT] += 1
                if retain_degenerate:
                    continue
                return i, _DEGENERATE

            r = _pick_cumulative(probs, current, uniforms[i - start] * total)
            region[i] = r
            update_word(word_by_region, region_by_document, all_words_by_region, w, d, r, 1)
    return stop, _DONE


@njit(cache=True)
def _decode_kernel(
    word: np.ndarray,
    doc: np.ndarray,
    is_toponym: np.ndarray,
    is_stopword: np.ndarray,
    lex_offsets: np.ndarray,
    xyz: np.ndarray,
    alpha: float,
    beta: float,
    beta_w: float,
    kappa: float,
    num_regions: int,
    live: np.ndarray,
    word_by_region: np.ndarray,
    region_by_document: np.ndarray,
    all_words_by_region: np.ndarray,
    region_direction_sum: np.ndarray,
    region: np.ndarray,
    coord_index: np.ndarray,
    probs: np.ndarray,
    cand_region: np.ndarray,
    cand_coord: np.ndarray,
) -> int:
    unchanged = 0
    for i in range(word.shape[0]):
        if is_stopword[i]:
            continue
        w = word[i]
        d = doc[i]
        if is_toponym[i]:
            lo = lex_offsets[w]
            n_coords = lex_offsets[w + 1] - lo
            n = 0
            for j in range(num_regions):
                if not live[j]:
                    continue
                dj = region_by_document[d, j]
                for k in range(n_coords):
                    probs[n] = dj * spherical_density(xyz[lo + k], region_direction_sum[j], kappa)
                    cand_region[n] = j
                    cand_coord[n] = k
                    n += 1
            choice = _pick_max(probs, n)
            if choice < 0:
                unchanged += 1
            else:
                region[i] = cand_region[choice]
                coord_index[i] = cand_coord[choice]
        else:
            for j in range(num_regions):
                if live[j]:
                    probs[j] = (
                        (word_by_region[w, j] + beta)
                        / (all_words_by_region[j] + beta_w)
                        * (region_by_document[d, j] + alpha)
                    )
                else:
                    probs[j] = 0.0
            choice = _pick_max(probs, num_regions)
            if choice < 0:
                unchanged += 1
            else:
                region[i] = choice
    return unchanged


###############################################################################
# Model
###############################################################################


@dataclass
class SphericalParams(RegionModelParams):
    crp_alpha: float = 1.0
    kappa: float = 10.0
    initial_region_capacity: int = 10
    expansion_factor: float = 0.25

    def validate(self) -> None:
        super().validate()
        if not self.crp_alpha > 0.0:
            raise ConfigurationError(f"crp_alpha must be positive, got {self.crp_alpha}")
        if not self.kappa > 0.0:
            raise ConfigurationError(f"kappa must be positive, got {self.kappa}")
        if self.initial_region_capacity < 1:
            raise ConfigurationError("initial_region_capacity must be at least 1")
        if not self.expansion_factor > 0.0:
            raise ConfigurationError("expansion_factor must be positive")
        if self.restrict_init_to_document_regions:
            raise ConfigurationError(
                "restrict_init_to_document_regions needs a region filter; "
                "the spherical model has none"
            )


class SphericalRegionModel(RegionModelBase):
    """CRP region model over toponym coordinates on the sphere."""

    model_name = "spherical"

    def __init__(
        self,
        tokens: TokenArrays,
        lexicon: CoordinateLexicon,
        params: SphericalParams | None = None,
    ) -> None:
        params = params or SphericalParams()
        if lexicon.offsets.shape[0] - 1 < tokens.W:
            raise ConfigurationError(
                f"Coordinate lexicon covers {lexicon.offsets.shape[0] - 1} word ids, "
                f"vocabulary has {tokens.W}"
            )
        require_rows(tokens, lexicon.offsets, "coordinate")
        if tokens.sampled_toponym_words().size == 0:
            raise ConfigurationError("The spherical model needs at least one toponym token")
        self.lexicon = lexicon
        super().__init__(tokens, params, params.initial_region_capacity)

        capacity = self.capacity.capacity
        self.coord_index = np.full(tokens.N, -1, dtype=np.int64)
        self.decoded_coord_index: Optional[np.ndarray] = None
        self.region_state = np.zeros(capacity, dtype=np.int8)
        self.reset_flags = np.zeros(capacity, dtype=np.bool_)
        self._counters = np.zeros(5, dtype=np.int64)
        self._reset_pool = np.zeros(0, dtype=np.float64)
        self._moved = np.zeros(tokens.N, dtype=np.int64)
        self._n_residual = int((~tokens.is_stopword & ~tokens.is_toponym).sum())
        self._allocate_buffers(capacity)
        self.capacity.attach(self)

    def _make_statistics(self, capacity: int) -> RegionStatistics:
        return RegionStatistics(
            self.tokens.W, self.tokens.D, capacity, coordinate_slots=self.lexicon.total
        )

    def _allocate_buffers(self, capacity: int) -> None:
        size = (capacity + 1) * max(1, self.lexicon.max_candidates)
        self._probs = np.zeros(size, dtype=np.float64)
        self._cand_region = np.zeros(size, dtype=np.int64)
        self._cand_coord = np.zeros(size, dtype=np.int64)

    def resize_regions(self, new_capacity: int) -> None:
        self.region_state = expand_region_axis(self.region_state, new_capacity, 0)
        self.reset_flags = expand_region_axis(self.reset_flags, new_capacity, 0)
        self._allocate_buffers(new_capacity)

    # ------------------------------------------------------------------ region bookkeeping
    @property
    def current_region_count(self) -> int:
        return int(self._counters[_CURRENT])

    @property
    def next_slot(self) -> int:
        return int(self._counters[_NEXT])

    @property
    def num_regions(self) -> int:
        return self.current_region_count

    def region_states(self) -> np.ndarray:
        """State tag per region id up to the capacity, with NEXT_SLOT marked."""
        states = self.region_state.astype(np.int64)
        if self.next_slot < states.shape[0]:
            states[self.next_slot] = RegionState.NEXT_SLOT
        return states

    def empty_regions(self) -> Set[int]:
        ids = np.flatnonzero(self.region_state[: self.current_region_count] == EMPTY)
        return {int(r) for r in ids} | {self.next_slot}

    def _grow(self, needed: int) -> None:
        f = self.params.expansion_factor
        self.capacity.grow(max(math.ceil(self.capacity.capacity * (1 + f)), needed))

    def expand_if_needed(self) -> bool:
        """Grow the region axis when fewer than f/(1+f) of its slots are free."""
        expected = self.capacity.capacity
        current = self.current_region_count
        f = self.params.expansion_factor
        grew = False
        if expected - current < f / (1 + f) * expected:
            self._grow(current + 1)
            grew = True
        if self.next_slot >= self.capacity.capacity:
            self._grow(self.next_slot + 1)
            grew = True
        return grew

    def _refill_reset_pool(self) -> None:
        self._reset_pool = self.rand.uniforms(self._n_residual)
        self._counters[_POOL] = 0

    def _apply_resets(self) -> None:
        ids = np.flatnonzero(self.reset_flags)
        if ids.size:
            logger.debug("Resetting samples for %d emptied region(s)", ids.size)
            self.annealer.reset_regions(ids)
            self.reset_flags[:] = False

    # ------------------------------------------------------------------ sampling
    def random_initialize(self) -> None:
        t = self.tokens
        s = self.stats
        u_region = self.rand.uniforms(t.N)
        u_coord = self.rand.uniforms(t.N)

        start = 0
        while start < t.N:
            start = _init_toponyms_kernel(
                start, t.word, t.doc, t.is_toponym, t.is_stopword,
                self.lexicon.offsets, self.lexicon.xyz, self.params.crp_alpha,
                u_region[start:], u_coord[start:], self.region, self.coord_index,
                s.word_by_region, s.region_by_document, s.all_words_by_region,
                s.toponym_by_region, s.toponym_by_region_coordinate, s.region_direction_sum,
                self.region_state, self._counters,
            )
            if self.next_slot >= self.capacity.capacity:
                self._grow(self.next_slot + 1)

        occupied = np.flatnonzero(
            self.region_state[: self.current_region_count] == OCCUPIED
        ).astype(np.int64)
        _init_words_kernel(
            t.word, t.doc, t.is_toponym, t.is_stopword, occupied, u_region, self.region,
            s.word_by_region, s.region_by_document, s.all_words_by_region,
        )
        self.initialized = True
        logger.info("Initial seating opened %d regions", self.current_region_count)

    def resample_tokens(self, start: int, stop: int) -> int:
        """
        Resample tokens in ``[start, stop)``, growing capacity as regions open.

        Returns the number of retained degenerate draws.
        """
        t = self.tokens
        s = self.stats
        p = self.params
        if self.next_slot >= self.capacity.capacity:
            self._grow(self.next_slot + 1)

        uniforms = self.rand.uniforms(stop - start)
        self._counters[_DEGENERATE_COUNT] = 0
        pos = start
        while pos < stop:
            pos, status = _sweep_kernel(
                pos, stop, t.word, t.doc, t.is_toponym, t.is_stopword,
                self.lexicon.offsets, self.lexicon.xyz,
                p.alpha, p.beta, self.beta_w, p.crp_alpha, p.kappa,
                self.annealer.temperature_reciprocal, uniforms[pos - start :],
                self.region, self.coord_index,
                s.word_by_region, s.region_by_document, s.all_words_by_region,
                s.toponym_by_region, s.toponym_by_region_coordinate, s.region_direction_sum,
                self.region_state, self.reset_flags, self._counters,
                self._probs, self._cand_region, self._cand_coord,
                self._reset_pool, self._moved,
                p.degenerate_policy == "retain",
            )
            if status == _DEGENERATE:
                self._apply_resets()
                self.degenerate_draws += int(self._counters[_DEGENERATE_COUNT])
                raise SamplingDegenerate(pos)
            if status == _CAPACITY:
                self._grow(self.next_slot + 1)
            elif status == _REFILL:
                self._refill_reset_pool()

        self._apply_resets()
        degenerate = int(self._counters[_DEGENERATE_COUNT])
        self.degenerate_draws += degenerate
        return degenerate

    def train_sweep(self) -> int:
        if self.initialized:
            self.expand_if_needed()
        return super().train_sweep()

    # ------------------------------------------------------------------ decoding
    def decode(self) -> np.ndarray:
        """
        Maximum-posterior region and coordinate per token.

        Regions that never held a toponym in the averaged statistics are not
        candidates. Tokens whose every score is zero keep their assignment.
        """
        logger.info("Decoding maximum posterior regions and coordinates")
        post = self.posterior_statistics()
        k = self.current_region_count
        live = np.ascontiguousarray(post["toponym_by_region"][:k] > 0.0)
        t = self.tokens
        p = self.params
        decoded = self.region.copy()
        decoded_coord = self.coord_index.copy()
        decoder = MaximumPosteriorDecoder()
        while decoder.advance():
            unchanged = _decode_kernel(
                t.word, t.doc, t.is_toponym, t.is_stopword,
                self.lexicon.offsets, self.lexicon.xyz,
                p.alpha, p.beta, self.beta_w, p.kappa, k, live,
                post["word_by_region"], post["region_by_document"],
                post["all_words_by_region"], post["region_direction_sum"],
                decoded, decoded_coord,
                self._probs, self._cand_region, self._cand_coord,
            )
            if unchanged:
                logger.warning("%d token(s) had no positive decode score", unchanged)
        self.decoded_region = decoded
        self.decoded_coord_index = decoded_coord
        return decoded.copy()

    def region_means_latlon(self, averaged: bool = False) -> np.ndarray:
        """
        Mean direction of each region id below ``current_region_count`` as
        (lat, lon) degrees; regions without toponyms give NaN.
        """
        k = self.current_region_count
        if averaged and self.annealer.has_samples():
            sums = self.annealer.averaged_region_direction_sum()[:k]
        else:
            sums = self.stats.region_direction_sum[:k]
        return xyz_to_latlon(sums)

    def chosen_coordinates(self) -> np.ndarray:
        """(lat, lon) of each toponym token's current candidate; NaN elsewhere."""
        out = np.full((self.tokens.N, 2), np.nan, dtype=np.float64)
        mask = self.coord_index >= 0
        slots = self.lexicon.offsets[self.tokens.word[mask]] + self.coord_index[mask]
        out[mask] = self.lexicon.latlon[slots]
        return out

    def to_result(self) -> utils.SamplerResult:
        result = super().to_result()
        coord = self.coord_index if self.decoded_coord_index is None else self.decoded_coord_index
        result.coord_index = coord.copy()
        result.region_means = self.region_means_latlon(averaged=True)
        meta = result.ensure_meta()
        meta.update(
            {
                "crp_alpha": float(self.params.crp_alpha),
                "kappa": float(self.params.kappa),
                "capacity": int(self.capacity.capacity),
                "capacity_history": np.asarray(self.capacity.history, dtype=np.int64),
            }
        )
        return result


def run_model(
    tokens: TokenArrays,
    lexicon: CoordinateLexicon,
    params: SphericalParams | dict | None = None,
) -> utils.SamplerResult:
    """
    Train, decode and package a spherical region model.
    """
    if params is None:
        params = SphericalParams()
    elif isinstance(params, dict):
        params = SphericalParams.from_dict(params)

    model = SphericalRegionModel(tokens, lexicon, params)
    model.train()
    model.decode()
    return model.to_result()


__all__ = [
    "RegionState",
    "SphericalParams",
    "SphericalRegionModel",
    "run_model",
]

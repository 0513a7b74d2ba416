"""
Region topic model over a fixed set of gazetteer regions.

Every non-stopword token carries a region. Toponym tokens may only take the
regions their gazetteer entry allows (``ToponymRegionFilter``); other tokens
may take any region. Collapsed Gibbs sampling resamples one token at a time
from

    p(region = j) ~ (n[w, j] + beta) / (n[j] + beta * W) * (n[d, j] + alpha)

with the token's own contribution removed from the counts first.

Sweeps run inside numba kernels. Kernels never read entropy: the model draws
one uniform per token from its ``RandomSource`` and hands the array over.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, fields
from typing import Dict, Optional, Tuple

import numpy as np
from numba import njit

from . import utils
from .annealer import AnnealerParams, MaximumPosteriorDecoder, anneal_probs, make_annealer
from .corpus import TokenArrays, ToponymRegionFilter, require_rows
from .errors import ConfigurationError, SamplingDegenerate
from .statistics import RegionCapacity, RegionStatistics, update_word

logger = logging.getLogger(__name__)

DEGENERATE_POLICIES = ("raise", "retain")


###############################################################################
# Kernels
###############################################################################


@njit(cache=True)
def _pick_cumulative(probs: np.ndarray, n: int, draw: float) -> int:
    """
    First index whose running sum meets or exceeds ``draw``.

    Zero-score entries are never picked; if rounding leaves the draw above the
    final sum, the last positive entry wins.
    """
    acc = 0.0
    last_positive = -1
    for c in range(n):
        p = probs[c]
        if p > 0.0:
            acc += p
            last_positive = c
            if acc >= draw:
                return c
    return last_positive


@njit(cache=True)
def _pick_max(probs: np.ndarray, n: int) -> int:
    best = 0.0
    choice = -1
    for c in range(n):
        if probs[c] > best:
            best = probs[c]
            choice = c
    return choice


@njit(cache=True)
def _random_initialize_kernel(
    word: np.ndarray,
    doc: np.ndarray,
    is_toponym: np.ndarray,
    is_stopword: np.ndarray,
    filter_offsets: np.ndarray,
    filter_regions: np.ndarray,
    doc_offsets: np.ndarray,
    doc_regions: np.ndarray,
    num_regions: int,
    uniforms: np.ndarray,
    region: np.ndarray,
    word_by_region: np.ndarray,
    region_by_document: np.ndarray,
    all_words_by_region: np.ndarray,
    toponym_by_region: np.ndarray,
) -> None:
    """
    Uniform initial regions: toponyms over their filter row, other tokens over
    their document's allowed regions (``doc_regions`` row) or, when that row is
    empty, over all regions.
    """
    for i in range(word.shape[0]):
        if is_stopword[i]:
            region[i] = -1
            continue
        w = word[i]
        d = doc[i]
        u = uniforms[i]
        if is_toponym[i]:
            lo = filter_offsets[w]
            m = filter_offsets[w + 1] - lo
            r = filter_regions[lo + min(int(u * m), m - 1)]
            toponym_by_region[r] += 1
        else:
            lo = doc_offsets[d]
            m = doc_offsets[d + 1] - lo
            if m > 0:
                r = doc_regions[lo + min(int(u * m), m - 1)]
            else:
                r = min(int(u * num_regions), num_regions - 1)
        region[i] = r
        update_word(word_by_region, region_by_document, all_words_by_region, w, d, r, 1)


@njit(cache=True)
def _sweep_kernel(
    start: int,
    stop: int,
    word: np.ndarray,
    doc: np.ndarray,
    is_toponym: np.ndarray,
    is_stopword: np.ndarray,
    filter_offsets: np.ndarray,
    filter_regions: np.ndarray,
    num_regions: int,
    alpha: float,
    beta: float,
    beta_w: float,
    temperature_reciprocal: float,
    uniforms: np.ndarray,
    region: np.ndarray,
    word_by_region: np.ndarray,
    region_by_document: np.ndarray,
    all_words_by_region: np.ndarray,
    toponym_by_region: np.ndarray,
    probs: np.ndarray,
    retain_degenerate: bool,
) -> Tuple[int, int]:
    """
    Resample tokens ``start`` to ``stop - 1``.

    Returns ``(next_token, degenerate)``. ``next_token == stop`` unless a
    degenerate score vector stopped the scan (only when not retaining), in
    which case it is the offending token, already restored to its old region.
    """
    degenerate = 0
    for i in range(start, stop):
        if is_stopword[i]:
            continue
        w = word[i]
        d = doc[i]
        old = region[i]
        topo = is_toponym[i]

        update_word(word_by_region, region_by_document, all_words_by_region, w, d, old, -1)
        if topo:
            toponym_by_region[old] -= 1
            lo = filter_offsets[w]
            m = filter_offsets[w + 1] - lo
            for c in range(m):
                j = filter_regions[lo + c]
                probs[c] = (
                    (word_by_region[w, j] + beta)
                    / (all_words_by_region[j] + beta_w)
                    * (region_by_document[d, j] + alpha)
                )
        else:
            lo = 0
            m = num_regions
            for j in range(m):
                probs[j] = (
                    (word_by_region[w, j] + beta)
                    / (all_words_by_region[j] + beta_w)
                    * (region_by_document[d, j] + alpha)
                )

        total = anneal_probs(probs, m, temperature_reciprocal)
        if not (total > 0.0) or not math.isfinite(total):
            update_word(word_by_region, region_by_document, all_words_by_region, w, d, old, 1)
            if topo:
                toponym_by_region[old] += 1
            degenerate += 1
            if retain_degenerate:
                continue
            return i, degenerate

        choice = _pick_cumulative(probs, m, uniforms[i - start] * total)
        r = filter_regions[lo + choice] if topo else choice
        region[i] = r
        update_word(word_by_region, region_by_document, all_words_by_region, w, d, r, 1)
        if topo:
            toponym_by_region[r] += 1
    return stop, degenerate


@njit(cache=True)
def _decode_kernel(
    word: np.ndarray,
    doc: np.ndarray,
    is_toponym: np.ndarray,
    is_stopword: np.ndarray,
    filter_offsets: np.ndarray,
    filter_regions: np.ndarray,
    num_regions: int,
    alpha: float,
    beta: float,
    beta_w: float,
    word_by_region: np.ndarray,
    region_by_document: np.ndarray,
    all_words_by_region: np.ndarray,
    region: np.ndarray,
    probs: np.ndarray,
) -> int:
    """Arg-max region per token from fixed (averaged) statistics. Returns tokens left unchanged."""
    unchanged = 0
    for i in range(word.shape[0]):
        if is_stopword[i]:
            continue
        w = word[i]
        d = doc[i]
        if is_toponym[i]:
            lo = filter_offsets[w]
            m = filter_offsets[w + 1] - lo
            for c in range(m):
                j = filter_regions[lo + c]
                probs[c] = (
                    (word_by_region[w, j] + beta)
                    / (all_words_by_region[j] + beta_w)
                    * (region_by_document[d, j] + alpha)
                )
            choice = _pick_max(probs, m)
            if choice < 0:
                unchanged += 1
            else:
                region[i] = filter_regions[lo + choice]
        else:
            for j in range(num_regions):
                probs[j] = (
                    (word_by_region[w, j] + beta)
                    / (all_words_by_region[j] + beta_w)
                    * (region_by_document[d, j] + alpha)
                )
            choice = _pick_max(probs, num_regions)
            if choice < 0:
                unchanged += 1
            else:
                region[i] = choice
    return unchanged


###############################################################################
# Configuration and shared model plumbing
###############################################################################


@dataclass
class RegionModelParams:
    """Hyperparameters, annealing schedule and run controls."""

    alpha: float = 0.1
    beta: float = 0.1
    initial_temperature: float = 1.0
    target_temperature: float = 1.0
    burn_in_iterations: int = 100
    sampling_iterations: int = 50
    sample_lag: int = 1
    schedule: str = "auto"
    seed: int = 1  # 0 = time-derived
    restrict_init_to_document_regions: bool = False
    degenerate_policy: str = "raise"
    log_every: int = 10

    @classmethod
    def from_dict(cls, config: Dict | None) -> "RegionModelParams":
        config = dict(config or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(config) - known)
        if unknown:
            raise ConfigurationError(f"Unknown parameters: {', '.join(unknown)}")
        return cls(**config)

    def annealer_params(self) -> AnnealerParams:
        return AnnealerParams(
            initial_temperature=self.initial_temperature,
            target_temperature=self.target_temperature,
            burn_in_iterations=self.burn_in_iterations,
            sampling_iterations=self.sampling_iterations,
            sample_lag=self.sample_lag,
            schedule=self.schedule,
        )

    def validate(self) -> None:
        if not self.alpha > 0.0 or not self.beta > 0.0:
            raise ConfigurationError(
                f"Smoothing constants must be positive (alpha={self.alpha}, beta={self.beta})"
            )
        if self.degenerate_policy not in DEGENERATE_POLICIES:
            raise ConfigurationError(
                f"Unknown degenerate_policy '{self.degenerate_policy}', "
                f"expected one of {DEGENERATE_POLICIES}"
            )
        self.annealer_params().validate()


class RegionModelBase:
    """
    Shared state and training loop.

    Subclasses provide ``random_initialize``, ``resample_tokens`` and
    ``decode``.
    """

    model_name = "base"

    def __init__(self, tokens: TokenArrays, params: RegionModelParams, capacity: int) -> None:
        params.validate()
        self.tokens = tokens
        self.params = params
        self.rand = utils.RandomSource(params.seed)
        self.annealer = make_annealer(params.annealer_params())
        self.beta_w = params.beta * tokens.W

        self.capacity = RegionCapacity(capacity)
        self.stats = self._make_statistics(capacity)
        self.capacity.attach(self.stats)
        self.capacity.attach(self.annealer)

        self.region = np.full(tokens.N, -1, dtype=np.int64)
        self.decoded_region: Optional[np.ndarray] = None
        self.initialized = False
        self.sweeps = 0
        self.degenerate_draws = 0

    def _make_statistics(self, capacity: int) -> RegionStatistics:
        return RegionStatistics(self.tokens.W, self.tokens.D, capacity)

    @property
    def num_regions(self) -> int:
        raise NotImplementedError

    # ------------------------------------------------------------------ sampling
    def random_initialize(self) -> None:
        raise NotImplementedError

    def resample_tokens(self, start: int, stop: int) -> int:
        raise NotImplementedError

    def train_sweep(self) -> int:
        """One full pass over all tokens. Returns the number of degenerate draws retained."""
        if not self.initialized:
            raise RuntimeError("Model has not been initialized. Call random_initialize() first.")
        degenerate = self.resample_tokens(0, self.tokens.N)
        self.sweeps += 1
        if degenerate:
            logger.warning(
                "Sweep %d kept %d token(s) in place after all-zero scores",
                self.sweeps, degenerate,
            )
        return degenerate

    def _check_degenerate(self, next_token: int, stop: int, degenerate: int) -> None:
        self.degenerate_draws += degenerate
        if next_token < stop:
            raise SamplingDegenerate(next_token)

    def train(self, max_sweeps: Optional[int] = None) -> int:
        """
        Initialize (if needed) and run the annealer's sweeps.

        Stops early after ``max_sweeps`` sweeps; the annealer keeps its place,
        so calling ``train`` again resumes the schedule.
        """
        tokens = self.tokens
        if not self.initialized:
            logger.info(
                "Randomly initializing %s model with %d tokens, %d words, %d regions, %d documents",
                self.model_name, tokens.N, tokens.W, self.num_regions, tokens.D,
            )
            self.random_initialize()

        logger.info(
            "Beginning training: %d burn-in + %d sampling iterations",
            self.params.burn_in_iterations, self.params.sampling_iterations,
        )
        done = 0
        while self.annealer.advance():
            self.train_sweep()
            self.annealer.collect_samples(self.stats)
            done += 1
            if self.params.log_every and self.sweeps % self.params.log_every == 0:
                logger.info(
                    "[%s] iteration %d/%d, %s, T=%.4f, regions=%d",
                    self.model_name, self.annealer.iteration + 1,
                    self.annealer.total_iterations, self.annealer.state.value,
                    self.annealer.temperature, self.num_regions,
                )
            else:
                logger.debug("[%s] sweep %d done", self.model_name, self.sweeps)
            if max_sweeps is not None and done >= max_sweeps:
                break
        return done

    # ------------------------------------------------------------------ decoding
    def posterior_statistics(self) -> Dict[str, np.ndarray]:
        """Averaged sample statistics, or the live counts when nothing was sampled."""
        if self.annealer.has_samples():
            return {name: self.annealer.averaged(name) for name in self.stats.region_arrays()}
        logger.info("No posterior samples collected; decoding from the current counts")
        return {
            name: arr.astype(np.float64) for name, arr in self.stats.region_arrays().items()
        }

    def decode(self) -> np.ndarray:
        raise NotImplementedError

    def to_result(self) -> utils.SamplerResult:
        post = self.posterior_statistics()
        k = self.num_regions
        meta = {
            "model": self.model_name,
            "num_tokens": int(self.tokens.N),
            "vocabulary_size": int(self.tokens.W),
            "document_count": int(self.tokens.D),
            "num_regions": int(k),
            "alpha": float(self.params.alpha),
            "beta": float(self.params.beta),
            "seed": int(self.rand.seed),
            "sweeps": int(self.sweeps),
            "samples": int(self.annealer.samples),
            "degenerate_draws": int(self.degenerate_draws),
        }
        return utils.SamplerResult(
            region=(self.region if self.decoded_region is None else self.decoded_region).copy(),
            word_by_region=post["word_by_region"][:, :k],
            region_by_document=post["region_by_document"][:, :k],
            all_words_by_region=post["all_words_by_region"][:k],
            toponym_by_region=post["toponym_by_region"][:k],
            meta=meta,
        )


###############################################################################
# Discrete model
###############################################################################


def _document_region_rows(
    tokens: TokenArrays, region_filter: ToponymRegionFilter
) -> Tuple[np.ndarray, np.ndarray]:
    """CSR rows of the regions allowed by any toponym in each document."""
    mask = tokens.is_toponym & ~tokens.is_stopword
    words = tokens.word[mask]
    docs = tokens.doc[mask]
    lengths = region_filter.offsets[words + 1] - region_filter.offsets[words]
    pair_docs = np.repeat(docs, lengths)
    starts = np.repeat(region_filter.offsets[words], lengths)
    within = np.arange(lengths.sum()) - np.repeat(np.cumsum(lengths) - lengths, lengths)
    pair_regions = region_filter.regions[starts + within]

    pairs = np.unique(pair_docs * region_filter.num_regions + pair_regions)
    row_docs = pairs // region_filter.num_regions
    counts = np.bincount(row_docs, minlength=tokens.D).astype(np.int64)
    offsets = np.zeros(tokens.D + 1, dtype=np.int64)
    np.cumsum(counts, out=offsets[1:])
    return offsets, (pairs % region_filter.num_regions).astype(np.int64)


class DiscreteRegionModel(RegionModelBase):
    """
    Gibbs sampler over the fixed region set of a ``ToponymRegionFilter``.

    Toponym tokens whose word has an empty filter row cannot be placed
    anywhere and are rejected at construction.
    """

    model_name = "discrete"

    def __init__(
        self,
        tokens: TokenArrays,
        region_filter: ToponymRegionFilter,
        params: RegionModelParams | None = None,
    ) -> None:
        params = params or RegionModelParams()
        if region_filter.num_regions < 1:
            raise ConfigurationError("The region filter defines no regions")
        if region_filter.offsets.shape[0] - 1 < tokens.W:
            raise ConfigurationError(
                f"Region filter covers {region_filter.offsets.shape[0] - 1} word ids, "
                f"vocabulary has {tokens.W}"
            )
        require_rows(tokens, region_filter.offsets, "region filter")
        self.region_filter = region_filter
        self.R = region_filter.num_regions
        super().__init__(tokens, params, self.R)
        self._probs = np.zeros(self.R, dtype=np.float64)

        if params.restrict_init_to_document_regions:
            self._doc_offsets, self._doc_regions = _document_region_rows(tokens, region_filter)
        else:
            self._doc_offsets = np.zeros(tokens.D + 1, dtype=np.int64)
            self._doc_regions = np.zeros(0, dtype=np.int64)

    @property
    def num_regions(self) -> int:
        return self.R

    def random_initialize(self) -> None:
        t = self.tokens
        s = self.stats
        _random_initialize_kernel(
            t.word, t.doc, t.is_toponym, t.is_stopword,
            self.region_filter.offsets, self.region_filter.regions,
            self._doc_offsets, self._doc_regions, self.R,
            self.rand.uniforms(t.N), self.region,
            s.word_by_region, s.region_by_document, s.all_words_by_region, s.toponym_by_region,
        )
        self.initialized = True

    def resample_tokens(self, start: int, stop: int) -> int:
        """Resample tokens in ``[start, stop)``; returns retained degenerate draws."""
        t = self.tokens
        s = self.stats
        next_token, degenerate = _sweep_kernel(
            start, stop,
            t.word, t.doc, t.is_toponym, t.is_stopword,
            self.region_filter.offsets, self.region_filter.regions, self.R,
            self.params.alpha, self.params.beta, self.beta_w,
            self.annealer.temperature_reciprocal,
            self.rand.uniforms(stop - start), self.region,
            s.word_by_region, s.region_by_document, s.all_words_by_region, s.toponym_by_region,
            self._probs, self.params.degenerate_policy == "retain",
        )
        self._check_degenerate(next_token, stop, degenerate)
        return degenerate

    def decode(self) -> np.ndarray:
        """Maximum-posterior region per token from the averaged statistics."""
        logger.info("Decoding maximum posterior regions")
        decoder = MaximumPosteriorDecoder()
        post = self.posterior_statistics()
        t = self.tokens
        decoded = self.region.copy()
        while decoder.advance():
            unchanged = _decode_kernel(
                t.word, t.doc, t.is_toponym, t.is_stopword,
                self.region_filter.offsets, self.region_filter.regions, self.R,
                self.params.alpha, self.params.beta, self.beta_w,
                post["word_by_region"], post["region_by_document"], post["all_words_by_region"],
                decoded, self._probs,
            )
            if unchanged:
                logger.warning("%d token(s) had no positive decode score", unchanged)
        self.decoded_region = decoded
        return decoded.copy()


def run_model(
    tokens: TokenArrays,
    region_filter: ToponymRegionFilter,
    params: RegionModelParams | dict | None = None,
) -> utils.SamplerResult:
    """
    Train, decode and package a discrete region model.
    """
    if params is None:
        params = RegionModelParams()
    elif isinstance(params, dict):
        params = RegionModelParams.from_dict(params)

    model = DiscreteRegionModel(tokens, region_filter, params)
    model.train()
    model.decode()
    return model.to_result()


__all__ = [
    "RegionModelParams",
    "RegionModelBase",
    "DiscreteRegionModel",
    "run_model",
]

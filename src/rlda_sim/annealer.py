"""
Annealing schedule and posterior sample accumulation.

An annealer drives the outer Gibbs loop:

    while annealer.advance():
        model.train_sweep()
        annealer.collect_samples(model.stats)

It moves through three states. While BURNING_IN the temperature is
interpolated from ``initial_temperature`` to ``target_temperature`` and no
samples are kept. While SAMPLING the temperature sits at the target and the
statistics after every ``sample_lag``-th sweep are added to running sums.
DONE is terminal and ``advance`` returns False.

Scores are annealed by raising them to ``1 / T``. At ``T = 1`` this is the
identity; below 1 it sharpens the distribution and above 1 it flattens it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional

import numpy as np
from numba import njit

from .errors import CapacityError, ConfigurationError
from .statistics import REGION_AXES, RegionStatistics, expand_region_axis

logger = logging.getLogger(__name__)

EPSILON = 1e-6
SCHEDULES = ("auto", "empty", "simulated")


class AnnealerState(Enum):
    BURNING_IN = "burning-in"
    SAMPLING = "sampling"
    DONE = "done"


@njit(cache=True)
def anneal_probs(probs: np.ndarray, n: int, temperature_reciprocal: float) -> float:
    """
    Anneal the first ``n`` scores in place and return their total.

    Scores are divided by their maximum before exponentiation so the largest
    one becomes exactly 1 and cannot underflow.
    """
    total = 0.0
    if temperature_reciprocal == 1.0:
        for j in range(n):
            total += probs[j]
        return total

    peak = 0.0
    for j in range(n):
        if probs[j] > peak:
            peak = probs[j]
    if peak <= 0.0:
        return 0.0
    for j in range(n):
        p = (probs[j] / peak) ** temperature_reciprocal
        probs[j] = p
        total += p
    return total


@dataclass
class AnnealerParams:
    initial_temperature: float = 1.0
    target_temperature: float = 1.0
    burn_in_iterations: int = 100
    sampling_iterations: int = 50
    sample_lag: int = 1
    schedule: str = "auto"

    def validate(self) -> None:
        if self.schedule not in SCHEDULES:
            raise ConfigurationError(
                f"Unknown annealing schedule '{self.schedule}', expected one of {SCHEDULES}"
            )
        if self.initial_temperature <= 0.0 or self.target_temperature <= 0.0:
            raise ConfigurationError("Temperatures must be positive")
        if self.burn_in_iterations < 0 or self.sampling_iterations < 0:
            raise ConfigurationError("Iteration counts must be non-negative")
        if self.sample_lag < 1:
            raise ConfigurationError("sample_lag must be at least 1")
        if (
            self.schedule == "simulated"
            and abs(self.initial_temperature - self.target_temperature) < EPSILON
        ):
            raise ConfigurationError(
                "Simulated annealing requested but initial and target temperatures are equal"
            )


class Annealer:
    """
    Base annealer: state machine, temperature, and running sample sums.

    Subclasses decide the burn-in temperature via ``_burn_in_temperature``.
    """

    def __init__(self, params: AnnealerParams) -> None:
        params.validate()
        self.params = params
        self.iteration = -1
        self.state = AnnealerState.BURNING_IN
        self.temperature = params.initial_temperature
        self.samples = 0
        self._sums: Dict[str, np.ndarray] = {}

    # ------------------------------------------------------------------ schedule
    @property
    def total_iterations(self) -> int:
        return self.params.burn_in_iterations + self.params.sampling_iterations

    @property
    def temperature_reciprocal(self) -> float:
        return 1.0 / self.temperature

    def _burn_in_temperature(self, iteration: int) -> float:
        raise NotImplementedError

    def advance(self) -> bool:
        """Start the next outer iteration. Returns False once the budget is spent."""
        if self.state is AnnealerState.DONE:
            return False

        self.iteration += 1
        previous = self.state
        burn_in = self.params.burn_in_iterations

        if self.iteration >= self.total_iterations:
            self.state = AnnealerState.DONE
            logger.info(
                "Annealing finished after %d iterations, %d samples collected",
                self.iteration, self.samples,
            )
            return False

        if self.iteration < burn_in:
            self.state = AnnealerState.BURNING_IN
            self.temperature = self._burn_in_temperature(self.iteration)
        else:
            self.state = AnnealerState.SAMPLING
            self.temperature = self.params.target_temperature

        if self.state is not previous:
            logger.info(
                "Annealer entering %s at iteration %d (temperature %.4f)",
                self.state.value, self.iteration, self.temperature,
            )
        return True

    def anneal(self, probs: np.ndarray, n: Optional[int] = None) -> float:
        """Anneal ``probs[:n]`` in place at the current temperature."""
        if n is None:
            n = probs.shape[0]
        return anneal_probs(probs, n, self.temperature_reciprocal)

    # ------------------------------------------------------------------ samples
    def is_sample_iteration(self) -> bool:
        if self.state is not AnnealerState.SAMPLING:
            return False
        return (self.iteration - self.params.burn_in_iterations) % self.params.sample_lag == 0

    def collect_samples(self, stats: RegionStatistics) -> bool:
        """Add the current statistics to the running sums when this iteration is sampled."""
        if not self.is_sample_iteration():
            return False
        arrays = stats.region_arrays()
        if not self._sums:
            self._sums = {
                name: np.zeros(arr.shape, dtype=np.float64) for name, arr in arrays.items()
            }
        for name, arr in arrays.items():
            self._sums[name] += arr
        self.samples += 1
        return True

    def resize_regions(self, new_capacity: int) -> None:
        try:
            for name, arr in self._sums.items():
                self._sums[name] = expand_region_axis(arr, new_capacity, REGION_AXES[name])
        except MemoryError as exc:
            raise CapacityError(
                f"Could not grow sample buffers to {new_capacity} regions"
            ) from exc

    def reset_regions(self, region_ids: Iterable[int]) -> None:
        """Forget accumulated samples for regions whose cluster was discarded."""
        ids = np.asarray(list(region_ids), dtype=np.int64)
        if ids.size == 0 or not self._sums:
            return
        for name, arr in self._sums.items():
            if REGION_AXES[name] == 0:
                arr[ids] = 0.0
            else:
                arr[:, ids] = 0.0

    def averaged(self, name: str) -> np.ndarray:
        if self.samples == 0:
            raise RuntimeError("No samples have been collected yet")
        return self._sums[name] / self.samples

    def has_samples(self) -> bool:
        return self.samples > 0

    def averaged_word_by_region(self) -> np.ndarray:
        return self.averaged("word_by_region")

    def averaged_region_by_document(self) -> np.ndarray:
        return self.averaged("region_by_document")

    def averaged_all_words_by_region(self) -> np.ndarray:
        return self.averaged("all_words_by_region")

    def averaged_toponym_by_region(self) -> np.ndarray:
        return self.averaged("toponym_by_region")

    def averaged_region_direction_sum(self) -> np.ndarray:
        return self.averaged("region_direction_sum")


class EmptyAnnealer(Annealer):
    """No annealing: the temperature stays at the target for the whole run."""

    def __init__(self, params: AnnealerParams) -> None:
        super().__init__(params)
        self.temperature = params.target_temperature

    def _burn_in_temperature(self, iteration: int) -> float:
        return self.params.target_temperature


class SimulatedAnnealer(Annealer):
    """Linear temperature ramp over the burn-in; the last burn-in sweep runs at target."""

    def _burn_in_temperature(self, iteration: int) -> float:
        steps = self.params.burn_in_iterations - 1
        if steps <= 0:
            return self.params.target_temperature
        frac = iteration / steps
        start = self.params.initial_temperature
        return start + (self.params.target_temperature - start) * frac


class MaximumPosteriorDecoder(Annealer):
    """
    Zero-temperature pass for decoding.

    Scores are used as they are, the caller takes the arg-max, and nothing is
    ever accumulated. ``advance`` allows exactly one pass.
    """

    def __init__(self) -> None:
        super().__init__(
            AnnealerParams(burn_in_iterations=0, sampling_iterations=1, schedule="empty")
        )
        self.temperature = 1.0

    def _burn_in_temperature(self, iteration: int) -> float:
        return 1.0

    @property
    def temperature_reciprocal(self) -> float:
        return 1.0

    def collect_samples(self, stats: RegionStatistics) -> bool:
        return False


def make_annealer(params: AnnealerParams) -> Annealer:
    """Pick the annealer for ``params.schedule`` ("auto" decides from the temperatures)."""
    params.validate()
    if params.schedule == "empty":
        return EmptyAnnealer(params)
    if params.schedule == "simulated":
        return SimulatedAnnealer(params)
    if abs(params.initial_temperature - params.target_temperature) < EPSILON:
        return EmptyAnnealer(params)
    return SimulatedAnnealer(params)


__all__ = [
    "AnnealerState",
    "AnnealerParams",
    "Annealer",
    "EmptyAnnealer",
    "SimulatedAnnealer",
    "MaximumPosteriorDecoder",
    "anneal_probs",
    "make_annealer",
]

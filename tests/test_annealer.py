"""
Unit tests for the annealing schedule and sample accumulation.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from rlda_sim.annealer import (
    AnnealerParams,
    AnnealerState,
    EmptyAnnealer,
    MaximumPosteriorDecoder,
    SimulatedAnnealer,
    anneal_probs,
    make_annealer,
)
from rlda_sim.errors import ConfigurationError
from rlda_sim.statistics import RegionCapacity, RegionStatistics


def test_anneal_probs_identity_at_unit_temperature():
    """At T = 1 the scores are untouched and the plain sum comes back."""
    probs = np.array([0.2, 3.0, 0.0, 1.5])
    before = probs.copy()
    total = anneal_probs(probs, 4, 1.0)
    assert np.array_equal(probs, before)
    assert total == pytest.approx(4.7)


def test_anneal_probs_sharpens_below_unit_temperature():
    """Scores are divided by the maximum then raised to 1/T."""
    probs = np.array([1.0, 2.0, 4.0, 99.0])
    total = anneal_probs(probs, 3, 2.0)
    assert np.allclose(probs[:3], [0.0625, 0.25, 1.0])
    assert probs[3] == 99.0  # beyond n
    assert total == pytest.approx(1.3125)


def test_anneal_probs_all_zero():
    probs = np.zeros(3)
    assert anneal_probs(probs, 3, 0.5) == 0.0
    assert anneal_probs(probs, 3, 1.0) == 0.0


def test_state_machine_runs_exact_budget():
    """advance() is True burn_in + sampling times, then DONE for good."""
    annealer = make_annealer(AnnealerParams(burn_in_iterations=3, sampling_iterations=2))
    states = []
    while annealer.advance():
        states.append(annealer.state)
    assert states == [AnnealerState.BURNING_IN] * 3 + [AnnealerState.SAMPLING] * 2
    assert annealer.state is AnnealerState.DONE
    assert annealer.advance() is False


def test_zero_iterations_is_done_immediately():
    annealer = make_annealer(AnnealerParams(burn_in_iterations=0, sampling_iterations=0))
    assert annealer.advance() is False
    assert annealer.state is AnnealerState.DONE


def test_simulated_linear_ramp_reaches_target_in_burn_in():
    params = AnnealerParams(
        initial_temperature=5.0,
        target_temperature=1.0,
        burn_in_iterations=5,
        sampling_iterations=2,
    )
    annealer = make_annealer(params)
    assert isinstance(annealer, SimulatedAnnealer)
    temps = []
    while annealer.advance():
        temps.append(annealer.temperature)
    assert np.allclose(temps, [5.0, 4.0, 3.0, 2.0, 1.0, 1.0, 1.0])


def test_single_burn_in_iteration_runs_at_target():
    params = AnnealerParams(
        initial_temperature=3.0, target_temperature=0.5, burn_in_iterations=1, sampling_iterations=1
    )
    annealer = make_annealer(params)
    annealer.advance()
    assert annealer.temperature == pytest.approx(0.5)
    assert annealer.temperature_reciprocal == pytest.approx(2.0)


def test_empty_annealer_pins_target():
    params = AnnealerParams(
        initial_temperature=4.0,
        target_temperature=2.0,
        burn_in_iterations=3,
        sampling_iterations=1,
        schedule="empty",
    )
    annealer = make_annealer(params)
    assert isinstance(annealer, EmptyAnnealer)
    while annealer.advance():
        assert annealer.temperature == 2.0


def test_auto_schedule_with_equal_temperatures_is_empty():
    annealer = make_annealer(AnnealerParams(initial_temperature=1.0, target_temperature=1.0))
    assert isinstance(annealer, EmptyAnnealer)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"schedule": "simulated"},
        {"initial_temperature": 0.0},
        {"target_temperature": -1.0},
        {"burn_in_iterations": -1},
        {"sample_lag": 0},
        {"schedule": "cosine"},
    ],
)
def test_invalid_annealer_params(kwargs):
    with pytest.raises(ConfigurationError):
        make_annealer(AnnealerParams(**kwargs))


def _stats_with_counts():
    stats = RegionStatistics(vocabulary_size=2, document_count=1, capacity=2)
    stats.add_token(0, 0, 1)
    stats.add_token(1, 0, 1, toponym=True)
    stats.add_token(1, 0, 0)
    return stats


def test_collect_samples_respects_state_and_lag():
    """Only SAMPLING iterations on the lag grid add to the sums."""
    params = AnnealerParams(burn_in_iterations=2, sampling_iterations=5, sample_lag=2)
    annealer = make_annealer(params)
    stats = _stats_with_counts()
    collected = []
    while annealer.advance():
        collected.append(annealer.collect_samples(stats))
    assert collected == [False, False, True, False, True, False, True]
    assert annealer.samples == 3
    assert np.allclose(annealer.averaged_word_by_region(), stats.word_by_region)
    assert np.allclose(annealer.averaged_toponym_by_region(), [0.0, 1.0])


def test_averaged_without_samples_raises():
    annealer = make_annealer(AnnealerParams())
    assert not annealer.has_samples()
    with pytest.raises(RuntimeError):
        annealer.averaged_all_words_by_region()


def test_reset_and_resize_sample_sums():
    """Emptied regions lose their history; growth keeps the rest."""
    params = AnnealerParams(burn_in_iterations=0, sampling_iterations=1)
    annealer = make_annealer(params)
    stats = _stats_with_counts()
    capacity = RegionCapacity(2)
    capacity.attach(stats)
    capacity.attach(annealer)
    annealer.advance()
    annealer.collect_samples(stats)

    annealer.reset_regions([1])
    assert np.allclose(annealer.averaged_all_words_by_region(), [1.0, 0.0])
    assert np.allclose(annealer.averaged_word_by_region()[:, 1], 0.0)

    capacity.grow(4)
    averaged = annealer.averaged_all_words_by_region()
    assert averaged.shape == (4,)
    assert np.allclose(averaged, [1.0, 0.0, 0.0, 0.0])
    assert annealer.averaged_region_by_document().shape == (1, 4)


def test_maximum_posterior_decoder_single_pass():
    decoder = MaximumPosteriorDecoder()
    assert decoder.advance() is True
    assert decoder.temperature_reciprocal == 1.0
    assert decoder.collect_samples(_stats_with_counts()) is False
    probs = np.array([0.3, 0.7])
    assert decoder.anneal(probs) == pytest.approx(1.0)
    assert decoder.advance() is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

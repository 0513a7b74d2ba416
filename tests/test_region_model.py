"""
Tests for the discrete region model.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from rlda_sim import utils
from rlda_sim.corpus import TokenArrays, ToponymRegionFilter
from rlda_sim.errors import ConfigurationError, SamplingDegenerate
from rlda_sim.region_model import DiscreteRegionModel, RegionModelParams, run_model


def small_corpus():
    """Two documents, a stopword, and toponyms with one and two candidate regions."""
    tokens = TokenArrays.from_columns(
        word=[0, 1, 2, 5, 3, 4, 0, 1, 2, 3, 4, 1],
        doc=[0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1],
        is_toponym=[1, 0, 0, 0, 1, 1, 1, 0, 0, 1, 1, 0],
        is_stopword=[0, 0, 0, 1, 0, 0, 0, 0, 0, 0, 0, 0],
    )
    region_filter = ToponymRegionFilter.from_lists(
        {0: [0, 2], 3: [1], 4: [1, 2]}, tokens.W, num_regions=3
    )
    return tokens, region_filter


def separable_corpus():
    """
    Three documents over two regions with disjoint vocabularies.

    Words 0-4 and toponym 10 belong to region 0; words 5-9 and toponym 11 to
    region 1. Documents 0 and 2 are about region 0, document 1 about region 1.
    """
    word, doc, topo, truth = [], [], [], []
    plan = [(0, 0, range(0, 5), 10), (1, 1, range(5, 10), 11), (2, 0, range(0, 5), 10)]
    for d, r, vocab, toponym in plan:
        for _ in range(5):
            word.append(toponym)
            doc.append(d)
            topo.append(1)
            truth.append(r)
        for _ in range(4):
            for w in vocab:
                word.append(w)
                doc.append(d)
                topo.append(0)
                truth.append(r)
    tokens = TokenArrays.from_columns(word=word, doc=doc, is_toponym=topo)
    region_filter = ToponymRegionFilter.from_lists({10: [0], 11: [1]}, tokens.W, num_regions=2)
    return tokens, region_filter, np.array(truth)


def params(**kwargs):
    base = dict(burn_in_iterations=5, sampling_iterations=5, seed=11, log_every=0)
    base.update(kwargs)
    return RegionModelParams(**base)


def test_random_initialize_respects_filter_and_stopwords():
    tokens, region_filter = small_corpus()
    model = DiscreteRegionModel(tokens, region_filter, params())
    model.random_initialize()

    assert model.region[3] == -1
    for i in np.flatnonzero(tokens.is_toponym):
        assert model.region[i] in region_filter.candidates(tokens.word[i])
    live = ~tokens.is_stopword
    assert np.all((model.region[live] >= 0) & (model.region[live] < 3))
    assert model.stats.check_consistency(tokens, model.region)


def test_single_token_resample_conserves_counts():
    """Each remove/add step leaves every table consistent with the assignments."""
    tokens, region_filter = small_corpus()
    model = DiscreteRegionModel(tokens, region_filter, params())
    model.random_initialize()
    model.annealer.advance()
    n_live = int((~tokens.is_stopword).sum())
    for i in range(tokens.N):
        model.resample_tokens(i, i + 1)
        assert model.stats.check_consistency(tokens, model.region)
        assert model.stats.all_words_by_region.sum() == n_live
        assert model.stats.toponym_by_region.sum() == int(tokens.is_toponym.sum())


def test_sweeps_keep_occupancy_consistent():
    tokens, region_filter = small_corpus()
    model = DiscreteRegionModel(tokens, region_filter, params(initial_temperature=3.0))
    model.random_initialize()
    while model.annealer.advance():
        model.train_sweep()
        model.annealer.collect_samples(model.stats)
        assert model.stats.check_consistency(tokens, model.region)
        for i in np.flatnonzero(tokens.is_toponym):
            assert model.region[i] in region_filter.candidates(tokens.word[i])
    assert model.sweeps == 10
    assert model.annealer.samples == 5


def test_pinned_toponym_never_moves():
    """A toponym whose filter holds a single region always sits in it."""
    tokens, region_filter = small_corpus()
    model = DiscreteRegionModel(tokens, region_filter, params(burn_in_iterations=20))
    model.train()
    pinned = np.flatnonzero(tokens.word == 3)
    assert np.all(model.region[pinned] == 1)
    decoded = model.decode()
    assert np.all(decoded[pinned] == 1)


def test_equal_seeds_are_deterministic():
    tokens, region_filter = small_corpus()
    a = DiscreteRegionModel(tokens, region_filter, params(seed=5))
    b = DiscreteRegionModel(tokens, region_filter, params(seed=5))
    a.train()
    b.train()
    assert np.array_equal(a.region, b.region)
    assert np.array_equal(a.decode(), b.decode())
    assert np.allclose(
        a.annealer.averaged_word_by_region(), b.annealer.averaged_word_by_region()
    )


def test_train_resumes_after_max_sweeps():
    tokens, region_filter = small_corpus()
    model = DiscreteRegionModel(tokens, region_filter, params())
    assert model.train(max_sweeps=3) == 3
    assert model.annealer.iteration == 2
    assert model.train() == 7
    assert model.sweeps == 10
    assert model.train() == 0


def test_decode_recovers_separable_regions():
    """100 burn-in and 50 sampling sweeps; decoding matches the planted regions."""
    tokens, region_filter, truth = separable_corpus()
    model = DiscreteRegionModel(
        tokens,
        region_filter,
        params(alpha=0.1, beta=0.1, burn_in_iterations=100, sampling_iterations=50, seed=3),
    )
    model.train()
    decoded = model.decode()
    assert np.mean(decoded == truth) >= 0.9


def test_decode_does_not_touch_statistics():
    tokens, region_filter = small_corpus()
    model = DiscreteRegionModel(tokens, region_filter, params())
    model.train()
    before = {k: v.copy() for k, v in model.stats.region_arrays().items()}
    region_before = model.region.copy()
    decoded = model.decode()
    for name, arr in model.stats.region_arrays().items():
        assert np.array_equal(arr, before[name])
    assert np.array_equal(model.region, region_before)
    assert decoded[3] == -1
    for i in np.flatnonzero(tokens.is_toponym):
        assert decoded[i] in region_filter.candidates(tokens.word[i])


def test_decode_without_samples_uses_live_counts():
    tokens, region_filter = small_corpus()
    model = DiscreteRegionModel(tokens, region_filter, params())
    model.random_initialize()
    decoded = model.decode()
    assert decoded.shape == (tokens.N,)
    assert np.all(decoded[~tokens.is_stopword] >= 0)


def test_restricted_initialization_uses_document_regions():
    single = TokenArrays.from_columns(
        word=[0, 1, 1, 2, 1], doc=[0, 0, 0, 1, 1], is_toponym=[1, 0, 0, 0, 0]
    )
    filt = ToponymRegionFilter.from_lists({0: [2]}, single.W, num_regions=4)
    model = DiscreteRegionModel(single, filt, params(restrict_init_to_document_regions=True))
    model.random_initialize()
    assert np.all(model.region[:3] == 2)
    assert np.all((model.region[3:] >= 0) & (model.region[3:] < 4))


def test_degenerate_scores_raise_and_restore():
    tokens, region_filter = small_corpus()
    model = DiscreteRegionModel(tokens, region_filter, params())
    model.random_initialize()
    before = model.region.copy()
    model.params.alpha = float("nan")
    model.annealer.advance()
    with pytest.raises(SamplingDegenerate) as excinfo:
        model.train_sweep()
    assert excinfo.value.token == 0
    assert np.array_equal(model.region, before)
    assert model.stats.check_consistency(tokens, model.region)


def test_degenerate_scores_retained():
    tokens, region_filter = small_corpus()
    model = DiscreteRegionModel(tokens, region_filter, params(degenerate_policy="retain"))
    model.random_initialize()
    before = model.region.copy()
    model.params.alpha = float("nan")
    model.annealer.advance()
    assert model.train_sweep() == int((~tokens.is_stopword).sum())
    assert np.array_equal(model.region, before)
    assert model.degenerate_draws == 11


def test_empty_filter_for_occurring_toponym():
    tokens, _ = small_corpus()
    region_filter = ToponymRegionFilter.from_lists({0: [0], 3: [1]}, tokens.W, num_regions=3)
    with pytest.raises(ConfigurationError):
        DiscreteRegionModel(tokens, region_filter, params())


@pytest.mark.parametrize(
    "kwargs",
    [{"alpha": 0.0}, {"beta": -1.0}, {"degenerate_policy": "ignore"}, {"schedule": "simulated"}],
)
def test_invalid_params(kwargs):
    tokens, region_filter = small_corpus()
    with pytest.raises(ConfigurationError):
        DiscreteRegionModel(tokens, region_filter, params(**kwargs))


def test_params_from_dict_rejects_unknown_keys():
    with pytest.raises(ConfigurationError):
        RegionModelParams.from_dict({"alpha": 0.1, "gamma": 2})
    assert RegionModelParams.from_dict(None) == RegionModelParams()


def test_run_model_result_round_trip(tmp_path):
    tokens, region_filter = small_corpus()
    result = run_model(tokens, region_filter, {"burn_in_iterations": 4, "sampling_iterations": 3, "seed": 2})
    assert result.meta["model"] == "discrete"
    assert result.meta["samples"] == 3
    assert result.word_by_region.shape == (tokens.W, 3)
    assert result.region_by_document.shape == (tokens.D, 3)
    assert result.coord_index is None

    path = tmp_path / "discrete.npz"
    utils.save_result(path, result)
    loaded = utils.load_result(path)
    assert np.array_equal(loaded.region, result.region)
    assert np.allclose(loaded.all_words_by_region, result.all_words_by_region)
    assert loaded.meta["seed"] == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""
Unit tests for random numbers, persistence and summaries.
"""

import json
import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from rlda_sim import utils


def test_random_source_is_reproducible():
    a = utils.RandomSource(123)
    b = utils.RandomSource(123)
    assert np.array_equal(a.uniforms(50), b.uniforms(50))
    assert a.next_uniform() == b.next_uniform()
    draws = a.uniforms(1000)
    assert draws.min() >= 0.0 and draws.max() < 1.0


def test_random_source_time_seed_is_recorded():
    rand = utils.RandomSource(0)
    assert rand.seed != 0
    replay = utils.RandomSource(rand.seed)
    assert np.array_equal(rand.uniforms(10), replay.uniforms(10))
    assert utils.RandomSource(None).seed != 0


def test_save_and_load_result(tmp_path):
    result = utils.SamplerResult(
        region=np.array([0, 1, -1]),
        word_by_region=np.array([[1.0, 0.5], [0.0, 2.0]]),
        meta={"model": "discrete", "seed": 7, "history": np.array([2, 3])},
    )
    path = tmp_path / "out" / "run.npz"
    utils.save_result(path, result)
    loaded = utils.load_result(path)

    assert np.array_equal(loaded.region, result.region)
    assert np.allclose(loaded.word_by_region, result.word_by_region)
    assert loaded.coord_index is None
    assert loaded.meta["model"] == "discrete"
    assert loaded.meta["seed"] == 7
    assert np.array_equal(loaded.meta["history"], [2, 3])

    with pytest.raises(FileExistsError):
        utils.save_result(path, result, overwrite=False)


def test_load_params_json_and_toml(tmp_path):
    json_path = tmp_path / "params.json"
    json_path.write_text(json.dumps({"alpha": 0.5, "burn_in_iterations": 20}))
    toml_path = tmp_path / "params.toml"
    toml_path.write_text('alpha = 0.5\nschedule = "simulated"\n')

    assert utils.load_params(json_path) == {"alpha": 0.5, "burn_in_iterations": 20}
    assert utils.load_params(toml_path) == {"alpha": 0.5, "schedule": "simulated"}

    with pytest.raises(ValueError):
        bad = tmp_path / "params.yaml"
        bad.write_text("alpha: 1")
        utils.load_params(bad)


def test_top_words_per_region():
    counts = np.array([[4.0, 0.0, 0.0], [1.0, 3.0, 0.0], [5.0, 1.0, 0.0]])
    tops = utils.top_words_per_region(counts, n=2)
    assert [w for w, _ in tops[0]] == [2, 0]
    assert tops[0][0][1] == pytest.approx(0.5)
    assert [w for w, _ in tops[1]] == [1, 2]
    assert tops[2] == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

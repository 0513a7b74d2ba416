"""
Unit tests for sampler inputs and their text readers.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from rlda_sim.corpus import (
    CoordinateLexicon,
    TokenArrays,
    ToponymRegionFilter,
    read_coordinates,
    read_region_filter,
    read_token_arrays,
    require_rows,
)
from rlda_sim.errors import ConfigurationError


def test_vocabulary_ignores_stopword_ids():
    tokens = TokenArrays.from_columns(
        word=[0, 7, 2, 1],
        doc=[0, 0, 1, 2],
        is_toponym=[0, 0, 1, 0],
        is_stopword=[0, 1, 0, 0],
    )
    assert tokens.N == 4
    assert tokens.W == 3
    assert tokens.D == 3
    assert tokens.is_stopword.dtype == np.bool_
    assert np.array_equal(tokens.sampled_toponym_words(), [2])


def test_column_length_mismatch():
    with pytest.raises(ConfigurationError):
        TokenArrays.from_columns(word=[0, 1], doc=[0], is_toponym=[0, 0])


def test_negative_ids_rejected():
    with pytest.raises(ConfigurationError):
        TokenArrays.from_columns(word=[0, -1], doc=[0, 0], is_toponym=[0, 0])


def test_explicit_vocabulary_too_small():
    with pytest.raises(ConfigurationError):
        TokenArrays.from_columns(word=[0, 4], doc=[0, 0], is_toponym=[0, 0], vocabulary_size=3)


def test_from_records_three_columns():
    records = np.array([[0, 0, 1], [1, 0, 0], [0, 1, 1]])
    tokens = TokenArrays.from_records(records)
    assert tokens.N == 3
    assert not tokens.is_stopword.any()
    with pytest.raises(ConfigurationError):
        TokenArrays.from_records(np.zeros((2, 5), dtype=np.int64))


def test_region_filter_rows_sorted_and_counted():
    filt = ToponymRegionFilter.from_lists({2: [3, 1, 3], 0: [0]}, vocabulary_size=4)
    assert filt.num_regions == 4
    assert np.array_equal(filt.candidates(2), [1, 3])
    assert filt.count(2) == 2
    assert filt.count(1) == 0
    assert filt.count(0) == 1
    assert np.array_equal(filt.offsets, [0, 1, 1, 3, 3])


def test_region_filter_out_of_range():
    with pytest.raises(ConfigurationError):
        ToponymRegionFilter.from_lists({0: [5]}, vocabulary_size=1, num_regions=3)
    with pytest.raises(ConfigurationError):
        ToponymRegionFilter.from_lists({4: [0]}, vocabulary_size=2)


def test_coordinate_lexicon_unit_vectors():
    lex = CoordinateLexicon.from_lists(
        {1: [(0.0, 0.0), (90.0, 0.0), (-33.9, 151.2)]}, vocabulary_size=3
    )
    assert lex.total == 3
    assert lex.max_candidates == 3
    assert lex.count(0) == 0
    assert np.allclose(np.linalg.norm(lex.xyz, axis=1), 1.0)
    assert np.allclose(lex.xyz[0], [1.0, 0.0, 0.0])
    assert np.allclose(lex.xyz[1], [0.0, 0.0, 1.0], atol=1e-12)
    assert np.allclose(lex.candidates(1)[2], [-33.9, 151.2])


def test_require_rows_reports_missing_entries():
    tokens = TokenArrays.from_columns(word=[0, 1, 2], doc=[0, 0, 0], is_toponym=[1, 1, 0])
    ok = ToponymRegionFilter.from_lists({0: [0], 1: [1]}, tokens.W)
    require_rows(tokens, ok.offsets, "region filter")

    missing = ToponymRegionFilter.from_lists({0: [0]}, tokens.W)
    with pytest.raises(ConfigurationError, match="no region filter"):
        require_rows(tokens, missing.offsets, "region filter")


def test_stopword_toponyms_need_no_rows():
    tokens = TokenArrays.from_columns(
        word=[0, 1], doc=[0, 0], is_toponym=[1, 1], is_stopword=[0, 1]
    )
    filt = ToponymRegionFilter.from_lists({0: [0]}, tokens.W)
    require_rows(tokens, filt.offsets, "region filter")


def test_text_readers(tmp_path):
    token_file = tmp_path / "tokens.txt"
    token_file.write_text("0 0 1 0\n1 0 0 0\n2 1 0 1\n0 1 1 0\n")
    filter_file = tmp_path / "filter.txt"
    filter_file.write_text("# word regions\n0 2 0\n")
    coord_file = tmp_path / "coords.txt"
    coord_file.write_text("0 10.0 20.0 -5.5 100.0\n")

    tokens = read_token_arrays(token_file)
    assert tokens.N == 4
    assert tokens.W == 2
    assert tokens.D == 2
    assert tokens.is_stopword[2]

    filt = read_region_filter(filter_file, tokens.W)
    assert np.array_equal(filt.candidates(0), [0, 2])
    assert filt.num_regions == 3

    lex = read_coordinates(coord_file, tokens.W)
    assert lex.count(0) == 2
    assert np.allclose(lex.candidates(0), [[10.0, 20.0], [-5.5, 100.0]])


def test_readers_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_token_arrays(tmp_path / "absent.txt")
    with pytest.raises(FileNotFoundError):
        read_region_filter(tmp_path / "absent.txt", 3)


def test_odd_coordinate_row(tmp_path):
    coord_file = tmp_path / "coords.txt"
    coord_file.write_text("0 10.0 20.0 30.0\n")
    with pytest.raises(ValueError):
        read_coordinates(coord_file, 1)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

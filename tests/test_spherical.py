"""
Unit tests for sphere geometry helpers.
"""

import math
import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from rlda_sim.spherical import (
    cosine_to_mean,
    latlon_to_xyz,
    mean_directions,
    spherical_density,
    xyz_to_latlon,
)


def test_latlon_to_xyz_axes():
    xyz = latlon_to_xyz(np.array([[0.0, 0.0], [0.0, 90.0], [90.0, 0.0]]))
    assert np.allclose(xyz, np.eye(3), atol=1e-12)


def test_xyz_to_latlon_recovers_degrees():
    latlon = np.array([[51.5, -0.13], [-33.87, 151.21]])
    back = xyz_to_latlon(3.0 * latlon_to_xyz(latlon))
    assert np.allclose(back, latlon)


def test_zero_vector_has_no_direction():
    out = xyz_to_latlon(np.zeros((1, 3)))
    assert np.isnan(out).all()


def test_mean_directions_normalizes_rows():
    sums = np.array([[2.0, 0.0, 0.0], [0.0, 0.0, 0.0], [1.0, 1.0, 0.0]])
    means = mean_directions(sums)
    assert np.allclose(means[0], [1.0, 0.0, 0.0])
    assert np.all(means[1] == 0.0)
    assert np.allclose(means[2], [math.sqrt(0.5), math.sqrt(0.5), 0.0])


def test_density_peaks_at_mean():
    x = np.array([0.0, 0.0, 1.0])
    assert spherical_density(x, np.array([0.0, 0.0, 5.0]), 10.0) == pytest.approx(1.0)
    opposite = spherical_density(x, np.array([0.0, 0.0, -2.0]), 10.0)
    assert opposite == pytest.approx(math.exp(-20.0))


def test_density_with_empty_sum():
    """A zero direction sum counts as orthogonal to every point."""
    x = np.array([1.0, 0.0, 0.0])
    empty = np.zeros(3)
    assert cosine_to_mean(x, empty) == 0.0
    assert spherical_density(x, empty, 3.0) == pytest.approx(math.exp(-3.0))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

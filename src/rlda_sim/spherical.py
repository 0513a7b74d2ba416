"""
Geometry on the unit sphere for the spherical region model.

Coordinates enter as (latitude, longitude) in degrees and are embedded as
3-D unit vectors. A region keeps the plain vector sum of its members'
embeddings; the mean direction is that sum normalized, computed only where a
score or an export needs it.

The density kernel is the von Mises-Fisher kernel without its normalizer:

    f(x; mu, kappa) = exp(kappa * (x . mu_hat - 1))

All regions share ``kappa``, so dropping the normalizer (and shifting the
exponent by ``-kappa`` to keep values in (0, 1]) leaves relative scores
unchanged.
"""

from __future__ import annotations

import math

import numpy as np
from numba import njit

DEG_TO_RAD = math.pi / 180.0
RAD_TO_DEG = 180.0 / math.pi


def latlon_to_xyz(latlon: np.ndarray) -> np.ndarray:
    """Map an (N, 2) array of degrees to (N, 3) unit vectors."""
    latlon = np.asarray(latlon, dtype=np.float64).reshape(-1, 2)
    lat = latlon[:, 0] * DEG_TO_RAD
    lon = latlon[:, 1] * DEG_TO_RAD
    cos_lat = np.cos(lat)
    return np.column_stack((cos_lat * np.cos(lon), cos_lat * np.sin(lon), np.sin(lat)))


def xyz_to_latlon(xyz: np.ndarray) -> np.ndarray:
    """
    Map (N, 3) vectors of any length to (N, 2) degrees.

    Zero vectors have no direction and come back as NaN.
    """
    unit = mean_directions(np.asarray(xyz, dtype=np.float64).reshape(-1, 3))
    out = np.full((unit.shape[0], 2), np.nan, dtype=np.float64)
    ok = np.any(unit != 0.0, axis=1)
    unit = unit[ok]
    out[ok, 0] = np.arcsin(np.clip(unit[:, 2], -1.0, 1.0)) * RAD_TO_DEG
    out[ok, 1] = np.arctan2(unit[:, 1], unit[:, 0]) * RAD_TO_DEG
    return out


def mean_directions(direction_sums: np.ndarray) -> np.ndarray:
    """Normalize each row of a direction-sum table; zero rows stay zero."""
    sums = np.asarray(direction_sums, dtype=np.float64)
    norms = np.linalg.norm(sums, axis=1, keepdims=True)
    return np.divide(sums, norms, out=np.zeros_like(sums), where=norms > 0.0)


@njit(cache=True)
def cosine_to_mean(x: np.ndarray, direction_sum: np.ndarray) -> float:
    """Cosine between unit vector ``x`` and the direction of ``direction_sum``."""
    norm_sq = (
        direction_sum[0] * direction_sum[0]
        + direction_sum[1] * direction_sum[1]
        + direction_sum[2] * direction_sum[2]
    )
    if norm_sq <= 0.0:
        return 0.0
    dot = x[0] * direction_sum[0] + x[1] * direction_sum[1] + x[2] * direction_sum[2]
    return dot / math.sqrt(norm_sq)


@njit(cache=True)
def spherical_density(x: np.ndarray, direction_sum: np.ndarray, kappa: float) -> float:
    """Unnormalized vMF density of ``x`` around the mean of ``direction_sum``."""
    return math.exp(kappa * (cosine_to_mean(x, direction_sum) - 1.0))


__all__ = [
    "latlon_to_xyz",
    "xyz_to_latlon",
    "mean_directions",
    "cosine_to_mean",
    "spherical_density",
]

"""
Region Topic Sampler - Collapsed Gibbs Sampling for Toponym Resolution

This package provides two region models:
- DiscreteRegionModel: fixed gazetteer regions, toponyms filtered per word
- SphericalRegionModel: CRP-grown regions with von Mises-Fisher coordinates

Both run under an Annealer (burn-in, sampling, done) and decode with the
averaged statistics.
"""

from .annealer import AnnealerParams, AnnealerState, MaximumPosteriorDecoder, make_annealer
from .corpus import CoordinateLexicon, TokenArrays, ToponymRegionFilter
from .errors import CapacityError, ConfigurationError, SamplingDegenerate
from .region_model import DiscreteRegionModel, RegionModelParams
from .spherical_model import RegionState, SphericalParams, SphericalRegionModel
from .statistics import RegionCapacity, RegionStatistics
from . import utils

__all__ = [
    # Models
    "DiscreteRegionModel",
    "SphericalRegionModel",
    # Configuration classes
    "RegionModelParams",
    "SphericalParams",
    "AnnealerParams",
    # Inputs
    "TokenArrays",
    "ToponymRegionFilter",
    "CoordinateLexicon",
    # Sampling machinery
    "AnnealerState",
    "MaximumPosteriorDecoder",
    "make_annealer",
    "RegionCapacity",
    "RegionStatistics",
    "RegionState",
    # Errors
    "ConfigurationError",
    "SamplingDegenerate",
    "CapacityError",
    # Utilities
    "utils",
]

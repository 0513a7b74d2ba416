#!/usr/bin/env python3
"""
Region Sampler Runner

Trains a discrete or spherical region model on pre-extracted token arrays,
decodes it, and saves the result as a compressed .npz file.
"""

import argparse
import logging
import sys
import time
from pathlib import Path

# Add package source to path
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from rlda_sim import (
    DiscreteRegionModel,
    RegionModelParams,
    SphericalParams,
    SphericalRegionModel,
    utils,
)
from rlda_sim.corpus import read_coordinates, read_region_filter, read_token_arrays
from rlda_sim.errors import ConfigurationError, SamplingDegenerate
from rlda_sim.logging_config import setup_logging

logger = logging.getLogger("run_sampler")


def build_params(args: argparse.Namespace):
    """Parameter file first, then any command-line overrides."""
    config = utils.load_params(args.params) if args.params else {}
    for key in ("alpha", "beta", "seed", "crp_alpha", "kappa"):
        value = getattr(args, key)
        if value is not None:
            config[key] = value
    if args.burn_in is not None:
        config["burn_in_iterations"] = args.burn_in
    if args.samples is not None:
        config["sampling_iterations"] = args.samples

    if args.model == "spherical":
        return SphericalParams.from_dict(config)
    for key in ("crp_alpha", "kappa", "initial_region_capacity", "expansion_factor"):
        config.pop(key, None)
    return RegionModelParams.from_dict(config)


def main():
    parser = argparse.ArgumentParser(
        description="Run a region topic sampler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--model",
        choices=["discrete", "spherical"],
        required=True,
        help="Region model to train",
    )
    parser.add_argument(
        "--tokens",
        type=str,
        required=True,
        help="Token array file: 'word doc toponym [stopword]' per line",
    )
    parser.add_argument(
        "--filter",
        type=str,
        default=None,
        help="Toponym region filter file (discrete model)",
    )
    parser.add_argument(
        "--coords",
        type=str,
        default=None,
        help="Toponym coordinate file (spherical model)",
    )
    parser.add_argument(
        "--regions",
        type=int,
        default=None,
        help="Number of regions in the filter (default: 1 + largest id)",
    )
    parser.add_argument("--params", type=str, default=None, help="JSON or TOML parameter file")
    parser.add_argument("--alpha", type=float, default=None)
    parser.add_argument("--beta", type=float, default=None)
    parser.add_argument("--crp-alpha", dest="crp_alpha", type=float, default=None)
    parser.add_argument("--kappa", type=float, default=None)
    parser.add_argument("--burn-in", dest="burn_in", type=int, default=None)
    parser.add_argument("--samples", type=int, default=None)
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed (0 = time-derived)",
    )
    parser.add_argument(
        "--out",
        type=str,
        default=None,
        help="Output .npz file path (auto-generated if not provided)",
    )
    parser.add_argument("--log-level", default="INFO")

    args = parser.parse_args()
    setup_logging(args.log_level)

    try:
        params = build_params(args)
        tokens = read_token_arrays(args.tokens)
        if args.model == "discrete":
            if args.filter is None:
                parser.error("--filter is required for the discrete model")
            region_filter = read_region_filter(args.filter, tokens.W, args.regions)
            model = DiscreteRegionModel(tokens, region_filter, params)
        else:
            if args.coords is None:
                parser.error("--coords is required for the spherical model")
            lexicon = read_coordinates(args.coords, tokens.W)
            model = SphericalRegionModel(tokens, lexicon, params)
    except ConfigurationError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    start_time = time.time()
    try:
        model.train()
    except SamplingDegenerate as exc:
        logger.error("Sampling stopped at token %d: %s", exc.token, exc)
        return 1
    model.decode()
    elapsed_time = time.time() - start_time

    result = model.to_result()
    result.ensure_meta()["time_elapsed"] = elapsed_time

    if args.out is None:
        timestamp = utils.now_str()
        output_dir = Path("results")
        output_dir.mkdir(exist_ok=True)
        args.out = str(output_dir / f"{args.model}_S{model.rand.seed}_{timestamp}.npz")

    utils.save_result(args.out, result)

    print("\nSampling completed.")
    print(f"   Time elapsed: {elapsed_time:.2f} seconds")
    print(f"   Tokens: {tokens.N}, regions: {model.num_regions}, seed: {model.rand.seed}")
    print(f"   Output saved to: {args.out}")

    return 0


if __name__ == "__main__":
    sys.exit(main())

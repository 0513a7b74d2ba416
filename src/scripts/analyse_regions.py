"""
Region summary for a saved sampler result.

Prints, for every region with at least one token, its size, toponym count,
mean coordinate (spherical results) and most probable words.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, Optional

import numpy as np

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from rlda_sim import utils  # type: ignore[import]


def read_vocabulary(path: Optional[str]) -> Dict[int, str]:
    """One word per line; the line number is the word id."""
    if path is None:
        return {}
    with open(path, "r", encoding="utf-8") as fh:
        return {i: line.strip() for i, line in enumerate(fh)}


def summarize_regions(result: utils.SamplerResult, top_n: int = 10) -> list[dict]:
    if result.word_by_region is None or result.all_words_by_region is None:
        raise ValueError("Result has no region statistics. Was it saved by run_sampler.py?")

    sizes = np.asarray(result.all_words_by_region, dtype=np.float64)
    toponyms = (
        np.asarray(result.toponym_by_region, dtype=np.float64)
        if result.toponym_by_region is not None
        else np.zeros_like(sizes)
    )
    tops = utils.top_words_per_region(result.word_by_region, n=top_n)

    rows = []
    for r in range(sizes.shape[0]):
        if sizes[r] <= 0.0:
            continue
        row = {
            "region": r,
            "tokens": float(sizes[r]),
            "toponyms": float(toponyms[r]),
            "top_words": tops[r],
        }
        if result.region_means is not None and r < len(result.region_means):
            row["mean"] = tuple(float(v) for v in result.region_means[r])
        rows.append(row)
    rows.sort(key=lambda row: -row["tokens"])
    return rows


def analyze_result(npz_path: str, top_n: int, vocab_path: Optional[str] = None) -> None:
    print(f"Loading {npz_path}...")
    result = utils.load_result(npz_path)
    vocab = read_vocabulary(vocab_path)
    meta = result.meta or {}
    print(
        f"Model: {meta.get('model', '?')}, regions: {meta.get('num_regions', '?')}, "
        f"samples: {meta.get('samples', '?')}, seed: {meta.get('seed', '?')}"
    )

    for row in summarize_regions(result, top_n):
        header = f"Region {row['region']}: {row['tokens']:.1f} tokens, {row['toponyms']:.1f} toponyms"
        if "mean" in row and np.all(np.isfinite(row["mean"])):
            header += f", mean ({row['mean'][0]:.3f}, {row['mean'][1]:.3f})"
        print(header)
        words = ", ".join(f"{vocab.get(w, w)}:{p:.3f}" for w, p in row["top_words"])
        print(f"    {words}")


def main():
    parser = argparse.ArgumentParser(description="Summarize the regions of a sampler result")
    parser.add_argument("input", type=str, help="Result .npz from run_sampler.py")
    parser.add_argument("--top", type=int, default=10, help="Words listed per region")
    parser.add_argument("--vocab", type=str, default=None, help="Vocabulary file, one word per line")
    args = parser.parse_args()

    if not Path(args.input).exists():
        print(f"Error: {args.input} not found", file=sys.stderr)
        return 1
    analyze_result(args.input, args.top, args.vocab)
    return 0


if __name__ == "__main__":
    sys.exit(main())

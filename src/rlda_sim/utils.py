# src/rlda_sim/utils.py
from __future__ import annotations

import json
import os
import time
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


@dataclass
class SamplerResult:
    """Common container for region sampler outputs."""

    region: Optional[np.ndarray] = None
    coord_index: Optional[np.ndarray] = None
    word_by_region: Optional[np.ndarray] = None
    region_by_document: Optional[np.ndarray] = None
    all_words_by_region: Optional[np.ndarray] = None
    toponym_by_region: Optional[np.ndarray] = None
    region_means: Optional[np.ndarray] = None
    meta: Optional[Dict[str, Any]] = None

    def ensure_meta(self) -> Dict[str, Any]:
        if self.meta is None:
            self.meta = {}
        return self.meta

    def arrays(self) -> Dict[str, np.ndarray]:
        out: Dict[str, np.ndarray] = {}
        for f in fields(self):
            if f.name == "meta":
                continue
            value = getattr(self, f.name)
            if value is not None:
                out[f.name] = np.asarray(value)
        return out


class RandomSource:
    """
    Seeded uniform random numbers for the samplers.

    ``seed=0`` (or ``None``) asks for a time-derived seed; the seed actually
    used is kept in ``self.seed`` so such a run can be replayed.
    """

    def __init__(self, seed: Optional[int] = 0) -> None:
        if not seed:
            seed = (time.time_ns() & 0xFFFFFFFF) or 1
        self.seed = int(seed)
        self._rng = np.random.Generator(np.random.PCG64(self.seed))

    def next_uniform(self) -> float:
        return float(self._rng.random())

    def uniforms(self, n: int) -> np.ndarray:
        """Draw ``n`` values in [0, 1) as a float64 array."""
        return self._rng.random(int(n))


def now_str() -> str:
    return time.strftime("%Y%m%d-%H%M%S")


def save_result(
    path: str | os.PathLike[str], result: SamplerResult, *, overwrite: bool = True
) -> None:
    """Serialize a SamplerResult to a compressed .npz file."""
    out_dir = Path(path).parent
    out_dir.mkdir(parents=True, exist_ok=True)
    out: Dict[str, Any] = result.arrays()

    meta = result.meta or {}
    meta_clean = {}
    for key, value in meta.items():
        if isinstance(value, np.ndarray):
            out[key] = value
        else:
            meta_clean[key] = value
    out["meta"] = meta_clean

    if not overwrite and Path(path).exists():
        raise FileExistsError(f"{path} already exists")
    np.savez_compressed(path, **out)


def load_result(path: str | os.PathLike[str]) -> SamplerResult:
    """
    Load a result .npz written by save_result.
    """
    data = np.load(path, allow_pickle=True)
    kwargs: Dict[str, Any] = {}
    for f in fields(SamplerResult):
        if f.name != "meta" and f.name in data:
            kwargs[f.name] = data[f.name]

    meta: Dict[str, Any] = {}
    if "meta" in data:
        meta_raw = data["meta"]
        try:
            meta = dict(meta_raw.item())
        except (ValueError, TypeError):
            meta = {}
    for key in data.files:
        if key != "meta" and key not in kwargs and key not in meta:
            meta[key] = data[key]

    return SamplerResult(meta=meta, **kwargs)


def load_params(path: str | os.PathLike[str]) -> Dict[str, Any]:
    """
    Load sampler parameters from JSON or TOML.
    """
    path = str(path)
    with open(path, "rb") as fh:
        data = fh.read()
    suffix = Path(path).suffix.lower()
    if suffix in {".json", ""}:
        return json.loads(data.decode("utf-8"))
    if suffix in {".toml", ".tml"}:
        return tomllib.loads(data.decode("utf-8"))
    raise ValueError(f"Unsupported parameter file format: {suffix}")


def top_words_per_region(
    word_by_region: np.ndarray, n: int = 10, num_regions: Optional[int] = None
) -> List[List[Tuple[int, float]]]:
    """
    Highest-probability words for each region column of ``word_by_region``.

    Returns one list per region of ``(word_id, p(word | region))`` pairs,
    most probable first. Regions with no words yield an empty list.
    """
    counts = np.asarray(word_by_region, dtype=np.float64)
    if num_regions is None:
        num_regions = counts.shape[1]
    tops: List[List[Tuple[int, float]]] = []
    for r in range(num_regions):
        column = counts[:, r]
        total = column.sum()
        if total <= 0.0:
            tops.append([])
            continue
        order = np.argsort(-column, kind="stable")[:n]
        tops.append([(int(w), float(column[w] / total)) for w in order if column[w] > 0])
    return tops

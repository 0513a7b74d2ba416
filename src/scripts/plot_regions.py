# src/scripts/plot_regions.py
import argparse
import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from rlda_sim import utils  # type: ignore[import]


def format_title(meta):
    """
    Format a title string with the run's key settings.

    Args:
        meta: Dictionary containing run metadata

    Returns:
        Formatted title string, or None without metadata
    """
    if not meta:
        return None

    model = meta.get("model", "?")
    parts = [
        f"Model={model}",
        f"regions={meta.get('num_regions', '?')}",
        f"seed={meta.get('seed', '?')}",
    ]
    if model == "spherical":
        kappa = meta.get("kappa")
        crp_alpha = meta.get("crp_alpha")
        if kappa is not None:
            parts.append(f"kappa={float(kappa):.1f}")
        if crp_alpha is not None:
            parts.append(f"crp_alpha={float(crp_alpha):.2f}")
    return " | ".join(parts)


def region_points(result):
    """
    Mean (lat, lon) and toponym weight of every region with a defined mean.

    Returns:
        tuple: (ids, lat, lon, weight) as numpy arrays
    """
    if result.region_means is None:
        raise ValueError("Result has no region means; only spherical runs can be plotted.")
    means = np.asarray(result.region_means, dtype=np.float64).reshape(-1, 2)
    if result.toponym_by_region is not None:
        weight = np.asarray(result.toponym_by_region, dtype=np.float64)[: means.shape[0]]
    else:
        weight = np.ones(means.shape[0], dtype=np.float64)

    valid = np.isfinite(means).all(axis=1) & (weight > 0.0)
    return np.flatnonzero(valid), means[valid, 0], means[valid, 1], weight[valid]


def render(result, title=None, output=None, cmap="viridis", dpi=150, annotate=True):
    """
    Scatter the region means on a longitude/latitude plane.

    Marker area follows the averaged toponym count of each region.
    """
    ids, lat, lon, weight = region_points(result)
    if lat.size == 0:
        print("No regions to render")
        return

    area = 20.0 + 380.0 * weight / weight.max()
    fig, ax = plt.subplots(figsize=(10, 5))
    sc = ax.scatter(lon, lat, s=area, c=weight, cmap=cmap, alpha=0.75, edgecolors="k", linewidths=0.5)
    fig.colorbar(sc, ax=ax, label="toponyms per region")
    if annotate:
        for r, x, y in zip(ids, lon, lat):
            ax.annotate(str(int(r)), (x, y), fontsize=7, ha="center", va="center")

    ax.set_xlim(-180.0, 180.0)
    ax.set_ylim(-90.0, 90.0)
    ax.set_xlabel("longitude")
    ax.set_ylabel("latitude")
    ax.grid(True, alpha=0.3)
    if title:
        ax.set_title(title)
    fig.tight_layout()

    if output:
        fig.savefig(output, dpi=dpi)
        print(f"Saved plot to {output}")
    plt.close(fig)


def main():
    parser = argparse.ArgumentParser(description="Plot region means of a spherical sampler result")
    parser.add_argument("input", type=str, help="Result .npz from run_sampler.py")
    parser.add_argument("--out", type=str, default=None, help="Output image path")
    parser.add_argument("--cmap", type=str, default="viridis")
    parser.add_argument("--dpi", type=int, default=150)
    parser.add_argument("--no-labels", action="store_true", help="Do not print region ids")
    args = parser.parse_args()

    result = utils.load_result(args.input)
    output = args.out or str(Path(args.input).with_suffix(".png"))
    render(
        result,
        title=format_title(result.meta),
        output=output,
        cmap=args.cmap,
        dpi=args.dpi,
        annotate=not args.no_labels,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())

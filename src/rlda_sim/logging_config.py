"""
Logging configuration for the command-line scripts.
The library itself only creates module loggers.
"""

from __future__ import annotations

import logging
import sys


def setup_logging(level: str | int = "INFO") -> None:
    """Human-readable logging to stdout."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # numba's compiler logs at DEBUG
    logging.getLogger("numba").setLevel(logging.WARNING)
    logging.getLogger("matplotlib").setLevel(logging.WARNING)

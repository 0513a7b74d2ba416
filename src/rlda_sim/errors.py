"""Exception types raised by the region samplers."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid parameters or inputs, detected before any sampling happens."""


class SamplingDegenerate(RuntimeError):
    """
    A token's score vector summed to zero (or was not finite) after annealing.

    The token is put back under its previous region before this is raised, so
    the statistics are consistent up to and including ``token``.
    """

    def __init__(self, token: int, message: str | None = None) -> None:
        self.token = int(token)
        super().__init__(
            message
            or f"All candidate regions scored zero for token {self.token}; "
            "check the toponym filter and smoothing constants"
        )


class CapacityError(RuntimeError):
    """Region capacity could not be changed; the count arrays are unusable."""


__all__ = ["ConfigurationError", "SamplingDegenerate", "CapacityError"]

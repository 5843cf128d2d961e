"""Target-shape bin tables used for miss-distance rejection sampling.

A :class:`DistributionBinTable` turns user supplied bin edges and relative
proportions into per-bin acceptance probabilities.  Only the ratios between
bins matter for rejection sampling, so the table is rescaled so that the most
probable bin is always accepted.  Two sentinel bins at ``-inf``/``+inf`` carry
a probability of zero so values outside the configured range are rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np


class BinTableError(ValueError):
    """Raised when bin edges and proportions do not describe a distribution."""


def _validated_inputs(
    bin_edges: Sequence[float], proportions: Sequence[float]
) -> tuple[np.ndarray, np.ndarray]:
    edges = np.asarray(bin_edges, dtype=float)
    props = np.asarray(proportions, dtype=float)

    if edges.ndim != 1 or props.ndim != 1:
        raise BinTableError("bin edges and proportions must be one-dimensional")
    if edges.size < 2:
        raise BinTableError("at least two bin edges are required")
    if props.size != edges.size - 1:
        raise BinTableError(
            f"expected {edges.size - 1} proportions for {edges.size} bin edges, got {props.size}"
        )
    if not np.all(np.isfinite(edges)):
        raise BinTableError("bin edges must be finite")
    if np.any(np.diff(edges) <= 0.0):
        raise BinTableError("bin edges must be strictly increasing")
    if np.any(~np.isfinite(props)) or np.any(props < 0.0):
        raise BinTableError("proportions must be finite and non-negative")
    if props.sum() <= 0.0:
        raise BinTableError("at least one proportion must be positive")
    return edges, props


def pdf_values(bin_edges: Sequence[float], proportions: Sequence[float]) -> np.ndarray:
    """Return the piecewise-constant density implied by ``proportions``."""

    edges, props = _validated_inputs(bin_edges, proportions)
    return (props / props.sum()) / np.diff(edges)


@dataclass(frozen=True)
class DistributionBinTable:
    """Acceptance probabilities per bin, padded with zero-probability sentinels."""

    edges: np.ndarray
    probabilities: np.ndarray
    density: np.ndarray

    def __post_init__(self) -> None:
        for name in ("edges", "probabilities", "density"):
            object.__setattr__(self, name, np.array(getattr(self, name), dtype=float))
        if len(self.probabilities) != len(self.edges) - 1:
            raise BinTableError("probabilities must have one entry fewer than edges")
        if self.probabilities[0] != 0.0 or self.probabilities[-1] != 0.0:
            raise BinTableError("sentinel bins must have zero acceptance probability")
        for arr in (self.edges, self.probabilities, self.density):
            arr.setflags(write=False)

    @property
    def finite_edges(self) -> np.ndarray:
        """Configured edges without the infinite sentinels."""

        return self.edges[1:-1]

    def bin_index(self, value: float) -> int:
        # First edge strictly greater than the value, minus one.
        idx = int(np.searchsorted(self.edges, value, side="right")) - 1
        return int(np.clip(idx, 0, len(self.probabilities) - 1))

    def acceptance_probability(self, value: float) -> float:
        if np.isnan(value):
            return 0.0
        return float(self.probabilities[self.bin_index(value)])

    def accepts(self, value: float, draw: float) -> bool:
        """Rejection-sampling test for a single uniform ``draw``."""

        prob = self.acceptance_probability(value)
        return prob > 0.0 and draw <= prob

    def importance_weight(self, value: float) -> float:
        prob = self.acceptance_probability(value)
        if prob <= 0.0:
            raise BinTableError(f"value {value} falls in a zero-probability bin")
        return 1.0 / prob


def build_bin_table(
    bin_edges: Sequence[float], proportions: Sequence[float]
) -> DistributionBinTable:
    """Build the acceptance table for a target miss-distance shape."""

    edges, _ = _validated_inputs(bin_edges, proportions)
    density = pdf_values(edges, proportions)
    widths = np.diff(edges)

    # Renormalise so the density integrates to exactly one.
    scale = 1.0 / float(np.sum(widths * density))
    cdf = np.concatenate([[0.0], np.cumsum(widths * density * scale)])
    bin_probs = np.diff(cdf)
    bin_probs = bin_probs / bin_probs.max()

    padded_edges = np.concatenate([[-np.inf], edges, [np.inf]])
    padded_probs = np.concatenate([[0.0], np.clip(bin_probs, 0.0, 1.0), [0.0]])

    return DistributionBinTable(
        edges=padded_edges,
        probabilities=padded_probs,
        density=density,
    )


__all__ = [
    "BinTableError",
    "DistributionBinTable",
    "build_bin_table",
    "pdf_values",
]

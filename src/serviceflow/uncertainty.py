"""
Uncertainty estimation for analysis inputs.

Each input layer gets an uncertainty score from its relative variability,
discounted by how spatially coherent it is:

    uncertainty = coefficient_of_variation * (1 - autocorrelation_peak)

A noisy but smooth layer is less uncertain than an equally variable layer
whose neighbouring cells disagree. The combined score is the Euclidean norm
of the per-layer scores, clamped to [0, 1].
"""

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
from scipy import ndimage

logger = logging.getLogger(__name__)

# Queen contiguity: all 8 neighbours, not the cell itself
QUEEN_KERNEL = np.array([[1.0, 1.0, 1.0], [1.0, 0.0, 1.0], [1.0, 1.0, 1.0]])

SHIFTS = ((0, 1), (1, 1), (1, 0), (1, -1), (0, -1), (-1, -1), (-1, 0), (-1, 1))


def coefficient_of_variation(values: np.ndarray) -> float:
    """std / |mean|, 0 when the mean is 0."""
    values = np.asarray(values, dtype=np.float64)
    mean = float(np.mean(values))
    if mean == 0:
        return 0.0
    return float(np.std(values) / abs(mean))


def _overlap(values: np.ndarray, dr: int, dc: int) -> tuple[np.ndarray, np.ndarray]:
    """Cells paired with their (dr, dc) neighbour, as two flat arrays."""
    rows, cols = values.shape
    r0, r1 = max(0, -dr), rows - max(0, dr)
    c0, c1 = max(0, -dc), cols - max(0, dc)
    here = values[r0:r1, c0:c1]
    there = values[r0 + dr : r1 + dr, c0 + dc : c1 + dc]
    return here.ravel(), there.ravel()


def autocorrelation_peak(values: np.ndarray) -> float:
    """
    Largest Pearson correlation between a grid and its eight one-cell shifts.

    Shifts with fewer than two overlapping cells or zero variance on either
    side contribute nothing. Result is clamped to [0, 1].
    """
    values = np.asarray(values, dtype=np.float64)
    peak = 0.0
    for dr, dc in SHIFTS:
        here, there = _overlap(values, dr, dc)
        if here.size < 2 or np.std(here) == 0 or np.std(there) == 0:
            continue
        correlation = float(np.corrcoef(here, there)[0, 1])
        if np.isfinite(correlation):
            peak = max(peak, correlation)
    return float(np.clip(peak, 0.0, 1.0))


def morans_i(values: np.ndarray) -> float:
    """
    Global Moran's I with binary queen-contiguity weights.

    Returns 0 for a constant grid.
    """
    values = np.asarray(values, dtype=np.float64)
    deviations = values - values.mean()
    denominator = float(np.sum(deviations**2))
    if denominator == 0:
        return 0.0

    lag = ndimage.convolve(deviations, QUEEN_KERNEL, mode="constant", cval=0.0)
    neighbour_counts = ndimage.convolve(np.ones_like(values), QUEEN_KERNEL, mode="constant", cval=0.0)
    total_weight = float(neighbour_counts.sum())
    if total_weight == 0:
        return 0.0

    return float((values.size / total_weight) * np.sum(deviations * lag) / denominator)


@dataclass(frozen=True)
class LayerUncertainty:
    """Uncertainty components for one input layer."""

    name: str
    coefficient_of_variation: float
    autocorrelation_peak: float
    morans_i: float
    uncertainty: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "coefficient_of_variation": self.coefficient_of_variation,
            "autocorrelation_peak": self.autocorrelation_peak,
            "morans_i": self.morans_i,
            "uncertainty": self.uncertainty,
        }


@dataclass(frozen=True)
class UncertaintyReport:
    """
    Per-layer and combined uncertainty for one analysis.

    Attributes:
        components: LayerUncertainty for supply, demand and resistance
        combined: Euclidean norm of component uncertainties, in [0, 1]
        threshold: uncertainty_threshold used for the flag
        exceeds_threshold: combined > threshold
    """

    components: tuple
    combined: float
    threshold: float
    exceeds_threshold: bool

    def component(self, name: str) -> LayerUncertainty:
        for layer in self.components:
            if layer.name == name:
                return layer
        raise KeyError(f"No uncertainty component '{name}'")

    def to_dict(self) -> dict[str, Any]:
        return {
            "components": [c.to_dict() for c in self.components],
            "combined": self.combined,
            "threshold": self.threshold,
            "exceeds_threshold": self.exceeds_threshold,
        }


class UncertaintyEstimator:
    """Builds an UncertaintyReport from the supply, demand and resistance grids."""

    def __init__(self, threshold: float = 0.5):
        self.threshold = threshold

    def layer(self, name: str, values: np.ndarray) -> LayerUncertainty:
        cv = coefficient_of_variation(values)
        peak = autocorrelation_peak(values)
        return LayerUncertainty(
            name=name,
            coefficient_of_variation=cv,
            autocorrelation_peak=peak,
            morans_i=morans_i(values),
            uncertainty=cv * (1.0 - peak),
        )

    def estimate(self, supply: np.ndarray, demand: np.ndarray, resistance: np.ndarray) -> UncertaintyReport:
        components = (
            self.layer("supply", supply),
            self.layer("demand", demand),
            self.layer("resistance", resistance),
        )
        norm = float(np.sqrt(sum(c.uncertainty**2 for c in components)))
        combined = float(np.clip(norm, 0.0, 1.0))
        exceeds = combined > self.threshold

        if exceeds:
            logger.warning(f"Combined uncertainty {combined:.3f} exceeds threshold {self.threshold}")
        else:
            logger.debug(f"Combined uncertainty {combined:.3f}")

        return UncertaintyReport(
            components=components,
            combined=combined,
            threshold=self.threshold,
            exceeds_threshold=exceeds,
        )

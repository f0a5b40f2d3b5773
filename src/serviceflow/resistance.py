"""
Resistance field construction.

Turns the raw resistance layer into the weighted resistance grid consumed by
routing, plus a cumulative-resistance surface used as a cheap global
friction estimate.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from src.serviceflow.errors import MissingDataError
from src.serviceflow.grid import RasterGrid

logger = logging.getLogger(__name__)


def normalize_resistance(raw: np.ndarray) -> np.ndarray:
    """
    Scale raw resistance into [0, 1].

    Negative values are clamped to zero. When the maximum exceeds 1 the grid
    is divided by its maximum, so a grid already in [0, 1] (including a
    uniform grid of ones) is left untouched.

    Example:
        >>> normalize_resistance(np.array([[0.0, 2.0], [4.0, -1.0]]))
        array([[0. , 0.5],
               [1. , 0. ]])
    """
    normalized = np.maximum(np.asarray(raw, dtype=np.float64), 0.0)
    peak = float(normalized.max()) if normalized.size else 0.0
    if peak > 1.0:
        normalized = normalized / peak
    return normalized


@dataclass(frozen=True, eq=False)
class ResistanceField:
    """
    Weighted resistance for one analysis run.

    Attributes:
        normalized: Raw resistance scaled into [0, 1]
        weighted: normalized * resistance_factor, clamped >= 0
        cumulative: Prefix sum of weighted over rows then columns
        resistance_factor: Weight that produced `weighted`
    """

    normalized: RasterGrid
    weighted: RasterGrid
    cumulative: RasterGrid
    resistance_factor: float

    @classmethod
    def build(cls, resistance: Optional[RasterGrid], resistance_factor: float = 1.0) -> "ResistanceField":
        """
        Build the field from a raw resistance grid.

        Raises:
            MissingDataError: If the resistance grid is absent or empty
        """
        if resistance is None or resistance.size == 0:
            raise MissingDataError("resistance")

        normalized = normalize_resistance(resistance.values)
        weighted = np.maximum(normalized * resistance_factor, 0.0)
        cumulative = np.cumsum(np.cumsum(weighted, axis=0), axis=1)

        logger.debug(
            f"Resistance field: factor={resistance_factor}, "
            f"weighted range [{weighted.min():.4f}, {weighted.max():.4f}]"
        )
        return cls(
            normalized=resistance.like(normalized),
            weighted=resistance.like(weighted),
            cumulative=resistance.like(cumulative),
            resistance_factor=resistance_factor,
        )

    @property
    def mean_friction(self) -> float:
        """Global friction estimate: total weighted resistance per cell."""
        cumulative = self.cumulative.values
        return float(cumulative[-1, -1] / cumulative.size)

"""
Raster grid primitives shared by every stage of a service flow analysis.

A RasterGrid is a 2-D array with a fixed cell width and height. All grids in
one analysis (supply, demand, resistance, spatial and the optional sink and
barrier layers) must share identical dimensions and cell size.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from affine import Affine

from src.serviceflow.errors import DimensionMismatchError, MissingDataError

logger = logging.getLogger(__name__)

REQUIRED_LAYERS = ("supply", "demand", "resistance", "spatial")
OPTIONAL_LAYERS = ("sink", "barriers")


@dataclass(frozen=True, eq=False)
class RasterGrid:
    """
    2-D raster with fixed cell geometry.

    The array is copied and marked read-only on construction, so a grid can
    be shared between stages (and sent to worker processes) without any
    stage mutating another's input.

    Attributes:
        data: Cell values, shape (rows, cols)
        cell_width: Cell width in map units
        cell_height: Cell height in map units
    """

    data: np.ndarray
    cell_width: float = 1.0
    cell_height: float = 1.0

    def __post_init__(self):
        array = np.array(self.data, copy=True)
        array.setflags(write=False)
        object.__setattr__(self, "data", array)

    @classmethod
    def from_array(cls, data, cell_width: float = 1.0, cell_height: float = 1.0) -> "RasterGrid":
        """Wrap an array (or return an existing RasterGrid unchanged)."""
        if isinstance(data, RasterGrid):
            return data
        return cls(np.asarray(data), cell_width=cell_width, cell_height=cell_height)

    @property
    def shape(self) -> tuple:
        return self.data.shape

    @property
    def rows(self) -> int:
        return self.data.shape[0]

    @property
    def cols(self) -> int:
        return self.data.shape[1]

    @property
    def size(self) -> int:
        return self.data.size

    @property
    def is_numeric(self) -> bool:
        """True for integer and floating point grids (booleans are not numeric)."""
        return np.issubdtype(self.data.dtype, np.number)

    @property
    def values(self) -> np.ndarray:
        """Float64 view of the data, read-only."""
        if self.data.dtype == np.float64:
            return self.data
        values = self.data.astype(np.float64)
        values.setflags(write=False)
        return values

    @property
    def transform(self) -> Affine:
        """Pixel-to-map transform with the origin at the top-left corner."""
        return Affine.scale(self.cell_width, -self.cell_height)

    def total(self) -> float:
        return float(np.sum(self.values))

    def like(self, data) -> "RasterGrid":
        """New grid with the same cell geometry."""
        return RasterGrid(np.asarray(data), cell_width=self.cell_width, cell_height=self.cell_height)

    def is_coregistered(self, other: "RasterGrid") -> bool:
        return (
            self.shape == other.shape
            and np.isclose(self.cell_width, other.cell_width)
            and np.isclose(self.cell_height, other.cell_height)
        )


@dataclass(frozen=True, eq=False)
class AnalysisLayers:
    """
    The grids supplied once at the start of an analysis.

    Attributes:
        supply: Source strength (>= 0, zero = not a source)
        demand: Sink/beneficiary strength (>= 0, zero = not a sink)
        resistance: Raw traversal cost per cell (>= 0)
        spatial: Terrain elevation or other auxiliary layer, read-only
        sink: Optional explicit sink capacity grid
        barriers: Optional mask, cells > 0 are impassable for cost-distance routing
    """

    supply: Optional[RasterGrid]
    demand: Optional[RasterGrid]
    resistance: Optional[RasterGrid]
    spatial: Optional[RasterGrid]
    sink: Optional[RasterGrid] = None
    barriers: Optional[RasterGrid] = None

    @classmethod
    def from_arrays(
        cls,
        supply=None,
        demand=None,
        resistance=None,
        spatial=None,
        *,
        sink=None,
        barriers=None,
        cell_width: float = 1.0,
        cell_height: float = 1.0,
    ) -> "AnalysisLayers":
        """Build layers from arrays or RasterGrids; None stays None."""

        def wrap(data):
            if data is None:
                return None
            return RasterGrid.from_array(data, cell_width=cell_width, cell_height=cell_height)

        return cls(
            supply=wrap(supply),
            demand=wrap(demand),
            resistance=wrap(resistance),
            spatial=wrap(spatial),
            sink=wrap(sink),
            barriers=wrap(barriers),
        )

    def present(self) -> dict[str, RasterGrid]:
        """All non-empty layers by name."""
        names = REQUIRED_LAYERS + OPTIONAL_LAYERS
        return {name: getattr(self, name) for name in names if getattr(self, name) is not None}

    def require_all(self) -> None:
        """Raise MissingDataError for the first absent required layer."""
        for name in REQUIRED_LAYERS:
            grid = getattr(self, name)
            if grid is None or grid.size == 0:
                raise MissingDataError(name)

    def check_coregistered(self) -> None:
        """Raise DimensionMismatchError unless every present layer matches the supply grid."""
        self.require_all()
        reference = self.supply
        for name, grid in self.present().items():
            if grid.data.ndim != 2:
                raise DimensionMismatchError(f"Layer '{name}' must be 2-D, got shape {grid.shape}")
            if not grid.is_coregistered(reference):
                raise DimensionMismatchError(
                    f"Layer '{name}' has shape {grid.shape} and cell size "
                    f"({grid.cell_width}, {grid.cell_height}); expected {reference.shape} and "
                    f"({reference.cell_width}, {reference.cell_height})"
                )
        logger.debug(f"Layers co-registered: {reference.shape} cells")

    @property
    def shape(self) -> tuple:
        return self.supply.shape

    @property
    def cell_width(self) -> float:
        return self.supply.cell_width

    @property
    def cell_height(self) -> float:
        return self.supply.cell_height

    def barrier_mask(self) -> np.ndarray:
        """Boolean mask of impassable cells (all False without a barrier layer)."""
        if self.barriers is None:
            return np.zeros(self.shape, dtype=bool)
        return self.barriers.values > 0

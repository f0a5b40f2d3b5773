"""
Flow accumulation: paths to a flow field plus summary statistics.

Paths below flow_threshold are dropped before they are deposited, so the
field and the statistics always describe the same set of paths.
"""

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Iterable, Sequence

import numpy as np

from src.serviceflow.grid import AnalysisLayers, RasterGrid
from src.serviceflow.parameters import Parameters

if TYPE_CHECKING:
    from src.serviceflow.routing import FlowPath, RoutingResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlowStatistics:
    """Summary of one flow field and the paths that produced it."""

    total_flow: float
    mean_flow: float
    max_flow: float
    std_flow: float
    path_count: int
    dropped_paths: int
    mean_path_length: float
    max_path_length: float
    mean_intensity: float
    max_intensity: float
    total_intensity: float
    realized_flow: float
    theoretical_max: float
    efficiency: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, eq=False)
class FlowAccumulation:
    """
    Output of FlowAccumulator.aggregate.

    Attributes:
        field: Accumulated intensity per cell
        paths: Paths retained after threshold filtering
        statistics: FlowStatistics for field and paths
        delivery: Delivered fraction of potential per source cell
    """

    field: RasterGrid
    paths: tuple
    statistics: FlowStatistics
    delivery: np.ndarray


def filter_paths(paths: Iterable["FlowPath"], flow_threshold: float) -> list["FlowPath"]:
    """Keep paths with intensity >= flow_threshold."""
    return [path for path in paths if path.intensity >= flow_threshold]


def deposit(paths: Iterable["FlowPath"], shape: tuple) -> np.ndarray:
    """
    Add each path's intensity once to every cell it visits.

    Overlapping paths accumulate; a path never deposits twice on one cell.
    """
    field_values = np.zeros(shape, dtype=np.float64)
    for path in paths:
        if path.intensity == 0.0:
            continue
        rows, cols = zip(*path.cells)
        # Fancy-index assignment adds once per unique cell
        field_values[list(rows), list(cols)] += path.intensity
    return field_values


def reduce_partials(partials: Sequence[np.ndarray], shape: tuple) -> np.ndarray:
    """Sum partial flow fields from independent workers."""
    total = np.zeros(shape, dtype=np.float64)
    for partial in partials:
        total += partial
    return total


def source_delivery(paths: Iterable["FlowPath"], potential: np.ndarray) -> np.ndarray:
    """
    Delivered fraction per source cell.

    Sum of retained intensity leaving each source divided by that source's
    potential (sum of supply x demand over its candidate pairs). Sources
    with zero potential deliver 0.
    """
    potential = np.asarray(potential, dtype=np.float64)
    delivered = np.zeros(potential.shape, dtype=np.float64)
    for path in paths:
        delivered[path.source] += path.intensity

    fraction = np.divide(delivered, potential, out=np.zeros_like(delivered), where=potential > 0)
    return np.clip(fraction, 0.0, 1.0)


def theoretical_maximum(layers: AnalysisLayers, parameters: Parameters) -> float:
    """min(total supply, total demand) for finite sources, total demand otherwise."""
    total_demand = layers.demand.total()
    if parameters.source_finite:
        return min(layers.supply.total(), total_demand)
    return total_demand


def summarize(
    field_values: np.ndarray,
    paths: Sequence["FlowPath"],
    dropped: int,
    theoretical_max: float,
) -> FlowStatistics:
    """Compute FlowStatistics for a field and its retained paths."""
    intensities = np.array([p.intensity for p in paths], dtype=np.float64)
    lengths = np.array([p.length for p in paths], dtype=np.float64)
    realized = float(intensities.sum()) if len(paths) else 0.0
    efficiency = realized / theoretical_max if theoretical_max > 0 else 0.0

    return FlowStatistics(
        total_flow=float(field_values.sum()),
        mean_flow=float(field_values.mean()) if field_values.size else 0.0,
        max_flow=float(field_values.max()) if field_values.size else 0.0,
        std_flow=float(field_values.std()) if field_values.size else 0.0,
        path_count=len(paths),
        dropped_paths=dropped,
        mean_path_length=float(lengths.mean()) if len(paths) else 0.0,
        max_path_length=float(lengths.max()) if len(paths) else 0.0,
        mean_intensity=float(intensities.mean()) if len(paths) else 0.0,
        max_intensity=float(intensities.max()) if len(paths) else 0.0,
        total_intensity=realized,
        realized_flow=realized,
        theoretical_max=float(theoretical_max),
        efficiency=float(efficiency),
    )


class FlowAccumulator:
    """Turns a RoutingResult into a FlowAccumulation."""

    def aggregate(
        self, routing: "RoutingResult", layers: AnalysisLayers, parameters: Parameters
    ) -> FlowAccumulation:
        """
        Filter, deposit and summarize routed paths.

        When the router already returned per-worker partial fields (deposited
        from threshold-filtered paths) they are summed instead of depositing
        again.
        """
        shape = layers.shape
        retained = filter_paths(routing.paths, parameters.flow_threshold)
        dropped = len(routing.paths) - len(retained)

        if routing.partials:
            field_values = reduce_partials(routing.partials, shape)
        else:
            field_values = deposit(retained, shape)

        potential = routing.surfaces.get("source_potential")
        if potential is None:
            potential = np.zeros(shape, dtype=np.float64)
        delivery = source_delivery(retained, potential)

        statistics = summarize(field_values, retained, dropped, theoretical_maximum(layers, parameters))
        logger.info(
            f"Accumulated {statistics.path_count} paths ({dropped} below threshold), "
            f"realized flow {statistics.realized_flow:.4f}, efficiency {statistics.efficiency:.3f}"
        )
        return FlowAccumulation(
            field=layers.supply.like(field_values),
            paths=tuple(retained),
            statistics=statistics,
            delivery=delivery,
        )

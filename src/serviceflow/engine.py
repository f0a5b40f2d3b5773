"""
ServiceFlowEngine: the analysis entry point.

One call to analyze() threads an explicit value through the pipeline:

    validate -> ResistanceField -> dispatcher (route, accumulate, transform)
             -> bottlenecks + uncertainty

Nothing is cached between calls; every analysis recomputes from scratch.
The caller gets either a complete AnalysisResult or a single structured
error (see src.serviceflow.errors).
"""

import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from src.serviceflow.accumulation import FlowStatistics
from src.serviceflow.bottlenecks import detect
from src.serviceflow.dispatcher import DispatchResult, FlowModelDispatcher
from src.serviceflow.grid import AnalysisLayers, RasterGrid
from src.serviceflow.parallel import Deadline
from src.serviceflow.parameters import Parameters
from src.serviceflow.resistance import ResistanceField
from src.serviceflow.uncertainty import UncertaintyEstimator, UncertaintyReport
from src.serviceflow.validation import AnalysisState, ValidationEngine, ValidationReport

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class AnalysisResult:
    """
    Result bundle of one analysis.

    Attributes:
        flow_field: Accumulated path intensity per cell
        statistics: FlowStatistics for the field
        dispatch: Domain output (theoretical/actual/blocked/used flow, factors)
        validation: Report of every validation check
        uncertainty: Input uncertainty report
        bottlenecks: Top-N Bottleneck(row, col, score), highest first
        resistance: ResistanceField used for routing
        paths: Retained FlowPaths (empty unless the engine retains paths)
        completed: False when the time budget cut routing short
        state: Final AnalysisState (EVALUATED on success)
        elapsed_seconds: Wall-clock time of the analysis
    """

    flow_field: RasterGrid
    statistics: FlowStatistics
    dispatch: DispatchResult
    validation: ValidationReport
    uncertainty: UncertaintyReport
    bottlenecks: tuple
    resistance: ResistanceField
    paths: tuple
    completed: bool
    state: AnalysisState
    elapsed_seconds: float

    def summary(self) -> dict[str, Any]:
        """Plain-dict digest for reporting layers."""
        return {
            "flow_model": self.dispatch.flow_model,
            "router": self.dispatch.router,
            "completed": self.completed,
            "statistics": self.statistics.to_dict(),
            "flows": dict(self.dispatch.summary),
            "bottlenecks": [b._asdict() for b in self.bottlenecks],
            "uncertainty": self.uncertainty.combined,
            "uncertainty_exceeds_threshold": self.uncertainty.exceeds_threshold,
            "elapsed_seconds": self.elapsed_seconds,
        }


class ServiceFlowEngine:
    """
    Runs service flow analyses.

    Args:
        parameters: Parameters record (defaults if None)
        max_workers: Worker processes for source-parallel routing (None = serial)
        time_budget: Seconds before routing stops and returns partial results
        retain_paths: Keep retained FlowPaths on the result
        show_progress: Show routing progress bars

    Example:
        >>> engine = ServiceFlowEngine(Parameters(max_distance=5.0))
        >>> result = engine.analyze(supply, demand, resistance, elevation, flow_model="proximity")
        >>> result.statistics.efficiency
    """

    def __init__(
        self,
        parameters: Optional[Parameters] = None,
        max_workers: Optional[int] = None,
        time_budget: Optional[float] = None,
        retain_paths: bool = False,
        show_progress: bool = False,
    ):
        self.parameters = parameters if parameters is not None else Parameters()
        self.max_workers = max_workers
        self.time_budget = time_budget
        self.retain_paths = retain_paths
        self.dispatcher = FlowModelDispatcher(max_workers=max_workers, show_progress=show_progress)

    def update_parameters(self, **changes) -> Parameters:
        """Replace parameters between runs; returns the new record."""
        self.parameters = self.parameters.updated(**changes)
        logger.debug(f"Parameters updated: {sorted(changes)}")
        return self.parameters

    def analyze(
        self,
        supply,
        demand,
        resistance,
        spatial,
        flow_model: str = "proximity",
        sink=None,
        barriers=None,
    ) -> AnalysisResult:
        """
        Run one complete analysis.

        Args:
            supply, demand, resistance, spatial: Required grids (arrays or RasterGrids)
            flow_model: One of the supported flow model keys
            sink: Optional explicit sink capacity grid
            barriers: Optional barrier mask (cells > 0 impassable for cost-distance routing)

        Raises:
            UnsupportedModelError: Unknown flow_model
            MissingDataError: A required grid is None or empty
            DimensionMismatchError: Grids are not co-registered
            ValidationFailure: A content check failed
        """
        start = time.perf_counter()
        parameters = self.parameters
        deadline = Deadline(self.time_budget)
        domain = self.dispatcher.resolve(flow_model)

        layers = AnalysisLayers.from_arrays(
            supply,
            demand,
            resistance,
            spatial,
            sink=sink,
            barriers=barriers,
            cell_width=parameters.cell_width,
            cell_height=parameters.cell_height,
        )

        validator = ValidationEngine()
        validator.load(layers)
        report = validator.validate(layers, parameters, domain.key)

        field = ResistanceField.build(layers.resistance, parameters.resistance_factor)
        validator.mark_preprocessed()

        dispatch = self.dispatcher.dispatch(domain.key, layers, field, parameters, deadline=deadline)
        validator.mark_flow_computed()

        accumulation = dispatch.accumulation
        bottlenecks = detect(accumulation.paths, field.weighted.values, top_n=parameters.top_n_bottlenecks)
        uncertainty = UncertaintyEstimator(parameters.uncertainty_threshold).estimate(
            layers.supply.values, layers.demand.values, field.weighted.values
        )
        validator.mark_evaluated()

        paths = accumulation.paths
        if not self.retain_paths:
            # Paths are only kept on request
            paths = ()
            dispatch = dataclasses.replace(
                dispatch,
                routing=dataclasses.replace(dispatch.routing, paths=()),
                accumulation=dataclasses.replace(accumulation, paths=()),
            )

        elapsed = time.perf_counter() - start
        logger.info(
            f"Analysis '{domain.key}' finished in {elapsed:.2f}s "
            f"({accumulation.statistics.path_count} paths, efficiency {accumulation.statistics.efficiency:.3f})"
        )

        return AnalysisResult(
            flow_field=accumulation.field,
            statistics=accumulation.statistics,
            dispatch=dispatch,
            validation=report,
            uncertainty=uncertainty,
            bottlenecks=tuple(bottlenecks),
            resistance=field,
            paths=paths,
            completed=dispatch.completed,
            state=validator.state,
            elapsed_seconds=elapsed,
        )

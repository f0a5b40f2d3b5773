"""
Service flow computation engine.

Estimates how an ecosystem service moves from sources to sinks across a
raster landscape subject to resistance.

Pipeline:
- ValidationEngine: staged checks and the analysis state machine
- ResistanceField: normalized, weighted and cumulative resistance
- PathRouter: direct sampling, terrain (D8) and cost-distance routing
- FlowAccumulator: flow field, statistics and efficiency
- BottleneckDetector: top-N intensity-weighted resistance cells
- UncertaintyEstimator: per-layer and combined input uncertainty
- FlowModelDispatcher: eight domain transforms and the flow typology

Entry point:
- ServiceFlowEngine.analyze(...) -> AnalysisResult
"""

from src.serviceflow.accumulation import FlowAccumulation, FlowAccumulator, FlowStatistics
from src.serviceflow.bottlenecks import Bottleneck, bottleneck_scores, detect
from src.serviceflow.dispatcher import DispatchResult, FlowModelDispatcher, apply_flow_typology
from src.serviceflow.domains import DOMAINS, DomainTransform, get_domain, normalize_key
from src.serviceflow.engine import AnalysisResult, ServiceFlowEngine
from src.serviceflow.errors import (
    DimensionMismatchError,
    InvalidParameterError,
    MissingDataError,
    ServiceFlowError,
    StateTransitionError,
    UnreachableTargetWarning,
    UnsupportedModelError,
    ValidationFailure,
)
from src.serviceflow.grid import AnalysisLayers, RasterGrid
from src.serviceflow.parallel import Deadline
from src.serviceflow.parameters import Parameters
from src.serviceflow.resistance import ResistanceField
from src.serviceflow.routing import (
    CostDistanceRouter,
    DirectSamplingRouter,
    FlowPath,
    PathRouter,
    RoutingResult,
    TerrainRouter,
    cost_distance,
    get_router,
    multi_source_cost_distance,
    rasterize_line,
)
from src.serviceflow.uncertainty import UncertaintyEstimator, UncertaintyReport
from src.serviceflow.validation import AnalysisState, CheckResult, ValidationEngine, ValidationReport

__all__ = [
    # Engine
    "ServiceFlowEngine",
    "AnalysisResult",
    # Data model
    "RasterGrid",
    "AnalysisLayers",
    "Parameters",
    "ResistanceField",
    # Routing
    "PathRouter",
    "DirectSamplingRouter",
    "TerrainRouter",
    "CostDistanceRouter",
    "FlowPath",
    "RoutingResult",
    "Deadline",
    "get_router",
    "rasterize_line",
    "cost_distance",
    "multi_source_cost_distance",
    # Aggregation and evaluation
    "FlowAccumulator",
    "FlowAccumulation",
    "FlowStatistics",
    "Bottleneck",
    "bottleneck_scores",
    "detect",
    "UncertaintyEstimator",
    "UncertaintyReport",
    # Validation
    "AnalysisState",
    "CheckResult",
    "ValidationEngine",
    "ValidationReport",
    # Dispatch
    "DOMAINS",
    "DomainTransform",
    "get_domain",
    "normalize_key",
    "FlowModelDispatcher",
    "DispatchResult",
    "apply_flow_typology",
    # Errors
    "ServiceFlowError",
    "MissingDataError",
    "DimensionMismatchError",
    "InvalidParameterError",
    "UnsupportedModelError",
    "StateTransitionError",
    "ValidationFailure",
    "UnreachableTargetWarning",
]

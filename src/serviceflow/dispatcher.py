"""
Flow model dispatch and the source/sink/use flow typology.

The dispatcher runs a domain's router, aggregates the routed paths, builds
the domain's factor grids and splits the resulting theoretical flow into:

- actual: what sources can really deliver (capped at supply when finite)
- blocked: what sinks absorb before it reaches users (finite sinks only)
- used: what users take (capped at demand when finite)

For rival benefits used flow is removed from the actual flow; non-rival
benefits leave it in place.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

from src.serviceflow.accumulation import FlowAccumulation, FlowAccumulator
from src.serviceflow.domains import DomainInputs, DomainTransform, get_domain
from src.serviceflow.grid import AnalysisLayers
from src.serviceflow.parallel import Deadline
from src.serviceflow.parameters import Parameters
from src.serviceflow.resistance import ResistanceField
from src.serviceflow.routing import PathRouter, RoutingResult, get_router

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class DispatchResult:
    """
    Everything one domain run produced.

    Attributes:
        flow_model: Normalized domain key
        router: Routing strategy name
        routing: Raw RoutingResult
        accumulation: FlowAccumulation (field, retained paths, statistics)
        factors: Domain factor grids in [0, 1]
        contributions: Per-layer contribution grids (sum = theoretical before masking)
        theoretical: Theoretical flow per cell
        actual: Actual flow per cell after blocking and rival use
        blocked: Flow absorbed by sinks
        used: Flow taken by users
        summary: Totals and ratios
    """

    flow_model: str
    router: str
    routing: RoutingResult
    accumulation: FlowAccumulation
    factors: dict
    contributions: dict
    theoretical: np.ndarray
    actual: np.ndarray
    blocked: np.ndarray
    used: np.ndarray
    summary: dict

    @property
    def completed(self) -> bool:
        return self.routing.completed


def _ratio(part: float, whole: float) -> float:
    return part / whole if whole > 0 else 0.0


def apply_flow_typology(
    contributions: dict[str, np.ndarray],
    layers: AnalysisLayers,
    field: ResistanceField,
    parameters: Parameters,
) -> dict[str, np.ndarray]:
    """
    Split summed contributions into theoretical, actual, blocked and used flow.

    Returns a dict with keys theoretical, actual, blocked, used.
    """
    supply = layers.supply.values
    demand = layers.demand.values

    source_mask = (supply > 0) & (supply >= parameters.source_threshold)
    total = np.zeros(layers.shape, dtype=np.float64)
    for grid in contributions.values():
        total = total + grid
    theoretical = total * source_mask

    actual = np.minimum(theoretical, supply) if parameters.source_finite else theoretical.copy()

    if layers.sink is not None:
        sink = layers.sink.values
        sink_capacity = sink * (sink >= parameters.sink_threshold)
    else:
        sink_capacity = theoretical * np.clip(field.weighted.values, 0.0, 1.0)

    if parameters.sink_finite:
        blocked = np.minimum(actual, sink_capacity)
        actual = actual - blocked
    else:
        blocked = np.zeros(layers.shape, dtype=np.float64)

    if parameters.use_finite:
        use_capacity = demand * (demand >= parameters.use_threshold)
        used = np.minimum(actual, use_capacity)
    else:
        used = actual.copy()

    if parameters.rival:
        actual = actual - used

    return {
        "theoretical": theoretical,
        "actual": np.maximum(actual, 0.0),
        "blocked": blocked,
        "used": used,
    }


class FlowModelDispatcher:
    """
    Resolves a flow model key and runs it end to end.

    Args:
        max_workers: Process count handed to source-parallel routers
        show_progress: Show routing progress bars
    """

    def __init__(self, max_workers: Optional[int] = None, show_progress: bool = False):
        self.max_workers = max_workers
        self.show_progress = show_progress
        self.accumulator = FlowAccumulator()

    def resolve(self, key) -> DomainTransform:
        return get_domain(key)

    def router_for(self, domain: DomainTransform) -> PathRouter:
        kwargs: dict[str, Any] = {"max_workers": self.max_workers, "show_progress": self.show_progress}
        if domain.router == "direct":
            kwargs["line_of_sight"] = domain.line_of_sight
        return get_router(domain.router, **kwargs)

    def dispatch(
        self,
        key,
        layers: AnalysisLayers,
        field: ResistanceField,
        parameters: Parameters,
        deadline: Optional[Deadline] = None,
    ) -> DispatchResult:
        """
        Route, aggregate and apply the domain transform.

        Raises:
            UnsupportedModelError: Unknown flow model key
        """
        domain = self.resolve(key)
        router = self.router_for(domain)
        logger.info(f"Dispatching '{domain.key}' on the {router.name} router")

        routing = router.route(layers, field, parameters, deadline=deadline)
        accumulation = self.accumulator.aggregate(routing, layers, parameters)

        inputs = DomainInputs(
            layers=layers, field=field, routing=routing, accumulation=accumulation, parameters=parameters
        )
        factors = domain.compute_factors(inputs)
        contributions = domain.combiner.contributions(factors, layers.supply.values)
        flows = apply_flow_typology(contributions, layers, field, parameters)

        totals = {name: float(grid.sum()) for name, grid in flows.items()}
        summary = {
            "total_supply": layers.supply.total(),
            "total_demand": layers.demand.total(),
            "theoretical_flow": totals["theoretical"],
            "actual_flow": totals["actual"],
            "blocked_flow": totals["blocked"],
            "used_flow": totals["used"],
            "delivery_ratio": _ratio(totals["actual"], totals["theoretical"]),
            "block_ratio": _ratio(totals["blocked"], totals["theoretical"]),
            "use_ratio": _ratio(totals["used"], totals["theoretical"]),
        }
        logger.info(
            f"{domain.key}: theoretical {summary['theoretical_flow']:.4f}, "
            f"blocked {summary['blocked_flow']:.4f}, used {summary['used_flow']:.4f}"
        )

        return DispatchResult(
            flow_model=domain.key,
            router=router.name,
            routing=routing,
            accumulation=accumulation,
            factors=factors,
            contributions=contributions,
            theoretical=flows["theoretical"],
            actual=flows["actual"],
            blocked=flows["blocked"],
            used=flows["used"],
            summary=summary,
        )

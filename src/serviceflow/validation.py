"""
Staged validation and the analysis state machine.

An analysis moves strictly forward through:

    UNINITIALIZED -> DATA_LOADED -> VALIDATED -> PREPROCESSED -> FLOW_COMPUTED -> EVALUATED

load() runs the structural checks (missing layers, co-registration) and
raises immediately. validate() runs every content check, assembles the full
ValidationReport and only then raises ValidationFailure naming the first
failing category.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import numpy as np

from src.serviceflow.domains import get_domain
from src.serviceflow.errors import VALIDATION_CATEGORIES, StateTransitionError, ValidationFailure
from src.serviceflow.grid import OPTIONAL_LAYERS, REQUIRED_LAYERS, AnalysisLayers
from src.serviceflow.parameters import Parameters
from src.serviceflow.resistance import normalize_resistance
from src.serviceflow.terrain import compute_flow_direction, invalid_flow_directions

logger = logging.getLogger(__name__)


class AnalysisState(Enum):
    UNINITIALIZED = "uninitialized"
    DATA_LOADED = "data-loaded"
    VALIDATED = "validated"
    PREPROCESSED = "preprocessed"
    FLOW_COMPUTED = "flow-computed"
    EVALUATED = "evaluated"


STATE_ORDER = list(AnalysisState)


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one validation check."""

    category: str
    name: str
    passed: bool
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"category": self.category, "name": self.name, "passed": self.passed, "message": self.message}


@dataclass(frozen=True)
class ValidationReport:
    """
    Every check run by ValidationEngine.validate, in run order.

    Attributes:
        checks: CheckResult entries
        flow_model: Domain key the model-specific checks were chosen for
    """

    checks: tuple
    flow_model: str = ""

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks)

    @property
    def failures(self) -> list[CheckResult]:
        return [check for check in self.checks if not check.passed]

    @property
    def failed_categories(self) -> list[str]:
        """Failing categories in canonical order."""
        failing = {check.category for check in self.failures}
        return [category for category in VALIDATION_CATEGORIES if category in failing]

    def by_category(self) -> dict[str, list[CheckResult]]:
        grouped = {category: [] for category in VALIDATION_CATEGORIES}
        for check in self.checks:
            grouped[check.category].append(check)
        return grouped

    def to_dict(self) -> dict[str, Any]:
        return {
            "flow_model": self.flow_model,
            "passed": self.passed,
            "checks": [check.to_dict() for check in self.checks],
        }


class ValidationEngine:
    """
    Runs staged checks and tracks the analysis state.

    Example:
        >>> engine = ValidationEngine()
        >>> engine.load(layers)
        >>> report = engine.validate(layers, Parameters(), "proximity")
        >>> engine.state
        <AnalysisState.VALIDATED: 'validated'>
    """

    def __init__(self):
        self.state = AnalysisState.UNINITIALIZED
        self.report: Optional[ValidationReport] = None

    def reset(self) -> None:
        self.state = AnalysisState.UNINITIALIZED
        self.report = None

    def _advance(self, target: AnalysisState) -> None:
        current = STATE_ORDER.index(self.state)
        if STATE_ORDER.index(target) != current + 1:
            raise StateTransitionError(
                f"Cannot move from '{self.state.value}' to '{target.value}'"
            )
        logger.debug(f"State {self.state.value} -> {target.value}")
        self.state = target

    def load(self, layers: AnalysisLayers) -> None:
        """
        Structural checks.

        Raises:
            MissingDataError: A required layer is absent or empty
            DimensionMismatchError: Layers differ in shape or cell size, or are not 2-D
            StateTransitionError: Called outside UNINITIALIZED
        """
        if self.state is not AnalysisState.UNINITIALIZED:
            raise StateTransitionError(f"load() requires state 'uninitialized', got '{self.state.value}'")
        layers.require_all()
        layers.check_coregistered()
        self._advance(AnalysisState.DATA_LOADED)

    def validate(self, layers: AnalysisLayers, parameters: Parameters, flow_model: str) -> ValidationReport:
        """
        Run every content check and advance to VALIDATED.

        Raises:
            ValidationFailure: Any check failed; carries the complete report
            UnsupportedModelError: flow_model is not a known domain
            StateTransitionError: Called outside DATA_LOADED
        """
        if self.state is not AnalysisState.DATA_LOADED:
            raise StateTransitionError(f"validate() requires state 'data-loaded', got '{self.state.value}'")

        domain = get_domain(flow_model)
        checks: list[CheckResult] = []
        checks.extend(_type_checks(layers))
        checks.extend(_spatial_checks(layers, parameters))

        # Content checks need numeric 2-D co-registered grids
        if all(check.passed for check in checks):
            checks.extend(_completeness_checks(layers))
            checks.extend(_range_checks(layers))
            checks.extend(_physical_checks(layers, parameters))
            checks.extend(_model_checks(layers, parameters, domain))

        report = ValidationReport(checks=tuple(checks), flow_model=domain.key)
        self.report = report

        if not report.passed:
            category = report.failed_categories[0]
            logger.warning(
                f"Validation failed ({category}): {', '.join(c.name for c in report.failures)}"
            )
            raise ValidationFailure(category, AnalysisState.VALIDATED.value, report=report)

        logger.info(f"Validation passed: {len(checks)} checks for '{domain.key}'")
        self._advance(AnalysisState.VALIDATED)
        return report

    def mark_preprocessed(self) -> None:
        self._advance(AnalysisState.PREPROCESSED)

    def mark_flow_computed(self) -> None:
        self._advance(AnalysisState.FLOW_COMPUTED)

    def mark_evaluated(self) -> None:
        self._advance(AnalysisState.EVALUATED)


def _type_checks(layers: AnalysisLayers) -> list[CheckResult]:
    checks = []
    for name, grid in layers.present().items():
        # Barrier masks may be boolean
        numeric = grid.is_numeric or (name == "barriers" and grid.data.dtype == bool)
        checks.append(CheckResult("type", f"{name} numeric", numeric, f"dtype {grid.data.dtype}"))
        checks.append(CheckResult("type", f"{name} 2-D", grid.data.ndim == 2, f"ndim {grid.data.ndim}"))
    return checks


def _spatial_checks(layers: AnalysisLayers, parameters: Parameters) -> list[CheckResult]:
    reference = layers.supply
    checks = [
        CheckResult(
            "spatial-consistency",
            "cell size matches parameters",
            bool(
                np.isclose(reference.cell_width, parameters.cell_width)
                and np.isclose(reference.cell_height, parameters.cell_height)
            ),
            f"grid ({reference.cell_width}, {reference.cell_height}) vs "
            f"parameters ({parameters.cell_width}, {parameters.cell_height})",
        )
    ]
    for name, grid in layers.present().items():
        if name == "supply":
            continue
        checks.append(
            CheckResult(
                "spatial-consistency",
                f"{name} co-registered",
                grid.is_coregistered(reference),
                f"shape {grid.shape} vs {reference.shape}",
            )
        )
    return checks


def _completeness_checks(layers: AnalysisLayers) -> list[CheckResult]:
    checks = []
    for name in REQUIRED_LAYERS + OPTIONAL_LAYERS:
        grid = getattr(layers, name)
        if grid is None:
            if name in REQUIRED_LAYERS:
                checks.append(CheckResult("completeness", f"{name} present", False, "layer missing"))
            continue
        invalid = int(np.sum(~np.isfinite(grid.values)))
        checks.append(
            CheckResult("completeness", f"{name} finite", invalid == 0, f"{invalid} non-finite cells")
        )
    return checks


def _range_checks(layers: AnalysisLayers) -> list[CheckResult]:
    checks = []
    for name in ("supply", "demand", "sink"):
        grid = getattr(layers, name)
        if grid is None:
            continue
        minimum = float(np.min(grid.values))
        checks.append(CheckResult("range", f"{name} non-negative", minimum >= 0, f"minimum {minimum}"))

    normalized = normalize_resistance(layers.resistance.values)
    in_unit = bool(np.all((normalized >= 0) & (normalized <= 1)))
    checks.append(CheckResult("range", "normalized resistance in [0, 1]", in_unit))
    return checks


def _physical_checks(layers: AnalysisLayers, parameters: Parameters) -> list[CheckResult]:
    if not (parameters.source_finite and parameters.sink_finite):
        return []
    total_supply = layers.supply.total()
    total_demand = layers.demand.total()
    scale = max(total_supply, total_demand)
    imbalance = abs(total_supply - total_demand) / scale if scale > 0 else 0.0
    return [
        CheckResult(
            "physical-constraint",
            "mass conservation",
            imbalance <= parameters.validation_threshold,
            f"relative imbalance {imbalance:.4f} (threshold {parameters.validation_threshold})",
        )
    ]


def _model_checks(layers: AnalysisLayers, parameters: Parameters, domain) -> list[CheckResult]:
    checks = []
    if domain.router == "terrain":
        elevation = layers.spatial.values
        relief = float(np.ptp(elevation))
        checks.append(CheckResult("model-specific", "elevation not flat", relief > 0, f"relief {relief}"))
        # Codes come from compute_flow_direction on the same layer, so this guards
        # the derivation itself rather than any user-supplied direction raster
        flow_dir = compute_flow_direction(elevation, parameters.cell_width, parameters.cell_height)
        invalid = invalid_flow_directions(elevation, flow_dir)
        checks.append(
            CheckResult("model-specific", "derived flow directions descend", invalid == 0,
                        f"{invalid} invalid codes in directions derived from the elevation layer")
        )
    elif domain.router == "cost-distance":
        demand_cells = layers.demand.values > 0
        blocked = demand_cells & layers.barrier_mask()
        all_blocked = bool(demand_cells.any() and blocked.sum() == demand_cells.sum())
        checks.append(
            CheckResult("model-specific", "demand outside barriers", not all_blocked,
                        f"{int(blocked.sum())} of {int(demand_cells.sum())} demand cells on barriers")
        )

    if domain.line_of_sight:
        height = parameters.option("observer_height", 1.7)
        checks.append(
            CheckResult("model-specific", "observer height non-negative", height >= 0, f"observer_height {height}")
        )
    return checks

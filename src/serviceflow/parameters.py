"""
Immutable analysis parameters.

Parameters may be replaced between analysis runs (see Parameters.updated)
but never change during one.
"""

import dataclasses
import logging
import math
import numbers
from dataclasses import dataclass, field
from typing import Any, Literal

from src.config import DEFAULT_PARAMETERS
from src.decay.functions import DECAY_FUNCTIONS
from src.serviceflow.errors import InvalidParameterError

logger = logging.getLogger(__name__)

CapacityType = Literal["finite", "infinite"]
BenefitType = Literal["rival", "non-rival"]

CAPACITY_TYPES = ("finite", "infinite")
BENEFIT_TYPES = ("rival", "non-rival")


@dataclass(frozen=True)
class Parameters:
    """
    Configuration record for one service flow analysis.

    Attributes:
        alpha: Decay coefficient applied to routed path cost (supply side)
        beta: Decay coefficient of the demand-side accessibility surface
        gamma: Multiplier on path resistance inside the decay argument
        max_distance: Hard path cutoff, in the units of cell_width/cell_height
        flow_threshold: Paths with lower intensity are dropped before accumulation
        resistance_factor: Weight applied to the normalized resistance grid
        distance_decay: Name of the decay function (see src.decay.DECAY_FUNCTIONS)
        source_type: "finite" caps actual flow at supply
        sink_type: "finite" lets sinks block flow up to their capacity
        use_type: "finite" caps use at demand, "infinite" lets users take all remaining flow
        benefit_type: "rival" removes used flow from the actual flow
        cell_width: Cell width in map units
        cell_height: Cell height in map units
        validation_threshold: Largest tolerated relative supply/demand imbalance
        uncertainty_threshold: Combined uncertainty above this is flagged
        source_threshold: Minimum supply counted as a source
        sink_threshold: Minimum sink capacity counted as a sink
        use_threshold: Minimum demand counted as a user
        top_n_bottlenecks: Number of bottleneck cells reported
        domain_options: Injected per-domain coefficients (e.g. {"carbon_rate": 2.5})
    """

    alpha: float = DEFAULT_PARAMETERS["alpha"]
    beta: float = DEFAULT_PARAMETERS["beta"]
    gamma: float = DEFAULT_PARAMETERS["gamma"]
    max_distance: float = DEFAULT_PARAMETERS["max_distance"]
    flow_threshold: float = DEFAULT_PARAMETERS["flow_threshold"]
    resistance_factor: float = DEFAULT_PARAMETERS["resistance_factor"]
    distance_decay: str = DEFAULT_PARAMETERS["distance_decay"]
    source_type: CapacityType = DEFAULT_PARAMETERS["source_type"]
    sink_type: CapacityType = DEFAULT_PARAMETERS["sink_type"]
    use_type: CapacityType = DEFAULT_PARAMETERS["use_type"]
    benefit_type: BenefitType = DEFAULT_PARAMETERS["benefit_type"]
    cell_width: float = DEFAULT_PARAMETERS["cell_width"]
    cell_height: float = DEFAULT_PARAMETERS["cell_height"]
    validation_threshold: float = DEFAULT_PARAMETERS["validation_threshold"]
    uncertainty_threshold: float = DEFAULT_PARAMETERS["uncertainty_threshold"]
    source_threshold: float = DEFAULT_PARAMETERS["source_threshold"]
    sink_threshold: float = DEFAULT_PARAMETERS["sink_threshold"]
    use_threshold: float = DEFAULT_PARAMETERS["use_threshold"]
    top_n_bottlenecks: int = DEFAULT_PARAMETERS["top_n_bottlenecks"]
    domain_options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate parameter values."""
        non_negative = (
            "alpha",
            "beta",
            "gamma",
            "flow_threshold",
            "resistance_factor",
            "validation_threshold",
            "uncertainty_threshold",
            "source_threshold",
            "sink_threshold",
            "use_threshold",
        )
        for name in non_negative:
            value = getattr(self, name)
            if not isinstance(value, numbers.Real) or isinstance(value, bool):
                raise InvalidParameterError(f"{name} must be a number, got {value!r}")
            if not math.isfinite(value):
                raise InvalidParameterError(f"{name} must be finite, got {value}")
            if value < 0:
                raise InvalidParameterError(f"{name} must be non-negative, got {value}")

        for name in ("max_distance", "cell_width", "cell_height"):
            value = getattr(self, name)
            if not isinstance(value, numbers.Real) or isinstance(value, bool) or not value > 0:
                raise InvalidParameterError(f"{name} must be positive, got {value!r}")
            if name != "max_distance" and not math.isfinite(value):
                raise InvalidParameterError(f"{name} must be finite, got {value}")

        if self.distance_decay not in DECAY_FUNCTIONS:
            raise InvalidParameterError(
                f"Unknown distance_decay '{self.distance_decay}'. "
                f"Available: {list(DECAY_FUNCTIONS.keys())}"
            )

        for name in ("source_type", "sink_type", "use_type"):
            value = getattr(self, name)
            if value not in CAPACITY_TYPES:
                raise InvalidParameterError(f"{name} must be one of {CAPACITY_TYPES}, got {value!r}")

        if self.benefit_type not in BENEFIT_TYPES:
            raise InvalidParameterError(
                f"benefit_type must be one of {BENEFIT_TYPES}, got {self.benefit_type!r}"
            )

        if not isinstance(self.top_n_bottlenecks, numbers.Integral) or self.top_n_bottlenecks < 1:
            raise InvalidParameterError(
                f"top_n_bottlenecks must be a positive integer, got {self.top_n_bottlenecks!r}"
            )

        if not isinstance(self.domain_options, dict):
            raise InvalidParameterError("domain_options must be a dict")

    @property
    def source_finite(self) -> bool:
        return self.source_type == "finite"

    @property
    def sink_finite(self) -> bool:
        return self.sink_type == "finite"

    @property
    def use_finite(self) -> bool:
        return self.use_type == "finite"

    @property
    def rival(self) -> bool:
        return self.benefit_type == "rival"

    def option(self, name: str, default: Any) -> Any:
        """Domain coefficient from domain_options, falling back to a default."""
        return self.domain_options.get(name, default)

    def updated(self, **changes) -> "Parameters":
        """Return a new validated record with some fields replaced."""
        unknown = set(changes) - {f.name for f in dataclasses.fields(self)}
        if unknown:
            raise InvalidParameterError(f"Unrecognized parameter(s): {sorted(unknown)}")
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        data = dataclasses.asdict(self)
        data["domain_options"] = dict(self.domain_options)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Parameters":
        """
        Deserialize from dictionary.

        Raises:
            InvalidParameterError: For unrecognized keys or invalid values
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise InvalidParameterError(
                f"Unrecognized parameter(s): {sorted(unknown)}. Recognized: {sorted(known)}"
            )
        logger.debug(f"Building parameters from {sorted(data)}")
        return cls(**data)

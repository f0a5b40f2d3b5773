"""
Domain transforms for the eight supported flow models.

A domain names the routing strategy it runs on and a LayerCombiner over
factor grids in [0, 1]. Factors are derived from the routing surfaces, the
accumulated flow and the weighted resistance; the combiner turns them into
per-layer contributions of supply, so the theoretical flow of a domain can
never exceed supply.

Domain coefficients are injected through Parameters.domain_options; the
defaults below are used when an option is absent.
"""

import logging
from dataclasses import dataclass
from typing import Callable

import numpy as np

from src.decay.combiner import LayerCombiner, LayerComponent
from src.serviceflow.errors import UnsupportedModelError

logger = logging.getLogger(__name__)

# USLE slope-length constants
USLE_UNIT_LENGTH = 22.13
USLE_UNIT_SLOPE = 0.0896
USLE_SLOPE_EXPONENT = 1.3

DOMAIN_DEFAULTS = {
    "infiltration_share": 0.5,
    "carbon_rate": 2.5,
    "storage_limit": 200.0,
    "catch_efficiency": 0.3,
}


@dataclass(frozen=True)
class DomainInputs:
    """Everything a factor function may read."""

    layers: object
    field: object
    routing: object
    accumulation: object
    parameters: object

    @property
    def resistance(self) -> np.ndarray:
        return np.clip(self.field.weighted.values, 0.0, 1.0)

    def surface(self, name: str) -> np.ndarray:
        if name not in self.routing.surfaces:
            raise KeyError(f"Routing surface '{name}' not produced by the '{self.routing.router}' router")
        return np.asarray(self.routing.surfaces[name], dtype=np.float64)

    def option(self, name: str) -> float:
        return float(self.parameters.option(name, DOMAIN_DEFAULTS[name]))


def log_normalize(values: np.ndarray) -> np.ndarray:
    """log1p scaled so the maximum maps to 1; zeros for an all-zero grid."""
    values = np.maximum(np.asarray(values, dtype=np.float64), 0.0)
    peak = float(np.log1p(values.max())) if values.size else 0.0
    if peak == 0:
        return np.zeros_like(values)
    return np.log1p(values) / peak


def minmax_normalize(values: np.ndarray) -> np.ndarray:
    """Scale to [0, 1]; zeros for a flat grid."""
    values = np.asarray(values, dtype=np.float64)
    low, high = float(values.min()), float(values.max())
    if high == low:
        return np.zeros_like(values)
    return (values - low) / (high - low)


def ls_factor(slope_degrees: np.ndarray, accumulation: np.ndarray, cell_size: float = 1.0) -> np.ndarray:
    """
    USLE slope-length factor.

    LS = (lambda / 22.13) ** 0.5 * (sin(theta) / 0.0896) ** 1.3, where lambda
    is the upslope flow length (contributing cells x cell size) and theta the
    slope angle.
    """
    flow_length = np.asarray(accumulation, dtype=np.float64) * cell_size
    theta = np.radians(np.asarray(slope_degrees, dtype=np.float64))
    return (flow_length / USLE_UNIT_LENGTH) ** 0.5 * (np.sin(theta) / USLE_UNIT_SLOPE) ** USLE_SLOPE_EXPONENT


def _surface_water(inputs: DomainInputs) -> dict[str, np.ndarray]:
    return {
        "discharge": log_normalize(inputs.surface("supply_accumulation")),
        "retention": 1.0 - inputs.resistance,
    }


def _flood_water(inputs: DomainInputs) -> dict[str, np.ndarray]:
    return {
        "flood_routing": log_normalize(inputs.surface("accumulation")),
        "low_lying": 1.0 - minmax_normalize(inputs.layers.spatial.values),
        "infiltration": 1.0 - inputs.option("infiltration_share") * inputs.resistance,
    }


def _sediment(inputs: DomainInputs) -> dict[str, np.ndarray]:
    cell_size = float(np.sqrt(inputs.parameters.cell_width * inputs.parameters.cell_height))
    ls = ls_factor(inputs.surface("slope"), inputs.surface("accumulation"), cell_size)
    peak = float(ls.max())
    return {
        "erosion": ls / peak if peak > 0 else np.zeros_like(ls),
        "cover": 1.0 - inputs.resistance,
    }


def _carbon(inputs: DomainInputs) -> dict[str, np.ndarray]:
    supply = inputs.layers.supply.values
    sequestration = inputs.option("carbon_rate") * supply
    storage = np.divide(
        inputs.option("storage_limit"), sequestration,
        out=np.ones_like(sequestration), where=sequestration > 0,
    )
    return {
        "fixation": 1.0 - inputs.resistance,
        "moisture": log_normalize(inputs.surface("accumulation")),
        "storage": np.minimum(storage, 1.0),
    }


def _line_of_sight(inputs: DomainInputs) -> dict[str, np.ndarray]:
    return {"visibility": inputs.accumulation.delivery}


def _proximity(inputs: DomainInputs) -> dict[str, np.ndarray]:
    return {"accessibility": inputs.surface("accessibility")}


def _coastal_storm_protection(inputs: DomainInputs) -> dict[str, np.ndarray]:
    return {
        "shelter": inputs.surface("accessibility"),
        "exposure": 1.0 - minmax_normalize(inputs.layers.spatial.values),
    }


def _subsistence_fisheries(inputs: DomainInputs) -> dict[str, np.ndarray]:
    shape = inputs.layers.shape
    return {
        "catch": inputs.accumulation.delivery,
        "habitat": 1.0 - inputs.resistance,
        "catch_efficiency": np.full(shape, inputs.option("catch_efficiency")),
    }


@dataclass(frozen=True)
class DomainTransform:
    """
    One flow model.

    Attributes:
        key: Normalized flow model key
        router: Routing strategy name (see src.serviceflow.routing.ROUTERS)
        combiner: LayerCombiner over this domain's factor names
        factors: Callable building the factor grids from DomainInputs
        line_of_sight: Direct routing with the sight-line check
        description: One-line summary
    """

    key: str
    router: str
    combiner: LayerCombiner
    factors: Callable[[DomainInputs], dict]
    line_of_sight: bool = False
    description: str = ""

    def compute_factors(self, inputs: DomainInputs) -> dict[str, np.ndarray]:
        factors = {
            name: np.clip(np.asarray(grid, dtype=np.float64), 0.0, 1.0)
            for name, grid in self.factors(inputs).items()
        }
        logger.debug(
            f"{self.key} factors: "
            + ", ".join(f"{name} mean={grid.mean():.3f}" for name, grid in factors.items())
        )
        return factors


def _combiner(key: str, *components) -> LayerCombiner:
    return LayerCombiner(name=key, components=tuple(components))


DOMAINS = {
    "surface-water": DomainTransform(
        key="surface-water",
        router="terrain",
        combiner=_combiner(
            "surface-water",
            LayerComponent("discharge", "additive", 0.6),
            LayerComponent("retention", "additive", 0.4),
        ),
        factors=_surface_water,
        description="Runoff routed downslope to water users",
    ),
    "flood-water": DomainTransform(
        key="flood-water",
        router="terrain",
        combiner=_combiner(
            "flood-water",
            LayerComponent("flood_routing", "additive", 0.7),
            LayerComponent("low_lying", "additive", 0.3),
            LayerComponent("infiltration", "multiplicative"),
        ),
        factors=_flood_water,
        description="Flood water concentrating in low-lying cells",
    ),
    "sediment": DomainTransform(
        key="sediment",
        router="terrain",
        combiner=_combiner(
            "sediment",
            LayerComponent("erosion", "additive", 1.0),
            LayerComponent("cover", "multiplicative"),
        ),
        factors=_sediment,
        description="Eroded sediment transported downslope",
    ),
    "carbon": DomainTransform(
        key="carbon",
        router="terrain",
        combiner=_combiner(
            "carbon",
            LayerComponent("fixation", "additive", 0.7),
            LayerComponent("moisture", "additive", 0.3),
            LayerComponent("storage", "multiplicative"),
        ),
        factors=_carbon,
        description="Carbon sequestration limited by storage capacity",
    ),
    "line-of-sight": DomainTransform(
        key="line-of-sight",
        router="direct",
        combiner=_combiner("line-of-sight", LayerComponent("visibility", "additive", 1.0)),
        factors=_line_of_sight,
        line_of_sight=True,
        description="Scenic views reaching unobstructed viewers",
    ),
    "proximity": DomainTransform(
        key="proximity",
        router="cost-distance",
        combiner=_combiner("proximity", LayerComponent("accessibility", "additive", 1.0)),
        factors=_proximity,
        description="Access to nearby beneficiaries over resistance",
    ),
    "coastal-storm-protection": DomainTransform(
        key="coastal-storm-protection",
        router="cost-distance",
        combiner=_combiner(
            "coastal-storm-protection",
            LayerComponent("shelter", "additive", 0.6),
            LayerComponent("exposure", "additive", 0.4),
        ),
        factors=_coastal_storm_protection,
        description="Wave attenuation sheltering exposed coastal cells",
    ),
    "subsistence-fisheries": DomainTransform(
        key="subsistence-fisheries",
        router="direct",
        combiner=_combiner(
            "subsistence-fisheries",
            LayerComponent("catch", "additive", 0.7),
            LayerComponent("habitat", "additive", 0.3),
            LayerComponent("catch_efficiency", "multiplicative"),
        ),
        factors=_subsistence_fisheries,
        description="Fish yield reaching subsistence fishers",
    ),
}


def normalize_key(key) -> str:
    """Lowercase with '_' and spaces turned into '-'."""
    return str(key).strip().lower().replace("_", "-").replace(" ", "-")


def get_domain(key) -> DomainTransform:
    """
    Look up a domain by flow model key.

    Raises:
        UnsupportedModelError: If the key is not a supported flow model
    """
    normalized = normalize_key(key)
    if normalized not in DOMAINS:
        raise UnsupportedModelError(key, DOMAINS.keys())
    return DOMAINS[normalized]

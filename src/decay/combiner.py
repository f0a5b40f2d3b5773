"""
Layer combination system for domain flow transforms.

Provides:
- LayerComponent: Defines a single factor layer and its role
- LayerCombiner: Combines factor layers into a delivered fraction of supply

Components have two roles:
- additive: Weighted sum (e.g., discharge, retention)
- multiplicative: Penalties that reduce the delivered fraction (e.g., storage limit)

Formula: fraction = (sum of weighted additive) * (product of multiplicative)

Every factor is a grid in [0, 1] and the additive weights sum to 1.0, so the
combined fraction stays in [0, 1] and the contributions it produces never
exceed the supply they are scaled by.
"""

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

import numpy as np


@dataclass(frozen=True)
class LayerComponent:
    """
    A single factor layer with its role.

    Attributes:
        name: Identifier for this component (used as key in the factor dict)
        role: "additive" (weighted sum) or "multiplicative" (penalty)
        weight: Weight for additive components (must be provided if role="additive")
    """

    name: str
    role: Literal["additive", "multiplicative"]
    weight: Optional[float] = None

    def __post_init__(self):
        """Validate the component configuration."""
        if self.role not in ("additive", "multiplicative"):
            raise ValueError(f"Component '{self.name}' has unknown role '{self.role}'")

        if self.role == "additive" and self.weight is None:
            raise ValueError(
                f"Component '{self.name}' has role='additive' but no weight. "
                "Additive components must have a weight."
            )

        if self.weight is not None and self.weight < 0:
            raise ValueError(f"Component '{self.name}' has negative weight {self.weight}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"name": self.name, "role": self.role, "weight": self.weight}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LayerComponent":
        """Deserialize from dictionary."""
        return cls(name=data["name"], role=data["role"], weight=data.get("weight"))


@dataclass(frozen=True)
class LayerCombiner:
    """
    Combines factor layers into the fraction of supply a domain delivers.

    Attributes:
        name: Identifier for this combiner (usually the flow model key)
        components: LayerComponent instances
    """

    name: str
    components: tuple[LayerComponent, ...] = field(default_factory=tuple)

    def __post_init__(self):
        """Validate the combiner configuration."""
        # Check that additive weights sum to 1.0
        additive_weights = [c.weight for c in self.components if c.role == "additive"]

        if not additive_weights:
            raise ValueError(f"Combiner '{self.name}' needs at least one additive component")

        total = sum(additive_weights)
        if not np.isclose(total, 1.0, rtol=1e-5):
            raise ValueError(
                f"Additive component weights must sum to 1.0, got {total:.4f}. "
                f"Weights: {additive_weights}"
            )

    @property
    def additive(self) -> list[LayerComponent]:
        return [c for c in self.components if c.role == "additive"]

    @property
    def multiplicative(self) -> list[LayerComponent]:
        return [c for c in self.components if c.role == "multiplicative"]

    def _checked_factors(self, factors: dict[str, np.ndarray]) -> dict[str, np.ndarray]:
        checked = {}
        for component in self.components:
            if component.name not in factors:
                raise KeyError(
                    f"Missing factor for component '{component.name}'. "
                    f"Available factors: {list(factors.keys())}"
                )
            checked[component.name] = np.clip(np.asarray(factors[component.name], dtype=float), 0.0, 1.0)
        return checked

    def penalty(self, factors: dict[str, np.ndarray]) -> np.ndarray:
        """Product of all multiplicative factors (1.0 when there are none)."""
        checked = self._checked_factors(factors)
        result = 1.0
        for component in self.multiplicative:
            result = result * checked[component.name]
        return np.asarray(result, dtype=float)

    def combine(self, factors: dict[str, np.ndarray]) -> np.ndarray:
        """
        Compute the combined fraction from factor grids.

        Args:
            factors: Dictionary mapping component names to [0, 1] grids

        Returns:
            Combined fraction in [0, 1]
        """
        checked = self._checked_factors(factors)
        additive_sum = 0.0
        for component in self.additive:
            additive_sum = additive_sum + component.weight * checked[component.name]
        return np.clip(additive_sum * self.penalty(factors), 0.0, 1.0)

    def contributions(self, factors: dict[str, np.ndarray], supply: np.ndarray) -> dict[str, np.ndarray]:
        """
        Split supply into one contribution grid per additive component.

        The contributions sum to combine(factors) * supply.
        """
        checked = self._checked_factors(factors)
        penalty = self.penalty(factors)
        supply = np.asarray(supply, dtype=float)
        return {
            component.name: component.weight * checked[component.name] * penalty * supply
            for component in self.additive
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"name": self.name, "components": [c.to_dict() for c in self.components]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LayerCombiner":
        """Deserialize from dictionary."""
        components = tuple(LayerComponent.from_dict(c) for c in data["components"])
        return cls(name=data["name"], components=components)

"""
Tests for the layer combiner used by domain transforms.

Formula: fraction = (sum of weighted additive) * (product of multiplicative)
"""

import numpy as np
import pytest

from src.decay.combiner import LayerCombiner, LayerComponent


# =============================================================================
# LAYER COMPONENT TESTS
# =============================================================================


class TestLayerComponent:
    """Test LayerComponent definition."""

    def test_create_additive_component(self):
        component = LayerComponent("discharge", "additive", 0.6)
        assert component.name == "discharge"
        assert component.weight == 0.6

    def test_multiplicative_has_no_weight(self):
        component = LayerComponent("storage", "multiplicative")
        assert component.weight is None

    def test_additive_requires_weight(self):
        with pytest.raises(ValueError, match="weight"):
            LayerComponent("discharge", "additive")

    def test_unknown_role(self):
        with pytest.raises(ValueError, match="role"):
            LayerComponent("discharge", "exponential", 1.0)

    def test_negative_weight(self):
        with pytest.raises(ValueError, match="negative"):
            LayerComponent("discharge", "additive", -0.1)

    def test_dict_round_trip(self):
        component = LayerComponent("retention", "additive", 0.4)
        assert LayerComponent.from_dict(component.to_dict()) == component


# =============================================================================
# COMBINER TESTS
# =============================================================================


@pytest.fixture
def water_combiner():
    return LayerCombiner(
        name="water",
        components=(
            LayerComponent("discharge", "additive", 0.6),
            LayerComponent("retention", "additive", 0.4),
            LayerComponent("infiltration", "multiplicative"),
        ),
    )


class TestLayerCombiner:
    """Test LayerCombiner validation and combination."""

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValueError, match="sum to 1.0"):
            LayerCombiner(
                name="bad",
                components=(
                    LayerComponent("a", "additive", 0.5),
                    LayerComponent("b", "additive", 0.3),
                ),
            )

    def test_requires_additive_component(self):
        with pytest.raises(ValueError, match="additive"):
            LayerCombiner(name="bad", components=(LayerComponent("p", "multiplicative"),))

    def test_roles_split(self, water_combiner):
        assert [c.name for c in water_combiner.additive] == ["discharge", "retention"]
        assert [c.name for c in water_combiner.multiplicative] == ["infiltration"]

    def test_combine(self, water_combiner):
        factors = {
            "discharge": np.array([1.0, 0.5]),
            "retention": np.array([0.0, 0.5]),
            "infiltration": np.array([1.0, 0.5]),
        }
        result = water_combiner.combine(factors)
        np.testing.assert_allclose(result, [0.6, 0.25])

    def test_factors_clipped_to_unit_interval(self, water_combiner):
        factors = {"discharge": 3.0, "retention": -1.0, "infiltration": 2.0}
        assert float(water_combiner.combine(factors)) == pytest.approx(0.6)

    def test_missing_factor(self, water_combiner):
        with pytest.raises(KeyError, match="infiltration"):
            water_combiner.combine({"discharge": 1.0, "retention": 1.0})

    def test_contributions_sum_to_combined_supply(self, water_combiner):
        rng = np.random.default_rng(0)
        factors = {name: rng.random((4, 4)) for name in ("discharge", "retention", "infiltration")}
        supply = rng.uniform(0, 10, (4, 4))

        contributions = water_combiner.contributions(factors, supply)

        assert set(contributions) == {"discharge", "retention"}
        total = contributions["discharge"] + contributions["retention"]
        np.testing.assert_allclose(total, water_combiner.combine(factors) * supply)
        assert np.all(total <= supply + 1e-12)

    def test_dict_round_trip(self, water_combiner):
        restored = LayerCombiner.from_dict(water_combiner.to_dict())
        assert restored == water_combiner

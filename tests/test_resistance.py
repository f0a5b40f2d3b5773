"""Tests for ResistanceField construction."""

import numpy as np
import pytest

from src.serviceflow.errors import MissingDataError
from src.serviceflow.grid import RasterGrid
from src.serviceflow.resistance import ResistanceField, normalize_resistance


class TestNormalizeResistance:
    """Test scaling raw resistance into [0, 1]."""

    def test_divides_by_maximum_above_one(self):
        result = normalize_resistance(np.array([[0.0, 2.0], [4.0, 1.0]]))
        np.testing.assert_allclose(result, [[0.0, 0.5], [1.0, 0.25]])

    def test_unit_grid_unchanged(self):
        result = normalize_resistance(np.ones((3, 3)))
        np.testing.assert_array_equal(result, np.ones((3, 3)))

    def test_negative_values_clamped(self):
        result = normalize_resistance(np.array([[-5.0, 0.5]]))
        np.testing.assert_allclose(result, [[0.0, 0.5]])


class TestResistanceField:
    """Test the weighted and cumulative surfaces."""

    def test_missing_grid(self):
        with pytest.raises(MissingDataError, match="resistance"):
            ResistanceField.build(None)

    def test_empty_grid(self):
        with pytest.raises(MissingDataError):
            ResistanceField.build(RasterGrid(np.empty((0, 0))))

    def test_weighted_applies_factor(self):
        grid = RasterGrid(np.array([[0.2, 0.4], [0.6, 0.8]]))
        field = ResistanceField.build(grid, resistance_factor=2.0)
        np.testing.assert_allclose(field.weighted.values, [[0.4, 0.8], [1.2, 1.6]])
        assert field.resistance_factor == 2.0

    def test_non_negative(self):
        rng = np.random.default_rng(3)
        grid = RasterGrid(rng.normal(0, 5, (6, 6)))
        field = ResistanceField.build(grid, resistance_factor=0.5)
        assert np.all(field.weighted.values >= 0)
        assert np.all(field.normalized.values <= 1)

    def test_cumulative_prefix_sum(self):
        grid = RasterGrid(np.full((2, 3), 0.5))
        field = ResistanceField.build(grid)
        expected = np.array([[0.5, 1.0, 1.5], [1.0, 2.0, 3.0]])
        np.testing.assert_allclose(field.cumulative.values, expected)
        assert field.mean_friction == pytest.approx(0.5)

    def test_keeps_cell_geometry(self):
        grid = RasterGrid(np.ones((2, 2)), cell_width=30.0, cell_height=30.0)
        field = ResistanceField.build(grid)
        assert field.weighted.cell_width == 30.0

    def test_does_not_touch_input(self):
        data = np.array([[3.0, 6.0]])
        grid = RasterGrid(data)
        ResistanceField.build(grid)
        np.testing.assert_array_equal(grid.values, [[3.0, 6.0]])

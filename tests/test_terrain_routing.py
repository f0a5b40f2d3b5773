"""
Tests for D8 flow direction, accumulation and the terrain router.

Codes run clockwise from east: 1=E, 2=SE, 3=S, 4=SW, 5=W, 6=NW, 7=N, 8=NE,
0 = outlet or pit.
"""

import numpy as np
import pytest

from src.serviceflow.grid import AnalysisLayers
from src.serviceflow.parameters import Parameters
from src.serviceflow.resistance import ResistanceField
from src.serviceflow.routing import TerrainRouter
from src.serviceflow.terrain import (
    accumulate,
    compute_flow_direction,
    compute_slope,
    downstream_cell,
    invalid_flow_directions,
)


class TestFlowDirection:
    """Test steepest-descent direction codes."""

    def test_ramp_flows_east(self, ramp_elevation):
        flow_dir = compute_flow_direction(ramp_elevation)
        assert np.all(flow_dir[:, :-1] == 1)
        # Last column has no lower neighbour
        assert np.all(flow_dir[:, -1] == 0)

    def test_flat_grid_is_all_outlets(self):
        flow_dir = compute_flow_direction(np.full((4, 4), 10.0))
        assert np.all(flow_dir == 0)

    def test_pit_has_no_direction(self):
        dem = np.full((3, 3), 5.0)
        dem[1, 1] = 1.0
        flow_dir = compute_flow_direction(dem)
        assert flow_dir[1, 1] == 0
        # Every neighbour drains into the pit
        assert flow_dir[0, 0] == 2  # SE
        assert flow_dir[0, 1] == 3  # S
        assert flow_dir[1, 2] == 5  # W
        assert flow_dir[2, 1] == 7  # N

    def test_tie_goes_to_first_code(self):
        """Equal drops to S and E: E (code 1) comes first."""
        dem = np.array([[2.0, 1.0], [1.0, 1.5]])
        flow_dir = compute_flow_direction(dem)
        assert flow_dir[0, 0] == 1

    def test_diagonal_slope_uses_distance(self):
        """A diagonal drop of 1.2 loses to a cardinal drop of 1.0 (1.2 / sqrt(2) < 1)."""
        dem = np.array([[5.0, 4.0], [5.0, 3.8]])
        flow_dir = compute_flow_direction(dem)
        assert flow_dir[0, 0] == 1

    def test_cell_size_changes_steepest_neighbour(self):
        """Wide cells make the east drop shallower than the south drop."""
        dem = np.array([[5.0, 3.0], [4.0, 4.0]])
        assert compute_flow_direction(dem)[0, 0] == 1
        assert compute_flow_direction(dem, cell_width=10.0, cell_height=1.0)[0, 0] == 3

    def test_codes_are_valid_and_descending(self, random_layers):
        dem = random_layers.spatial.values
        flow_dir = compute_flow_direction(dem)
        assert flow_dir.min() >= 0 and flow_dir.max() <= 8
        assert invalid_flow_directions(dem, flow_dir) == 0


class TestInvalidFlowDirections:
    """Test detection of inconsistent direction codes."""

    def test_uphill_code_detected(self, ramp_elevation):
        flow_dir = compute_flow_direction(ramp_elevation)
        flow_dir[2, 3] = 5  # West is uphill on this ramp
        assert invalid_flow_directions(ramp_elevation, flow_dir) == 1

    def test_out_of_range_code_detected(self, ramp_elevation):
        flow_dir = compute_flow_direction(ramp_elevation)
        flow_dir[0, 0] = 9
        assert invalid_flow_directions(ramp_elevation, flow_dir) == 1

    def test_code_off_the_grid_detected(self, ramp_elevation):
        flow_dir = compute_flow_direction(ramp_elevation)
        flow_dir[0, 0] = 7  # North of the top row
        assert invalid_flow_directions(ramp_elevation, flow_dir) == 1


class TestAccumulation:
    """Test Kahn-order accumulation."""

    def test_ramp_accumulation_strictly_increases(self, ramp_elevation):
        flow_dir = compute_flow_direction(ramp_elevation)
        acc = accumulate(flow_dir)
        assert np.all(np.diff(acc, axis=1) > 0)
        np.testing.assert_array_equal(acc[0], [1, 2, 3, 4, 5, 6])

    def test_weighted_accumulation(self, ramp_elevation):
        flow_dir = compute_flow_direction(ramp_elevation)
        weights = np.zeros(ramp_elevation.shape)
        weights[:, 0] = 2.0
        acc = accumulate(flow_dir, weights)
        np.testing.assert_allclose(acc[:, -1], 2.0)
        np.testing.assert_allclose(acc[:, 0], 2.0)

    def test_total_reaches_outlets(self, random_layers):
        flow_dir = compute_flow_direction(random_layers.spatial.values)
        acc = accumulate(flow_dir)
        assert acc[flow_dir == 0].sum() == pytest.approx(flow_dir.size)

    def test_pit_collects_neighbours(self):
        dem = np.full((3, 3), 5.0)
        dem[1, 1] = 1.0
        acc = accumulate(compute_flow_direction(dem))
        assert acc[1, 1] == 9

    def test_cycle_detected(self):
        flow_dir = np.array([[1, 5]], dtype=np.int8)  # East then west
        with pytest.raises(RuntimeError, match="Cycle"):
            accumulate(flow_dir)

    def test_weights_shape_checked(self):
        with pytest.raises(ValueError, match="shape"):
            accumulate(np.zeros((2, 2), dtype=np.int8), np.ones((3, 3)))


class TestSlopeAndNavigation:
    """Test slope and downstream helpers."""

    def test_slope_of_flat_grid_is_zero(self):
        np.testing.assert_allclose(compute_slope(np.full((5, 5), 3.0)), 0.0)

    def test_slope_of_unit_ramp_is_45_degrees(self, ramp_elevation):
        slope = compute_slope(ramp_elevation)
        np.testing.assert_allclose(slope[:, 1:-1], 45.0)

    def test_downstream_cell(self, ramp_elevation):
        flow_dir = compute_flow_direction(ramp_elevation)
        assert downstream_cell(flow_dir, 0, 0) == (0, 1)
        assert downstream_cell(flow_dir, 0, 5) is None


class TestTerrainRouter:
    """Test routing along flow direction."""

    def _route(self, supply, demand, elevation, **params):
        layers = AnalysisLayers.from_arrays(supply, demand, np.zeros(supply.shape), elevation)
        field = ResistanceField.build(layers.resistance)
        return TerrainRouter().route(layers, field, Parameters(**params))

    def test_source_reaches_first_downstream_demand(self, ramp_elevation):
        supply = np.zeros(ramp_elevation.shape)
        supply[2, 0] = 3.0
        demand = np.zeros(ramp_elevation.shape)
        demand[2, 3] = 1.0
        demand[2, 5] = 1.0

        result = self._route(supply, demand, ramp_elevation)

        assert len(result.paths) == 1
        path = result.paths[0]
        assert path.sink == (2, 3)
        assert path.cells == ((2, 0), (2, 1), (2, 2), (2, 3))
        assert path.length == pytest.approx(3.0)
        # Zero resistance means no decay
        assert path.intensity == pytest.approx(3.0)

    def test_surfaces(self, ramp_elevation):
        supply = np.zeros(ramp_elevation.shape)
        supply[:, 0] = 1.0
        demand = np.zeros(ramp_elevation.shape)
        demand[:, -1] = 1.0

        result = self._route(supply, demand, ramp_elevation)

        for name in ("flow_direction", "accumulation", "supply_accumulation", "slope", "source_potential"):
            assert name in result.surfaces
        np.testing.assert_allclose(result.surfaces["supply_accumulation"][:, -1], 1.0)
        assert result.candidate_pairs == 5

    def test_source_with_demand_is_single_cell_path(self, ramp_elevation):
        supply = np.zeros(ramp_elevation.shape)
        supply[1, 1] = 2.0
        demand = np.zeros(ramp_elevation.shape)
        demand[1, 1] = 0.5

        result = self._route(supply, demand, ramp_elevation)

        assert result.paths[0].cells == ((1, 1),)
        assert result.paths[0].length == 0.0
        assert result.paths[0].intensity == pytest.approx(1.0)

    def test_outlet_abandons_path(self, ramp_elevation):
        supply = np.zeros(ramp_elevation.shape)
        supply[0, 0] = 1.0
        demand = np.zeros(ramp_elevation.shape)
        demand[4, 0] = 1.0  # Not downstream of the source

        result = self._route(supply, demand, ramp_elevation)
        assert result.paths == ()

    def test_max_distance_cuts_path(self, ramp_elevation):
        supply = np.zeros(ramp_elevation.shape)
        supply[0, 0] = 1.0
        demand = np.zeros(ramp_elevation.shape)
        demand[0, 5] = 1.0

        assert len(self._route(supply, demand, ramp_elevation, max_distance=5.0).paths) == 1
        assert self._route(supply, demand, ramp_elevation, max_distance=4.5).paths == ()

"""Tests for RasterGrid, AnalysisLayers and Parameters."""

import numpy as np
import pytest
from affine import Affine

from src.serviceflow.errors import DimensionMismatchError, InvalidParameterError, MissingDataError
from src.serviceflow.grid import AnalysisLayers, RasterGrid
from src.serviceflow.parameters import Parameters


class TestRasterGrid:
    """Test the grid primitive."""

    def test_copies_and_freezes_data(self):
        data = np.ones((2, 3))
        grid = RasterGrid(data, cell_width=30.0, cell_height=30.0)
        data[0, 0] = 99.0

        assert grid.data[0, 0] == 1.0
        with pytest.raises(ValueError):
            grid.data[0, 0] = 5.0

    def test_shape_properties(self):
        grid = RasterGrid(np.zeros((4, 7)))
        assert grid.shape == (4, 7)
        assert grid.rows == 4
        assert grid.cols == 7
        assert grid.size == 28

    def test_values_are_float64(self):
        grid = RasterGrid(np.arange(4, dtype=np.int32).reshape(2, 2))
        assert grid.values.dtype == np.float64
        assert grid.total() == 6.0

    def test_boolean_grid_is_not_numeric(self):
        assert not RasterGrid(np.zeros((2, 2), dtype=bool)).is_numeric
        assert RasterGrid(np.zeros((2, 2), dtype=np.int16)).is_numeric

    def test_transform(self):
        grid = RasterGrid(np.zeros((2, 2)), cell_width=10.0, cell_height=20.0)
        assert grid.transform == Affine.scale(10.0, -20.0)

    def test_like_keeps_geometry(self):
        grid = RasterGrid(np.zeros((2, 2)), cell_width=5.0, cell_height=5.0)
        other = grid.like(np.ones((2, 2)))
        assert other.cell_width == 5.0
        assert grid.is_coregistered(other)

    def test_cell_size_mismatch_is_not_coregistered(self):
        a = RasterGrid(np.zeros((2, 2)), cell_width=1.0)
        b = RasterGrid(np.zeros((2, 2)), cell_width=2.0)
        assert not a.is_coregistered(b)


class TestAnalysisLayers:
    """Test structural checks on the layer bundle."""

    def test_missing_layer(self):
        layers = AnalysisLayers.from_arrays(np.ones((2, 2)), None, np.ones((2, 2)), np.ones((2, 2)))
        with pytest.raises(MissingDataError, match="demand"):
            layers.require_all()

    def test_empty_layer_is_missing(self):
        layers = AnalysisLayers.from_arrays(np.ones((2, 2)), np.ones((2, 2)), np.empty((0, 0)), np.ones((2, 2)))
        with pytest.raises(MissingDataError, match="resistance"):
            layers.require_all()

    def test_shape_mismatch(self):
        layers = AnalysisLayers.from_arrays(np.ones((3, 3)), np.ones((3, 4)), np.ones((3, 3)), np.ones((3, 3)))
        with pytest.raises(DimensionMismatchError, match="demand"):
            layers.check_coregistered()

    def test_optional_layer_mismatch(self):
        layers = AnalysisLayers.from_arrays(
            np.ones((3, 3)), np.ones((3, 3)), np.ones((3, 3)), np.ones((3, 3)), barriers=np.zeros((2, 2))
        )
        with pytest.raises(DimensionMismatchError, match="barriers"):
            layers.check_coregistered()

    def test_one_dimensional_layer(self):
        layers = AnalysisLayers.from_arrays(np.ones(3), np.ones(3), np.ones(3), np.ones(3))
        with pytest.raises(DimensionMismatchError, match="2-D"):
            layers.check_coregistered()

    def test_barrier_mask(self):
        barriers = np.zeros((3, 3))
        barriers[1, :] = 1
        layers = AnalysisLayers.from_arrays(
            np.ones((3, 3)), np.ones((3, 3)), np.ones((3, 3)), np.ones((3, 3)), barriers=barriers
        )
        assert layers.barrier_mask().sum() == 3

    def test_no_barriers_means_empty_mask(self, diagonal_layers):
        assert not diagonal_layers.barrier_mask().any()


class TestParameters:
    """Test the immutable parameter record."""

    def test_defaults(self):
        params = Parameters()
        assert params.alpha == 0.5
        assert params.distance_decay == "exponential"
        assert params.source_finite and params.sink_finite and params.use_finite
        assert params.rival

    def test_is_frozen(self):
        params = Parameters()
        with pytest.raises(Exception):
            params.alpha = 1.0

    def test_updated_returns_new_record(self):
        params = Parameters()
        changed = params.updated(alpha=1.5, benefit_type="non-rival")
        assert changed.alpha == 1.5
        assert not changed.rival
        assert params.alpha == 0.5

    def test_updated_rejects_unknown_key(self):
        with pytest.raises(InvalidParameterError, match="Unrecognized"):
            Parameters().updated(speed=3)

    def test_from_dict_rejects_unknown_key(self):
        with pytest.raises(InvalidParameterError, match="Unrecognized"):
            Parameters.from_dict({"alpha": 0.1, "omega": 2})

    def test_dict_round_trip(self):
        params = Parameters(alpha=0.2, max_distance=12.0, domain_options={"carbon_rate": 3.0})
        assert Parameters.from_dict(params.to_dict()) == params

    @pytest.mark.parametrize(
        "changes",
        [
            {"alpha": -0.1},
            {"gamma": "high"},
            {"max_distance": 0},
            {"cell_width": -1.0},
            {"distance_decay": "cubic"},
            {"source_type": "bounded"},
            {"benefit_type": "shared"},
            {"top_n_bottlenecks": 0},
        ],
    )
    def test_invalid_values(self, changes):
        with pytest.raises(InvalidParameterError):
            Parameters(**changes)

    @pytest.mark.parametrize(
        "name", ["alpha", "beta", "gamma", "flow_threshold", "resistance_factor", "cell_width", "max_distance"]
    )
    def test_nan_rejected(self, name):
        with pytest.raises(InvalidParameterError):
            Parameters(**{name: float("nan")})

    @pytest.mark.parametrize("name", ["alpha", "validation_threshold", "cell_height"])
    def test_infinite_coefficient_rejected(self, name):
        with pytest.raises(InvalidParameterError, match="finite"):
            Parameters(**{name: float("inf")})

    def test_unbounded_max_distance_allowed(self):
        assert Parameters(max_distance=float("inf")).max_distance == float("inf")

    def test_nan_rejected_on_update(self):
        with pytest.raises(InvalidParameterError):
            Parameters().updated(beta=float("nan"))

    def test_invalid_parameter_is_value_error(self):
        with pytest.raises(ValueError):
            Parameters(beta=-1.0)

    def test_option_fallback(self):
        params = Parameters(domain_options={"carbon_rate": 4.0})
        assert params.option("carbon_rate", 2.5) == 4.0
        assert params.option("storage_limit", 200.0) == 200.0

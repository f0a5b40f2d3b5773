"""Tests for input uncertainty estimation."""

import numpy as np
import pytest

from src.serviceflow.uncertainty import (
    UncertaintyEstimator,
    autocorrelation_peak,
    coefficient_of_variation,
    morans_i,
)


class TestCoefficientOfVariation:
    def test_constant_grid(self):
        assert coefficient_of_variation(np.full((3, 3), 4.0)) == 0.0

    def test_zero_mean(self):
        assert coefficient_of_variation(np.array([[-1.0, 1.0]])) == 0.0

    def test_known_value(self):
        values = np.array([[1.0, 3.0]])
        assert coefficient_of_variation(values) == pytest.approx(0.5)


class TestAutocorrelation:
    def test_smooth_gradient_is_highly_correlated(self):
        values = np.add.outer(np.arange(10.0), np.arange(10.0))
        assert autocorrelation_peak(values) == pytest.approx(1.0)

    def test_checkerboard_correlates_diagonally(self):
        """Horizontal and vertical shifts anticorrelate, diagonal shifts correlate."""
        checker = np.indices((6, 6)).sum(axis=0) % 2
        assert autocorrelation_peak(checker.astype(float)) == pytest.approx(1.0)

    def test_stripes_anticorrelate_everywhere_but_along_stripe(self):
        stripes = np.tile(np.array([[0.0], [1.0]]), (3, 6))
        assert autocorrelation_peak(stripes) == pytest.approx(1.0)

    def test_constant_grid_is_zero(self):
        assert autocorrelation_peak(np.ones((4, 4))) == 0.0

    def test_single_cell(self):
        assert autocorrelation_peak(np.array([[3.0]])) == 0.0

    def test_range(self):
        rng = np.random.default_rng(7)
        peak = autocorrelation_peak(rng.random((20, 20)))
        assert 0.0 <= peak <= 1.0
        assert peak < 0.5


class TestMoransI:
    def test_clustered_is_positive(self):
        values = np.zeros((8, 8))
        values[:4, :] = 1.0
        assert morans_i(values) > 0.5

    def test_checkerboard_is_negative(self):
        checker = (np.indices((8, 8)).sum(axis=0) % 2).astype(float)
        assert morans_i(checker) < 0

    def test_constant_is_zero(self):
        assert morans_i(np.full((4, 4), 2.0)) == 0.0


class TestUncertaintyEstimator:
    def test_constant_layers_have_zero_uncertainty(self):
        report = UncertaintyEstimator().estimate(np.ones((4, 4)), np.ones((4, 4)), np.ones((4, 4)))
        assert report.combined == 0.0
        assert not report.exceeds_threshold

    def test_component_formula(self):
        rng = np.random.default_rng(11)
        supply = rng.uniform(0, 10, (10, 10))
        report = UncertaintyEstimator().estimate(supply, np.ones((10, 10)), np.ones((10, 10)))

        component = report.component("supply")
        expected = component.coefficient_of_variation * (1 - component.autocorrelation_peak)
        assert component.uncertainty == pytest.approx(expected)
        assert report.combined == pytest.approx(min(1.0, expected))

    def test_combined_clamped_and_flagged(self):
        rng = np.random.default_rng(5)
        sparse = np.where(rng.random((15, 15)) > 0.9, 100.0, 0.0)
        report = UncertaintyEstimator(threshold=0.2).estimate(sparse, sparse, sparse)
        assert report.combined == 1.0
        assert report.exceeds_threshold

    def test_unknown_component(self):
        report = UncertaintyEstimator().estimate(np.ones((2, 2)), np.ones((2, 2)), np.ones((2, 2)))
        with pytest.raises(KeyError):
            report.component("elevation")

    def test_to_dict(self):
        report = UncertaintyEstimator(0.3).estimate(np.ones((2, 2)), np.ones((2, 2)), np.ones((2, 2)))
        data = report.to_dict()
        assert data["threshold"] == 0.3
        assert [c["name"] for c in data["components"]] == ["supply", "demand", "resistance"]

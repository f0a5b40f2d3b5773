"""Pytest configuration and fixtures for service-flow tests."""
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import pytest
import numpy as np


@pytest.fixture
def diagonal_layers():
    """3x3 grid: supply 2 in the top-left corner, demand 1 in the bottom-right."""
    from src.serviceflow.grid import AnalysisLayers

    supply = np.zeros((3, 3))
    supply[0, 0] = 2.0
    demand = np.zeros((3, 3))
    demand[2, 2] = 1.0
    return AnalysisLayers.from_arrays(supply, demand, np.ones((3, 3)), np.zeros((3, 3)))


@pytest.fixture
def ramp_elevation():
    """Elevation decreasing strictly from left to right (5x6)."""
    return np.tile(np.arange(6, 0, -1, dtype=np.float64), (5, 1))


@pytest.fixture
def random_layers():
    """Reproducible 12x12 layers with scattered sources and sinks."""
    from src.serviceflow.grid import AnalysisLayers

    rng = np.random.default_rng(42)
    supply = np.where(rng.random((12, 12)) > 0.8, rng.uniform(1, 5, (12, 12)), 0.0)
    demand = np.where(rng.random((12, 12)) > 0.8, rng.uniform(1, 5, (12, 12)), 0.0)
    resistance = rng.uniform(0, 1, (12, 12))
    x = np.linspace(-3, 3, 12)
    X, Y = np.meshgrid(x, x)
    elevation = 100 + 20 * np.exp(-(X**2 + Y**2) / 4) - 2 * X
    return AnalysisLayers.from_arrays(supply, demand, resistance, elevation)


@pytest.fixture
def balanced_inputs():
    """
    8x8 inputs with equal total supply and demand on a tilted surface.

    Returns a dict of arrays for ServiceFlowEngine.analyze.
    """
    supply = np.zeros((8, 8))
    supply[1, 1] = 4.0
    supply[2, 5] = 2.0
    demand = np.zeros((8, 8))
    demand[6, 6] = 3.0
    demand[5, 2] = 3.0
    resistance = np.full((8, 8), 0.2)
    resistance[4, :] = 0.8
    rows, cols = np.mgrid[0:8, 0:8]
    elevation = 50.0 - rows - 0.5 * cols + 0.01 * ((rows * 7 + cols * 3) % 5)
    return {"supply": supply, "demand": demand, "resistance": resistance, "spatial": elevation}


@pytest.fixture
def project_root():
    """Get the project root directory."""
    return Path(__file__).parent.parent

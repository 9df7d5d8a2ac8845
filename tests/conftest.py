"""Pytest configuration and fixtures for the radiator flow solver tests."""

import matplotlib

matplotlib.use("Agg")

import pytest

from geometry import Grid
from mac_solver import InflowConditions, SolverParams, initialize


@pytest.fixture
def small_grid():
    """40x20 grid on a 2 m x 1 m tunnel (h = 0.05)."""
    return Grid.from_domain(40, 20, 2.0, 1.0)


@pytest.fixture
def tiny_grid():
    """16x8 grid on a 2 m x 1 m tunnel (h = 0.125), cheap enough for tight solves."""
    return Grid.from_domain(16, 8, 2.0, 1.0)


@pytest.fixture
def symmetry_inflow():
    """Uniform 2 m/s air, slip walls, no tracer."""
    return InflowConditions(speed=2.0, density=1.2, viscosity=1.8e-5, smoke=None, walls="symmetry")


@pytest.fixture
def tight_params():
    """Pressure solve converged far below the default cap."""
    return SolverParams(max_iters=5000, tolerance=1e-11, over_relaxation=1.85)


@pytest.fixture
def make_state(small_grid):
    """Factory: make_state(obstacles=(), grid=None, **inflow_kwargs, params=...)."""

    def _make(obstacles=(), grid=None, params=None, **inflow_kwargs):
        inflow = InflowConditions(**inflow_kwargs)
        return initialize(grid or small_grid, obstacles, inflow=inflow, params=params)

    return _make

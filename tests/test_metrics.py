"""Tests for the radiator performance metrics and the end-to-end flow scenarios."""

import math

import numpy as np
import pytest

from geometry import Airfoil, Circle, Grid, PorousMatrix
from mac_solver import InflowConditions, SolverParams, apply_porous_resistance, initialize, step
from radiator_metrics import (
    MetricsRecord,
    body_forces,
    compute_metrics,
    control_face,
    mass_flow_rate,
    pressure_drop,
)


def _run(state, steps, dt):
    for _ in range(steps):
        step(state, dt)
    return state


class TestUniformInflow:
    """Empty tunnel with slip walls: the flow must stay exactly uniform."""

    @pytest.fixture
    def state(self, small_grid, symmetry_inflow):
        return _run(initialize(small_grid, inflow=symmetry_inflow), 20, 0.01)

    def test_velocity_stays_uniform(self, state):
        np.testing.assert_allclose(state.u, 2.0, atol=1e-9)
        np.testing.assert_allclose(state.v, 0.0, atol=1e-9)

    def test_mass_flow_equals_inflow(self, state):
        assert mass_flow_rate(state) == pytest.approx(1.2 * 2.0 * 1.0, rel=1e-9)

    def test_no_pressure_drop(self, state):
        assert pressure_drop(state) == pytest.approx(0.0, abs=1e-8)

    def test_record_without_target(self, state):
        m = compute_metrics(state)
        assert isinstance(m, MetricsRecord)
        assert m.drag_force == 0.0 and m.lift_force == 0.0
        assert m.cooling_efficiency == pytest.approx(1.0, abs=1e-6)
        assert m.fan_power_required == pytest.approx(0.0, abs=1e-6)
        assert m.inlet_velocity == pytest.approx(2.0, rel=1e-9)
        assert m.outlet_velocity == pytest.approx(2.0, rel=1e-9)

    def test_to_dict_fields(self, state):
        d = compute_metrics(state).to_dict()
        for key in (
            "mass_flow_rate", "pressure_drop", "drag_force", "lift_force",
            "cooling_efficiency", "fan_power_required", "angle_degrees",
        ):
            assert key in d

    def test_metrics_are_read_only(self, state):
        u, p = state.u.copy(), state.p.copy()
        compute_metrics(state)
        np.testing.assert_array_equal(state.u, u)
        np.testing.assert_array_equal(state.p, p)


class TestUniformInflowNoSlip:
    """Default no-slip walls: the wall taper must not leak into the flux integral."""

    @pytest.fixture
    def state(self, small_grid):
        inflow = InflowConditions(speed=2.0, smoke=None)
        return _run(initialize(small_grid, inflow=inflow), 20, 0.01)

    def test_mass_flow_equals_inflow(self, state):
        assert state.noslip
        np.testing.assert_allclose(state.u, 2.0, atol=1e-9)
        assert mass_flow_rate(state) == pytest.approx(1.2 * 2.0 * 1.0, rel=1e-9)

    def test_probe_speeds_near_wall(self, state):
        m = compute_metrics(state)
        assert m.inlet_velocity == pytest.approx(2.0, rel=1e-9)
        assert m.cooling_efficiency == pytest.approx(1.0, abs=1e-6)


class TestPorousStep:
    """Implicit Darcy damping on the faces of a single porous column."""

    @staticmethod
    def _column(nx, ny, col, a):
        lin = np.zeros((nx, ny))
        lin[col, :] = a
        quad = np.zeros((nx, ny))
        dir_x = np.zeros((nx, ny))
        dir_x[col, :] = 1.0
        dir_y = np.zeros((nx, ny))
        return lin, quad, dir_x, dir_y

    def test_edge_face_gets_full_coefficient(self):
        nx, ny, a, dt = 6, 4, 10.0, 0.1
        lin, quad, dir_x, dir_y = self._column(nx, ny, 0, a)
        u0 = np.ones((nx + 1, ny))
        v0 = np.zeros((nx, ny + 1))
        u1 = np.empty_like(u0)
        v1 = np.empty_like(v0)
        apply_porous_resistance(u0, v0, u1, v1, lin, quad, dir_x, dir_y, dt)

        # inflow face touches one cell, first interior face is half porous
        np.testing.assert_allclose(u1[0], 1.0 / (1.0 + dt * a))
        np.testing.assert_allclose(u1[1], 1.0 / (1.0 + dt * 0.5 * a))
        np.testing.assert_array_equal(u1[2:], 1.0)
        np.testing.assert_array_equal(v1, 0.0)

    def test_interior_face_between_porous_cells(self):
        nx, ny, a, dt = 6, 4, 10.0, 0.1
        lin, quad, dir_x, dir_y = self._column(nx, ny, 2, a)
        lin[3, :] = a
        dir_x[3, :] = 1.0
        u0 = np.ones((nx + 1, ny))
        v0 = np.zeros((nx, ny + 1))
        u1 = np.empty_like(u0)
        v1 = np.empty_like(v0)
        apply_porous_resistance(u0, v0, u1, v1, lin, quad, dir_x, dir_y, dt)
        np.testing.assert_allclose(u1[3], 1.0 / (1.0 + dt * a))
        np.testing.assert_allclose(u1[2], 1.0 / (1.0 + dt * 0.5 * a))

    def test_step_with_porous_matrix(self, small_grid):
        state = initialize(small_grid, [PorousMatrix(1.0, 0.5, 0.2, 0.2, 0.0, 10.0, 0.0)])
        step(state, 0.01)
        assert np.isfinite(state.u).all() and np.isfinite(state.v).all()
        assert state.u[20, 10] < state.inflow.speed


class TestControlFace:
    """Surface the metrics integrate over."""

    def test_whole_domain_when_no_target(self, small_grid):
        state = initialize(small_grid)
        centre, normal, span, offset = control_face(state)
        assert centre == (1.0, 0.5)
        assert normal == (1.0, 0.0)
        assert span == 1.0
        assert offset == pytest.approx(0.5)

    def test_porous_target_uses_matrix_frame(self, small_grid):
        m = PorousMatrix(1.0, 0.5, 0.2, 0.4, math.radians(30.0), 5.0, 0.0)
        state = initialize(small_grid, [m])
        centre, normal, span, offset = control_face(state, m)
        assert centre == (1.0, 0.5)
        assert normal == pytest.approx((math.cos(math.radians(30.0)), math.sin(math.radians(30.0))))
        assert span == pytest.approx(0.4)
        assert offset == pytest.approx(0.1 + 2 * small_grid.h)

    def test_unknown_target_rejected(self, small_grid):
        state = initialize(small_grid, [Circle(1.0, 0.5, 0.1)])
        with pytest.raises(ValueError):
            body_forces(state, Circle(0.5, 0.5, 0.1))

    def test_equal_target_is_found(self, small_grid):
        state = initialize(small_grid, [Circle(1.0, 0.5, 0.1)])
        drag, lift = body_forces(state, Circle(1.0, 0.5, 0.1))
        assert np.isfinite(drag) and np.isfinite(lift)


class TestPorousResistance:
    """Doubling the Darcy coefficient must cut the flow through the matrix."""

    @staticmethod
    def _matrix_run(small_grid, linear):
        m = PorousMatrix(1.0, 0.5, 0.2, 0.5, 0.0, linear, 0.0)
        state = initialize(
            small_grid,
            [m],
            inflow=InflowConditions(speed=1.0, smoke=None, walls="symmetry"),
            params=SolverParams(max_iters=200, tolerance=1e-8, over_relaxation=1.8),
        )
        _run(state, 150, 0.02)
        return state, m

    def test_mass_flow_decreases(self, small_grid):
        s5, m5 = self._matrix_run(small_grid, 5.0)
        s10, m10 = self._matrix_run(small_grid, 10.0)
        mdot5 = mass_flow_rate(s5, m5)
        mdot10 = mass_flow_rate(s10, m10)
        assert 0.0 < mdot10 < mdot5

    def test_matrix_metrics(self, small_grid):
        state, m = self._matrix_run(small_grid, 10.0)
        rec = compute_metrics(state, m)
        assert rec.pressure_drop > 0.0
        assert rec.drag_force > 0.0
        assert abs(rec.lift_force) < 0.05 * rec.drag_force
        # partial blockage: flow escapes around the matrix
        assert rec.cooling_efficiency < 1.0
        assert rec.fan_power_required == pytest.approx(rec.pressure_drop * rec.mass_flow_rate / 1.2)
        assert rec.angle_degrees == pytest.approx(0.0)


class TestAirfoilLift:
    """Symmetric section on the tunnel centre line: lift flips sign with the angle."""

    @staticmethod
    def _lift(angle_deg):
        grid = Grid.from_domain(40, 20, 2.0, 1.0)
        foil = Airfoil(0.6, 0.5, 0.5, 0.24, math.radians(angle_deg))
        state = initialize(
            grid,
            [foil],
            inflow=InflowConditions(speed=1.0, smoke=None, walls="symmetry"),
            params=SolverParams(max_iters=800, tolerance=1e-9, over_relaxation=1.95),
        )
        _run(state, 100, 0.02)
        return body_forces(state, foil)[1]

    def test_lift_sign_flips(self):
        up = self._lift(8.0)
        down = self._lift(-8.0)
        zero = self._lift(0.0)
        assert up * down < 0.0
        assert abs(up + down) < 0.2 * abs(up)
        assert abs(zero) < 0.1 * abs(up)

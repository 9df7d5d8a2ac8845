"""Tests for the case configuration and the angle sweep driver."""

import csv
import json
import math

import numpy as np
import pytest

from case_config import CaseConfig, build_radiator, build_state, pick_dt
from geometry import PorousMatrix
from run import load_state, save_state
from sweep_angle import FIELDNAMES, best_angle, plot_sweep, run_sweep, score, write_csv, write_json


@pytest.fixture
def tiny_case():
    """Coarse tunnel (h = 0.1) with a handful of steps per angle."""
    return CaseConfig(
        nx=40, ny=20,
        steps=5,
        out_every=0,
        stop_enable=False,
        max_iters=20,
        over_relaxation=1.5,
    )


class TestCaseConfig:
    def test_pick_dt_cfl_and_cap(self):
        assert pick_dt(5.0, 0.02, cfl=0.5, dt_cap=1.0) == pytest.approx(0.002)
        assert pick_dt(0.0, 0.02, cfl=0.5, dt_cap=0.01) == pytest.approx(0.01)

    def test_radiator_from_porosity(self, tiny_case):
        rad = build_radiator(tiny_case, 30.0)
        ref = PorousMatrix.from_porosity(1.6, 1.0, 0.15, 0.3, math.radians(30.0), 0.8, 100.0)
        assert rad == ref
        assert rad.angle == pytest.approx(math.radians(30.0))

    def test_coefficient_override(self):
        rad = build_radiator(CaseConfig(linear_coeff=7.0), 0.0)
        assert rad.linear_coeff == 7.0
        assert rad.quadratic_coeff == pytest.approx(1.75 * 0.2 / 0.8 ** 3 / 0.15)

    def test_build_state(self, tiny_case):
        state, rad = build_state(tiny_case, 45.0)
        assert state.obstacles == (rad,)
        assert state.has_porous
        assert state.params.max_iters == 20
        assert state.inflow.speed == tiny_case.inflow_speed


class TestSweep:
    def test_run_sweep_rows(self, tiny_case):
        seen = []
        rows = run_sweep(tiny_case, [0.0, 45.0, 90.0], on_state=lambda a, s, r: seen.append(a))
        assert [r["angle_deg"] for r in rows] == [0.0, 45.0, 90.0]
        assert seen == [0.0, 45.0, 90.0]
        for r in rows:
            assert set(FIELDNAMES) <= set(r)
            assert r["steps_ran"] == 5
            assert np.isfinite(r["mass_flow_rate"])
            assert np.isfinite(r["pressure_drop"])
            assert np.isfinite(r["drag_force"])

    def test_warm_start_chain(self, tiny_case):
        rows = run_sweep(tiny_case, [0.0, 15.0], warm_start=True)
        assert len(rows) == 2

    def test_best_angle(self):
        rows = [
            {"angle_deg": 0.0, "cooling_efficiency": 0.5, "fan_power_required": 0.0},
            {"angle_deg": 30.0, "cooling_efficiency": 0.6, "fan_power_required": 1000.0},
            {"angle_deg": 60.0, "cooling_efficiency": 0.55, "fan_power_required": 0.0},
        ]
        assert score(rows[1]) == pytest.approx(0.3)
        angle, s = best_angle(rows)
        assert angle == 60.0
        assert s == pytest.approx(0.55)

    def test_best_angle_empty(self):
        with pytest.raises(ValueError):
            best_angle([])


class TestOutputs:
    @pytest.fixture
    def rows(self):
        base = {k: 0.0 for k in FIELDNAMES}
        return [dict(base, angle_deg=a, mass_flow_rate=1.0 + a / 100.0) for a in (30.0, 0.0, 60.0)]

    def test_csv(self, tmp_path, rows):
        path = tmp_path / "results.csv"
        write_csv(path, rows)
        with open(path, newline="", encoding="utf-8") as f:
            read = list(csv.DictReader(f))
        assert len(read) == 3
        assert list(read[0].keys()) == FIELDNAMES
        assert float(read[2]["angle_deg"]) == 60.0

    def test_json(self, tmp_path, rows):
        path = tmp_path / "results.json"
        write_json(path, {"rows": rows})
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        assert data["rows"][0]["angle_deg"] == 30.0

    def test_plots(self, tmp_path, rows):
        plot_sweep(str(tmp_path), rows, best=60.0)
        for name in ("mdot_angle.png", "dp_angle.png", "efficiency_angle.png"):
            assert (tmp_path / name).exists()


class TestWarmStartFiles:
    def test_save_and_load(self, tmp_path, tiny_case):
        state, _ = build_state(tiny_case, 0.0)
        path = str(tmp_path / "state.npz")
        save_state(state, path)

        loaded = load_state(path, nx=tiny_case.nx, ny=tiny_case.ny)
        np.testing.assert_array_equal(loaded["u"], state.u)
        assert load_state(path, nx=10, ny=5) is None
        assert load_state(str(tmp_path / "missing.npz")) is None

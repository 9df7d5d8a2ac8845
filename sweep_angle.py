# sweep_angle.py
# Sweep do angulo do radiador + escolha do melhor angulo.
# Saidas:
#   out_sweep/<timestamp>/
#     results.csv
#     results.json
#     config.json
#     sweep.npz
#     mdot_angle.png, dp_angle.png, efficiency_angle.png
#     speed_aXX.png, pressure_aXX.png, smoke_aXX.png (opcional, por angulo)

import os
import csv
import json
import time
from dataclasses import asdict
from datetime import datetime

import numpy as np
import matplotlib
import matplotlib.pyplot as plt

from case_config import CaseConfig, build_state
from mac_solver import simulate, snapshot
from radiator_metrics import compute_metrics, mass_flow_rate
from run import plot_fields


FIELDNAMES = [
    "angle_deg",
    "mass_flow_rate", "pressure_drop", "drag_force", "lift_force",
    "cooling_efficiency", "fan_power_required",
    "inlet_velocity", "outlet_velocity",
    "steps_ran", "stopped_early", "unconverged_steps", "max_divergence",
    "runtime_s",
]


# ============================================================
# Sweep
# ============================================================

def run_sweep(cfg: CaseConfig, angles, out_every=0, warm_start=False, on_state=None):
    """
    One independent simulation per angle (degrees, 0 = radiator face across the flow).
    warm_start seeds each run with the previous angle's u, v, p (continuation).
    on_state(angle, state, radiator) is called after each run (plots, dumps).
    Returns one dict per angle with the FIELDNAMES keys.
    """
    dt = cfg.dt()
    rows = []
    prev = None

    for a in angles:
        a = float(a)
        print(f"[sweep] angle={a:.1f} deg ...")
        init_state = prev if warm_start else None
        state, radiator = build_state(cfg, a, init_state=init_state)

        t0 = time.time()
        res = simulate(
            state, cfg.steps, dt,
            out_every=out_every,
            monitor=lambda s, r=radiator: mass_flow_rate(s, r),

            stop_enable=cfg.stop_enable,
            stop_min_steps=cfg.stop_min_steps,
            stop_check_every=cfg.stop_check_every,
            stop_window=cfg.stop_window,
            stop_tol_monitor=cfg.stop_tol_mdot,
            stop_tol_div=cfg.stop_tol_div,
            tag="sweep",
        )
        t1 = time.time()

        m = compute_metrics(state, radiator)
        row = m.to_dict()
        row.pop("angle_degrees")
        row.update({
            "angle_deg": a,
            "steps_ran": res["steps_ran"],
            "stopped_early": res["stopped_early"],
            "unconverged_steps": res["unconverged_steps"],
            "max_divergence": state.last_solve.max_divergence if state.last_solve is not None else 0.0,
            "runtime_s": t1 - t0,
        })
        rows.append(row)

        flag = "STOP" if res["stopped_early"] else "MAX"
        print(f"    -> mdot={m.mass_flow_rate:.4f} dp={m.pressure_drop:.2f} "
              f"drag={m.drag_force:.3f} lift={m.lift_force:.3f} fan={m.fan_power_required:.2f} | "
              f"steps={res['steps_ran']} ({flag})")

        if on_state is not None:
            on_state(a, state, radiator)
        if warm_start:
            prev = {"u": state.u.copy(), "v": state.v.copy(), "p": state.p.copy()}

    return rows


def score(row):
    # cooling efficiency penalised by fan power (per kW)
    return row["cooling_efficiency"] / (1.0 + row["fan_power_required"] / 1000.0)


def best_angle(rows):
    """(angle_deg, score) of the best row; ties keep the first angle."""
    if not rows:
        raise ValueError("empty sweep")
    best = rows[0]
    best_s = score(best)
    for r in rows[1:]:
        s = score(r)
        if s > best_s:
            best, best_s = r, s
    return best["angle_deg"], best_s


# ============================================================
# Saidas
# ============================================================

def write_csv(path, rows, fieldnames=FIELDNAMES):
    with open(path, "w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames)
        w.writeheader()
        for r in rows:
            w.writerow({k: r.get(k, "") for k in fieldnames})


def write_json(path, obj):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)


def plot_sweep(out_dir, rows, best=None):
    al = np.array([r["angle_deg"] for r in rows], dtype=np.float64)
    idx = np.argsort(al)
    al = al[idx]

    panels = [
        ("mass_flow_rate", "mdot (kg/s/m)", "mdot_angle.png"),
        ("pressure_drop", "dp (Pa)", "dp_angle.png"),
        ("cooling_efficiency", "eficiencia", "efficiency_angle.png"),
    ]
    for key, ylabel, fname in panels:
        y = np.array([rows[k][key] for k in idx], dtype=np.float64)
        plt.figure(figsize=(9, 4))
        plt.title(f"Radiador: {ylabel} x angulo")
        plt.plot(al, y, marker="o")
        if best is not None:
            plt.axvline(best, color="k", ls="--", lw=0.8)
        plt.xlabel("angulo (deg)")
        plt.ylabel(ylabel)
        plt.grid(True, alpha=0.25)
        plt.tight_layout()
        plt.savefig(os.path.join(out_dir, fname), dpi=160)
        plt.close()


def main():
    # =========================
    # Config do sweep
    # =========================
    cfg = CaseConfig(steps=1500, out_every=0)
    angles = np.arange(0.0, 91.0, 15.0)   # 0..90 step 15
    warm_start = False
    field_plots = True

    root = os.path.join("out_sweep", datetime.now().strftime("%Y%m%d_%H%M%S"))
    os.makedirs(root, exist_ok=True)
    write_json(os.path.join(root, "config.json"), asdict(cfg))

    print(f"[sweep] grid={cfg.nx}x{cfg.ny} dt={cfg.dt():.5f} steps<={cfg.steps} angles={angles.tolist()}")

    def dump_fields(a, state, radiator):
        if field_plots:
            plot_fields(snapshot(state), radiator, root, tag=f"a{a:02.0f}", streamlines=False)

    t0 = time.time()
    rows = run_sweep(cfg, angles, out_every=cfg.out_every, warm_start=warm_start, on_state=dump_fields)
    t1 = time.time()
    print(f"[sweep] Tempo total: {t1 - t0:.2f}s")

    a_best, s_best = best_angle(rows)

    write_csv(os.path.join(root, "results.csv"), rows)
    write_json(os.path.join(root, "results.json"), {"rows": rows, "best_angle_deg": a_best, "best_score": s_best})
    np.savez(
        os.path.join(root, "sweep.npz"),
        **{k: np.array([r[k] for r in rows]) for k in FIELDNAMES},
    )
    plot_sweep(root, rows, best=a_best)

    print("\n=== Resumo ===")
    for r in rows:
        print(f"angle {r['angle_deg']:5.1f} | mdot {r['mass_flow_rate']:.4f} | dp {r['pressure_drop']:8.2f} | "
              f"drag {r['drag_force']:8.3f} | lift {r['lift_force']:8.3f} | eff {r['cooling_efficiency']:.3f} | "
              f"fan {r['fan_power_required']:.2f}")
    print(f"\nMelhor angulo: {a_best:.1f} deg (score {s_best:.3f})")
    print(f"Saidas em: {root}")


if __name__ == "__main__":
    matplotlib.use("Agg")
    main()

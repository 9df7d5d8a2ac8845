# run.py
import os
import time
import numpy as np
import matplotlib
import matplotlib.pyplot as plt

from case_config import CaseConfig, build_state
from mac_solver import simulate, snapshot
from radiator_metrics import compute_metrics, mass_flow_rate


STATE_PATH = "state_last.npz"


def load_state(path=STATE_PATH, nx=None, ny=None):
    if not os.path.exists(path):
        return None
    try:
        data = np.load(path)
        state = {"u": data["u"], "v": data["v"], "p": data["p"]}
    except (OSError, KeyError, ValueError) as e:
        print(f"[run] warm start ignored ({path}: {e})")
        return None
    if nx is not None and state["p"].shape != (nx, ny):
        print(f"[run] warm start ignored (grid {state['p'].shape} != {(nx, ny)})")
        return None
    return state


def save_state(state, path=STATE_PATH):
    np.savez_compressed(path, u=state.u, v=state.v, p=state.p)


def plot_fields(snap, radiator, out_dir, tag="", streamlines=True):
    extent = [0.0, snap["width"], 0.0, snap["height"]]
    speed = np.sqrt(snap["uc"] ** 2 + snap["vc"] ** 2)
    ox, oy = radiator.outline()

    panels = [
        ("speed", "Velocidade |u| (m/s)", speed, "viridis"),
        ("pressure", "Pressao p (Pa)", snap["p"], "coolwarm"),
        ("smoke", "Fumaca (tracador)", snap["smoke"], "magma"),
    ]
    for name, title, field, cmap in panels:
        plt.figure(figsize=(10, 5))
        plt.title(f"{title} ({tag})" if tag else title)
        plt.imshow(
            field.T,
            origin="lower",
            extent=extent,
            aspect="equal",
            interpolation="bilinear",
            cmap=cmap,
        )
        plt.colorbar()
        if name == "speed" and streamlines:
            h = snap["h"]
            xc = (np.arange(speed.shape[0]) + 0.5) * h
            yc = (np.arange(speed.shape[1]) + 0.5) * h
            plt.streamplot(xc, yc, snap["uc"].T, snap["vc"].T, color="w", linewidth=0.5, density=1.2)
        plt.plot(ox, oy, "w-", lw=1.2)
        plt.xlim(extent[0], extent[1])
        plt.ylim(extent[2], extent[3])
        plt.tight_layout()
        fname = f"{name}_{tag}.png" if tag else f"{name}.png"
        plt.savefig(os.path.join(out_dir, fname), dpi=160)
        plt.close()


def main():
    # =========================
    # Config
    # =========================
    cfg = CaseConfig()
    angle_deg = 30.0
    out_dir = "out_run"
    warm_start = True

    dt = cfg.dt()
    h = cfg.domain_width / cfg.nx

    print("=== Config ===")
    print(f"grid={cfg.nx}x{cfg.ny}  h={h:.5f}  dt={dt:.5f}")
    print(f"U={cfg.inflow_speed} m/s  rho={cfg.density}  mu={cfg.viscosity}  walls={cfg.walls}")
    print(f"radiator {cfg.radiator_width}x{cfg.radiator_height} m  angle={angle_deg}deg  "
          f"porosity={cfg.porosity}  resistance={cfg.resistance}")
    print(f"pressure: {cfg.ordering} GS  it<={cfg.max_iters}  tol={cfg.tolerance}  omega={cfg.over_relaxation}")
    print("================\n")

    init_state = load_state(nx=cfg.nx, ny=cfg.ny) if warm_start else None
    state, radiator = build_state(cfg, angle_deg, init_state=init_state)
    print(f"[run] linear={radiator.linear_coeff:.4g} 1/s  quadratic={radiator.quadratic_coeff:.4g} 1/m")

    # =========================
    # Rodar simulacao
    # =========================
    t0 = time.time()
    res = simulate(
        state, cfg.steps, dt,
        out_every=cfg.out_every,
        monitor=lambda s: mass_flow_rate(s, radiator),

        stop_enable=cfg.stop_enable,
        stop_min_steps=cfg.stop_min_steps,
        stop_check_every=cfg.stop_check_every,
        stop_window=cfg.stop_window,
        stop_tol_monitor=cfg.stop_tol_mdot,
        stop_tol_div=cfg.stop_tol_div,
    )
    t1 = time.time()

    m = compute_metrics(state, radiator)

    print(f"\nTempo total: {t1 - t0:.2f}s | steps_ran={res['steps_ran']} stopped_early={res['stopped_early']}")
    print(f"mdot      = {m.mass_flow_rate:.4f} kg/s/m")
    print(f"dp        = {m.pressure_drop:.3f} Pa")
    print(f"drag/lift = {m.drag_force:.3f} / {m.lift_force:.3f} N/m")
    print(f"eficiencia= {m.cooling_efficiency:.4f}")
    print(f"fan power = {m.fan_power_required:.3f} W/m")
    print(f"v_in/v_out= {m.inlet_velocity:.3f} / {m.outlet_velocity:.3f} m/s")

    if not (np.isfinite(m.mass_flow_rate) and np.isfinite(m.pressure_drop)):
        print("\n[ERRO] metricas nao finitas (reduza dt ou aumente max_iters).")
        return

    # salva estado (warm start)
    save_state(state)

    # =========================
    # Plots + resultado
    # =========================
    os.makedirs(out_dir, exist_ok=True)
    snap = snapshot(state)
    plot_fields(snap, radiator, out_dir)

    np.savez_compressed(
        os.path.join(out_dir, "radiator_run.npz"),
        p=snap["p"], uc=snap["uc"], vc=snap["vc"], smoke=snap["smoke"], solid=snap["solid"],
        h=snap["h"], width=snap["width"], height=snap["height"],
        angle_deg=angle_deg, dt=dt,
        steps_ran=res["steps_ran"], iterations=res["iterations"], residuals=res["residuals"],
        **m.to_dict(),
    )
    print(f"\nSaidas em: {out_dir}")


if __name__ == "__main__":
    matplotlib.use("Agg")
    main()

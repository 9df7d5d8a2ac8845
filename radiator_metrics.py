# radiator_metrics.py
# Read-only performance queries on a SimulationState:
#   mass flow through the target face, pressure drop across it,
#   drag / lift (surface integral on solids, Darcy-Forchheimer reaction on porous matrices),
#   cooling efficiency and fan power.

import math
from dataclasses import asdict, dataclass

import numpy as np
from numba import njit

from mac_solver import sample_c, vel_at


@dataclass(frozen=True)
class MetricsRecord:
    mass_flow_rate: float       # kg/s per metre of depth
    pressure_drop: float        # Pa
    drag_force: float           # N per metre of depth
    lift_force: float           # N per metre of depth
    cooling_efficiency: float   # dimensionless
    fan_power_required: float   # W per metre of depth
    angle_degrees: float = 0.0
    inlet_velocity: float = 0.0
    outlet_velocity: float = 0.0

    def to_dict(self):
        return asdict(self)


# ============================================================
# Line sampling
# ============================================================

@njit
def _line_flux(u, v, h, cx, cy, nxn, nyn, span, n_samples, width, height):
    # face values as stored; the no-slip wall taper is for advection only
    # tangent = normal rotated by +90 deg
    txn = -nyn
    tyn = nxn
    ds = span / n_samples
    total = 0.0
    for k in range(n_samples):
        t = ((k + 0.5) / n_samples - 0.5) * span
        x = cx + t * txn
        y = cy + t * tyn
        if x < 0.0 or x > width or y < 0.0 or y > height:
            continue
        uu, vv = vel_at(u, v, x, y, h, False)
        total += (uu * nxn + vv * nyn) * ds
    return total


@njit
def _line_mean(q, h, cx, cy, nxn, nyn, span, n_samples, width, height):
    txn = -nyn
    tyn = nxn
    s = 0.0
    cnt = 0
    for k in range(n_samples):
        t = ((k + 0.5) / n_samples - 0.5) * span
        x = cx + t * txn
        y = cy + t * tyn
        if x < 0.0 or x > width or y < 0.0 or y > height:
            continue
        s += sample_c(q, x, y, h)
        cnt += 1
    if cnt == 0:
        return 0.0
    return s / cnt


# ============================================================
# Forces
# ============================================================

@njit
def _surface_forces(u, v, p, solid, owner, target, h, mu):
    nx, ny = p.shape
    fx = 0.0
    fy = 0.0
    for i in range(nx):
        for j in range(ny):
            if not solid[i, j] or owner[i, j] != target:
                continue
            for d in range(4):
                if d == 0:
                    ii, jj, nox, noy = i - 1, j, -1.0, 0.0
                elif d == 1:
                    ii, jj, nox, noy = i + 1, j, 1.0, 0.0
                elif d == 2:
                    ii, jj, nox, noy = i, j - 1, 0.0, -1.0
                else:
                    ii, jj, nox, noy = i, j + 1, 0.0, 1.0
                if ii < 0 or ii >= nx or jj < 0 or jj >= ny:
                    continue
                if solid[ii, jj]:
                    continue

                # pressure acts against the outward normal of the body face
                pf = p[ii, jj]
                fx -= pf * nox * h
                fy -= pf * noy * h

                # wall shear from the tangential velocity half a cell away
                uc = 0.5 * (u[ii, jj] + u[ii + 1, jj])
                vc = 0.5 * (v[ii, jj] + v[ii, jj + 1])
                tx = -noy
                ty = nox
                tau = mu * (uc * tx + vc * ty) / (0.5 * h)
                fx += tau * tx * h
                fy += tau * ty * h
    return fx, fy


@njit
def _porous_forces(u, v, lin, quad, dir_x, dir_y, owner, target, h, rho):
    nx, ny = lin.shape
    fx = 0.0
    fy = 0.0
    area = h * h
    for i in range(nx):
        for j in range(ny):
            if owner[i, j] != target:
                continue
            a = lin[i, j]
            b = quad[i, j]
            if a <= 0.0 and b <= 0.0:
                continue
            uc = 0.5 * (u[i, j] + u[i + 1, j])
            vc = 0.5 * (v[i, j] + v[i, j + 1])
            vn = uc * dir_x[i, j] + vc * dir_y[i, j]
            r = a * vn + b * abs(vn) * vn
            fx += rho * r * dir_x[i, j] * area
            fy += rho * r * dir_y[i, j] * area
    return fx, fy


# ============================================================
# Control face
# ============================================================

def _target_index(state, target):
    for k, ob in enumerate(state.obstacles):
        if ob is target:
            return k
    for k, ob in enumerate(state.obstacles):
        if ob == target:
            return k
    raise ValueError(f"{type(target).__name__} is not placed in this simulation")


def control_face(state, target=None):
    """(centre, unit normal, span, probe offset) of the surface the metrics integrate over."""
    g = state.grid
    if target is None:
        return (0.5 * g.domain_width, 0.5 * g.domain_height), (1.0, 0.0), g.domain_height, 0.25 * g.domain_width
    centre, normal, span, half = target.frontal()
    return centre, normal, span, half + 2.0 * g.h


def _n_samples(span, h):
    return max(20, 2 * int(math.ceil(span / h)))


def mass_flow_rate(state, target=None, density=None):
    g = state.grid
    rho = state.inflow.density if density is None else density
    (cx, cy), (nxn, nyn), span, _ = control_face(state, target)
    flux = _line_flux(state.u, state.v, g.h, cx, cy, nxn, nyn, span,
                      _n_samples(span, g.h), g.domain_width, g.domain_height)
    return float(rho * flux)


def pressure_drop(state, target=None):
    g = state.grid
    (cx, cy), (nxn, nyn), span, offset = control_face(state, target)
    n = _n_samples(span, g.h)
    p_up = _line_mean(state.p, g.h, cx - offset * nxn, cy - offset * nyn, nxn, nyn, span, n,
                      g.domain_width, g.domain_height)
    p_down = _line_mean(state.p, g.h, cx + offset * nxn, cy + offset * nyn, nxn, nyn, span, n,
                        g.domain_width, g.domain_height)
    return float(p_up - p_down)


def body_forces(state, target, freestream=None):
    """(drag, lift) on target; free stream along +x."""
    if target is None:
        return 0.0, 0.0
    fs = state.inflow if freestream is None else freestream
    k = _target_index(state, target)
    g = state.grid
    if target.is_porous:
        fx, fy = _porous_forces(state.u, state.v, state.porous_linear, state.porous_quadratic,
                                state.porous_dir_x, state.porous_dir_y, state.owner, k, g.h, fs.density)
    else:
        fx, fy = _surface_forces(state.u, state.v, state.p, state.solid, state.owner, k, g.h, fs.viscosity)
    return float(fx), float(fy)


def _probe_speed(state, x, y):
    g = state.grid
    x = min(max(x, 0.0), g.domain_width)
    y = min(max(y, 0.0), g.domain_height)
    uu, vv = vel_at(state.u, state.v, x, y, g.h, False)
    return float(math.hypot(uu, vv))


def compute_metrics(state, target=None, freestream=None):
    fs = state.inflow if freestream is None else freestream
    rho = fs.density
    U = fs.speed

    (cx, cy), (nxn, nyn), span, offset = control_face(state, target)

    mdot = mass_flow_rate(state, target, density=rho)
    dp = pressure_drop(state, target)
    drag, lift = body_forces(state, target, fs)

    capture = mdot / (rho * U * span) if U * span > 0.0 else 0.0
    q = 0.5 * rho * U * U
    efficiency = capture / (1.0 + max(dp, 0.0) / q) if q > 0.0 else capture

    volumetric = mdot / rho
    fan_power = dp * volumetric

    return MetricsRecord(
        mass_flow_rate=float(mdot),
        pressure_drop=float(dp),
        drag_force=float(drag),
        lift_force=float(lift),
        cooling_efficiency=float(efficiency),
        fan_power_required=float(fan_power),
        angle_degrees=float(np.degrees(target.angle)) if target is not None else 0.0,
        inlet_velocity=_probe_speed(state, cx - offset * nxn, cy - offset * nyn),
        outlet_velocity=_probe_speed(state, cx + offset * nxn, cy + offset * nyn),
    )

# mac_solver.py
# MAC (staggered grid) incompressible flow 2D for radiator studies
# - Semi-Lagrangian advection (velocity, then smoke tracer), double buffered
# - Optional explicit diffusion
# - Darcy-Forchheimer resistance inside the porous radiator matrix
# - Boundary enforcement: inflow / outflow / walls + two-pass no-slip at solids
# - Pressure projection via Gauss-Seidel (lexicographic or red-black),
#   early exit on max pressure change
# - Public API: initialize, step, snapshot, simulate

from dataclasses import dataclass

import numpy as np
from numba import njit, prange

from geometry import ConfigurationError, Grid, rasterize, validate_obstacles


# ============================================================
# Utils
# ============================================================

@njit(inline="always")
def clamp(x, a, b):
    if x < a:
        return a
    if x > b:
        return b
    return x


@njit(inline="always")
def _bracket(f, n):
    top = n - 1
    if f <= 0.0:
        return 0, 0, 0.0
    if f >= top:
        return top, top, 0.0
    i0 = int(np.floor(f))
    return i0, i0 + 1, f - i0


# ============================================================
# Bilinear sampling on MAC grids (x, y from the lower-left corner)
# ============================================================

@njit(inline="always")
def sample_u(u, x, y, h, noslip):
    ny = u.shape[1]
    fx = x / h
    fy = y / h - 0.5

    i0, i1, tx = _bracket(fx, u.shape[0])
    j0, j1, ty = _bracket(fy, ny)

    a = u[i0, j0] * (1.0 - tx) + u[i1, j0] * tx
    b = u[i0, j1] * (1.0 - tx) + u[i1, j1] * tx
    val = a * (1.0 - ty) + b * ty

    # wall tangential velocity is zero half a cell below the first row
    if noslip:
        if fy < 0.0:
            val *= clamp(2.0 * fy + 1.0, 0.0, 1.0)
        elif fy > ny - 1:
            val *= clamp(2.0 * (ny - 1 - fy) + 1.0, 0.0, 1.0)
    return val


@njit(inline="always")
def sample_v(v, x, y, h):
    fx = x / h - 0.5
    fy = y / h

    i0, i1, tx = _bracket(fx, v.shape[0])
    j0, j1, ty = _bracket(fy, v.shape[1])

    a = v[i0, j0] * (1.0 - tx) + v[i1, j0] * tx
    b = v[i0, j1] * (1.0 - tx) + v[i1, j1] * tx
    return a * (1.0 - ty) + b * ty


@njit(inline="always")
def sample_c(q, x, y, h):
    fx = x / h - 0.5
    fy = y / h - 0.5

    i0, i1, tx = _bracket(fx, q.shape[0])
    j0, j1, ty = _bracket(fy, q.shape[1])

    a = q[i0, j0] * (1.0 - tx) + q[i1, j0] * tx
    b = q[i0, j1] * (1.0 - tx) + q[i1, j1] * tx
    return a * (1.0 - ty) + b * ty


@njit(inline="always")
def vel_at(u, v, x, y, h, noslip):
    return sample_u(u, x, y, h, noslip), sample_v(v, x, y, h)


@njit(inline="always")
def _v_at_u_face(v, i, j):
    nx = v.shape[0]
    il = i - 1 if i > 0 else 0
    ir = i if i < nx else nx - 1
    return 0.25 * (v[il, j] + v[il, j + 1] + v[ir, j] + v[ir, j + 1])


@njit(inline="always")
def _u_at_v_face(u, i, j):
    ny = u.shape[1]
    jb = j - 1 if j > 0 else 0
    jt = j if j < ny else ny - 1
    return 0.25 * (u[i, jb] + u[i + 1, jb] + u[i, jt] + u[i + 1, jt])


# ============================================================
# Boundary enforcement
# ============================================================

@njit(parallel=True)
def mark_blocked_faces(solid, u_blocked, v_blocked):
    # pass 1: reads only the mask
    nx, ny = solid.shape
    for i in prange(nx + 1):
        for j in range(ny):
            left = solid[i - 1, j] if i > 0 else False
            right = solid[i, j] if i < nx else False
            u_blocked[i, j] = left or right

    for i in prange(nx):
        for j in range(ny + 1):
            below = solid[i, j - 1] if j > 0 else False
            above = solid[i, j] if j < ny else False
            v_blocked[i, j] = below or above


@njit(parallel=True)
def zero_blocked_faces(u, v, smoke, solid, u_blocked, v_blocked):
    # pass 2: writes only velocities / tracer
    nx, ny = solid.shape
    for i in prange(nx + 1):
        for j in range(ny):
            if u_blocked[i, j]:
                u[i, j] = 0.0

    for i in prange(nx):
        for j in range(ny + 1):
            if v_blocked[i, j]:
                v[i, j] = 0.0
        for j in range(ny):
            if solid[i, j]:
                smoke[i, j] = 0.0


@njit
def apply_domain_bc(u, v, smoke, inflow_u, smoke_in, inject_smoke):
    nx = v.shape[0]
    ny = u.shape[1]

    # inlet prescribed, outlet grad=0
    for j in range(ny):
        u[0, j] = inflow_u
        u[nx, j] = u[nx - 1, j]
        if inject_smoke:
            smoke[0, j] = smoke_in

    # walls: no penetration
    for i in range(nx):
        v[i, 0] = 0.0
        v[i, ny] = 0.0


# ============================================================
# Advection (semi-Lagrangian)
# ============================================================

@njit(parallel=True)
def advect_velocity(u0, v0, u1, v1, dt, h, width, height, noslip):
    nx = v0.shape[0]
    ny = u0.shape[1]

    for i in prange(1, nx):
        x = i * h
        for j in range(ny):
            y = (j + 0.5) * h

            uvel, vvel = vel_at(u0, v0, x, y, h, noslip)
            xb = clamp(x - dt * uvel, 0.0, width)
            yb = clamp(y - dt * vvel, 0.0, height)

            u1[i, j] = sample_u(u0, xb, yb, h, noslip)

    for j in range(ny):
        u1[0, j] = u0[0, j]
        u1[nx, j] = u0[nx, j]

    for i in prange(nx):
        x = (i + 0.5) * h
        v1[i, 0] = v0[i, 0]
        v1[i, ny] = v0[i, ny]
        for j in range(1, ny):
            y = j * h

            uvel, vvel = vel_at(u0, v0, x, y, h, noslip)
            xb = clamp(x - dt * uvel, 0.0, width)
            yb = clamp(y - dt * vvel, 0.0, height)

            v1[i, j] = sample_v(v0, xb, yb, h)


@njit(parallel=True)
def advect_scalar(m0, m1, u, v, dt, h, width, height, noslip):
    nx, ny = m0.shape
    for i in prange(nx):
        x = (i + 0.5) * h
        for j in range(ny):
            y = (j + 0.5) * h

            uvel, vvel = vel_at(u, v, x, y, h, noslip)
            xb = clamp(x - dt * uvel, 0.0, width)
            yb = clamp(y - dt * vvel, 0.0, height)

            m1[i, j] = sample_c(m0, xb, yb, h)


# ============================================================
# Diffusion (explicit Laplacian, optional)
# ============================================================

@njit(parallel=True)
def diffuse(u_in, v_in, u_out, v_out, nu, dt, h, noslip):
    nx = v_in.shape[0]
    ny = u_in.shape[1]
    c = nu * dt / (h * h)
    wall = -1.0 if noslip else 1.0

    for i in prange(nx + 1):
        for j in range(ny):
            if i == 0 or i == nx:
                u_out[i, j] = u_in[i, j]
                continue
            ub = u_in[i, j - 1] if j > 0 else wall * u_in[i, j]
            ut = u_in[i, j + 1] if j < ny - 1 else wall * u_in[i, j]
            lap = u_in[i + 1, j] + u_in[i - 1, j] + ub + ut - 4.0 * u_in[i, j]
            u_out[i, j] = u_in[i, j] + c * lap

    for i in prange(nx):
        for j in range(ny + 1):
            if j == 0 or j == ny:
                v_out[i, j] = v_in[i, j]
                continue
            vl = v_in[i - 1, j] if i > 0 else v_in[i, j]
            vr = v_in[i + 1, j] if i < nx - 1 else v_in[i, j]
            lap = vl + vr + v_in[i, j + 1] + v_in[i, j - 1] - 4.0 * v_in[i, j]
            v_out[i, j] = v_in[i, j] + c * lap


# ============================================================
# Porous radiator matrix (Darcy-Forchheimer, implicit damping)
# ============================================================

@njit(inline="always")
def _damped_normal(vn, a, b, dt):
    return vn / (1.0 + dt * (a + b * abs(vn)))


# plain range: inlined face helpers lose the integer index type inside a parfor
@njit
def apply_porous_resistance(u0, v0, u1, v1, lin, quad, dir_x, dir_y, dt):
    nx, ny = lin.shape

    for i in range(nx + 1):
        for j in range(ny):
            u1[i, j] = u0[i, j]
            a = 0.0
            b = 0.0
            ox = 0.0
            oy = 0.0
            n = 0
            if i > 0:
                a += lin[i - 1, j]
                b += quad[i - 1, j]
                ox += dir_x[i - 1, j]
                oy += dir_y[i - 1, j]
                n += 1
            if i < nx:
                a += lin[i, j]
                b += quad[i, j]
                ox += dir_x[i, j]
                oy += dir_y[i, j]
                n += 1
            norm = np.sqrt(ox * ox + oy * oy)
            if norm < 1e-12 or (a <= 0.0 and b <= 0.0):
                continue
            ox /= norm
            oy /= norm

            vn = u0[i, j] * ox + _v_at_u_face(v0, i, j) * oy
            vn_new = _damped_normal(vn, a / n, b / n, dt)
            u1[i, j] = u0[i, j] - ox * (vn - vn_new)

    for i in range(nx):
        for j in range(ny + 1):
            v1[i, j] = v0[i, j]
            a = 0.0
            b = 0.0
            ox = 0.0
            oy = 0.0
            n = 0
            if j > 0:
                a += lin[i, j - 1]
                b += quad[i, j - 1]
                ox += dir_x[i, j - 1]
                oy += dir_y[i, j - 1]
                n += 1
            if j < ny:
                a += lin[i, j]
                b += quad[i, j]
                ox += dir_x[i, j]
                oy += dir_y[i, j]
                n += 1
            norm = np.sqrt(ox * ox + oy * oy)
            if norm < 1e-12 or (a <= 0.0 and b <= 0.0):
                continue
            ox /= norm
            oy /= norm

            vn = _u_at_v_face(u0, i, j) * ox + v0[i, j] * oy
            vn_new = _damped_normal(vn, a / n, b / n, dt)
            v1[i, j] = v0[i, j] - oy * (vn - vn_new)


# ============================================================
# Divergence + Poisson (Gauss-Seidel) + Projection
# ============================================================

@njit(parallel=True)
def compute_divergence(u, v, solid, div, h):
    nx, ny = div.shape
    invh = 1.0 / h
    for i in prange(nx):
        for j in range(ny):
            if solid[i, j]:
                div[i, j] = 0.0
            else:
                div[i, j] = (u[i + 1, j] - u[i, j] + v[i, j + 1] - v[i, j]) * invh


@njit(inline="always")
def _neighbor_sum(p, solid, i, j, nx, ny):
    # Neumann at inlet, walls and solids; p = 0 one cell past the outlet
    s = 0.0
    acc = 0.0
    if i > 0 and not solid[i - 1, j]:
        s += 1.0
        acc += p[i - 1, j]
    if i < nx - 1:
        if not solid[i + 1, j]:
            s += 1.0
            acc += p[i + 1, j]
    else:
        s += 1.0
    if j > 0 and not solid[i, j - 1]:
        s += 1.0
        acc += p[i, j - 1]
    if j < ny - 1 and not solid[i, j + 1]:
        s += 1.0
        acc += p[i, j + 1]
    return s, acc


@njit
def gauss_seidel_lexicographic(p, b, solid, max_iters, tol, omega):
    nx, ny = p.shape
    res = 0.0
    for it in range(1, max_iters + 1):
        res = 0.0
        for i in range(nx):
            for j in range(ny):
                if solid[i, j]:
                    continue
                s, acc = _neighbor_sum(p, solid, i, j, nx, ny)
                if s == 0.0:
                    continue
                dp = omega * ((acc - b[i, j]) / s - p[i, j])
                p[i, j] += dp
                if abs(dp) > res:
                    res = abs(dp)
        if res < tol:
            return it, res
    return max_iters, res


@njit(parallel=True)
def gauss_seidel_red_black(p, b, solid, max_iters, tol, omega):
    nx, ny = p.shape
    row_max = np.zeros(nx)
    res = 0.0
    for it in range(1, max_iters + 1):
        for color in range(2):
            for i in prange(nx):
                m = 0.0 if color == 0 else row_max[i]
                for j in range(ny):
                    if ((i + j) & 1) != color or solid[i, j]:
                        continue
                    s, acc = _neighbor_sum(p, solid, i, j, nx, ny)
                    if s == 0.0:
                        continue
                    dp = omega * ((acc - b[i, j]) / s - p[i, j])
                    p[i, j] += dp
                    if abs(dp) > m:
                        m = abs(dp)
                row_max[i] = m
        res = np.max(row_max)
        if res < tol:
            return it, res
    return max_iters, res


@njit(parallel=True)
def project(u, v, p, solid, k):
    # k = dt / (rho * h); faces pinned by the boundary enforcer are left alone
    nx, ny = p.shape
    for i in prange(1, nx + 1):
        for j in range(ny):
            if i < nx:
                if solid[i - 1, j] or solid[i, j]:
                    continue
                u[i, j] -= k * (p[i, j] - p[i - 1, j])
            else:
                if solid[nx - 1, j]:
                    continue
                u[nx, j] -= k * (0.0 - p[nx - 1, j])

    for i in prange(nx):
        for j in range(1, ny):
            if solid[i, j - 1] or solid[i, j]:
                continue
            v[i, j] -= k * (p[i, j] - p[i, j - 1])


# ============================================================
# Outputs: cell-centered
# ============================================================

@njit(parallel=True)
def make_cell_centered(u, v, uc, vc):
    nx, ny = uc.shape
    for i in prange(nx):
        for j in range(ny):
            uc[i, j] = 0.5 * (u[i, j] + u[i + 1, j])
            vc[i, j] = 0.5 * (v[i, j] + v[i, j + 1])


# ============================================================
# State + configuration
# ============================================================

WALL_MODES = ("no_slip", "symmetry")
ORDERINGS = ("lexicographic", "red_black")


@dataclass(frozen=True)
class InflowConditions:
    speed: float = 2.0
    density: float = 1.2
    viscosity: float = 1.8e-5   # dynamic, Pa s
    smoke: float | None = 1.0
    walls: str = "no_slip"      # "no_slip" | "symmetry"

    @property
    def kinematic_viscosity(self):
        return self.viscosity / self.density


@dataclass(frozen=True)
class SolverParams:
    max_iters: int = 20
    tolerance: float = 1e-6
    over_relaxation: float = 1.0
    ordering: str = "lexicographic"   # "lexicographic" | "red_black"
    diffusion: bool = False
    max_blocked_fraction: float = 0.5


@dataclass(frozen=True)
class SolveDiagnostic:
    iterations: int
    residual: float
    converged: bool
    max_divergence: float


class SimulationState:
    def __init__(self, grid: Grid, inflow: InflowConditions, params: SolverParams):
        nx, ny = grid.nx, grid.ny
        self.grid = grid
        self.inflow = inflow
        self.params = params

        self.u = np.zeros((nx + 1, ny), dtype=np.float64)
        self.v = np.zeros((nx, ny + 1), dtype=np.float64)
        self.p = np.zeros((nx, ny), dtype=np.float64)
        self.smoke = np.zeros((nx, ny), dtype=np.float64)

        self.u_buf = np.zeros_like(self.u)
        self.v_buf = np.zeros_like(self.v)
        self.smoke_buf = np.zeros_like(self.smoke)

        self.div = np.zeros((nx, ny), dtype=np.float64)
        self.rhs = np.zeros((nx, ny), dtype=np.float64)

        self.solid = np.zeros((nx, ny), dtype=np.bool_)
        self.porous_linear = np.zeros((nx, ny), dtype=np.float64)
        self.porous_quadratic = np.zeros((nx, ny), dtype=np.float64)
        self.porous_dir_x = np.zeros((nx, ny), dtype=np.float64)
        self.porous_dir_y = np.zeros((nx, ny), dtype=np.float64)
        self.owner = np.full((nx, ny), -1, dtype=np.int32)
        self.u_blocked = np.zeros((nx + 1, ny), dtype=np.bool_)
        self.v_blocked = np.zeros((nx, ny + 1), dtype=np.bool_)
        self.has_porous = False

        self.obstacles = ()
        self.step_index = 0
        self.time = 0.0
        self.last_solve = None

    @property
    def noslip(self):
        return self.inflow.walls == "no_slip"


def _check_inflow(inflow: InflowConditions):
    if inflow.walls not in WALL_MODES:
        raise ConfigurationError(f"unknown wall mode {inflow.walls!r}, expected one of {WALL_MODES}")
    if inflow.density <= 0.0:
        raise ConfigurationError("fluid density must be positive")
    if inflow.viscosity < 0.0:
        raise ConfigurationError("fluid viscosity must not be negative")


def _check_params(params: SolverParams):
    if params.ordering not in ORDERINGS:
        raise ConfigurationError(f"unknown Gauss-Seidel ordering {params.ordering!r}")
    if params.max_iters < 1:
        raise ConfigurationError("pressure solver needs at least one iteration")
    if params.tolerance < 0.0:
        raise ConfigurationError("pressure tolerance must not be negative")
    if not 0.0 < params.over_relaxation < 2.0:
        raise ConfigurationError("over-relaxation must lie in (0, 2)")


def place_obstacles(state: SimulationState, obstacles):
    """Rasterize obstacles into the mask / porous arrays; state is untouched on error."""
    obstacles = tuple(obstacles)
    raster = rasterize(state.grid, obstacles)
    validate_obstacles(state.grid, obstacles, raster, state.params.max_blocked_fraction)

    state.solid[:, :] = raster["solid"]
    state.porous_linear[:, :] = raster["porous_linear"]
    state.porous_quadratic[:, :] = raster["porous_quadratic"]
    state.porous_dir_x[:, :] = raster["porous_dir_x"]
    state.porous_dir_y[:, :] = raster["porous_dir_y"]
    state.owner[:, :] = raster["owner"]
    state.has_porous = bool(np.any(state.porous_linear > 0.0) or np.any(state.porous_quadratic > 0.0))
    state.obstacles = obstacles

    mark_blocked_faces(state.solid, state.u_blocked, state.v_blocked)
    enforce_boundaries(state)
    return state


def enforce_boundaries(state: SimulationState):
    smoke_in = state.inflow.smoke
    apply_domain_bc(
        state.u, state.v, state.smoke,
        float(state.inflow.speed),
        0.0 if smoke_in is None else float(smoke_in),
        smoke_in is not None,
    )
    zero_blocked_faces(state.u, state.v, state.smoke, state.solid, state.u_blocked, state.v_blocked)


def initialize(grid, obstacles=(), inflow=None, params=None, init_state=None):
    if not isinstance(grid, Grid):
        grid = Grid.from_domain(**grid)
    inflow = InflowConditions() if inflow is None else inflow
    params = SolverParams() if params is None else params
    _check_inflow(inflow)
    _check_params(params)

    state = SimulationState(grid, inflow, params)

    if isinstance(init_state, dict) and ("u" in init_state) and ("v" in init_state) and ("p" in init_state):
        state.u[:, :] = np.asarray(init_state["u"], dtype=np.float64)
        state.v[:, :] = np.asarray(init_state["v"], dtype=np.float64)
        state.p[:, :] = np.asarray(init_state["p"], dtype=np.float64)
    else:
        state.u[:, :] = inflow.speed
        state.v[:, :] = 0.0
        state.p[:, :] = 0.0

    place_obstacles(state, obstacles)
    return state


def _swap_velocity(state):
    state.u, state.u_buf = state.u_buf, state.u
    state.v, state.v_buf = state.v_buf, state.v


def solve_pressure(state: SimulationState, dt):
    g = state.grid
    prm = state.params
    rho = state.inflow.density

    compute_divergence(state.u, state.v, state.solid, state.div, g.h)
    state.rhs[:, :] = (rho * g.h * g.h / dt) * state.div

    if prm.ordering == "red_black":
        iters, res = gauss_seidel_red_black(
            state.p, state.rhs, state.solid, int(prm.max_iters), float(prm.tolerance), float(prm.over_relaxation)
        )
    else:
        iters, res = gauss_seidel_lexicographic(
            state.p, state.rhs, state.solid, int(prm.max_iters), float(prm.tolerance), float(prm.over_relaxation)
        )

    project(state.u, state.v, state.p, state.solid, dt / (rho * g.h))

    compute_divergence(state.u, state.v, state.solid, state.div, g.h)
    return SolveDiagnostic(
        iterations=int(iters),
        residual=float(res),
        converged=bool(res < prm.tolerance),
        max_divergence=float(np.max(np.abs(state.div))),
    )


def step(state: SimulationState, dt):
    if dt <= 0.0:
        raise ValueError(f"time step must be positive, got {dt}")

    g = state.grid
    noslip = state.noslip

    advect_velocity(state.u, state.v, state.u_buf, state.v_buf, dt, g.h,
                    g.domain_width, g.domain_height, noslip)
    _swap_velocity(state)

    advect_scalar(state.smoke, state.smoke_buf, state.u, state.v, dt, g.h,
                  g.domain_width, g.domain_height, noslip)
    state.smoke, state.smoke_buf = state.smoke_buf, state.smoke

    nu = state.inflow.kinematic_viscosity
    if state.params.diffusion and nu > 0.0:
        if nu * dt / (g.h * g.h) > 0.25:
            raise ValueError(f"explicit diffusion unstable: nu*dt/h^2 = {nu * dt / g.h ** 2:.3f} > 0.25")
        diffuse(state.u, state.v, state.u_buf, state.v_buf, nu, dt, g.h, noslip)
        _swap_velocity(state)

    if state.has_porous:
        apply_porous_resistance(state.u, state.v, state.u_buf, state.v_buf,
                                state.porous_linear, state.porous_quadratic,
                                state.porous_dir_x, state.porous_dir_y, dt)
        _swap_velocity(state)

    enforce_boundaries(state)
    state.last_solve = solve_pressure(state, dt)

    state.step_index += 1
    state.time += dt
    return state


def _readonly(a):
    view = a.view()
    view.flags.writeable = False
    return view


def snapshot(state: SimulationState):
    g = state.grid
    uc = np.zeros((g.nx, g.ny), dtype=np.float64)
    vc = np.zeros((g.nx, g.ny), dtype=np.float64)
    make_cell_centered(state.u, state.v, uc, vc)

    return {
        "u": _readonly(state.u),
        "v": _readonly(state.v),
        "p": _readonly(state.p),
        "smoke": _readonly(state.smoke),
        "solid": _readonly(state.solid),
        "uc": _readonly(uc),
        "vc": _readonly(vc),
        "h": float(g.h),
        "width": float(g.domain_width),
        "height": float(g.domain_height),
        "step": int(state.step_index),
        "time": float(state.time),
    }


# ============================================================
# Run loop
# ============================================================

def simulate(
    state, steps, dt,
    out_every=0,
    monitor=None,
    monitor_label="mdot",

    stop_enable=False,
    stop_min_steps=200,
    stop_check_every=50,
    stop_window=4,
    stop_tol_monitor=1e-3,
    stop_tol_div=1e-4,

    tag="radiator",
):
    """
    Advances state by up to `steps` steps of size dt.
    monitor(state) -> float is sampled every stop_check_every steps for the early stop
    (and printed every out_every steps). Returns a dict with the run history.
    """
    mon_hist = []
    div_hist = []
    last_check_step = 0
    stopped_early = False
    unconverged = 0

    iters_hist = []
    res_hist = []

    n = 0
    for n in range(1, int(steps) + 1):
        step(state, dt)
        diag = state.last_solve
        iters_hist.append(diag.iterations)
        res_hist.append(diag.residual)
        if not diag.converged:
            unconverged += 1

        if out_every and (n % int(out_every) == 0):
            line = (f"[{tag}] step {n}/{steps} | gs {diag.iterations} res {diag.residual:.2e} | "
                    f"div_max {diag.max_divergence:.3e}")
            if monitor is not None:
                line += f" | {monitor_label}~{monitor(state):.4f}"
            print(line)

        if stop_enable and (n >= int(stop_min_steps)) and (stop_check_every > 0) and (n - last_check_step >= int(stop_check_every)):
            last_check_step = n
            mon_hist.append(float(monitor(state)) if monitor is not None else 0.0)
            div_hist.append(float(diag.max_divergence))
            if len(mon_hist) > int(stop_window):
                mon_hist.pop(0)
                div_hist.pop(0)

            if len(mon_hist) == int(stop_window):
                mon_range = max(mon_hist) - min(mon_hist)
                div_range = max(div_hist) - min(div_hist)
                if (mon_range < float(stop_tol_monitor)) and (div_range < float(stop_tol_div)):
                    stopped_early = True
                    break

    if out_every and unconverged:
        print(f"[{tag}] pressure solve hit the iteration cap on {unconverged}/{n} steps")

    return {
        "steps_ran": int(n),
        "stopped_early": bool(stopped_early),
        "unconverged_steps": int(unconverged),
        "iterations": np.asarray(iters_hist, dtype=np.int64),
        "residuals": np.asarray(res_hist, dtype=np.float64),
    }

import math
from dataclasses import dataclass

from geometry import Grid, PorousMatrix
from mac_solver import InflowConditions, SolverParams, initialize


def pick_dt(Uinf, h, cfl=0.8, dt_cap=0.01):
    dt = cfl * h / max(Uinf, 1e-9)
    return float(min(dt, dt_cap))


# ============================================================
# Config
# ============================================================

@dataclass
class CaseConfig:
    # Domain (wind tunnel)
    nx: int = 200
    ny: int = 100
    domain_width: float = 4.0
    domain_height: float = 2.0

    # Flow
    inflow_speed: float = 5.0
    density: float = 1.2
    viscosity: float = 1.8e-5
    walls: str = "no_slip"
    smoke: float = 1.0

    # Radiator (matrix centre as fraction of the domain)
    radiator_x_frac: float = 0.4
    radiator_y_frac: float = 0.5
    radiator_width: float = 0.15
    radiator_height: float = 0.3
    porosity: float = 0.8
    resistance: float = 100.0
    # explicit overrides of the Darcy / Forchheimer coefficients
    linear_coeff: float | None = None
    quadratic_coeff: float | None = None

    # Time stepping
    steps: int = 1000
    cfl: float = 0.8
    dt_cap: float = 0.01
    out_every: int = 200

    # Pressure solver
    max_iters: int = 40
    tolerance: float = 1e-6
    over_relaxation: float = 1.7
    ordering: str = "lexicographic"
    diffusion: bool = False

    # Early stop (steady state on mass flow)
    stop_enable: bool = True
    stop_min_steps: int = 300
    stop_check_every: int = 50
    stop_window: int = 4
    stop_tol_mdot: float = 1e-3
    stop_tol_div: float = 1e-3

    def grid(self):
        return Grid.from_domain(self.nx, self.ny, self.domain_width, self.domain_height)

    def inflow(self):
        return InflowConditions(
            speed=self.inflow_speed,
            density=self.density,
            viscosity=self.viscosity,
            smoke=self.smoke,
            walls=self.walls,
        )

    def solver_params(self):
        return SolverParams(
            max_iters=self.max_iters,
            tolerance=self.tolerance,
            over_relaxation=self.over_relaxation,
            ordering=self.ordering,
            diffusion=self.diffusion,
        )

    def dt(self):
        return pick_dt(self.inflow_speed, self.domain_width / self.nx, cfl=self.cfl, dt_cap=self.dt_cap)


def build_radiator(cfg: CaseConfig, angle_deg: float):
    x = cfg.radiator_x_frac * cfg.domain_width
    y = cfg.radiator_y_frac * cfg.domain_height
    angle = math.radians(angle_deg)

    rad = PorousMatrix.from_porosity(
        x, y, cfg.radiator_width, cfg.radiator_height, angle,
        cfg.porosity, cfg.resistance,
        density=cfg.density, viscosity=cfg.viscosity,
    )
    if cfg.linear_coeff is not None or cfg.quadratic_coeff is not None:
        rad = PorousMatrix(
            x, y, cfg.radiator_width, cfg.radiator_height, angle,
            rad.linear_coeff if cfg.linear_coeff is None else cfg.linear_coeff,
            rad.quadratic_coeff if cfg.quadratic_coeff is None else cfg.quadratic_coeff,
        )
    return rad


def build_state(cfg: CaseConfig, angle_deg: float, extra_obstacles=(), init_state=None):
    radiator = build_radiator(cfg, angle_deg)
    state = initialize(
        cfg.grid(),
        (radiator,) + tuple(extra_obstacles),
        inflow=cfg.inflow(),
        params=cfg.solver_params(),
        init_state=init_state,
    )
    return state, radiator

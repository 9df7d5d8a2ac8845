import math
from dataclasses import dataclass

import numpy as np
from numba import njit, prange


class ConfigurationError(ValueError):
    """Invalid grid, obstacle or inflow setup; raised before a run starts."""


# ============================================================
# Grid
# ============================================================

@dataclass(frozen=True)
class Grid:
    nx: int
    ny: int
    h: float
    domain_width: float
    domain_height: float

    def __post_init__(self):
        if self.nx <= 0 or self.ny <= 0:
            raise ConfigurationError(f"grid needs positive cell counts, got {self.nx}x{self.ny}")
        if self.domain_width <= 0.0 or self.domain_height <= 0.0 or self.h <= 0.0:
            raise ConfigurationError("domain extents and spacing must be positive")
        hx = self.domain_width / self.nx
        hy = self.domain_height / self.ny
        if not (math.isclose(hx, self.h, rel_tol=1e-9) and math.isclose(hy, self.h, rel_tol=1e-9)):
            raise ConfigurationError(
                f"cells must be square: width/nx={hx:.6g}, height/ny={hy:.6g}, h={self.h:.6g}"
            )

    @classmethod
    def from_domain(cls, nx: int, ny: int, width: float, height: float):
        if nx <= 0 or ny <= 0:
            raise ConfigurationError(f"grid needs positive cell counts, got {nx}x{ny}")
        return cls(int(nx), int(ny), float(width) / int(nx), float(width), float(height))

    def cell_centers(self):
        xc = (np.arange(self.nx) + 0.5) * self.h
        yc = (np.arange(self.ny) + 0.5) * self.h
        return xc, yc


# ============================================================
# NACA 4 digits (chord=1), used for outlines
# ============================================================

def naca4_coordinates(m: float, p: float, t: float, n: int = 200):
    beta = np.linspace(0.0, np.pi, n)
    x = 0.5 * (1.0 - np.cos(beta))  # cos spacing

    yt = 5.0 * t * (
        0.2969 * np.sqrt(x + 1e-12)
        - 0.1260 * x
        - 0.3516 * x**2
        + 0.2843 * x**3
        - 0.1015 * x**4
    )

    yc = np.zeros_like(x)
    dyc = np.zeros_like(x)

    if m > 0.0 and 0.0 < p < 1.0:
        for i in range(n):
            xi = x[i]
            if xi < p:
                yc[i] = m / (p**2) * (2*p*xi - xi**2)
                dyc[i] = 2*m / (p**2) * (p - xi)
            else:
                yc[i] = m / ((1-p)**2) * ((1 - 2*p) + 2*p*xi - xi**2)
                dyc[i] = 2*m / ((1-p)**2) * (p - xi)

    theta = np.arctan(dyc)

    xu = x - yt * np.sin(theta)
    yu = yc + yt * np.cos(theta)
    xl = x + yt * np.sin(theta)
    yl = yc - yt * np.cos(theta)

    # upper TE->LE + lower LE->TE
    X = np.concatenate([xu[::-1], xl[1:]])
    Y = np.concatenate([yu[::-1], yl[1:]])
    return X, Y


def rotate_translate(X, Y, angle_rad: float, x0: float, y0: float):
    ca = np.cos(angle_rad)
    sa = np.sin(angle_rad)
    xr = ca * X - sa * Y
    yr = sa * X + ca * Y
    return xr + x0, yr + y0


def _rotated_box_bounds(x0, y0, lx0, lx1, ly0, ly1, angle):
    X = np.array([lx0, lx1, lx1, lx0], dtype=np.float64)
    Y = np.array([ly0, ly0, ly1, ly1], dtype=np.float64)
    xr, yr = rotate_translate(X, Y, angle, x0, y0)
    return float(xr.min()), float(xr.max()), float(yr.min()), float(yr.max())


# ============================================================
# Numba helpers: inside tests (tagged variants)
# table row = [kind, x, y, a, b, angle, linear, quadratic]
# ============================================================

CIRCLE = 0
AIRFOIL = 1
POROUS = 2


@njit(inline="always")
def naca_half_thickness(xc, t):
    return 5.0 * t * (
        0.2969 * np.sqrt(xc)
        - 0.1260 * xc
        - 0.3516 * xc * xc
        + 0.2843 * xc * xc * xc
        - 0.1015 * xc * xc * xc * xc
    )


@njit(inline="always")
def _to_local(x, y, x0, y0, angle):
    ca = np.cos(angle)
    sa = np.sin(angle)
    dx = x - x0
    dy = y - y0
    return dx * ca + dy * sa, -dx * sa + dy * ca


@njit
def _inside(row, x, y):
    kind = int(row[0])
    lx, ly = _to_local(x, y, row[1], row[2], row[5])
    if kind == CIRCLE:
        return lx * lx + ly * ly <= row[3] * row[3]
    if kind == AIRFOIL:
        chord = row[3]
        if lx < 0.0 or lx > chord:
            return False
        return abs(ly) <= chord * naca_half_thickness(lx / chord, row[4])
    return abs(lx) <= 0.5 * row[3] and abs(ly) <= 0.5 * row[4]


@njit
def _inside_points(row, xs, ys, out):
    for k in range(xs.shape[0]):
        out[k] = _inside(row, xs[k], ys[k])


@njit(parallel=True)
def _rasterize(table, nx, ny, h, solid, lin, quad, dir_x, dir_y, owner):
    n_obs = table.shape[0]
    for i in prange(nx):
        x = (i + 0.5) * h
        for j in range(ny):
            y = (j + 0.5) * h
            solid[i, j] = False
            lin[i, j] = 0.0
            quad[i, j] = 0.0
            dir_x[i, j] = 0.0
            dir_y[i, j] = 0.0
            owner[i, j] = -1

            for k in range(n_obs):
                if not _inside(table[k], x, y):
                    continue
                if int(table[k, 0]) == POROUS:
                    # solid claims win over the matrix
                    if not solid[i, j]:
                        lin[i, j] = table[k, 6]
                        quad[i, j] = table[k, 7]
                        dir_x[i, j] = np.cos(table[k, 5])
                        dir_y[i, j] = np.sin(table[k, 5])
                        owner[i, j] = k
                else:
                    solid[i, j] = True
                    lin[i, j] = 0.0
                    quad[i, j] = 0.0
                    dir_x[i, j] = 0.0
                    dir_y[i, j] = 0.0
                    owner[i, j] = k


# ============================================================
# Obstacles
# ============================================================

class _Shape:
    kind = -1

    def pack(self):
        raise NotImplementedError

    def bounds(self):
        raise NotImplementedError

    def contains(self, x, y):
        scalar = np.ndim(x) == 0 and np.ndim(y) == 0
        xs, ys = np.broadcast_arrays(np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64))
        out = np.zeros(xs.size, dtype=np.bool_)
        _inside_points(self.pack(), xs.ravel(), ys.ravel(), out)
        if scalar:
            return bool(out[0])
        return out.reshape(xs.shape)

    @property
    def is_porous(self):
        return self.kind == POROUS


@dataclass(frozen=True)
class Circle(_Shape):
    x: float
    y: float
    radius: float
    angle: float = 0.0

    kind = CIRCLE

    def pack(self):
        return np.array([CIRCLE, self.x, self.y, self.radius, 0.0, self.angle, 0.0, 0.0], dtype=np.float64)

    def bounds(self):
        r = self.radius
        return self.x - r, self.x + r, self.y - r, self.y + r

    def frontal(self):
        # (centre, normal, span, half thickness along the normal)
        return (self.x, self.y), (1.0, 0.0), 2.0 * self.radius, self.radius

    def outline(self, n: int = 120):
        t = np.linspace(0.0, 2.0 * np.pi, n)
        return self.x + self.radius * np.cos(t), self.y + self.radius * np.sin(t)


@dataclass(frozen=True)
class Airfoil(_Shape):
    """Symmetric NACA 00xx section; (x, y) is the leading edge, angle turns the chord CCW."""

    x: float
    y: float
    chord: float
    thickness: float
    angle: float = 0.0

    kind = AIRFOIL

    def pack(self):
        return np.array([AIRFOIL, self.x, self.y, self.chord, self.thickness, self.angle, 0.0, 0.0],
                        dtype=np.float64)

    def bounds(self):
        # max of the 5t polynomial is ~0.5003 t near 30% chord
        half = 0.51 * self.thickness * self.chord
        return _rotated_box_bounds(self.x, self.y, 0.0, self.chord, -half, half, self.angle)

    def frontal(self):
        ca = math.cos(self.angle)
        sa = math.sin(self.angle)
        cx = self.x + 0.5 * self.chord * ca
        cy = self.y + 0.5 * self.chord * sa
        return (cx, cy), (1.0, 0.0), self.chord * (abs(sa) + self.thickness * abs(ca)), 0.5 * self.chord

    def outline(self, n: int = 200):
        X, Y = naca4_coordinates(0.0, 0.0, self.thickness, n=n)
        return rotate_translate(X * self.chord, Y * self.chord, self.angle, self.x, self.y)


@dataclass(frozen=True)
class PorousMatrix(_Shape):
    """Radiator core: rotated rectangle with Darcy (1/s) and Forchheimer (1/m) coefficients.

    width is measured along the flow-through normal (cos(angle), sin(angle)),
    height along the face.
    """

    x: float
    y: float
    width: float
    height: float
    angle: float = 0.0
    linear_coeff: float = 0.0
    quadratic_coeff: float = 0.0

    kind = POROUS

    @classmethod
    def from_porosity(cls, x, y, width, height, angle, porosity, resistance,
                      density=1.2, viscosity=1.8e-5):
        # permeability = porosity / resistance, Ergun inertial term
        permeability = max(porosity / max(resistance, 1e-12), 1e-10)
        linear = viscosity / (density * permeability)
        quadratic = 1.75 * (1.0 - porosity) / (porosity ** 3) / max(width, 1e-12)
        return cls(x, y, width, height, angle, linear, quadratic)

    def pack(self):
        return np.array([POROUS, self.x, self.y, self.width, self.height, self.angle,
                         self.linear_coeff, self.quadratic_coeff], dtype=np.float64)

    def bounds(self):
        hw = 0.5 * self.width
        hh = 0.5 * self.height
        return _rotated_box_bounds(self.x, self.y, -hw, hw, -hh, hh, self.angle)

    def normal(self):
        return math.cos(self.angle), math.sin(self.angle)

    def frontal(self):
        return (self.x, self.y), self.normal(), self.height, 0.5 * self.width

    def coefficients_at(self, x, y):
        inside = np.asarray(self.contains(x, y))
        nx, ny = self.normal()
        lin = np.where(inside, self.linear_coeff, 0.0)
        quad = np.where(inside, self.quadratic_coeff, 0.0)
        return lin, quad, np.where(inside, nx, 0.0), np.where(inside, ny, 0.0)

    def outline(self):
        hw = 0.5 * self.width
        hh = 0.5 * self.height
        X = np.array([-hw, hw, hw, -hw, -hw])
        Y = np.array([-hh, -hh, hh, hh, -hh])
        return rotate_translate(X, Y, self.angle, self.x, self.y)


# ============================================================
# Rasterization
# ============================================================

def pack_obstacles(obstacles):
    if not obstacles:
        return np.zeros((0, 8), dtype=np.float64)
    return np.vstack([ob.pack() for ob in obstacles])


def rasterize(grid: Grid, obstacles):
    """
    Returns dict with:
      solid (nx,ny) bool, porous_linear / porous_quadratic / porous_dir_x / porous_dir_y (nx,ny),
      owner (nx,ny) int32 (-1 = free fluid)
    """
    nx, ny = grid.nx, grid.ny
    solid = np.zeros((nx, ny), dtype=np.bool_)
    lin = np.zeros((nx, ny), dtype=np.float64)
    quad = np.zeros((nx, ny), dtype=np.float64)
    dir_x = np.zeros((nx, ny), dtype=np.float64)
    dir_y = np.zeros((nx, ny), dtype=np.float64)
    owner = np.full((nx, ny), -1, dtype=np.int32)

    table = pack_obstacles(obstacles)
    if table.shape[0] > 0:
        _rasterize(table, nx, ny, float(grid.h), solid, lin, quad, dir_x, dir_y, owner)

    return {
        "solid": solid,
        "porous_linear": lin,
        "porous_quadratic": quad,
        "porous_dir_x": dir_x,
        "porous_dir_y": dir_y,
        "owner": owner,
    }


def validate_obstacles(grid: Grid, obstacles, raster, max_blocked_fraction=0.5):
    for k, ob in enumerate(obstacles):
        x0, x1, y0, y1 = ob.bounds()
        if x1 < 0.0 or x0 > grid.domain_width or y1 < 0.0 or y0 > grid.domain_height:
            raise ConfigurationError(f"obstacle {k} ({type(ob).__name__}) lies fully outside the domain")

    owner = raster["owner"]
    counts = np.bincount(owner[owner >= 0].ravel(), minlength=len(obstacles))
    for k, ob in enumerate(obstacles):
        if counts[k] == 0:
            raise ConfigurationError(f"obstacle {k} ({type(ob).__name__}) covers no grid cell")

    blocked = float(np.count_nonzero(raster["solid"])) / float(grid.nx * grid.ny)
    if blocked > max_blocked_fraction:
        raise ConfigurationError(
            f"obstacles block {blocked:.1%} of the domain (limit {max_blocked_fraction:.0%})"
        )

"""
Ellipsoid Fitting for Magnetometer Point Clouds

Raw magnetometer samples lie on an ellipsoid (hard iron shifts the center,
soft iron scales and shears the sphere). This module provides:
- Quadric: the 10-coefficient general second-degree surface
- fit_ellipsoid: least-squares ellipsoid specific fitting
- intersect / surface_points: ray-ellipsoid intersection used as a residual

Quadric convention:
    a x^2 + b y^2 + c z^2 + 2f yz + 2g xz + 2h xy + 2p x + 2q y + 2r z + d = 0
or in matrix form x^T Q x + ub^T x + k = 0 with
    Q = [[a, h, g], [h, b, f], [g, f, c]],  ub = 2 [p, q, r],  k = d

References:
- Li, Q. and Griffiths, J. G. "Least squares ellipsoid specific fitting."
  Geometric Modeling and Processing, 2004.
"""

import numpy as np
from dataclasses import dataclass
from scipy import linalg
from typing import Optional

from .config import MIN_SAMPLES
from .errors import InsufficientDataError, IllConditionedFitError, DegenerateGeometryError

# Condition number above which the linear block of the scatter matrix is
# treated as singular (collinear, coplanar or too few directions)
MAX_CONDITION = 1e12

# Shape parameter of the specific-fitting constraint kJ - I^2 = 1
SPECIFIC_FIT_K = 4.0


def as_sample_array(samples) -> np.ndarray:
    """Convert a sequence of 3-vectors to a float (N, 3) array."""
    data = np.asarray(samples, dtype=float)
    if data.ndim == 1 and data.size == 0:
        return data.reshape(0, 3)
    if data.ndim != 2 or data.shape[1] != 3:
        raise ValueError(f"samples must have shape (N, 3), got {data.shape}")
    return data


def design_matrix(data: np.ndarray) -> np.ndarray:
    """One row (x^2, y^2, z^2, 2yz, 2xz, 2xy, 2x, 2y, 2z, 1) per sample."""
    x, y, z = data[:, 0], data[:, 1], data[:, 2]
    return np.column_stack([
        x * x, y * y, z * z,
        2 * y * z, 2 * x * z, 2 * x * y,
        2 * x, 2 * y, 2 * z,
        np.ones_like(x),
    ])


def constraint_matrix(k: float = SPECIFIC_FIT_K) -> np.ndarray:
    """
    6x6 matrix C with u1^T C u1 = kJ - I^2 for u1 = (a, b, c, f, g, h).

    I = a + b + c and J = ab + bc + ac - f^2 - g^2 - h^2. For k = 4 the
    constraint 4J - I^2 > 0 guarantees the quadric is an ellipsoid.
    """
    C = np.zeros((6, 6))
    C[:3, :3] = k / 2.0 - 1.0
    np.fill_diagonal(C[:3, :3], -1.0)
    C[3:, 3:] = -k * np.eye(3)
    return C


@dataclass
class Quadric:
    """General quadric surface with coefficients (a, b, c, f, g, h, p, q, r, d)."""
    coefficients: np.ndarray

    def __post_init__(self):
        coefficients = np.array(self.coefficients, dtype=float).reshape(-1)
        if coefficients.shape != (10,):
            raise ValueError(f"quadric needs 10 coefficients, got {coefficients.size}")
        coefficients.setflags(write=False)
        self.coefficients = coefficients

    @property
    def matrix(self) -> np.ndarray:
        """Symmetric 3x3 quadratic-form matrix Q."""
        a, b, c, f, g, h = self.coefficients[:6]
        return np.array([
            [a, h, g],
            [h, b, f],
            [g, f, c],
        ])

    @property
    def linear(self) -> np.ndarray:
        """Linear term ub = 2 (p, q, r)."""
        return 2.0 * self.coefficients[6:9]

    @property
    def constant(self) -> float:
        return float(self.coefficients[9])

    @property
    def shape_constraint(self) -> float:
        """4J - I^2; positive for ellipsoids accepted by the specific fit."""
        u1 = self.coefficients[:6]
        return float(u1 @ constraint_matrix() @ u1)

    def center(self) -> np.ndarray:
        """Point where the gradient vanishes: c = -1/2 Q^-1 ub."""
        try:
            center = -0.5 * np.linalg.solve(self.matrix, self.linear)
        except np.linalg.LinAlgError as e:
            raise DegenerateGeometryError(f"quadric matrix is singular: {e}")
        if not np.all(np.isfinite(center)):
            raise DegenerateGeometryError("quadric center is not finite")
        return center

    def radius_squared(self) -> float:
        """Right-hand side s of the centered form (x - c)^T Q (x - c) = s."""
        center = self.center()
        return float(center @ self.matrix @ center - self.constant)

    def is_ellipsoid(self) -> bool:
        """True if Q is positive-definite and the surface is real and bounded."""
        if not np.all(np.isfinite(self.coefficients)):
            return False
        if np.min(np.linalg.eigvalsh(self.matrix)) <= 0:
            return False
        try:
            return self.radius_squared() > 0
        except DegenerateGeometryError:
            return False

    def evaluate(self, points) -> np.ndarray:
        """Algebraic residual x^T Q x + ub^T x + k for each point."""
        return design_matrix(as_sample_array(points)) @ self.coefficients

    def normalized(self) -> 'Quadric':
        """Same surface scaled so that 4J - I^2 = 1 and a + b + c > 0."""
        constraint = self.shape_constraint
        if not constraint > 0:
            raise DegenerateGeometryError(
                f"quadric does not satisfy 4J - I^2 > 0 (got {constraint:.3g})")
        u = self.coefficients / np.sqrt(constraint)
        if np.sum(u[:3]) < 0:
            u = -u
        return Quadric(u)

    def surface_points(self, points) -> np.ndarray:
        """Ray-ellipsoid intersections from this quadric's center (see surface_points)."""
        return surface_points(points, self.center(), self.matrix, self.linear, self.constant)

    @classmethod
    def from_geometry(cls, center, radii, rotation=None) -> 'Quadric':
        """
        Build the quadric of an ellipsoid given its geometry.

        Args:
            center: Ellipsoid center (3,)
            radii: Semi-axis lengths (3,), along the columns of rotation
            rotation: 3x3 orthonormal matrix of principal axes (identity if None)
        """
        center = np.asarray(center, dtype=float).reshape(3)
        radii = np.asarray(radii, dtype=float).reshape(3)
        R = np.eye(3) if rotation is None else np.asarray(rotation, dtype=float)
        if np.any(radii <= 0):
            raise ValueError(f"radii must be positive, got {radii}")

        Q = R @ np.diag(1.0 / radii ** 2) @ R.T
        Q = 0.5 * (Q + Q.T)
        p, q, r = -(Q @ center)
        d = center @ Q @ center - 1.0
        return cls(np.array([
            Q[0, 0], Q[1, 1], Q[2, 2],
            Q[1, 2], Q[0, 2], Q[0, 1],
            p, q, r, d,
        ])).normalized()


def fit_ellipsoid(samples, max_condition: float = MAX_CONDITION) -> Quadric:
    """
    Least-squares ellipsoid specific fit.

    The quadric equation is homogeneous, so any multiple of the coefficient
    vector fits equally well. The specific-fitting constraint 4J - I^2 = 1
    removes that freedom and forces an ellipsoid solution: the quadratic
    block u1 is the generalized eigenvector of the reduced scatter matrix
    for the largest eigenvalue, and the linear block u2 follows from it.

    Args:
        samples: (N, 3) sample set, N >= 9
        max_condition: Condition number limit for the linear scatter block

    Returns:
        Quadric normalized so that 4J - I^2 = 1 and a + b + c > 0

    Raises:
        InsufficientDataError: fewer than 9 samples
        IllConditionedFitError: singular or near-singular normal equations
        DegenerateGeometryError: no ellipsoid satisfies the constraint
    """
    data = as_sample_array(samples)
    if len(data) < MIN_SAMPLES:
        raise InsufficientDataError(
            f"Need at least {MIN_SAMPLES} samples for an ellipsoid fit, got {len(data)}")

    D = design_matrix(data)
    S = D.T @ D
    if not np.all(np.isfinite(S)):
        raise IllConditionedFitError("scatter matrix is not finite")

    S11 = S[:6, :6]
    S12 = S[:6, 6:]
    S22 = S[6:, 6:]

    condition = np.linalg.cond(S22)
    if not condition <= max_condition:
        raise IllConditionedFitError(f"linear scatter block is singular (cond={condition:.3g})")

    # u2 = T u1 minimizes the residual for a given quadratic block
    T = -np.linalg.solve(S22, S12.T)
    M = S11 + S12 @ T
    M = 0.5 * (M + M.T)

    C = constraint_matrix()
    w, V = linalg.eig(M, C)
    w = np.real(w)
    V = np.real(V)

    finite = np.isfinite(w)
    if not np.any(finite):
        raise IllConditionedFitError("generalized eigenproblem has no finite solution")
    u1 = V[:, np.argmax(np.where(finite, w, -np.inf))]

    constraint = u1 @ C @ u1
    if not np.isfinite(constraint) or constraint <= 0:
        raise DegenerateGeometryError("least-squares quadric is not an ellipsoid")
    u1 = u1 / np.sqrt(constraint)

    u = np.concatenate([u1, T @ u1])
    if np.sum(u[:3]) < 0:
        u = -u
    return Quadric(u)


# =============================================================================
# RAY-ELLIPSOID INTERSECTION
# =============================================================================

def surface_points(points, r_e, Q, ub, k: float) -> np.ndarray:
    """
    Intersect rays from the ellipsoid center through each point with the surface.

    Substituting x = r_e + t (r_m - r_e) into x^T Q x + ub^T x + k = 0 gives a
    quadratic in t. The smallest positive root is taken, so a point already
    on the surface maps to itself (t = 1).

    Args:
        points: (N, 3) measured points r_m (a single (3,) point is accepted)
        r_e: Ellipsoid center
        Q: 3x3 quadratic-form matrix
        ub: Linear term, in the same coordinates as the points
        k: Constant term

    Returns:
        (N, 3) surface points; rows are NaN where the ray is undefined
        (point at the center) or does not meet the surface.
    """
    points = np.asarray(points, dtype=float).reshape(-1, 3)
    r_e = np.asarray(r_e, dtype=float).reshape(3)
    Q = np.asarray(Q, dtype=float).reshape(3, 3)
    ub = np.asarray(ub, dtype=float).reshape(3)

    w = points - r_e
    alpha = np.einsum('ij,jk,ik->i', w, Q, w)
    beta = w @ ((Q + Q.T) @ r_e) + w @ ub
    gamma = r_e @ Q @ r_e + ub @ r_e + k

    with np.errstate(invalid='ignore', divide='ignore'):
        disc = beta ** 2 - 4 * alpha * gamma
        root = np.sqrt(disc)
        t_near = (-beta - root) / (2 * alpha)
        t_far = (-beta + root) / (2 * alpha)
        t = np.where(t_near > 0, t_near, np.where(t_far > 0, t_far, np.nan))

    valid = np.any(w != 0, axis=1) & (alpha > 0) & np.isfinite(t)

    out = np.full(points.shape, np.nan)
    out[valid] = r_e + t[valid, None] * w[valid]
    return out


def intersect(r_m, r_e, Q, ub, k: float) -> Optional[np.ndarray]:
    """
    Surface point on the ray from center r_e through measurement r_m.

    Returns None when the ray is undefined (r_m == r_e) or misses the surface.
    """
    point = surface_points(r_m, r_e, Q, ub, k)[0]
    if np.any(np.isnan(point)):
        return None
    return point


def ray_residuals(points, r_e, Q, ub, k: float) -> np.ndarray:
    """Distance from each point to its ray-ellipsoid intersection (NaN if excluded)."""
    points = np.asarray(points, dtype=float).reshape(-1, 3)
    surface = surface_points(points, r_e, Q, ub, k)
    return np.linalg.norm(points - surface, axis=1)

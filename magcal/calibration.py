"""
Magnetometer Hard-Iron + Soft-Iron Calibration

Converts a fitted ellipsoid into the affine correction that maps it onto a
sphere whose radius is the local field strength.

Calibration model:
    m_cal = A @ (m_raw - b)

Where:
    b = hard-iron offset (3-vector) - the ellipsoid center
    A = soft-iron correction (3x3 symmetric positive-definite matrix)

References:
- Renaudin, V., Afzal, M. H. and Lachapelle, G. "Complete triaxis
  magnetometer calibration in the magnetic domain." Journal of Sensors, 2010.
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from scipy import linalg
from typing import Callable, Dict, Optional

from .config import CalibrationConfig, MIN_SAMPLES
from .eigen import eig_sort
from .ellipsoid import Quadric, as_sample_array
from .errors import DegenerateGeometryError, InsufficientDataError
from .ransac import RandomSource, ellipsoid_ransac

logger = logging.getLogger(__name__)

# Flight controller parameter names, row-major for A then x/y/z for b
SOFT_IRON_PARAMS = [
    'MAG_A11_COMP', 'MAG_A12_COMP', 'MAG_A13_COMP',
    'MAG_A21_COMP', 'MAG_A22_COMP', 'MAG_A23_COMP',
    'MAG_A31_COMP', 'MAG_A32_COMP', 'MAG_A33_COMP',
]
HARD_IRON_PARAMS = ['MAG_X_BIAS', 'MAG_Y_BIAS', 'MAG_Z_BIAS']


def _read_only(array, shape) -> np.ndarray:
    out = np.array(array, dtype=float).reshape(shape)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class CalibrationTransform:
    """Soft-iron matrix A and hard-iron bias b from one completed run."""
    soft_iron: np.ndarray                  # A: 3x3 correction matrix
    hard_iron: np.ndarray                  # b: 3-vector offset
    reference_field_strength: float        # Radius of the corrected sphere
    semi_axes: Optional[np.ndarray] = None  # Fitted ellipsoid semi-axes (ascending eigenvalue order)
    rotation: Optional[np.ndarray] = None   # Principal axes as columns
    inlier_count: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'soft_iron', _read_only(self.soft_iron, (3, 3)))
        object.__setattr__(self, 'hard_iron', _read_only(self.hard_iron, (3,)))
        if self.semi_axes is not None:
            object.__setattr__(self, 'semi_axes', _read_only(self.semi_axes, (3,)))
        if self.rotation is not None:
            object.__setattr__(self, 'rotation', _read_only(self.rotation, (3, 3)))

    # Element accessors
    a11 = property(lambda self: float(self.soft_iron[0, 0]))
    a12 = property(lambda self: float(self.soft_iron[0, 1]))
    a13 = property(lambda self: float(self.soft_iron[0, 2]))
    a21 = property(lambda self: float(self.soft_iron[1, 0]))
    a22 = property(lambda self: float(self.soft_iron[1, 1]))
    a23 = property(lambda self: float(self.soft_iron[1, 2]))
    a31 = property(lambda self: float(self.soft_iron[2, 0]))
    a32 = property(lambda self: float(self.soft_iron[2, 1]))
    a33 = property(lambda self: float(self.soft_iron[2, 2]))
    bx = property(lambda self: float(self.hard_iron[0]))
    by = property(lambda self: float(self.hard_iron[1]))
    bz = property(lambda self: float(self.hard_iron[2]))

    def apply(self, raw) -> np.ndarray:
        """Correct one reading (3,) or a batch (N, 3)."""
        raw = np.asarray(raw, dtype=float)
        return (raw - self.hard_iron) @ self.soft_iron.T

    def parameters(self) -> Dict[str, float]:
        """Flight controller parameters for this transform."""
        params = dict(zip(SOFT_IRON_PARAMS, (float(v) for v in self.soft_iron.flatten())))
        params.update(zip(HARD_IRON_PARAMS, (float(v) for v in self.hard_iron)))
        return params

    def to_dict(self) -> dict:
        d = {
            'soft_iron': self.soft_iron.tolist(),
            'hard_iron': self.hard_iron.tolist(),
            'reference_field_strength': self.reference_field_strength,
            'inlier_count': self.inlier_count,
        }
        if self.semi_axes is not None:
            d['semi_axes'] = self.semi_axes.tolist()
        if self.rotation is not None:
            d['rotation'] = self.rotation.tolist()
        return d

    @classmethod
    def from_dict(cls, d: dict) -> 'CalibrationTransform':
        return cls(
            soft_iron=np.array(d['soft_iron']),
            hard_iron=np.array(d['hard_iron']),
            reference_field_strength=float(d['reference_field_strength']),
            semi_axes=np.array(d['semi_axes']) if 'semi_axes' in d else None,
            rotation=np.array(d['rotation']) if 'rotation' in d else None,
            inlier_count=int(d.get('inlier_count', 0)),
        )


def derive_calibration(quadric: Quadric,
                       reference_field_strength: float,
                       inlier_count: int = 0) -> CalibrationTransform:
    """
    Compute A and b from a fitted ellipsoid.

    The ellipsoid (x - c)^T Q (x - c) = s has semi-axes e_i = sqrt(s / lambda_i)
    along the eigenvectors R of Q. Scaling each principal axis by H / e_i maps
    it onto the sphere of radius H:

        A = R diag(H / e_i) R^T,    b = c

    Args:
        quadric: Final fitted quadric
        reference_field_strength: Local field magnitude H (> 0)
        inlier_count: Support of the fit, kept for diagnostics

    Raises:
        DegenerateGeometryError: Q singular or not positive-definite, or
            the quadric has no real points
    """
    if not reference_field_strength > 0:
        raise ValueError(f"reference_field_strength must be > 0, got {reference_field_strength}")

    Q = quadric.matrix
    center = quadric.center()

    eigenvalues, eigenvectors = linalg.eigh(Q)
    eigenvalues, R = eig_sort(eigenvalues, eigenvectors)
    if np.any(eigenvalues <= 0):
        raise DegenerateGeometryError(
            f"quadric matrix is not positive-definite (eigenvalues {eigenvalues})")

    s = float(center @ Q @ center - quadric.constant)
    if not s > 0:
        raise DegenerateGeometryError(f"quadric has no real points (s={s:.3g})")

    semi_axes = np.sqrt(s / eigenvalues)
    A = R @ np.diag(reference_field_strength / semi_axes) @ R.T
    A = 0.5 * (A + A.T)

    return CalibrationTransform(
        soft_iron=A,
        hard_iron=center,
        reference_field_strength=float(reference_field_strength),
        semi_axes=semi_axes,
        rotation=R,
        inlier_count=inlier_count,
    )


def apply_calibration(mag_data, transform: CalibrationTransform) -> np.ndarray:
    """
    Apply calibration to magnetometer data.

    m_cal = A @ (m_raw - b)
    """
    return transform.apply(as_sample_array(mag_data))


def validate_calibration(raw_data: np.ndarray,
                         cal_data: np.ndarray,
                         reference_field_strength: Optional[float] = None) -> Dict[str, float]:
    """
    Compute validation metrics for calibration.
    """
    raw_mags = np.linalg.norm(raw_data, axis=1)
    cal_mags = np.linalg.norm(cal_data, axis=1)

    raw_std = float(np.std(raw_mags))
    cal_std = float(np.std(cal_mags))

    metrics = {
        'raw_mean_magnitude': float(np.mean(raw_mags)),
        'raw_std_magnitude': raw_std,
        'raw_cv': raw_std / float(np.mean(raw_mags)),  # Coefficient of variation
        'cal_mean_magnitude': float(np.mean(cal_mags)),
        'cal_std_magnitude': cal_std,
        'cal_cv': cal_std / float(np.mean(cal_mags)),
        'std_improvement_ratio': raw_std / cal_std if cal_std > 0 else float('inf'),
    }
    if reference_field_strength is not None:
        metrics['max_field_error'] = float(np.max(np.abs(cal_mags - reference_field_strength)))
    return metrics


def check_orientation_coverage(mag_data: np.ndarray,
                               center: Optional[np.ndarray] = None,
                               n_bins: int = 8) -> Dict[str, float]:
    """
    Check if magnetometer samples cover diverse orientations.

    Directions are taken relative to center (the hard-iron offset if known).
    """
    data = as_sample_array(mag_data)
    if center is not None:
        data = data - np.asarray(center, dtype=float)

    norms = np.linalg.norm(data, axis=1, keepdims=True)
    unit_vectors = data / (norms + 1e-8)

    theta = np.arccos(np.clip(unit_vectors[:, 2], -1.0, 1.0))  # Polar angle
    phi = np.arctan2(unit_vectors[:, 1], unit_vectors[:, 0])   # Azimuthal angle

    theta_bins = np.linspace(0, np.pi, n_bins + 1)
    phi_bins = np.linspace(-np.pi, np.pi, n_bins + 1)
    hist, _, _ = np.histogram2d(theta, phi, bins=[theta_bins, phi_bins])

    n_total_bins = n_bins * n_bins
    hist_norm = hist.flatten() / max(hist.sum(), 1)
    hist_norm = hist_norm[hist_norm > 0]
    entropy = -np.sum(hist_norm * np.log(hist_norm))

    return {
        'coverage_ratio': float(np.sum(hist > 0) / n_total_bins),
        'uniformity': float(entropy / np.log(n_total_bins)),
        'n_occupied_bins': int(np.sum(hist > 0)),
        'n_total_bins': n_total_bins,
    }


def publish_parameters(transform: CalibrationTransform,
                       set_param: Callable[[str, float], bool]) -> bool:
    """
    Push a transform to the flight controller.

    Args:
        transform: Completed calibration
        set_param: Called as set_param(name, value); returns True on success

    Returns:
        True only if every parameter was set
    """
    success = True
    for name, value in transform.parameters().items():
        if not set_param(name, value):
            logger.warning("Failed to set parameter %s to %g", name, value)
            success = False

    if success:
        logger.info("Successfully set magnetometer calibration parameters")
    else:
        logger.warning("Some magnetometer calibration parameters could not be set")
    return success


# =============================================================================
# BATCH PIPELINE
# =============================================================================

@dataclass
class CalibrationResult:
    """Transform plus the fit diagnostics of one batch calibration."""
    transform: CalibrationTransform
    inlier_mask: np.ndarray
    iterations: int
    candidates: int
    metrics: Dict[str, float] = field(default_factory=dict)

    @property
    def inlier_count(self) -> int:
        return int(np.count_nonzero(self.inlier_mask))

    def to_dict(self) -> dict:
        return {
            'transform': self.transform.to_dict(),
            'inlier_count': self.inlier_count,
            'sample_count': int(len(self.inlier_mask)),
            'iterations': self.iterations,
            'candidates': self.candidates,
            'metrics': dict(self.metrics),
        }


def check_sample_set(samples) -> np.ndarray:
    """
    Validate a frozen sample set before fitting.

    Non-finite rows are kept (they never become inliers) so that inlier
    masks line up with the input.

    Raises:
        InsufficientDataError: fewer than 9 distinct finite samples
    """
    data = as_sample_array(samples)
    finite = data[np.all(np.isfinite(data), axis=1)]
    n_distinct = len(np.unique(finite, axis=0)) if len(finite) else 0
    if n_distinct < MIN_SAMPLES:
        raise InsufficientDataError(
            f"Need at least {MIN_SAMPLES} distinct samples, got {n_distinct}")
    return data


def calibrate(samples,
              config: Optional[CalibrationConfig] = None,
              rng: RandomSource = None,
              should_stop: Optional[Callable[[], bool]] = None) -> CalibrationResult:
    """
    Full calibration pipeline on a frozen sample set.

    Args:
        samples: (N, 3) raw magnetometer readings
        config: Calibration options (defaults if None)
        rng: Generator or seed for RANSAC subset sampling
        should_stop: Cancellation check between RANSAC iterations

    Returns:
        CalibrationResult

    Raises:
        CalibrationError subclasses for run-level failures
    """
    config = config or CalibrationConfig()
    data = check_sample_set(samples)

    logger.info("Fitting ellipsoid to %d measurements", len(data))
    ransac = ellipsoid_ransac(
        data,
        iterations=config.ransac_iterations,
        inlier_threshold=config.inlier_threshold,
        rng=rng,
        subset_size=config.subset_size,
        min_inliers=int(np.ceil(config.min_inlier_ratio * len(data))),
        should_stop=should_stop,
    )

    logger.info("Computing calibration parameters")
    transform = derive_calibration(ransac.quadric, config.reference_field_strength,
                                   inlier_count=ransac.inlier_count)

    inliers = data[ransac.inlier_mask]
    metrics = validate_calibration(inliers, transform.apply(inliers),
                                   config.reference_field_strength)

    return CalibrationResult(
        transform=transform,
        inlier_mask=ransac.inlier_mask,
        iterations=ransac.iterations,
        candidates=ransac.candidates,
        metrics=metrics,
    )

"""
Magnetometer Sensor Simulation

Generates raw magnetometer point clouds with known hard-iron bias, soft-iron
distortion, noise and outliers, so the calibration pipeline can be checked
against ground truth without a live sensor.

Sensor model:
    m_raw = W @ m_true + bias + noise

where m_true has the reference magnitude and a direction spread over the
sphere (the sensor being rotated through all orientations).
"""

import numpy as np
from dataclasses import dataclass
from scipy.spatial.transform import Rotation
from typing import Optional, Sequence, Tuple

from .calibration import CalibrationTransform
from .eigen import eig_sort
from .ransac import RandomSource


def distortion_from_axes(scales: Sequence[float],
                         euler_deg: Sequence[float] = (0.0, 0.0, 0.0),
                         seq: str = 'zyx') -> np.ndarray:
    """
    Soft-iron distortion that stretches a sphere by `scales` along rotated axes.

    Returns:
        W = R diag(scales) R^T with R built from the Euler angles
    """
    R = Rotation.from_euler(seq, euler_deg, degrees=True).as_matrix()
    return R @ np.diag(np.asarray(scales, dtype=float)) @ R.T


def unit_directions(n: int, rng: RandomSource = None) -> np.ndarray:
    """Directions spread uniformly over the unit sphere."""
    rng = np.random.default_rng(rng)
    v = rng.normal(size=(n, 3))
    norms = np.linalg.norm(v, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return v / norms


@dataclass
class SensorCharacteristics:
    """Distortion and noise model of a simulated magnetometer."""
    field_strength: float = 50.0                              # Local field (µT)
    soft_iron: Optional[np.ndarray] = None                    # W: 3x3 distortion
    hard_iron: Optional[np.ndarray] = None                    # Constant offset (µT)
    noise: float = 0.0                                        # Gaussian noise sigma (µT)

    def __post_init__(self):
        self.soft_iron = np.eye(3) if self.soft_iron is None else \
            np.asarray(self.soft_iron, dtype=float).reshape(3, 3)
        self.hard_iron = np.zeros(3) if self.hard_iron is None else \
            np.asarray(self.hard_iron, dtype=float).reshape(3)


class MagnetometerSimulator:
    """
    Simulate raw magnetometer readings for a sensor rotated in a uniform field.

    The simulator adds:
    1. Soft iron distortion (axis scaling/rotation)
    2. Hard iron bias (constant offset)
    3. Gaussian noise
    4. Optional gross outliers (magnetic disturbances during collection)
    """

    def __init__(self,
                 characteristics: Optional[SensorCharacteristics] = None,
                 rng: RandomSource = None):
        self.chars = characteristics or SensorCharacteristics()
        self.rng = np.random.default_rng(rng)

    def randomize_parameters(self,
                             bias_range: Tuple[float, float] = (-40.0, 40.0),
                             scale_range: Tuple[float, float] = (0.8, 1.2),
                             noise_range: Tuple[float, float] = (0.0, 0.5)):
        """
        Draw a random device: bias per axis, axis scales and a random rotation.

        Scales stay within a factor of 1.5 of each other by default, which
        keeps the ellipsoid inside the range accepted by the specific fit.
        """
        scales = self.rng.uniform(*scale_range, size=3)
        angles = self.rng.uniform(-180.0, 180.0, size=3)
        self.chars = SensorCharacteristics(
            field_strength=self.chars.field_strength,
            soft_iron=distortion_from_axes(scales, angles),
            hard_iron=self.rng.uniform(*bias_range, size=3),
            noise=float(self.rng.uniform(*noise_range)),
        )

    def measure(self, true_field: np.ndarray, add_noise: bool = True) -> np.ndarray:
        """
        Raw readings for true field vector(s) in the sensor frame.

        Args:
            true_field: (3,) or (N, 3) undistorted field
            add_noise: Add Gaussian sensor noise

        Returns:
            Raw readings with the same shape as true_field
        """
        field = np.asarray(true_field, dtype=float)
        raw = field @ self.chars.soft_iron.T + self.chars.hard_iron
        if add_noise and self.chars.noise > 0:
            raw = raw + self.rng.normal(0.0, self.chars.noise, size=raw.shape)
        return raw

    def sample_cloud(self,
                     n: int,
                     outlier_fraction: float = 0.0,
                     outlier_scale: float = 0.5) -> Tuple[np.ndarray, np.ndarray]:
        """
        Simulate a full calibration collection.

        Args:
            n: Number of readings
            outlier_fraction: Share of readings replaced by disturbances
            outlier_scale: Disturbance size relative to the field strength

        Returns:
            samples: (n, 3) raw readings
            outlier_mask: (n,) True where the reading is a disturbance
        """
        if not 0.0 <= outlier_fraction < 1.0:
            raise ValueError(f"outlier_fraction must be in [0, 1), got {outlier_fraction}")

        true_field = self.chars.field_strength * unit_directions(n, self.rng)
        samples = self.measure(true_field)

        outlier_mask = np.zeros(n, dtype=bool)
        n_outliers = int(round(outlier_fraction * n))
        if n_outliers:
            idx = self.rng.choice(n, size=n_outliers, replace=False)
            outlier_mask[idx] = True
            # Push disturbed readings radially off the ellipsoid
            offsets = samples[idx] - self.chars.hard_iron
            gain = 1.0 + outlier_scale * self.rng.uniform(0.5, 1.5, size=(n_outliers, 1)) \
                * self.rng.choice([-1.0, 1.0], size=(n_outliers, 1))
            samples[idx] = self.chars.hard_iron + offsets * gain

        return samples, outlier_mask

    def expected_calibration(self) -> CalibrationTransform:
        """
        Ideal symmetric correction for this sensor.

        Readings satisfy (m - b)^T (W W^T)^-1 (m - b) = H^2, so the symmetric
        matrix mapping them onto the sphere of radius H is (W W^T)^(-1/2).
        """
        W = self.chars.soft_iron
        eigenvalues, eigenvectors = eig_sort(*np.linalg.eigh(W @ W.T))
        A = eigenvectors @ np.diag(1.0 / np.sqrt(eigenvalues)) @ eigenvectors.T
        return CalibrationTransform(
            soft_iron=A,
            hard_iron=self.chars.hard_iron,
            reference_field_strength=self.chars.field_strength,
        )

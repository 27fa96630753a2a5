"""
magcal - Magnetometer Hard/Soft-Iron Calibration

Modules:
    eigen - Canonical ordering of eigendecompositions
    ellipsoid - Quadric model, least-squares ellipsoid fit, ray intersection
    ransac - Robust ellipsoid estimation
    calibration - Soft-iron matrix / hard-iron bias derivation and batch pipeline
    session - Collection state machine with background fitting
    simulation - Synthetic distorted magnetometer data
    io - Sample and calibration files
"""

from .config import CalibrationConfig, MIN_SAMPLES
from .errors import (
    CalibrationCancelled,
    CalibrationError,
    DegenerateGeometryError,
    FailureReason,
    IllConditionedFitError,
    InsufficientDataError,
    NoConsensusError,
    SessionBusyError,
)
from .eigen import eig_sort
from .ellipsoid import Quadric, fit_ellipsoid, intersect, surface_points
from .ransac import RansacResult, ellipsoid_ransac
from .calibration import (
    CalibrationResult,
    CalibrationTransform,
    apply_calibration,
    calibrate,
    derive_calibration,
    publish_parameters,
)
from .session import CalibrationSession, RunState, SampleBuffer
from .io import load_calibration, load_samples, save_calibration

__version__ = '0.1.0'

__all__ = [
    'CalibrationConfig',
    'MIN_SAMPLES',
    'CalibrationError',
    'CalibrationCancelled',
    'DegenerateGeometryError',
    'FailureReason',
    'IllConditionedFitError',
    'InsufficientDataError',
    'NoConsensusError',
    'SessionBusyError',
    'eig_sort',
    'Quadric',
    'fit_ellipsoid',
    'intersect',
    'surface_points',
    'RansacResult',
    'ellipsoid_ransac',
    'CalibrationResult',
    'CalibrationTransform',
    'apply_calibration',
    'calibrate',
    'derive_calibration',
    'publish_parameters',
    'CalibrationSession',
    'RunState',
    'SampleBuffer',
    'load_calibration',
    'load_samples',
    'save_calibration',
]

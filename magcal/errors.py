"""
Calibration Failure Taxonomy

Run-level failures abort a calibration run and leave any previous transform
untouched. Per-iteration failures (ill-conditioned or degenerate subsets) are
absorbed inside the RANSAC loop.
"""

from enum import Enum


class FailureReason(str, Enum):
    """Why a calibration run ended in the Failed state."""
    INSUFFICIENT_DATA = "insufficient_data"        # < 9 distinct samples
    ILL_CONDITIONED = "ill_conditioned"            # Singular normal equations
    NO_CONSENSUS = "no_consensus"                  # RANSAC found no supported model
    DEGENERATE_GEOMETRY = "degenerate_geometry"    # Quadric is not a real ellipsoid
    CANCELLED = "cancelled"                        # Run cancelled while fitting


class CalibrationError(Exception):
    """Base class for calibration failures."""
    reason = None

    def __init__(self, message: str = ""):
        if not message and self.reason is not None:
            message = self.reason.value.replace('_', ' ')
        super().__init__(message)


class InsufficientDataError(CalibrationError):
    """Too few distinct samples to determine a quadric."""
    reason = FailureReason.INSUFFICIENT_DATA


class IllConditionedFitError(CalibrationError):
    """Least-squares system is singular or near-singular."""
    reason = FailureReason.ILL_CONDITIONED


class NoConsensusError(CalibrationError):
    """RANSAC finished without an inlier set large enough to refit."""
    reason = FailureReason.NO_CONSENSUS


class DegenerateGeometryError(CalibrationError):
    """Fitted quadric is not a bounded, real ellipsoid."""
    reason = FailureReason.DEGENERATE_GEOMETRY


class CalibrationCancelled(CalibrationError):
    reason = FailureReason.CANCELLED


class SessionBusyError(RuntimeError):
    """Run control was requested while a fit is in progress."""

"""
RANSAC Ellipsoid Estimation

Fits candidate ellipsoids to random minimal subsets, scores each candidate by
the distance from every sample to its ray-ellipsoid intersection, and refits
the best-supported candidate on its full inlier set.

Candidates are scored in point coordinates straight from the quadric
(center, Q, ub, k), which is equivalent to scoring in the principal-axis frame,
so no eigendecomposition is needed per candidate. The principal axes are only
extracted, through eig_sort, when the final quadric is turned into a
calibration.
"""

import logging
import numpy as np
from dataclasses import dataclass
from typing import Callable, Optional, Union

from .config import MIN_SAMPLES
from .ellipsoid import Quadric, as_sample_array, fit_ellipsoid, ray_residuals
from .errors import (
    CalibrationCancelled,
    DegenerateGeometryError,
    IllConditionedFitError,
    InsufficientDataError,
    NoConsensusError,
)

logger = logging.getLogger(__name__)

RandomSource = Union[None, int, np.random.Generator]


@dataclass
class RansacResult:
    """Outcome of a RANSAC ellipsoid fit."""
    quadric: Quadric           # Refit on the winning inlier set
    inlier_mask: np.ndarray    # Boolean mask over the input samples
    inlier_count: int
    iterations: int            # Iterations actually run
    candidates: int            # Iterations that produced a scored ellipsoid


def score_candidate(quadric: Quadric, data: np.ndarray, inlier_threshold: float) -> np.ndarray:
    """
    Inlier mask of a candidate ellipsoid.

    Samples whose ray from the center is undefined or misses the surface are
    never inliers.
    """
    residuals = ray_residuals(data, quadric.center(), quadric.matrix,
                              quadric.linear, quadric.constant)
    with np.errstate(invalid='ignore'):
        return residuals < inlier_threshold


def ellipsoid_ransac(samples,
                     iterations: int,
                     inlier_threshold: float,
                     rng: RandomSource = None,
                     subset_size: int = MIN_SAMPLES,
                     min_inliers: int = MIN_SAMPLES,
                     should_stop: Optional[Callable[[], bool]] = None) -> RansacResult:
    """
    Robust ellipsoid fit.

    Every iteration consumes one unit of the budget. Subsets whose fit is
    ill-conditioned or not an ellipsoid simply contribute no candidate.
    Ties in inlier count keep the first candidate found, so results are
    reproducible for a seeded rng.

    Args:
        samples: (N, 3) sample set
        iterations: Number of minimal subsets to try (> 0)
        inlier_threshold: Max sample-to-surface distance for an inlier (> 0)
        rng: numpy Generator or seed for subset sampling
        subset_size: Points per subset (>= 9)
        min_inliers: Smallest inlier set accepted for the refit (at least 9)
        should_stop: Checked before every iteration; True cancels the fit

    Returns:
        RansacResult with the refined quadric

    Raises:
        InsufficientDataError: fewer samples than subset_size
        NoConsensusError: no candidate, or best inlier set smaller than min_inliers
        DegenerateGeometryError / IllConditionedFitError: final refit failed
        CalibrationCancelled: should_stop returned True
    """
    if iterations <= 0:
        raise ValueError(f"iterations must be > 0, got {iterations}")
    if not inlier_threshold > 0:
        raise ValueError(f"inlier_threshold must be > 0, got {inlier_threshold}")
    if subset_size < MIN_SAMPLES:
        raise ValueError(f"subset_size must be >= {MIN_SAMPLES}, got {subset_size}")

    data = as_sample_array(samples)
    n = len(data)
    if n < subset_size:
        raise InsufficientDataError(
            f"Need at least {subset_size} samples for RANSAC, got {n}")

    min_inliers = max(int(min_inliers), MIN_SAMPLES)
    rng = np.random.default_rng(rng)

    best_mask = None
    best_count = 0
    candidates = 0
    completed = 0

    for i in range(iterations):
        if should_stop is not None and should_stop():
            raise CalibrationCancelled(f"cancelled after {i} of {iterations} iterations")
        completed += 1

        subset = rng.choice(n, size=subset_size, replace=False)
        try:
            candidate = fit_ellipsoid(data[subset])
            if not candidate.is_ellipsoid():
                raise DegenerateGeometryError("candidate is not an ellipsoid")
            mask = score_candidate(candidate, data, inlier_threshold)
        except (IllConditionedFitError, DegenerateGeometryError) as e:
            logger.debug("RANSAC iteration %d skipped: %s", i, e)
            continue

        candidates += 1
        count = int(np.count_nonzero(mask))
        if count > best_count:
            best_count = count
            best_mask = mask

    logger.info("RANSAC: %d/%d iterations produced candidates, best support %d/%d samples",
                candidates, completed, best_count, n)

    if best_mask is None or best_count < min_inliers:
        raise NoConsensusError(
            f"Best ellipsoid has {best_count} inliers, need at least {min_inliers} "
            f"({candidates} candidates from {completed} iterations)")

    quadric = fit_ellipsoid(data[best_mask])

    return RansacResult(
        quadric=quadric,
        inlier_mask=best_mask,
        inlier_count=best_count,
        iterations=completed,
        candidates=candidates,
    )

"""Tests for RANSAC ellipsoid estimation."""

import numpy as np
import pytest

from magcal.conftest import CENTER, ROTATION, SEMI_AXES, ellipsoid_points
from magcal.ellipsoid import Quadric
from magcal.errors import CalibrationCancelled, InsufficientDataError, NoConsensusError
from magcal.ransac import ellipsoid_ransac, score_candidate
from magcal.simulation import MagnetometerSimulator, SensorCharacteristics, distortion_from_axes


def make_outlier_cloud(n=300, outlier_fraction=0.2, seed=11):
    chars = SensorCharacteristics(
        field_strength=50.0,
        soft_iron=distortion_from_axes([1.1, 0.9, 1.0], [10.0, 20.0, 30.0]),
        hard_iron=np.array([5.0, -3.0, 2.0]),
        noise=0.02,
    )
    simulator = MagnetometerSimulator(chars, rng=seed)
    samples, outliers = simulator.sample_cloud(n, outlier_fraction=outlier_fraction)
    return simulator, samples, outliers


def test_exact_data_all_inliers(points):
    result = ellipsoid_ransac(points, iterations=20, inlier_threshold=0.15, rng=0)

    assert result.inlier_count == len(points)
    assert result.inlier_mask.all()
    assert result.iterations == 20
    assert result.candidates == 20
    np.testing.assert_allclose(result.quadric.center(), CENTER, atol=1e-3)


def test_rejects_outliers():
    simulator, samples, outliers = make_outlier_cloud()

    result = ellipsoid_ransac(samples, iterations=200, inlier_threshold=1.0, rng=0)

    assert not np.any(result.inlier_mask & outliers)
    true_inliers = np.count_nonzero(~outliers)
    assert np.count_nonzero(result.inlier_mask & ~outliers) >= 0.9 * true_inliers
    np.testing.assert_allclose(result.quadric.center(), simulator.chars.hard_iron, atol=0.5)


def test_same_seed_same_result():
    _, samples, _ = make_outlier_cloud()

    first = ellipsoid_ransac(samples, iterations=50, inlier_threshold=1.0, rng=42)
    second = ellipsoid_ransac(samples, iterations=50, inlier_threshold=1.0,
                              rng=np.random.default_rng(42))

    np.testing.assert_array_equal(first.inlier_mask, second.inlier_mask)
    np.testing.assert_array_equal(first.quadric.coefficients, second.quadric.coefficients)


def test_collinear_samples_have_no_consensus():
    t = np.linspace(-1.0, 1.0, 30)[:, None]
    line = t * np.array([1.0, -2.0, 0.5])

    with pytest.raises(NoConsensusError):
        ellipsoid_ransac(line, iterations=10, inlier_threshold=0.15, rng=0)


def test_too_few_samples(points):
    with pytest.raises(InsufficientDataError):
        ellipsoid_ransac(points[:5], iterations=10, inlier_threshold=0.15)


def test_min_inliers_enforced(points):
    with pytest.raises(NoConsensusError):
        ellipsoid_ransac(points, iterations=5, inlier_threshold=0.15, rng=0,
                         min_inliers=len(points) + 1)


def test_heavy_outliers_fail_with_inlier_floor():
    _, samples, _ = make_outlier_cloud(n=200, outlier_fraction=0.9)

    with pytest.raises(NoConsensusError):
        ellipsoid_ransac(samples, iterations=50, inlier_threshold=1.0, rng=0,
                         min_inliers=100)


def test_should_stop_cancels(points):
    calls = []

    def should_stop():
        calls.append(1)
        return len(calls) > 3

    with pytest.raises(CalibrationCancelled):
        ellipsoid_ransac(points, iterations=100, inlier_threshold=0.15, rng=0,
                         should_stop=should_stop)
    assert len(calls) == 4


@pytest.mark.parametrize("kwargs", [
    dict(iterations=0, inlier_threshold=0.15),
    dict(iterations=10, inlier_threshold=0.0),
    dict(iterations=10, inlier_threshold=0.15, subset_size=8),
])
def test_invalid_arguments(points, kwargs):
    with pytest.raises(ValueError):
        ellipsoid_ransac(points, **kwargs)


def test_score_candidate_excludes_center():
    quadric = Quadric.from_geometry(CENTER, SEMI_AXES, ROTATION)
    data = np.vstack([ellipsoid_points(10), CENTER, CENTER + [10.0, 0.0, 0.0]])

    mask = score_candidate(quadric, data, 0.15)

    assert mask[:10].all()
    assert not mask[10]
    assert not mask[11]


def test_tie_keeps_first_candidate(monkeypatch):
    rng = np.random.default_rng(4)
    directions = rng.normal(size=(20, 3))
    directions /= np.linalg.norm(directions, axis=1, keepdims=True)
    data = np.vstack([directions[:10], 2.0 * directions[10:]])
    small = Quadric.from_geometry(np.zeros(3), [1.0, 1.0, 1.0])
    large = Quadric.from_geometry(np.zeros(3), [2.0, 2.0, 2.0])
    fits = [small, large]

    def scripted_fit(samples):
        return fits.pop(0) if fits else small

    monkeypatch.setattr('magcal.ransac.fit_ellipsoid', scripted_fit)

    result = ellipsoid_ransac(data, iterations=2, inlier_threshold=0.15, rng=0)

    assert result.candidates == 2
    assert result.inlier_count == 10
    np.testing.assert_array_equal(result.inlier_mask, np.arange(20) < 10)

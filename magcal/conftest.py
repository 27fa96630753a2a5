"""Shared fixtures for the calibration tests."""

import numpy as np
import pytest
from concurrent.futures import Executor, Future
from scipy.spatial.transform import Rotation

from magcal.simulation import unit_directions

FIELD_STRENGTH = 50.0
SEMI_AXES = np.array([2.0, 1.0, 1.5])
CENTER = np.array([0.1, -0.2, 0.05])
ROTATION = Rotation.from_euler('zyx', [30.0, -20.0, 45.0], degrees=True).as_matrix()


def ellipsoid_points(n=200, semi_axes=SEMI_AXES, center=CENTER, rotation=ROTATION, seed=0):
    """Exact points on a rotated, shifted ellipsoid."""
    directions = unit_directions(n, np.random.default_rng(seed))
    return center + (directions * semi_axes) @ rotation.T


def expected_soft_iron(semi_axes=SEMI_AXES, rotation=ROTATION, field=FIELD_STRENGTH):
    return field * rotation @ np.diag(1.0 / semi_axes) @ rotation.T


class InlineExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class ManualExecutor(Executor):
    """Holds submitted work until run_all() is called."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_all(self):
        pending, self.pending = self.pending, []
        for future, fn, args, kwargs in pending:
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as e:
                future.set_exception(e)


@pytest.fixture
def points():
    return ellipsoid_points()


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def manual_executor():
    return ManualExecutor()

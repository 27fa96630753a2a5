"""Tests for sample and calibration files."""

import json

import numpy as np
import pytest

from magcal.calibration import CalibrationTransform
from magcal.io import load_calibration, load_samples, save_calibration, save_samples

SAMPLES = np.array([
    [1.0, 2.0, 3.0],
    [-4.5, 5.25, 6.0],
])


def test_csv_with_header(tmp_path):
    path = tmp_path / 'mag.csv'
    path.write_text('t,mx,my,mz\n0.0,1,2,3\n0.1,-4.5,5.25,6\n')

    np.testing.assert_array_equal(load_samples(path), SAMPLES)


def test_csv_without_header(tmp_path):
    path = tmp_path / 'mag.csv'
    path.write_text('1,2,3\n-4.5,5.25,6\n')

    np.testing.assert_array_equal(load_samples(path), SAMPLES)


def test_text_file(tmp_path):
    path = tmp_path / 'mag.txt'
    save_samples(path, SAMPLES)

    np.testing.assert_array_equal(load_samples(path), SAMPLES)


def test_json_triples(tmp_path):
    path = tmp_path / 'mag.json'
    path.write_text(json.dumps(SAMPLES.tolist()))

    np.testing.assert_array_equal(load_samples(path), SAMPLES)


def test_json_session_prefers_microtesla_fields(tmp_path):
    path = tmp_path / 'session.json'
    records = [{'mx': 0, 'my': 0, 'mz': 0, 'mx_ut': x, 'my_ut': y, 'mz_ut': z}
               for x, y, z in SAMPLES]
    path.write_text(json.dumps({'version': '1', 'samples': records}))

    np.testing.assert_array_equal(load_samples(path), SAMPLES)


def test_json_record_without_fields(tmp_path):
    path = tmp_path / 'bad.json'
    path.write_text(json.dumps([{'ax': 1.0}]))

    with pytest.raises(ValueError):
        load_samples(path)


def test_calibration_file(tmp_path):
    path = tmp_path / 'cal.json'
    transform = CalibrationTransform(np.diag([1.0, 2.0, 3.0]), [0.5, -0.5, 1.5], 48.0)

    save_calibration(path, transform)
    saved = json.loads(path.read_text())
    restored = load_calibration(path)

    assert saved['parameters']['MAG_A22_COMP'] == 2.0
    assert saved['parameters']['MAG_Z_BIAS'] == 1.5
    np.testing.assert_array_equal(restored.soft_iron, transform.soft_iron)
    np.testing.assert_array_equal(restored.hard_iron, transform.hard_iron)
    assert restored.reference_field_strength == 48.0


def test_json_object_without_samples(tmp_path):
    path = tmp_path / 'session.json'
    path.write_text(json.dumps({'version': '1', 'readings': []}))

    with pytest.raises(ValueError, match='samples'):
        load_samples(path)

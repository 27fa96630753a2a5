"""
Sample and Calibration Files

Sample sets can come from:
- CSV with a header (x,y,z / mx,my,mz / mx_ut,my_ut,mz_ut) or without one
- Whitespace or tab separated triples, one reading per line
- JSON: a list of [x, y, z] triples, a list of {x, y, z} records, or a
  session object {"samples": [...]} whose records carry mx/my/mz or
  mx_ut/my_ut/mz_ut fields (µT fields preferred)

Calibrations are stored as JSON (see CalibrationTransform.to_dict).
"""

import csv
import json
import numpy as np
from pathlib import Path
from typing import Dict, List, Sequence, Union

from .calibration import CalibrationTransform

PathLike = Union[str, Path]

# Candidate field names, most specific first
AXIS_KEYS = [
    ('mx_ut', 'my_ut', 'mz_ut'),
    ('mx', 'my', 'mz'),
    ('x', 'y', 'z'),
]


def _record_to_vector(record: Union[Dict, Sequence]) -> List[float]:
    if isinstance(record, dict):
        for keys in AXIS_KEYS:
            if all(k in record for k in keys):
                return [float(record[k]) for k in keys]
        raise ValueError(f"sample record has no magnetometer fields: {sorted(record)}")
    values = list(record)
    if len(values) < 3:
        raise ValueError(f"sample needs 3 values, got {values}")
    return [float(v) for v in values[:3]]


def _load_json(filepath: Path) -> np.ndarray:
    with open(filepath, 'r') as f:
        data = json.load(f)

    if isinstance(data, dict):
        if 'samples' not in data:
            raise ValueError(f"{filepath}: JSON object has no 'samples' list")
        data = data['samples']
    return np.array([_record_to_vector(r) for r in data], dtype=float).reshape(-1, 3)


def _load_csv(filepath: Path) -> np.ndarray:
    with open(filepath, 'r', newline='') as f:
        rows = [row for row in csv.reader(f) if row and any(cell.strip() for cell in row)]
    if not rows:
        return np.zeros((0, 3))

    header = [cell.strip().lower() for cell in rows[0]]
    for keys in AXIS_KEYS:
        if all(k in header for k in keys):
            columns = [header.index(k) for k in keys]
            return np.array([[float(row[c]) for c in columns] for row in rows[1:]],
                            dtype=float).reshape(-1, 3)

    try:
        float(rows[0][0])
    except ValueError:
        rows = rows[1:]  # Unrecognized header, use the first three columns
    return np.array([[float(v) for v in row[:3]] for row in rows], dtype=float).reshape(-1, 3)


def _load_text(filepath: Path) -> np.ndarray:
    data = np.loadtxt(filepath, dtype=float, ndmin=2)
    if data.size == 0:
        return np.zeros((0, 3))
    if data.shape[1] < 3:
        raise ValueError(f"{filepath}: expected at least 3 columns, got {data.shape[1]}")
    return data[:, :3]


def load_samples(filepath: PathLike) -> np.ndarray:
    """
    Load a magnetometer sample set.

    Args:
        filepath: .json, .csv, or any whitespace-separated text file

    Returns:
        (N, 3) array of raw readings
    """
    filepath = Path(filepath)
    suffix = filepath.suffix.lower()
    if suffix == '.json':
        return _load_json(filepath)
    if suffix == '.csv':
        return _load_csv(filepath)
    return _load_text(filepath)


def save_samples(filepath: PathLike, samples: np.ndarray):
    """Write samples as tab-separated triples."""
    np.savetxt(filepath, np.asarray(samples, dtype=float).reshape(-1, 3), delimiter='\t')


def save_calibration(filepath: PathLike, transform: CalibrationTransform):
    """Save a calibration transform to JSON."""
    data = transform.to_dict()
    data['parameters'] = transform.parameters()
    with open(filepath, 'w') as f:
        json.dump(data, f, indent=2)


def load_calibration(filepath: PathLike) -> CalibrationTransform:
    """Load a calibration transform saved by save_calibration."""
    with open(filepath, 'r') as f:
        data = json.load(f)
    return CalibrationTransform.from_dict(data)

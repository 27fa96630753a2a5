"""
Calibration Configuration

Defaults follow the onboard calibration node: a 60 s collection window,
every 21st reading kept, 100 RANSAC iterations and a 0.15 inlier distance.
The reference field strength must be supplied for the calibration site
(e.g. from a geomagnetic model); the default of 1.0 yields a unit sphere.
"""

import json
import logging
from dataclasses import dataclass, asdict, fields, replace as dc_replace
from pathlib import Path
from typing import Any, Dict, Union

logger = logging.getLogger(__name__)

# Minimum number of samples that determines a quadric (10 unknowns up to scale)
MIN_SAMPLES = 9


@dataclass(frozen=True)
class CalibrationConfig:
    """Options recognized by a calibration run."""

    collection_duration: float = 60.0      # Seconds of data collection
    ransac_iterations: int = 100           # RANSAC candidate budget
    inlier_threshold: float = 0.15         # Max sample-to-surface distance
    measurement_skip: int = 20             # Readings passed over between accepted ones
    measurement_throttle: float = 0.0      # Min seconds between accepted readings
    reference_field_strength: float = 1.0  # Local field magnitude (same units as samples)
    subset_size: int = MIN_SAMPLES         # Points per RANSAC minimal subset
    min_inlier_ratio: float = 0.0          # Share of samples the best model must explain

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Raise ValueError if any option is out of range."""
        if not self.collection_duration > 0:
            raise ValueError(f"collection_duration must be > 0, got {self.collection_duration}")
        if not _is_int(self.ransac_iterations) or self.ransac_iterations <= 0:
            raise ValueError(f"ransac_iterations must be an integer > 0, got {self.ransac_iterations}")
        if not self.inlier_threshold > 0:
            raise ValueError(f"inlier_threshold must be > 0, got {self.inlier_threshold}")
        if not _is_int(self.measurement_skip) or self.measurement_skip < 0:
            raise ValueError(f"measurement_skip must be an integer >= 0, got {self.measurement_skip}")
        if not self.measurement_throttle >= 0:
            raise ValueError(f"measurement_throttle must be >= 0, got {self.measurement_throttle}")
        if not self.reference_field_strength > 0:
            raise ValueError(
                f"reference_field_strength must be > 0, got {self.reference_field_strength}")
        if not _is_int(self.subset_size) or self.subset_size < MIN_SAMPLES:
            raise ValueError(f"subset_size must be an integer >= {MIN_SAMPLES}, got {self.subset_size}")
        if not 0.0 <= self.min_inlier_ratio < 1.0:
            raise ValueError(f"min_inlier_ratio must be in [0, 1), got {self.min_inlier_ratio}")

    def replace(self, **changes) -> 'CalibrationConfig':
        """Return a validated copy with the given options changed."""
        return dc_replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'CalibrationConfig':
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(d) - known)
        if unknown:
            logger.warning("Ignoring unknown calibration options: %s", ", ".join(unknown))
        return cls(**{k: v for k, v in d.items() if k in known})

    @classmethod
    def load(cls, filepath: Union[str, Path]) -> 'CalibrationConfig':
        """Load options from a JSON object file."""
        with open(filepath, 'r') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Calibration config must be a JSON object: {filepath}")
        return cls.from_dict(data)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)

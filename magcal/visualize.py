"""
Calibration Plots

Raw vs calibrated point clouds and the magnitude distribution before and
after correction.
"""

from pathlib import Path
from typing import Optional
import numpy as np
import matplotlib
matplotlib.use('Agg')  # Non-interactive backend for batch processing
import matplotlib.pyplot as plt

from .calibration import CalibrationTransform


def plot_calibration(raw_data: np.ndarray,
                     transform: CalibrationTransform,
                     inlier_mask: Optional[np.ndarray] = None,
                     output_path: Optional[Path] = None):
    """
    Visualize raw vs calibrated magnetometer data.

    Args:
        raw_data: (N, 3) raw readings
        transform: Calibration to apply
        inlier_mask: Optional RANSAC inliers; outliers are drawn in red
        output_path: Save the figure here (PNG); otherwise the figure is returned

    Returns:
        The matplotlib figure if output_path is None
    """
    raw_data = np.asarray(raw_data, dtype=float)
    cal_data = transform.apply(raw_data)
    if inlier_mask is None:
        inlier_mask = np.ones(len(raw_data), dtype=bool)
    outliers = ~inlier_mask

    fig = plt.figure(figsize=(16, 6))

    ax1 = fig.add_subplot(131, projection='3d')
    ax2 = fig.add_subplot(132, projection='3d')
    for ax, data, title in ((ax1, raw_data, 'Raw Magnetometer'),
                            (ax2, cal_data, 'Calibrated Magnetometer')):
        ax.scatter(data[inlier_mask, 0], data[inlier_mask, 1], data[inlier_mask, 2],
                   c=np.linalg.norm(data[inlier_mask], axis=1), cmap='viridis', alpha=0.5, s=2)
        if np.any(outliers):
            ax.scatter(data[outliers, 0], data[outliers, 1], data[outliers, 2],
                       c='red', marker='x', s=8, label='outliers')
            ax.legend()
        ax.set_xlabel('X')
        ax.set_ylabel('Y')
        ax.set_zlabel('Z')
        ax.set_title(title)

        # Equal axes around the cloud center
        center = np.mean(data[inlier_mask], axis=0)
        max_range = np.max(np.abs(data[inlier_mask] - center)) * 1.1
        ax.set_xlim([center[0] - max_range, center[0] + max_range])
        ax.set_ylim([center[1] - max_range, center[1] + max_range])
        ax.set_zlim([center[2] - max_range, center[2] + max_range])

    ax3 = fig.add_subplot(133)
    raw_mags = np.linalg.norm(raw_data[inlier_mask] - transform.hard_iron, axis=1)
    cal_mags = np.linalg.norm(cal_data[inlier_mask], axis=1)

    ax3.hist(raw_mags, bins=50, alpha=0.5, label=f'Raw - bias (σ={np.std(raw_mags):.3f})')
    ax3.hist(cal_mags, bins=50, alpha=0.5, label=f'Calibrated (σ={np.std(cal_mags):.3f})')
    ax3.axvline(transform.reference_field_strength, color='k', linestyle='--',
                label='Reference field')
    ax3.set_xlabel('Magnitude')
    ax3.set_ylabel('Count')
    ax3.set_title('Magnitude Distribution')
    ax3.legend()

    plt.tight_layout()

    if output_path:
        plt.savefig(output_path, dpi=150)
        plt.close(fig)
        return None
    return fig

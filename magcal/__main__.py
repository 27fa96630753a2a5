#!/usr/bin/env python3
"""
Magnetometer Calibration from a Recorded Sample Set

Fits an ellipsoid to raw magnetometer readings with RANSAC and prints the
soft-iron matrix and hard-iron bias that map them onto the reference sphere.

Usage:
    python -m magcal samples.csv --reference 50.0 [--output cal.json] [--plot cal.png]
    python -m magcal --simulate 500 --reference 50.0 --outliers 0.1
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import numpy as np

from .calibration import calibrate, check_orientation_coverage
from .config import CalibrationConfig
from .errors import CalibrationError
from .io import load_samples, save_calibration
from .simulation import MagnetometerSimulator, SensorCharacteristics


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='magcal',
                                     description='Magnetometer hard/soft-iron calibration')
    parser.add_argument('samples', nargs='?', type=Path,
                        help='Sample file (.csv, .json or whitespace-separated text)')
    parser.add_argument('--simulate', type=int, metavar='N',
                        help='Calibrate N simulated readings instead of a file')
    parser.add_argument('--outliers', type=float, default=0.0,
                        help='Outlier fraction for --simulate')
    parser.add_argument('--config', type=Path, help='JSON file with calibration options')
    parser.add_argument('--reference', type=float, help='Reference field strength')
    parser.add_argument('--iterations', type=int, help='RANSAC iterations')
    parser.add_argument('--threshold', type=float, help='RANSAC inlier threshold')
    parser.add_argument('--seed', type=int, help='Random seed')
    parser.add_argument('--output', type=Path, help='Write calibration JSON here')
    parser.add_argument('--plot', type=Path, help='Write a raw vs calibrated plot here')
    parser.add_argument('--quiet', action='store_true', help='Minimal output')
    return parser


def load_config(args) -> CalibrationConfig:
    config = CalibrationConfig.load(args.config) if args.config else CalibrationConfig()
    overrides = {}
    if args.reference is not None:
        overrides['reference_field_strength'] = args.reference
    if args.iterations is not None:
        overrides['ransac_iterations'] = args.iterations
    if args.threshold is not None:
        overrides['inlier_threshold'] = args.threshold
    return config.replace(**overrides) if overrides else config


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if (args.samples is None) == (args.simulate is None):
        parser.error('give either a sample file or --simulate N')

    logging.basicConfig(level=logging.WARNING if args.quiet else logging.INFO,
                        format='%(levelname)s %(name)s: %(message)s')

    try:
        config = load_config(args)
    except (OSError, ValueError) as e:
        parser.error(str(e))

    if args.simulate is not None:
        simulator = MagnetometerSimulator(
            SensorCharacteristics(field_strength=config.reference_field_strength),
            rng=args.seed)
        H = config.reference_field_strength
        simulator.randomize_parameters(bias_range=(-H, H), noise_range=(0.0, 0.01 * H))
        data, _ = simulator.sample_cloud(args.simulate, outlier_fraction=args.outliers)
        source = f'{args.simulate} simulated readings'
    else:
        try:
            data = load_samples(args.samples)
        except (OSError, ValueError) as e:
            parser.error(f'cannot read {args.samples}: {e}')
        source = args.samples.name

    if not args.quiet:
        print(f"\n{'='*60}")
        print("Magnetometer Calibration")
        print(f"Samples: {source} ({len(data)} readings)")
        print(f"{'='*60}")

    try:
        result = calibrate(data, config, rng=args.seed)
    except CalibrationError as e:
        print(f"Calibration failed ({e.reason.value}): {e}", file=sys.stderr)
        return 1

    transform = result.transform
    metrics = result.metrics

    if not args.quiet:
        coverage = check_orientation_coverage(data[result.inlier_mask], transform.hard_iron)
        print(f"\nInliers: {result.inlier_count}/{len(result.inlier_mask)} "
              f"({result.candidates} candidates in {result.iterations} iterations)")
        print(f"Coverage ratio: {coverage['coverage_ratio']:.1%}, "
              f"uniformity: {coverage['uniformity']:.2f}")
        print(f"\nHard-iron offset (b): [{transform.bx:.4f}, {transform.by:.4f}, {transform.bz:.4f}]")
        print("Soft-iron matrix (A):")
        for row in transform.soft_iron:
            print(f"   [{row[0]:10.6f}, {row[1]:10.6f}, {row[2]:10.6f}]")
        print(f"\nRaw magnitude:   {metrics['raw_mean_magnitude']:.3f} ± {metrics['raw_std_magnitude']:.3f}")
        print(f"Cal magnitude:   {metrics['cal_mean_magnitude']:.3f} ± {metrics['cal_std_magnitude']:.3f} "
              f"(reference {transform.reference_field_strength:g})")
        print(f"Max field error: {metrics['max_field_error']:.4f}")
    else:
        print(' '.join(f'{name}={value:.6g}' for name, value in transform.parameters().items()))

    if args.output:
        save_calibration(args.output, transform)
        if not args.quiet:
            print(f"\nCalibration saved to {args.output}")

    if args.plot:
        from .visualize import plot_calibration
        plot_calibration(np.asarray(data), transform, result.inlier_mask, output_path=args.plot)
        if not args.quiet:
            print(f"Saved plot to {args.plot}")

    return 0


if __name__ == "__main__":
    sys.exit(main())

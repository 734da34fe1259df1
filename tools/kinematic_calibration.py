#!/usr/bin/env python3
"""Kinematic calibration of a two-axis positioner observed by a fixed camera.

Runs the calibration twice: once with the positioner DH parameters free and
once with them held at their nominal values, validates both against the
measurements and prints the improvement of the DH calibration over the
nominal kinematic model.

Measurements come from a JSON file (see kincal.calibration.measurements) or
are generated synthetically with --synthetic.
"""
import argparse
import logging
import sys
from pathlib import Path

project_root = str(Path(__file__).resolve().parent.parent)
if project_root not in sys.path:
    sys.path.insert(0, project_root)

import numpy as np
from scipy.spatial.transform import Rotation

from kincal.calibration.masks import ALL_COMPONENTS, CalibrationMask, create_dh_mask
from kincal.calibration.measurements import load_measurements, save_measurements
from kincal.calibration.optimizer import SolverOptions, optimize
from kincal.calibration.problem import KinematicCalibrationProblem
from kincal.calibration.results_reporter import CalibrationReporter
from kincal.calibration.synthetic import create_two_axis_positioner, generate_measurements, perturb_transform
from kincal.calibration.validation import compare_to_measurements
from kincal.config.calibration_config import get_calibration_config
from kincal.exceptions import KinematicCalibrationError
from kincal.kinematics.dh_chain import DHChain
from kincal.kinematics.transforms import make_transform
from kincal.utils.logging_config import setup_logging

logger = logging.getLogger("kinematic_calibration")

# Ground truth for --synthetic runs
TRUE_TARGET_OFFSETS = [0.002, 0.003, 0.001, -0.002, 0.0, 0.0, 0.0, 0.0]
TRUE_CAMERA_MOUNT_TO_CAMERA = make_transform((0.1, -0.05, 0.3), Rotation.from_euler("xyz", [0.1, -0.2, 0.3]))
TRUE_TARGET_MOUNT_TO_TARGET = make_transform((0.05, 0.02, 0.1), Rotation.from_rotvec([0.0, 0.0, 0.2]))


def pose_arg(values) -> np.ndarray:
    """'x y z rx ry rz' (metres, rotation vector in radians) -> 4x4."""
    x, y, z, rx, ry, rz = values
    return make_transform((x, y, z), Rotation.from_rotvec([rx, ry, rz]))


def build_synthetic(args, target_chain: DHChain, camera_chain: DHChain):
    rng = np.random.default_rng(args.seed)
    measurements = generate_measurements(
        camera_chain,
        target_chain,
        TRUE_CAMERA_MOUNT_TO_CAMERA,
        TRUE_TARGET_MOUNT_TO_TARGET,
        np.eye(4),
        args.synthetic,
        rng,
        target_offsets=TRUE_TARGET_OFFSETS,
        position_noise=args.position_noise,
        orientation_noise=args.orientation_noise,
    )
    camera_guess = perturb_transform(TRUE_CAMERA_MOUNT_TO_CAMERA, rng, 0.01, 0.02)
    target_guess = perturb_transform(TRUE_TARGET_MOUNT_TO_TARGET, rng, 0.01, 0.02)
    return measurements, camera_guess, target_guess


def run(problem: KinematicCalibrationProblem, uncertainty_scale: float, options: SolverOptions,
        reporter: CalibrationReporter, title: str):
    print(f"\n=== {title} ===", flush=True)
    result = optimize(problem, uncertainty_scale, options)
    print(reporter.generate_text(result))
    stats = compare_to_measurements(problem.camera_chain, problem.target_chain, result, problem.observations)
    print(f"\n{title} validation:")
    print(reporter.format_stats(stats))
    return result, stats


def main(argv=None) -> int:
    config = get_calibration_config()
    priors = config.get("priors")

    parser = argparse.ArgumentParser(description="Kinematic calibration of a two-axis positioner")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--measurements", type=str, help="Measurement set JSON file")
    src.add_argument("--synthetic", type=int, metavar="N", help="Generate N synthetic measurements")
    parser.add_argument("--camera-mount-guess", type=float, nargs=6, metavar=("X", "Y", "Z", "RX", "RY", "RZ"),
                        help="Camera mount to camera initial guess (default: identity)")
    parser.add_argument("--target-mount-guess", type=float, nargs=6, metavar=("X", "Y", "Z", "RX", "RY", "RZ"),
                        help="Target mount to target initial guess (default: identity)")
    parser.add_argument("--uncertainty-scale", type=float, default=priors["uncertainty_scale"],
                        help="Multiplier on the DH prior weights (default: %(default)s)")
    parser.add_argument("--seed", type=int, default=0, help="Random seed for --synthetic (default: 0)")
    parser.add_argument("--position-noise", type=float, default=0.0, help="Synthetic noise stdev, m")
    parser.add_argument("--orientation-noise", type=float, default=0.0, help="Synthetic noise stdev, rad")
    parser.add_argument("--save-measurements", type=str, help="Write the measurement set to this JSON file")
    parser.add_argument("--report-dir", type=str, help="Write report.md / report.json here")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args(argv)

    setup_logging(run_name="kinematic_calibration", debug=args.debug)

    # Fixed camera, positioner carries the target
    camera_chain = DHChain([])
    target_chain = create_two_axis_positioner()

    try:
        if args.synthetic is not None:
            measurements, camera_guess, target_guess = build_synthetic(args, target_chain, camera_chain)
        else:
            measurements = load_measurements(args.measurements)
            camera_guess, target_guess = np.eye(4), np.eye(4)
        if args.camera_mount_guess:
            camera_guess = pose_arg(args.camera_mount_guess)
        if args.target_mount_guess:
            target_guess = pose_arg(args.target_mount_guess)
        if args.save_measurements:
            save_measurements(measurements, args.save_measurements)

        # Last row duplicates the target mount; base-to-base duplicates the camera mount
        dh_mask = np.zeros((target_chain.dof, 4), dtype=bool)
        dh_mask[-1, :] = True
        problem = KinematicCalibrationProblem(
            camera_chain=camera_chain,
            target_chain=target_chain,
            camera_mount_to_camera_guess=camera_guess,
            target_mount_to_target_guess=target_guess,
            camera_chain_offset_stdev=priors["camera_chain_offset_stdev"],
            target_chain_offset_stdev=priors["target_chain_offset_stdev"],
            mask=CalibrationMask(
                target_chain=create_dh_mask(dh_mask),
                camera_base_to_target_base=ALL_COMPONENTS,
            ),
            observations=measurements,
        )

        options = SolverOptions.from_config(config)
        reporter = CalibrationReporter(config.get("report", "correlation_threshold"))

        result, optimal_stats = run(problem, args.uncertainty_scale, options, reporter,
                                    "DH calibration")

        problem.mask.target_chain = frozenset(create_dh_mask(np.ones((target_chain.dof, 4), dtype=bool)))
        _, static_stats = run(problem, args.uncertainty_scale, options, reporter,
                              "Calibration with static DH parameters")
    except (KinematicCalibrationError, OSError) as e:
        logger.error("Kinematic calibration failed: %s", e)
        return 1

    print("\nPercent improvement: calibration vs. nominal kinematic model")
    print(reporter.format_percent_diff(static_stats, optimal_stats))

    tol = config.get("validation")
    if not optimal_stats.within_tolerance(tol["pos_tolerance"], tol["ang_tolerance"]):
        logger.warning("Calibrated model exceeds validation tolerance (%.1e m, %.1e rad)",
                       tol["pos_tolerance"], tol["ang_tolerance"])

    if args.report_dir:
        md, js = reporter.save_report(result, args.report_dir, optimal_stats, static_stats)
        print(f"\nSaved report: {md}, {js}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

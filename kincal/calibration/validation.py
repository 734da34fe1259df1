"""
Calibration validation: replay measurements through calibrated chains.

This check does not rely on the optimizer's cost bookkeeping.  It rebuilds
the chains with the calibrated DH offsets baked in, predicts every
camera-to-target pose with the same model the optimizer uses, and
accumulates the position and orientation differences to the measured poses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from kincal.calibration.measurements import KinematicMeasurement
from kincal.calibration.optimizer import KinematicCalibrationResult, predict_camera_to_target
from kincal.exceptions import DomainError
from kincal.kinematics.dh_chain import DHChain
from kincal.kinematics.transforms import angular_distance, invert_transform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Stats:
    """Position (m) and orientation (rad) error statistics."""
    pos_mean: float
    pos_stdev: float
    rot_mean: float
    rot_stdev: float

    def percent_diff(self, other: Stats) -> dict[str, float]:
        """Percent reduction from this (baseline) to ``other``.

        Positive values mean ``other`` has smaller errors.
        """
        def pct(before: float, after: float) -> float:
            if before == 0.0:
                return 0.0
            return 100.0 * (before - after) / before

        return {
            "position": pct(self.pos_mean, other.pos_mean),
            "position_stdev": pct(self.pos_stdev, other.pos_stdev),
            "orientation": pct(self.rot_mean, other.rot_mean),
            "orientation_stdev": pct(self.rot_stdev, other.rot_stdev),
        }

    def within_tolerance(self, pos_tol: float, ang_tol: float) -> bool:
        """True when mean + 2 sigma (~95% of samples) is inside both tolerances."""
        return (
            self.pos_mean + 2.0 * self.pos_stdev <= pos_tol
            and self.rot_mean + 2.0 * self.rot_stdev <= ang_tol
        )


def compute_errors(
    camera_chain: DHChain,
    target_chain: DHChain,
    result: KinematicCalibrationResult,
    measurements: Sequence[KinematicMeasurement],
) -> tuple[np.ndarray, np.ndarray]:
    """Per-measurement position error norms and orientation angular distances.

    ``camera_chain`` and ``target_chain`` are the nominal chains; the result's
    DH offsets are applied to them here.
    """
    if not measurements:
        raise DomainError("Measurement set is empty")

    calibrated_camera = DHChain.calibrated(camera_chain, result.camera_chain_dh_offsets)
    calibrated_target = DHChain.calibrated(target_chain, result.target_chain_dh_offsets)

    try:
        camera_joints = np.array([m.camera_chain_joints for m in measurements], dtype=np.float64)
        target_joints = np.array([m.target_chain_joints for m in measurements], dtype=np.float64)
    except ValueError as e:
        raise DomainError(f"Inconsistent joint vector lengths in measurement set: {e}") from e
    measured = np.array([m.camera_to_target for m in measurements], dtype=np.float64)

    predicted = predict_camera_to_target(
        calibrated_camera,
        calibrated_target,
        camera_joints,
        target_joints,
        None,
        None,
        result.camera_mount_to_camera,
        result.target_mount_to_target,
        result.camera_base_to_target_base,
    )

    diff = invert_transform(predicted) @ measured
    pos_err = np.linalg.norm(diff[:, :3, 3], axis=1)
    rot_err = angular_distance(predicted[:, :3, :3], measured[:, :3, :3])
    return pos_err, np.asarray(rot_err, dtype=np.float64)


def compare_to_measurements(
    camera_chain: DHChain,
    target_chain: DHChain,
    result: KinematicCalibrationResult,
    measurements: Sequence[KinematicMeasurement],
) -> Stats:
    """Mean and standard deviation of the prediction errors over a measurement set."""
    pos_err, rot_err = compute_errors(camera_chain, target_chain, result, measurements)
    stats = Stats(
        pos_mean=float(np.mean(pos_err)),
        pos_stdev=float(np.std(pos_err)),
        rot_mean=float(np.mean(rot_err)),
        rot_stdev=float(np.std(rot_err)),
    )
    logger.info(
        "Validation over %d measurements: position %.3e +/- %.3e m, orientation %.3e +/- %.3e rad",
        len(measurements), stats.pos_mean, stats.pos_stdev, stats.rot_mean, stats.rot_stdev,
    )
    return stats

"""
Synthetic kinematic measurements for testing and dry runs.

Generates camera-to-target poses by pushing random joint states (within
limits) through chains with known DH offsets and known mount/base
transforms.  Optional Gaussian noise is applied to the measured pose.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np
from scipy.spatial.transform import Rotation

from kincal.calibration.measurements import KinematicMeasurement
from kincal.calibration.optimizer import predict_camera_to_target
from kincal.exceptions import DomainError
from kincal.kinematics.dh_chain import DHChain, DHJointType, DHTransform
from kincal.kinematics.transforms import make_transform


def create_two_axis_positioner() -> DHChain:
    """Two-axis part positioner used by the example calibration tool.

    Joint 1 spans [-pi, pi], joint 2 spans [-2pi, 2pi].  The base sits at
    (2.2, 0, 1.6) rotated 90 degrees about its local x axis.
    """
    transforms = [
        DHTransform(a=0.0, alpha=-math.pi / 2.0, d=0.0, theta=0.0,
                    joint_type=DHJointType.REVOLUTE, name="j1",
                    min_limit=-math.pi, max_limit=math.pi),
        DHTransform(a=0.0, alpha=0.0, d=-0.475, theta=-math.pi / 2.0,
                    joint_type=DHJointType.REVOLUTE, name="j2",
                    min_limit=-2.0 * math.pi, max_limit=2.0 * math.pi),
    ]
    base_offset = make_transform(
        (2.2, 0.0, 1.6),
        Rotation.from_rotvec([math.pi / 2.0, 0.0, 0.0]),
    )
    return DHChain(transforms, base_offset)


def perturb_transform(
    T: np.ndarray,
    rng: np.random.Generator,
    position_stdev: float,
    orientation_stdev: float,
) -> np.ndarray:
    """Apply a random rigid perturbation (expressed in the local frame) to ``T``."""
    noise = make_transform(
        rng.normal(0.0, position_stdev, 3) if position_stdev > 0 else np.zeros(3),
        Rotation.from_rotvec(rng.normal(0.0, orientation_stdev, 3) if orientation_stdev > 0 else np.zeros(3)),
    )
    return T @ noise


def generate_measurements(
    camera_chain: DHChain,
    target_chain: DHChain,
    camera_mount_to_camera: np.ndarray,
    target_mount_to_target: np.ndarray,
    camera_base_to_target_base: np.ndarray,
    n: int,
    rng: np.random.Generator,
    camera_offsets: Optional[Sequence[float]] = None,
    target_offsets: Optional[Sequence[float]] = None,
    position_noise: float = 0.0,
    orientation_noise: float = 0.0,
) -> list[KinematicMeasurement]:
    """Create ``n`` measurements from the "true" system described by the arguments.

    Args:
        camera_chain, target_chain: nominal chains.
        camera_mount_to_camera, target_mount_to_target, camera_base_to_target_base:
            true static transforms.
        n: number of measurements.
        rng: random generator (seed it for reproducible data).
        camera_offsets, target_offsets: true DH offsets (length 4 * dof).
        position_noise: stdev (m) of measurement translation noise.
        orientation_noise: stdev (rad) of measurement rotation noise.
    """
    if n < 1:
        raise DomainError(f"Need at least one measurement, got {n}")

    camera_joints = np.array([camera_chain.random_joints(rng) for _ in range(n)]).reshape(n, camera_chain.dof)
    target_joints = np.array([target_chain.random_joints(rng) for _ in range(n)]).reshape(n, target_chain.dof)

    truth = predict_camera_to_target(
        camera_chain,
        target_chain,
        camera_joints,
        target_joints,
        camera_offsets,
        target_offsets,
        np.asarray(camera_mount_to_camera, dtype=np.float64),
        np.asarray(target_mount_to_target, dtype=np.float64),
        np.asarray(camera_base_to_target_base, dtype=np.float64),
    )

    measurements = []
    for i in range(n):
        T = truth[i]
        if position_noise > 0 or orientation_noise > 0:
            T = perturb_transform(T, rng, position_noise, orientation_noise)
        measurements.append(KinematicMeasurement(
            camera_chain_joints=camera_joints[i],
            target_chain_joints=target_joints[i],
            camera_to_target=T,
        ))
    return measurements

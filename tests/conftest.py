"""
Shared fixtures for the kincal test suite.

The calibration scenarios use the two-axis positioner and a fixed camera
(zero-dof chain).  Ground truth is kept next to the generated measurements so
tests can compare recovered parameters against it.
"""

from dataclasses import dataclass, field

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from kincal.calibration.masks import ALL_COMPONENTS, CalibrationMask, DHParameter, dh_index
from kincal.calibration.problem import KinematicCalibrationProblem
from kincal.calibration.synthetic import create_two_axis_positioner, generate_measurements, perturb_transform
from kincal.kinematics.dh_chain import DHChain
from kincal.kinematics.transforms import make_transform

TRUE_CAMERA_MOUNT = make_transform((0.1, -0.05, 0.3), Rotation.from_euler("xyz", [0.1, -0.2, 0.3]))
TRUE_TARGET_MOUNT = make_transform((0.05, 0.02, 0.1), Rotation.from_rotvec([0.0, 0.0, 0.2]))

# Positioner row 0 (a, alpha) offsets; everything else stays nominal
TRUE_POSITIONER_OFFSETS = np.array([0.01, 0.02, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0])


@dataclass
class Scenario:
    problem: KinematicCalibrationProblem
    camera_offsets: np.ndarray = field(default_factory=lambda: np.zeros(0))
    target_offsets: np.ndarray = field(default_factory=lambda: np.zeros(0))
    camera_mount_to_camera: np.ndarray = field(default_factory=lambda: np.eye(4))
    target_mount_to_target: np.ndarray = field(default_factory=lambda: np.eye(4))


def observable_target_mask() -> CalibrationMask:
    """Full-rank mask for a fixed camera watching the positioner.

    Row 0 d/theta are absorbed by the camera mount, the last row by the target
    mount, and base-to-base duplicates the camera mount.
    """
    fixed = [dh_index(0, DHParameter.D), dh_index(0, DHParameter.THETA)]
    fixed += [dh_index(1, p) for p in DHParameter]
    return CalibrationMask(target_chain=fixed, camera_base_to_target_base=ALL_COMPONENTS)


def make_positioner_scenario(n=30, seed=7, position_noise=0.0, orientation_noise=0.0) -> Scenario:
    rng = np.random.default_rng(seed)
    camera_chain = DHChain([])
    target_chain = create_two_axis_positioner()
    measurements = generate_measurements(
        camera_chain,
        target_chain,
        TRUE_CAMERA_MOUNT,
        TRUE_TARGET_MOUNT,
        np.eye(4),
        n,
        rng,
        target_offsets=TRUE_POSITIONER_OFFSETS,
        position_noise=position_noise,
        orientation_noise=orientation_noise,
    )
    problem = KinematicCalibrationProblem(
        camera_chain=camera_chain,
        target_chain=target_chain,
        camera_mount_to_camera_guess=perturb_transform(TRUE_CAMERA_MOUNT, rng, 0.01, 0.02),
        target_mount_to_target_guess=perturb_transform(TRUE_TARGET_MOUNT, rng, 0.01, 0.02),
        camera_chain_offset_stdev=0.001,
        target_chain_offset_stdev=0.005,
        mask=observable_target_mask(),
        observations=measurements,
    )
    return Scenario(
        problem=problem,
        target_offsets=TRUE_POSITIONER_OFFSETS.copy(),
        camera_mount_to_camera=TRUE_CAMERA_MOUNT,
        target_mount_to_target=TRUE_TARGET_MOUNT,
    )


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def positioner():
    return create_two_axis_positioner()


@pytest.fixture
def positioner_scenario():
    return make_positioner_scenario()


@pytest.fixture
def fresh_config(tmp_path, monkeypatch):
    """A CalibrationConfig singleton backed by a file in tmp_path."""
    import kincal.config.calibration_config as mod

    monkeypatch.setattr(mod.CalibrationConfig, "_instance", None)
    monkeypatch.setattr(mod, "_CONFIG_FILE", tmp_path / "calibration_config.json")
    return mod.get_calibration_config()

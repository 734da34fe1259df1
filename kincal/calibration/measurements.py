"""
Kinematic pose measurements.

A measurement pairs the joint state of the camera chain and the target chain
with the camera-to-target pose observed at that state (e.g. from a laser
tracker or fiducial tracking).  A fixed camera or target simply has an empty
joint vector.

Measurement sets are plain lists; their order does not affect the solution
but is kept stable so runs are reproducible.

File format (JSON):
    [
      {"camera_joints": [...], "target_joints": [...],
       "pose": {"x": .., "y": .., "z": .., "qw": .., "qx": .., "qy": .., "qz": ..}},
      ...
    ]
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np

from kincal.exceptions import DomainError
from kincal.kinematics.transforms import make_transform, matrix_to_quaternion, quaternion_to_matrix

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class KinematicMeasurement:
    """One sample: joint vectors of both chains + measured camera-to-target pose."""
    camera_chain_joints: np.ndarray
    target_chain_joints: np.ndarray
    camera_to_target: np.ndarray

    def __post_init__(self):
        cam = np.array(self.camera_chain_joints, dtype=np.float64).reshape(-1)
        tgt = np.array(self.target_chain_joints, dtype=np.float64).reshape(-1)
        T = np.array(self.camera_to_target, dtype=np.float64)
        if T.shape != (4, 4):
            raise DomainError(f"camera_to_target must be 4x4, got shape {T.shape}")
        for arr in (cam, tgt, T):
            arr.setflags(write=False)
        object.__setattr__(self, "camera_chain_joints", cam)
        object.__setattr__(self, "target_chain_joints", tgt)
        object.__setattr__(self, "camera_to_target", T)

    def is_approx(self, other: KinematicMeasurement, atol: float = 1e-9) -> bool:
        return (
            self.camera_chain_joints.shape == other.camera_chain_joints.shape
            and self.target_chain_joints.shape == other.target_chain_joints.shape
            and np.allclose(self.camera_chain_joints, other.camera_chain_joints, atol=atol)
            and np.allclose(self.target_chain_joints, other.target_chain_joints, atol=atol)
            and np.allclose(self.camera_to_target, other.camera_to_target, atol=atol)
        )


def measurement_to_dict(m: KinematicMeasurement) -> dict:
    qw, qx, qy, qz = matrix_to_quaternion(m.camera_to_target[:3, :3])
    x, y, z = m.camera_to_target[:3, 3]
    return {
        "camera_joints": m.camera_chain_joints.tolist(),
        "target_joints": m.target_chain_joints.tolist(),
        "pose": {
            "x": float(x), "y": float(y), "z": float(z),
            "qw": qw, "qx": qx, "qy": qy, "qz": qz,
        },
    }


def measurement_from_dict(data: dict) -> KinematicMeasurement:
    try:
        pose = data["pose"]
        rotation = quaternion_to_matrix(
            float(pose["qw"]), float(pose["qx"]), float(pose["qy"]), float(pose["qz"])
        )
        T = make_transform((float(pose["x"]), float(pose["y"]), float(pose["z"])), rotation)
        return KinematicMeasurement(
            camera_chain_joints=[float(v) for v in data.get("camera_joints", [])],
            target_chain_joints=[float(v) for v in data.get("target_joints", [])],
            camera_to_target=T,
        )
    except DomainError:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise DomainError(f"Malformed measurement entry: {e!r}") from e


def save_measurements(measurements: Sequence[KinematicMeasurement], path) -> None:
    """Save a measurement set to a JSON file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump([measurement_to_dict(m) for m in measurements], f, indent=2)
    logger.info("Saved %d measurements to %s", len(measurements), path)


def load_measurements(path) -> list[KinematicMeasurement]:
    """Load a measurement set from a JSON file."""
    path = Path(path)
    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise DomainError(f"Could not parse measurement file {path}: {e}") from e

    if not isinstance(data, list):
        raise DomainError(f"Measurement file {path} must contain a list, got {type(data).__name__}")

    measurements = [measurement_from_dict(entry) for entry in data]
    logger.info("Loaded %d measurements from %s", len(measurements), path)
    return measurements

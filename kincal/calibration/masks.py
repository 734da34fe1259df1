"""
Parameter masks for kinematic calibration.

A mask names the parameters that are held constant during optimization.
Masked parameters are removed from the solver's variable vector entirely
(hard constraint), unlike the prior regularization which only pulls free
DH offsets toward zero.

DH parameters are addressed by flat index ``4 * row + column`` with columns
(a, alpha, d, theta).  Mount and base transforms are addressed by their six
named Pose6d components.

Rank deficiency is NOT detected here.  If two parameters describe the same
freedom (e.g. a zero-dof target chain whose mount transform duplicates the
camera-base-to-target-base transform, or the DH row of the last joint which
duplicates the mount transform after it) the caller must mask one of them.
An under-masked problem leads to singular normal equations; use the
covariance correlation report to find such pairs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable

import numpy as np

from kincal.exceptions import DomainError
from kincal.kinematics.dh_chain import NUM_DH_PARAMS


class DHParameter(IntEnum):
    A = 0
    ALPHA = 1
    D = 2
    THETA = 3


class TransformComponent(IntEnum):
    RX = 0
    RY = 1
    RZ = 2
    X = 3
    Y = 4
    Z = 5


ROTATION = (TransformComponent.RX, TransformComponent.RY, TransformComponent.RZ)
TRANSLATION = (TransformComponent.X, TransformComponent.Y, TransformComponent.Z)
ALL_COMPONENTS = ROTATION + TRANSLATION


def dh_index(row: int, parameter: DHParameter) -> int:
    """Flat index of one DH parameter in a chain's offset vector."""
    return NUM_DH_PARAMS * row + int(parameter)


def create_dh_mask(mask) -> list[int]:
    """Convert a boolean (dof, 4) matrix into sorted flat fixed-parameter indices.

    ``True`` entries are held fixed.
    """
    mask = np.asarray(mask, dtype=bool)
    if mask.size == 0:
        return []
    if mask.ndim != 2 or mask.shape[1] != NUM_DH_PARAMS:
        raise DomainError(f"DH mask must have shape (dof, 4), got {mask.shape}")
    return [int(i) for i in np.flatnonzero(mask.reshape(-1))]


def _components(values: Iterable) -> frozenset[TransformComponent]:
    try:
        return frozenset(TransformComponent(v) for v in values)
    except ValueError as e:
        raise DomainError(f"Invalid transform component: {e}") from e


@dataclass
class CalibrationMask:
    """Fixed-parameter sets for every parameter block of the problem."""
    camera_chain: frozenset[int] = field(default_factory=frozenset)
    target_chain: frozenset[int] = field(default_factory=frozenset)
    camera_mount_to_camera: frozenset[TransformComponent] = field(default_factory=frozenset)
    target_mount_to_target: frozenset[TransformComponent] = field(default_factory=frozenset)
    camera_base_to_target_base: frozenset[TransformComponent] = field(default_factory=frozenset)

    def __post_init__(self):
        self.camera_chain = frozenset(int(i) for i in self.camera_chain)
        self.target_chain = frozenset(int(i) for i in self.target_chain)
        self.camera_mount_to_camera = _components(self.camera_mount_to_camera)
        self.target_mount_to_target = _components(self.target_mount_to_target)
        self.camera_base_to_target_base = _components(self.camera_base_to_target_base)

    def validate(self, camera_dof: int, target_dof: int) -> None:
        for name, indices, dof in (
            ("camera_chain", self.camera_chain, camera_dof),
            ("target_chain", self.target_chain, target_dof),
        ):
            bad = sorted(i for i in indices if not 0 <= i < NUM_DH_PARAMS * dof)
            if bad:
                raise DomainError(
                    f"{name} mask indices {bad} out of range for a {dof}-dof chain "
                    f"({NUM_DH_PARAMS * dof} parameters)"
                )

    def count_free_parameters(self, camera_dof: int, target_dof: int) -> int:
        self.validate(camera_dof, target_dof)
        n_dh = NUM_DH_PARAMS * (camera_dof + target_dof) - len(self.camera_chain) - len(self.target_chain)
        n_pose = 3 * len(ALL_COMPONENTS) - (
            len(self.camera_mount_to_camera)
            + len(self.target_mount_to_target)
            + len(self.camera_base_to_target_base)
        )
        return n_dh + n_pose

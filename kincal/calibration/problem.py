"""
Kinematic calibration problem definition.

The problem relates two kinematic chains that do not share a root:

    camera chain base --FK_c--> camera mount --T_cm_c--> camera
    camera chain base --T_cb_tb--> target chain base --FK_t--> target mount --T_tm_t--> target

and a set of measured camera-to-target poses.  The unknowns are the DH
offsets of both chains and the three static transforms.

A problem is built once and typically re-optimized with different masks;
the mask is the only field expected to change between runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Union

import numpy as np

from kincal.calibration.masks import CalibrationMask
from kincal.calibration.measurements import KinematicMeasurement
from kincal.exceptions import DomainError
from kincal.kinematics.dh_chain import DHChain

logger = logging.getLogger(__name__)

StdevPrior = Union[float, np.ndarray]


def _identity() -> np.ndarray:
    return np.eye(4, dtype=np.float64)


@dataclass
class KinematicCalibrationProblem:
    """Inputs for one or more calibration runs."""
    camera_chain: DHChain
    target_chain: DHChain
    camera_mount_to_camera_guess: np.ndarray = field(default_factory=_identity)
    target_mount_to_target_guess: np.ndarray = field(default_factory=_identity)
    camera_base_to_target_base_guess: np.ndarray = field(default_factory=_identity)
    camera_chain_offset_stdev: StdevPrior = 1.0e-3
    target_chain_offset_stdev: StdevPrior = 1.0e-3
    mask: CalibrationMask = field(default_factory=CalibrationMask)
    observations: list[KinematicMeasurement] = field(default_factory=list)

    def stdev_vector(self, chain: str) -> np.ndarray:
        """Per-parameter prior standard deviations (length 4 * dof) for 'camera' or 'target'."""
        if chain == "camera":
            dh_chain, stdev = self.camera_chain, self.camera_chain_offset_stdev
        elif chain == "target":
            dh_chain, stdev = self.target_chain, self.target_chain_offset_stdev
        else:
            raise DomainError(f"Unknown chain '{chain}' (expected 'camera' or 'target')")

        stdev = np.asarray(stdev, dtype=np.float64)
        if stdev.ndim == 0:
            return np.full(dh_chain.num_params, float(stdev))
        stdev = stdev.reshape(-1)
        if stdev.size != dh_chain.num_params:
            raise DomainError(
                f"{chain} chain stdev prior must be a scalar or have {dh_chain.num_params} "
                f"elements, got {stdev.size}"
            )
        return stdev

    def validate(self) -> None:
        """Check every input for consistency.  Raises DomainError."""
        for name in (
            "camera_mount_to_camera_guess",
            "target_mount_to_target_guess",
            "camera_base_to_target_base_guess",
        ):
            T = np.asarray(getattr(self, name), dtype=np.float64)
            if T.shape != (4, 4):
                raise DomainError(f"{name} must be 4x4, got shape {T.shape}")
            if not np.all(np.isfinite(T)):
                raise DomainError(f"{name} contains non-finite values")

        for chain in ("camera", "target"):
            stdev = self.stdev_vector(chain)
            if np.any(~np.isfinite(stdev)) or np.any(stdev <= 0.0):
                raise DomainError(f"{chain} chain stdev prior must be finite and > 0")

        self.mask.validate(self.camera_chain.dof, self.target_chain.dof)

        for i, m in enumerate(self.observations):
            if m.camera_chain_joints.shape[0] != self.camera_chain.dof:
                raise DomainError(
                    f"Measurement {i}: camera chain has {self.camera_chain.dof} dof, "
                    f"got {m.camera_chain_joints.shape[0]} joint values"
                )
            if m.target_chain_joints.shape[0] != self.target_chain.dof:
                raise DomainError(
                    f"Measurement {i}: target chain has {self.target_chain.dof} dof, "
                    f"got {m.target_chain_joints.shape[0]} joint values"
                )

    @property
    def num_free_parameters(self) -> int:
        return self.mask.count_free_parameters(self.camera_chain.dof, self.target_chain.dof)

    def has_enough_constraints(self) -> bool:
        """Necessary (not sufficient) solvability check.

        Every pose measurement contributes six independent constraints; there
        can be no more free parameters than that.
        """
        return self.num_free_parameters <= 6 * len(self.observations)

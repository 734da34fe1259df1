"""
Denavit-Hartenberg kinematic chains with calibratable parameter offsets.

Convention: standard DH.  Each link transform is

    Rz(theta) * Tz(d) * Tx(a) * Rx(alpha)

with the parameter row stored in the fixed order ``(a, alpha, d, theta)``:
  - a      : link length (m)
  - alpha  : link twist (rad)
  - d      : link offset (m)    -- variable for prismatic joints
  - theta  : joint angle (rad)  -- variable for revolute joints

A chain may be perturbed by a flat offset vector of length 4 * dof (one row
per link, same column order) that is added to the nominal parameters before
kinematics are evaluated.  This is what calibration estimates.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from kincal.exceptions import DomainError

NUM_DH_PARAMS = 4


class DHJointType(str, Enum):
    REVOLUTE = "revolute"
    PRISMATIC = "prismatic"


@dataclass(frozen=True)
class DHTransform:
    """A single row of the DH parameter table plus joint type and limits."""
    a: float      # link length (m)
    alpha: float  # link twist (rad)
    d: float      # link offset (m)
    theta: float  # joint angle offset (rad)
    joint_type: DHJointType = DHJointType.REVOLUTE
    name: str = ""
    min_limit: float = -math.pi
    max_limit: float = math.pi

    def __post_init__(self):
        if self.min_limit > self.max_limit:
            raise DomainError(
                f"Joint '{self.name}' has min limit {self.min_limit} > max limit {self.max_limit}"
            )

    @property
    def params(self) -> np.ndarray:
        return np.array([self.a, self.alpha, self.d, self.theta], dtype=np.float64)

    def with_offsets(self, offsets: Sequence[float]) -> DHTransform:
        """Return a copy with ``offsets`` (a, alpha, d, theta) added to the parameters."""
        offsets = np.asarray(offsets, dtype=np.float64).reshape(-1)
        if offsets.shape != (NUM_DH_PARAMS,):
            raise DomainError(f"DH transform offsets need 4 values, got {offsets.size}")
        a, alpha, d, theta = self.params + offsets
        return replace(self, a=float(a), alpha=float(alpha), d=float(d), theta=float(theta))

    def matrix(self, joint_value: float, offsets: Optional[Sequence[float]] = None) -> np.ndarray:
        """4x4 link transform for one joint value."""
        params = self.params
        if offsets is not None:
            params = params + np.asarray(offsets, dtype=np.float64).reshape(NUM_DH_PARAMS)
        return _dh_matrices(params[None, :], np.array([joint_value], dtype=np.float64),
                            self.joint_type)[0]

    def within_limits(self, joint_value: float) -> bool:
        return self.min_limit <= joint_value <= self.max_limit

    def random_joint_value(self, rng: np.random.Generator) -> float:
        return float(rng.uniform(self.min_limit, self.max_limit))


def _dh_matrices(params: np.ndarray, joint_values: np.ndarray, joint_type: DHJointType) -> np.ndarray:
    """Batched DH link transforms.

    Args:
        params: (1, 4) or (N, 4) rows of (a, alpha, d, theta).
        joint_values: (N,) live joint values.
        joint_type: decides whether the joint value is added to theta or d.

    Returns:
        (N, 4, 4) homogeneous transforms.
    """
    a, alpha, d, theta = (params[:, i] for i in range(NUM_DH_PARAMS))
    if joint_type == DHJointType.REVOLUTE:
        theta = theta + joint_values
    else:
        d = d + joint_values
    n = joint_values.shape[0]
    theta = np.broadcast_to(theta, (n,))
    d = np.broadcast_to(d, (n,))

    ct, st = np.cos(theta), np.sin(theta)
    ca, sa = np.cos(alpha), np.sin(alpha)

    out = np.zeros((n, 4, 4), dtype=np.float64)
    out[:, 0, 0] = ct
    out[:, 0, 1] = -st * ca
    out[:, 0, 2] = st * sa
    out[:, 0, 3] = a * ct
    out[:, 1, 0] = st
    out[:, 1, 1] = ct * ca
    out[:, 1, 2] = -ct * sa
    out[:, 1, 3] = a * st
    out[:, 2, 1] = sa
    out[:, 2, 2] = ca
    out[:, 2, 3] = d
    out[:, 3, 3] = 1.0
    return out


class DHChain:
    """Ordered DH transforms (first to last joint) behind a fixed base offset.

    Instances are treated as immutable values and may be shared between
    threads for forward kinematics.
    """

    def __init__(
        self,
        transforms: Sequence[DHTransform] = (),
        base_offset: Optional[np.ndarray] = None,
    ) -> None:
        self._transforms: tuple[DHTransform, ...] = tuple(transforms)
        if base_offset is None:
            base_offset = np.eye(4)
        base_offset = np.array(base_offset, dtype=np.float64)
        if base_offset.shape != (4, 4):
            raise DomainError(f"Base offset must be 4x4, got shape {base_offset.shape}")
        base_offset.setflags(write=False)
        self._base_offset = base_offset

    @classmethod
    def calibrated(cls, nominal: DHChain, offsets: Optional[Sequence[float]]) -> DHChain:
        """Chain with ``offsets`` (length 4 * dof) baked into every transform.

        The nominal chain is not modified.  Empty or None offsets give an
        identical copy.
        """
        offsets = nominal._check_offsets(offsets)
        transforms = [t.with_offsets(row) for t, row in zip(nominal.transforms, offsets)]
        return cls(transforms, nominal.base_offset)

    # ----- properties -----

    @property
    def transforms(self) -> tuple[DHTransform, ...]:
        return self._transforms

    @property
    def base_offset(self) -> np.ndarray:
        return self._base_offset

    @property
    def dof(self) -> int:
        return len(self._transforms)

    @property
    def num_params(self) -> int:
        return NUM_DH_PARAMS * self.dof

    @property
    def joint_names(self) -> list[str]:
        return [t.name or f"j{i}" for i, t in enumerate(self._transforms)]

    def dh_table(self) -> np.ndarray:
        """(dof, 4) array of nominal (a, alpha, d, theta) rows."""
        if not self._transforms:
            return np.zeros((0, NUM_DH_PARAMS), dtype=np.float64)
        return np.stack([t.params for t in self._transforms])

    def joint_limits(self) -> list[tuple[float, float]]:
        return [(t.min_limit, t.max_limit) for t in self._transforms]

    def within_limits(self, joints: Sequence[float]) -> bool:
        joints = self._check_joints(joints)
        return all(t.within_limits(q) for t, q in zip(self._transforms, joints))

    def random_joints(self, rng: np.random.Generator) -> np.ndarray:
        """Uniformly random joint vector within the limits of every joint."""
        return np.array([t.random_joint_value(rng) for t in self._transforms], dtype=np.float64)

    # ----- validation -----

    def _check_joints(self, joints) -> np.ndarray:
        joints = np.asarray(joints, dtype=np.float64).reshape(-1)
        if joints.shape[0] != self.dof:
            raise DomainError(f"Expected {self.dof} joint values, got {joints.shape[0]}")
        return joints

    def _check_offsets(self, offsets) -> np.ndarray:
        """Return offsets as a (dof, 4) array; None/empty means all zero."""
        if offsets is None:
            return np.zeros((self.dof, NUM_DH_PARAMS), dtype=np.float64)
        offsets = np.asarray(offsets, dtype=np.float64).reshape(-1)
        if offsets.size == 0:
            return np.zeros((self.dof, NUM_DH_PARAMS), dtype=np.float64)
        if offsets.size != self.num_params:
            raise DomainError(
                f"Offset vector must have 0 or {self.num_params} elements, got {offsets.size}"
            )
        return offsets.reshape(self.dof, NUM_DH_PARAMS)

    # ----- forward kinematics -----

    def get_fk(self, joints: Sequence[float], offsets: Optional[Sequence[float]] = None) -> np.ndarray:
        """4x4 transform from the chain base frame to the last link frame."""
        joints = self._check_joints(joints)
        return self.get_fk_batch(joints[None, :], offsets)[0]

    def get_fk_batch(self, joints: np.ndarray, offsets: Optional[Sequence[float]] = None) -> np.ndarray:
        """Forward kinematics for N joint vectors at once.

        Args:
            joints: (N, dof) joint values.
            offsets: optional flat offset vector of length 4 * dof.

        Returns:
            (N, 4, 4) base-to-end transforms.
        """
        joints = np.asarray(joints, dtype=np.float64)
        if joints.ndim != 2 or joints.shape[1] != self.dof:
            raise DomainError(f"Expected joints of shape (N, {self.dof}), got {joints.shape}")
        params = self.dh_table() + self._check_offsets(offsets)

        T = np.broadcast_to(self._base_offset, (joints.shape[0], 4, 4)).copy()
        for i, t in enumerate(self._transforms):
            T = T @ _dh_matrices(params[i:i + 1], joints[:, i], t.joint_type)
        return T

    def get_link_transforms(self, joints: Sequence[float],
                            offsets: Optional[Sequence[float]] = None) -> list[np.ndarray]:
        """Cumulative transforms; element i is base -> frame of link i."""
        joints = self._check_joints(joints)
        params = self.dh_table() + self._check_offsets(offsets)
        T = self._base_offset.copy()
        transforms: list[np.ndarray] = []
        for i, t in enumerate(self._transforms):
            T = T @ _dh_matrices(params[i:i + 1], joints[i:i + 1], t.joint_type)[0]
            transforms.append(T.copy())
        return transforms

    def __repr__(self) -> str:
        return f"DHChain(dof={self.dof}, joints={self.joint_names})"

"""
Rigid-body transform helpers.

Transforms are 4x4 homogeneous matrices (float64).  Rotations that are
optimized are parameterized as angle-axis vectors (Pose6d) so the solver
works on a minimal, unconstrained 6-vector per transform.

All helpers accept a single (4, 4) matrix or a stack of shape (N, 4, 4).
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.spatial.transform import Rotation

from kincal.exceptions import DomainError


@dataclass(frozen=True)
class Pose6d:
    """Minimal 6-DOF pose: angle-axis rotation followed by translation."""
    rx: float = 0.0
    ry: float = 0.0
    rz: float = 0.0
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def from_array(cls, values) -> Pose6d:
        values = np.asarray(values, dtype=np.float64).reshape(-1)
        if values.shape != (6,):
            raise DomainError(f"Pose6d needs 6 values, got {values.size}")
        return cls(*(float(v) for v in values))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> Pose6d:
        T = _check_matrix(T)
        rotvec = Rotation.from_matrix(T[:3, :3]).as_rotvec()
        return cls.from_array(np.concatenate([rotvec, T[:3, 3]]))

    def to_array(self) -> np.ndarray:
        return np.array([self.rx, self.ry, self.rz, self.x, self.y, self.z], dtype=np.float64)

    def to_matrix(self) -> np.ndarray:
        return pose6d_to_matrices(self.to_array())

    @property
    def rotation_vector(self) -> np.ndarray:
        return np.array([self.rx, self.ry, self.rz], dtype=np.float64)

    @property
    def translation(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)


def _check_matrix(T) -> np.ndarray:
    T = np.asarray(T, dtype=np.float64)
    if T.shape[-2:] != (4, 4):
        raise DomainError(f"Expected a 4x4 transform, got shape {T.shape}")
    return T


def make_transform(translation=(0.0, 0.0, 0.0), rotation=None) -> np.ndarray:
    """Build a 4x4 transform from a translation and a rotation.

    Args:
        translation: (3,) translation.
        rotation: 3x3 matrix, scipy Rotation, or None for identity.
    """
    T = np.eye(4, dtype=np.float64)
    if rotation is not None:
        if isinstance(rotation, Rotation):
            rotation = rotation.as_matrix()
        T[:3, :3] = np.asarray(rotation, dtype=np.float64)
    T[:3, 3] = np.asarray(translation, dtype=np.float64).reshape(3)
    return T


def invert_transform(T: np.ndarray) -> np.ndarray:
    """Inverse of one or many rigid transforms (uses R^T rather than a full inverse)."""
    T = _check_matrix(T)
    R = T[..., :3, :3]
    t = T[..., :3, 3]
    Rt = np.swapaxes(R, -1, -2)
    out = np.zeros_like(T)
    out[..., :3, :3] = Rt
    out[..., :3, 3] = -np.einsum("...ij,...j->...i", Rt, t)
    out[..., 3, 3] = 1.0
    return out


def pose6d_to_matrices(values: np.ndarray) -> np.ndarray:
    """Convert (6,) or (N, 6) [rx, ry, rz, x, y, z] arrays to 4x4 transforms."""
    values = np.asarray(values, dtype=np.float64)
    single = values.ndim == 1
    values = np.atleast_2d(values)
    out = np.zeros((values.shape[0], 4, 4), dtype=np.float64)
    out[:, :3, :3] = Rotation.from_rotvec(values[:, :3]).as_matrix()
    out[:, :3, 3] = values[:, 3:]
    out[:, 3, 3] = 1.0
    return out[0] if single else out


def transform_log(predicted: np.ndarray, measured: np.ndarray) -> np.ndarray:
    """6-vector pose error [translation error; rotation-vector error].

    The translation part is ``predicted.t - measured.t`` and the rotation part
    is the angle-axis vector of ``predicted.R^T @ measured.R``.
    Returns shape (6,) for single inputs, (N, 6) for stacks.
    """
    predicted = _check_matrix(predicted)
    measured = _check_matrix(measured)
    single = predicted.ndim == 2 and measured.ndim == 2
    predicted = predicted.reshape(-1, 4, 4)
    measured = measured.reshape(-1, 4, 4)

    pos_err = predicted[:, :3, 3] - measured[:, :3, 3]
    R_err = np.swapaxes(predicted[:, :3, :3], -1, -2) @ measured[:, :3, :3]
    rot_err = Rotation.from_matrix(R_err).as_rotvec()
    out = np.concatenate([pos_err, rot_err], axis=1)
    return out[0] if single else out


def angular_distance(R_a: np.ndarray, R_b: np.ndarray) -> np.ndarray:
    """Angle (rad) of the relative rotation between rotation matrices."""
    R_a = np.asarray(R_a, dtype=np.float64)
    R_b = np.asarray(R_b, dtype=np.float64)
    R_rel = np.swapaxes(R_a, -1, -2) @ R_b
    return Rotation.from_matrix(R_rel).magnitude()


def quaternion_to_matrix(qw: float, qx: float, qy: float, qz: float) -> np.ndarray:
    """Scalar-first quaternion to 3x3 rotation matrix (normalized first)."""
    q = np.array([qx, qy, qz, qw], dtype=np.float64)
    norm = np.linalg.norm(q)
    if norm < 1e-12:
        raise DomainError("Quaternion has zero norm")
    return Rotation.from_quat(q / norm).as_matrix()


def matrix_to_quaternion(R: np.ndarray) -> tuple[float, float, float, float]:
    """3x3 rotation matrix to scalar-first quaternion (qw, qx, qy, qz)."""
    qx, qy, qz, qw = Rotation.from_matrix(np.asarray(R, dtype=np.float64)).as_quat()
    return float(qw), float(qx), float(qy), float(qz)


def euler_zyx(T: np.ndarray) -> np.ndarray:
    """Intrinsic Z-Y-X Euler angles (rad) of a transform's rotation."""
    T = _check_matrix(T)
    return Rotation.from_matrix(T[:3, :3]).as_euler("ZYX")

"""Tests for rigid-transform helpers and the Pose6d parameterization."""

import math

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from kincal.exceptions import DomainError
from kincal.kinematics.transforms import (
    Pose6d,
    angular_distance,
    euler_zyx,
    invert_transform,
    make_transform,
    matrix_to_quaternion,
    pose6d_to_matrices,
    quaternion_to_matrix,
    transform_log,
)


class TestPose6d:
    def test_from_matrix_to_matrix(self):
        T = make_transform((0.1, 0.2, 0.3), Rotation.from_rotvec([0.3, -0.1, 0.2]))
        pose = Pose6d.from_matrix(T)
        np.testing.assert_array_almost_equal(pose.translation, [0.1, 0.2, 0.3])
        np.testing.assert_array_almost_equal(pose.rotation_vector, [0.3, -0.1, 0.2])
        np.testing.assert_array_almost_equal(pose.to_matrix(), T)

    def test_array_order_rotation_first(self):
        pose = Pose6d.from_array([1, 2, 3, 4, 5, 6])
        assert (pose.rx, pose.ry, pose.rz) == (1, 2, 3)
        assert (pose.x, pose.y, pose.z) == (4, 5, 6)
        np.testing.assert_array_equal(pose.to_array(), [1, 2, 3, 4, 5, 6])

    def test_default_is_identity(self):
        np.testing.assert_array_equal(Pose6d().to_matrix(), np.eye(4))

    def test_wrong_length(self):
        with pytest.raises(DomainError, match="6 values"):
            Pose6d.from_array([1, 2, 3])


class TestTransformHelpers:
    def test_make_transform_accepts_matrix(self):
        R = Rotation.from_euler("z", 0.5).as_matrix()
        T = make_transform((1, 2, 3), R)
        np.testing.assert_array_equal(T[:3, :3], R)
        np.testing.assert_array_equal(T[:3, 3], [1, 2, 3])

    def test_invert_single(self):
        T = make_transform((0.4, -0.2, 1.0), Rotation.from_euler("xyz", [0.1, 0.2, 0.3]))
        np.testing.assert_array_almost_equal(invert_transform(T) @ T, np.eye(4))

    def test_invert_batch(self, rng):
        values = rng.normal(0, 0.5, (5, 6))
        T = pose6d_to_matrices(values)
        assert T.shape == (5, 4, 4)
        eye = invert_transform(T) @ T
        for M in eye:
            np.testing.assert_array_almost_equal(M, np.eye(4))

    def test_invert_rejects_non_4x4(self):
        with pytest.raises(DomainError, match="4x4"):
            invert_transform(np.eye(3))

    def test_pose6d_to_matrices_single(self):
        T = pose6d_to_matrices(np.array([0, 0, math.pi / 2, 1, 0, 0]))
        assert T.shape == (4, 4)
        np.testing.assert_array_almost_equal(T[:3, :3] @ [1, 0, 0], [0, 1, 0])


class TestTransformLog:
    def test_identical_poses_zero(self):
        T = make_transform((1, 2, 3), Rotation.from_rotvec([0.1, 0.2, 0.3]))
        np.testing.assert_array_almost_equal(transform_log(T, T), np.zeros(6))

    def test_translation_error(self):
        pred = make_transform((1.0, 0.0, 0.0))
        meas = make_transform((0.5, 0.0, 0.25))
        np.testing.assert_array_almost_equal(transform_log(pred, meas), [0.5, 0.0, -0.25, 0, 0, 0])

    def test_rotation_error_is_relative_rotvec(self):
        pred = make_transform(rotation=Rotation.from_rotvec([0, 0, 0.1]))
        meas = make_transform(rotation=Rotation.from_rotvec([0, 0, 0.3]))
        np.testing.assert_array_almost_equal(transform_log(pred, meas)[3:], [0, 0, 0.2])

    def test_batched_shape(self):
        T = np.stack([np.eye(4)] * 4)
        assert transform_log(T, T).shape == (4, 6)


class TestRotationConversions:
    def test_angular_distance(self):
        Ra = Rotation.from_rotvec([0, 0, 0.2]).as_matrix()
        Rb = Rotation.from_rotvec([0, 0, -0.3]).as_matrix()
        assert angular_distance(Ra, Rb) == pytest.approx(0.5)

    def test_quaternion_round_trip(self):
        R = Rotation.from_euler("zyx", [0.3, -0.4, 0.5]).as_matrix()
        qw, qx, qy, qz = matrix_to_quaternion(R)
        np.testing.assert_array_almost_equal(quaternion_to_matrix(qw, qx, qy, qz), R)

    def test_quaternion_is_normalized(self):
        np.testing.assert_array_almost_equal(quaternion_to_matrix(2.0, 0.0, 0.0, 0.0), np.eye(3))

    def test_zero_quaternion_rejected(self):
        with pytest.raises(DomainError, match="zero norm"):
            quaternion_to_matrix(0.0, 0.0, 0.0, 0.0)

    def test_euler_zyx(self):
        T = make_transform(rotation=Rotation.from_euler("ZYX", [0.3, 0.2, 0.1]))
        np.testing.assert_array_almost_equal(euler_zyx(T), [0.3, 0.2, 0.1])

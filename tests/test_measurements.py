"""Tests for kinematic measurements and their JSON file format."""

import json

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from kincal.calibration.measurements import (
    KinematicMeasurement,
    load_measurements,
    measurement_from_dict,
    measurement_to_dict,
    save_measurements,
)
from kincal.exceptions import DomainError
from kincal.kinematics.transforms import make_transform


def _measurement(q=(0.1, 0.2)):
    return KinematicMeasurement(
        camera_chain_joints=[],
        target_chain_joints=list(q),
        camera_to_target=make_transform((0.3, -0.1, 1.2), Rotation.from_rotvec([0.2, 0.1, -0.4])),
    )


class TestKinematicMeasurement:
    def test_fields_are_arrays(self):
        m = _measurement()
        assert m.camera_chain_joints.shape == (0,)
        assert m.target_chain_joints.shape == (2,)
        assert m.camera_to_target.shape == (4, 4)

    def test_read_only(self):
        m = _measurement()
        with pytest.raises(ValueError):
            m.target_chain_joints[0] = 1.0

    def test_input_copied(self):
        joints = np.array([0.1, 0.2])
        m = KinematicMeasurement([], joints, np.eye(4))
        joints[0] = 5.0
        assert m.target_chain_joints[0] == pytest.approx(0.1)

    def test_rejects_non_4x4(self):
        with pytest.raises(DomainError, match="4x4"):
            KinematicMeasurement([], [0.0], np.eye(3))

    def test_is_approx(self):
        assert _measurement().is_approx(_measurement())
        assert not _measurement().is_approx(_measurement(q=(0.1, 0.3)))
        assert not _measurement().is_approx(_measurement(q=(0.1,)))


class TestDictFormat:
    def test_keys(self):
        d = measurement_to_dict(_measurement())
        assert set(d) == {"camera_joints", "target_joints", "pose"}
        assert set(d["pose"]) == {"x", "y", "z", "qw", "qx", "qy", "qz"}
        assert d["pose"]["z"] == pytest.approx(1.2)

    def test_from_dict(self):
        m = measurement_from_dict({
            "camera_joints": [],
            "target_joints": [0.5],
            "pose": {"x": 1, "y": 2, "z": 3, "qw": 1, "qx": 0, "qy": 0, "qz": 0},
        })
        np.testing.assert_array_almost_equal(m.camera_to_target, make_transform((1, 2, 3)))
        np.testing.assert_array_equal(m.target_chain_joints, [0.5])

    def test_missing_pose(self):
        with pytest.raises(DomainError, match="Malformed"):
            measurement_from_dict({"camera_joints": [], "target_joints": []})

    def test_missing_joint_list_means_fixed_chain(self):
        m = measurement_from_dict({"pose": {"x": 0, "y": 0, "z": 0, "qw": 1, "qx": 0, "qy": 0, "qz": 0}})
        assert m.camera_chain_joints.size == 0
        assert m.target_chain_joints.size == 0

    def test_zero_quaternion(self):
        with pytest.raises(DomainError, match="zero norm"):
            measurement_from_dict({"pose": {"x": 0, "y": 0, "z": 0, "qw": 0, "qx": 0, "qy": 0, "qz": 0}})


class TestFileIO:
    def test_save_and_load(self, tmp_path):
        measurements = [_measurement((0.1 * i, -0.2 * i)) for i in range(5)]
        path = tmp_path / "sub" / "measurements.json"
        save_measurements(measurements, path)
        loaded = load_measurements(path)
        assert len(loaded) == 5
        assert all(a.is_approx(b) for a, b in zip(measurements, loaded))

    def test_bad_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(DomainError, match="Could not parse"):
            load_measurements(path)

    def test_not_a_list(self, tmp_path):
        path = tmp_path / "obj.json"
        path.write_text(json.dumps({"pose": {}}))
        with pytest.raises(DomainError, match="must contain a list"):
            load_measurements(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_measurements(tmp_path / "nope.json")

"""Tests for KinematicCalibrationProblem input validation."""

import numpy as np
import pytest

from kincal.calibration.masks import CalibrationMask
from kincal.calibration.measurements import KinematicMeasurement
from kincal.calibration.problem import KinematicCalibrationProblem
from kincal.exceptions import DomainError
from kincal.kinematics.dh_chain import DHChain


def _problem(positioner, **kwargs):
    return KinematicCalibrationProblem(camera_chain=DHChain([]), target_chain=positioner, **kwargs)


class TestStdevPrior:
    def test_scalar_broadcast(self, positioner):
        p = _problem(positioner, target_chain_offset_stdev=0.005)
        np.testing.assert_array_equal(p.stdev_vector("target"), np.full(8, 0.005))
        assert p.stdev_vector("camera").shape == (0,)

    def test_per_parameter(self, positioner):
        stdev = np.linspace(0.001, 0.008, 8)
        p = _problem(positioner, target_chain_offset_stdev=stdev)
        np.testing.assert_array_equal(p.stdev_vector("target"), stdev)

    def test_wrong_length(self, positioner):
        p = _problem(positioner, target_chain_offset_stdev=np.ones(3))
        with pytest.raises(DomainError, match="8"):
            p.stdev_vector("target")

    def test_unknown_chain(self, positioner):
        with pytest.raises(DomainError, match="Unknown chain"):
            _problem(positioner).stdev_vector("base")

    def test_non_positive_rejected(self, positioner):
        with pytest.raises(DomainError, match="> 0"):
            _problem(positioner, target_chain_offset_stdev=0.0).validate()


class TestValidate:
    def test_defaults_valid(self, positioner):
        p = _problem(positioner)
        p.validate()
        np.testing.assert_array_equal(p.camera_base_to_target_base_guess, np.eye(4))

    def test_bad_guess_shape(self, positioner):
        with pytest.raises(DomainError, match="camera_mount_to_camera_guess"):
            _problem(positioner, camera_mount_to_camera_guess=np.eye(3)).validate()

    def test_non_finite_guess(self, positioner):
        guess = np.eye(4)
        guess[0, 3] = np.nan
        with pytest.raises(DomainError, match="non-finite"):
            _problem(positioner, target_mount_to_target_guess=guess).validate()

    def test_mask_out_of_range(self, positioner):
        with pytest.raises(DomainError, match="out of range"):
            _problem(positioner, mask=CalibrationMask(target_chain=[12])).validate()

    def test_measurement_dof_mismatch(self, positioner):
        m = KinematicMeasurement([], [0.0, 0.0, 0.0], np.eye(4))
        with pytest.raises(DomainError, match="Measurement 0: target chain has 2 dof"):
            _problem(positioner, observations=[m]).validate()

    def test_camera_joints_on_fixed_camera(self, positioner):
        m = KinematicMeasurement([0.1], [0.0, 0.0], np.eye(4))
        with pytest.raises(DomainError, match="camera chain has 0 dof"):
            _problem(positioner, observations=[m]).validate()


class TestConstraints:
    def test_num_free_parameters(self, positioner):
        p = _problem(positioner, mask=CalibrationMask(target_chain=[4, 5, 6, 7]))
        assert p.num_free_parameters == 4 + 18

    def test_has_enough_constraints(self, positioner):
        m = KinematicMeasurement([], [0.0, 0.0], np.eye(4))
        p = _problem(positioner, observations=[m] * 3)
        # 26 free parameters, 18 constraints
        assert not p.has_enough_constraints()
        p.observations = [m] * 5
        assert p.has_enough_constraints()

    def test_mask_swappable_between_runs(self, positioner):
        p = _problem(positioner)
        before = p.num_free_parameters
        p.mask = CalibrationMask(target_chain=range(8))
        assert p.num_free_parameters == before - 8

"""
Kinematic calibration module.

Formulates and solves the DH-chain + mount-transform calibration problem from
camera-to-target pose measurements, and reports/validates the result.
"""

from kincal.calibration.covariance import CovarianceResult, compute_covariance
from kincal.calibration.masks import (
    ALL_COMPONENTS,
    ROTATION,
    TRANSLATION,
    CalibrationMask,
    DHParameter,
    TransformComponent,
    create_dh_mask,
    dh_index,
)
from kincal.calibration.measurements import KinematicMeasurement, load_measurements, save_measurements
from kincal.calibration.optimizer import KinematicCalibrationResult, SolverOptions, optimize
from kincal.calibration.problem import KinematicCalibrationProblem
from kincal.calibration.validation import Stats, compare_to_measurements

__all__ = [
    "ALL_COMPONENTS",
    "ROTATION",
    "TRANSLATION",
    "CalibrationMask",
    "CovarianceResult",
    "DHParameter",
    "KinematicCalibrationProblem",
    "KinematicCalibrationResult",
    "KinematicMeasurement",
    "SolverOptions",
    "Stats",
    "TransformComponent",
    "compare_to_measurements",
    "compute_covariance",
    "create_dh_mask",
    "dh_index",
    "load_measurements",
    "optimize",
    "save_measurements",
]

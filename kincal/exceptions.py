"""Exception types raised by the kinematic calibration core."""


class KinematicCalibrationError(Exception):
    """Base class for all calibration errors."""
    pass


class DomainError(KinematicCalibrationError, ValueError):
    """Raised on malformed inputs: wrong-length vectors, dof mismatches."""
    pass


class OptimizationError(KinematicCalibrationError):
    """Raised when the problem cannot be solved (empty data, solver failure)."""
    pass


class CovarianceError(KinematicCalibrationError):
    """Raised when parameter covariance cannot be computed."""
    pass

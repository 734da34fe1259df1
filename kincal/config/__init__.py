from kincal.config.calibration_config import DEFAULTS, CalibrationConfig, get_calibration_config

__all__ = ["DEFAULTS", "CalibrationConfig", "get_calibration_config"]

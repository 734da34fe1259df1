"""kincal: kinematic chain and mount-transform calibration from pose measurements."""

__version__ = "0.1.0"

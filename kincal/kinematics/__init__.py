"""
Kinematics module.

Provides DH chains with calibratable offsets and rigid-transform helpers.
"""

from kincal.kinematics.dh_chain import NUM_DH_PARAMS, DHChain, DHJointType, DHTransform
from kincal.kinematics.transforms import (
    Pose6d,
    angular_distance,
    invert_transform,
    make_transform,
    pose6d_to_matrices,
    transform_log,
)

__all__ = [
    "NUM_DH_PARAMS",
    "DHChain",
    "DHJointType",
    "DHTransform",
    "Pose6d",
    "angular_distance",
    "invert_transform",
    "make_transform",
    "pose6d_to_matrices",
    "transform_log",
]

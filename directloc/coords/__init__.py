"""Rotation representations used by the localizer.

Reference: roll-pitch-yaw (ZYX) convention, radians throughout.
"""

from directloc.coords.rotations import (
    euler_to_rotation_matrix,
    quat_to_euler,
    rotation_matrix_to_euler,
    tilt_matrix,
)

__all__ = [
    "euler_to_rotation_matrix",
    "quat_to_euler",
    "rotation_matrix_to_euler",
    "tilt_matrix",
]

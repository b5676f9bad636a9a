"""Rotation representations and conversions.

This module provides the rotation helpers needed by the localizer:
- Rotation matrices (3x3 orthogonal matrices, SO(3))
- Euler angles (roll-pitch-yaw, ZYX convention)
- Quaternions, only as an input format for IMU orientation

Conventions:
- Quaternions: [qw, qx, qy, qz] where qw is the scalar part
- Euler angles: [roll, pitch, yaw] in radians (ZYX/3-2-1 convention)
  - Roll: rotation about x-axis (φ)
  - Pitch: rotation about y-axis (θ)
  - Yaw: rotation about z-axis (ψ)
- Rotation matrices: 3x3 numpy arrays

The localizer estimates yaw only; roll and pitch come from the IMU or the
prior pose and are removed from the point cloud with ``tilt_matrix``.
"""

import numpy as np
from numpy.typing import NDArray


def euler_to_rotation_matrix(
    roll: float,
    pitch: float,
    yaw: float,
) -> NDArray[np.float64]:
    """Convert Euler angles to rotation matrix.

    Converts roll-pitch-yaw Euler angles (ZYX convention) to a 3x3
    rotation matrix R = Rz(yaw) @ Ry(pitch) @ Rx(roll) that transforms
    vectors from the body frame to the map frame.

    Args:
        roll: Roll angle φ in radians (rotation about x-axis).
        pitch: Pitch angle θ in radians (rotation about y-axis).
        yaw: Yaw angle ψ in radians (rotation about z-axis).

    Returns:
        3x3 rotation matrix R such that v_map = R @ v_body.

    Example:
        >>> R = euler_to_rotation_matrix(0.1, 0.2, 0.3)
        >>> bool(np.isclose(np.linalg.det(R), 1.0))
        True
    """
    cr = np.cos(roll)
    sr = np.sin(roll)
    cp = np.cos(pitch)
    sp = np.sin(pitch)
    cy = np.cos(yaw)
    sy = np.sin(yaw)

    # ZYX (3-2-1) Euler angle rotation matrix
    R = np.array(
        [
            [cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr],
            [sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr],
            [-sp, cp * sr, cp * cr],
        ],
        dtype=np.float64,
    )

    return R


def rotation_matrix_to_euler(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert rotation matrix to Euler angles.

    Args:
        R: 3x3 rotation matrix.

    Returns:
        Euler angles as numpy array [roll, pitch, yaw] in radians.

    Raises:
        ValueError: If R is not a 3x3 matrix.
    """
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")

    sin_pitch = -R[2, 0]

    if abs(sin_pitch) >= 1.0:
        # Gimbal lock: only yaw - roll is observable, roll set to zero
        pitch = np.copysign(np.pi / 2.0, sin_pitch)
        yaw = np.arctan2(-R[0, 1], R[1, 1])
        roll = 0.0
    else:
        pitch = np.arcsin(sin_pitch)
        roll = np.arctan2(R[2, 1], R[2, 2])
        yaw = np.arctan2(R[1, 0], R[0, 0])

    return np.array([roll, pitch, yaw], dtype=np.float64)


def quat_to_euler(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert an IMU orientation quaternion to Euler angles.

    Args:
        q: Unit quaternion as numpy array [qw, qx, qy, qz].

    Returns:
        Euler angles as numpy array [roll, pitch, yaw] in radians. NaN
        components propagate, the caller decides whether to keep them.

    Raises:
        ValueError: If q is not a 4-element array.
    """
    q = np.asarray(q, dtype=np.float64)
    if q.shape != (4,):
        raise ValueError(f"Expected 4-element quaternion, got shape {q.shape}")

    qw, qx, qy, qz = q

    roll = np.arctan2(2.0 * (qw * qx + qy * qz), 1.0 - 2.0 * (qx * qx + qy * qy))

    # Clamp to avoid numerical issues with arcsin
    sin_pitch = np.clip(2.0 * (qw * qy - qz * qx), -1.0, 1.0)
    pitch = np.arcsin(sin_pitch)

    yaw = np.arctan2(2.0 * (qw * qz + qx * qy), 1.0 - 2.0 * (qy * qy + qz * qz))

    return np.array([roll, pitch, yaw], dtype=np.float64)


def tilt_matrix(roll: float, pitch: float) -> NDArray[np.float64]:
    """Rotation that removes platform tilt from a body-frame point cloud.

    Returns Ry(pitch) @ Rx(roll), i.e. the ZYX rotation with zero yaw.
    Applying it to body-frame points yields a gravity-aligned cloud whose
    only remaining unknown rotation is yaw.

    Args:
        roll: Roll angle in radians.
        pitch: Pitch angle in radians.

    Returns:
        3x3 rotation matrix.
    """
    return euler_to_rotation_matrix(roll, pitch, 0.0)

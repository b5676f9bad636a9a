"""4-DOF pose operations (translation + yaw) for ground-vehicle localization.

This module implements the rigid-motion helpers used by every alignment
strategy. Poses are NumPy arrays [tx, ty, tz, yaw] of shape (4,) or
``PoseEstimate`` instances; the rotation is a pure yaw about +z, optionally
preceded by a fixed roll/pitch tilt when transforming points.

Key functions:
    - wrap_angle: Normalize angle to [-π, π]
    - pose_apply: Transform points by a pose (with optional fixed tilt)
    - pose_compose: Compose two 4-DOF poses (p1 ⊕ p2)
    - pose_inverse: Invert a 4-DOF pose (p⁻¹)
    - pose_to_matrix / pose_from_matrix: 4x4 homogeneous conversions
"""

from typing import Union

import numpy as np

from directloc.coords.rotations import euler_to_rotation_matrix, rotation_matrix_to_euler

from .types import PoseEstimate


PoseLike = Union[np.ndarray, PoseEstimate]


def _as_pose_array(p: PoseLike) -> np.ndarray:
    if isinstance(p, PoseEstimate):
        return p.to_array()
    p = np.asarray(p, dtype=np.float64)
    if p.shape != (4,):
        raise ValueError(f"pose must have shape (4,), got {p.shape}")
    return p


def wrap_angle(theta: float) -> float:
    """
    Normalize angle to the range [-π, π].

    Examples:
        >>> float(wrap_angle(3 * np.pi))
        3.141592653589793
        >>> round(float(wrap_angle(2 * np.pi + 0.1)), 6)
        0.1
    """
    return np.arctan2(np.sin(theta), np.cos(theta))


def pose_apply(
    p: PoseLike,
    points: np.ndarray,
    roll: float = 0.0,
    pitch: float = 0.0,
) -> np.ndarray:
    """
    Transform 3D points by a 4-DOF pose.

        points_transformed = Rz(yaw) @ Ry(pitch) @ Rx(roll) @ points + t

    Args:
        p: Pose [tx, ty, tz, yaw] or PoseEstimate.
        points: Points to transform, shape (N, 3).
        roll: Fixed roll in radians (default 0: points already tilt-compensated).
        pitch: Fixed pitch in radians.

    Returns:
        Transformed points, shape (N, 3).

    Raises:
        ValueError: If points does not have shape (N, 3).

    Examples:
        >>> p = np.array([1.0, 0.0, 0.5, np.pi / 2])
        >>> pts = np.array([[1.0, 0.0, 0.0]])
        >>> np.allclose(pose_apply(p, pts), [[1.0, 1.0, 0.5]])
        True
    """
    p = _as_pose_array(p)
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"points must have shape (N, 3), got {points.shape}")

    R = euler_to_rotation_matrix(roll, pitch, p[3])
    return points @ R.T + p[:3]


def pose_compose(p1: PoseLike, p2: PoseLike) -> np.ndarray:
    """
    Compose two 4-DOF poses: p_result = p1 ⊕ p2.

        t_result = t1 + Rz(yaw1) t2
        yaw_result = yaw1 + yaw2  (wrapped to [-π, π])

    Examples:
        >>> p1 = np.array([1.0, 0.0, 0.0, np.pi / 2])
        >>> p2 = np.array([1.0, 0.0, 1.0, 0.0])
        >>> np.allclose(pose_compose(p1, p2), [1.0, 1.0, 1.0, np.pi / 2])
        True
    """
    p1 = _as_pose_array(p1)
    p2 = _as_pose_array(p2)

    cos_yaw = np.cos(p1[3])
    sin_yaw = np.sin(p1[3])
    x = p1[0] + cos_yaw * p2[0] - sin_yaw * p2[1]
    y = p1[1] + sin_yaw * p2[0] + cos_yaw * p2[1]
    z = p1[2] + p2[2]
    yaw = wrap_angle(p1[3] + p2[3])

    return np.array([x, y, z, yaw], dtype=np.float64)


def pose_inverse(p: PoseLike) -> np.ndarray:
    """
    Invert a 4-DOF pose such that p ⊕ p⁻¹ = identity.

    Examples:
        >>> p = np.array([1.0, 2.0, 3.0, np.pi / 4])
        >>> np.allclose(pose_compose(p, pose_inverse(p)), np.zeros(4), atol=1e-12)
        True
    """
    p = _as_pose_array(p)
    x, y, z, yaw = p

    cos_yaw = np.cos(yaw)
    sin_yaw = np.sin(yaw)
    x_inv = -(x * cos_yaw + y * sin_yaw)
    y_inv = -(-x * sin_yaw + y * cos_yaw)

    return np.array([x_inv, y_inv, -z, wrap_angle(-yaw)], dtype=np.float64)


def pose_to_matrix(p: PoseLike, roll: float = 0.0, pitch: float = 0.0) -> np.ndarray:
    """
    Convert a pose (plus fixed roll/pitch) to a 4x4 homogeneous transform.

    Args:
        p: Pose [tx, ty, tz, yaw] or PoseEstimate.
        roll: Roll in radians.
        pitch: Pitch in radians.

    Returns:
        Homogeneous transform T of shape (4, 4).
    """
    p = _as_pose_array(p)
    T = np.eye(4)
    T[:3, :3] = euler_to_rotation_matrix(roll, pitch, p[3])
    T[:3, 3] = p[:3]
    return T


def pose_from_matrix(T: np.ndarray) -> np.ndarray:
    """
    Extract the 4-DOF pose [tx, ty, tz, yaw] from a 4x4 transform.

    Roll and pitch are discarded; use ``rotation_matrix_to_euler`` on
    ``T[:3, :3]`` when they are needed.

    Raises:
        ValueError: If T does not have shape (4, 4).
    """
    T = np.asarray(T, dtype=np.float64)
    if T.shape != (4, 4):
        raise ValueError(f"T must have shape (4, 4), got {T.shape}")
    _, _, yaw = rotation_matrix_to_euler(T[:3, :3])
    return np.array([T[0, 3], T[1, 3], T[2, 3], yaw], dtype=np.float64)

"""Point cloud preparation before registration.

The solvers expect points in the base frame, tilt-compensated, and within a
sane sensor range. These helpers perform that preparation:
    - filter_range: Keep points inside a [min_range, max_range] band
    - voxel_downsample: Replace the points of each voxel by their centroid
    - tilt_compensate: Remove roll and pitch so only yaw remains to estimate
"""

import numpy as np

from directloc.coords.rotations import tilt_matrix


def _check_points(points: np.ndarray) -> np.ndarray:
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"points must have shape (N, 3), got {points.shape}")
    return points


def filter_range(
    points: np.ndarray,
    min_range: float = 1.0,
    max_range: float = 100.0,
) -> np.ndarray:
    """
    Keep points whose distance to the sensor lies strictly inside a band.

        min_range² < ||p||² < max_range²

    Non-finite points are dropped as well.

    Examples:
        >>> pts = np.array([[0.5, 0.0, 0.0], [5.0, 0.0, 0.0], [200.0, 0.0, 0.0]])
        >>> filter_range(pts)
        array([[5., 0., 0.]])
    """
    points = _check_points(points)
    if max_range <= min_range:
        raise ValueError(f"max_range must exceed min_range, got {max_range} <= {min_range}")
    d2 = np.sum(points ** 2, axis=1)
    mask = np.isfinite(d2) & (d2 > min_range ** 2) & (d2 < max_range ** 2)
    return points[mask]


def voxel_downsample(points: np.ndarray, voxel_size: float) -> np.ndarray:
    """
    Voxel grid downsampling using quantization and centroid computation.

    Args:
        points: Input points, shape (N, 3).
        voxel_size: Voxel edge length in meters.

    Returns:
        Downsampled points, shape (M, 3) with M <= N, one centroid per
        occupied voxel.

    Raises:
        ValueError: If voxel_size is not positive.

    Examples:
        >>> pts = np.array([[0.1, 0.1, 0.1], [0.3, 0.1, 0.1], [1.5, 0.0, 0.0]])
        >>> voxel_downsample(pts, 1.0).shape
        (2, 3)
    """
    points = _check_points(points)
    if voxel_size <= 0:
        raise ValueError(f"voxel_size must be positive, got {voxel_size}")
    if points.shape[0] == 0:
        return points.copy()

    voxel_indices = np.floor(points / voxel_size).astype(np.int64)
    _, inverse, counts = np.unique(
        voxel_indices, axis=0, return_inverse=True, return_counts=True
    )
    inverse = inverse.reshape(-1)

    sums = np.zeros((counts.shape[0], 3))
    np.add.at(sums, inverse, points)
    return sums / counts[:, None]


def tilt_compensate(points: np.ndarray, roll: float, pitch: float) -> np.ndarray:
    """
    Rotate points by Ry(pitch) Rx(roll) so the cloud is gravity aligned.

    Examples:
        >>> pts = np.array([[1.0, 0.0, 0.0]])
        >>> np.allclose(tilt_compensate(pts, 0.0, 0.0), pts)
        True
    """
    points = _check_points(points)
    if roll == 0.0 and pitch == 0.0:
        return points.copy()
    return points @ tilt_matrix(roll, pitch).T

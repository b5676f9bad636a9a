"""
Synthetic indoor maps and LiDAR scans for localization experiments.

The forward model is intentionally simple: the map is a set of surface
points (walls, floor, ceiling, box obstacles), and a scan is the subset of
map points within sensor range expressed in the sensor/base frame, with
optional Gaussian range noise. Occlusion is not modeled.

    q_i = T(roll, pitch, yaw, t)⁻¹ p_i         (map → base frame)
"""

from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from directloc.registration.pose3d import pose_to_matrix

Box = Tuple[float, float, float, float, float, float]  # xmin, xmax, ymin, ymax, zmin, zmax


def _face_samples(a0: float, a1: float, b0: float, b1: float, spacing: float) -> np.ndarray:
    """Cell-centered samples of a rectangle [a0, a1] x [b0, b1]."""
    a = np.arange(a0 + spacing / 2, a1, spacing)
    b = np.arange(b0 + spacing / 2, b1, spacing)
    aa, bb = np.meshgrid(a, b, indexing="ij")
    return np.column_stack([aa.ravel(), bb.ravel()])


def box_surface(box: Box, spacing: float, faces: Iterable[str] = ("x", "y", "z")) -> np.ndarray:
    """
    Surface points of an axis-aligned box.

    Args:
        box: (xmin, xmax, ymin, ymax, zmin, zmax) in meters.
        spacing: Sample spacing on each face (meters).
        faces: Axes whose two faces are sampled ("x" gives the faces at xmin
               and xmax, and so on).

    Returns:
        Points of shape (M, 3).
    """
    xmin, xmax, ymin, ymax, zmin, zmax = box
    parts = []
    if "x" in faces:
        yz = _face_samples(ymin, ymax, zmin, zmax, spacing)
        for x in (xmin, xmax):
            parts.append(np.column_stack([np.full(len(yz), x), yz]))
    if "y" in faces:
        xz = _face_samples(xmin, xmax, zmin, zmax, spacing)
        for y in (ymin, ymax):
            parts.append(np.column_stack([xz[:, 0], np.full(len(xz), y), xz[:, 1]]))
    if "z" in faces:
        xy = _face_samples(xmin, xmax, ymin, ymax, spacing)
        for z in (zmin, zmax):
            parts.append(np.column_stack([xy, np.full(len(xy), z)]))
    return np.vstack(parts)


def make_room_map(
    size: Sequence[float] = (8.0, 6.0, 3.0),
    spacing: float = 0.05,
    obstacles: Optional[List[Box]] = None,
) -> np.ndarray:
    """
    Point cloud of a closed rectangular room with box obstacles.

    The room spans [0, sx] x [0, sy] x [0, sz]. Obstacles default to a
    pillar and a low cabinet placed off-center so the room has no rotational
    symmetry.

    Args:
        size: Room extents (sx, sy, sz) in meters.
        spacing: Surface sample spacing (meters). Use at most half the
                 distance-field resolution so every surface node is hit.
        obstacles: Boxes inside the room; their side faces and tops are
                   sampled.

    Returns:
        Map points of shape (M, 3).

    Examples:
        >>> pts = make_room_map((2.0, 2.0, 1.0), spacing=0.5, obstacles=[])
        >>> pts.shape
        (64, 3)
    """
    sx, sy, sz = (float(s) for s in size)
    if min(sx, sy, sz) <= 0:
        raise ValueError(f"room size must be positive, got {size}")
    if spacing <= 0:
        raise ValueError(f"spacing must be positive, got {spacing}")

    if obstacles is None:
        obstacles = [
            (0.3 * sx, 0.3 * sx + 0.5, 0.25 * sy, 0.25 * sy + 0.5, 0.0, sz),
            (0.7 * sx, 0.7 * sx + 1.0, 0.6 * sy, 0.6 * sy + 0.6, 0.0, 0.3 * sz),
        ]

    parts = [box_surface((0.0, sx, 0.0, sy, 0.0, sz), spacing)]
    for xmin, xmax, ymin, ymax, zmin, zmax in obstacles:
        parts.append(box_surface((xmin, xmax, ymin, ymax, zmin, zmax), spacing, faces=("x", "y")))
        top = _face_samples(xmin, xmax, ymin, ymax, spacing)
        if zmax < sz:
            parts.append(np.column_stack([top, np.full(len(top), zmax)]))
    return np.vstack(parts)


def simulate_scan(
    map_points: np.ndarray,
    pose: Sequence[float],
    roll: float = 0.0,
    pitch: float = 0.0,
    max_range: float = 30.0,
    min_range: float = 0.0,
    n_points: Optional[int] = None,
    noise_std: float = 0.0,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Scan of the map seen from a sensor pose, in the sensor/base frame.

    Args:
        map_points: Map point cloud, shape (M, 3).
        pose: Sensor pose [x, y, z, yaw] in the map frame.
        roll: Sensor roll (radians).
        pitch: Sensor pitch (radians).
        max_range: Points farther than this are not returned.
        min_range: Points closer than this are not returned.
        n_points: Random subset size (None keeps every visible point).
        noise_std: Isotropic Gaussian noise added to each point (meters).
        rng: Random generator (default: np.random.default_rng()).

    Returns:
        Scan points of shape (N, 3).
    """
    rng = rng if rng is not None else np.random.default_rng()
    T = pose_to_matrix(np.asarray(pose, dtype=np.float64), roll, pitch)
    R, t = T[:3, :3], T[:3, 3]

    local = (np.asarray(map_points, dtype=np.float64) - t) @ R
    ranges = np.linalg.norm(local, axis=1)
    local = local[(ranges >= min_range) & (ranges <= max_range)]

    if n_points is not None and n_points < local.shape[0]:
        local = local[rng.choice(local.shape[0], size=n_points, replace=False)]
    if noise_std > 0:
        local = local + rng.normal(0.0, noise_std, size=local.shape)
    return local


def generate_trajectory(
    waypoints: Sequence[Sequence[float]],
    step: float = 0.2,
    z: float = 0.5,
) -> np.ndarray:
    """
    Piecewise-linear ground trajectory through 2D waypoints.

    The heading of each pose follows the direction of travel.

    Args:
        waypoints: Sequence of (x, y) points, at least two.
        step: Distance between consecutive poses (meters).
        z: Constant sensor height (meters).

    Returns:
        Poses of shape (K, 4) as [x, y, z, yaw].

    Examples:
        >>> traj = generate_trajectory([(0, 0), (1, 0)], step=0.5)
        >>> traj[:, 0]
        array([0. , 0.5, 1. ])
    """
    wp = np.asarray(waypoints, dtype=np.float64)
    if wp.ndim != 2 or wp.shape[1] != 2 or wp.shape[0] < 2:
        raise ValueError(f"waypoints must have shape (K, 2) with K >= 2, got {wp.shape}")
    if step <= 0:
        raise ValueError(f"step must be positive, got {step}")

    poses = []
    for start, end in zip(wp[:-1], wp[1:]):
        seg = end - start
        length = np.linalg.norm(seg)
        if length == 0:
            continue
        yaw = np.arctan2(seg[1], seg[0])
        n = max(int(np.floor(length / step + 1e-9)), 1)
        for k in range(n):
            xy = start + seg * (k * step / length)
            poses.append([xy[0], xy[1], z, yaw])
    last_seg = wp[-1] - wp[-2]
    poses.append([wp[-1, 0], wp[-1, 1], z, np.arctan2(last_seg[1], last_seg[0])])
    return np.array(poses)

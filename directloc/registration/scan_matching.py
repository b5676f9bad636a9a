"""Point-to-point ICP restricted to 4 DOF (translation + yaw).

ICP is the correspondence-based alternative to the direct distance-field
solver. It aligns a LiDAR scan to the map point cloud by alternating
between nearest-neighbor matching and a closed-form rigid alignment. Roll
and pitch are held fixed, so the closed-form step solves only for a yaw
rotation about +z and a 3D translation.

Key functions:
    - find_correspondences: Nearest-neighbor matching with distance gating
    - compute_icp_residual: Sum of squared point-to-point errors
    - align_yaw_svd: Closed-form yaw + translation alignment
    - icp_align: Full ICP loop returning a SolveResult
    - IcpAligner: Strategy object holding a prebuilt KD-tree of the map
"""

from typing import Optional, Sequence, Tuple, Union

import numpy as np
from scipy.spatial import KDTree

from directloc.coords.rotations import tilt_matrix

from .pose3d import pose_apply, pose_compose
from .types import PoseEstimate, SolveResult, SolveStatus


def _check_cloud(points: np.ndarray, name: str) -> np.ndarray:
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"{name} must have shape (N, 3), got {points.shape}")
    return points


def find_correspondences(
    source_points: np.ndarray,
    target: Union[np.ndarray, KDTree],
    max_distance: Optional[float] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Find nearest-neighbor correspondences with distance-based gating.

    For each source point, the closest target point is found with a KD-tree.
    Pairs farther apart than ``max_distance`` are rejected:

        b_i = 0  if ||p_i - q_nn(i)|| > max_distance
              1  otherwise

    Args:
        source_points: Source point cloud, shape (N, 3) in meters.
        target: Target point cloud of shape (M, 3), or a KDTree built on it.
        max_distance: Gating threshold in meters. None accepts all pairs.

    Returns:
        Tuple of (matched_source, matched_target, distances), where
        matched_source and matched_target have shape (K, 3) and distances
        has shape (K,), K <= N.

    Examples:
        >>> source = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        >>> target = np.array([[1.1, 0.0, 0.0], [0.0, 0.9, 0.0], [5.0, 5.0, 5.0]])
        >>> src, tgt, d = find_correspondences(source, target)
        >>> src.shape
        (2, 3)
        >>> np.allclose(d, [0.1, 0.1])
        True

    Notes:
        Correspondences are one-to-many: several source points may share
        the same target point.
    """
    source_points = _check_cloud(source_points, "source_points")
    if not isinstance(target, KDTree):
        target = _check_cloud(target, "target")
        if target.shape[0] == 0:
            return np.empty((0, 3)), np.empty((0, 3)), np.empty((0,))
        target = KDTree(target)
    tree = target

    if source_points.shape[0] == 0:
        return np.empty((0, 3)), np.empty((0, 3)), np.empty((0,))

    distances, indices = tree.query(source_points, k=1)

    if max_distance is not None:
        valid_mask = distances <= max_distance
        distances = distances[valid_mask]
        indices = indices[valid_mask]
        matched_source = source_points[valid_mask]
    else:
        matched_source = source_points

    matched_target = tree.data[indices]
    return matched_source, np.asarray(matched_target, dtype=np.float64), distances


def compute_icp_residual(source_points: np.ndarray, target_points: np.ndarray) -> float:
    """
    Sum of squared distances between corresponding points.

    Raises:
        ValueError: If point clouds have different shapes.

    Examples:
        >>> s = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        >>> t = np.array([[1.1, 0.0, 0.0], [0.0, 0.9, 0.0]])
        >>> round(compute_icp_residual(s, t), 4)
        0.02
    """
    if source_points.shape != target_points.shape:
        raise ValueError(
            f"Point clouds must have same shape. "
            f"Got source={source_points.shape}, target={target_points.shape}"
        )
    if source_points.shape[0] == 0:
        return 0.0
    diff = source_points - target_points
    return float(np.sum(diff ** 2))


def align_yaw_svd(
    source_points: np.ndarray,
    target_points: np.ndarray,
) -> Optional[np.ndarray]:
    """
    Closed-form 4-DOF alignment of corresponding points.

    The rotation is constrained to yaw, so the Kabsch/SVD solution is
    computed on the horizontal (x, y) components only:
        1. Center both sets on their centroids.
        2. H = Σ s_xy t_xyᵀ, H = U Σ Vᵀ, R = V Uᵀ (reflection corrected).
        3. t = c_target - Rz c_source (z is a pure offset).

    Args:
        source_points: Source points, shape (N, 3).
        target_points: Corresponding target points, shape (N, 3).

    Returns:
        Pose [tx, ty, tz, yaw] mapping source onto target, or None if the
        horizontal spread of the source is degenerate (yaw unobservable).

    Raises:
        ValueError: If point clouds differ in shape or have fewer than 2 points.

    Examples:
        >>> src = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 1.0]])
        >>> tgt = src + np.array([2.0, 3.0, 0.5])
        >>> np.allclose(align_yaw_svd(src, tgt), [2.0, 3.0, 0.5, 0.0], atol=1e-9)
        True
    """
    if source_points.shape != target_points.shape:
        raise ValueError(
            f"Point clouds must have same shape. "
            f"Got source={source_points.shape}, target={target_points.shape}"
        )
    n = source_points.shape[0]
    if n < 2:
        raise ValueError(f"Need at least 2 correspondences for SVD alignment, got {n}")

    centroid_source = np.mean(source_points, axis=0)
    centroid_target = np.mean(target_points, axis=0)
    source_centered = source_points[:, :2] - centroid_source[:2]
    target_centered = target_points[:, :2] - centroid_target[:2]

    H = source_centered.T @ target_centered
    U, S, Vt = np.linalg.svd(H)
    if S[0] <= 1e-12:
        return None

    R = Vt.T @ U.T
    if np.linalg.det(R) < 0:
        Vt[-1, :] *= -1
        R = Vt.T @ U.T

    yaw = np.arctan2(R[1, 0], R[0, 0])
    t_xy = centroid_target[:2] - R @ centroid_source[:2]
    t_z = centroid_target[2] - centroid_source[2]
    return np.array([t_xy[0], t_xy[1], t_z, yaw], dtype=np.float64)


def icp_align(
    source_points: np.ndarray,
    target: Union[np.ndarray, KDTree],
    initial_pose: Optional[np.ndarray] = None,
    max_iterations: int = 50,
    tolerance: float = 1e-6,
    max_correspondence_distance: Optional[float] = 1.0,
    min_correspondences: int = 10,
) -> SolveResult:
    """
    Point-to-point ICP over (tx, ty, tz, yaw).

    Each iteration transforms the source by the current pose, gates
    nearest-neighbor pairs, solves the closed-form increment and applies it
    on the left (the increment is expressed in the map frame).

    Args:
        source_points: Tilt-compensated scan, shape (N, 3).
        target: Map cloud (M, 3) or a KDTree built on it.
        initial_pose: Initial guess [tx, ty, tz, yaw]. None uses identity.
        max_iterations: Iteration ceiling.
        tolerance: Convergence threshold on ||Δ||.
        max_correspondence_distance: Gating distance (meters).
        min_correspondences: Minimum matched pairs per iteration.

    Returns:
        SolveResult. valid_point_count is the number of gated pairs at the
        returned pose.
    """
    source_points = _check_cloud(source_points, "source_points")
    if isinstance(target, KDTree):
        tree = target
    else:
        target = _check_cloud(target, "target")
        if target.shape[0] == 0:
            raise ValueError("target is empty")
        tree = KDTree(target)

    if initial_pose is None:
        current_pose = np.zeros(4)
    else:
        current_pose = np.asarray(initial_pose, dtype=np.float64).copy()

    status = SolveStatus.MAX_ITERATIONS
    cost_history = []
    iteration = 0

    for iteration in range(1, max_iterations + 1):
        transformed = pose_apply(current_pose, source_points)
        matched_source, matched_target, _ = find_correspondences(
            transformed, tree, max_distance=max_correspondence_distance
        )

        if matched_source.shape[0] < min_correspondences:
            status = SolveStatus.INSUFFICIENT_POINTS
            break

        cost_history.append(compute_icp_residual(matched_source, matched_target))

        delta = align_yaw_svd(matched_source, matched_target)
        if delta is None:
            status = SolveStatus.SINGULAR
            break

        current_pose = pose_compose(delta, current_pose)

        if np.linalg.norm(delta) < tolerance:
            status = SolveStatus.CONVERGED
            break

    matched_source, matched_target, _ = find_correspondences(
        pose_apply(current_pose, source_points), tree, max_distance=max_correspondence_distance
    )
    return SolveResult(
        pose=PoseEstimate.from_array(current_pose),
        converged=status is SolveStatus.CONVERGED,
        valid_point_count=int(matched_source.shape[0]),
        status=status,
        iterations=iteration,
        cost=compute_icp_residual(matched_source, matched_target),
        cost_history=cost_history,
    )


class IcpAligner:
    """
    ICP registration strategy against a fixed map cloud.

    The map KD-tree is built once at construction and shared by every
    ``solve`` call.

    Attributes:
        map_points: Map point cloud, shape (M, 3).
        max_iterations: ICP iteration ceiling.
        tolerance: Convergence threshold on ||Δ||.
        max_correspondence_distance: Pair gating distance (meters).
        min_correspondences: Minimum matched pairs per iteration.
    """

    def __init__(
        self,
        map_points: np.ndarray,
        max_iterations: int = 50,
        tolerance: float = 1e-6,
        max_correspondence_distance: float = 1.0,
        min_correspondences: int = 10,
    ):
        map_points = _check_cloud(map_points, "map_points")
        if map_points.shape[0] == 0:
            raise ValueError("map_points is empty")
        if max_correspondence_distance <= 0:
            raise ValueError(
                f"max_correspondence_distance must be positive, got {max_correspondence_distance}"
            )
        self.map_points = map_points
        self.max_iterations = int(max_iterations)
        self.tolerance = float(tolerance)
        self.max_correspondence_distance = float(max_correspondence_distance)
        self.min_correspondences = int(min_correspondences)
        self._tree = KDTree(map_points)

    def solve(
        self,
        points: np.ndarray,
        initial_pose: Union[PoseEstimate, Sequence[float]],
        fixed_roll: float = 0.0,
        fixed_pitch: float = 0.0,
    ) -> SolveResult:
        """Align ``points`` to the map starting from ``initial_pose``."""
        points = _check_cloud(points, "points")
        if fixed_roll != 0.0 or fixed_pitch != 0.0:
            points = points @ tilt_matrix(fixed_roll, fixed_pitch).T
        if isinstance(initial_pose, PoseEstimate):
            initial_pose = initial_pose.to_array()
        return icp_align(
            points,
            self._tree,
            initial_pose=np.asarray(initial_pose, dtype=np.float64),
            max_iterations=self.max_iterations,
            tolerance=self.tolerance,
            max_correspondence_distance=self.max_correspondence_distance,
            min_correspondences=self.min_correspondences,
        )

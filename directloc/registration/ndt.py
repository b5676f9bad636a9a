"""NDT (Normal Distributions Transform) registration over 4 DOF.

NDT represents the map as a voxel grid where each occupied voxel stores a
Gaussian (mean, covariance) of the map points it contains. A scan is
aligned by minimizing the Mahalanobis distance of each transformed point to
the Gaussian of the voxel it falls in. Compared to ICP there is no
nearest-neighbor search, and compared to the direct distance-field solver
the map model is piecewise Gaussian instead of a dense distance grid.

Mathematical Formulation:
    For a point p_i falling in voxel k with (μ_k, Σ_k) and Σ_k⁻¹ = L_k L_kᵀ:
        e_i(x) = L_kᵀ (p_i(x) - μ_k)             (whitened residual, 3-vector)
        J_i    = L_kᵀ [I₃ | ∂p_i/∂yaw]           (3x4)
        cost   = ½ Σ_i ||e_i||²
    Solved with damped Gauss-Newton like the distance-field solver.

Key functions:
    - build_ndt_map: Voxel grid with per-voxel Gaussians
    - ndt_score: Mean negative log-likelihood of a scan at a pose
    - NdtAligner: Registration strategy object
"""

from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np

from directloc.coords.rotations import tilt_matrix

from .pose3d import pose_apply, wrap_angle
from .types import PoseEstimate, SolveResult, SolveStatus, VoxelGrid

# Covariance eigenvalues are clamped to this fraction of the largest one
MIN_EIGENVALUE_RATIO = 0.01
# Rejected damped steps per iteration before declaring a local minimum
MAX_STEP_RETRIES = 30
MAX_DAMPING = 1e10
_KEY_OFFSET = 1 << 20
_KEY_BASE = 1 << 21


def _voxel_keys(indices: np.ndarray) -> np.ndarray:
    """Pack integer voxel indices (N, 3) into sortable int64 keys."""
    idx = np.clip(indices, -_KEY_OFFSET, _KEY_OFFSET - 1).astype(np.int64) + _KEY_OFFSET
    return (idx[:, 0] * _KEY_BASE + idx[:, 1]) * _KEY_BASE + idx[:, 2]


def _regularize_covariance(cov: np.ndarray) -> Optional[np.ndarray]:
    eigvals, eigvecs = np.linalg.eigh(cov)
    largest = eigvals[-1]
    if largest <= 1e-12:
        return None
    eigvals = np.maximum(eigvals, MIN_EIGENVALUE_RATIO * largest)
    return (eigvecs * eigvals) @ eigvecs.T


def build_ndt_map(
    points: np.ndarray,
    voxel_size: float = 1.0,
    min_points_per_voxel: int = 5,
) -> VoxelGrid:
    """
    Build a 3D NDT map (voxel grid with Gaussian distributions).

    Args:
        points: Map point cloud, shape (N, 3).
        voxel_size: Voxel edge length in meters.
        min_points_per_voxel: Voxels with fewer points get no Gaussian.

    Returns:
        Dictionary mapping voxel index (ix, iy, iz) to a dict with keys:
            - "mean": Mean position, shape (3,).
            - "cov": Regularized covariance, shape (3, 3).
            - "n_points": Number of points in the voxel.

    Raises:
        ValueError: If points is not (N, 3) or voxel_size is not positive.

    Examples:
        >>> rng = np.random.default_rng(0)
        >>> pts = rng.uniform(0.1, 0.9, size=(50, 3))
        >>> ndt_map = build_ndt_map(pts, voxel_size=1.0)
        >>> list(ndt_map.keys())
        [(0, 0, 0)]
        >>> ndt_map[(0, 0, 0)]["n_points"]
        50

    Notes:
        Planar and linear voxels have (near) singular sample covariance.
        Eigenvalues are clamped to a fraction of the largest one so the
        Gaussian stays invertible while keeping its orientation.
    """
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"points must have shape (N, 3), got {points.shape}")
    if voxel_size <= 0:
        raise ValueError(f"voxel_size must be positive, got {voxel_size}")

    points = points[np.all(np.isfinite(points), axis=1)]
    if points.shape[0] == 0:
        return {}

    voxel_indices = np.floor(points / voxel_size).astype(np.int64)
    unique_indices, inverse = np.unique(voxel_indices, axis=0, return_inverse=True)
    inverse = inverse.reshape(-1)

    ndt_map: VoxelGrid = {}
    for k, voxel_index in enumerate(unique_indices):
        voxel_points = points[inverse == k]
        if voxel_points.shape[0] < min_points_per_voxel:
            continue

        mean = np.mean(voxel_points, axis=0)
        centered = voxel_points - mean
        cov = _regularize_covariance((centered.T @ centered) / voxel_points.shape[0])
        if cov is None:
            continue

        ndt_map[tuple(int(i) for i in voxel_index)] = {
            "mean": mean,
            "cov": cov,
            "n_points": int(voxel_points.shape[0]),
        }

    return ndt_map


def ndt_score(
    source_points: np.ndarray,
    ndt_map: VoxelGrid,
    pose: np.ndarray,
    voxel_size: float = 1.0,
) -> float:
    """
    Mean negative log-likelihood of a scan under the NDT map.

        score = -(1/K) Σ_i log N(p_i; μ_k, Σ_k)   (constant terms dropped)

    Points in voxels without a Gaussian are ignored; if none match, a large
    penalty (1e6) is returned.

    Examples:
        >>> rng = np.random.default_rng(1)
        >>> pts = rng.normal([0.5, 0.5, 0.5], 0.1, size=(200, 3))
        >>> ndt_map = build_ndt_map(pts, voxel_size=1.0)
        >>> good = ndt_score(pts, ndt_map, np.zeros(4))
        >>> bad = ndt_score(pts, ndt_map, np.array([0.2, 0.0, 0.0, 0.0]))
        >>> bool(good < bad)
        True
    """
    if source_points.shape[0] == 0:
        return 0.0

    transformed = pose_apply(pose, source_points)
    voxel_indices = np.floor(transformed / voxel_size).astype(np.int64)

    total_score = 0.0
    n_matched = 0
    for point, index in zip(transformed, voxel_indices):
        voxel = ndt_map.get(tuple(int(i) for i in index))
        if voxel is None:
            continue
        diff = point - voxel["mean"]
        mahalanobis = diff @ np.linalg.solve(voxel["cov"], diff)
        _, logdet = np.linalg.slogdet(voxel["cov"])
        total_score += 0.5 * mahalanobis + 0.5 * logdet
        n_matched += 1

    if n_matched == 0:
        return 1e6
    return total_score / n_matched


class NdtAligner:
    """
    NDT registration strategy against a fixed map cloud.

    The voxel Gaussians are computed once at construction. Per-voxel
    whitening factors L (Σ⁻¹ = L Lᵀ) are stacked into arrays so each
    evaluation is vectorized over the scan.

    Attributes:
        voxel_size: Voxel edge length (meters).
        ndt_map: The voxel Gaussians (see ``build_ndt_map``).
        max_iterations: Iteration ceiling.
        tolerance: Convergence threshold on ||Δ||.
        min_matched_points: Minimum points falling in occupied voxels.
        max_translation_step: Cap on ||Δt|| per iteration (meters).
        max_yaw_step: Cap on |Δyaw| per iteration (radians).
        damping: Initial Levenberg-Marquardt damping.
    """

    def __init__(
        self,
        map_points: np.ndarray,
        voxel_size: float = 1.0,
        min_points_per_voxel: int = 5,
        max_iterations: int = 50,
        tolerance: float = 1e-4,
        min_matched_points: int = 10,
        max_translation_step: float = 0.5,
        max_yaw_step: float = 0.2,
        damping: float = 1e-3,
    ):
        if voxel_size <= 0:
            raise ValueError(f"voxel_size must be positive, got {voxel_size}")
        if min_points_per_voxel < 1:
            raise ValueError(f"min_points_per_voxel must be >= 1, got {min_points_per_voxel}")
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        if tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {tolerance}")
        if min_matched_points < 4:
            raise ValueError(
                f"min_matched_points must be >= 4 (number of parameters), got {min_matched_points}"
            )
        if max_translation_step <= 0 or max_yaw_step <= 0:
            raise ValueError("step caps must be positive")
        if damping < 0:
            raise ValueError(f"damping must be non-negative, got {damping}")

        self.voxel_size = float(voxel_size)
        self.ndt_map = build_ndt_map(map_points, voxel_size, min_points_per_voxel)
        if not self.ndt_map:
            raise ValueError("NDT map has no voxel with enough points")
        self.max_iterations = int(max_iterations)
        self.tolerance = float(tolerance)
        self.min_matched_points = int(min_matched_points)
        self.max_translation_step = float(max_translation_step)
        self.max_yaw_step = float(max_yaw_step)
        self.damping = float(damping)

        keys = np.array(list(self.ndt_map.keys()), dtype=np.int64)
        packed = _voxel_keys(keys)
        order = np.argsort(packed)
        voxels = list(self.ndt_map.values())
        self._keys = packed[order]
        self._means = np.array([voxels[i]["mean"] for i in order])
        self._whiten = np.array(
            [np.linalg.cholesky(np.linalg.inv(voxels[i]["cov"])) for i in order]
        )

    def __len__(self) -> int:
        return len(self.ndt_map)

    def _lookup(self, world: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Voxel slot per point and a mask of points in occupied voxels."""
        keys = _voxel_keys(np.floor(world / self.voxel_size))
        slots = np.searchsorted(self._keys, keys)
        slots = np.minimum(slots, self._keys.shape[0] - 1)
        return slots, self._keys[slots] == keys

    def _evaluate(self, q: np.ndarray, x: np.ndarray) -> Dict[str, object]:
        c, s = np.cos(x[3]), np.sin(x[3])
        rx = c * q[:, 0] - s * q[:, 1]
        ry = s * q[:, 0] + c * q[:, 1]
        world = np.column_stack([rx + x[0], ry + x[1], q[:, 2] + x[2]])

        slots, matched = self._lookup(world)
        slots = slots[matched]
        n = int(slots.shape[0])
        if n == 0:
            return {"cost": 0.0, "JtJ": np.zeros((4, 4)), "Jtr": np.zeros(4), "n": 0}

        Lt = np.transpose(self._whiten[slots], (0, 2, 1))
        e = np.einsum("nij,nj->ni", Lt, world[matched] - self._means[slots])

        dp = np.zeros((n, 3, 4))
        dp[:, 0, 0] = dp[:, 1, 1] = dp[:, 2, 2] = 1.0
        dp[:, 0, 3] = -ry[matched]
        dp[:, 1, 3] = rx[matched]
        J = np.einsum("nij,njk->nik", Lt, dp)

        return {
            "cost": 0.5 * float(np.sum(e ** 2)),
            "JtJ": np.einsum("nij,nik->jk", J, J),
            "Jtr": np.einsum("nij,ni->j", J, e),
            "n": n,
        }

    def solve(
        self,
        points: np.ndarray,
        initial_pose: Union[PoseEstimate, Sequence[float]],
        fixed_roll: float = 0.0,
        fixed_pitch: float = 0.0,
    ) -> SolveResult:
        """
        Align ``points`` to the NDT map starting from ``initial_pose``.

        Returns:
            SolveResult; valid_point_count is the number of points falling in
            occupied voxels at the returned pose.
        """
        q = np.asarray(points, dtype=np.float64)
        if q.ndim != 2 or q.shape[1] != 3:
            raise ValueError(f"points must have shape (N, 3), got {q.shape}")
        q = q[np.all(np.isfinite(q), axis=1)]
        if fixed_roll != 0.0 or fixed_pitch != 0.0:
            q = q @ tilt_matrix(fixed_roll, fixed_pitch).T
        if isinstance(initial_pose, PoseEstimate):
            x = initial_pose.to_array()
        else:
            x = PoseEstimate.from_array(np.asarray(initial_pose, dtype=np.float64)).to_array()

        current = self._evaluate(q, x)
        cost_history = [current["cost"]]
        if current["n"] < self.min_matched_points:
            return self._result(x, current, SolveStatus.INSUFFICIENT_POINTS, 0, cost_history)

        mu = self.damping
        status = SolveStatus.MAX_ITERATIONS
        iteration = 0

        for iteration in range(1, self.max_iterations + 1):
            eigvals = np.linalg.eigvalsh(current["JtJ"])
            if eigvals[-1] <= 1e-12 or eigvals[0] <= eigvals[-1] * 1e-10:
                status = SolveStatus.SINGULAR
                break

            accepted = False
            delta = np.zeros(4)
            for _ in range(MAX_STEP_RETRIES):
                try:
                    delta = np.linalg.solve(current["JtJ"] + mu * np.eye(4), -current["Jtr"])
                except np.linalg.LinAlgError:
                    status = SolveStatus.SINGULAR
                    break
                delta = self._limit_step(delta)
                x_new = x + delta
                x_new[3] = wrap_angle(x_new[3])
                candidate = self._evaluate(q, x_new)
                if candidate["n"] >= self.min_matched_points and candidate["cost"] <= current["cost"]:
                    x, current = x_new, candidate
                    cost_history.append(current["cost"])
                    mu = max(mu / 3.0, 1e-9)
                    accepted = True
                    break
                mu = max(mu, 1e-9) * 4.0
                if mu > MAX_DAMPING:
                    break

            if status is SolveStatus.SINGULAR:
                break
            if not accepted:
                # No damped step improves the fit: local minimum
                status = SolveStatus.CONVERGED
                break
            if np.linalg.norm(delta) < self.tolerance:
                status = SolveStatus.CONVERGED
                break

        return self._result(x, current, status, iteration, cost_history)

    def _limit_step(self, delta: np.ndarray) -> np.ndarray:
        scale = 1.0
        t_norm = np.linalg.norm(delta[:3])
        if t_norm > self.max_translation_step:
            scale = min(scale, self.max_translation_step / t_norm)
        if abs(delta[3]) > self.max_yaw_step:
            scale = min(scale, self.max_yaw_step / abs(delta[3]))
        return delta * scale

    @staticmethod
    def _result(x, current, status, iterations, cost_history) -> SolveResult:
        return SolveResult(
            pose=PoseEstimate.from_array(x),
            converged=status is SolveStatus.CONVERGED,
            valid_point_count=int(current["n"]),
            status=status,
            iterations=iterations,
            cost=float(current["cost"]),
            cost_history=cost_history,
        )

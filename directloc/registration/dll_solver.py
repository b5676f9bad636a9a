"""Direct distance-field pose solver (DLL).

This module registers a LiDAR point cloud directly against a precomputed
3D distance field. No correspondences or features are extracted: every
point contributes the interpolated distance at its transformed position as
a residual, and the pose minimizing the sum of squared distances is found
with damped Gauss-Newton iterations over the 4 parameters (tx, ty, tz, yaw).

Mathematical Formulation:
    For points q_i (sensor frame, tilt removed with fixed roll/pitch):
        p_i(x) = Rz(yaw) q_i + t
        r_i(x) = D(p_i(x))                     (interpolated distance)
    Jacobian row per point:
        ∂r_i/∂t   = ∇D(p_i)
        ∂r_i/∂yaw = ∇D(p_i) · [-(p_i,y - t_y), p_i,x - t_x, 0]
    Damped normal equations (Levenberg-Marquardt form):
        (JᵗWJ + μI) Δ = -JᵗW r
    The step is capped in translation and yaw before it is tried, and only
    steps that do not increase the objective are accepted, so the cost is
    non-increasing across iterations.

Degenerate outcomes are reported through ``SolveStatus`` and never raised:
    - Too few in-bounds points → INSUFFICIENT_POINTS, best pose so far.
    - Singular / ill-conditioned JᵗWJ → SINGULAR, pre-iteration pose.
    - Iteration cap reached → MAX_ITERATIONS, best pose found.

The solver keeps no state between calls; ``solve`` is a pure function of
(points, initial pose, fixed roll/pitch, field).
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Literal, Optional, Sequence, Union

import numpy as np

from directloc.coords.rotations import tilt_matrix
from directloc.grid import DistanceField

from .pose3d import wrap_angle
from .types import PoseEstimate, SolveResult, SolveStatus

LossName = Literal["l2", "huber", "cauchy"]

# Smallest chunk handed to a worker thread when max_threads > 1
MIN_POINTS_PER_THREAD = 2048
MAX_DAMPING = 1e10


@dataclass
class _NormalEquations:
    """Per-pose accumulation of the Gauss-Newton system."""

    cost: float
    JtJ: np.ndarray
    Jtr: np.ndarray
    n_valid: int

    def __add__(self, other: "_NormalEquations") -> "_NormalEquations":
        return _NormalEquations(
            cost=self.cost + other.cost,
            JtJ=self.JtJ + other.JtJ,
            Jtr=self.Jtr + other.Jtr,
            n_valid=self.n_valid + other.n_valid,
        )


def _robust_cost(r: np.ndarray, loss: str, c: float) -> np.ndarray:
    """Per-residual loss ρ(r), equal to r² for the L2 loss."""
    if loss == "l2":
        return r ** 2
    abs_r = np.abs(r)
    if loss == "huber":
        return np.where(abs_r <= c, r ** 2, 2.0 * c * abs_r - c ** 2)
    if loss == "cauchy":
        return c ** 2 * np.log1p((r / c) ** 2)
    raise ValueError(f"Unknown loss function: {loss}")


def _robust_weights(r: np.ndarray, loss: str, c: float) -> np.ndarray:
    """IRLS weights w = ρ'(r) / (2r) for the supported losses."""
    if loss == "l2":
        return np.ones_like(r)
    u = r / c
    if loss == "huber":
        abs_u = np.abs(u)
        return np.where(abs_u <= 1.0, 1.0, 1.0 / np.maximum(abs_u, 1e-12))
    if loss == "cauchy":
        return 1.0 / (1.0 + u ** 2)
    raise ValueError(f"Unknown loss function: {loss}")


class PoseSolver:
    """
    Damped Gauss-Newton registration against a DistanceField.

    Attributes:
        field: The (shared, read-only) distance field.
        max_iterations: Iteration ceiling; the only timeout mechanism.
        tolerance: Convergence threshold on ‖Δ‖ with Δ = [dtx, dty, dtz, dyaw].
        min_valid_points: Minimum in-bounds points for a usable iteration.
        max_translation_step: Cap on ‖Δt‖ per iteration (meters).
        max_yaw_step: Cap on |Δyaw| per iteration (radians).
        damping: Initial Levenberg-Marquardt damping μ.
        singular_threshold: Condition number of JᵗWJ above which the system
                            is treated as singular.
        loss: Robust loss ("l2", "huber", "cauchy").
        loss_param: Scale of the robust loss (meters).
        max_threads: Worker threads for per-point evaluation (1 = serial).

    Example:
        >>> import numpy as np
        >>> from directloc.grid import DistanceField
        >>> occ = np.zeros((41, 41, 21), dtype=bool)
        >>> occ[:, :, 0] = True; occ[0, :, :] = True; occ[:, 0, :] = True
        >>> field = DistanceField.build(occ, (0, 0, 0), 0.1, occ.shape)
        >>> solver = PoseSolver(field)
        >>> pts = np.array([[0.0, y, z] for y in np.linspace(0.5, 3.5, 8)
        ...                 for z in np.linspace(0.3, 1.5, 4)])
        >>> result = solver.solve(pts, PoseEstimate(0.05, 0.0, 0.0, 0.0))
        >>> result.status
        <SolveStatus.SINGULAR: 'singular'>
    """

    def __init__(
        self,
        field: DistanceField,
        max_iterations: int = 75,
        tolerance: float = 1e-4,
        min_valid_points: int = 10,
        max_translation_step: float = 0.5,
        max_yaw_step: float = 0.2,
        damping: float = 1e-3,
        singular_threshold: float = 1e10,
        loss: LossName = "l2",
        loss_param: float = 0.1,
        max_threads: int = 1,
    ):
        if not isinstance(field, DistanceField):
            raise TypeError(f"field must be a DistanceField, got {type(field).__name__}")
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        if tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {tolerance}")
        if min_valid_points < 4:
            raise ValueError(
                f"min_valid_points must be >= 4 (number of parameters), got {min_valid_points}"
            )
        if max_translation_step <= 0 or max_yaw_step <= 0:
            raise ValueError("step caps must be positive")
        if damping < 0:
            raise ValueError(f"damping must be non-negative, got {damping}")
        if singular_threshold <= 1:
            raise ValueError(f"singular_threshold must be > 1, got {singular_threshold}")
        if loss not in ("l2", "huber", "cauchy"):
            raise ValueError(f"Unknown loss function: {loss}")
        if loss_param <= 0:
            raise ValueError(f"loss_param must be positive, got {loss_param}")
        if max_threads < 1:
            raise ValueError(f"max_threads must be >= 1, got {max_threads}")

        self.field = field
        self.max_iterations = int(max_iterations)
        self.tolerance = float(tolerance)
        self.min_valid_points = int(min_valid_points)
        self.max_translation_step = float(max_translation_step)
        self.max_yaw_step = float(max_yaw_step)
        self.damping = float(damping)
        self.singular_threshold = float(singular_threshold)
        self.loss = loss
        self.loss_param = float(loss_param)
        self.max_threads = int(max_threads)

    def solve(
        self,
        points: np.ndarray,
        initial_pose: Union[PoseEstimate, Sequence[float]],
        fixed_roll: float = 0.0,
        fixed_pitch: float = 0.0,
    ) -> SolveResult:
        """
        Refine a pose by minimizing interpolated field distances.

        Args:
            points: Sensor/base-frame points, shape (N, 3). Range filtering is
                    the caller's job; points leaving the field are skipped.
            initial_pose: Initial guess [tx, ty, tz, yaw] or PoseEstimate.
            fixed_roll: Roll held fixed during optimization (0 when the
                        cloud is already tilt-compensated).
            fixed_pitch: Pitch held fixed during optimization.

        Returns:
            SolveResult with the refined pose and outcome flags.

        Raises:
            ValueError: If points or initial_pose are malformed.
        """
        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ValueError(f"points must have shape (N, 3), got {points.shape}")
        if isinstance(initial_pose, PoseEstimate):
            x = initial_pose.to_array()
        else:
            x = PoseEstimate.from_array(np.asarray(initial_pose, dtype=np.float64)).to_array()

        points = points[np.all(np.isfinite(points), axis=1)]
        if fixed_roll != 0.0 or fixed_pitch != 0.0:
            points = points @ tilt_matrix(fixed_roll, fixed_pitch).T

        if self.max_threads > 1 and points.shape[0] >= 2 * MIN_POINTS_PER_THREAD:
            n_chunks = min(self.max_threads, points.shape[0] // MIN_POINTS_PER_THREAD)
            with ThreadPoolExecutor(max_workers=n_chunks) as executor:
                return self._optimize(points, x, executor, n_chunks)
        return self._optimize(points, x, None, 1)

    def _optimize(
        self,
        q: np.ndarray,
        x: np.ndarray,
        executor: Optional[ThreadPoolExecutor],
        n_chunks: int,
    ) -> SolveResult:
        chunks = np.array_split(q, n_chunks) if executor is not None else [q]

        def evaluate(pose: np.ndarray) -> _NormalEquations:
            if executor is None:
                return self._accumulate(chunks[0], pose)
            # Summation order across chunks is not fixed bit-for-bit
            parts = executor.map(lambda chunk: self._accumulate(chunk, pose), chunks)
            total = None
            for part in parts:
                total = part if total is None else total + part
            return total

        current = evaluate(x)
        cost_history = [current.cost]

        if current.n_valid < self.min_valid_points:
            return self._result(x, current, SolveStatus.INSUFFICIENT_POINTS, 0, cost_history)

        mu = self.damping
        nu = 2.0
        status = SolveStatus.MAX_ITERATIONS
        iteration = 0

        for iteration in range(1, self.max_iterations + 1):
            if self._is_singular(current.JtJ):
                status = SolveStatus.SINGULAR
                break

            while True:
                try:
                    delta = np.linalg.solve(current.JtJ + mu * np.eye(4), -current.Jtr)
                except np.linalg.LinAlgError:
                    status = SolveStatus.SINGULAR
                    break
                delta = self._limit_step(delta)

                x_new = x + delta
                x_new[3] = wrap_angle(x_new[3])
                candidate = evaluate(x_new)

                if candidate.n_valid < self.min_valid_points:
                    status = SolveStatus.INSUFFICIENT_POINTS
                    break

                # Gain ratio: actual vs. predicted decrease of ½ Σ ρ(r)
                predicted = -(current.Jtr @ delta + 0.5 * delta @ current.JtJ @ delta)
                actual = current.cost - candidate.cost
                gain_ratio = actual / predicted if predicted > 1e-15 else 0.0

                if gain_ratio > 0 or actual == 0.0:
                    x = x_new
                    current = candidate
                    cost_history.append(current.cost)
                    mu = mu * max(1.0 / 3.0, 1.0 - (2.0 * gain_ratio - 1.0) ** 3)
                    nu = 2.0
                    break

                mu = max(mu, 1e-9) * nu
                nu = 2.0 * nu
                if mu > MAX_DAMPING:
                    break

            if status in (SolveStatus.SINGULAR, SolveStatus.INSUFFICIENT_POINTS):
                break

            if np.linalg.norm(delta) < self.tolerance:
                status = SolveStatus.CONVERGED
                break

        return self._result(x, current, status, iteration, cost_history)

    def _accumulate(self, q: np.ndarray, x: np.ndarray) -> _NormalEquations:
        """Residuals, Jacobian and normal-equation terms for one pose."""
        tx, ty, tz, yaw = x
        c = np.cos(yaw)
        s = np.sin(yaw)
        rx = c * q[:, 0] - s * q[:, 1]
        ry = s * q[:, 0] + c * q[:, 1]
        world = np.column_stack([rx + tx, ry + ty, q[:, 2] + tz])

        distances, gradients, valid = self.field.query_batch(world)
        r = distances[valid]
        g = gradients[valid]
        n_valid = int(r.shape[0])
        if n_valid == 0:
            return _NormalEquations(0.0, np.zeros((4, 4)), np.zeros(4), 0)

        J = np.empty((n_valid, 4))
        J[:, :3] = g
        # ∂p/∂yaw = [-ry, rx, 0] (rotated point, before translation)
        J[:, 3] = -g[:, 0] * ry[valid] + g[:, 1] * rx[valid]

        w = _robust_weights(r, self.loss, self.loss_param)
        Jw = J * w[:, None]
        cost = 0.5 * float(np.sum(_robust_cost(r, self.loss, self.loss_param)))
        return _NormalEquations(cost, J.T @ Jw, Jw.T @ r, n_valid)

    def _is_singular(self, JtJ: np.ndarray) -> bool:
        eigvals = np.linalg.eigvalsh(JtJ)
        largest = eigvals[-1]
        if not np.all(np.isfinite(eigvals)) or largest <= 1e-12:
            return True
        return eigvals[0] <= largest / self.singular_threshold

    def _limit_step(self, delta: np.ndarray) -> np.ndarray:
        """Scale the step uniformly so both caps hold (direction preserved)."""
        scale = 1.0
        t_norm = np.linalg.norm(delta[:3])
        if t_norm > self.max_translation_step:
            scale = min(scale, self.max_translation_step / t_norm)
        if abs(delta[3]) > self.max_yaw_step:
            scale = min(scale, self.max_yaw_step / abs(delta[3]))
        return delta * scale

    @staticmethod
    def _result(
        x: np.ndarray,
        eq: _NormalEquations,
        status: SolveStatus,
        iterations: int,
        cost_history: list,
    ) -> SolveResult:
        return SolveResult(
            pose=PoseEstimate.from_array(x),
            converged=status is SolveStatus.CONVERGED,
            valid_point_count=eq.n_valid,
            status=status,
            iterations=iterations,
            cost=eq.cost,
            cost_history=cost_history,
        )

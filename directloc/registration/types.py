"""Type definitions for pose registration.

This module defines the data structures shared by every alignment
strategy (direct distance-field solver, ICP, NDT).

Key types:
    - PoseEstimate: 4-DOF pose [tx, ty, tz, yaw]
    - SolveStatus: Outcome of a registration cycle
    - SolveResult: Pose plus the structured outcome flags
    - AlignMethod: Strategy selector (DLL / NDT / ICP)
    - VoxelGrid: Type alias for NDT voxel maps
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Tuple

import numpy as np


PointCloud3D = np.ndarray  # Shape (N, 3), points in 3D space (meters)
VoxelGrid = Dict[Tuple[int, int, int], Dict[str, np.ndarray]]  # Voxel key -> stats dict


@dataclass(frozen=True)
class PoseEstimate:
    """
    4-DOF pose estimated by the registration strategies.

    Roll and pitch are not part of the estimate: they are well observed by
    gravity-aligned sensing and are supplied by the caller (IMU or prior),
    then held fixed during optimization.

    Attributes:
        tx: Position along the map x-axis (meters).
        ty: Position along the map y-axis (meters).
        tz: Position along the map z-axis (meters).
        yaw: Heading (radians), counter-clockwise about +z.

    Examples:
        >>> p = PoseEstimate(tx=1.0, ty=2.0, tz=0.5, yaw=0.1)
        >>> p.to_array()
        array([1. , 2. , 0.5, 0.1])
        >>> PoseEstimate.from_array(np.zeros(4)) == PoseEstimate.identity()
        True
    """

    tx: float
    ty: float
    tz: float
    yaw: float

    def __post_init__(self) -> None:
        """Validate pose values after initialization."""
        for name in ("tx", "ty", "tz", "yaw"):
            value = getattr(self, name)
            if not np.isfinite(value):
                raise ValueError(f"{name} must be finite, got {value}")

    def to_array(self) -> np.ndarray:
        """Pose as array [tx, ty, tz, yaw], shape (4,)."""
        return np.array([self.tx, self.ty, self.tz, self.yaw], dtype=np.float64)

    @property
    def translation(self) -> np.ndarray:
        """Translation [tx, ty, tz], shape (3,)."""
        return np.array([self.tx, self.ty, self.tz], dtype=np.float64)

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "PoseEstimate":
        """
        Create PoseEstimate from array [tx, ty, tz, yaw].

        Raises:
            ValueError: If array does not have shape (4,).
        """
        arr = np.asarray(arr, dtype=np.float64)
        if arr.shape != (4,):
            raise ValueError(f"Array must have shape (4,), got {arr.shape}")
        return cls(tx=float(arr[0]), ty=float(arr[1]), tz=float(arr[2]), yaw=float(arr[3]))

    @classmethod
    def identity(cls) -> "PoseEstimate":
        """Pose at the origin with zero heading."""
        return cls(tx=0.0, ty=0.0, tz=0.0, yaw=0.0)

    def __repr__(self) -> str:
        """Readable string representation."""
        return (
            f"PoseEstimate(tx={self.tx:.4f}, ty={self.ty:.4f}, "
            f"tz={self.tz:.4f}, yaw={self.yaw:.4f})"
        )


class SolveStatus(Enum):
    """
    Outcome of one registration cycle.

    Attributes:
        CONVERGED: Update magnitude fell below the convergence threshold.
        MAX_ITERATIONS: Iteration cap reached first (non-convergence). The
                        best pose found is returned; acceptance is caller
                        policy.
        INSUFFICIENT_POINTS: Too few in-bounds points / correspondences.
                             Best pose so far, low confidence.
        SINGULAR: Singular or ill-conditioned normal equations. The
                  pre-iteration pose is returned; the caller should keep its
                  previous global estimate.
    """

    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    INSUFFICIENT_POINTS = "insufficient_points"
    SINGULAR = "singular"


@dataclass
class SolveResult:
    """
    Result container shared by all alignment strategies.

    Attributes:
        pose: Refined pose (returned by value).
        converged: True only for SolveStatus.CONVERGED.
        valid_point_count: Number of points that contributed at the returned
                           pose (in-bounds points for the distance field,
                           matched points for ICP / NDT).
        status: Structured outcome flag.
        iterations: Number of iterations executed.
        cost: Final objective value.
        cost_history: Objective after each accepted iteration, starting with
                      the initial pose.
    """

    pose: PoseEstimate
    converged: bool
    valid_point_count: int
    status: SolveStatus
    iterations: int = 0
    cost: float = float("nan")
    cost_history: List[float] = field(default_factory=list)

    @property
    def degenerate(self) -> bool:
        """True for insufficient points or a singular system."""
        return self.status in (SolveStatus.INSUFFICIENT_POINTS, SolveStatus.SINGULAR)

    @property
    def low_confidence(self) -> bool:
        """True when the pose is the best found before running out of points."""
        return self.status is SolveStatus.INSUFFICIENT_POINTS

    @property
    def failed(self) -> bool:
        """True when the update must not be applied (singular system)."""
        return self.status is SolveStatus.SINGULAR


class AlignMethod(Enum):
    """Registration strategy selector (values match the node's align_method)."""

    DLL = 1
    NDT = 2
    ICP = 3

    @classmethod
    def parse(cls, value) -> "AlignMethod":
        """
        Accept an AlignMethod, its integer code or its name (case-insensitive).

        Raises:
            ValueError: If the value names no strategy.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown align method: {value!r}") from None
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise ValueError(f"Unknown align method: {value!r}") from None

"""Localization frontend: state, gating and dispatch to a registration strategy.

The localizer maintains the map→odom correction so that

    map_from_base = map_from_odom · odom_from_base

stays aligned with the map. Every registration cycle:
    1. Composes the initial guess map_from_odom · odom.
    2. Takes roll/pitch from the guess (or from the IMU when enabled).
    3. Range-filters, downsamples and tilt-compensates the cloud.
    4. Calls the configured strategy (DLL, NDT or ICP) for (tx, ty, tz, yaw).
    5. Rebuilds map_from_odom = T(roll, pitch, yaw, t) · odom⁻¹.

The localizer performs no I/O. The caller feeds odometry transforms, IMU
orientations, point clouds and timestamps. State lives in an immutable
``LocalizationState`` value that is replaced on every transition.
"""

import warnings
from dataclasses import dataclass, replace
from typing import Optional, Union

import numpy as np

from directloc.coords.rotations import euler_to_rotation_matrix, quat_to_euler, rotation_matrix_to_euler
from directloc.grid import DistanceField
from directloc.registration.pose3d import pose_from_matrix, pose_to_matrix
from directloc.registration.strategies import Aligner, make_aligner
from directloc.registration.types import PoseEstimate, SolveResult

from .config import LocalizerConfig
from .gating import GateDecision, UpdateGate
from .preprocess import filter_range, tilt_compensate, voxel_downsample

TransformLike = Union[np.ndarray, PoseEstimate]


def as_transform(pose: TransformLike) -> np.ndarray:
    """
    Return a 4x4 homogeneous transform from a 4x4 matrix, a pose array
    [x, y, z, yaw] or a PoseEstimate.

    Raises:
        ValueError: If the input has any other shape.
    """
    if isinstance(pose, PoseEstimate):
        return pose_to_matrix(pose)
    arr = np.asarray(pose, dtype=np.float64)
    if arr.shape == (4, 4):
        return arr.copy()
    if arr.shape == (4,):
        return pose_to_matrix(arr)
    raise ValueError(f"pose must be a (4, 4) transform or [x, y, z, yaw], got shape {arr.shape}")


def _compose_transform(roll: float, pitch: float, yaw: float, translation) -> np.ndarray:
    T = np.eye(4)
    T[:3, :3] = euler_to_rotation_matrix(roll, pitch, yaw)
    T[:3, 3] = translation
    return T


@dataclass(frozen=True)
class LocalizationState:
    """
    Snapshot of the localizer state, passed by value.

    Attributes:
        map_from_odom: Correction transform (4x4) from odometry to map frame.
        last_odom: Odometry transform (4x4) at the last registration.
        roll: Current roll (radians), from IMU or prior.
        pitch: Current pitch (radians), from IMU or prior.
        imu_yaw: Last yaw reported by the IMU (informational).
        initialized: True once an initial pose was set.
        update_pending: True when the gate has admitted a registration cycle.
        last_update_time: Time of the last admitted update (seconds).
    """

    map_from_odom: np.ndarray
    last_odom: np.ndarray
    roll: float = 0.0
    pitch: float = 0.0
    imu_yaw: float = 0.0
    initialized: bool = False
    update_pending: bool = False
    last_update_time: float = 0.0

    def __post_init__(self) -> None:
        for name in ("map_from_odom", "last_odom"):
            arr = np.array(getattr(self, name), dtype=np.float64)
            if arr.shape != (4, 4):
                raise ValueError(f"{name} must be a (4, 4) transform, got shape {arr.shape}")
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    @classmethod
    def uninitialized(cls) -> "LocalizationState":
        return cls(map_from_odom=np.eye(4), last_odom=np.eye(4))

    def map_pose(self, odom: TransformLike) -> np.ndarray:
        """Map-frame transform (4x4) of the base for a given odometry."""
        return self.map_from_odom @ as_transform(odom)


@dataclass(frozen=True)
class LocalizationUpdate:
    """
    Outcome of one registration cycle.

    Attributes:
        state: State after the cycle.
        result: Raw strategy result.
        pose: Map-frame pose [x, y, z, yaw] after the cycle.
        applied: False when a degenerate solve left the correction untouched.
        n_points: Points handed to the strategy after preprocessing.
    """

    state: LocalizationState
    result: SolveResult
    pose: np.ndarray
    applied: bool
    n_points: int


class Localizer:
    """
    Map-based localizer driving one registration strategy.

    Attributes:
        config: Localizer configuration.
        aligner: The strategy object (PoseSolver, NdtAligner or IcpAligner).
        gate: Update gate built from ``config.gate``.
        state: Current LocalizationState.

    Example:
        >>> loc = Localizer(LocalizerConfig(), field=field)    # doctest: +SKIP
        >>> loc.set_initial_pose([1.0, 2.0, 0.0, 0.3], odom=np.eye(4), t=0.0)  # doctest: +SKIP
        >>> if loc.check_update(odom, t):                        # doctest: +SKIP
        ...     update = loc.process_cloud(scan, odom)
    """

    def __init__(
        self,
        config: Optional[LocalizerConfig] = None,
        field: Optional[DistanceField] = None,
        map_points: Optional[np.ndarray] = None,
        aligner: Optional[Aligner] = None,
    ):
        self.config = config if config is not None else LocalizerConfig()
        if aligner is None:
            aligner = make_aligner(
                self.config.method,
                field=field,
                map_points=map_points,
                **self.config.strategy_params(),
            )
        self.aligner = aligner
        self.gate = UpdateGate(self.config.gate)
        self.state = LocalizationState.uninitialized()

        # A non-zero configured pose initializes with the odometry origin
        if np.any(self.config.initial_pose != 0.0):
            self.set_initial_pose(self.config.initial_pose, odom=np.eye(4), t=0.0)

    @property
    def initialized(self) -> bool:
        return self.state.initialized

    def set_initial_pose(
        self,
        pose: TransformLike,
        odom: TransformLike,
        t: float = 0.0,
        frame_id: Optional[str] = None,
    ) -> bool:
        """
        (Re)initialize the map→odom correction from a map-frame pose.

        Only x, y, z and yaw of ``pose`` are used. ``initial_z_offset`` is
        added to z. Roll and pitch come from the IMU when ``use_imu`` is set,
        otherwise from the odometry transform.

        Args:
            pose: Initial base pose in the map frame ([x, y, z, yaw], 4x4 or
                  PoseEstimate).
            odom: Odometry transform (odom→base) at the same instant.
            t: Current time (seconds).
            frame_id: Frame the pose is expressed in. Poses in a frame other
                      than ``global_frame_id`` are ignored with a warning.

        Returns:
            True if the pose was applied.
        """
        if frame_id is not None and frame_id != self.config.global_frame_id:
            warnings.warn(
                f"Ignoring initial pose in frame '{frame_id}'; initial poses must be "
                f"in the global frame '{self.config.global_frame_id}'",
                RuntimeWarning,
                stacklevel=2,
            )
            return False

        odom_tf = as_transform(odom)
        x, y, z, yaw = pose_from_matrix(as_transform(pose))
        if self.config.use_imu:
            roll, pitch = self.state.roll, self.state.pitch
        else:
            roll, pitch, _ = rotation_matrix_to_euler(odom_tf[:3, :3])

        global_tf = _compose_transform(
            roll, pitch, yaw, [x, y, z + self.config.initial_z_offset]
        )
        self.state = replace(
            self.state,
            map_from_odom=global_tf @ np.linalg.inv(odom_tf),
            last_odom=odom_tf,
            roll=float(roll),
            pitch=float(pitch),
            initialized=True,
            update_pending=False,
            last_update_time=float(t),
        )
        return True

    def imu_update(self, roll: float, pitch: float, yaw: float) -> bool:
        """
        Store the IMU attitude. Readings containing NaN are rejected and the
        previous attitude is kept.

        Returns:
            True if the reading was accepted.
        """
        if np.isnan(roll) or np.isnan(pitch) or np.isnan(yaw):
            warnings.warn("Rejected IMU orientation containing NaN", RuntimeWarning, stacklevel=2)
            return False
        self.state = replace(
            self.state, roll=float(roll), pitch=float(pitch), imu_yaw=float(yaw)
        )
        return True

    def imu_update_quaternion(self, q: np.ndarray) -> bool:
        """IMU update from an orientation quaternion [qw, qx, qy, qz]."""
        roll, pitch, yaw = quat_to_euler(np.asarray(q, dtype=np.float64))
        return self.imu_update(roll, pitch, yaw)

    def check_update(self, odom: TransformLike, t: float) -> GateDecision:
        """
        Run the gate against the odometry at the last registration.

        An admitted update marks the state as pending until ``process_cloud``
        consumes it. Before initialization nothing is ever due.
        """
        if not self.state.initialized:
            return GateDecision(due=False, distance=0.0, angle=0.0, elapsed=0.0)

        decision = self.gate.check(
            pose_from_matrix(self.state.last_odom),
            self.state.last_update_time,
            pose_from_matrix(as_transform(odom)),
            t,
        )
        if decision.due:
            self.state = replace(self.state, update_pending=True, last_update_time=float(t))
        return decision

    def prepare_cloud(self, points: np.ndarray, roll: float, pitch: float) -> np.ndarray:
        """Range filter, optional downsampling and tilt compensation."""
        pre = self.config.preprocess
        points = filter_range(points, pre.min_range, pre.max_range)
        if pre.downsample_voxel > 0 and points.shape[0] > 0:
            points = voxel_downsample(points, pre.downsample_voxel)
        return tilt_compensate(points, roll, pitch)

    def process_cloud(
        self,
        points: np.ndarray,
        odom: TransformLike,
        force: bool = False,
    ) -> Optional[LocalizationUpdate]:
        """
        Run one registration cycle if the localizer is initialized and an
        update is pending (or ``force`` is set).

        Args:
            points: Point cloud in the base frame, shape (N, 3).
            odom: Odometry transform (odom→base) at the cloud's timestamp.
            force: Run even if the gate has not admitted an update.

        Returns:
            LocalizationUpdate, or None when no cycle was run.
        """
        if not self.state.initialized:
            return None
        if not (self.state.update_pending or force):
            return None

        odom_tf = as_transform(odom)
        map_tf = self.state.map_from_odom @ odom_tf
        guess_roll, guess_pitch, guess_yaw = rotation_matrix_to_euler(map_tf[:3, :3])
        if self.config.use_imu:
            roll, pitch = self.state.roll, self.state.pitch
        else:
            roll, pitch = guess_roll, guess_pitch

        cloud = self.prepare_cloud(points, roll, pitch)
        initial = PoseEstimate(
            tx=float(map_tf[0, 3]), ty=float(map_tf[1, 3]), tz=float(map_tf[2, 3]),
            yaw=float(guess_yaw),
        )
        result = self.aligner.solve(cloud, initial)

        if result.degenerate:
            warnings.warn(
                f"Registration {result.status.value} with {result.valid_point_count} valid "
                f"points; keeping the previous map correction",
                RuntimeWarning,
                stacklevel=2,
            )
            map_from_odom = self.state.map_from_odom
            applied = False
        else:
            global_tf = _compose_transform(roll, pitch, result.pose.yaw, result.pose.translation)
            map_from_odom = global_tf @ np.linalg.inv(odom_tf)
            applied = True

        self.state = replace(
            self.state,
            map_from_odom=map_from_odom,
            last_odom=odom_tf,
            roll=float(roll),
            pitch=float(pitch),
            update_pending=False,
        )
        return LocalizationUpdate(
            state=self.state,
            result=result,
            pose=pose_from_matrix(self.state.map_pose(odom_tf)),
            applied=applied,
            n_points=int(cloud.shape[0]),
        )

    def step(self, points: np.ndarray, odom: TransformLike, t: float) -> Optional[LocalizationUpdate]:
        """Gate check followed by a registration cycle when admitted."""
        self.check_update(odom, t)
        return self.process_cloud(points, odom)

    def map_pose(self, odom: TransformLike) -> np.ndarray:
        """Current map-frame pose [x, y, z, yaw] of the base for ``odom``."""
        return pose_from_matrix(self.state.map_pose(odom))

"""Configuration for the localization frontend.

All parameters of the localizer are grouped in small dataclasses that
validate themselves on construction. A complete configuration round-trips
through JSON with ``save_config`` / ``load_config``.

Defaults follow the reference launch configuration of the DLL node:
update_rate 10 Hz, update_min_d 0.1 m, update_min_a 0.1 rad,
update_min_time 1 s, solver_max_iter 75, align_method 1 (DLL).
"""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np

from directloc.registration.types import AlignMethod

_LOSSES = ("l2", "huber", "cauchy")


@dataclass
class SolverConfig:
    """
    Parameters of the direct distance-field solver (PoseSolver).

    Attributes:
        max_iterations: Iteration ceiling per registration cycle.
        tolerance: Convergence threshold on the update norm.
        min_valid_points: Minimum in-bounds points per iteration.
        max_translation_step: Per-iteration translation cap (meters).
        max_yaw_step: Per-iteration yaw cap (radians).
        damping: Initial Levenberg-Marquardt damping.
        singular_threshold: Condition number treated as singular.
        loss: Robust loss, one of "l2", "huber", "cauchy".
        loss_param: Robust loss scale (meters).
        max_threads: Worker threads for point evaluation.
    """

    max_iterations: int = 75
    tolerance: float = 1e-4
    min_valid_points: int = 10
    max_translation_step: float = 0.5
    max_yaw_step: float = 0.2
    damping: float = 1e-3
    singular_threshold: float = 1e10
    loss: str = "l2"
    loss_param: float = 0.1
    max_threads: int = 1

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {self.tolerance}")
        if self.min_valid_points < 4:
            raise ValueError(f"min_valid_points must be >= 4, got {self.min_valid_points}")
        if self.max_translation_step <= 0 or self.max_yaw_step <= 0:
            raise ValueError("max_translation_step and max_yaw_step must be positive")
        if self.damping < 0:
            raise ValueError(f"damping must be non-negative, got {self.damping}")
        if self.singular_threshold <= 1:
            raise ValueError(f"singular_threshold must be > 1, got {self.singular_threshold}")
        if self.loss not in _LOSSES:
            raise ValueError(f"loss must be one of {_LOSSES}, got {self.loss!r}")
        if self.loss_param <= 0:
            raise ValueError(f"loss_param must be positive, got {self.loss_param}")
        if self.max_threads < 1:
            raise ValueError(f"max_threads must be >= 1, got {self.max_threads}")


@dataclass
class GateConfig:
    """
    Motion/time thresholds deciding when a registration cycle runs.

    Attributes:
        update_rate: Nominal rate of the caller's periodic check (Hz).
        update_min_d: Odometric translation that triggers an update (meters).
        update_min_a: Odometric yaw change that triggers an update (radians).
        update_min_time: Elapsed time that triggers an update (seconds).
    """

    update_rate: float = 10.0
    update_min_d: float = 0.1
    update_min_a: float = 0.1
    update_min_time: float = 1.0

    def __post_init__(self) -> None:
        if self.update_rate <= 0:
            raise ValueError(f"update_rate must be positive, got {self.update_rate}")
        for name in ("update_min_d", "update_min_a", "update_min_time"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")


@dataclass
class PreprocessConfig:
    """
    Point cloud preparation before registration.

    Attributes:
        min_range: Points closer than this to the sensor are dropped (meters).
        max_range: Points farther than this are dropped (meters).
        downsample_voxel: Voxel size for centroid downsampling; 0 disables it.
    """

    min_range: float = 1.0
    max_range: float = 100.0
    downsample_voxel: float = 0.0

    def __post_init__(self) -> None:
        if self.min_range < 0:
            raise ValueError(f"min_range must be non-negative, got {self.min_range}")
        if self.max_range <= self.min_range:
            raise ValueError(
                f"max_range must exceed min_range, got {self.max_range} <= {self.min_range}"
            )
        if self.downsample_voxel < 0:
            raise ValueError(f"downsample_voxel must be non-negative, got {self.downsample_voxel}")


@dataclass
class LocalizerConfig:
    """
    Complete localizer configuration.

    Attributes:
        base_frame_id: Robot base frame name.
        odom_frame_id: Odometry frame name.
        global_frame_id: Map frame name; initial poses must be expressed in it.
        use_imu: Take roll/pitch from IMU updates instead of the prior.
        align_method: Registration strategy ("dll", "ndt", "icp" or 1/2/3).
        initial_x, initial_y, initial_z, initial_a: Initial pose in the map.
        initial_z_offset: Added to every initial z (sensor height offset).
        solver: Direct solver parameters.
        gate: Update gating thresholds.
        preprocess: Point cloud preparation.
        ndt_voxel_size: Voxel size of the NDT map (meters).
        icp_max_correspondence_distance: ICP pair gating distance (meters).

    Examples:
        >>> cfg = LocalizerConfig.from_dict({"align_method": "icp", "gate": {"update_min_d": 0.2}})
        >>> cfg.method
        <AlignMethod.ICP: 3>
        >>> cfg.gate.update_min_d
        0.2
    """

    base_frame_id: str = "base_link"
    odom_frame_id: str = "odom"
    global_frame_id: str = "map"
    use_imu: bool = False
    align_method: Union[str, int] = "dll"
    initial_x: float = 0.0
    initial_y: float = 0.0
    initial_z: float = 0.0
    initial_a: float = 0.0
    initial_z_offset: float = 0.0
    solver: SolverConfig = field(default_factory=SolverConfig)
    gate: GateConfig = field(default_factory=GateConfig)
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    ndt_voxel_size: float = 1.0
    icp_max_correspondence_distance: float = 1.0

    def __post_init__(self) -> None:
        # Normalizes ints, names and enums to a lower-case name
        self.align_method = AlignMethod.parse(self.align_method).name.lower()
        for name in ("initial_x", "initial_y", "initial_z", "initial_a", "initial_z_offset"):
            if not np.isfinite(getattr(self, name)):
                raise ValueError(f"{name} must be finite, got {getattr(self, name)}")
        if not self.global_frame_id:
            raise ValueError("global_frame_id must be a non-empty string")
        if self.ndt_voxel_size <= 0:
            raise ValueError(f"ndt_voxel_size must be positive, got {self.ndt_voxel_size}")
        if self.icp_max_correspondence_distance <= 0:
            raise ValueError(
                "icp_max_correspondence_distance must be positive, "
                f"got {self.icp_max_correspondence_distance}"
            )

    @property
    def method(self) -> AlignMethod:
        """Selected strategy as an AlignMethod."""
        return AlignMethod.parse(self.align_method)

    @property
    def initial_pose(self) -> np.ndarray:
        """Configured initial pose [x, y, z, yaw] (z offset not applied)."""
        return np.array(
            [self.initial_x, self.initial_y, self.initial_z, self.initial_a], dtype=np.float64
        )

    def strategy_params(self) -> Dict[str, Any]:
        """Constructor keyword arguments for the selected strategy."""
        method = self.method
        if method is AlignMethod.DLL:
            return asdict(self.solver)
        if method is AlignMethod.NDT:
            return {
                "voxel_size": self.ndt_voxel_size,
                "max_iterations": self.solver.max_iterations,
                "tolerance": self.solver.tolerance,
                "min_matched_points": self.solver.min_valid_points,
                "max_translation_step": self.solver.max_translation_step,
                "max_yaw_step": self.solver.max_yaw_step,
                "damping": self.solver.damping,
            }
        return {
            "max_iterations": self.solver.max_iterations,
            "tolerance": self.solver.tolerance,
            "max_correspondence_distance": self.icp_max_correspondence_distance,
            "min_correspondences": self.solver.min_valid_points,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Plain (JSON-serializable) dictionary of all parameters."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocalizerConfig":
        """
        Build a configuration from a (possibly partial) dictionary.

        Nested sections ("solver", "gate", "preprocess") may be partial too;
        missing keys take their defaults.

        Raises:
            ValueError: On unknown keys or invalid values.
        """
        data = dict(data)
        nested = {"solver": SolverConfig, "gate": GateConfig, "preprocess": PreprocessConfig}
        kwargs: Dict[str, Any] = {}
        for key, section_cls in nested.items():
            section = data.pop(key, None) or {}
            kwargs[key] = _build_section(section_cls, section, key)
        try:
            return cls(**kwargs, **data)
        except TypeError as exc:
            raise ValueError(f"Invalid localizer configuration: {exc}") from exc


def _build_section(section_cls, values: Dict[str, Any], name: str):
    if isinstance(values, section_cls):
        return values
    try:
        return section_cls(**values)
    except TypeError as exc:
        raise ValueError(f"Invalid '{name}' configuration: {exc}") from exc


def load_config(path: Union[str, Path]) -> LocalizerConfig:
    """
    Load a LocalizerConfig from a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the content is not a valid configuration.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a JSON object: {path}")
    return LocalizerConfig.from_dict(data)


def save_config(config: LocalizerConfig, path: Union[str, Path]) -> None:
    """Write a LocalizerConfig to a JSON file (parent directories created)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)


def default_config(overrides: Optional[Dict[str, Any]] = None) -> LocalizerConfig:
    """Default configuration, optionally with a partial dictionary of overrides."""
    return LocalizerConfig.from_dict(overrides or {})

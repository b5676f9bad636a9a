"""Admission control for registration cycles.

A registration cycle is expensive, so the frontend only runs one when the
platform has moved or turned enough since the last accepted update, or when
too much time has passed. The gate compares the current odometry pose to the
odometry pose recorded at the last update.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from directloc.registration.pose3d import wrap_angle

from .config import GateConfig


@dataclass(frozen=True)
class GateDecision:
    """
    Outcome of one gate check.

    Attributes:
        due: True when a registration cycle should run now.
        distance: Odometric translation since the last update (meters).
        angle: Absolute odometric yaw change since the last update (radians).
        elapsed: Time since the last update (seconds).
    """

    due: bool
    distance: float
    angle: float
    elapsed: float

    def __bool__(self) -> bool:
        return self.due


class UpdateGate:
    """
    Motion/time debounce deciding when an update is due.

    An update is due when any of these exceeds its threshold since the last
    update: odometric translation (``update_min_d``), odometric yaw change
    (``update_min_a``), or elapsed time (``update_min_time``).

    Examples:
        >>> gate = UpdateGate(GateConfig(update_min_d=0.1, update_min_a=0.1, update_min_time=1.0))
        >>> last = np.array([0.0, 0.0, 0.0, 0.0])
        >>> gate.check(last, 0.0, np.array([0.05, 0.0, 0.0, 0.0]), 0.5).due
        False
        >>> gate.check(last, 0.0, np.array([0.2, 0.0, 0.0, 0.0]), 0.5).due
        True
    """

    def __init__(self, config: Optional[GateConfig] = None):
        self.config = config if config is not None else GateConfig()

    @property
    def period(self) -> float:
        """Nominal period of the periodic check (seconds)."""
        return 1.0 / self.config.update_rate

    def check(
        self,
        last_odom: np.ndarray,
        last_time: float,
        odom: np.ndarray,
        t: float,
    ) -> GateDecision:
        """
        Decide whether an update is due.

        Args:
            last_odom: Odometry pose [x, y, z, yaw] at the last update.
            last_time: Time of the last update (seconds).
            odom: Current odometry pose [x, y, z, yaw].
            t: Current time (seconds).

        Returns:
            GateDecision (truthy when due).
        """
        last_odom = np.asarray(last_odom, dtype=np.float64)
        odom = np.asarray(odom, dtype=np.float64)
        distance = float(np.linalg.norm(odom[:3] - last_odom[:3]))
        angle = float(abs(wrap_angle(odom[3] - last_odom[3])))
        elapsed = float(t - last_time)

        due = (
            distance > self.config.update_min_d
            or angle > self.config.update_min_a
            or elapsed > self.config.update_min_time
        )
        return GateDecision(due=due, distance=distance, angle=angle, elapsed=elapsed)

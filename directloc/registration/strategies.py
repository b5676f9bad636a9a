"""Interchangeable registration strategies behind one ``solve`` contract.

The direct distance-field solver, NDT and ICP share no base class. Each
exposes ``solve(points, initial_pose, fixed_roll, fixed_pitch) ->
SolveResult`` and is selected by ``AlignMethod`` through ``make_aligner``.
"""

from typing import Callable, Dict, Optional, Protocol, Sequence, Union

import numpy as np

from directloc.grid import DistanceField

from .dll_solver import PoseSolver
from .ndt import NdtAligner
from .scan_matching import IcpAligner
from .types import AlignMethod, PoseEstimate, SolveResult


class Aligner(Protocol):
    """Structural type satisfied by PoseSolver, NdtAligner and IcpAligner."""

    def solve(
        self,
        points: np.ndarray,
        initial_pose: Union[PoseEstimate, Sequence[float]],
        fixed_roll: float = 0.0,
        fixed_pitch: float = 0.0,
    ) -> SolveResult:
        ...


def _make_dll(field, map_points, **params) -> PoseSolver:
    if field is None:
        raise ValueError("AlignMethod.DLL requires a DistanceField")
    return PoseSolver(field, **params)


def _make_ndt(field, map_points, **params) -> NdtAligner:
    if map_points is None:
        raise ValueError("AlignMethod.NDT requires map_points")
    return NdtAligner(map_points, **params)


def _make_icp(field, map_points, **params) -> IcpAligner:
    if map_points is None:
        raise ValueError("AlignMethod.ICP requires map_points")
    return IcpAligner(map_points, **params)


_FACTORIES: Dict[AlignMethod, Callable[..., Aligner]] = {
    AlignMethod.DLL: _make_dll,
    AlignMethod.NDT: _make_ndt,
    AlignMethod.ICP: _make_icp,
}


def make_aligner(
    method: Union[AlignMethod, str, int],
    field: Optional[DistanceField] = None,
    map_points: Optional[np.ndarray] = None,
    **params,
) -> Aligner:
    """
    Build the registration strategy selected by ``method``.

    Args:
        method: AlignMethod, its name ("dll", "ndt", "icp") or integer code
                (1, 2, 3 as in the node's align_method parameter).
        field: Distance field, required for DLL.
        map_points: Map point cloud (M, 3), required for NDT and ICP.
        **params: Keyword arguments forwarded to the strategy constructor.

    Returns:
        An object with ``solve(points, initial_pose, fixed_roll, fixed_pitch)``.

    Raises:
        ValueError: If the method is unknown or its map input is missing.

    Examples:
        >>> pts = np.random.default_rng(0).uniform(0, 5, size=(200, 3))
        >>> aligner = make_aligner("icp", map_points=pts, max_iterations=10)
        >>> type(aligner).__name__
        'IcpAligner'
    """
    return _FACTORIES[AlignMethod.parse(method)](field, map_points, **params)

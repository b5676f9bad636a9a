"""Pose registration against a static map.

Three interchangeable strategies share the ``solve`` contract:
    - PoseSolver: direct registration against a DistanceField (DLL)
    - NdtAligner: Normal Distributions Transform against the map cloud
    - IcpAligner: point-to-point ICP against the map cloud

All of them estimate 4 parameters (tx, ty, tz, yaw) with roll and pitch
held fixed, and report outcomes through ``SolveResult`` / ``SolveStatus``.
"""

from .dll_solver import PoseSolver
from .ndt import NdtAligner, build_ndt_map, ndt_score
from .pose3d import (
    pose_apply,
    pose_compose,
    pose_from_matrix,
    pose_inverse,
    pose_to_matrix,
    wrap_angle,
)
from .scan_matching import (
    IcpAligner,
    align_yaw_svd,
    compute_icp_residual,
    find_correspondences,
    icp_align,
)
from .strategies import Aligner, make_aligner
from .types import AlignMethod, PoseEstimate, SolveResult, SolveStatus, VoxelGrid

__all__ = [
    # Types
    "AlignMethod",
    "PoseEstimate",
    "SolveResult",
    "SolveStatus",
    "VoxelGrid",
    # 4-DOF pose operations
    "wrap_angle",
    "pose_apply",
    "pose_compose",
    "pose_inverse",
    "pose_to_matrix",
    "pose_from_matrix",
    # Direct distance-field solver
    "PoseSolver",
    # ICP
    "find_correspondences",
    "compute_icp_residual",
    "align_yaw_svd",
    "icp_align",
    "IcpAligner",
    # NDT
    "build_ndt_map",
    "ndt_score",
    "NdtAligner",
    # Strategy selection
    "Aligner",
    "make_aligner",
]

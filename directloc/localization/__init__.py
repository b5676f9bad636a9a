"""Localization frontend for map-based LiDAR localization.

Main components:
    - Localizer: Maintains the map→odom correction and runs registration cycles
    - LocalizationState / LocalizationUpdate: Immutable state and cycle outcome
    - UpdateGate: Motion/time admission control
    - filter_range / voxel_downsample / tilt_compensate: Cloud preparation
    - LocalizerConfig (+ SolverConfig, GateConfig, PreprocessConfig): JSON config
"""

from .config import (
    GateConfig,
    LocalizerConfig,
    PreprocessConfig,
    SolverConfig,
    default_config,
    load_config,
    save_config,
)
from .gating import GateDecision, UpdateGate
from .localizer import (
    LocalizationState,
    LocalizationUpdate,
    Localizer,
    as_transform,
)
from .preprocess import filter_range, tilt_compensate, voxel_downsample

__all__ = [
    # Configuration
    "SolverConfig",
    "GateConfig",
    "PreprocessConfig",
    "LocalizerConfig",
    "default_config",
    "load_config",
    "save_config",
    # Gating
    "GateDecision",
    "UpdateGate",
    # Preprocessing
    "filter_range",
    "voxel_downsample",
    "tilt_compensate",
    # Frontend
    "as_transform",
    "LocalizationState",
    "LocalizationUpdate",
    "Localizer",
]

"""Direct LiDAR Localization Examples.

Examples:
    - example_direct_localization.py: Full localizer (odometry, gating,
      distance-field registration) over a drifting trajectory
    - example_method_comparison.py: DLL vs NDT vs ICP accuracy and runtime

Key Concepts Demonstrated:
    - Distance fields: Precomputed distance-to-surface grids with trilinear
      interpolation
    - Direct registration: Gauss-Newton on point distances, no correspondences
    - Drift correction: Maintaining the map→odom transform
    - Visualization: Field slices, trajectories and error analysis

Dependencies:
    - directloc.grid: DistanceField
    - directloc.registration: PoseSolver, NdtAligner, IcpAligner
    - directloc.localization: Localizer and its configuration
    - matplotlib: Visualization
    - tqdm: Progress bars
"""

__version__ = "0.1.0"

__all__ = []

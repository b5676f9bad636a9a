"""Direct LiDAR localization against a precomputed 3D distance field.

This package contains the building blocks for real-time 4-DOF pose
tracking of a ground platform inside a static 3D map:
- coords: Rotation helpers (Euler angles, tilt compensation)
- grid: Distance-field grid with cached trilinear interpolation
- registration: Pose types, the direct distance-field solver and the
  ICP / NDT alternative aligners behind one contract
- localization: Update gating, point-cloud preprocessing, configuration
  and the localizer that maintains the map-from-odom transform
"""

__version__ = "0.1.0"

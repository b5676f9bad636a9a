"""Type definitions for the distance-field grid.

Key types:
    - ConstructionError: Raised when a distance field cannot be built
    - FieldQuery: Result of a single continuous distance query
    - PointCloud3D: Type alias for (N, 3) point arrays
"""

from typing import NamedTuple

import numpy as np


PointCloud3D = np.ndarray  # Shape (N, 3), points in 3D space (meters)


class ConstructionError(ValueError):
    """Malformed input to distance-field construction.

    Raised for non-positive resolution, empty or zero dimensions, a map
    input that does not match the grid, or a map without any occupied
    voxel. No partially built field is ever returned.
    """


class FieldQuery(NamedTuple):
    """
    Result of ``DistanceField.query``.

    Attributes:
        distance: Interpolated distance to the nearest mapped surface
                  (meters). NaN when ``valid`` is False.
        gradient: Analytic gradient of the interpolated distance in the map
                  frame, shape (3,). NaN when ``valid`` is False.
        valid: False when the point lies outside the grid bounds. This is
               the normal out-of-bounds outcome: the caller skips the sample.
    """

    distance: float
    gradient: np.ndarray
    valid: bool

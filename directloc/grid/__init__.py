"""Distance-field grid with cached trilinear interpolation.

Main components:
    - DistanceField: Immutable 3D distance grid (build once, query many)
    - TrilinearSampler: Per-cell polynomial coefficients and evaluation
    - ConstructionError: Raised for malformed grids or maps
    - FieldQuery: (distance, gradient, valid) result of a single query

Example usage:
    >>> import numpy as np
    >>> from directloc.grid import DistanceField
    >>> occ = np.zeros((10, 10, 10), dtype=bool)
    >>> occ[:, :, 0] = True  # floor
    >>> field = DistanceField.build(occ, origin=(0, 0, 0), resolution=0.5, dims=(10, 10, 10))
    >>> q = field.query([2.0, 2.0, 1.25])
    >>> round(q.distance, 3), q.valid
    (1.25, True)
"""

from .distance_field import DistanceField
from .trilinear import (
    TrilinearSampler,
    compute_trilinear_coefficients,
    evaluate_trilinear,
    evaluate_trilinear_gradient,
)
from .types import ConstructionError, FieldQuery, PointCloud3D

__all__ = [
    "DistanceField",
    "TrilinearSampler",
    "compute_trilinear_coefficients",
    "evaluate_trilinear",
    "evaluate_trilinear_gradient",
    "ConstructionError",
    "FieldQuery",
    "PointCloud3D",
]

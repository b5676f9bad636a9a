"""3D distance-field grid for direct LiDAR registration.

This module implements the map representation used by the direct
distance-field localizer: a dense regular grid storing, per node, the
Euclidean distance to the nearest occupied voxel of a static map.

The grid is built once with a distance transform (near-linear in the
number of voxels) and is immutable afterwards, so it can be shared by any
number of concurrent readers. Continuous queries use cached trilinear
coefficients (see ``trilinear.py``) and return both the distance and its
analytic gradient.

Grid geometry:
    - Node (i, j, k) lies at origin + (i, j, k) * resolution.
    - ``dims`` = (nx, ny, nz) is the number of nodes per axis.
    - The queryable box is [origin, origin + (dims - 1) * resolution]; it
      is the largest region in which every query has all 8 cell corners,
      so queries are never extrapolated.

Key functions:
    - DistanceField.build: Distance transform of an occupancy grid or map cloud
    - DistanceField.from_points: Build with origin/dims fitted to a map cloud
    - DistanceField.query: Single continuous query (distance, gradient, valid)
    - DistanceField.query_batch: Vectorized queries used by the solvers
"""

import warnings
from typing import Optional, Sequence, Tuple, Union

import numpy as np
from scipy.ndimage import distance_transform_edt

from .trilinear import TrilinearSampler
from .types import ConstructionError, FieldQuery, PointCloud3D


def _validate_geometry(
    origin: Sequence[float],
    resolution: float,
    dims: Sequence[int],
) -> Tuple[np.ndarray, float, Tuple[int, int, int]]:
    try:
        origin_arr = np.array(origin, dtype=np.float64)
        resolution = float(resolution)
        dims_arr = np.asarray(dims)
    except (TypeError, ValueError) as e:
        raise ConstructionError(f"invalid grid geometry: {e}") from e

    if origin_arr.shape != (3,):
        raise ConstructionError(f"origin must have shape (3,), got {origin_arr.shape}")
    if not np.all(np.isfinite(origin_arr)):
        raise ConstructionError(f"origin must be finite, got {origin_arr}")
    if not np.isfinite(resolution) or resolution <= 0.0:
        raise ConstructionError(f"resolution must be positive, got {resolution}")
    if dims_arr.shape != (3,):
        raise ConstructionError(f"dims must have 3 entries, got shape {dims_arr.shape}")
    if not np.all(np.equal(np.mod(dims_arr, 1), 0)):
        raise ConstructionError(f"dims must be integers, got {dims_arr}")
    dims_tuple = tuple(int(n) for n in dims_arr)
    if min(dims_tuple) < 2:
        raise ConstructionError(
            f"dims must have at least 2 nodes per axis, got {dims_tuple}"
        )
    return origin_arr, resolution, dims_tuple


class DistanceField:
    """
    Immutable 3D distance grid with continuous trilinear queries.

    Attributes:
        origin: Map-frame position of node (0, 0, 0), shape (3,).
        resolution: Node spacing in meters (> 0).
        dims: Number of nodes per axis (nx, ny, nz).
        values: Read-only node distances, shape (nx, ny, nz), meters.

    Examples:
        >>> occ = np.zeros((5, 5, 5), dtype=bool)
        >>> occ[2, 2, 2] = True
        >>> field = DistanceField.build(occ, origin=(0, 0, 0), resolution=1.0, dims=(5, 5, 5))
        >>> field.query([2.0, 2.0, 4.0]).distance
        2.0
        >>> field.query([9.0, 0.0, 0.0]).valid
        False
    """

    def __init__(
        self,
        values: np.ndarray,
        origin: Sequence[float],
        resolution: float,
    ):
        """
        Wrap precomputed node distances.

        Most callers use ``build`` or ``from_points``; this constructor is
        for grids whose distances were computed elsewhere (e.g. loaded from
        disk by a collaborator).

        Args:
            values: Node distances, shape (nx, ny, nz). Copied.
            origin: Map-frame position of node (0, 0, 0).
            resolution: Node spacing in meters.

        Raises:
            ConstructionError: If the geometry is malformed or ``values``
                               contains non-finite entries.
        """
        values = np.array(values, dtype=np.float64)
        if values.ndim != 3:
            raise ConstructionError(f"values must be a 3D array, got shape {values.shape}")
        self.origin, self.resolution, self.dims = _validate_geometry(
            origin, resolution, values.shape
        )
        if not np.all(np.isfinite(values)):
            raise ConstructionError("values must be finite")

        values.setflags(write=False)
        self.origin.setflags(write=False)
        self.values = values
        self._inv_resolution = 1.0 / self.resolution
        self._upper_index = np.array(self.dims, dtype=np.float64) - 1.0
        self._sampler: Optional[TrilinearSampler] = None
        self.compute_trilinear_interpolation()

    @classmethod
    def build(
        cls,
        map_input: Union[np.ndarray, PointCloud3D],
        origin: Sequence[float],
        resolution: float,
        dims: Sequence[int],
        max_distance: Optional[float] = None,
    ) -> "DistanceField":
        """
        Build a distance field from an occupancy grid or a map point cloud.

        The distance of every node to the nearest occupied node is computed
        with an exact Euclidean distance transform
        (``scipy.ndimage.distance_transform_edt``), which runs in time
        linear in the number of voxels.

        Args:
            map_input: Either a boolean occupancy array of shape ``dims``, or
                       a map point cloud of shape (M, 3) in the map frame.
                       Points are snapped to their nearest node; points
                       outside the grid are dropped with a RuntimeWarning.
            origin: Map-frame position of node (0, 0, 0), shape (3,).
            resolution: Node spacing in meters (> 0).
            dims: Number of nodes per axis (nx, ny, nz), each >= 2.
            max_distance: Optional saturation distance in meters. Distances
                          above it are clamped.

        Returns:
            The constructed DistanceField.

        Raises:
            ConstructionError: On malformed geometry, a map input that does
                               not match the grid, or a map with no occupied
                               voxel.
        """
        origin_arr, resolution, dims_tuple = _validate_geometry(origin, resolution, dims)
        if max_distance is not None and not max_distance > 0.0:
            raise ConstructionError(f"max_distance must be positive, got {max_distance}")

        map_input = np.asarray(map_input)
        if map_input.dtype == bool:
            if map_input.shape != dims_tuple:
                raise ConstructionError(
                    f"occupancy grid shape {map_input.shape} does not match dims {dims_tuple}"
                )
            occupied = map_input.copy()
        else:
            occupied = cls._occupancy_from_points(map_input, origin_arr, resolution, dims_tuple)

        if not occupied.any():
            raise ConstructionError("map has no occupied voxel inside the grid")

        # Distance of each free node to the nearest occupied node (0 on obstacles)
        distances = distance_transform_edt(~occupied, sampling=resolution)
        if max_distance is not None:
            np.minimum(distances, max_distance, out=distances)

        return cls(distances, origin_arr, resolution)

    @classmethod
    def from_points(
        cls,
        points: PointCloud3D,
        resolution: float,
        margin: float = 1.0,
        max_distance: Optional[float] = None,
    ) -> "DistanceField":
        """
        Build a distance field whose grid encloses a map point cloud.

        The grid origin is the minimum corner of the cloud minus ``margin``
        (snapped to a multiple of ``resolution``) and the extent covers the
        maximum corner plus ``margin``.

        Args:
            points: Map point cloud, shape (M, 3), M > 0.
            resolution: Node spacing in meters.
            margin: Free space added around the cloud on every side (meters).
            max_distance: Optional saturation distance (see ``build``).

        Returns:
            The constructed DistanceField.

        Raises:
            ConstructionError: If the cloud is empty or malformed.
        """
        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ConstructionError(f"points must have shape (M, 3), got {points.shape}")
        if points.shape[0] == 0:
            raise ConstructionError("map point cloud is empty")
        if not np.isfinite(resolution) or resolution <= 0.0:
            raise ConstructionError(f"resolution must be positive, got {resolution}")
        if margin < 0.0:
            raise ConstructionError(f"margin must be non-negative, got {margin}")

        finite = np.all(np.isfinite(points), axis=1)
        points = points[finite]
        if points.shape[0] == 0:
            raise ConstructionError("map point cloud has no finite point")

        lower = np.floor((points.min(axis=0) - margin) / resolution) * resolution
        upper = points.max(axis=0) + margin
        dims = np.ceil((upper - lower) / resolution).astype(np.int64) + 1
        dims = np.maximum(dims, 2)

        return cls.build(points, lower, resolution, dims, max_distance=max_distance)

    @staticmethod
    def _occupancy_from_points(
        points: np.ndarray,
        origin: np.ndarray,
        resolution: float,
        dims: Tuple[int, int, int],
    ) -> np.ndarray:
        if points.ndim != 2 or points.shape[1] != 3:
            raise ConstructionError(
                f"map_input must be a boolean grid or an (M, 3) point cloud, got shape {points.shape}"
            )
        if points.shape[0] == 0:
            raise ConstructionError("map point cloud is empty")

        points = points.astype(np.float64)
        idx = np.rint((points - origin) / resolution)
        inside = np.all(np.isfinite(idx), axis=1)
        inside &= np.all((idx >= 0) & (idx <= np.array(dims) - 1), axis=1)
        n_dropped = int(points.shape[0] - np.count_nonzero(inside))
        if n_dropped > 0:
            warnings.warn(
                f"{n_dropped} of {points.shape[0]} map points fall outside the grid and were dropped",
                RuntimeWarning,
                stacklevel=3,
            )

        idx = idx[inside].astype(np.int64)
        occupied = np.zeros(dims, dtype=bool)
        occupied[idx[:, 0], idx[:, 1], idx[:, 2]] = True
        return occupied

    def compute_trilinear_interpolation(self) -> None:
        """
        Precompute the trilinear coefficients of every cell.

        Called once by the constructor. The coefficients are derived
        deterministically from the node values and never recomputed per
        query.
        """
        if self._sampler is None:
            self._sampler = TrilinearSampler(self.values)

    @property
    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """Axis-aligned queryable box as (lower, upper) corners in meters."""
        lower = self.origin.copy()
        upper = self.origin + self._upper_index * self.resolution
        return lower, upper

    def to_grid(self, points: PointCloud3D) -> np.ndarray:
        """Convert map-frame points (N, 3) to continuous grid coordinates."""
        return (np.asarray(points, dtype=np.float64) - self.origin) * self._inv_resolution

    def contains(self, points: PointCloud3D) -> np.ndarray:
        """
        Bounding-box test for a batch of points.

        Args:
            points: Map-frame points, shape (N, 3).

        Returns:
            Boolean mask of shape (N,), True for points inside the box.
        """
        g = self.to_grid(points)
        return np.all((g >= 0.0) & (g <= self._upper_index), axis=1)

    def query(self, point: Sequence[float]) -> FieldQuery:
        """
        Continuous distance and gradient at a single map-frame point.

        Args:
            point: Point (x, y, z) in the field's frame.

        Returns:
            FieldQuery(distance, gradient, valid). Out-of-bounds points (and
            non-finite input) return valid=False with NaN distance/gradient.
        """
        px, py, pz = (float(c) for c in point)
        gx = (px - self.origin[0]) * self._inv_resolution
        gy = (py - self.origin[1]) * self._inv_resolution
        gz = (pz - self.origin[2]) * self._inv_resolution
        ux, uy, uz = self._upper_index
        if not (0.0 <= gx <= ux and 0.0 <= gy <= uy and 0.0 <= gz <= uz):
            return FieldQuery(float("nan"), np.full(3, np.nan), False)

        value, grad = self._sampler.sample_one(gx, gy, gz)
        gradient = np.array(grad, dtype=np.float64) * self._inv_resolution
        return FieldQuery(value, gradient, True)

    def query_batch(
        self, points: PointCloud3D
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Vectorized continuous queries.

        Args:
            points: Map-frame points, shape (N, 3).

        Returns:
            Tuple (distances, gradients, valid):
                - distances: shape (N,), NaN where invalid.
                - gradients: shape (N, 3), map-frame gradient, NaN where invalid.
                - valid: boolean mask, shape (N,).

        Raises:
            ValueError: If points does not have shape (N, 3).
        """
        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ValueError(f"points must have shape (N, 3), got {points.shape}")

        n = points.shape[0]
        distances = np.full(n, np.nan)
        gradients = np.full((n, 3), np.nan)

        g = self.to_grid(points)
        valid = np.all((g >= 0.0) & (g <= self._upper_index), axis=1)
        if not valid.any():
            return distances, gradients, valid

        values, grads = self._sampler.sample(g[valid])
        distances[valid] = values
        gradients[valid] = grads * self._inv_resolution
        return distances, gradients, valid

    def slice_z(self, z: float) -> Tuple[np.ndarray, Tuple[float, float, float, float]]:
        """
        Horizontal slice of the interpolated field at height ``z``.

        Args:
            z: Map-frame height in meters.

        Returns:
            Tuple (image, extent): image of shape (ny, nx) indexed [row=y, col=x]
            (NaN when ``z`` is outside the grid), and the matplotlib-style
            extent (xmin, xmax, ymin, ymax).
        """
        lower, upper = self.bounds
        nx, ny, _ = self.dims
        xs = lower[0] + np.arange(nx) * self.resolution
        ys = lower[1] + np.arange(ny) * self.resolution
        xx, yy = np.meshgrid(xs, ys)
        pts = np.column_stack([xx.ravel(), yy.ravel(), np.full(xx.size, z)])
        distances, _, _ = self.query_batch(pts)
        extent = (float(lower[0]), float(upper[0]), float(lower[1]), float(upper[1]))
        return distances.reshape(ny, nx), extent

    def __repr__(self) -> str:
        """Readable string representation."""
        return (
            f"DistanceField(origin={np.round(self.origin, 4).tolist()}, "
            f"resolution={self.resolution:.4f}, dims={self.dims})"
        )

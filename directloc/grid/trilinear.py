"""Cached trilinear interpolation over a regular 3D grid.

For every grid cell the 8 corner values are collapsed once into the
coefficients of the trilinear polynomial

    f(x, y, z) = a0 + a1*x + a2*y + a3*z + a4*xy + a5*xz + a6*yz + a7*xyz

with (x, y, z) ∈ [0, 1]^3 the cell-relative coordinates. A query is then a
single length-8 dot product instead of seven nested linear blends, and the
partial derivatives of the same polynomial give the gradient for free.

Corner naming: c_ijk is the value at corner (x=i, y=j, z=k) of the cell.

Key functions:
    - compute_trilinear_coefficients: Per-cell coefficients a0..a7
    - evaluate_trilinear: Polynomial value for a batch of cells
    - evaluate_trilinear_gradient: Polynomial gradient (cell units)
    - TrilinearSampler: Coefficient cache + lookup in grid coordinates
"""

from typing import Tuple

import numpy as np

N_COEFFS = 8


def compute_trilinear_coefficients(values: np.ndarray) -> np.ndarray:
    """
    Compute trilinear polynomial coefficients for every cell of a grid.

    Args:
        values: Node values, shape (nx, ny, nz) with every extent >= 2.

    Returns:
        Coefficients of shape (nx-1, ny-1, nz-1, 8), ordered a0..a7.

    Raises:
        ValueError: If ``values`` is not a 3D array with at least 2 nodes
                    per axis.

    Examples:
        >>> v = np.arange(8, dtype=float).reshape(2, 2, 2)
        >>> compute_trilinear_coefficients(v).shape
        (1, 1, 1, 8)
    """
    values = np.asarray(values, dtype=np.float64)
    if values.ndim != 3:
        raise ValueError(f"values must be a 3D array, got shape {values.shape}")
    if min(values.shape) < 2:
        raise ValueError(
            f"values needs at least 2 nodes per axis, got shape {values.shape}"
        )

    c000 = values[:-1, :-1, :-1]
    c100 = values[1:, :-1, :-1]
    c010 = values[:-1, 1:, :-1]
    c001 = values[:-1, :-1, 1:]
    c110 = values[1:, 1:, :-1]
    c101 = values[1:, :-1, 1:]
    c011 = values[:-1, 1:, 1:]
    c111 = values[1:, 1:, 1:]

    coeffs = np.empty(c000.shape + (N_COEFFS,), dtype=np.float64)
    coeffs[..., 0] = c000
    coeffs[..., 1] = c100 - c000
    coeffs[..., 2] = c010 - c000
    coeffs[..., 3] = c001 - c000
    coeffs[..., 4] = c110 - c010 - c100 + c000
    coeffs[..., 5] = c101 - c001 - c100 + c000
    coeffs[..., 6] = c011 - c001 - c010 + c000
    coeffs[..., 7] = c111 - c011 - c101 - c110 + c100 + c001 + c010 - c000

    return coeffs


def _monomials(local: np.ndarray) -> np.ndarray:
    x = local[:, 0]
    y = local[:, 1]
    z = local[:, 2]
    return np.column_stack(
        [np.ones_like(x), x, y, z, x * y, x * z, y * z, x * y * z]
    )


def evaluate_trilinear(coeffs: np.ndarray, local: np.ndarray) -> np.ndarray:
    """
    Evaluate the cached polynomial of K cells.

    Args:
        coeffs: Cell coefficients, shape (K, 8).
        local: Cell-relative coordinates in [0, 1]^3, shape (K, 3).

    Returns:
        Interpolated values, shape (K,).
    """
    return np.einsum("ij,ij->i", coeffs, _monomials(local))


def evaluate_trilinear_gradient(coeffs: np.ndarray, local: np.ndarray) -> np.ndarray:
    """
    Evaluate the analytic gradient of the cached polynomial of K cells.

    The derivatives are with respect to the cell-relative coordinates;
    divide by the grid resolution to obtain a metric gradient.

        ∂f/∂x = a1 + a4*y + a5*z + a7*yz
        ∂f/∂y = a2 + a4*x + a6*z + a7*xz
        ∂f/∂z = a3 + a5*x + a6*y + a7*xy

    Args:
        coeffs: Cell coefficients, shape (K, 8).
        local: Cell-relative coordinates in [0, 1]^3, shape (K, 3).

    Returns:
        Gradient in cell units, shape (K, 3).
    """
    x = local[:, 0]
    y = local[:, 1]
    z = local[:, 2]
    a = coeffs
    gx = a[:, 1] + a[:, 4] * y + a[:, 5] * z + a[:, 7] * y * z
    gy = a[:, 2] + a[:, 4] * x + a[:, 6] * z + a[:, 7] * x * z
    gz = a[:, 3] + a[:, 5] * x + a[:, 6] * y + a[:, 7] * x * y
    return np.column_stack([gx, gy, gz])


class TrilinearSampler:
    """
    Trilinear interpolator with per-cell coefficients computed once.

    The sampler works in continuous grid coordinates, where node (i, j, k)
    sits at (i, j, k). Bounds checking and the world-to-grid mapping belong
    to the owning ``DistanceField``; the sampler only clamps the cell index
    so that points on the upper faces use the last cell with local
    coordinate 1.

    Attributes:
        coefficients: Read-only array (nx-1, ny-1, nz-1, 8).
        shape: Node extents (nx, ny, nz).

    Examples:
        >>> v = np.zeros((3, 3, 3))
        >>> v[2, :, :] = 2.0
        >>> sampler = TrilinearSampler(v)
        >>> vals, grads = sampler.sample(np.array([[1.5, 1.0, 1.0]]))
        >>> float(vals[0])
        1.0
    """

    def __init__(self, values: np.ndarray):
        coeffs = compute_trilinear_coefficients(values)
        coeffs.setflags(write=False)
        self.coefficients = coeffs
        self.shape = tuple(int(n) for n in np.shape(values))
        self._max_cell = np.array(self.shape, dtype=np.int64) - 2

    def locate(self, grid_coords: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Split grid coordinates into cell indices and cell-relative offsets.

        Args:
            grid_coords: Continuous grid coordinates, shape (K, 3). Assumed
                         to be inside [0, n-1] on every axis.

        Returns:
            Tuple (cells, local): integer cells (K, 3) and offsets (K, 3).
        """
        cells = np.floor(grid_coords).astype(np.int64)
        np.clip(cells, 0, self._max_cell, out=cells)
        local = grid_coords - cells
        return cells, local

    def sample(self, grid_coords: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Interpolated values and cell-unit gradients at grid coordinates.

        Args:
            grid_coords: Continuous grid coordinates, shape (K, 3).

        Returns:
            Tuple (values, gradients) of shapes (K,) and (K, 3).
        """
        cells, local = self.locate(grid_coords)
        coeffs = self.coefficients[cells[:, 0], cells[:, 1], cells[:, 2]]
        return (
            evaluate_trilinear(coeffs, local),
            evaluate_trilinear_gradient(coeffs, local),
        )

    def sample_one(self, gx: float, gy: float, gz: float) -> Tuple[float, Tuple[float, float, float]]:
        """Scalar fast path of ``sample`` for a single query."""
        ix = min(max(int(np.floor(gx)), 0), int(self._max_cell[0]))
        iy = min(max(int(np.floor(gy)), 0), int(self._max_cell[1]))
        iz = min(max(int(np.floor(gz)), 0), int(self._max_cell[2]))
        x = gx - ix
        y = gy - iy
        z = gz - iz
        a0, a1, a2, a3, a4, a5, a6, a7 = self.coefficients[ix, iy, iz].tolist()
        value = a0 + a1 * x + a2 * y + a3 * z + a4 * x * y + a5 * x * z + a6 * y * z + a7 * x * y * z
        grad = (
            a1 + a4 * y + a5 * z + a7 * y * z,
            a2 + a4 * x + a6 * z + a7 * x * z,
            a3 + a5 * x + a6 * y + a7 * x * y,
        )
        return value, grad

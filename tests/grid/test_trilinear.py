"""Unit tests for cached trilinear interpolation.

Test cases include:
- Coefficient layout and input validation
- Exact reproduction of (multi)linear functions
- Corner values recovered exactly
- Agreement of the batch and scalar sampling paths
"""

import unittest

import numpy as np

from directloc.grid.trilinear import (
    N_COEFFS,
    TrilinearSampler,
    compute_trilinear_coefficients,
    evaluate_trilinear,
    evaluate_trilinear_gradient,
)


def _linear_grid(shape, a=1.0, bx=2.0, by=3.0, bz=-1.0):
    i, j, k = np.meshgrid(*(np.arange(n, dtype=float) for n in shape), indexing="ij")
    return a + bx * i + by * j + bz * k


class TestComputeCoefficients(unittest.TestCase):
    """Test cases for per-cell coefficient computation."""

    def test_shape(self) -> None:
        """One row of 8 coefficients per cell."""
        coeffs = compute_trilinear_coefficients(np.zeros((4, 5, 6)))
        self.assertEqual(coeffs.shape, (3, 4, 5, N_COEFFS))

    def test_single_cell_monomials(self) -> None:
        """f = xyz on the unit cell has a7 = 1 and all others 0."""
        v = np.zeros((2, 2, 2))
        v[1, 1, 1] = 1.0
        coeffs = compute_trilinear_coefficients(v)[0, 0, 0]
        np.testing.assert_allclose(coeffs, [0, 0, 0, 0, 0, 0, 0, 1], atol=1e-12)

    def test_constant_term_is_corner(self) -> None:
        """a0 equals the value at the cell's lower corner."""
        rng = np.random.default_rng(0)
        v = rng.uniform(0, 5, size=(4, 4, 4))
        coeffs = compute_trilinear_coefficients(v)
        np.testing.assert_allclose(coeffs[..., 0], v[:-1, :-1, :-1])

    def test_invalid_dimensions(self) -> None:
        """2D input or an extent below 2 is rejected."""
        with self.assertRaises(ValueError):
            compute_trilinear_coefficients(np.zeros((3, 3)))
        with self.assertRaises(ValueError):
            compute_trilinear_coefficients(np.zeros((3, 1, 3)))


class TestEvaluate(unittest.TestCase):
    """Test cases for polynomial and gradient evaluation."""

    def setUp(self) -> None:
        rng = np.random.default_rng(1)
        self.values = rng.uniform(0, 3, size=(2, 2, 2))
        self.coeffs = compute_trilinear_coefficients(self.values)[0, 0, 0][None, :]

    def test_corners_exact(self) -> None:
        """Evaluation at each corner returns the corner value."""
        for corner in np.ndindex(2, 2, 2):
            local = np.array([corner], dtype=float)
            value = evaluate_trilinear(self.coeffs, local)[0]
            self.assertAlmostEqual(value, self.values[corner], places=12)

    def test_matches_nested_linear_blend(self) -> None:
        """Polynomial form equals seven nested linear interpolations."""
        x, y, z = 0.3, 0.6, 0.8
        c = self.values
        c00 = c[0, 0, 0] * (1 - x) + c[1, 0, 0] * x
        c10 = c[0, 1, 0] * (1 - x) + c[1, 1, 0] * x
        c01 = c[0, 0, 1] * (1 - x) + c[1, 0, 1] * x
        c11 = c[0, 1, 1] * (1 - x) + c[1, 1, 1] * x
        c0 = c00 * (1 - y) + c10 * y
        c1 = c01 * (1 - y) + c11 * y
        expected = c0 * (1 - z) + c1 * z

        value = evaluate_trilinear(self.coeffs, np.array([[x, y, z]]))[0]
        self.assertAlmostEqual(value, expected, places=12)

    def test_gradient_matches_finite_difference(self) -> None:
        """Analytic gradient agrees with central differences inside the cell."""
        p = np.array([0.4, 0.35, 0.7])
        grad = evaluate_trilinear_gradient(self.coeffs, p[None, :])[0]
        eps = 1e-6
        fd = np.zeros(3)
        for axis in range(3):
            dp = np.zeros(3)
            dp[axis] = eps
            f_plus = evaluate_trilinear(self.coeffs, (p + dp)[None, :])[0]
            f_minus = evaluate_trilinear(self.coeffs, (p - dp)[None, :])[0]
            fd[axis] = (f_plus - f_minus) / (2 * eps)
        np.testing.assert_allclose(grad, fd, atol=1e-6)


class TestTrilinearSampler(unittest.TestCase):
    """Test cases for the sampler over a multi-cell grid."""

    def test_linear_function_reproduced(self) -> None:
        """A linear field is reproduced exactly, with a constant gradient."""
        sampler = TrilinearSampler(_linear_grid((5, 4, 6)))
        rng = np.random.default_rng(2)
        g = rng.uniform([0, 0, 0], [4, 3, 5], size=(200, 3))

        values, grads = sampler.sample(g)

        expected = 1.0 + 2.0 * g[:, 0] + 3.0 * g[:, 1] - 1.0 * g[:, 2]
        np.testing.assert_allclose(values, expected, atol=1e-10)
        np.testing.assert_allclose(grads, np.tile([2.0, 3.0, -1.0], (200, 1)), atol=1e-10)

    def test_upper_face_uses_last_cell(self) -> None:
        """Points on the upper faces evaluate the last node values."""
        v = _linear_grid((3, 3, 3))
        sampler = TrilinearSampler(v)
        values, _ = sampler.sample(np.array([[2.0, 2.0, 2.0], [2.0, 0.0, 1.0]]))
        np.testing.assert_allclose(values, [v[2, 2, 2], v[2, 0, 1]], atol=1e-12)

    def test_scalar_path_matches_batch(self) -> None:
        """sample_one and sample agree on random points."""
        rng = np.random.default_rng(3)
        sampler = TrilinearSampler(rng.uniform(0, 1, size=(4, 5, 3)))
        g = rng.uniform([0, 0, 0], [3, 4, 2], size=(50, 3))

        values, grads = sampler.sample(g)
        for i, (gx, gy, gz) in enumerate(g):
            value, grad = sampler.sample_one(gx, gy, gz)
            self.assertAlmostEqual(value, values[i], places=12)
            np.testing.assert_allclose(grad, grads[i], atol=1e-12)

    def test_coefficients_read_only(self) -> None:
        """The coefficient cache cannot be modified."""
        sampler = TrilinearSampler(np.zeros((3, 3, 3)))
        with self.assertRaises(ValueError):
            sampler.coefficients[0, 0, 0, 0] = 1.0


if __name__ == "__main__":
    unittest.main()

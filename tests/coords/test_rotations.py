"""Unit tests for rotation conversions used by the localizer.

Test cases include:
- Orthogonality and known values of the ZYX rotation matrix
- Euler round trips, including gimbal lock
- IMU quaternion conversion (NaN propagation)
- Tilt removal leaving a pure yaw rotation
"""

import unittest

import numpy as np

from directloc.coords.rotations import (
    euler_to_rotation_matrix,
    quat_to_euler,
    rotation_matrix_to_euler,
    tilt_matrix,
)


class TestEulerToRotationMatrix(unittest.TestCase):
    """Test cases for Euler angles to rotation matrix conversion."""

    def test_identity_rotation(self) -> None:
        """Test identity rotation (zero Euler angles)."""
        np.testing.assert_allclose(euler_to_rotation_matrix(0.0, 0.0, 0.0), np.eye(3), atol=1e-12)

    def test_rotation_matrix_properties(self) -> None:
        """Test that rotation matrix is orthogonal with det(R) = 1."""
        R = euler_to_rotation_matrix(0.1, 0.2, 0.3)
        np.testing.assert_allclose(R.T @ R, np.eye(3), atol=1e-12)
        self.assertAlmostEqual(np.linalg.det(R), 1.0, places=12)

    def test_90_degree_yaw(self) -> None:
        """Test that 90° yaw maps the x-axis to the y-axis."""
        R = euler_to_rotation_matrix(0.0, 0.0, np.pi / 2.0)
        np.testing.assert_allclose(R @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], atol=1e-12)

    def test_90_degree_roll(self) -> None:
        """Test that 90° roll maps the y-axis to the z-axis."""
        R = euler_to_rotation_matrix(np.pi / 2.0, 0.0, 0.0)
        np.testing.assert_allclose(R @ [0.0, 1.0, 0.0], [0.0, 0.0, 1.0], atol=1e-12)


class TestRotationMatrixToEuler(unittest.TestCase):
    """Test cases for rotation matrix to Euler angles conversion."""

    def test_round_trip(self) -> None:
        """Test Euler -> matrix -> Euler for several attitudes."""
        for angles in ([0.1, -0.2, 0.3], [-0.5, 0.4, 2.9], [0.0, 0.0, -3.0]):
            R = euler_to_rotation_matrix(*angles)
            np.testing.assert_allclose(rotation_matrix_to_euler(R), angles, atol=1e-12)

    def test_gimbal_lock(self) -> None:
        """Test that pitch = 90° yields an equivalent rotation with roll = 0."""
        R = euler_to_rotation_matrix(0.3, np.pi / 2.0, 0.5)
        roll, pitch, yaw = rotation_matrix_to_euler(R)
        self.assertEqual(roll, 0.0)
        self.assertAlmostEqual(pitch, np.pi / 2.0, places=6)
        np.testing.assert_allclose(euler_to_rotation_matrix(roll, pitch, yaw), R, atol=1e-6)

    def test_invalid_shape(self) -> None:
        """Test that non-3x3 input is rejected."""
        with self.assertRaises(ValueError):
            rotation_matrix_to_euler(np.eye(4))


class TestQuatToEuler(unittest.TestCase):
    """Test cases for IMU quaternion conversion."""

    def test_identity(self) -> None:
        np.testing.assert_allclose(quat_to_euler(np.array([1.0, 0.0, 0.0, 0.0])), np.zeros(3))

    def test_single_axis(self) -> None:
        """Test quaternions of pure roll, pitch and yaw rotations."""
        angle = 0.4
        c, s = np.cos(angle / 2.0), np.sin(angle / 2.0)
        np.testing.assert_allclose(quat_to_euler(np.array([c, s, 0.0, 0.0])), [angle, 0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(quat_to_euler(np.array([c, 0.0, s, 0.0])), [0.0, angle, 0.0], atol=1e-12)
        np.testing.assert_allclose(quat_to_euler(np.array([c, 0.0, 0.0, s])), [0.0, 0.0, angle], atol=1e-12)

    def test_nan_propagates(self) -> None:
        """Test that NaN components are returned, not raised."""
        angles = quat_to_euler(np.array([np.nan, 0.0, 0.0, 0.0]))
        self.assertTrue(np.any(np.isnan(angles)))

    def test_invalid_shape(self) -> None:
        with self.assertRaises(ValueError):
            quat_to_euler(np.zeros(3))


class TestTiltMatrix(unittest.TestCase):
    """Test cases for tilt removal."""

    def test_full_rotation_factorizes(self) -> None:
        """Test R(roll, pitch, yaw) = Rz(yaw) @ tilt(roll, pitch)."""
        roll, pitch, yaw = 0.05, -0.08, 1.2
        Rz = euler_to_rotation_matrix(0.0, 0.0, yaw)
        np.testing.assert_allclose(
            Rz @ tilt_matrix(roll, pitch), euler_to_rotation_matrix(roll, pitch, yaw), atol=1e-12
        )

    def test_zero_tilt(self) -> None:
        np.testing.assert_allclose(tilt_matrix(0.0, 0.0), np.eye(3), atol=1e-12)


if __name__ == "__main__":
    unittest.main()

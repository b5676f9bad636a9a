"""Unit tests for point cloud preparation."""

import numpy as np
import pytest

from directloc.coords import euler_to_rotation_matrix
from directloc.localization import filter_range, tilt_compensate, voxel_downsample


class TestFilterRange:
    def test_band_is_strict(self):
        pts = np.array([[1.0, 0.0, 0.0], [1.5, 0.0, 0.0], [0.0, 100.0, 0.0], [0.0, 0.0, 99.0]])
        np.testing.assert_allclose(filter_range(pts), [[1.5, 0.0, 0.0], [0.0, 0.0, 99.0]])

    def test_custom_band(self):
        rng = np.random.default_rng(0)
        pts = rng.uniform(-10, 10, size=(500, 3))
        out = filter_range(pts, min_range=2.0, max_range=8.0)
        r = np.linalg.norm(out, axis=1)
        assert np.all((r > 2.0) & (r < 8.0))
        assert out.shape[0] == np.count_nonzero(
            (np.linalg.norm(pts, axis=1) > 2.0) & (np.linalg.norm(pts, axis=1) < 8.0)
        )

    def test_non_finite_dropped(self):
        pts = np.array([[np.nan, 3.0, 0.0], [np.inf, 0.0, 0.0], [3.0, 0.0, 0.0]])
        np.testing.assert_allclose(filter_range(pts), [[3.0, 0.0, 0.0]])

    def test_invalid(self):
        with pytest.raises(ValueError):
            filter_range(np.zeros((3, 2)))
        with pytest.raises(ValueError):
            filter_range(np.zeros((3, 3)), min_range=5.0, max_range=5.0)


class TestVoxelDownsample:
    def test_centroids(self):
        pts = np.array([[0.1, 0.1, 0.1], [0.3, 0.1, 0.1], [1.5, 0.0, 0.0]])
        out = voxel_downsample(pts, 1.0)
        assert out.shape == (2, 3)
        assert any(np.allclose(row, [0.2, 0.1, 0.1]) for row in out)
        assert any(np.allclose(row, [1.5, 0.0, 0.0]) for row in out)

    def test_reduces_dense_cloud(self, room_map):
        out = voxel_downsample(room_map, 0.5)
        assert 0 < out.shape[0] < room_map.shape[0]
        keys = np.floor(out / 0.5)
        assert np.unique(keys, axis=0).shape[0] == out.shape[0]

    def test_empty(self):
        assert voxel_downsample(np.empty((0, 3)), 0.5).shape == (0, 3)

    def test_invalid_voxel(self):
        with pytest.raises(ValueError):
            voxel_downsample(np.zeros((3, 3)), 0.0)


class TestTiltCompensate:
    def test_removes_roll_pitch(self):
        roll, pitch, yaw = 0.05, -0.03, 0.7
        rng = np.random.default_rng(1)
        world = rng.normal(size=(20, 3))
        R = euler_to_rotation_matrix(roll, pitch, yaw)
        sensor = world @ R  # R^T applied to each row

        leveled = tilt_compensate(sensor, roll, pitch)
        Rz = euler_to_rotation_matrix(0.0, 0.0, yaw)
        np.testing.assert_allclose(leveled @ Rz.T, world, atol=1e-12)

    def test_zero_tilt_copies(self):
        pts = np.ones((3, 3))
        out = tilt_compensate(pts, 0.0, 0.0)
        np.testing.assert_array_equal(out, pts)
        assert out is not pts

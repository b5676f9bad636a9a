"""Unit tests for 4-DOF pose operations and registration types."""

import numpy as np
import pytest

from directloc.coords import euler_to_rotation_matrix
from directloc.registration import (
    AlignMethod,
    PoseEstimate,
    SolveResult,
    SolveStatus,
    pose_apply,
    pose_compose,
    pose_from_matrix,
    pose_inverse,
    pose_to_matrix,
    wrap_angle,
)


class TestWrapAngle:
    def test_range(self):
        angles = np.linspace(-10, 10, 101)
        wrapped = np.array([wrap_angle(a) for a in angles])
        assert np.all(wrapped <= np.pi) and np.all(wrapped >= -np.pi)
        np.testing.assert_allclose(np.sin(wrapped), np.sin(angles), atol=1e-12)
        np.testing.assert_allclose(np.cos(wrapped), np.cos(angles), atol=1e-12)


class TestPoseOperations:
    def test_apply_translation_and_yaw(self):
        p = np.array([1.0, 2.0, 0.5, np.pi / 2])
        out = pose_apply(p, np.array([[1.0, 0.0, 0.0], [0.0, 0.0, 1.0]]))
        np.testing.assert_allclose(out, [[1.0, 3.0, 0.5], [1.0, 2.0, 1.5]], atol=1e-12)

    def test_apply_accepts_pose_estimate(self):
        pts = np.random.default_rng(0).normal(size=(5, 3))
        arr = np.array([0.3, -0.2, 0.1, 0.7])
        np.testing.assert_allclose(
            pose_apply(PoseEstimate.from_array(arr), pts), pose_apply(arr, pts)
        )

    def test_apply_with_tilt_matches_matrix(self):
        pts = np.random.default_rng(1).normal(size=(10, 3))
        p = np.array([1.0, -1.0, 0.2, 0.4])
        T = pose_to_matrix(p, roll=0.1, pitch=-0.05)
        expected = pts @ T[:3, :3].T + T[:3, 3]
        np.testing.assert_allclose(pose_apply(p, pts, roll=0.1, pitch=-0.05), expected)

    def test_apply_shape_error(self):
        with pytest.raises(ValueError):
            pose_apply(np.zeros(4), np.zeros((3, 2)))
        with pytest.raises(ValueError):
            pose_apply(np.zeros(3), np.zeros((3, 3)))

    def test_compose_matches_matrix_product(self):
        p1 = np.array([1.0, 2.0, 0.3, 0.5])
        p2 = np.array([-0.5, 0.4, 0.1, -1.2])
        T = pose_to_matrix(p1) @ pose_to_matrix(p2)
        np.testing.assert_allclose(pose_compose(p1, p2), pose_from_matrix(T), atol=1e-12)

    def test_inverse(self):
        p = np.array([1.0, -2.0, 0.7, 2.5])
        np.testing.assert_allclose(pose_compose(p, pose_inverse(p)), np.zeros(4), atol=1e-12)
        np.testing.assert_allclose(pose_compose(pose_inverse(p), p), np.zeros(4), atol=1e-12)

    def test_matrix_round_trip(self):
        p = np.array([3.0, 1.0, -0.4, -2.9])
        np.testing.assert_allclose(pose_from_matrix(pose_to_matrix(p)), p, atol=1e-12)

    def test_from_matrix_drops_tilt(self):
        p = np.array([0.0, 0.0, 1.0, 0.8])
        T = pose_to_matrix(p, roll=0.05, pitch=0.02)
        np.testing.assert_allclose(pose_from_matrix(T), p, atol=1e-12)
        np.testing.assert_allclose(T[:3, :3], euler_to_rotation_matrix(0.05, 0.02, 0.8))

    def test_from_matrix_shape_error(self):
        with pytest.raises(ValueError):
            pose_from_matrix(np.eye(3))


class TestPoseEstimate:
    def test_array_round_trip(self):
        p = PoseEstimate(1.0, 2.0, 3.0, 0.4)
        assert PoseEstimate.from_array(p.to_array()) == p
        np.testing.assert_allclose(p.translation, [1.0, 2.0, 3.0])

    def test_non_finite_rejected(self):
        with pytest.raises(ValueError):
            PoseEstimate(np.nan, 0.0, 0.0, 0.0)
        with pytest.raises(ValueError):
            PoseEstimate(0.0, 0.0, 0.0, np.inf)

    def test_frozen(self):
        p = PoseEstimate.identity()
        with pytest.raises(AttributeError):
            p.tx = 1.0

    def test_from_array_shape(self):
        with pytest.raises(ValueError):
            PoseEstimate.from_array(np.zeros(3))


class TestSolveResult:
    def _result(self, status):
        return SolveResult(
            pose=PoseEstimate.identity(),
            converged=status is SolveStatus.CONVERGED,
            valid_point_count=0,
            status=status,
        )

    def test_flags(self):
        assert not self._result(SolveStatus.CONVERGED).degenerate
        assert not self._result(SolveStatus.MAX_ITERATIONS).degenerate
        insufficient = self._result(SolveStatus.INSUFFICIENT_POINTS)
        assert insufficient.degenerate and insufficient.low_confidence and not insufficient.failed
        singular = self._result(SolveStatus.SINGULAR)
        assert singular.degenerate and singular.failed


class TestAlignMethod:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (1, AlignMethod.DLL),
            (2, AlignMethod.NDT),
            (3, AlignMethod.ICP),
            ("dll", AlignMethod.DLL),
            ("NDT", AlignMethod.NDT),
            (" icp ", AlignMethod.ICP),
            (AlignMethod.ICP, AlignMethod.ICP),
        ],
    )
    def test_parse(self, value, expected):
        assert AlignMethod.parse(value) is expected

    @pytest.mark.parametrize("value", [0, 4, "gicp", None])
    def test_parse_unknown(self, value):
        with pytest.raises(ValueError):
            AlignMethod.parse(value)

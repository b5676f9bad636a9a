"""Unit tests for 4-DOF NDT registration.

The room map is shifted off the integer lattice for the registration tests
so that no wall coincides with a 1 m voxel boundary.
"""

import numpy as np
import pytest

from directloc.localization import LocalizerConfig
from directloc.registration import (
    NdtAligner,
    PoseEstimate,
    SolveStatus,
    build_ndt_map,
    make_aligner,
    ndt_score,
    pose_apply,
    pose_inverse,
)
from directloc.registration.ndt import MIN_EIGENVALUE_RATIO

MAP_SHIFT = np.array([0.37, 0.41, 0.23])


@pytest.fixture(scope="module")
def shifted_map(room_map):
    return room_map + MAP_SHIFT


@pytest.fixture(scope="module")
def ndt_aligner(shifted_map):
    return NdtAligner(shifted_map, voxel_size=1.0)


class TestBuildNDTMap:
    """Test suite for build_ndt_map function."""

    def test_single_voxel(self):
        """Test NDT map with points in a single voxel."""
        points = np.random.default_rng(0).uniform(0.1, 0.9, size=(20, 3))
        ndt_map = build_ndt_map(points, voxel_size=1.0)

        assert list(ndt_map.keys()) == [(0, 0, 0)]
        voxel = ndt_map[(0, 0, 0)]
        assert voxel["n_points"] == 20
        np.testing.assert_allclose(voxel["mean"], points.mean(axis=0))
        assert voxel["cov"].shape == (3, 3)
        np.testing.assert_allclose(voxel["cov"], voxel["cov"].T, atol=1e-12)

    def test_negative_indices(self):
        """Test that voxel indices use floor division."""
        points = np.random.default_rng(1).uniform(-0.9, -0.1, size=(10, 3))
        assert list(build_ndt_map(points).keys()) == [(-1, -1, -1)]

    def test_min_points_filtering(self):
        """Test that sparse voxels get no Gaussian."""
        rng = np.random.default_rng(2)
        dense = rng.uniform(0.1, 0.9, size=(10, 3))
        sparse = rng.uniform(2.1, 2.9, size=(3, 3))
        ndt_map = build_ndt_map(np.vstack([dense, sparse]), min_points_per_voxel=5)
        assert set(ndt_map) == {(0, 0, 0)}

    def test_planar_voxel_regularized(self):
        """Test that a planar voxel keeps an invertible covariance."""
        rng = np.random.default_rng(3)
        points = np.column_stack([rng.uniform(0, 1, 100), rng.uniform(0, 1, 100), np.full(100, 0.5)])
        cov = build_ndt_map(points)[(0, 0, 0)]["cov"]

        eigvals = np.linalg.eigvalsh(cov)
        assert eigvals[0] == pytest.approx(MIN_EIGENVALUE_RATIO * eigvals[-1])
        assert np.all(np.isfinite(np.linalg.inv(cov)))

    def test_coincident_points_skipped(self):
        """Test that a voxel with zero spread is dropped."""
        points = np.tile([0.5, 0.5, 0.5], (10, 1))
        assert build_ndt_map(points) == {}

    def test_empty_and_invalid(self):
        assert build_ndt_map(np.empty((0, 3))) == {}
        with pytest.raises(ValueError):
            build_ndt_map(np.zeros((5, 2)))
        with pytest.raises(ValueError):
            build_ndt_map(np.zeros((5, 3)), voxel_size=0.0)


class TestNDTScore:
    """Test suite for ndt_score function."""

    def test_true_pose_scores_best(self, shifted_map, ndt_aligner):
        subset = shifted_map[::40]
        good = ndt_score(subset, ndt_aligner.ndt_map, np.zeros(4))
        bad = ndt_score(subset, ndt_aligner.ndt_map, np.array([0.1, -0.1, 0.0, 0.05]))
        assert good < bad

    def test_no_match_penalty(self, ndt_aligner):
        far = np.full((5, 3), 100.0)
        assert ndt_score(far, ndt_aligner.ndt_map, np.zeros(4)) == 1e6

    def test_empty_scan(self, ndt_aligner):
        assert ndt_score(np.empty((0, 3)), ndt_aligner.ndt_map, np.zeros(4)) == 0.0


class TestNdtAligner:
    """Test suite for the NDT strategy object."""

    def test_known_offset(self, shifted_map, ndt_aligner):
        """Test recovery of a known offset using the whole map as scan."""
        offset = np.array([0.15, -0.1, 0.05, 0.03])
        scan = pose_apply(pose_inverse(offset), shifted_map)

        result = ndt_aligner.solve(scan, PoseEstimate.identity())

        est = result.pose.to_array()
        assert result.status in (SolveStatus.CONVERGED, SolveStatus.MAX_ITERATIONS)
        assert np.linalg.norm(est[:3] - offset[:3]) < 0.03
        assert abs(est[3] - offset[3]) < 0.015
        assert result.valid_point_count > 0.9 * scan.shape[0]

    def test_cost_non_increasing(self, shifted_map, ndt_aligner):
        offset = np.array([0.1, 0.05, 0.0, -0.02])
        scan = pose_apply(pose_inverse(offset), shifted_map[::3])
        result = ndt_aligner.solve(scan, np.zeros(4))
        assert np.all(np.diff(result.cost_history) <= 0.0)

    def test_insufficient_points(self, ndt_aligner):
        """Test that a scan outside every voxel is reported."""
        scan = np.random.default_rng(4).uniform(50, 60, size=(100, 3))
        initial = PoseEstimate(0.1, 0.0, 0.0, 0.0)
        result = ndt_aligner.solve(scan, initial)

        assert result.status is SolveStatus.INSUFFICIENT_POINTS
        assert result.iterations == 0
        assert result.pose == initial

    def test_len_and_validation(self, ndt_aligner):
        assert len(ndt_aligner) == len(ndt_aligner.ndt_map) > 0
        with pytest.raises(ValueError):
            NdtAligner(np.random.default_rng(5).uniform(0, 1, size=(3, 3)))
        with pytest.raises(ValueError):
            ndt_aligner.solve(np.zeros((4, 2)), np.zeros(4))

    def test_zero_damping_terminates(self, shifted_map):
        """Test that an undamped solve from a poor guess still returns."""
        config = LocalizerConfig.from_dict({"align_method": "ndt", "solver": {"damping": 0.0}})
        aligner = make_aligner(config.method, map_points=shifted_map, **config.strategy_params())
        offset = np.array([0.6, 0.4, 0.1, 0.3])
        scan = pose_apply(pose_inverse(offset), shifted_map)
        scan = scan[np.random.default_rng(6).choice(scan.shape[0], size=2000, replace=False)]

        result = aligner.solve(scan, PoseEstimate.identity())

        assert result.iterations <= aligner.max_iterations
        assert np.all(np.diff(result.cost_history) <= 0.0)
        assert np.all(np.isfinite(result.pose.to_array()))

    def test_linalg_failure_reported_as_singular(self, shifted_map, ndt_aligner, monkeypatch):
        def failing_solve(a, b):
            raise np.linalg.LinAlgError("Singular matrix")

        scan = pose_apply(pose_inverse(np.array([0.1, 0.0, 0.0, 0.0])), shifted_map[::3])
        monkeypatch.setattr(np.linalg, "solve", failing_solve)
        result = ndt_aligner.solve(scan, PoseEstimate.identity())

        assert result.status is SolveStatus.SINGULAR
        assert result.degenerate
        assert result.pose == PoseEstimate.identity()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"voxel_size": 0.0},
            {"min_points_per_voxel": 0},
            {"max_iterations": 0},
            {"tolerance": 0.0},
            {"min_matched_points": 3},
            {"max_translation_step": 0.0},
            {"max_yaw_step": -1.0},
            {"damping": -1.0},
        ],
    )
    def test_invalid_parameters(self, shifted_map, kwargs):
        with pytest.raises(ValueError):
            NdtAligner(shifted_map, **kwargs)

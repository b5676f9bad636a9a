"""Unit tests for the DistanceField grid.

Covers construction (occupancy and point-cloud inputs, failure cases),
exactness at grid corners, out-of-bounds rejection, continuity across cell
faces, immutability and the horizontal slice used for visualization.
"""

import numpy as np
import pytest

from directloc.grid import ConstructionError, DistanceField, FieldQuery


def _floor_field(dims=(9, 9, 9), resolution=0.25):
    occ = np.zeros(dims, dtype=bool)
    occ[:, :, 0] = True
    return DistanceField.build(occ, origin=(0.0, 0.0, 0.0), resolution=resolution, dims=dims)


@pytest.fixture
def random_field():
    """Field with arbitrary node values (not a true distance field)."""
    rng = np.random.default_rng(11)
    return DistanceField(rng.uniform(0.0, 2.0, size=(6, 7, 5)), origin=(-1.0, 0.5, 2.0), resolution=0.5)


class TestConstruction:
    """Building a field from occupancy grids and point clouds."""

    def test_floor_distances(self):
        """Node distances above a floor equal the node height."""
        field = _floor_field()
        heights = np.arange(9) * 0.25
        np.testing.assert_allclose(field.values[4, 4, :], heights)

    def test_build_from_points_matches_occupancy(self):
        """Points snapped to nodes give the same field as the occupancy grid."""
        occ = np.zeros((5, 5, 5), dtype=bool)
        occ[2, 2, 2] = True
        occ[0, 4, 1] = True
        from_grid = DistanceField.build(occ, (0, 0, 0), 0.5, occ.shape)

        points = np.argwhere(occ) * 0.5 + 0.1  # snapped to the nearest node
        from_points = DistanceField.build(points, (0, 0, 0), 0.5, occ.shape)

        np.testing.assert_allclose(from_points.values, from_grid.values)

    def test_points_outside_grid_warn(self):
        """Map points outside the grid are dropped with a RuntimeWarning."""
        points = np.array([[1.0, 1.0, 1.0], [50.0, 0.0, 0.0]])
        with pytest.warns(RuntimeWarning, match="outside the grid"):
            field = DistanceField.build(points, (0, 0, 0), 0.5, (5, 5, 5))
        assert field.query([1.0, 1.0, 1.0]).distance == pytest.approx(0.0)

    def test_max_distance_clamps(self):
        """Distances above max_distance are saturated."""
        occ = np.zeros((3, 3, 20), dtype=bool)
        occ[:, :, 0] = True
        field = DistanceField.build(occ, (0, 0, 0), 0.5, occ.shape, max_distance=2.0)
        assert field.values.max() == pytest.approx(2.0)

    def test_from_points_encloses_cloud(self, room_map, room_field):
        """The automatic grid contains every map point plus the margin."""
        assert np.all(room_field.contains(room_map))
        lower, upper = room_field.bounds
        assert np.all(lower <= room_map.min(axis=0) - 0.5 + 1e-9)
        assert np.all(upper >= room_map.max(axis=0) + 0.5 - 1e-9)

    def test_surface_points_have_zero_distance(self, room_map, room_field):
        """Mapped surfaces lie on the zero level of the field."""
        distances, _, valid = room_field.query_batch(room_map[::50])
        assert np.all(valid)
        np.testing.assert_allclose(distances, 0.0, atol=1e-9)

    @pytest.mark.parametrize(
        "origin,resolution,dims",
        [
            ((0, 0, 0), 0.0, (5, 5, 5)),
            ((0, 0, 0), -0.1, (5, 5, 5)),
            ((0, 0, 0), float("nan"), (5, 5, 5)),
            ((0, 0, 0), 0.1, (0, 5, 5)),
            ((0, 0, 0), 0.1, (1, 5, 5)),
            ((0, 0, 0), 0.1, (5, 5)),
            ((0, float("inf"), 0), 0.1, (5, 5, 5)),
            ((0, 0), 0.1, (5, 5, 5)),
        ],
    )
    def test_malformed_geometry(self, origin, resolution, dims):
        """Bad geometry fails construction with ConstructionError."""
        points = np.array([[0.1, 0.1, 0.1]])
        with pytest.raises(ConstructionError):
            DistanceField.build(points, origin, resolution, dims)

    def test_occupancy_shape_mismatch(self):
        """Occupancy grids must match dims."""
        with pytest.raises(ConstructionError):
            DistanceField.build(np.ones((4, 4, 4), dtype=bool), (0, 0, 0), 0.1, (5, 5, 5))

    def test_empty_map(self):
        """No occupied voxel or no points is a construction error."""
        with pytest.raises(ConstructionError):
            DistanceField.build(np.zeros((5, 5, 5), dtype=bool), (0, 0, 0), 0.1, (5, 5, 5))
        with pytest.raises(ConstructionError):
            DistanceField.build(np.empty((0, 3)), (0, 0, 0), 0.1, (5, 5, 5))
        with pytest.raises(ConstructionError):
            DistanceField.from_points(np.empty((0, 3)), 0.1)

    def test_construction_error_is_value_error(self):
        """Callers can catch construction failures as ValueError."""
        assert issubclass(ConstructionError, ValueError)

    def test_non_finite_values_rejected(self):
        """Precomputed grids must be finite."""
        values = np.zeros((3, 3, 3))
        values[1, 1, 1] = np.inf
        with pytest.raises(ConstructionError):
            DistanceField(values, (0, 0, 0), 1.0)

    def test_immutable(self):
        """Node values and origin are read-only after construction."""
        field = _floor_field()
        with pytest.raises(ValueError):
            field.values[0, 0, 0] = 5.0
        with pytest.raises(ValueError):
            field.origin[0] = 1.0

    def test_caller_arrays_not_aliased(self):
        """The field copies its inputs."""
        values = np.ones((3, 3, 3))
        origin = np.zeros(3)
        field = DistanceField(values, origin, 1.0)
        values[0, 0, 0] = 7.0
        origin[0] = 3.0
        assert field.values[0, 0, 0] == 1.0
        assert field.origin[0] == 0.0


class TestQuery:
    """Continuous distance and gradient queries."""

    def test_corner_exactness(self, random_field):
        """Queries at grid nodes return the stored value exactly."""
        idx = np.array(list(np.ndindex(*random_field.dims)), dtype=float)
        points = random_field.origin + idx * random_field.resolution
        distances, _, valid = random_field.query_batch(points)
        assert np.all(valid)
        expected = random_field.values[tuple(idx.astype(int).T)]
        np.testing.assert_allclose(distances, expected, rtol=0, atol=1e-12)

    def test_scalar_query_matches_batch(self, random_field):
        """query and query_batch agree."""
        rng = np.random.default_rng(5)
        lower, upper = random_field.bounds
        points = rng.uniform(lower, upper, size=(30, 3))
        distances, gradients, valid = random_field.query_batch(points)
        for i, p in enumerate(points):
            q = random_field.query(p)
            assert isinstance(q, FieldQuery)
            assert q.valid and valid[i]
            assert q.distance == pytest.approx(distances[i], abs=1e-12)
            np.testing.assert_allclose(q.gradient, gradients[i], atol=1e-12)

    def test_floor_gradient_points_up(self):
        """Above a floor the distance increases along +z with unit slope."""
        field = _floor_field()
        q = field.query([1.0, 1.0, 0.6])
        assert q.valid
        assert q.distance == pytest.approx(0.6)
        np.testing.assert_allclose(q.gradient, [0.0, 0.0, 1.0], atol=1e-12)

    def test_outside_bounds_invalid(self, random_field):
        """Points strictly outside the box are rejected, never extrapolated."""
        lower, upper = random_field.bounds
        center = 0.5 * (lower + upper)
        eps = 1e-6
        outside = []
        for axis in range(3):
            below = center.copy()
            below[axis] = lower[axis] - eps
            above = center.copy()
            above[axis] = upper[axis] + eps
            outside.extend([below, above])
        outside = np.array(outside)

        distances, gradients, valid = random_field.query_batch(outside)
        assert not valid.any()
        assert np.all(np.isnan(distances))
        assert np.all(np.isnan(gradients))

        for p in outside:
            q = random_field.query(p)
            assert not q.valid
            assert np.isnan(q.distance)
            assert np.all(np.isnan(q.gradient))

    def test_bounds_are_inclusive(self, random_field):
        """Both box corners are valid query points."""
        lower, upper = random_field.bounds
        assert random_field.query(lower).valid
        assert random_field.query(upper).valid
        np.testing.assert_allclose(
            upper, random_field.origin + (np.array(random_field.dims) - 1) * random_field.resolution
        )

    def test_nan_query_invalid(self, random_field):
        """Non-finite coordinates are invalid, not errors."""
        q = random_field.query([np.nan, 1.0, 3.0])
        assert not q.valid
        _, _, valid = random_field.query_batch(np.array([[np.nan, 1.0, 3.0]]))
        assert not valid[0]

    def test_query_batch_shape_error(self, random_field):
        """query_batch requires (N, 3) input."""
        with pytest.raises(ValueError):
            random_field.query_batch(np.zeros((4, 2)))

    def test_continuity_across_cell_face(self, random_field):
        """Distance and tangential gradient converge from both sides of a face."""
        res = random_field.resolution
        # A point on the x = node 2 face, inside the cell in y and z
        face = random_field.origin + np.array([2.0, 3.4, 1.7]) * res
        for eps in (1e-5, 1e-8):
            left = random_field.query(face - [eps, 0.0, 0.0])
            right = random_field.query(face + [eps, 0.0, 0.0])
            assert abs(left.distance - right.distance) < 100 * eps
            np.testing.assert_allclose(left.gradient[1:], right.gradient[1:], atol=1000 * eps)

    def test_gradient_continuous_for_locally_linear_field(self):
        """Where the field is linear, the full gradient is continuous."""
        i, j, k = np.meshgrid(np.arange(5.0), np.arange(5.0), np.arange(5.0), indexing="ij")
        field = DistanceField(0.5 * i + 0.2 * j + 0.1 * k, (0, 0, 0), 1.0)
        left = field.query([2.0 - 1e-9, 1.3, 2.6])
        right = field.query([2.0 + 1e-9, 1.3, 2.6])
        np.testing.assert_allclose(left.gradient, right.gradient, atol=1e-9)
        np.testing.assert_allclose(left.gradient, [0.5, 0.2, 0.1], atol=1e-9)


class TestSlice:
    """Horizontal slices used by the visualization demos."""

    def test_slice_shape_and_values(self):
        """A slice of the floor field is constant and equal to the height."""
        field = _floor_field()
        image, extent = field.slice_z(0.5)
        assert image.shape == (9, 9)
        np.testing.assert_allclose(image, 0.5)
        assert extent == (0.0, 2.0, 0.0, 2.0)

    def test_slice_outside_is_nan(self):
        """Heights outside the grid give an all-NaN image."""
        field = _floor_field()
        image, _ = field.slice_z(10.0)
        assert np.all(np.isnan(image))

    def test_repr(self):
        """repr shows the grid geometry."""
        assert "resolution=0.2500" in repr(_floor_field())

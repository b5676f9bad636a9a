"""Shared fixtures: a small synthetic room and its distance field.

The room obstacles are placed on multiples of the 0.1 m field resolution so
every mapped surface lies exactly on grid nodes.
"""

import numpy as np
import pytest

from directloc.grid import DistanceField
from directloc.registration import pose_apply, pose_inverse
from directloc.sim import make_room_map

ROOM_SIZE = (4.0, 3.0, 2.4)
ROOM_OBSTACLES = [
    (1.2, 1.7, 0.8, 1.3, 0.0, 2.4),  # pillar
    (2.8, 3.6, 1.9, 2.5, 0.0, 0.8),  # cabinet
]
FIELD_RESOLUTION = 0.1


@pytest.fixture(scope="session")
def room_map():
    """Room surface points sampled every 5 cm."""
    return make_room_map(ROOM_SIZE, spacing=0.05, obstacles=ROOM_OBSTACLES)


@pytest.fixture(scope="session")
def room_field(room_map):
    """Distance field of the room with a 0.5 m margin."""
    return DistanceField.from_points(room_map, resolution=FIELD_RESOLUTION, margin=0.5)


@pytest.fixture
def offset_scan(room_map):
    """
    Map subset moved by the inverse of a known offset.

    Returns (scan, offset) such that pose_apply(offset, scan) lies on the map.
    """
    rng = np.random.default_rng(7)
    subset = room_map[rng.choice(room_map.shape[0], size=3000, replace=False)]
    offset = np.array([0.3, -0.1, 0.0, 0.05])
    return pose_apply(pose_inverse(offset), subset), offset

"""
Simulation utilities for synthetic maps, trajectories and LiDAR scans.

Modules:
    room: Rectangular rooms with box obstacles, scan forward model,
          piecewise-linear trajectories
"""

from directloc.sim.room import (
    box_surface,
    generate_trajectory,
    make_room_map,
    simulate_scan,
)

__all__ = [
    "box_surface",
    "generate_trajectory",
    "make_room_map",
    "simulate_scan",
]

"""
Trajectory module.

Defines joint-space waypoints and typed segments as immutable dataclasses.
This vocabulary is the contract between the motion planner and RAPID
program generation.

All joint values are in degrees, durations in seconds.
"""

from rapid_control.trajectory.loader import (
    TrajectoryError,
    load_trajectory,
    parse_trajectory,
)
from rapid_control.trajectory.points import (
    SegmentType,
    TrajectoryJob,
    TrajectoryPt,
    TrajectorySegment,
    iter_points,
)

__all__ = [
    "SegmentType",
    "TrajectoryError",
    "TrajectoryJob",
    "TrajectoryPt",
    "TrajectorySegment",
    "iter_points",
    "load_trajectory",
    "parse_trajectory",
]

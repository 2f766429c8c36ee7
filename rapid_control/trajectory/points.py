"""Trajectory model -- the vocabulary between the planner and RAPID output.

Every waypoint is an immutable, slotted dataclass.  Joint values are in
**degrees** (the unit RAPID ``jointtarget`` records use) and durations in
**seconds**.

Grouping
--------
A *segment* is a contiguous, typed run of points.  The type only decides
how the emitter moves through the points:

* ``PROCESS`` -- controlled-speed working motion, process output held on.
* ``APPROACH`` -- lead-in transit, output off.
* ``TRAVERSE`` -- transit between process segments, output off.

A *job* bundles the approach points, the ordered segments and the
departure points of one program.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Iterator


class SegmentType(enum.Enum):
    """Closed set of segment kinds."""

    PROCESS = "process"
    APPROACH = "approach"
    TRAVERSE = "traverse"


# ---------------------------------------------------------------------------
# Points
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TrajectoryPt:
    """One joint-space waypoint.

    Parameters
    ----------
    positions : tuple[float, ...]
        Joint values in degrees, one per axis, robot axes first.
    duration : float | None
        Seconds to reach this point from the previous one.  ``None``
        leaves timing to the configured speed data.
    """

    positions: tuple[float, ...]
    duration: float | None = None

    def __post_init__(self) -> None:
        # Accept any iterable of numbers (lists, numpy arrays).
        object.__setattr__(
            self, "positions", tuple(float(v) for v in self.positions)
        )
        if self.duration is not None:
            object.__setattr__(self, "duration", float(self.duration))
            if self.duration < 0.0:
                raise ValueError(
                    f"duration must be >= 0 s, got {self.duration}"
                )

    @property
    def dof(self) -> int:
        """Number of joint values."""
        return len(self.positions)


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TrajectorySegment:
    """Ordered points tagged with a :class:`SegmentType`.

    Parameters
    ----------
    type : SegmentType
        How the points are traversed.
    points : tuple[TrajectoryPt, ...]
        Points in execution order.  May be empty.
    """

    type: SegmentType
    points: tuple[TrajectoryPt, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.type, SegmentType):
            raise ValueError(
                f"type must be a SegmentType, got {self.type!r}"
            )
        object.__setattr__(self, "points", tuple(self.points))

    @property
    def is_process(self) -> bool:
        return self.type is SegmentType.PROCESS

    def __len__(self) -> int:
        return len(self.points)


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TrajectoryJob:
    """Everything one program moves through, in execution order.

    Parameters
    ----------
    approach : tuple[TrajectoryPt, ...]
        Lead-in to the first segment.
    segments : tuple[TrajectorySegment, ...]
        Process, approach and traverse segments.
    departure : tuple[TrajectoryPt, ...]
        Motion away from the last segment.
    """

    approach: tuple[TrajectoryPt, ...] = ()
    segments: tuple[TrajectorySegment, ...] = ()
    departure: tuple[TrajectoryPt, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "approach", tuple(self.approach))
        object.__setattr__(self, "segments", tuple(self.segments))
        object.__setattr__(self, "departure", tuple(self.departure))

    def all_points(self) -> list[TrajectoryPt]:
        """Flatten approach, segments and departure in emission order."""
        return list(iter_points(self.approach, self.segments, self.departure))

    @property
    def point_count(self) -> int:
        return (
            len(self.approach)
            + sum(len(seg) for seg in self.segments)
            + len(self.departure)
        )

    @property
    def has_process(self) -> bool:
        """True when at least one PROCESS segment has points."""
        return any(seg.is_process and seg.points for seg in self.segments)


def iter_points(
    approach: Iterable[TrajectoryPt],
    segments: Iterable[TrajectorySegment],
    departure: Iterable[TrajectoryPt],
) -> Iterator[TrajectoryPt]:
    """Yield every point in joint-target numbering order."""
    yield from approach
    for seg in segments:
        yield from seg.points
    yield from departure

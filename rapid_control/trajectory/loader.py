"""Trajectory file loader.

Reads a planner export (YAML) into a :class:`TrajectoryJob`.  Planners
usually work in radians while RAPID ``jointtarget`` records are in
degrees, so the file declares its ``units`` and conversion happens
**here**, once, at the file boundary.

File layout::

    units: rad                 # or deg (default)
    approach:
      - {joints: [0.0, 0.0, 0.0, 0.0, 0.5, 0.0], duration: 2.0}
    segments:
      - type: process          # process | approach | traverse
        points:
          - {joints: [...]}
          - [...]              # bare joint list, no duration
    departure:
      - {joints: [...]}

Usage::

    from rapid_control.trajectory.loader import load_trajectory
    job = load_trajectory("blend_path.yaml")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np

from rapid_control.trajectory.points import (
    SegmentType,
    TrajectoryJob,
    TrajectoryPt,
    TrajectorySegment,
)
from rapid_control.utils.fs import load_yaml

logger = logging.getLogger(__name__)

_UNITS = ("deg", "rad")


class TrajectoryError(Exception):
    """Raised when a trajectory file is malformed."""

    pass


# ---------------------------------------------------------------------------
# Internal parsing helpers
# ---------------------------------------------------------------------------


def _parse_joints(raw: Any, units: str, where: str) -> np.ndarray:
    """Convert a raw joint list to a finite float array in degrees."""
    try:
        joints = np.asarray(raw, dtype=float)
    except (TypeError, ValueError) as exc:
        raise TrajectoryError(f"{where}: joints must be numeric, got {raw!r}") from exc

    if joints.ndim != 1 or joints.size == 0:
        raise TrajectoryError(
            f"{where}: joints must be a non-empty flat list, got {raw!r}"
        )
    if not np.all(np.isfinite(joints)):
        raise TrajectoryError(f"{where}: joints must be finite, got {raw!r}")

    if units == "rad":
        joints = np.degrees(joints)
    return joints


def _parse_point(raw: Any, units: str, where: str) -> TrajectoryPt:
    """Parse a point given as ``{joints, duration}`` or a bare joint list."""
    if isinstance(raw, dict):
        if "joints" not in raw:
            raise TrajectoryError(f"{where}: missing 'joints'")
        joints = _parse_joints(raw["joints"], units, where)
        duration = raw.get("duration")
    else:
        joints = _parse_joints(raw, units, where)
        duration = None

    try:
        return TrajectoryPt(positions=joints.tolist(), duration=duration)
    except (TypeError, ValueError) as exc:
        raise TrajectoryError(f"{where}: {exc}") from exc


def _parse_points(raw: Any, units: str, where: str) -> tuple[TrajectoryPt, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise TrajectoryError(f"{where} must be a list of points, got {raw!r}")
    return tuple(
        _parse_point(item, units, f"{where}[{i}]") for i, item in enumerate(raw)
    )


def _parse_segment(raw: Any, units: str, index: int) -> TrajectorySegment:
    where = f"segments[{index}]"
    if not isinstance(raw, dict):
        raise TrajectoryError(f"{where} must be a mapping, got {raw!r}")

    kind = str(raw.get("type", "")).lower()
    try:
        seg_type = SegmentType(kind)
    except ValueError as exc:
        valid = [t.value for t in SegmentType]
        raise TrajectoryError(
            f"{where}: unknown segment type {raw.get('type')!r}. Expected one of {valid}"
        ) from exc

    return TrajectorySegment(
        type=seg_type,
        points=_parse_points(raw.get("points"), units, f"{where}.points"),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_trajectory(data: dict[str, Any] | None) -> TrajectoryJob:
    """Build a :class:`TrajectoryJob` from an already-parsed mapping.

    Parameters
    ----------
    data : dict | None
        Mapping with optional ``units``, ``approach``, ``segments`` and
        ``departure`` keys.

    Raises
    ------
    TrajectoryError
        If any section is malformed.
    """
    if data is None:
        raise TrajectoryError("Empty trajectory document")
    if not isinstance(data, dict):
        raise TrajectoryError(f"Trajectory document must be a mapping, got {type(data).__name__}")

    units = str(data.get("units", "deg")).lower()
    if units not in _UNITS:
        raise TrajectoryError(f"Unknown units {units!r}. Expected one of {list(_UNITS)}")

    raw_segments = data.get("segments") or []
    if not isinstance(raw_segments, list):
        raise TrajectoryError(f"segments must be a list, got {raw_segments!r}")

    return TrajectoryJob(
        approach=_parse_points(data.get("approach"), units, "approach"),
        segments=tuple(
            _parse_segment(seg, units, i) for i, seg in enumerate(raw_segments)
        ),
        departure=_parse_points(data.get("departure"), units, "departure"),
    )


def load_trajectory(path: str | Path) -> TrajectoryJob:
    """Load a trajectory job from YAML.

    Parameters
    ----------
    path : str | Path
        Trajectory file.

    Returns
    -------
    TrajectoryJob
        Points converted to degrees.

    Raises
    ------
    TrajectoryError
        If the document is malformed.
    FileNotFoundError
        If *path* does not exist.
    """
    path = Path(path)
    logger.info("Loading trajectory from %s", path)

    job = parse_trajectory(load_yaml(path))
    logger.info(
        "Trajectory loaded: %d points in %d segments",
        job.point_count,
        len(job.segments),
    )
    return job

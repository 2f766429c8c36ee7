"""RAPID emitter -- trajectory points to ABB RAPID module text.

Layout of a generated module::

    MODULE mProcess
    <speed / trigger declarations>
    <one CONST jointtarget per point: jTarg0, jTarg1, ...>

    PROC main()
    ConfJ\\Off;
    ConfL\\Off;
    <trigger setup when tool activation is configured>
    <motions, with SetDO around each run of process segments>
    ENDPROC
    ENDMODULE

Joint targets are numbered in emission order over the whole program
(approach, every segment, departure), so motion ``k`` always refers to
``jTarg<k>``.

Write failures:
    Every writer performs exactly one ``sink.write`` and returns ``True``
    on success.  A sink that raises ``OSError`` or ``ValueError`` (closed
    stream) makes the writer log the failure and return ``False``; the
    assemblers stop at the first ``False`` and return it.  Partial output
    left in the sink must be discarded by the caller.

Process I/O:
    ``SetDO <output_name>,1`` precedes the first motion of each maximal
    run of PROCESS segments and ``SetDO <output_name>,0`` follows its last
    motion.  Both are preceded by ``WaitRob\\InPos`` so the signal changes
    with the robot in position.  Segments without points are transparent:
    ``PROCESS, <empty TRAVERSE>, PROCESS`` is one run.
"""

from __future__ import annotations

import enum
import logging
from io import StringIO
from pathlib import Path
from typing import Iterable, Sequence, TextIO

from rapid_control.configs.loader import ProcessParams
from rapid_control.trajectory.points import (
    SegmentType,
    TrajectoryJob,
    TrajectoryPt,
    TrajectorySegment,
    iter_points,
)
from rapid_control.utils.fs import atomic_write_text

logger = logging.getLogger(__name__)


class EmitError(Exception):
    """Raised when a program could not be written to its sink."""

    pass


# ---------------------------------------------------------------------------
# Names used in the generated module
# ---------------------------------------------------------------------------

TOOL = "tool0"
PROCESS_SPEED = "vProcess"
TRIGGER_ON = "tActivate"
TRIGGER_OFF = "tDeactivate"


class FreeSpeed(enum.Enum):
    """Speed data used by a free (``MoveAbsJ``) motion."""

    APPROACH = "vApproach"
    TRAVERSE = "vTraverse"
    DEPARTURE = "vDeparture"


# Predefined RAPID zone data, largest first.
_ZONES_MM = (200, 150, 100, 80, 60, 50, 40, 30, 20, 15, 10, 5, 1)
_ROBOT_AXES = 6
_EXTERNAL_AXES = 6
_EXTAX_UNUSED = "9E9"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write(sink: TextIO, text: str) -> bool:
    try:
        sink.write(text)
    except (OSError, ValueError) as exc:
        logger.error("Write to RAPID output failed: %s", exc)
        return False
    return True


def _num(value: float) -> str:
    """Compact numeric literal (``20``, ``0.5``, ``1.25``)."""
    return f"{value:.6g}"


def _zone(radius_mm: float) -> str:
    """Snap a blend radius down to a predefined RAPID zone.

    Radii below the smallest predefined zone stop at the point (``fine``).
    """
    for ref in _ZONES_MM:
        if radius_mm >= ref:
            return f"z{ref}"
    return "fine"


def _speeddata(tcp_mm_s: float) -> str:
    # Orientation / external axis speeds match the predefined vN records.
    return f"[{_num(tcp_mm_s)},500,5000,1000]"


def target_name(n: int) -> str:
    """Name of joint target ``n`` in the generated module."""
    return f"jTarg{n}"


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------


def emit_joint_position(sink: TextIO, pt: TrajectoryPt, n: int) -> bool:
    """Write ``CONST jointtarget jTarg<n>`` for *pt*.

    The first six joint values fill the robot axes (padded with 0), the
    next six fill the external axes (unused ones are ``9E9``).
    """
    values = pt.positions
    if len(values) > _ROBOT_AXES + _EXTERNAL_AXES:
        logger.warning(
            "Point %d has %d joints; only %d are written",
            n, len(values), _ROBOT_AXES + _EXTERNAL_AXES,
        )

    robax = list(values[:_ROBOT_AXES])
    robax += [0.0] * (_ROBOT_AXES - len(robax))
    extax = [f"{v:.6f}" for v in values[_ROBOT_AXES:_ROBOT_AXES + _EXTERNAL_AXES]]
    extax += [_EXTAX_UNUSED] * (_EXTERNAL_AXES - len(extax))

    robax_str = ",".join(f"{v:.6f}" for v in robax)
    extax_str = ",".join(extax)
    return _write(
        sink,
        f"CONST jointtarget {target_name(n)}:=[[{robax_str}],[{extax_str}]];\n",
    )


def emit_process_motion(
    sink: TextIO,
    params: ProcessParams,
    n: int,
    start: bool = False,
    end: bool = False,
) -> bool:
    """Write a controlled-speed linear motion to ``jTarg<n>``.

    Parameters
    ----------
    start : bool
        First motion of the process work: fires the activation trigger.
    end : bool
        Last motion of the process work: fires the deactivation trigger.
        ``start`` and ``end`` may both be set.

    Notes
    -----
    Start and end motions stop at the point (``fine``).  Without
    ``params.activation`` they are plain ``MoveL`` instructions.
    """
    zone = "fine" if (start or end) else _zone(params.process_zone_mm)
    to_point = f"CalcRobT({target_name(n)},{TOOL})"

    if params.activation is not None and (start or end):
        if start and end:
            trigger = f"{TRIGGER_ON}\\T2:={TRIGGER_OFF}"
        elif start:
            trigger = TRIGGER_ON
        else:
            trigger = TRIGGER_OFF
        text = f"TriggL {to_point},{PROCESS_SPEED},{trigger},{zone},{TOOL};\n"
    else:
        text = f"MoveL {to_point},{PROCESS_SPEED},{zone},{TOOL};\n"

    return _write(sink, text)


def emit_free_motion(
    sink: TextIO,
    params: ProcessParams,
    n: int,
    duration: float | None,
    stop_at: bool,
    speed: FreeSpeed = FreeSpeed.TRAVERSE,
) -> bool:
    """Write a joint move to ``jTarg<n>``.

    A positive *duration* is written as ``\\T:=<s>``, otherwise the speed
    data alone governs the move.  *stop_at* selects ``fine`` over the
    configured fly-by zone.
    """
    timing = ""
    if duration is not None and duration > 0.0:
        timing = f"\\T:={_num(duration)}"
    zone = "fine" if stop_at else _zone(params.free_zone_mm)
    return _write(
        sink,
        f"MoveAbsJ {target_name(n)},{speed.value}{timing},{zone},{TOOL};\n",
    )


def emit_set_output(sink: TextIO, params: ProcessParams, value: bool | int) -> bool:
    """Write ``SetDO`` for ``params.output_name`` once the robot is in position."""
    level = 1 if value else 0
    return _write(sink, f"WaitRob\\InPos;\nSetDO {params.output_name},{level};\n")


def emit_process_declarations(sink: TextIO, params: ProcessParams) -> bool:
    """Write the speed data (and trigger data) the motions refer to."""
    lines = [
        f"CONST speeddata {PROCESS_SPEED}:={_speeddata(params.process_speed_mm_s)};",
        f"CONST speeddata {FreeSpeed.APPROACH.value}:={_speeddata(params.approach_speed_mm_s)};",
        f"CONST speeddata {FreeSpeed.TRAVERSE.value}:={_speeddata(params.traverse_speed_mm_s)};",
        f"CONST speeddata {FreeSpeed.DEPARTURE.value}:={_speeddata(params.departure_speed)};",
    ]
    if params.activation is not None:
        lines.append(f"VAR triggdata {TRIGGER_ON};")
        lines.append(f"VAR triggdata {TRIGGER_OFF};")
    return _write(sink, "\n".join(lines) + "\n")


# ---------------------------------------------------------------------------
# Module / routine framing
# ---------------------------------------------------------------------------


def _emit_module_start(sink: TextIO, params: ProcessParams) -> bool:
    return _write(sink, f"MODULE {params.module_name}\n")


def _emit_routine_start(sink: TextIO, params: ProcessParams) -> bool:
    lines = [
        "",
        f"PROC {params.routine_name}()",
        "ConfJ\\Off;",
        "ConfL\\Off;",
    ]
    act = params.activation
    if act is not None:
        distance = _num(act.distance_mm)
        lines.append(
            f"TriggIO {TRIGGER_ON},{distance}\\DOp:={act.signal},{act.on_value};"
        )
        lines.append(
            f"TriggIO {TRIGGER_OFF},{distance}\\DOp:={act.signal},{act.off_value};"
        )
    return _write(sink, "\n".join(lines) + "\n")


def _emit_routine_end(sink: TextIO) -> bool:
    return _write(sink, "ENDPROC\nENDMODULE\n")


def _emit_preamble(
    sink: TextIO, params: ProcessParams, points: Iterable[TrajectoryPt],
) -> bool:
    """Module header, declarations, every joint target, routine start."""
    if not _emit_module_start(sink, params):
        return False
    if not emit_process_declarations(sink, params):
        return False
    for n, pt in enumerate(points):
        if not emit_joint_position(sink, pt, n):
            return False
    return _emit_routine_start(sink, params)


# ---------------------------------------------------------------------------
# Assemblers
# ---------------------------------------------------------------------------


class _RunState(enum.Enum):
    """Where the segment loop stands relative to PROCESS runs."""

    BEFORE_FIRST_PROCESS = enum.auto()
    IN_PROCESS_RUN = enum.auto()
    BETWEEN_PROCESS_RUNS = enum.auto()


def emit_rapid_file(
    sink: TextIO,
    approach: Sequence[TrajectoryPt],
    departure: Sequence[TrajectoryPt],
    segments: Sequence[TrajectorySegment],
    params: ProcessParams,
) -> bool:
    """Write a RAPID module moving through approach, segments and departure.

    The process output is switched on before each run of PROCESS segments
    and off right after it.  The first motion of the first PROCESS segment
    carries the activation trigger, the last motion of the last PROCESS
    segment the deactivation trigger.  The final motion of the routine
    stops at its point (``fine``) whichever phase it belongs to.

    Parameters
    ----------
    sink : TextIO
        Destination; anything with ``write(str)``.
    approach : Sequence[TrajectoryPt]
        Lead-in moved through at approach speed.
    departure : Sequence[TrajectoryPt]
        Retreat moved through at departure speed.
    segments : Sequence[TrajectorySegment]
        Segments in execution order.
    params : ProcessParams
        Speeds, output signal and activation settings.

    Returns
    -------
    bool
        ``True`` if the whole program was written, ``False`` at the first
        failed write.
    """
    segments = list(segments)
    total = len(approach) + sum(len(seg) for seg in segments) + len(departure)
    logger.debug(
        "Emitting RAPID module %s: %d targets, %d segments",
        params.module_name, total, len(segments),
    )

    if not _emit_preamble(sink, params, iter_points(approach, segments, departure)):
        return False

    # The robot stops at the final motion of the routine, whatever its phase.
    last_n = total - 1

    n = 0
    for pt in approach:
        if not emit_free_motion(sink, params, n, pt.duration, n == last_n, FreeSpeed.APPROACH):
            return False
        n += 1

    # Empty segments emit nothing and do not split PROCESS runs.  The end
    # marker needs the last non-empty PROCESS segment; it is located in the
    # one pass below, everything else is decided inside the loop.
    active = [seg for seg in segments if seg.points]
    last_process = max(
        (i for i, seg in enumerate(active) if seg.is_process), default=-1,
    )
    state = _RunState.BEFORE_FIRST_PROCESS
    io_runs = 0

    for i, seg in enumerate(active):
        if seg.type is SegmentType.PROCESS:
            if state is not _RunState.IN_PROCESS_RUN:
                if not emit_set_output(sink, params, True):
                    return False
                io_runs += 1
            first_process = state is _RunState.BEFORE_FIRST_PROCESS
            state = _RunState.IN_PROCESS_RUN

            last_j = len(seg.points) - 1
            for j in range(len(seg.points)):
                start = first_process and j == 0
                end = i == last_process and j == last_j
                if not emit_process_motion(sink, params, n, start=start, end=end):
                    return False
                n += 1

            next_is_process = i + 1 < len(active) and active[i + 1].is_process
            if not next_is_process:
                if not emit_set_output(sink, params, False):
                    return False
                state = _RunState.BETWEEN_PROCESS_RUNS

        elif seg.type is SegmentType.APPROACH:
            for pt in seg.points:
                if not emit_free_motion(sink, params, n, pt.duration, n == last_n, FreeSpeed.APPROACH):
                    return False
                n += 1

        elif seg.type is SegmentType.TRAVERSE:
            for pt in seg.points:
                if not emit_free_motion(sink, params, n, pt.duration, n == last_n, FreeSpeed.TRAVERSE):
                    return False
                n += 1

    for pt in departure:
        if not emit_free_motion(sink, params, n, pt.duration, n == last_n, FreeSpeed.DEPARTURE):
            return False
        n += 1

    if not _emit_routine_end(sink):
        return False

    logger.info(
        "RAPID module %s emitted: %d targets, %d process runs",
        params.module_name, n, io_runs,
    )
    return True


def emit_joint_trajectory_file(
    sink: TextIO,
    points: Sequence[TrajectoryPt],
    params: ProcessParams,
) -> bool:
    """Write a RAPID module that merely moves through *points*.

    Every point is a traverse-speed ``MoveAbsJ``; points without a
    duration are timed by the traverse speed data.  The robot stops at
    the first and last point.  No I/O is written.

    Returns
    -------
    bool
        ``True`` if the whole program was written.
    """
    points = list(points)
    logger.debug(
        "Emitting RAPID joint trajectory %s: %d points",
        params.module_name, len(points),
    )

    if not _emit_preamble(sink, params, points):
        return False

    last = len(points) - 1
    for n, pt in enumerate(points):
        stop_at = n == 0 or n == last
        if not emit_free_motion(sink, params, n, pt.duration, stop_at, FreeSpeed.TRAVERSE):
            return False

    if not _emit_routine_end(sink):
        return False

    logger.info(
        "RAPID joint trajectory %s emitted: %d targets",
        params.module_name, len(points),
    )
    return True


# ---------------------------------------------------------------------------
# String / file helpers
# ---------------------------------------------------------------------------


def render_rapid_program(job: TrajectoryJob, params: ProcessParams) -> str:
    """Return the segment-aware program for *job* as text.

    Raises
    ------
    EmitError
        If the program could not be assembled.
    """
    buf = StringIO()
    if not emit_rapid_file(buf, job.approach, job.departure, job.segments, params):
        raise EmitError(f"Failed to generate RAPID module {params.module_name}")
    return buf.getvalue()


def render_joint_trajectory(
    points: Sequence[TrajectoryPt], params: ProcessParams,
) -> str:
    """Return the point-only program for *points* as text.

    Raises
    ------
    EmitError
        If the program could not be assembled.
    """
    buf = StringIO()
    if not emit_joint_trajectory_file(buf, points, params):
        raise EmitError(f"Failed to generate RAPID module {params.module_name}")
    return buf.getvalue()


def write_rapid_file(
    path: str | Path,
    job: TrajectoryJob,
    params: ProcessParams,
    *,
    points_only: bool = False,
) -> Path:
    """Render *job* and write it to *path* atomically.

    Parameters
    ----------
    points_only : bool
        Flatten the job and emit a plain joint trajectory (no process I/O).

    Returns
    -------
    Path
        The written file.
    """
    if points_only:
        text = render_joint_trajectory(job.all_points(), params)
    else:
        text = render_rapid_program(job, params)

    path = Path(path)
    atomic_write_text(path, text)
    logger.info("RAPID module written to %s", path)
    return path

"""Tests for the RAPID emitter.

Validates joint target numbering, process I/O placement, activation
trigger placement, free-motion timing, point-only output and write
failure propagation.
"""

from __future__ import annotations

import re
from io import StringIO

import pytest

from rapid_control.configs.loader import ActivationParams, ProcessParams
from rapid_control.rapid.emitter import (
    FreeSpeed,
    emit_free_motion,
    emit_joint_position,
    emit_joint_trajectory_file,
    emit_process_declarations,
    emit_process_motion,
    emit_rapid_file,
    emit_set_output,
    render_joint_trajectory,
    render_rapid_program,
    write_rapid_file,
)
from rapid_control.trajectory.points import (
    SegmentType,
    TrajectoryJob,
    TrajectoryPt,
    TrajectorySegment,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FailingSink:
    """Text sink that raises ``OSError`` on write number ``fail_on``."""

    def __init__(self, fail_on: int | None = None) -> None:
        self.fail_on = fail_on
        self.attempts = 0
        self.chunks: list[str] = []

    def write(self, text: str) -> int:
        self.attempts += 1
        if self.fail_on is not None and self.attempts >= self.fail_on:
            raise OSError("No space left on device")
        self.chunks.append(text)
        return len(text)


def pt(i: float, duration: float | None = None) -> TrajectoryPt:
    """Six-axis point whose joints encode *i* for easy identification."""
    return TrajectoryPt(positions=(i, i, i, i, i, i), duration=duration)


def seg(kind: SegmentType, *points: TrajectoryPt) -> TrajectorySegment:
    return TrajectorySegment(type=kind, points=points)


def trace(program: str) -> list[tuple]:
    """Reduce the routine body to comparable instruction tuples.

    ``("free", n)``, ``("process", n, start, end)``, ``("io", signal, value)``
    """
    body = program.split("PROC ", 1)[1]
    out: list[tuple] = []
    for line in body.splitlines():
        line = line.strip()
        if line.startswith("MoveAbsJ"):
            out.append(("free", int(re.search(r"jTarg(\d+)", line).group(1))))
        elif line.startswith(("MoveL", "TriggL")):
            n = int(re.search(r"jTarg(\d+)", line).group(1))
            out.append(("process", n, "tActivate" in line, "tDeactivate" in line))
        elif line.startswith("SetDO"):
            signal, value = line[len("SetDO "):-1].split(",")
            out.append(("io", signal, int(value)))
    return out


def target_ids(program: str) -> list[int]:
    return [int(m) for m in re.findall(r"CONST jointtarget jTarg(\d+)", program)]


def render(segments, params, approach=(), departure=()) -> str:
    buf = StringIO()
    assert emit_rapid_file(buf, list(approach), list(departure), list(segments), params)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def params() -> ProcessParams:
    return ProcessParams(
        output_name="DO1",
        activation=ActivationParams(signal="doSpindle"),
    )


@pytest.fixture()
def plain_params() -> ProcessParams:
    """Parameters without tool activation."""
    return ProcessParams(output_name="DO1")


@pytest.fixture()
def scenario() -> dict:
    """approach [P0], [PROCESS P1 P2, TRAVERSE P3], departure [P4]."""
    return {
        "approach": [pt(0)],
        "segments": [
            seg(SegmentType.PROCESS, pt(1), pt(2)),
            seg(SegmentType.TRAVERSE, pt(3)),
        ],
        "departure": [pt(4)],
    }


# ---------------------------------------------------------------------------
# Joint targets
# ---------------------------------------------------------------------------


class TestJointPosition:
    def test_six_axis_target(self) -> None:
        buf = StringIO()
        assert emit_joint_position(buf, TrajectoryPt((10, 20, 30, 40, 50, 60)), 3)
        assert buf.getvalue() == (
            "CONST jointtarget jTarg3:=[[10.000000,20.000000,30.000000,"
            "40.000000,50.000000,60.000000],[9E9,9E9,9E9,9E9,9E9,9E9]];\n"
        )

    def test_short_vector_padded_with_zero(self) -> None:
        buf = StringIO()
        emit_joint_position(buf, TrajectoryPt((1.5, -2.0)), 0)
        assert "[[1.500000,-2.000000,0.000000,0.000000,0.000000,0.000000]" in buf.getvalue()

    def test_seventh_joint_goes_to_external_axis(self) -> None:
        buf = StringIO()
        emit_joint_position(buf, TrajectoryPt((0, 0, 0, 0, 0, 0, 125.0)), 0)
        assert buf.getvalue().endswith(
            "[125.000000,9E9,9E9,9E9,9E9,9E9]];\n"
        )


# ---------------------------------------------------------------------------
# Motion writers
# ---------------------------------------------------------------------------


class TestProcessMotion:
    def test_interior_motion_uses_process_zone(self, params: ProcessParams) -> None:
        buf = StringIO()
        assert emit_process_motion(buf, params, 2)
        assert buf.getvalue() == "MoveL CalcRobT(jTarg2,tool0),vProcess,z5,tool0;\n"

    def test_start_fires_activation(self, params: ProcessParams) -> None:
        buf = StringIO()
        emit_process_motion(buf, params, 1, start=True)
        assert buf.getvalue() == (
            "TriggL CalcRobT(jTarg1,tool0),vProcess,tActivate,fine,tool0;\n"
        )

    def test_end_fires_deactivation(self, params: ProcessParams) -> None:
        buf = StringIO()
        emit_process_motion(buf, params, 7, end=True)
        assert buf.getvalue() == (
            "TriggL CalcRobT(jTarg7,tool0),vProcess,tDeactivate,fine,tool0;\n"
        )

    def test_start_and_end_on_one_motion(self, params: ProcessParams) -> None:
        buf = StringIO()
        emit_process_motion(buf, params, 0, start=True, end=True)
        assert "tActivate\\T2:=tDeactivate" in buf.getvalue()

    def test_no_activation_means_plain_stop(self, plain_params: ProcessParams) -> None:
        buf = StringIO()
        emit_process_motion(buf, plain_params, 1, start=True)
        assert buf.getvalue() == "MoveL CalcRobT(jTarg1,tool0),vProcess,fine,tool0;\n"

    @pytest.mark.parametrize(
        "zone_mm, expected",
        [(7.0, "z5"), (20.0, "z20"), (1.0, "z1"), (0.5, "fine"), (500.0, "z200")],
    )
    def test_zone_snaps_to_predefined(self, zone_mm: float, expected: str) -> None:
        buf = StringIO()
        emit_process_motion(buf, ProcessParams(process_zone_mm=zone_mm), 0)
        assert f",vProcess,{expected},tool0;" in buf.getvalue()


class TestFreeMotion:
    def test_timed_motion(self, params: ProcessParams) -> None:
        buf = StringIO()
        assert emit_free_motion(buf, params, 4, 2.5, False, FreeSpeed.APPROACH)
        assert buf.getvalue() == "MoveAbsJ jTarg4,vApproach\\T:=2.5,z20,tool0;\n"

    def test_untimed_motion_uses_speed_data(self, params: ProcessParams) -> None:
        buf = StringIO()
        emit_free_motion(buf, params, 0, None, False)
        assert buf.getvalue() == "MoveAbsJ jTarg0,vTraverse,z20,tool0;\n"

    def test_zero_duration_is_untimed(self, params: ProcessParams) -> None:
        buf = StringIO()
        emit_free_motion(buf, params, 0, 0.0, False)
        assert "\\T:=" not in buf.getvalue()

    def test_stop_at_uses_fine(self, params: ProcessParams) -> None:
        buf = StringIO()
        emit_free_motion(buf, params, 9, None, True, FreeSpeed.DEPARTURE)
        assert buf.getvalue() == "MoveAbsJ jTarg9,vDeparture,fine,tool0;\n"


# ---------------------------------------------------------------------------
# I/O and declarations
# ---------------------------------------------------------------------------


class TestSetOutput:
    def test_on(self, params: ProcessParams) -> None:
        buf = StringIO()
        assert emit_set_output(buf, params, True)
        assert buf.getvalue() == "WaitRob\\InPos;\nSetDO DO1,1;\n"

    def test_off(self, params: ProcessParams) -> None:
        buf = StringIO()
        emit_set_output(buf, params, 0)
        assert buf.getvalue().endswith("SetDO DO1,0;\n")


class TestDeclarations:
    def test_speed_data_from_params(self) -> None:
        buf = StringIO()
        p = ProcessParams(
            process_speed_mm_s=12.5,
            approach_speed_mm_s=150.0,
            traverse_speed_mm_s=400.0,
        )
        assert emit_process_declarations(buf, p)
        text = buf.getvalue()
        assert "CONST speeddata vProcess:=[12.5,500,5000,1000];" in text
        assert "CONST speeddata vApproach:=[150,500,5000,1000];" in text
        assert "CONST speeddata vTraverse:=[400,500,5000,1000];" in text
        # No dedicated departure speed: falls back to traverse
        assert "CONST speeddata vDeparture:=[400,500,5000,1000];" in text

    def test_dedicated_departure_speed(self) -> None:
        buf = StringIO()
        emit_process_declarations(buf, ProcessParams(departure_speed_mm_s=250.0))
        assert "CONST speeddata vDeparture:=[250,500,5000,1000];" in buf.getvalue()

    def test_trigger_data_only_with_activation(
        self, params: ProcessParams, plain_params: ProcessParams,
    ) -> None:
        with_act, without = StringIO(), StringIO()
        emit_process_declarations(with_act, params)
        emit_process_declarations(without, plain_params)
        assert "VAR triggdata tActivate;" in with_act.getvalue()
        assert "VAR triggdata tDeactivate;" in with_act.getvalue()
        assert "triggdata" not in without.getvalue()


# ---------------------------------------------------------------------------
# Segment-aware program
# ---------------------------------------------------------------------------


class TestRapidFileScenario:
    def test_instruction_order(self, params: ProcessParams, scenario: dict) -> None:
        program = render(params=params, **scenario)
        assert trace(program) == [
            ("free", 0),
            ("io", "DO1", 1),
            ("process", 1, True, False),
            ("process", 2, False, True),
            ("io", "DO1", 0),
            ("free", 3),
            ("free", 4),
        ]

    def test_sections_in_order(self, params: ProcessParams, scenario: dict) -> None:
        program = render(params=params, **scenario)
        assert program.startswith("MODULE mProcess\n")
        decl = program.index("CONST speeddata vProcess")
        first_target = program.index("CONST jointtarget jTarg0")
        proc = program.index("PROC main()")
        assert decl < first_target < proc
        assert program.rstrip().endswith("ENDPROC\nENDMODULE")

    def test_targets_numbered_from_zero(self, params: ProcessParams, scenario: dict) -> None:
        program = render(params=params, **scenario)
        assert target_ids(program) == [0, 1, 2, 3, 4]

    def test_trigger_setup_in_routine(self, params: ProcessParams, scenario: dict) -> None:
        program = render(params=params, **scenario)
        routine = program.split("PROC main()", 1)[1]
        assert "TriggIO tActivate,0\\DOp:=doSpindle,1;" in routine
        assert "TriggIO tDeactivate,0\\DOp:=doSpindle,0;" in routine

    def test_speed_per_phase(self, params: ProcessParams, scenario: dict) -> None:
        program = render(params=params, **scenario)
        assert "MoveAbsJ jTarg0,vApproach," in program
        assert "MoveAbsJ jTarg3,vTraverse," in program
        # Last departure point stops
        assert "MoveAbsJ jTarg4,vDeparture,fine,tool0;" in program

    def test_byte_identical_on_repeat(self, params: ProcessParams, scenario: dict) -> None:
        assert render(params=params, **scenario) == render(params=params, **scenario)


class TestRapidFileProcessRuns:
    def test_single_point_carries_both_markers(self, params: ProcessParams) -> None:
        program = render([seg(SegmentType.PROCESS, pt(0))], params)
        assert trace(program) == [
            ("io", "DO1", 1),
            ("process", 0, True, True),
            ("io", "DO1", 0),
        ]

    def test_trailing_process_run_is_closed(self, params: ProcessParams) -> None:
        program = render(
            [seg(SegmentType.TRAVERSE, pt(0)), seg(SegmentType.PROCESS, pt(1), pt(2))],
            params,
        )
        assert trace(program)[-1] == ("io", "DO1", 0)

    def test_two_runs_toggle_twice(self, params: ProcessParams) -> None:
        segments = [
            seg(SegmentType.PROCESS, pt(0), pt(1)),
            seg(SegmentType.TRAVERSE, pt(2)),
            seg(SegmentType.PROCESS, pt(3)),
            seg(SegmentType.PROCESS, pt(4), pt(5)),
        ]
        steps = trace(render(segments, params))
        assert steps == [
            ("io", "DO1", 1),
            ("process", 0, True, False),
            ("process", 1, False, False),
            ("io", "DO1", 0),
            ("free", 2),
            ("io", "DO1", 1),
            ("process", 3, False, False),
            ("process", 4, False, False),
            ("process", 5, False, True),
            ("io", "DO1", 0),
        ]

    def test_markers_appear_exactly_once(self, params: ProcessParams) -> None:
        segments = [
            seg(SegmentType.APPROACH, pt(0)),
            seg(SegmentType.PROCESS, pt(1), pt(2)),
            seg(SegmentType.TRAVERSE, pt(3)),
            seg(SegmentType.PROCESS, pt(4), pt(5)),
            seg(SegmentType.TRAVERSE, pt(6)),
        ]
        steps = [s for s in trace(render(segments, params)) if s[0] == "process"]
        assert [s[1] for s in steps if s[2]] == [1]
        assert [s[1] for s in steps if s[3]] == [5]

    def test_empty_segment_does_not_split_run(self, params: ProcessParams) -> None:
        segments = [
            seg(SegmentType.PROCESS, pt(0)),
            seg(SegmentType.TRAVERSE),
            seg(SegmentType.PROCESS, pt(1)),
        ]
        steps = trace(render(segments, params))
        assert [s for s in steps if s[0] == "io"] == [("io", "DO1", 1), ("io", "DO1", 0)]

    def test_empty_last_process_segment_keeps_end_marker(self, params: ProcessParams) -> None:
        segments = [
            seg(SegmentType.PROCESS, pt(0), pt(1)),
            seg(SegmentType.PROCESS),
        ]
        assert trace(render(segments, params))[-2] == ("process", 1, False, True)

    def test_empty_first_process_segment_keeps_start_marker(self, params: ProcessParams) -> None:
        segments = [
            seg(SegmentType.PROCESS),
            seg(SegmentType.TRAVERSE, pt(0)),
            seg(SegmentType.PROCESS, pt(1)),
        ]
        steps = trace(render(segments, params))
        assert ("process", 1, True, True) in steps

    def test_numbering_continues_across_segments(self, params: ProcessParams) -> None:
        segments = [
            seg(SegmentType.PROCESS, pt(1), pt(2)),
            seg(SegmentType.TRAVERSE),
            seg(SegmentType.APPROACH, pt(3), pt(4)),
        ]
        program = render(segments, params, approach=[pt(0)], departure=[pt(5), pt(6)])
        assert target_ids(program) == list(range(7))
        motion_ids = [s[1] for s in trace(program) if s[0] != "io"]
        assert motion_ids == list(range(7))


class TestRapidFileWithoutProcess:
    def test_empty_segment_list(self, params: ProcessParams) -> None:
        program = render([], params, approach=[pt(0), pt(1)], departure=[pt(2)])
        assert trace(program) == [("free", 0), ("free", 1), ("free", 2)]
        assert "SetDO" not in program

    def test_transit_only_segments(self, params: ProcessParams) -> None:
        segments = [
            seg(SegmentType.APPROACH, pt(0)),
            seg(SegmentType.TRAVERSE, pt(1)),
        ]
        program = render(segments, params)
        assert "SetDO" not in program
        assert "TriggL" not in program
        assert "MoveAbsJ jTarg0,vApproach," in program

    def test_traverse_ending_without_departure_stops(self, params: ProcessParams) -> None:
        segments = [
            seg(SegmentType.TRAVERSE, pt(0), pt(1)),
            seg(SegmentType.PROCESS),
        ]
        program = render(segments, params)
        assert "MoveAbsJ jTarg0,vTraverse,z20,tool0;" in program
        assert "MoveAbsJ jTarg1,vTraverse,fine,tool0;" in program

    def test_approach_ending_without_segments_stops(self, params: ProcessParams) -> None:
        program = render([seg(SegmentType.TRAVERSE)], params, approach=[pt(0), pt(1)])
        assert "MoveAbsJ jTarg0,vApproach,z20,tool0;" in program
        assert "MoveAbsJ jTarg1,vApproach,fine,tool0;" in program

    def test_only_final_motion_stops(self, params: ProcessParams) -> None:
        program = render(
            [seg(SegmentType.TRAVERSE, pt(1))], params,
            approach=[pt(0)], departure=[pt(2), pt(3)],
        )
        assert program.count(",fine,") == 1
        assert "MoveAbsJ jTarg3,vDeparture,fine,tool0;" in program

    def test_empty_process_segment_only(self, params: ProcessParams) -> None:
        program = render([seg(SegmentType.PROCESS)], params)
        assert trace(program) == []

    def test_nothing_at_all(self, params: ProcessParams) -> None:
        program = render([], params)
        assert target_ids(program) == []
        assert "ENDMODULE" in program


# ---------------------------------------------------------------------------
# Point-only program
# ---------------------------------------------------------------------------


class TestJointTrajectoryFile:
    def test_free_motions_only(self, params: ProcessParams) -> None:
        buf = StringIO()
        points = [pt(0, 1.0), pt(1, 2.0), pt(2, 0.5)]
        assert emit_joint_trajectory_file(buf, points, params)
        program = buf.getvalue()
        assert target_ids(program) == [0, 1, 2]
        assert trace(program) == [("free", 0), ("free", 1), ("free", 2)]
        assert "SetDO" not in program

    def test_first_and_last_stop(self, params: ProcessParams) -> None:
        program = render_joint_trajectory([pt(0), pt(1), pt(2)], params)
        assert "MoveAbsJ jTarg0,vTraverse,fine,tool0;" in program
        assert "MoveAbsJ jTarg1,vTraverse,z20,tool0;" in program
        assert "MoveAbsJ jTarg2,vTraverse,fine,tool0;" in program

    def test_unset_duration_uses_speed_data(self, params: ProcessParams) -> None:
        program = render_joint_trajectory([pt(0)], params)
        assert "MoveAbsJ jTarg0,vTraverse,fine,tool0;" in program
        assert "\\T:=" not in program

    def test_durations_written(self, params: ProcessParams) -> None:
        program = render_joint_trajectory([pt(0, 1.25), pt(1, 3.0)], params)
        assert "MoveAbsJ jTarg0,vTraverse\\T:=1.25,fine,tool0;" in program
        assert "MoveAbsJ jTarg1,vTraverse\\T:=3,fine,tool0;" in program

    def test_never_writes_io_for_process_job(self, params: ProcessParams) -> None:
        job = TrajectoryJob(
            approach=[pt(0)],
            segments=[seg(SegmentType.PROCESS, pt(1), pt(2))],
            departure=[pt(3)],
        )
        program = render_joint_trajectory(job.all_points(), params)
        assert "SetDO" not in program
        assert "TriggL" not in program
        assert target_ids(program) == [0, 1, 2, 3]

    def test_empty_points(self, params: ProcessParams) -> None:
        program = render_joint_trajectory([], params)
        assert trace(program) == []
        assert program.rstrip().endswith("ENDMODULE")


# ---------------------------------------------------------------------------
# Write failures
# ---------------------------------------------------------------------------


class TestWriteFailure:
    def _run_scenario(self, sink, params: ProcessParams, scenario: dict) -> bool:
        return emit_rapid_file(
            sink,
            scenario["approach"],
            scenario["departure"],
            scenario["segments"],
            params,
        )

    def test_one_write_per_instruction(self, params: ProcessParams, scenario: dict) -> None:
        sink = FailingSink()
        assert self._run_scenario(sink, params, scenario)
        # module, declarations, 5 targets, routine start, 5 motions,
        # 2 outputs, routine end
        assert sink.attempts == 16

    def test_stops_at_kth_write(self, params: ProcessParams, scenario: dict) -> None:
        total = 16
        for k in range(1, total + 1):
            sink = FailingSink(fail_on=k)
            assert self._run_scenario(sink, params, scenario) is False
            assert sink.attempts == k
            assert len(sink.chunks) == k - 1

    def test_point_only_stops_at_kth_write(self, params: ProcessParams) -> None:
        points = [pt(0), pt(1), pt(2)]
        counting = FailingSink()
        assert emit_joint_trajectory_file(counting, points, params)
        for k in range(1, counting.attempts + 1):
            sink = FailingSink(fail_on=k)
            assert emit_joint_trajectory_file(sink, points, params) is False
            assert sink.attempts == k

    def test_closed_stream_reports_false(self, params: ProcessParams) -> None:
        buf = StringIO()
        buf.close()
        assert emit_set_output(buf, params, True) is False
        assert emit_joint_trajectory_file(buf, [pt(0)], params) is False


# ---------------------------------------------------------------------------
# String / file helpers
# ---------------------------------------------------------------------------


class TestRenderAndWrite:
    def test_render_matches_stream_output(self, params: ProcessParams, scenario: dict) -> None:
        job = TrajectoryJob(**scenario)
        assert render_rapid_program(job, params) == render(params=params, **scenario)

    def test_write_rapid_file(self, tmp_path, params: ProcessParams, scenario: dict) -> None:
        job = TrajectoryJob(**scenario)
        path = write_rapid_file(tmp_path / "out" / "mProcess.mod", job, params)
        assert path.exists()
        assert path.read_text(encoding="utf-8") == render_rapid_program(job, params)
        assert not list(path.parent.glob("*.tmp"))

    def test_write_points_only(self, tmp_path, params: ProcessParams, scenario: dict) -> None:
        job = TrajectoryJob(**scenario)
        path = write_rapid_file(tmp_path / "p.mod", job, params, points_only=True)
        text = path.read_text(encoding="utf-8")
        assert "SetDO" not in text
        assert target_ids(text) == [0, 1, 2, 3, 4]

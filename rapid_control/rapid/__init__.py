"""
RAPID generation module.

Converts trajectory points and typed segments to ABB RAPID module text
with process I/O placement and joint target numbering.
"""

from rapid_control.rapid.emitter import (
    EmitError,
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

__all__ = [
    "EmitError",
    "FreeSpeed",
    "emit_free_motion",
    "emit_joint_position",
    "emit_joint_trajectory_file",
    "emit_process_declarations",
    "emit_process_motion",
    "emit_rapid_file",
    "emit_set_output",
    "render_joint_trajectory",
    "render_rapid_program",
    "write_rapid_file",
]

#!/usr/bin/env python3
"""
Export Program Script.

Convert a planned trajectory (YAML) into an ABB RAPID module.

Usage:
    python -m rapid_control.scripts.export_program -t blend_path.yaml
    python -m rapid_control.scripts.export_program -t blend_path.yaml -o mProcess.mod
    python -m rapid_control.scripts.export_program -t path.yaml -c cell3.yaml --points-only
"""

from __future__ import annotations

import argparse
import logging
import sys

from rapid_control.configs.loader import ConfigError, load_params
from rapid_control.rapid.emitter import (
    EmitError,
    render_joint_trajectory,
    render_rapid_program,
    write_rapid_file,
)
from rapid_control.trajectory.loader import TrajectoryError, load_trajectory
from rapid_control.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate an ABB RAPID module from a planned trajectory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--trajectory",
        "-t",
        type=str,
        required=True,
        help="Trajectory file (YAML)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Process parameter file (defaults to the packaged process.yaml)",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output .mod file; prints to stdout when omitted",
    )
    parser.add_argument(
        "--points-only",
        action="store_true",
        help="Emit a plain joint trajectory without process I/O",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit log lines as JSON",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        help="Also write logs to this file (size-rotated)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging(
        log_level=args.log_level,
        log_file=args.log_file,
        json=args.json_logs,
        rotate={"max_bytes": 5_000_000, "backup_count": 3} if args.log_file else None,
        context={"app": "rapid-export"},
    )

    try:
        params = load_params(args.config)
        job = load_trajectory(args.trajectory)

        if args.output:
            path = write_rapid_file(
                args.output, job, params, points_only=args.points_only,
            )
            logger.info("Wrote %d targets to %s", job.point_count, path)
        else:
            if args.points_only:
                text = render_joint_trajectory(job.all_points(), params)
            else:
                text = render_rapid_program(job, params)
            sys.stdout.write(text)

    except (ConfigError, TrajectoryError, EmitError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1
    except Exception:
        logger.exception("Export failed")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())

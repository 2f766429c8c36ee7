"""
RAPID Control Package.

Turns planned joint-space trajectories into ABB RAPID modules ready to load
on the robot controller.

Subpackages:
    trajectory: Trajectory points, typed segments and the YAML loader
    configs: Process parameter loading and validation
    rapid: RAPID module generation
    utils: Atomic file output and logging setup
    scripts: Command-line entry points
"""

__all__ = ["trajectory", "configs", "rapid", "utils", "scripts"]

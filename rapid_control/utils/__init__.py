"""Cross-cutting utilities (lowest dependency layer).

This package provides shared primitives for:
    - Atomic file output and YAML loading (fs)
    - Unified logging (logging_config)

No module in utils/ may import from upper layers (trajectory, configs, rapid).

Convenience imports:
    from rapid_control.utils import fs
    from rapid_control.utils.logging_config import setup_logging, push_context
"""

from . import fs
from . import logging_config

from .logging_config import push_context, setup_logging

__all__ = [
    # Modules
    'fs',
    'logging_config',
    # Direct exports
    'setup_logging',
    'push_context',
]

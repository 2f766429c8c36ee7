"""Process parameter loading and validation."""

from rapid_control.configs.loader import (
    ActivationParams,
    ConfigError,
    ProcessParams,
    load_params,
    parse_params,
)

__all__ = [
    "ActivationParams",
    "ConfigError",
    "ProcessParams",
    "load_params",
    "parse_params",
]

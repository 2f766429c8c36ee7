"""Process parameter loader for RAPID program generation.

Loads and validates ``process.yaml`` into typed, frozen dataclasses.
Every speed, zone and signal name written into a program comes from
these parameters -- nothing is hardcoded in the emitter.

Speeds are stored in **mm/s** (the unit of the RAPID ``speeddata``
``v_tcp`` field) and zones in **mm**.

Usage::

    from rapid_control.configs.loader import load_params
    params = load_params()                        # default path
    params = load_params("/cell3/process.yaml")   # explicit path
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rapid_control.utils.fs import load_yaml

logger = logging.getLogger(__name__)

# RAPID identifiers: letter first, then letters, digits or underscore.
_RAPID_IDENT = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,31}$")

# RAPID reserved words, matched case-insensitively.
_RESERVED_WORDS = frozenset("""
    ALIAS AND BACKWARD CASE CONNECT CONST DEFAULT DIV DO ELSE ELSEIF ENDFOR
    ENDFUNC ENDIF ENDMODULE ENDPROC ENDRECORD ENDTEST ENDTRAP ENDWHILE ERROR
    EXIT FALSE FOR FROM FUNC GOTO IF INOUT LOCAL MOD MODULE NOSTEPIN NOT
    NOVIEW OR PERS PROC RAISE READONLY RECORD RETRY RETURN STEP SYSMODULE
    TEST THEN TO TRAP TRUE TRYNEXT UNDO VAR VIEWONLY WHILE WITH XOR
""".split())

# Data declared by every generated module.
GENERATED_NAMES = frozenset({
    "tool0", "vProcess", "vApproach", "vTraverse", "vDeparture",
    "tActivate", "tDeactivate",
})
_GENERATED_UPPER = frozenset(name.upper() for name in GENERATED_NAMES)
_GENERATED_TARGET = re.compile(r"^jTarg\d+$", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(Exception):
    """Raised when process parameter validation fails."""

    pass


# ---------------------------------------------------------------------------
# Dataclasses -- mirror the YAML structure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActivationParams:
    """Tool activation triggered by the first and last process motion.

    The trigger fires on the process motion itself, so the tool switches
    exactly when the robot reaches the first process point and switches
    back when it reaches the last one.

    Parameters
    ----------
    signal : str
        Digital output driven by the trigger.
    on_value : int
        Value written at the start of the process work.
    off_value : int
        Value written at the end of the process work.
    distance_mm : float
        Trigger distance before the target point, in mm.
    """

    signal: str
    on_value: int = 1
    off_value: int = 0
    distance_mm: float = 0.0


@dataclass(frozen=True)
class ProcessParams:
    """Complete parameter bundle for one generated program.

    All speeds are in **mm/s**, all zones in **mm**.
    """

    process_speed_mm_s: float = 20.0
    approach_speed_mm_s: float = 200.0
    traverse_speed_mm_s: float = 500.0
    departure_speed_mm_s: float | None = None
    output_name: str = "doProcess"
    process_zone_mm: float = 5.0
    free_zone_mm: float = 20.0
    module_name: str = "mProcess"
    routine_name: str = "main"
    activation: ActivationParams | None = None

    @property
    def departure_speed(self) -> float:
        """Departure speed, falling back to traverse speed when unset."""
        if self.departure_speed_mm_s is None:
            return self.traverse_speed_mm_s
        return self.departure_speed_mm_s


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _check_identifier(field_name: str, value: str) -> None:
    if not _RAPID_IDENT.match(value):
        raise ConfigError(
            f"{field_name} must be a RAPID identifier (letter first, "
            f"then letters, digits or '_', max 32 chars), got {value!r}"
        )
    if value.upper() in _RESERVED_WORDS:
        raise ConfigError(f"{field_name} must not be a RAPID reserved word, got {value!r}")
    if value.upper() in _GENERATED_UPPER or _GENERATED_TARGET.match(value):
        raise ConfigError(
            f"{field_name} clashes with a name declared by the generated module, "
            f"got {value!r}"
        )


def _validate_params(params: ProcessParams) -> None:
    """Reject values that would produce an invalid program.

    Raises
    ------
    ConfigError
        On the first violation found.
    """
    speeds = {
        "process_speed_mm_s": params.process_speed_mm_s,
        "approach_speed_mm_s": params.approach_speed_mm_s,
        "traverse_speed_mm_s": params.traverse_speed_mm_s,
        "departure_speed_mm_s": params.departure_speed,
    }
    for name, value in speeds.items():
        if not math.isfinite(value) or value <= 0:
            raise ConfigError(f"{name} must be a finite number > 0, got {value}")

    for name, value in (
        ("process_zone_mm", params.process_zone_mm),
        ("free_zone_mm", params.free_zone_mm),
    ):
        if not math.isfinite(value) or value < 0:
            raise ConfigError(f"{name} must be a finite number >= 0, got {value}")

    _check_identifier("output_name", params.output_name)
    _check_identifier("module_name", params.module_name)
    _check_identifier("routine_name", params.routine_name)

    act = params.activation
    if act is not None:
        _check_identifier("activation.signal", act.signal)
        if not math.isfinite(act.distance_mm) or act.distance_mm < 0:
            raise ConfigError(
                f"activation.distance_mm must be a finite number >= 0, got {act.distance_mm}"
            )


# ---------------------------------------------------------------------------
# Internal parsing helpers
# ---------------------------------------------------------------------------


def _parse_activation(data: dict[str, Any] | None) -> ActivationParams | None:
    """Parse the optional ``activation`` section."""
    if not data:
        return None
    return ActivationParams(
        signal=str(data["signal"]),
        on_value=int(data.get("on_value", 1)),
        off_value=int(data.get("off_value", 0)),
        distance_mm=float(data.get("distance_mm", 0.0)),
    )


def _opt_float(value: Any) -> float | None:
    return float(value) if value is not None else None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_params(data: dict[str, Any]) -> ProcessParams:
    """Build validated :class:`ProcessParams` from a parsed mapping.

    Missing keys take the dataclass defaults.

    Raises
    ------
    ConfigError
        If a field has the wrong type or fails validation.
    """
    defaults = ProcessParams()
    try:
        params = ProcessParams(
            process_speed_mm_s=float(
                data.get("process_speed_mm_s", defaults.process_speed_mm_s)
            ),
            approach_speed_mm_s=float(
                data.get("approach_speed_mm_s", defaults.approach_speed_mm_s)
            ),
            traverse_speed_mm_s=float(
                data.get("traverse_speed_mm_s", defaults.traverse_speed_mm_s)
            ),
            departure_speed_mm_s=_opt_float(data.get("departure_speed_mm_s")),
            output_name=str(data.get("output_name", defaults.output_name)),
            process_zone_mm=float(
                data.get("process_zone_mm", defaults.process_zone_mm)
            ),
            free_zone_mm=float(data.get("free_zone_mm", defaults.free_zone_mm)),
            module_name=str(data.get("module_name", defaults.module_name)),
            routine_name=str(data.get("routine_name", defaults.routine_name)),
            activation=_parse_activation(data.get("activation")),
        )
    except KeyError as exc:
        raise ConfigError(
            f"Missing required configuration key: {exc}"
        ) from exc
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            f"Invalid configuration value: {exc}"
        ) from exc

    _validate_params(params)
    return params


def load_params(path: str | Path | None = None) -> ProcessParams:
    """Load and validate process parameters from YAML.

    Parameters
    ----------
    path : str | Path | None
        Path to ``process.yaml``.  ``None`` loads the default shipped
        alongside this module.

    Returns
    -------
    ProcessParams
        Fully validated, frozen parameter bundle.

    Raises
    ------
    ConfigError
        If any field fails validation.
    FileNotFoundError
        If *path* does not exist.
    """
    if path is None:
        path = Path(__file__).parent / "process.yaml"
    else:
        path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info("Loading process parameters from %s", path)

    data: dict[str, Any] = load_yaml(path)
    if data is None:
        raise ConfigError(f"Empty configuration file: {path}")
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration must be a mapping: {path}")

    params = parse_params(data)
    logger.info("Process parameters loaded successfully")
    return params

"""
Command Validator for RoArm robots

Validates caller-supplied command parameters against the schema registry and
produces wire-ready commands.

Per declared parameter the pipeline is:
1. fill in defaults / reject missing required parameters
2. resolve symbolic values (Symbolic.MIN / MID / MAX) against the range
3. clamp numbers into [min, max]
4. coerce to the declared type

The wire boundary lives here too: to_wire() encodes a ValidatedCommand as a
single JSON line, from_wire() splits a JSON line back into (type_id, params).
"""

import json
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from roarm.command_schemas import ParameterSpec, ParamType, schema_for
from roarm.constants import WIRE_TYPE_KEY
from roarm.errors import (
    InvalidType,
    MissingParameter,
    ResponseFormatError,
    UnknownCommand,
    UnresolvableSymbol,
)

logger = logging.getLogger(__name__)


class Symbolic(Enum):
    """Range-relative parameter values, resolved against a ParameterSpec."""
    MIN = "min"
    MID = "mid"
    MAX = "max"


_SYMBOLIC_STRINGS = {symbol.value: symbol for symbol in Symbolic}


@dataclass(frozen=True)
class ValidatedCommand:
    """A command whose parameters are resolved, clamped and type-coerced."""
    type_id: int
    params: Mapping[str, Any] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Any:
        return self.params[name]

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.params)


# ============================================================================
# Parameter pipeline
# ============================================================================

def _is_number(value) -> bool:
    # bool is an int subclass but never a valid numeric parameter
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_symbolic(value, spec: ParameterSpec) -> Optional[Symbolic]:
    if isinstance(value, Symbolic):
        return value
    # Plain strings only count as symbols for numeric parameters,
    # otherwise a mission called "max" would be rewritten.
    if spec.numeric and isinstance(value, str):
        return _SYMBOLIC_STRINGS.get(value.strip().lower())
    return None


def resolve_symbolic(value, spec: ParameterSpec, name: str = "value"):
    """Replace a symbolic value with a number from the parameter's range. Other values pass through."""
    symbol = _as_symbolic(value, spec)
    if symbol is None:
        return value
    if not spec.bounded:
        raise UnresolvableSymbol(name, symbol.name)
    if symbol is Symbolic.MIN:
        return spec.min
    if symbol is Symbolic.MAX:
        return spec.max
    return (spec.min + spec.max) / 2


def clamp(value, spec: ParameterSpec):
    """Clamp numeric values into [min, max] when both bounds exist."""
    if not _is_number(value) or not spec.bounded:
        return value
    return min(max(value, spec.min), spec.max)


def _round_half_away_from_zero(value: float) -> int:
    rounded = math.floor(abs(value) + 0.5)
    return int(rounded) if value >= 0 else -int(rounded)


def coerce(value, spec: ParameterSpec, name: str = "value"):
    """Convert a resolved value to the parameter's declared type."""
    if spec.type is ParamType.INTEGER:
        if _is_number(value) and not math.isnan(value):
            return _round_half_away_from_zero(value)
    elif spec.type is ParamType.FLOAT:
        if _is_number(value) and not math.isnan(value):
            return float(value)
    elif spec.type is ParamType.STRING:
        if isinstance(value, str):
            return value
    elif spec.type is ParamType.BOOLEAN:
        if isinstance(value, bool):
            return value
    raise InvalidType(name, spec.type.value, value)


def validate_parameter(name: str, value, spec: ParameterSpec):
    """Run one parameter through default/required handling, symbol resolution, clamping and coercion."""
    if value is None:
        if spec.required:
            raise MissingParameter(name)
        return spec.default

    value = resolve_symbolic(value, spec, name)
    value = clamp(value, spec)
    return coerce(value, spec, name)


# ============================================================================
# Command validation
# ============================================================================

def validate_command(raw: Mapping[str, Any], type_id: Optional[int] = None) -> ValidatedCommand:
    """
    Validate and normalize a command.

    Args:
        raw: Parameter name -> value. Values may be numbers, strings, bools
             or Symbolic tokens. Keys not declared by the schema are ignored.
        type_id: T-code of the command. When None, raw["T"] is used.

    Returns:
        ValidatedCommand carrying exactly the schema's parameters

    Raises:
        UnknownCommand: T-code not in the registry (checked first)
        MissingParameter: A required parameter is absent
        InvalidType: A value cannot be coerced to the declared type
        UnresolvableSymbol: Symbolic value on a parameter without a range

    Example:
        validate_command({"joint": 4, "angle": 90, "spd": Symbolic.MAX}, 121)
    """
    if type_id is None:
        type_id = raw.get(WIRE_TYPE_KEY)
        if type_id is None:
            raise UnknownCommand(None)

    schema = schema_for(type_id)

    params = {}
    for name, spec in schema.parameters.items():
        resolved = validate_parameter(name, raw.get(name), spec)
        if resolved is not None:
            params[name] = resolved

    return ValidatedCommand(schema.type_id, MappingProxyType(params))


# ============================================================================
# Wire boundary
# ============================================================================

def to_wire(command: ValidatedCommand) -> str:
    """Encode a validated command as one compact JSON line (without the newline)."""
    payload = {WIRE_TYPE_KEY: command.type_id}
    payload.update(command.params)
    return json.dumps(payload, separators=(",", ":"))


def from_wire(line: str) -> Tuple[int, Dict[str, Any]]:
    """
    Decode a wire JSON line into (type_id, params).

    Raises:
        ResponseFormatError: Not a JSON object with an integer "T" field
    """
    try:
        payload = json.loads(line)
    except (TypeError, ValueError) as e:
        raise ResponseFormatError(f"Invalid JSON on wire: {e}", str(line)) from e

    if not isinstance(payload, dict):
        raise ResponseFormatError("Wire command must be a JSON object", line)

    type_id = payload.pop(WIRE_TYPE_KEY, None)
    if isinstance(type_id, bool) or not isinstance(type_id, int):
        raise ResponseFormatError(f"Wire command has no integer {WIRE_TYPE_KEY!r} field", line)

    return type_id, payload


def build_wire_command(raw: Mapping[str, Any], type_id: Optional[int] = None) -> str:
    """Validate and encode in one step."""
    validated = validate_command(raw, type_id)
    wire = to_wire(validated)
    logger.debug(f"[CommandValidator] {wire}")
    return wire

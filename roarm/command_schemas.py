"""
Command Schema Registry for RoArm robots

Static table mapping every T-code the firmware understands to its parameter
schema (types, ranges, defaults, required flags). The validator depends on
these ranges, so they mirror the device contract exactly.

The registry is built once at import time and exposed read-only.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from roarm import constants as C
from roarm.errors import UnknownCommand

Number = Union[int, float]


class CommandType(IntEnum):
    """T-codes of all supported commands."""
    # Movement
    HOME = C.CMD_HOME
    JOINT_RADIAN = C.CMD_JOINT_RADIAN
    JOINTS_RADIAN = C.CMD_JOINTS_RADIAN
    JOINT_ANGLE = C.CMD_JOINT_ANGLE
    JOINTS_ANGLE = C.CMD_JOINTS_ANGLE
    POSITION = C.CMD_POSITION
    # System
    FEEDBACK = C.CMD_FEEDBACK
    TORQUE = C.CMD_TORQUE
    MIDDLE_POSITION = C.CMD_MIDDLE_POSITION
    # LED
    LED = C.CMD_LED
    # Missions
    MISSION_CREATE = C.CMD_MISSION_CREATE
    MISSION_STEP = C.CMD_MISSION_STEP
    MISSION_DELAY = C.CMD_MISSION_DELAY
    MISSION_PLAY = C.CMD_MISSION_PLAY
    # Advanced
    PID = C.CMD_PID
    FORCE_ADAPTATION = C.CMD_FORCE_ADAPTATION
    # Gripper (M3 models)
    GRIPPER = C.CMD_GRIPPER


class ParamType(str, Enum):
    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class ParameterSpec:
    """Validation rules for a single command parameter."""
    type: ParamType
    min: Optional[Number] = None
    max: Optional[Number] = None
    default: Any = None
    required: bool = False

    def __post_init__(self):
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"ParameterSpec min ({self.min}) must not exceed max ({self.max})")

    @property
    def bounded(self) -> bool:
        return self.min is not None and self.max is not None

    @property
    def numeric(self) -> bool:
        return self.type in (ParamType.INTEGER, ParamType.FLOAT)


@dataclass(frozen=True)
class CommandSchema:
    type_id: int
    description: str
    parameters: Mapping[str, ParameterSpec] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze the parameter table; insertion order is the wire order
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))


# ============================================================================
# Parameter shorthands
# ============================================================================

def _int(min_value=None, max_value=None, default=None, required=False) -> ParameterSpec:
    return ParameterSpec(ParamType.INTEGER, min_value, max_value, default, required)


def _float(min_value=None, max_value=None, default=None, required=False) -> ParameterSpec:
    return ParameterSpec(ParamType.FLOAT, min_value, max_value, default, required)


def _str(default=None, required=False) -> ParameterSpec:
    return ParameterSpec(ParamType.STRING, default=default, required=required)


_SPEED = _int(1, 4096, default=C.DEFAULT_SPEED)
_RADIAN_LIMIT = 3.14159
_JOINT_RADIAN = _float(-_RADIAN_LIMIT, _RADIAN_LIMIT, default=0.0)
_JOINT_ANGLE = _float(-180.0, 180.0, default=0.0)
_FORCE_THRESHOLD = _int(0, 1000, default=500)


def _joint_params(spec: ParameterSpec) -> dict:
    return {wire_key: spec for wire_key in C.JOINT_WIRE_KEYS.values()}


def _schema(command_type: CommandType, description: str, parameters: Optional[dict] = None) -> CommandSchema:
    return CommandSchema(int(command_type), description, parameters or {})


# ============================================================================
# Registry
# ============================================================================

_SCHEMAS = [
    # Movement Commands
    _schema(CommandType.HOME, "Home position"),
    _schema(CommandType.JOINT_RADIAN, "Single joint control (radians)", {
        "joint": _int(1, C.MAX_JOINT_INDEX, required=True),
        "radian": _float(-_RADIAN_LIMIT, _RADIAN_LIMIT, required=True),
        "spd": _SPEED,
    }),
    _schema(CommandType.JOINTS_RADIAN, "All joints control (radians)", {
        **_joint_params(_JOINT_RADIAN),
        "spd": _SPEED,
    }),
    _schema(CommandType.JOINT_ANGLE, "Single joint control (degrees)", {
        "joint": _int(1, C.MAX_JOINT_INDEX, required=True),
        "angle": _float(-180.0, 180.0, required=True),
        "spd": _SPEED,
    }),
    _schema(CommandType.JOINTS_ANGLE, "All joints control (degrees)", {
        **_joint_params(_JOINT_ANGLE),
        "spd": _SPEED,
    }),
    _schema(CommandType.POSITION, "Position control", {
        "x": _float(-500.0, 500.0, required=True),   # mm
        "y": _float(-500.0, 500.0, required=True),   # mm
        "z": _float(0.0, 500.0, required=True),      # mm
        "t": _float(-180.0, 180.0, default=0.0),     # tool angle, degrees
        "spd": _SPEED,
        "acc": _int(1, 254, default=C.DEFAULT_ACCELERATION),
    }),

    # System Commands
    _schema(CommandType.FEEDBACK, "Get feedback"),
    _schema(CommandType.TORQUE, "Torque control", {
        "cmd": _int(C.TORQUE_DISABLE, C.TORQUE_ENABLE, required=True),
    }),
    _schema(CommandType.MIDDLE_POSITION, "Set middle position"),

    # LED Commands
    _schema(CommandType.LED, "LED control", {
        "led": _int(0, 255, default=C.DEFAULT_LED_BRIGHTNESS),
        "r": _int(0, 255, default=0),
        "g": _int(0, 255, default=0),
        "b": _int(0, 255, default=0),
    }),

    # Mission Commands
    _schema(CommandType.MISSION_CREATE, "Create mission", {
        "name": _str(required=True),
        "intro": _str(default=""),
    }),
    _schema(CommandType.MISSION_STEP, "Add mission step", {
        "mission": _str(required=True),
        "spd": _float(0.1, 1.0, default=C.DEFAULT_MISSION_STEP_SPEED),
    }),
    _schema(CommandType.MISSION_DELAY, "Add mission delay", {
        "mission": _str(required=True),
        "delay": _int(0, 60000, required=True),  # ms
    }),
    _schema(CommandType.MISSION_PLAY, "Play mission", {
        "name": _str(required=True),
        "times": _int(1, 1000, default=1),
    }),

    # Advanced Commands
    _schema(CommandType.PID, "Set PID parameters", {
        "joint": _int(1, C.MAX_JOINT_INDEX, required=True),
        "p": _int(0, 100, required=True),
        "i": _int(0, 100, required=True),
        "d": _int(0, 100, required=True),
    }),
    _schema(CommandType.FORCE_ADAPTATION, "Dynamic force adaptation", {
        "mode": _int(0, 1, required=True),
        **_joint_params(_FORCE_THRESHOLD),
    }),

    # Gripper Commands (M3 and M3-Pro)
    _schema(CommandType.GRIPPER, "Gripper control", {
        "mode": _int(0, 1, required=True),     # 0 = position, 1 = force
        "angle": _int(0, 100, required=True),  # percent
    }),
]

COMMAND_SCHEMAS: Mapping[int, CommandSchema] = MappingProxyType(
    {schema.type_id: schema for schema in _SCHEMAS}
)


def schema_for(type_id: int) -> CommandSchema:
    """
    Look up the schema for a T-code.

    Raises:
        UnknownCommand: If no schema is registered for type_id
    """
    # bool is an int subclass, but True is never a T-code
    if isinstance(type_id, bool) or not isinstance(type_id, int):
        raise UnknownCommand(type_id)
    schema = COMMAND_SCHEMAS.get(type_id)
    if schema is None:
        raise UnknownCommand(type_id)
    return schema

"""
RoArm Control Layer

Command validation, serial communication and drag teach recording/replay
for Waveshare RoArm M2/M3 robot arms.

Exports:
- RobotController: per-robot actor owning connection and state
- RobotRegistry: name -> controller map for multi-robot setups
- RobotConfig / load_config: configuration
- validate_command / to_wire / from_wire: command validation and wire codec
"""

from .command_schemas import COMMAND_SCHEMAS, CommandType, schema_for
from .command_validator import (
    Symbolic,
    ValidatedCommand,
    build_wire_command,
    from_wire,
    to_wire,
    validate_command,
)
from .config import RobotConfig, load_config
from .errors import RoarmError
from .registry import RobotRegistry
from .robot import RobotController
from .state import Joints, Position, Sample

__all__ = [
    'COMMAND_SCHEMAS',
    'CommandType',
    'schema_for',
    'Symbolic',
    'ValidatedCommand',
    'build_wire_command',
    'from_wire',
    'to_wire',
    'validate_command',
    'RobotConfig',
    'load_config',
    'RoarmError',
    'RobotRegistry',
    'RobotController',
    'Joints',
    'Position',
    'Sample',
]

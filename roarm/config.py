"""
Configuration loading for the RoArm control layer

Settings live in config.yaml at the project root. The ROARM_CONFIG
environment variable points at an alternative file. Whatever the file
contains is merged over DEFAULT_CONFIG, so a partial file is fine.
"""

import copy
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from roarm import constants as C

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_PATH = PROJECT_ROOT / "config.yaml"
CONFIG_ENV_VAR = "ROARM_CONFIG"

DEFAULT_CONFIG: Dict[str, Any] = {
    'robot': {
        'port': None,
        'baudrate': C.SERIAL_BAUD_RATE,
        'robot_type': C.DEFAULT_ROBOT_TYPE,
        'timeout_ms': C.DEFAULT_TIMEOUT_MS,
        'movement_timeout_ms': C.MOVEMENT_TIMEOUT_MS,
        'strict_feedback': False,
    },
    'teaching': {
        'sample_interval_ms': C.DEFAULT_SAMPLE_INTERVAL_MS,
        'recordings_dir': C.DEFAULT_RECORDINGS_DIR,
    },
    'api': {
        'host': '0.0.0.0',
        'port': 8000,
        'robots': ['default'],
    },
    'logging': {
        'level': 'INFO',
        'buffer_size': 1000,
        'file_output': None,
    },
}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of base with override merged in, recursing into nested dicts."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration merged over DEFAULT_CONFIG.

    Lookup order: explicit path, $ROARM_CONFIG, config.yaml at the project root.
    A missing file yields the defaults; a malformed one raises.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or CONFIG_PATH
    path = Path(path)

    try:
        with open(path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning(f"[Config] {path} not found, using defaults")
        return copy.deepcopy(DEFAULT_CONFIG)

    if not isinstance(loaded, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")

    return deep_merge(DEFAULT_CONFIG, loaded)


@dataclass
class RobotConfig:
    """Settings of a single robot controller."""
    port: Optional[str] = None
    baudrate: int = C.SERIAL_BAUD_RATE
    robot_type: str = C.DEFAULT_ROBOT_TYPE
    timeout_ms: int = C.DEFAULT_TIMEOUT_MS
    movement_timeout_ms: int = C.MOVEMENT_TIMEOUT_MS
    strict_feedback: bool = False
    sample_interval_ms: int = C.DEFAULT_SAMPLE_INTERVAL_MS
    recordings_dir: str = C.DEFAULT_RECORDINGS_DIR

    def __post_init__(self):
        if self.robot_type not in C.ROBOT_JOINT_COUNTS:
            raise ValueError(
                f"Unknown robot type {self.robot_type!r}, expected one of {sorted(C.ROBOT_JOINT_COUNTS)}"
            )

    @property
    def joint_count(self) -> int:
        return C.ROBOT_JOINT_COUNTS[self.robot_type]

    @classmethod
    def from_config(cls, config: Dict[str, Any], **overrides) -> "RobotConfig":
        """Build from a loaded config dict (robot + teaching sections)."""
        robot = config.get('robot', {})
        teaching = config.get('teaching', {})
        settings = {
            'port': robot.get('port'),
            'baudrate': robot.get('baudrate', C.SERIAL_BAUD_RATE),
            'robot_type': robot.get('robot_type', C.DEFAULT_ROBOT_TYPE),
            'timeout_ms': robot.get('timeout_ms', C.DEFAULT_TIMEOUT_MS),
            'movement_timeout_ms': robot.get('movement_timeout_ms', C.MOVEMENT_TIMEOUT_MS),
            'strict_feedback': bool(robot.get('strict_feedback', False)),
            'sample_interval_ms': teaching.get('sample_interval_ms', C.DEFAULT_SAMPLE_INTERVAL_MS),
            'recordings_dir': teaching.get('recordings_dir', C.DEFAULT_RECORDINGS_DIR),
        }
        settings.update(overrides)
        return cls(**settings)

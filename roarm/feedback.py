"""
Feedback Parser Module for RoArm robots

Parses the JSON line returned by the feedback query (T:105) into Position and
Joints records. Firmware versions differ in shape:

- position: {"coordinates": [x, y, z], "tool_angle": t} or {"x", "y", "z", "t"}
- joints:   {"joint_radians": [...]} or named {"b", "s", "e", "h", "w", "g"} in degrees

Unknown shapes fall back to zero records with a warning unless strict=True,
in which case ResponseFormatError is raised. Undecodable JSON always raises.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from roarm import constants as C
from roarm.errors import ResponseFormatError
from roarm.state import Joints, Position

logger = logging.getLogger(__name__)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _decode(response: str) -> Dict[str, Any]:
    try:
        data = json.loads(response)
    except (TypeError, ValueError) as e:
        raise ResponseFormatError(f"Feedback is not valid JSON: {e}", str(response)) from e
    if not isinstance(data, dict):
        raise ResponseFormatError("Feedback is not a JSON object", response)
    return data


def _unrecognized(kind: str, response: str, strict: bool):
    if strict:
        raise ResponseFormatError(f"Unknown {kind} response format", response)
    logger.warning(f"[Feedback] Unknown {kind} response format, using zeros: {response}")


def parse_position(response: str, strict: bool = False) -> Position:
    """Parse a feedback line into a Position (mm / degrees)."""
    data = _decode(response)

    coordinates = data.get("coordinates")
    if (isinstance(coordinates, list) and len(coordinates) == 3
            and all(_is_number(c) for c in coordinates)):
        tool_angle = data.get("tool_angle", 0.0)
        x, y, z = coordinates
        return Position(float(x), float(y), float(z), float(tool_angle) if _is_number(tool_angle) else 0.0)

    if all(_is_number(data.get(key)) for key in ("x", "y", "z")):
        tool_angle = data.get("t", 0.0)
        return Position(float(data["x"]), float(data["y"]), float(data["z"]),
                        float(tool_angle) if _is_number(tool_angle) else 0.0)

    _unrecognized("position", response, strict)
    return Position(0.0, 0.0, 0.0, 0.0)


def parse_joints(response: str, joint_count: int = 4, strict: bool = False) -> Joints:
    """
    Parse a feedback line into Joints (degrees).

    Args:
        response: Raw feedback JSON line
        joint_count: Joints on this robot model (4 or 6)
        strict: Raise instead of falling back to zeros on unknown shapes
    """
    data = _decode(response)

    radians = data.get("joint_radians")
    if isinstance(radians, list) and all(_is_number(r) for r in radians):
        return Joints.from_list(C.rad_to_deg(radians), joint_count)

    wire_keys = list(C.JOINT_WIRE_KEYS.values())
    required, optional = wire_keys[:4], wire_keys[4:joint_count]
    if all(_is_number(data.get(key)) for key in required):
        angles: List[float] = [float(data[key]) for key in required]
        for key in optional:
            value: Optional[float] = data.get(key)
            angles.append(float(value) if _is_number(value) else 0.0)
        return Joints.from_list(angles, joint_count)

    _unrecognized("joints", response, strict)
    return Joints.zeros(joint_count)

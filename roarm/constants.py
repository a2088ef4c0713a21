"""
RoArm Control Constants

Central configuration constants for the RoArm control layer.
Timing values, serial settings, protocol codes and default vectors in one place.
"""

import numpy as np

# ============================================================================
# Timing Constants
# ============================================================================

# Command timeouts
DEFAULT_TIMEOUT_MS = 5000  # Default response timeout for any command
MOVEMENT_TIMEOUT_MS = 8000  # Position moves can take longer to acknowledge

# Drag teach sampling
DEFAULT_SAMPLE_INTERVAL_MS = 100  # 10Hz joint sampling while teaching
MIN_SAMPLE_INTERVAL_MS = 10  # Faster than this just floods the serial line

# Replay
DEFAULT_SPEED_MULTIPLIER = 1.0  # 1.0 = recorded timing, 2.0 = twice as fast

# Actor shutdown
ACTOR_JOIN_TIMEOUT_S = 2.0  # Max wait for the actor thread on stop()
RECORDER_JOIN_TIMEOUT_S = 1.0  # Max wait for the sampling thread on cancel()

# ============================================================================
# Serial Communication Constants
# ============================================================================

SERIAL_BAUD_RATE = 115200  # Protocol default
SERIAL_LINE_TERMINATOR = b"\n"  # Commands and responses are one JSON object per line
SERIAL_ENCODING = "utf-8"

# ============================================================================
# Command Constants (T-codes understood by the firmware)
# ============================================================================

CMD_HOME = 100
CMD_JOINT_RADIAN = 101
CMD_JOINTS_RADIAN = 102
CMD_JOINT_ANGLE = 121
CMD_JOINTS_ANGLE = 122
CMD_POSITION = 1041
CMD_FEEDBACK = 105
CMD_TORQUE = 210
CMD_MIDDLE_POSITION = 502
CMD_LED = 114
CMD_MISSION_CREATE = 220
CMD_MISSION_STEP = 223
CMD_MISSION_DELAY = 224
CMD_MISSION_PLAY = 242
CMD_PID = 108
CMD_FORCE_ADAPTATION = 112
CMD_GRIPPER = 222

WIRE_TYPE_KEY = "T"  # Single-letter command-type key on the wire

TORQUE_DISABLE = 0
TORQUE_ENABLE = 1

# ============================================================================
# Robot Model Constants
# ============================================================================

# Number of joints reported/commanded per model
ROBOT_JOINT_COUNTS = {
    "roarm_m2": 4,
    "roarm_m2_pro": 4,
    "roarm_m3": 6,
    "roarm_m3_pro": 6,
}
DEFAULT_ROBOT_TYPE = "roarm_m2"

# Joint name -> wire parameter name (base, shoulder, elbow, hand, wrist, gripper)
JOINT_WIRE_KEYS = {
    "j1": "b",
    "j2": "s",
    "j3": "e",
    "j4": "h",
    "j5": "w",
    "j6": "g",
}
JOINT_NAMES = tuple(JOINT_WIRE_KEYS)
POSITION_FIELDS = ("x", "y", "z", "t")
MAX_JOINT_INDEX = 6

# Fallback vectors used when nothing has been cached yet
DEFAULT_POSITION = {"x": 0.0, "y": 0.0, "z": 100.0, "t": 0.0}
DEFAULT_JOINTS = {"j1": 0.0, "j2": 0.0, "j3": 0.0, "j4": 0.0, "j5": 0.0, "j6": 0.0}

# Default movement parameters
DEFAULT_SPEED = 1000
DEFAULT_ACCELERATION = 100
DEFAULT_LED_BRIGHTNESS = 255
DEFAULT_MISSION_STEP_SPEED = 0.25

# ============================================================================
# Recording Format
# ============================================================================

RECORDING_TIMESTAMP_KEY = "timestamped"
RECORDING_JOINTS_KEY = "joints"
DEFAULT_RECORDINGS_DIR = "recordings"

# ============================================================================
# Utility Functions
# ============================================================================

def deg_to_rad(degrees):
    """Convert degrees to radians. Accepts one angle or a sequence of angles."""
    return np.deg2rad(np.asarray(degrees, dtype=float)).tolist()


def rad_to_deg(radians):
    """Convert radians to degrees. Accepts one angle or a sequence of angles."""
    return np.rad2deg(np.asarray(radians, dtype=float)).tolist()


def ms_to_seconds(ms):
    """Convert milliseconds to seconds."""
    return ms / 1000.0

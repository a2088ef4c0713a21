"""
Pydantic models for the FastAPI server - RoArm Robot API
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from roarm.constants import JOINT_NAMES


# ============================================================================
# Request Models - Commands sent to the robot
# ============================================================================

class ConnectRequest(BaseModel):
    """Request to open the robot's serial port"""
    port: Optional[str] = Field(None, description="Serial device or pyserial URL, overrides config", examples=["/dev/ttyUSB0"])


class MovePositionRequest(BaseModel):
    """Request to move the end effector. Omitted coordinates keep their last value."""
    x: Optional[float] = Field(None, description="X in mm")
    y: Optional[float] = Field(None, description="Y in mm")
    z: Optional[float] = Field(None, description="Z in mm")
    t: Optional[float] = Field(None, description="Tool angle in degrees")
    speed: int = Field(1000, description="Speed (1-4096)", ge=1, le=4096)
    acceleration: int = Field(100, description="Acceleration (1-254)", ge=1, le=254)
    timeout_ms: Optional[int] = Field(None, description="Response timeout in ms", gt=0)

    def partial_position(self) -> Dict[str, float]:
        return self.model_dump(include={"x", "y", "z", "t"}, exclude_none=True)


class MoveJointsRequest(BaseModel):
    """Request to move joints. Keys j1..j6 in degrees, omitted joints keep their last value."""
    joints: Dict[str, float] = Field(..., description="Joint angles in degrees", examples=[{"j1": 0, "j2": 45}])
    speed: int = Field(1000, description="Speed (1-4096)", ge=1, le=4096)
    timeout_ms: Optional[int] = Field(None, description="Response timeout in ms", gt=0)

    @field_validator('joints')
    @classmethod
    def validate_joint_names(cls, v):
        unknown = set(v) - set(JOINT_NAMES)
        if unknown:
            raise ValueError(f"Unknown joint names: {sorted(unknown)}")
        return v


class TorqueRequest(BaseModel):
    """Request to lock or release the joint motors"""
    enabled: bool = Field(..., description="True = hold position, False = free movement")


class LedRequest(BaseModel):
    """Request to set the gripper LED"""
    r: int = Field(0, ge=0, le=255)
    g: int = Field(0, ge=0, le=255)
    b: int = Field(0, ge=0, le=255)
    brightness: int = Field(255, ge=0, le=255)


class CustomCommandRequest(BaseModel):
    """Request to send any registered command, e.g. {"T": 114, "led": 128}"""
    command: Dict[str, Any] = Field(..., description="Command with its 'T' code and parameters")
    raw: bool = Field(False, description="Send as-is without schema validation")
    timeout_ms: Optional[int] = Field(None, gt=0)


class MissionCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    intro: str = Field("", description="Mission description")


class MissionStepRequest(BaseModel):
    speed: float = Field(0.25, description="Step speed (0.1-1.0)", ge=0.1, le=1.0)


class MissionDelayRequest(BaseModel):
    delay_ms: int = Field(..., description="Delay in ms", ge=0, le=60000)


class MissionPlayRequest(BaseModel):
    times: int = Field(1, description="Repetitions", ge=1, le=1000)


class TeachingStartRequest(BaseModel):
    """Request to start drag teach recording"""
    filename: str = Field(..., min_length=1, description="Recording file, relative to the recordings directory")
    sample_interval_ms: Optional[int] = Field(None, description="Sampling interval in ms", ge=10)


class TeachingStopRequest(BaseModel):
    """Request to stop drag teach recording"""
    filename: Optional[str] = Field(None, min_length=1, description="Save to this file instead of the one given at start")


class TeachingReplayRequest(BaseModel):
    """Request to replay a saved recording"""
    filename: str = Field(..., min_length=1)
    speed_multiplier: float = Field(1.0, description="Playback speed, 2.0 = twice as fast", gt=0)


# ============================================================================
# Response Models
# ============================================================================

class CommandResponse(BaseModel):
    """Response from robot command execution"""
    success: bool = Field(..., description="Command success status")
    message: str = Field(..., description="Device response or error message")
    error: Optional[str] = Field(None, description="Error class name when success is False")
    data: Optional[Any] = Field(None, description="Operation result, e.g. sample count")


class PositionResponse(BaseModel):
    x: float
    y: float
    z: float
    t: float


class JointsResponse(BaseModel):
    j1: float
    j2: float
    j3: float
    j4: float
    j5: Optional[float] = None
    j6: Optional[float] = None


class RobotStatusResponse(BaseModel):
    """Snapshot of one robot controller"""
    name: str
    port: Optional[str] = None
    robot_type: str
    connection: str
    torque_enabled: bool
    position: Optional[PositionResponse] = None
    joints: Optional[JointsResponse] = None
    teaching: bool
    teaching_filename: Optional[str] = None
    teaching_samples: int = 0


class RobotListResponse(BaseModel):
    robots: List[str]

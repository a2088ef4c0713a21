"""Domain records for robot state and drag teaching."""

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from roarm import constants as C


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


@dataclass(frozen=True)
class Position:
    """End effector position in mm, tool angle t in degrees."""
    x: float
    y: float
    z: float
    t: float = 0.0

    def merge(self, partial: Mapping[str, Any]) -> "Position":
        unknown = set(partial) - set(C.POSITION_FIELDS)
        if unknown:
            raise ValueError(f"Unknown position fields: {sorted(unknown)}")
        return replace(self, **partial)

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class Joints:
    """Joint angles in degrees. j5/j6 only exist on 6-axis models."""
    j1: float
    j2: float
    j3: float
    j4: float
    j5: Optional[float] = None
    j6: Optional[float] = None

    def merge(self, partial: Mapping[str, Any]) -> "Joints":
        unknown = set(partial) - set(C.JOINT_NAMES)
        if unknown:
            raise ValueError(f"Unknown joint names: {sorted(unknown)}")
        return replace(self, **partial)

    def as_list(self) -> List[float]:
        values = [self.j1, self.j2, self.j3, self.j4, self.j5, self.j6]
        return [v for v in values if v is not None]

    def as_dict(self) -> Dict[str, Optional[float]]:
        return asdict(self)

    @classmethod
    def from_list(cls, angles, joint_count: int = 6) -> "Joints":
        values = [float(a) for a in list(angles)[:joint_count]]
        values += [0.0] * (joint_count - len(values))
        values += [None] * (6 - joint_count)
        return cls(*values)

    @classmethod
    def zeros(cls, joint_count: int = 6) -> "Joints":
        return cls.from_list([], joint_count)


@dataclass(frozen=True)
class Sample:
    """One recorded (timestamp, joint vector) pair."""
    timestamp_ms: int
    joints_radians: List[float]


@dataclass
class TeachingSession:
    filename: str
    sample_interval_ms: int
    samples: List[Sample] = field(default_factory=list)
    recorder: Any = None

    def chronological(self) -> List[Sample]:
        # Delivery order is best-effort, persistence order is not
        return sorted(self.samples, key=lambda s: s.timestamp_ms)


@dataclass
class RobotState:
    """Mutable per-robot state. Only the owning controller's actor thread writes it."""
    connection: ConnectionState = ConnectionState.DISCONNECTED
    torque_enabled: bool = True
    position: Optional[Position] = None
    joints: Optional[Joints] = None
    teaching: Optional[TeachingSession] = None

    @property
    def connected(self) -> bool:
        return self.connection is ConnectionState.CONNECTED

    def snapshot(self) -> Dict[str, Any]:
        return {
            "connection": self.connection.value,
            "torque_enabled": self.torque_enabled,
            "position": self.position.as_dict() if self.position else None,
            "joints": self.joints.as_dict() if self.joints else None,
            "teaching": self.teaching is not None,
            "teaching_filename": self.teaching.filename if self.teaching else None,
            "teaching_samples": len(self.teaching.samples) if self.teaching else 0,
        }

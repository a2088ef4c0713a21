"""
Robot Controller for RoArm robots

One RobotController per physical arm. All state changes happen on a single
actor thread: public methods put a request on the inbox queue and block on a
Future for the result. The drag teach sampler is the only other producer on
that queue; it posts samples, the actor appends them.

States:
    Disconnected --connect()--> Connected (idle)
    Connected --start_teaching()--> Connected (teaching)
    Connected (teaching) --stop_teaching()--> Connected (idle)
    any --disconnect()--> Disconnected

Usage:
    with RobotController(RobotConfig(port="/dev/ttyUSB0")) as robot:
        robot.connect()
        robot.move_to_position({"x": 100, "z": 150})
        robot.start_teaching("wave.json")
        ...
        robot.stop_teaching()
        robot.replay_teaching("wave.json", speed_multiplier=2.0)
"""

import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from roarm import constants as C
from roarm.command_validator import ValidatedCommand, to_wire, validate_command
from roarm.communication import SerialCommunication
from roarm.config import RobotConfig
from roarm.errors import (
    AlreadyTeaching,
    ControllerStopped,
    NoPortSpecified,
    NotConnected,
    NotTeaching,
    RecordingError,
    RoarmError,
)
from roarm.feedback import parse_joints, parse_position
from roarm.recording import RecordingStore
from roarm.state import (
    ConnectionState,
    Joints,
    Position,
    RobotState,
    Sample,
    TeachingSession,
)
from roarm.teaching import TeachingRecorder, TeachingReplayer

logger = logging.getLogger(__name__)


# ============================================================================
# Inbox messages
# ============================================================================

@dataclass
class _Request:
    handler: Callable
    args: tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    future: Future = field(default_factory=Future)


@dataclass
class _SampleMessage:
    session: TeachingSession
    sample: Sample


_STOP = object()


class RobotController:
    """
    Owns the state of one robot and serializes every operation on it.

    Args:
        config: Controller settings (port, robot type, timeouts, ...)
        communication: Transport with connect/disconnect/send_command
            (default: SerialCommunication)
        recordings: Store for drag teach recordings
            (default: RecordingStore(config.recordings_dir))
        name: Label used in logs and thread names
    """

    def __init__(self,
                 config: Optional[RobotConfig] = None,
                 communication=None,
                 recordings: Optional[RecordingStore] = None,
                 name: str = "default"):
        self.config = config or RobotConfig()
        self.name = name
        self.communication = communication or SerialCommunication(
            baudrate=self.config.baudrate,
            timeout_ms=self.config.timeout_ms,
        )
        self.recordings = recordings or RecordingStore(self.config.recordings_dir)
        self.state = RobotState()

        self._inbox: "queue.Queue" = queue.Queue()
        self._lock = threading.Lock()
        self._stopped = False
        self._thread = threading.Thread(target=self._run, name=f"roarm-{name}", daemon=True)
        self._thread.start()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    def __repr__(self):
        return f"RobotController(name={self.name!r}, type={self.config.robot_type!r}, port={self.config.port!r})"

    @property
    def joint_count(self) -> int:
        return self.config.joint_count

    # ========================================================================
    # Actor plumbing
    # ========================================================================

    def _run(self):
        while True:
            message = self._inbox.get()
            if message is _STOP:
                break
            if isinstance(message, _SampleMessage):
                self._handle_sample(message)
                continue
            if not message.future.set_running_or_notify_cancel():
                continue
            try:
                result = message.handler(*message.args, **message.kwargs)
            except Exception as e:
                message.future.set_exception(e)
            else:
                message.future.set_result(result)

        # Anything queued behind the stop marker is answered, never left hanging
        while True:
            try:
                message = self._inbox.get_nowait()
            except queue.Empty:
                break
            if isinstance(message, _Request) and message.future.set_running_or_notify_cancel():
                message.future.set_exception(ControllerStopped())
        logger.debug(f"[Robot:{self.name}] Actor thread exited")

    def _call(self, handler: Callable, *args, **kwargs):
        # Handlers calling other public methods run inline instead of deadlocking
        if threading.current_thread() is self._thread:
            return handler(*args, **kwargs)
        request = _Request(handler, args, kwargs)
        with self._lock:
            if self._stopped:
                raise ControllerStopped()
            self._inbox.put(request)
        return request.future.result()

    def _post_sample(self, session: TeachingSession, sample: Sample):
        self._inbox.put(_SampleMessage(session, sample))

    def _handle_sample(self, message: _SampleMessage):
        if self.state.teaching is not message.session:
            logger.debug(f"[Robot:{self.name}] Dropping sample from an inactive teaching session")
            return
        message.session.samples.append(message.sample)

    def stop(self):
        """Cancel any recorder, close the port and terminate the actor. Idempotent."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            shutdown = _Request(self._do_shutdown)
            self._inbox.put(shutdown)
            self._inbox.put(_STOP)

        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=C.ACTOR_JOIN_TIMEOUT_S)
            if self._thread.is_alive():
                logger.warning(f"[Robot:{self.name}] Actor thread did not stop in time")
        logger.info(f"[Robot:{self.name}] Controller stopped")

    @property
    def stopped(self) -> bool:
        return self._stopped

    def _do_shutdown(self):
        self._discard_teaching("controller stopped")
        if self.state.connected:
            try:
                self.communication.disconnect()
            except RoarmError as e:
                logger.warning(f"[Robot:{self.name}] Error closing transport on stop: {e}")
            self.state.connection = ConnectionState.DISCONNECTED

    # ========================================================================
    # Internal helpers (actor thread only)
    # ========================================================================

    def _require_connected(self):
        if not self.state.connected:
            raise NotConnected()

    def _send(self, line: str, timeout_ms: Optional[int] = None) -> str:
        return self.communication.send_command(line, timeout_ms or self.config.timeout_ms)

    def _dispatch(self, raw: Mapping[str, Any], type_id: int, timeout_ms: Optional[int] = None):
        """Validate, send, return (validated command, response). Connection is checked first."""
        self._require_connected()
        validated = validate_command(raw, type_id)
        response = self._send(to_wire(validated), timeout_ms)
        return validated, response

    def _joints_from_command(self, validated: ValidatedCommand) -> Joints:
        wire_keys = list(C.JOINT_WIRE_KEYS.values())[:self.joint_count]
        return Joints.from_list([validated[key] for key in wire_keys], self.joint_count)

    def _cached_joints(self) -> Joints:
        return self.state.joints or Joints(**C.DEFAULT_JOINTS)

    def _discard_teaching(self, reason: str):
        session = self.state.teaching
        if session is None:
            return
        session.recorder.cancel()
        self.state.teaching = None
        logger.warning(
            f"[Robot:{self.name}] Discarded teaching session {session.filename} "
            f"with {len(session.samples)} samples ({reason})"
        )

    def _set_torque(self, enabled: bool) -> str:
        command = C.TORQUE_ENABLE if enabled else C.TORQUE_DISABLE
        _, response = self._dispatch({"cmd": command}, C.CMD_TORQUE)
        self.state.torque_enabled = enabled
        return response

    # ========================================================================
    # Connection
    # ========================================================================

    def connect(self, port: Optional[str] = None) -> None:
        """
        Open the transport. Connecting while connected is a no-op.

        Args:
            port: Overrides the configured port

        Raises:
            NoPortSpecified: Neither port nor config.port is set
            CommunicationError: Transport could not be opened
        """
        self._call(self._do_connect, port)

    def _do_connect(self, port: Optional[str]):
        if self.state.connected:
            logger.debug(f"[Robot:{self.name}] Already connected")
            return
        if port:
            self.config.port = port
        if not self.config.port:
            raise NoPortSpecified()
        self.communication.connect(self.config.port, baudrate=self.config.baudrate)
        self.state.connection = ConnectionState.CONNECTED
        logger.info(f"[Robot:{self.name}] Connected on {self.config.port}")

    def disconnect(self) -> None:
        """
        Close the transport from any state.

        An active teaching session is cancelled and discarded. The controller
        ends up disconnected even when closing the transport fails; that
        error is re-raised afterwards.
        """
        self._call(self._do_disconnect)

    def _do_disconnect(self):
        self._discard_teaching("disconnected")
        try:
            self.communication.disconnect()
        finally:
            self.state.connection = ConnectionState.DISCONNECTED
            logger.info(f"[Robot:{self.name}] Disconnected")

    # ========================================================================
    # State views
    # ========================================================================

    @property
    def connected(self) -> bool:
        return self._call(lambda: self.state.connected)

    @property
    def teaching(self) -> bool:
        return self._call(lambda: self.state.teaching is not None)

    def snapshot(self) -> Dict[str, Any]:
        """Plain dict view of the controller state."""
        return self._call(self._do_snapshot)

    def _do_snapshot(self) -> Dict[str, Any]:
        snapshot = self.state.snapshot()
        snapshot.update({
            "name": self.name,
            "port": self.config.port,
            "robot_type": self.config.robot_type,
        })
        return snapshot

    # ========================================================================
    # Movement
    # ========================================================================

    def home(self) -> str:
        """Move to the home position (T:100). Cached joints become zeros, cached position is cleared."""
        return self._call(self._do_home)

    def _do_home(self) -> str:
        _, response = self._dispatch({}, C.CMD_HOME, self.config.movement_timeout_ms)
        self.state.joints = Joints.zeros(self.joint_count)
        self.state.position = None
        return response

    def move_to_position(self,
                         position: Mapping[str, float],
                         speed=C.DEFAULT_SPEED,
                         acceleration=C.DEFAULT_ACCELERATION,
                         timeout_ms: Optional[int] = None) -> str:
        """
        Move the end effector (T:1041).

        Fields missing from position are taken from the cached position, or
        from {x: 0, y: 0, z: 100, t: 0} if nothing is cached yet.

        Raises:
            ValueError: position has keys other than x, y, z, t
        """
        return self._call(self._do_move_to_position, position, speed, acceleration, timeout_ms)

    def _do_move_to_position(self, position, speed, acceleration, timeout_ms) -> str:
        self._require_connected()
        current = self.state.position or Position(**C.DEFAULT_POSITION)
        target = current.merge(position)
        raw = dict(target.as_dict(), spd=speed, acc=acceleration)
        validated, response = self._dispatch(raw, C.CMD_POSITION, timeout_ms or self.config.movement_timeout_ms)
        self.state.position = Position(validated["x"], validated["y"], validated["z"], validated["t"])
        return response

    def move_joints(self,
                    joints: Mapping[str, float],
                    speed=C.DEFAULT_SPEED,
                    timeout_ms: Optional[int] = None) -> str:
        """
        Move all joints (T:122, degrees).

        Keys are j1..j6; missing joints keep their cached angle (0 if none).
        """
        return self._call(self._do_move_joints, joints, speed, timeout_ms)

    def _do_move_joints(self, joints, speed, timeout_ms) -> str:
        self._require_connected()
        target = self._cached_joints().merge(joints)
        raw = {wire_key: getattr(target, name) for name, wire_key in C.JOINT_WIRE_KEYS.items()}
        raw["spd"] = speed
        validated, response = self._dispatch(raw, C.CMD_JOINTS_ANGLE, timeout_ms)
        self.state.joints = self._joints_from_command(validated)
        return response

    def move_joint(self, joint: int, angle, speed=C.DEFAULT_SPEED) -> str:
        """Move a single joint (T:121, degrees). joint is 1-based."""
        _check_joint_index(joint)
        return self._call(self._do_move_joint, joint, angle, speed)

    def _do_move_joint(self, joint, angle, speed) -> str:
        validated, response = self._dispatch(
            {"joint": joint, "angle": angle, "spd": speed}, C.CMD_JOINT_ANGLE
        )
        self._cache_single_joint(joint, validated["angle"])
        return response

    def move_joint_radians(self, joint: int, radian, speed=C.DEFAULT_SPEED) -> str:
        """Move a single joint (T:101, radians). joint is 1-based."""
        _check_joint_index(joint)
        return self._call(self._do_move_joint_radians, joint, radian, speed)

    def _do_move_joint_radians(self, joint, radian, speed) -> str:
        validated, response = self._dispatch(
            {"joint": joint, "radian": radian, "spd": speed}, C.CMD_JOINT_RADIAN
        )
        self._cache_single_joint(joint, C.rad_to_deg(validated["radian"]))
        return response

    def _cache_single_joint(self, joint: int, degrees: float):
        if joint > self.joint_count:
            return
        self.state.joints = self._cached_joints().merge({f"j{joint}": degrees})
        if self.joint_count < 6:
            self.state.joints = Joints.from_list(self.state.joints.as_list(), self.joint_count)

    # ========================================================================
    # Feedback
    # ========================================================================

    def get_position(self) -> Position:
        """Query feedback (T:105) and return the current end effector position."""
        return self._call(self._do_get_position)

    def _do_get_position(self) -> Position:
        _, response = self._dispatch({}, C.CMD_FEEDBACK)
        position = parse_position(response, strict=self.config.strict_feedback)
        self.state.position = position
        return position

    def get_joints(self) -> Joints:
        """Query feedback (T:105) and return the current joint angles in degrees."""
        return self._call(self._do_get_joints)

    def _do_get_joints(self) -> Joints:
        _, response = self._dispatch({}, C.CMD_FEEDBACK)
        joints = parse_joints(response, self.joint_count, strict=self.config.strict_feedback)
        self.state.joints = joints
        return joints

    # ========================================================================
    # System
    # ========================================================================

    def set_torque(self, enabled: bool) -> str:
        """Enable (hold) or disable (free movement) the joint motors (T:210)."""
        return self._call(self._set_torque, bool(enabled))

    def set_middle_position(self) -> str:
        """Store the current pose as the servo middle position (T:502)."""
        return self._call(self._send_validated, {}, C.CMD_MIDDLE_POSITION, None)

    def set_pid(self, joint: int, p, i, d) -> str:
        """Set PID gains of one joint (T:108)."""
        _check_joint_index(joint)
        return self._call(self._send_validated, {"joint": joint, "p": p, "i": i, "d": d}, C.CMD_PID, None)

    def set_force_adaptation(self, enabled: bool, thresholds: Optional[Mapping[str, Any]] = None) -> str:
        """
        Toggle dynamic force adaptation (T:112).

        thresholds maps joint names (j1..j6) to 0-1000; unset joints use 500.
        """
        raw: Dict[str, Any] = {"mode": 1 if enabled else 0}
        for name, value in (thresholds or {}).items():
            if name not in C.JOINT_WIRE_KEYS:
                raise ValueError(f"Unknown joint name: {name}")
            raw[C.JOINT_WIRE_KEYS[name]] = value
        return self._call(self._send_validated, raw, C.CMD_FORCE_ADAPTATION, None)

    def gripper(self, mode: int, angle) -> str:
        """Gripper control on M3 models (T:222). mode 0 = position, 1 = force; angle in percent."""
        return self._call(self._send_validated, {"mode": mode, "angle": angle}, C.CMD_GRIPPER, None)

    # ========================================================================
    # LED
    # ========================================================================

    def set_led(self, r=0, g=0, b=0, brightness=C.DEFAULT_LED_BRIGHTNESS) -> str:
        """Set LED color and brightness (T:114). All values 0-255."""
        raw = {"led": brightness, "r": r, "g": g, "b": b}
        return self._call(self._send_validated, raw, C.CMD_LED, None)

    def led_on(self, brightness=C.DEFAULT_LED_BRIGHTNESS) -> str:
        return self._call(self._send_validated, {"led": brightness}, C.CMD_LED, None)

    def led_off(self) -> str:
        return self._call(self._send_validated, {"led": 0}, C.CMD_LED, None)

    # ========================================================================
    # Missions
    # ========================================================================

    def create_mission(self, name: str, intro: str = "") -> str:
        return self._call(self._send_validated, {"name": name, "intro": intro}, C.CMD_MISSION_CREATE, None)

    def add_mission_step(self, mission: str, speed=C.DEFAULT_MISSION_STEP_SPEED) -> str:
        """Record the current pose as the next step of a mission."""
        return self._call(self._send_validated, {"mission": mission, "spd": speed}, C.CMD_MISSION_STEP, None)

    def add_mission_delay(self, mission: str, delay_ms) -> str:
        return self._call(self._send_validated, {"mission": mission, "delay": delay_ms}, C.CMD_MISSION_DELAY, None)

    def play_mission(self, name: str, times=1) -> str:
        return self._call(self._send_validated, {"name": name, "times": times}, C.CMD_MISSION_PLAY, None)

    # ========================================================================
    # Generic commands
    # ========================================================================

    def send_valid_command(self,
                           raw: Mapping[str, Any],
                           type_id: Optional[int] = None,
                           timeout_ms: Optional[int] = None) -> str:
        """
        Validate and send any registered command.

        type_id defaults to raw["T"]. Cached state is not updated.
        """
        if type_id is None:
            type_id = raw.get(C.WIRE_TYPE_KEY)
        return self._call(self._send_validated, raw, type_id, timeout_ms)

    def _send_validated(self, raw, type_id, timeout_ms) -> str:
        _, response = self._dispatch(raw, type_id, timeout_ms)
        return response

    def send_custom_command(self, line: str, timeout_ms: Optional[int] = None) -> str:
        """Send a raw JSON line without validation."""
        return self._call(self._do_send_custom, line, timeout_ms)

    def _do_send_custom(self, line, timeout_ms) -> str:
        self._require_connected()
        logger.debug(f"[Robot:{self.name}] Custom command: {line}")
        return self._send(line, timeout_ms)

    # ========================================================================
    # Drag teach
    # ========================================================================

    def start_teaching(self, filename: str, sample_interval_ms: Optional[int] = None) -> None:
        """
        Disable torque and start sampling joints every sample_interval_ms.

        Raises:
            AlreadyTeaching: A session is already active (it is left untouched)
            NotConnected: Robot is disconnected
            RecordingError: The recording file cannot be written (torque stays on)
        """
        return self._call(self._do_start_teaching, filename, sample_interval_ms)

    def _do_start_teaching(self, filename, sample_interval_ms):
        if self.state.teaching is not None:
            raise AlreadyTeaching()
        self._require_connected()
        self.recordings.ensure_writable(filename)

        interval = sample_interval_ms or self.config.sample_interval_ms
        session = TeachingSession(filename=filename, sample_interval_ms=interval)
        session.recorder = TeachingRecorder(
            self.communication,
            post=lambda sample: self._post_sample(session, sample),
            sample_interval_ms=interval,
            joint_count=self.joint_count,
            timeout_ms=self.config.timeout_ms,
            strict_feedback=self.config.strict_feedback,
        )

        self._set_torque(False)
        self.state.teaching = session
        session.recorder.start()
        logger.info(f"[Robot:{self.name}] Drag teach started, recording to {filename}")

    def stop_teaching(self, filename: Optional[str] = None) -> int:
        """
        Stop sampling, re-enable torque and save the recording.

        Args:
            filename: Save somewhere other than the file given to start_teaching

        Returns:
            Number of samples saved

        Raises:
            NotTeaching: No session is active
            CommunicationError: Torque could not be re-enabled (samples are saved first)
            RecordingError: The recording could not be written. Sampling has
                stopped but the session and its samples are kept, so
                stop_teaching can be called again, with another filename if needed.
        """
        return self._call(self._do_stop_teaching, filename)

    def _do_stop_teaching(self, filename=None) -> int:
        session = self.state.teaching
        if session is None:
            raise NotTeaching()

        session.recorder.cancel()

        torque_error = None
        try:
            self._set_torque(True)
        except RoarmError as e:
            logger.error(f"[Robot:{self.name}] Failed to re-enable torque after drag teach: {e}")
            torque_error = e

        target = filename or session.filename
        count = len(session.samples)
        try:
            self.recordings.save(target, session.chronological())
        except RecordingError:
            logger.error(f"[Robot:{self.name}] Keeping {count} unsaved drag teach samples, retry stop_teaching")
            raise
        self.state.teaching = None
        logger.info(f"[Robot:{self.name}] Drag teach stopped, {count} samples saved to {target}")

        if torque_error is not None:
            raise torque_error
        return count

    def replay_teaching(self, filename: str, speed_multiplier: float = C.DEFAULT_SPEED_MULTIPLIER) -> int:
        """
        Replay a saved recording.

        Returns:
            Number of joint commands sent
        """
        return self._call(self._do_replay_teaching, filename, speed_multiplier)

    def _do_replay_teaching(self, filename, speed_multiplier) -> int:
        self._require_connected()
        samples = self.recordings.load(filename)
        return self._do_replay_samples(samples, speed_multiplier)

    def replay_samples(self, samples: Sequence[Sample], speed_multiplier: float = C.DEFAULT_SPEED_MULTIPLIER) -> int:
        """Replay in-memory samples. Blocks the controller until done."""
        return self._call(self._do_replay_samples, list(samples), speed_multiplier)

    def _do_replay_samples(self, samples, speed_multiplier) -> int:
        self._require_connected()
        replayer = TeachingReplayer(self._send, joint_count=self.joint_count)
        return replayer.replay(samples, speed_multiplier)


def _check_joint_index(joint: int):
    if isinstance(joint, bool) or not isinstance(joint, int) or not 1 <= joint <= C.MAX_JOINT_INDEX:
        raise ValueError(f"Joint index must be 1-{C.MAX_JOINT_INDEX}, got {joint!r}")

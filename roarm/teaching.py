"""
Drag Teach Module for RoArm robots

Recording: with torque disabled a human moves the arm while a background
thread samples joint angles on a fixed interval. Samples are handed to the
owning controller through a callback and never touch controller state here.

Replay: recorded samples are sent back as joint angle commands, keeping the
recorded spacing between samples (optionally sped up or slowed down).
"""

import logging
import threading
import time
from typing import Callable, Optional, Sequence

from roarm import constants as C
from roarm.command_validator import build_wire_command
from roarm.errors import RoarmError
from roarm.feedback import parse_joints
from roarm.state import Sample

logger = logging.getLogger(__name__)


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class TeachingRecorder:
    """
    Samples joint feedback on a daemon thread until cancelled.

    Each tick sends a feedback query (T:105) directly through the
    communication object, converts the joint angles to radians and calls
    post(sample). A failed query is logged and skipped; the loop keeps going.
    """

    def __init__(self,
                 communication,
                 post: Callable[[Sample], None],
                 sample_interval_ms: int = C.DEFAULT_SAMPLE_INTERVAL_MS,
                 joint_count: int = 4,
                 timeout_ms: int = C.DEFAULT_TIMEOUT_MS,
                 strict_feedback: bool = False,
                 clock: Callable[[], int] = _wall_clock_ms):
        if sample_interval_ms < C.MIN_SAMPLE_INTERVAL_MS:
            raise ValueError(
                f"sample_interval_ms must be at least {C.MIN_SAMPLE_INTERVAL_MS}, got {sample_interval_ms}"
            )
        self.communication = communication
        self.post = post
        self.sample_interval_ms = sample_interval_ms
        self.joint_count = joint_count
        self.timeout_ms = timeout_ms
        self.strict_feedback = strict_feedback
        self.clock = clock

        self._feedback_command = build_wire_command({}, C.CMD_FEEDBACK)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.sample_count = 0
        self.error_count = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("TeachingRecorder can only be started once")
        self._thread = threading.Thread(target=self._run, name="roarm-teaching-recorder", daemon=True)
        self._thread.start()
        logger.info(f"[TeachingRecorder] Sampling every {self.sample_interval_ms}ms")

    def cancel(self) -> None:
        """Stop sampling. Safe to call more than once and from any thread."""
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=C.RECORDER_JOIN_TIMEOUT_S)
            if thread.is_alive():
                logger.warning("[TeachingRecorder] Sampling thread did not stop in time")
        logger.debug(f"[TeachingRecorder] Cancelled after {self.sample_count} samples ({self.error_count} errors)")

    def _run(self):
        interval_s = C.ms_to_seconds(self.sample_interval_ms)
        # Sample, then wait; Event.wait returns True once cancel() is called
        while not self._stop.is_set():
            self.sample_once()
            if self._stop.wait(interval_s):
                break

    def sample_once(self) -> Optional[Sample]:
        """Take one sample and post it. Returns None when the query failed."""
        try:
            response = self.communication.send_command(self._feedback_command, self.timeout_ms)
            joints = parse_joints(response, self.joint_count, self.strict_feedback)
        except RoarmError as e:
            self.error_count += 1
            logger.warning(f"[TeachingRecorder] Failed to sample joints: {e}")
            return None

        sample = Sample(self.clock(), C.deg_to_rad(joints.as_list()))
        if self._stop.is_set():
            return None
        self.post(sample)
        self.sample_count += 1
        return sample


class TeachingReplayer:
    """
    Sends recorded samples back to the arm as T:122 joint angle commands.

    send takes a wire command line and returns the device response; sleep
    takes seconds. Both are injectable for tests.
    """

    def __init__(self,
                 send: Callable[[str], str],
                 joint_count: int = 4,
                 sleep: Callable[[float], None] = time.sleep):
        self.send = send
        self.joint_count = joint_count
        self.sleep = sleep

    def _joint_command(self, sample: Sample) -> str:
        degrees = C.rad_to_deg(sample.joints_radians[:self.joint_count])
        degrees += [0.0] * (self.joint_count - len(degrees))
        wire_keys = list(C.JOINT_WIRE_KEYS.values())
        raw = dict(zip(wire_keys, degrees))
        return build_wire_command(raw, C.CMD_JOINTS_ANGLE)

    def replay(self, samples: Sequence[Sample], speed_multiplier: float = C.DEFAULT_SPEED_MULTIPLIER) -> int:
        """
        Replay samples in the given order.

        Args:
            samples: Chronologically ordered samples
            speed_multiplier: 2.0 plays twice as fast, 0.5 half as fast

        Returns:
            Number of joint commands sent

        Raises:
            ValueError: speed_multiplier is not positive
            RoarmError: First failed command aborts the replay
        """
        if speed_multiplier <= 0:
            raise ValueError(f"speed_multiplier must be positive, got {speed_multiplier}")

        logger.info(f"[TeachingReplayer] Replaying {len(samples)} samples at {speed_multiplier}x")
        sent = 0
        previous_ts = None
        for sample in samples:
            if previous_ts is not None:
                delay_ms = (sample.timestamp_ms - previous_ts) / speed_multiplier
                if delay_ms > 0:
                    self.sleep(C.ms_to_seconds(delay_ms))

            # Build before sending so a bad sample never reaches the wire
            command = self._joint_command(sample)
            try:
                self.send(command)
            except RoarmError as e:
                logger.error(f"[TeachingReplayer] Replay aborted after {sent} commands: {e}")
                raise
            sent += 1
            previous_ts = sample.timestamp_ms

        logger.info(f"[TeachingReplayer] Replay completed, {sent} commands sent")
        return sent

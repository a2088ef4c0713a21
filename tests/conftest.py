"""Shared fixtures: a scripted in-memory transport and controllers wired to it."""

import json
import threading
import time

import pytest

from roarm.config import RobotConfig
from roarm.errors import TransportFailure
from roarm.recording import RecordingStore
from roarm.robot import RobotController

OK_RESPONSE = '{"status":"ok"}'


class FakeCommunication:
    """
    Stands in for SerialCommunication.

    responses maps a T-code to a response string, an exception instance to
    raise, or a callable taking the decoded command and returning either.
    """

    def __init__(self):
        self.sent = []
        self.responses = {}
        self.default_response = OK_RESPONSE
        self.connected = False
        self.port = None
        self.baudrate = None
        self.connect_calls = 0
        self.disconnect_error = None
        self._lock = threading.Lock()

    def connect(self, port, baudrate=None):
        self.connect_calls += 1
        self.connected = True
        self.port = port
        self.baudrate = baudrate

    def disconnect(self):
        self.connected = False
        if self.disconnect_error is not None:
            raise self.disconnect_error

    def send_command(self, line, timeout_ms=None):
        if not self.connected:
            raise TransportFailure("Serial port is not open")
        command = json.loads(line)
        with self._lock:
            self.sent.append(line)
        response = self.responses.get(command.get("T"), self.default_response)
        if callable(response):
            response = response(command)
        if isinstance(response, Exception):
            raise response
        return response

    def commands(self, type_id=None):
        with self._lock:
            decoded = [json.loads(line) for line in self.sent]
        if type_id is None:
            return decoded
        return [c for c in decoded if c.get("T") == type_id]

    def clear(self):
        with self._lock:
            self.sent.clear()


def wait_for(predicate, timeout=2.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def fake_comm():
    return FakeCommunication()


@pytest.fixture
def robot_config(tmp_path):
    return RobotConfig(port="loop://", recordings_dir=str(tmp_path / "recordings"))


@pytest.fixture
def robot(fake_comm, robot_config):
    controller = RobotController(
        robot_config,
        communication=fake_comm,
        recordings=RecordingStore(robot_config.recordings_dir),
        name="test",
    )
    yield controller
    controller.stop()


@pytest.fixture
def connected_robot(robot, fake_comm):
    robot.connect()
    fake_comm.clear()
    return robot

import json
import math
import threading
import time

import pytest

from roarm.config import RobotConfig
from roarm.errors import (
    AlreadyTeaching,
    CommunicationTimeout,
    ControllerStopped,
    InvalidType,
    NoPortSpecified,
    NotConnected,
    NotTeaching,
    RecordingError,
    ResponseFormatError,
    TransportFailure,
)
from roarm.recording import RecordingStore
from roarm.robot import RobotController
from roarm.state import Joints, Position, Sample
from tests.conftest import wait_for

FEEDBACK_RADIANS = '{"joint_radians": [0.1, 0.2, 0.3, 0.4]}'


# ============================================================================
# Connection
# ============================================================================

def test_connect_requires_a_port(fake_comm):
    with RobotController(RobotConfig(), communication=fake_comm) as robot:
        with pytest.raises(NoPortSpecified):
            robot.connect()
        assert not robot.connected


def test_connect_uses_configured_port_and_baudrate(robot, fake_comm):
    robot.connect()
    assert robot.connected
    assert fake_comm.port == "loop://"
    assert fake_comm.baudrate == 115200


def test_connect_twice_is_a_no_op(robot, fake_comm):
    robot.connect()
    robot.connect()
    assert fake_comm.connect_calls == 1


def test_connect_port_override(robot, fake_comm):
    robot.connect("socket://localhost:9999")
    assert fake_comm.port == "socket://localhost:9999"


def test_disconnect_ends_disconnected_even_if_transport_fails(connected_robot, fake_comm):
    fake_comm.disconnect_error = TransportFailure("port vanished")
    with pytest.raises(TransportFailure):
        connected_robot.disconnect()
    assert not connected_robot.connected


@pytest.mark.parametrize("operation", [
    lambda r: r.home(),
    lambda r: r.move_to_position({"x": 1}),
    lambda r: r.move_joints({"j1": 1}),
    lambda r: r.get_joints(),
    lambda r: r.set_torque(False),
    lambda r: r.led_on(),
    lambda r: r.create_mission("m"),
    lambda r: r.send_custom_command('{"T":105}'),
    lambda r: r.start_teaching("x.json"),
    lambda r: r.replay_samples([]),
])
def test_operations_require_connection(robot, fake_comm, operation):
    with pytest.raises(NotConnected):
        operation(robot)
    assert fake_comm.sent == []


# ============================================================================
# Movement
# ============================================================================

def test_partial_position_update_merges_over_cache(connected_robot, fake_comm):
    connected_robot.move_to_position({"x": 10, "y": 0, "z": 20, "t": 0})
    connected_robot.move_to_position({"y": 50.0})

    assert fake_comm.sent[-1] == '{"T":1041,"x":10.0,"y":50.0,"z":20.0,"t":0.0,"spd":1000,"acc":100}'
    assert connected_robot.snapshot()["position"] == {"x": 10.0, "y": 50.0, "z": 20.0, "t": 0.0}


def test_first_position_move_merges_over_default(connected_robot, fake_comm):
    connected_robot.move_to_position({"x": 50}, speed=500, acceleration=20)
    assert fake_comm.commands()[-1] == {"T": 1041, "x": 50, "y": 0, "z": 100, "t": 0, "spd": 500, "acc": 20}


def test_cached_position_holds_clamped_values(connected_robot):
    connected_robot.move_to_position({"x": 900, "z": -5})
    assert connected_robot.snapshot()["position"] == {"x": 500.0, "y": 0.0, "z": 0.0, "t": 0.0}


def test_unknown_position_key_is_a_value_error(connected_robot, fake_comm):
    with pytest.raises(ValueError):
        connected_robot.move_to_position({"w": 1})
    assert fake_comm.sent == []


def test_partial_joint_update(connected_robot, fake_comm):
    connected_robot.move_joints({"j1": 90})
    connected_robot.move_joints({"j2": 30}, speed=200)

    assert fake_comm.commands()[-1] == {
        "T": 122, "b": 90, "s": 30, "e": 0, "h": 0, "w": 0, "g": 0, "spd": 200
    }
    assert connected_robot.snapshot()["joints"] == {
        "j1": 90.0, "j2": 30.0, "j3": 0.0, "j4": 0.0, "j5": None, "j6": None
    }


def test_home_resets_joint_cache_and_clears_position(connected_robot, fake_comm):
    connected_robot.move_to_position({"x": 10})
    connected_robot.move_joints({"j1": 45})

    connected_robot.home()

    assert fake_comm.sent[-1] == '{"T":100}'
    snapshot = connected_robot.snapshot()
    assert snapshot["position"] is None
    assert snapshot["joints"] == Joints.zeros(4).as_dict()


def test_single_joint_moves(connected_robot, fake_comm):
    connected_robot.move_joint(2, 45)
    connected_robot.move_joint_radians(3, math.pi / 2, speed=100)

    degrees, radians = fake_comm.commands()
    assert degrees == {"T": 121, "joint": 2, "angle": 45, "spd": 1000}
    assert radians["T"] == 101
    assert radians["radian"] == pytest.approx(3.14159 / 2, abs=1e-3)
    joints = connected_robot.snapshot()["joints"]
    assert joints["j2"] == 45.0
    assert joints["j3"] == pytest.approx(90.0)


@pytest.mark.parametrize("joint", [0, 7, True, "1"])
def test_joint_index_is_checked(connected_robot, joint):
    with pytest.raises(ValueError):
        connected_robot.move_joint(joint, 10)


def test_validation_happens_before_io(connected_robot, fake_comm):
    with pytest.raises(InvalidType):
        connected_robot.move_joint(1, "straight up")
    assert fake_comm.sent == []


def test_communication_errors_propagate_without_retry(connected_robot, fake_comm):
    fake_comm.responses[100] = CommunicationTimeout(8000, '{"T":100}')
    with pytest.raises(CommunicationTimeout):
        connected_robot.home()
    assert len(fake_comm.sent) == 1


# ============================================================================
# Feedback
# ============================================================================

def test_get_position_updates_cache(connected_robot, fake_comm):
    fake_comm.responses[105] = '{"coordinates": [1, 2, 3], "tool_angle": 4}'
    assert connected_robot.get_position() == Position(1.0, 2.0, 3.0, 4.0)
    assert connected_robot.snapshot()["position"]["z"] == 3.0


def test_get_joints_converts_radians(connected_robot, fake_comm):
    fake_comm.responses[105] = '{"joint_radians": [%r, 0, 0, 0]}' % math.pi
    assert connected_robot.get_joints().j1 == pytest.approx(180.0)


def test_strict_feedback_raises_on_unknown_shape(fake_comm, tmp_path):
    config = RobotConfig(port="loop://", strict_feedback=True, recordings_dir=str(tmp_path))
    fake_comm.responses[105] = '{"status": "ok"}'
    with RobotController(config, communication=fake_comm) as robot:
        robot.connect()
        with pytest.raises(ResponseFormatError):
            robot.get_position()


def test_six_axis_models_report_six_joints(fake_comm, tmp_path):
    config = RobotConfig(port="loop://", robot_type="roarm_m3", recordings_dir=str(tmp_path))
    fake_comm.responses[105] = '{"b": 1, "s": 2, "e": 3, "h": 4, "w": 5, "g": 6}'
    with RobotController(config, communication=fake_comm) as robot:
        robot.connect()
        assert robot.get_joints().as_list() == [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]


# ============================================================================
# System, LED, missions and generic commands
# ============================================================================

def test_torque_led_and_device_settings(connected_robot, fake_comm):
    connected_robot.set_torque(False)
    connected_robot.set_led(255, 0, 0)
    connected_robot.led_on(128)
    connected_robot.led_off()
    connected_robot.set_middle_position()
    connected_robot.set_pid(1, 10, 0, 5)
    connected_robot.set_force_adaptation(True, {"j1": 300})
    connected_robot.gripper(0, 50)

    assert fake_comm.sent[:7] == [
        '{"T":210,"cmd":0}',
        '{"T":114,"led":255,"r":255,"g":0,"b":0}',
        '{"T":114,"led":128,"r":0,"g":0,"b":0}',
        '{"T":114,"led":0,"r":0,"g":0,"b":0}',
        '{"T":502}',
        '{"T":108,"joint":1,"p":10,"i":0,"d":5}',
        '{"T":112,"mode":1,"b":300,"s":500,"e":500,"h":500,"w":500,"g":500}',
    ]
    assert fake_comm.sent[7] == '{"T":222,"mode":0,"angle":50}'
    assert connected_robot.snapshot()["torque_enabled"] is False


def test_force_adaptation_rejects_unknown_joint(connected_robot):
    with pytest.raises(ValueError):
        connected_robot.set_force_adaptation(True, {"j9": 100})


def test_mission_commands_encode_exactly(connected_robot, fake_comm):
    connected_robot.create_mission("m", "d")
    connected_robot.add_mission_step("m", 0.5)
    connected_robot.add_mission_delay("m", 2000)
    connected_robot.play_mission("m", 3)

    assert fake_comm.sent == [
        '{"T":220,"name":"m","intro":"d"}',
        '{"T":223,"mission":"m","spd":0.5}',
        '{"T":224,"mission":"m","delay":2000}',
        '{"T":242,"name":"m","times":3}',
    ]


def test_send_valid_command_reads_type_from_mapping(connected_robot, fake_comm):
    fake_comm.responses[121] = '{"result": "done"}'
    response = connected_robot.send_valid_command({"T": 121, "joint": 4, "angle": 90, "spd": 2000})
    assert response == '{"result": "done"}'
    assert json.loads(fake_comm.sent[-1]) == {"T": 121, "joint": 4, "angle": 90, "spd": 2000}


def test_send_custom_command_is_not_validated(connected_robot, fake_comm):
    connected_robot.send_custom_command('{"T":9999,"anything":true}')
    assert fake_comm.sent == ['{"T":9999,"anything":true}']


# ============================================================================
# Drag teach
# ============================================================================

def _wait_for_samples(robot, count):
    return wait_for(lambda: robot.snapshot()["teaching_samples"] >= count)


def test_teaching_records_and_saves_samples(connected_robot, fake_comm, robot_config):
    fake_comm.responses[105] = FEEDBACK_RADIANS

    connected_robot.start_teaching("wave.json", sample_interval_ms=10)
    assert connected_robot.teaching
    assert _wait_for_samples(connected_robot, 3)

    saved = connected_robot.stop_teaching()

    assert saved >= 3
    assert not connected_robot.teaching
    torque = fake_comm.commands(210)
    assert torque[0] == {"T": 210, "cmd": 0}
    assert torque[-1] == {"T": 210, "cmd": 1}
    samples = RecordingStore(robot_config.recordings_dir).load("wave.json")
    assert len(samples) == saved
    assert [s.timestamp_ms for s in samples] == sorted(s.timestamp_ms for s in samples)
    assert samples[0].joints_radians == pytest.approx([0.1, 0.2, 0.3, 0.4])


def test_start_teaching_twice_leaves_session_untouched(connected_robot, fake_comm):
    fake_comm.responses[105] = FEEDBACK_RADIANS
    connected_robot.start_teaching("first.json", sample_interval_ms=10)
    assert _wait_for_samples(connected_robot, 2)
    before = connected_robot.snapshot()["teaching_samples"]

    with pytest.raises(AlreadyTeaching):
        connected_robot.start_teaching("second.json")

    snapshot = connected_robot.snapshot()
    assert snapshot["teaching_filename"] == "first.json"
    assert snapshot["teaching_samples"] >= before
    connected_robot.stop_teaching()


def test_stop_teaching_without_session(connected_robot):
    with pytest.raises(NotTeaching):
        connected_robot.stop_teaching()


def test_samples_are_saved_even_if_torque_enable_fails(connected_robot, fake_comm, robot_config):
    fake_comm.responses[105] = FEEDBACK_RADIANS
    fake_comm.responses[210] = lambda command: (
        CommunicationTimeout(5000, "torque") if command["cmd"] == 1 else '{"status":"ok"}'
    )
    connected_robot.start_teaching("kept.json", sample_interval_ms=10)
    assert _wait_for_samples(connected_robot, 1)

    with pytest.raises(CommunicationTimeout):
        connected_robot.stop_teaching()

    assert not connected_robot.teaching
    assert len(RecordingStore(robot_config.recordings_dir).load("kept.json")) >= 1


def test_failed_save_keeps_session_for_retry(connected_robot, fake_comm, robot_config, monkeypatch):
    fake_comm.responses[105] = FEEDBACK_RADIANS
    store = connected_robot.recordings
    real_save = store.save

    def save(filename, samples):
        if filename == "full_disk.json":
            raise RecordingError("No space left on device")
        return real_save(filename, samples)

    monkeypatch.setattr(store, "save", save)
    connected_robot.start_teaching("full_disk.json", sample_interval_ms=10)
    assert _wait_for_samples(connected_robot, 3)

    with pytest.raises(RecordingError):
        connected_robot.stop_teaching()

    assert connected_robot.teaching
    kept = connected_robot.snapshot()["teaching_samples"]
    assert kept >= 3

    assert connected_robot.stop_teaching("retry.json") == kept
    assert not connected_robot.teaching
    assert len(RecordingStore(robot_config.recordings_dir).load("retry.json")) == kept


def test_stop_teaching_retry_must_stay_in_recordings_dir(connected_robot, fake_comm):
    fake_comm.responses[105] = FEEDBACK_RADIANS
    connected_robot.start_teaching("ok.json", sample_interval_ms=10)
    assert _wait_for_samples(connected_robot, 1)

    with pytest.raises(RecordingError):
        connected_robot.stop_teaching("../escaped.json")
    assert connected_robot.teaching
    assert connected_robot.stop_teaching() >= 1


@pytest.mark.parametrize("filename", ["blocker/rec.json", "../escaped.json"])
def test_start_teaching_checks_target_before_releasing_torque(connected_robot, fake_comm, robot_config, filename):
    recordings = RecordingStore(robot_config.recordings_dir)
    recordings.recordings_dir.mkdir(parents=True)
    (recordings.recordings_dir / "blocker").write_text("not a directory")

    with pytest.raises(RecordingError):
        connected_robot.start_teaching(filename, sample_interval_ms=10)

    assert not connected_robot.teaching
    assert fake_comm.commands(210) == []
    assert fake_comm.commands(105) == []


def test_disconnect_discards_teaching_session(connected_robot, fake_comm, robot_config):
    fake_comm.responses[105] = FEEDBACK_RADIANS
    connected_robot.start_teaching("lost.json", sample_interval_ms=10)
    assert _wait_for_samples(connected_robot, 1)

    connected_robot.disconnect()

    snapshot = connected_robot.snapshot()
    assert snapshot["teaching"] is False
    assert snapshot["connection"] == "disconnected"
    assert RecordingStore(robot_config.recordings_dir).list_recordings() == []


def test_replay_samples_sends_one_command_per_sample(connected_robot, fake_comm):
    samples = [Sample(0, [math.pi / 2, 0, 0, 0]), Sample(60, [0, 0, 0, 0]), Sample(120, [0, 0, 0, 0])]

    started = time.monotonic()
    sent = connected_robot.replay_samples(samples, speed_multiplier=2.0)
    elapsed = time.monotonic() - started

    assert sent == 3
    commands = fake_comm.commands(122)
    assert len(commands) == 3
    assert commands[0]["b"] == pytest.approx(90.0)
    assert 0.055 <= elapsed < 1.0


def test_replay_teaching_loads_recording(connected_robot, fake_comm, robot_config):
    RecordingStore(robot_config.recordings_dir).save("saved.json", [Sample(0, [0.1] * 4), Sample(1, [0.2] * 4)])
    assert connected_robot.replay_teaching("saved.json", speed_multiplier=10.0) == 2
    assert len(fake_comm.commands(122)) == 2


def test_replay_rejects_non_positive_speed(connected_robot):
    with pytest.raises(ValueError):
        connected_robot.replay_samples([Sample(0, [0.0])], speed_multiplier=0)


# ============================================================================
# Actor lifecycle
# ============================================================================

def test_stopped_controller_rejects_calls(fake_comm, robot_config):
    robot = RobotController(robot_config, communication=fake_comm)
    robot.connect()
    robot.stop()
    robot.stop()

    assert robot.stopped
    assert not fake_comm.connected
    with pytest.raises(ControllerStopped):
        robot.home()


def test_context_manager_stops_the_recorder(fake_comm, robot_config):
    fake_comm.responses[105] = FEEDBACK_RADIANS
    with RobotController(robot_config, communication=fake_comm) as robot:
        robot.connect()
        robot.start_teaching("ctx.json", sample_interval_ms=10)
    count = len(fake_comm.commands(105))
    time.sleep(0.05)
    assert len(fake_comm.commands(105)) == count


def test_concurrent_callers_are_serialized(connected_robot, fake_comm):
    errors = []

    def worker(joint):
        try:
            for _ in range(10):
                connected_robot.move_joint(joint, 10)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(j,)) for j in (1, 2, 3, 4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(fake_comm.sent) == 40
    assert connected_robot.snapshot()["joints"] == {
        "j1": 10.0, "j2": 10.0, "j3": 10.0, "j4": 10.0, "j5": None, "j6": None
    }

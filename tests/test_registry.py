import pytest

from roarm.config import RobotConfig
from roarm.errors import UnknownRobot
from roarm.registry import RobotRegistry
from tests.conftest import FakeCommunication


@pytest.fixture
def registry():
    registry = RobotRegistry()
    yield registry
    registry.stop_all()


def _config(tmp_path, **overrides):
    return RobotConfig(port="loop://", recordings_dir=str(tmp_path), **overrides)


def test_start_and_lookup(registry, tmp_path):
    left = registry.start_robot("left", _config(tmp_path), communication=FakeCommunication())
    right = registry.start_robot("right", _config(tmp_path, robot_type="roarm_m3"), communication=FakeCommunication())

    assert registry.get("left") is left
    assert registry.get("right").joint_count == 6
    assert registry.names() == ["left", "right"]
    assert "left" in registry
    assert len(registry) == 2


def test_unknown_name_raises(registry):
    with pytest.raises(UnknownRobot) as exc_info:
        registry.get("ghost")
    assert exc_info.value.name == "ghost"
    with pytest.raises(UnknownRobot):
        registry.unregister("ghost")


def test_duplicate_names_are_rejected(registry, tmp_path):
    registry.start_robot("arm", _config(tmp_path), communication=FakeCommunication())
    with pytest.raises(ValueError):
        registry.start_robot("arm", _config(tmp_path), communication=FakeCommunication())


def test_robots_are_independent(registry, tmp_path):
    left_comm, right_comm = FakeCommunication(), FakeCommunication()
    registry.start_robot("left", _config(tmp_path), communication=left_comm)
    registry.start_robot("right", _config(tmp_path), communication=right_comm)

    registry.get("left").connect()
    registry.get("left").home()

    assert left_comm.sent == ['{"T":100}']
    assert right_comm.sent == []
    assert not registry.get("right").connected


def test_stop_robot_and_stop_all(registry, tmp_path):
    first = registry.start_robot("first", _config(tmp_path), communication=FakeCommunication())
    second = registry.start_robot("second", _config(tmp_path), communication=FakeCommunication())

    registry.stop_robot("first")
    assert first.stopped
    assert registry.names() == ["second"]

    registry.stop_all()
    assert second.stopped
    assert registry.names() == []

from types import SimpleNamespace

import pytest
import serial.tools.list_ports

from roarm.communication import SerialCommunication
from roarm.errors import CommunicationTimeout, TransportFailure


@pytest.fixture
def loopback():
    comm = SerialCommunication(timeout_ms=200)
    comm.connect("loop://")
    yield comm
    comm.disconnect()


def test_loopback_echoes_the_command_line(loopback):
    assert loopback.is_connected
    assert loopback.send_command('{"T":105}') == '{"T":105}'


def test_missing_newline_is_a_timeout(loopback, monkeypatch):
    # Swallow the write so nothing comes back before the timeout
    monkeypatch.setattr(loopback._serial, "write", lambda data: len(data))
    with pytest.raises(CommunicationTimeout) as exc_info:
        loopback.send_command('{"T":105}', timeout_ms=50)
    assert exc_info.value.timeout_ms == 50


def test_partial_line_is_a_timeout(loopback, monkeypatch):
    monkeypatch.setattr(loopback._serial, "read_until", lambda terminator: b'{"T":10')
    with pytest.raises(CommunicationTimeout):
        loopback.send_command('{"T":105}')


def test_send_requires_open_port():
    comm = SerialCommunication()
    with pytest.raises(TransportFailure):
        comm.send_command('{"T":105}')
    with pytest.raises(TransportFailure):
        comm.send_raw(b"\n")


def test_unknown_url_is_a_transport_failure():
    with pytest.raises(TransportFailure):
        SerialCommunication().connect("nosuchproto://device")


def test_disconnect_is_idempotent(loopback):
    loopback.disconnect()
    loopback.disconnect()
    assert not loopback.is_connected
    assert loopback.port is None


def test_send_raw_writes_bytes(loopback):
    loopback.send_raw(b'{"T":100}\n')
    assert loopback._serial.read_until(b"\n") == b'{"T":100}\n'


def test_list_ports(monkeypatch):
    fake_ports = [SimpleNamespace(device="/dev/ttyUSB0", description="CP2102", hwid="USB VID:PID=10C4:EA60")]
    monkeypatch.setattr(serial.tools.list_ports, "comports", lambda: fake_ports)
    assert SerialCommunication.list_ports() == {
        "/dev/ttyUSB0": {"description": "CP2102", "hwid": "USB VID:PID=10C4:EA60"}
    }

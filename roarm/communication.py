"""
Serial Communication Module for RoArm robots

Line-oriented JSON transport over a serial port (pyserial). Each command is
written as one line and answered by one line.

Ports may be device paths ("/dev/ttyUSB0", "COM3") or any pyserial URL
("loop://", "socket://host:port"), which is handy for tests and simulators.
"""

import logging
import threading
from typing import Any, Dict, Optional

import serial
import serial.tools.list_ports

from roarm.constants import (
    DEFAULT_TIMEOUT_MS,
    SERIAL_BAUD_RATE,
    SERIAL_ENCODING,
    SERIAL_LINE_TERMINATOR,
    ms_to_seconds,
)
from roarm.errors import CommunicationTimeout, TransportFailure

logger = logging.getLogger(__name__)


class SerialCommunication:
    """
    Owns one serial port and serializes request/response pairs on it.

    The internal lock keeps a write and its matching read together, so the
    drag teach sampler and regular commands never interleave on the wire.
    One instance must only be used by one robot controller.
    """

    def __init__(self, baudrate: int = SERIAL_BAUD_RATE, timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self.baudrate = baudrate
        self.timeout_ms = timeout_ms
        self.port: Optional[str] = None
        self._serial = None
        self._lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def connect(self, port: str, baudrate: Optional[int] = None, **options) -> None:
        """
        Open the serial port.

        Args:
            port: Device path or pyserial URL
            baudrate: Overrides the instance default
            **options: Extra keyword arguments for serial.serial_for_url

        Raises:
            TransportFailure: If the port cannot be opened
        """
        baudrate = baudrate or self.baudrate
        with self._lock:
            if self._serial is not None:
                self._close_locked()
            try:
                self._serial = serial.serial_for_url(
                    port,
                    baudrate=baudrate,
                    timeout=ms_to_seconds(self.timeout_ms),
                    **options,
                )
            except (serial.SerialException, ValueError) as e:
                logger.error(f"[Serial] Failed to connect to {port}: {e}")
                raise TransportFailure(f"Could not open {port}: {e}") from e
            self.port = port
            self.baudrate = baudrate
        logger.info(f"[Serial] Connected to {port} at {baudrate} baud")

    def disconnect(self) -> None:
        """Close the port. Closing an already closed transport is a no-op."""
        with self._lock:
            if self._serial is None:
                return
            port = self.port
            self._close_locked()
        logger.info(f"[Serial] Disconnected from {port}")

    def _close_locked(self):
        try:
            self._serial.close()
        except serial.SerialException as e:
            logger.warning(f"[Serial] Error while closing {self.port}: {e}")
        finally:
            self._serial = None
            self.port = None

    def send_command(self, command: str, timeout_ms: Optional[int] = None) -> str:
        """
        Write one command line and wait for one response line.

        Args:
            command: JSON command without trailing newline
            timeout_ms: Response timeout (default: instance timeout)

        Returns:
            Response line with surrounding whitespace stripped

        Raises:
            CommunicationTimeout: No complete line within timeout_ms
            TransportFailure: Port not open or I/O error
        """
        timeout_ms = timeout_ms or self.timeout_ms
        with self._lock:
            if self._serial is None:
                raise TransportFailure("Serial port is not open")
            try:
                # Drop stale output from earlier commands
                self._serial.reset_input_buffer()
                logger.debug(f"[Serial] -> {command}")
                self._serial.write(command.encode(SERIAL_ENCODING) + SERIAL_LINE_TERMINATOR)
                self._serial.flush()
                self._serial.timeout = ms_to_seconds(timeout_ms)
                raw = self._serial.read_until(SERIAL_LINE_TERMINATOR)
            except serial.SerialException as e:
                logger.error(f"[Serial] I/O error on {self.port}: {e}")
                raise TransportFailure(str(e)) from e

        if not raw.endswith(SERIAL_LINE_TERMINATOR):
            logger.warning(f"[Serial] Command timed out after {timeout_ms}ms: {command}")
            raise CommunicationTimeout(timeout_ms, command)

        response = raw.decode(SERIAL_ENCODING, errors="replace").strip()
        logger.debug(f"[Serial] <- {response}")
        return response

    def send_raw(self, data: bytes) -> None:
        """Write bytes without waiting for a response."""
        with self._lock:
            if self._serial is None:
                raise TransportFailure("Serial port is not open")
            try:
                self._serial.write(data)
                self._serial.flush()
            except serial.SerialException as e:
                logger.warning(f"[Serial] Raw send failed: {e}")
                raise TransportFailure(str(e)) from e

    @staticmethod
    def list_ports() -> Dict[str, Dict[str, Any]]:
        """Available serial ports keyed by device name."""
        return {
            port.device: {
                "description": port.description,
                "hwid": port.hwid,
            }
            for port in serial.tools.list_ports.comports()
        }

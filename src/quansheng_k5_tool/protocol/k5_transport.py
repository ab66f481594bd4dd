"""
UV-K5 Serial Transport Layer

Handles low-level serial communication with Quansheng UV-K5 radios over the
USB programming cable (CH340/CP210x style UART bridge).

This module provides:
- Serial port initialization and configuration (38400 8N1, raw, no flow control)
- Byte-level write returning success/failure
- Bounded reads that return b"" on timeout instead of raising
- An abstract base so tests and alternate links can stand in for the port

Opening the port does not prove a radio is attached; that is checked later
by the session handshake.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import serial

from .errors import DeviceNotConnected, PortUnavailable

logger = logging.getLogger(__name__)

BAUD_RATE = 38400
READ_CHUNK = 1024


class BaseTransport(ABC):
    """
    Byte-level link to the radio.

    Implementations must never block in ``read`` for longer than the given
    timeout, and must report an incomplete write as ``False`` rather than
    raising.
    """

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while the link is usable."""

    @abstractmethod
    def open(self) -> None:
        """Open the link."""

    @abstractmethod
    def close(self) -> None:
        """Close the link (safe to call twice)."""

    @abstractmethod
    def write(self, data: bytes) -> bool:
        """Write all of ``data``; return False if fewer bytes went out."""

    @abstractmethod
    def read(self, timeout: float) -> bytes:
        """Return whatever arrived within ``timeout`` seconds (may be empty)."""

    def __enter__(self) -> "BaseTransport":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class K5SerialTransport(BaseTransport):
    """
    Serial transport for UV-K5 radios.

    Example:
        transport = K5SerialTransport(port="/dev/ttyUSB0")
        transport.open()
        transport.write(frame)
        reply = transport.read(timeout=0.5)
        transport.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = BAUD_RATE,
        write_timeout: float = 1.0,
    ):
        """
        Initialize transport layer.

        Args:
            port: Serial port (e.g., "/dev/ttyUSB0", "COM3", "/dev/cu.usbserial-1410")
            baudrate: Serial baud rate (default 38400)
            write_timeout: Write timeout in seconds (default 1.0)
        """
        self.port = port
        self.baudrate = baudrate
        self.write_timeout = write_timeout
        self.ser: Optional[serial.Serial] = None

    @property
    def is_open(self) -> bool:
        return self.ser is not None and self.ser.is_open

    def open(self) -> None:
        """
        Open serial port in raw 8N1 mode without flow control.

        Raises:
            PortUnavailable: If port cannot be opened
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=0,
                write_timeout=self.write_timeout,
                xonxoff=False,
                rtscts=False,
                dsrdtr=False,
            )

            # Drop anything the bridge buffered before we attached
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()

            logger.debug(f"Opened {self.port} at {self.baudrate} bps (8N1, raw)")
        except serial.SerialException as e:
            self.ser = None
            raise PortUnavailable(f"Cannot open port {self.port}: {e}") from e

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")
        self.ser = None

    def _require_open(self) -> serial.Serial:
        if not self.is_open:
            raise DeviceNotConnected("Serial port not open")
        return self.ser

    def write(self, data: bytes) -> bool:
        """
        Send raw bytes to radio.

        Args:
            data: Bytes to send

        Returns:
            True if every byte was written

        Raises:
            DeviceNotConnected: If the port is not open
        """
        ser = self._require_open()
        try:
            written = ser.write(data)
            ser.flush()
        except serial.SerialException as e:
            logger.warning(f"Write error on {self.port}: {e}")
            return False

        if written != len(data):
            logger.warning(f"Incomplete write: sent {written}/{len(data)} bytes")
            return False

        logger.debug(f">>> {data.hex().upper()}")
        return True

    def read(self, timeout: float) -> bytes:
        """
        Read whatever the radio sends within ``timeout`` seconds.

        A zero timeout performs a non-blocking read of the bytes already
        waiting in the driver buffer.

        Args:
            timeout: Upper bound on the wait, in seconds

        Returns:
            Bytes received, or b"" on timeout

        Raises:
            DeviceNotConnected: If the port is not open
        """
        ser = self._require_open()
        try:
            ser.timeout = timeout
            data = ser.read(1)
            if data:
                ser.timeout = 0
                waiting = ser.in_waiting
                if waiting:
                    data += ser.read(min(waiting, READ_CHUNK))
        except serial.SerialException as e:
            logger.warning(f"Read error on {self.port}: {e}")
            return b""

        if data:
            logger.debug(f"<<< {data.hex().upper()}")
        return data


def open_serial(port: str, baudrate: int = BAUD_RATE) -> K5SerialTransport:
    """
    Open a radio transport connection.

    Args:
        port: Serial port name
        baudrate: Baud rate (default 38400)

    Returns:
        K5SerialTransport instance (already open)
    """
    transport = K5SerialTransport(port, baudrate)
    transport.open()
    return transport

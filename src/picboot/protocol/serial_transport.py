"""
Serial transport for PicBoot bootloaders.

Thin wrapper over pyserial providing exactly what the command executor
needs:
- Port open/close with 8N1 framing and a per-read timeout
- Raw writes
- Single byte reads (None on timeout)
- Discarding stale input before a new command
"""

import logging
from typing import Optional

try:
    import serial
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Serial port could not be opened, written or read."""
    pass


class SerialTransport:
    """
    Byte-level serial transport.

    Example:
        transport = SerialTransport()
        transport.open("/dev/ttyUSB0", baudrate=115200, timeout=2.0)
        transport.write(frame)
        value = transport.read_byte()
        transport.close()
    """

    def __init__(self) -> None:
        self.port: Optional[str] = None
        self.baudrate = 115200
        self.timeout = 2.0
        self.ser: Optional[serial.Serial] = None

    @property
    def is_open(self) -> bool:
        return bool(self.ser and self.ser.is_open)

    def open(self, port: str, baudrate: int, timeout: float) -> None:
        """
        Open the port.

        Args:
            port: Serial port (e.g., "/dev/ttyUSB0", "COM3")
            baudrate: Serial baud rate
            timeout: Read timeout per byte in seconds

        Raises:
            TransportError: If port cannot be opened
        """
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        try:
            self.ser = serial.Serial(
                port=port,
                baudrate=baudrate,
                bytesize=8,
                parity='N',
                stopbits=1,
                timeout=timeout,
                write_timeout=timeout,
            )
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()
            logger.debug(f"Opened {port} at {baudrate} bps (timeout={timeout}s)")
        except (serial.SerialException, ValueError) as e:
            self.ser = None
            raise TransportError(f"Cannot open port {port}: {e}")

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")

    def write(self, data: bytes) -> None:
        """
        Send raw bytes.

        Raises:
            TransportError: If the port is closed or the write fails
        """
        if not self.is_open:
            raise TransportError("Serial port not open")
        try:
            written = self.ser.write(data)
            if written != len(data):
                raise TransportError(f"Incomplete write: sent {written}/{len(data)} bytes")
            logger.debug(f">>> {data.hex().upper()}")
        except serial.SerialException as e:
            raise TransportError(f"Write error: {e}")

    def read_byte(self) -> Optional[int]:
        """
        Read one byte, blocking up to the configured timeout.

        Returns:
            Byte value, or None if the timeout elapsed

        Raises:
            TransportError: If the port is closed or the read fails
        """
        if not self.is_open:
            raise TransportError("Serial port not open")
        try:
            data = self.ser.read(1)
        except serial.SerialException as e:
            raise TransportError(f"Read error: {e}")
        if not data:
            return None
        return data[0]

    def discard_input(self) -> bytes:
        """Drop whatever the device sent before the current command."""
        if not self.is_open:
            raise TransportError("Serial port not open")
        try:
            junk = self.ser.read(self.ser.in_waiting) if self.ser.in_waiting else b""
        except serial.SerialException as e:
            raise TransportError(f"Read error: {e}")
        if junk:
            logger.debug(f"Drained {len(junk)} bytes of junk from buffer")
        return junk

"""
PicBoot command executor.

Builds bootloader commands, runs them through the frame codec over a
transport, retries failed exchanges and keeps the session status that a
polling thread (CLI, UI) watches.

Command payload layout:

    <COMMAND><DLEN><ADDRL><ADDRH><ADDRU><DATA>...

    COMMAND - Base command (BootCmd)
    DLEN    - Length of data in rd/wr/er blocks, never bytes
    ADDR    - 24-bit address, rd/wr/er block aligned
    DATA    - Data (if any)
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional

from picboot.models.profiles import MAX_ADDRESS

from .framing import DecodedFrame, FrameDecoder, encode_frame
from .serial_transport import SerialTransport, TransportError

logger = logging.getLogger(__name__)

RETRY_COUNT = 3
HEADER_SIZE = 5
MAX_LENGTH = 0xFF


class BootCmd(IntEnum):
    """Bootloader opcodes."""
    RD_VER = 0x00
    RD_PROG = 0x01
    WR_PROG = 0x02
    ER_PROG = 0x03
    RD_DATA = 0x04
    WR_DATA = 0x05
    RESET = 0xFF


class SessionStatus(IntEnum):
    """Execution status: <0 error or port closed, 0 idle, >0 command in progress."""
    ERROR = -1
    IDLE = 0
    BUSY = 1


class ErrorKind(Enum):
    """Why a command or region operation failed."""
    PARAMETER = "parameter"
    TRANSPORT = "transport"
    PROTOCOL = "protocol"
    LENGTH_MISMATCH = "length_mismatch"
    ABORTED = "aborted"


@dataclass
class CommandResult:
    """Outcome of one executed command."""
    ok: bool
    error: Optional[ErrorKind] = None
    message: str = ""
    response: Optional[DecodedFrame] = None

    @classmethod
    def success(cls, response: DecodedFrame) -> "CommandResult":
        return cls(ok=True, response=response)

    @classmethod
    def failure(cls, error: ErrorKind, message: str) -> "CommandResult":
        return cls(ok=False, error=error, message=message)


def build_command(cmd: int, addr: int, length: int, data: bytes = b"") -> bytes:
    """
    Build the raw payload for a command.

    Args:
        cmd: Opcode (BootCmd)
        addr: 24-bit target address
        length: Length in device blocks (0..255)
        data: Optional data bytes

    Raises:
        ValueError: If address or length do not fit their fields
    """
    if not 0 <= addr <= MAX_ADDRESS:
        raise ValueError(f"Address 0x{addr:X} does not fit in 24 bits")
    if not 0 <= length <= MAX_LENGTH:
        raise ValueError(f"Length {length} does not fit in one byte")
    header = bytes([
        int(cmd) & 0xFF,
        length,
        addr & 0xFF,
        (addr >> 8) & 0xFF,
        (addr >> 16) & 0xFF,
    ])
    return header + bytes(data or b"")


class SessionState:
    """
    State shared between the worker running commands and the thread
    polling it: status, one-shot error message and the stop request.
    All three sit behind one lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._status = SessionStatus.ERROR
        self._last_error = ""
        self._stop_work = False

    @property
    def status(self) -> SessionStatus:
        with self._lock:
            return self._status

    @status.setter
    def status(self, value: SessionStatus) -> None:
        with self._lock:
            self._status = SessionStatus(value)

    @property
    def last_error(self) -> str:
        """Last failure reason; reading it clears it."""
        with self._lock:
            message, self._last_error = self._last_error, ""
            return message

    @last_error.setter
    def last_error(self, message: str) -> None:
        with self._lock:
            self._last_error = message

    @property
    def stop_work(self) -> bool:
        with self._lock:
            return self._stop_work

    @stop_work.setter
    def stop_work(self, value: bool) -> None:
        with self._lock:
            self._stop_work = bool(value)

    def consume_stop(self) -> bool:
        """Return True and clear the flag if a stop was requested."""
        with self._lock:
            requested, self._stop_work = self._stop_work, False
            return requested

    def fail(self, message: str) -> None:
        with self._lock:
            self._status = SessionStatus.ERROR
            self._last_error = message


class Bootloader:
    """
    One bootloader session over one transport.

    Only one command is in flight at a time. Region operations
    (picboot.core.regions) drive `execute()` from a worker thread while
    another thread reads `status`/`last_error` and sets `stop_work`.

    Example:
        bl = Bootloader()
        if bl.open("/dev/ttyUSB0", 115200, 2000):
            result = bl.execute(BootCmd.RD_PROG, 0x0000, 1)
            bl.try_close()
    """

    def __init__(self, transport=None, retries: int = RETRY_COUNT) -> None:
        if retries < 1:
            raise ValueError("retries must be >= 1")
        self.transport = transport if transport is not None else SerialTransport()
        self.retries = retries
        self.state = SessionState()
        self.last_response: Optional[DecodedFrame] = None
        self.last_failure: Optional[CommandResult] = None

    # Shared state, forwarded for callers polling the session

    @property
    def status(self) -> SessionStatus:
        return self.state.status

    @status.setter
    def status(self, value: SessionStatus) -> None:
        self.state.status = value

    @property
    def last_error(self) -> str:
        return self.state.last_error

    @last_error.setter
    def last_error(self, message: str) -> None:
        self.state.last_error = message

    @property
    def stop_work(self) -> bool:
        return self.state.stop_work

    @stop_work.setter
    def stop_work(self, value: bool) -> None:
        self.state.stop_work = value

    def request_stop(self) -> None:
        """Ask the running operation to abort at its next attempt."""
        self.state.stop_work = True

    # Session

    def is_open(self) -> bool:
        return self.transport.is_open

    def open(self, port: str, baudrate: int, timeout_ms: int) -> bool:
        """
        Open the transport and reset the session to idle.

        Args:
            port: Serial port name
            baudrate: Baud rate
            timeout_ms: Per-byte read timeout in milliseconds

        Returns:
            True when the port was opened; the reason is in last_error otherwise
        """
        if self.transport.is_open:
            self.last_error = "Port already opened."
            return False
        try:
            self.transport.open(port, baudrate, timeout_ms / 1000.0)
        except TransportError as e:
            self.state.fail(str(e))
            return False
        self.status = SessionStatus.IDLE
        logger.info(f"Connected to {port} at {baudrate} bps")
        return True

    def try_close(self) -> bool:
        """
        Close the port unless a command is in progress.

        Returns:
            True once the port is closed
        """
        if self.transport.is_open and self.status <= SessionStatus.IDLE:
            self.transport.close()
        if not self.transport.is_open:
            self.status = SessionStatus.ERROR
            return True
        return False

    # Framing over the transport

    def send_packet(self, payload: bytes) -> None:
        """Flush stale input and transmit one frame."""
        frame = encode_frame(payload)
        self.transport.discard_input()
        self.transport.write(frame)

    def receive_packet(self) -> Optional[DecodedFrame]:
        """
        Read bytes until one frame is complete.

        Returns:
            The valid frame, or None on bad checksum, timeout or read error
        """
        decoder = FrameDecoder()
        try:
            while True:
                value = self.transport.read_byte()
                if value is None:
                    logger.debug("Timeout waiting for response")
                    return None
                frame = decoder.feed(value)
                if frame is not None:
                    if frame.valid:
                        logger.debug(f"<<< {frame.payload.hex().upper()}")
                        return frame
                    return None
        except TransportError as e:
            logger.debug(f"Receive failed: {e}")
            return None

    # Commands

    def _record(self, error: ErrorKind, message: str) -> CommandResult:
        result = CommandResult.failure(error, message)
        self.last_failure = result
        return result

    def reject(self, message: str) -> CommandResult:
        """Parameter error found before any I/O. Status is left as it is."""
        self.last_error = message
        return self._record(ErrorKind.PARAMETER, message)

    def fail(self, error: ErrorKind, message: str) -> CommandResult:
        """Put the session in ERROR with message, leaving the port open."""
        self.state.fail(message)
        return self._record(error, message)

    def _abort(self, error: ErrorKind, message: str) -> CommandResult:
        result = self.fail(error, message)
        self.transport.close()
        return result

    def execute(
        self,
        cmd: BootCmd,
        addr: int,
        length: int,
        data: bytes = b"",
    ) -> CommandResult:
        """
        Run one command with retries.

        Any failure closes the transport and leaves the session in ERROR
        with the reason stored in last_error.

        Args:
            cmd: Opcode
            addr: 24-bit address
            length: Length in blocks
            data: Payload bytes

        Returns:
            CommandResult; on success `response` holds the reply frame
        """
        try:
            request = build_command(cmd, addr, length, data)
        except ValueError as e:
            return self._abort(ErrorKind.PARAMETER, str(e))
        for attempt in range(1, self.retries + 1):
            if self.state.consume_stop():
                return self._abort(ErrorKind.ABORTED, "Aborted by user.")
            try:
                self.send_packet(request)
            except TransportError as e:
                return self._abort(ErrorKind.TRANSPORT, str(e))
            frame = self.receive_packet()
            if frame is not None:
                self.last_response = frame
                self.status = SessionStatus.IDLE
                return CommandResult.success(frame)
            if attempt < self.retries:
                logger.debug(f"Retry {attempt}/{self.retries - 1} for {BootCmd(cmd).name} at 0x{addr:X}")
        return self._abort(ErrorKind.PROTOCOL, "Target did not respond correctly.")

    def read_version(self) -> Optional[bytes]:
        """
        Query the bootloader version.

        Returns:
            Response bytes following the command header, or None on failure
        """
        self.stop_work = False
        self.status = SessionStatus.BUSY
        result = self.execute(BootCmd.RD_VER, 0, 0)
        if not result.ok:
            logger.error(f"ERROR: {result.message}")
            return None
        return result.response.payload[HEADER_SIZE:]

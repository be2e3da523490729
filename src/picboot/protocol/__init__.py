"""Bootloader protocol layer - framing, serial transport and command execution."""

from .framing import (
    STX,
    ETX,
    DLE,
    DecodedFrame,
    FrameDecoder,
    encode_frame,
    decode_frame,
)
from .serial_transport import SerialTransport, TransportError
from .bootloader import (
    Bootloader,
    BootCmd,
    CommandResult,
    ErrorKind,
    SessionStatus,
    build_command,
)

__all__ = [
    # Framing
    "STX",
    "ETX",
    "DLE",
    "DecodedFrame",
    "FrameDecoder",
    "encode_frame",
    "decode_frame",
    # Transport
    "SerialTransport",
    "TransportError",
    # Commands
    "Bootloader",
    "BootCmd",
    "CommandResult",
    "ErrorKind",
    "SessionStatus",
    "build_command",
]

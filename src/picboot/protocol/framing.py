"""
PicBoot frame codec.

Packet format on the wire:

    <STX><STX><PAYLOAD><CHKSUM><ETX>

    PAYLOAD = <COMMAND><DLEN><ADDRL><ADDRH><ADDRU><DATA>...

Any payload or checksum byte equal to STX, ETX or DLE is prefixed with a
single DLE byte. CHKSUM is the 8-bit two's complement sum of the
(unescaped) payload, so payload + checksum always sums to 0 mod 256.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

STX = 0x0F
ETX = 0x04
DLE = 0x05

SPECIAL_BYTES = (STX, ETX, DLE)

# Decoder states
WAIT_STX1 = 0
WAIT_STX2 = 1
PAYLOAD = 2
ESCAPED = 3


def checksum(payload: Iterable[int]) -> int:
    """Return the two's complement checksum byte for payload."""
    return (-sum(payload)) & 0xFF


def _escape_into(out: bytearray, value: int) -> None:
    if value in SPECIAL_BYTES:
        out.append(DLE)
    out.append(value)


def encode_frame(payload: bytes) -> bytes:
    """
    Wrap a command payload into a wire frame.

    Args:
        payload: Unescaped payload bytes (header + data)

    Returns:
        Complete frame ready to be written to the port
    """
    frame = bytearray([STX, STX])
    for value in payload:
        _escape_into(frame, value)
    _escape_into(frame, checksum(payload))
    frame.append(ETX)
    return bytes(frame)


@dataclass(frozen=True)
class DecodedFrame:
    """
    One frame terminated by ETX.

    Attributes:
        payload: Unescaped payload without the checksum byte
        valid: True when payload + checksum summed to zero
        raw_length: Unescaped bytes received between STX STX and ETX,
            checksum byte included. An empty frame (STX STX ETX) sums to
            zero and is valid with raw_length 0.
    """
    payload: bytes
    valid: bool
    raw_length: int


class FrameDecoder:
    """
    Byte-driven receive state machine.

    Feed bytes one at a time; `feed()` returns a DecodedFrame whenever an
    ETX closes a frame (valid or not) and None otherwise. A second STX
    inside a payload restarts reception, so a truncated frame followed by
    a good one still yields the good one.
    """

    def __init__(self) -> None:
        self.state = WAIT_STX1
        self.buffer = bytearray()
        self.running_sum = 0

    def reset(self) -> None:
        self.state = WAIT_STX1
        self.buffer = bytearray()
        self.running_sum = 0

    def _store(self, value: int) -> None:
        self.buffer.append(value)
        self.running_sum = (self.running_sum + value) & 0xFF

    def feed(self, value: int) -> Optional[DecodedFrame]:
        if self.state == WAIT_STX1:
            if value == STX:
                self.state = WAIT_STX2
        elif self.state == WAIT_STX2:
            if value == STX:
                self.buffer = bytearray()
                self.running_sum = 0
                self.state = PAYLOAD
            else:
                self.state = WAIT_STX1
        elif self.state == PAYLOAD:
            if value == STX:
                self.state = WAIT_STX2
            elif value == ETX:
                return self._finish()
            elif value == DLE:
                self.state = ESCAPED
            else:
                self._store(value)
        else:
            # byte after DLE is data whatever its value
            self._store(value)
            self.state = PAYLOAD
        return None

    def _finish(self) -> DecodedFrame:
        raw = bytes(self.buffer)
        valid = self.running_sum == 0
        self.reset()
        if not valid:
            logger.debug(f"Discarding frame with bad checksum: {raw.hex().upper()}")
            return DecodedFrame(payload=b"", valid=False, raw_length=0)
        return DecodedFrame(payload=raw[:-1], valid=True, raw_length=len(raw))

    def feed_bytes(self, data: bytes) -> List[DecodedFrame]:
        """Feed a chunk of bytes, returning every frame it completed."""
        frames = []
        for value in data:
            frame = self.feed(value)
            if frame is not None:
                frames.append(frame)
        return frames


def decode_frame(data: bytes) -> Optional[bytes]:
    """
    Decode the first frame found in data.

    Returns:
        The payload of the first completed frame, or None when that frame
        failed its checksum or no frame was completed.
    """
    decoder = FrameDecoder()
    for value in data:
        frame = decoder.feed(value)
        if frame is not None:
            return frame.payload if frame.valid else None
    return None

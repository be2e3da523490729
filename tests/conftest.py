"""Shared fixtures: a scripted transport and a simulated PicBoot device."""

from typing import Callable, List, Optional, Tuple

import pytest

from picboot.models.profiles import AddressRange, DeviceProfile
from picboot.protocol.bootloader import Bootloader, BootCmd
from picboot.protocol.framing import DLE, ETX, SPECIAL_BYTES, STX, FrameDecoder, checksum, encode_frame
from picboot.protocol.serial_transport import TransportError


def bad_checksum_frame(payload: bytes) -> bytes:
    """Frame payload correctly but with a checksum that is off by one."""
    out = bytearray([STX, STX])
    for value in list(payload) + [(checksum(payload) + 1) & 0xFF]:
        if value in SPECIAL_BYTES:
            out.append(DLE)
        out.append(value)
    out.append(ETX)
    return bytes(out)


class FakeTransport:
    """In-memory stand-in for SerialTransport."""

    def __init__(self, responder: Optional[Callable[[bytes], Optional[bytes]]] = None) -> None:
        self.responder = responder
        self.is_open = False
        self.fail_open = False
        self.rx = bytearray()
        self.writes: List[bytes] = []
        self.discards = 0
        self.close_count = 0

    def open(self, port: str, baudrate: int, timeout: float) -> None:
        if self.fail_open:
            raise TransportError(f"Cannot open port {port}: busy")
        self.port, self.baudrate, self.timeout = port, baudrate, timeout
        self.is_open = True

    def close(self) -> None:
        self.is_open = False
        self.close_count += 1

    def write(self, data: bytes) -> None:
        if not self.is_open:
            raise TransportError("Serial port not open")
        self.writes.append(bytes(data))
        if self.responder is not None:
            reply = self.responder(bytes(data))
            if reply:
                self.rx.extend(reply)

    def read_byte(self) -> Optional[int]:
        if not self.is_open:
            raise TransportError("Serial port not open")
        if not self.rx:
            return None
        return self.rx.pop(0)

    def discard_input(self) -> bytes:
        if not self.is_open:
            raise TransportError("Serial port not open")
        self.discards += 1
        junk = bytes(self.rx)
        self.rx.clear()
        return junk


class DeviceSimulator:
    """
    Minimal PicBoot target: answers request frames from a memory array.

    Attributes:
        commands: (opcode, length, address, data) for every request seen
        drop: Number of upcoming requests to leave unanswered
        drop_opcodes: Opcodes that are never answered
        corrupt: Number of upcoming replies sent with a broken checksum
        short_reads: Reply to RD_PROG with one byte missing
        on_command: Optional hook called with each decoded request
    """

    def __init__(self, profile: DeviceProfile, size_units: int = 0x20000) -> None:
        self.profile = profile
        self.memory = bytearray(
            (i * 7 + 3) & 0xFF for i in range(size_units * profile.bytes_per_addr)
        )
        self.eeprom = bytearray([0xFF]) * ((profile.data_range.last + 1) * profile.bytes_per_addr)
        self.commands: List[Tuple[int, int, int, bytes]] = []
        self.drop = 0
        self.drop_opcodes = set()
        self.corrupt = 0
        self.short_reads = False
        self.on_command: Optional[Callable[[Tuple[int, int, int, bytes]], None]] = None

    def __call__(self, frame: bytes) -> Optional[bytes]:
        decoded = FrameDecoder().feed_bytes(frame)
        assert len(decoded) == 1 and decoded[0].valid
        payload = decoded[0].payload
        cmd, length = payload[0], payload[1]
        addr = payload[2] | (payload[3] << 8) | (payload[4] << 16)
        data = payload[5:]
        request = (cmd, length, addr, bytes(data))
        self.commands.append(request)
        if self.on_command is not None:
            self.on_command(request)

        if cmd in self.drop_opcodes:
            return None
        if self.drop > 0:
            self.drop -= 1
            return None

        reply = self.handle(cmd, length, addr, data, payload[:5])
        if self.corrupt > 0:
            self.corrupt -= 1
            return bad_checksum_frame(reply)
        return encode_frame(reply)

    def handle(self, cmd: int, length: int, addr: int, data: bytes, header: bytes) -> bytes:
        bpa = self.profile.bytes_per_addr
        if cmd == BootCmd.RD_PROG:
            count = length * self.profile.read_block * bpa
            if self.short_reads:
                count -= 1
            start = addr * bpa
            return header + bytes(self.memory[start:start + count])
        if cmd == BootCmd.WR_PROG:
            start = addr * bpa
            self.memory[start:start + len(data)] = data
            return header
        if cmd == BootCmd.ER_PROG:
            start = addr * bpa
            count = length * self.profile.erase_block * bpa
            self.memory[start:start + count] = bytes([0xFF]) * count
            return header
        if cmd == BootCmd.WR_DATA:
            start = addr * bpa
            self.eeprom[start:start + len(data)] = data
            return header
        if cmd == BootCmd.RD_VER:
            return header + b"\x01\x02"
        return header

    def opcodes(self) -> List[int]:
        return [c[0] for c in self.commands]


def make_profile(**overrides) -> DeviceProfile:
    values = dict(
        name="TEST",
        baud=115200,
        timeout=100,
        write_block=4,
        read_block=2,
        erase_block=0x40,
        max_pkt_size=64,
        bytes_per_addr=1,
        prog_ranges=(AddressRange(0x000, 0x3FF),),
        data_range=AddressRange(0x00, 0xFF),
    )
    values.update(overrides)
    return DeviceProfile(**values)


@pytest.fixture
def profile() -> DeviceProfile:
    return make_profile()


@pytest.fixture
def session():
    """Factory returning an opened (bootloader, simulator, transport) triple."""

    def _make(profile: DeviceProfile):
        sim = DeviceSimulator(profile)
        transport = FakeTransport(sim)
        bl = Bootloader(transport)
        assert bl.open("FAKE", profile.baud, profile.timeout)
        return bl, sim, transport

    return _make

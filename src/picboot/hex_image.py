"""
Intel-HEX (I32HEX) codec for firmware images.

An image is a list of non-overlapping MemoryBlocks, one per memory
region. Addresses are in device address units; each unit holds
`bytes_per_addr` bytes, so for 16-bit program words the IHEX record
addresses advance by half the byte count.

Supported record types:
    0x00 data
    0x01 end of file
    0x04 extended linear address (upper 16 address bits)
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union

from picboot.models.profiles import AddressRange

logger = logging.getLogger(__name__)

REC_DATA = 0x00
REC_EOF = 0x01
REC_EXT_LINEAR = 0x04

EOF_RECORD = ":00000001FF"
MIN_LINE_LENGTH = 11  # ':' + count + address + type + checksum
LINE_DATA_BYTES = 16
ERASED = 0xFF


class HexImageError(Exception):
    """Base exception for image codec errors."""


class FileFormatError(HexImageError):
    """A single malformed IHEX line; the load carries on."""

    def __init__(self, line_no: int, line: str, reason: str) -> None:
        self.line_no = line_no
        self.line = line
        self.reason = reason
        super().__init__(f"{reason} @line [{line_no}]: {line}")


class UnmappedAddressError(HexImageError):
    """A data record does not fit inside exactly one memory block."""


@dataclass
class MemoryBlock:
    """Contiguous memory region starting at `first_addr` (address units)."""
    first_addr: int
    data: bytearray = field(default_factory=bytearray)

    def __post_init__(self) -> None:
        if not isinstance(self.data, bytearray):
            self.data = bytearray(self.data)

    def units(self, bytes_per_addr: int) -> int:
        """Number of address units covered."""
        return len(self.data) // bytes_per_addr

    def contains(self, addr: int, bytes_per_addr: int) -> bool:
        return self.first_addr <= addr < self.first_addr + self.units(bytes_per_addr)

    def address_range(self, bytes_per_addr: int) -> AddressRange:
        return AddressRange(self.first_addr, self.first_addr + self.units(bytes_per_addr) - 1)


def hex_record(address: int, rec_type: int, data: bytes = b"") -> str:
    """
    Format one IHEX record.

    Only the low 16 bits of address are used; data must be at most 255 bytes.
    """
    address &= 0xFFFF
    if len(data) > 0xFF:
        raise ValueError(f"Record data too long: {len(data)} bytes")
    body = bytes([len(data), address >> 8, address & 0xFF, rec_type]) + bytes(data)
    chksum = (-sum(body)) & 0xFF
    return ":" + body.hex().upper() + f"{chksum:02X}"


def ext_linear_record(address: int) -> str:
    """Type 0x04 record carrying the upper 16 bits of address."""
    return hex_record(0, REC_EXT_LINEAR, bytes([(address >> 24) & 0xFF, (address >> 16) & 0xFF]))


def _same_page(a: int, b: int) -> bool:
    return (a & 0xFFFF0000) == (b & 0xFFFF0000)


class HexImage:
    """
    Firmware image made of memory blocks.

    Example:
        image = HexImage.for_ranges(profile.prog_ranges, profile.bytes_per_addr)
        ok = image.load("firmware.hex", profile.bytes_per_addr)
        for problem in image.problems:
            print(problem)
    """

    def __init__(self, blocks: Optional[List[MemoryBlock]] = None) -> None:
        self.blocks: List[MemoryBlock] = list(blocks or [])
        self.problems: List[FileFormatError] = []

    @classmethod
    def for_ranges(cls, ranges: Iterable[AddressRange], bytes_per_addr: int) -> "HexImage":
        """Allocate one zeroed block per valid range, skipping bad ranges."""
        image = cls()
        for rng in ranges:
            if rng.first > rng.last:
                logger.error(f"ERROR: Bad program memory region: 0x{rng.first:X} .. 0x{rng.last:X}")
                continue
            image.blocks.append(MemoryBlock(rng.first, bytearray(rng.size * bytes_per_addr)))
        return image

    @property
    def total_bytes(self) -> int:
        return sum(len(b.data) for b in self.blocks)

    # Serialization

    def to_lines(self, bytes_per_addr: int) -> List[str]:
        """
        Serialize every block to IHEX records.

        Each block starts with an extended linear address record. Data
        records carry up to 16 bytes and are split at 64KB boundaries,
        followed by a new extended address record.
        """
        addrs_per_line = LINE_DATA_BYTES // bytes_per_addr
        lines = []
        for block in self.blocks:
            idx = 0
            addr = block.first_addr
            lines.append(ext_linear_record(addr))
            while idx < len(block.data):
                start = idx
                line_len = 0  # address units
                for _ in range(addrs_per_line):
                    idx += bytes_per_addr
                    line_len += 1
                    if idx >= len(block.data):
                        break
                    if not _same_page(addr, addr + line_len):
                        break
                lines.append(hex_record(addr, REC_DATA, block.data[start:idx]))
                if not _same_page(addr, addr + line_len):
                    lines.append(ext_linear_record(addr + line_len))
                addr += line_len
        lines.append(EOF_RECORD)
        return lines

    def dumps(self, bytes_per_addr: int) -> str:
        return "\n".join(self.to_lines(bytes_per_addr)) + "\n"

    def save(self, path: Union[str, Path], bytes_per_addr: int) -> None:
        Path(path).write_text(self.dumps(bytes_per_addr), encoding="ascii")
        logger.info(f"Saved {self.total_bytes:,} bytes to {path}")

    # Deserialization

    def fill_erased(self) -> None:
        """Reset every block to the erased state (0xFF)."""
        def _fill(block: MemoryBlock) -> None:
            block.data[:] = bytes([ERASED]) * len(block.data)

        with ThreadPoolExecutor() as pool:
            list(pool.map(_fill, self.blocks))

    def block_index(self, addr: int, bytes_per_addr: int) -> int:
        """
        Index of the block containing addr.

        Raises:
            UnmappedAddressError: If no block contains addr
        """
        for idx, block in enumerate(self.blocks):
            if block.contains(addr, bytes_per_addr):
                return idx
        raise UnmappedAddressError(f"Address 0x{addr:X} not found in memory regions.")

    def _problem(self, line_no: int, line: str, reason: str) -> None:
        problem = FileFormatError(line_no, line, reason)
        self.problems.append(problem)
        logger.error(f"ERROR: {problem}")

    def _store(self, addr: int, data: bytes, bytes_per_addr: int) -> None:
        block = self.blocks[self.block_index(addr, bytes_per_addr)]
        start = (addr - block.first_addr) * bytes_per_addr
        if start + len(data) > len(block.data):
            raise UnmappedAddressError(
                f"Data at 0x{addr:X} ({len(data)} bytes) runs past the end of its memory region."
            )
        block.data[start:start + len(data)] = data

    def load_lines(self, lines: Iterable[str], bytes_per_addr: int) -> bool:
        """
        Load IHEX records into the pre-allocated blocks.

        Blocks are first filled with 0xFF. Malformed lines, bad checksums
        and unknown record types are logged, collected in `problems` and
        skipped (a bad-checksum line is still stored); parsing continues.

        Returns:
            False if any problem was found

        Raises:
            UnmappedAddressError: If a data record falls outside the blocks
        """
        ok = True
        addr_cntr = 0
        self.problems = []
        self.fill_erased()

        for line_no, line in enumerate(lines, start=1):
            line = line.strip()
            if not line or line[0] != ":":
                continue
            if len(line) < MIN_LINE_LENGTH:
                self._problem(line_no, line, "Ignoring short line")
                ok = False
                continue
            try:
                record = bytes.fromhex(line[1:])
            except ValueError:
                self._problem(line_no, line, "Invalid hex digits")
                ok = False
                continue
            byte_cnt = record[0]
            if len(line) != 2 * byte_cnt + MIN_LINE_LENGTH:
                self._problem(line_no, line, "Invalid data-field length")
                ok = False
                continue
            addr = (record[1] << 8) | record[2]
            rec_type = record[3]
            data = record[4:4 + byte_cnt]
            if sum(record) & 0xFF:
                self._problem(line_no, line, "Invalid checksum")
                ok = False

            if rec_type == REC_DATA:
                addr_cntr = (addr_cntr & 0xFFFF0000) | addr
                self._store(addr_cntr, data, bytes_per_addr)
                addr_cntr += byte_cnt // bytes_per_addr
            elif rec_type == REC_EOF:
                return ok
            elif rec_type == REC_EXT_LINEAR:
                if byte_cnt != 2:
                    self._problem(line_no, line, "Invalid extended address record")
                    ok = False
                    continue
                addr_cntr = (data[0] << 24) | (data[1] << 16)
            else:
                self._problem(line_no, line, "Unknown record type")
                ok = False
        return ok

    def loads(self, text: str, bytes_per_addr: int) -> bool:
        return self.load_lines(text.splitlines(), bytes_per_addr)

    def load(self, path: Union[str, Path], bytes_per_addr: int) -> bool:
        """Load an IHEX file; see load_lines()."""
        with open(path, "r", encoding="ascii", errors="replace") as f:
            return self.load_lines(f, bytes_per_addr)

"""
Region operations: erase, read and write program memory, start the app.

Each operation splits an address range into commands of at most 255
device blocks (the DLEN field), further limited by the profile's packet
size, and runs them one after another on the session. The first failing
command abandons the whole sequence; already processed chunks are not
rolled back.

Failures are never raised. They end in SessionStatus.ERROR with the
reason in `bootloader.last_error`, the failed CommandResult in
`bootloader.last_failure` and an ERROR log line. Parameter errors are
found before any I/O and leave the status unchanged.
"""

import logging
from typing import List, Optional

from picboot.models.profiles import AddressRange, DeviceProfile
from picboot.protocol.bootloader import (
    HEADER_SIZE,
    MAX_ADDRESS,
    MAX_LENGTH,
    Bootloader,
    BootCmd,
    ErrorKind,
    SessionStatus,
)

logger = logging.getLogger(__name__)

# Reply length allowance for RD_PROG: header plus checksum byte
READ_RESPONSE_OVERHEAD = 6


def plan_chunks(total_blocks: int, max_per_command: int = MAX_LENGTH) -> List[int]:
    """
    Split a block count into per-command lengths.

    Args:
        total_blocks: Blocks to process
        max_per_command: Per-command cap, clamped to 255

    Returns:
        Chunk lengths in issue order
    """
    cap = min(max_per_command, MAX_LENGTH)
    if cap <= 0:
        raise ValueError("max_per_command must be > 0")
    chunks = []
    remaining = total_blocks
    while remaining > 0:
        chunk = min(remaining, cap)
        chunks.append(chunk)
        remaining -= chunk
    return chunks


def max_blocks_per_command(profile: DeviceProfile, block: int) -> int:
    """Blocks of `block` address units that fit one packet, at most 255."""
    return min(MAX_LENGTH, profile.max_pkt_size // (block * profile.bytes_per_addr))


def _begin(bl: Bootloader) -> None:
    bl.stop_work = False
    bl.last_failure = None


def _parameter_error(bl: Bootloader, message: str) -> None:
    bl.reject(message)
    logger.error(f"ERROR: {message}")


def _check_region(bl: Bootloader, region: AddressRange) -> bool:
    if region.first > region.last:
        _parameter_error(bl, f"Bad program memory region: 0x{region.first:X} .. 0x{region.last:X}")
        return False
    if region.last > MAX_ADDRESS:
        _parameter_error(bl, f"Memory region {region} does not fit in 24-bit addresses")
        return False
    return True


def erase_prog_region(bl: Bootloader, profile: DeviceProfile, region: AddressRange) -> bool:
    """
    Erase program memory page by page.

    Returns:
        True when every ER_PROG command succeeded
    """
    if not _check_region(bl, region):
        return False

    _begin(bl)
    pages = region.size // profile.erase_block
    addr = region.first
    for chunk in plan_chunks(pages):
        bl.status = SessionStatus.BUSY
        logger.info(f"Erasing from: 0x{addr:X}")
        result = bl.execute(BootCmd.ER_PROG, addr, chunk)
        addr += chunk * profile.erase_block
        if not result.ok:
            logger.error(f"ERROR: {result.message}")
            return False
    return True


def read_prog_region(
    bl: Bootloader,
    profile: DeviceProfile,
    region: AddressRange,
) -> Optional[bytes]:
    """
    Read program memory.

    Returns:
        `region.size * bytes_per_addr` bytes, or None if anything failed
    """
    if not _check_region(bl, region):
        return None

    _begin(bl)
    cap = max_blocks_per_command(profile, profile.read_block)
    if cap <= 0:
        _parameter_error(bl, f"max_pkt_size {profile.max_pkt_size} too small for one read block")
        return None

    data = bytearray(region.size * profile.bytes_per_addr)
    blocks = region.size // profile.read_block
    addr = region.first
    offset = 0
    for chunk in plan_chunks(blocks, cap):
        bytes_to_read = chunk * profile.read_block * profile.bytes_per_addr
        bl.status = SessionStatus.BUSY
        logger.info(f"Reading from: 0x{addr:X}")
        result = bl.execute(BootCmd.RD_PROG, addr, chunk)
        if not result.ok:
            logger.error(f"ERROR: {result.message}")
            return None
        response = result.response
        if response.raw_length - READ_RESPONSE_OVERHEAD != bytes_to_read:
            bl.fail(ErrorKind.LENGTH_MISMATCH, "Invalid length of response.")
            logger.error("ERROR: Invalid length of response.")
            return None
        data[offset:offset + bytes_to_read] = response.payload[HEADER_SIZE:HEADER_SIZE + bytes_to_read]
        offset += bytes_to_read
        addr += chunk * profile.read_block
    return bytes(data)


def write_prog_region(
    bl: Bootloader,
    profile: DeviceProfile,
    region: AddressRange,
    data: bytes,
) -> bool:
    """
    Write program memory. Only whole write blocks are sent.

    Args:
        data: At least `region.size * bytes_per_addr` bytes

    Returns:
        True when every WR_PROG command succeeded
    """
    if not _check_region(bl, region):
        return False

    _begin(bl)
    needed = region.size * profile.bytes_per_addr
    if len(data) < needed:
        _parameter_error(bl, f"Not enough data for region {region}: {len(data)} < {needed} bytes")
        return False
    cap = max_blocks_per_command(profile, profile.write_block)
    if cap <= 0:
        _parameter_error(bl, f"max_pkt_size {profile.max_pkt_size} too small for one write block")
        return False

    blocks = region.size // profile.write_block
    addr = region.first
    offset = 0
    for chunk in plan_chunks(blocks, cap):
        bytes_to_write = chunk * profile.write_block * profile.bytes_per_addr
        bl.status = SessionStatus.BUSY
        logger.info(f"Writing to: 0x{addr:X}")
        result = bl.execute(BootCmd.WR_PROG, addr, chunk, data[offset:offset + bytes_to_write])
        if not result.ok:
            logger.error(f"ERROR: {result.message}")
            return False
        offset += bytes_to_write
        addr += chunk * profile.write_block
    return True


def start_app(bl: Bootloader, profile: DeviceProfile) -> bool:
    """
    Start the application: mark the last data EEPROM byte as non-erased
    (0x00) and reset the CPU.

    RESET is sent even when the WR_DATA write failed.

    Returns:
        True when the session ended idle
    """
    _begin(bl)
    if not bl.is_open():
        bl.fail(ErrorKind.TRANSPORT, "Port is closed.")
        logger.error("ERROR: Port is closed.")
        return False

    bl.status = SessionStatus.BUSY
    logger.info("Starting application code...")
    result = bl.execute(BootCmd.WR_DATA, profile.data_range.last, 1, b"\x00")
    if not result.ok:
        logger.error(f"ERROR: {result.message}")
    result = bl.execute(BootCmd.RESET, 0, 0)
    if not result.ok:
        logger.error(f"ERROR: {result.message}")
    return bl.status == SessionStatus.IDLE
